from pocketflow import Flow

from plotchat.api.nodes import AnswerQuestion, SelectColumns


def create_chat_flow(needs_column_selection: bool, auto_advance: bool = False):
    """Creates the chat workflow for one request.

    Without a column selection the flow starts by asking the model for one.
    The HTTP endpoint stops there and lets the client send the data round;
    ``auto_advance`` chains straight into the answer for in-process callers.
    """
    answer_node = AnswerQuestion()
    if not needs_column_selection:
        return Flow(start=answer_node)

    select_node = SelectColumns()
    if auto_advance:
        # An unparsable column list ends the flow with the raw reply
        select_node - "selected" >> answer_node
    return Flow(start=select_node)
