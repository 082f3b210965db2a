from unittest.mock import patch

from plotchat.api.main import run_chat_turn

ROWS = [
    {"region": "north-zone", "sales": 10, "month": "Jan"},
    {"region": "south-zone", "sales": 7, "month": "Feb"},
    {"region": "east-zone", "sales": 3, "month": "Mar"},
]


def _reply(content, truncated=False):
    return {"content": content, "usage": {"provider": "openai"}, "truncated": truncated}


@patch("plotchat.api.nodes.call_llm_openai")
def test_auto_advance_runs_both_rounds(mock_llm):
    mock_llm.side_effect = [
        _reply('```json\n["month", "sales"]\n```'),
        _reply("Sales fall every month."),
    ]

    shared = run_chat_turn("How do sales change?", rows=ROWS, max_rows=2, auto_advance=True)

    assert mock_llm.call_count == 2
    assert shared["selected_columns"] == ["month", "sales"]
    assert shared["round"] == "answer"
    assert shared["rows_sent"] == 2
    assert shared["response"] == "Sales fall every month."

    first_prompt = mock_llm.call_args_list[0].args[0][0]["content"]
    assert "north-zone" not in first_prompt
    answer_prompt = mock_llm.call_args_list[1].args[0][-1]["content"]
    assert "the first 2 of 3 rows" in answer_prompt
    assert "north-zone" not in answer_prompt
    assert '"sales": 7' in answer_prompt
    assert "Mar" not in answer_prompt


@patch("plotchat.api.nodes.call_llm_openai")
def test_unparsed_column_reply_stops_after_first_round(mock_llm):
    mock_llm.return_value = _reply("Could you clarify what you want to see?")

    shared = run_chat_turn("Plot it", rows=ROWS, auto_advance=True)

    assert mock_llm.call_count == 1
    assert shared["round"] == "columns"
    assert shared["selected_columns"] is None
    assert shared["response"] == "Could you clarify what you want to see?"


@patch("plotchat.api.nodes.call_llm_openai")
def test_without_auto_advance_only_selection_round_runs(mock_llm):
    mock_llm.return_value = _reply('```json\n["sales"]\n```')

    shared = run_chat_turn("Total sales?", columns=["region", "sales", "month"])

    assert mock_llm.call_count == 1
    assert shared["round"] == "columns"
    assert shared["selected_columns"] == ["sales"]


@patch("plotchat.api.nodes.call_llm_openai")
def test_no_dataset_goes_straight_to_answer(mock_llm):
    mock_llm.return_value = _reply("Hello!")
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hey"}]

    shared = run_chat_turn("What can you do?", history=history)

    messages = mock_llm.call_args.args[0]
    assert messages[:2] == history
    assert messages[-1] == {"role": "user", "content": "What can you do?"}
    assert shared["round"] == "answer"
    assert shared["rows_sent"] == 0


@patch("plotchat.api.nodes.call_llm_gemini")
@patch("plotchat.api.nodes.call_llm_openai")
def test_gemini_provider_is_dispatched(mock_openai, mock_gemini):
    mock_gemini.return_value = _reply("From Gemini")

    shared = run_chat_turn("Hi", provider="gemini", model_name="gemini-2.5-flash")

    mock_openai.assert_not_called()
    assert mock_gemini.call_args.kwargs["model_name"] == "gemini-2.5-flash"
    assert shared["response"] == "From Gemini"
