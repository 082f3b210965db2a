import json
import logging
import textwrap

from pocketflow import Node

from plotchat.api.utils.call_llm import DEFAULT_MAX_TOKENS, call_llm_gemini, call_llm_openai
from plotchat.protocol import (
    DEFAULT_MAX_ROWS,
    parse_column_list,
    restrict_rows,
    truncate_rows,
)

logger = logging.getLogger(__name__)

COLUMN_SELECTION_MAX_TOKENS = 512

COLUMN_SELECTION_SYSTEM_PROMPT = textwrap.dedent(
    """You are a data analysis assistant. Before any data is shared with you,
you decide which columns of the user's dataset are needed to answer their request.
You only ever see the column names at this stage."""
).strip()

VEGA_LITE_SYSTEM_PROMPT = textwrap.dedent(
    """You are a data analysis assistant that can create interactive visualizations using Vega-Lite JSON specifications.

When the user uploads data and asks for analysis or visualizations:
1. Analyze the data structure and content
2. Provide insights or answer their questions
3. Create appropriate visualizations using Vega-Lite

When creating charts or visualizations, respond with a JSON code block containing a valid Vega-Lite specification.

Format your response like this:
```json
{
  "$schema": "https://vega.github.io/schema/vega-lite/v5.json",
  "description": "A simple bar chart",
  "data": {
    "values": [
      {"category": "A", "value": 28},
      {"category": "B", "value": 55}
    ]
  },
  "mark": "bar",
  "encoding": {
    "x": {"field": "category", "type": "nominal"},
    "y": {"field": "value", "type": "quantitative"}
  }
}
```

Always include the $schema field and provide valid Vega-Lite v5 specifications. You can use marks like: bar, line, point, area, circle, square, and more.
Put at most one chart in a reply.

When data is provided, use the actual data in your Vega-Lite specifications by including the data values directly in the "data.values" field."""
).strip()


def _call_model(prepared, system_prompt, messages, max_tokens):
    provider = (prepared.get("llm_provider") or "openai").lower()
    if provider == "gemini":
        return call_llm_gemini(
            messages,
            system_prompt=system_prompt,
            model_name=prepared.get("llm_model_name"),
            api_key=prepared.get("api_key"),
            max_tokens=max_tokens,
        )
    return call_llm_openai(
        messages,
        system_prompt=system_prompt,
        model_name=prepared.get("llm_model_name"),
        api_key=prepared.get("api_key"),
        base_url=prepared.get("llm_base_url"),
        max_tokens=max_tokens,
    )


def _llm_settings(shared):
    return {
        "api_key": shared.get("api_key"),
        "llm_provider": shared.get("llm_provider"),
        "llm_model_name": shared.get("llm_model_name"),
        "llm_base_url": shared.get("llm_base_url"),
        "max_tokens": shared.get("max_tokens") or DEFAULT_MAX_TOKENS,
    }


def build_column_selection_prompt(message, columns):
    column_lines = "\n".join(f"- {column}" for column in columns)
    return (
        f"The dataset has these columns:\n{column_lines}\n\n"
        f"Request: {message}\n\n"
        f"Which of these columns are needed to answer the request?\n"
        f"Respond ONLY with a JSON array of the exact column names in a fenced block, for example:\n"
        f"```json\n"
        f'["{columns[0] if columns else "column_a"}"]\n'
        f"```\n"
    )


def build_data_message(message, rows, columns, rows_total):
    """Append the data section to the user's message for the answering round."""
    if not columns:
        return message
    if rows_total > len(rows):
        count_text = f"the first {len(rows)} of {rows_total} rows"
    else:
        count_text = f"{len(rows)} rows"
    return (
        f"{message}\n\n"
        f"I've uploaded a dataset. Here are {count_text}, limited to the columns relevant to this request.\n\n"
        f"Columns: {', '.join(columns)}\n\n"
        f"Data (JSON records):\n{json.dumps(rows, ensure_ascii=False, default=str)}"
    )


class SelectColumns(Node):
    """Round one: ask the model which columns matter, showing names only."""

    def prep(self, shared):
        prepared = _llm_settings(shared)
        prepared["message"] = shared["message"]
        prepared["columns"] = list(shared.get("columns") or [])
        return prepared

    def exec(self, prepared):
        prompt = build_column_selection_prompt(prepared["message"], prepared["columns"])
        logger.debug("Column selection prompt: %s", prompt)
        return _call_model(
            prepared,
            COLUMN_SELECTION_SYSTEM_PROMPT,
            [{"role": "user", "content": prompt}],
            min(prepared["max_tokens"], COLUMN_SELECTION_MAX_TOKENS),
        )

    def post(self, shared, prepared, exec_res):
        text = exec_res["content"]
        shared["token_usage"] = exec_res.get("usage", {})
        shared["column_selection_response"] = text
        chosen = parse_column_list(text, prepared["columns"])
        if chosen is None:
            logger.info("Column list could not be parsed; returning the raw reply")
            shared["response"] = text
            shared["truncated"] = bool(exec_res.get("truncated"))
            shared["round"] = "columns"
            return "unparsed"
        logger.info("Model selected columns: %s", chosen)
        shared["selected_columns"] = chosen
        shared["response"] = text
        shared["truncated"] = bool(exec_res.get("truncated"))
        shared["round"] = "columns"
        return "selected"


class AnswerQuestion(Node):
    """Round two: answer with the selected columns' rows and the conversation so far."""

    def prep(self, shared):
        prepared = _llm_settings(shared)
        rows = shared.get("rows") or []
        columns = shared.get("selected_columns") or []
        if columns:
            restricted = restrict_rows(rows, columns)
        else:
            restricted = []
        max_rows = shared.get("max_rows", DEFAULT_MAX_ROWS)
        capped, _ = truncate_rows(restricted, max_rows)
        rows_total = shared.get("rows_total") or len(rows)

        messages = [
            {"role": m["role"], "content": m["content"]}
            for m in (shared.get("history") or [])
        ]
        messages.append(
            {
                "role": "user",
                "content": build_data_message(shared["message"], capped, columns, rows_total),
            }
        )
        prepared["messages"] = messages
        prepared["rows_sent"] = len(capped)
        return prepared

    def exec(self, prepared):
        return _call_model(
            prepared,
            VEGA_LITE_SYSTEM_PROMPT,
            prepared["messages"],
            prepared["max_tokens"],
        )

    def post(self, shared, prepared, exec_res):
        shared["response"] = exec_res["content"]
        shared["truncated"] = bool(exec_res.get("truncated"))
        shared["token_usage"] = exec_res.get("usage", {})
        shared["rows_sent"] = prepared["rows_sent"]
        shared["round"] = "answer"
        return "answered"
