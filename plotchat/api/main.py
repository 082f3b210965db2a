import argparse
import logging
import time
from typing import Any, Dict, List, Optional

from plotchat.api.flow import create_chat_flow
from plotchat.protocol import DEFAULT_MAX_ROWS, dataset_columns

logger = logging.getLogger(__name__)


def run_chat_turn(
    message: str,
    *,
    columns: Optional[List[str]] = None,
    rows: Optional[List[Dict[str, Any]]] = None,
    rows_total: Optional[int] = None,
    history: Optional[List[Dict[str, str]]] = None,
    selected_columns: Optional[List[str]] = None,
    max_rows: Optional[int] = DEFAULT_MAX_ROWS,
    api_key: Optional[str] = None,
    provider: Optional[str] = None,
    model_name: Optional[str] = None,
    base_url: Optional[str] = None,
    max_tokens: Optional[int] = None,
    auto_advance: bool = False,
) -> Dict[str, Any]:
    """Run one request of the column-negotiation protocol and return the shared store.

    A dataset described by ``columns`` or ``rows`` with no ``selected_columns``
    gets the column-selection round; everything else goes to the answering
    round. With ``auto_advance`` a successful selection runs the answer too.
    """
    rows = rows or []
    columns = list(columns or []) or dataset_columns(rows)
    needs_selection = bool(columns) and not selected_columns
    shared: Dict[str, Any] = {
        "message": message,
        "columns": columns,
        "rows": rows,
        "rows_total": rows_total if rows_total is not None else len(rows),
        "history": list(history or []),
        "selected_columns": list(selected_columns or []) or None,
        "max_rows": max_rows,
        "api_key": api_key,
        "llm_provider": provider,
        "llm_model_name": model_name,
        "llm_base_url": base_url,
        "max_tokens": max_tokens,
        "truncated": False,
        "rows_sent": 0,
    }

    start = time.perf_counter()
    flow = create_chat_flow(needs_selection, auto_advance=auto_advance)
    flow.run(shared)
    shared["total_duration_s"] = round(time.perf_counter() - start, 3)
    logger.info(
        "Chat turn finished: round=%s selected=%s duration=%ss",
        shared.get("round"),
        shared.get("selected_columns"),
        shared["total_duration_s"],
    )
    return shared


if __name__ == "__main__":
    from plotchat.web.ingest import read_table

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    parser = argparse.ArgumentParser(description="Ask one question about a table from the command line.")
    parser.add_argument("--message", required=True, type=str)
    parser.add_argument("--data", default=None, type=str, help="CSV/TSV/Excel file to ask about")
    parser.add_argument("--max_rows", default=DEFAULT_MAX_ROWS, type=int)
    parser.add_argument("--all_rows", action="store_true")
    parser.add_argument("--provider", default=None, choices=["openai", "gemini"])
    parser.add_argument("--model_name", default=None, type=str)
    parser.add_argument("--base_url", default=None, type=str)
    args = parser.parse_args()

    table_rows: List[Dict[str, Any]] = []
    if args.data:
        with open(args.data, "rb") as handle:
            table_rows = read_table(handle.read(), args.data)

    result = run_chat_turn(
        args.message,
        rows=table_rows,
        max_rows=None if args.all_rows else args.max_rows,
        provider=args.provider,
        model_name=args.model_name,
        base_url=args.base_url,
        auto_advance=True,
    )
    if result.get("selected_columns"):
        print(f"Selected columns: {', '.join(result['selected_columns'])}")
    print(result.get("response", ""))
    if result.get("truncated"):
        print("[warning] The reply hit the output length limit and may be incomplete.")
