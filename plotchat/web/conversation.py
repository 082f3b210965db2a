"""Client side of the column-negotiation protocol.

The negotiation state lives in the browser session and is passed in and out
explicitly. A submit against an ``Unselected`` dataset first sends only the
column names; once the API reports the model's choice the data round is sent
right away with rows restricted to those columns.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from plotchat.protocol import (
    NegotiationState,
    Record,
    Selected,
    Unselected,
    dataset_columns,
    restrict_rows,
    selected_columns,
    state_from_columns,
    truncate_rows,
)
from plotchat.web.ingest import SyncResult
from plotchat.web.plotting import extract_chart_spec
from plotchat.web.services import call_chat_api

logger = logging.getLogger(__name__)

Message = Dict[str, str]


@dataclass
class TurnOutcome:
    """What the page needs after one submit."""

    response: str
    text: str
    state: NegotiationState
    history: List[Message]
    spec: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)
    rows_sent: int = 0


def state_after_sync(state: NegotiationState, result: SyncResult) -> NegotiationState:
    """Any file added or removed invalidates the column choice."""
    if result.changed:
        return Unselected()
    return state


def build_column_request(message: str, columns: Sequence[str], secret: str) -> Dict[str, Any]:
    return {
        "message": message,
        "sharedSecret": secret,
        "columns": list(columns),
    }


def build_answer_request(
    message: str,
    *,
    secret: str,
    rows: Sequence[Record],
    state: NegotiationState,
    history: Sequence[Message],
    max_rows: Optional[int],
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "message": message,
        "sharedSecret": secret,
        "conversationHistory": list(history),
        "maxRows": max_rows,
    }
    columns = selected_columns(state)
    if columns:
        capped, _ = truncate_rows(rows, max_rows)
        payload["datasetRows"] = restrict_rows(capped, columns)
        payload["selectedColumns"] = columns
        payload["rowsTotal"] = len(rows)
    return payload


def truncation_warning(total: int, max_rows: Optional[int]) -> Optional[str]:
    if max_rows is None or total <= max_rows:
        return None
    return (
        f"Only the first {max_rows} of {total} rows were sent to the model; "
        f"conclusions are based on that prefix of the data."
    )


OUTPUT_LIMIT_WARNING = "The model's reply hit the output length limit and may be incomplete."


def submit_message(
    base_url: str,
    message: str,
    *,
    secret: str,
    rows: Sequence[Record],
    state: NegotiationState,
    history: Sequence[Message],
    max_rows: Optional[int],
    columns: Optional[Sequence[str]] = None,
    on_state_change: Optional[Callable[[NegotiationState], None]] = None,
    timeout: int = 120,
) -> TurnOutcome:
    """Run one user submit against the API and return the new session values.

    ``columns`` defaults to the keys found in ``rows``; pass the dataset's
    header so files without data rows still get a column round. History grows
    only when a round completes; API failures propagate and leave the
    caller's history untouched.
    """
    history = list(history)
    warnings: List[str] = []

    columns = list(columns or []) or dataset_columns(rows)
    if columns and isinstance(state, Unselected):
        data = call_chat_api(base_url, build_column_request(message, columns, secret), timeout=timeout)
        if data.get("truncated"):
            warnings.append(OUTPUT_LIMIT_WARNING)
        state = state_from_columns(data.get("selectedColumns"))
        if not isinstance(state, Selected):
            # No usable column list: show the raw reply and stop here.
            response = data.get("response", "")
            history.extend([{"role": "user", "content": message}, {"role": "assistant", "content": response}])
            return TurnOutcome(
                response=response,
                text=response,
                state=state,
                history=history,
                warnings=warnings,
            )
        logger.info("Columns selected: %s", state.columns)
        if on_state_change:
            on_state_change(state)

    if rows:
        warning = truncation_warning(len(rows), max_rows)
        if warning:
            warnings.append(warning)

    payload = build_answer_request(
        message,
        secret=secret,
        rows=rows,
        state=state,
        history=history,
        max_rows=max_rows,
    )
    data = call_chat_api(base_url, payload, timeout=timeout)
    response = data.get("response", "")
    if data.get("truncated") and OUTPUT_LIMIT_WARNING not in warnings:
        warnings.append(OUTPUT_LIMIT_WARNING)

    extraction = extract_chart_spec(response)
    history.extend([{"role": "user", "content": message}, {"role": "assistant", "content": response}])
    return TurnOutcome(
        response=response,
        text=extraction.text,
        state=state,
        history=history,
        spec=extraction.spec,
        warnings=warnings,
        rows_sent=len(payload.get("datasetRows") or []),
    )
