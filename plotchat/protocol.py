"""Column-negotiation state and the row helpers both tiers share.

A dataset starts out ``Unselected``. The first question about it only shows
the model the column names and asks which of them matter; a parsable answer
moves the dataset to ``Selected(columns)``, after which every request carries
rows restricted to those columns and capped to a prefix of ``max_rows``.
Adding or removing a file puts the dataset back to ``Unselected``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import yaml

Record = Dict[str, Any]

DEFAULT_MAX_ROWS = 1000

_LANGUAGE_TAGS = {"", "json", "yaml", "yml"}
_BRACKET_LIST_PATTERN = re.compile(r"\[.*?\]", re.DOTALL)


@dataclass(frozen=True)
class Unselected:
    """No column subset has been chosen for the current dataset."""


@dataclass(frozen=True)
class Selected:
    columns: Tuple[str, ...]


NegotiationState = Union[Unselected, Selected]


def state_from_columns(columns: Optional[Iterable[str]]) -> NegotiationState:
    cleaned = tuple(dict.fromkeys(c for c in (columns or []) if c))
    if not cleaned:
        return Unselected()
    return Selected(cleaned)


def selected_columns(state: NegotiationState) -> Optional[List[str]]:
    if isinstance(state, Selected):
        return list(state.columns)
    return None


def dataset_columns(rows: Iterable[Record]) -> List[str]:
    """Union of the keys of ``rows`` in first-seen order."""
    seen: Dict[str, None] = {}
    for row in rows:
        for key in row.keys():
            seen.setdefault(str(key), None)
    return list(seen)


def restrict_rows(rows: Iterable[Record], columns: Sequence[str]) -> List[Record]:
    """Project every row onto ``columns``; absent values become ``None``."""
    return [{column: row.get(column) for column in columns} for row in rows]


def truncate_rows(rows: Sequence[Record], max_rows: Optional[int]) -> Tuple[List[Record], bool]:
    """Return the first ``max_rows`` rows and whether anything was dropped.

    ``None`` means no cap.
    """
    if max_rows is not None and max_rows < 0:
        raise ValueError("max_rows must be non-negative")
    if max_rows is None or len(rows) <= max_rows:
        return list(rows), False
    return list(rows[:max_rows]), True


def _candidate_payload(text: str) -> Optional[str]:
    cleaned = text.strip()
    if "```" in cleaned:
        parts = cleaned.split("```", 2)
        if len(parts) == 3:
            block = parts[1]
            first_line, _, rest = block.partition("\n")
            if first_line.strip().lower() in _LANGUAGE_TAGS:
                block = rest
            return block.strip()
    match = _BRACKET_LIST_PATTERN.search(cleaned)
    if match:
        return match.group(0)
    return cleaned or None


def parse_column_list(text: Optional[str], available: Sequence[str]) -> Optional[List[str]]:
    """Read the model's column choice out of ``text``.

    Looks at the first fenced block, else the first bracketed list. Accepts a
    list of names or a mapping with a ``columns`` list. Unknown names are
    dropped; ``None`` means nothing usable was found.
    """
    if not text:
        return None
    payload = _candidate_payload(text)
    if payload is None:
        return None
    try:
        parsed = yaml.safe_load(payload)
    except yaml.YAMLError:
        return None
    if isinstance(parsed, dict):
        parsed = parsed.get("columns")
    if not isinstance(parsed, list):
        return None

    known = set(available)
    chosen: List[str] = []
    for item in parsed:
        if not isinstance(item, str):
            continue
        name = item.strip()
        if name in known and name not in chosen:
            chosen.append(name)
    return chosen or None
