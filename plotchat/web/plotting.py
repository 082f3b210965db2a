"""Pull Vega-Lite specs out of model replies and render them with Altair."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import altair as alt

logger = logging.getLogger(__name__)

VEGA_LITE_MARKER = "vega-lite"

JSON_BLOCK_PATTERN = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)

# Top-level keys that select a compound chart class; anything else is a unit chart.
_COMPOUND_CHARTS = (
    ("layer", alt.LayerChart),
    ("hconcat", alt.HConcatChart),
    ("vconcat", alt.VConcatChart),
    ("concat", alt.ConcatChart),
    ("repeat", alt.RepeatChart),
    ("facet", alt.FacetChart),
)


@dataclass
class ChartExtraction:
    spec: Optional[Dict[str, Any]]
    text: str


def is_vega_lite_spec(candidate: Any) -> bool:
    if not isinstance(candidate, dict):
        return False
    schema = candidate.get("$schema")
    return isinstance(schema, str) and VEGA_LITE_MARKER in schema


def extract_chart_spec(text: str) -> ChartExtraction:
    """Split ``text`` into a chart spec and the remaining prose.

    Only the first ```json block is looked at. If it does not parse, or is not
    tagged with a Vega-Lite ``$schema``, the text comes back untouched.
    """
    if not text:
        return ChartExtraction(spec=None, text=text)
    match = JSON_BLOCK_PATTERN.search(text)
    if not match:
        return ChartExtraction(spec=None, text=text)
    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        logger.info("Fenced JSON block did not parse: %s", exc)
        return ChartExtraction(spec=None, text=text)
    if not is_vega_lite_spec(parsed):
        return ChartExtraction(spec=None, text=text)
    cleaned = (text[: match.start()] + text[match.end():]).strip()
    return ChartExtraction(spec=parsed, text=cleaned)


def build_chart(spec: Dict[str, Any]) -> alt.TopLevelMixin:
    """Validate ``spec`` against Altair's schema and return the chart object."""
    for key, chart_cls in _COMPOUND_CHARTS:
        if key in spec:
            return chart_cls.from_dict(spec)
    return alt.Chart.from_dict(spec)


def render_chart(placeholder, spec: Optional[Dict[str, Any]]) -> bool:
    """Draw ``spec`` into a Streamlit placeholder, replacing what was there.

    A spec that fails to build shows an error message in the placeholder
    instead of raising. Returns whether a chart was drawn.
    """
    placeholder.empty()
    if spec is None:
        return False
    try:
        chart = build_chart(spec)
        placeholder.altair_chart(chart, use_container_width=True)
    except Exception as exc:
        logger.warning("Chart rendering failed: %s", exc)
        placeholder.error(f"Error rendering chart: {exc}")
        return False
    return True
