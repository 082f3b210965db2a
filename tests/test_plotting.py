from unittest.mock import MagicMock, patch

import altair as alt

from plotchat.web.plotting import build_chart, extract_chart_spec, render_chart

SCHEMA = "https://vega.github.io/schema/vega-lite/v5.json"

BAR_SPEC = {
    "$schema": SCHEMA,
    "data": {"values": [{"category": "A", "value": 28}, {"category": "B", "value": 55}]},
    "mark": "bar",
    "encoding": {
        "x": {"field": "category", "type": "nominal"},
        "y": {"field": "value", "type": "quantitative"},
    },
}


def test_extracts_spec_and_strips_block_from_text():
    text = (
        "Sales peak in B.\n"
        '```json\n{"$schema": "' + SCHEMA + '", "mark": "bar"}\n```\n'
        "Let me know if you need more."
    )
    result = extract_chart_spec(text)
    assert result.spec == {"$schema": SCHEMA, "mark": "bar"}
    assert "```" not in result.text
    assert result.text.startswith("Sales peak in B.")
    assert result.text.endswith("Let me know if you need more.")


def test_text_without_block_is_returned_unchanged():
    result = extract_chart_spec("No chart this time.")
    assert result.spec is None
    assert result.text == "No chart this time."


def test_block_without_vega_lite_schema_is_left_in_text():
    text = '```json\n{"columns": ["a", "b"]}\n```'
    result = extract_chart_spec(text)
    assert result.spec is None
    assert result.text == text


def test_invalid_json_block_is_left_in_text():
    text = '```json\n{"$schema": "' + SCHEMA + '", "mark": \n```'
    result = extract_chart_spec(text)
    assert result.spec is None
    assert result.text == text


def test_only_first_block_is_considered():
    text = (
        '```json\n{"note": "not a chart"}\n```\n'
        '```json\n{"$schema": "' + SCHEMA + '", "mark": "line"}\n```'
    )
    assert extract_chart_spec(text).spec is None


def test_build_chart_picks_layer_class_for_layered_spec():
    layered = {
        "$schema": SCHEMA,
        "data": BAR_SPEC["data"],
        "layer": [
            {"mark": "bar", "encoding": BAR_SPEC["encoding"]},
            {"mark": "point", "encoding": BAR_SPEC["encoding"]},
        ],
    }
    assert isinstance(build_chart(layered), alt.LayerChart)
    assert isinstance(build_chart(BAR_SPEC), alt.Chart)


def test_render_chart_draws_into_placeholder():
    placeholder = MagicMock()
    assert render_chart(placeholder, BAR_SPEC) is True
    placeholder.empty.assert_called_once()
    placeholder.altair_chart.assert_called_once()
    placeholder.error.assert_not_called()


def test_render_chart_failure_shows_error_message():
    placeholder = MagicMock()
    with patch("plotchat.web.plotting.build_chart", side_effect=ValueError("bad encoding")):
        assert render_chart(placeholder, BAR_SPEC) is False
    placeholder.empty.assert_called_once()
    placeholder.altair_chart.assert_not_called()
    placeholder.error.assert_called_once_with("Error rendering chart: bad encoding")


def test_render_chart_with_no_spec_only_clears():
    placeholder = MagicMock()
    assert render_chart(placeholder, None) is False
    placeholder.empty.assert_called_once()
    placeholder.altair_chart.assert_not_called()
