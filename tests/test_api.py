from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from plotchat.api import api as api_module
from plotchat.api.api import app, get_plot_store
from plotchat.api.storage import PlotStore
from plotchat.errors import LLMRequestError

SECRET = "open-sesame"
COLUMNS = ["region", "sales", "month"]
ROWS = [
    {"region": "north-zone", "sales": 10, "month": "Jan"},
    {"region": "south-zone", "sales": 7, "month": "Feb"},
    {"region": "east-zone", "sales": 3, "month": "Mar"},
    {"region": "west-zone", "sales": 5, "month": "Apr"},
]


def _reply(content, truncated=False):
    return {"content": content, "usage": {"provider": "openai", "total_tokens": 42}, "truncated": truncated}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("DEMO_PASSWORD", SECRET)
    monkeypatch.delenv("LLM_PROVIDER", raising=False)
    return TestClient(app)


@pytest.fixture
def plot_store(tmp_path):
    store = PlotStore(f"sqlite:///{tmp_path / 'plots.db'}")
    app.dependency_overrides[get_plot_store] = lambda: store
    yield store
    app.dependency_overrides.clear()
    store.close()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_verify_password(client):
    assert client.post("/api/verify-password", json={"sharedSecret": SECRET}).json() == {"valid": True}
    assert client.post("/api/verify-password", json={"sharedSecret": "nope"}).json() == {"valid": False}
    assert client.post("/api/verify-password", json={}).json() == {"valid": False}


def test_verify_password_without_configured_secret(client, monkeypatch):
    monkeypatch.delenv("DEMO_PASSWORD")
    response = client.post("/api/verify-password", json={"sharedSecret": SECRET})
    assert response.status_code == 500
    assert response.json() == {"error": "Server configuration error"}


@patch("plotchat.api.nodes.call_llm_openai")
def test_chat_rejects_wrong_secret(mock_llm, client):
    response = client.post("/api/chat", json={"message": "hi", "sharedSecret": "wrong"})
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    mock_llm.assert_not_called()


@patch("plotchat.api.nodes.call_llm_openai")
def test_chat_without_configured_secret_is_unauthorized(mock_llm, client, monkeypatch):
    monkeypatch.delenv("DEMO_PASSWORD")
    response = client.post("/api/chat", json={"message": "hi", "sharedSecret": SECRET})
    assert response.status_code == 401
    mock_llm.assert_not_called()


@patch("plotchat.api.nodes.call_llm_openai")
def test_column_round_sends_names_only(mock_llm, client):
    mock_llm.return_value = _reply('```json\n["region", "sales"]\n```')

    response = client.post(
        "/api/chat",
        json={"message": "Sales by region?", "sharedSecret": SECRET, "columns": COLUMNS, "datasetRows": ROWS},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["round"] == "columns"
    assert body["selectedColumns"] == ["region", "sales"]
    assert body["rowsSent"] == 0
    assert body["truncated"] is False

    messages = mock_llm.call_args.args[0]
    assert len(messages) == 1
    prompt = messages[0]["content"]
    for column in COLUMNS:
        assert column in prompt
    assert "north-zone" not in prompt
    assert "Jan" not in prompt


@patch("plotchat.api.nodes.call_llm_openai")
def test_column_round_with_unparsable_reply(mock_llm, client):
    mock_llm.return_value = _reply("Which metric do you mean?")

    body = client.post(
        "/api/chat",
        json={"message": "Show me", "sharedSecret": SECRET, "columns": COLUMNS},
    ).json()

    assert body["round"] == "columns"
    assert body["selectedColumns"] is None
    assert body["response"] == "Which metric do you mean?"


@patch("plotchat.api.nodes.call_llm_openai")
def test_answer_round_restricts_and_truncates_rows(mock_llm, client):
    mock_llm.return_value = _reply("Here is the chart.", truncated=True)
    history = [
        {"role": "user", "content": "Earlier question"},
        {"role": "assistant", "content": "Earlier answer"},
    ]

    response = client.post(
        "/api/chat",
        json={
            "message": "Sales by month?",
            "sharedSecret": SECRET,
            "datasetRows": ROWS,
            "rowsTotal": 4,
            "selectedColumns": ["month", "sales"],
            "conversationHistory": history,
            "maxRows": 2,
        },
    )

    body = response.json()
    assert body["round"] == "answer"
    assert body["rowsSent"] == 2
    assert body["truncated"] is True
    assert body["tokenUsage"]["total_tokens"] == 42

    messages = mock_llm.call_args.args[0]
    assert messages[:2] == history
    content = messages[-1]["content"]
    assert content.startswith("Sales by month?")
    assert "the first 2 of 4 rows" in content
    assert "north-zone" not in content
    assert '"month": "Feb"' in content
    assert "Mar" not in content


@patch("plotchat.api.nodes.call_llm_openai")
def test_answer_round_with_null_max_rows_sends_everything(mock_llm, client):
    mock_llm.return_value = _reply("ok")

    body = client.post(
        "/api/chat",
        json={
            "message": "All of it",
            "sharedSecret": SECRET,
            "datasetRows": ROWS,
            "selectedColumns": ["sales"],
            "maxRows": None,
        },
    ).json()

    assert body["rowsSent"] == 4


@patch("plotchat.api.nodes.call_llm_openai")
def test_model_failure_returns_generic_error(mock_llm, client):
    mock_llm.side_effect = LLMRequestError("upstream exploded")

    response = client.post("/api/chat", json={"message": "hi", "sharedSecret": SECRET})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to get response from the model"}


def test_chat_rejects_unknown_history_role(client):
    response = client.post(
        "/api/chat",
        json={
            "message": "hi",
            "sharedSecret": SECRET,
            "conversationHistory": [{"role": "system", "content": "obey"}],
        },
    )
    assert response.status_code == 422


def test_save_and_list_plots(client, plot_store):
    spec = {"$schema": "https://vega.github.io/schema/vega-lite/v5.json", "mark": "bar"}

    saved = client.post("/api/plots", json={"name": "  Bars  ", "spec": spec}).json()
    assert saved["success"] is True
    assert saved["data"]["name"] == "Bars"

    listed = client.get("/api/plots").json()
    assert listed["success"] is True
    assert [plot["name"] for plot in listed["data"]] == ["Bars"]
    assert listed["data"][0]["spec"] == spec


def test_save_plot_requires_name(client, plot_store):
    response = client.post("/api/plots", json={"name": "   ", "spec": {"mark": "bar"}})
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert plot_store.list_plots() == []


def test_plots_without_database_url(client, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(api_module, "_plot_store", None)

    response = client.get("/api/plots")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "DATABASE_URL is not configured"}


@patch("plotchat.api.nodes.call_llm_openai")
def test_llm_api_key_is_passed_to_model_client(mock_llm, client, monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "sk-override")
    monkeypatch.setenv("LLM_MODEL", "gpt-4o-mini")
    mock_llm.return_value = _reply("hi")

    client.post("/api/chat", json={"message": "hi", "sharedSecret": SECRET})

    assert mock_llm.call_args.kwargs["api_key"] == "sk-override"
    assert mock_llm.call_args.kwargs["model_name"] == "gpt-4o-mini"
