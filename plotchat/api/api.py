import hmac
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from plotchat.api.main import run_chat_turn
from plotchat.api.storage import PlotStore
from plotchat.errors import AuthError, ConfigurationError, PersistenceError, ServiceError, UpstreamError
from plotchat.protocol import DEFAULT_MAX_ROWS

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)

app = FastAPI(title="PlotChat API")

_plot_store: Optional[PlotStore] = None


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatMessage(BaseModel):
    role: str = Field(pattern="^(user|assistant)$")
    content: str


class ChatRequest(_CamelModel):
    message: str
    shared_secret: Optional[str] = Field(None, alias="sharedSecret")
    columns: Optional[List[str]] = None
    dataset_rows: Optional[List[Dict[str, Any]]] = Field(None, alias="datasetRows")
    rows_total: Optional[int] = Field(None, alias="rowsTotal", ge=0)
    conversation_history: List[ChatMessage] = Field(default_factory=list, alias="conversationHistory")
    selected_columns: Optional[List[str]] = Field(None, alias="selectedColumns")
    # Explicit null sends every row
    max_rows: Optional[int] = Field(DEFAULT_MAX_ROWS, alias="maxRows", ge=1)
    provider: Optional[str] = None
    model_name: Optional[str] = Field(None, alias="modelName")


class VerifyRequest(_CamelModel):
    shared_secret: Optional[str] = Field(None, alias="sharedSecret")


class SavePlotRequest(BaseModel):
    name: str
    spec: Dict[str, Any]


def _resolve_secret() -> Optional[str]:
    return os.getenv("DEMO_PASSWORD") or None


def _resolve_llm(provider: Optional[str], model_name: Optional[str]) -> Tuple[str, Optional[str], Optional[str], Optional[str]]:
    resolved_provider = (provider or os.getenv("LLM_PROVIDER", "openai")).lower()
    resolved_model = model_name or os.getenv("LLM_MODEL")
    resolved_base_url = os.getenv("LLM_BASE_URL")
    resolved_key = os.getenv("LLM_API_KEY")
    return resolved_provider, resolved_model, resolved_base_url, resolved_key


def _resolve_max_tokens() -> int:
    return int(os.getenv("LLM_MAX_TOKENS", "4096"))


def _secret_matches(candidate: Optional[str], expected: str) -> bool:
    if candidate is None:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def get_plot_store() -> PlotStore:
    global _plot_store
    if _plot_store is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise ConfigurationError("DATABASE_URL is not configured")
        _plot_store = PlotStore(database_url)
    return _plot_store


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    content = exc.to_dict()
    if request.url.path.startswith("/api/plots"):
        content = {"success": False, "error": exc.message}
    return JSONResponse(status_code=exc.status_code, content=content)


def _build_chat_response(shared: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "response": shared.get("response", ""),
        "selectedColumns": shared.get("selected_columns"),
        "truncated": bool(shared.get("truncated")),
        "round": shared.get("round"),
        "rowsSent": shared.get("rows_sent", 0),
        "tokenUsage": shared.get("token_usage", {}),
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/verify-password")
def verify_password(req: VerifyRequest):
    expected = _resolve_secret()
    if not expected:
        raise ConfigurationError("Server configuration error")
    return {"valid": _secret_matches(req.shared_secret, expected)}


@app.post("/api/chat")
def chat(req: ChatRequest):
    expected = _resolve_secret()
    if not expected or not _secret_matches(req.shared_secret, expected):
        raise AuthError("Unauthorized")

    provider, model_name, base_url, api_key = _resolve_llm(req.provider, req.model_name)
    try:
        shared = run_chat_turn(
            req.message,
            columns=req.columns,
            rows=req.dataset_rows,
            rows_total=req.rows_total,
            history=[m.model_dump() for m in req.conversation_history],
            selected_columns=req.selected_columns,
            max_rows=req.max_rows,
            api_key=api_key,
            provider=provider,
            model_name=model_name,
            base_url=base_url,
            max_tokens=_resolve_max_tokens(),
        )
    except UpstreamError:
        logger.exception("Model call failed")
        return JSONResponse(status_code=500, content={"error": "Failed to get response from the model"})
    return _build_chat_response(shared)


@app.get("/api/plots")
def list_plots(store: PlotStore = Depends(get_plot_store)):
    try:
        plots = store.list_plots()
    except PersistenceError as exc:
        return JSONResponse(status_code=500, content={"success": False, "error": exc.message})
    return {"success": True, "data": plots}


@app.post("/api/plots")
def save_plot(req: SavePlotRequest, store: PlotStore = Depends(get_plot_store)):
    name = req.name.strip()
    if not name:
        return JSONResponse(status_code=400, content={"success": False, "error": "Plot name is required"})
    try:
        saved = store.save_plot(name, req.spec)
    except PersistenceError as exc:
        return JSONResponse(status_code=500, content={"success": False, "error": exc.message})
    return {"success": True, "data": saved}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
