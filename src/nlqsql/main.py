import base64
import json
import logging
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware

from .errors import LLMServiceError, NlqError, SchemaUnavailableError
from .models import AnswerEnvelope
from .pipeline import get_retrieval_service
from .pipeline.service import DEFAULT_SESSION
from .services.conversation import LOG_NAMES
from .settings import get_settings


def setup_server_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``nlqsql`` logger tree and return the server logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger("nlqsql")
    if not root.handlers:
        root.setLevel(level)
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        root.addHandler(ch)

        fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    return logging.getLogger("nlqsql.server")


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


def _encode_blob(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def envelope_payload(envelope: AnswerEnvelope) -> dict[str, Any]:
    """JSON-ready envelope; BLOB values are base64 encoded."""
    return jsonable_encoder(envelope.to_dict(), custom_encoder={bytes: _encode_blob})


settings = get_settings()
LOGGER = setup_server_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the database target at startup."""
    db_path = Path(settings.db_sqlite_path)
    if db_path.exists():
        LOGGER.info("Answering questions over %s", db_path)
    else:
        LOGGER.warning("Database %s does not exist yet; run `python -m nlqsql.demo_data`", db_path)

    yield

    LOGGER.info("Shutting down...")


app = FastAPI(
    title="Natural Language to SQL",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _timed_ask(question: str, session_id: str) -> tuple[AnswerEnvelope, int]:
    started = time.perf_counter()
    envelope = await get_retrieval_service().ask(question, session_id)
    return envelope, int((time.perf_counter() - started) * 1000)


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}


@app.get("/api/nlq")
async def ask_question(
    q: str = Query(..., description="The natural language question."),
    session_id: str = Query(DEFAULT_SESSION),
) -> dict[str, Any]:
    """Answer one question.

    Returns:
        dict[str, Any]: ``{"result": {"sql", "results", "error"?}, "response_time_ms": int}``.
        Unsafe or doubly failed queries still return 200 with empty results.
    """
    question = q.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Empty question")

    try:
        envelope, elapsed_ms = await _timed_ask(question, session_id)
    except SchemaUnavailableError as e:
        LOGGER.error("Schema unavailable: %s", e)
        raise HTTPException(status_code=503, detail=str(e)) from e
    except LLMServiceError as e:
        LOGGER.error("Language model unavailable: %s", e)
        raise HTTPException(status_code=502, detail=str(e)) from e
    except NlqError as e:
        LOGGER.exception("Question failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e

    return {"result": envelope_payload(envelope), "response_time_ms": elapsed_ms}


@app.get("/api/sessions/{session_id}/history")
async def session_history(session_id: str) -> dict[str, Any]:
    """Return the full, recent and summarized logs of a session."""
    store = get_retrieval_service().store
    if session_id not in store:
        raise HTTPException(status_code=404, detail="Unknown session")
    history = store.get(session_id).history
    return {
        "session_id": session_id,
        **{name: [t.to_dict() for t in history.turns(name)] for name in LOG_NAMES},
    }


@app.delete("/api/sessions/{session_id}")
async def reset_session(session_id: str) -> dict[str, Any]:
    """Forget a session's conversation."""
    deleted = get_retrieval_service().store.reset(session_id)
    LOGGER.info("Reset session_id=%s deleted=%s", session_id, deleted)
    return {"deleted": deleted}


@app.websocket("/ws/nlq")
async def nlq_ws(websocket: WebSocket) -> None:
    """WebSocket endpoint: client sends { session_id, message }, server replies once.

    Response Format:
        - {"type": "result", "data": {...}, "response_time_ms": int}
        - {"type": "error", "data": str}
    """
    await websocket.accept()
    try:
        raw = await websocket.receive_text()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            LOGGER.error("Invalid WS payload (not JSON): %s", e)
            await websocket.send_json({"type": "error", "data": "Invalid JSON payload"})
            await websocket.close()
            return

        session_id = str(payload.get("session_id") or DEFAULT_SESSION)
        message = str(payload.get("message") or "").strip()

        if not message:
            await websocket.send_json({"type": "error", "data": "Empty message"})
            await websocket.close()
            return

        LOGGER.info("WS question session_id=%s", session_id)

        try:
            envelope, elapsed_ms = await _timed_ask(message, session_id)
        except NlqError as e:
            LOGGER.exception("Question failed: %s", e)
            await websocket.send_json({"type": "error", "data": str(e)})
            await websocket.close()
            return

        await websocket.send_json(
            {
                "type": "result",
                "data": envelope_payload(envelope),
                "response_time_ms": elapsed_ms,
            }
        )
        await websocket.close()

    except WebSocketDisconnect:
        LOGGER.info("WS disconnect")
