import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import streamlit as st
from websocket import create_connection


def setup_client_logging() -> logging.Logger:
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("nlqsql.streamlit")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "client.log", maxBytes=2_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)
    return logger


LOGGER = setup_client_logging()


def ask_ws(ws_url: str, session_id: str, message: str) -> dict[str, Any]:
    """Send one question over the backend WebSocket and return the result message."""
    LOGGER.info("Connecting ws_url=%s session_id=%s", ws_url, session_id)
    ws = create_connection(ws_url, timeout=120)
    try:
        ws.send(json.dumps({"session_id": session_id, "message": message}))
        payload = json.loads(ws.recv())
    finally:
        ws.close()

    if payload.get("type") == "error":
        err = payload.get("data") or "Unknown error"
        LOGGER.error("WS error: %s", err)
        raise RuntimeError(err)
    LOGGER.info(
        "Answer session_id=%s rows=%d in %s ms",
        session_id,
        len(payload["data"].get("results") or []),
        payload.get("response_time_ms"),
    )
    return payload


def render_result(payload: dict[str, Any]) -> str:
    """Draw one answer and return the text kept in the chat history."""
    data = payload["data"]
    sql = data.get("sql") or ""
    rows = data.get("results") or []
    error = data.get("error")

    if not sql:
        text = "The generated query was not a safe SELECT statement, so it was not run."
        st.warning(text)
        return text

    st.code(sql, language="sql")
    if error:
        st.error(error)
        return f"{sql}\n\nError: {error}"
    if rows:
        st.dataframe(rows)
    else:
        st.info("No results found")
    st.caption(f"{len(rows)} rows in {payload.get('response_time_ms')} ms")
    return f"```sql\n{sql}\n```\n{len(rows)} rows"


st.set_page_config(page_title="Ask your database", page_icon="🗄️", layout="centered")

st.title("Ask your database")

with st.sidebar:
    st.subheader("Connection")
    default_ws = "ws://localhost:8000/ws/nlq"
    ws_url = st.text_input("WebSocket URL", value=default_ws)
    session_id = st.text_input("Session ID", value=st.session_state.get("session_id", "streamlit-demo"))
    st.session_state["session_id"] = session_id
    st.markdown("---")
    if st.button("Clear chat"):
        st.session_state["messages"] = []

if "messages" not in st.session_state:
    st.session_state["messages"] = []

for m in st.session_state["messages"]:
    with st.chat_message(m["role"]):
        st.markdown(m["content"])

prompt = st.chat_input("Ask a question about your data…")
if prompt:
    st.session_state["messages"].append({"role": "user", "content": prompt})
    with st.chat_message("user"):
        st.markdown(prompt)

    with st.chat_message("assistant"):
        try:
            full = render_result(ask_ws(ws_url, session_id, prompt))
        except (OSError, RuntimeError, ValueError) as e:
            full = f"Error: {e}"
            st.error(full)

    st.session_state["messages"].append({"role": "assistant", "content": full})
