import logging
import sqlite3
from pathlib import Path
from typing import Dict, List

from ..errors import QueryExecutionError, UnsafeQueryError
from ..models import AnswerEnvelope, QueryFailure, Row
from ..services import prompts
from ..services.conversation import (
    RECENT,
    SUMMARIZED,
    ConversationHistory,
    ConversationStore,
    SummarizationReducer,
    TruncationReducer,
)
from ..services.database import extract_schema, open_connection, run_query
from ..services.llm import LanguageModelClient, make_llm_client
from ..services.prompts import PromptComposer
from ..services.sql_guard import clean_sql_output, ensure_safe_select
from ..settings import get_settings

logger = logging.getLogger(__name__)

NO_RESULTS = "No results found"
DEFAULT_SESSION = "default"


def render_answer(rows: List[Row]) -> str:
    """Plain-text answer: one ``column: value`` line per row."""
    if not rows:
        return NO_RESULTS
    lines = [", ".join(f"{k}: {v}" for k, v in row.items()) for row in rows]
    return "\n".join(lines).strip()


class NlqRetrievalService:
    """Answers natural-language questions with one validated SELECT.

    Per question: narrow the schema, generate SQL, validate, execute, and on
    an execution failure regenerate exactly once. Conversation logs are kept
    per session and each session runs one question at a time.
    """

    def __init__(
        self,
        llm: LanguageModelClient,
        db_path: Path,
        *,
        composer: PromptComposer | None = None,
        store: ConversationStore | None = None,
        db_read_only: bool = True,
        query_timeout_seconds: float = 30.0,
        history_target_count: int = 4,
        retry_error_chars: int = 50,
        summarize_system_prompt: str | None = None,
    ) -> None:
        self.llm = llm
        self.db_path = Path(db_path)
        self.composer = composer or PromptComposer()
        self.store = store or ConversationStore()
        self.db_read_only = db_read_only
        self.query_timeout_seconds = query_timeout_seconds
        self.retry_error_chars = retry_error_chars
        self.truncation = TruncationReducer(target_count=history_target_count)
        self.summarization = SummarizationReducer(
            llm,
            target_count=history_target_count,
            system_prompt=summarize_system_prompt,
        )

    def get_history(self, session_id: str) -> ConversationHistory:
        return self.store.get(session_id).history

    async def ask(self, question: str, session_id: str = DEFAULT_SESSION) -> AnswerEnvelope:
        """Answer ``question`` within ``session_id``'s conversation.

        Validator rejections and execution failures come back as envelopes.
        SchemaUnavailableError and LLMServiceError propagate.
        """
        session = self.store.get(session_id)
        async with session.lock:
            logger.info("Question session_id=%s: %s", session_id, question[:200])
            return await self._answer(question, session.history)

    async def _answer(self, question: str, history: ConversationHistory) -> AnswerEnvelope:
        history.append_turn("user", question)
        bindings: Dict[str, str] = {
            "CONVERSATION": history.snapshot(SUMMARIZED),
            "RECENT": history.snapshot(RECENT),
            "USER": question,
        }

        with open_connection(self.db_path, read_only=self.db_read_only) as conn:
            full_schema = await extract_schema(conn)

            relevant_schema = await self._complete(
                prompts.RELEVANT_SCHEMA, {**bindings, "SCHEMA": full_schema}
            )
            query = clean_sql_output(
                await self._complete(
                    prompts.NLQ_TO_SQL, {**bindings, "SCHEMA": relevant_schema.strip()}
                )
            )
            logger.debug("Generated SQL: %s", query)

            try:
                try:
                    rows = await self._validate_and_run(conn, query)
                except QueryExecutionError as first:
                    logger.warning("Error executing SQL: %s. Retrying...", first.message)
                    query = clean_sql_output(
                        await self._complete(
                            prompts.RETRY,
                            {
                                **bindings,
                                "SCHEMA": full_schema,
                                "FAILED_SQL": first.query,
                                "ERROR": first.message[: self.retry_error_chars],
                            },
                        )
                    )
                    logger.info("Retry SQL: %s", query)
                    try:
                        rows = await self._validate_and_run(conn, query)
                    except QueryExecutionError as last:
                        logger.warning("Retry also failed: %s", last.message)
                        return AnswerEnvelope(
                            sql=query,
                            error=(
                                f"Both attempts failed. First error: {first.message}. "
                                f"Last error: {last.message}"
                            ),
                        )
            except UnsafeQueryError:
                return AnswerEnvelope()

        await self._record_answer(history, rows)
        return AnswerEnvelope(sql=query, results=rows)

    async def _complete(self, template_name: str, bindings: Dict[str, str]) -> str:
        return await self.llm.complete(self.composer.compose(template_name, bindings))

    async def _validate_and_run(self, conn: sqlite3.Connection, query: str) -> List[Row]:
        ensure_safe_select(query)
        outcome = await run_query(conn, query, self.query_timeout_seconds)
        if isinstance(outcome, QueryFailure):
            outcome.raise_for_failure()
        return outcome.rows

    async def _record_answer(self, history: ConversationHistory, rows: List[Row]) -> None:
        history.append_turn("assistant", render_answer(rows))
        await history.reduce(self.truncation, self.summarization)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Recent chat:\n%s", history.snapshot(RECENT))
            logger.debug("Summarized chat:\n%s", history.snapshot(SUMMARIZED))


_SERVICE: NlqRetrievalService | None = None


def get_retrieval_service() -> NlqRetrievalService:
    """Return the process-wide service built from settings (created on first use)."""
    global _SERVICE
    if _SERVICE is None:
        settings = get_settings()
        _SERVICE = NlqRetrievalService(
            llm=make_llm_client(),
            db_path=settings.db_sqlite_path,
            composer=PromptComposer(settings.prompts_dir),
            db_read_only=settings.db_read_only,
            query_timeout_seconds=settings.query_timeout_seconds,
            history_target_count=settings.history_target_count,
            retry_error_chars=settings.retry_error_chars,
            summarize_system_prompt=settings.summarize_history_system_prompt,
        )
    return _SERVICE


async def ask(question: str, session_id: str = DEFAULT_SESSION) -> AnswerEnvelope:
    return await get_retrieval_service().ask(question, session_id)


__all__ = [
    "NlqRetrievalService",
    "ask",
    "get_retrieval_service",
    "render_answer",
]
