from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

from .errors import QueryExecutionError

Role = Literal["user", "assistant"]
Row = Dict[str, Any]


@dataclass(frozen=True)
class ConversationTurn:
    """One message in a conversation log.

    ``summary`` marks the synthetic turn produced by the summarization
    reducer; it is never a real user or assistant message.
    """

    role: Role
    text: str
    summary: bool = False

    def render(self) -> str:
        return f"{self.role}: {self.text}"

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "text": self.text, "summary": self.summary}


@dataclass(frozen=True)
class QuerySuccess:
    """A query that ran; ``rows`` are column-keyed, in column order."""

    query: str
    rows: List[Row] = field(default_factory=list)


@dataclass(frozen=True)
class QueryFailure:
    """A query the database refused or aborted."""

    query: str
    message: str

    def raise_for_failure(self) -> None:
        raise QueryExecutionError(self.query, self.message)


QueryOutcome = QuerySuccess | QueryFailure


@dataclass
class AnswerEnvelope:
    """Structured answer returned for every question, success or failure.

    A non-empty ``sql`` does not imply the query ran successfully; check
    ``error``.
    """

    sql: str = ""
    results: List[Row] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"sql": self.sql, "results": self.results}
        if self.error is not None:
            data["error"] = self.error
        return data
