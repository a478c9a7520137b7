"""Per-session conversation logs and the reducers that keep them short.

Each session holds three logs fed with the same turns:

- ``full``: every turn, never reduced.
- ``recent``: a sliding window, reduced by TruncationReducer.
- ``summarized``: one model-written summary turn plus a window, reduced by
  SummarizationReducer.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence

from ..models import ConversationTurn, Role
from .llm import LanguageModelClient

logger = logging.getLogger(__name__)

FULL = "full"
RECENT = "recent"
SUMMARIZED = "summarized"
LOG_NAMES = (FULL, RECENT, SUMMARIZED)


def render_turns(turns: Sequence[ConversationTurn]) -> str:
    """Render turns as ``role: text`` lines, oldest first."""
    return "\n".join(turn.render() for turn in turns)


class LogReducer(Protocol):
    async def reduce(self, turns: Sequence[ConversationTurn]) -> List[ConversationTurn]:
        ...


class TruncationReducer:
    """Keep only the most recent ``target_count`` turns."""

    def __init__(self, target_count: int = 4) -> None:
        if target_count < 1:
            raise ValueError("target_count must be at least 1")
        self.target_count = target_count

    async def reduce(self, turns: Sequence[ConversationTurn]) -> List[ConversationTurn]:
        return list(turns[-self.target_count:])


class SummarizationReducer:
    """Fold turns older than the last ``target_count`` into one summary turn.

    The log is reduced only when it holds more than ``target_count`` real
    turns; an existing summary turn is folded into the next summary rather
    than counted. The result is the new summary followed by the most recent
    ``target_count`` turns.
    """

    def __init__(
        self,
        llm: LanguageModelClient,
        target_count: int = 4,
        system_prompt: str | None = None,
    ) -> None:
        if target_count < 1:
            raise ValueError("target_count must be at least 1")
        self.llm = llm
        self.target_count = target_count
        self.system_prompt = system_prompt

    async def reduce(self, turns: Sequence[ConversationTurn]) -> List[ConversationTurn]:
        real_turns = [t for t in turns if not t.summary]
        if len(real_turns) <= self.target_count:
            return list(turns)

        kept = list(turns[-self.target_count:])
        older = list(turns[: len(turns) - self.target_count])
        logger.debug("Summarizing %d older turns", len(older))

        summary_text = await self.llm.complete(
            render_turns(older), system_prompt=self.system_prompt
        )
        summary = ConversationTurn(role="assistant", text=summary_text.strip(), summary=True)
        return [summary] + kept


@dataclass
class ConversationHistory:
    """The three logs of one session."""

    logs: Dict[str, List[ConversationTurn]] = field(
        default_factory=lambda: {name: [] for name in LOG_NAMES}
    )

    def append_turn(self, role: Role, text: str) -> ConversationTurn:
        """Append the same turn to all three logs."""
        turn = ConversationTurn(role=role, text=text)
        for log in self.logs.values():
            log.append(turn)
        return turn

    def turns(self, name: str) -> List[ConversationTurn]:
        """Return a copy of the named log. Raises KeyError for unknown names."""
        return list(self.logs[name])

    def snapshot(self, name: str) -> str:
        return render_turns(self.logs[name])

    async def reduce(
        self, truncation: LogReducer, summarization: LogReducer
    ) -> None:
        """Shrink ``recent`` then ``summarized``. ``full`` is never touched."""
        self.logs[RECENT] = await truncation.reduce(self.logs[RECENT])
        self.logs[SUMMARIZED] = await summarization.reduce(self.logs[SUMMARIZED])


@dataclass
class SessionContext:
    session_id: str
    history: ConversationHistory = field(default_factory=ConversationHistory)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConversationStore:
    """Maps session ids to their own conversation logs and pipeline lock."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionContext] = {}

    def get(self, session_id: str) -> SessionContext:
        """Return or create the SessionContext for ``session_id``."""
        if session_id not in self._sessions:
            logger.info("New conversation session: %s", session_id)
            self._sessions[session_id] = SessionContext(session_id=session_id)
        return self._sessions[session_id]

    def reset(self, session_id: str) -> bool:
        """Forget a session's logs. Returns True if the session existed."""
        return self._sessions.pop(session_id, None) is not None

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
