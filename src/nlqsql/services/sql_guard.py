"""Lexical safety check for model-generated SQL.

This is an exclusion list, not a parser. It refuses statement separators,
comment markers and any whole word from ``FORBIDDEN_KEYWORDS``; it does not
prove the text is a syntactically valid SELECT.
"""

import logging
import re

from ..errors import UnsafeQueryError

logger = logging.getLogger(__name__)

FORBIDDEN_MARKERS = (";", "--", "/*", "*/")

FORBIDDEN_KEYWORDS = frozenset(
    {
        "insert", "update", "delete", "drop", "alter",
        "create", "replace", "truncate", "attach", "detach",
        "pragma", "vacuum", "reindex", "begin", "commit",
        "rollback", "exec", "execute",
    }
)

_CODE_FENCE_SQL = re.compile(r"```sql", re.IGNORECASE)


def clean_sql_output(text: str) -> str:
    """Strip markdown code fences and line breaks from a model completion.

    Semicolons are left in place, so a trailing ``;`` still reaches the
    validator and gets the candidate rejected.
    """
    cleaned = _CODE_FENCE_SQL.sub("", text.strip())
    cleaned = cleaned.replace("```", "").replace("\n", " ").replace("\r", "")
    return cleaned.strip()


def _words(normalized: str) -> list[str]:
    # str.isalnum also accepts non-ASCII letters and digits
    chars = [c if c.isalnum() else " " for c in normalized]
    return "".join(chars).split()


def is_safe_select(text: str | None) -> bool:
    """Return True if ``text`` contains no multi-statement, comment or write construct."""
    if text is None or not text.strip():
        return False

    normalized = text.strip().lower()

    if any(marker in normalized for marker in FORBIDDEN_MARKERS):
        return False

    return not any(word in FORBIDDEN_KEYWORDS for word in _words(normalized))


def ensure_safe_select(text: str) -> str:
    """Return ``text`` unchanged, or raise UnsafeQueryError if it fails the check."""
    if not is_safe_select(text):
        logger.warning("Rejected generated SQL: %s", (text or "")[:200])
        raise UnsafeQueryError(text)
    return text
