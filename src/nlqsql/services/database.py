import asyncio
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from ..errors import SchemaUnavailableError
from ..models import QueryFailure, QueryOutcome, QuerySuccess, Row

logger = logging.getLogger(__name__)

SCHEMA_QUERY = "SELECT sql FROM sqlite_master WHERE type='table' AND sql IS NOT NULL"
SCHEMA_SEPARATOR = "\n\n"

# Number of SQLite VM instructions between deadline checks.
_PROGRESS_STEPS = 1000


def _connect(path: Path, read_only: bool) -> sqlite3.Connection:
    """Open a connection usable from worker threads."""
    if read_only:
        # mode=ro refuses to create a missing file, unlike a plain connect
        uri = f"{Path(path).resolve().as_uri()}?mode=ro"
        return sqlite3.connect(uri, uri=True, check_same_thread=False)
    return sqlite3.connect(path, check_same_thread=False)


@contextmanager
def open_connection(path: Path, read_only: bool = True) -> Iterator[sqlite3.Connection]:
    """Yield a connection to the SQLite database at ``path`` and always close it.

    Raises SchemaUnavailableError when the database cannot be opened.
    """
    try:
        conn = _connect(path, read_only)
    except sqlite3.Error as e:
        logger.error("Could not open database %s: %s", path, e)
        raise SchemaUnavailableError(f"Could not open database: {e}") from e
    try:
        yield conn
    finally:
        conn.close()


def _read_schema(conn: sqlite3.Connection) -> str:
    cur = conn.cursor()
    try:
        cur.execute(SCHEMA_QUERY)
        statements = [f"{row[0]};" for row in cur.fetchall()]
    finally:
        cur.close()
    return SCHEMA_SEPARATOR.join(statements)


async def extract_schema(conn: sqlite3.Connection) -> str:
    """Return the CREATE statement of every table, separated by blank lines.

    Raises SchemaUnavailableError if the introspection query fails.
    """
    try:
        return await asyncio.to_thread(_read_schema, conn)
    except sqlite3.Error as e:
        logger.error("Schema introspection failed: %s", e)
        raise SchemaUnavailableError(f"Schema introspection failed: {e}") from e


def _execute(conn: sqlite3.Connection, query: str, timeout_seconds: float) -> List[Row]:
    deadline = time.monotonic() + timeout_seconds
    # A non-zero return from the handler aborts the statement with "interrupted".
    conn.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)
    cur = conn.cursor()
    try:
        cur.execute(query)
        columns = [d[0] for d in cur.description or ()]
        return [dict(zip(columns, values)) for values in cur.fetchall()]
    finally:
        cur.close()
        conn.set_progress_handler(None, 0)


async def run_query(
    conn: sqlite3.Connection, query: str, timeout_seconds: float = 30.0
) -> QueryOutcome:
    """Run ``query`` with a timeout and materialize every row.

    Any database error, including a timeout, becomes a QueryFailure; nothing
    raised by the driver escapes this function.
    """
    started = time.perf_counter()
    try:
        rows = await asyncio.to_thread(_execute, conn, query, timeout_seconds)
    except (sqlite3.Error, sqlite3.Warning) as e:
        message = str(e)
        if message == "interrupted":
            message = f"Query timed out after {timeout_seconds:g} seconds"
        logger.warning("Query failed: %s", message)
        return QueryFailure(query=query, message=message)
    except (ValueError, OverflowError) as e:
        # e.g. integers too large for Python's sqlite adapter
        logger.warning("Query result could not be read: %s", e)
        return QueryFailure(query=query, message=str(e))

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("Query executed in %.0f ms, returned %d rows", elapsed_ms, len(rows))
    return QuerySuccess(query=query, rows=rows)
