import asyncio
import sys
from pathlib import Path
from typing import List

import pytest


_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from nlqsql.demo_data import init_database  # noqa: E402
from nlqsql.pipeline import NlqRetrievalService  # noqa: E402


RELEVANT_PRODUCTS_SCHEMA = (
    "CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT NOT NULL, "
    "category TEXT NOT NULL, price REAL NOT NULL, stock INTEGER NOT NULL DEFAULT 0);"
)


class ScriptedLLM:
    """Fake LanguageModelClient that answers each pipeline stage from a script.

    Stages are recognized by text from the packaged templates; a call with a
    system prompt is the summarization reducer.
    """

    def __init__(
        self,
        sql: List[str] | None = None,
        retry: List[str] | None = None,
        schema: str = RELEVANT_PRODUCTS_SCHEMA,
        summary: str = "The user asked about products.",
    ) -> None:
        self.sql = list(sql or [])
        self.retry = list(retry or [])
        self.schema = schema
        self.summary = summary
        self.prompts: List[str] = []
        self.summaries: List[str] = []

    @property
    def retry_prompts(self) -> List[str]:
        return [p for p in self.prompts if "Your previous query failed" in p]

    async def complete(self, prompt: str, system_prompt: str | None = None) -> str:
        await asyncio.sleep(0)
        if system_prompt is not None:
            self.summaries.append(prompt)
            return self.summary
        self.prompts.append(prompt)
        if "Select only the tables" in prompt:
            return self.schema
        if "Your previous query failed" in prompt:
            return self.retry.pop(0)
        return self.sql.pop(0)


@pytest.fixture
def demo_db(tmp_path: Path) -> Path:
    """Demo retail database in a temporary directory."""
    path = tmp_path / "shop.db"
    init_database(path)
    return path


@pytest.fixture
def make_service(demo_db: Path):
    """Factory building an NlqRetrievalService over the demo database."""

    def _make(llm: ScriptedLLM, **kwargs) -> NlqRetrievalService:
        kwargs.setdefault("summarize_system_prompt", "Summarize the conversation.")
        return NlqRetrievalService(llm=llm, db_path=kwargs.pop("db_path", demo_db), **kwargs)

    return _make
