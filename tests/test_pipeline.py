import asyncio
from pathlib import Path

import pytest

from conftest import ScriptedLLM
from nlqsql.errors import LLMServiceError, SchemaUnavailableError
from nlqsql.pipeline import render_answer
from nlqsql.services.conversation import FULL, RECENT, SUMMARIZED


@pytest.mark.asyncio
async def test_trailing_semicolon_is_rejected(make_service) -> None:
    """Cleaning keeps the ';' so the validator refuses the query and nothing runs."""
    llm = ScriptedLLM(sql=["SELECT COUNT(*) FROM customers;"])
    service = make_service(llm)

    envelope = await service.ask("how many customers are there")

    assert envelope.sql == ""
    assert envelope.results == []
    assert envelope.error is None
    assert len(llm.prompts) == 2
    assert llm.retry_prompts == []


@pytest.mark.asyncio
async def test_code_fenced_answer_is_cleaned_and_run(make_service) -> None:
    llm = ScriptedLLM(sql=["```sql\nSELECT COUNT(*) AS n\nFROM customers\n```"])
    envelope = await make_service(llm).ask("how many customers are there")

    assert envelope.sql == "SELECT COUNT(*) AS n FROM customers"
    assert envelope.results == [{"n": 5}]


@pytest.mark.asyncio
async def test_valid_query_returns_rows(make_service) -> None:
    llm = ScriptedLLM(sql=["select id, name from products where price > 100"])
    envelope = await make_service(llm).ask("which products cost more than 100")

    assert envelope.sql == "select id, name from products where price > 100"
    assert envelope.results == [
        {"id": 2, "name": "Standing Desk"},
        {"id": 3, "name": "Office Chair"},
    ]
    assert envelope.error is None
    assert "error" not in envelope.to_dict()


@pytest.mark.asyncio
async def test_prompts_carry_schema_and_context(make_service) -> None:
    llm = ScriptedLLM(sql=["select name from products"], schema="CREATE TABLE products (name TEXT);")
    await make_service(llm).ask("list products")

    narrowing, generation = llm.prompts
    assert "CREATE TABLE customers" in narrowing
    assert "CREATE TABLE orders" in narrowing
    assert "user: list products" in narrowing
    # generation sees only the narrowed schema
    assert "CREATE TABLE products (name TEXT);" in generation
    assert "CREATE TABLE customers" not in generation
    assert "list products" in generation


@pytest.mark.asyncio
async def test_retry_query_replaces_failed_one(make_service) -> None:
    llm = ScriptedLLM(
        sql=["select id, colour from products"],
        retry=["select id, name from products where price > 100"],
    )
    envelope = await make_service(llm).ask("which products cost more than 100")

    assert envelope.sql == "select id, name from products where price > 100"
    assert len(envelope.results) == 2
    assert envelope.error is None

    (retry_prompt,) = llm.retry_prompts
    assert "select id, colour from products" in retry_prompt
    # the full schema goes into the retry prompt
    assert "CREATE TABLE customers" in retry_prompt
    assert "no such column: colour" in retry_prompt


@pytest.mark.asyncio
async def test_retry_error_is_truncated(make_service) -> None:
    long_name = "c" * 80
    llm = ScriptedLLM(
        sql=[f"select {long_name} from products"],
        retry=["select name from products"],
    )
    await make_service(llm, retry_error_chars=50).ask("names")

    retry_prompt = llm.retry_prompts[0]
    error_line = retry_prompt.split("Database error:\n", 1)[1].split("\n", 1)[0]
    assert len(error_line) == 50
    assert error_line == f"no such column: {long_name}"[:50]


@pytest.mark.asyncio
async def test_two_failures_stop_after_one_retry(make_service) -> None:
    llm = ScriptedLLM(
        sql=["select colour from products"],
        retry=["select size from products", "select name from products"],
    )
    service = make_service(llm)

    envelope = await service.ask("product colours")

    assert envelope.sql == "select size from products"
    assert envelope.results == []
    assert "Both attempts failed" in envelope.error
    assert "no such column: colour" in envelope.error
    assert "no such column: size" in envelope.error
    assert len(llm.retry_prompts) == 1
    assert len(llm.prompts) == 3
    # the unused scripted retry was never requested
    assert llm.retry == ["select name from products"]
    # no answer turn is recorded for a failed question
    assert [t.role for t in service.get_history("default").turns(FULL)] == ["user"]


@pytest.mark.asyncio
async def test_unsafe_retry_is_rejected(make_service) -> None:
    llm = ScriptedLLM(
        sql=["select colour from products"],
        retry=["delete from products"],
    )
    envelope = await make_service(llm).ask("remove products")

    assert envelope.sql == ""
    assert envelope.results == []
    assert envelope.error is None


@pytest.mark.asyncio
async def test_missing_database_is_schema_error(make_service, tmp_path: Path) -> None:
    llm = ScriptedLLM(sql=["select 1"])
    service = make_service(llm, db_path=tmp_path / "missing.db")

    with pytest.raises(SchemaUnavailableError):
        await service.ask("anything")
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_llm_failure_propagates(make_service) -> None:
    class DownLLM:
        async def complete(self, prompt: str, system_prompt: str | None = None) -> str:
            raise LLMServiceError("service unavailable")

    with pytest.raises(LLMServiceError):
        await make_service(DownLLM()).ask("anything")


@pytest.mark.asyncio
async def test_answers_feed_conversation_and_reducers(make_service) -> None:
    llm = ScriptedLLM(
        sql=[
            "select name from products where id = 1",
            "select name from products where price > 1000",
            "select count(*) as n from customers",
        ],
        summary="Asked for product names.",
    )
    service = make_service(llm)

    await service.ask("first product")
    await service.ask("anything over 1000?")
    history = service.get_history("default")
    assert [t.text for t in history.turns(FULL)] == [
        "first product",
        "name: Desk Lamp",
        "anything over 1000?",
        "No results found",
    ]
    assert llm.summaries == []

    await service.ask("how many customers")

    assert len(history.turns(FULL)) == 6
    assert [t.text for t in history.turns(RECENT)] == [
        "anything over 1000?",
        "No results found",
        "how many customers",
        "n: 5",
    ]
    summarized = history.turns(SUMMARIZED)
    assert len(summarized) == 5
    assert summarized[0].summary is True
    assert summarized[0].text == "Asked for product names."
    assert llm.summaries == ["user: first product\nassistant: name: Desk Lamp"]


@pytest.mark.asyncio
async def test_follow_up_prompt_sees_previous_turns(make_service) -> None:
    llm = ScriptedLLM(sql=["select name from products where id = 1", "select price from products where id = 1"])
    service = make_service(llm)

    await service.ask("first product")
    await service.ask("and its price?")

    last_generation = llm.prompts[-1]
    assert "user: first product\nassistant: name: Desk Lamp\nuser: and its price?" in last_generation


@pytest.mark.asyncio
async def test_sessions_are_isolated(make_service) -> None:
    llm = ScriptedLLM(sql=["select 1 as one", "select 2 as two"])
    service = make_service(llm)

    await service.ask("question a", session_id="a")
    await service.ask("question b", session_id="b")

    assert [t.text for t in service.get_history("a").turns(FULL)] == ["question a", "one: 1"]
    assert [t.text for t in service.get_history("b").turns(FULL)] == ["question b", "two: 2"]


@pytest.mark.asyncio
async def test_same_session_questions_do_not_interleave(make_service) -> None:
    llm = ScriptedLLM(sql=["select 1 as one", "select 2 as two"])
    service = make_service(llm)

    await asyncio.gather(service.ask("q1"), service.ask("q2"))

    roles = [t.role for t in service.get_history("default").turns(FULL)]
    assert roles == ["user", "assistant", "user", "assistant"]


def test_render_answer() -> None:
    assert render_answer([]) == "No results found"
    assert render_answer([{"id": 1, "name": "a"}, {"id": 2, "name": None}]) == (
        "id: 1, name: a\nid: 2, name: None"
    )
