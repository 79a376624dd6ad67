import pytest
import pytest_asyncio
import orjson
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator

from restlite.config import Config
from restlite.database import Database
from restlite.errors import InvalidIdentifierError, QueryExecutionError, RequestValidationError
from restlite.types import Filter, Operator, Order, QuerySpec

from tests.utils import TASKS, create_tasks_table, make_config


# --- Fixtures ---


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Provides a test Config object using a temporary path."""
    return make_config(tmp_path)


@pytest_asyncio.fixture
async def db_no_init(test_config: Config) -> AsyncIterator[Database]:
    """Provides a Database instance without calling initialize."""
    db = Database(test_config)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def initialized_db(db_no_init: Database) -> AsyncIterator[Database]:
    await db_no_init.initialize()
    yield db_no_init


@pytest_asyncio.fixture
async def seeded_db(initialized_db: Database) -> AsyncIterator[Database]:
    """Provides an initialized Database with a seeded `tasks` table."""
    await create_tasks_table(initialized_db)
    yield initialized_db


# --- Test Cases ---


@pytest.mark.asyncio
async def test_initialize_creates_ledger(db_no_init: Database):
    conn = await db_no_init.get_connection()
    cursor = await conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='_migrations'"
    )
    assert await cursor.fetchone() is None

    await db_no_init.initialize()
    cursor = await conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='_migrations'"
    )
    row = await cursor.fetchone()
    assert row is not None and row[0] == "_migrations"
    assert db_no_init.db_path.exists()


@pytest.mark.asyncio
async def test_pragmas_applied(initialized_db: Database):
    assert (await initialized_db.get_pragma("journal_mode")).lower() == "wal"
    assert await initialized_db.get_pragma("foreign_keys") == 1


@pytest.mark.asyncio
async def test_ping_and_close(initialized_db: Database):
    assert await initialized_db.ping() is True
    assert initialized_db._connection is not None

    await initialized_db.close()
    assert initialized_db._connection is None

    # The connection is reopened lazily
    assert await initialized_db.ping() is True


@pytest.mark.asyncio
async def test_insert_stamps_timestamps(seeded_db: Database):
    [row] = await seeded_db.insert("tasks", [{"title": "Stamped", "meta": {"labels": ["a"]}}])

    assert row["id"] == len(TASKS) + 1
    assert row["title"] == "Stamped"
    assert row["done"] == 0
    assert orjson.loads(row["meta"]) == {"labels": ["a"]}
    assert datetime.fromisoformat(row["created_at"]) == datetime.fromisoformat(row["updated_at"])


@pytest.mark.asyncio
async def test_insert_keeps_explicit_timestamps(seeded_db: Database):
    [row] = await seeded_db.insert("tasks", [{"title": "Old", "created_at": "2020-01-01T00:00:00"}])
    assert row["created_at"] == "2020-01-01T00:00:00"
    assert row["updated_at"] != "2020-01-01T00:00:00"


@pytest.mark.asyncio
async def test_insert_batch_is_atomic(seeded_db: Database):
    with pytest.raises(QueryExecutionError):
        # The second row violates NOT NULL on title
        await seeded_db.insert("tasks", [{"title": "ok"}, {"status": "open"}])

    _, count = await seeded_db.select(QuerySpec(table="tasks"))
    assert count == len(TASKS)


@pytest.mark.asyncio
async def test_insert_rejects_bad_input(seeded_db: Database):
    with pytest.raises(InvalidIdentifierError):
        await seeded_db.insert("tasks", [{"title) VALUES ('x'); --": "boom"}])
    with pytest.raises(RequestValidationError):
        await seeded_db.insert("tasks", [{}])
    with pytest.raises(InvalidIdentifierError):
        await seeded_db.insert("tasks; DROP TABLE tasks", [{"title": "x"}])


@pytest.mark.asyncio
async def test_select_with_count(seeded_db: Database):
    spec = QuerySpec(
        table="tasks",
        columns=("title",),
        filters=(Filter("status", Operator.EQ, "open"),),
        order=Order("priority", ascending=False),
        limit=2,
    )
    rows, count = await seeded_db.select(spec)
    assert rows == [{"title": "Plan sprint"}, {"title": "Review FOO module"}]
    assert count == 3


@pytest.mark.asyncio
async def test_select_pagination(seeded_db: Database):
    spec = QuerySpec(table="tasks", columns=("id",), order=Order("id"), limit=2)
    page1, total = await seeded_db.select(spec)
    page3, _ = await seeded_db.select(spec.with_changes(offset=4))
    beyond, _ = await seeded_db.select(spec.with_changes(offset=10))

    assert [r["id"] for r in page1] == [1, 2]
    assert [r["id"] for r in page3] == [5]
    assert beyond == []
    assert total == len(TASKS)


@pytest.mark.asyncio
async def test_select_unknown_table(initialized_db: Database):
    with pytest.raises(QueryExecutionError, match="no such table"):
        await initialized_db.select(QuerySpec(table="nothing_here"))


@pytest.mark.asyncio
async def test_get_row(seeded_db: Database):
    row = await seeded_db.get_row("tasks", "3")
    assert row is not None and row["title"] == "fix foo bug"
    assert await seeded_db.get_row("tasks", 999) is None


@pytest.mark.asyncio
async def test_update(seeded_db: Database):
    count = await seeded_db.update("tasks", {"status": "closed"}, {"assignee": "alice"})
    assert count == 2

    row = await seeded_db.get_row("tasks", 1)
    assert row["status"] == "closed"
    assert row["updated_at"] > row["created_at"]

    with pytest.raises(RequestValidationError):
        await seeded_db.update("tasks", {}, {"id": 1})
    with pytest.raises(InvalidIdentifierError):
        await seeded_db.update("tasks", {"status = 'x', title": "y"}, {"id": 1})


@pytest.mark.asyncio
async def test_delete(seeded_db: Database):
    assert await seeded_db.delete("tasks", {"status": "open", "assignee": "alice"}) == 1
    assert await seeded_db.delete("tasks", {"status": "nope"}) == 0

    _, count = await seeded_db.select(QuerySpec(table="tasks"))
    assert count == len(TASKS) - 1

    assert await seeded_db.delete("tasks", {}) == len(TASKS) - 1


@pytest.mark.asyncio
async def test_get_columns(seeded_db: Database):
    columns = await seeded_db.get_columns("tasks")
    assert columns[:3] == ["id", "title", "status"]
    assert await seeded_db.get_columns("missing") == []
