from pathlib import Path
from typing import Any

from restlite.config import Config
from restlite.database import Database

TASKS_DDL = """
CREATE TABLE tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    status TEXT,
    priority INTEGER,
    done INTEGER DEFAULT 0,
    assignee TEXT,
    meta TEXT,
    created_at TEXT,
    updated_at TEXT
)
"""

TASKS: list[dict[str, Any]] = [
    {"title": "Write docs", "status": "open", "priority": 1, "done": 0, "assignee": "alice"},
    {"title": "Review FOO module", "status": "open", "priority": 2, "done": 0, "assignee": None},
    {"title": "fix foo bug", "status": "in_progress", "priority": 3, "done": 1, "assignee": "bob"},
    {"title": "Deploy Foo", "status": "closed", "priority": 2, "done": 1, "assignee": "alice"},
    {"title": "Plan sprint", "status": "open", "priority": 5, "done": 0, "assignee": None},
]


def make_config(tmp_path: Path, **overrides) -> Config:
    params: dict[str, Any] = {
        "sqlite_dir": tmp_path / "db",
        "sqlite_params": {"journal_mode": "WAL", "synchronous": "NORMAL"},
    }
    params.update(overrides)
    return Config(**params)


async def create_tasks_table(db: Database, seed: bool = True):
    async with db.exclusive() as conn:
        await conn.execute(TASKS_DDL)
    if seed:
        await db.insert("tasks", TASKS)


def write_migration(directory: Path, name: str, sql: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(sql, encoding="utf-8")
    return path
