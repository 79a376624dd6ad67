import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Iterable, Mapping, Optional

import aiosqlite
import orjson
from loguru import logger

from restlite.config import Config
from restlite.errors import QueryExecutionError, RequestValidationError
from restlite.grammar import validate_identifier
from restlite.query import compile_count, compile_match, compile_select
from restlite.types import MigrationRecord, QuerySpec, Row

LEDGER_TABLE = "_migrations"
LEDGER_DDL = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    executed_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_sql_value(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return orjson.dumps(value).decode("utf-8")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class Database:
    def __init__(self, config: Config):
        self.config = config
        self.db_path = config.db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def get_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit: transactions are always explicit
            self._connection = await aiosqlite.connect(self.db_path, isolation_level=None)
            self._connection.row_factory = aiosqlite.Row
            for param, value in self.config.sqlite_params.items():
                await self._connection.execute(f"PRAGMA {param}={value}")
            await self._connection.execute("PRAGMA foreign_keys=ON")
            # LIKE is case-sensitive, ILIKE lowers both sides
            await self._connection.execute("PRAGMA case_sensitive_like=ON")
            logger.info(f"🔌 Opened database connection: {self.db_path}")
        return self._connection

    async def initialize(self):
        conn = await self.get_connection()
        await conn.execute(LEDGER_DDL)

    async def close(self):
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the database for one unit of work; no other query interleaves"""
        async with self._lock:
            yield await self.get_connection()

    async def ping(self) -> bool:
        try:
            async with self.exclusive() as conn:
                await conn.execute("SELECT 1")
            return True
        except aiosqlite.Error:
            logger.exception("Database ping failed")
            return False

    async def get_pragma(self, name: str) -> Any:
        validate_identifier(name, "pragma")
        async with self.exclusive() as conn:
            async with conn.execute(f"PRAGMA {name}") as cursor:
                row = await cursor.fetchone()
        return row[0] if row else None

    async def _fetch_all(
        self, conn: aiosqlite.Connection, sql: str, params: Iterable[Any] = ()
    ) -> list[Row]:
        try:
            async with conn.execute(sql, tuple(params)) as cursor:
                return [dict(row) for row in await cursor.fetchall()]
        except aiosqlite.Error as e:
            raise QueryExecutionError(str(e)) from e

    async def _table_columns(self, conn: aiosqlite.Connection, table: str) -> list[str]:
        validate_identifier(table, "table")
        rows = await self._fetch_all(conn, f"PRAGMA table_info({table})")
        return [row["name"] for row in rows]

    async def get_columns(self, table: str) -> list[str]:
        async with self.exclusive() as conn:
            return await self._table_columns(conn, table)

    async def select(
        self, spec: QuerySpec, default_limit: Optional[int] = None
    ) -> tuple[list[Row], int]:
        """Return the page of rows described by `spec` and the total match count"""
        default_limit = default_limit or self.config.default_limit
        sql, params = compile_select(spec, default_limit)
        count_sql, count_params = compile_count(spec)

        if self.config.verbose:
            logger.info(f"Query: {sql} params={params}")

        async with self.exclusive() as conn:
            rows = await self._fetch_all(conn, sql, params)
            count_rows = await self._fetch_all(conn, count_sql, count_params)
        return rows, count_rows[0]["count"]

    async def get_row(self, table: str, row_id: Any) -> Optional[Row]:
        validate_identifier(table, "table")
        async with self.exclusive() as conn:
            rows = await self._fetch_all(
                conn, f"SELECT * FROM {table} WHERE id = ? LIMIT 1", (row_id,)
            )
        return rows[0] if rows else None

    async def insert(self, table: str, rows: list[Mapping[str, Any]]) -> list[Row]:
        validate_identifier(table, "table")
        if not rows:
            return []

        async with self.exclusive() as conn:
            columns = set(await self._table_columns(conn, table))
            now = _now_iso()
            created = []
            try:
                await conn.execute("BEGIN")
                for data in rows:
                    if not data:
                        raise RequestValidationError("Cannot insert an empty row")

                    data = dict(data)
                    for ts_col in ("created_at", "updated_at"):
                        if ts_col in columns and data.get(ts_col) is None:
                            data[ts_col] = now

                    keys = [validate_identifier(k) for k in data]
                    placeholders = ", ".join("?" for _ in keys)
                    sql = f"INSERT INTO {table} ({', '.join(keys)}) VALUES ({placeholders})"
                    cursor = await conn.execute(sql, [_to_sql_value(v) for v in data.values()])
                    created.append(cursor.lastrowid)
                    await cursor.close()
                await conn.execute("COMMIT")
            except aiosqlite.Error as e:
                await conn.execute("ROLLBACK")
                raise QueryExecutionError(str(e)) from e
            except Exception:
                await conn.execute("ROLLBACK")
                raise

            result = []
            for rowid in created:
                result.extend(
                    await self._fetch_all(
                        conn, f"SELECT * FROM {table} WHERE rowid = ?", (rowid,)
                    )
                )
        return result

    async def update(
        self, table: str, values: Mapping[str, Any], match: Mapping[str, Any]
    ) -> int:
        validate_identifier(table, "table")
        if not values:
            raise RequestValidationError("Nothing to update")

        async with self.exclusive() as conn:
            values = dict(values)
            if "updated_at" in await self._table_columns(conn, table):
                values.setdefault("updated_at", _now_iso())

            set_clause = ", ".join(f"{validate_identifier(k)} = ?" for k in values)
            where, where_params = compile_match(match)
            params = [_to_sql_value(v) for v in values.values()] + where_params
            try:
                cursor = await conn.execute(f"UPDATE {table} SET {set_clause}{where}", params)
                count = cursor.rowcount
                await cursor.close()
                return count
            except aiosqlite.Error as e:
                raise QueryExecutionError(str(e)) from e

    async def delete(self, table: str, match: Mapping[str, Any]) -> int:
        validate_identifier(table, "table")
        where, params = compile_match(match)
        async with self.exclusive() as conn:
            try:
                cursor = await conn.execute(f"DELETE FROM {table}{where}", params)
                count = cursor.rowcount
                await cursor.close()
                return count
            except aiosqlite.Error as e:
                raise QueryExecutionError(str(e)) from e

    async def get_applied_migrations(self) -> list[MigrationRecord]:
        async with self.exclusive() as conn:
            rows = await self._fetch_all(
                conn, f"SELECT name, executed_at FROM {LEDGER_TABLE} ORDER BY name"
            )
        return [MigrationRecord(name=r["name"], executed_at=r["executed_at"]) for r in rows]
