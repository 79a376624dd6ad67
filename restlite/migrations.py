from pathlib import Path
from typing import Optional

import aiosqlite
from loguru import logger

from restlite.database import LEDGER_TABLE, Database
from restlite.dialect import translate_script
from restlite.errors import MigrationStatementError
from restlite.types import MigrationReport


class MigrationRunner:
    """Apply the `.sql` files of a directory exactly once each, in filename order.

    Each file is translated to SQLite before it runs. A file is recorded in the
    ledger only once all of its statements succeeded. When `transactional` is
    set the whole file, ledger row included, runs in one transaction, so a
    failing file leaves no trace. Otherwise statements that ran before the
    failing one stay applied while the file stays unrecorded.
    """

    def __init__(
        self,
        db: Database,
        migrations_dir: Path | str,
        transactional: bool = True,
        stop_on_failure: bool = False,
    ):
        self.db = db
        self.migrations_dir = Path(migrations_dir)
        self.transactional = transactional
        self.stop_on_failure = stop_on_failure

    def list_files(self) -> list[Path]:
        if not self.migrations_dir.is_dir():
            return []
        return sorted(
            (p for p in self.migrations_dir.iterdir() if p.is_file() and p.suffix == ".sql"),
            key=lambda p: p.name,
        )

    async def _applied_names(self, conn: aiosqlite.Connection) -> set[str]:
        async with conn.execute(f"SELECT name FROM {LEDGER_TABLE}") as cursor:
            return {row[0] for row in await cursor.fetchall()}

    async def pending(self) -> list[str]:
        await self.db.initialize()
        applied = {r["name"] for r in await self.db.get_applied_migrations()}
        return [p.name for p in self.list_files() if p.name not in applied]

    async def status(self) -> dict[str, list[str]]:
        pending = await self.pending()
        applied = [r["name"] for r in await self.db.get_applied_migrations()]
        return {"applied": applied, "pending": pending}

    async def run(self) -> MigrationReport:
        report = MigrationReport()
        if not self.migrations_dir.is_dir():
            logger.warning(f"Migrations directory not found: {self.migrations_dir}")
            return report

        await self.db.initialize()
        files = self.list_files()
        logger.info(f"Found {len(files)} migration files in {self.migrations_dir}")

        async with self.db.exclusive() as conn:
            applied = await self._applied_names(conn)
            for path in files:
                if path.name in applied:
                    logger.debug(f"Migration already executed: {path.name}")
                    report.skipped.append(path.name)
                    continue

                try:
                    statements = translate_script(path.read_text(encoding="utf-8"))
                    if self.transactional:
                        done = await self._apply_transactional(conn, path.name, statements)
                    else:
                        done = await self._apply_statements(conn, path.name, statements)
                except (MigrationStatementError, OSError, UnicodeDecodeError) as e:
                    logger.error(f"Failed to execute migration {path.name}: {e}")
                    report.failed[path.name] = e
                    if self.stop_on_failure:
                        logger.warning("Stopping migration run at the first failure")
                        break
                    continue

                if done:
                    logger.info(f"Executed migration: {path.name} ({len(statements)} statements)")
                    report.applied.append(path.name)
                else:
                    report.skipped.append(path.name)

        if report.failed:
            logger.warning(
                f"Migration run finished with {len(report.failed)} failed file(s): "
                f"{sorted(report.failed)}"
            )
        else:
            logger.info("All migrations completed")
        return report

    async def _execute(self, conn: aiosqlite.Connection, name: str, statements: list[str]):
        for idx, statement in enumerate(statements):
            try:
                await conn.execute(statement)
            except aiosqlite.Error as e:
                raise MigrationStatementError(name, idx, statement, e) from e

    async def _record(self, conn: aiosqlite.Connection, name: str):
        await conn.execute(f"INSERT INTO {LEDGER_TABLE} (name) VALUES (?)", (name,))

    async def _apply_statements(
        self, conn: aiosqlite.Connection, name: str, statements: list[str]
    ) -> bool:
        await self._execute(conn, name, statements)
        await self._record(conn, name)
        return True

    async def _apply_transactional(
        self, conn: aiosqlite.Connection, name: str, statements: list[str]
    ) -> bool:
        # IMMEDIATE takes the write lock up front, so the ledger check below
        # cannot race another process migrating the same database file.
        await conn.execute("BEGIN IMMEDIATE")
        try:
            if name in await self._applied_names(conn):
                logger.debug(f"Migration {name} was applied by another process")
                await conn.execute("ROLLBACK")
                return False
            await self._execute(conn, name, statements)
            await self._record(conn, name)
        except Exception:
            await conn.execute("ROLLBACK")
            raise
        await conn.execute("COMMIT")
        return True


async def run_migrations(db: Database, migrations_dir: Optional[Path], **kwargs) -> MigrationReport:
    if migrations_dir is None:
        logger.info("No migrations directory configured, skipping migrations")
        return MigrationReport()
    return await MigrationRunner(db, migrations_dir, **kwargs).run()
