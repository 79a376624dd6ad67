import asyncio
import signal
from pathlib import Path

from loguru import logger
from typer import Argument, Exit, Option, Typer, echo

from restlite.config import Config
from restlite.database import Database
from restlite.dialect import translate_script
from restlite.migrations import MigrationRunner
from restlite.server import RestliteServer


server_app = Typer()
migration_app = Typer()

app = Typer()
app.add_typer(server_app, name="server")
app.add_typer(migration_app, name="migrate")


async def _shutdown(signal, loop):
    """Shutdown the server gracefully"""
    logger.info(f"Received exit signal {signal.name}...")
    logger.info("Shutting down...")

    tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]

    for task in tasks:
        task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)
    loop.stop()


async def _run_server(config_path: str):
    config = Config.from_file(config_path)
    server = RestliteServer(config)
    await server.setup()

    # Handle shutdown signals
    loop = asyncio.get_event_loop()
    signals = (signal.SIGHUP, signal.SIGTERM, signal.SIGINT)
    for s in signals:
        loop.add_signal_handler(s, lambda s=s: asyncio.create_task(_shutdown(s, loop)))

    runner, _ = await server.start()

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await runner.cleanup()


def _make_runner(config: Config, db: Database) -> MigrationRunner:
    if config.migrations_dir is None:
        echo("No 'migrations_dir' configured", err=True)
        raise Exit(code=1)
    return MigrationRunner(
        db,
        config.migrations_dir,
        transactional=config.transactional_migrations,
        stop_on_failure=config.stop_on_migration_failure,
    )


async def _migrate(config_path: str) -> bool:
    config = Config.from_file(config_path)
    async with Database(config) as db:
        report = await _make_runner(config, db).run()

    for name in report.applied:
        echo(f"applied  {name}")
    for name, error in report.failed.items():
        echo(f"failed   {name}: {error}")
    echo(f"{len(report.applied)} applied, {len(report.skipped)} skipped, {len(report.failed)} failed")
    return report.success


async def _status(config_path: str):
    config = Config.from_file(config_path)
    async with Database(config) as db:
        status = await _make_runner(config, db).status()

    for name in status["applied"]:
        echo(f"[x] {name}")
    for name in status["pending"]:
        echo(f"[ ] {name}")


@server_app.command()
def run(config: str = Option(..., "--config", "-c")):
    asyncio.run(_run_server(config))


@migration_app.command()
def rollout(config: str = Option(..., "--config", "-c")):
    if not asyncio.run(_migrate(config)):
        raise Exit(code=1)


@migration_app.command()
def status(config: str = Option(..., "--config", "-c")):
    asyncio.run(_status(config))


@migration_app.command()
def translate(path: Path = Argument(..., exists=True, dir_okay=False, readable=True)):
    """Print the SQLite translation of a PostgreSQL migration file"""
    for statement in translate_script(path.read_text(encoding="utf-8")):
        echo(statement.rstrip().rstrip(";") + ";\n")
