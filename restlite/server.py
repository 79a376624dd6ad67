from aiohttp import web
import aiohttp_cors
from loguru import logger

from restlite.config import Config
from restlite.database import Database
from restlite.handlers.rest import (
    DeleteRowsHandler,
    GetRowHandler,
    HealthCheckHandler,
    InsertRowsHandler,
    SelectRowsHandler,
    UpdateRowsHandler,
)
from restlite.migrations import run_migrations
from restlite.types import MigrationReport


class RestliteServer:
    def __init__(self, config: Config, db: Database | None = None):
        self.config = config
        self.db = db or Database(config)
        self.app = web.Application()
        self.migration_report: MigrationReport | None = None

    async def setup(self, migrate: bool = True):
        """Set up the server"""
        # Initialize database
        await self.db.initialize()

        # Apply migrations
        if migrate:
            self.migration_report = await run_migrations(
                self.db,
                self.config.migrations_dir,
                transactional=self.config.transactional_migrations,
                stop_on_failure=self.config.stop_on_migration_failure,
            )
            if not self.migration_report.success:
                logger.error("Failed to apply all migrations")

        # Set up routes
        prefix = self.config.rest_prefix
        args = (self.db, self.config)
        self.app.add_routes(
            [
                web.get("/health", HealthCheckHandler(*args)),
                web.get(f"{prefix}/{{table}}", SelectRowsHandler(*args)),
                web.get(f"{prefix}/{{table}}/{{id}}", GetRowHandler(*args)),
                web.post(f"{prefix}/{{table}}", InsertRowsHandler(*args)),
                web.patch(f"{prefix}/{{table}}", UpdateRowsHandler(*args)),
                web.patch(f"{prefix}/{{table}}/{{id}}", UpdateRowsHandler(*args)),
                web.delete(f"{prefix}/{{table}}", DeleteRowsHandler(*args)),
                web.delete(f"{prefix}/{{table}}/{{id}}", DeleteRowsHandler(*args)),
            ]
        )
        self.app.on_cleanup.append(self._on_cleanup)

        # Set up CORS
        cors = aiohttp_cors.setup(
            self.app,
            defaults={
                "*": aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers=("X-Total-Count", "Content-Range"),
                    allow_headers="*",
                )
            },
        )

        # Apply CORS to all routes
        for route in list(self.app.router.routes()):
            cors.add(route)

    async def _on_cleanup(self, app: web.Application):
        await self.db.close()

    async def start(self):
        """Start the server"""
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, self.config.host, self.config.port)
        await site.start()

        logger.opt(colors=True).info(
            f"<g>restlite server started at http://{self.config.host}:{self.config.port}"
            f"{self.config.rest_prefix}</g>"
        )

        return runner, site
