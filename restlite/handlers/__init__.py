from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

import orjson
from aiohttp import web
from loguru import logger

from restlite.config import Config
from restlite.database import Database
from restlite.errors import RequestValidationError, RestliteError

T = TypeVar("T")


class RequestHandler(ABC, Generic[T]):
    description: str = "handle request"

    def __init__(self, db: Database, config: Config):
        self.db = db
        self.config = config
        self.verbose = config.verbose

    @staticmethod
    def _dumps(data: Any) -> bytes:
        return orjson.dumps(data, default=str)

    def response_ok(
        self,
        data: Any,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> web.Response:
        return web.Response(
            status=status,
            body=self._dumps(data),
            content_type="application/json",
            headers=headers,
        )

    def response_fail(
        self, message: str, status: int = 400, code: str = "error"
    ) -> web.Response:
        return web.Response(
            status=status,
            body=self._dumps({"error": message, "code": code}),
            content_type="application/json",
        )

    def response_error(self, error: RestliteError) -> web.Response:
        return web.Response(
            status=error.status,
            body=self._dumps(error.to_dict()),
            content_type="application/json",
        )

    async def read_json(self, request: web.Request) -> Any:
        body = await request.read()
        if not body:
            raise RequestValidationError("Request body is required")
        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise RequestValidationError(f"Invalid JSON body: {e}")

    @abstractmethod
    async def validate_request(self, request: web.Request) -> T:
        pass

    @abstractmethod
    async def handle(self, request: web.Request, data: T) -> web.Response:
        pass

    async def __call__(self, request: web.Request) -> web.Response:
        try:
            data = await self.validate_request(request)
            return await self.handle(request, data)
        except RestliteError as e:
            if e.status >= 500:
                logger.error(f"Failed to {self.description}: {e}")
            elif self.verbose:
                logger.info(f"Rejected request to {self.description}: {e}")
            return self.response_error(e)
        except Exception as e:
            logger.exception(f"Error trying to {self.description}")
            return self.response_fail(str(e), status=500, code="internal_error")
