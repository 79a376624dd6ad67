from dataclasses import dataclass
from typing import Any, Optional

from aiohttp import web
from loguru import logger

from restlite.errors import RequestValidationError
from restlite.grammar import validate_filter_column, validate_identifier
from restlite.handlers import RequestHandler
from restlite.query import spec_from_params
from restlite.types import QuerySpec


@dataclass
class RowTarget:
    table: str
    match: dict[str, Any]
    body: Any = None


def _match_from_request(request: web.Request) -> dict[str, Any]:
    """`{id}` in the path, else the plain query parameters, compared with `=`"""
    if (row_id := request.match_info.get("id")) is not None:
        return {"id": row_id}
    return {validate_filter_column(k): v for k, v in request.query.items()}


class SelectRowsHandler(RequestHandler[QuerySpec]):
    description = "select rows"

    async def validate_request(self, request: web.Request) -> QuerySpec:
        return spec_from_params(
            request.match_info["table"],
            request.query.items(),
            max_limit=self.config.max_limit,
        )

    async def handle(self, request: web.Request, spec: QuerySpec) -> web.Response:
        if self.verbose:
            logger.info(f"Select from {spec.table}: {spec}")

        rows, count = await self.db.select(spec, self.config.default_limit)
        headers = {
            "X-Total-Count": str(count),
            "Content-Range": f"{spec.table} {spec.offset}-{spec.offset + len(rows) - 1}/{count}",
        }
        return self.response_ok(rows, headers=headers)


class GetRowHandler(RequestHandler[RowTarget]):
    description = "get row"

    async def validate_request(self, request: web.Request) -> RowTarget:
        table = validate_identifier(request.match_info["table"], "table")
        return RowTarget(table, _match_from_request(request))

    async def handle(self, request: web.Request, target: RowTarget) -> web.Response:
        row = await self.db.get_row(target.table, target.match["id"])
        if row is None:
            return self.response_fail("Not Found", status=404, code="not_found")
        return self.response_ok(row)


class InsertRowsHandler(RequestHandler[RowTarget]):
    description = "insert rows"

    async def validate_request(self, request: web.Request) -> RowTarget:
        table = validate_identifier(request.match_info["table"], "table")
        body = await self.read_json(request)
        rows = body if isinstance(body, list) else [body]
        if not rows or not all(isinstance(r, dict) and r for r in rows):
            raise RequestValidationError("Body must be a non-empty object or list of objects")
        for row in rows:
            for key in row:
                validate_identifier(key)
        return RowTarget(table, {}, body)

    async def handle(self, request: web.Request, target: RowTarget) -> web.Response:
        many = isinstance(target.body, list)
        created = await self.db.insert(target.table, target.body if many else [target.body])
        return self.response_ok(created if many else created[0], status=201)


class UpdateRowsHandler(RequestHandler[RowTarget]):
    description = "update rows"

    async def validate_request(self, request: web.Request) -> RowTarget:
        table = validate_identifier(request.match_info["table"], "table")
        body = await self.read_json(request)
        if not isinstance(body, dict) or not body:
            raise RequestValidationError("Body must be a non-empty object")
        for key in body:
            validate_identifier(key)
        return RowTarget(table, _match_from_request(request), body)

    async def handle(self, request: web.Request, target: RowTarget) -> web.Response:
        count = await self.db.update(target.table, target.body, target.match)
        return self.response_ok({"message": "Updated successfully", "count": count})


class DeleteRowsHandler(RequestHandler[RowTarget]):
    description = "delete rows"

    async def validate_request(self, request: web.Request) -> RowTarget:
        table = validate_identifier(request.match_info["table"], "table")
        return RowTarget(table, _match_from_request(request))

    async def handle(self, request: web.Request, target: RowTarget) -> web.Response:
        count = await self.db.delete(target.table, target.match)
        return self.response_ok({"message": "Deleted successfully", "count": count})


class HealthCheckHandler(RequestHandler[None]):
    description = "check health"

    async def validate_request(self, request: web.Request) -> None:
        return None

    async def handle(self, request: web.Request, data: Optional[Any]) -> web.Response:
        if await self.db.ping():
            return self.response_ok({"status": "healthy"})
        return self.response_fail("Database is unreachable", status=500, code="unhealthy")
