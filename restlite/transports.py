from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import aiohttp
import orjson
from loguru import logger

from restlite.database import Database
from restlite.errors import QueryExecutionError, error_from_payload
from restlite.grammar import to_token, validate_filter_column, validate_identifier
from restlite.query import spec_to_params
from restlite.types import QuerySpec, Row


def _match_params(match: Mapping[str, Any]) -> list[tuple[str, str]]:
    # The server ignores reserved keys, which would widen the match to every row
    return [(validate_filter_column(k), to_token(v)) for k, v in match.items()]


class Transport(ABC):
    """Where a query runs: the local database or a remote restlite server"""

    @abstractmethod
    async def fetch(self, spec: QuerySpec) -> tuple[list[Row], int]:
        pass

    @abstractmethod
    async def insert(self, table: str, rows: list[Mapping[str, Any]]) -> list[Row]:
        pass

    @abstractmethod
    async def update(
        self, table: str, values: Mapping[str, Any], match: Mapping[str, Any]
    ) -> int:
        pass

    @abstractmethod
    async def delete(self, table: str, match: Mapping[str, Any]) -> int:
        pass


class LocalTransport(Transport):
    def __init__(self, db: Database):
        self.db = db

    async def fetch(self, spec: QuerySpec) -> tuple[list[Row], int]:
        return await self.db.select(spec)

    async def insert(self, table: str, rows: list[Mapping[str, Any]]) -> list[Row]:
        return await self.db.insert(table, rows)

    async def update(
        self, table: str, values: Mapping[str, Any], match: Mapping[str, Any]
    ) -> int:
        return await self.db.update(table, values, match)

    async def delete(self, table: str, match: Mapping[str, Any]) -> int:
        return await self.db.delete(table, match)


class HttpTransport(Transport):
    def __init__(self, session: aiohttp.ClientSession, base_url: str, prefix: str = "/rest/v1"):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""

    def _url(self, table: str) -> str:
        return f"{self.base_url}{self.prefix}/{validate_identifier(table, 'table')}"

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[list[tuple[str, str]]] = None,
        body: Any = None,
    ) -> tuple[Any, Mapping[str, str]]:
        url = self._url(table)
        data = orjson.dumps(body) if body is not None else None
        headers = {"Content-Type": "application/json"} if data is not None else None
        try:
            async with self.session.request(
                method, url, params=params, data=data, headers=headers
            ) as resp:
                raw = await resp.read()
                try:
                    payload = orjson.loads(raw) if raw else None
                except orjson.JSONDecodeError:
                    payload = raw.decode("utf-8", errors="replace")

                if resp.status >= 400:
                    raise error_from_payload(resp.status, payload)
                return payload, resp.headers
        except aiohttp.ClientError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise QueryExecutionError(f"{method} {url} failed: {e}") from e

    async def fetch(self, spec: QuerySpec) -> tuple[list[Row], int]:
        rows, headers = await self._request("GET", spec.table, params=spec_to_params(spec))
        if not isinstance(rows, list):
            raise QueryExecutionError(f"Expected a JSON array from {self._url(spec.table)}")
        return rows, int(headers.get("X-Total-Count", len(rows)))

    async def insert(self, table: str, rows: list[Mapping[str, Any]]) -> list[Row]:
        created, _ = await self._request("POST", table, body=[dict(r) for r in rows])
        return created if isinstance(created, list) else [created]

    async def update(
        self, table: str, values: Mapping[str, Any], match: Mapping[str, Any]
    ) -> int:
        params = _match_params(match)
        payload, _ = await self._request("PATCH", table, params=params, body=dict(values))
        return payload["count"]

    async def delete(self, table: str, match: Mapping[str, Any]) -> int:
        params = _match_params(match)
        payload, _ = await self._request("DELETE", table, params=params)
        return payload["count"]
