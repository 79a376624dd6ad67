from typing import Any, Mapping, Optional, Union

import aiohttp

from restlite.builder import QueryBuilder
from restlite.database import Database
from restlite.errors import RestliteError
from restlite.transports import HttpTransport, LocalTransport, Transport
from restlite.types import QueryResult


class BaseClient:
    def __init__(
        self,
        transport: Transport,
        strict_single: bool = True,
        max_limit: Optional[int] = None,
    ):
        self.transport = transport
        self.strict_single = strict_single
        self.max_limit = max_limit

    def table(self, name: str) -> QueryBuilder:
        return QueryBuilder(
            name, self.transport, strict_single=self.strict_single, max_limit=self.max_limit
        )

    from_ = table

    async def insert(
        self, table: str, rows: Union[Mapping[str, Any], list[Mapping[str, Any]]]
    ) -> QueryResult:
        many = isinstance(rows, list)
        batch = rows if many else [rows]
        try:
            created = await self.transport.insert(table, batch)
        except RestliteError as e:
            return QueryResult(error=e)

        if many:
            return QueryResult(data=created, count=len(created))
        return QueryResult(data=created[0] if created else None, count=len(created))

    async def update(
        self, table: str, values: Mapping[str, Any], match: Mapping[str, Any]
    ) -> QueryResult:
        try:
            count = await self.transport.update(table, values, match)
        except RestliteError as e:
            return QueryResult(error=e)
        return QueryResult(count=count)

    async def delete(self, table: str, match: Mapping[str, Any]) -> QueryResult:
        try:
            count = await self.transport.delete(table, match)
        except RestliteError as e:
            return QueryResult(error=e)
        return QueryResult(count=count)


class LocalClient(BaseClient):
    """Runs queries directly against the embedded database"""

    def __init__(self, db: Database, strict_single: Optional[bool] = None):
        if strict_single is None:
            strict_single = db.config.strict_single
        super().__init__(
            LocalTransport(db), strict_single=strict_single, max_limit=db.config.max_limit
        )
        self.db = db


class RestClient(BaseClient):
    """Runs queries against a restlite server over HTTP.

        async with RestClient("http://127.0.0.1:7788") as client:
            result = await client.table("projects").select("*").ilike("name", "alpha")
    """

    def __init__(
        self,
        base_url: str,
        prefix: str = "/rest/v1",
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30,
        strict_single: bool = True,
        max_limit: Optional[int] = None,
    ):
        self._owns_session = session is None
        self.session = session or aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout)
        )
        super().__init__(
            HttpTransport(self.session, base_url, prefix),
            strict_single=strict_single,
            max_limit=max_limit,
        )

    async def close(self):
        if self._owns_session and not self.session.closed:
            await self.session.close()

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
