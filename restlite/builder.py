from typing import Any, Callable, Generator, Iterable, Optional

from restlite.errors import MultipleRowsError, RestliteError
from restlite.grammar import (
    make_filter,
    parse_columns,
    parse_limit,
    parse_non_negative_int,
    validate_identifier,
)
from restlite.transports import Transport
from restlite.types import Operator, Order, QueryResult, QuerySpec


def _check_table(spec: QuerySpec) -> QuerySpec:
    validate_identifier(spec.table, "table")
    return spec


class QueryBuilder:
    """Fluent SELECT builder executed exactly once.

    Every chained call derives a new :class:`QuerySpec`. Invalid identifiers and
    filter values are caught when the call is made; the first such error is kept
    and returned by :meth:`execute` without touching the transport. Query
    failures never raise, they come back in ``QueryResult.error``.

        result = await client.table("tasks").select("id,title").eq("status", "open").limit(10)
    """

    def __init__(
        self,
        table: str,
        transport: Transport,
        strict_single: bool = True,
        max_limit: Optional[int] = None,
    ):
        self._transport = transport
        self._strict_single = strict_single
        self._max_limit = max_limit
        self._error: Optional[RestliteError] = None
        self._executed = False
        self._spec = QuerySpec(table=table)
        self._apply(_check_table)

    @property
    def spec(self) -> QuerySpec:
        return self._spec

    def _apply(self, change: Callable[[QuerySpec], QuerySpec]) -> "QueryBuilder":
        if self._executed:
            raise RuntimeError("Query builder has already been executed")
        if self._error is None:
            try:
                self._spec = change(self._spec)
            except RestliteError as e:
                self._error = e
        return self

    def _filter(self, operator: Operator, column: str, value: Any) -> "QueryBuilder":
        return self._apply(lambda spec: spec.with_filter(make_filter(column, operator, value)))

    def select(self, columns: str = "*") -> "QueryBuilder":
        return self._apply(lambda spec: spec.with_changes(columns=parse_columns(columns)))

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(Operator.EQ, column, value)

    def neq(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(Operator.NEQ, column, value)

    def gt(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(Operator.GT, column, value)

    def gte(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(Operator.GTE, column, value)

    def lt(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(Operator.LT, column, value)

    def lte(self, column: str, value: Any) -> "QueryBuilder":
        return self._filter(Operator.LTE, column, value)

    def like(self, column: str, pattern: str) -> "QueryBuilder":
        return self._filter(Operator.LIKE, column, pattern)

    def ilike(self, column: str, pattern: str) -> "QueryBuilder":
        return self._filter(Operator.ILIKE, column, pattern)

    def in_(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self._filter(Operator.IN, column, list(values))

    def is_(self, column: str, value: Optional[bool]) -> "QueryBuilder":
        return self._filter(Operator.IS, column, value)

    def order(self, column: str, ascending: bool = True) -> "QueryBuilder":
        def _order(spec: QuerySpec) -> QuerySpec:
            return spec.with_changes(order=Order(validate_identifier(column), ascending))

        return self._apply(_order)

    def limit(self, count: int) -> "QueryBuilder":
        return self._apply(
            lambda spec: spec.with_changes(limit=parse_limit("limit", count, self._max_limit))
        )

    def offset(self, count: int) -> "QueryBuilder":
        return self._apply(
            lambda spec: spec.with_changes(offset=parse_non_negative_int("offset", count))
        )

    def range(self, start: int, end: int) -> "QueryBuilder":
        """Rows `start` to `end`, both inclusive"""

        def _range(spec: QuerySpec) -> QuerySpec:
            first = parse_non_negative_int("start", start)
            last = parse_non_negative_int("end", end)
            limit = parse_limit("range", max(last - first + 1, 0), self._max_limit)
            return spec.with_changes(offset=first, limit=limit)

        return self._apply(_range)

    def single(self) -> "QueryBuilder":
        return self._apply(lambda spec: spec.with_changes(single=True))

    async def execute(self) -> QueryResult:
        if self._executed:
            raise RuntimeError("Query builder has already been executed")
        self._executed = True

        if self._error is not None:
            return QueryResult(error=self._error)

        try:
            rows, count = await self._transport.fetch(self._spec)
        except RestliteError as e:
            return QueryResult(error=e)

        if not self._spec.single:
            return QueryResult(data=rows, count=count)

        if not rows:
            return QueryResult(data=None, count=count)
        # The fetch is capped, so the total count is what tells a lone row apart
        if self._strict_single and (len(rows) > 1 or count > 1):
            return QueryResult(
                error=MultipleRowsError(
                    f"Expected a single row from '{self._spec.table}', got {count}"
                ),
                count=count,
            )
        return QueryResult(data=rows[0], count=count)

    def __await__(self) -> Generator[Any, None, QueryResult]:
        return self.execute().__await__()
