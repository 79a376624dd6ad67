from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, TypedDict, Union

Row = dict[str, Any]
FilterValue = Union[str, tuple[str, ...]]


class Operator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    IS = "is"


@dataclass(frozen=True)
class Filter:
    column: str
    operator: Operator
    value: FilterValue


@dataclass(frozen=True)
class Order:
    column: str
    ascending: bool = True


@dataclass(frozen=True)
class QuerySpec:
    """Everything needed to run one SELECT. Never mutated, only replaced."""

    table: str
    filters: tuple[Filter, ...] = ()
    columns: tuple[str, ...] = ("*",)
    order: Optional[Order] = None
    limit: Optional[int] = None
    offset: int = 0
    single: bool = False

    def with_filter(self, f: Filter) -> "QuerySpec":
        return replace(self, filters=self.filters + (f,))

    def with_changes(self, **changes) -> "QuerySpec":
        return replace(self, **changes)


@dataclass
class QueryResult:
    data: Any = None
    error: Optional[Exception] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MigrationRecord(TypedDict):
    name: str
    executed_at: str


@dataclass
class MigrationReport:
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, Exception] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed
