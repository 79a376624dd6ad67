from restlite.builder import QueryBuilder
from restlite.client import LocalClient, RestClient
from restlite.config import Config
from restlite.database import Database
from restlite.migrations import MigrationRunner
from restlite.types import Filter, Operator, QueryResult, QuerySpec

__all__ = [
    "Config",
    "Database",
    "Filter",
    "LocalClient",
    "MigrationRunner",
    "Operator",
    "QueryBuilder",
    "QueryResult",
    "QuerySpec",
    "RestClient",
]
