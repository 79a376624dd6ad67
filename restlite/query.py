from typing import Any, Iterable, Mapping, Optional

from restlite.errors import InvalidFilterError
from restlite.grammar import (
    RESERVED_PREFIX,
    encode_filter,
    encode_order,
    parse_columns,
    parse_filters,
    parse_limit,
    parse_non_negative_int,
    parse_order,
    validate_filter_column,
    validate_identifier,
)
from restlite.types import Filter, Operator, QuerySpec

DEFAULT_LIMIT = 100
RESERVED_PARAMS = ("_select", "_order", "_limit", "_offset")

_COMPARISONS = {
    Operator.EQ: "=",
    Operator.NEQ: "!=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}


def compile_filter(f: Filter) -> tuple[str, list[Any]]:
    column = validate_filter_column(f.column)
    op = f.operator

    if op in _COMPARISONS:
        return f"{column} {_COMPARISONS[op]} ?", [f.value]
    if op is Operator.LIKE:
        return f"{column} LIKE ?", [f"%{f.value}%"]
    if op is Operator.ILIKE:
        return f"LOWER({column}) LIKE LOWER(?)", [f"%{f.value}%"]
    if op is Operator.IN:
        placeholders = ", ".join("?" for _ in f.value)
        return f"{column} IN ({placeholders})", list(f.value)
    if op is Operator.IS:
        if f.value == "null":
            return f"{column} IS NULL", []
        return f"{column} IS ?", [1 if f.value == "true" else 0]

    raise InvalidFilterError(f"Unsupported operator: {op}")


def compile_where(filters: Iterable[Filter]) -> tuple[str, list[Any]]:
    conditions = []
    params: list[Any] = []
    for f in filters:
        sql, values = compile_filter(f)
        conditions.append(sql)
        params.extend(values)

    if not conditions:
        return "", params
    return " WHERE " + " AND ".join(conditions), params


def compile_match(match: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """Exact-match WHERE clause used by bulk PATCH/DELETE"""
    conditions = []
    params = []
    for column, value in match.items():
        validate_filter_column(column)
        conditions.append(f"{column} = ?")
        params.append(value)

    if not conditions:
        return "", params
    return " WHERE " + " AND ".join(conditions), params


def effective_limit(spec: QuerySpec, default_limit: int = DEFAULT_LIMIT) -> int:
    if spec.limit is not None:
        return spec.limit
    # Two rows are enough to tell "one" from "many"
    return 2 if spec.single else default_limit


def compile_select(
    spec: QuerySpec, default_limit: int = DEFAULT_LIMIT
) -> tuple[str, list[Any]]:
    table = validate_identifier(spec.table, "table")
    columns = ", ".join(
        c if c == "*" else validate_identifier(c) for c in spec.columns
    )
    where, params = compile_where(spec.filters)

    sql = f"SELECT {columns} FROM {table}{where}"
    if spec.order is not None:
        column = validate_identifier(spec.order.column)
        sql += f" ORDER BY {column} {'ASC' if spec.order.ascending else 'DESC'}"

    sql += " LIMIT ? OFFSET ?"
    params.extend([effective_limit(spec, default_limit), spec.offset])
    return sql, params


def compile_count(spec: QuerySpec) -> tuple[str, list[Any]]:
    table = validate_identifier(spec.table, "table")
    where, params = compile_where(spec.filters)
    return f"SELECT COUNT(*) AS count FROM {table}{where}", params


def spec_to_params(spec: QuerySpec) -> list[tuple[str, str]]:
    """Encode a spec as query-string pairs for ``GET {prefix}/{table}``"""
    params = [(f.column, encode_filter(f)) for f in spec.filters]
    if spec.columns != ("*",):
        params.append(("_select", ",".join(spec.columns)))
    if spec.order is not None:
        params.append(("_order", encode_order(spec.order)))
    if spec.limit is not None or spec.single:
        params.append(("_limit", str(effective_limit(spec))))
    if spec.offset:
        params.append(("_offset", str(spec.offset)))
    return params


def spec_from_params(
    table: str,
    params: Iterable[tuple[str, str]],
    max_limit: Optional[int] = None,
) -> QuerySpec:
    """Decode the query string of ``GET {prefix}/{table}`` into a spec"""
    params = list(params)
    validate_identifier(table, "table")
    reserved = {k: v for k, v in params if k.startswith(RESERVED_PREFIX)}

    unknown = set(reserved) - set(RESERVED_PARAMS)
    if unknown:
        raise InvalidFilterError(f"Unknown reserved parameters: {sorted(unknown)}")

    spec = QuerySpec(table=table, filters=tuple(parse_filters(params)))
    if "_select" in reserved:
        spec = spec.with_changes(columns=parse_columns(reserved["_select"]))
    if "_order" in reserved:
        spec = spec.with_changes(order=parse_order(reserved["_order"]))
    if "_limit" in reserved:
        spec = spec.with_changes(limit=parse_limit("_limit", reserved["_limit"], max_limit))
    if "_offset" in reserved:
        spec = spec.with_changes(offset=parse_non_negative_int("_offset", reserved["_offset"]))
    return spec
