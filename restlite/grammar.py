"""Filter token grammar shared by the REST server and both query paths.

A filter travels as one query parameter, ``{column}={op}.{value}``. Tokens are
decoded into :class:`~restlite.types.Filter` values once, at the boundary, and
everything downstream works on the decoded form.
"""

import re
from typing import Any, Iterable, Optional

from restlite.errors import InvalidFilterError, InvalidIdentifierError
from restlite.types import Filter, Operator, Order

IDENTIFIER_REGEX = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
# Query parameters starting with this prefix are never filters
RESERVED_PREFIX = "_"
OPERATOR_NAME_REGEX = re.compile(r"^[A-Za-z]+$")

VALID_OPERATORS = {op.value: op for op in Operator}
IS_VALUES = ("null", "true", "false")


def is_valid_identifier(name: Any) -> bool:
    return isinstance(name, str) and IDENTIFIER_REGEX.fullmatch(name) is not None


def validate_identifier(name: Any, kind: str = "column") -> str:
    if not is_valid_identifier(name):
        raise InvalidIdentifierError(f"Invalid {kind} name: {name!r}")
    return name


def validate_filter_column(column: Any) -> str:
    validate_identifier(column)
    if column.startswith(RESERVED_PREFIX):
        raise InvalidIdentifierError(
            f"Filter column must not start with '{RESERVED_PREFIX}': {column!r}"
        )
    return column


def _check_list(column: str, values: tuple[str, ...]) -> tuple[str, ...]:
    if not values:
        raise InvalidFilterError(f"Empty list in filter on '{column}'")
    for value in values:
        # Lists travel comma-joined and must split back the same way
        if value == "" or "," in value:
            raise InvalidFilterError(
                f"List values in filter on '{column}' must be non-empty and "
                f"free of ',': {value!r}"
            )
    return values


def _check_is(column: str, raw: str) -> str:
    value = raw.lower()
    if value not in IS_VALUES:
        raise InvalidFilterError(
            f"'is' filter on '{column}' expects one of {IS_VALUES}, got {raw!r}"
        )
    return value


def parse_filter(column: str, token: str) -> Filter:
    """Decode ``"<op>.<value>"`` (or a bare value, meaning ``eq``)"""
    validate_filter_column(column)

    op_name, sep, raw = token.partition(".")
    if not sep:
        return Filter(column, Operator.EQ, token)

    operator = VALID_OPERATORS.get(op_name)
    if operator is None:
        if OPERATOR_NAME_REGEX.match(op_name):
            raise InvalidFilterError(
                f"Unknown operator '{op_name}' in filter on '{column}': {token}"
            )
        # Dotted bare values such as "1.5" or "a@b.com"
        return Filter(column, Operator.EQ, token)

    if operator is Operator.IN:
        values = tuple(raw.split(",")) if raw else ()
        return Filter(column, operator, _check_list(column, values))

    if operator is Operator.IS:
        return Filter(column, operator, _check_is(column, raw))

    return Filter(column, operator, raw)


def make_filter(column: str, operator: Operator, value: Any) -> Filter:
    """Build a filter from Python values, as the builder methods receive them"""
    validate_filter_column(column)

    if operator is Operator.IN:
        values = tuple(to_token(v) for v in value)
        return Filter(column, operator, _check_list(column, values))

    if operator is Operator.IS:
        return Filter(column, operator, _check_is(column, to_token(value)))

    return Filter(column, operator, to_token(value))


def encode_filter(f: Filter) -> str:
    if f.operator is Operator.IN:
        return f"{f.operator.value}.{','.join(f.value)}"
    return f"{f.operator.value}.{f.value}"


def to_token(value: Any) -> str:
    """Render a Python value the way it travels in a filter token"""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_columns(columns: str) -> tuple[str, ...]:
    columns = columns.strip()
    if columns in ("", "*"):
        return ("*",)

    parsed = tuple(c.strip() for c in columns.split(","))
    for column in parsed:
        validate_identifier(column)
    return parsed


def parse_order(token: str) -> Order:
    column, _, direction = token.partition(".")
    validate_identifier(column)
    direction = direction.lower() or "asc"
    if direction not in ("asc", "desc"):
        raise InvalidFilterError(f"Invalid order direction: {token}")
    return Order(column, ascending=direction == "asc")


def encode_order(order: Order) -> str:
    return f"{order.column}.{'asc' if order.ascending else 'desc'}"


def parse_non_negative_int(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidFilterError(f"'{name}' must be an integer, got {value!r}")
    if number < 0:
        raise InvalidFilterError(f"'{name}' must not be negative, got {number}")
    return number


def parse_limit(name: str, value: Any, max_limit: Optional[int] = None) -> int:
    limit = parse_non_negative_int(name, value)
    if max_limit is not None and limit > max_limit:
        raise InvalidFilterError(f"'{name}' must not exceed {max_limit}, got {limit}")
    return limit


def parse_filters(params: Iterable[tuple[str, str]]) -> list[Filter]:
    """Decode all non-reserved ``(key, value)`` pairs of a query string"""
    return [
        parse_filter(key, value)
        for key, value in params
        if not key.startswith(RESERVED_PREFIX)
    ]
