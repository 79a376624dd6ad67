import pytest

from restlite.errors import InvalidFilterError, InvalidIdentifierError
from restlite.grammar import (
    encode_filter,
    make_filter,
    parse_columns,
    parse_filter,
    parse_limit,
    parse_non_negative_int,
    parse_order,
    to_token,
    validate_filter_column,
    validate_identifier,
)
from restlite.types import Filter, Operator, Order


def test_bare_value_means_eq():
    assert parse_filter("status", "open") == Filter("status", Operator.EQ, "open")


def test_operator_prefix():
    assert parse_filter("priority", "gte.3") == Filter("priority", Operator.GTE, "3")
    assert parse_filter("title", "ilike.foo") == Filter("title", Operator.ILIKE, "foo")


def test_value_keeps_dots_after_operator():
    assert parse_filter("score", "eq.1.5").value == "1.5"
    assert parse_filter("version", "lt.2.0.1").value == "2.0.1"


def test_dotted_bare_values_are_eq():
    assert parse_filter("score", "1.5") == Filter("score", Operator.EQ, "1.5")
    assert parse_filter("email", "dev@example.com").operator is Operator.EQ


def test_in_splits_on_commas():
    f = parse_filter("id", "in.1,2,3")
    assert f.operator is Operator.IN
    assert f.value == ("1", "2", "3")


def test_in_requires_values():
    with pytest.raises(InvalidFilterError):
        parse_filter("id", "in.")


@pytest.mark.parametrize("token", ["in.a,,b", "in.a,", "in.,"])
def test_in_rejects_empty_elements(token):
    with pytest.raises(InvalidFilterError, match="List values"):
        parse_filter("title", token)


@pytest.mark.parametrize("raw, expected", [("null", "null"), ("TRUE", "true"), ("false", "false")])
def test_is_values(raw, expected):
    assert parse_filter("done", f"is.{raw}") == Filter("done", Operator.IS, expected)


def test_is_rejects_other_values():
    with pytest.raises(InvalidFilterError, match="'is' filter"):
        parse_filter("done", "is.maybe")


def test_unknown_operator_is_rejected():
    with pytest.raises(InvalidFilterError, match="Unknown operator 'contains'"):
        parse_filter("title", "contains.foo")


def test_operators_are_case_sensitive():
    with pytest.raises(InvalidFilterError):
        parse_filter("title", "EQ.foo")


@pytest.mark.parametrize(
    "column", ["", "1abc", "title; DROP TABLE tasks", "a-b", "name)", "users.id"]
)
def test_invalid_filter_columns(column):
    with pytest.raises(InvalidIdentifierError):
        parse_filter(column, "eq.1")


def test_reserved_prefix_is_not_a_filter_column():
    assert validate_filter_column("title") == "title"
    with pytest.raises(InvalidIdentifierError, match="must not start with '_'"):
        validate_filter_column("_hidden")
    with pytest.raises(InvalidIdentifierError):
        parse_filter("_hidden", "eq.1")
    with pytest.raises(InvalidIdentifierError):
        make_filter("_hidden", Operator.EQ, 1)


def test_validate_identifier():
    assert validate_identifier("_private_1") == "_private_1"
    with pytest.raises(InvalidIdentifierError, match="Invalid table name"):
        validate_identifier("users; DROP TABLE users", "table")
    with pytest.raises(InvalidIdentifierError):
        validate_identifier(None)


def test_encode_filter():
    assert encode_filter(Filter("id", Operator.IN, ("1", "2"))) == "in.1,2"
    assert encode_filter(Filter("title", Operator.LIKE, "a.b")) == "like.a.b"
    f = parse_filter("id", "in.4,5,6")
    assert parse_filter("id", encode_filter(f)) == f


def test_to_token():
    assert to_token(None) == "null"
    assert to_token(True) == "true"
    assert to_token(False) == "false"
    assert to_token(42) == "42"
    assert to_token("x") == "x"


def test_parse_order():
    assert parse_order("priority.desc") == Order("priority", ascending=False)
    assert parse_order("priority.ASC") == Order("priority", ascending=True)
    assert parse_order("priority") == Order("priority", ascending=True)
    with pytest.raises(InvalidFilterError):
        parse_order("priority.sideways")
    with pytest.raises(InvalidIdentifierError):
        parse_order("priority desc")


def test_parse_columns():
    assert parse_columns("*") == ("*",)
    assert parse_columns(" id , title ") == ("id", "title")
    with pytest.raises(InvalidIdentifierError):
        parse_columns("id, title; DROP TABLE tasks")
    with pytest.raises(InvalidIdentifierError):
        parse_columns("*, project(*)")


def test_parse_non_negative_int():
    assert parse_non_negative_int("limit", "10") == 10
    with pytest.raises(InvalidFilterError):
        parse_non_negative_int("limit", "ten")
    with pytest.raises(InvalidFilterError):
        parse_non_negative_int("offset", -1)


def test_parse_limit():
    assert parse_limit("limit", "1000", max_limit=1000) == 1000
    assert parse_limit("limit", 5000) == 5000
    with pytest.raises(InvalidFilterError, match="'limit' must not exceed 1000, got 1001"):
        parse_limit("limit", 1001, max_limit=1000)
    with pytest.raises(InvalidFilterError):
        parse_limit("limit", -1, max_limit=1000)


def test_make_filter_keeps_python_values_typed():
    assert make_filter("priority", Operator.GT, 2) == Filter("priority", Operator.GT, "2")
    assert make_filter("done", Operator.IS, True) == Filter("done", Operator.IS, "true")
    assert make_filter("assignee", Operator.IS, None) == Filter("assignee", Operator.IS, "null")
    assert make_filter("id", Operator.IN, [1, 3]) == Filter("id", Operator.IN, ("1", "3"))

    # Operator-looking values are values, not tokens to re-parse
    assert make_filter("title", Operator.EQ, "in.a") == Filter("title", Operator.EQ, "in.a")
    assert make_filter("title", Operator.LIKE, "is.x") == Filter("title", Operator.LIKE, "is.x")


@pytest.mark.parametrize("values", [[], ["a,b"], ["ok", ""]])
def test_make_filter_rejects_lists_that_cannot_travel(values):
    with pytest.raises(InvalidFilterError):
        make_filter("title", Operator.IN, values)


def test_make_filter_is_values():
    with pytest.raises(InvalidFilterError, match="'is' filter"):
        make_filter("done", Operator.IS, "maybe")
