"""PostgreSQL to SQLite DDL translation.

Migration files are written for PostgreSQL. Before they run against the
embedded database each file is split into statements, every statement is
either dropped, passed through or rewritten by an ordered list of rules, and
the surviving statements are executed one by one. The file on disk is never
touched.

Rule order matters: a rule whose pattern is a substring of another pattern
must come after it (``BIGSERIAL`` before ``SERIAL``, ``TIMESTAMP`` before
``TIME``, ``JSONB`` before ``JSON``, ``DEFAULT now()`` before ``now()``).
"""

import re
from enum import Enum
from typing import NamedTuple, Optional

from loguru import logger

from restlite.errors import truncate


class SplitState(Enum):
    NORMAL = "normal"
    INSIDE_DOLLAR_QUOTE = "inside_dollar_quote"


DOLLAR_TAG_REGEX = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
STATEMENT_END_REGEX = re.compile(r";[ \t]*(?:--[^\n]*)?(?:\r?\n|$)")
COMMENTS_REGEX = re.compile(r"--[^\n]*|/\*.*?\*/", re.S)
LEADING_COMMENTS_REGEX = re.compile(r"(?:\s*--[^\n]*(?:\n|$)|\s*/\*.*?\*/)*\s*", re.S)
LITERAL_REGEX = re.compile(
    r"--[^\n]*|/\*.*?\*/"  # comments
    r"|'(?:[^']|'')*'"  # string literal
    r'|"(?:[^"]|"")*"'  # quoted identifier
    r"|(\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$).*?\1",  # dollar-quoted body
    re.S,
)
PLACEHOLDER_REGEX = re.compile(r"\x00(\d+)\x00")


def _is_blank(fragment: str) -> bool:
    return not COMMENTS_REGEX.sub("", fragment).strip()


def split_statements(sql: str) -> list[str]:
    """Split a script on ``;`` + newline, never inside ``$$ ... $$`` bodies"""
    statements: list[str] = []

    def flush(fragment: str):
        if not _is_blank(fragment):
            statements.append(fragment.strip())

    state = SplitState.NORMAL
    dollar_tag = ""
    start = i = 0
    n = len(sql)

    while i < n:
        if state is SplitState.INSIDE_DOLLAR_QUOTE:
            end = sql.find(dollar_tag, i)
            if end == -1:
                # Unterminated body, the rest of the input belongs to it
                i = n
                break
            i = end + len(dollar_tag)
            state = SplitState.NORMAL
            continue

        if sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = n if newline == -1 else newline
            continue

        ch = sql[i]
        if ch == "$" and (m := DOLLAR_TAG_REGEX.match(sql, i)):
            dollar_tag = m.group(0)
            state = SplitState.INSIDE_DOLLAR_QUOTE
            i = m.end()
            continue

        if ch == ";" and (m := STATEMENT_END_REGEX.match(sql, i)):
            flush(sql[start : i + 1])
            i = start = m.end()
            continue

        i += 1

    flush(sql[start:])
    return statements


class TypeMappingRule(NamedTuple):
    name: str
    pattern: re.Pattern
    replacement: str

    def apply(self, sql: str) -> str:
        return self.pattern.sub(self.replacement, sql)


# A type only counts as a type when it follows a column name, so that columns
# called `date`, `time` or `uuid` survive the rewrite.
_TYPE_LEAD = r"(?P<lead>[\w\"\x00]\s+)"


def _type_rule(name: str, type_pattern: str, replacement: str) -> TypeMappingRule:
    pattern = re.compile(_TYPE_LEAD + f"(?:{type_pattern})" + r"(?![\w(]|\s*=)", re.I)
    return TypeMappingRule(name, pattern, rf"\g<lead>{replacement}")


def _text_rule(name: str, pattern: str, replacement: str) -> TypeMappingRule:
    return TypeMappingRule(name, re.compile(pattern, re.I), replacement)


_SQLITE_NOW = "datetime('now')"

TYPE_MAPPING_RULES: tuple[TypeMappingRule, ...] = (
    _text_rule(
        "casts",
        r"::\s*(?:character\s+varying|double\s+precision"
        r"|timestamp(?:\s+with(?:out)?\s+time\s+zone)?|[A-Za-z_]\w*)"
        r"(?:\s*\([^)]*\))?(?:\[\])?",
        "",
    ),
    _type_rule("serial_primary_key", r"(?:BIG|SMALL)?SERIAL\s+PRIMARY\s+KEY", "INTEGER PRIMARY KEY AUTOINCREMENT"),
    _type_rule("serial", r"BIGSERIAL|SMALLSERIAL|SERIAL", "INTEGER"),
    _type_rule("uuid", r"UUID", "TEXT"),
    _type_rule("varchar", r"(?:VARCHAR|CHARACTER\s+VARYING|CHARACTER|CHAR)(?:\s*\(\s*\d+\s*\))?", "TEXT"),
    _type_rule(
        "arrays",
        r"[A-Za-z_]\w*(?:\s+PRECISION|\s+VARYING)?(?:\s*\([^)]*\))?\s*\[\s*\d*\s*\]",
        "TEXT",
    ),
    _type_rule("boolean", r"BOOLEAN|BOOL", "INTEGER"),
    _type_rule(
        "timestamp",
        r"TIMESTAMPTZ|TIMESTAMP(?:\s*\(\s*\d+\s*\))?(?:\s+WITH(?:OUT)?\s+TIME\s+ZONE)?",
        "TEXT",
    ),
    _type_rule("date_time", r"DATE|TIMETZ|TIME(?:\s*\(\s*\d+\s*\))?(?:\s+WITH(?:OUT)?\s+TIME\s+ZONE)?", "TEXT"),
    _type_rule("json", r"JSONB|JSON", "TEXT"),
    _type_rule("bytea", r"BYTEA", "BLOB"),
    _type_rule("real", r"DOUBLE\s+PRECISION|(?:NUMERIC|DECIMAL)\s*\([^)]*\)", "REAL"),
    _text_rule("default_now", r"\bDEFAULT\s+(?:now\s*\(\s*\)|CURRENT_TIMESTAMP\b)", f"DEFAULT ({_SQLITE_NOW})"),
    _text_rule(
        "default_uuid",
        r"\bDEFAULT\s+(?:gen_random_uuid|uuid_generate_v4)\s*\(\s*\)",
        "DEFAULT (lower(hex(randomblob(16))))",
    ),
    _text_rule("default_true", r"\bDEFAULT\s+true\b", "DEFAULT 1"),
    _text_rule("default_false", r"\bDEFAULT\s+false\b", "DEFAULT 0"),
    _text_rule("now", r"\bnow\s*\(\s*\)|\bCURRENT_TIMESTAMP\b", _SQLITE_NOW),
    _text_rule(
        "index_concurrently",
        r"\b(CREATE(?:\s+UNIQUE)?|DROP)\s+INDEX\s+CONCURRENTLY\b",
        r"\1 INDEX",
    ),
)


class StatementAction(Enum):
    DROP = "drop"
    SKIP = "skip"
    PASS_THROUGH = "pass_through"


class StatementRule(NamedTuple):
    name: str
    pattern: re.Pattern
    action: StatementAction


def _statement_rule(name: str, pattern: str, action: StatementAction) -> StatementRule:
    return StatementRule(name, re.compile(pattern, re.I | re.S), action)


STATEMENT_RULES: tuple[StatementRule, ...] = (
    # The runner owns the transaction around each file
    _statement_rule(
        "transaction_control",
        r"(?:BEGIN|START\s+TRANSACTION)\b[^;]*;?\s*$"
        r"|(?:COMMIT|END)(?:\s+(?:WORK|TRANSACTION))?\s*;?\s*$",
        StatementAction.DROP,
    ),
    _statement_rule("extension", r"(?:CREATE|DROP)\s+EXTENSION\b", StatementAction.DROP),
    _statement_rule(
        "alter_column_type",
        r"ALTER\s+TABLE\b.*?\bALTER\s+(?:COLUMN\s+)?\w+\s+(?:SET\s+DATA\s+)?TYPE\b",
        StatementAction.SKIP,
    ),
    _statement_rule(
        "postgres_only",
        r"(?:CREATE\s+(?:OR\s+REPLACE\s+)?(?:FUNCTION|PROCEDURE|POLICY|TYPE)\b"
        r"|DROP\s+(?:FUNCTION|PROCEDURE|POLICY|TYPE)\b"
        r"|DO\b|GRANT\b|REVOKE\b|COMMENT\s+ON\b"
        r"|ALTER\s+TABLE\b.*\bROW\s+LEVEL\s+SECURITY\b)",
        StatementAction.DROP,
    ),
    _statement_rule(
        "trigger",
        r"CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\b",
        StatementAction.PASS_THROUGH,
    ),
)


def _mask_literals(sql: str) -> tuple[str, list[str]]:
    literals: list[str] = []

    def _mask(m: re.Match) -> str:
        literals.append(m.group(0))
        return f"\x00{len(literals) - 1}\x00"

    return LITERAL_REGEX.sub(_mask, sql), literals


def _unmask_literals(sql: str, literals: list[str]) -> str:
    return PLACEHOLDER_REGEX.sub(lambda m: literals[int(m.group(1))], sql)


def apply_rules(sql: str, rules: tuple[TypeMappingRule, ...] = TYPE_MAPPING_RULES) -> str:
    """Run the text rules over everything outside quotes"""
    masked, literals = _mask_literals(sql)
    for rule in rules:
        masked = rule.apply(masked)
    return _unmask_literals(masked, literals)


def match_statement_rule(statement: str) -> Optional[StatementRule]:
    body = statement[LEADING_COMMENTS_REGEX.match(statement).end() :]
    body, _ = _mask_literals(body)
    for rule in STATEMENT_RULES:
        if rule.pattern.match(body):
            return rule
    return None


def translate_statement(statement: str) -> Optional[str]:
    """Translate one statement; ``None`` means it must not run on SQLite"""
    rule = match_statement_rule(statement)
    if rule is None:
        return apply_rules(statement)

    if rule.action is StatementAction.SKIP:
        logger.warning(
            f"SQLite cannot alter column types in place, skipping: {truncate(statement, 120)}"
        )
        return None
    if rule.action is StatementAction.DROP:
        logger.debug(f"Dropping {rule.name} statement: {truncate(statement, 80)}")
        return None

    logger.debug(
        f"Trigger detected, passed through as is and may need manual adjustment: "
        f"{truncate(statement, 80)}"
    )
    return statement


def translate_script(sql: str) -> list[str]:
    translated = []
    for statement in split_statements(sql):
        result = translate_statement(statement)
        if result is not None:
            translated.append(result)
    return translated
