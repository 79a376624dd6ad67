from typing import Any, Type


class RestliteError(Exception):
    code = "restlite_error"
    status = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class RequestValidationError(RestliteError):
    code = "invalid_request"
    status = 400


class InvalidIdentifierError(RestliteError):
    """A table or column name is not a plain SQL identifier"""

    code = "invalid_identifier"
    status = 400


class InvalidFilterError(RestliteError):
    """A filter token, limit or offset could not be parsed"""

    code = "invalid_filter"
    status = 400


class QueryExecutionError(RestliteError):
    """The database driver (or the remote server) rejected the query"""

    code = "query_error"
    status = 500


class MultipleRowsError(RestliteError):
    code = "multiple_rows"
    status = 406


class MigrationStatementError(RestliteError):
    code = "migration_error"

    def __init__(self, filename: str, index: int, statement: str, cause: Exception):
        self.filename = filename
        self.index = index
        self.statement = statement
        self.cause = cause
        super().__init__(
            f"Statement #{index + 1} of {filename} failed: {truncate(str(cause))} "
            f"[{truncate(statement, 120)}]"
        )


_ERRORS_BY_CODE: dict[str, Type[RestliteError]] = {
    cls.code: cls
    for cls in (
        RequestValidationError,
        InvalidIdentifierError,
        InvalidFilterError,
        QueryExecutionError,
        MultipleRowsError,
    )
}


def error_from_payload(status: int, payload: Any) -> RestliteError:
    """Rebuild a typed error from a server error response"""
    if isinstance(payload, dict):
        message = str(payload.get("error") or f"HTTP {status}")
        cls = _ERRORS_BY_CODE.get(payload.get("code", ""), QueryExecutionError)
        return cls(message, payload.get("details"))

    return QueryExecutionError(f"HTTP {status}: {payload}")


def truncate(text: str, limit: int = 200) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
