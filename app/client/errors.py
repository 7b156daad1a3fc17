"""Error types raised by the database client.

Every delegate call either returns data or raises one of the classes below.
Database driver errors are translated in :func:`translate_errors`.
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import exc as sa_exc

logger = logging.getLogger("database")


class ClientError(Exception):
    """Base class for every error the client raises."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class KnownRequestError(ClientError):
    """The database rejected the request for a known, coded reason."""

    code = "P2000"

    def __init__(self, message: str, code: Optional[str] = None, meta: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.meta = meta or {}

    def __str__(self):
        return f"[{self.code}] {self.message}"


class UniqueConstraintError(KnownRequestError):
    code = "P2002"


class ForeignKeyConstraintError(KnownRequestError):
    code = "P2003"


class ConstraintError(KnownRequestError):
    code = "P2004"


class NullConstraintError(KnownRequestError):
    code = "P2011"


class RecordNotFoundError(KnownRequestError):
    code = "P2025"


class UnknownRequestError(ClientError):
    """The database failed without a recognised error code."""


class EnginePanicError(ClientError):
    """The database driver reported an internal error."""


class InitializationError(ClientError):
    """The engine could not be created or the database is unreachable."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class ValidationError(ClientError):
    """The arguments of a client call are malformed."""


TRANSACTION_CLOSED = "P2028"
POOL_TIMEOUT = "P2024"

_SQLITE_COLUMNS = re.compile(r"constraint failed: (.+)$")


def _sqlite_fields(text: str) -> List[str]:
    match = _SQLITE_COLUMNS.search(text)
    if not match:
        return []
    return [part.strip().split(".")[-1] for part in match.group(1).split(",")]


def _integrity_error(error: sa_exc.IntegrityError) -> KnownRequestError:
    orig = error.orig
    text = str(orig)
    pgcode = getattr(orig, "pgcode", None)
    diag = getattr(orig, "diag", None)

    if pgcode == "23505" or "UNIQUE constraint failed" in text:
        fields = _sqlite_fields(text)
        if not fields and diag is not None and diag.constraint_name:
            fields = [diag.constraint_name]
        return UniqueConstraintError(
            f"Unique constraint failed on the fields: ({', '.join(fields)})",
            meta={"target": fields},
        )
    if pgcode == "23503" or "FOREIGN KEY constraint failed" in text:
        name = diag.constraint_name if diag is not None else None
        return ForeignKeyConstraintError(
            f"Foreign key constraint failed on the field: `{name or 'foreign key'}`",
            meta={"field_name": name},
        )
    if pgcode == "23502" or "NOT NULL constraint failed" in text:
        fields = _sqlite_fields(text)
        if not fields and diag is not None and diag.column_name:
            fields = [diag.column_name]
        return NullConstraintError(
            f"Null constraint violation on the fields: ({', '.join(fields)})",
            meta={"constraint": fields},
        )
    return ConstraintError(f"A constraint failed on the database: `{text}`", meta={"database_error": text})


def translate(error: Exception) -> ClientError:
    """Map a SQLAlchemy error onto the client taxonomy."""
    if isinstance(error, sa_exc.IntegrityError):
        return _integrity_error(error)
    if isinstance(error, sa_exc.TimeoutError):
        return KnownRequestError(
            f"Timed out fetching a new connection from the connection pool. ({error})",
            code=POOL_TIMEOUT,
        )
    if isinstance(error, sa_exc.InternalError):
        return EnginePanicError(str(error.orig))
    if isinstance(error, sa_exc.DBAPIError):
        return UnknownRequestError(str(error.orig))
    if isinstance(error, sa_exc.ArgumentError):
        return ValidationError(str(error))
    return UnknownRequestError(str(error))


@contextmanager
def translate_errors(on_error=None):
    """Re-raise SQLAlchemy errors as client errors.

    ``on_error`` receives every translated error before it propagates.
    """
    try:
        yield
    except ClientError as e:
        if on_error is not None:
            on_error(e)
        raise
    except sa_exc.SQLAlchemyError as e:
        error = translate(e)
        if on_error is not None:
            on_error(error)
        raise error from e
