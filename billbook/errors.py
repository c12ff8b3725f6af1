from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

logger = logging.getLogger(__name__)


# =========================
# Taxonomy
# =========================
class BillbookError(Exception):
    status_code = 500
    default_message = "An unexpected error occurred while processing your request"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationFailed(BillbookError):
    status_code = 400
    default_message = "Invalid data"

    def __init__(self, message: Optional[str] = None, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


class ConflictError(BillbookError):
    status_code = 409
    default_message = "A unique constraint was violated. This record already exists."


class NotFoundError(BillbookError):
    status_code = 404
    default_message = "Not found"


class ReferentialGuardError(BillbookError):
    status_code = 400
    default_message = "Record is still referenced by other records"


class ExternalServiceError(BillbookError):
    status_code = 500
    default_message = "External service failure"


class ExtractionFailed(ExternalServiceError):
    default_message = "Failed to process bill image"


class ParseFailed(ExternalServiceError):
    default_message = "Failed to extract structured data from bill image"


class UnauthorizedError(BillbookError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(BillbookError):
    status_code = 403
    default_message = "Forbidden"


class InternalError(BillbookError):
    status_code = 500


class TransactionTimeout(BillbookError):
    status_code = 503
    default_message = "The database was busy; the request timed out. Please retry."


# =========================
# DB error classification
# =========================
_UNIQUE_VIOLATION = "23505"
_SERIALIZATION_FAILURE = ("40001", "40P01")
_TIMEOUTS = ("55P03", "57014")  # lock_not_available, query_canceled


def _sqlstate(exc: SQLAlchemyError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    # psycopg 3 exposes .sqlstate, psycopg2 .pgcode
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def classify_db_error(exc: SQLAlchemyError) -> BillbookError:
    """Map a SQLAlchemy error raised inside a transaction onto the taxonomy."""
    code = _sqlstate(exc)
    if isinstance(exc, IntegrityError):
        orig = str(getattr(exc, "orig", exc))
        if code == _UNIQUE_VIOLATION or "UNIQUE" in orig.upper():
            if "uq_bill_number_date" in orig or "bills.bill_number" in orig:
                return ConflictError("Bill with the same bill number and date already exists")
            return ConflictError()
        return ConflictError("The data conflicts with existing records")
    if code in _SERIALIZATION_FAILURE:
        return ConflictError("The record was modified concurrently. Please retry.")
    if code in _TIMEOUTS:
        return TransactionTimeout()
    if isinstance(exc, OperationalError) and "locked" in str(exc).lower():
        return TransactionTimeout()
    return InternalError()


# =========================
# Envelope
# =========================
def envelope(
    success: bool,
    status: int,
    message: Any,
    data: Any = None,
    errors: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success, "message": message, "status": status}
    if data is not None:
        body["data"] = data
    if errors:
        body["errors"] = errors
    return body


def error_response(exc: BillbookError) -> JSONResponse:
    errors = exc.errors if isinstance(exc, ValidationFailed) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(False, exc.status_code, exc.message, errors=errors),
    )
