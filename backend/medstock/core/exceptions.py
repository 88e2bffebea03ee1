"""
Error taxonomy and safe HTTP errors.

Services raise DomainError subclasses carrying a stable `code`; the handler
registered in main.py renders them as `{"status": false, "code", "message", ...}`.
Ownership mismatches are reported as NOT_FOUND so callers cannot discover
records that belong to someone else.

BusinessError builds generic HTTPExceptions for auth failures and unexpected
server errors: log the detail internally, show the user a generic message.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from medstock.core.config import settings

logger = logging.getLogger(__name__)


class ErrorCode:
    VALIDATION = "VALIDATION"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    ONLY_TODAY_ALLOWED = "ONLY_TODAY_ALLOWED"
    DUPLICATE_RECORD = "DUPLICATE_RECORD"
    DUPLICATE_TODAY_RECORD = "DUPLICATE_TODAY_RECORD"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    INTERNAL = "INTERNAL"


class DomainError(Exception):
    """Business-rule failure with a client-facing message."""

    code = ErrorCode.INTERNAL
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"status": False, "code": self.code, "message": self.message}
        body.update(self.extra)
        return body


class ValidationError(DomainError):
    code = ErrorCode.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidQuantityError(ValidationError):
    code = ErrorCode.INVALID_QUANTITY


class DateMismatchError(ValidationError):
    code = ErrorCode.ONLY_TODAY_ALLOWED


class InvalidTransitionError(DomainError):
    code = ErrorCode.INVALID_TRANSITION
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStockError(DomainError):
    code = ErrorCode.INSUFFICIENT_STOCK
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, available: int, requested: int, message: Optional[str] = None, **extra: Any):
        super().__init__(
            message or f"Insufficient stock. Only {available} units available, requested {requested}",
            available=available,
            requested=requested,
            **extra,
        )
        self.available = available
        self.requested = requested


class DuplicateRecordError(DomainError):
    code = ErrorCode.DUPLICATE_RECORD
    status_code = status.HTTP_409_CONFLICT


class UpstreamUnavailableError(DomainError):
    """Text-generation service failed. Callers fall back, never surface this."""
    code = ErrorCode.UPSTREAM_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class BusinessError:
    """Generic HTTP errors that do not leak internals."""

    @staticmethod
    def unauthorized(reason: str = "") -> HTTPException:
        logger.warning(f"Unauthorized access attempt: {reason}")
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    @staticmethod
    def forbidden(reason: str = "") -> HTTPException:
        logger.warning(f"Forbidden access: {reason}")
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access Denied",
        )

    @staticmethod
    def server_error(original_error: Exception = None, message: str = "An internal error occurred. Please try again later.") -> HTTPException:
        """
        Generic 500. The real error is logged; it reaches the client only in DEBUG.
        """
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=original_error,
            )
        else:
            logger.error("Internal server error occurred")

        detail: Dict[str, Any] = {"status": False, "code": ErrorCode.INTERNAL, "message": message}
        if settings.DEBUG and original_error is not None:
            detail["error"] = str(original_error)
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
