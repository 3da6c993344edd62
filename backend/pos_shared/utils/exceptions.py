"""
Error types raised by the POS services.

Business-rule failures subclass ``AppException`` (a FastAPI HTTPException),
so routers can let them propagate and the client gets the matching status
code. ``StoreUnavailableError`` never reaches a client: the data layer falls
back to the local store and the sync service aborts the pass.
"""

from typing import Any

from fastapi import HTTPException, status

from pos_shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """Logs itself once on construction with any keyword context."""

    log_level = "warning"

    def __init__(
        self,
        status_code: int,
        detail: str,
        headers: dict[str, str] | None = None,
        **context: Any,
    ):
        getattr(logger, self.log_level)(detail, status_code=status_code, **context)
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.context = context

    def __str__(self) -> str:
        return str(self.detail)


class NotFoundError(AppException):
    """Referenced record does not exist, e.g. ``NotFoundError("Supplier", "local-3")``."""

    def __init__(self, entity: str, entity_id: int | str | None = None, **context: Any):
        label = entity if entity_id is None else f"{entity} {entity_id}"
        super().__init__(status.HTTP_404_NOT_FOUND, f"{label} not found", entity=entity, **context)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(AppException):
    def __init__(self, detail: str, **context: Any):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, **context)


class InsufficientStockError(ValidationError):
    def __init__(self, product_name: str, available: int, requested: int, **context: Any):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            available=available,
            requested=requested,
            **context,
        )
        self.product_name = product_name


class UnsupportedFilterError(ValidationError):
    """Filter operator the SQL compiler has no translation for."""

    def __init__(self, entity: str, fragment: Any, **context: Any):
        super().__init__(f"Unsupported filter for {entity}: {fragment!r}", entity=entity, **context)


class ConflictError(AppException):
    """The record is in a state that forbids the operation."""

    def __init__(self, detail: str, **context: Any):
        super().__init__(status.HTTP_409_CONFLICT, detail, **context)


class InvalidTransitionError(ConflictError):
    def __init__(self, entity: str, from_status: str, to_status: str, **context: Any):
        super().__init__(
            f"Invalid transition from '{from_status}' to '{to_status}' for {entity}",
            from_status=from_status,
            to_status=to_status,
            **context,
        )


class TransactionAbortedError(AppException):
    """
    A multi-record write failed part way and was rolled back in full.

    Raised for infrastructure failures only; business-rule failures inside
    the same transaction keep their own type.
    """

    log_level = "error"

    def __init__(self, operation: str, reason: str | None = None, **context: Any):
        detail = f"Transaction aborted during {operation}"
        if reason:
            detail += f": {reason}"
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, detail, operation=operation, **context)


class StoreUnavailableError(Exception):
    """Remote store call failed or timed out."""

    def __init__(self, operation: str, reason: str | None = None):
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Remote store unavailable during {operation}" + (f": {reason}" if reason else "")
        )
