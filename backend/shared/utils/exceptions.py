"""
HTTP errors raised by services and routers.

Each class fixes the status code and logs itself when constructed, with
any extra keyword arguments as structured log fields:

    400 ValidationError, RefundNotAllowedError
    401 UnauthorizedError
    403 ForbiddenError, BranchAccessError, InsufficientRoleError
    404 NotFoundError and its entity variants
    409 ConflictError, InvalidTransitionError, DuplicateClosingError
    500 OperationFailedError
    502/503 UpstreamServiceError, PaymentProcessorError,
            FiscalSubmissionError, QueueUnavailableError

    raise NotFoundError("Order", order_id)
    raise ValidationError("Refund amount must be greater than zero", order_id=7)
"""

from typing import Any

from fastapi import HTTPException, status

from shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):

    def __init__(
        self,
        status_code: int,
        detail: str,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        getattr(logger, log_level, logger.warning)(detail, status_code=status_code, **log_context)
        super().__init__(status_code=status_code, detail=detail, headers=headers)


# =============================================================================
# 400
# =============================================================================


class ValidationError(AppException):
    """Rejected input; nothing has been changed."""

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, **log_context)


class RefundNotAllowedError(ValidationError):

    def __init__(self, order_id: int, reason: str, **log_context: Any):
        super().__init__(f"Order {order_id} cannot be refunded: {reason}", order_id=order_id, **log_context)


# =============================================================================
# 401 / 403
# =============================================================================


class UnauthorizedError(AppException):

    def __init__(self, detail: str = "Not authenticated", **log_context: Any):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            detail,
            headers={"WWW-Authenticate": "Bearer"},
            **log_context,
        )


class ForbiddenError(AppException):
    """`action` completes the sentence "Not authorized to ..."."""

    def __init__(self, action: str | None = None, **log_context: Any):
        detail = f"Not authorized to {action}" if action else "Access denied"
        super().__init__(status.HTTP_403_FORBIDDEN, detail, action=action, **log_context)


class BranchAccessError(ForbiddenError):

    def __init__(self, branch_id: int | None = None, **log_context: Any):
        super().__init__("access this branch", branch_id=branch_id, **log_context)


class InsufficientRoleError(ForbiddenError):

    def __init__(self, required_roles: list[str], **log_context: Any):
        super().__init__(
            f"perform this action (requires role: {', '.join(required_roles)})",
            required_roles=required_roles,
            **log_context,
        )


# =============================================================================
# 404
# =============================================================================


class NotFoundError(AppException):
    """
    Missing entity. Rows of another chain are reported the same way, so a
    caller cannot discover ids outside its tenant.
    """

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any):
        detail = f"{entity} not found" if entity_id is None else f"{entity} with ID {entity_id} not found"
        super().__init__(
            status.HTTP_404_NOT_FOUND, detail, entity=entity, entity_id=entity_id, **log_context
        )


class OrderNotFoundError(NotFoundError):

    def __init__(self, order_id: int | None = None, **log_context: Any):
        super().__init__("Order", order_id, **log_context)


class ClosingNotFoundError(NotFoundError):

    def __init__(self, closing_id: int | None = None, **log_context: Any):
        super().__init__("Daily closing", closing_id, **log_context)


class PresetNotFoundError(NotFoundError):

    def __init__(self, preset_id: int | None = None, **log_context: Any):
        super().__init__("Menu preset", preset_id, **log_context)


# =============================================================================
# 409
# =============================================================================


class ConflictError(AppException):

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(status.HTTP_409_CONFLICT, detail, **log_context)


class InvalidTransitionError(ConflictError):

    def __init__(self, entity: str, from_status: str, to_status: str, **log_context: Any):
        super().__init__(
            f"Invalid transition from '{from_status}' to '{to_status}' for {entity}",
            entity=entity,
            from_status=from_status,
            to_status=to_status,
            **log_context,
        )


class DuplicateClosingError(ConflictError):
    """A closing that is not cancelled already exists for the branch and date."""

    def __init__(self, branch_id: int, closing_date: str, **log_context: Any):
        super().__init__(
            f"A daily closing already exists for {closing_date}",
            branch_id=branch_id,
            closing_date=closing_date,
            **log_context,
        )


# =============================================================================
# 500
# =============================================================================


class OperationFailedError(AppException):
    """Unexpected failure after a rollback; safe to retry."""

    def __init__(self, operation: str, **log_context: Any):
        super().__init__(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Failed to {operation}. Please try again.",
            log_level="error",
            operation=operation,
            **log_context,
        )


# =============================================================================
# 502 / 503
# =============================================================================


class UpstreamServiceError(AppException):
    """
    A remote dependency failed (502) or is unavailable (503). `retry_after`
    becomes the Retry-After header.
    """

    def __init__(
        self,
        service: str,
        is_unavailable: bool = False,
        retry_after: int | None = None,
        reason: str | None = None,
        **log_context: Any,
    ):
        if is_unavailable:
            status_code, detail = status.HTTP_503_SERVICE_UNAVAILABLE, f"{service} is temporarily unavailable"
        else:
            status_code, detail = status.HTTP_502_BAD_GATEWAY, f"Error communicating with {service}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(
            status_code,
            detail,
            log_level="error",
            headers={"Retry-After": str(retry_after)} if retry_after else None,
            service=service,
            **log_context,
        )


class PaymentProcessorError(UpstreamServiceError):

    def __init__(self, reason: str | None = None, **log_context: Any):
        super().__init__("payment processor", reason=reason, **log_context)


class FiscalSubmissionError(UpstreamServiceError):
    """WEB-SRM did not accept the closing; it stays a draft."""

    def __init__(self, reason: str | None = None, **log_context: Any):
        super().__init__("WEB-SRM", reason=reason, **log_context)


class QueueUnavailableError(UpstreamServiceError):

    def __init__(self, queue: str, **log_context: Any):
        super().__init__("job queue", is_unavailable=True, queue=queue, **log_context)
