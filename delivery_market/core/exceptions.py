"""
Custom Exception Hierarchy

Every error raised by the delivery state machine and the wallet ledger
carries a stable ErrorCode so callers can branch on the kind of failure
without parsing messages.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    CONFLICT = "ERR_1003"
    FORBIDDEN = "ERR_1005"
    OPERATION_TIMEOUT = "ERR_1007"

    # Delivery errors (2xxx)
    DELIVERY_NOT_FOUND = "ERR_2001"
    DELIVERY_ALREADY_CLAIMED = "ERR_2002"
    ATTACHMENT_EXISTS = "ERR_2003"

    # Wallet errors (4xxx)
    WALLET_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_FUNDS = "ERR_4002"
    DUPLICATE_CREDIT = "ERR_4005"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        """Whether an automatic retry can ever succeed"""
        return False

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationError(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundError(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class DeliveryNotFoundError(NotFoundError):
    """Raised when delivery is not found"""

    def __init__(self, delivery_id: str):
        super().__init__("Delivery", delivery_id, ErrorCode.DELIVERY_NOT_FOUND)


class WalletNotFoundError(NotFoundError):
    """Raised when wallet is not found"""

    def __init__(self, user_id: str):
        super().__init__("Wallet", user_id, ErrorCode.WALLET_NOT_FOUND)


class ConflictError(AppException):
    """
    Concurrent-state mismatch: the document changed between read and write.

    The caller should refresh its view and either retry or report that the
    resource was taken.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFLICT,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )

    @property
    def retryable(self) -> bool:
        return True


class DeliveryAlreadyClaimedError(ConflictError):
    """Raised when a second driver tries to claim a delivery"""

    def __init__(self, delivery_id: str, current_status: str):
        super().__init__(
            message=f"Delivery {delivery_id} is no longer pending",
            error_code=ErrorCode.DELIVERY_ALREADY_CLAIMED,
            details={"delivery_id": delivery_id, "current_status": current_status}
        )


class AttachmentExistsError(ConflictError):
    """Raised when proof of delivery or feedback is written a second time"""

    def __init__(self, delivery_id: str, attachment: str):
        super().__init__(
            message=f"Delivery {delivery_id} already has {attachment}",
            error_code=ErrorCode.ATTACHMENT_EXISTS,
            details={"delivery_id": delivery_id, "attachment": attachment}
        )

    @property
    def retryable(self) -> bool:
        return False


class DuplicateCreditError(ConflictError):
    """Raised when duplicate-credit protection is enabled and the delivery was already credited"""

    def __init__(self, user_id: str, delivery_id: str, kind: str):
        super().__init__(
            message=f"Delivery {delivery_id} was already credited to {user_id} as {kind}",
            error_code=ErrorCode.DUPLICATE_CREDIT,
            details={"user_id": user_id, "delivery_id": delivery_id, "kind": kind}
        )

    @property
    def retryable(self) -> bool:
        return False


class InvalidTransitionError(AppException):
    """Raised when a status transition would break the linear lifecycle"""

    def __init__(
        self,
        delivery_id: str,
        current_status: str,
        target_status: str | None = None,
        message: str | None = None
    ):
        super().__init__(
            message=message or (
                f"Invalid transition for delivery {delivery_id} "
                f"from '{current_status}' to '{target_status or '-'}'"
            ),
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={
                "delivery_id": delivery_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


class AuthorizationError(AppException):
    """Raised when the acting party is not entitled to the operation"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details=details
        )


class InsufficientFundsError(AppException):
    """Raised when a withdrawal exceeds the wallet balance"""

    def __init__(self, user_id: str, balance: int, requested: int):
        super().__init__(
            message=f"Insufficient funds for {user_id}",
            error_code=ErrorCode.INSUFFICIENT_FUNDS,
            status_code=400,
            details={
                "user_id": user_id,
                "balance": balance,
                "requested": requested,
            }
        )


class OperationTimeoutError(AppException):
    """
    The caller stopped waiting; the outcome of the write is unknown.

    The underlying write may still have succeeded, so callers must re-read
    the actual state before retrying and must never blindly resubmit a
    wallet credit.
    """

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            message=f"{operation} timed out after {timeout_seconds}s",
            error_code=ErrorCode.OPERATION_TIMEOUT,
            status_code=504,
            details={"operation": operation, "timeout_seconds": timeout_seconds}
        )

    @property
    def retryable(self) -> bool:
        return True
