"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
"""
from typing import Any, Iterable
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    CONFLICT = "ERR_1003"
    FORBIDDEN = "ERR_1005"
    TRANSIENT_ERROR = "ERR_1007"

    # Shift errors (2xxx)
    SHIFT_NOT_FOUND = "ERR_2001"
    SHIFT_ALREADY_ACTIVE = "ERR_2002"
    SHIFT_NOT_ACTIVE = "ERR_2003"
    SHIFT_NO_CLOSING_READINGS = "ERR_2004"
    SHIFT_VERSION_MISMATCH = "ERR_2005"

    # Nozzle / reading errors (3xxx)
    NOZZLE_NOT_FOUND = "ERR_3001"
    NOZZLES_UNAVAILABLE = "ERR_3002"
    READING_NOT_FOUND = "ERR_3003"
    INVALID_READING = "ERR_3004"

    # Payment errors (4xxx)
    PAYMENT_NOT_FOUND = "ERR_4001"
    PAYMENT_METHOD_NOT_FOUND = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    DENOMINATION_NOT_FOUND = "ERR_4004"

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

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found (or not visible to the caller)"""

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


class ForbiddenException(AppException):
    """Raised when the caller lacks ownership or role"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details=details
        )


class ConflictException(AppException):
    """Base exception for conflicts with the current state of a resource"""

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


class TransientStoreError(AppException):
    """Raised on lock/statement timeouts and serialization failures — safe to retry"""

    def __init__(self, operation: str):
        super().__init__(
            message=f"Temporary storage failure during {operation}, please retry",
            error_code=ErrorCode.TRANSIENT_ERROR,
            status_code=503,
            details={"operation": operation, "retryable": True}
        )


# ==================== משמרות ====================


class ShiftNotFoundError(NotFoundException):
    """Raised when a shift does not exist or is not visible to the caller"""

    def __init__(self, shift_id: int):
        super().__init__("Shift", shift_id, error_code=ErrorCode.SHIFT_NOT_FOUND)


class ShiftAlreadyActiveError(ConflictException):
    """Raised when a user tries to start a second shift"""

    def __init__(self, user_id: int, active_shift_id: int | None = None):
        details: dict[str, Any] = {"user_id": user_id}
        if active_shift_id is not None:
            details["active_shift_id"] = active_shift_id
        super().__init__(
            message="You already have an active shift",
            error_code=ErrorCode.SHIFT_ALREADY_ACTIVE,
            details=details
        )


class ShiftNotActiveError(ConflictException):
    """Raised when a mutation targets a shift that is no longer in progress"""

    def __init__(self, shift_id: int, current_status: str):
        super().__init__(
            message=f"Shift {shift_id} is '{current_status}', only in-progress shifts can be changed",
            error_code=ErrorCode.SHIFT_NOT_ACTIVE,
            details={"shift_id": shift_id, "current_status": current_status}
        )


class NoClosingReadingsError(ValidationException):
    """Raised when completing a shift without a single closing reading"""

    def __init__(self, shift_id: int):
        super().__init__(
            message="Record at least one closing reading before completing the shift",
            error_code=ErrorCode.SHIFT_NO_CLOSING_READINGS,
            details={"shift_id": shift_id}
        )


class ConcurrentModificationError(ConflictException):
    """Raised when the caller's expected version no longer matches the stored one"""

    def __init__(self, shift_id: int, expected_version: int, current_version: int):
        super().__init__(
            message="The shift was changed by another request, reload and try again",
            error_code=ErrorCode.SHIFT_VERSION_MISMATCH,
            details={
                "shift_id": shift_id,
                "expected_version": expected_version,
                "current_version": current_version,
            }
        )


# ==================== פיות ומונים ====================


class NozzlesUnavailableError(ConflictException):
    """Raised when one or more requested nozzles are claimed by another shift"""

    def __init__(self, codes: Iterable[str]):
        codes = sorted(codes)
        super().__init__(
            message=f"The following nozzles are already in use: {', '.join(codes)}",
            error_code=ErrorCode.NOZZLES_UNAVAILABLE,
            details={"nozzle_codes": codes}
        )


class InvalidReadingError(ValidationException):
    """Raised when a meter reading update would break reading consistency"""

    def __init__(self, message: str, reading_id: int, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_READING,
            details={"reading_id": reading_id, **(details or {})}
        )


# ==================== State machine ====================


class InvalidStateTransitionError(ConflictException):
    """Raised when state transition is not allowed"""

    def __init__(self, current_state: str, target_state: str, shift_id: int | None = None):
        super().__init__(
            message=f"Invalid transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "shift_id": shift_id
            }
        )
