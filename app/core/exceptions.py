"""
Application exceptions for centralized error handling.

Every business failure of the enrollment and billing core is one of these
typed exceptions. Each carries its own HTTP status and error code so the
handlers in ``error_handlers`` can map kind -> response deterministically.
"""

from decimal import Decimal
from typing import Optional, Dict, Any


class BaseAppException(Exception):
    """Base application exception"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


# === Access ===
class AuthorizationError(BaseAppException):
    """Caller role is not allowed to perform the operation"""

    def __init__(
        self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, 403, "AUTHORIZATION_ERROR", details)


# === Validation ===
class ValidationError(BaseAppException):
    """Input failed a business validation rule"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details)


# === Resources ===
class NotFoundError(BaseAppException):
    """Referenced wave, level, student, enrollment or payment does not exist"""

    def __init__(self, resource: str, identifier: str = None):
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
            details = {"resource": resource, "identifier": identifier}
        else:
            message = f"{resource} not found"
            details = {"resource": resource}
        super().__init__(message, 404, "NOT_FOUND", details)


class ConflictError(BaseAppException):
    """Duplicate enrollment, double booking or a blocked deletion"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 409, "CONFLICT", details)


# === Business rules ===
class InvalidStateError(BaseAppException):
    """Entity is not in a state that allows the operation"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "INVALID_STATE", details)


class CapacityExceededError(BaseAppException):
    """Wave is at or above its maximum capacity"""

    def __init__(self, wave_id: int, capacity_max: int, enrolled_count: int):
        message = f"Wave is full: {enrolled_count}/{capacity_max}"
        details = {
            "wave_id": wave_id,
            "capacity_max": capacity_max,
            "enrolled_count": enrolled_count,
        }
        super().__init__(message, 400, "CAPACITY_EXCEEDED", details)


class InvalidAmountError(BaseAppException):
    """Payment amount is not positive or exceeds the remaining balance"""

    def __init__(
        self,
        message: str,
        amount: Optional[Decimal] = None,
        amount_remaining: Optional[Decimal] = None,
    ):
        details = {}
        if amount is not None:
            details["amount"] = str(amount)
        if amount_remaining is not None:
            details["amount_remaining"] = str(amount_remaining)
        super().__init__(message, 400, "INVALID_AMOUNT", details)


# === Database ===
class DatabaseError(BaseAppException):
    """Unexpected database failure"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 500, "DATABASE_ERROR", details)


class TransactionFailedError(BaseAppException):
    """
    The atomic unit could not complete (deadlock, serialization failure or
    exhausted retries). Nothing was committed; the caller may retry the
    whole operation from scratch.
    """

    def __init__(self, operation: str, reason: str = None):
        message = f"Transaction for '{operation}' failed, retry the operation"
        details = {"operation": operation, "retryable": True}
        if reason:
            details["reason"] = reason
        super().__init__(message, 503, "TRANSACTION_FAILED", details)


class DatabaseConnectionError(BaseAppException):
    """Database connection failure"""

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message, 503, "DATABASE_CONNECTION_ERROR")


class DatabaseTimeoutError(BaseAppException):
    """Database operation timed out"""

    def __init__(self, operation: str, timeout: int):
        message = f"Database operation '{operation}' timed out after {timeout}s"
        details = {"operation": operation, "timeout": timeout}
        super().__init__(message, 504, "DATABASE_TIMEOUT", details)


class DatabaseIntegrityError(BaseAppException):
    """Integrity constraint violated outside of a mapped business rule"""

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        message = f"Database integrity constraint violated: {constraint}"
        error_details = {"constraint": constraint}
        if details:
            error_details.update(details)
        super().__init__(message, 409, "DATABASE_INTEGRITY_ERROR", error_details)


# === Configuration ===
class ConfigurationError(BaseAppException):
    """Invalid or missing configuration"""

    def __init__(self, parameter: str, message: str = None):
        message = (
            message or f"Configuration parameter '{parameter}' is invalid or missing"
        )
        details = {"parameter": parameter}
        super().__init__(message, 500, "CONFIGURATION_ERROR", details)
