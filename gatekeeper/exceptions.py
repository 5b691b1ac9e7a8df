"""
Custom Exception Classes for Gatekeeper

This module defines custom exceptions for consistent error responses.
Verification failures deliberately share one message and one error code so
that callers cannot tell a wrong code from an expired or exhausted one.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in error responses."""

    # Authentication
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"

    # Two-factor
    TWO_FACTOR_INVALID_SESSION = "TWO_FACTOR_INVALID_SESSION"
    TWO_FACTOR_INVALID_CODE = "TWO_FACTOR_INVALID_CODE"
    TWO_FACTOR_NOT_SET_UP = "TWO_FACTOR_NOT_SET_UP"
    TWO_FACTOR_INVALID_SECRET = "TWO_FACTOR_INVALID_SECRET"

    # Resources
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_DUPLICATE_RESOURCE = "VALIDATION_DUPLICATE_RESOURCE"
    INVALID_OPERATION = "INVALID_OPERATION"

    # Infrastructure
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class GatekeeperError(Exception):
    """Base exception class for all Gatekeeper exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(GatekeeperError):
    """Raised when authentication fails"""

    def __init__(
        self,
        message: str = "Authentication failed",
        error_code: ErrorCode = ErrorCode.AUTH_FAILED,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message, status_code=status.HTTP_401_UNAUTHORIZED, error_code=error_code, details=details
        )


class InvalidCredentialsError(AuthenticationError):
    """Raised when the primary credential (password) does not match"""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message=message, error_code=ErrorCode.AUTH_INVALID_CREDENTIALS)


class InvalidSessionError(AuthenticationError):
    """Raised when a login challenge nonce is missing, stale or already used"""

    def __init__(self, message: str = "Invalid session"):
        super().__init__(message=message, error_code=ErrorCode.TWO_FACTOR_INVALID_SESSION)


class InvalidVerificationCodeError(AuthenticationError):
    """Raised for every kind of second-factor verification failure"""

    def __init__(self):
        super().__init__(message="Invalid verification code", error_code=ErrorCode.TWO_FACTOR_INVALID_CODE)


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(GatekeeperError):
    """Base class for resource not found errors"""

    def __init__(self, resource_type: str, resource_id: Any | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code=ErrorCode.RESOURCE_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class TrustedDeviceNotFoundError(ResourceNotFoundError):
    """Raised when a trusted device does not exist for the current user"""

    def __init__(self, device_id: Any | None = None):
        super().__init__(resource_type="Trusted device", resource_id=device_id)


class TwoFactorNotSetUpError(GatekeeperError):
    """Raised when confirming or verifying without a matching registration"""

    def __init__(self, message: str = "Two-factor authentication is not set up"):
        super().__init__(
            message=message, status_code=status.HTTP_400_BAD_REQUEST, error_code=ErrorCode.TWO_FACTOR_NOT_SET_UP
        )


# ============================================================================
# Validation & Business Logic Exceptions
# ============================================================================


class ValidationError(GatekeeperError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=ErrorCode.VALIDATION_FAILED,
            details=error_details,
        )


class InvalidSecretError(ValidationError):
    """Raised when a base32 secret contains symbols outside the alphabet"""

    def __init__(self, message: str = "Secret is not valid base32"):
        super().__init__(message=message, field="secret")
        self.error_code = ErrorCode.TWO_FACTOR_INVALID_SECRET


class InvalidOperationError(GatekeeperError):
    """Raised when an operation is invalid in the current state"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=ErrorCode.INVALID_OPERATION,
            details=details,
        )

