"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. Caller-distinguishable failures for the proposal lifecycle
   (validation vs. illegal transition vs. missing record vs. stale write)

IMPORTANT: NEVER raise the base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses and HTTP status code mapping.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: Signatures are personal data and must not be echoed back in errors
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Lifecycle operations validate before any write (missing client or
    title, empty proposal on send, negative prices). 400 tells the caller the
    request must be corrected, not retried.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class ProposalNotFoundError(ResourceNotFoundError):
    """Raised when a proposal doesn't exist."""

    default_message = "Proposal not found"


class InvoiceNotFoundError(ResourceNotFoundError):
    """Raised when an invoice doesn't exist."""

    default_message = "Invoice not found"


class ClientNotFoundError(ResourceNotFoundError):
    """Raised when a client doesn't exist."""

    default_message = "Client not found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    WHY: Business rules (e.g., "a paid invoice cannot be reopened by a
    revision") are different from validation errors. 422 Unprocessable Entity
    indicates the request was well-formed but semantically incorrect.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when an invalid state transition is attempted.

    WHY: The proposal workflow has a fixed transition table. Attempting an
    invalid transition (e.g., approving a draft proposal) fails loudly and
    never transitions silently.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


class InvoiceLockedError(BusinessRuleViolation):
    """
    Raised when sending an invoice that is still locked from client delivery.

    WHY: An invoice linked to an unapproved proposal must never reach the
    client. 423 Locked distinguishes this from other rule violations.

    HTTP Status: 423 Locked
    """

    status_code = 423
    default_message = "Invoice is locked until its proposal is approved"


class StaleProposalError(AppException):
    """
    Raised when a proposal was modified since the caller last read it.

    WHY: Two staff members editing the same proposal must not overwrite each
    other. The caller re-reads and retries with the fresh version.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Proposal was modified by another request"


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class EmailServiceError(ExternalServiceError):
    """
    Raised when email rendering or sending fails.

    WHY: Notification failures are logged and never block a lifecycle
    transition; the dispatcher catches this exception.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Email service error"


# ============================================================================
# Event Log Exceptions
# ============================================================================


class EventLogImmutableError(AppException):
    """
    Raised when attempting to update or delete a proposal/invoice event.

    WHY: Lifecycle events are the audit trail of who sent, approved or
    declined what. Once written, they cannot be modified.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "Lifecycle events are immutable and cannot be modified"
