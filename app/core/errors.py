"""Service error taxonomy.

Every business failure raised by app/services is a ServiceError subclass.
The FastAPI exception handler in app/main.py renders them as

    {"error": {"code": "<code>", "message": "<message>"}}

with the class's HTTP status.  Services never build HTTP responses
themselves, and routes never catch these just to re-raise HTTPException.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors surfaced to callers of the core services.

    Attributes:
        message: Human-readable description, safe to show to the caller.
        details: Optional structured context for logs (never rendered).
    """

    code = "service_error"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class NotFoundError(ServiceError):
    """Batch, enrollment, payment, module or lesson does not exist."""

    code = "not_found"
    status_code = 404


class ConflictError(ServiceError):
    """Duplicate enrollment, or an entity is not in the state the
    requested transition needs.  Callers must not retry blindly."""

    code = "conflict"
    status_code = 409


class ValidationError(ServiceError):
    """Input rejected before any write happened."""

    code = "validation_error"
    status_code = 422


class IntegrityViolationError(ServiceError):
    """Gateway-reported facts disagree with the stored payment.

    Treated as a tamper signal.  The message rendered to the caller is
    deliberately generic; the mismatching fields go to ``details`` for
    the logs only.
    """

    code = "integrity_violation"
    status_code = 400

    def __init__(self, details: dict | None = None) -> None:
        super().__init__("Payment verification failed", details)


class ExternalDependencyError(ServiceError):
    """Payment gateway unreachable, timed out, or answered nonsense.

    Retryable: nothing was committed locally.
    """

    code = "external_dependency_failure"
    status_code = 503
