"""
Custom exception classes for the application.

Every error carries a code, HTTP status and details so routes can return the
same envelope for synchronous failures that background jobs record as
error messages.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "INVALID_ASIN")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# SEED / INPUT ERRORS
# ===================

class InvalidAsinError(AppError):
    """Seed identifier is not a well-formed ASIN (400)."""

    def __init__(self, asin: Optional[str]):
        super().__init__(
            code="INVALID_ASIN",
            message="Valid ASIN required (B + 9 letters or digits)",
            status_code=400,
            details={"provided": asin}
        )


class SeedProductNotFoundError(NotFoundError):
    """Seed ASIN returned no catalog entry."""

    def __init__(self, asin: str):
        super().__init__(
            resource="Product",
            identifier=asin,
            code="SEED_PRODUCT_NOT_FOUND"
        )
        self.message = f"Product not found in catalog: {asin}"


# ===================
# CORRELATION JOB ERRORS
# ===================

class CorrelationJobNotFoundError(NotFoundError):
    """Correlation job not found."""

    def __init__(self, job_id: str):
        super().__init__(
            resource="Correlation job",
            identifier=job_id,
            code="CORRELATION_JOB_NOT_FOUND"
        )


class CorrelationJobActiveError(ConflictError):
    """A pending or processing job already exists for this owner and seed."""

    def __init__(self, job_id: Optional[str], seed_identifier: str, status: str):
        super().__init__(
            code="CORRELATION_JOB_ACTIVE",
            message="A correlation job for this ASIN is already in progress",
            details={
                "job_id": job_id,
                "seed_identifier": seed_identifier,
                "status": status
            }
        )
        self.job_id = job_id


# ===================
# CORRELATION ERRORS
# ===================

class CorrelationNotFoundError(NotFoundError):
    """No stored correlation for (owner, seed, candidate)."""

    def __init__(self, seed_identifier: str, candidate_identifier: str):
        super().__init__(
            resource="Correlation",
            identifier=f"{seed_identifier}:{candidate_identifier}",
            code="CORRELATION_NOT_FOUND"
        )


class InvalidDecisionError(ValidationError):
    """Feedback decision must be accepted or declined."""

    def __init__(self, decision: Optional[str]):
        super().__init__(
            code="INVALID_DECISION",
            message="Decision must be accepted or declined",
            details={"provided": decision, "valid": ["accepted", "declined"]}
        )
