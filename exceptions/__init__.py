"""
Custom exceptions module.

See exceptions/errors.py for the error envelope and codes.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Seed / input
    InvalidAsinError,
    SeedProductNotFoundError,

    # Correlation jobs
    CorrelationJobNotFoundError,
    CorrelationJobActiveError,

    # Correlations
    CorrelationNotFoundError,
    InvalidDecisionError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Seed / input
    "InvalidAsinError",
    "SeedProductNotFoundError",

    # Correlation jobs
    "CorrelationJobNotFoundError",
    "CorrelationJobActiveError",

    # Correlations
    "CorrelationNotFoundError",
    "InvalidDecisionError",
]
