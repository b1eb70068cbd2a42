"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    ApiSchema,
)
from models.product import (
    CandidateOrigin,
    ProductDescriptor,
    Candidate,
    CollectionResult,
    EvaluationResult,
)
from models.correlation import (
    CORRELATION_CONFLICT_COLUMNS,
    FeedbackDecision,
    CorrelationRecord,
    CorrelationResponse,
    CheckCorrelationsRequest,
    CheckCorrelationsResponse,
    FeedbackRequest,
    FeedbackEntry,
    FeedbackResponse,
)
from models.correlation_job import (
    JobStatus,
    ACTIVE_STATUSES,
    CorrelationJob,
    JobSubmitRequest,
    JobSubmitResponse,
    CorrelationJobResponse,
    CorrelationJobListResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "ApiSchema",

    # Product
    "CandidateOrigin",
    "ProductDescriptor",
    "Candidate",
    "CollectionResult",
    "EvaluationResult",

    # Correlation
    "CORRELATION_CONFLICT_COLUMNS",
    "FeedbackDecision",
    "CorrelationRecord",
    "CorrelationResponse",
    "CheckCorrelationsRequest",
    "CheckCorrelationsResponse",
    "FeedbackRequest",
    "FeedbackEntry",
    "FeedbackResponse",

    # Correlation jobs
    "JobStatus",
    "ACTIVE_STATUSES",
    "CorrelationJob",
    "JobSubmitRequest",
    "JobSubmitResponse",
    "CorrelationJobResponse",
    "CorrelationJobListResponse",
]
