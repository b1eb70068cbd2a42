"""
Business logic services.

Each service handles one stage of the correlation pipeline.
"""

from services.similarity_judge_service import ClaudeJudgeService, get_judge_service
from services.correlation_store_service import CorrelationStore, get_correlation_store
from services.candidate_collector_service import CandidateCollector
from services.similarity_evaluator_service import SimilarityEvaluator
from services.correlation_job_service import (
    CorrelationJobService,
    get_correlation_job_service,
)
from services.correlation_feedback_service import (
    CorrelationFeedbackService,
    get_feedback_service,
)

__all__ = [
    "ClaudeJudgeService",
    "get_judge_service",
    "CorrelationStore",
    "get_correlation_store",
    "CandidateCollector",
    "SimilarityEvaluator",
    "CorrelationJobService",
    "get_correlation_job_service",
    "CorrelationFeedbackService",
    "get_feedback_service",
]
