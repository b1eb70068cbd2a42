"""
Correlation feedback.

Owners accept or decline the correlations a job produced; decisions can be
undone. Decisions live on the correlation row itself.
"""

from typing import Optional
import structlog

from exceptions import (
    CorrelationNotFoundError,
    InvalidAsinError,
    InvalidDecisionError,
)
from models.correlation import FeedbackDecision, FeedbackEntry, FeedbackRequest, FeedbackResponse
from services.correlation_store_service import CorrelationStore, get_correlation_store
from utils.asin_utils import is_valid_asin, normalize_asin

logger = structlog.get_logger(__name__)


def parse_decision(decision: Optional[str]) -> FeedbackDecision:
    """
    Parse a decision string (case-insensitive).

    Raises:
        InvalidDecisionError: Not accepted/declined
    """
    try:
        return FeedbackDecision((decision or "").strip().lower())
    except ValueError:
        raise InvalidDecisionError(decision)


class CorrelationFeedbackService:
    """Record, undo and read owner decisions on correlations."""

    def __init__(self, store: Optional[CorrelationStore] = None):
        self.store = store or get_correlation_store()

    def submit(self, request: FeedbackRequest) -> FeedbackResponse:
        """
        Apply a decide or undo action.

        Raises:
            InvalidAsinError: Malformed seed or candidate ASIN
            InvalidDecisionError: decide without accepted/declined
            CorrelationNotFoundError: No such correlation for the owner
        """
        for asin in (request.seed_identifier, request.candidate_identifier):
            if not is_valid_asin(asin):
                raise InvalidAsinError(asin)

        if request.action == "undo":
            decision = None
        else:
            decision = parse_decision(request.decision)

        updated = self.store.set_decision(
            request.owner_id,
            request.seed_identifier,
            request.candidate_identifier,
            decision,
            decline_reason=request.decline_reason
        )

        if not updated:
            raise CorrelationNotFoundError(request.seed_identifier, request.candidate_identifier)

        logger.info(
            "correlation_feedback_recorded",
            seed_identifier=request.seed_identifier,
            candidate_identifier=request.candidate_identifier,
            action=request.action,
            decision=decision.value if decision else None
        )

        if decision is None:
            message = "Decision removed"
        else:
            message = f"Correlation {decision.value}"

        return FeedbackResponse(
            message=message,
            seed_identifier=request.seed_identifier,
            candidate_identifier=request.candidate_identifier,
            decision=decision
        )

    def get_feedback(self, seed_identifier: str, owner_id: str) -> list[FeedbackEntry]:
        """Decisions recorded for a seed's correlations."""
        if not is_valid_asin(seed_identifier):
            raise InvalidAsinError(seed_identifier)

        records = self.store.query_by_seed(normalize_asin(seed_identifier), owner_id)
        return [
            FeedbackEntry(
                asin=record.candidate_identifier,
                decision=record.decision,
                decision_at=record.decision_at
            )
            for record in records
            if record.decision is not None
        ]


_feedback_service: Optional[CorrelationFeedbackService] = None


def get_feedback_service() -> CorrelationFeedbackService:
    """Get or create CorrelationFeedbackService instance."""
    global _feedback_service
    if _feedback_service is None:
        _feedback_service = CorrelationFeedbackService()
    return _feedback_service
