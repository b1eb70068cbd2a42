"""
Correlation schemas.

A correlation is one approved (owner, seed, candidate) association. Column
names in the asin_correlations table predate this service, so records map
to and from rows explicitly.
"""

from pydantic import Field, field_validator
from typing import Literal, Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema, ApiSchema
from models.product import Candidate, CandidateOrigin, ProductDescriptor


# Natural key used for upsert conflict resolution
CORRELATION_CONFLICT_COLUMNS = "user_id,search_asin,similar_asin"


class FeedbackDecision(str, Enum):
    """Owner's verdict on a stored correlation."""
    ACCEPTED = "accepted"
    DECLINED = "declined"


class CorrelationRecord(BaseSchema):
    """Persisted correlation."""

    owner_id: str
    seed_identifier: str
    candidate_identifier: str
    candidate_title: str
    candidate_image_url: str = ""
    seed_image_url: str = ""
    origin: CandidateOrigin
    candidate_url: str = ""
    source_tag: str
    decision: Optional[FeedbackDecision] = None
    decision_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.owner_id, self.seed_identifier, self.candidate_identifier)

    @classmethod
    def from_candidate(
        cls,
        owner_id: str,
        seed: ProductDescriptor,
        candidate: Candidate,
        source_tag: str,
        seed_identifier: Optional[str] = None
    ) -> "CorrelationRecord":
        """
        Build the record written for an approved candidate.

        seed_identifier overrides seed.identifier when the catalog answered
        with a different canonical ASIN than the one submitted.
        """
        return cls(
            owner_id=owner_id,
            seed_identifier=seed_identifier or seed.identifier,
            candidate_identifier=candidate.identifier,
            candidate_title=candidate.title,
            candidate_image_url=candidate.image_url,
            seed_image_url=seed.image_url,
            origin=candidate.origin,
            candidate_url=candidate.source_url,
            source_tag=source_tag
        )

    @classmethod
    def from_row(cls, row: dict) -> "CorrelationRecord":
        """Map an asin_correlations row."""
        return cls(
            owner_id=row["user_id"],
            seed_identifier=row["search_asin"],
            candidate_identifier=row["similar_asin"],
            candidate_title=row.get("correlated_title") or "Unknown",
            candidate_image_url=row.get("image_url") or "",
            seed_image_url=row.get("search_image_url") or "",
            origin=row.get("suggested_type") or CandidateOrigin.SIMILAR,
            candidate_url=row.get("correlated_amazon_url") or "",
            source_tag=row.get("source") or "",
            decision=row.get("decision"),
            decision_at=row.get("decision_at"),
            created_at=row.get("created_at")
        )

    def to_row(self) -> dict:
        """
        Map to an asin_correlations row for upsert.

        Feedback columns are left out so re-running a job keeps decisions.
        """
        return {
            "user_id": self.owner_id,
            "search_asin": self.seed_identifier,
            "similar_asin": self.candidate_identifier,
            "correlated_title": self.candidate_title,
            "image_url": self.candidate_image_url,
            "search_image_url": self.seed_image_url,
            "suggested_type": self.origin.value,
            "source": self.source_tag,
            "correlated_amazon_url": self.candidate_url
        }


# ===================
# API SCHEMAS
# ===================

class CorrelationResponse(ApiSchema):
    """Correlation as returned to clients."""

    asin: str = Field(..., description="Candidate ASIN")
    title: str
    image_url: str = ""
    search_image_url: str = ""
    suggested_type: CandidateOrigin
    source: str = ""
    url: str = ""
    decision: Optional[FeedbackDecision] = None

    @classmethod
    def from_record(cls, record: CorrelationRecord) -> "CorrelationResponse":
        return cls(
            asin=record.candidate_identifier,
            title=record.candidate_title,
            image_url=record.candidate_image_url,
            search_image_url=record.seed_image_url,
            suggested_type=record.origin,
            source=record.source_tag,
            url=record.candidate_url,
            decision=record.decision
        )


class CheckCorrelationsRequest(ApiSchema):
    """Read-only check for already-persisted correlations."""

    seed_identifier: str = Field(..., min_length=1, description="Seed ASIN")
    owner_id: str = Field(..., min_length=1, description="Owner (user) id")
    mode: Literal["check"] = Field("check", description="Only 'check' is supported")
    include_completed: bool = Field(
        False,
        description="Include candidates that already have a completed task"
    )

    @field_validator("owner_id")
    @classmethod
    def owner_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ownerId must not be blank")
        return v


class CheckCorrelationsResponse(ApiSchema):
    """Existing correlations for a seed."""

    seed_identifier: str
    exists: bool
    correlations: list[CorrelationResponse]
    count: int
    filtered_count: int = 0


class FeedbackRequest(ApiSchema):
    """Record or undo an owner's decision on one correlation."""

    seed_identifier: str = Field(..., min_length=1)
    candidate_identifier: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    action: Literal["decide", "undo"] = "decide"
    decision: Optional[str] = None
    decline_reason: Optional[str] = Field(None, max_length=50)

    @field_validator("seed_identifier", "candidate_identifier")
    @classmethod
    def asin_uppercase(cls, v: str) -> str:
        """ASINs are stored uppercase."""
        return v.upper().strip()

    @field_validator("owner_id")
    @classmethod
    def owner_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ownerId must not be blank")
        return v


class FeedbackEntry(ApiSchema):
    """Decision currently stored for one candidate."""

    asin: str
    decision: Optional[FeedbackDecision] = None
    decision_at: Optional[datetime] = None


class FeedbackResponse(ApiSchema):
    """Feedback write result."""

    success: bool = True
    message: str
    seed_identifier: str
    candidate_identifier: str
    decision: Optional[FeedbackDecision] = None
