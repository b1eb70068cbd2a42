"""
Product schemas for catalog data flowing through the correlation pipeline.

Descriptors are immutable once built from a catalog response.
"""

from pydantic import ConfigDict, Field
from typing import Optional
from enum import Enum

from models.base import BaseSchema


class CandidateOrigin(str, Enum):
    """How a candidate was discovered."""
    VARIATION = "variation"
    SIMILAR = "similar"


class ProductDescriptor(BaseSchema):
    """
    One catalog product.

    variation_identifiers holds the alternate forms declared by the catalog
    entry; only the seed's list is used.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    identifier: str = Field(..., description="ASIN")
    title: str = Field(..., description="Product title")
    brand: Optional[str] = Field(None, description="Brand name")
    image_url: str = Field("", description="Primary image URL")
    source_url: str = Field("", description="Product page URL")
    category_id: Optional[int] = Field(None, description="Root category id")
    variation_identifiers: tuple[str, ...] = Field(
        default=(),
        description="ASINs of declared variations"
    )

    @property
    def has_search_attributes(self) -> bool:
        """Brand and category are both needed for the attribute search."""
        return bool(self.brand) and bool(self.category_id)


class Candidate(ProductDescriptor):
    """A descriptor tagged with how it was found."""

    origin: CandidateOrigin = Field(..., description="variation or similar")

    @classmethod
    def from_descriptor(cls, descriptor: ProductDescriptor, origin: CandidateOrigin) -> "Candidate":
        data = descriptor.model_dump(exclude={"variation_identifiers"})
        return cls(**data, origin=origin)

    @property
    def is_variation(self) -> bool:
        return self.origin == CandidateOrigin.VARIATION


class CollectionResult(BaseSchema):
    """Output of candidate collection."""

    seed: ProductDescriptor
    candidates: list[Candidate] = Field(default_factory=list)

    @property
    def variation_count(self) -> int:
        return sum(1 for c in self.candidates if c.is_variation)

    @property
    def similar_count(self) -> int:
        return len(self.candidates) - self.variation_count


class EvaluationResult(BaseSchema):
    """
    Output of similarity evaluation.

    approved keeps variations first, then similar candidates, each group in
    input order.
    """

    approved: list[Candidate] = Field(default_factory=list)
    evaluated_similar: int = 0
    approved_similar: int = 0

    @property
    def rejected_similar(self) -> int:
        return self.evaluated_similar - self.approved_similar
