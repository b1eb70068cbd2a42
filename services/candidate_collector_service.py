"""
Candidate collection for a seed product.

Gathers the seed's declared variations plus same-brand, same-category
products from the catalog. Only the seed lookup is allowed to fail the
whole collection.
"""

from typing import Optional, Protocol
import structlog

from config import settings
from exceptions import SeedProductNotFoundError
from integrations.keepa import get_keepa_client
from models.product import (
    Candidate,
    CandidateOrigin,
    CollectionResult,
    ProductDescriptor,
)
from utils.asin_utils import chunked, normalize_asin, unique_asins

logger = structlog.get_logger(__name__)


class CatalogClient(Protocol):
    """What the collector needs from a catalog provider."""

    async def lookup_by_ids(self, asins: list[str]) -> list[ProductDescriptor]: ...

    async def search_by_attributes(
        self,
        brand: str,
        category_id: int,
        limit: int = 50
    ) -> list[str]: ...


class CandidateCollector:
    """
    Builds the candidate list for one seed.

    Output order: variations (catalog order), then similar products
    (search order). No identifier appears twice and the seed never appears.
    """

    def __init__(
        self,
        catalog: Optional[CatalogClient] = None,
        batch_size: Optional[int] = None,
        search_limit: Optional[int] = None,
        similar_cap: Optional[int] = None
    ):
        self.catalog = catalog or get_keepa_client()
        self.batch_size = batch_size or settings.catalog_batch_size
        self.search_limit = search_limit or settings.similar_search_limit
        self.similar_cap = similar_cap if similar_cap is not None else settings.similar_candidate_cap

    async def collect(self, seed_identifier: str) -> CollectionResult:
        """
        Collect variation and similar candidates for a seed.

        Args:
            seed_identifier: Normalized seed ASIN

        Returns:
            CollectionResult with the seed descriptor and candidates

        Raises:
            SeedProductNotFoundError: Catalog has no entry for the seed
            ExternalServiceError: Seed lookup failed upstream
        """
        seed_identifier = normalize_asin(seed_identifier)
        seed = await self._lookup_seed(seed_identifier)

        seed_ids = {seed_identifier, seed.identifier}
        variation_ids = unique_asins(seed.variation_identifiers, exclude=seed_ids)
        variations = await self._fetch_candidates(
            variation_ids,
            CandidateOrigin.VARIATION,
            exclude=seed_ids
        )

        logger.info(
            "variations_collected",
            seed_identifier=seed.identifier,
            declared=len(variation_ids),
            fetched=len(variations)
        )

        similar = []
        if seed.has_search_attributes:
            excluded = {*seed_ids, *variation_ids, *(v.identifier for v in variations)}
            similar = await self._collect_similar(seed, excluded)
        else:
            logger.info(
                "similar_search_skipped",
                seed_identifier=seed.identifier,
                has_brand=bool(seed.brand),
                has_category=bool(seed.category_id)
            )

        logger.info(
            "candidates_collected",
            seed_identifier=seed.identifier,
            variations=len(variations),
            similar=len(similar)
        )

        return CollectionResult(seed=seed, candidates=variations + similar)

    async def _lookup_seed(self, seed_identifier: str) -> ProductDescriptor:
        products = await self.catalog.lookup_by_ids([seed_identifier])

        for product in products:
            if product.identifier == seed_identifier:
                return product

        # Keepa may echo a different canonical ASIN for the seed
        if products:
            return products[0]

        logger.warning("seed_product_not_found", seed_identifier=seed_identifier)
        raise SeedProductNotFoundError(seed_identifier)

    async def _collect_similar(
        self,
        seed: ProductDescriptor,
        excluded: set[str]
    ) -> list[Candidate]:
        """Attribute search plus detail fetch; failures leave the list empty."""
        try:
            found = await self.catalog.search_by_attributes(
                seed.brand,
                seed.category_id,
                limit=self.search_limit
            )
        except Exception as e:
            logger.warning(
                "similar_search_failed",
                seed_identifier=seed.identifier,
                error=str(e),
                error_type=type(e).__name__
            )
            return []

        similar_ids = unique_asins(found, exclude=excluded)[:self.similar_cap]

        logger.info(
            "similar_search_complete",
            seed_identifier=seed.identifier,
            found=len(found),
            kept=len(similar_ids)
        )

        return await self._fetch_candidates(similar_ids, CandidateOrigin.SIMILAR, exclude=excluded)

    async def _fetch_candidates(
        self,
        asins: list[str],
        origin: CandidateOrigin,
        exclude: set[str]
    ) -> list[Candidate]:
        """
        Fetch descriptors in batches and tag them with origin.

        A failed batch is logged and skipped.
        """
        candidates = []
        seen = set(exclude)

        for batch in chunked(asins, self.batch_size):
            try:
                products = await self.catalog.lookup_by_ids(batch)
            except Exception as e:
                logger.warning(
                    "candidate_batch_failed",
                    origin=origin.value,
                    batch_size=len(batch),
                    error=str(e),
                    error_type=type(e).__name__
                )
                continue

            for product in products:
                if product.identifier in seen:
                    continue
                seen.add(product.identifier)
                candidates.append(Candidate.from_descriptor(product, origin))

        return candidates

