"""
Similarity evaluation.

Variations are approved as-is. Similar candidates go through the judge in
fixed windows of concurrent calls.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol
import structlog

from config import settings
from models.product import Candidate, EvaluationResult, ProductDescriptor
from services.similarity_judge_service import get_judge_service

logger = structlog.get_logger(__name__)


ProgressCallback = Callable[[int, int], Awaitable[None]]

# Placeholders recognised in owner-supplied instruction templates
TEMPLATE_PLACEHOLDERS = (
    "{primary_title}",
    "{primary_brand}",
    "{candidate_asin}",
    "{candidate_title}",
    "{candidate_brand}",
)


class SimilarityJudge(Protocol):
    async def judge(
        self,
        seed_text: str,
        candidate_text: str,
        prompt_override: Optional[str] = None
    ) -> bool: ...


def describe_seed(seed: ProductDescriptor) -> str:
    return f"Title: {seed.title}\nBrand: {seed.brand or 'Unknown'}"


def describe_candidate(candidate: ProductDescriptor) -> str:
    return (
        f"ASIN: {candidate.identifier}\n"
        f"Title: {candidate.title}\n"
        f"Brand: {candidate.brand or 'Unknown'}"
    )


def render_instructions(
    template: str,
    seed: ProductDescriptor,
    candidate: ProductDescriptor
) -> str:
    """
    Fill an instruction template.

    Substitution is literal; braces that are not one of the known
    placeholders are left untouched.
    """
    values = {
        "{primary_title}": seed.title,
        "{primary_brand}": seed.brand or "Unknown",
        "{candidate_asin}": candidate.identifier,
        "{candidate_title}": candidate.title,
        "{candidate_brand}": candidate.brand or "Unknown",
    }
    rendered = template
    for placeholder in TEMPLATE_PLACEHOLDERS:
        rendered = rendered.replace(placeholder, values[placeholder])
    return rendered


class SimilarityEvaluator:
    """
    Decides which candidates to keep.

    A judge failure counts as a rejection and is never retried.
    """

    def __init__(
        self,
        judge: Optional[SimilarityJudge] = None,
        concurrency: Optional[int] = None
    ):
        self.judge = judge or get_judge_service()
        self.concurrency = concurrency or settings.judge_concurrency

    async def evaluate(
        self,
        seed: ProductDescriptor,
        candidates: list[Candidate],
        instructions: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> EvaluationResult:
        """
        Approve variations and judge similar candidates.

        Args:
            seed: Seed descriptor
            candidates: Collected candidates
            instructions: Optional instruction template replacing the
                default judge prompt
            on_progress: Awaited after each window with
                (processed_similar, approved_similar)

        Returns:
            EvaluationResult (variations first, then approved similar)
        """
        variations = [c for c in candidates if c.is_variation]
        similar = [c for c in candidates if not c.is_variation]

        approved_similar = []
        processed = 0

        for start in range(0, len(similar), self.concurrency):
            window = similar[start:start + self.concurrency]
            verdicts = await asyncio.gather(
                *(self._judge_one(seed, candidate, instructions) for candidate in window)
            )

            approved_similar.extend(c for c, ok in zip(window, verdicts) if ok)
            processed += len(window)

            logger.debug(
                "judge_window_complete",
                seed_identifier=seed.identifier,
                processed=processed,
                total=len(similar),
                approved=len(approved_similar)
            )

            if on_progress is not None:
                await on_progress(processed, len(approved_similar))

        logger.info(
            "similarity_evaluation_complete",
            seed_identifier=seed.identifier,
            variations=len(variations),
            evaluated_similar=len(similar),
            approved_similar=len(approved_similar)
        )

        return EvaluationResult(
            approved=variations + approved_similar,
            evaluated_similar=len(similar),
            approved_similar=len(approved_similar)
        )

    async def _judge_one(
        self,
        seed: ProductDescriptor,
        candidate: Candidate,
        instructions: Optional[str]
    ) -> bool:
        prompt_override = (
            render_instructions(instructions, seed, candidate) if instructions else None
        )

        try:
            return await self.judge.judge(
                describe_seed(seed),
                describe_candidate(candidate),
                prompt_override=prompt_override
            )
        except Exception as e:
            logger.warning(
                "judge_call_failed",
                candidate_identifier=candidate.identifier,
                error=str(e),
                error_type=type(e).__name__
            )
            return False
