"""
Claude similarity judge.

Asks Claude a single YES/NO question: is the candidate product close enough
to the seed product to be correlated with it.
"""

import asyncio
import re
from typing import Optional
import anthropic
import structlog

from config import settings
from exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)


DEFAULT_SIMILARITY_PROMPT = """PRIMARY PRODUCT:
{seed}

CANDIDATE PRODUCT:
{candidate}

Question: Is the CANDIDATE a similar product that a shopper might also consider?

Answer YES if:
- Same brand (include ALL products from the same brand)
- Candidate is a variant (different color, size, model number)
- Candidate is a different model in the same product line
- Candidate is a bundle or multi-pack of the same product
- Candidate is an accessory for the primary product (charger, cable, case, adapter, stand)
- Both serve the same primary purpose

Answer NO if:
- Different brand entirely
- Completely unrelated product category with different brand

Answer with ONLY: YES or NO"""

_ANSWER_PATTERN = re.compile(r"\b(YES|NO)\b")


def parse_judge_answer(text: str) -> bool:
    """
    Interpret Claude's reply.

    The first standalone YES or NO wins; anything else is a rejection.
    """
    match = _ANSWER_PATTERN.search((text or "").upper())
    return bool(match and match.group(1) == "YES")


class ClaudeJudgeService:
    """
    YES/NO product similarity via the Claude Messages API.

    No retries: a failed or timed-out call is reported to the caller, which
    treats it as a rejection.
    """

    SERVICE = "claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[anthropic.AsyncAnthropic] = None
    ):
        """Initialize Claude judge service."""
        self.model = model or settings.judge_model
        self.max_tokens = max_tokens or settings.judge_max_tokens
        self.timeout_seconds = timeout_seconds or settings.judge_timeout_seconds

        api_key = api_key if api_key is not None else settings.anthropic_api_key
        if client is not None:
            self.client = client
        elif api_key:
            self.client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=self.timeout_seconds,
                max_retries=0
            )
        else:
            self.client = None
            logger.warning("claude_judge_not_configured")

    async def judge(
        self,
        seed_text: str,
        candidate_text: str,
        prompt_override: Optional[str] = None
    ) -> bool:
        """
        Ask whether the candidate should be correlated with the seed.

        Args:
            seed_text: Seed description (title/brand lines)
            candidate_text: Candidate description (ASIN/title/brand lines)
            prompt_override: Fully rendered prompt replacing the default

        Returns:
            True for YES, False otherwise

        Raises:
            ExternalServiceError: Judge not configured, API error or timeout
        """
        if self.client is None:
            raise ExternalServiceError(self.SERVICE, "Anthropic API key not configured")

        prompt = prompt_override or DEFAULT_SIMILARITY_PROMPT.format(
            seed=seed_text,
            candidate=candidate_text
        )

        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    messages=[{"role": "user", "content": prompt}]
                ),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.warning("claude_judge_timeout", timeout_seconds=self.timeout_seconds)
            raise ExternalServiceError(
                self.SERVICE,
                f"Claude judge timed out after {self.timeout_seconds}s"
            ) from e
        except anthropic.APIError as e:
            logger.error("claude_api_error", error=str(e))
            raise ExternalServiceError(self.SERVICE, f"Claude API error: {e}") from e

        answer = response.content[0].text if response.content else ""
        approved = parse_judge_answer(answer)

        logger.debug("claude_judge_answer", answer=answer.strip()[:20], approved=approved)
        return approved


_judge_service: Optional[ClaudeJudgeService] = None


def get_judge_service() -> ClaudeJudgeService:
    """Get or create ClaudeJudgeService instance."""
    global _judge_service
    if _judge_service is None:
        _judge_service = ClaudeJudgeService()
    return _judge_service
