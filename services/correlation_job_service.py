"""
Correlation job orchestration.

submit() validates the seed, records a pending job and starts a background
task; the task runs collect -> evaluate -> persist and moves the job to
complete or error. Clients poll get_status().
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
import structlog

from config import settings
from exceptions import (
    AppError,
    CorrelationJobActiveError,
    CorrelationJobNotFoundError,
    InvalidAsinError,
    ValidationError,
)
from models.correlation import CorrelationRecord
from models.correlation_job import CorrelationJob, JobStatus
from models.product import Candidate, ProductDescriptor
from services.candidate_collector_service import CandidateCollector, CatalogClient
from services.correlation_store_service import get_correlation_store
from services.similarity_evaluator_service import SimilarityEvaluator, SimilarityJudge
from utils.asin_utils import is_valid_asin, normalize_asin

logger = structlog.get_logger(__name__)


class CorrelationStoreProtocol(Protocol):
    def create_job(self, seed_identifier: str, owner_id: str) -> CorrelationJob: ...

    def get_job(self, job_id: str) -> Optional[CorrelationJob]: ...

    def update_job(self, job_id: str, **fields) -> None: ...

    def find_active_job(self, owner_id: str, seed_identifier: str) -> Optional[CorrelationJob]: ...

    def list_jobs(self, owner_id: str, limit: int = 10) -> list[CorrelationJob]: ...

    def upsert_many(self, records: list[CorrelationRecord]) -> int: ...

    def query_by_seed(self, seed_identifier: str, owner_id: str) -> list[CorrelationRecord]: ...

    def get_owner_matching_prompt(self, owner_id: str) -> Optional[str]: ...

    def get_completed_task_asins(self, owner_id: str) -> set[str]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_message(error: Exception) -> str:
    if isinstance(error, AppError):
        return error.message
    return str(error) or type(error).__name__


class CorrelationJobService:
    """
    Runs correlation jobs in the background.

    Each job is owned by exactly one task. Task handles are kept until the
    task finishes so wait() and shutdown() can join them.
    """

    def __init__(
        self,
        catalog: Optional[CatalogClient] = None,
        judge: Optional[SimilarityJudge] = None,
        store: Optional[CorrelationStoreProtocol] = None,
        collector: Optional[CandidateCollector] = None,
        evaluator: Optional[SimilarityEvaluator] = None,
        source_tag: Optional[str] = None,
        stale_after_minutes: Optional[int] = None
    ):
        self.store = store or get_correlation_store()
        self.collector = collector or CandidateCollector(catalog)
        self.evaluator = evaluator or SimilarityEvaluator(judge)
        self.source_tag = source_tag or settings.correlation_source_tag
        self.stale_after = timedelta(
            minutes=stale_after_minutes or settings.job_stale_after_minutes
        )

        self._tasks: dict[str, asyncio.Task] = {}
        # (owner_id, seed) -> job id; None while the job row is being created
        self._active_jobs: dict[tuple[str, str], Optional[str]] = {}

    # ===================
    # SUBMISSION
    # ===================

    async def submit(
        self,
        seed_identifier: str,
        owner_id: str,
        similarity_instructions: Optional[str] = None
    ) -> CorrelationJob:
        """
        Validate and start a correlation job.

        Args:
            seed_identifier: Seed ASIN (any case)
            owner_id: Owner the correlations belong to
            similarity_instructions: Optional judge prompt template

        Returns:
            The pending CorrelationJob

        Raises:
            InvalidAsinError: Seed is not a well-formed ASIN
            ValidationError: Owner missing
            CorrelationJobActiveError: A live job exists for owner + seed
            DatabaseError: Job row could not be created
        """
        if not is_valid_asin(seed_identifier):
            logger.warning("invalid_seed_identifier", seed_identifier=seed_identifier)
            raise InvalidAsinError(seed_identifier)

        if not owner_id or not owner_id.strip():
            raise ValidationError("ownerId is required", details={"field": "owner_id"})

        seed_identifier = normalize_asin(seed_identifier)
        owner_id = owner_id.strip()
        key = (owner_id, seed_identifier)

        if key in self._active_jobs:
            raise CorrelationJobActiveError(
                self._active_jobs[key],
                seed_identifier,
                JobStatus.PENDING.value
            )

        self._active_jobs[key] = None
        try:
            existing = await asyncio.to_thread(
                self.store.find_active_job, owner_id, seed_identifier
            )
            if existing is not None:
                if not self.is_stale(existing):
                    raise CorrelationJobActiveError(
                        existing.id,
                        seed_identifier,
                        existing.status.value
                    )
                logger.warning(
                    "stale_job_superseded",
                    job_id=existing.id,
                    seed_identifier=seed_identifier,
                    status=existing.status.value
                )

            job = await asyncio.to_thread(self.store.create_job, seed_identifier, owner_id)
        except Exception:
            self._active_jobs.pop(key, None)
            raise

        self._active_jobs[key] = job.id

        task = asyncio.create_task(
            self._run(job, similarity_instructions),
            name=f"correlation-job-{job.id}"
        )
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t: self._forget(job.id, key))

        logger.info(
            "correlation_job_submitted",
            job_id=job.id,
            seed_identifier=seed_identifier,
            owner_id=owner_id,
            custom_instructions=bool(similarity_instructions)
        )
        return job

    def _forget(self, job_id: str, key: tuple[str, str]) -> None:
        self._tasks.pop(job_id, None)
        if self._active_jobs.get(key) == job_id:
            del self._active_jobs[key]

    # ===================
    # BACKGROUND RUN
    # ===================

    async def _run(self, job: CorrelationJob, instructions: Optional[str]) -> None:
        """Top-level boundary: every failure ends as an error status."""
        log = logger.bind(job_id=job.id, seed_identifier=job.seed_identifier)

        try:
            await self._process(job, instructions)
        except asyncio.CancelledError:
            log.warning("correlation_job_cancelled")
            await self._mark_error(job.id, "Job cancelled before completion")
            raise
        except Exception as e:
            log.error(
                "correlation_job_failed",
                error=str(e),
                error_type=type(e).__name__
            )
            await self._mark_error(job.id, _error_message(e))

    async def _process(self, job: CorrelationJob, instructions: Optional[str]) -> None:
        log = logger.bind(job_id=job.id, seed_identifier=job.seed_identifier)

        await self._update(job.id, status=JobStatus.PROCESSING)
        log.info("correlation_job_processing")

        if not instructions:
            instructions = await self._owner_instructions(job.owner_id)

        collection = await self.collector.collect(job.seed_identifier)
        seed = collection.seed
        candidates = collection.candidates
        total = len(candidates)
        variation_count = collection.variation_count

        await self._update(job.id, total_count=total)
        log.info(
            "correlation_candidates_ready",
            total=total,
            variations=variation_count,
            similar=collection.similar_count
        )

        async def snapshot(processed_similar: int, approved_similar: int) -> None:
            try:
                await self._update(
                    job.id,
                    processed_count=variation_count + processed_similar,
                    approved_count=variation_count + approved_similar,
                    rejected_count=processed_similar - approved_similar
                )
            except AppError as e:
                log.warning("progress_snapshot_failed", error=e.message)

        evaluation = await self.evaluator.evaluate(
            seed,
            candidates,
            instructions=instructions,
            on_progress=snapshot
        )

        records = self._build_records(job, seed, evaluation.approved)

        try:
            persisted = await asyncio.to_thread(self.store.upsert_many, records)
        except Exception as e:
            message = f"Failed to save correlations: {_error_message(e)}"
            log.error("correlation_persist_failed", error=str(e), records=len(records))
            await self._update(
                job.id,
                status=JobStatus.ERROR,
                error_message=message,
                processed_count=total,
                approved_count=0,
                rejected_count=evaluation.rejected_similar,
                completed_at=_utcnow()
            )
            return

        await self._update(
            job.id,
            status=JobStatus.COMPLETE,
            total_count=total,
            processed_count=total,
            approved_count=persisted,
            rejected_count=evaluation.rejected_similar,
            completed_at=_utcnow()
        )

        log.info(
            "correlation_job_complete",
            total=total,
            approved=persisted,
            rejected=evaluation.rejected_similar
        )

    def _build_records(
        self,
        job: CorrelationJob,
        seed: ProductDescriptor,
        approved: list[Candidate]
    ) -> list[CorrelationRecord]:
        """Records are keyed by the submitted seed, which check_existing queries."""
        return [
            CorrelationRecord.from_candidate(
                job.owner_id,
                seed,
                candidate,
                self.source_tag,
                seed_identifier=job.seed_identifier
            )
            for candidate in approved
        ]

    async def _owner_instructions(self, owner_id: str) -> Optional[str]:
        """Owner's saved prompt; unreadable settings fall back to the default."""
        try:
            return await asyncio.to_thread(self.store.get_owner_matching_prompt, owner_id)
        except AppError as e:
            logger.warning("owner_prompt_unavailable", owner_id=owner_id, error=e.message)
            return None

    async def _update(self, job_id: str, **fields) -> None:
        await asyncio.to_thread(self.store.update_job, job_id, **fields)

    async def _mark_error(self, job_id: str, message: str) -> None:
        try:
            await self._update(
                job_id,
                status=JobStatus.ERROR,
                error_message=message,
                completed_at=_utcnow()
            )
        except Exception as e:
            logger.error(
                "correlation_job_status_write_failed",
                job_id=job_id,
                error=str(e),
                error_type=type(e).__name__
            )

    # ===================
    # READS
    # ===================

    def is_stale(self, job: CorrelationJob, now: Optional[datetime] = None) -> bool:
        return job.is_stale(self.stale_after, now=now)

    async def get_status(self, job_id: str, owner_id: Optional[str] = None) -> CorrelationJob:
        """
        Current job record.

        Raises:
            CorrelationJobNotFoundError: Unknown id, or owned by someone else
        """
        job = await asyncio.to_thread(self.store.get_job, job_id)

        if job is None or (owner_id and job.owner_id != owner_id):
            raise CorrelationJobNotFoundError(job_id)

        return job

    async def list_jobs(self, owner_id: str, limit: int = 10) -> list[CorrelationJob]:
        """Recent jobs for an owner, newest first."""
        if not owner_id:
            raise ValidationError("ownerId is required", details={"field": "owner_id"})
        return await asyncio.to_thread(self.store.list_jobs, owner_id, limit)

    async def check_existing(
        self,
        seed_identifier: str,
        owner_id: str,
        include_completed: bool = False
    ) -> tuple[list[CorrelationRecord], int]:
        """
        Stored correlations for a seed; never starts a job.

        Candidates the owner already completed a task for are hidden unless
        include_completed is set.

        Returns:
            (records, number of records hidden)
        """
        if not is_valid_asin(seed_identifier):
            raise InvalidAsinError(seed_identifier)

        seed_identifier = normalize_asin(seed_identifier)
        records = await asyncio.to_thread(self.store.query_by_seed, seed_identifier, owner_id)

        if include_completed or not records:
            return records, 0

        try:
            completed = await asyncio.to_thread(self.store.get_completed_task_asins, owner_id)
        except AppError as e:
            logger.warning("completed_tasks_unavailable", owner_id=owner_id, error=e.message)
            return records, 0

        visible = [r for r in records if r.candidate_identifier not in completed]
        filtered = len(records) - len(visible)

        if filtered:
            logger.info(
                "completed_correlations_filtered",
                seed_identifier=seed_identifier,
                filtered=filtered
            )

        return visible, filtered

    # ===================
    # TASK MANAGEMENT
    # ===================

    @property
    def running_jobs(self) -> list[str]:
        return list(self._tasks)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """
        Wait for a job's task to finish.

        Returns:
            True if no task is running for job_id when this returns
        """
        task = self._tasks.get(job_id)
        if task is None:
            return True

        done, _ = await asyncio.wait({task}, timeout=timeout)
        return task in done

    async def shutdown(self, timeout: Optional[float] = 30.0) -> None:
        """Join running jobs; cancel what is still running after timeout."""
        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info("correlation_jobs_draining", count=len(tasks))

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("correlation_jobs_cancelled", count=len(pending))


_correlation_job_service: Optional[CorrelationJobService] = None


def get_correlation_job_service() -> CorrelationJobService:
    """Get or create CorrelationJobService instance."""
    global _correlation_job_service
    if _correlation_job_service is None:
        _correlation_job_service = CorrelationJobService()
    return _correlation_job_service


async def shutdown_correlation_jobs() -> None:
    """Drain the shared service's jobs, if it was ever created."""
    if _correlation_job_service is not None:
        await _correlation_job_service.shutdown()
