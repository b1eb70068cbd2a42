"""
Correlation store: Supabase persistence for correlations and job status.

Methods are synchronous like the rest of the Supabase access in this
codebase; the job orchestrator calls them through asyncio.to_thread.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import structlog

from config import get_supabase_client, settings
from models.correlation import (
    CORRELATION_CONFLICT_COLUMNS,
    CorrelationRecord,
    FeedbackDecision,
)
from models.correlation_job import ACTIVE_STATUSES, CorrelationJob, JobStatus
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db_value(value: Any) -> Any:
    """Enums and datetimes go over the wire as plain strings."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class CorrelationStore:
    """
    Persistence for the correlation pipeline.

    Correlations are written with upsert keyed on (user_id, search_asin,
    similar_asin), so re-running a job overwrites instead of duplicating.
    """

    def __init__(self, client=None):
        self.db = client or get_supabase_client()
        self.correlations_table = settings.correlations_table
        self.jobs_table = settings.jobs_table
        self.users_table = settings.users_table
        self.tasks_table = settings.tasks_table

    # ===================
    # JOB OPERATIONS
    # ===================

    def create_job(self, seed_identifier: str, owner_id: str) -> CorrelationJob:
        """
        Insert a pending job.

        Returns:
            Created CorrelationJob

        Raises:
            DatabaseError: If the insert fails
        """
        logger.info("creating_correlation_job", seed_identifier=seed_identifier, owner_id=owner_id)

        try:
            result = (
                self.db.table(self.jobs_table)
                .insert({
                    "user_id": owner_id,
                    "search_asin": seed_identifier,
                    "status": JobStatus.PENDING.value,
                    "total_count": 0,
                    "processed_count": 0,
                    "approved_count": 0,
                    "rejected_count": 0,
                })
                .execute()
            )

            job = CorrelationJob.from_row(result.data[0])

            logger.info("correlation_job_created", job_id=job.id, seed_identifier=seed_identifier)
            return job

        except Exception as e:
            logger.error("create_correlation_job_failed", seed_identifier=seed_identifier, error=str(e))
            raise DatabaseError("insert", str(e))

    def get_job(self, job_id: str) -> Optional[CorrelationJob]:
        """
        Get a job by id.

        Returns:
            CorrelationJob or None if not found
        """
        logger.debug("getting_correlation_job", job_id=job_id)

        try:
            result = (
                self.db.table(self.jobs_table)
                .select("*")
                .eq("id", job_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_correlation_job_failed", job_id=job_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            return None

        return CorrelationJob.from_row(result.data[0])

    def update_job(self, job_id: str, **fields: Any) -> None:
        """
        Write job fields (status, counts, error_message, completed_at).

        updated_at is always refreshed.

        Raises:
            DatabaseError: If the update fails
        """
        update_data = {key: _to_db_value(value) for key, value in fields.items()}
        update_data["updated_at"] = _utcnow()

        try:
            (
                self.db.table(self.jobs_table)
                .update(update_data)
                .eq("id", job_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "update_correlation_job_failed",
                job_id=job_id,
                fields=list(fields),
                error=str(e)
            )
            raise DatabaseError("update", str(e))

        logger.debug("correlation_job_updated", job_id=job_id, fields=list(fields))

    def find_active_job(self, owner_id: str, seed_identifier: str) -> Optional[CorrelationJob]:
        """
        Most recent pending/processing job for this owner and seed.

        Returns:
            CorrelationJob or None
        """
        try:
            result = (
                self.db.table(self.jobs_table)
                .select("*")
                .eq("user_id", owner_id)
                .eq("search_asin", seed_identifier)
                .in_("status", ACTIVE_STATUSES)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(
                "find_active_job_failed",
                owner_id=owner_id,
                seed_identifier=seed_identifier,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            return None

        return CorrelationJob.from_row(result.data[0])

    def list_jobs(self, owner_id: str, limit: int = 10) -> list[CorrelationJob]:
        """Recent jobs for an owner, newest first."""
        try:
            result = (
                self.db.table(self.jobs_table)
                .select("*")
                .eq("user_id", owner_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("list_jobs_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [CorrelationJob.from_row(row) for row in result.data]

    # ===================
    # CORRELATION OPERATIONS
    # ===================

    def upsert_many(self, records: list[CorrelationRecord]) -> int:
        """
        Write correlations in one upsert.

        Duplicate keys inside the batch are collapsed (last one wins);
        Postgres rejects an upsert that touches the same row twice.

        Returns:
            Number of rows written

        Raises:
            DatabaseError: If the upsert fails
        """
        if not records:
            return 0

        rows_by_key = {}
        for record in records:
            rows_by_key[record.key] = record.to_row()
        rows = list(rows_by_key.values())

        logger.info(
            "upserting_correlations",
            count=len(rows),
            seed_identifier=records[0].seed_identifier
        )

        try:
            result = (
                self.db.table(self.correlations_table)
                .upsert(rows, on_conflict=CORRELATION_CONFLICT_COLUMNS, ignore_duplicates=False)
                .execute()
            )
        except Exception as e:
            logger.error(
                "upsert_correlations_failed",
                count=len(rows),
                error=str(e),
                error_type=type(e).__name__
            )
            raise DatabaseError("upsert", str(e))

        written = len(result.data) if result.data is not None else len(rows)
        logger.info("correlations_upserted", count=written)
        return written

    def query_by_seed(self, seed_identifier: str, owner_id: str) -> list[CorrelationRecord]:
        """
        Stored correlations for a seed, newest first.

        Scoped to the owner.
        """
        try:
            result = (
                self.db.table(self.correlations_table)
                .select("*")
                .eq("search_asin", seed_identifier)
                .eq("user_id", owner_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error(
                "query_correlations_failed",
                seed_identifier=seed_identifier,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        return [CorrelationRecord.from_row(row) for row in result.data]

    def set_decision(
        self,
        owner_id: str,
        seed_identifier: str,
        candidate_identifier: str,
        decision: Optional[FeedbackDecision],
        decline_reason: Optional[str] = None
    ) -> int:
        """
        Record (or clear, with decision=None) feedback on one correlation.

        Returns:
            Number of rows updated (0 if the correlation doesn't exist)
        """
        update_data = {
            "decision": decision.value if decision else None,
            "decline_reason": decline_reason if decision == FeedbackDecision.DECLINED else None,
            "decision_at": _utcnow() if decision else None,
        }

        try:
            result = (
                self.db.table(self.correlations_table)
                .update(update_data)
                .eq("user_id", owner_id)
                .eq("search_asin", seed_identifier)
                .eq("similar_asin", candidate_identifier)
                .execute()
            )
        except Exception as e:
            logger.error(
                "set_decision_failed",
                seed_identifier=seed_identifier,
                candidate_identifier=candidate_identifier,
                error=str(e)
            )
            raise DatabaseError("update", str(e))

        return len(result.data or [])

    # ===================
    # OWNER DATA
    # ===================

    def get_owner_matching_prompt(self, owner_id: str) -> Optional[str]:
        """
        Owner's custom judge prompt, if enabled.

        Returns:
            Prompt template or None
        """
        try:
            result = (
                self.db.table(self.users_table)
                .select("custom_matching_enabled, custom_matching_prompt")
                .eq("id", owner_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_owner_prompt_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            return None

        row = result.data[0]
        if row.get("custom_matching_enabled") and row.get("custom_matching_prompt"):
            return row["custom_matching_prompt"]
        return None

    def get_completed_task_asins(self, owner_id: str) -> set[str]:
        """ASINs the owner has already completed a task for."""
        try:
            result = (
                self.db.table(self.tasks_table)
                .select("asin")
                .eq("user_id", owner_id)
                .eq("status", "completed")
                .execute()
            )
        except Exception as e:
            logger.error("get_completed_tasks_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError("select", str(e))

        return {row["asin"].upper() for row in result.data if row.get("asin")}


_correlation_store: Optional[CorrelationStore] = None


def get_correlation_store() -> CorrelationStore:
    """Get or create CorrelationStore instance."""
    global _correlation_store
    if _correlation_store is None:
        _correlation_store = CorrelationStore()
    return _correlation_store
