"""
Correlation API routes.

Jobs run in the background; clients submit a seed, get 202 with a job id
and poll the job until isComplete is true.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from models.correlation import (
    CheckCorrelationsRequest,
    CheckCorrelationsResponse,
    CorrelationResponse,
    FeedbackEntry,
    FeedbackRequest,
    FeedbackResponse,
)
from models.correlation_job import (
    CorrelationJobListResponse,
    CorrelationJobResponse,
    JobSubmitRequest,
    JobSubmitResponse,
)
from services.correlation_job_service import get_correlation_job_service
from services.correlation_feedback_service import get_feedback_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# JOBS
# ===================

@router.post("/jobs", response_model=JobSubmitResponse, status_code=202)
async def submit_job(data: JobSubmitRequest):
    """
    Start a correlation job for a seed ASIN.

    Raises:
        400: Malformed ASIN
        409: A job for this owner and ASIN is already running
    """
    try:
        service = get_correlation_job_service()
        job = await service.submit(
            data.seed_identifier,
            data.owner_id,
            similarity_instructions=data.similarity_instructions
        )

        return JobSubmitResponse(
            job_id=job.id,
            status=job.status,
            seed_identifier=job.seed_identifier
        )

    except Exception as e:
        return handle_error(e)


@router.get("/jobs", response_model=CorrelationJobListResponse)
async def list_jobs(
    owner_id: str = Query(..., alias="ownerId", min_length=1, description="Owner id"),
    limit: int = Query(10, ge=1, le=50, description="Max jobs returned")
):
    """Recent jobs for an owner, newest first."""
    try:
        service = get_correlation_job_service()
        jobs = await service.list_jobs(owner_id, limit=limit)

        return CorrelationJobListResponse(
            data=[CorrelationJobResponse.from_job(j, service.is_stale(j)) for j in jobs],
            total=len(jobs)
        )

    except Exception as e:
        return handle_error(e)


@router.get("/jobs/{job_id}", response_model=CorrelationJobResponse)
async def get_job(
    job_id: str,
    owner_id: str = Query(None, alias="ownerId", description="Restrict to this owner")
):
    """
    Job status for polling.

    Raises:
        404: Unknown job
    """
    try:
        service = get_correlation_job_service()
        job = await service.get_status(job_id, owner_id=owner_id)
        return CorrelationJobResponse.from_job(job, service.is_stale(job))

    except Exception as e:
        return handle_error(e)


# ===================
# EXISTING CORRELATIONS
# ===================

@router.post("/check", response_model=CheckCorrelationsResponse)
async def check_correlations(data: CheckCorrelationsRequest):
    """
    Correlations already stored for a seed. Never starts a job.

    Raises:
        400: Malformed ASIN
    """
    try:
        service = get_correlation_job_service()
        records, filtered = await service.check_existing(
            data.seed_identifier,
            data.owner_id,
            include_completed=data.include_completed
        )

        return CheckCorrelationsResponse(
            seed_identifier=data.seed_identifier.upper(),
            exists=bool(records),
            correlations=[CorrelationResponse.from_record(r) for r in records],
            count=len(records),
            filtered_count=filtered
        )

    except Exception as e:
        return handle_error(e)


# ===================
# FEEDBACK
# ===================

@router.post("/feedback", response_model=FeedbackResponse)
async def submit_feedback(data: FeedbackRequest):
    """
    Accept, decline or undo a decision on one correlation.

    Raises:
        404: Correlation not found
        422: Invalid decision
    """
    try:
        service = get_feedback_service()
        return service.submit(data)

    except Exception as e:
        return handle_error(e)


@router.get("/feedback", response_model=list[FeedbackEntry])
async def get_feedback(
    seed_identifier: str = Query(..., alias="seedIdentifier", min_length=1),
    owner_id: str = Query(..., alias="ownerId", min_length=1)
):
    """Decisions recorded for a seed's correlations."""
    try:
        service = get_feedback_service()
        return service.get_feedback(seed_identifier, owner_id)

    except Exception as e:
        return handle_error(e)
