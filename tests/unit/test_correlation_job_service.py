"""
Unit tests for CorrelationJobService.

The catalog, judge and store are the in-memory fakes from tests/fakes.py.
Background tasks are joined with service.wait() inside asyncio.run().

Run: pytest tests/unit/test_correlation_job_service.py -v
"""

import asyncio

import httpx
import pytest

from integrations.keepa import KeepaClient
from services.correlation_job_service import CorrelationJobService
from models.correlation_job import JobStatus
from models.product import CandidateOrigin
from exceptions import (
    CorrelationJobActiveError,
    CorrelationJobNotFoundError,
    ExternalServiceError,
    InvalidAsinError,
    ValidationError,
)

from tests.factories import DescriptorFactory, JobRowFactory, KeepaProductFactory, LEGO_CATEGORY
from tests.fakes import ScriptedJudge, database_failure

SEED = "B01KJEOCDW"
OWNER = "owner-1"


def setup_lego(catalog, judge, variations: int = 3, similar: int = 5, approved: int = 2):
    """Seed with variations and a search returning similar items; judge approves the first `approved`."""
    variation_items = DescriptorFactory.create_batch(variations)
    similar_items = DescriptorFactory.create_batch(similar)
    seed = DescriptorFactory.create(
        identifier=SEED,
        title="LEGO Classic Medium Creative Brick Box 10696",
        variation_identifiers=tuple(v.identifier for v in variation_items)
    )
    catalog.add(seed, *variation_items, *similar_items)
    catalog.set_search("LEGO", LEGO_CATEGORY, [s.identifier for s in similar_items])
    judge.approve = {s.identifier for s in similar_items[:approved]}
    return seed, variation_items, similar_items


async def run_job(service: CorrelationJobService, seed: str = SEED, owner: str = OWNER, **kwargs):
    job = await service.submit(seed, owner, **kwargs)
    await service.wait(job.id)
    return service.store.get_job(job.id)


class TestSubmitValidation:
    """Synchronous checks in CorrelationJobService.submit()"""

    def test_malformed_identifier_creates_no_job(self, job_service, store):
        """'short' is rejected before any job exists."""
        with pytest.raises(InvalidAsinError) as exc_info:
            asyncio.run(job_service.submit("short", OWNER))

        assert exc_info.value.status_code == 400
        assert store.jobs == {}

    def test_missing_owner_rejected(self, job_service, store):
        with pytest.raises(ValidationError):
            asyncio.run(job_service.submit(SEED, "  "))

        assert store.jobs == {}

    def test_identifier_normalized(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)

        job = asyncio.run(run_job(job_service, seed="b01kjeocdw"))

        assert job.seed_identifier == SEED
        assert job.status == JobStatus.COMPLETE

    def test_returns_pending_job_immediately(self, job_service, store, catalog, judge):
        """submit() returns before the pipeline runs."""
        setup_lego(catalog, judge)

        async def scenario():
            job = await job_service.submit(SEED, OWNER)
            status_at_return = job.status
            await job_service.wait(job.id)
            return status_at_return

        assert asyncio.run(scenario()) == JobStatus.PENDING


class TestJobPipeline:
    """Background run: collect -> evaluate -> persist."""

    def test_lego_scenario(self, job_service, store, catalog, judge):
        """3 variations + 5 similar, 2 approved -> 8 / 5 / 3, 5 records."""
        # Arrange
        setup_lego(catalog, judge, variations=3, similar=5, approved=2)

        # Act
        job = asyncio.run(run_job(job_service))

        # Assert
        assert job.status == JobStatus.COMPLETE
        assert job.total_count == 8
        assert job.approved_count == 5
        assert job.rejected_count == 3
        assert job.processed_count == 8
        assert job.completed_at is not None
        assert job.error_message is None
        assert len(store.records_for(SEED)) == 5

    def test_counts_reconcile(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge, variations=2, similar=9, approved=4)

        job = asyncio.run(run_job(job_service))

        assert job.processed_count == job.approved_count + job.rejected_count
        assert job.total_count == 11

    def test_variations_always_persisted(self, job_service, store, catalog, judge):
        """Variations are stored even when the judge rejects everything."""
        seed, variations, similar = setup_lego(catalog, judge, approved=0)

        asyncio.run(run_job(job_service))

        stored = {r.candidate_identifier: r for r in store.records_for(SEED)}
        assert set(stored) == {v.identifier for v in variations}
        assert all(r.origin == CandidateOrigin.VARIATION for r in stored.values())
        assert not set(judge.judged_asins) & set(stored)

    def test_records_carry_seed_and_candidate_data(self, job_service, store, catalog, judge):
        seed, variations, similar = setup_lego(catalog, judge, variations=1, similar=1, approved=1)

        asyncio.run(run_job(job_service))

        record = store.correlations[(OWNER, SEED, similar[0].identifier)]
        assert record.candidate_title == similar[0].title
        assert record.candidate_url == f"https://www.amazon.com/dp/{similar[0].identifier}"
        assert record.seed_image_url == seed.image_url
        assert record.origin == CandidateOrigin.SIMILAR
        assert record.source_tag == "correlation-engine"

    def test_status_moves_through_processing(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)

        job = asyncio.run(run_job(job_service))

        statuses = [u["status"] for u in store.updates_for(job.id) if "status" in u]
        assert statuses == [JobStatus.PROCESSING, JobStatus.COMPLETE]

    def test_progress_snapshots_per_window(self, store, catalog, judge):
        """One processed_count snapshot per judge window."""
        # Arrange
        setup_lego(catalog, judge, variations=1, similar=7, approved=0)
        service = CorrelationJobService(catalog=catalog, judge=judge, store=store)
        service.evaluator.concurrency = 3

        # Act
        job = asyncio.run(run_job(service))

        # Assert
        snapshots = [
            u["processed_count"] for u in store.updates_for(job.id)
            if "processed_count" in u and "status" not in u
        ]
        assert snapshots == [4, 7, 8]

    def test_rerun_is_idempotent(self, job_service, store, catalog, judge):
        """A second run for the same seed updates records in place."""
        setup_lego(catalog, judge)

        first = asyncio.run(run_job(job_service))
        second = asyncio.run(run_job(job_service))

        assert first.id != second.id
        assert second.status == JobStatus.COMPLETE
        assert len(store.records_for(SEED)) == 5

    def test_no_brand_or_category_means_no_judge_calls(self, job_service, store, catalog, judge):
        """totalCount equals the variation count and the judge is never called."""
        # Arrange
        variations = DescriptorFactory.create_batch(2)
        seed = DescriptorFactory.create(
            identifier=SEED,
            brand=None,
            category_id=None,
            variation_identifiers=tuple(v.identifier for v in variations)
        )
        catalog.add(seed, *variations)

        # Act
        job = asyncio.run(run_job(job_service))

        # Assert
        assert job.status == JobStatus.COMPLETE
        assert job.total_count == 2
        assert job.approved_count == 2
        assert judge.calls == []
        assert catalog.search_calls == []

    def test_search_failure_still_completes(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge, variations=3)
        catalog.search_error = ExternalServiceError("keepa", "Keepa API error: 503")

        job = asyncio.run(run_job(job_service))

        assert job.status == JobStatus.COMPLETE
        assert job.total_count == 3
        assert job.approved_count == 3
        assert job.rejected_count == 0

    def test_unexpected_search_error_still_completes(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge, variations=3)
        catalog.search_error = RuntimeError("unexpected search failure")

        job = asyncio.run(run_job(job_service))

        assert job.status == JobStatus.COMPLETE
        assert job.total_count == 3
        assert job.approved_count == 3

    def test_gateway_page_from_search_still_completes(self, store, judge):
        """Keepa /query answering 200 with HTML leaves the variations."""
        # Arrange
        variation_ids = ["B000000201", "B000000202"]
        products = {
            SEED: KeepaProductFactory.create(asin=SEED, variations=variation_ids),
            **{a: KeepaProductFactory.create(asin=a) for a in variation_ids},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/query":
                return httpx.Response(200, text="<html>gateway</html>")
            asins = request.url.params["asin"].split(",")
            return httpx.Response(
                200,
                json=KeepaProductFactory.response([products[a] for a in asins if a in products])
            )

        keepa = KeepaClient(
            api_key="test-keepa-key",
            base_url="https://api.keepa.test",
            transport=httpx.MockTransport(handler)
        )
        service = CorrelationJobService(catalog=keepa, judge=judge, store=store)

        # Act
        job = asyncio.run(run_job(service))

        # Assert
        assert job.status == JobStatus.COMPLETE
        assert job.total_count == 2
        assert job.approved_count == 2
        assert {r.candidate_identifier for r in store.records_for(SEED)} == set(variation_ids)
        assert judge.calls == []

    def test_canonical_seed_records_keyed_by_submitted_seed(self, job_service, store, catalog, judge):
        """Catalog answering with another ASIN must not hide the results from check_existing."""
        # Arrange
        similar = DescriptorFactory.create_batch(2)
        catalog.products[SEED] = DescriptorFactory.create(identifier="B0CANONIC1")
        catalog.add(*similar)
        catalog.set_search("LEGO", LEGO_CATEGORY, [SEED, *(s.identifier for s in similar)])
        judge.approve = {similar[0].identifier}

        # Act
        job = asyncio.run(run_job(job_service))
        records, filtered = asyncio.run(job_service.check_existing(SEED, OWNER))

        # Assert
        assert job.status == JobStatus.COMPLETE
        assert job.approved_count == 1
        assert [r.candidate_identifier for r in records] == [similar[0].identifier]
        assert store.records_for("B0CANONIC1") == []
        assert SEED not in judge.judged_asins

    def test_judge_failures_counted_as_rejections(self, job_service, store, catalog, judge):
        seed, variations, similar = setup_lego(catalog, judge, variations=0, similar=3, approved=3)
        judge.failing = {similar[0].identifier}

        job = asyncio.run(run_job(job_service))

        assert job.status == JobStatus.COMPLETE
        assert job.approved_count == 2
        assert job.rejected_count == 1


class TestJobFailures:
    """Failures end in an error status."""

    def test_seed_not_found(self, job_service, store, catalog):
        job = asyncio.run(run_job(job_service))

        assert job.status == JobStatus.ERROR
        assert job.error_message == f"Product not found in catalog: {SEED}"
        assert store.correlations == {}

    def test_seed_lookup_failure(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)
        catalog.failing_asins = {SEED}

        job = asyncio.run(run_job(job_service))

        assert job.status == JobStatus.ERROR
        assert job.completed_at is not None
        assert "Keepa" in job.error_message

    def test_persistence_failure(self, job_service, store, catalog, judge):
        """Upsert errors mark the job failed with approved_count 0."""
        setup_lego(catalog, judge)
        store.upsert_error = database_failure()

        job = asyncio.run(run_job(job_service))

        assert job.status == JobStatus.ERROR
        assert job.error_message.startswith("Failed to save correlations:")
        assert job.approved_count == 0
        assert job.rejected_count == 3
        assert store.correlations == {}

    def test_final_status_write_failure_is_contained(self, job_service, store, catalog, judge):
        """If even the error status can't be written the task still ends cleanly."""
        # Arrange
        def broken_update(job_id, **fields):
            raise database_failure("update")

        store.update_job = broken_update

        async def scenario():
            job = await job_service.submit(SEED, OWNER)
            finished = await job_service.wait(job.id, timeout=5)
            return finished

        # Act / Assert
        assert asyncio.run(scenario()) is True
        assert job_service.running_jobs == []


class TestActiveJobPolicy:
    """Only one live job per owner and seed."""

    def test_active_job_rejected(self, job_service, store):
        active = store.add_job(JobRowFactory.job(status="processing", minutes_old=1))

        with pytest.raises(CorrelationJobActiveError) as exc_info:
            asyncio.run(job_service.submit(SEED, OWNER))

        assert exc_info.value.status_code == 409
        assert exc_info.value.job_id == active.id
        assert len(store.jobs) == 1

    def test_stale_job_does_not_block(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)
        stale = store.add_job(JobRowFactory.job(status="processing", minutes_old=45))

        job = asyncio.run(run_job(job_service))

        assert job.id != stale.id
        assert job.status == JobStatus.COMPLETE

    def test_other_owner_not_blocked(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)
        store.add_job(JobRowFactory.job(status="processing", user_id="owner-2"))

        job = asyncio.run(run_job(job_service))

        assert job.status == JobStatus.COMPLETE

    def test_simultaneous_submissions(self, job_service, store, catalog, judge):
        """Two submissions racing in one process: exactly one job."""
        setup_lego(catalog, judge)

        async def scenario():
            results = await asyncio.gather(
                job_service.submit(SEED, OWNER),
                job_service.submit(SEED, OWNER),
                return_exceptions=True
            )
            for job_id in job_service.running_jobs:
                await job_service.wait(job_id)
            return results

        results = asyncio.run(scenario())

        errors = [r for r in results if isinstance(r, CorrelationJobActiveError)]
        assert len(errors) == 1
        assert len(store.jobs) == 1

    def test_finished_job_releases_guard(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)

        asyncio.run(run_job(job_service))

        assert job_service._active_jobs == {}


class TestInstructionsSource:
    """Which judge prompt a job uses."""

    def test_owner_prompt_used_by_default(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge, variations=0, similar=1)
        store.owner_prompts[OWNER] = "Owner rule: {candidate_asin} vs {primary_title}"

        asyncio.run(run_job(job_service))

        assert judge.calls[0]["prompt_override"].startswith("Owner rule: ")

    def test_request_instructions_win(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge, variations=0, similar=1)
        store.owner_prompts[OWNER] = "Owner rule"

        asyncio.run(run_job(job_service, similarity_instructions="Request rule {candidate_asin}"))

        assert judge.calls[0]["prompt_override"].startswith("Request rule B")


class TestReads:
    """get_status(), list_jobs() and check_existing()"""

    def test_get_status_unknown(self, job_service):
        with pytest.raises(CorrelationJobNotFoundError):
            asyncio.run(job_service.get_status("missing"))

    def test_get_status_wrong_owner(self, job_service, store):
        job = store.add_job(JobRowFactory.job())

        with pytest.raises(CorrelationJobNotFoundError):
            asyncio.run(job_service.get_status(job.id, owner_id="owner-2"))

    def test_get_status_is_pure_read(self, job_service, store):
        job = store.add_job(JobRowFactory.job(status="processing", minutes_old=30))

        result = asyncio.run(job_service.get_status(job.id, owner_id=OWNER))

        assert result.id == job.id
        assert job_service.is_stale(result) is True
        assert store.job_updates == []

    def test_list_jobs_newest_first(self, job_service, store):
        older = store.add_job(JobRowFactory.job(status="complete", minutes_old=60))
        newer = store.add_job(JobRowFactory.job(status="error", minutes_old=5))

        jobs = asyncio.run(job_service.list_jobs(OWNER, limit=10))

        assert [j.id for j in jobs] == [newer.id, older.id]

    def test_check_existing_never_starts_job(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)
        asyncio.run(run_job(job_service))
        jobs_before = len(store.jobs)

        records, filtered = asyncio.run(job_service.check_existing("b01kjeocdw", OWNER))

        assert len(records) == 5
        assert filtered == 0
        assert len(store.jobs) == jobs_before

    def test_check_existing_hides_completed_tasks(self, job_service, store, catalog, judge):
        seed, variations, similar = setup_lego(catalog, judge)
        asyncio.run(run_job(job_service))
        store.completed_tasks[OWNER] = {variations[0].identifier}

        records, filtered = asyncio.run(job_service.check_existing(SEED, OWNER))
        all_records, none_filtered = asyncio.run(
            job_service.check_existing(SEED, OWNER, include_completed=True)
        )

        assert filtered == 1
        assert variations[0].identifier not in {r.candidate_identifier for r in records}
        assert len(all_records) == 5
        assert none_filtered == 0

    def test_check_existing_tolerates_task_lookup_failure(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)
        asyncio.run(run_job(job_service))
        store.tasks_error = database_failure("select")

        records, filtered = asyncio.run(job_service.check_existing(SEED, OWNER))

        assert len(records) == 5
        assert filtered == 0

    def test_check_existing_rejects_bad_identifier(self, job_service):
        with pytest.raises(InvalidAsinError):
            asyncio.run(job_service.check_existing("short", OWNER))


class BlockingJudge(ScriptedJudge):
    """Judge that waits until released."""

    def __init__(self):
        super().__init__()
        self.release = None

    async def judge(self, seed_text, candidate_text, prompt_override=None):
        await self.release.wait()
        return True


class TestShutdown:
    """Task registry and shutdown()."""

    def test_shutdown_cancels_stuck_jobs(self, store, catalog):
        # Arrange
        judge = BlockingJudge()
        setup_lego(catalog, ScriptedJudge(), variations=0, similar=2)
        service = CorrelationJobService(catalog=catalog, judge=judge, store=store)

        async def scenario():
            judge.release = asyncio.Event()
            job = await service.submit(SEED, OWNER)
            await asyncio.sleep(0.2)
            await service.shutdown(timeout=0.01)
            return job

        # Act
        job = asyncio.run(scenario())

        # Assert
        stored = store.get_job(job.id)
        assert stored.status == JobStatus.ERROR
        assert stored.error_message == "Job cancelled before completion"
        assert service.running_jobs == []

    def test_shutdown_waits_for_running_jobs(self, job_service, store, catalog, judge):
        setup_lego(catalog, judge)

        async def scenario():
            job = await job_service.submit(SEED, OWNER)
            await job_service.shutdown(timeout=5)
            return job

        job = asyncio.run(scenario())

        assert store.get_job(job.id).status == JobStatus.COMPLETE

    def test_wait_unknown_job_returns_true(self, job_service):
        assert asyncio.run(job_service.wait("nope")) is True
