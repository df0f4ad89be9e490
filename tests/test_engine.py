"""
Reconciliation Engine Tests

Covers job creation (reference image upload, submission, failure recording),
reconcile classification, one-time artifact migration, transient error
isolation and concurrent reconciles.

Run with:
    pytest tests/test_engine.py -v
"""

import asyncio
import httpx
import pytest
from unittest.mock import AsyncMock

from videogen.errors import (
    RemoteRequestError,
    RepositoryError,
    RepositoryErrorKind,
    StorageError,
    ValidationError,
)
from videogen.jobs.engine import ReconciliationEngine
from videogen.jobs.models import GenerationRequest, JobStatus, ReferenceImage, RemoteJobStatus

from conftest import VIDEO_BYTES


# ============================================================================
# CREATE
# ============================================================================

class TestCreateJob:

    def test_happy_path_moves_to_processing(self, engine, repository, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            stored = await repository.get(job.id)
            return job, stored

        job, stored = asyncio.run(run_test())

        assert job.status == JobStatus.PROCESSING
        assert job.remote_job_id == "video_1"
        assert job.remote_metadata["status"] == "queued"
        assert job.error_message is None
        assert job.artifact_url is None
        assert stored == job

    def test_submission_failure_marks_failed_and_raises(
        self, engine, repository, fake_api, base_request
    ):
        fake_api.create_error = httpx.Response(
            400, json={"error": {"message": "Your prompt was blocked"}}
        )

        async def run_test():
            with pytest.raises(RemoteRequestError) as exc_info:
                await engine.create_job(base_request)
            jobs = await repository.list()
            return exc_info.value, jobs

        error, jobs = asyncio.run(run_test())

        assert error.status_code == 400
        assert error.message == "Your prompt was blocked"
        assert len(jobs) == 1
        assert jobs[0].status == JobStatus.FAILED
        assert jobs[0].error_message == "Your prompt was blocked"
        assert jobs[0].remote_job_id is None

    def test_invalid_resolution_rejected_before_any_io(self, engine, repository, fake_api):
        request = GenerationRequest(prompt="A", model="sora-2", resolution="1792x1024")

        async def run_test():
            with pytest.raises(ValidationError):
                await engine.create_job(request)
            return await repository.list()

        assert asyncio.run(run_test()) == []
        assert fake_api.requests == []

    def test_reference_image_uploaded_and_sent_as_multipart(
        self, engine, store, fake_api, base_request
    ):
        image = ReferenceImage(data=b"png-bytes", filename="frame.png", content_type="image/png")

        job = asyncio.run(engine.create_job(base_request, reference_image=image))

        assert store.image_uploads == 1
        assert job.reference_image_name == "frame.png"
        assert job.reference_image_url.startswith("memory://storage/images/uploads/")
        assert job.reference_image_url.endswith(".png")
        create_call = fake_api.calls("POST", "/videos")[0]
        assert create_call.headers["content-type"].startswith("multipart/form-data")
        assert b"png-bytes" in create_call.content

    def test_reference_url_sent_as_json_field(self, engine, fake_api, base_request):
        job = asyncio.run(
            engine.create_job(base_request, reference_url="https://cdn.test/frame.png")
        )

        assert job.reference_image_url == "https://cdn.test/frame.png"
        create_call = fake_api.calls("POST", "/videos")[0]
        assert create_call.headers["content-type"] == "application/json"
        assert b'"image":"https://cdn.test/frame.png"' in create_call.content.replace(b" ", b"")

    def test_image_upload_failure_aborts_before_record(
        self, api_client, repository, fake_api, base_request
    ):
        store = AsyncMock()
        store.put_reference_image.side_effect = StorageError("bucket unavailable")
        engine = ReconciliationEngine(api_client, repository, store)
        image = ReferenceImage(data=b"x", filename="frame.png")

        async def run_test():
            with pytest.raises(StorageError):
                await engine.create_job(base_request, reference_image=image)
            return await repository.list()

        assert asyncio.run(run_test()) == []
        assert fake_api.requests == []


# ============================================================================
# RECONCILE
# ============================================================================

class TestReconcile:

    def test_scenario_queued_then_completed(self, engine, fake_api, store, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            queued = await engine.reconcile_job(job.id)
            fake_api.set_status(job.remote_job_id, "completed", progress=100)
            done = await engine.reconcile_job(job.id)
            return job, queued, done

        job, queued, done = asyncio.run(run_test())

        assert queued.status == JobStatus.PROCESSING
        assert done.status == JobStatus.COMPLETED
        assert done.artifact_url == f"memory://storage/videos/{job.id}/video_1.mp4"
        assert done.remote_metadata["status"] == "completed"
        assert store.objects[("videos", f"{job.id}/video_1.mp4")] == (VIDEO_BYTES, "video/mp4")

    def test_remote_failure_records_message(self, engine, fake_api, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(
                job.remote_job_id, "failed", error={"message": "policy violation"}
            )
            return await engine.reconcile_job(job.id)

        job = asyncio.run(run_test())

        assert job.status == JobStatus.FAILED
        assert job.error_message == "policy violation"

    def test_remote_failure_without_message_uses_generic(self, engine, fake_api, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(job.remote_job_id, "failed")
            return await engine.reconcile_job(job.id)

        job = asyncio.run(run_test())

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Video generation failed"

    def test_error_object_fails_job_even_when_in_progress(self, engine, fake_api, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(
                job.remote_job_id, "in_progress", error={"message": "moderation"}
            )
            return await engine.reconcile_job(job.id)

        assert asyncio.run(run_test()).status == JobStatus.FAILED

    def test_unknown_status_keeps_status_and_refreshes_metadata(
        self, engine, fake_api, base_request
    ):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(job.remote_job_id, "archived", note="moved")
            return job, await engine.reconcile_job(job.id)

        before, after = asyncio.run(run_test())

        assert after.status == before.status == JobStatus.PROCESSING
        assert after.remote_metadata == {
            "id": "video_1", "object": "video", "status": "archived", "note": "moved",
        }

    @pytest.mark.parametrize("failure", [
        httpx.Response(503, json={"error": {"message": "overloaded"}}),
        httpx.Response(200, text="<html>not json</html>"),
    ])
    def test_fetch_error_leaves_record_untouched(
        self, engine, repository, fake_api, base_request, failure
    ):
        async def run_test():
            job = await engine.create_job(base_request)
            before = await repository.get(job.id)
            fake_api.status_error = failure
            returned = await engine.reconcile_job(job.id)
            after = await repository.get(job.id)
            return before, returned, after

        before, returned, after = asyncio.run(run_test())

        assert returned == before
        assert after.model_dump() == before.model_dump()

    def test_network_error_is_swallowed(self, engine, repository, fake_api, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.status_exception = httpx.ConnectTimeout("timed out")
            returned = await engine.reconcile_job(job.id)
            return job, returned

        job, returned = asyncio.run(run_test())

        assert returned.status == JobStatus.PROCESSING
        assert returned.updated_at == job.updated_at

    def test_missing_job_raises_not_found(self, engine):
        with pytest.raises(RepositoryError) as exc_info:
            asyncio.run(engine.reconcile_job("does-not-exist"))

        assert exc_info.value.kind == RepositoryErrorKind.NOT_FOUND

    def test_job_without_remote_id_returned_unchanged(self, engine, repository, fake_api):
        async def run_test():
            job = await repository.create({
                "prompt": "A", "model": "sora-2", "resolution": "1280x720", "duration": 4,
            })
            return job, await engine.reconcile_job(job.id)

        job, returned = asyncio.run(run_test())

        assert returned == job
        assert fake_api.requests == []

    def test_terminal_job_is_not_polled(self, engine, fake_api, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(job.remote_job_id, "failed", error={"message": "nope"})
            failed = await engine.reconcile_job(job.id)
            fake_api.set_status(job.remote_job_id, "in_progress")
            again = await engine.reconcile_job(job.id)
            return failed, again

        failed, again = asyncio.run(run_test())

        assert again == failed
        assert len(fake_api.calls("GET", "/videos/video_1")) == 1


# ============================================================================
# ARTIFACT MIGRATION
# ============================================================================

class TestMigration:

    def test_second_reconcile_does_not_migrate_again(self, engine, fake_api, store, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(job.remote_job_id, "completed")
            first = await engine.reconcile_job(job.id)
            second = await engine.reconcile_job(job.id)
            return first, second

        first, second = asyncio.run(run_test())

        assert store.video_uploads == 1
        assert fake_api.downloads == 1
        assert second.artifact_url == first.artifact_url

    def test_existing_artifact_url_skips_download(self, engine, repository, fake_api, store, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            await repository.update(job.id, {"artifact_url": "https://cdn.test/already.mp4"})
            fake_api.set_status(job.remote_job_id, "completed")
            return await engine.reconcile_job(job.id)

        job = asyncio.run(run_test())

        assert job.status == JobStatus.COMPLETED
        assert job.artifact_url == "https://cdn.test/already.mp4"
        assert fake_api.downloads == 0
        assert store.video_uploads == 0

    def test_download_failure_is_terminal(self, engine, fake_api, store, base_request):
        fake_api.content_error = httpx.Response(410, json={"error": {"message": "expired"}})

        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(job.remote_job_id, "completed")
            return await engine.reconcile_job(job.id)

        job = asyncio.run(run_test())

        assert job.status == JobStatus.FAILED
        assert job.error_message == "expired"
        assert job.artifact_url is None
        assert store.video_uploads == 0

    def test_upload_failure_is_terminal(self, api_client, repository, fake_api, base_request):
        store = AsyncMock()
        store.put_video.side_effect = StorageError("Failed to upload video: quota")
        engine = ReconciliationEngine(api_client, repository, store)

        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(job.remote_job_id, "completed")
            return await engine.reconcile_job(job.id)

        job = asyncio.run(run_test())

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Failed to upload video: quota"

    def test_concurrent_reconciles_converge(self, engine, fake_api, store, base_request):
        async def run_test():
            job = await engine.create_job(base_request)
            fake_api.set_status(job.remote_job_id, "completed")
            results = await asyncio.gather(*(engine.reconcile_job(job.id) for _ in range(3)))
            return job, results

        job, results = asyncio.run(run_test())

        urls = {r.artifact_url for r in results}
        assert urls == {f"memory://storage/videos/{job.id}/video_1.mp4"}
        assert all(r.status == JobStatus.COMPLETED for r in results)
        assert len(store.objects) == 1


# ============================================================================
# MONOTONIC STATUS
# ============================================================================

class TestMonotonicStatus:

    def test_status_never_regresses(self, repository, store):
        order = {JobStatus.PENDING: 0, JobStatus.PROCESSING: 1,
                 JobStatus.COMPLETED: 2, JobStatus.FAILED: 2}
        sequence = ["queued", "archived", "in_progress", "completed", "queued", "failed"]
        client = AsyncMock()
        client.fetch_status.side_effect = [
            RemoteJobStatus.from_payload({"status": s}) for s in sequence
        ]
        client.download_artifact.return_value = b"video"
        engine = ReconciliationEngine(client, repository, store)

        async def run_test():
            job = await repository.create({
                "prompt": "A", "model": "sora-2", "resolution": "1280x720",
                "duration": 4, "status": "processing", "remote_job_id": "r1",
            })
            seen = []
            for _ in sequence:
                seen.append((await engine.reconcile_job(job.id)).status)
            return seen

        seen = asyncio.run(run_test())

        ranks = [order[s] for s in seen]
        assert ranks == sorted(ranks)
        assert seen[-1] == JobStatus.COMPLETED
        assert client.fetch_status.await_count == 4


# ============================================================================
# BATCH / LIST / DELETE
# ============================================================================

class TestBatchAndRecords:

    def test_reconcile_many_isolates_failures(self, engine, fake_api, base_request):
        async def run_test():
            a = await engine.create_job(base_request)
            b = await engine.create_job(base_request)
            fake_api.set_status(b.remote_job_id, "completed")
            return b, await engine.reconcile_many([a.id, "missing-id", b.id])

        b, results = asyncio.run(run_test())

        assert len(results) == 2
        assert [j.id for j in results][1] == b.id
        assert results[1].status == JobStatus.COMPLETED

    def test_list_newest_first_and_delete(self, engine, base_request):
        async def run_test():
            first = await engine.create_job(base_request)
            second = await engine.create_job(base_request)
            listed = await engine.list_jobs(limit=10)
            await engine.delete_job(first.id)
            await engine.delete_job("never-existed")
            remaining = await engine.list_jobs()
            return first, second, listed, remaining

        first, second, listed, remaining = asyncio.run(run_test())

        assert [j.id for j in listed] == [second.id, first.id]
        assert [j.id for j in remaining] == [second.id]
