"""Job lifecycle reconciliation engine.

Creates jobs end to end (reference image upload, record creation, remote
submission) and reconciles a job's local record against the remote API,
migrating the finished video into durable storage exactly once.

Status only moves forward: pending -> processing -> completed | failed.
Transient failures while polling the remote API never change a record; only
an explicit remote failure or a failed artifact migration marks a job failed.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from videogen.db.repository import JobRepository
from videogen.errors import (
    RemoteRequestError,
    RepositoryError,
    RepositoryErrorKind,
    StorageError,
)
from videogen.jobs.models import (
    GenerationRequest,
    Job,
    JobStatus,
    ReferenceImage,
)
from videogen.jobs.status import VERDICT_STATUS, RemoteVerdict, classify
from videogen.remote.client import VideoAPIClient
from videogen.storage.artifacts import ArtifactStore, reference_image_key, video_key

logger = logging.getLogger(__name__)

GENERIC_REMOTE_FAILURE = "Video generation failed"


def _failure_message(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or type(exc).__name__


class ReconciliationEngine:
    """Orchestrates the remote client, artifact store and job repository."""

    def __init__(
        self,
        client: VideoAPIClient,
        repository: JobRepository,
        store: ArtifactStore,
        image_upload_path: str = "uploads/",
    ):
        self._client = client
        self._repository = repository
        self._store = store
        self._image_upload_path = image_upload_path

    async def create_job(
        self,
        request: GenerationRequest,
        reference_image: Optional[ReferenceImage] = None,
        reference_url: Optional[str] = None,
    ) -> Job:
        """Create a record and submit it to the remote API.

        A failed reference image upload aborts before any record exists. A
        failed submission marks the record failed and re-raises.
        """
        request.validate_request()

        image_url = reference_url
        image_name = None
        if reference_image is not None:
            key = reference_image_key(reference_image.filename, self._image_upload_path)
            image_url = await self._store.put_reference_image(
                key, reference_image.data, reference_image.content_type
            )
            image_name = reference_image.filename

        job = await self._repository.create({
            "prompt": request.prompt,
            "model": request.model,
            "resolution": request.resolution,
            "duration": request.duration,
            "status": JobStatus.PENDING,
            "reference_image_url": image_url,
            "reference_image_name": image_name,
        })
        logger.info("Created job %s (%s, %s)", job.id, request.model.value, request.resolution.value)

        try:
            remote = await self._client.submit(
                request,
                reference_image=reference_image,
                reference_url=None if reference_image is not None else image_url,
            )
        except Exception as exc:
            message = _failure_message(exc)
            logger.error("Submission failed for job %s: %s", job.id, message)
            await self._repository.update(job.id, {
                "status": JobStatus.FAILED,
                "error_message": message,
            })
            raise

        logger.info("Job %s accepted as remote job %s", job.id, remote.id)
        return await self._repository.update(job.id, {
            "remote_job_id": remote.id,
            "status": JobStatus.PROCESSING,
            "remote_metadata": remote.raw,
        })

    async def reconcile_job(self, job_id: str) -> Job:
        """Bring one record in line with the remote job.

        Safe to call any number of times, concurrently and on terminal jobs.
        Raises only when the job does not exist.
        """
        job = await self._repository.get(job_id)
        if job is None:
            raise RepositoryError(
                RepositoryErrorKind.NOT_FOUND, f"Video generation {job_id} not found"
            )
        if not job.remote_job_id:
            logger.debug("Job %s has no remote job id yet", job_id)
            return job
        if job.status.is_terminal:
            return job

        try:
            remote = await self._client.fetch_status(job.remote_job_id)
        except Exception as exc:
            logger.warning(
                "Status check for job %s (remote %s) failed, keeping last known state: %s",
                job_id, job.remote_job_id, exc,
            )
            return job

        logger.debug("Job %s remote status: %s", job_id, remote.status)

        # Another caller may have advanced the record while we were fetching
        current = await self._repository.get(job_id)
        if current is None:
            raise RepositoryError(
                RepositoryErrorKind.NOT_FOUND, f"Video generation {job_id} not found"
            )
        if current.status.is_terminal:
            return current

        updates: Dict[str, Any] = {"remote_metadata": remote.raw}
        verdict = classify(remote)

        if verdict is RemoteVerdict.COMPLETED:
            updates.update(await self._migrate(current))
        elif verdict is RemoteVerdict.FAILED:
            updates["status"] = JobStatus.FAILED
            updates["error_message"] = remote.error_message or GENERIC_REMOTE_FAILURE
            logger.info("Job %s failed remotely: %s", job_id, updates["error_message"])
        elif verdict is RemoteVerdict.PROCESSING:
            updates["status"] = VERDICT_STATUS[verdict]
        else:
            logger.info("Unknown status from API for job %s: %r", job_id, remote.status)

        updated = await self._repository.update(job_id, updates)
        if updated.status != current.status:
            logger.info("Job %s: %s -> %s", job_id, current.status.value, updated.status.value)
        return updated

    async def _migrate(self, job: Job) -> Dict[str, Any]:
        """Copy the finished video into durable storage unless already done."""
        if job.artifact_url:
            logger.info("Job %s already migrated to %s", job.id, job.artifact_url)
            return {"status": JobStatus.COMPLETED}

        try:
            data = await self._client.download_artifact(job.remote_job_id)
            logger.info("Downloaded %d bytes for job %s", len(data), job.id)
            url = await self._store.put_video(video_key(job.id, job.remote_job_id), data)
        except (RemoteRequestError, StorageError) as exc:
            message = _failure_message(exc)
            logger.error("Artifact migration failed for job %s: %s", job.id, message)
            return {"status": JobStatus.FAILED, "error_message": message}

        logger.info("Job %s video stored at %s", job.id, url)
        return {"status": JobStatus.COMPLETED, "artifact_url": url}

    async def reconcile_many(self, job_ids: Iterable[str]) -> List[Job]:
        """Reconcile jobs concurrently. One job's error never affects another."""
        ids = list(job_ids)
        results = await asyncio.gather(
            *(self.reconcile_job(job_id) for job_id in ids),
            return_exceptions=True,
        )
        jobs = []
        for job_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.error("Reconcile failed for job %s: %s", job_id, result)
                continue
            jobs.append(result)
        return jobs

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self._repository.get(job_id)

    async def list_jobs(self, limit: int = 50) -> List[Job]:
        return await self._repository.list(limit=limit)

    async def delete_job(self, job_id: str) -> None:
        """Delete the record only. The remote job and stored video are left as is."""
        await self._repository.delete(job_id)
        logger.info("Deleted job %s", job_id)
