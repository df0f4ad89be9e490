"""Job record persistence: abstract repository plus Supabase and in-memory backends."""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError
from pydantic import ValidationError as ModelValidationError
from supabase import Client

from videogen.errors import RepositoryError, RepositoryErrorKind
from videogen.jobs.models import Job, JobStatus, utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("prompt", "model", "resolution", "duration")

# Postgres error codes
_NOT_NULL_VIOLATION = "23502"
_CHECK_VIOLATION = "23514"
_INVALID_TEXT_REPRESENTATION = "22P02"


class JobRepository(ABC):
    """Abstract interface for job record storage."""

    @abstractmethod
    async def create(self, fields: Dict[str, Any]) -> Job:
        """Insert a record. Assigns id and timestamps, status defaults to pending."""
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Fetch one record, or None when absent."""
        ...

    @abstractmethod
    async def update(self, job_id: str, fields: Dict[str, Any]) -> Job:
        """Merge fields into a record and bump updated_at."""
        ...

    @abstractmethod
    async def list(
        self,
        limit: int = 50,
        statuses: Optional[Iterable[JobStatus]] = None,
        offset: int = 0,
    ) -> List[Job]:
        """Records ordered newest created_at first, skipping the first `offset`."""
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        """Remove a record. Deleting an absent id is not an error."""
        ...


def _check_required(fields: Dict[str, Any]) -> None:
    missing = [name for name in REQUIRED_FIELDS if fields.get(name) in (None, "")]
    if missing:
        raise RepositoryError(
            RepositoryErrorKind.CONSTRAINT_VIOLATION,
            f"Missing required field(s): {', '.join(missing)}",
        )


def _to_json(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


# Job field -> video_generations column, where they differ
COLUMN_MAP = {
    "remote_job_id": "openai_job_id",
    "artifact_url": "video_url",
    "remote_metadata": "metadata",
    "reference_image_url": "image_url",
    "reference_image_name": "image_filename",
}
FIELD_MAP = {column: field for field, column in COLUMN_MAP.items()}


def to_row(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {COLUMN_MAP.get(name, name): _to_json(value) for name, value in fields.items()}


def from_row(row: Dict[str, Any]) -> Job:
    data = {FIELD_MAP.get(column, column): value for column, value in row.items()}
    if data.get("remote_metadata") is None:
        data["remote_metadata"] = {}
    return Job.model_validate(data)


class SupabaseJobRepository(JobRepository):
    """Job records in the Supabase `video_generations` table.

    The supabase client is synchronous; calls run in the default executor so
    they never block the event loop.
    """

    def __init__(self, client: Client, table_name: str = "video_generations"):
        self._client = client
        self._table_name = table_name

    def _table(self):
        return self._client.table(self._table_name)

    async def _run(self, fn, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    @staticmethod
    def _wrap(exc: APIError, action: str) -> RepositoryError:
        if exc.code not in (_NOT_NULL_VIOLATION, _CHECK_VIOLATION):
            logger.error("Supabase error during %s: %s (%s)", action, exc.message, exc.code)
        return RepositoryError(
            RepositoryErrorKind.CONSTRAINT_VIOLATION, f"Failed to {action}: {exc.message}"
        )

    def _create(self, fields: Dict[str, Any]) -> Job:
        _check_required(fields)
        row = to_row(fields)
        row.setdefault("status", JobStatus.PENDING.value)
        try:
            response = self._table().insert(row).execute()
        except APIError as exc:
            raise self._wrap(exc, "create video generation") from exc
        return from_row(response.data[0])

    def _get(self, job_id: str) -> Optional[Job]:
        try:
            response = self._table().select("*").eq("id", job_id).limit(1).execute()
        except APIError as exc:
            if exc.code == _INVALID_TEXT_REPRESENTATION:
                return None
            raise self._wrap(exc, "fetch video generation") from exc
        if not response.data:
            return None
        return from_row(response.data[0])

    def _update(self, job_id: str, fields: Dict[str, Any]) -> Job:
        row = to_row(fields)
        row["updated_at"] = utcnow().isoformat()
        try:
            response = self._table().update(row).eq("id", job_id).execute()
        except APIError as exc:
            if exc.code == _INVALID_TEXT_REPRESENTATION:
                response = None
            else:
                raise self._wrap(exc, "update video generation") from exc
        if response is None or not response.data:
            raise RepositoryError(
                RepositoryErrorKind.NOT_FOUND, f"Video generation {job_id} not found"
            )
        return from_row(response.data[0])

    def _list(self, limit: int, statuses: Optional[List[str]], offset: int) -> List[Job]:
        query = self._table().select("*")
        if statuses:
            query = query.in_("status", statuses)
        try:
            response = (
                query.order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        except APIError as exc:
            raise self._wrap(exc, "list video generations") from exc
        return [from_row(row) for row in response.data or []]

    def _delete(self, job_id: str) -> None:
        try:
            self._table().delete().eq("id", job_id).execute()
        except APIError as exc:
            if exc.code == _INVALID_TEXT_REPRESENTATION:
                return
            raise self._wrap(exc, "delete video generation") from exc

    async def create(self, fields: Dict[str, Any]) -> Job:
        return await self._run(self._create, fields)

    async def get(self, job_id: str) -> Optional[Job]:
        return await self._run(self._get, job_id)

    async def update(self, job_id: str, fields: Dict[str, Any]) -> Job:
        return await self._run(self._update, job_id, fields)

    async def list(
        self,
        limit: int = 50,
        statuses: Optional[Iterable[JobStatus]] = None,
        offset: int = 0,
    ) -> List[Job]:
        status_values = [JobStatus(s).value for s in statuses] if statuses else None
        return await self._run(self._list, limit, status_values, offset)

    async def delete(self, job_id: str) -> None:
        await self._run(self._delete, job_id)


class InMemoryJobRepository(JobRepository):
    """Process-local repository for development and tests.

    A single lock makes each read-modify-write atomic per record.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, fields: Dict[str, Any]) -> Job:
        _check_required(fields)
        now = utcnow()
        data = {"status": JobStatus.PENDING, **fields}
        data.update(id=str(uuid.uuid4()), created_at=now, updated_at=now)
        try:
            job = Job.model_validate(data)
        except ModelValidationError as exc:
            raise RepositoryError(RepositoryErrorKind.CONSTRAINT_VIOLATION, str(exc)) from exc
        async with self._lock:
            self._jobs[job.id] = job
        return job.model_copy(deep=True)

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update(self, job_id: str, fields: Dict[str, Any]) -> Job:
        async with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise RepositoryError(
                    RepositoryErrorKind.NOT_FOUND, f"Video generation {job_id} not found"
                )
            data = current.model_dump()
            data.update(fields)
            data["updated_at"] = utcnow()
            try:
                job = Job.model_validate(data)
            except ModelValidationError as exc:
                raise RepositoryError(
                    RepositoryErrorKind.CONSTRAINT_VIOLATION, str(exc)
                ) from exc
            self._jobs[job_id] = job
        return job.model_copy(deep=True)

    async def list(
        self,
        limit: int = 50,
        statuses: Optional[Iterable[JobStatus]] = None,
        offset: int = 0,
    ) -> List[Job]:
        # Newest insertions first so ties on created_at keep that order
        jobs = list(reversed(self._jobs.values()))
        if statuses:
            wanted = {JobStatus(s) for s in statuses}
            jobs = [j for j in jobs if j.status in wanted]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in jobs[offset:offset + limit]]

    async def delete(self, job_id: str) -> None:
        async with self._lock:
            self._jobs.pop(job_id, None)
