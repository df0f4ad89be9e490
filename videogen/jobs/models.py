"""Job record and request models for video generation."""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from videogen.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


NON_TERMINAL_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class VideoModel(str, Enum):
    SORA_2 = "sora-2"
    SORA_2_PRO = "sora-2-pro"


class Resolution(str, Enum):
    HD_LANDSCAPE = "1280x720"
    HD_PORTRAIT = "720x1280"
    FULL_HD_LANDSCAPE = "1792x1024"
    FULL_HD_PORTRAIT = "1024x1792"


class Duration(IntEnum):
    SHORT = 4
    MEDIUM = 8
    LONG = 12


# The base model only renders HD sizes; the pro tier adds the larger ones.
ALLOWED_RESOLUTIONS: Dict[VideoModel, FrozenSet[Resolution]] = {
    VideoModel.SORA_2: frozenset({Resolution.HD_LANDSCAPE, Resolution.HD_PORTRAIT}),
    VideoModel.SORA_2_PRO: frozenset(Resolution),
}


class GenerationRequest(BaseModel):
    """Parameters for a single video generation."""
    prompt: str
    model: VideoModel = VideoModel.SORA_2
    resolution: Resolution = Resolution.HD_LANDSCAPE
    duration: Duration = Duration.SHORT

    @classmethod
    def parse(
        cls,
        prompt: str,
        model: str,
        resolution: str,
        duration: Any,
    ) -> "GenerationRequest":
        """Build a request from loose caller input, raising ValidationError."""
        try:
            model_value = VideoModel(model)
        except ValueError:
            raise ValidationError(
                f"Unknown model '{model}'. Valid: {[m.value for m in VideoModel]}"
            )
        try:
            resolution_value = Resolution(resolution)
        except ValueError:
            raise ValidationError(
                f"Unknown resolution '{resolution}'. Valid: {[r.value for r in Resolution]}"
            )
        try:
            duration_value = Duration(int(duration))
        except (TypeError, ValueError):
            raise ValidationError(
                f"Unsupported duration '{duration}'. Valid: {[d.value for d in Duration]}"
            )
        request = cls(
            prompt=prompt,
            model=model_value,
            resolution=resolution_value,
            duration=duration_value,
        )
        request.validate_request()
        return request

    def validate_request(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValidationError("Prompt must not be empty")
        if self.resolution not in ALLOWED_RESOLUTIONS[self.model]:
            raise ValidationError(
                f"Resolution {self.resolution.value} is not available for "
                f"model {self.model.value}"
            )


class ReferenceImage(BaseModel):
    """A user-supplied starting frame, kept as raw bytes."""
    data: bytes
    filename: str
    content_type: str = "image/png"


class Job(BaseModel):
    """Tracks the lifecycle of a video generation job.

    The Supabase repository maps these fields onto the video_generations
    columns (see db.repository.COLUMN_MAP).
    """
    id: str
    prompt: str
    model: VideoModel
    resolution: Resolution
    duration: Duration
    status: JobStatus = JobStatus.PENDING
    remote_job_id: Optional[str] = None
    artifact_url: Optional[str] = None
    error_message: Optional[str] = None
    remote_metadata: Dict[str, Any] = Field(default_factory=dict)
    reference_image_url: Optional[str] = None
    reference_image_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RemoteJob(BaseModel):
    """Normalized response from a remote job creation call."""
    id: str
    status: str
    raw: Dict[str, Any] = Field(default_factory=dict)


class RemoteJobStatus(BaseModel):
    """Normalized response from a remote status fetch."""
    model_config = ConfigDict(frozen=True)

    status: str
    progress: Optional[float] = None
    result_url: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return self.error.get("message") or None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RemoteJobStatus":
        error = payload.get("error")
        if not isinstance(error, dict):
            error = {"message": str(error)} if error else None
        return cls(
            status=str(payload.get("status") or ""),
            progress=payload.get("progress"),
            result_url=payload.get("url") or payload.get("download_url"),
            error=error,
            raw=payload,
        )
