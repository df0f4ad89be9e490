"""Map the remote API's open-ended status vocabulary onto local verdicts."""

from enum import Enum
from typing import Dict

from videogen.jobs.models import JobStatus, RemoteJobStatus


class RemoteVerdict(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PROCESSING = "processing"
    UNRECOGNIZED = "unrecognized"


_VERDICTS: Dict[str, RemoteVerdict] = {
    "completed": RemoteVerdict.COMPLETED,
    "failed": RemoteVerdict.FAILED,
    "queued": RemoteVerdict.PROCESSING,
    "in_progress": RemoteVerdict.PROCESSING,
    "processing": RemoteVerdict.PROCESSING,
}

# Local status each verdict moves a job to. UNRECOGNIZED leaves it alone.
VERDICT_STATUS: Dict[RemoteVerdict, JobStatus] = {
    RemoteVerdict.COMPLETED: JobStatus.COMPLETED,
    RemoteVerdict.FAILED: JobStatus.FAILED,
    RemoteVerdict.PROCESSING: JobStatus.PROCESSING,
}


def classify(remote: RemoteJobStatus) -> RemoteVerdict:
    """Classify a remote status payload.

    A completed status wins over everything else. Otherwise an error object
    means failure regardless of the status string, and strings outside the
    known vocabulary are UNRECOGNIZED rather than failed.
    """
    verdict = _VERDICTS.get(remote.status.strip().lower(), RemoteVerdict.UNRECOGNIZED)
    if verdict is RemoteVerdict.COMPLETED:
        return verdict
    if remote.error is not None:
        return RemoteVerdict.FAILED
    return verdict
