"""Error taxonomy shared by the client, stores and reconciliation engine."""

from enum import Enum
from typing import Optional


class VideoGenError(Exception):
    """Base class for all videogen errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(VideoGenError):
    """Malformed input, raised before any network or storage call."""


class RemoteRequestError(VideoGenError):
    """Non-success interaction with the remote generation API.

    status_code is None when no HTTP response was received (timeouts,
    connection failures) or the response body could not be parsed.
    """

    def __init__(self, status_code: Optional[int], message: str):
        super().__init__(message)
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"RemoteRequestError(status_code={self.status_code!r}, message={self.message!r})"


class StorageError(VideoGenError):
    """Upload failure against durable object storage."""


class RepositoryErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONSTRAINT_VIOLATION = "constraint_violation"


class RepositoryError(VideoGenError):
    def __init__(self, kind: RepositoryErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
