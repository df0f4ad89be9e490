"""Shared fixtures: a scripted fake of the remote video API and in-memory stores.

The fake API is served through httpx.MockTransport, so the real VideoAPIClient
is exercised end to end without network traffic.
"""

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from videogen.db.repository import InMemoryJobRepository
from videogen.jobs.engine import ReconciliationEngine
from videogen.jobs.models import GenerationRequest
from videogen.remote.client import VideoAPIClient
from videogen.storage.artifacts import InMemoryArtifactStore

BASE_URL = "https://api.test/v1"
API_KEY = "sk-test-123"
VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42fake-video"


class FakeVideoAPI:
    """Scriptable stand-in for the remote /videos endpoints."""

    def __init__(self):
        self.statuses: Dict[str, Dict[str, Any]] = {}
        self.content: Dict[str, bytes] = {}
        self.requests: List[httpx.Request] = []
        self.create_error: Optional[httpx.Response] = None
        self.status_error: Optional[httpx.Response] = None
        self.status_exception: Optional[Exception] = None
        self.content_error: Optional[httpx.Response] = None
        self.models_status = 200
        self.downloads = 0
        self._counter = 0

    def set_status(self, remote_id: str, status: str, **extra: Any) -> None:
        self.statuses[remote_id] = {"id": remote_id, "object": "video", "status": status, **extra}

    def calls(self, method: str, path_suffix: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.endswith(path_suffix)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1")
        parts = [p for p in path.split("/") if p]

        if parts == ["models"]:
            if self.models_status != 200:
                return httpx.Response(
                    self.models_status,
                    json={"error": {"message": "Incorrect API key provided"}},
                )
            return httpx.Response(200, json={"data": []})

        if parts == ["videos"] and request.method == "POST":
            if self.create_error is not None:
                return self.create_error
            self._counter += 1
            remote_id = f"video_{self._counter}"
            self.set_status(remote_id, "queued", progress=0)
            self.content[remote_id] = VIDEO_BYTES
            return httpx.Response(200, json=self.statuses[remote_id])

        if parts == ["videos"] and request.method == "GET":
            limit = int(request.url.params.get("limit", "20"))
            return httpx.Response(200, json={"data": list(self.statuses.values())[:limit]})

        if len(parts) == 2 and parts[0] == "videos":
            if self.status_exception is not None:
                raise self.status_exception
            if self.status_error is not None:
                return self.status_error
            payload = self.statuses.get(parts[1])
            if payload is None:
                return httpx.Response(404, json={"error": {"message": "Video not found"}})
            return httpx.Response(200, json=payload)

        if len(parts) == 3 and parts[0] == "videos" and parts[2] == "content":
            if self.content_error is not None:
                return self.content_error
            self.downloads += 1
            return httpx.Response(
                200,
                content=self.content.get(parts[1], b""),
                headers={"content-type": "video/mp4"},
            )

        return httpx.Response(404, text=json.dumps({"error": {"message": "no route"}}))


@pytest.fixture
def fake_api():
    return FakeVideoAPI()


@pytest.fixture
def api_client(fake_api):
    return VideoAPIClient(
        api_key=API_KEY,
        base_url=BASE_URL,
        transport=httpx.MockTransport(fake_api.handler),
    )


@pytest.fixture
def repository():
    return InMemoryJobRepository()


@pytest.fixture
def store():
    return InMemoryArtifactStore()


@pytest.fixture
def engine(api_client, repository, store):
    return ReconciliationEngine(api_client, repository, store)


@pytest.fixture
def base_request():
    return GenerationRequest.parse("A", "sora-2", "1280x720", 4)
