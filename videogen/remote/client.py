"""Async HTTP client for the remote video generation API (OpenAI /videos).

Stateless between calls: every method opens its own httpx.AsyncClient and
translates wire responses into the normalized models in videogen.jobs.models.
All non-success outcomes surface as RemoteRequestError, except
probe_connectivity(), which reports failures in its return value.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from videogen.errors import RemoteRequestError, ValidationError
from videogen.jobs.models import (
    GenerationRequest,
    ReferenceImage,
    RemoteJob,
    RemoteJobStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"

# Non-JSON error bodies are quoted into the message, truncated to this length
_ERROR_SNIPPET_CHARS = 500


@dataclass
class ConnectivityResult:
    ok: bool
    message: str


def check_api_key(api_key: str) -> str:
    """Reject credentials that could never authenticate, before any I/O."""
    if not api_key or not api_key.strip():
        raise ValidationError("API key must not be empty")
    if any(ch.isspace() for ch in api_key) or not api_key.isascii():
        raise ValidationError("API key is malformed")
    return api_key


def _error_message(response: httpx.Response) -> str:
    fallback = f"request failed with status {response.status_code}"
    text = response.text
    if not text:
        return fallback
    try:
        body = response.json()
    except ValueError:
        return f"{fallback}: {text[:_ERROR_SNIPPET_CHARS]}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str) and error:
            return error
    return fallback


class VideoAPIClient:
    """Bearer-authenticated client for the remote generation API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        download_timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = check_api_key(api_key)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._download_timeout = download_timeout
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=timeout or self._timeout,
            transport=self._transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteRequestError(None, f"{type(exc).__name__}: {exc}") from exc

        if response.is_success:
            return response
        raise RemoteRequestError(response.status_code, _error_message(response))

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteRequestError(None, "malformed response body") from exc
        if not isinstance(body, dict):
            raise RemoteRequestError(None, "malformed response body")
        return body

    async def submit(
        self,
        request: GenerationRequest,
        reference_image: Optional[ReferenceImage] = None,
        reference_url: Optional[str] = None,
    ) -> RemoteJob:
        """Create a remote generation job.

        Raw image bytes go out as a multipart `input_reference` file; a bare
        URL goes out as the JSON `image` field.
        """
        request.validate_request()
        fields = {
            "model": request.model.value,
            "prompt": request.prompt,
            "size": request.resolution.value,
            "seconds": str(request.duration.value),
        }

        if reference_image is not None:
            logger.debug(
                "createVideo payload (multipart): model=%s size=%s seconds=%s image=%s",
                fields["model"], fields["size"], fields["seconds"], reference_image.filename,
            )
            files = {
                "input_reference": (
                    reference_image.filename,
                    reference_image.data,
                    reference_image.content_type,
                ),
            }
            response = await self._send("POST", "/videos", data=fields, files=files)
        else:
            body: Dict[str, Any] = dict(fields)
            if reference_url:
                body["image"] = reference_url
            logger.debug(
                "createVideo payload (json): model=%s size=%s seconds=%s has_image=%s",
                fields["model"], fields["size"], fields["seconds"], bool(reference_url),
            )
            response = await self._send("POST", "/videos", json=body)

        payload = self._json(response)
        if not payload.get("id"):
            raise RemoteRequestError(None, "creation response carried no job id")
        return RemoteJob(
            id=str(payload["id"]),
            status=str(payload.get("status") or ""),
            raw=payload,
        )

    async def fetch_status(self, remote_job_id: str) -> RemoteJobStatus:
        response = await self._send("GET", f"/videos/{remote_job_id}")
        return RemoteJobStatus.from_payload(self._json(response))

    async def download_artifact(self, remote_job_id: str) -> bytes:
        response = await self._send(
            "GET",
            f"/videos/{remote_job_id}/content",
            timeout=self._download_timeout,
        )
        return response.content

    async def list_jobs(self, limit: int = 20) -> List[RemoteJobStatus]:
        response = await self._send("GET", "/videos", params={"limit": limit})
        items = self._json(response).get("data") or []
        return [RemoteJobStatus.from_payload(item) for item in items if isinstance(item, dict)]

    async def probe_connectivity(self) -> ConnectivityResult:
        """Cheap credential/reachability check. Never raises."""
        try:
            await self._send("GET", "/models")
        except RemoteRequestError as exc:
            if exc.status_code is None:
                return ConnectivityResult(ok=False, message=exc.message)
            return ConnectivityResult(
                ok=False,
                message=f"Connection failed ({exc.status_code}): {exc.message}",
            )
        except Exception as exc:
            return ConnectivityResult(ok=False, message=str(exc) or type(exc).__name__)
        return ConnectivityResult(ok=True, message="API connection successful")
