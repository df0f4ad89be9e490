"""Health check endpoints."""

import platform
import sys

from fastapi import APIRouter, HTTPException

from videogen.config import settings

router = APIRouter()

# Set by main.py during lifespan
_client = None
_poller = None


def set_client(client):
    global _client
    _client = client


def set_poller(poller):
    global _poller
    _poller = poller


@router.get("/health")
async def health_check():
    """Service health and configuration summary."""
    return {
        "status": "healthy",
        "store_backend": settings.store_backend,
        "poller_running": bool(_poller and _poller.running),
        "poll_interval_seconds": settings.poll_interval_seconds,
        "python_version": sys.version,
        "platform": platform.platform(),
    }


@router.get("/remote/health")
async def remote_health():
    """Check reachability and credentials of the remote video API."""
    if _client is None:
        raise HTTPException(status_code=503, detail="Remote client not initialized")
    result = await _client.probe_connectivity()
    return {"ok": result.ok, "message": result.message}
