"""Job management API: create jobs, poll status, list and delete records."""

from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Response, UploadFile

from videogen.config import settings
from videogen.errors import (
    RemoteRequestError,
    RepositoryError,
    RepositoryErrorKind,
    StorageError,
    ValidationError,
)
from videogen.jobs.models import (
    ALLOWED_RESOLUTIONS,
    Duration,
    GenerationRequest,
    Job,
    ReferenceImage,
    VideoModel,
)
from videogen.media.images import check_reference_image, fit_to_resolution

router = APIRouter()

# Set by main.py during lifespan
_engine = None


def set_engine(engine):
    global _engine
    _engine = engine


def _require_engine():
    if _engine is None:
        raise HTTPException(status_code=503, detail="Reconciliation engine not initialized")
    return _engine


@router.post("/jobs", response_model=Job, status_code=201)
async def create_job(
    prompt: str = Form(...),
    model: str = Form(VideoModel.SORA_2.value),
    resolution: str = Form("1280x720"),
    duration: str = Form("4"),
    fit_image: bool = Form(True),
    image: Optional[UploadFile] = File(None),
):
    """Create a generation job, optionally with a starting frame image."""
    engine = _require_engine()

    try:
        request = GenerationRequest.parse(prompt, model, resolution, duration)
        reference = None
        if image is not None and image.filename:
            reference = ReferenceImage(
                data=await image.read(),
                filename=image.filename,
                content_type=image.content_type or "application/octet-stream",
            )
            check_reference_image(reference, settings.max_image_bytes)
            if fit_image:
                reference = fit_to_resolution(reference, request.resolution.value)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)

    try:
        return await engine.create_job(request, reference_image=reference)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except (RemoteRequestError, StorageError) as exc:
        raise HTTPException(status_code=502, detail=exc.message)
    except RepositoryError as exc:
        raise HTTPException(status_code=500, detail=exc.message)


@router.get("/jobs", response_model=List[Job])
async def list_jobs(limit: int = 50):
    """Most recent jobs first."""
    engine = _require_engine()
    return await engine.list_jobs(limit=max(1, min(limit, 200)))


@router.get("/jobs/{job_id}", response_model=Job)
async def get_job(job_id: str):
    engine = _require_engine()
    job = await engine.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs/{job_id}/reconcile", response_model=Job)
async def reconcile_job(job_id: str):
    """Refresh a job from the remote API (manual refresh)."""
    engine = _require_engine()
    try:
        return await engine.reconcile_job(job_id)
    except RepositoryError as exc:
        if exc.kind == RepositoryErrorKind.NOT_FOUND:
            raise HTTPException(status_code=404, detail="Job not found")
        raise HTTPException(status_code=500, detail=exc.message)


@router.delete("/jobs/{job_id}", status_code=204)
async def delete_job(job_id: str):
    """Delete the job record. Unknown ids are accepted."""
    engine = _require_engine()
    await engine.delete_job(job_id)
    return Response(status_code=204)


@router.get("/options")
async def generation_options():
    """Models with the resolutions each allows, and the allowed durations."""
    return {
        "models": [
            {
                "model": model.value,
                "resolutions": sorted(r.value for r in ALLOWED_RESOLUTIONS[model]),
            }
            for model in VideoModel
        ],
        "durations": [d.value for d in Duration],
    }
