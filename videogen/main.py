"""Video generation service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Tuple

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from videogen.config import Settings, settings
from videogen.api.v1.router import v1_router
from videogen.api.v1.health import router as health_root_router
from videogen.api.v1 import health as health_api
from videogen.api.v1 import jobs as jobs_api
from videogen.db.repository import (
    InMemoryJobRepository,
    JobRepository,
    SupabaseJobRepository,
)
from videogen.db.supabase_client import create_supabase
from videogen.errors import ValidationError
from videogen.jobs.engine import ReconciliationEngine
from videogen.jobs.models import Job, JobStatus
from videogen.jobs.poller import PollingCoordinator
from videogen.remote.client import VideoAPIClient
from videogen.storage.artifacts import (
    ArtifactStore,
    InMemoryArtifactStore,
    SupabaseArtifactStore,
)

logger = logging.getLogger(__name__)


def build_stores(config: Settings) -> Tuple[JobRepository, ArtifactStore]:
    """Create the repository and artifact store for the configured backend."""
    if config.store_backend == "memory":
        return InMemoryJobRepository(), InMemoryArtifactStore()
    if config.store_backend != "supabase":
        raise RuntimeError(f"Unknown store backend '{config.store_backend}'")

    client = create_supabase(config.supabase_url, config.supabase_service_role_key)
    repository = SupabaseJobRepository(client, table_name=config.table_name)
    store = SupabaseArtifactStore(
        client,
        video_bucket=config.video_bucket,
        image_bucket=config.image_bucket,
    )
    return repository, store


def build_engine(config: Settings) -> Tuple[ReconciliationEngine, JobRepository, VideoAPIClient]:
    repository, store = build_stores(config)
    client = VideoAPIClient(
        api_key=config.openai_api_key,
        base_url=config.openai_base_url,
        timeout=config.request_timeout_seconds,
        download_timeout=config.download_timeout_seconds,
    )
    engine = ReconciliationEngine(
        client,
        repository,
        store,
        image_upload_path=config.image_upload_path,
    )
    return engine, repository, client


def log_transition(before: Job, after: Job) -> None:
    if after.status == JobStatus.COMPLETED:
        logger.info("Video generation %s completed: %s", after.id, after.artifact_url)
    elif after.status == JobStatus.FAILED:
        logger.warning("Video generation %s failed: %s", after.id, after.error_message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting video generation service on port %s", settings.service_port)
    logger.info("Store backend: %s", settings.store_backend)

    poller = None
    try:
        engine, repository, client = build_engine(settings)
    except ValidationError as exc:
        # Health stays up; job and remote routes answer 503 until configured
        logger.error("Video API client not configured: %s", exc.message)
    else:
        poller = PollingCoordinator(
            engine,
            repository,
            interval_seconds=settings.poll_interval_seconds,
            batch_limit=settings.poll_batch_limit,
            on_transition=log_transition,
        )
        await poller.start()
        logger.info("Polling every %.0fs", settings.poll_interval_seconds)

        # Wire collaborators into API endpoints
        jobs_api.set_engine(engine)
        health_api.set_client(client)
        health_api.set_poller(poller)

    yield

    logger.info("Shutting down video generation service")
    if poller is not None:
        await poller.stop()


app = FastAPI(
    title="Video Generation Service",
    description="Submits video generation jobs and keeps finished videos in durable storage",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
