"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the v1 API router, and a lifespan that wires the processing pipeline onto
app.state, starts the event consumer (when the bus is enabled), and runs
the housekeeping scheduler.
"""

from __future__ import annotations

import asyncio
import socket
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.dealflow.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dealflow.api.v1.router import router as v1_router
from src.dealflow.config import Settings, get_settings
from src.dealflow.core.database import close_db, get_session, init_db
from src.dealflow.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.dealflow.core.redis import close_redis, get_redis_pool

CONSUMER_GROUP = "pipeline-workers"


def build_pipeline_services(state, settings: Settings, bus=None) -> None:
    """Construct repositories and pipeline stages and store them on ``state``."""
    from src.dealflow.crm.contacts import ContactMatcher
    from src.dealflow.crm.repository import CRMRepository
    from src.dealflow.crm.stale import StaleRelationshipScanner
    from src.dealflow.ingestion.backfill import FirefliesBackfill
    from src.dealflow.ingestion.dispatcher import JobDispatcher
    from src.dealflow.ingestion.gateway import IngestionGateway
    from src.dealflow.ingestion.webhooks import WebhookOwnerResolver
    from src.dealflow.integrations.drive import DriveClient
    from src.dealflow.integrations.fireflies import FirefliesClient
    from src.dealflow.integrations.repository import IntegrationRepository
    from src.dealflow.jobs.reaper import StaleJobReaper
    from src.dealflow.jobs.repository import JobRepository
    from src.dealflow.pipeline.classification import MeetingClassifier
    from src.dealflow.pipeline.companies import CompanyResolver
    from src.dealflow.pipeline.content import ContentGenerator
    from src.dealflow.pipeline.extraction import ContactRecorder, MeetingExtractor
    from src.dealflow.pipeline.fetcher import TranscriptFetcher
    from src.dealflow.pipeline.filer import DocumentFiler
    from src.dealflow.pipeline.idempotency import IdempotencyGuard
    from src.dealflow.pipeline.llm import GenerativeClient
    from src.dealflow.pipeline.materializer import Materializer
    from src.dealflow.pipeline.runner import TranscriptPipeline
    from src.dealflow.pipeline.worker import WorkerPool

    jobs = JobRepository(session_factory=get_session)
    crm = CRMRepository(session_factory=get_session)
    integrations = IntegrationRepository(session_factory=get_session)
    llm = GenerativeClient(
        fast_model=settings.LLM_MODEL_FAST,
        quality_model=settings.LLM_MODEL_QUALITY,
        timeout=settings.LLM_TIMEOUT,
    )

    fireflies = FirefliesClient(api_url=settings.FIREFLIES_API_URL)
    guard = IdempotencyGuard(jobs)

    pipeline = TranscriptPipeline(
        jobs=jobs,
        crm=crm,
        guard=guard,
        fetcher=TranscriptFetcher(integrations, fireflies),
        classifier=MeetingClassifier(llm),
        companies=CompanyResolver(llm, crm),
        content=ContentGenerator(llm),
        extractor=MeetingExtractor(llm),
        recorder=ContactRecorder(ContactMatcher(crm)),
        materializer=Materializer(llm, crm),
        filer=DocumentFiler(
            DriveClient(settings.GOOGLE_CLIENT_ID, settings.GOOGLE_CLIENT_SECRET),
            integrations,
            crm,
            folder_name=settings.DRIVE_FOLDER_NAME,
        ),
        content_mode=settings.CONTENT_MODE,
    )
    reaper = StaleJobReaper(jobs, timeout=timedelta(minutes=settings.STALE_JOB_TIMEOUT_MINUTES))
    dispatcher = JobDispatcher(
        base_url=settings.APP_BASE_URL,
        worker_secret=settings.WORKER_SECRET,
        bus=bus,
        stream=settings.EVENT_STREAM,
        connect_timeout=settings.DIRECT_TRIGGER_CONNECT_TIMEOUT,
    )
    gateway = IngestionGateway(jobs, dispatcher)

    state.job_repository = jobs
    state.crm_repository = crm
    state.integration_repository = integrations
    state.pipeline = pipeline
    state.reaper = reaper
    state.worker_pool = WorkerPool(
        jobs, pipeline, reaper, max_concurrent=settings.MAX_CONCURRENT_JOBS
    )
    state.stale_scanner = StaleRelationshipScanner(
        crm, threshold_days=settings.STALE_RELATIONSHIP_DAYS
    )
    state.dispatcher = dispatcher
    state.ingestion_gateway = gateway
    state.backfill = FirefliesBackfill(
        integrations,
        fireflies,
        guard,
        jobs,
        gateway,
        lookback=settings.BACKFILL_LOOKBACK,
    )
    state.owner_resolver = WebhookOwnerResolver(integrations)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, pipeline and background tasks; close on shutdown."""
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Event bus (optional; the dispatcher falls back to direct calls) ──
    bus = None
    app.state.event_bus = None
    if settings.EVENT_BUS_ENABLED:
        try:
            from src.dealflow.events.bus import EventBus

            redis_client = get_redis_pool()
            await redis_client.ping()
            bus = EventBus(redis_client)
            app.state.event_bus = bus
            log.info("event_bus_initialized", stream=settings.EVENT_STREAM)
        except Exception:
            log.warning("event_bus_init_failed_using_direct_dispatch", exc_info=True)
            bus = None

    # ── Pipeline services ────────────────────────────────────────────────
    try:
        build_pipeline_services(app.state, settings, bus=bus)
        log.info(
            "pipeline_initialized",
            content_mode=settings.CONTENT_MODE.value,
            max_concurrent=settings.MAX_CONCURRENT_JOBS,
        )
    except Exception:
        log.error("pipeline_init_failed", exc_info=True)
        for name in ("pipeline", "worker_pool", "dispatcher", "ingestion_gateway", "backfill"):
            setattr(app.state, name, None)

    # ── Event consumer ───────────────────────────────────────────────────
    app.state.event_consumer = None
    app.state.event_consumer_task = None
    pipeline = getattr(app.state, "pipeline", None)
    if bus is not None and pipeline is not None and settings.EVENT_CONSUMER_ENABLED:
        try:
            from src.dealflow.events.consumer import EventConsumer
            from src.dealflow.events.dlq import DeadLetterQueue
            from src.dealflow.events.schemas import EventType, PipelineEvent
            from src.dealflow.jobs.schemas import Trigger

            consumer = EventConsumer(
                bus=bus,
                stream=settings.EVENT_STREAM,
                group=CONSUMER_GROUP,
                consumer_name=f"{socket.gethostname()}-{id(app)}",
                dlq=DeadLetterQueue(bus),
            )

            async def handle_event(event: PipelineEvent) -> None:
                if event.event_type is not EventType.TRANSCRIPT_RECEIVED or not event.job_id:
                    return
                await pipeline.run(event.job_id, Trigger.EVENT)

            app.state.event_consumer = consumer
            app.state.event_consumer_task = asyncio.create_task(
                consumer.process_loop(handle_event), name="pipeline_event_consumer"
            )
            log.info("event_consumer_started", group=CONSUMER_GROUP)
        except Exception:
            log.warning("event_consumer_start_failed", exc_info=True)

    # ── Scheduler ────────────────────────────────────────────────────────
    app.state.pipeline_scheduler_tasks = []
    if getattr(app.state, "worker_pool", None) is not None:
        try:
            from src.dealflow.scheduler import setup_pipeline_scheduler, start_scheduler_background

            scheduler_tasks = await setup_pipeline_scheduler(
                reaper=app.state.reaper,
                worker_pool=app.state.worker_pool,
                stale_scanner=app.state.stale_scanner,
                batch_size=settings.MAX_CONCURRENT_JOBS,
                backfill=getattr(app.state, "backfill", None) if settings.BACKFILL_SCHEDULE_ENABLED else None,
            )
            await start_scheduler_background(
                scheduler_tasks,
                app.state,
                intervals={
                    "reap_stale_jobs": settings.REAPER_INTERVAL_SECONDS,
                    "drain_pending_jobs": settings.WORKER_INTERVAL_SECONDS,
                    "scan_stale_relationships": settings.STALE_SCAN_INTERVAL_SECONDS,
                    "backfill_fireflies": settings.BACKFILL_INTERVAL_SECONDS,
                },
            )
        except Exception:
            log.warning("pipeline_scheduler_start_failed", exc_info=True)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    for task in getattr(app.state, "pipeline_scheduler_tasks", []):
        task.cancel()

    consumer = getattr(app.state, "event_consumer", None)
    if consumer is not None:
        consumer.stop()
    consumer_task = getattr(app.state, "event_consumer_task", None)
    if consumer_task is not None:
        consumer_task.cancel()
        try:
            await consumer_task
        except (asyncio.CancelledError, Exception):
            pass

    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is not None:
        try:
            await dispatcher.drain()
        except Exception:
            log.warning("dispatcher_drain_failed", exc_info=True)

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Dealflow Pipeline API",
        version="0.1.0",
        description="Meeting transcript to investment memo processing service",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
