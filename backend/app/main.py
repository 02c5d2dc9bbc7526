"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import Settings, settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import run_health_check

# ── Dispatch ──
from backend.app.alerts.access_service import EmergencyAccessService
from backend.app.alerts.broadcaster import Broadcaster, build_broadcaster
from backend.app.alerts.channels.factory import ChannelProviders, build_channel_providers
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.panic_service import PanicAlertService
from backend.app.alerts.repository import (
    InMemoryAlertStore,
    InMemoryNotificationStore,
    InMemoryUserStore,
)
from backend.app.spatial.hospital_matcher import HospitalMatcher, InMemoryFacilityDirectory
from backend.app.spatial.seed_facilities import SEED_FACILITIES

# ── API routers ──
from backend.app.api.v1.panic import router as panic_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Dependency wiring ──

@dataclass
class DispatchServices:
    panic_service: PanicAlertService
    access_service: EmergencyAccessService
    dispatcher: NotificationDispatcher
    broadcaster: Broadcaster
    providers: ChannelProviders
    users: Any

    async def close(self) -> None:
        await self.providers.close()
        close = getattr(self.broadcaster, "close", None)
        if close is not None:
            await close()


def build_services(cfg: Settings) -> DispatchServices:
    """Build every dispatch collaborator once, from Settings."""
    if cfg.PERSISTENCE_BACKEND == "database":
        from backend.app.alerts.sql_repository import (
            SqlAlertStore,
            SqlFacilityDirectory,
            SqlNotificationStore,
            SqlUserStore,
        )
        from backend.app.core.database import get_session_factory

        session_factory = get_session_factory()
        users = SqlUserStore(session_factory)
        alerts = SqlAlertStore(session_factory)
        notifications = SqlNotificationStore(session_factory)
        directory = SqlFacilityDirectory(session_factory)
    elif cfg.PERSISTENCE_BACKEND == "memory":
        users = InMemoryUserStore()
        alerts = InMemoryAlertStore()
        notifications = InMemoryNotificationStore()
        directory = InMemoryFacilityDirectory(list(SEED_FACILITIES))
    else:
        raise ValueError(
            f"Unknown persistence backend '{cfg.PERSISTENCE_BACKEND}'. Choose memory or database"
        )

    providers = build_channel_providers(cfg)
    dispatcher = NotificationDispatcher(
        providers.sms,
        providers.whatsapp,
        providers.email,
        notifications,
        channel_timeout_seconds=cfg.channel_timeout_seconds,
        max_concurrency=cfg.DISPATCH_MAX_CONCURRENCY,
    )
    matcher = HospitalMatcher(
        directory,
        radius_km=cfg.HOSPITAL_SEARCH_RADIUS_KM,
        limit=cfg.HOSPITAL_SEARCH_LIMIT,
        extended_radius_km=cfg.HOSPITAL_EXTENDED_RADIUS_KM,
        extended_limit=cfg.HOSPITAL_EXTENDED_LIMIT,
    )
    broadcaster = build_broadcaster(cfg.BROADCASTER_BACKEND, cfg.REDIS_URL)

    panic_service = PanicAlertService(
        users, alerts, matcher, dispatcher, broadcaster,
        default_locale=cfg.DEFAULT_LOCALE,
    )
    access_service = EmergencyAccessService(
        users, matcher, dispatcher, broadcaster,
        default_locale=cfg.DEFAULT_LOCALE,
    )

    if dispatcher.is_in_simulation_mode():
        logger.warning("No SMS or WhatsApp provider configured: notifications are simulated")

    return DispatchServices(
        panic_service=panic_service,
        access_service=access_service,
        dispatcher=dispatcher,
        broadcaster=broadcaster,
        providers=providers,
        users=users,
    )


def build_panic_service(cfg: Settings) -> PanicAlertService:
    return build_services(cfg).panic_service


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if settings.PERSISTENCE_BACKEND == "database":
        from backend.app.core.database import init_db
        await init_db()
    yield
    services: Optional[DispatchServices] = getattr(app.state, "services", None)
    if services is not None:
        await services.close()
    if settings.PERSISTENCE_BACKEND == "database":
        from backend.app.core.database import close_db
        await close_db()
    logger.info("Shutting down %s", settings.APP_NAME)


def attach_services(app: FastAPI, services: DispatchServices) -> None:
    app.state.services = services
    app.state.panic_service = services.panic_service
    app.state.access_service = services.access_service


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Emergency dispatch for panic and QR emergency-access events. "
        "Finds medically relevant hospitals near the patient, notifies "
        "trusted representatives over SMS, WhatsApp and email with "
        "per-channel provider fallback, and publishes real-time events."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

attach_services(app, build_services(settings))

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(panic_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "hospital-matching",
            "notification-dispatch",
            "panic-alerts",
            "emergency-access",
            "real-time-broadcast",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Deep health probe: provider availability, simulation mode, backends."""
    services: DispatchServices = request.app.state.services
    report = await run_health_check(services.dispatcher, services.broadcaster, settings)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe: is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(request: Request):
    """Kubernetes readiness probe: can we serve traffic?"""
    services: DispatchServices = request.app.state.services
    report = await run_health_check(services.dispatcher, services.broadcaster, settings)
    if report.status.value == "unhealthy":
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
