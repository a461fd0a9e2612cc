# backend/qachat/main.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, List

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from .core.broadcast import connect_broadcast, disconnect_broadcast
from .core.config import is_running_tests, settings
from .core.constants import API_VERSION, BRAND_NAME
from .database import SessionLocal
from .errors import register_error_handlers
from .routes.v1 import (
    channels as channels_v1,
    contacts as contacts_v1,
    conversations as conversations_v1,
    health as health_v1,
    messages as messages_v1,
    moderation as moderation_v1,
    presence as presence_v1,
    prometheus as prometheus_v1,
    realtime as realtime_v1,
)
from .services.messaging.hub import RealtimeHub
from .tasks.background import start_background_tasks, stop_background_tasks

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(f"Environment: {settings.environment}")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    if getattr(app.state, "session_factory", None) is None:
        app.state.session_factory = SessionLocal

    hub = RealtimeHub()
    hub.bind_loop(asyncio.get_running_loop())
    app.state.hub = hub

    # Initialize Broadcaster for realtime fan-out
    try:
        await connect_broadcast()
    except Exception as e:
        logger.error(f"[BROADCAST] Failed to initialize broadcaster: {e}")
        # Don't fail startup - sockets report service_unavailable until it is back

    background: List["asyncio.Task[None]"] = []
    if settings.background_tasks_enabled:
        background = start_background_tasks(hub, app.state.session_factory)

    yield

    logger.info(f"{BRAND_NAME} API shutting down...")
    await stop_background_tasks(background)
    await hub.close()

    try:
        await disconnect_broadcast()
    except Exception as e:
        logger.error(f"[BROADCAST] Error disconnecting broadcaster: {e}")


def _unique_operation_id(route: APIRoute) -> str:
    methods = "_".join(sorted(m.lower() for m in route.methods or []))
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "").strip("_")
    name = (route.name or "operation").lower().replace(" ", "_")
    return f"{methods}__{path}__{name}".strip("_")


app = FastAPI(
    title=f"{BRAND_NAME} Realtime API",
    description="Presence, messaging and moderation signals for the QA workspace",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
    generate_unique_id_function=_unique_operation_id,
)
# Register unified error envelope handlers
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")

api_v1.include_router(conversations_v1.router, prefix="/conversations")
api_v1.include_router(messages_v1.router, prefix="/messages")
api_v1.include_router(contacts_v1.router, prefix="/contacts")
api_v1.include_router(channels_v1.router, prefix="/channels")
api_v1.include_router(presence_v1.router, prefix="/presence")
api_v1.include_router(moderation_v1.router, prefix="/admin/moderation")
api_v1.include_router(realtime_v1.router, prefix="/realtime")

app.include_router(api_v1)

# Probes and scraping live outside the versioned API
app.include_router(health_v1.router, prefix="/health")
app.include_router(prometheus_v1.router, prefix="/metrics")
