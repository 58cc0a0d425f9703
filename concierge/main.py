from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from concierge import __version__
from concierge.api.deps import auth_gate
from concierge.api.errors import register_exception_handlers
from concierge.api.v1.admin import router as admin_router
from concierge.api.v1.auth import router as auth_router
from concierge.api.v1.channels import router as channels_router
from concierge.api.v1.conversations import router as conversations_router
from concierge.api.v1.features import router as features_router
from concierge.api.v1.guests import router as guests_router
from concierge.api.v1.health import router as health_router
from concierge.api.v1.knowledge import router as knowledge_router
from concierge.api.v1.subscription import router as subscription_router
from concierge.api.v1.widget import router as widget_router
from concierge.config import get_settings
from concierge.db import dispose_engine


settings = get_settings()

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup completed")
    try:
        yield
    finally:
        await dispose_engine()
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Lani Concierge",
    description="Multi-tenant AI concierge for hotels, tour operators and vacation rentals",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Registered before CORS so that CORS wraps it and preflights are answered first.
app.middleware("http")(auth_gate)

origins = (
    [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.allowed_origins != "*"
    else ["*"]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health_router)
app.include_router(auth_router)
app.include_router(conversations_router)
app.include_router(widget_router)
app.include_router(channels_router)
app.include_router(knowledge_router)
app.include_router(subscription_router)
app.include_router(features_router)
app.include_router(guests_router)
app.include_router(admin_router)
