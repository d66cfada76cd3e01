from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lms.api.courses import router as courses_router
from lms.api.health import router as health_router
from lms.api.metrics_endpoint import router as metrics_router
from lms.api.progress import router as progress_router
from lms.core.config import SETTINGS
from lms.core.logging import setup_logging
from lms.db.engine import lifespan_db
from lms.db.redis import lifespan_redis
from lms.middleware.metrics import MetricsMiddleware
from lms.middleware.request_context import RequestContextMiddleware
from lms.repos.progress_store import InMemoryProgressDatabase
from lms.services.progress_service import progress_db
from lms.services.sample_catalog import seed_sample_catalog

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nesting tears down in reverse order (LIFO) even if one fails.
    async with lifespan_db():
        async with lifespan_redis():
            if SETTINGS.is_dev and isinstance(progress_db, InMemoryProgressDatabase):
                await seed_sample_catalog(progress_db)
            yield


app = FastAPI(
    title="lms-progress-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost), then Metrics, then CORS, then the route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(courses_router)
app.include_router(progress_router)

logger.info(
    "lms-progress-service started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
