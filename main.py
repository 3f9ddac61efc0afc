"""FastAPI application entry point.

Wires together: middleware, exception handlers, routes, metrics, and the
sync scheduler. Validates config at startup.
"""

from contextlib import asynccontextmanager
from functools import partial

import httpx
import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from eight_sleep.api import router as eight_sleep_router
from eight_sleep.api import service_scope
from eight_sleep.scheduler import build_scheduler
from shared.config import settings
from shared.exceptions import ProblemDetailError
from shared.logging import configure_logging
from shared.metrics import create_metrics_app
from shared.middleware import (
    RequestIdMiddleware,
    http_exception_handler,
    problem_detail_handler,
    request_validation_handler,
    unhandled_exception_handler,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    configure_logging(json_output=settings.log_json)
    logger.info(
        "app_starting",
        scheduler_enabled=settings.scheduler_enabled,
        database_url=settings.database_url.split("@")[-1],  # hide credentials
    )

    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(partial(service_scope, app.state.http_client))
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await app.state.http_client.aclose()
    logger.info("app_shutting_down")


app = FastAPI(
    title="Singularity Health Eight Sleep API",
    description=(
        "Connects Eight Sleep accounts, syncs nightly sleep data into per-night "
        "metrics, and correlates sleep with supplement protocols."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestIdMiddleware)

# All errors emit application/problem+json (RFC 9457) with an `error` member
app.add_exception_handler(ProblemDetailError, problem_detail_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(eight_sleep_router)

metrics_app = create_metrics_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    return {"status": "ok"}
