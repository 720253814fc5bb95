"""plotlayers API: FastAPI application for geospatial land-use enrichment.

Run:
    uvicorn plotlayers.api.main:app --reload
    # or
    plotlayers-api
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from plotlayers.api.routes import api_router, router
from plotlayers.config import settings
from plotlayers.observability.logging import correlation_scope, setup_logging
from plotlayers.observability.tracing import configure_tracking, tracking_healthy
from plotlayers.storage.db import get_session, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging/tracing and initialize the DB on startup."""
    setup_logging(json_format=settings.log_json, level=settings.log_level)
    configure_tracking(settings.mlflow_tracking_uri, settings.mlflow_experiment_name)

    parsed = urlparse(settings.database_url)
    redacted_host = f"{parsed.hostname}:{parsed.port}" if parsed.port else parsed.hostname
    logger.info("Connecting to database at %s/%s", redacted_host, parsed.path.lstrip("/"))
    try:
        await asyncio.wait_for(init_db(), timeout=15)
        logger.info("Database initialized successfully")
    except asyncio.TimeoutError:
        logger.error("Database initialization timed out after 15s, API will start in degraded mode")
    except Exception as e:
        logger.error("Database initialization failed: %s, API will start in degraded mode", e)
    logger.info("plotlayers API ready")
    yield
    logger.info("Shutting down")


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Set correlation ID from X-Request-ID header or generate a new one."""

    async def dispatch(self, request: Request, call_next):
        cid = request.headers.get("x-request-id", str(uuid.uuid4()))
        with correlation_scope(cid):
            response = await call_next(request)
        response.headers["x-request-id"] = cid
        return response


app = FastAPI(
    title="plotlayers",
    description="Land-use dossier for a point or parcel: administrative units, cadastre, "
    "zoning, land cover, elevation and nearby amenities from public geospatial services.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(api_router)


@app.get("/health")
async def health():
    """Health check: verifies DB connectivity and the MLflow tracking store."""
    checks = {}

    session = None
    try:
        session = await get_session()
        await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"
    finally:
        if session:
            await session.close()

    checks["mlflow"] = tracking_healthy()

    status = "healthy" if checks.get("database") == "ok" else "degraded"
    return {"status": status, "checks": checks}


def run():
    """Entry point for plotlayers-api console script."""
    uvicorn.run("plotlayers.api.main:app", host="0.0.0.0", port=8000, reload=True)
