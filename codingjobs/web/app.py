"""FastAPI application for coding job distribution and background jobs."""

from __future__ import annotations

from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.base import BaseHTTPMiddleware

from codingjobs import __version__
from codingjobs.core.logging import configure_logging
from codingjobs.models import ValidationError
from codingjobs.web.routes import definitions, distribution, jobs, statistics

# Initialize structured logging
configure_logging()
logger = structlog.get_logger()

app = FastAPI(
    title="Coding Jobs API",
    description="Distribute responses to coders, run background coding jobs, compute agreement",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            logger.info("request_completed", status_code=response.status_code)
            return response
        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise


app.add_middleware(RequestLoggingMiddleware)

# Prometheus Metrics
Instrumentator().instrument(app).expose(app)


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


app.include_router(distribution.router)
app.include_router(jobs.router)
app.include_router(statistics.router)
app.include_router(definitions.router)
