"""FastAPI application entry point."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.metrics import get_content_type, get_metrics, set_app_info
from app.core.middleware import (
    MetricsMiddleware,
    CorrelationIdMiddleware,
    TracingMiddleware,
    RequestLoggingMiddleware,
)
from app.core.tracing import setup_tracing, shutdown_tracing
from app.modules.transcoding.router import router as media_router

ENVIRONMENT = "development" if settings.DEBUG else "production"

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Episode HLS Pipeline API

Ingests episode source videos and publishes them as adaptive-bitrate HLS.

### Features

* **Processing** - Queue encoding of an uploaded source into an HLS ladder
* **Status** - Per-episode processing state and per-job progress
* **Uploads** - Presigned URLs for direct uploads of posters, trailers and videos
* **Cleanup** - Removal of an episode's original, thumbnail and HLS files

`POST /api/v1/media/process-video` requires the `X-Worker-Secret` header.
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "media",
            "description": "Episode video processing, status, presigned uploads and cleanup",
        },
    ],
)

# Set up logging with correlation IDs
setup_logging(
    level=settings.LOG_LEVEL if not settings.DEBUG else "DEBUG",
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=ENVIRONMENT,
    enable_console_export=settings.DEBUG,
)

set_app_info(version=settings.VERSION, environment=ENVIRONMENT)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.on_event("shutdown")
async def flush_traces() -> None:
    shutdown_tracing()


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" or "unhealthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(media_router, prefix=settings.API_V1_PREFIX)
