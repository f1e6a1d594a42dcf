"""
FastAPI backend for the messaging-CRM automation flow engine.

Wires the dependency injection container, starts the database, cache, job
queue and flow worker, and exposes the flow and event APIs.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import configure_logging, get_logger
from routers import events, flows
from services.execution.errors import (
    ContactNotFound,
    ExecutionNotFound,
    FlowEngineError,
    FlowNotFound,
    FlowValidationError,
)

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

# Suppress noisy loggers
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("watchfiles").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    settings = container.settings()
    logger.info("Starting flow engine services")

    await container.database().startup()
    await container.cache().startup()

    # Queue backend follows the cache backend, so resolve it only now
    job_queue = container.job_queue()
    await job_queue.start()

    await container.trigger_registry().initialize()

    # The memory queue does not survive restarts; re-schedule running executions
    if job_queue.backend == "memory":
        recovered = await container.recovery_sweeper().scan_on_startup()
        if recovered:
            logger.info("Recovered incomplete executions on startup", count=len(recovered))

    worker = container.worker()
    if settings.flow_worker_enabled:
        await worker.start()

    logger.info("Services started successfully",
               queue_backend=job_queue.backend,
               cache_backend=container.cache().backend)
    yield

    # Shutdown
    await worker.stop()
    await job_queue.close()
    await container.cache().shutdown()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Flow Engine",
    version="1.0.0",
    description="Automation flow engine for a messaging CRM",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception",
                        path=request.url.path,
                        error=f"{type(e).__name__}: {str(e)}",
                        exc_info=True)
            return ORJSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


@app.exception_handler(FlowEngineError)
async def flow_engine_error_handler(request: Request, exc: FlowEngineError):
    """Map engine errors to HTTP status codes."""
    if isinstance(exc, (FlowNotFound, ExecutionNotFound, ContactNotFound)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, FlowValidationError):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    content = {"success": False, "error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, FlowValidationError):
        content["errors"] = exc.errors
    return ORJSONResponse(status_code=status_code, content=content)


# Add exception handler middleware BEFORE CORS to catch all errors
app.add_middleware(CatchAllExceptionsMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(flows.router)
app.include_router(events.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    worker = container.worker()
    registry = container.trigger_registry()
    return {
        "status": "OK",
        "service": "flow-engine",
        "version": "1.0.0",
        "environment": "development" if settings.debug else "production",
        "redis_enabled": settings.redis_enabled,
        "cache_backend": container.cache().backend,
        "execution_engine": {
            "queue_backend": container.job_queue().backend,
            "worker_running": worker.is_running,
            "registry_initialized": registry.initialized,
            "registered_triggers": registry.count(),
            "dlq_enabled": settings.dlq_enabled,
        },
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting flow engine",
               host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None,
        workers=1 if settings.debug else settings.workers
    )
