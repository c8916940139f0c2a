"""
Helpdesk Triage - Main Application
===================================

Automated first-line triage for helpdesk tickets.

Modules:
- Triage: Classify tickets, retrieve knowledge articles, draft a reply and
  decide between auto-close and human hand-off
- Audit: Append-only trail of every triage step, grouped by trace

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, orchestrator, dispatchers and DTOs
- Domain: Entities, value objects, classifier, ranking and drafting
- Infrastructure: Database, Redis queue and run lock
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from helpdesk_triage.config import settings
from helpdesk_triage.core import ApplicationException

# Infrastructure
from helpdesk_triage.bootstrap import build_runtime
from helpdesk_triage.infrastructure.database import close_database, create_tables, init_database, ping_database
from helpdesk_triage.infrastructure.redis import create_redis_pool

# Module Routers
from helpdesk_triage.triage.interfaces import audit_router, triage_router

# Middleware
from helpdesk_triage.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

# Logging
from helpdesk_triage.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Connect to Redis when a queue backend is configured
    4. Build the triage runtime (system actor, run lock, dispatcher)
    5. Start the embedded triage worker

    SHUTDOWN:
    1. Stop the worker and close the Redis pool
    2. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Triage", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })
    app.state.settings = settings
    app.state.triage = None

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    redis = None
    if settings.queue_enabled:
        logger.info("Connecting to Redis", extra={"queue": settings.triage_queue_name})
        try:
            redis = await create_redis_pool(settings.redis_url)
        except Exception as e:
            logger.warning(f"Redis not available - triage runs inline: {e}")
            redis = None

    try:
        runtime = await build_runtime(settings, redis=redis)
    except Exception as e:
        logger.warning(f"Triage runtime not started: {e}")
        if redis is not None:
            await redis.close(close_connection_pool=True)
        runtime = None

    if runtime is not None and runtime.queue is not None and settings.triage_embedded_worker:
        await runtime.queue.consume(runtime.job_runner.run, settings.triage_worker_concurrency)

    app.state.triage = runtime
    logger.info("Helpdesk Triage started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk Triage")

    if runtime is not None:
        await runtime.close()

    await close_database()

    logger.info("Helpdesk Triage shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk Triage API",
    description="""
    ## Automated Helpdesk Ticket Triage

    Every new ticket is classified, matched against the knowledge base,
    answered with a drafted reply, and either auto-closed or handed to the
    least-loaded agent. Each step is written to an append-only audit trail.

    ---

    ### Triage Module

    **Endpoints:**
    - `POST /triage/tickets/{id}` - Run (or queue) triage for a ticket
    - `POST /triage/tickets/{id}/created` - Ticket created hook
    - `GET /triage/tickets/{id}/suggestion` - Latest suggestion
    - `POST /triage/suggestions/{id}/accept` - Accept a suggestion
    - `POST /triage/suggestions/{id}/reject` - Reject a suggestion
    - `GET|PUT /triage/config` - Triage configuration
    - `GET /triage/stats` - Suggestion statistics

    ### Audit Module

    - `GET /audit/tickets/{id}` - Ticket audit trail
    - `GET /audit/trace/{trace_id}` - One triage run
    - `GET /audit/export` - NDJSON export
    - `GET /audit/stats` - Activity statistics

    ---
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(triage_router)
app.include_router(audit_router)

# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "triage_runtime": "ready",
                        "dispatch_mode": "queued",
                        "run_lock": "RedisRunLock"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports database connectivity, whether the triage runtime is up and
    how runs are dispatched.
    """
    runtime = getattr(request.app.state, "triage", None)
    database_ok = await ping_database()
    checks = {
        "database": "connected" if database_ok else "unavailable",
        "triage_runtime": "ready" if runtime is not None else "unavailable",
        "dispatch_mode": runtime.dispatcher.mode if runtime is not None else None,
        "run_lock": type(runtime.run_lock).__name__ if runtime is not None else None,
    }
    return {
        "status": "healthy" if runtime is not None and database_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "triage": {
                "prefix": "/triage",
                "endpoints": [
                    "POST /triage/tickets/{id} - Run triage",
                    "POST /triage/tickets/{id}/created - Ticket created hook",
                    "GET /triage/tickets/{id}/suggestion - Latest suggestion",
                    "POST /triage/suggestions/{id}/accept - Accept suggestion",
                    "POST /triage/suggestions/{id}/reject - Reject suggestion",
                    "GET /triage/config - Triage configuration",
                    "GET /triage/stats - Suggestion statistics"
                ]
            },
            "audit": {
                "prefix": "/audit",
                "endpoints": [
                    "GET /audit/tickets/{id} - Ticket audit trail",
                    "GET /audit/trace/{trace_id} - Trace summary",
                    "GET /audit/export - NDJSON export",
                    "GET /audit/stats - Audit statistics"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_triage.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
