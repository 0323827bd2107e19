"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
registers exception handlers and includes all API routers. It serves as the
root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hero_engine import __version__
from hero_engine.core.logging_config import get_logger, setup_logging
from hero_engine.core.monitoring import initialize_logfire

from .api.v1 import agents, audit, budget, checkpoints, executions, health, hooks
from .core.config import settings
from .core.database import close_db, init_db
from .exception_handlers import setup_exception_handlers
from .services.engine import get_execution_service

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Startup creates missing tables, registers the built-in hooks (overlaid
    with stored hooks) and re-seats executions a previous process left
    running. Shutdown cancels background step loops and disposes the
    database engine.
    """
    # Startup
    logger.info("Starting up Hero Agent Engine server...")
    service = get_execution_service()
    try:
        await init_db()
        logger.info("Database initialized successfully")
        await service.hooks.load()
        recovered = await service.recover_in_flight()
        logger.info(f"Startup recovery re-seated {recovered} execution(s)")
    except Exception as e:
        logger.error(f"Startup initialization failed: {e}", exc_info=True)

    yield

    # Shutdown
    logger.info("Shutting down Hero Agent Engine server...")
    await service.aclose()
    await close_db()


app = FastAPI(
    title="Hero Agent Engine",
    description="""
    Hero Agent Engine API

    Start and steer autonomous agent executions: approve or reject sensitive
    steps, manage lifecycle hooks, roll back to checkpoints, query the audit
    trail and track spend against budgets. Step and state changes stream over
    Server-Sent Events.
    """,
    version=__version__,
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url=f"{settings.api_v1_prefix}/docs",
    redoc_url=f"{settings.api_v1_prefix}/redoc",
    lifespan=lifespan,
)

cors = settings.cors
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors.origins,
    allow_credentials=cors.allow_credentials,
    allow_methods=cors.allow_methods,
    allow_headers=cors.allow_headers,
)

setup_exception_handlers(app)
initialize_logfire(app)

prefix = settings.api_v1_prefix
app.include_router(health.router, tags=["health"])
app.include_router(executions.router, prefix=f"{prefix}/executions", tags=["executions"])
app.include_router(
    checkpoints.router, prefix=f"{prefix}/executions/{{execution_id}}/checkpoints", tags=["checkpoints"]
)
app.include_router(hooks.router, prefix=f"{prefix}/hooks", tags=["hooks"])
app.include_router(audit.router, prefix=f"{prefix}/audit", tags=["audit"])
app.include_router(budget.router, prefix=f"{prefix}/budget", tags=["budget"])
app.include_router(agents.router, prefix=f"{prefix}/agents", tags=["agents"])
