"""
Monitoring and Tracing Configuration Module.

Integration with Pydantic Logfire for tracing of engine operations:
- Execution lifecycle (start and terminal state)
- Planning oracle calls with token usage and cost
- FastAPI endpoints, httpx webhook calls and SQLAlchemy queries

Logfire is off unless ``LOGFIRE_ENABLED=true``. When it is off (or not
configured), the ``log_*`` helpers are cheap no-ops, so the engine can call
them unconditionally.
"""

import logging
import os
from typing import Optional

import logfire
from fastapi import FastAPI

logger = logging.getLogger(__name__)

LOGFIRE_ENABLED = os.getenv("LOGFIRE_ENABLED", "false").lower() in ("true", "1", "yes")
LOGFIRE_TOKEN = os.getenv("LOGFIRE_TOKEN", "")
LOGFIRE_ENVIRONMENT = os.getenv("LOGFIRE_ENVIRONMENT", "development")
LOGFIRE_SERVICE_NAME = os.getenv("LOGFIRE_SERVICE_NAME", "hero-agent-engine")
LOGFIRE_SERVICE_VERSION = os.getenv("LOGFIRE_SERVICE_VERSION", "0.0.0")

LOGFIRE_TRACE_PYDANTIC_AI = os.getenv("LOGFIRE_TRACE_PYDANTIC_AI", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_SQLALCHEMY = os.getenv("LOGFIRE_TRACE_SQLALCHEMY", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_HTTPX = os.getenv("LOGFIRE_TRACE_HTTPX", "true").lower() in ("true", "1", "yes")

_configured = False


def initialize_logfire(app: FastAPI | None = None) -> bool:
    """
    Initialize Logfire monitoring.

    Args:
        app: FastAPI application to instrument (optional).

    Returns:
        True when Logfire was configured.
    """
    global _configured
    if not LOGFIRE_ENABLED:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        return False
    if not LOGFIRE_TOKEN:
        logger.warning("Logfire is enabled but LOGFIRE_TOKEN is not set. Monitoring will not work.")
        return False

    try:
        logfire.configure(
            token=LOGFIRE_TOKEN,
            service_name=LOGFIRE_SERVICE_NAME,
            service_version=LOGFIRE_SERVICE_VERSION,
            environment=LOGFIRE_ENVIRONMENT,
        )
        if LOGFIRE_TRACE_PYDANTIC_AI:
            logfire.instrument_pydantic_ai()
        if LOGFIRE_TRACE_SQLALCHEMY:
            logfire.instrument_sqlalchemy()
        if LOGFIRE_TRACE_HTTPX:
            logfire.instrument_httpx()
        if app is not None:
            logfire.instrument_fastapi(app=app)
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}", exc_info=True)
        return False

    _configured = True
    logger.info(f"Logfire monitoring initialized: environment={LOGFIRE_ENVIRONMENT}, service={LOGFIRE_SERVICE_NAME}")
    return True


def log_execution_started(execution_id: str, user_id: str, agent_id: str, goal: str) -> None:
    """
    Log the start of an execution.

    Args:
        execution_id: The execution identifier
        user_id: The owning user
        agent_id: The agent the execution runs for
        goal: The execution goal
    """
    if not _configured:
        return
    try:
        logfire.info("Execution started", execution_id=execution_id, user_id=user_id, agent_id=agent_id, goal=goal)
    except Exception:
        logger.debug(f"Could not log execution start to Logfire: execution_id={execution_id}")


def log_execution_finished(execution_id: str, status: str, reason: Optional[str], steps: int, cost_usd: float) -> None:
    """
    Log an execution reaching a terminal state.

    Args:
        execution_id: The execution identifier
        status: ``complete`` or ``failed``
        reason: Failure reason code, if any
        steps: Finished step count
        cost_usd: Total cost incurred
    """
    if not _configured:
        return
    try:
        logfire.info(
            "Execution finished",
            execution_id=execution_id,
            status=status,
            reason=reason,
            steps=steps,
            cost_usd=cost_usd,
        )
    except Exception:
        logger.debug(f"Could not log execution finish to Logfire: execution_id={execution_id}")


def log_llm_call(execution_id: str, tokens_used: int, cost_usd: Optional[float] = None) -> None:
    """
    Log a planning oracle call with usage metrics.

    Args:
        execution_id: The execution the call was made for
        tokens_used: Total tokens used in the call
        cost_usd: The cost in USD (optional)
    """
    if not _configured:
        return
    try:
        logfire.info("LLM call completed", execution_id=execution_id, tokens_used=tokens_used, cost_usd=cost_usd)
    except Exception:
        logger.debug(f"Could not log LLM call to Logfire: execution_id={execution_id}")
