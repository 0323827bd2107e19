"""
Engine Error Handler.

Maps the engine's exception hierarchy to HTTP status codes. Every response
body has the shape ``{"detail": <message>, "code": <error code>}``.
"""

from typing import Dict, Type

from fastapi import Request
from fastapi.responses import JSONResponse

from hero_engine.agent_core.errors import (
    BudgetExceeded,
    Forbidden,
    HeroEngineError,
    HookBlocked,
    InvalidState,
    InvalidTransition,
    NotFound,
)
from hero_engine.core.logging_config import get_logger

logger = get_logger(__name__)

STATUS_BY_ERROR: Dict[Type[HeroEngineError], int] = {
    NotFound: 404,
    Forbidden: 403,
    InvalidTransition: 409,
    InvalidState: 409,
    BudgetExceeded: 402,
    HookBlocked: 422,
}


def status_for(exc: HeroEngineError) -> int:
    for error_type in type(exc).__mro__:
        status = STATUS_BY_ERROR.get(error_type)  # type: ignore[arg-type]
        if status is not None:
            return status
    return 500


async def engine_error_handler(request: Request, exc: HeroEngineError) -> JSONResponse:
    """
    Translate a ``HeroEngineError`` into a JSON error response.

    Errors without a dedicated status (oracle or persistence failures) are
    logged with their traceback and answered with 500.
    """
    status = status_for(exc)
    if status >= 500:
        logger.error(f"Engine error in {request.method} {request.url.path}: {exc}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} -> {status} {exc.code}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})
