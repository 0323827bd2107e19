"""
Logging Configuration Module.

Centralized logging configuration for the Hero agent engine.

Features:
- Configurable log levels per module
- Console and optional rotating file logging
- ``simple``, ``detailed`` and ``json`` formats selected by ``LOG_FORMAT``
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional


def _get_logging_config():
    """Get logging configuration from settings.

    Settings are imported lazily to avoid circular imports during module
    initialization.
    """
    try:
        from hero_engine.server.core.config import settings

        return {
            "log_level": settings.log_level.upper(),
            "log_format": settings.log_format,
            "log_file_dir": settings.log_file_dir,
            "enable_file_logging": settings.enable_file_logging,
        }
    except Exception:
        return {
            "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
            "log_format": os.getenv("LOG_FORMAT", "detailed"),
            "log_file_dir": os.getenv("LOG_FILE_DIR", "logs"),
            "enable_file_logging": os.getenv("ENABLE_FILE_LOGGING", "false").lower() in ("true", "1", "yes"),
        }


SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

_FORMATS = {"json": JSON_FORMAT, "simple": SIMPLE_FORMAT, "detailed": DETAILED_FORMAT}

# Module-specific log levels
MODULE_LOG_LEVELS = {
    "hero_engine.agent_core": "DEBUG",
    "hero_engine.agent_core.runtime": "DEBUG",
    "hero_engine.agent_core.hooks": "DEBUG",
    "hero_engine.agent_core.checkpoints": "INFO",
    "hero_engine.agent_core.repos": "INFO",
    "hero_engine.agent_core.budget": "INFO",
    "hero_engine.agent_core.audit": "INFO",
    "hero_engine.server": "INFO",
    "hero_engine.server.api": "DEBUG",
    # Third-party libraries (reduce noise)
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "sqlalchemy.pool": "WARNING",
    "httpx": "WARNING",
    "asyncio": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
}

_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUPS = 5


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: Optional[bool] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Override default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override default format (simple, detailed, json)
        enable_file: Override whether rotating file logging is enabled
    """
    config = _get_logging_config()
    level = (log_level or config["log_level"]).upper()
    fmt = log_format or config["log_format"]
    file_logging = config["enable_file_logging"] if enable_file is None else enable_file

    formatter = logging.Formatter(_FORMATS.get(fmt, DETAILED_FORMAT), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # filter at handler level

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if file_logging:
        log_dir = Path(config["log_file_dir"])
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / "hero_engine.log", maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(f"Logging configured: level={level}, format={fmt}, file_logging={file_logging}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
