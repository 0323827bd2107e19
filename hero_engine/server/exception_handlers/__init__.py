"""
Exception handlers for the engine server.

This package contains custom exception handlers for different error types
and a setup function to register them with the FastAPI application.
"""

from .domain_handler import STATUS_BY_ERROR, engine_error_handler
from .global_handler import global_exception_handler, setup_exception_handlers

__all__ = ["STATUS_BY_ERROR", "engine_error_handler", "global_exception_handler", "setup_exception_handlers"]
