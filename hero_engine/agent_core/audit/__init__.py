"""Append-only audit trail of everything an execution decides and does."""

from .logger import AuditLogger

__all__ = ["AuditLogger"]
