"""Pydantic base schema shared by the engine's domain models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base Pydantic model for all engine schemas.

    - ``populate_by_name=True``: models accept both field names and aliases,
      which lets the HTTP layer speak camelCase while Python code uses
      snake_case.
    - ``extra="forbid"``: unknown fields are rejected instead of silently
      dropped.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )
