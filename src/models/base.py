"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class FitSyncBase(BaseModel):
    """Base model with shared config for all FitSync schemas.

    ``from_attributes`` lets route handlers validate engine dataclasses
    directly.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )
