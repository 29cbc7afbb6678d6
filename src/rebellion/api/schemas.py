"""
Pydantic schemas for the rebellion HTTP API.

The state itself travels as the camelCase document; these models cover the
request and response envelopes around it.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UpdateRequest(BaseModel):
    """Partial state submitted by an editor (POST /update)."""
    data: dict[str, Any] = Field(default_factory=dict)


class SubmitResponse(BaseModel):
    """
    Outcome of a submitted update.

    `submitted` is True once the update is applied (authority) or
    transmitted (client). It does not mean other editors have seen it.
    """
    submitted: bool


class EventChanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chance: int
    effective_danger: int = Field(alias="effectiveDanger")
    notoriety: int
    guaranteed: bool


class ErrorResponse(BaseModel):
    """Standard error response."""
    ok: bool = False
    error: str
    details: dict = {}
