"""Pydantic schemas for events and performances.

Separate "Create"/"Update" schemas (input) from "Read" schemas (output).
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from stagevote.schemas.base import CamelModel


# ─── Events ─────────────────────────────────────────────

class EventCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    venue: Optional[str] = Field(None, max_length=200)
    starts_at: Optional[datetime] = None


class EventRead(CamelModel):
    id: uuid.UUID
    name: str
    description: str
    venue: Optional[str]
    starts_at: Optional[datetime]
    created_at: datetime


# ─── Performances ───────────────────────────────────────

class PerformanceCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    performer: Optional[str] = Field(None, max_length=200)
    options: Optional[list[str]] = Field(
        None, description="Vote options (defaults to yes/no)"
    )
    voting_duration_seconds: Optional[int] = Field(None, gt=0)

    @field_validator("options")
    @classmethod
    def options_are_distinct(cls, v):
        if v is None:
            return v
        if len(v) < 2:
            raise ValueError("a performance needs at least two options")
        if len(set(v)) != len(v):
            raise ValueError("options must be distinct")
        if any(not o or len(o) > 50 for o in v):
            raise ValueError("options must be 1-50 characters")
        return v


class PerformanceUpdate(CamelModel):
    """Admin edit. voting_enabled toggles the live vote."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    performer: Optional[str] = Field(None, max_length=200)
    voting_duration_seconds: Optional[int] = Field(None, gt=0)
    voting_enabled: Optional[bool] = None


class PerformanceRead(CamelModel):
    id: uuid.UUID
    event_id: uuid.UUID
    title: str
    performer: Optional[str]
    options: list[str]
    voting_enabled: bool
    voting_duration_seconds: Optional[int]
    voting_opened_at: Optional[datetime]
    voting_closes_at: Optional[datetime]
    created_at: datetime
