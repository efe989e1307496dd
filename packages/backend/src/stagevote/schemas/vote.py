"""Pydantic schemas for casting votes and reading tallies."""

import uuid
from typing import Union

from pydantic import Field

from stagevote.realtime.channels import TallySnapshot
from stagevote.schemas.base import CamelModel


class VoteCreate(CamelModel):
    performance_id: uuid.UUID
    value: Union[bool, str] = Field(
        ..., description="true/false for yes/no performances, or an option name"
    )


class TallyRead(CamelModel):
    performance_id: uuid.UUID
    counts: dict[str, int]
    total: int
    sequence: int
    closed: bool

    @classmethod
    def from_snapshot(cls, tally: TallySnapshot) -> "TallyRead":
        return cls(
            performance_id=tally.performance_id,
            counts=tally.counts,
            total=tally.total,
            sequence=tally.sequence,
            closed=tally.closed,
        )
