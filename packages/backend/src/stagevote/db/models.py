"""SQLAlchemy ORM models — single source of truth for the database schema.

Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).

Key concepts:
- UUID primary keys via the portable Uuid type (native on PostgreSQL)
- JSON for a performance's vote options
- Votes reference the identity provider's subject string, not a local
  users table — accounts live with the provider
- UniqueConstraint(user_id, performance_id) is what ultimately rejects a
  second vote from the same user
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops the tzinfo)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Event(Base):
    """A society event — a show night, a battle of the bands, a talent hunt."""

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    venue: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    starts_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    performances: Mapped[list["Performance"]] = relationship(
        back_populates="event", order_by="Performance.created_at"
    )


class Performance(Base):
    """A votable act within an event.

    voting_enabled is flipped by an admin (or by the voting timer once
    voting_duration_seconds has elapsed since voting_opened_at).
    """

    __tablename__ = "performances"
    __table_args__ = (
        Index("ix_performances_event", "event_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("events.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    performer: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    options: Mapped[list] = mapped_column(JSON, nullable=False)
    voting_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    voting_duration_seconds: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # None = open until closed by hand
    voting_opened_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    event: Mapped["Event"] = relationship(back_populates="performances")

    @property
    def voting_closes_at(self) -> Optional[datetime]:
        opened = as_utc(self.voting_opened_at)
        if opened is None or self.voting_duration_seconds is None:
            return None
        return opened + timedelta(seconds=self.voting_duration_seconds)


class Vote(Base):
    """One user's vote on one performance. Never updated or deleted."""

    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("user_id", "performance_id", name="uq_votes_user_performance"),
        Index("ix_votes_performance", "performance_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    performance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("performances.id"), nullable=False
    )
    option: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
