from datetime import date, datetime

from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Event(Base):
    """Upstream event written by the registration portal. Read-only here."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    city: Mapped[str | None]
    state: Mapped[str | None]

    result_set: Mapped["EventResultSet | None"] = relationship(
        "EventResultSet", back_populates="event", uselist=False
    )

    __table_args__ = (Index("ix_events_date_id", "date", "id"),)


class EventResultSet(Base):
    """The per-competitor result list attached to an event.

    ``records`` holds the raw payload exactly as the results desk saved it, a
    list of loosely-shaped mappings keyed by the upstream field names.
    """

    __tablename__ = "event_results"

    event_id: Mapped[str] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), primary_key=True
    )
    records: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    event: Mapped["Event"] = relationship("Event", back_populates="result_set")


class AggregateDocument(Base):
    """Keyed JSON document inside a named collection of the aggregate store."""

    __tablename__ = "aggregate_documents"

    collection: Mapped[str] = mapped_column(String, primary_key=True)
    key: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
