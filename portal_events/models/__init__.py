"""SQLAlchemy models for events and their registrations."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal_events.database import Base

EVENT_STATUSES = ("upcoming", "registration-open", "full", "completed", "cancelled")
TERMINAL_EVENT_STATUSES = ("completed", "cancelled")
EVENT_CATEGORIES = ("workshops", "hackathons", "conferences", "networking", "study")

REGISTRATION_STATUSES = ("registered", "waitlisted", "cancelled", "attended")
ACTIVE_REGISTRATION_STATUSES = ("registered", "waitlisted")
# Statuses holding a counted slot; attendance does not give the slot back.
SLOT_HOLDING_STATUSES = ("registered", "attended")
REGISTRATION_TYPES = ("user", "guest")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Mixin providing automatic created/updated timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Event(TimestampMixin, Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("current_attendees >= 0", name="ck_events_attendees_non_negative"),
        CheckConstraint("max_attendees >= 1", name="ck_events_max_attendees_positive"),
        CheckConstraint(
            "current_attendees <= max_attendees",
            name="ck_events_attendees_within_capacity",
        ),
        Index("ix_events_status_active", "status", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[Optional[str]] = mapped_column(String(5))
    duration_hours: Mapped[Optional[float]] = mapped_column(Float)
    location: Mapped[Optional[str]] = mapped_column(String(200))
    category: Mapped[Optional[str]] = mapped_column(
        Enum(*EVENT_CATEGORIES, name="event_category")
    )
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Ledger fields, mutated exclusively through CapacityLedger.
    max_attendees: Mapped[int] = mapped_column(Integer, nullable=False)
    current_attendees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        Enum(*EVENT_STATUSES, name="event_status"),
        nullable=False,
        default="upcoming",
    )

    registrations: Mapped[List["Registration"]] = relationship(
        "Registration",
        back_populates="event",
        order_by="Registration.registered_at",
    )


class Registration(TimestampMixin, Base):
    __tablename__ = "event_registrations"
    __table_args__ = (
        Index(
            "uq_event_registrations_active_identity",
            "event_id",
            "identity_key",
            unique=True,
            sqlite_where=text("status IN ('registered', 'waitlisted')"),
            postgresql_where=text("status IN ('registered', 'waitlisted')"),
        ),
        Index("ix_event_registrations_event_status", "event_id", "status"),
        Index("ix_event_registrations_fifo", "event_id", "status", "registered_at", "id"),
        Index("ix_event_registrations_guest_email", "guest_email"),
        Index("ix_event_registrations_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    registration_type: Mapped[str] = mapped_column(
        Enum(*REGISTRATION_TYPES, name="registration_type"), nullable=False
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(120))
    guest_name: Mapped[Optional[str]] = mapped_column(String(100))
    guest_email: Mapped[Optional[str]] = mapped_column(String(255))
    guest_phone: Mapped[Optional[str]] = mapped_column(String(40))
    guest_company: Mapped[Optional[str]] = mapped_column(String(100))
    guest_notes: Mapped[Optional[str]] = mapped_column(Text)
    # Written by staff, never shown to the registrant.
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)
    identity_key: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*REGISTRATION_STATUSES, name="registration_status"), nullable=False
    )
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    event: Mapped[Event] = relationship("Event", back_populates="registrations")


__all__ = [
    "ACTIVE_REGISTRATION_STATUSES",
    "EVENT_CATEGORIES",
    "EVENT_STATUSES",
    "Event",
    "REGISTRATION_STATUSES",
    "REGISTRATION_TYPES",
    "Registration",
    "SLOT_HOLDING_STATUSES",
    "TERMINAL_EVENT_STATUSES",
    "utcnow",
]
