"""Capacity ledger: the only writer of an event's attendee counter.

Every mutation is a single conditional ``UPDATE`` so two callers can never
both observe a free slot and both take it. The display ``status`` is
recomputed inside the same statement, which keeps ``full`` in lockstep with
the counter.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import case, func, literal, update
from sqlalchemy.orm import Session

from portal_events.models import TERMINAL_EVENT_STATUSES, Event
from portal_events.services.errors import (
    EventNotFoundError,
    InvalidTransitionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MANUAL_EVENT_STATUSES = ("upcoming", "registration-open", "completed", "cancelled")


@dataclass(frozen=True)
class AdmitResult:
    admitted: bool
    event_id: int
    current_attendees: int
    max_attendees: int
    status: str
    reason: str = "admitted"


@dataclass(frozen=True)
class LedgerSnapshot:
    event_id: int
    current_attendees: int
    max_attendees: int
    status: str
    is_active: bool

    @property
    def open_slots(self) -> int:
        if not self.is_active or self.status in TERMINAL_EVENT_STATUSES:
            return 0
        return max(self.max_attendees - self.current_attendees, 0)


def _status_literal(value: str):
    return literal(value, type_=Event.__table__.c.status.type)


def _derived_status(count, limit, *, otherwise=None):
    """SQL expression for the capacity-derived event status."""

    fallback = Event.status if otherwise is None else otherwise
    return case(
        (Event.status.in_(TERMINAL_EVENT_STATUSES), Event.status),
        (count >= limit, _status_literal("full")),
        (Event.status == "full", _status_literal("registration-open")),
        else_=fallback,
    )


class CapacityLedger:
    """Atomic admit/release primitives over ``events.current_attendees``."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def try_admit(self, event_id: int) -> AdmitResult:
        """Take one slot if, and only if, one is free right now."""

        new_count = Event.current_attendees + 1
        statement = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.is_active.is_(True))
            .where(Event.status.not_in(TERMINAL_EVENT_STATUSES))
            .where(Event.current_attendees < Event.max_attendees)
            .values(
                current_attendees=new_count,
                status=_derived_status(new_count, Event.max_attendees),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        admitted = self.session.execute(statement).rowcount == 1
        snapshot = self.snapshot(event_id)

        if admitted:
            reason = "admitted"
        elif snapshot.open_slots == 0 and snapshot.is_active and snapshot.status not in TERMINAL_EVENT_STATUSES:
            reason = "full"
        else:
            reason = "unavailable"

        logger.debug(
            "try_admit event=%s admitted=%s attendees=%s/%s",
            event_id,
            admitted,
            snapshot.current_attendees,
            snapshot.max_attendees,
        )
        return AdmitResult(
            admitted=admitted,
            event_id=event_id,
            current_attendees=snapshot.current_attendees,
            max_attendees=snapshot.max_attendees,
            status=snapshot.status,
            reason=reason,
        )

    def release(self, event_id: int, slots: int = 1) -> LedgerSnapshot:
        """Give back ``slots`` slots; the counter never drops below zero."""

        if slots < 1:
            raise ValueError("slots must be a positive integer")

        new_count = case(
            (Event.current_attendees > slots, Event.current_attendees - slots),
            else_=0,
        )
        statement = (
            update(Event)
            .where(Event.id == event_id)
            .values(
                current_attendees=new_count,
                status=_derived_status(new_count, Event.max_attendees),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(statement).rowcount != 1:
            raise EventNotFoundError(f"Event {event_id} not found")
        snapshot = self.snapshot(event_id)
        logger.debug(
            "release event=%s slots=%s attendees=%s/%s",
            event_id,
            slots,
            snapshot.current_attendees,
            snapshot.max_attendees,
        )
        return snapshot

    def set_capacity(self, event_id: int, max_attendees: Any) -> LedgerSnapshot:
        """Change the capacity, refusing to go below the current attendance."""

        if isinstance(max_attendees, bool) or not isinstance(max_attendees, int) or max_attendees < 1:
            raise ValidationError({"max_attendees": ["Doit être un entier positif."]})

        statement = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.current_attendees <= max_attendees)
            .values(
                max_attendees=max_attendees,
                status=_derived_status(Event.current_attendees, max_attendees),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        updated = self.session.execute(statement).rowcount == 1
        snapshot = self.snapshot(event_id)
        if not updated:
            raise ValidationError(
                {
                    "max_attendees": [
                        "La capacité ne peut pas être inférieure au nombre d'inscrits "
                        f"({snapshot.current_attendees})."
                    ]
                }
            )
        return snapshot

    def set_lifecycle_status(self, event_id: int, status: str) -> LedgerSnapshot:
        """Apply an administrative status change.

        ``full`` is never set by hand; opening an event that is at capacity
        leaves it ``full``. ``completed`` and ``cancelled`` are final.
        """

        if status not in MANUAL_EVENT_STATUSES:
            raise ValidationError({"status": ["Statut inconnu ou non modifiable."]})

        current = self.snapshot(event_id)
        if current.status == status:
            return current
        if current.status in TERMINAL_EVENT_STATUSES:
            raise InvalidTransitionError(
                "L'événement est déjà terminé ou annulé.",
                current=current.status,
                target=status,
            )

        if status in TERMINAL_EVENT_STATUSES:
            new_status = _status_literal(status)
        else:
            new_status = case(
                (Event.current_attendees >= Event.max_attendees, _status_literal("full")),
                else_=_status_literal(status),
            )
        statement = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.status.not_in(TERMINAL_EVENT_STATUSES))
            .values(status=new_status, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(statement).rowcount != 1:
            raise InvalidTransitionError(
                "L'événement a été clôturé entre-temps.",
                current=None,
                target=status,
            )
        return self.snapshot(event_id)

    def snapshot(self, event_id: int) -> LedgerSnapshot:
        event = self.session.get(Event, event_id, populate_existing=True)
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        return LedgerSnapshot(
            event_id=event.id,
            current_attendees=event.current_attendees,
            max_attendees=event.max_attendees,
            status=event.status,
            is_active=event.is_active,
        )
