"""Repository objects for event persistence."""
from __future__ import annotations

from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from portal_events.models import Event


class EventRepository:
    """Persistence operations for event metadata.

    Ledger fields (``current_attendees``, ``max_attendees`` and ``status``)
    are written only by :class:`~portal_events.services.ledger.CapacityLedger`.
    """

    LEDGER_FIELDS = frozenset({"current_attendees", "max_attendees", "status"})

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_events(
        self,
        *,
        statuses: Optional[Iterable[str]] = None,
        category: Optional[str] = None,
        include_inactive: bool = False,
        limit: Optional[int] = None,
    ) -> Sequence[Event]:
        query = select(Event).order_by(Event.event_date.asc(), Event.featured.desc(), Event.id.asc())
        if not include_inactive:
            query = query.where(Event.is_active.is_(True))
        status_values = list(statuses or [])
        if status_values:
            query = query.where(Event.status.in_(status_values))
        if category:
            query = query.where(Event.category == category)
        if limit:
            query = query.limit(limit)
        return self.session.scalars(query).all()

    def get_event(self, event_id: int, *, refresh: bool = False) -> Event:
        if refresh:
            event = self.session.get(Event, event_id, populate_existing=True)
        else:
            event = self.session.get(Event, event_id)
        if event is None:
            raise LookupError(f"Event {event_id} not found")
        return event

    def create_event(
        self,
        *,
        title: str,
        event_date: date,
        max_attendees: int,
        description: Optional[str] = None,
        start_time: Optional[str] = None,
        duration_hours: Optional[float] = None,
        location: Optional[str] = None,
        category: Optional[str] = None,
        featured: bool = False,
        created_by: Optional[str] = None,
    ) -> Event:
        event = Event(
            title=title,
            description=description,
            event_date=event_date,
            start_time=start_time,
            duration_hours=duration_hours,
            location=location,
            category=category,
            featured=featured,
            created_by=created_by,
            max_attendees=max_attendees,
            current_attendees=0,
            status="upcoming",
            is_active=True,
        )
        self.session.add(event)
        self.session.flush()
        self.session.refresh(event)
        return event

    def update_metadata(self, event: Event, updates: dict) -> Event:
        forbidden = self.LEDGER_FIELDS.intersection(updates)
        if forbidden:
            raise ValueError(f"Ledger fields cannot be updated directly: {sorted(forbidden)}")
        for key, value in updates.items():
            setattr(event, key, value)
        self.session.flush()
        self.session.refresh(event)
        return event

    def deactivate(self, event: Event) -> None:
        event.is_active = False
        self.session.flush()
