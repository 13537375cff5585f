"""Service layer for event administration.

Event metadata is plain validated CRUD. Capacity and lifecycle status go
through the capacity ledger, and growing the capacity promotes from the
waitlist.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from portal_events.models import (
    EVENT_CATEGORIES,
    EVENT_STATUSES,
    TERMINAL_EVENT_STATUSES,
    Event,
)
from portal_events.repositories.events import EventRepository
from portal_events.services.errors import EventNotFoundError, ValidationError
from portal_events.services.ledger import CapacityLedger
from portal_events.services.notifications import NotificationDispatcher
from portal_events.services.waitlist import WaitlistPromoter

__all__ = ["EventService", "DEFAULT_LISTED_STATUSES"]

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
DEFAULT_LISTED_STATUSES = ("upcoming", "registration-open")

_TEXT_LIMITS = {"title": 200, "description": 500, "location": 200}


class EventService:
    """High level operations for managing events."""

    def __init__(
        self,
        session: Session,
        *,
        notifier: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.session = session
        self.repository = EventRepository(session)
        self.ledger = CapacityLedger(session)
        self.promoter = WaitlistPromoter(session, ledger=self.ledger, notifier=notifier)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_events(
        self,
        *,
        status: Optional[str] = None,
        category: Optional[str] = None,
        limit: Optional[Any] = None,
    ) -> List[Dict[str, Any]]:
        errors: Dict[str, List[str]] = {}
        statuses = [value.strip() for value in (status or "").split(",") if value.strip()]
        if not statuses:
            statuses = list(DEFAULT_LISTED_STATUSES)
        unknown = [value for value in statuses if value not in EVENT_STATUSES]
        if unknown:
            errors.setdefault("status", []).append(f"Statut inconnu: {', '.join(unknown)}.")
        if category and category not in EVENT_CATEGORIES:
            errors.setdefault("category", []).append("Catégorie inconnue.")
        limit_value: Optional[int] = None
        if limit not in (None, ""):
            try:
                limit_value = int(limit)
            except (TypeError, ValueError):
                errors.setdefault("limit", []).append("Doit être un entier.")
            else:
                if limit_value < 1:
                    errors.setdefault("limit", []).append("Doit être positif.")
        if errors:
            raise ValidationError(errors)

        events = self.repository.list_events(
            statuses=statuses, category=category or None, limit=limit_value
        )
        return [self.serialize_event(event) for event in events]

    def get_event(self, event_id: int) -> Dict[str, Any]:
        return self.serialize_event(self._get_event(event_id))

    def create_event(self, payload: Dict[str, Any], *, created_by: Optional[str] = None) -> Dict[str, Any]:
        data = self._validate_payload(payload, partial=False)
        try:
            event = self.repository.create_event(created_by=created_by, **data)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info("event=%s created with capacity %s", event.id, event.max_attendees)
        return self.serialize_event(event)

    def update_event(self, event_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        event = self._get_event(event_id)
        data = self._validate_payload(payload, partial=True)
        max_attendees = data.pop("max_attendees", None)
        status = data.pop("status", None)

        try:
            if data:
                self.repository.update_metadata(event, data)
            if max_attendees is not None:
                self.ledger.set_capacity(event_id, max_attendees)
            if status is not None:
                self.ledger.set_lifecycle_status(event_id, status)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        promoted = []
        if max_attendees is not None or status is not None:
            promoted = self.promoter.fill_open_slots(event_id)

        payload_out = self.serialize_event(self.repository.get_event(event_id, refresh=True))
        payload_out["promoted_registration_ids"] = [item.id for item in promoted]
        return payload_out

    def deactivate_event(self, event_id: int) -> Dict[str, Any]:
        """Soft delete: the event stops accepting registrations and is cancelled."""

        event = self._get_event(event_id)
        try:
            if event.status not in TERMINAL_EVENT_STATUSES:
                self.ledger.set_lifecycle_status(event_id, "cancelled")
            self.repository.deactivate(event)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info("event=%s deactivated", event_id)
        return self.serialize_event(self.repository.get_event(event_id, refresh=True))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _get_event(self, event_id: int) -> Event:
        try:
            return self.repository.get_event(event_id, refresh=True)
        except LookupError as exc:
            raise EventNotFoundError(str(exc)) from exc

    def _validate_payload(self, payload: Dict[str, Any], *, partial: bool) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError({"_schema": ["Un objet JSON est requis."]})

        errors: Dict[str, List[str]] = {}
        clean: Dict[str, Any] = {}

        for field, limit in _TEXT_LIMITS.items():
            if field not in payload:
                if field == "title" and not partial:
                    errors.setdefault(field, []).append("Titre requis.")
                continue
            value = payload.get(field)
            if value is None and field != "title":
                clean[field] = None
                continue
            if not isinstance(value, str) or not value.strip():
                errors.setdefault(field, []).append("Doit être une chaîne non vide.")
            elif len(value.strip()) > limit:
                errors.setdefault(field, []).append(f"{limit} caractères maximum.")
            else:
                clean[field] = value.strip()

        if "date" in payload:
            parsed = self._parse_date(payload.get("date"))
            if parsed is None:
                errors.setdefault("date", []).append("Format attendu: YYYY-MM-DD.")
            else:
                clean["event_date"] = parsed
        elif not partial:
            errors.setdefault("date", []).append("Date requise.")

        if "time" in payload:
            value = payload.get("time")
            if value is not None and (not isinstance(value, str) or not TIME_PATTERN.match(value)):
                errors.setdefault("time", []).append("Format attendu: HH:MM.")
            else:
                clean["start_time"] = value

        if "duration" in payload:
            value = payload.get("duration")
            if value is None:
                clean["duration_hours"] = None
            elif isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.5 <= value <= 72:
                errors.setdefault("duration", []).append("Durée entre 0,5 et 72 heures.")
            else:
                clean["duration_hours"] = float(value)

        if "category" in payload:
            value = payload.get("category")
            if value is not None and value not in EVENT_CATEGORIES:
                errors.setdefault("category", []).append("Catégorie inconnue.")
            else:
                clean["category"] = value

        if "featured" in payload:
            value = payload.get("featured")
            if not isinstance(value, bool):
                errors.setdefault("featured", []).append("Doit être un booléen.")
            else:
                clean["featured"] = value

        if "max_attendees" in payload:
            value = payload.get("max_attendees")
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                errors.setdefault("max_attendees", []).append("Doit être un entier positif.")
            else:
                clean["max_attendees"] = value
        elif not partial:
            errors.setdefault("max_attendees", []).append("Capacité requise.")

        if "status" in payload:
            if not partial:
                errors.setdefault("status", []).append("Le statut initial est toujours 'upcoming'.")
            else:
                clean["status"] = payload.get("status")

        if errors:
            raise ValidationError(errors)
        return clean

    @staticmethod
    def _parse_date(value: Any) -> Optional[date]:
        if not isinstance(value, str):
            return None
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError:
            return None

    @staticmethod
    def serialize_event(event: Event) -> Dict[str, Any]:
        return {
            "id": event.id,
            "title": event.title,
            "description": event.description,
            "date": event.event_date.isoformat(),
            "time": event.start_time,
            "duration": event.duration_hours,
            "location": event.location,
            "category": event.category,
            "featured": event.featured,
            "is_active": event.is_active,
            "max_attendees": event.max_attendees,
            "current_attendees": event.current_attendees,
            "open_slots": max(event.max_attendees - event.current_attendees, 0),
            "status": event.status,
            "created_by": event.created_by,
        }
