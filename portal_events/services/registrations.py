"""Service layer dedicated to event registrations, cancellations and the waitlist."""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import select
from sqlalchemy.orm import Session

from portal_events.config import get_config
from portal_events.database import session_scope
from portal_events.models import (
    REGISTRATION_STATUSES,
    REGISTRATION_TYPES,
    TERMINAL_EVENT_STATUSES,
    Event,
    Registration,
)
from portal_events.repositories.registrations import RegistrationRepository
from portal_events.services.admission import AdmissionController
from portal_events.services.bulk import BulkOperationCoordinator, BulkOperationResult
from portal_events.services.errors import (
    EventNotFoundError,
    RegistrationNotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from portal_events.services.identity import Actor, Subject, user_identity_key
from portal_events.services.ledger import CapacityLedger
from portal_events.services.notifications import NotificationDispatcher
from portal_events.services.state_machine import RegistrationStateMachine
from portal_events.services.waitlist import WaitlistPromoter

__all__ = ["RegistrationService", "RegistrationScheduler"]

logger = logging.getLogger(__name__)

MAX_ADMIN_NOTES_LENGTH = 1000


class RegistrationService:
    """High level operations for registering, cancelling and promoting attendees."""

    def __init__(
        self,
        session: Session,
        *,
        notifier: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.session = session
        self.notifier = notifier or NotificationDispatcher(None)
        self.repository = RegistrationRepository(session)
        self.ledger = CapacityLedger(session)
        self.state_machine = RegistrationStateMachine(session)
        self.admission = AdmissionController(session, ledger=self.ledger)
        self.promoter = WaitlistPromoter(
            session,
            ledger=self.ledger,
            state_machine=self.state_machine,
            notifier=self.notifier,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def register(self, event_id: int, subject: Subject) -> Dict[str, Any]:
        registration = self.admission.admit(event_id, subject)
        if registration.status == "registered":
            self.notifier.registration_confirmed(registration)
        else:
            self.notifier.registration_waitlisted(registration)
        return {
            "status": registration.status,
            "registration": self.serialize_registration(registration),
        }

    def cancel(self, registration_id: int, actor: Actor) -> Dict[str, Any]:
        registration = self._get_registration(registration_id)
        try:
            previous = self.state_machine.cancel(registration, actor)
            if previous == "registered":
                self.ledger.release(registration.event_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "registration=%s cancelled from %s on event=%s",
            registration.id,
            previous,
            registration.event_id,
        )
        self.notifier.registration_cancelled(registration)

        promoted: List[Registration] = []
        if previous == "registered":
            promoted = self.promoter.promote_for_freed_slots(registration.event_id, 1)

        return {
            "status": registration.status,
            "registration": self.serialize_registration(registration),
            "promoted": [self.serialize_registration(item) for item in promoted],
        }

    def is_registered(self, event_id: int, identity_key: str) -> str:
        registration = self.repository.find_active(event_id, identity_key)
        return registration.status if registration is not None else "none"

    def get_registration(self, registration_id: int, actor: Actor) -> Dict[str, Any]:
        registration = self._get_registration(registration_id)
        if not (actor.is_admin or actor.owns(registration)):
            raise UnauthorizedActionError("Action non autorisée sur cette inscription.")
        payload = self.serialize_registration(registration, include_admin_notes=actor.is_admin)
        payload["event"] = self._serialize_event_summary(registration.event)
        return payload

    def list_waitlist(self, event_id: int) -> List[Dict[str, Any]]:
        self._ensure_event(event_id)
        entries = self.repository.list_waitlist(event_id)
        data = []
        for position, entry in enumerate(entries, start=1):
            payload = self.serialize_registration(entry)
            payload["position"] = position
            data.append(payload)
        return data

    def trigger_waitlist_promotion(self, event_id: int) -> List[Dict[str, Any]]:
        self._ensure_event(event_id)
        promoted = self.promoter.fill_open_slots(event_id)
        return [self.serialize_registration(item) for item in promoted]

    def list_my_registrations(self, actor: Actor) -> List[Dict[str, Any]]:
        """Active registrations of the calling member across all events."""

        if not actor.is_authenticated:
            raise UnauthorizedActionError("Authentification requise.")
        items = self.repository.list_active_for_identity(user_identity_key(actor.user_id))
        data = []
        for item in items:
            payload = self.serialize_registration(item)
            payload["event"] = self._serialize_event_summary(item.event)
            data.append(payload)
        return data

    def update_admin_notes(self, registration_id: int, notes: Any, actor: Actor) -> Dict[str, Any]:
        if not actor.is_admin:
            raise UnauthorizedActionError("Accès administrateur requis.")
        if notes is not None and not isinstance(notes, str):
            raise ValidationError({"notes": ["Doit être une chaîne de caractères."]})
        cleaned = notes.strip() if notes else None
        if cleaned and len(cleaned) > MAX_ADMIN_NOTES_LENGTH:
            raise ValidationError(
                {"notes": [f"{MAX_ADMIN_NOTES_LENGTH} caractères maximum."]}
            )

        registration = self._get_registration(registration_id)
        try:
            self.repository.set_admin_notes(registration, cleaned or None)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info("admin notes updated on registration=%s by %s", registration.id, actor.user_id)
        return self.serialize_registration(registration, include_admin_notes=True)

    def bulk_admin_operation(
        self,
        registration_ids: Iterable[Any],
        action: str,
        *,
        actor: Optional[Actor] = None,
        send_notification: Any = True,
    ) -> BulkOperationResult:
        if not isinstance(send_notification, bool):
            raise ValidationError({"send_notification": ["Doit être un booléen."]})
        notifier = self.notifier if send_notification else NotificationDispatcher(None)
        coordinator = BulkOperationCoordinator(self.session, notifier=notifier)
        return coordinator.apply(registration_ids, action, actor=actor)

    def list_registrations(
        self,
        *,
        event_id: Optional[Any] = None,
        status: Optional[str] = None,
        registration_type: Optional[str] = None,
        search: Optional[str] = None,
        page: Optional[Any] = None,
        limit: Optional[Any] = None,
        sort_order: Optional[str] = None,
    ) -> Dict[str, Any]:
        config = get_config()
        errors: Dict[str, List[str]] = {}

        event_filter = self._parse_int(event_id, "event_id", errors, minimum=1)
        page_value = self._parse_int(page, "page", errors, minimum=1) or 1
        limit_value = self._parse_int(limit, "limit", errors, minimum=1) or config.default_page_size
        limit_value = min(limit_value, config.max_page_size)

        if status and status not in REGISTRATION_STATUSES:
            errors.setdefault("status", []).append("Statut inconnu.")
        if registration_type and registration_type not in REGISTRATION_TYPES:
            errors.setdefault("registration_type", []).append("Type d'inscription inconnu.")
        order = (sort_order or "desc").lower()
        if order not in {"asc", "desc"}:
            errors.setdefault("sort_order", []).append("Doit valoir 'asc' ou 'desc'.")
        if errors:
            raise ValidationError(errors)

        items, total = self.repository.search(
            event_id=event_filter,
            status=status or None,
            registration_type=registration_type or None,
            search=search.strip() if isinstance(search, str) and search.strip() else None,
            page=page_value,
            limit=limit_value,
            descending=order == "desc",
        )
        total_pages = math.ceil(total / limit_value) if total else 0
        return {
            "registrations": [
                self.serialize_registration(item, include_admin_notes=True) for item in items
            ],
            "pagination": {
                "page": page_value,
                "limit": limit_value,
                "total_count": total,
                "total_pages": total_pages,
                "has_next_page": page_value < total_pages,
                "has_previous_page": page_value > 1,
            },
            "stats": self.repository.status_counts(event_filter),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _get_registration(self, registration_id: int) -> Registration:
        registration = self.repository.get(registration_id, refresh=True)
        if registration is None:
            raise RegistrationNotFoundError(f"Registration {registration_id} not found")
        return registration

    def _ensure_event(self, event_id: int) -> Event:
        event = self.session.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        return event

    @staticmethod
    def _parse_int(
        value: Any,
        field: str,
        errors: Dict[str, List[str]],
        *,
        minimum: int,
    ) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            errors.setdefault(field, []).append("Doit être un entier.")
            return None
        if parsed < minimum:
            errors.setdefault(field, []).append(f"Doit être supérieur ou égal à {minimum}.")
            return None
        return parsed

    @staticmethod
    def serialize_registration(
        registration: Registration, *, include_admin_notes: bool = False
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": registration.id,
            "event_id": registration.event_id,
            "registration_type": registration.registration_type,
            "status": registration.status,
            "registered_at": registration.registered_at.isoformat(),
            "cancelled_at": registration.cancelled_at.isoformat()
            if registration.cancelled_at
            else None,
        }
        if registration.registration_type == "user":
            payload["user_id"] = registration.user_id
            payload["guest_info"] = None
        else:
            payload["user_id"] = None
            payload["guest_info"] = {
                "full_name": registration.guest_name,
                "email": registration.guest_email,
                "phone_number": registration.guest_phone,
                "company": registration.guest_company,
                "notes": registration.guest_notes,
            }
        if include_admin_notes:
            payload["admin_notes"] = registration.admin_notes
        return payload

    @staticmethod
    def _serialize_event_summary(event: Event) -> Dict[str, Any]:
        return {
            "id": event.id,
            "title": event.title,
            "date": event.event_date.isoformat(),
            "time": event.start_time,
            "location": event.location,
            "status": event.status,
        }


class RegistrationScheduler:
    """Background sweep that fills slots left open by lost races or failed promotions."""

    def __init__(
        self,
        *,
        interval_minutes: Optional[int] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.interval_minutes = interval_minutes or get_config().waitlist_sweep_minutes
        self.notifier = notifier
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self._scheduler.add_job(
            self.sweep_waitlists,
            "interval",
            minutes=self.interval_minutes,
            id="waitlist-sweep",
            replace_existing=True,
        )
        self._scheduler.start()
        self._started = True
        logger.info("waitlist sweep scheduled every %s minutes", self.interval_minutes)

    def shutdown(self) -> None:
        if self._started:
            self._scheduler.shutdown()
            self._started = False

    def sweep_waitlists(self) -> Dict[int, List[int]]:
        """Promote into every open slot of every active event with a waitlist."""

        promoted: Dict[int, List[int]] = {}
        with session_scope() as session:
            service = RegistrationService(session, notifier=self.notifier)
            query = (
                select(Event.id)
                .where(Event.is_active.is_(True))
                .where(Event.status.not_in(TERMINAL_EVENT_STATUSES))
                .where(Event.current_attendees < Event.max_attendees)
                .where(
                    select(Registration.id)
                    .where(Registration.event_id == Event.id)
                    .where(Registration.status == "waitlisted")
                    .exists()
                )
            )
            for event_id in session.scalars(query).all():
                items = service.promoter.fill_open_slots(event_id)
                if items:
                    promoted[event_id] = [item.id for item in items]
        if promoted:
            logger.info("waitlist sweep promoted %s", promoted)
        return promoted
