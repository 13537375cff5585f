"""Admission decision for new registrations: counted slot or waitlist."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal_events.models import TERMINAL_EVENT_STATUSES, Event, Registration, utcnow
from portal_events.repositories.registrations import RegistrationRepository
from portal_events.services.errors import (
    DuplicateRegistrationError,
    EventNotFoundError,
    EventUnavailableError,
)
from portal_events.services.identity import Subject
from portal_events.services.ledger import CapacityLedger

logger = logging.getLogger(__name__)


class AdmissionController:
    """Creates a registration as ``registered`` or ``waitlisted``.

    This is the only place a registration's initial status is chosen. The
    ledger increment and the registration insert are committed together;
    if the insert fails the increment is rolled back with it.
    """

    def __init__(self, session: Session, *, ledger: Optional[CapacityLedger] = None) -> None:
        self.session = session
        self.repository = RegistrationRepository(session)
        self.ledger = ledger or CapacityLedger(session)

    def admit(self, event_id: int, subject: Subject) -> Registration:
        try:
            registration = self._admit(event_id, subject)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            # The partial unique index caught a concurrent registration
            # for the same identity.
            raise DuplicateRegistrationError(
                "Cette identité est déjà inscrite à l'événement."
            ) from exc
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "registration=%s event=%s type=%s status=%s",
            registration.id,
            event_id,
            registration.registration_type,
            registration.status,
        )
        return registration

    def _admit(self, event_id: int, subject: Subject) -> Registration:
        identity_key = subject.identity_key
        if self.repository.find_active(event_id, identity_key) is not None:
            raise DuplicateRegistrationError("Cette identité est déjà inscrite à l'événement.")

        event = self.session.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        if not event.is_active or event.status in TERMINAL_EVENT_STATUSES:
            raise EventUnavailableError("L'événement n'accepte plus d'inscriptions.")

        admit = self.ledger.try_admit(event_id)
        if not admit.admitted and admit.reason == "unavailable":
            # Closed or cancelled between the eligibility read and the admit.
            raise EventUnavailableError("L'événement n'accepte plus d'inscriptions.")

        status = "registered" if admit.admitted else "waitlisted"
        guest = subject.guest
        return self.repository.create(
            event_id=event_id,
            registration_type=subject.registration_type,
            user_id=subject.user_id,
            guest_name=guest.full_name if guest else None,
            guest_email=guest.email if guest else None,
            guest_phone=guest.phone_number if guest else None,
            guest_company=guest.company if guest else None,
            guest_notes=guest.notes if guest else None,
            identity_key=identity_key,
            status=status,
            registered_at=utcnow(),
        )
