"""Fire-and-forget notifications about registration status changes."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from portal_events.integrations.base import IntegrationError
from portal_events.models import Event, Registration

logger = logging.getLogger(__name__)

REGISTRATION_CONFIRMED = "registration_confirmed"
REGISTRATION_WAITLISTED = "waitlist_confirmation"
REGISTRATION_PROMOTED = "waitlist_promoted"
REGISTRATION_CANCELLED = "registration_cancelled"


class NotificationSender(Protocol):
    def send_notification(self, payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - typing protocol
        ...


class NotificationDispatcher:
    """Builds notification payloads and hands them to the notification service.

    Delivery failures are logged and dropped; a state transition is never
    rolled back because a message could not be sent.
    """

    def __init__(self, sender: Optional[NotificationSender], *, enabled: bool = True) -> None:
        self.sender = sender
        self.enabled = enabled and sender is not None

    def registration_confirmed(self, registration: Registration) -> bool:
        return self.dispatch(REGISTRATION_CONFIRMED, registration)

    def registration_waitlisted(self, registration: Registration) -> bool:
        return self.dispatch(REGISTRATION_WAITLISTED, registration)

    def registration_promoted(self, registration: Registration) -> bool:
        return self.dispatch(REGISTRATION_PROMOTED, registration)

    def registration_cancelled(self, registration: Registration) -> bool:
        return self.dispatch(REGISTRATION_CANCELLED, registration)

    def dispatch(self, template: str, registration: Registration) -> bool:
        if not self.enabled:
            return False
        payload = build_payload(template, registration)
        try:
            self.sender.send_notification(payload)  # type: ignore[union-attr]
        except IntegrationError as exc:
            logger.warning(
                "notification %s for registration=%s not delivered: %s",
                template,
                registration.id,
                exc,
            )
            return False
        return True


def build_payload(template: str, registration: Registration) -> Dict[str, Any]:
    event: Optional[Event] = registration.event
    if registration.registration_type == "user":
        recipient = {"user_id": registration.user_id}
    else:
        recipient = {"email": registration.guest_email, "name": registration.guest_name}
    return {
        "template": template,
        "recipient": recipient,
        "registration": {
            "id": registration.id,
            "status": registration.status,
            "registered_at": registration.registered_at.isoformat(),
        },
        "event": {
            "id": registration.event_id,
            "title": event.title if event is not None else None,
            "date": event.event_date.isoformat() if event is not None else None,
            "time": event.start_time if event is not None else None,
            "location": event.location if event is not None else None,
        },
    }
