"""Lifecycle rules for a single registration.

Transitions are applied with a compare-and-set update on the registration
row, so a registration that changed underneath the caller is never moved
twice (two concurrent cancellations release one slot, not two).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet

from sqlalchemy.orm import Session

from portal_events.models import Registration, utcnow
from portal_events.repositories.registrations import RegistrationRepository
from portal_events.services.errors import (
    AlreadyCancelledError,
    InvalidTransitionError,
    UnauthorizedActionError,
)
from portal_events.services.identity import Actor

logger = logging.getLogger(__name__)

# Transitions callers may request directly. Promotion is absent: only the
# waitlist promoter moves a registration out of the waitlist.
REQUESTABLE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "registered": frozenset({"cancelled", "attended"}),
    "waitlisted": frozenset({"cancelled"}),
    "cancelled": frozenset(),
    "attended": frozenset(),
}

MAX_ATTEMPTS = 3


class RegistrationStateMachine:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.repository = RegistrationRepository(session)

    def check(self, registration: Registration, target: str, actor: Actor) -> None:
        """Validate ``registration -> target`` for ``actor`` without mutating anything."""

        current = registration.status
        if target == "cancelled" and current == "cancelled":
            raise AlreadyCancelledError(
                "L'inscription est déjà annulée.", current=current, target=target
            )
        if target not in REQUESTABLE_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError(
                f"Transition {current} -> {target} non autorisée.",
                current=current,
                target=target,
            )
        if target == "attended" and not actor.is_admin:
            raise UnauthorizedActionError("Seul un administrateur peut marquer la présence.")
        if target == "cancelled" and not (actor.is_admin or actor.owns(registration)):
            raise UnauthorizedActionError("Action non autorisée sur cette inscription.")

    def cancel(self, registration: Registration, actor: Actor) -> str:
        """Cancel the registration and return the status it was cancelled from."""

        for _ in range(MAX_ATTEMPTS):
            self.check(registration, "cancelled", actor)
            previous = registration.status
            if self._compare_and_set(registration, previous, "cancelled", cancelled_at=utcnow()):
                return previous
        raise InvalidTransitionError(
            "L'inscription a été modifiée pendant l'annulation, réessayez.",
            current=registration.status,
            target="cancelled",
        )

    def mark_attended(self, registration: Registration, actor: Actor) -> None:
        for _ in range(MAX_ATTEMPTS):
            self.check(registration, "attended", actor)
            if self._compare_and_set(registration, "registered", "attended"):
                return
        raise InvalidTransitionError(
            "L'inscription a été modifiée pendant l'opération, réessayez.",
            current=registration.status,
            target="attended",
        )

    def promote(self, registration: Registration) -> bool:
        """Move a waitlisted registration to registered.

        The caller must already hold the admitted slot. Returns ``False`` if
        the registration left the waitlist in the meantime.
        """

        return self._compare_and_set(registration, "waitlisted", "registered")

    def _compare_and_set(
        self, registration: Registration, expected: str, target: str, **values: Any
    ) -> bool:
        moved = self.repository.compare_and_set_status(
            registration.id, expected=expected, new_status=target, **values
        )
        self.session.refresh(registration)
        if moved:
            logger.debug("registration=%s %s -> %s", registration.id, expected, target)
        else:
            logger.info(
                "registration=%s changed concurrently (expected %s, found %s)",
                registration.id,
                expected,
                registration.status,
            )
        return moved
