"""FIFO promotion of waitlisted registrations into freed slots."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from portal_events.models import Registration
from portal_events.repositories.registrations import RegistrationRepository
from portal_events.services.ledger import CapacityLedger
from portal_events.services.notifications import NotificationDispatcher
from portal_events.services.state_machine import RegistrationStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromotionOutcome:
    promoted: bool
    reason: str


class WaitlistPromoter:
    """Moves the earliest waitlisted registration into a slot, one slot at a time.

    The waitlist is never materialised: every promotion re-reads the
    earliest ``waitlisted`` row immediately before taking a slot, so
    concurrent promoters pick different candidates (or none).
    """

    def __init__(
        self,
        session: Session,
        *,
        ledger: Optional[CapacityLedger] = None,
        state_machine: Optional[RegistrationStateMachine] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.session = session
        self.repository = RegistrationRepository(session)
        self.ledger = ledger or CapacityLedger(session)
        self.state_machine = state_machine or RegistrationStateMachine(session)
        self.notifier = notifier or NotificationDispatcher(None)

    def promote_next(self, event_id: int) -> Optional[Registration]:
        """Promote the head of the waitlist if a slot can be taken.

        Does not commit; the slot and the status change belong to the
        caller's transaction.
        """

        candidate = self.repository.earliest_waitlisted(event_id)
        if candidate is None:
            return None

        admit = self.ledger.try_admit(event_id)
        if not admit.admitted:
            logger.debug(
                "no slot for waitlisted registration=%s on event=%s (%s)",
                candidate.id,
                event_id,
                admit.reason,
            )
            return None

        skipped: Set[int] = set()
        while candidate is not None:
            if self.state_machine.promote(candidate):
                logger.info(
                    "promoted registration=%s from waitlist on event=%s",
                    candidate.id,
                    event_id,
                )
                return candidate
            # The head left the waitlist after we read it; the slot is ours,
            # so hand it to whoever is first now.
            skipped.add(candidate.id)
            candidate = self.repository.earliest_waitlisted(event_id, exclude_ids=skipped)

        self.ledger.release(event_id)
        return None

    def promote_for_freed_slots(self, event_id: int, slots: int) -> List[Registration]:
        """Run at most ``slots`` promotions, each committed on its own."""

        promoted: List[Registration] = []
        for _ in range(max(slots, 0)):
            try:
                registration = self.promote_next(event_id)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
            if registration is None:
                break
            promoted.append(registration)
            self.notifier.registration_promoted(registration)
        return promoted

    def fill_open_slots(self, event_id: int) -> List[Registration]:
        """Promote until the event has no open slot or no one is waiting."""

        open_slots = self.ledger.snapshot(event_id).open_slots
        return self.promote_for_freed_slots(event_id, open_slots)

    def promote_registration(self, registration: Registration) -> PromotionOutcome:
        """Admin override: promote a specific entry regardless of its position.

        Still has to win a slot from the ledger. Does not commit.
        """

        if registration.status != "waitlisted":
            return PromotionOutcome(False, "invalid_transition")

        admit = self.ledger.try_admit(registration.event_id)
        if not admit.admitted:
            reason = "event_full" if admit.reason == "full" else "event_unavailable"
            return PromotionOutcome(False, reason)

        if self.state_machine.promote(registration):
            logger.info(
                "admin promoted registration=%s on event=%s",
                registration.id,
                registration.event_id,
            )
            return PromotionOutcome(True, "promoted")

        self.ledger.release(registration.event_id)
        return PromotionOutcome(False, "invalid_transition")
