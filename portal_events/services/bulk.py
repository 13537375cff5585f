"""Admin bulk operations over registrations.

A batch runs in four steps: classify every id without touching anything,
apply per-registration compare-and-set transitions, reconcile the ledger
once per affected event, then promote from the waitlist one freed slot at a
time. Items succeed or fail independently.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from portal_events.models import Registration
from portal_events.repositories.registrations import RegistrationRepository
from portal_events.services.errors import (
    AlreadyCancelledError,
    InvalidTransitionError,
    UnauthorizedActionError,
    ValidationError,
)
from portal_events.services.identity import Actor
from portal_events.services.ledger import CapacityLedger
from portal_events.services.notifications import NotificationDispatcher
from portal_events.services.state_machine import RegistrationStateMachine
from portal_events.services.waitlist import WaitlistPromoter

logger = logging.getLogger(__name__)

BULK_ACTIONS = ("cancel", "promote", "mark_attended")
MAX_BATCH_SIZE = 500


@dataclass
class ItemOutcome:
    registration_id: int
    outcome: str
    reason: Optional[str] = None
    status: Optional[str] = None
    event_id: Optional[int] = None

    @property
    def modified(self) -> bool:
        return self.outcome == "modified"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "registration_id": self.registration_id,
            "event_id": self.event_id,
            "outcome": self.outcome,
            "reason": self.reason,
            "status": self.status,
        }


@dataclass
class BulkOperationResult:
    action: str
    outcomes: List[ItemOutcome] = field(default_factory=list)
    per_event_promotions: Dict[int, List[int]] = field(default_factory=dict)

    @property
    def modified_count(self) -> int:
        return sum(1 for item in self.outcomes if item.modified)

    @property
    def failed_count(self) -> int:
        return len(self.outcomes) - self.modified_count

    def as_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "modified_count": self.modified_count,
            "failed_count": self.failed_count,
            "per_event_promotions": {
                str(event_id): ids for event_id, ids in self.per_event_promotions.items()
            },
            "outcomes": [item.as_dict() for item in self.outcomes],
        }


def normalize_registration_ids(raw: Any) -> List[int]:
    if isinstance(raw, tuple):
        raw = list(raw)
    if not isinstance(raw, list) or not raw:
        raise ValidationError({"registration_ids": ["Liste d'identifiants requise."]})
    if len(raw) > MAX_BATCH_SIZE:
        raise ValidationError(
            {"registration_ids": [f"{MAX_BATCH_SIZE} inscriptions maximum par opération."]}
        )
    ids: "OrderedDict[int, None]" = OrderedDict()
    for value in raw:
        if isinstance(value, bool):
            raise ValidationError({"registration_ids": ["Identifiant invalide."]})
        try:
            ids[int(value)] = None
        except (TypeError, ValueError):
            raise ValidationError({"registration_ids": ["Identifiant invalide."]})
    return list(ids)


class BulkOperationCoordinator:
    def __init__(self, session: Session, *, notifier: Optional[NotificationDispatcher] = None) -> None:
        self.session = session
        self.repository = RegistrationRepository(session)
        self.ledger = CapacityLedger(session)
        self.state_machine = RegistrationStateMachine(session)
        self.notifier = notifier or NotificationDispatcher(None)
        self.promoter = WaitlistPromoter(
            session,
            ledger=self.ledger,
            state_machine=self.state_machine,
            notifier=self.notifier,
        )

    def apply(
        self,
        registration_ids: Iterable[Any],
        action: str,
        *,
        actor: Optional[Actor] = None,
    ) -> BulkOperationResult:
        if action not in BULK_ACTIONS:
            raise ValidationError({"action": [f"Action inconnue: {action}."]})
        ids = normalize_registration_ids(registration_ids)
        actor = actor or Actor.system()

        result = BulkOperationResult(action=action)
        targets = self._classify(ids, action, actor, result)

        if action == "cancel":
            self._cancel(targets, actor, result)
        elif action == "promote":
            self._promote(targets, result)
        else:
            self._mark_attended(targets, actor, result)

        result.outcomes.sort(key=lambda item: ids.index(item.registration_id))
        logger.info(
            "bulk %s: %s modified, %s failed, promotions=%s",
            action,
            result.modified_count,
            result.failed_count,
            result.per_event_promotions,
        )
        return result

    def _classify(
        self,
        ids: List[int],
        action: str,
        actor: Actor,
        result: BulkOperationResult,
    ) -> List[Registration]:
        """Split ids into actionable registrations and immediate failures."""

        found = self.repository.get_many(ids)
        targets: List[Registration] = []
        for registration_id in ids:
            registration = found.get(registration_id)
            if registration is None:
                result.outcomes.append(ItemOutcome(registration_id, "failed", "not_found"))
                continue
            reason = self._precheck(registration, action, actor)
            if reason is not None:
                result.outcomes.append(self._failure(registration, reason))
                continue
            targets.append(registration)
        return targets

    def _precheck(self, registration: Registration, action: str, actor: Actor) -> Optional[str]:
        if action == "promote":
            return None if registration.status == "waitlisted" else "invalid_transition"
        target = "cancelled" if action == "cancel" else "attended"
        try:
            self.state_machine.check(registration, target, actor)
        except AlreadyCancelledError:
            return "already_cancelled"
        except InvalidTransitionError:
            return "invalid_transition"
        except UnauthorizedActionError:
            return "unauthorized"
        return None

    def _cancel(
        self, targets: List[Registration], actor: Actor, result: BulkOperationResult
    ) -> None:
        released: Dict[int, int] = {}
        cancelled: List[Registration] = []
        try:
            # Rows are locked in id order so concurrent batches cannot deadlock.
            for registration in sorted(targets, key=lambda item: item.id):
                try:
                    previous = self.state_machine.cancel(registration, actor)
                except AlreadyCancelledError:
                    result.outcomes.append(self._failure(registration, "already_cancelled"))
                    continue
                except InvalidTransitionError:
                    result.outcomes.append(self._failure(registration, "invalid_transition"))
                    continue
                result.outcomes.append(self._success(registration))
                cancelled.append(registration)
                if previous == "registered":
                    released[registration.event_id] = released.get(registration.event_id, 0) + 1

            for event_id in sorted(released):
                self.ledger.release(event_id, released[event_id])
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        for registration in cancelled:
            self.notifier.registration_cancelled(registration)

        for event_id in sorted(released):
            promoted = self.promoter.promote_for_freed_slots(event_id, released[event_id])
            result.per_event_promotions[event_id] = [item.id for item in promoted]

    def _promote(self, targets: List[Registration], result: BulkOperationResult) -> None:
        for registration in targets:
            try:
                outcome = self.promoter.promote_registration(registration)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
            if not outcome.promoted:
                result.outcomes.append(self._failure(registration, outcome.reason))
                continue
            result.outcomes.append(self._success(registration))
            result.per_event_promotions.setdefault(registration.event_id, []).append(
                registration.id
            )
            self.notifier.registration_promoted(registration)

    def _mark_attended(
        self, targets: List[Registration], actor: Actor, result: BulkOperationResult
    ) -> None:
        try:
            for registration in sorted(targets, key=lambda item: item.id):
                try:
                    self.state_machine.mark_attended(registration, actor)
                except InvalidTransitionError:
                    result.outcomes.append(self._failure(registration, "invalid_transition"))
                    continue
                result.outcomes.append(self._success(registration))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @staticmethod
    def _success(registration: Registration) -> ItemOutcome:
        return ItemOutcome(
            registration.id,
            "modified",
            status=registration.status,
            event_id=registration.event_id,
        )

    @staticmethod
    def _failure(registration: Registration, reason: str) -> ItemOutcome:
        return ItemOutcome(
            registration.id,
            "failed",
            reason,
            status=registration.status,
            event_id=registration.event_id,
        )
