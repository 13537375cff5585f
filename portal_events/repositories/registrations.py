"""Repository objects for registration persistence."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, contains_eager

from portal_events.models import (
    ACTIVE_REGISTRATION_STATUSES,
    REGISTRATION_STATUSES,
    SLOT_HOLDING_STATUSES,
    Event,
    Registration,
)


class RegistrationRepository:
    """Persistence operations for event registrations."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, registration_id: int, *, refresh: bool = False) -> Optional[Registration]:
        if refresh:
            return self.session.get(Registration, registration_id, populate_existing=True)
        return self.session.get(Registration, registration_id)

    def get_many(self, registration_ids: Iterable[int]) -> Dict[int, Registration]:
        ids = list(registration_ids)
        if not ids:
            return {}
        query = select(Registration).where(Registration.id.in_(ids))
        return {item.id: item for item in self.session.scalars(query).all()}

    def find_active(self, event_id: int, identity_key: str) -> Optional[Registration]:
        query = (
            select(Registration)
            .where(Registration.event_id == event_id)
            .where(Registration.identity_key == identity_key)
            .where(Registration.status.in_(ACTIVE_REGISTRATION_STATUSES))
            .order_by(Registration.registered_at.asc(), Registration.id.asc())
        )
        return self.session.scalars(query).first()

    def earliest_waitlisted(
        self, event_id: int, *, exclude_ids: Iterable[int] = ()
    ) -> Optional[Registration]:
        query = (
            select(Registration)
            .where(Registration.event_id == event_id)
            .where(Registration.status == "waitlisted")
            .order_by(Registration.registered_at.asc(), Registration.id.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(Registration.id.not_in(excluded))
        return self.session.scalars(query).first()

    def list_active_for_identity(self, identity_key: str) -> Sequence[Registration]:
        query = (
            select(Registration)
            .join(Registration.event)
            .options(contains_eager(Registration.event))
            .where(Registration.identity_key == identity_key)
            .where(Registration.status.in_(ACTIVE_REGISTRATION_STATUSES))
            .order_by(Event.event_date.asc(), Registration.registered_at.asc(), Registration.id.asc())
        )
        return self.session.scalars(query).all()

    def list_waitlist(self, event_id: int) -> Sequence[Registration]:
        query = (
            select(Registration)
            .where(Registration.event_id == event_id)
            .where(Registration.status == "waitlisted")
            .order_by(Registration.registered_at.asc(), Registration.id.asc())
        )
        return self.session.scalars(query).all()

    def create(self, **fields: Any) -> Registration:
        registration = Registration(**fields)
        self.session.add(registration)
        self.session.flush()
        self.session.refresh(registration)
        return registration

    def compare_and_set_status(
        self,
        registration_id: int,
        *,
        expected: str,
        new_status: str,
        **values: Any,
    ) -> bool:
        """Move a registration from ``expected`` to ``new_status`` in one statement.

        Returns ``False`` when the row no longer has the expected status.
        """

        statement = (
            update(Registration)
            .where(Registration.id == registration_id)
            .where(Registration.status == expected)
            .values(status=new_status, updated_at=func.now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        return result.rowcount == 1

    def count_slot_holders(self, event_id: int) -> int:
        query = (
            select(func.count())
            .select_from(Registration)
            .where(Registration.event_id == event_id)
            .where(Registration.status.in_(SLOT_HOLDING_STATUSES))
        )
        return int(self.session.execute(query).scalar_one())

    def search(
        self,
        *,
        event_id: Optional[int] = None,
        status: Optional[str] = None,
        registration_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
        descending: bool = True,
    ) -> Tuple[List[Registration], int]:
        filters = []
        if event_id is not None:
            filters.append(Registration.event_id == event_id)
        if status:
            filters.append(Registration.status == status)
        if registration_type:
            filters.append(Registration.registration_type == registration_type)
        if search:
            pattern = f"%{search.lower()}%"
            filters.append(
                or_(
                    func.lower(Registration.guest_name).like(pattern),
                    func.lower(Registration.guest_email).like(pattern),
                    func.lower(Registration.guest_company).like(pattern),
                )
            )

        ordering = (
            (Registration.registered_at.desc(), Registration.id.desc())
            if descending
            else (Registration.registered_at.asc(), Registration.id.asc())
        )
        query = select(Registration).where(*filters).order_by(*ordering)
        query = query.offset((page - 1) * limit).limit(limit)
        total_query = select(func.count()).select_from(Registration).where(*filters)

        items = list(self.session.scalars(query).all())
        total = int(self.session.execute(total_query).scalar_one())
        return items, total

    def status_counts(self, event_id: Optional[int] = None) -> Dict[str, int]:
        query = select(Registration.status, func.count()).group_by(Registration.status)
        if event_id is not None:
            query = query.where(Registration.event_id == event_id)
        counts = {status: 0 for status in REGISTRATION_STATUSES}
        for status, count in self.session.execute(query).all():
            counts[status] = int(count)
        return counts

    def set_admin_notes(self, registration: Registration, notes: Optional[str]) -> Registration:
        registration.admin_notes = notes
        self.session.flush()
        self.session.refresh(registration)
        return registration
