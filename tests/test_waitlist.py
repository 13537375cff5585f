from __future__ import annotations

from datetime import timedelta

from sqlalchemy import update

from portal_events.config import get_config
from portal_events.database import get_session
from portal_events.main import create_app
from portal_events.models import Event, Registration, utcnow
from portal_events.repositories.registrations import RegistrationRepository
from portal_events.services.admission import AdmissionController
from portal_events.services.identity import Actor, Subject, user_identity_key
from portal_events.services.ledger import CapacityLedger
from portal_events.services.registrations import RegistrationScheduler, RegistrationService
from portal_events.services.state_machine import RegistrationStateMachine
from portal_events.services.waitlist import WaitlistPromoter


def _admit(event_id, user_id):
    session = get_session()
    try:
        return AdmissionController(session).admit(event_id, Subject.for_user(user_id)).id
    finally:
        session.close()


def _add_stranded_waitlister(event_id, user_id):
    """Insert a waitlisted entry while a slot is free, as left by a lost race."""

    session = get_session()
    try:
        registration = RegistrationRepository(session).create(
            event_id=event_id,
            registration_type="user",
            user_id=user_id,
            identity_key=user_identity_key(user_id),
            status="waitlisted",
            registered_at=utcnow(),
        )
        session.commit()
        return registration.id
    finally:
        session.close()


def _status(registration_id):
    session = get_session()
    try:
        return session.get(Registration, registration_id).status
    finally:
        session.close()


def test_promotion_follows_registration_time_not_id(make_event):
    event_id = make_event(max_attendees=1)
    holder = _admit(event_id, "holder")
    late = _admit(event_id, "w-late")
    early = _admit(event_id, "w-early")

    session = get_session()
    try:
        session.execute(
            update(Registration)
            .where(Registration.id == early)
            .values(registered_at=utcnow() - timedelta(hours=1))
        )
        session.commit()

        service = RegistrationService(session)
        result = service.cancel(holder, Actor(user_id="holder"))
    finally:
        session.close()

    assert [item["id"] for item in result["promoted"]] == [early]
    assert _status(early) == "registered"
    assert _status(late) == "waitlisted"


def test_promote_next_keeps_entry_waitlisted_when_no_slot(db_session, make_event):
    event_id = make_event(max_attendees=1)
    _admit(event_id, "holder")
    waitlisted = _admit(event_id, "w-1")

    promoted = WaitlistPromoter(db_session).promote_next(event_id)
    db_session.commit()

    assert promoted is None
    assert _status(waitlisted) == "waitlisted"
    assert db_session.get(Event, event_id, populate_existing=True).current_attendees == 1


def test_capacity_increase_promotes_in_order(client, make_event, admin_headers):
    event_id = make_event(max_attendees=1)
    _admit(event_id, "holder")
    first = _admit(event_id, "w-1")
    second = _admit(event_id, "w-2")
    third = _admit(event_id, "w-3")

    response = client.patch(
        f"/events/{event_id}", json={"max_attendees": 3}, headers=admin_headers
    )
    assert response.status_code == 200
    event = response.json["event"]
    assert event["promoted_registration_ids"] == [first, second]
    assert event["current_attendees"] == 3
    assert event["status"] == "full"
    assert _status(third) == "waitlisted"


def test_waitlist_view_lists_positions(client, make_event, admin_headers):
    event_id = make_event(max_attendees=1)
    _admit(event_id, "holder")
    first = _admit(event_id, "w-1")
    second = _admit(event_id, "w-2")

    response = client.get(f"/events/{event_id}/waitlist", headers=admin_headers)
    assert response.status_code == 200
    waitlist = response.json["waitlist"]
    assert [(item["id"], item["position"]) for item in waitlist] == [(first, 1), (second, 2)]

    assert client.get(f"/events/{event_id}/waitlist", headers={"X-User-Id": "w-1"}).status_code == 403
    assert client.get("/events/999/waitlist", headers=admin_headers).status_code == 404


def test_manual_promotion_fills_stranded_slot(client, make_event, admin_headers, sender):
    event_id = make_event(max_attendees=2)
    _admit(event_id, "holder")
    stranded = _add_stranded_waitlister(event_id, "w-1")

    response = client.post(f"/events/{event_id}/waitlist/promote", headers=admin_headers)
    assert response.status_code == 200
    assert [item["id"] for item in response.json["promoted"]] == [stranded]
    assert sender.templates()[-1] == "waitlist_promoted"

    again = client.post(f"/events/{event_id}/waitlist/promote", headers=admin_headers)
    assert again.json["promoted"] == []


def test_sweep_promotes_across_events(make_event, notifier, sender):
    open_event = make_event(max_attendees=2)
    full_event = make_event(max_attendees=1)
    _admit(open_event, "holder")
    stranded = _add_stranded_waitlister(open_event, "w-1")
    _admit(full_event, "holder")
    _admit(full_event, "w-2")

    scheduler = RegistrationScheduler(interval_minutes=5, notifier=notifier)
    assert scheduler.sweep_waitlists() == {open_event: [stranded]}
    assert scheduler.sweep_waitlists() == {}
    assert sender.templates() == ["waitlist_promoted"]


def test_promote_registration_reports_full_event(db_session, make_event):
    event_id = make_event(max_attendees=1)
    _admit(event_id, "holder")
    waitlisted_id = _admit(event_id, "w-1")

    registration = db_session.get(Registration, waitlisted_id)
    outcome = WaitlistPromoter(db_session).promote_registration(registration)
    db_session.commit()

    assert not outcome.promoted
    assert outcome.reason == "event_full"
    assert registration.status == "waitlisted"


def _cancel_elsewhere(registration_id):
    session = get_session()
    try:
        registration = session.get(Registration, registration_id)
        RegistrationStateMachine(session).cancel(registration, Actor.system())
        session.commit()
    finally:
        session.close()


def test_slot_goes_to_next_entry_when_head_leaves(db_session, make_event, monkeypatch):
    event_id = make_event(max_attendees=1)
    head = _add_stranded_waitlister(event_id, "w-1")
    second = _add_stranded_waitlister(event_id, "w-2")

    promoter = WaitlistPromoter(db_session)
    take_slot = promoter.ledger.try_admit

    def head_cancels_first(target_event_id):
        _cancel_elsewhere(head)
        return take_slot(target_event_id)

    monkeypatch.setattr(promoter.ledger, "try_admit", head_cancels_first)
    promoted = promoter.promote_next(event_id)
    db_session.commit()

    assert promoted is not None and promoted.id == second
    assert _status(head) == "cancelled"
    assert _status(second) == "registered"
    assert CapacityLedger(db_session).snapshot(event_id).current_attendees == 1


def test_slot_is_released_when_no_entry_is_left(db_session, make_event, monkeypatch):
    event_id = make_event(max_attendees=1)
    only = _add_stranded_waitlister(event_id, "w-1")

    promoter = WaitlistPromoter(db_session)
    take_slot = promoter.ledger.try_admit

    def entry_cancels_first(target_event_id):
        _cancel_elsewhere(only)
        return take_slot(target_event_id)

    monkeypatch.setattr(promoter.ledger, "try_admit", entry_cancels_first)
    assert promoter.promote_next(event_id) is None
    db_session.commit()

    snapshot = CapacityLedger(db_session).snapshot(event_id)
    assert snapshot.current_attendees == 0
    assert snapshot.open_slots == 1


def test_admin_promotion_gives_slot_back_when_entry_left(db_session, make_event, monkeypatch):
    event_id = make_event(max_attendees=1)
    waitlisted_id = _add_stranded_waitlister(event_id, "w-1")
    registration = db_session.get(Registration, waitlisted_id)

    promoter = WaitlistPromoter(db_session)
    take_slot = promoter.ledger.try_admit

    def entry_cancels_first(target_event_id):
        _cancel_elsewhere(waitlisted_id)
        return take_slot(target_event_id)

    monkeypatch.setattr(promoter.ledger, "try_admit", entry_cancels_first)
    outcome = promoter.promote_registration(registration)
    db_session.commit()

    assert not outcome.promoted
    assert outcome.reason == "invalid_transition"
    assert registration.status == "cancelled"
    snapshot = CapacityLedger(db_session).snapshot(event_id)
    assert snapshot.current_attendees == 0
    assert snapshot.open_slots == 1


def test_sweep_is_enabled_unless_turned_off(monkeypatch):
    monkeypatch.delenv("WAITLIST_SWEEP_ENABLED", raising=False)
    get_config.cache_clear()
    try:
        assert get_config().waitlist_sweep_enabled is True
        monkeypatch.setenv("WAITLIST_SWEEP_ENABLED", "false")
        get_config.cache_clear()
        assert get_config().waitlist_sweep_enabled is False
    finally:
        get_config.cache_clear()


def test_app_starts_sweep_outside_tests(notifier):
    app = create_app({"NOTIFICATION_DISPATCHER": notifier})
    scheduler = app.extensions["waitlist_scheduler"]
    try:
        assert scheduler._scheduler.get_job("waitlist-sweep") is not None
    finally:
        scheduler.shutdown()

    quiet = create_app({"NOTIFICATION_DISPATCHER": notifier, "WAITLIST_SWEEP_ENABLED": False})
    assert "waitlist_scheduler" not in quiet.extensions
