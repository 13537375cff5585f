from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

from portal_events.database import get_session
from portal_events.models import Event
from portal_events.repositories.registrations import RegistrationRepository
from portal_events.services.identity import Actor, Subject
from portal_events.services.registrations import RegistrationService


def user_headers(user_id):
    return {"X-User-Id": user_id}


def register_user(client, event_id, user_id):
    return client.post(
        f"/events/{event_id}/registrations",
        json={"registration_type": "user"},
        headers=user_headers(user_id),
    )


def register_guest(client, event_id, email, name="Invité"):
    return client.post(
        f"/events/{event_id}/registrations",
        json={
            "registration_type": "guest",
            "guest_info": {
                "full_name": name,
                "email": email,
                "phone_number": "+33 1 23 45 67 89",
                "company": "Acme",
            },
        },
    )


def event_counters(client, event_id):
    event = client.get(f"/events/{event_id}").json["event"]
    return event["current_attendees"], event["status"]


def test_registration_then_waitlist_when_full(client, make_event, sender):
    event_id = make_event(max_attendees=1)

    first = register_user(client, event_id, "u-1")
    assert first.status_code == 201
    assert first.json["status"] == "registered"
    assert first.json["registration"]["user_id"] == "u-1"

    second = register_user(client, event_id, "u-2")
    assert second.status_code == 202
    assert second.json["status"] == "waitlisted"

    assert event_counters(client, event_id) == (1, "full")
    assert sender.templates() == ["registration_confirmed", "waitlist_confirmation"]


def test_user_registration_requires_session(client, make_event):
    event_id = make_event()
    response = client.post(f"/events/{event_id}/registrations", json={"registration_type": "user"})
    assert response.status_code == 401
    assert response.json["error"]["code"] == 401


def test_guest_registration_validates_payload(client, make_event):
    event_id = make_event()
    response = client.post(
        f"/events/{event_id}/registrations",
        json={"guest_info": {"full_name": "X" * 101, "email": "not-an-email"}},
    )
    assert response.status_code == 422
    details = response.json["error"]["details"]
    assert set(details) == {"full_name", "email", "phone_number"}
    assert event_counters(client, event_id) == (0, "upcoming")


def test_unknown_registration_type(client, make_event):
    event_id = make_event()
    response = client.post(
        f"/events/{event_id}/registrations", json={"registration_type": "vip"}
    )
    assert response.status_code == 422
    assert "registration_type" in response.json["error"]["details"]


def test_duplicate_guest_email_is_case_insensitive(client, make_event):
    event_id = make_event(max_attendees=5)
    assert register_guest(client, event_id, "ana@example.com").status_code == 201

    duplicate = register_guest(client, event_id, "  ANA@Example.com")
    assert duplicate.status_code == 409
    assert event_counters(client, event_id)[0] == 1


def test_duplicate_user_while_waitlisted(client, make_event):
    event_id = make_event(max_attendees=1)
    register_user(client, event_id, "u-1")
    assert register_user(client, event_id, "u-2").status_code == 202
    assert register_user(client, event_id, "u-2").status_code == 409


def test_registration_on_unknown_or_closed_event(client, make_event, admin_headers):
    assert register_user(client, 4242, "u-1").status_code == 404

    event_id = make_event()
    client.delete(f"/events/{event_id}", headers=admin_headers)
    response = register_user(client, event_id, "u-1")
    assert response.status_code == 409
    assert event_counters(client, event_id) == (0, "cancelled")


def test_cancel_promotes_first_waitlisted(client, make_event, sender):
    event_id = make_event(max_attendees=1)
    first = register_user(client, event_id, "u-a").json["registration"]
    second = register_user(client, event_id, "u-b").json["registration"]

    response = client.post(
        f"/registrations/{first['id']}/cancel", headers=user_headers("u-a")
    )
    assert response.status_code == 200
    assert response.json["status"] == "cancelled"
    assert [item["id"] for item in response.json["promoted"]] == [second["id"]]
    assert response.json["promoted"][0]["status"] == "registered"

    assert event_counters(client, event_id) == (1, "full")
    assert sender.templates()[-2:] == ["registration_cancelled", "waitlist_promoted"]


def test_cancelling_waitlisted_entry_keeps_counter(client, make_event):
    event_id = make_event(max_attendees=1)
    register_user(client, event_id, "u-a")
    waitlisted = register_user(client, event_id, "u-b").json["registration"]

    response = client.post(
        f"/registrations/{waitlisted['id']}/cancel", headers=user_headers("u-b")
    )
    assert response.status_code == 200
    assert response.json["promoted"] == []
    assert event_counters(client, event_id) == (1, "full")


def test_cancel_twice_conflicts_without_touching_counter(client, make_event):
    event_id = make_event(max_attendees=2)
    registration = register_user(client, event_id, "u-a").json["registration"]
    register_user(client, event_id, "u-b")

    url = f"/registrations/{registration['id']}/cancel"
    assert client.post(url, headers=user_headers("u-a")).status_code == 200
    again = client.post(url, headers=user_headers("u-a"))
    assert again.status_code == 409
    assert event_counters(client, event_id)[0] == 1


def test_cancel_requires_owner_or_admin(client, make_event, admin_headers):
    event_id = make_event()
    registration = register_user(client, event_id, "u-a").json["registration"]
    url = f"/registrations/{registration['id']}/cancel"

    assert client.post(url).status_code == 401
    assert client.post(url, headers=user_headers("u-b")).status_code == 403
    assert client.post(url, headers=admin_headers).status_code == 200


def test_cancel_unknown_registration(client):
    response = client.post("/registrations/999/cancel", headers=user_headers("u-a"))
    assert response.status_code == 404


def test_guest_cancels_with_registered_email(client, make_event):
    event_id = make_event()
    registration = register_guest(client, event_id, "guest@example.com").json["registration"]
    url = f"/registrations/{registration['id']}/cancel"

    assert client.post(url, json={"email": "other@example.com"}).status_code == 403
    response = client.post(url, json={"email": "GUEST@example.com"})
    assert response.status_code == 200
    assert response.json["registration"]["cancelled_at"] is not None


def test_register_again_after_cancellation(client, make_event):
    event_id = make_event(max_attendees=1)
    registration = register_user(client, event_id, "u-a").json["registration"]
    client.post(f"/registrations/{registration['id']}/cancel", headers=user_headers("u-a"))

    again = register_user(client, event_id, "u-a")
    assert again.status_code == 201
    assert again.json["registration"]["id"] != registration["id"]


def test_registration_status_lookup(client, make_event):
    event_id = make_event(max_attendees=1)
    register_user(client, event_id, "u-a")
    register_guest(client, event_id, "late@example.com")

    url = f"/events/{event_id}/registration-status"
    assert client.get(url, headers=user_headers("u-a")).json["status"] == "registered"
    assert client.get(url, query_string={"email": "Late@example.com"}).json["status"] == "waitlisted"
    assert client.get(url, headers=user_headers("u-z")).json["status"] == "none"
    assert client.get(url).status_code == 401


def test_registration_detail_visibility(client, make_event, admin_headers):
    event_id = make_event()
    registration = register_user(client, event_id, "u-a").json["registration"]
    url = f"/registrations/{registration['id']}"

    owner_view = client.get(url, headers=user_headers("u-a"))
    assert owner_view.status_code == 200
    assert owner_view.json["registration"]["event"]["id"] == event_id
    assert client.get(url, headers=admin_headers).status_code == 200
    assert client.get(url, headers=user_headers("u-b")).status_code == 403


def test_counter_matches_slot_holders_after_mixed_flow(client, make_event, admin_headers):
    event_id = make_event(max_attendees=2)
    ids = [register_user(client, event_id, f"u-{index}").json["registration"]["id"] for index in range(5)]
    client.post(f"/registrations/{ids[0]}/cancel", headers=user_headers("u-0"))
    client.post(f"/registrations/{ids[3]}/cancel", headers=user_headers("u-3"))
    client.post(
        "/admin/registrations/bulk",
        json={"action": "mark_attended", "registration_ids": [ids[1]]},
        headers=admin_headers,
    )

    session = get_session()
    try:
        holders = RegistrationRepository(session).count_slot_holders(event_id)
    finally:
        session.close()
    assert event_counters(client, event_id)[0] == holders == 2


def test_member_overview_lists_active_registrations(client, make_event):
    later = make_event(max_attendees=1, event_date=date.today() + timedelta(days=30))
    sooner = make_event(max_attendees=5, event_date=date.today() + timedelta(days=3))
    dropped = make_event(max_attendees=5)
    register_user(client, later, "u-other")
    register_user(client, later, "u-a")
    register_user(client, sooner, "u-a")
    cancelled = register_user(client, dropped, "u-a").json["registration"]
    client.post(f"/registrations/{cancelled['id']}/cancel", headers=user_headers("u-a"))

    response = client.get("/registrations", headers=user_headers("u-a"))
    assert response.status_code == 200
    items = response.json["registrations"]
    assert [(item["event"]["id"], item["status"]) for item in items] == [
        (sooner, "registered"),
        (later, "waitlisted"),
    ]
    assert all(item["user_id"] == "u-a" for item in items)
    assert items[0]["event"]["title"]

    assert client.get("/registrations").status_code == 401


def _contend(count, work):
    barrier = threading.Barrier(count)

    def run(index):
        barrier.wait()
        return work(index)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return [future.result() for future in [pool.submit(run, index) for index in range(count)]]


def _register_in_own_session(event_id, user_id):
    session = get_session()
    try:
        return RegistrationService(session).register(event_id, Subject.for_user(user_id))["status"]
    finally:
        session.close()


def _ledger_state(event_id):
    session = get_session()
    try:
        counter = session.get(Event, event_id).current_attendees
        return counter, RegistrationRepository(session).count_slot_holders(event_id)
    finally:
        session.close()


def test_parallel_requests_for_last_slot(make_event):
    event_id = make_event(max_attendees=1)

    statuses = _contend(10, lambda index: _register_in_own_session(event_id, f"racer-{index}"))

    assert statuses.count("registered") == 1
    assert statuses.count("waitlisted") == 9
    assert _ledger_state(event_id) == (1, 1)


def test_parallel_cancellations_and_registrations_keep_counter_exact(make_event):
    event_id = make_event(max_attendees=3)
    holders = [_register_in_own_session(event_id, f"holder-{index}") for index in range(3)]
    assert holders == ["registered"] * 3

    session = get_session()
    try:
        holder_ids = [
            item.id for item in RegistrationRepository(session).search(event_id=event_id)[0]
        ]
    finally:
        session.close()

    def work(index):
        if index < 3:
            own = get_session()
            try:
                return RegistrationService(own).cancel(holder_ids[index], Actor.system())["status"]
            finally:
                own.close()
        return _register_in_own_session(event_id, f"newcomer-{index}")

    results = _contend(7, work)

    assert results[:3] == ["cancelled"] * 3
    counter, holders_count = _ledger_state(event_id)
    assert counter == holders_count
    assert counter <= 3
