from datetime import date, timedelta


def _payload(**overrides):
    payload = {
        "title": "Hackathon IA",
        "date": (date.today() + timedelta(days=14)).isoformat(),
        "time": "18:30",
        "duration": 3,
        "location": "Lyon",
        "category": "hackathons",
        "max_attendees": 2,
    }
    payload.update(overrides)
    return payload


def create_event(client, headers, **overrides):
    response = client.post("/events", json=_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.json
    return response.json["event"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json["status"] == "ok"


def test_create_event_as_admin(client, admin_headers):
    event = create_event(client, admin_headers)
    assert event["status"] == "upcoming"
    assert event["current_attendees"] == 0
    assert event["max_attendees"] == 2
    assert event["open_slots"] == 2
    assert event["created_by"] == "admin-1"
    assert event["is_active"] is True


def test_create_event_requires_admin(client):
    assert client.post("/events", json=_payload()).status_code == 401
    response = client.post("/events", json=_payload(), headers={"X-User-Id": "u-1"})
    assert response.status_code == 403


def test_create_event_validation(client, admin_headers):
    response = client.post(
        "/events",
        json={"date": "15/08/2025", "time": "25:00", "duration": 100, "max_attendees": 0},
        headers=admin_headers,
    )
    assert response.status_code == 422
    details = response.json["error"]["details"]
    assert {"title", "date", "time", "duration", "max_attendees"} <= set(details)

    initial_status = client.post(
        "/events", json=_payload(status="full"), headers=admin_headers
    )
    assert initial_status.status_code == 422


def test_create_event_rejects_non_json(client, admin_headers):
    response = client.post("/events", data="title=x", headers=admin_headers)
    assert response.status_code == 415


def test_list_events_filters(client, admin_headers):
    workshop = create_event(client, admin_headers, title="Atelier", category="workshops")
    hackathon = create_event(client, admin_headers, title="Hack")
    removed = create_event(client, admin_headers, title="Supprimé")
    client.delete(f"/events/{removed['id']}", headers=admin_headers)

    listed = client.get("/events").json["events"]
    assert {item["id"] for item in listed} == {workshop["id"], hackathon["id"]}

    by_category = client.get("/events", query_string={"category": "workshops"}).json["events"]
    assert [item["id"] for item in by_category] == [workshop["id"]]

    assert client.get("/events", query_string={"status": "bogus"}).status_code == 422


def test_get_unknown_event(client):
    response = client.get("/events/404")
    assert response.status_code == 404
    assert response.json["error"]["message"] == "Événement introuvable."


def test_update_metadata_and_capacity(client, admin_headers):
    event = create_event(client, admin_headers)
    for user in ("u-1", "u-2"):
        client.post(
            f"/events/{event['id']}/registrations",
            json={"registration_type": "user"},
            headers={"X-User-Id": user},
        )

    too_small = client.patch(
        f"/events/{event['id']}", json={"max_attendees": 1}, headers=admin_headers
    )
    assert too_small.status_code == 422

    response = client.patch(
        f"/events/{event['id']}",
        json={"location": "Grenoble", "max_attendees": 4},
        headers=admin_headers,
    )
    assert response.status_code == 200
    updated = response.json["event"]
    assert updated["location"] == "Grenoble"
    assert updated["max_attendees"] == 4
    assert updated["current_attendees"] == 2
    assert updated["status"] == "registration-open"
    assert updated["promoted_registration_ids"] == []


def test_update_status_through_ledger(client, admin_headers):
    event = create_event(client, admin_headers, max_attendees=1)
    url = f"/events/{event['id']}"

    assert client.patch(url, json={"status": "full"}, headers=admin_headers).status_code == 422
    opened = client.patch(url, json={"status": "registration-open"}, headers=admin_headers)
    assert opened.json["event"]["status"] == "registration-open"

    client.patch(url, json={"status": "completed"}, headers=admin_headers)
    reopen = client.patch(url, json={"status": "upcoming"}, headers=admin_headers)
    assert reopen.status_code == 409

    registration = client.post(
        f"{url}/registrations",
        json={"registration_type": "user"},
        headers={"X-User-Id": "u-1"},
    )
    assert registration.status_code == 409


def test_update_requires_admin(client, admin_headers):
    event = create_event(client, admin_headers)
    response = client.patch(
        f"/events/{event['id']}", json={"title": "Piraté"}, headers={"X-User-Id": "u-1"}
    )
    assert response.status_code == 403


def test_soft_delete(client, admin_headers):
    event = create_event(client, admin_headers)
    response = client.delete(f"/events/{event['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json["event"]["is_active"] is False
    assert response.json["event"]["status"] == "cancelled"

    assert client.get(f"/events/{event['id']}").status_code == 200
    assert client.delete("/events/999", headers=admin_headers).status_code == 404


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/nowhere")
    assert response.status_code == 404
    assert response.json["error"]["message"] == "Ressource introuvable."
