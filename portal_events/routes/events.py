"""Routes for managing events and their capacity."""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from portal_events.routes.dependencies import get_current_actor, get_event_service
from portal_events.routes.utils import (
    forbidden_response,
    read_json_object,
    service_error_response,
)
from portal_events.services.errors import (
    EventNotFoundError,
    InvalidTransitionError,
    ValidationError,
)

events_bp = Blueprint("events", __name__)


@events_bp.get("/events")
def list_events():
    service = get_event_service()
    try:
        events = service.list_events(
            status=request.args.get("status"),
            category=request.args.get("category"),
            limit=request.args.get("limit"),
        )
    except ValidationError as exc:
        return service_error_response(exc)
    return jsonify({"events": events})


@events_bp.post("/events")
def create_event():
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)

    data, error = read_json_object()
    if error is not None:
        return error

    service = get_event_service()
    try:
        created_event = service.create_event(data, created_by=actor.user_id)
    except ValidationError as exc:
        return service_error_response(exc)

    payload = {
        "message": "Event created",
        "event_id": created_event["id"],
        "event": created_event,
    }
    return jsonify(payload), 201


@events_bp.get("/events/<int:event_id>")
def get_event(event_id: int):
    service = get_event_service()
    try:
        event = service.get_event(event_id)
    except EventNotFoundError as exc:
        return service_error_response(exc)
    return jsonify({"event": event})


@events_bp.patch("/events/<int:event_id>")
def update_event(event_id: int):
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)

    data, error = read_json_object()
    if error is not None:
        return error

    service = get_event_service()
    try:
        updated_event = service.update_event(event_id, data)
    except (EventNotFoundError, ValidationError, InvalidTransitionError) as exc:
        return service_error_response(exc)

    return jsonify({"message": "Event updated", "event": updated_event})


@events_bp.delete("/events/<int:event_id>")
def delete_event(event_id: int):
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)

    service = get_event_service()
    try:
        event = service.deactivate_event(event_id)
    except EventNotFoundError as exc:
        return service_error_response(exc)
    return jsonify({"message": "Event deactivated", "event": event})
