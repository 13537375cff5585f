"""Administrative routes over registrations."""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from portal_events.routes.dependencies import get_current_actor, get_registration_service
from portal_events.routes.utils import (
    forbidden_response,
    read_json_object,
    service_error_response,
)
from portal_events.services.errors import RegistrationError, ValidationError

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/registrations")
def list_registrations():
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)
    try:
        result = get_registration_service().list_registrations(
            event_id=request.args.get("event_id"),
            status=request.args.get("status"),
            registration_type=request.args.get("registration_type"),
            search=request.args.get("search"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            sort_order=request.args.get("sort_order"),
        )
    except ValidationError as exc:
        return service_error_response(exc)
    return jsonify(result)


@admin_bp.post("/registrations/bulk")
def bulk_operation():
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)

    data, error = read_json_object()
    if error is not None:
        return error

    try:
        result = get_registration_service().bulk_admin_operation(
            data.get("registration_ids"),
            data.get("action"),
            actor=actor,
            send_notification=data.get("send_notification", True),
        )
    except ValidationError as exc:
        return service_error_response(exc)
    return jsonify(result.as_dict())


@admin_bp.patch("/registrations/<int:registration_id>")
def update_registration_notes(registration_id: int):
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)

    data, error = read_json_object()
    if error is not None:
        return error
    if "notes" not in data:
        return service_error_response(ValidationError({"notes": ["Champ requis."]}))

    try:
        registration = get_registration_service().update_admin_notes(
            registration_id, data["notes"], actor
        )
    except (ValidationError, RegistrationError) as exc:
        return service_error_response(exc, actor)
    return jsonify({"message": "Inscription mise à jour.", "registration": registration})
