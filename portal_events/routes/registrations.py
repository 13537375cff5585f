"""Routes for registering to events, cancelling and the waitlist."""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from portal_events.routes.dependencies import get_current_actor, get_registration_service
from portal_events.routes.utils import (
    error_response,
    forbidden_response,
    read_json_object,
    service_error_response,
)
from portal_events.services.errors import RegistrationError, ValidationError
from portal_events.services.identity import (
    Subject,
    guest_identity_key,
    user_identity_key,
)

registrations_bp = Blueprint("registrations", __name__)


@registrations_bp.post("/events/<int:event_id>/registrations")
def register(event_id: int):
    data, error = read_json_object()
    if error is not None:
        return error

    actor = get_current_actor()
    registration_type = data.get("registration_type") or (
        "guest" if "guest_info" in data else "user"
    )
    try:
        if registration_type == "user":
            if not actor.is_authenticated:
                return error_response(401, "Authentification requise pour une inscription membre.")
            subject = Subject.for_user(actor.user_id)
        elif registration_type == "guest":
            subject = Subject.for_guest(data.get("guest_info"))
        else:
            raise ValidationError(
                {"registration_type": ["Doit valoir 'user' ou 'guest'."]}
            )
        result = get_registration_service().register(event_id, subject)
    except (ValidationError, RegistrationError) as exc:
        return service_error_response(exc, actor)

    if result["status"] == "registered":
        payload = {"message": "Inscription confirmée.", **result}
        return jsonify(payload), 201
    payload = {"message": "Événement complet: vous êtes sur liste d'attente.", **result}
    return jsonify(payload), 202


@registrations_bp.get("/events/<int:event_id>/registration-status")
def registration_status(event_id: int):
    actor = get_current_actor()
    email = request.args.get("email")
    if actor.is_authenticated:
        identity_key = user_identity_key(actor.user_id)
    elif isinstance(email, str) and email.strip():
        identity_key = guest_identity_key(email)
    else:
        return error_response(401, "Authentification ou e-mail requis.")

    status = get_registration_service().is_registered(event_id, identity_key)
    return jsonify({"event_id": event_id, "status": status})


@registrations_bp.get("/events/<int:event_id>/waitlist")
def list_waitlist(event_id: int):
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)
    try:
        waitlist = get_registration_service().list_waitlist(event_id)
    except RegistrationError as exc:
        return service_error_response(exc, actor)
    return jsonify({"event_id": event_id, "waitlist": waitlist})


@registrations_bp.post("/events/<int:event_id>/waitlist/promote")
def promote_waitlist(event_id: int):
    actor = get_current_actor()
    if not actor.is_admin:
        return forbidden_response(actor)
    try:
        promoted = get_registration_service().trigger_waitlist_promotion(event_id)
    except RegistrationError as exc:
        return service_error_response(exc, actor)
    return jsonify({"event_id": event_id, "promoted": promoted})


@registrations_bp.get("/registrations")
def list_my_registrations():
    actor = get_current_actor()
    try:
        registrations = get_registration_service().list_my_registrations(actor)
    except RegistrationError as exc:
        return service_error_response(exc, actor)
    return jsonify({"registrations": registrations})


@registrations_bp.get("/registrations/<int:registration_id>")
def get_registration(registration_id: int):
    actor = get_current_actor(request.args.get("email"))
    try:
        registration = get_registration_service().get_registration(registration_id, actor)
    except RegistrationError as exc:
        return service_error_response(exc, actor)
    return jsonify({"registration": registration})


@registrations_bp.post("/registrations/<int:registration_id>/cancel")
def cancel_registration(registration_id: int):
    data = request.get_json(silent=True) if request.is_json else None
    email = data.get("email") if isinstance(data, dict) else None
    actor = get_current_actor(email or request.args.get("email"))
    try:
        result = get_registration_service().cancel(registration_id, actor)
    except RegistrationError as exc:
        return service_error_response(exc, actor)
    return jsonify({"message": "Inscription annulée.", **result})
