"""Shared route utilities."""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from flask import jsonify, request

from portal_events.services.errors import (
    AlreadyCancelledError,
    DuplicateRegistrationError,
    EventNotFoundError,
    EventUnavailableError,
    InvalidTransitionError,
    RegistrationNotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from portal_events.services.identity import Actor


def error_response(status: int, message: str, details: Optional[Any] = None):
    payload = {"error": {"code": status, "message": message}}
    if details is not None:
        payload["error"]["details"] = details
    return jsonify(payload), status


def read_json_object() -> Tuple[Optional[Dict[str, Any]], Optional[Any]]:
    """Return ``(payload, None)`` or ``(None, error_response)``."""

    if not request.is_json:
        return None, error_response(415, "Content-Type 'application/json' requis.")
    data = request.get_json(silent=True)
    if data is None:
        return None, error_response(400, "JSON invalide ou non parsable.")
    if not isinstance(data, dict):
        return None, error_response(
            400,
            "Payload JSON invalide: un objet JSON (type dict) est requis.",
        )
    return data, None


def forbidden_response(actor: Actor):
    if not actor.is_authenticated and not actor.email:
        return error_response(401, "Authentification requise.")
    return error_response(403, "Action non autorisée.")


def service_error_response(exc: Exception, actor: Optional[Actor] = None):
    """Translate a service exception into the JSON error envelope."""

    if isinstance(exc, ValidationError):
        return error_response(422, exc.message, exc.errors)
    if isinstance(exc, EventNotFoundError):
        return error_response(404, "Événement introuvable.")
    if isinstance(exc, RegistrationNotFoundError):
        return error_response(404, "Inscription introuvable.")
    if isinstance(exc, UnauthorizedActionError):
        return forbidden_response(actor or Actor())
    if isinstance(exc, AlreadyCancelledError):
        return error_response(409, "Cette inscription est déjà annulée.")
    if isinstance(exc, InvalidTransitionError):
        return error_response(
            409,
            str(exc),
            {"current_status": exc.current, "target_status": exc.target},
        )
    if isinstance(exc, (DuplicateRegistrationError, EventUnavailableError)):
        return error_response(409, str(exc))
    raise exc
