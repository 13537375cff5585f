"""Utilities for accessing services within Flask request context."""
from __future__ import annotations

from typing import Callable, Dict, Optional, Type, TypeVar

from flask import current_app, g, request

from portal_events.config import get_config
from portal_events.database import get_session
from portal_events.integrations import NotificationServiceClient
from portal_events.services.events import EventService
from portal_events.services.identity import Actor
from portal_events.services.notifications import NotificationDispatcher
from portal_events.services.registrations import RegistrationService

T = TypeVar("T")

SERVICE_FACTORIES: Dict[str, Callable[..., object]] = {
    "event_service": EventService,
    "registration_service": RegistrationService,
}


def get_db_session():
    if "db_session" not in g:
        g.db_session = get_session()
    return g.db_session


def get_notifier() -> NotificationDispatcher:
    """Return the dispatcher configured on the app, building one on first use."""

    dispatcher = current_app.config.get("NOTIFICATION_DISPATCHER")
    if dispatcher is None:
        config = get_config()
        dispatcher = NotificationDispatcher(
            NotificationServiceClient(),
            enabled=config.notifications_enabled,
        )
        current_app.config["NOTIFICATION_DISPATCHER"] = dispatcher
    return dispatcher


def get_event_service() -> EventService:
    return _get_service("event_service", EventService)


def get_registration_service() -> RegistrationService:
    return _get_service("registration_service", RegistrationService)


def get_current_actor(email: Optional[str] = None) -> Actor:
    """Resolve the caller from the headers set by the session gateway.

    Guests have no session; they identify with the e-mail they registered
    with, passed explicitly by the route.
    """

    user_id = (request.headers.get("X-User-Id") or "").strip() or None
    role = (request.headers.get("X-User-Role") or "").strip() or None
    if isinstance(email, str) and email.strip():
        return Actor(user_id=user_id, role=role, email=email.strip())
    return Actor(user_id=user_id, role=role)


def _get_service(key: str, factory: Type[T]) -> T:
    if key not in g:
        session = get_db_session()
        setattr(g, key, factory(session, notifier=get_notifier()))
    return getattr(g, key)


def cleanup_services(exception):
    session = g.pop("db_session", None)
    for key in list(SERVICE_FACTORIES.keys()):
        g.pop(key, None)
    if session is not None:
        try:
            if exception is not None:
                session.rollback()
        finally:
            session.close()
