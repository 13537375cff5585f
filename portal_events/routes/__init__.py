"""Blueprint registration helpers."""
from __future__ import annotations

from flask import Flask

from .admin import admin_bp
from .events import events_bp
from .registrations import registrations_bp

__all__ = ["register_blueprints"]


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(events_bp)
    app.register_blueprint(registrations_bp)
    app.register_blueprint(admin_bp)
