"""Event registration service application entrypoint."""
from __future__ import annotations

import atexit
from typing import Any, Dict, Optional

from flask import Flask

from portal_events.config import get_config
from portal_events.database import get_engine
from portal_events.logging_config import setup_logging
from portal_events.routes import register_blueprints
from portal_events.routes.dependencies import cleanup_services, get_notifier
from portal_events.routes.utils import error_response
from portal_events.services.registrations import RegistrationScheduler


def create_app(overrides: Optional[Dict[str, Any]] = None) -> Flask:
    config = get_config()
    setup_logging(config.log_level)

    app = Flask(__name__)
    app.config.update(overrides or {})

    get_engine()
    register_blueprints(app)
    app.teardown_appcontext(cleanup_services)
    register_error_handlers(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "event-registration-service"}

    # Safety net for slots whose post-commit promotion failed.
    sweep_enabled = app.config.get("WAITLIST_SWEEP_ENABLED", config.waitlist_sweep_enabled)
    if sweep_enabled and not app.config.get("TESTING"):
        _start_waitlist_sweep(app)

    return app


def register_error_handlers(flask_app: Flask) -> None:
    @flask_app.errorhandler(404)
    def handle_404(e):
        return error_response(404, "Ressource introuvable.")

    @flask_app.errorhandler(405)
    def handle_405(e):
        return error_response(405, "Méthode non autorisée pour cette ressource.")

    @flask_app.errorhandler(500)
    def handle_500(e):
        return error_response(500, "Erreur interne. On respire, on relance.")


def _start_waitlist_sweep(app: Flask) -> None:
    with app.app_context():
        notifier = get_notifier()
    scheduler = RegistrationScheduler(notifier=notifier)
    scheduler.start()
    app.extensions["waitlist_scheduler"] = scheduler
    atexit.register(scheduler.shutdown)


if __name__ == "__main__":
    create_app().run(debug=True, port=5003)
