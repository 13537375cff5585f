import os
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from portal_events.database import Base, get_engine, get_session, init_engine
from portal_events.main import create_app
from portal_events.repositories.events import EventRepository
from portal_events.services.notifications import NotificationDispatcher


class RecordingSender:
    """Notification sender that keeps payloads instead of calling the service."""

    def __init__(self):
        self.sent = []

    def send_notification(self, payload):
        self.sent.append(payload)
        return {"status": "queued"}

    def templates(self):
        return [payload["template"] for payload in self.sent]


@pytest.fixture(scope="session")
def database_url(tmp_path_factory):
    db_file = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite:///{db_file}"


@pytest.fixture(scope="session", autouse=True)
def setup_database(database_url):
    os.environ["DATABASE_URL"] = database_url
    engine = init_engine(database_url)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_database():
    engine = get_engine()
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())
    yield


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(sender):
    return NotificationDispatcher(sender)


@pytest.fixture
def app(notifier):
    return create_app({"TESTING": True, "NOTIFICATION_DISPATCHER": notifier})


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def db_session():
    session = get_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def admin_headers():
    return {"X-User-Id": "admin-1", "X-User-Role": "ADMIN"}


@pytest.fixture
def make_event():
    """Create a committed event and return its id."""

    def _make_event(max_attendees=2, **fields):
        session = get_session()
        try:
            event = EventRepository(session).create_event(
                title=fields.pop("title", "Atelier capacité"),
                event_date=fields.pop("event_date", date.today() + timedelta(days=7)),
                max_attendees=max_attendees,
                **fields,
            )
            session.commit()
            return event.id
        finally:
            session.close()

    return _make_event
