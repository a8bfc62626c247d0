"""
Pytest configuration and shared fixtures.

Environment variables default to a throwaway SQLite file and can be
overridden from the shell. Settings are reloaded before any app import.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_sharedish.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from sharedish.config import get_settings
get_settings.cache_clear()

from sharedish import models  # noqa: E402,F401  (registers tables)
from sharedish.presence import PresenceRegistry  # noqa: E402
from sharedish.relay import ChatRelay  # noqa: E402
from sharedish.storage import Base, SessionLocal, engine  # noqa: E402


class FakeSocketServer:
    """
    In-memory stand-in for socketio.AsyncServer.

    Implements the subset the relay uses (on, enter_room, emit) and
    resolves room membership at emit time, like the real server.
    """

    def __init__(self):
        self.handlers = {}
        self.rooms: dict[str, set[str]] = {}
        self.emitted = []

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def enter_room(self, sid, room, namespace=None):
        self.rooms.setdefault(room, set()).add(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None):
        target = to if to is not None else room
        recipients = set(self.rooms.get(target, set()))
        if target is not None and target not in self.rooms:
            # A bare sid is its own room
            recipients.add(target)
        recipients.discard(skip_sid)
        self.emitted.append({"event": event, "data": data, "target": target, "recipients": recipients})

    def received(self, sid, event=None):
        """Payloads delivered to one connection, optionally filtered by event."""
        return [
            e["data"] for e in self.emitted
            if sid in e["recipients"] and (event is None or e["event"] == event)
        ]

    def events(self, event):
        return [e for e in self.emitted if e["event"] == event]


@pytest.fixture(scope="function")
def db_tables():
    """Fresh tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(db_tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    """Two marketplace users: A (Alice Baker) and B (Bob Cook)."""
    from sharedish.models import User

    db.add_all([
        User(id="A", first_name="Alice", last_name="Baker"),
        User(id="B", first_name="Bob", last_name="Cook"),
        User(id="C", first_name="Carol", last_name="Diaz"),
    ])
    db.commit()
    return {"A": "Alice Baker", "B": "Bob Cook", "C": "Carol Diaz"}


@pytest.fixture
def server():
    return FakeSocketServer()


@pytest.fixture
def relay(server, db_tables):
    chat_relay = ChatRelay(server, PresenceRegistry(server), SessionLocal)
    chat_relay.register()
    return chat_relay
