import os

import pytest
from fastapi.testclient import TestClient

# Keep tests on the in-memory backend and off the wall-clock scheduler
os.environ["PERSISTENCE_BACKEND"] = "memory"
os.environ["ENABLE_REMINDER_SCHEDULER"] = "false"

from src.chronos.main import app  # noqa: E402
from src.chronos.realtime import ConnectionHub, get_hub  # noqa: E402
from src.chronos.repositories import create_memory_store, get_store  # noqa: E402


class RecordingPublisher:
    """Collects published live-update messages."""

    def __init__(self):
        self.messages = []

    def publish(self, user_id, message):
        self.messages.append((user_id, message))
        return 1


@pytest.fixture
def store():
    return create_memory_store()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def client(store, hub):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_hub] = lambda: hub
    try:
        yield TestClient(app, headers={"X-User-Id": "alice"})
    finally:
        app.dependency_overrides.clear()
