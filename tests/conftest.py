"""Shared fixtures: temporary SQLite store, fake backends, Flask test client."""

import pytest

from board_server import create_app
from taskboard.config import Config
from taskboard.service import TaskService
from taskboard.store import TaskStore

from fakes import FakeCalendar, FakeGenerator, FakeTranscriber

API_KEY = "test-key-alice"
OTHER_KEY = "test-key-bob"


@pytest.fixture
def store(tmp_path):
    return TaskStore(str(tmp_path / "taskboard.db"))


@pytest.fixture
def generator():
    return FakeGenerator("medium")


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def service(store, generator, calendar):
    return TaskService(store, generator=generator, calendar=calendar)


@pytest.fixture
def config(tmp_path):
    cfg = Config(
        db_path=str(tmp_path / "taskboard.db"),
        users={API_KEY: "alice", OTHER_KEY: "bob"},
        app_url="http://board.test",
    )
    return cfg


@pytest.fixture
def app(config, store, generator, calendar, transcriber):
    app = create_app(config, store=store, generator=generator,
                     calendar=calendar, transcriber=transcriber)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth():
    return {"X-API-Key": API_KEY}
