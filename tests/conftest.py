"""Shared fixtures: an in-memory store and an app wired to it."""

import pytest
from fastapi.testclient import TestClient

from todolist_backend.config import Settings
from todolist_backend.database import Database
from todolist_backend.main import create_app

CRON_SECRET = "test-cron-secret"


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://", cron_secret=CRON_SECRET)


@pytest.fixture
def database(settings: Settings):
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database: Database):
    with database.SessionLocal() as s:
        yield s


@pytest.fixture
def client(settings: Settings, database: Database):
    app = create_app(settings, database)
    with TestClient(app) as c:
        yield c
