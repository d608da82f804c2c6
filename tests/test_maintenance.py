"""Tests for the maintenance routine, its cron endpoint and its console entry point."""

import logging
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from todolist_backend import crud, maintenance
from todolist_backend import main as main_module
from todolist_backend.config import Settings
from todolist_backend.database import Database
from todolist_backend.exceptions import CronNotConfiguredError, CronUnauthorizedError
from todolist_backend.main import create_app
from todolist_backend.schemas import TodoCreate

from .conftest import CRON_SECRET


def _seed(session):
    crud.create_todo(session, TodoCreate(title="late", due_date="2020-01-01"))
    crud.create_todo(session, TodoCreate(title="future", due_date="2999-01-01"))
    crud.create_todo(session, TodoCreate(title="no date"))
    done = crud.create_todo(session, TodoCreate(title="late but done", due_date="2020-01-01"))
    crud.toggle_todo(session, done.id)


def test_run_maintenance_counts_and_finds_overdue(session, caplog) -> None:
    _seed(session)

    with caplog.at_level(logging.INFO, logger="todolist_backend"):
        report = maintenance.run_maintenance(session, now=datetime(2025, 6, 1))

    assert report.stats.total == 4
    assert report.stats.active == 3
    assert report.stats.completed == 1
    assert [t.title for t in report.overdue] == ["late"]
    assert "late (Due: 2020-01-01T00:00:00.000Z)" in caplog.text


def test_run_maintenance_does_not_modify_store(session) -> None:
    _seed(session)
    before = [(t.id, t.completed, t.updated_at) for t in crud.list_todos(session)]

    maintenance.run_maintenance(session)

    assert [(t.id, t.completed, t.updated_at) for t in crud.list_todos(session)] == before


def test_verify_cron_secret() -> None:
    maintenance.verify_cron_secret("s3cret", "s3cret")

    with pytest.raises(CronUnauthorizedError):
        maintenance.verify_cron_secret("s3cret", "wrong")
    with pytest.raises(CronUnauthorizedError):
        maintenance.verify_cron_secret("s3cret", None)
    with pytest.raises(CronNotConfiguredError):
        maintenance.verify_cron_secret(None, "anything")
    with pytest.raises(CronNotConfiguredError):
        maintenance.verify_cron_secret("", "")


def test_cron_requires_secret_header(client) -> None:
    response = client.get("/cron")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}

    response = client.get("/cron", headers={"x-cron-secret": "nope"})
    assert response.status_code == 401


def test_cron_with_secret_reports_summary(client) -> None:
    client.post("/todos", json={"title": "overdue", "dueDate": "2000-01-01"})
    client.post("/todos", json={"title": "fresh"})

    response = client.get("/cron", headers={"x-cron-secret": CRON_SECRET})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Cron job executed successfully"
    assert body["timestamp"].endswith("Z")
    assert body["stats"] == {"total": 2, "active": 2, "completed": 0}
    assert body["overdueCount"] == 1


def test_cron_without_configured_secret_is_server_error() -> None:
    database = Database("sqlite://")
    app = create_app(Settings(database_url="sqlite://", cron_secret=None), database)

    with TestClient(app) as client:
        response = client.get("/cron", headers={"x-cron-secret": "anything"})

    assert response.status_code == 500
    assert response.json() == {"error": "Server configuration error"}


def test_cron_failure_is_reported(client, monkeypatch) -> None:
    def boom(db):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(main_module, "run_maintenance", boom)

    response = client.get("/cron", headers={"x-cron-secret": CRON_SECRET})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error", "message": "store unavailable"}


def test_console_entry_point(tmp_path, monkeypatch) -> None:
    db_url = f"sqlite:///{tmp_path / 'todos.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setattr(maintenance, "setup_logging", lambda level: None)

    seeded = Database(db_url)
    seeded.create_all()
    with seeded.SessionLocal() as session:
        crud.create_todo(session, TodoCreate(title="late", due_date="2001-01-01"))
    seeded.dispose()

    assert maintenance.main() == 0


def test_console_entry_point_reports_failure(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setattr(maintenance, "setup_logging", lambda level: None)

    def boom(db, now=None):
        raise RuntimeError("broken")

    monkeypatch.setattr(maintenance, "run_maintenance", boom)

    assert maintenance.main() == 1
