"""
Todo maintenance routine.

Counts todos by status and reports the overdue ones. It never mutates the
store. Runs either through ``GET /cron`` (guarded by the ``x-cron-secret``
header) or directly as the ``todo-maintenance`` console script, which is
meant for an external scheduler and performs no secret check.
"""

import logging
import secrets
import sys
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import Settings
from .database import Database
from .exceptions import CronNotConfiguredError, CronUnauthorizedError
from .logging_setup import setup_logging
from .models import Todo, utcnow
from .schemas import MaintenanceReport, TodoRead, TodoStats, format_timestamp

logger = logging.getLogger(__name__)


def verify_cron_secret(expected: Optional[str], provided: Optional[str]) -> None:
    if not expected:
        logger.error("CRON_SECRET is not configured")
        raise CronNotConfiguredError("Server configuration error")
    if provided is None or not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.error("Unauthorized cron request")
        raise CronUnauthorizedError("Unauthorized")


def _count(db: Session, *criteria) -> int:
    stmt = select(func.count()).select_from(Todo)
    if criteria:
        stmt = stmt.where(*criteria)
    return db.scalar(stmt) or 0


def collect_stats(db: Session) -> TodoStats:
    return TodoStats(
        total=_count(db),
        active=_count(db, Todo.completed.is_(False)),
        completed=_count(db, Todo.completed.is_(True)),
    )


def find_overdue(db: Session, now: datetime) -> List[Todo]:
    stmt = (
        select(Todo)
        .where(Todo.completed.is_(False), Todo.due_date.is_not(None), Todo.due_date < now)
        .order_by(Todo.due_date.asc(), Todo.id.asc())
    )
    return list(db.scalars(stmt).all())


def run_maintenance(db: Session, now: Optional[datetime] = None) -> MaintenanceReport:
    now = now or utcnow()
    logger.info("Running todo maintenance at %s", format_timestamp(now))

    stats = collect_stats(db)
    logger.info("Todo statistics: total=%d active=%d completed=%d", stats.total, stats.active, stats.completed)

    overdue = find_overdue(db, now)
    if overdue:
        logger.warning("Found %d overdue todo(s):", len(overdue))
        for todo in overdue:
            logger.warning("  - %s (Due: %s)", todo.title, format_timestamp(todo.due_date))

    logger.info("Todo maintenance completed")
    return MaintenanceReport(
        timestamp=now,
        stats=stats,
        overdue=[TodoRead.model_validate(t) for t in overdue],
    )


def main() -> int:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    database = Database(settings.database_url)
    try:
        database.create_all()
        with database.SessionLocal() as db:
            run_maintenance(db)
    except Exception:
        logger.exception("Error during todo maintenance")
        return 1
    finally:
        database.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
