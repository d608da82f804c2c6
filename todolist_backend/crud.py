import logging
from typing import List, Optional

from sqlalchemy import not_, select, update
from sqlalchemy.orm import Session

from .exceptions import TodoNotFoundError
from .models import Priority, Todo, utcnow
from .schemas import TodoCreate, TodoUpdate

logger = logging.getLogger(__name__)


def _parse_priority(value: Optional[str]) -> Optional[Priority]:
    if not value:
        return None
    try:
        return Priority(value)
    except ValueError:
        return None


def list_todos(db: Session, status_filter: Optional[str] = None, priority: Optional[str] = None) -> List[Todo]:
    """Newest first. Unknown filter or priority values are ignored."""
    stmt = select(Todo)
    if status_filter == "active":
        stmt = stmt.where(Todo.completed.is_(False))
    elif status_filter == "completed":
        stmt = stmt.where(Todo.completed.is_(True))

    wanted = _parse_priority(priority)
    if wanted is not None:
        stmt = stmt.where(Todo.priority == wanted)

    stmt = stmt.order_by(Todo.created_at.desc(), Todo.id.desc())
    return list(db.scalars(stmt).all())


def get_todo(db: Session, todo_id: int) -> Todo:
    obj = db.get(Todo, todo_id)
    if obj is None:
        raise TodoNotFoundError(todo_id)
    return obj


def create_todo(db: Session, data: TodoCreate) -> Todo:
    now = utcnow()
    obj = Todo(
        title=data.title,
        description=data.description,
        priority=data.priority,
        due_date=data.due_date,
        completed=False,
        created_at=now,
        updated_at=now,
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info("Created todo id=%s", obj.id)
    return obj


def update_todo(db: Session, todo_id: int, data: TodoUpdate) -> Todo:
    obj = get_todo(db, todo_id)
    for name, value in data.changes().items():
        setattr(obj, name, value)
    obj.updated_at = utcnow()
    db.commit()
    db.refresh(obj)
    logger.info("Updated todo id=%s", todo_id)
    return obj


def toggle_todo(db: Session, todo_id: int) -> Todo:
    """Flip the completed flag with one `UPDATE ... SET completed = NOT completed`."""
    result = db.execute(
        update(Todo)
        .where(Todo.id == todo_id)
        .values(completed=not_(Todo.completed), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise TodoNotFoundError(todo_id)
    db.commit()
    obj = db.get(Todo, todo_id, populate_existing=True)
    if obj is None:
        # deleted between the update and the read
        raise TodoNotFoundError(todo_id)
    logger.info("Toggled todo id=%s completed=%s", todo_id, obj.completed)
    return obj


def delete_todo(db: Session, todo_id: int) -> None:
    obj = get_todo(db, todo_id)
    db.delete(obj)
    db.commit()
    logger.info("Deleted todo id=%s", todo_id)
