from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from .models import Priority

_FALLBACK_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y.%m.%d",
]


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        try:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError:
            raise ValueError(f"Invalid due date: {dt.isoformat()!r}") from None
    return dt


def parse_due_date(value: Any) -> Optional[datetime]:
    """Turn a due date input into a naive UTC datetime, or None when empty."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        raise ValueError("Due date must be a date string")
    s = value.strip()
    if not s:
        return None
    iso = s[:-1] + "+00:00" if s.endswith(("Z", "z")) else s
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        parsed = None
    if parsed is not None:
        try:
            return _to_naive_utc(parsed)
        except ValueError:
            raise ValueError(f"Invalid due date: {s!r}") from None
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid due date: {s!r}")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return _to_naive_utc(value).isoformat(timespec="milliseconds") + "Z"


class TodoBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TodoCreate(TodoBase):
    title: Optional[str] = Field(default=None, validate_default=True)
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_required(cls, v: Optional[str]) -> str:
        if v is None or not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v: Any) -> Any:
        if v is None or v == "":
            return Priority.MEDIUM
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due(cls, v: Any) -> Optional[datetime]:
        return parse_due_date(v)


class TodoUpdate(TodoBase):
    """Partial update; only fields present in the request body are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    completed: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> str:
        if v is None or not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()

    @field_validator("description")
    @classmethod
    def clean_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("priority", "completed")
    @classmethod
    def not_null(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            raise ValueError(f"{to_camel(info.field_name)} cannot be null")
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due(cls, v: Any) -> Optional[datetime]:
        return parse_due_date(v)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class TodoRead(TodoBase):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    completed: bool
    priority: Priority
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_serializer("due_date", "created_at", "updated_at")
    def serialize_timestamp(self, value: Optional[datetime]) -> Optional[str]:
        return format_timestamp(value)


class TodoStats(BaseModel):
    total: int
    active: int
    completed: int


class MaintenanceReport(TodoBase):
    timestamp: datetime
    stats: TodoStats
    overdue: List[TodoRead]

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> Optional[str]:
        return format_timestamp(value)


class CronResult(TodoBase):
    success: bool = True
    message: str = "Cron job executed successfully"
    timestamp: str
    stats: TodoStats
    overdue_count: int
