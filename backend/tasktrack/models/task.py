import enum
from datetime import date, datetime
from typing import Dict, List, Optional, Union
from sqlalchemy import Column, Integer, String, Text, Date, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tasktrack.core.database import Base


class TaskPriority(str, enum.Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


class TaskStatus(str, enum.Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


PRIORITY_VALUES = [p.value for p in TaskPriority]
STATUS_VALUES = [s.value for s in TaskStatus]


class Task(Base):
    """
    A to-do item owned by exactly one user.

    user_id is set on creation and never changed; every read and write
    filters on it.
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # Date only - reminders compare whole days
    due_date = Column(Date, nullable=True, index=True)
    priority = Column(String, nullable=False, default=TaskPriority.MODERATE.value)
    status = Column(String, nullable=False, default=TaskStatus.NOT_STARTED.value)
    # Attachment reference (/uploads/...)
    image = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", backref="tasks")
    notifications = relationship(
        "NotificationLog",
        back_populates="task",
        # ORM-side cascade - SQLite does not enforce ON DELETE CASCADE by default
        cascade="all, delete-orphan",
    )


def parse_due_date(value: Union[str, date, None]) -> Optional[date]:
    """Accept YYYY-MM-DD or a full ISO datetime and keep only the date part."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def validate_task_fields(
    title: Optional[str] = None,
    priority: Optional[str] = None,
    status: Optional[str] = None,
    due_date: Optional[str] = None,
    require_title: bool = True,
) -> List[Dict[str, str]]:
    """
    Check task input and return one error entry per invalid field.

    None means "not supplied"; the title is only mandatory on creation.
    """
    errors = []

    if title is None:
        if require_title:
            errors.append({"field": "title", "message": "Title is required"})
    elif not title.strip():
        errors.append({"field": "title", "message": "Title must not be empty"})

    if priority is not None and priority not in PRIORITY_VALUES:
        errors.append({
            "field": "priority",
            "message": f"Priority must be one of: {', '.join(PRIORITY_VALUES)}",
        })

    if status is not None and status not in STATUS_VALUES:
        errors.append({
            "field": "status",
            "message": f"Status must be one of: {', '.join(STATUS_VALUES)}",
        })

    if due_date is not None:
        try:
            parse_due_date(due_date)
        except ValueError:
            errors.append({"field": "dueDate", "message": "Due date must be an ISO date (YYYY-MM-DD)"})

    return errors
