import logging
from datetime import date
from typing import List, Optional, Tuple
from sqlalchemy import case, exists, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tasktrack.core.errors import DependencyUnavailable, NotFound, ValidationError
from tasktrack.models.notification import NotificationLog
from tasktrack.models.task import (
    PRIORITY_VALUES,
    STATUS_VALUES,
    Task,
    TaskPriority,
    TaskStatus,
    parse_due_date,
    validate_task_fields,
)
from tasktrack.models.user import User
from tasktrack.services.attachment_service import AttachmentService, IncomingFile, attachment_service
from tasktrack.storage.local_storage import TASK_IMAGE_BUCKET

logger = logging.getLogger(__name__)

TASK_NOT_FOUND_MESSAGE = "Task not found"

SORT_KEYS = ("dueDate", "priority", "createdAt")

# High sorts first
PRIORITY_RANK = {
    TaskPriority.HIGH.value: 0,
    TaskPriority.MODERATE.value: 1,
    TaskPriority.LOW.value: 2,
}

UPDATABLE_FIELDS = ("title", "description", "due_date", "priority", "status")


class TaskService:
    def __init__(self, attachments: AttachmentService = attachment_service):
        self.attachments = attachments

    def _commit(self, db: Session, new_image: Optional[str] = None) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            # The record never pointed at the new file, so drop it
            self.attachments.discard(new_image)
            logger.exception("Database error while saving task")
            raise DependencyUnavailable("Database error occurred") from exc

    @staticmethod
    def _get_owned(db: Session, user_id: int, task_id: int) -> Task:
        # Missing and foreign tasks are reported the same way
        task = db.query(Task).filter(
            Task.id == task_id,
            Task.user_id == user_id
        ).first()
        if not task:
            raise NotFound(TASK_NOT_FOUND_MESSAGE)
        return task

    def create(
        self,
        db: Session,
        user_id: int,
        title: Optional[str],
        description: Optional[str] = None,
        due_date: Optional[str] = None,
        priority: Optional[str] = None,
        status: Optional[str] = None,
        image: Optional[IncomingFile] = None,
    ) -> Task:
        """Create a task owned by user_id"""
        errors = validate_task_fields(
            title=title, priority=priority, status=status, due_date=due_date
        )
        if errors:
            raise ValidationError(errors)

        image_ref = self.attachments.persist(image, TASK_IMAGE_BUCKET)

        task = Task(
            user_id=user_id,
            title=title.strip(),
            description=description or None,
            due_date=parse_due_date(due_date),
            priority=priority or TaskPriority.MODERATE.value,
            status=status or TaskStatus.NOT_STARTED.value,
            image=image_ref,
        )
        db.add(task)
        self._commit(db, new_image=image_ref)
        db.refresh(task)
        return task

    def get(self, db: Session, user_id: int, task_id: int) -> Task:
        return self._get_owned(db, user_id, task_id)

    def list_tasks(
        self,
        db: Session,
        user_id: int,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
    ) -> List[Task]:
        """
        List a user's tasks.

        Filters combine with AND; a missing filter matches everything.
        Search is a case-insensitive substring match on title or description.
        Without sort_by the tasks come back in creation order.
        """
        errors = []
        if status and status not in STATUS_VALUES:
            errors.append({"field": "status", "message": f"Status must be one of: {', '.join(STATUS_VALUES)}"})
        if priority and priority not in PRIORITY_VALUES:
            errors.append({"field": "priority", "message": f"Priority must be one of: {', '.join(PRIORITY_VALUES)}"})
        if sort_by and sort_by not in SORT_KEYS:
            errors.append({"field": "sortBy", "message": f"sortBy must be one of: {', '.join(SORT_KEYS)}"})
        if errors:
            raise ValidationError(errors)

        query = db.query(Task).filter(Task.user_id == user_id)

        if status:
            query = query.filter(Task.status == status)
        if priority:
            query = query.filter(Task.priority == priority)
        if search:
            needle = search.lower()
            query = query.filter(or_(
                func.lower(Task.title).contains(needle, autoescape=True),
                func.lower(Task.description).contains(needle, autoescape=True),
            ))

        if sort_by == "dueDate":
            # Undated tasks go last
            query = query.order_by(Task.due_date.is_(None), Task.due_date, Task.id)
        elif sort_by == "priority":
            query = query.order_by(case(PRIORITY_RANK, value=Task.priority, else_=len(PRIORITY_RANK)), Task.id)
        elif sort_by == "createdAt":
            query = query.order_by(Task.created_at, Task.id)
        else:
            query = query.order_by(Task.id)

        return query.all()

    def update(
        self,
        db: Session,
        user_id: int,
        task_id: int,
        fields: dict,
        image: Optional[IncomingFile] = None,
    ) -> Task:
        """
        Apply a partial update.

        fields maps column names to new values; keys that are absent keep the
        stored value. An empty string clears description or due_date.
        """
        task = self._get_owned(db, user_id, task_id)

        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError([{"field": name, "message": "Field cannot be updated"} for name in sorted(unknown)])

        # Required columns cannot be cleared
        errors = [
            {"field": name, "message": f"{name.capitalize()} must not be null"}
            for name in ("title", "priority", "status")
            if name in fields and fields[name] is None
        ]
        errors += validate_task_fields(
            title=fields.get("title"),
            priority=fields.get("priority"),
            status=fields.get("status"),
            due_date=fields.get("due_date"),
            require_title=False,
        )
        if errors:
            raise ValidationError(errors)

        new_image = self.attachments.persist(image, TASK_IMAGE_BUCKET)
        old_image = task.image

        if "title" in fields:
            task.title = fields["title"].strip()
        if "description" in fields:
            task.description = fields["description"] or None
        if "due_date" in fields:
            task.due_date = parse_due_date(fields["due_date"])
        if "priority" in fields:
            task.priority = fields["priority"]
        if "status" in fields:
            task.status = fields["status"]
        if new_image is not None:
            task.image = new_image

        self._commit(db, new_image=new_image)
        db.refresh(task)

        # Replaced image is removed only once the new reference is committed
        if new_image is not None and old_image and old_image != new_image:
            self.attachments.discard(old_image)

        return task

    def delete(self, db: Session, user_id: int, task_id: int) -> None:
        task = self._get_owned(db, user_id, task_id)
        image = task.image

        db.delete(task)
        self._commit(db)

        if image:
            self.attachments.discard(image)

    @staticmethod
    def find_due_tasks(
        db: Session,
        start: date,
        end: date,
        exclude_notified: bool = True,
    ) -> List[Tuple[Task, str]]:
        """
        Administrative query across all users: open tasks due between start
        and end inclusive, paired with the owner's email.

        With exclude_notified, tasks already reminded for their current due
        date are left out.
        """
        query = db.query(Task, User.email).join(User, User.id == Task.user_id).filter(
            Task.due_date >= start,
            Task.due_date <= end,
            Task.status != TaskStatus.COMPLETED.value,
        )
        if exclude_notified:
            already_sent = exists().where(
                NotificationLog.task_id == Task.id,
                NotificationLog.due_date == Task.due_date,
            )
            query = query.filter(~already_sent)

        return [(task, email) for task, email in query.order_by(Task.due_date, Task.id).all()]


task_service = TaskService()
