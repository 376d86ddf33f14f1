from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tasktrack.core.database import Base


class NotificationLog(Base):
    """
    Record of a due-date reminder that was sent.

    One row per (task, due date) occurrence. Moving a task's due date
    creates a new occurrence that will be reminded again.
    """
    __tablename__ = "notification_log"
    __table_args__ = (UniqueConstraint("task_id", "due_date", name="uq_notification_task_due"),)

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    due_date = Column(Date, nullable=False)
    sent_at = Column(DateTime(timezone=True), server_default=func.now())

    task = relationship("Task", back_populates="notifications")
