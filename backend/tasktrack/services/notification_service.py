"""
Due-date reminders.

ReminderScanner walks every open task due within the horizon and mails the
owner once per (task, due date). The mail transport is injected so the
scanner never knows whether it talks to SMTP or a test double.
"""

from __future__ import annotations

import html
import logging
import smtplib
import threading
from dataclasses import dataclass
from datetime import date, timedelta
from email.message import EmailMessage
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tasktrack.core.config import Settings
from tasktrack.models.notification import NotificationLog
from tasktrack.models.task import Task
from tasktrack.services.task_service import task_service

logger = logging.getLogger(__name__)


class MailTransport(Protocol):
    """Anything that can deliver a prepared email message."""

    def send(self, message: EmailMessage) -> None: ...


class SmtpMailTransport:
    """SMTP delivery with a bounded timeout on every connection."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_tls = use_tls
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.use_tls:
                smtp.starttls()
            smtp.login(self.username, self.password)
        except Exception:
            smtp.close()
            raise
        return smtp

    def send(self, message: EmailMessage) -> None:
        if not message.get("From"):
            message["From"] = self.sender
        with self._connect() as smtp:
            smtp.send_message(message)

    def verify(self) -> bool:
        """Connect and log in once; used before the reminder job is scheduled"""
        try:
            with self._connect() as smtp:
                smtp.noop()
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email configuration error: {e}")
            return False


def build_mail_transport(config: Settings) -> Optional[SmtpMailTransport]:
    """Return an SMTP transport, or None when mail is not configured"""
    if not config.mail_configured:
        return None
    return SmtpMailTransport(
        host=config.MAIL_HOST,
        port=config.MAIL_PORT,
        username=config.MAIL_USERNAME,
        password=config.MAIL_PASSWORD,
        sender=config.MAIL_FROM,
        use_tls=config.MAIL_USE_TLS,
        timeout=config.MAIL_TIMEOUT_SECONDS,
    )


def build_reminder(task: Task, recipient: str) -> EmailMessage:
    message = EmailMessage()
    message["To"] = recipient
    message["Subject"] = f"Task Reminder: {task.title}"

    due = task.due_date.isoformat() if task.due_date else "soon"
    description = task.description or "No description"
    message.set_content(
        f'Your task "{task.title}" is due on {due}.\n\n'
        f"Description: {description}\n"
        f"Priority: {task.priority}\n"
        f"Status: {task.status}\n\n"
        "Please complete the task before the due date.\n"
    )
    message.add_alternative(
        f"<h2>Task Due Soon</h2>"
        f"<p>Your task \"{html.escape(task.title)}\" is due on {due}.</p>"
        f"<h3>Task Details:</h3>"
        f"<ul>"
        f"<li><strong>Description:</strong> {html.escape(description)}</li>"
        f"<li><strong>Priority:</strong> {html.escape(task.priority)}</li>"
        f"<li><strong>Status:</strong> {html.escape(task.status)}</li>"
        f"</ul>"
        f"<p>Please complete the task before the due date.</p>",
        subtype="html",
    )
    return message


@dataclass
class ScanResult:
    found: int = 0
    sent: int = 0
    failed: int = 0


class ReminderScanner:
    """One scan per call to run_scan; overlapping calls are skipped, not queued."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        transport: MailTransport,
        horizon_days: int = 1,
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.horizon_days = horizon_days
        self._running = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running.locked()

    def window(self, today: date) -> tuple[date, date]:
        return today, today + timedelta(days=self.horizon_days)

    def run_scan(self, today: Optional[date] = None) -> Optional[ScanResult]:
        if not self._running.acquire(blocking=False):
            logger.warning("Reminder scan still in progress, skipping this tick")
            return None
        try:
            return self._scan(today or date.today())
        finally:
            self._running.release()

    def _scan(self, today: date) -> Optional[ScanResult]:
        start, end = self.window(today)
        db = self.session_factory()
        try:
            try:
                due = task_service.find_due_tasks(db, start, end)
            except SQLAlchemyError as e:
                # Retried on the next scheduled tick, never immediately
                logger.error(f"Reminder scan aborted, could not query tasks: {e}")
                return None

            result = ScanResult(found=len(due))
            logger.info(f"Found {result.found} tasks due between {start} and {end}")

            for task, email in due:
                if self._remind(db, task, email):
                    result.sent += 1
                else:
                    result.failed += 1

            logger.info(
                f"Reminder scan completed: {result.sent} sent, {result.failed} failed"
            )
            return result
        finally:
            db.close()

    def _remind(self, db: Session, task: Task, email: str) -> bool:
        """Send one reminder and record it; failures are logged and isolated to this task"""
        if not email:
            logger.error(f"Task {task.id} owner has no email, skipping reminder")
            return False
        try:
            self.transport.send(build_reminder(task, email))
        except Exception as e:
            logger.error(f"Failed to send reminder for task {task.id} to {email}: {e}")
            return False

        try:
            db.add(NotificationLog(task_id=task.id, due_date=task.due_date))
            db.commit()
        except IntegrityError:
            # Another process recorded the same occurrence first
            db.rollback()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Reminder for task {task.id} sent but not recorded: {e}")

        logger.info(f"Reminder sent to {email} for task {task.id}")
        return True
