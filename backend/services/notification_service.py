"""Fire-and-forget email notices for allocation changes."""

from __future__ import annotations

import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol, Sequence

from backend.domain.models import ACTION_ALLOCATED, ACTION_DEALLOCATED
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class AllocationNotice:
    action: str
    student_email: str
    admin_email: str
    department_email: Optional[str]
    professor_emails: tuple[str, ...]
    actor_role: str
    course_name: str

    @property
    def recipients(self) -> list[str]:
        candidates = [
            self.student_email,
            self.admin_email,
            self.department_email,
            *self.professor_emails,
        ]
        return list(dict.fromkeys(item for item in candidates if item))

    @property
    def subject(self) -> str:
        if self.action == ACTION_DEALLOCATED:
            return "Student Deallocation Data"
        return "Student Allocation Data"

    def render_body(self) -> str:
        verb = "Deallocated" if self.action == ACTION_DEALLOCATED else "Allocated"
        lines = [
            "Hello,",
            "",
            f"A teaching assistant allocation changed for {self.course_name}.",
            "",
            f"Email: {self.student_email}",
            f"{verb} by: {self.actor_role}",
            f"Admin ID: {self.admin_email}",
            f"JM ID: {self.department_email or 'N/A'}",
            f"Professor ID: {', '.join(self.professor_emails) or 'N/A'}",
        ]
        return "\n".join(lines)


class EmailSender(Protocol):
    def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        ...


class SmtpEmailSender:
    """Delivers plain-text mail through the configured SMTP relay."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.smtp_host)

    def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        if not self.is_configured:
            logger.info("SMTP_HOST not configured; skipping email '%s' to %s", subject, recipients)
            return

        message = EmailMessage()
        message["From"] = self._settings.smtp_from_email
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port, timeout=10) as smtp:
            if self._settings.smtp_use_tls:
                smtp.starttls()
            if self._settings.smtp_username and self._settings.smtp_password:
                smtp.login(self._settings.smtp_username, self._settings.smtp_password)
            smtp.send_message(message)
        logger.info("Email '%s' sent to %s recipients", subject, len(recipients))


class NotificationService:
    """Queues allocation notices on a small worker pool.

    Callers get a ``Future`` back but never need to wait on it; delivery
    failures are logged and never reach the request that caused them.
    """

    def __init__(
        self,
        sender: Optional[EmailSender] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._sender = sender or SmtpEmailSender(self._settings)
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.notification_workers,
            thread_name_prefix="notify",
        )

    def send_allocation(self, notice: AllocationNotice) -> Optional[Future]:
        return self._dispatch(notice, expected_action=ACTION_ALLOCATED)

    def send_deallocation(self, notice: AllocationNotice) -> Optional[Future]:
        return self._dispatch(notice, expected_action=ACTION_DEALLOCATED)

    def _dispatch(self, notice: AllocationNotice, expected_action: str) -> Optional[Future]:
        if notice.action != expected_action:
            raise ValueError(f"notice action must be '{expected_action}'")
        if not notice.recipients:
            logger.warning("Allocation notice for %s has no recipients", notice.course_name)
            return None
        try:
            return self._executor.submit(self._deliver, notice)
        except RuntimeError:
            logger.exception("Notification pool is shut down; dropping notice")
            return None

    def _deliver(self, notice: AllocationNotice) -> bool:
        try:
            self._sender.send(notice.recipients, notice.subject, notice.render_body())
            return True
        except Exception:
            logger.exception("Failed to send '%s' email for %s", notice.subject, notice.student_email)
            return False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
