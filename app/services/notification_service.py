"""
ComplyTrack - Notification Gateway

Fire-and-forget delivery of audit workflow messages.

Two channels:
- email, rendered per NotificationKind and handed to EmailService
- in-app AuditNotification rows, written in the caller's transaction

``send`` never raises. Its boolean result is for logging only; no workflow
decision depends on it.
"""

import html
import uuid
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.notification import AuditNotification
from app.services.email_service import EmailService, EmailMessage

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Kinds of workflow email."""
    AUDIT_CREATED = "audit_created"
    AUDIT_STATUS_CHANGED = "audit_status_changed"
    FINDING_ASSIGNED = "finding_assigned"
    ACTION_ASSIGNED = "action_assigned"
    MAJOR_FINDINGS_CLOSED = "major_findings_closed"
    CUSTOM = "custom"


def normalize_recipients(recipients: Iterable[Optional[str]]) -> List[str]:
    """Drop blanks and duplicates (case-insensitive), keeping first-seen order."""
    seen = set()
    result = []
    for address in recipients:
        if not address or not address.strip():
            continue
        key = address.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(address.strip())
    return result


def _fmt_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    return str(value) if value else "Not specified"


def _render(kind: NotificationKind, payload: Dict[str, Any]) -> Tuple[str, List[Tuple[str, str]], str]:
    """Return (subject, [(label, value), ...], link) for a notification."""
    audit = payload.get("audit") or {}
    app_url = settings.app_url.rstrip("/")
    audit_link = f"{app_url}/audits/{audit.get('id', '')}"

    if kind == NotificationKind.AUDIT_CREATED:
        rows = [
            ("Audit Name", audit.get("name")),
            ("Audit Type", audit.get("audit_type")),
            ("Start Date", _fmt_date(audit.get("start_date"))),
            ("End Date", _fmt_date(audit.get("end_date"))),
            ("Auditor", audit.get("auditor_name") or "Not assigned"),
        ]
        if audit.get("auditee_name"):
            rows.append(("Auditee", audit["auditee_name"]))
        return f"New Audit Created: {audit.get('name')}", rows, audit_link

    if kind == NotificationKind.AUDIT_STATUS_CHANGED:
        rows = [
            ("Audit Name", audit.get("name")),
            ("Previous Status", payload.get("old_status")),
            ("New Status", payload.get("new_status")),
        ]
        return f"Audit Status Updated: {audit.get('name')}", rows, audit_link

    if kind == NotificationKind.FINDING_ASSIGNED:
        finding = payload.get("finding") or {}
        rows = [
            ("Finding Title", finding.get("title")),
            ("Type", finding.get("finding_type")),
            ("Status", finding.get("status")),
            ("Audit", audit.get("name")),
            ("Due Date", _fmt_date(finding.get("due_date"))),
        ]
        return (
            f"Audit Finding: {finding.get('title')}",
            rows,
            f"{audit_link}/findings/{finding.get('id', '')}",
        )

    if kind == NotificationKind.ACTION_ASSIGNED:
        action = payload.get("action") or {}
        rows = [
            ("Action Title", action.get("title")),
            ("Status", action.get("status")),
            ("Audit", audit.get("name")),
            ("Due Date", _fmt_date(action.get("due_date"))),
        ]
        return (
            f"Corrective Action Required: {action.get('title')}",
            rows,
            f"{audit_link}/actions/{action.get('id', '')}",
        )

    if kind == NotificationKind.MAJOR_FINDINGS_CLOSED:
        rows = [("Audit Name", audit.get("name"))]
        return f"All Major Non-Conformities Closed: {audit.get('name')}", rows, audit_link

    title = payload.get("title") or "ComplyTrack notification"
    if audit:
        return title, [("Audit", audit.get("name"))], audit_link
    return title, [], payload.get("link") or app_url


def build_email(kind: NotificationKind, recipients: List[str], payload: Dict[str, Any]) -> EmailMessage:
    """Render a workflow notification into an email message."""
    subject, rows, link = _render(kind, payload)
    message = payload.get("message") or ""

    text_lines = [subject, ""]
    text_lines += [f"{label}: {value}" for label, value in rows if value is not None]
    if message:
        text_lines += ["", message]
    text_lines += ["", f"View details: {link}"]

    rows_html = "".join(
        f"<p><strong>{html.escape(label)}:</strong> {html.escape(str(value))}</p>"
        for label, value in rows
        if value is not None
    )
    body_html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #333;">{html.escape(subject)}</h2>
        <div style="background-color: #f9f9f9; padding: 15px; border-radius: 5px;">{rows_html}</div>
        <p>{html.escape(message)}</p>
        <p><a href="{html.escape(link)}">View Details</a></p>
    </div>
    """

    return EmailMessage(
        to=recipients,
        subject=subject,
        body_text="\n".join(text_lines),
        body_html=body_html,
    )


class NotificationGateway:
    """Delivers workflow notifications without ever failing the caller."""

    def __init__(self, db: AsyncSession, email_service: Optional[EmailService] = None):
        self.db = db
        self.email_service = email_service or EmailService()

    async def send(
        self,
        kind: NotificationKind,
        recipients: Iterable[Optional[str]],
        payload: Dict[str, Any],
    ) -> bool:
        """
        Send an email notification to a list of addresses.

        Returns True when the transport accepted the message. Any failure,
        including template errors, is logged and reported as False.
        """
        try:
            addresses = normalize_recipients(recipients)
            if not addresses:
                logger.debug(f"No recipients for {kind.value} notification, skipping")
                return False
            sent = await self.email_service.send_email(build_email(kind, addresses, payload))
            if not sent:
                logger.warning(f"{kind.value} notification to {addresses} was not delivered")
            return bool(sent)
        except Exception as e:
            logger.error(f"Failed to send {kind.value} notification: {e}")
            return False

    async def notify_user(
        self,
        audit_id: uuid.UUID,
        user_id: uuid.UUID,
        title: str,
        message: str,
    ) -> AuditNotification:
        """Queue an in-app notification in the current transaction."""
        notification = AuditNotification(
            audit_id=audit_id,
            user_id=user_id,
            title=title,
            message=message,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.flush()
        logger.info(f"Notification created for user {user_id}: {title}")
        return notification

    async def get_user_notifications(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[AuditNotification]:
        """Get in-app notifications for a user, newest first."""
        query = select(AuditNotification).where(AuditNotification.user_id == user_id)
        if unread_only:
            query = query.where(AuditNotification.is_read == False)  # noqa: E712
        result = await self.db.execute(
            query.order_by(AuditNotification.sent_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def mark_as_read(
        self,
        notification_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[AuditNotification]:
        """Mark a user's notification as read. Returns None if it is not theirs."""
        result = await self.db.execute(
            select(AuditNotification)
            .where(AuditNotification.id == notification_id)
            .where(AuditNotification.user_id == user_id)
        )
        notification = result.scalar_one_or_none()
        if notification and not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
            await self.db.commit()
        return notification
