"""
Tests for the notification gateway (email + in-app).
"""

from uuid import uuid4

from app.services.email_service import EmailService
from app.services.notification_service import (
    NotificationGateway,
    NotificationKind,
    build_email,
    normalize_recipients,
)


class RecordingTransport:
    def __init__(self, result=True):
        self.result = result
        self.messages = []

    async def send_email(self, message):
        self.messages.append(message)
        return self.result


class BrokenTransport:
    async def send_email(self, message):
        raise TimeoutError("SMTP timed out")


AUDIT = {"id": "a1", "name": "ISO 14001 Recertification", "audit_type": "COMPLIANCE"}


class TestRecipients:
    """Tests for normalize_recipients"""

    def test_blanks_and_duplicates_dropped(self):
        recipients = ["a@example.com", None, "", "  ", "A@Example.com", "b@example.com", "a@example.com"]
        assert normalize_recipients(recipients) == ["a@example.com", "b@example.com"]

    def test_order_preserved(self):
        assert normalize_recipients(["z@example.com", "y@example.com"]) == ["z@example.com", "y@example.com"]


class TestRendering:
    """Tests for subject lines per notification kind"""

    def test_subjects(self):
        cases = {
            NotificationKind.AUDIT_CREATED: "New Audit Created: ISO 14001 Recertification",
            NotificationKind.AUDIT_STATUS_CHANGED: "Audit Status Updated: ISO 14001 Recertification",
            NotificationKind.MAJOR_FINDINGS_CLOSED: "All Major Non-Conformities Closed: ISO 14001 Recertification",
        }
        for kind, subject in cases.items():
            assert build_email(kind, ["x@example.com"], {"audit": AUDIT}).subject == subject

    def test_finding_and_action_subjects(self):
        finding = build_email(
            NotificationKind.FINDING_ASSIGNED,
            ["x@example.com"],
            {"audit": AUDIT, "finding": {"id": "f1", "title": "Spill kit missing"}},
        )
        action = build_email(
            NotificationKind.ACTION_ASSIGNED,
            ["x@example.com"],
            {"audit": AUDIT, "action": {"id": "c1", "title": "Restock spill kit"}},
        )
        assert finding.subject == "Audit Finding: Spill kit missing"
        assert "/audits/a1/findings/f1" in finding.body_text
        assert action.subject == "Corrective Action Required: Restock spill kit"

    def test_custom_message_links_to_audit(self):
        message = build_email(
            NotificationKind.CUSTOM,
            ["x@example.com"],
            {"audit": AUDIT, "title": "Opening meeting", "message": "Room 4 at 09:00"},
        )
        assert message.subject == "Opening meeting"
        assert "Audit: ISO 14001 Recertification" in message.body_text
        assert "Room 4 at 09:00" in message.body_text
        assert "/audits/a1" in message.body_text

    def test_html_is_escaped(self):
        message = build_email(
            NotificationKind.AUDIT_CREATED,
            ["x@example.com"],
            {"audit": {**AUDIT, "name": "<script>x</script>"}},
        )
        assert "<script>" not in message.body_html


class TestGatewaySend:
    """Tests for NotificationGateway.send"""

    async def test_delivers_to_normalized_recipients(self, db_session):
        transport = RecordingTransport()
        gateway = NotificationGateway(db_session, transport)

        sent = await gateway.send(
            NotificationKind.AUDIT_STATUS_CHANGED,
            ["a@example.com", None, "a@example.com"],
            {"audit": AUDIT, "old_status": "PLANNED", "new_status": "IN_PROGRESS"},
        )

        assert sent is True
        assert transport.messages[0].to == ["a@example.com"]
        assert "New Status: IN_PROGRESS" in transport.messages[0].body_text

    async def test_no_recipients_returns_false(self, db_session):
        transport = RecordingTransport()
        sent = await NotificationGateway(db_session, transport).send(
            NotificationKind.AUDIT_CREATED, [None, ""], {"audit": AUDIT}
        )
        assert sent is False
        assert transport.messages == []

    async def test_transport_failure_is_swallowed(self, db_session):
        sent = await NotificationGateway(db_session, BrokenTransport()).send(
            NotificationKind.AUDIT_CREATED, ["a@example.com"], {"audit": AUDIT}
        )
        assert sent is False

    async def test_rejected_delivery_returns_false(self, db_session):
        sent = await NotificationGateway(db_session, RecordingTransport(result=False)).send(
            NotificationKind.AUDIT_CREATED, ["a@example.com"], {"audit": AUDIT}
        )
        assert sent is False

    async def test_mock_provider_accepts(self, db_session, monkeypatch):
        """Test the unconfigured email service end to end"""
        monkeypatch.undo()
        service = EmailService()
        service.sendgrid_api_key = None
        service.smtp_host = None

        sent = await NotificationGateway(db_session, service).send(
            NotificationKind.AUDIT_CREATED, ["a@example.com"], {"audit": AUDIT}
        )
        assert sent is True


class TestInAppNotifications:
    """Tests for in-app notification rows"""

    async def test_notify_list_and_mark_read(self, db_session, planned_audit, staff_user):
        gateway = NotificationGateway(db_session)
        first = await gateway.notify_user(planned_audit.id, staff_user.id, "Heads up", "Audit next week")
        await gateway.notify_user(planned_audit.id, staff_user.id, "Reminder", "Bring records")
        await db_session.commit()

        assert len(await gateway.get_user_notifications(staff_user.id)) == 2

        read = await gateway.mark_as_read(first.id, staff_user.id)
        assert read.is_read is True
        assert read.read_at is not None

        unread = await gateway.get_user_notifications(staff_user.id, unread_only=True)
        assert [n.title for n in unread] == ["Reminder"]

    async def test_cannot_mark_someone_elses(self, db_session, planned_audit, staff_user, manager_user):
        gateway = NotificationGateway(db_session)
        notification = await gateway.notify_user(planned_audit.id, staff_user.id, "Heads up", "Audit next week")
        await db_session.commit()

        assert await gateway.mark_as_read(notification.id, manager_user.id) is None
        assert await gateway.mark_as_read(uuid4(), staff_user.id) is None
