"""
Tests for the audit lifecycle engine.

Tests cover:
1. Status transition table and policy (permissive / strict)
2. Audit creation with auditor resolution
3. Closure gate on major non-conformities
4. Status-change notifications
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from app.models.audit import Audit, AuditStatus, AuditType, Auditor, FindingStatus, FindingType
from app.models.activity_log import ActivityAction, ActivityLog
from app.schemas.audit import (
    AuditCreateRequest,
    AuditUpdateRequest,
    FindingCreateRequest,
    FindingUpdateRequest,
)
from app.services.audit_lifecycle_service import AuditLifecycleService, can_transition
from app.services.finding_service import FindingService
from app.utils.error_handling import (
    AuditorSelectionException,
    AuthenticationException,
    ClosureBlockedException,
    ErrorCode,
    InvalidDateRangeException,
    InvalidStatusTransitionException,
    UserNotFoundException,
)


def _create_request(**overrides) -> AuditCreateRequest:
    now = datetime.now(timezone.utc)
    fields = {
        "name": "Annual Internal Audit",
        "audit_type": AuditType.INTERNAL,
        "start_date": now + timedelta(days=3),
        "end_date": now + timedelta(days=5),
        "objectives": "Check document control",
    }
    fields.update(overrides)
    return AuditCreateRequest(**fields)


# ===========================================
# 1. TRANSITION TABLE
# ===========================================

class TestTransitionTable:
    """Tests for can_transition"""

    @pytest.mark.parametrize("current,new", [
        (AuditStatus.PLANNED, AuditStatus.IN_PROGRESS),
        (AuditStatus.PLANNED, AuditStatus.CANCELLED),
        (AuditStatus.PLANNED, AuditStatus.DELAYED),
        (AuditStatus.IN_PROGRESS, AuditStatus.COMPLETED),
        (AuditStatus.IN_PROGRESS, AuditStatus.DELAYED),
        (AuditStatus.DELAYED, AuditStatus.PLANNED),
        (AuditStatus.DELAYED, AuditStatus.IN_PROGRESS),
        (AuditStatus.DELAYED, AuditStatus.CANCELLED),
    ])
    def test_allowed_transitions(self, current, new):
        assert can_transition(current, new) is True

    @pytest.mark.parametrize("current,new", [
        (AuditStatus.PLANNED, AuditStatus.COMPLETED),
        (AuditStatus.COMPLETED, AuditStatus.IN_PROGRESS),
        (AuditStatus.COMPLETED, AuditStatus.PLANNED),
        (AuditStatus.CANCELLED, AuditStatus.PLANNED),
        (AuditStatus.CANCELLED, AuditStatus.IN_PROGRESS),
    ])
    def test_rejected_transitions(self, current, new):
        assert can_transition(current, new) is False

    def test_same_status_is_allowed(self):
        """Test that re-applying the current status is a no-op"""
        for status in AuditStatus:
            assert can_transition(status, status) is True


class TestStatusPolicy:
    """Tests for manual status changes"""

    async def test_permissive_mode_applies_off_table_change(self, db_session, planned_audit, manager_user):
        service = AuditLifecycleService(db_session, strict_transitions=False)
        audit = await service.change_status(planned_audit.id, AuditStatus.COMPLETED, manager_user)
        assert audit.status == AuditStatus.COMPLETED

    async def test_strict_mode_rejects_off_table_change(self, db_session, planned_audit, manager_user):
        service = AuditLifecycleService(db_session, strict_transitions=True)
        with pytest.raises(InvalidStatusTransitionException) as exc:
            await service.change_status(planned_audit.id, AuditStatus.COMPLETED, manager_user)

        assert exc.value.code == ErrorCode.INVALID_STATUS_TRANSITION
        assert exc.value.details["current_status"] == "PLANNED"

        audit = await db_session.get(Audit, planned_audit.id, populate_existing=True)
        assert audit.status == AuditStatus.PLANNED

    async def test_strict_mode_allows_table_change(self, db_session, planned_audit, manager_user):
        service = AuditLifecycleService(db_session, strict_transitions=True)
        audit = await service.change_status(planned_audit.id, AuditStatus.DELAYED, manager_user)
        assert audit.status == AuditStatus.DELAYED

    async def test_status_change_is_logged(self, db_session, planned_audit, manager_user):
        service = AuditLifecycleService(db_session)
        await service.change_status(planned_audit.id, AuditStatus.IN_PROGRESS, manager_user)

        logs = await service.activity.get_logs(target_type="audit", target_id=planned_audit.id)
        assert logs[0].action == ActivityAction.AUDIT_STATUS_CHANGED
        assert "from PLANNED to IN_PROGRESS" in logs[0].details

    async def test_status_change_emails_participants(
        self, db_session, planned_audit, manager_user, auditor_user, staff_user, sent_emails
    ):
        service = AuditLifecycleService(db_session)
        await service.change_status(planned_audit.id, AuditStatus.IN_PROGRESS, manager_user)

        assert len(sent_emails) == 1
        message = sent_emails[0]
        assert message.subject == "Audit Status Updated: ISO 9001 Surveillance"
        assert set(message.to) == {auditor_user.email, staff_user.email, manager_user.email}

    async def test_unchanged_status_sends_nothing(self, db_session, planned_audit, manager_user, sent_emails):
        service = AuditLifecycleService(db_session)
        await service.update_audit(planned_audit.id, AuditUpdateRequest(scope="Line 3"), manager_user)
        assert sent_emails == []

    async def test_missing_actor_is_rejected(self, db_session, planned_audit):
        service = AuditLifecycleService(db_session)
        with pytest.raises(AuthenticationException):
            await service.change_status(planned_audit.id, AuditStatus.IN_PROGRESS, None)

    async def test_execution_phase_round_trip(self, db_session, planned_audit, manager_user):
        service = AuditLifecycleService(db_session)
        audit = await service.start_execution_phase(planned_audit.id, manager_user)
        assert audit.status == AuditStatus.IN_PROGRESS

        audit, summary = await service.complete_execution_phase(planned_audit.id, "All good", manager_user)
        assert audit.status == AuditStatus.COMPLETED
        assert audit.summary == "All good"
        assert summary == {}


# ===========================================
# 2. AUDIT CREATION
# ===========================================

class TestCreateAudit:
    """Tests for audit creation and auditor resolution"""

    async def test_internal_auditor_is_reused(self, db_session, manager_user, auditor_user):
        service = AuditLifecycleService(db_session)
        request = _create_request(auditor_user_id=auditor_user.id)

        first = await service.create_audit(request, manager_user)
        second = await service.create_audit(request.model_copy(update={"name": "Follow-up"}), manager_user)

        assert first.status == AuditStatus.PLANNED
        assert first.auditor_id == second.auditor_id
        assert first.auditor.user_id == auditor_user.id
        assert first.auditor.is_external is False

        count = await db_session.scalar(
            select(func.count(Auditor.id)).where(Auditor.user_id == auditor_user.id)
        )
        assert count == 1

    async def test_external_auditor_always_created(self, db_session, manager_user):
        service = AuditLifecycleService(db_session)
        request = _create_request(
            audit_type=AuditType.EXTERNAL,
            auditor_name="Dana External",
            auditor_email="dana@bsi-audit.com",
        )

        first = await service.create_audit(request, manager_user)
        second = await service.create_audit(request, manager_user)

        assert first.auditor_id != second.auditor_id
        assert first.auditor.is_external is True
        assert first.auditor.firm_name == "External Firm"

    async def test_explicit_auditor_id_wins(self, db_session, manager_user, internal_auditor):
        service = AuditLifecycleService(db_session)
        request = _create_request(audit_type=AuditType.SAFETY, auditor_id=internal_auditor.id)
        audit = await service.create_audit(request, manager_user)
        assert audit.auditor_id == internal_auditor.id

    async def test_incomplete_external_selector(self, db_session, manager_user):
        service = AuditLifecycleService(db_session)
        request = _create_request(audit_type=AuditType.EXTERNAL, auditor_name="No Email")

        with pytest.raises(AuditorSelectionException) as exc:
            await service.create_audit(request, manager_user)

        assert exc.value.code == ErrorCode.AUDITOR_SELECTION_INCOMPLETE
        assert exc.value.details["required_fields"] == ["auditor_id", "auditor_name", "auditor_email"]
        assert await db_session.scalar(select(func.count(Audit.id))) == 0

    async def test_incomplete_internal_selector(self, db_session, manager_user):
        service = AuditLifecycleService(db_session)
        with pytest.raises(AuditorSelectionException) as exc:
            await service.create_audit(_create_request(), manager_user)
        assert "auditor_user_id" in exc.value.details["required_fields"]

    async def test_unknown_internal_user(self, db_session, manager_user):
        service = AuditLifecycleService(db_session)
        with pytest.raises(UserNotFoundException):
            await service.create_audit(_create_request(auditor_user_id=uuid4()), manager_user)

    async def test_end_before_start_is_rejected(self, db_session, manager_user, auditor_user):
        service = AuditLifecycleService(db_session)
        now = datetime.now(timezone.utc)
        request = _create_request(
            auditor_user_id=auditor_user.id,
            start_date=now + timedelta(days=5),
            end_date=now + timedelta(days=1),
        )
        with pytest.raises(InvalidDateRangeException):
            await service.create_audit(request, manager_user)

    async def test_creation_is_logged_and_emailed(self, db_session, manager_user, auditor_user, sent_emails):
        service = AuditLifecycleService(db_session)
        audit = await service.create_audit(_create_request(auditor_user_id=auditor_user.id), manager_user)

        result = await db_session.execute(
            select(ActivityLog).where(ActivityLog.action == ActivityAction.AUDIT_CREATED)
        )
        log = result.scalar_one()
        assert log.target_id == str(audit.id)
        assert log.details == "Created internal audit: Annual Internal Audit"

        assert sent_emails[0].subject == "New Audit Created: Annual Internal Audit"
        assert set(sent_emails[0].to) == {auditor_user.email, manager_user.email}

    async def test_missing_actor_is_rejected(self, db_session, auditor_user):
        service = AuditLifecycleService(db_session)
        with pytest.raises(AuthenticationException):
            await service.create_audit(_create_request(auditor_user_id=auditor_user.id), None)


# ===========================================
# 3. CLOSURE GATE
# ===========================================

class TestCloseAudit:
    """Tests for the major non-conformity closure gate"""

    async def _major_finding(self, db_session, audit, actor, title="Calibration records missing"):
        return await FindingService(db_session).create_finding(
            audit.id,
            FindingCreateRequest(
                title=title,
                description="No calibration certificate for gauge G-12",
                finding_type=FindingType.MAJOR_NON_CONFORMITY,
            ),
            actor,
        )

    async def test_open_major_blocks_closure(self, db_session, planned_audit, manager_user):
        finding = await self._major_finding(db_session, planned_audit, manager_user)
        assert finding.is_blocking_closure
        service = AuditLifecycleService(db_session)
        await service.start_execution_phase(planned_audit.id, manager_user)

        with pytest.raises(ClosureBlockedException) as exc:
            await service.close_audit(planned_audit.id, "Done", manager_user)

        assert exc.value.status_code == 409
        assert exc.value.open_major_findings == [
            {"id": str(finding.id), "title": "Calibration records missing"}
        ]
        audit = await db_session.get(Audit, planned_audit.id, populate_existing=True)
        assert audit.status == AuditStatus.IN_PROGRESS

    async def test_every_blocking_finding_is_listed(self, db_session, planned_audit, manager_user):
        await self._major_finding(db_session, planned_audit, manager_user, "First")
        await self._major_finding(db_session, planned_audit, manager_user, "Second")

        with pytest.raises(ClosureBlockedException) as exc:
            await AuditLifecycleService(db_session).close_audit(planned_audit.id, None, manager_user)

        assert {f["title"] for f in exc.value.open_major_findings} == {"First", "Second"}

    async def test_minor_findings_do_not_block(self, db_session, planned_audit, manager_user):
        await FindingService(db_session).create_finding(
            planned_audit.id,
            FindingCreateRequest(
                title="Label faded",
                description="Storage label hard to read",
                finding_type=FindingType.NON_CONFORMITY,
            ),
            manager_user,
        )
        service = AuditLifecycleService(db_session)
        await service.start_execution_phase(planned_audit.id, manager_user)

        audit, statistics = await service.close_audit(planned_audit.id, "Closed", manager_user)
        assert audit.status == AuditStatus.COMPLETED
        assert statistics["findings"][0]["count"] == 1

    async def test_closure_succeeds_once_major_closed(self, db_session, planned_audit, manager_user):
        finding = await self._major_finding(db_session, planned_audit, manager_user)
        findings = FindingService(db_session)
        service = AuditLifecycleService(db_session)
        await service.start_execution_phase(planned_audit.id, manager_user)

        closed = await findings.update_finding(
            finding.id, FindingUpdateRequest(status=FindingStatus.CLOSED), manager_user
        )
        assert closed.closed_at is not None

        audit, _ = await service.close_audit(planned_audit.id, "Ready for certification", manager_user)
        assert audit.status == AuditStatus.COMPLETED
        assert audit.summary == "Ready for certification"
