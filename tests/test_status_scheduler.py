"""
Tests for the date-driven audit status scheduler.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.config import settings
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.audit import Audit, AuditStatus, AuditType, Auditor
from app.services.audit_status_scheduler import AuditStatusScheduler


NOW = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)


async def _audit(db_session, auditor, name, status, start, end=None):
    audit = Audit(
        name=name,
        audit_type=AuditType.QUALITY,
        status=status,
        start_date=start,
        end_date=end,
        auditor_id=auditor.id,
    )
    db_session.add(audit)
    await db_session.commit()
    return audit


async def _status(db_session, audit) -> AuditStatus:
    await db_session.refresh(audit)
    return audit.status


async def _logs(db_session):
    result = await db_session.execute(
        select(ActivityLog)
        .where(ActivityLog.action == ActivityAction.AUDIT_STATUS_CHANGED)
        .order_by(ActivityLog.created_at)
    )
    return list(result.scalars().all())


class TestStatusRules:
    """Tests for the PLANNED -> IN_PROGRESS -> COMPLETED rules"""

    async def test_started_audit_moves_in_progress(self, db_session, internal_auditor, admin_user):
        audit = await _audit(
            db_session, internal_auditor, "Started", AuditStatus.PLANNED,
            NOW - timedelta(hours=1), NOW + timedelta(days=2),
        )

        result = await AuditStatusScheduler(db_session).run_pass(NOW)

        assert result["updated_count"] == 1
        assert result["failed_count"] == 0
        assert result["transitions"] == [
            {"audit_id": str(audit.id), "from": "PLANNED", "to": "IN_PROGRESS"}
        ]
        assert await _status(db_session, audit) == AuditStatus.IN_PROGRESS

    async def test_finished_audit_moves_completed(self, db_session, internal_auditor, admin_user):
        audit = await _audit(
            db_session, internal_auditor, "Finished", AuditStatus.IN_PROGRESS,
            NOW - timedelta(days=3), NOW - timedelta(days=1),
        )

        await AuditStatusScheduler(db_session).run_pass(NOW)
        assert await _status(db_session, audit) == AuditStatus.COMPLETED

    async def test_elapsed_planned_audit_completes_in_one_pass(self, db_session, internal_auditor, admin_user):
        audit = await _audit(
            db_session, internal_auditor, "Overdue", AuditStatus.PLANNED,
            NOW - timedelta(days=5), NOW - timedelta(days=1),
        )

        result = await AuditStatusScheduler(db_session).run_pass(NOW)

        assert [t["to"] for t in result["transitions"]] == ["IN_PROGRESS", "COMPLETED"]
        assert await _status(db_session, audit) == AuditStatus.COMPLETED

    async def test_untouched_audits(self, db_session, internal_auditor, admin_user):
        future = await _audit(
            db_session, internal_auditor, "Future", AuditStatus.PLANNED, NOW + timedelta(days=1)
        )
        open_ended = await _audit(
            db_session, internal_auditor, "Open ended", AuditStatus.IN_PROGRESS, NOW - timedelta(days=1)
        )
        delayed = await _audit(
            db_session, internal_auditor, "Delayed", AuditStatus.DELAYED,
            NOW - timedelta(days=3), NOW - timedelta(days=1),
        )

        result = await AuditStatusScheduler(db_session).run_pass(NOW)

        assert result["updated_count"] == 0
        assert await _status(db_session, future) == AuditStatus.PLANNED
        assert await _status(db_session, open_ended) == AuditStatus.IN_PROGRESS
        assert await _status(db_session, delayed) == AuditStatus.DELAYED

    async def test_second_pass_is_a_no_op(self, db_session, internal_auditor, admin_user):
        await _audit(
            db_session, internal_auditor, "Started", AuditStatus.PLANNED,
            NOW - timedelta(hours=1), NOW + timedelta(days=2),
        )
        scheduler = AuditStatusScheduler(db_session)

        assert (await scheduler.run_pass(NOW))["updated_count"] == 1
        assert (await scheduler.run_pass(NOW))["updated_count"] == 0
        assert len(await _logs(db_session)) == 1

    async def test_batch_size_is_respected(self, db_session, internal_auditor, admin_user):
        for day in range(3):
            await _audit(
                db_session, internal_auditor, f"Batch {day}", AuditStatus.PLANNED,
                NOW - timedelta(days=day + 1), NOW + timedelta(days=5),
            )
        scheduler = AuditStatusScheduler(db_session, batch_size=2)

        assert (await scheduler.run_pass(NOW))["updated_count"] == 2
        assert (await scheduler.run_pass(NOW))["updated_count"] == 1


class TestActivityAttribution:
    """Tests for who scheduler transitions are logged against"""

    async def test_logged_against_admin_fallback(self, db_session, internal_auditor, admin_user):
        audit = await _audit(
            db_session, internal_auditor, "Kick-off", AuditStatus.PLANNED,
            NOW - timedelta(hours=1), NOW + timedelta(days=2),
        )

        await AuditStatusScheduler(db_session).run_pass(NOW)

        logs = await _logs(db_session)
        assert len(logs) == 1
        assert logs[0].user_id == admin_user.id
        assert logs[0].target_id == str(audit.id)
        assert logs[0].details == (
            'Automatically updated audit "Kick-off" status from PLANNED to IN_PROGRESS '
            "as start date (2026-10-17) has arrived"
        )

    async def test_system_user_preferred(self, db_session, internal_auditor, admin_user, monkeypatch):
        monkeypatch.setattr(settings, "system_user_email", internal_auditor.email)
        await _audit(
            db_session, internal_auditor, "Kick-off", AuditStatus.PLANNED,
            NOW - timedelta(hours=1), NOW + timedelta(days=2),
        )

        await AuditStatusScheduler(db_session).run_pass(NOW)

        logs = await _logs(db_session)
        assert logs[0].user_id == internal_auditor.user_id

    async def test_no_users_still_transitions(self, db_session):
        auditor = Auditor(name="Lee Outside", email="lee@bsi-audit.com", is_external=True)
        db_session.add(auditor)
        await db_session.commit()
        audit = await _audit(
            db_session, auditor, "Unattended", AuditStatus.PLANNED,
            NOW - timedelta(hours=1), NOW + timedelta(days=2),
        )

        result = await AuditStatusScheduler(db_session).run_pass(NOW)

        assert result["updated_count"] == 1
        assert await _status(db_session, audit) == AuditStatus.IN_PROGRESS
        assert await _logs(db_session) == []


class TestFailureIsolation:
    """Tests that one bad row or log write never aborts the pass"""

    async def test_failing_row_is_skipped(self, db_session, internal_auditor, admin_user, monkeypatch):
        broken = await _audit(
            db_session, internal_auditor, "Broken", AuditStatus.PLANNED,
            NOW - timedelta(days=2), NOW + timedelta(days=2),
        )
        healthy = await _audit(
            db_session, internal_auditor, "Healthy", AuditStatus.PLANNED,
            NOW - timedelta(days=1), NOW + timedelta(days=2),
        )
        broken_id, healthy_id = broken.id, healthy.id
        scheduler = AuditStatusScheduler(db_session)
        original = scheduler._transition

        async def flaky_transition(audit_id, *args):
            if audit_id == broken_id:
                raise RuntimeError("deadlock detected")
            return await original(audit_id, *args)

        monkeypatch.setattr(scheduler, "_transition", flaky_transition)

        result = await scheduler.run_pass(NOW)

        assert result["updated_count"] == 1
        assert result["failed_count"] == 1
        assert result["transitions"][0]["audit_id"] == str(healthy_id)
        assert await _status(db_session, broken) == AuditStatus.PLANNED
        assert await _status(db_session, healthy) == AuditStatus.IN_PROGRESS

    async def test_activity_log_failure_keeps_transition(
        self, db_session, internal_auditor, admin_user, monkeypatch
    ):
        first = await _audit(
            db_session, internal_auditor, "First", AuditStatus.PLANNED,
            NOW - timedelta(days=2), NOW + timedelta(days=2),
        )
        second = await _audit(
            db_session, internal_auditor, "Second", AuditStatus.PLANNED,
            NOW - timedelta(days=1), NOW + timedelta(days=2),
        )
        scheduler = AuditStatusScheduler(db_session)

        async def broken_log(*args, **kwargs):
            raise RuntimeError("activity_logs is locked")

        monkeypatch.setattr(scheduler.activity, "log_action", broken_log)

        result = await scheduler.run_pass(NOW)

        assert result["updated_count"] == 2
        assert result["failed_count"] == 0
        assert await _status(db_session, first) == AuditStatus.IN_PROGRESS
        assert await _status(db_session, second) == AuditStatus.IN_PROGRESS
        assert await _logs(db_session) == []
