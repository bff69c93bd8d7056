"""
Tests for the audit dashboard aggregations and the audit calendar.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest_asyncio

from app.models.audit import (
    ActionStatus,
    ActionType,
    Audit,
    AuditStatus,
    AuditType,
    Auditor,
    CorrectiveAction,
    Finding,
    FindingPriority,
    FindingStatus,
    FindingType,
)
from app.services.audit_dashboard_service import AuditDashboardService


NOW = datetime.now(timezone.utc)


def _finding(audit, title, finding_type, priority, status):
    return Finding(
        id=uuid4(),
        audit_id=audit.id,
        title=title,
        description=f"{title} observed on site",
        finding_type=finding_type,
        priority=priority,
        status=status,
    )


def _action(audit, finding, owner, title, status, due):
    return CorrectiveAction(
        id=uuid4(),
        audit_id=audit.id,
        finding_id=finding.id,
        title=title,
        description=f"{title} for {finding.title}",
        action_type=ActionType.CORRECTIVE,
        assigned_to_id=owner.id,
        status=status,
        due_date=due,
    )


@pytest_asyncio.fixture
async def supplier_audit(db_session, planned_audit, staff_user):
    """An EXTERNAL audit in progress with a mix of findings and actions."""
    auditor = Auditor(
        id=uuid4(),
        name="Erin External",
        email="erin@certbody.test",
        is_external=True,
        firm_name="CertBody Ltd",
    )
    db_session.add(auditor)
    audit = Audit(
        id=uuid4(),
        name="Supplier Certification",
        audit_type=AuditType.EXTERNAL,
        status=AuditStatus.IN_PROGRESS,
        start_date=NOW - timedelta(days=2),
        auditor_id=auditor.id,
    )
    db_session.add(audit)
    await db_session.flush()

    major = _finding(
        audit, "Calibration records missing", FindingType.MAJOR_NON_CONFORMITY,
        FindingPriority.HIGH, FindingStatus.OPEN,
    )
    critical = _finding(
        audit, "Blocked fire exit", FindingType.OBSERVATION,
        FindingPriority.CRITICAL, FindingStatus.IN_PROGRESS,
    )
    closed = _finding(
        audit, "Expired first aid kit", FindingType.NON_CONFORMITY,
        FindingPriority.CRITICAL, FindingStatus.CLOSED,
    )
    db_session.add_all([major, critical, closed])
    await db_session.flush()

    db_session.add_all([
        _action(audit, major, staff_user, "Recalibrate gauges", ActionStatus.OPEN, NOW - timedelta(days=3)),
        _action(audit, major, staff_user, "Archive certificates", ActionStatus.COMPLETED, NOW - timedelta(days=5)),
        _action(audit, major, staff_user, "Train technicians", ActionStatus.IN_PROGRESS, NOW + timedelta(days=5)),
    ])
    await db_session.commit()
    return audit


# ===========================================
# OVERVIEW
# ===========================================

class TestOverview:
    """Tests for headline counts"""

    async def test_counts(self, db_session, supplier_audit):
        overview = await AuditDashboardService(db_session).get_overview(NOW)

        assert overview["total_audits"] == 2
        assert overview["active_audits"] == 1
        assert overview["planned_audits"] == 1
        assert overview["completed_audits"] == 0
        assert overview["total_findings"] == 3
        assert overview["open_findings"] == 1
        # Priority CRITICAL regardless of status
        assert overview["critical_findings"] == 2
        assert overview["overdue_actions"] == 1
        assert overview["audit_completion_rate"] == 0.0

    async def test_empty_database(self, db_session):
        overview = await AuditDashboardService(db_session).get_overview(NOW)

        assert overview["total_audits"] == 0
        assert overview["audit_completion_rate"] == 0.0

    async def test_distributions(self, db_session, supplier_audit):
        service = AuditDashboardService(db_session)

        statuses = {row["status"]: row["count"] for row in await service.get_status_distribution()}
        kinds = {row["finding_type"]: row["count"] for row in await service.get_findings_distribution()}

        assert statuses == {"PLANNED": 1, "IN_PROGRESS": 1}
        assert kinds == {"MAJOR_NON_CONFORMITY": 1, "OBSERVATION": 1, "NON_CONFORMITY": 1}


# ===========================================
# ATTENTION LISTS
# ===========================================

class TestAttentionLists:
    """Tests for overdue actions and critical findings"""

    async def test_overdue_actions(self, db_session, supplier_audit):
        overdue = await AuditDashboardService(db_session).get_overdue_actions(now=NOW)

        assert len(overdue) == 1
        row = overdue[0]
        assert row["action"].title == "Recalibrate gauges"
        assert row["audit_name"] == "Supplier Certification"
        assert row["finding_title"] == "Calibration records missing"
        assert row["finding_priority"] == FindingPriority.HIGH
        assert row["days_overdue"] == 3

    async def test_critical_findings_include_open_major(self, db_session, supplier_audit):
        rows = await AuditDashboardService(db_session).get_critical_findings()

        titles = {row["finding"].title for row in rows}
        assert titles == {"Calibration records missing", "Blocked fire exit"}

        major = next(row for row in rows if row["finding"].title == "Calibration records missing")
        assert [action.title for action in major["open_actions"]] == [
            "Recalibrate gauges",
            "Train technicians",
        ]

    async def test_upcoming_audits(self, db_session, supplier_audit, planned_audit):
        upcoming = await AuditDashboardService(db_session).get_upcoming_audits(now=NOW)

        assert [audit.id for audit in upcoming] == [planned_audit.id]

    async def test_recent_audits_carry_counts(self, db_session, supplier_audit):
        rows = await AuditDashboardService(db_session).get_recent_audits()

        counts = {audit.name: (findings, actions) for audit, findings, actions in rows}
        assert counts["Supplier Certification"] == (3, 3)
        assert counts["ISO 9001 Surveillance"] == (0, 0)


# ===========================================
# BREAKDOWNS
# ===========================================

class TestBreakdowns:
    """Tests for department, auditor and monthly breakdowns"""

    async def test_department_stats(self, db_session, supplier_audit, department):
        rows = await AuditDashboardService(db_session).get_department_stats()

        assert len(rows) == 1
        assert rows[0]["department_name"] == "Quality Assurance"
        assert rows[0]["total_audits"] == 1
        assert rows[0]["active_audits"] == 0
        assert rows[0]["total_findings"] == 0

    async def test_auditor_performance(self, db_session, supplier_audit, internal_auditor):
        rows = await AuditDashboardService(db_session).get_auditor_performance()
        by_name = {row["auditor_name"]: row for row in rows}

        external = by_name["Erin External"]
        assert external["is_external"] is True
        assert external["firm_name"] == "CertBody Ltd"
        assert external["total_audits"] == 1
        assert external["active_audits"] == 1
        assert external["total_findings"] == 3
        assert external["total_actions"] == 3
        assert external["average_findings_per_audit"] == 3.0

        internal = by_name[internal_auditor.name]
        assert internal["total_audits"] == 1
        assert internal["average_findings_per_audit"] == 0.0

    async def test_trends_bucket_by_month(self, db_session, internal_auditor):
        now = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)
        for name, status, created in [
            ("September audit", AuditStatus.COMPLETED, datetime(2026, 9, 10, tzinfo=timezone.utc)),
            ("October audit", AuditStatus.PLANNED, datetime(2026, 10, 2, tzinfo=timezone.utc)),
            ("January audit", AuditStatus.COMPLETED, datetime(2026, 1, 5, tzinfo=timezone.utc)),
        ]:
            db_session.add(Audit(
                name=name,
                audit_type=AuditType.INTERNAL,
                status=status,
                start_date=created,
                auditor_id=internal_auditor.id,
                created_at=created,
            ))
        await db_session.commit()

        trends = await AuditDashboardService(db_session).get_audit_trends(6, now)

        assert trends["since"] == datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert trends["overall"] == {"COMPLETED": 1, "PLANNED": 1}
        assert trends["monthly"] == [
            {"month": "2026-10", "status": "PLANNED", "count": 1},
            {"month": "2026-09", "status": "COMPLETED", "count": 1},
        ]


# ===========================================
# CALENDAR
# ===========================================

class TestCalendar:
    """Tests for calendar events"""

    async def test_external_event_defaults_to_one_day(self, db_session, supplier_audit):
        events = await AuditDashboardService(db_session).get_calendar_events(audit_type=AuditType.EXTERNAL)

        assert len(events) == 1
        event = events[0]
        assert event["title"] == "Supplier Certification"
        assert event["end"] - event["start"] == timedelta(days=1)
        assert event["color"] == "#f59e0b"
        assert event["border_color"] == "#dc2626"
        assert event["department"] is None

    async def test_date_range_filter(self, db_session, supplier_audit, planned_audit):
        events = await AuditDashboardService(db_session).get_calendar_events(
            start_date=NOW, end_date=NOW + timedelta(days=30)
        )

        assert [event["id"] for event in events] == [planned_audit.id]
        assert events[0]["department"] == "Quality Assurance"
        assert events[0]["color"] == "#3b82f6"


# ===========================================
# HTTP
# ===========================================

class TestDashboardEndpoints:
    """Tests for the dashboard and calendar routes"""

    async def test_combined_dashboard(self, client, manager_headers, supplier_audit):
        response = await client.get("/api/audits/dashboard", headers=manager_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["overview"]["total_audits"] == 2
        assert len(data["overdue_actions"]) == 1
        assert data["overdue_actions"][0]["action"]["title"] == "Recalibrate gauges"
        assert len(data["critical_findings"]) == 2

    async def test_literal_paths_are_not_audit_ids(self, client, manager_headers, supplier_audit):
        response = await client.get("/api/audits/dashboard/auditor-performance", headers=manager_headers)

        assert response.status_code == 200
        assert {row["auditor_name"] for row in response.json()} == {"Erin External", "Ayo Auditor"}

    async def test_calendar_status_filter(self, client, manager_headers, supplier_audit):
        response = await client.get(
            "/api/audits/calendar/events",
            headers=manager_headers,
            params={"status": "IN_PROGRESS"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["events"][0]["auditor"]["firm_name"] == "CertBody Ltd"

    async def test_requires_authentication(self, client):
        response = await client.get("/api/audits/dashboard/overview")
        assert response.status_code == 401
