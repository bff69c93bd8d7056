"""
ComplyTrack - Audit Dashboard Service

Read-only aggregations over audits, findings and corrective actions:

1. Overview counts and completion rate
2. Status and finding-type distributions
3. Recent, upcoming and calendar views of audits
4. Overdue corrective actions and open critical/major findings
5. Monthly trends, department statistics and auditor performance

Nothing here writes to the database.
"""

import uuid
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import (
    ActionStatus,
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
from app.models.user import Department
from app.services.audit_lifecycle_service import as_utc

logger = logging.getLogger(__name__)


OPEN_ACTION_STATUSES = (ActionStatus.OPEN, ActionStatus.IN_PROGRESS)
OPEN_FINDING_STATUSES = (FindingStatus.OPEN, FindingStatus.IN_PROGRESS)

# Calendar colours per audit status
STATUS_COLORS = {
    AuditStatus.PLANNED: "#3b82f6",
    AuditStatus.IN_PROGRESS: "#f59e0b",
    AuditStatus.COMPLETED: "#10b981",
    AuditStatus.CANCELLED: "#ef4444",
    AuditStatus.DELAYED: "#8b5cf6",
}
DEFAULT_STATUS_COLOR = "#6b7280"
INTERNAL_BORDER_COLOR = "#2563eb"
EXTERNAL_BORDER_COLOR = "#dc2626"


def _rate(part: int, whole: int, digits: int = 1) -> float:
    return round(part * 100 / whole, digits) if whole else 0.0


class AuditDashboardService:
    """Service for audit dashboard data."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _count(self, query) -> int:
        return (await self.db.execute(query)).scalar_one()

    async def _counts_by_audit(self, model, audit_ids: List[uuid.UUID]) -> Dict[uuid.UUID, int]:
        if not audit_ids:
            return {}
        result = await self.db.execute(
            select(model.audit_id, func.count(model.id))
            .where(model.audit_id.in_(audit_ids))
            .group_by(model.audit_id)
        )
        return dict(result.all())

    # ===========================================
    # OVERVIEW & DISTRIBUTIONS
    # ===========================================

    async def get_overview(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Headline counts. Critical means priority CRITICAL, whatever the status."""
        now = as_utc(now) if now else datetime.now(timezone.utc)

        result = await self.db.execute(select(Audit.status, func.count(Audit.id)).group_by(Audit.status))
        by_status = {status: count for status, count in result.all()}
        total_audits = sum(by_status.values())
        completed = by_status.get(AuditStatus.COMPLETED, 0)

        return {
            "total_audits": total_audits,
            "active_audits": by_status.get(AuditStatus.IN_PROGRESS, 0),
            "completed_audits": completed,
            "planned_audits": by_status.get(AuditStatus.PLANNED, 0),
            "total_findings": await self._count(select(func.count(Finding.id))),
            "open_findings": await self._count(
                select(func.count(Finding.id)).where(Finding.status == FindingStatus.OPEN)
            ),
            "critical_findings": await self._count(
                select(func.count(Finding.id)).where(Finding.priority == FindingPriority.CRITICAL)
            ),
            "overdue_actions": await self._count(
                select(func.count(CorrectiveAction.id)).where(
                    CorrectiveAction.due_date < now,
                    CorrectiveAction.status.in_(OPEN_ACTION_STATUSES),
                )
            ),
            "audit_completion_rate": _rate(completed, total_audits),
        }

    async def get_status_distribution(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(Audit.status, func.count(Audit.id)).group_by(Audit.status).order_by(Audit.status)
        )
        return [{"status": status.value, "count": count} for status, count in result.all()]

    async def get_findings_distribution(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(Finding.finding_type, func.count(Finding.id))
            .group_by(Finding.finding_type)
            .order_by(Finding.finding_type)
        )
        return [{"finding_type": kind.value, "count": count} for kind, count in result.all()]

    # ===========================================
    # AUDIT LISTS
    # ===========================================

    async def get_recent_audits(self, limit: int = 5) -> List[Tuple[Audit, int, int]]:
        """Most recently created audits with their finding and action counts."""
        result = await self.db.execute(select(Audit).order_by(Audit.created_at.desc()).limit(limit))
        audits = list(result.unique().scalars().all())
        ids = [audit.id for audit in audits]
        findings = await self._counts_by_audit(Finding, ids)
        actions = await self._counts_by_audit(CorrectiveAction, ids)
        return [(audit, findings.get(audit.id, 0), actions.get(audit.id, 0)) for audit in audits]

    async def get_upcoming_audits(self, limit: int = 5, now: Optional[datetime] = None) -> List[Audit]:
        """PLANNED or IN_PROGRESS audits starting from now on, soonest first."""
        now = as_utc(now) if now else datetime.now(timezone.utc)
        result = await self.db.execute(
            select(Audit)
            .where(
                Audit.start_date >= now,
                Audit.status.in_((AuditStatus.PLANNED, AuditStatus.IN_PROGRESS)),
            )
            .order_by(Audit.start_date)
            .limit(limit)
        )
        return list(result.unique().scalars().all())

    async def get_calendar_events(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        audit_type: Optional[AuditType] = None,
        status: Optional[AuditStatus] = None,
        department_id: Optional[uuid.UUID] = None,
    ) -> List[Dict[str, Any]]:
        """
        Audits whose start date falls in [start_date, end_date], as calendar
        events. An audit without an end date is shown as lasting one day.
        """
        query = select(Audit)
        if start_date:
            query = query.where(Audit.start_date >= as_utc(start_date))
        if end_date:
            query = query.where(Audit.start_date <= as_utc(end_date))
        if audit_type:
            query = query.where(Audit.audit_type == audit_type)
        if status:
            query = query.where(Audit.status == status)
        if department_id:
            query = query.where(Audit.department_id == department_id)

        result = await self.db.execute(query.order_by(Audit.start_date))
        events = []
        for audit in result.unique().scalars().all():
            start = as_utc(audit.start_date)
            end = as_utc(audit.end_date) if audit.end_date else start + timedelta(days=1)
            events.append({
                "id": audit.id,
                "title": audit.name,
                "start": start,
                "end": end,
                "audit_type": audit.audit_type,
                "status": audit.status,
                "auditor": audit.auditor,
                "auditee": audit.auditee,
                "department": audit.department.name if audit.department else None,
                "color": STATUS_COLORS.get(audit.status, DEFAULT_STATUS_COLOR),
                "border_color": (
                    INTERNAL_BORDER_COLOR if audit.audit_type == AuditType.INTERNAL else EXTERNAL_BORDER_COLOR
                ),
            })
        return events

    # ===========================================
    # ATTENTION LISTS
    # ===========================================

    async def get_overdue_actions(self, limit: int = 10, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Open or in-progress corrective actions past their due date, oldest due first."""
        now = as_utc(now) if now else datetime.now(timezone.utc)
        result = await self.db.execute(
            select(CorrectiveAction, Audit.name, Finding.title, Finding.priority)
            .join(Audit, Audit.id == CorrectiveAction.audit_id)
            .outerjoin(Finding, Finding.id == CorrectiveAction.finding_id)
            .where(
                CorrectiveAction.due_date < now,
                CorrectiveAction.status.in_(OPEN_ACTION_STATUSES),
            )
            .order_by(CorrectiveAction.due_date)
            .limit(limit)
        )
        overdue = []
        for action, audit_name, finding_title, finding_priority in result.unique().all():
            due = as_utc(action.due_date)
            overdue.append({
                "action": action,
                "audit_name": audit_name,
                "finding_title": finding_title,
                "finding_priority": finding_priority,
                "days_overdue": (now - due).days,
            })
        return overdue

    async def get_critical_findings(self) -> List[Dict[str, Any]]:
        """
        Findings needing immediate attention: OPEN or IN_PROGRESS and either
        priority CRITICAL or a major non-conformity. Each carries its
        still-open corrective actions.
        """
        result = await self.db.execute(
            select(Finding, Audit.name)
            .join(Audit, Audit.id == Finding.audit_id)
            .where(
                Finding.status.in_(OPEN_FINDING_STATUSES),
                or_(
                    Finding.priority == FindingPriority.CRITICAL,
                    Finding.finding_type == FindingType.MAJOR_NON_CONFORMITY,
                ),
            )
            .order_by(Finding.created_at.desc())
        )
        rows = result.unique().all()
        if not rows:
            return []

        actions = await self.db.execute(
            select(CorrectiveAction)
            .where(
                CorrectiveAction.finding_id.in_([finding.id for finding, _ in rows]),
                CorrectiveAction.status.in_(OPEN_ACTION_STATUSES),
            )
            .order_by(CorrectiveAction.due_date)
        )
        open_actions: Dict[uuid.UUID, List[CorrectiveAction]] = defaultdict(list)
        for action in actions.unique().scalars().all():
            open_actions[action.finding_id].append(action)

        return [
            {"finding": finding, "audit_name": audit_name, "open_actions": open_actions[finding.id]}
            for finding, audit_name in rows
        ]

    # ===========================================
    # TRENDS & BREAKDOWNS
    # ===========================================

    async def get_audit_trends(self, months: int = 6, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Audits created in the last ``months`` months, by status and by calendar month."""
        now = as_utc(now) if now else datetime.now(timezone.utc)
        year, month = now.year, now.month - months
        while month < 1:
            month += 12
            year -= 1
        since = now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)

        result = await self.db.execute(
            select(Audit.created_at, Audit.status).where(Audit.created_at >= since)
        )
        overall: Counter = Counter()
        monthly: Counter = Counter()
        for created_at, status in result.all():
            overall[status.value] += 1
            monthly[(as_utc(created_at).strftime("%Y-%m"), status.value)] += 1

        return {
            "since": since,
            "overall": dict(overall),
            "monthly": [
                {"month": month_key, "status": status, "count": count}
                for (month_key, status), count in sorted(monthly.items(), reverse=True)
            ],
        }

    async def _audit_breakdown(self, group_column) -> Dict[Any, Dict[str, int]]:
        """Audit, finding and action counts grouped by an Audit column."""
        stats: Dict[Any, Dict[str, int]] = defaultdict(
            lambda: {"total_audits": 0, "completed_audits": 0, "active_audits": 0,
                     "total_findings": 0, "total_actions": 0}
        )

        result = await self.db.execute(
            select(group_column, Audit.status, func.count(Audit.id))
            .where(group_column.is_not(None))
            .group_by(group_column, Audit.status)
        )
        for key, status, count in result.all():
            stats[key]["total_audits"] += count
            if status == AuditStatus.COMPLETED:
                stats[key]["completed_audits"] += count
            elif status == AuditStatus.IN_PROGRESS:
                stats[key]["active_audits"] += count

        for model, field in ((Finding, "total_findings"), (CorrectiveAction, "total_actions")):
            result = await self.db.execute(
                select(group_column, func.count(model.id))
                .select_from(model)
                .join(Audit, Audit.id == model.audit_id)
                .where(group_column.is_not(None))
                .group_by(group_column)
            )
            for key, count in result.all():
                stats[key][field] = count
        return stats

    async def get_department_stats(self) -> List[Dict[str, Any]]:
        """Per-department audit counts, including departments with no audits."""
        departments = (await self.db.execute(select(Department).order_by(Department.name))).scalars().all()
        stats = await self._audit_breakdown(Audit.department_id)
        return [
            {"department_id": dept.id, "department_name": dept.name, **stats[dept.id]}
            for dept in departments
        ]

    async def get_auditor_performance(self) -> List[Dict[str, Any]]:
        """Per-auditor audit and finding counts with the average findings per audit."""
        auditors = (await self.db.execute(select(Auditor).order_by(Auditor.name))).unique().scalars().all()
        stats = await self._audit_breakdown(Audit.auditor_id)
        performance = []
        for auditor in auditors:
            row = stats[auditor.id]
            performance.append({
                "auditor_id": auditor.id,
                "auditor_name": auditor.name,
                "email": auditor.email,
                "is_external": auditor.is_external,
                "firm_name": auditor.firm_name,
                **row,
                "average_findings_per_audit": (
                    round(row["total_findings"] / row["total_audits"], 2) if row["total_audits"] else 0.0
                ),
            })
        return performance

    # ===========================================
    # COMBINED
    # ===========================================

    async def get_dashboard(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Everything the audit dashboard shows on first load."""
        now = as_utc(now) if now else datetime.now(timezone.utc)
        dashboard = {
            "overview": await self.get_overview(now),
            "status_distribution": await self.get_status_distribution(),
            "findings_distribution": await self.get_findings_distribution(),
            "recent_audits": await self.get_recent_audits(5),
            "upcoming_audits": await self.get_upcoming_audits(5, now),
            "overdue_actions": await self.get_overdue_actions(10, now),
            "critical_findings": await self.get_critical_findings(),
        }
        logger.debug(
            f"Dashboard built: {dashboard['overview']['total_audits']} audits, "
            f"{len(dashboard['overdue_actions'])} overdue actions"
        )
        return dashboard
