"""
ComplyTrack - Audit Dashboard Router

Read-only dashboard aggregations and the audit calendar.
Included before the audits router so these literal paths win over /{audit_id}.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.audit import AuditStatus, AuditType
from app.models.user import User
from app.schemas.audit import (
    AuditDashboardResponse,
    AuditorPerformanceRow,
    AuditResponse,
    AuditSummaryResponse,
    AuditTrendsResponse,
    CalendarEvent,
    CalendarEventsResponse,
    CriticalFindingResponse,
    DashboardOverview,
    DepartmentStatsRow,
    FindingTypeCount,
    OverdueActionResponse,
    StatusCount,
)
from app.services.audit_dashboard_service import AuditDashboardService

router = APIRouter(prefix="/api/audits", tags=["Audit Dashboard"])


def _summaries(rows) -> List[AuditSummaryResponse]:
    return [
        AuditSummaryResponse.model_validate(audit).model_copy(
            update={"finding_count": finding_count, "action_count": action_count}
        )
        for audit, finding_count, action_count in rows
    ]


# ===========================================
# DASHBOARD
# ===========================================

@router.get("/dashboard", response_model=AuditDashboardResponse)
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Combined dashboard: overview, distributions and attention lists."""
    data = await AuditDashboardService(db).get_dashboard()
    data["recent_audits"] = _summaries(data["recent_audits"])
    return AuditDashboardResponse.model_validate(data, from_attributes=True)


@router.get("/dashboard/overview", response_model=DashboardOverview)
async def get_overview(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditDashboardService(db).get_overview()


@router.get("/dashboard/status-distribution", response_model=List[StatusCount])
async def get_status_distribution(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditDashboardService(db).get_status_distribution()


@router.get("/dashboard/findings-distribution", response_model=List[FindingTypeCount])
async def get_findings_distribution(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditDashboardService(db).get_findings_distribution()


@router.get("/dashboard/recent-audits", response_model=List[AuditSummaryResponse])
async def get_recent_audits(
    limit: int = Query(5, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _summaries(await AuditDashboardService(db).get_recent_audits(limit))


@router.get("/dashboard/upcoming-audits", response_model=List[AuditResponse])
async def get_upcoming_audits(
    limit: int = Query(5, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditDashboardService(db).get_upcoming_audits(limit)


@router.get("/dashboard/overdue-actions", response_model=List[OverdueActionResponse])
async def get_overdue_actions(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = await AuditDashboardService(db).get_overdue_actions(limit)
    return [OverdueActionResponse.model_validate(row, from_attributes=True) for row in rows]


@router.get("/dashboard/critical-findings", response_model=List[CriticalFindingResponse])
async def get_critical_findings(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Open critical-priority findings and open major non-conformities."""
    rows = await AuditDashboardService(db).get_critical_findings()
    return [CriticalFindingResponse.model_validate(row, from_attributes=True) for row in rows]


@router.get("/dashboard/trends", response_model=AuditTrendsResponse)
async def get_audit_trends(
    months: int = Query(6, ge=1, le=36),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditDashboardService(db).get_audit_trends(months)


@router.get("/dashboard/department-stats", response_model=List[DepartmentStatsRow])
async def get_department_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditDashboardService(db).get_department_stats()


@router.get("/dashboard/auditor-performance", response_model=List[AuditorPerformanceRow])
async def get_auditor_performance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditDashboardService(db).get_auditor_performance()


# ===========================================
# CALENDAR
# ===========================================

@router.get("/calendar/events", response_model=CalendarEventsResponse)
async def get_calendar_events(
    start_date: Optional[datetime] = Query(None, description="Audits starting on or after"),
    end_date: Optional[datetime] = Query(None, description="Audits starting on or before"),
    audit_type: Optional[AuditType] = Query(None),
    status_filter: Optional[AuditStatus] = Query(None, alias="status"),
    department_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    events = await AuditDashboardService(db).get_calendar_events(
        start_date=start_date,
        end_date=end_date,
        audit_type=audit_type,
        status=status_filter,
        department_id=department_id,
    )
    return CalendarEventsResponse(
        count=len(events),
        events=[CalendarEvent.model_validate(event, from_attributes=True) for event in events],
    )
