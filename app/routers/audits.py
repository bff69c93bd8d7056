"""
ComplyTrack - Audit Router

Audit planning, status changes, execution phase and closure.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, require_role
from app.models.audit import AuditStatus, AuditType
from app.models.user import User, UserRole
from app.schemas.audit import (
    AuditCloseRequest,
    AuditCloseResponse,
    AuditCreateRequest,
    AuditListResponse,
    AuditResponse,
    AuditStatisticsResponse,
    AuditStatusChangeRequest,
    AuditSummaryResponse,
    AuditUpdateRequest,
    CorrectiveActionResponse,
    DepartmentCreateRequest,
    DepartmentResponse,
    ExecutionCompleteRequest,
    ExecutionCompleteResponse,
    PreviousAuditActions,
)
from app.services.audit_lifecycle_service import AuditLifecycleService

router = APIRouter(prefix="/api/audits", tags=["Audits"])


# ===========================================
# COLLECTION
# ===========================================

@router.get("", response_model=AuditListResponse)
async def list_audits(
    status_filter: Optional[AuditStatus] = Query(None, alias="status"),
    audit_type: Optional[AuditType] = Query(None),
    auditor_id: Optional[uuid.UUID] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[datetime] = Query(None, description="Audits starting on or after"),
    end_date: Optional[datetime] = Query(None, description="Audits ending on or before"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List audits with finding and corrective action counts."""
    rows = await AuditLifecycleService(db).list_audits(
        status=status_filter,
        audit_type=audit_type,
        auditor_id=auditor_id,
        department_id=department_id,
        start_date=start_date,
        end_date=end_date,
    )
    audits = [
        AuditSummaryResponse.model_validate(audit).model_copy(
            update={"finding_count": finding_count, "action_count": action_count}
        )
        for audit, finding_count, action_count in rows
    ]
    return AuditListResponse(audits=audits, total=len(audits))


@router.post("", response_model=AuditResponse, status_code=status.HTTP_201_CREATED)
async def create_audit(
    request: AuditCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Schedule a new audit.

    The auditor is given either as a tagged ``auditor`` selector or with the
    flat fields: ``auditor_id`` for any type, ``auditor_user_id`` for
    INTERNAL audits, ``auditor_name`` and ``auditor_email`` for EXTERNAL ones.
    """
    return await AuditLifecycleService(db).create_audit(request, current_user)


@router.get("/statistics", response_model=AuditStatisticsResponse)
async def get_audit_statistics(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditLifecycleService(db).get_audit_statistics()


@router.get("/departments", response_model=List[DepartmentResponse])
async def list_departments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditLifecycleService(db).list_departments()


@router.post("/departments", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    request: DepartmentCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role([UserRole.ADMIN, UserRole.QUALITY_MANAGER])),
):
    return await AuditLifecycleService(db).create_department(
        request.name, request.description, current_user
    )


# ===========================================
# SINGLE AUDIT
# ===========================================

@router.get("/{audit_id}", response_model=AuditResponse)
async def get_audit(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditLifecycleService(db).get_audit(audit_id)


@router.put("/{audit_id}", response_model=AuditResponse)
async def update_audit(
    audit_id: uuid.UUID,
    request: AuditUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditLifecycleService(db).update_audit(audit_id, request, current_user)


@router.delete("/{audit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_audit(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role([UserRole.ADMIN])),
):
    """Delete an audit together with its findings, actions, checklists and documents."""
    await AuditLifecycleService(db).delete_audit(audit_id, current_user)


@router.patch("/{audit_id}/status", response_model=AuditResponse)
async def change_audit_status(
    audit_id: uuid.UUID,
    request: AuditStatusChangeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditLifecycleService(db).change_status(audit_id, request.status, current_user)


@router.post("/{audit_id}/execution/start", response_model=AuditResponse)
async def start_execution_phase(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await AuditLifecycleService(db).start_execution_phase(audit_id, current_user)


@router.post("/{audit_id}/execution/complete", response_model=ExecutionCompleteResponse)
async def complete_execution_phase(
    audit_id: uuid.UUID,
    request: ExecutionCompleteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    audit, findings_summary = await AuditLifecycleService(db).complete_execution_phase(
        audit_id, request.summary, current_user
    )
    return {"audit": audit, "findings_summary": findings_summary}


@router.post("/{audit_id}/close", response_model=AuditCloseResponse)
async def close_audit(
    audit_id: uuid.UUID,
    request: AuditCloseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Close an audit.

    Responds 409 CLOSURE_BLOCKED with ``details.open_major_findings``
    while any major non-conformity is still open.
    """
    audit, statistics = await AuditLifecycleService(db).close_audit(
        audit_id, request.closure_summary, current_user
    )
    return {"audit": audit, "statistics": statistics}


@router.get("/{audit_id}/previous-actions", response_model=List[PreviousAuditActions])
async def get_previous_audit_actions(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Corrective actions raised by earlier audits of the same type."""
    rows = await AuditLifecycleService(db).get_previous_audit_actions(audit_id)
    return [
        PreviousAuditActions(
            id=audit.id,
            name=audit.name,
            audit_type=audit.audit_type,
            status=audit.status,
            start_date=audit.start_date,
            actions=[CorrectiveActionResponse.model_validate(a) for a in actions],
        )
        for audit, actions in rows
    ]
