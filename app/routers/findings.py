"""
ComplyTrack - Findings & Corrective Actions Router
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.audit import ActionStatus, FindingStatus, FindingType
from app.models.user import User
from app.schemas.audit import (
    CorrectiveActionCreateRequest,
    CorrectiveActionResponse,
    CorrectiveActionUpdateRequest,
    FindingCreateRequest,
    FindingResponse,
    FindingUpdateRequest,
)
from app.services.document_service import DocumentService
from app.services.finding_service import FindingService

router = APIRouter(prefix="/api/audits", tags=["Findings & Corrective Actions"])


# ===========================================
# FINDINGS
# ===========================================

@router.post("/{audit_id}/findings", response_model=FindingResponse, status_code=status.HTTP_201_CREATED)
async def create_finding(
    audit_id: uuid.UUID,
    request: FindingCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Record a finding. The assignee, if any, is notified in-app and by email."""
    return await FindingService(db).create_finding(audit_id, request, current_user)


@router.get("/{audit_id}/findings", response_model=List[FindingResponse])
async def list_findings(
    audit_id: uuid.UUID,
    finding_type: Optional[FindingType] = Query(None),
    status_filter: Optional[FindingStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await FindingService(db).list_findings(audit_id, finding_type, status_filter)


@router.get("/findings/{finding_id}", response_model=FindingResponse)
async def get_finding(
    finding_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await FindingService(db).get_finding(finding_id)


@router.patch("/findings/{finding_id}", response_model=FindingResponse)
async def update_finding(
    finding_id: uuid.UUID,
    request: FindingUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await FindingService(db).update_finding(finding_id, request, current_user)


@router.post("/findings/{finding_id}/evidence", response_model=FindingResponse)
async def upload_finding_evidence(
    finding_id: uuid.UUID,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    content = await file.read()
    await DocumentService(db).attach_finding_evidence(
        finding_id, content, file.filename or "evidence", current_user
    )
    return await FindingService(db).get_finding(finding_id)


# ===========================================
# CORRECTIVE ACTIONS
# ===========================================

@router.post(
    "/{audit_id}/corrective-actions",
    response_model=CorrectiveActionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_corrective_action(
    audit_id: uuid.UUID,
    request: CorrectiveActionCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await FindingService(db).create_corrective_action(audit_id, request, current_user)


@router.get("/{audit_id}/corrective-actions", response_model=List[CorrectiveActionResponse])
async def list_corrective_actions(
    audit_id: uuid.UUID,
    status_filter: Optional[ActionStatus] = Query(None, alias="status"),
    finding_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Corrective actions for an audit, earliest due date first."""
    return await FindingService(db).list_corrective_actions(audit_id, status_filter, finding_id)


@router.get("/corrective-actions/{action_id}", response_model=CorrectiveActionResponse)
async def get_corrective_action(
    action_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await FindingService(db).get_corrective_action(action_id)


@router.patch("/corrective-actions/{action_id}", response_model=CorrectiveActionResponse)
async def update_corrective_action(
    action_id: uuid.UUID,
    request: CorrectiveActionUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Move a corrective action through its workflow.

    Verifying the last unverified action of a finding closes the finding.
    """
    return await FindingService(db).update_corrective_action(action_id, request, current_user)


@router.post("/corrective-actions/{action_id}/evidence", response_model=CorrectiveActionResponse)
async def upload_corrective_action_evidence(
    action_id: uuid.UUID,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    content = await file.read()
    await DocumentService(db).attach_action_evidence(
        action_id, content, file.filename or "evidence", current_user
    )
    return await FindingService(db).get_corrective_action(action_id)
