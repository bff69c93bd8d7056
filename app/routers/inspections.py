"""
ComplyTrack - Inspection & Pre-Audit Checklist Router
"""

import uuid
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.audit import (
    InspectionAreaResponse,
    InspectionChecklistCreateRequest,
    InspectionItemResponse,
    InspectionItemUpdateRequest,
    InspectionItemUpdateResponse,
    PreAuditChecklistCreateRequest,
    PreAuditChecklistItemResponse,
    PreAuditChecklistItemUpdateRequest,
)
from app.services.document_service import DocumentService
from app.services.inspection_service import InspectionService

router = APIRouter(prefix="/api/audits", tags=["Inspections & Checklists"])


# ===========================================
# INSPECTION CHECKLIST
# ===========================================

@router.post(
    "/{audit_id}/inspection-checklists",
    response_model=List[InspectionItemResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_inspection_checklist(
    audit_id: uuid.UUID,
    request: InspectionChecklistCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await InspectionService(db).create_inspection_checklist(audit_id, request, current_user)


@router.get("/{audit_id}/inspection-checklists", response_model=List[InspectionAreaResponse])
async def get_inspection_checklists(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Inspection items grouped by area with per-area compliance rate."""
    return await InspectionService(db).get_inspection_checklists(audit_id)


@router.get("/inspection-items/{item_id}", response_model=InspectionItemResponse)
async def get_inspection_item(
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await InspectionService(db).get_inspection_item(item_id)


@router.patch("/inspection-items/{item_id}", response_model=InspectionItemUpdateResponse)
async def update_inspection_item(
    item_id: uuid.UUID,
    request: InspectionItemUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Record an inspection verdict.

    ``suggest_finding`` is true unless the item is compliant. No finding is
    created automatically.
    """
    return await InspectionService(db).update_inspection_item(item_id, request, current_user)


@router.post("/inspection-items/{item_id}/evidence", response_model=InspectionItemResponse)
async def upload_inspection_evidence(
    item_id: uuid.UUID,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    content = await file.read()
    await DocumentService(db).attach_inspection_evidence(
        item_id, content, file.filename or "evidence", current_user
    )
    return await InspectionService(db).get_inspection_item(item_id)


# ===========================================
# PRE-AUDIT CHECKLIST
# ===========================================

@router.post(
    "/{audit_id}/pre-audit-checklist",
    response_model=List[PreAuditChecklistItemResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_pre_audit_checklist(
    audit_id: uuid.UUID,
    request: PreAuditChecklistCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await InspectionService(db).create_pre_audit_checklist(audit_id, request, current_user)


@router.get("/{audit_id}/pre-audit-checklist", response_model=List[PreAuditChecklistItemResponse])
async def get_pre_audit_checklist(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await InspectionService(db).get_pre_audit_checklist(audit_id)


@router.patch("/checklist-items/{item_id}", response_model=PreAuditChecklistItemResponse)
async def update_pre_audit_checklist_item(
    item_id: uuid.UUID,
    request: PreAuditChecklistItemUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await InspectionService(db).update_pre_audit_checklist_item(item_id, request, current_user)
