"""
ComplyTrack - Audit Documents & Notifications Router
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.audit import (
    AuditDocumentResponse,
    AuditNotificationResponse,
    AuditNotificationSendRequest,
)
from app.services.audit_lifecycle_service import AuditLifecycleService
from app.services.document_service import DocumentService
from app.services.notification_service import NotificationGateway
from app.utils.error_handling import NotFoundException

router = APIRouter(prefix="/api/audits", tags=["Documents & Notifications"])


# ===========================================
# DOCUMENTS
# ===========================================

@router.post(
    "/{audit_id}/documents",
    response_model=AuditDocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_audit_document(
    audit_id: uuid.UUID,
    title: str = Form(...),
    document_type: str = Form(...),
    description: Optional[str] = Form(None),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    content = await file.read()
    return await DocumentService(db).upload_audit_document(
        audit_id,
        title=title,
        document_type=document_type,
        content=content,
        filename=file.filename or "document",
        actor=current_user,
        description=description,
    )


@router.get("/{audit_id}/documents", response_model=List[AuditDocumentResponse])
async def list_audit_documents(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await DocumentService(db).list_audit_documents(audit_id)


@router.delete("/{audit_id}/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_audit_document(
    audit_id: uuid.UUID,
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Only the uploader or an admin may delete a document."""
    await DocumentService(db).delete_audit_document(audit_id, document_id, current_user)


# ===========================================
# NOTIFICATIONS
# ===========================================

@router.get("/notifications/me", response_model=List[AuditNotificationResponse])
async def get_my_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await NotificationGateway(db).get_user_notifications(
        current_user.id, unread_only=unread_only, limit=limit
    )


@router.patch("/notifications/{notification_id}/read", response_model=AuditNotificationResponse)
async def mark_notification_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification = await NotificationGateway(db).mark_as_read(notification_id, current_user.id)
    if not notification:
        raise NotFoundException(resource_type="Notification", resource_id=notification_id)
    return notification


@router.post(
    "/{audit_id}/notifications",
    response_model=List[AuditNotificationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def send_audit_notifications(
    audit_id: uuid.UUID,
    request: AuditNotificationSendRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Send an in-app notification about the audit to each listed user."""
    return await AuditLifecycleService(db).send_audit_notifications(
        audit_id,
        request.recipient_ids,
        current_user,
        title=request.title,
        message=request.message,
    )
