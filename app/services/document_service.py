"""
ComplyTrack - Audit Document & Evidence Service

Uploads audit documents and evidence files to the file store and keeps
the returned URL on the owning record.
"""

import uuid
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityAction
from app.models.audit import AuditDocument, CorrectiveAction, Finding, InspectionItem
from app.models.user import User
from app.services.activity_log_service import ActivityLogService
from app.services.audit_lifecycle_service import get_audit_or_404, require_actor
from app.services.file_storage_service import (
    ACTION_EVIDENCE_BUCKET,
    DOCUMENTS_BUCKET,
    EVIDENCE_BUCKET,
    FileStorageService,
)
from app.utils.error_handling import (
    AuthorizationException,
    CorrectiveActionNotFoundException,
    ErrorCode,
    ExternalServiceException,
    FindingNotFoundException,
    NotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


class DocumentService:
    """Service for audit documents and evidence attachments."""

    def __init__(self, db: AsyncSession, storage: Optional[FileStorageService] = None):
        self.db = db
        self.storage = storage or FileStorageService()
        self.activity = ActivityLogService(db)

    async def _store(self, content: bytes, filename: str, bucket: str, folder: str) -> dict:
        if not content:
            raise ValidationException("No file uploaded", field="file")
        try:
            return await self.storage.upload(content, filename, bucket, folder)
        except OSError as e:
            logger.error(f"Failed to upload {filename} to {bucket}/{folder}: {e}")
            raise ExternalServiceException(
                "File storage",
                "Failed to upload file to storage",
                code=ErrorCode.STORAGE_SERVICE_ERROR,
                original_error=e,
            )

    async def _load_document(self, document_id: uuid.UUID) -> AuditDocument:
        result = await self.db.execute(
            select(AuditDocument)
            .where(AuditDocument.id == document_id)
            .execution_options(populate_existing=True)
        )
        document = result.unique().scalar_one_or_none()
        if not document:
            raise NotFoundException(resource_type="AuditDocument", resource_id=document_id)
        return document

    # ===========================================
    # AUDIT DOCUMENTS
    # ===========================================

    async def upload_audit_document(
        self,
        audit_id: uuid.UUID,
        title: str,
        document_type: str,
        content: bytes,
        filename: str,
        actor: Optional[User],
        description: Optional[str] = None,
    ) -> AuditDocument:
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        stored = await self._store(content, filename, DOCUMENTS_BUCKET, f"audit-{audit.id}")

        document = AuditDocument(
            audit_id=audit.id,
            title=title,
            description=description,
            document_type=document_type,
            file_url=stored["url"],
            file_path=stored["path"],
            uploaded_by_id=actor.id,
        )
        self.db.add(document)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.AUDIT_DOCUMENT_UPLOADED,
            f"Uploaded document: {document.title} for audit: {audit.name}",
            user_id=actor.id,
            target_type="audit_document",
            target_id=document.id,
        )
        await self.db.commit()
        return await self._load_document(document.id)

    async def list_audit_documents(self, audit_id: uuid.UUID) -> List[AuditDocument]:
        await get_audit_or_404(self.db, audit_id)
        result = await self.db.execute(
            select(AuditDocument)
            .where(AuditDocument.audit_id == audit_id)
            .order_by(AuditDocument.created_at.desc())
        )
        return list(result.unique().scalars().all())

    async def delete_audit_document(
        self,
        audit_id: uuid.UUID,
        document_id: uuid.UUID,
        actor: Optional[User],
    ) -> None:
        """Only the uploader or an admin may delete. A storage failure does not keep the record."""
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        document = await self._load_document(document_id)
        if document.audit_id != audit.id:
            raise NotFoundException(
                resource_type="AuditDocument",
                resource_id=document_id,
                message="Document not found or does not belong to this audit",
            )
        if document.uploaded_by_id != actor.id and not actor.is_admin:
            raise AuthorizationException("You do not have permission to delete this document")

        if document.file_path:
            try:
                if not await self.storage.delete(document.file_path):
                    logger.warning(f"Stored file for document {document.id} was already missing")
            except OSError as e:
                logger.error(f"Failed to delete file from storage for document {document.id}: {e}")

        title = document.title
        await self.db.delete(document)
        await self.activity.log_action(
            ActivityAction.AUDIT_DOCUMENT_DELETED,
            f"Deleted document: {title} from audit: {audit.name}",
            user_id=actor.id,
            target_type="audit_document",
            target_id=document_id,
        )
        await self.db.commit()

    # ===========================================
    # EVIDENCE
    # ===========================================

    async def attach_finding_evidence(
        self,
        finding_id: uuid.UUID,
        content: bytes,
        filename: str,
        actor: Optional[User],
    ) -> Finding:
        require_actor(actor)
        finding = await self.db.get(Finding, finding_id)
        if not finding:
            raise FindingNotFoundException(finding_id)
        stored = await self._store(
            content, filename, EVIDENCE_BUCKET, f"audit-{finding.audit_id}/finding-evidence"
        )
        finding.evidence = stored["url"]
        await self.db.commit()
        return finding

    async def attach_action_evidence(
        self,
        action_id: uuid.UUID,
        content: bytes,
        filename: str,
        actor: Optional[User],
    ) -> CorrectiveAction:
        require_actor(actor)
        action = await self.db.get(CorrectiveAction, action_id)
        if not action:
            raise CorrectiveActionNotFoundException(action_id)
        stored = await self._store(
            content, filename, ACTION_EVIDENCE_BUCKET, f"audit-{action.audit_id}/action-{action.id}"
        )
        action.evidence = stored["url"]
        await self.db.commit()
        return action

    async def attach_inspection_evidence(
        self,
        item_id: uuid.UUID,
        content: bytes,
        filename: str,
        actor: Optional[User],
    ) -> InspectionItem:
        require_actor(actor)
        item = await self.db.get(InspectionItem, item_id)
        if not item:
            raise NotFoundException(resource_type="InspectionItem", resource_id=item_id)
        stored = await self._store(
            content, filename, EVIDENCE_BUCKET, f"audit-{item.audit_id}/inspection-evidence"
        )
        item.evidence = stored["url"]
        await self.db.commit()
        return item
