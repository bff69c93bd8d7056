"""
ComplyTrack - Inspection & Pre-Audit Checklist Service

Inspection items are grouped by area and carry a three-state compliance
verdict. Recording a non-compliant verdict only suggests a finding; the
finding itself is raised separately by the auditor.
"""

import uuid
import logging
from datetime import datetime, timezone
from itertools import groupby
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityAction
from app.models.audit import InspectionItem, PreAuditChecklistItem
from app.models.user import User
from app.schemas.audit import (
    ComplianceVerdict,
    InspectionChecklistCreateRequest,
    InspectionItemUpdateRequest,
    PreAuditChecklistCreateRequest,
    PreAuditChecklistItemUpdateRequest,
)
from app.services.activity_log_service import ActivityLogService
from app.services.audit_lifecycle_service import as_utc, get_audit_or_404, require_actor
from app.utils.error_handling import NotFoundException

logger = logging.getLogger(__name__)


def compliance_summary(items: List[InspectionItem]) -> Dict[str, Any]:
    """Totals for one area. Items not yet inspected count against the rate."""
    total = len(items)
    compliant = sum(1 for item in items if item.is_compliant is True)
    return {
        "total_items": total,
        "compliant_items": compliant,
        "compliance_rate": round(compliant / total, 4) if total else 0.0,
    }


class InspectionService:
    """Service for inspection checklists and pre-audit preparation checklists."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.activity = ActivityLogService(db)

    async def _load_item(self, item_id: uuid.UUID, *, fresh: bool = False) -> InspectionItem:
        query = select(InspectionItem).where(InspectionItem.id == item_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        item = result.unique().scalar_one_or_none()
        if not item:
            raise NotFoundException(resource_type="InspectionItem", resource_id=item_id)
        return item

    async def _load_checklist_item(
        self, item_id: uuid.UUID, *, fresh: bool = False
    ) -> PreAuditChecklistItem:
        query = select(PreAuditChecklistItem).where(PreAuditChecklistItem.id == item_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        item = result.unique().scalar_one_or_none()
        if not item:
            raise NotFoundException(resource_type="PreAuditChecklistItem", resource_id=item_id)
        return item

    # ===========================================
    # INSPECTION CHECKLIST
    # ===========================================

    async def create_inspection_checklist(
        self,
        audit_id: uuid.UUID,
        data: InspectionChecklistCreateRequest,
        actor: Optional[User],
    ) -> List[InspectionItem]:
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)

        items = [
            InspectionItem(
                audit_id=audit.id,
                area_name=data.area_name,
                item_name=definition.item_name,
                description=definition.description,
                standard_reference=definition.standard_reference,
                is_compliant=None,
            )
            for definition in data.items
        ]
        self.db.add_all(items)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.INSPECTION_CHECKLIST_CREATED,
            f"Created inspection checklist for {data.area_name} with {len(items)} items "
            f"in audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()

        ids = [item.id for item in items]
        result = await self.db.execute(
            select(InspectionItem)
            .where(InspectionItem.id.in_(ids))
            .order_by(InspectionItem.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.unique().scalars().all())

    async def get_inspection_checklists(self, audit_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Items grouped by area name, each group with its compliance totals."""
        await get_audit_or_404(self.db, audit_id)
        result = await self.db.execute(
            select(InspectionItem)
            .where(InspectionItem.audit_id == audit_id)
            .order_by(InspectionItem.area_name, InspectionItem.created_at)
        )
        items = list(result.unique().scalars().all())

        areas = []
        for area_name, group in groupby(items, key=lambda item: item.area_name):
            area_items = list(group)
            areas.append({"area_name": area_name, "items": area_items, **compliance_summary(area_items)})
        return areas

    async def get_inspection_item(self, item_id: uuid.UUID) -> InspectionItem:
        return await self._load_item(item_id)

    async def update_inspection_item(
        self,
        item_id: uuid.UUID,
        data: InspectionItemUpdateRequest,
        actor: Optional[User],
    ) -> Dict[str, Any]:
        """Record a verdict. Returns the item and whether a finding should be raised."""
        actor = require_actor(actor)
        item = await self._load_item(item_id)
        audit = await get_audit_or_404(self.db, item.audit_id)

        verdict = data.is_compliant
        item.is_compliant = verdict.to_flag()
        item.comments = data.comments
        if data.evidence is not None:
            item.evidence = data.evidence
        item.inspected_by_id = actor.id
        item.updated_at = datetime.now(timezone.utc)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.INSPECTION_ITEM_UPDATED,
            f"Updated inspection item: {item.item_name} ({verdict.value}) in audit: {audit.name}",
            user_id=actor.id,
            target_type="inspection_item",
            target_id=item.id,
        )
        await self.db.commit()

        item = await self._load_item(item_id, fresh=True)
        return {"item": item, "suggest_finding": verdict != ComplianceVerdict.COMPLIANT}

    # ===========================================
    # PRE-AUDIT CHECKLIST
    # ===========================================

    async def create_pre_audit_checklist(
        self,
        audit_id: uuid.UUID,
        data: PreAuditChecklistCreateRequest,
        actor: Optional[User],
    ) -> List[PreAuditChecklistItem]:
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        now = datetime.now(timezone.utc)

        items = [
            PreAuditChecklistItem(
                audit_id=audit.id,
                description=entry.description,
                is_completed=entry.is_completed,
                completed_at=now if entry.is_completed else None,
                responsible_id=entry.responsible_id,
                due_date=as_utc(entry.due_date),
                created_by_id=actor.id,
            )
            for entry in data.items
        ]
        self.db.add_all(items)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.PRE_AUDIT_CHECKLIST_CREATED,
            f"Created pre-audit checklist with {len(items)} items for audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()
        return await self.get_pre_audit_checklist(audit.id)

    async def get_pre_audit_checklist(self, audit_id: uuid.UUID) -> List[PreAuditChecklistItem]:
        await get_audit_or_404(self.db, audit_id)
        result = await self.db.execute(
            select(PreAuditChecklistItem)
            .where(PreAuditChecklistItem.audit_id == audit_id)
            .order_by(PreAuditChecklistItem.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.unique().scalars().all())

    async def update_pre_audit_checklist_item(
        self,
        item_id: uuid.UUID,
        data: PreAuditChecklistItemUpdateRequest,
        actor: Optional[User],
    ) -> PreAuditChecklistItem:
        actor = require_actor(actor)
        item = await self._load_checklist_item(item_id)

        item.is_completed = data.is_completed
        item.completed_at = datetime.now(timezone.utc) if data.is_completed else None
        if data.comments is not None:
            item.comments = data.comments
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.CHECKLIST_ITEM_UPDATED,
            f"{'Completed' if data.is_completed else 'Reopened'} checklist item: {item.description}",
            user_id=actor.id,
            target_type="checklist_item",
            target_id=item.id,
        )
        await self.db.commit()
        return await self._load_checklist_item(item_id, fresh=True)
