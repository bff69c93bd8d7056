"""
ComplyTrack - Finding & Corrective Action Service

Findings are recorded during audit execution and remediated through
corrective actions. Verifying an action drives the verification cascade:

1. first move into COMPLETED stamps completed_at, first move into VERIFIED
   stamps verified_at and verified_by_id (later moves never re-stamp)
2. on a first VERIFIED, the parent finding is locked and closed when no
   sibling action remains unverified
3. on a first VERIFIED, the auditor is told once the audit has no open
   major non-conformity left (informational only)

Steps 1 and 2 share one commit.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityAction
from app.models.audit import (
    ActionStatus,
    Audit,
    CorrectiveAction,
    Finding,
    FindingStatus,
    FindingType,
)
from app.models.user import User
from app.schemas.audit import (
    CorrectiveActionCreateRequest,
    CorrectiveActionUpdateRequest,
    FindingCreateRequest,
    FindingUpdateRequest,
)
from app.services.activity_log_service import ActivityLogService
from app.services.audit_lifecycle_service import (
    as_utc,
    audit_payload,
    get_audit_or_404,
    require_actor,
)
from app.services.notification_service import NotificationGateway, NotificationKind
from app.utils.error_handling import (
    CorrectiveActionNotFoundException,
    FindingNotFoundException,
    UserNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

MAJOR_FINDINGS_CLOSED_TITLE = "All Major Non-Conformities Closed"


def _finding_payload(finding: Finding) -> Dict[str, Any]:
    return {
        "id": str(finding.id),
        "title": finding.title,
        "finding_type": finding.finding_type.value,
        "status": finding.status.value,
        "due_date": finding.due_date,
    }


def _action_payload(action: CorrectiveAction) -> Dict[str, Any]:
    return {
        "id": str(action.id),
        "title": action.title,
        "status": action.status.value,
        "due_date": action.due_date,
    }


class FindingService:
    """Service for findings, corrective actions and the verification cascade."""

    def __init__(self, db: AsyncSession, gateway: Optional[NotificationGateway] = None):
        self.db = db
        self.gateway = gateway or NotificationGateway(db)
        self.activity = ActivityLogService(db)

    # ===========================================
    # HELPERS
    # ===========================================

    async def _get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise UserNotFoundException(user_id)
        return user

    async def _load_finding(self, finding_id: uuid.UUID, *, fresh: bool = False) -> Finding:
        query = select(Finding).where(Finding.id == finding_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        finding = result.unique().scalar_one_or_none()
        if not finding:
            raise FindingNotFoundException(finding_id)
        return finding

    async def _load_action(self, action_id: uuid.UUID, *, fresh: bool = False) -> CorrectiveAction:
        query = select(CorrectiveAction).where(CorrectiveAction.id == action_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        action = result.unique().scalar_one_or_none()
        if not action:
            raise CorrectiveActionNotFoundException(action_id)
        return action

    async def _notify_assignee(
        self,
        kind: NotificationKind,
        audit: Audit,
        assignee: User,
        title: str,
        message: str,
        payload: Dict[str, Any],
    ) -> None:
        """In-app row goes into the current transaction; the email is sent by the caller after commit."""
        await self.gateway.notify_user(audit.id, assignee.id, title, message)
        payload.setdefault("audit", audit_payload(audit))
        payload.setdefault("message", message)

    # ===========================================
    # FINDINGS
    # ===========================================

    async def create_finding(
        self,
        audit_id: uuid.UUID,
        data: FindingCreateRequest,
        actor: Optional[User],
    ) -> Finding:
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        assignee = await self._get_user(data.assigned_to_id) if data.assigned_to_id else None

        finding = Finding(
            audit_id=audit.id,
            title=data.title,
            description=data.description,
            finding_type=data.finding_type,
            status=FindingStatus.OPEN,
            priority=data.priority,
            due_date=as_utc(data.due_date),
            assigned_to_id=data.assigned_to_id,
            evidence=data.evidence,
        )
        self.db.add(finding)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.FINDING_CREATED,
            f"Created finding: {finding.title} ({finding.finding_type.value}) for audit: {audit.name}",
            user_id=actor.id,
            target_type="finding",
            target_id=finding.id,
        )

        payload: Dict[str, Any] = {"finding": _finding_payload(finding)}
        if assignee:
            await self._notify_assignee(
                NotificationKind.FINDING_ASSIGNED,
                audit,
                assignee,
                f"New Finding Assigned: {finding.title}",
                f"You have been assigned to address a {finding.finding_type.value.lower()} "
                f"finding in audit: {audit.name}",
                payload,
            )
        await self.db.commit()

        if assignee:
            await self.gateway.send(NotificationKind.FINDING_ASSIGNED, [assignee.email], payload)
        return await self._load_finding(finding.id, fresh=True)

    async def get_finding(self, finding_id: uuid.UUID) -> Finding:
        return await self._load_finding(finding_id)

    async def list_findings(
        self,
        audit_id: uuid.UUID,
        finding_type: Optional[FindingType] = None,
        status: Optional[FindingStatus] = None,
    ) -> List[Finding]:
        await get_audit_or_404(self.db, audit_id)
        query = select(Finding).where(Finding.audit_id == audit_id)
        if finding_type:
            query = query.where(Finding.finding_type == finding_type)
        if status:
            query = query.where(Finding.status == status)
        result = await self.db.execute(query.order_by(Finding.created_at.desc()))
        return list(result.unique().scalars().all())

    async def update_finding(
        self,
        finding_id: uuid.UUID,
        data: FindingUpdateRequest,
        actor: Optional[User],
    ) -> Finding:
        """Update supplied fields. The first move into CLOSED stamps closed_at."""
        actor = require_actor(actor)
        finding = await self._load_finding(finding_id)
        audit = await get_audit_or_404(self.db, finding.audit_id)
        changes = data.model_dump(exclude_unset=True)

        new_assignee = None
        assigned_to_id = changes.get("assigned_to_id")
        if assigned_to_id and assigned_to_id != finding.assigned_to_id:
            new_assignee = await self._get_user(assigned_to_id)

        if changes.get("status") == FindingStatus.CLOSED and finding.status != FindingStatus.CLOSED:
            finding.closed_at = datetime.now(timezone.utc)

        for field, value in changes.items():
            if field == "due_date":
                value = as_utc(value)
            setattr(finding, field, value)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.FINDING_UPDATED,
            f"Updated finding: {finding.title} for audit: {audit.name}",
            user_id=actor.id,
            target_type="finding",
            target_id=finding.id,
        )

        payload: Dict[str, Any] = {"finding": _finding_payload(finding)}
        if new_assignee:
            await self._notify_assignee(
                NotificationKind.FINDING_ASSIGNED,
                audit,
                new_assignee,
                f"Finding Assigned: {finding.title}",
                f"You have been assigned to address a {finding.finding_type.value.lower()} "
                f"finding in audit: {audit.name}",
                payload,
            )
        await self.db.commit()

        if new_assignee:
            await self.gateway.send(NotificationKind.FINDING_ASSIGNED, [new_assignee.email], payload)
        return await self._load_finding(finding_id, fresh=True)

    # ===========================================
    # CORRECTIVE ACTIONS
    # ===========================================

    async def create_corrective_action(
        self,
        audit_id: uuid.UUID,
        data: CorrectiveActionCreateRequest,
        actor: Optional[User],
    ) -> CorrectiveAction:
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)

        if data.finding_id:
            finding = await self._load_finding(data.finding_id)
            if finding.audit_id != audit.id:
                raise ValidationException(
                    f"Finding '{finding.id}' does not belong to audit '{audit.id}'",
                    field="finding_id",
                )
        assignee = await self._get_user(data.assigned_to_id)

        action = CorrectiveAction(
            audit_id=audit.id,
            finding_id=data.finding_id,
            title=data.title,
            description=data.description,
            action_type=data.action_type,
            assigned_to_id=assignee.id,
            due_date=as_utc(data.due_date),
            status=ActionStatus.OPEN,
        )
        self.db.add(action)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.CORRECTIVE_ACTION_CREATED,
            f"Created corrective action: {action.title} for audit: {audit.name}",
            user_id=actor.id,
            target_type="corrective_action",
            target_id=action.id,
        )

        payload: Dict[str, Any] = {"action": _action_payload(action)}
        await self._notify_assignee(
            NotificationKind.ACTION_ASSIGNED,
            audit,
            assignee,
            f"New Corrective Action Assigned: {action.title}",
            f"You have been assigned a {action.action_type.value.lower()} action in audit: {audit.name}",
            payload,
        )
        await self.db.commit()

        await self.gateway.send(NotificationKind.ACTION_ASSIGNED, [assignee.email], payload)
        return await self._load_action(action.id, fresh=True)

    async def get_corrective_action(self, action_id: uuid.UUID) -> CorrectiveAction:
        return await self._load_action(action_id)

    async def list_corrective_actions(
        self,
        audit_id: uuid.UUID,
        status: Optional[ActionStatus] = None,
        finding_id: Optional[uuid.UUID] = None,
    ) -> List[CorrectiveAction]:
        await get_audit_or_404(self.db, audit_id)
        query = select(CorrectiveAction).where(CorrectiveAction.audit_id == audit_id)
        if status:
            query = query.where(CorrectiveAction.status == status)
        if finding_id:
            query = query.where(CorrectiveAction.finding_id == finding_id)
        result = await self.db.execute(query.order_by(CorrectiveAction.due_date))
        return list(result.unique().scalars().all())

    async def update_corrective_action(
        self,
        action_id: uuid.UUID,
        data: CorrectiveActionUpdateRequest,
        actor: Optional[User],
    ) -> CorrectiveAction:
        """Apply a status change and run the verification cascade."""
        actor = require_actor(actor)
        action = await self._load_action(action_id)
        audit = await get_audit_or_404(self.db, action.audit_id)
        now = datetime.now(timezone.utc)

        is_completing = data.status == ActionStatus.COMPLETED and action.status != ActionStatus.COMPLETED
        is_verifying = data.status == ActionStatus.VERIFIED and action.status != ActionStatus.VERIFIED

        action.status = data.status
        if is_completing and action.completed_at is None:
            action.completed_at = now
        if is_verifying and action.verified_at is None:
            action.verified_at = now
            action.verified_by_id = actor.id
        if data.description:
            action.description = data.description
        if data.evidence is not None:
            action.evidence = data.evidence
        await self.db.flush()

        verb = "Verified" if is_verifying else "Completed" if is_completing else "Updated"
        await self.activity.log_action(
            ActivityAction.CORRECTIVE_ACTION_VERIFIED if is_verifying else ActivityAction.CORRECTIVE_ACTION_UPDATED,
            f"{verb} corrective action: {action.title} for audit: {audit.name}",
            user_id=actor.id,
            target_type="corrective_action",
            target_id=action.id,
        )

        all_majors_closed = False
        if is_verifying:
            if action.finding_id:
                await self._close_finding_if_verified(action.finding_id, actor, now)
            all_majors_closed = await self._count_open_majors(audit.id) == 0
            if all_majors_closed and audit.auditor and audit.auditor.user_id:
                await self.gateway.notify_user(
                    audit.id,
                    audit.auditor.user_id,
                    MAJOR_FINDINGS_CLOSED_TITLE,
                    f"All major non-conformities for audit {audit.name} have been closed. "
                    f"The audit is ready for closure.",
                )
        await self.db.commit()

        if all_majors_closed and audit.auditor:
            await self.gateway.send(
                NotificationKind.MAJOR_FINDINGS_CLOSED,
                [audit.auditor.email],
                {
                    "audit": audit_payload(audit),
                    "message": f"All major non-conformities for audit {audit.name} have been closed.",
                },
            )
        return await self._load_action(action_id, fresh=True)

    async def _close_finding_if_verified(
        self,
        finding_id: uuid.UUID,
        actor: User,
        now: datetime,
    ) -> bool:
        # Row lock serialises concurrent verifications of sibling actions
        result = await self.db.execute(
            select(Finding)
            .where(Finding.id == finding_id)
            .with_for_update(of=Finding)
            .execution_options(populate_existing=True)
        )
        finding = result.unique().scalar_one()

        unverified = await self.db.scalar(
            select(func.count(CorrectiveAction.id)).where(
                CorrectiveAction.finding_id == finding_id,
                CorrectiveAction.status != ActionStatus.VERIFIED,
            )
        )
        if unverified or finding.status == FindingStatus.CLOSED:
            return False

        finding.status = FindingStatus.CLOSED
        finding.closed_at = now
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.FINDING_CLOSED,
            f"Closed finding: {finding.title} after all corrective actions were verified",
            user_id=actor.id,
            target_type="finding",
            target_id=finding.id,
        )
        logger.info(f"Finding {finding.id} auto-closed after all corrective actions were verified")
        return True

    async def _count_open_majors(self, audit_id: uuid.UUID) -> int:
        count = await self.db.scalar(
            select(func.count(Finding.id)).where(
                Finding.audit_id == audit_id,
                Finding.finding_type == FindingType.MAJOR_NON_CONFORMITY,
                Finding.status != FindingStatus.CLOSED,
            )
        )
        return count or 0
