"""
ComplyTrack - Audit Lifecycle Service

Owns the Audit state machine:

    PLANNED -> IN_PROGRESS -> COMPLETED
    PLANNED | IN_PROGRESS | DELAYED -> CANCELLED
    PLANNED | IN_PROGRESS -> DELAYED -> PLANNED | IN_PROGRESS

COMPLETED and CANCELLED are terminal. Manual status changes outside this
table are applied with a warning unless ``strict_status_transitions`` is on,
in which case they are rejected.

Closing an audit is gated on every MAJOR_NON_CONFORMITY finding being CLOSED.
Findings and corrective actions live in ``finding_service``.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.activity_log import ActivityAction
from app.models.audit import (
    Audit,
    AuditStatus,
    AuditType,
    CorrectiveAction,
    Finding,
    FindingStatus,
    FindingType,
)
from app.models.notification import AuditNotification
from app.models.user import Department, User
from app.schemas.audit import AuditCreateRequest, AuditUpdateRequest, ExistingAuditor
from app.services.activity_log_service import ActivityLogService
from app.services.auditor_resolution import AuditorResolver
from app.services.notification_service import NotificationGateway, NotificationKind
from app.utils.error_handling import (
    AuditNotFoundException,
    AuthenticationException,
    ClosureBlockedException,
    DuplicateEntryException,
    InvalidDateRangeException,
    InvalidStatusTransitionException,
    NotFoundException,
    UserNotFoundException,
)

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[AuditStatus, frozenset] = {
    AuditStatus.PLANNED: frozenset({AuditStatus.IN_PROGRESS, AuditStatus.CANCELLED, AuditStatus.DELAYED}),
    AuditStatus.DELAYED: frozenset({AuditStatus.IN_PROGRESS, AuditStatus.PLANNED, AuditStatus.CANCELLED}),
    AuditStatus.IN_PROGRESS: frozenset({AuditStatus.COMPLETED, AuditStatus.CANCELLED, AuditStatus.DELAYED}),
    AuditStatus.COMPLETED: frozenset(),
    AuditStatus.CANCELLED: frozenset(),
}


def can_transition(current: AuditStatus, new: AuditStatus) -> bool:
    """True if ``current -> new`` is in the transition table. Same-state is a no-op and allowed."""
    if current == new:
        return True
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime to aware UTC. Naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def require_actor(actor: Optional[User]) -> User:
    if actor is None:
        raise AuthenticationException("Unauthorized: user not found")
    return actor


def audit_payload(audit: Audit) -> Dict[str, Any]:
    """Structured audit description handed to the notification gateway."""
    return {
        "id": str(audit.id),
        "name": audit.name,
        "audit_type": audit.audit_type.value,
        "status": audit.status.value,
        "start_date": audit.start_date,
        "end_date": audit.end_date,
        "auditor_name": audit.auditor.name if audit.auditor else None,
        "auditee_name": audit.auditee.name if audit.auditee else None,
    }


async def get_audit_or_404(db: AsyncSession, audit_id: uuid.UUID, *, fresh: bool = False) -> Audit:
    query = select(Audit).where(Audit.id == audit_id)
    if fresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    audit = result.unique().scalar_one_or_none()
    if not audit:
        raise AuditNotFoundException(audit_id)
    return audit


class AuditLifecycleService:
    """Service for audit creation, status changes and closure."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[NotificationGateway] = None,
        strict_transitions: Optional[bool] = None,
    ):
        self.db = db
        self.gateway = gateway or NotificationGateway(db)
        self.activity = ActivityLogService(db)
        self.resolver = AuditorResolver(db)
        self.strict_transitions = (
            settings.strict_status_transitions if strict_transitions is None else strict_transitions
        )

    # ===========================================
    # HELPERS
    # ===========================================

    def _check_dates(self, start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
        start, end = as_utc(start_date), as_utc(end_date)
        if start and end and end < start:
            raise InvalidDateRangeException(start.isoformat(), end.isoformat())

    def _apply_status(self, audit: Audit, new_status: AuditStatus) -> AuditStatus:
        """Move ``audit`` to ``new_status`` under the transition policy. Returns the old status."""
        old_status = audit.status
        if not can_transition(old_status, new_status):
            if self.strict_transitions:
                raise InvalidStatusTransitionException(old_status.value, new_status.value)
            logger.warning(
                f"Audit {audit.id} moved outside the transition table: "
                f"{old_status.value} -> {new_status.value}"
            )
        audit.status = new_status
        return old_status

    async def _ensure_user(self, user_id: Optional[uuid.UUID]) -> None:
        if user_id and not await self.db.get(User, user_id):
            raise UserNotFoundException(user_id)

    async def _ensure_department(self, department_id: Optional[uuid.UUID]) -> None:
        if department_id and not await self.db.get(Department, department_id):
            raise NotFoundException("Department", department_id)

    def _audit_recipients(self, audit: Audit, actor: User) -> List[Optional[str]]:
        return [
            audit.auditor.email if audit.auditor else None,
            audit.auditee.email if audit.auditee else None,
            audit.created_by.email if audit.created_by else None,
            actor.email,
        ]

    async def _notify_status_change(self, audit: Audit, old_status: AuditStatus, actor: User) -> None:
        if old_status == audit.status:
            return
        await self.gateway.send(
            NotificationKind.AUDIT_STATUS_CHANGED,
            self._audit_recipients(audit, actor),
            {
                "audit": audit_payload(audit),
                "old_status": old_status.value,
                "new_status": audit.status.value,
                "message": f'The status of the audit "{audit.name}" has been changed to {audit.status.value}.',
            },
        )

    # ===========================================
    # AUDITS
    # ===========================================

    async def create_audit(self, data: AuditCreateRequest, actor: Optional[User]) -> Audit:
        """
        Create a PLANNED audit.

        Auditor resolution runs first; an incomplete selector or a missing
        auditor/user aborts before anything is written.
        """
        actor = require_actor(actor)
        selector = data.auditor_selector()
        self._check_dates(data.start_date, data.end_date)
        await self._ensure_user(data.auditee_id)
        await self._ensure_department(data.department_id)

        auditor = await self.resolver.resolve(selector)

        audit = Audit(
            name=data.name,
            audit_type=data.audit_type,
            status=AuditStatus.PLANNED,
            start_date=as_utc(data.start_date),
            end_date=as_utc(data.end_date),
            auditor_id=auditor.id,
            auditee_id=data.auditee_id,
            department_id=data.department_id,
            created_by_id=actor.id,
            firm_name=data.firm_name,
            objectives=data.objectives,
            scope=data.scope,
        )
        self.db.add(audit)
        await self.db.flush()

        await self.activity.log_action(
            ActivityAction.AUDIT_CREATED,
            f"Created {audit.audit_type.value.lower()} audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()

        audit = await get_audit_or_404(self.db, audit.id, fresh=True)
        logger.info(f"Audit {audit.id} created by {actor.id} with auditor {auditor.id}")

        await self.gateway.send(
            NotificationKind.AUDIT_CREATED,
            self._audit_recipients(audit, actor),
            {
                "audit": audit_payload(audit),
                "message": (
                    f"Objectives: {audit.objectives or 'No objectives specified.'}\n"
                    f"Scope: {audit.scope or 'No scope specified.'}"
                ),
            },
        )
        return audit

    async def get_audit(self, audit_id: uuid.UUID) -> Audit:
        return await get_audit_or_404(self.db, audit_id)

    async def list_audits(
        self,
        status: Optional[AuditStatus] = None,
        audit_type: Optional[AuditType] = None,
        auditor_id: Optional[uuid.UUID] = None,
        department_id: Optional[uuid.UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Tuple[Audit, int, int]]:
        """
        List audits, newest first, with their finding and action counts.

        ``start_date`` keeps audits starting on or after it; ``end_date``
        keeps audits ending on or before it.
        """
        finding_count = (
            select(func.count(Finding.id))
            .where(Finding.audit_id == Audit.id)
            .correlate(Audit)
            .scalar_subquery()
        )
        action_count = (
            select(func.count(CorrectiveAction.id))
            .where(CorrectiveAction.audit_id == Audit.id)
            .correlate(Audit)
            .scalar_subquery()
        )
        query = select(Audit, finding_count, action_count)

        if status:
            query = query.where(Audit.status == status)
        if audit_type:
            query = query.where(Audit.audit_type == audit_type)
        if auditor_id:
            query = query.where(Audit.auditor_id == auditor_id)
        if department_id:
            query = query.where(Audit.department_id == department_id)
        if start_date:
            query = query.where(Audit.start_date >= as_utc(start_date))
        if end_date:
            query = query.where(Audit.end_date <= as_utc(end_date))

        result = await self.db.execute(query.order_by(Audit.created_at.desc()))
        return [(row[0], row[1] or 0, row[2] or 0) for row in result.unique().all()]

    async def update_audit(
        self,
        audit_id: uuid.UUID,
        data: AuditUpdateRequest,
        actor: Optional[User],
    ) -> Audit:
        """Update supplied fields; a status change goes through the transition policy."""
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        changes = data.model_dump(exclude_unset=True)

        new_start = changes.get("start_date", audit.start_date)
        new_end = changes.get("end_date", audit.end_date)
        self._check_dates(new_start, new_end)

        if changes.get("auditor_id"):
            await self.resolver.resolve(ExistingAuditor(auditor_id=changes["auditor_id"]))
        await self._ensure_user(changes.get("auditee_id"))
        await self._ensure_department(changes.get("department_id"))

        old_status = audit.status
        new_status = changes.pop("status", None)
        if new_status is not None:
            self._apply_status(audit, new_status)

        for field, value in changes.items():
            if field in ("start_date", "end_date"):
                value = as_utc(value)
            setattr(audit, field, value)

        await self.activity.log_action(
            ActivityAction.AUDIT_UPDATED,
            f"Updated audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()

        audit = await get_audit_or_404(self.db, audit_id, fresh=True)
        await self._notify_status_change(audit, old_status, actor)
        return audit

    async def delete_audit(self, audit_id: uuid.UUID, actor: Optional[User]) -> None:
        """Administrative delete; owned findings, actions, items and documents go with it."""
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        name = audit.name

        await self.db.delete(audit)
        await self.activity.log_action(
            ActivityAction.AUDIT_DELETED,
            f"Deleted audit: {name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit_id,
        )
        await self.db.commit()
        logger.info(f"Audit {audit_id} deleted by {actor.id}")

    async def change_status(
        self,
        audit_id: uuid.UUID,
        new_status: AuditStatus,
        actor: Optional[User],
    ) -> Audit:
        """Manual status change. Notifies auditor, auditee and creator (best effort)."""
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        old_status = self._apply_status(audit, new_status)

        await self.activity.log_action(
            ActivityAction.AUDIT_STATUS_CHANGED,
            f"Changed audit status from {old_status.value} to {new_status.value} for audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()

        audit = await get_audit_or_404(self.db, audit_id, fresh=True)
        await self._notify_status_change(audit, old_status, actor)
        return audit

    async def start_execution_phase(self, audit_id: uuid.UUID, actor: Optional[User]) -> Audit:
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)
        self._apply_status(audit, AuditStatus.IN_PROGRESS)

        await self.activity.log_action(
            ActivityAction.EXECUTION_PHASE_STARTED,
            f"Started execution phase for audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()
        return await get_audit_or_404(self.db, audit_id, fresh=True)

    async def complete_execution_phase(
        self,
        audit_id: uuid.UUID,
        summary: Optional[str],
        actor: Optional[User],
    ) -> Tuple[Audit, Dict[str, int]]:
        """Mark the audit COMPLETED and return finding counts per finding type."""
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)

        result = await self.db.execute(
            select(Finding.finding_type, func.count(Finding.id))
            .where(Finding.audit_id == audit_id)
            .group_by(Finding.finding_type)
        )
        findings_summary = {finding_type.value: count for finding_type, count in result.all()}

        self._apply_status(audit, AuditStatus.COMPLETED)
        audit.summary = summary

        await self.activity.log_action(
            ActivityAction.EXECUTION_PHASE_COMPLETED,
            f"Completed execution phase for audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()
        return await get_audit_or_404(self.db, audit_id, fresh=True), findings_summary

    async def open_major_findings(self, audit_id: uuid.UUID) -> Sequence[Finding]:
        result = await self.db.execute(
            select(Finding)
            .where(
                Finding.audit_id == audit_id,
                Finding.finding_type == FindingType.MAJOR_NON_CONFORMITY,
                Finding.status != FindingStatus.CLOSED,
            )
            .order_by(Finding.created_at)
        )
        return result.unique().scalars().all()

    async def closure_statistics(self, audit_id: uuid.UUID) -> Dict[str, Any]:
        findings = await self.db.execute(
            select(Finding.finding_type, Finding.status, func.count(Finding.id))
            .where(Finding.audit_id == audit_id)
            .group_by(Finding.finding_type, Finding.status)
        )
        actions = await self.db.execute(
            select(CorrectiveAction.status, func.count(CorrectiveAction.id))
            .where(CorrectiveAction.audit_id == audit_id)
            .group_by(CorrectiveAction.status)
        )
        return {
            "findings": [
                {"finding_type": finding_type, "status": status, "count": count}
                for finding_type, status, count in findings.all()
            ],
            "actions": {status.value: count for status, count in actions.all()},
        }

    async def close_audit(
        self,
        audit_id: uuid.UUID,
        closure_summary: Optional[str],
        actor: Optional[User],
    ) -> Tuple[Audit, Dict[str, Any]]:
        """
        Close an audit.

        Raises:
            ClosureBlockedException: while any major non-conformity is not
                CLOSED; lists every blocking finding and leaves the audit as is
        """
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)

        blocking = await self.open_major_findings(audit_id)
        if blocking:
            raise ClosureBlockedException(
                audit_id,
                [{"id": str(finding.id), "title": finding.title} for finding in blocking],
            )

        self._apply_status(audit, AuditStatus.COMPLETED)
        if closure_summary:
            audit.summary = closure_summary

        await self.activity.log_action(
            ActivityAction.AUDIT_CLOSED,
            f"Closed audit: {audit.name}",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()

        statistics = await self.closure_statistics(audit_id)
        logger.info(f"Audit {audit_id} closed by {actor.id}")
        return await get_audit_or_404(self.db, audit_id, fresh=True), statistics

    async def get_audit_statistics(self) -> Dict[str, Any]:
        """Counts across all audits plus the next five planned audits."""

        async def grouped(column, count_column) -> Dict[str, int]:
            result = await self.db.execute(select(column, func.count(count_column)).group_by(column))
            return {key.value: count for key, count in result.all()}

        upcoming = await self.db.execute(
            select(Audit)
            .where(
                Audit.status == AuditStatus.PLANNED,
                Audit.start_date >= datetime.now(timezone.utc),
            )
            .order_by(Audit.start_date)
            .limit(5)
        )
        return {
            "audits_by_status": await grouped(Audit.status, Audit.id),
            "audits_by_type": await grouped(Audit.audit_type, Audit.id),
            "findings_by_status": await grouped(Finding.status, Finding.id),
            "actions_by_status": await grouped(CorrectiveAction.status, CorrectiveAction.id),
            "upcoming_audits": list(upcoming.unique().scalars().all()),
        }

    async def get_previous_audit_actions(
        self,
        audit_id: uuid.UUID,
    ) -> List[Tuple[Audit, List[CorrectiveAction]]]:
        """
        Corrective actions from up to five earlier audits of the same type
        (and department, when the audit has one), newest audit first.
        """
        audit = await get_audit_or_404(self.db, audit_id)

        query = select(Audit).where(
            Audit.audit_type == audit.audit_type,
            Audit.id != audit.id,
            Audit.created_at < audit.created_at,
        )
        if audit.department_id:
            query = query.where(Audit.department_id == audit.department_id)
        result = await self.db.execute(query.order_by(Audit.created_at.desc()).limit(5))
        previous = list(result.unique().scalars().all())
        if not previous:
            return []

        result = await self.db.execute(
            select(CorrectiveAction)
            .where(CorrectiveAction.audit_id.in_([a.id for a in previous]))
            .order_by(CorrectiveAction.created_at.desc())
        )
        by_audit: Dict[uuid.UUID, List[CorrectiveAction]] = {a.id: [] for a in previous}
        for action in result.unique().scalars().all():
            by_audit[action.audit_id].append(action)
        return [(a, by_audit[a.id]) for a in previous]

    async def send_audit_notifications(
        self,
        audit_id: uuid.UUID,
        recipient_ids: List[uuid.UUID],
        actor: Optional[User],
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> List[AuditNotification]:
        """Create one in-app notification per recipient user."""
        actor = require_actor(actor)
        audit = await get_audit_or_404(self.db, audit_id)

        recipients = list(dict.fromkeys(recipient_ids))
        result = await self.db.execute(select(User.id, User.email).where(User.id.in_(recipients)))
        emails = dict(result.all())
        missing = [user_id for user_id in recipients if user_id not in emails]
        if missing:
            raise UserNotFoundException(missing[0])

        title = title or f"New Audit: {audit.name}"
        message = message or f"You have been notified about an upcoming audit: {audit.name}"
        notifications = []
        for user_id in recipients:
            notifications.append(await self.gateway.notify_user(audit.id, user_id, title, message))

        await self.activity.log_action(
            ActivityAction.AUDIT_NOTIFICATIONS_SENT,
            f"Sent notifications for audit: {audit.name} to {len(recipients)} recipients",
            user_id=actor.id,
            target_type="audit",
            target_id=audit.id,
        )
        await self.db.commit()

        await self.gateway.send(
            NotificationKind.CUSTOM,
            [emails[user_id] for user_id in recipients],
            {"audit": audit_payload(audit), "title": title, "message": message},
        )
        return notifications

    # ===========================================
    # DEPARTMENTS
    # ===========================================

    async def list_departments(self) -> List[Department]:
        result = await self.db.execute(select(Department).order_by(Department.name))
        return list(result.scalars().all())

    async def create_department(
        self,
        name: str,
        description: Optional[str],
        actor: Optional[User],
    ) -> Department:
        require_actor(actor)
        result = await self.db.execute(select(Department).where(Department.name == name))
        if result.scalar_one_or_none():
            raise DuplicateEntryException("Department", "name", name)

        department = Department(name=name, description=description)
        self.db.add(department)
        await self.db.commit()
        return department
