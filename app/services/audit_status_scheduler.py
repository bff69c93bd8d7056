"""
ComplyTrack - Audit Status Scheduler

Date-driven status advancement run periodically by Celery beat:

- PLANNED audits whose start date has arrived move to IN_PROGRESS
- IN_PROGRESS audits whose end date has passed move to COMPLETED

Each row is updated with a conditional UPDATE and committed on its own, so
re-running a pass is a no-op and one failing row never aborts the batch.
Findings and corrective actions are not touched.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.activity_log import ActivityAction
from app.models.audit import Audit, AuditStatus
from app.models.user import User, UserRole
from app.services.activity_log_service import ActivityLogService
from app.services.audit_lifecycle_service import as_utc

logger = logging.getLogger(__name__)


class AuditStatusScheduler:
    """One scheduler pass over a bounded batch of audits per rule."""

    def __init__(self, db: AsyncSession, batch_size: Optional[int] = None):
        self.db = db
        self.batch_size = batch_size or settings.audit_status_batch_size
        self.activity = ActivityLogService(db)

    async def find_system_user_id(self) -> Optional[uuid.UUID]:
        """System user by configured email, then any admin, then any user."""
        try:
            for query in (
                select(User.id).where(User.email == settings.system_user_email),
                select(User.id).where(User.role == UserRole.ADMIN).order_by(User.created_at),
                select(User.id).order_by(User.created_at),
            ):
                user_id = (await self.db.execute(query.limit(1))).scalar_one_or_none()
                if user_id:
                    return user_id
        except Exception as e:
            logger.error(f"Error finding system user for activity logging: {e}")
            await self.db.rollback()
            return None
        logger.warning("No user available for scheduler activity logging")
        return None

    async def run_pass(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = as_utc(now) if now else datetime.now(timezone.utc)
        system_user_id = await self.find_system_user_id()
        transitions: List[Dict[str, Any]] = []
        failed = 0

        # PLANNED -> IN_PROGRESS runs first so a fully elapsed audit can finish in one pass
        rules = (
            (
                AuditStatus.PLANNED,
                AuditStatus.IN_PROGRESS,
                Audit.start_date <= now,
                Audit.start_date,
                "as start date ({date}) has arrived",
            ),
            (
                AuditStatus.IN_PROGRESS,
                AuditStatus.COMPLETED,
                Audit.end_date < now,
                Audit.end_date,
                "as end date ({date}) has passed",
            ),
        )

        for expected, target, condition, date_column, reason in rules:
            result = await self.db.execute(
                select(Audit.id, Audit.name, date_column)
                .where(Audit.status == expected, condition)
                .order_by(date_column)
                .limit(self.batch_size)
            )
            candidates = result.all()
            if candidates:
                logger.info(f"Found {len(candidates)} {expected.value} audits to update to {target.value}")

            for audit_id, name, trigger_date in candidates:
                try:
                    applied = await self._transition(audit_id, expected, target, now)
                except Exception:
                    failed += 1
                    await self.db.rollback()
                    logger.exception(f"Failed to advance audit {audit_id} from {expected.value} to {target.value}")
                    continue
                if not applied:
                    continue

                day = as_utc(trigger_date).date().isoformat() if trigger_date else "unknown"
                transitions.append({
                    "audit_id": str(audit_id),
                    "from": expected.value,
                    "to": target.value,
                })
                await self._log_transition(
                    system_user_id,
                    audit_id,
                    f'Automatically updated audit "{name}" status from {expected.value} '
                    f'to {target.value} ' + reason.format(date=day),
                )

        logger.info(
            f"Audit status pass completed: {len(transitions)} updated, {failed} failed"
        )
        return {
            "updated_count": len(transitions),
            "failed_count": failed,
            "transitions": transitions,
        }

    async def _transition(
        self,
        audit_id: uuid.UUID,
        expected: AuditStatus,
        target: AuditStatus,
        now: datetime,
    ) -> bool:
        result = await self.db.execute(
            update(Audit)
            .where(Audit.id == audit_id, Audit.status == expected)
            .values(status=target, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _log_transition(
        self,
        system_user_id: Optional[uuid.UUID],
        audit_id: uuid.UUID,
        details: str,
    ) -> None:
        if system_user_id is None:
            return
        try:
            await self.activity.log_action(
                ActivityAction.AUDIT_STATUS_CHANGED,
                details,
                user_id=system_user_id,
                target_type="audit",
                target_id=audit_id,
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error creating activity log for audit {audit_id}: {e}")
