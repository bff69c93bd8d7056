"""
ComplyTrack - Activity Log Service

Writes the activity trail for audit records. Entries are added to the
caller's session and committed together with the mutation they describe.
"""

import uuid
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityLog, ActivityAction


class ActivityLogService:
    """Service for the audit activity trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_action(
        self,
        action: ActivityAction,
        details: str,
        user_id: Optional[uuid.UUID] = None,
        target_type: Optional[str] = None,
        target_id: Optional[Union[uuid.UUID, str]] = None,
    ) -> ActivityLog:
        """
        Log an activity.

        Args:
            action: Type of action performed
            details: Human readable description
            user_id: User who performed the action (None for system actions)
            target_type: Kind of record affected (e.g. 'audit', 'finding')
            target_id: ID of the affected record
        """
        entry = ActivityLog(
            user_id=user_id,
            action=action,
            details=details,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_logs(
        self,
        target_type: Optional[str] = None,
        target_id: Optional[Union[uuid.UUID, str]] = None,
        action: Optional[ActivityAction] = None,
        limit: int = 100,
    ) -> List[ActivityLog]:
        """Get activity entries, newest first."""
        query = select(ActivityLog)
        if target_type:
            query = query.where(ActivityLog.target_type == target_type)
        if target_id is not None:
            query = query.where(ActivityLog.target_id == str(target_id))
        if action:
            query = query.where(ActivityLog.action == action)

        result = await self.db.execute(
            query.order_by(ActivityLog.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
