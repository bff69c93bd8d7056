"""
ComplyTrack - Activity Log Model

Append-only trail of who did what to the audit records.
Automatic transitions made by the status scheduler are attributed to the
configured system user, or carry no user when none exists.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String, Text, Uuid, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.base import utcnow


class ActivityAction(str, Enum):
    """Activity log action types."""
    AUDIT_CREATED = "AUDIT_CREATED"
    AUDIT_UPDATED = "AUDIT_UPDATED"
    AUDIT_DELETED = "AUDIT_DELETED"
    AUDIT_STATUS_CHANGED = "AUDIT_STATUS_CHANGED"
    AUDIT_CLOSED = "AUDIT_CLOSED"
    AUDIT_NOTIFICATIONS_SENT = "AUDIT_NOTIFICATIONS_SENT"
    EXECUTION_PHASE_STARTED = "EXECUTION_PHASE_STARTED"
    EXECUTION_PHASE_COMPLETED = "EXECUTION_PHASE_COMPLETED"
    FINDING_CREATED = "FINDING_CREATED"
    FINDING_UPDATED = "FINDING_UPDATED"
    FINDING_CLOSED = "FINDING_CLOSED"
    CORRECTIVE_ACTION_CREATED = "CORRECTIVE_ACTION_CREATED"
    CORRECTIVE_ACTION_UPDATED = "CORRECTIVE_ACTION_UPDATED"
    CORRECTIVE_ACTION_VERIFIED = "CORRECTIVE_ACTION_VERIFIED"
    INSPECTION_CHECKLIST_CREATED = "INSPECTION_CHECKLIST_CREATED"
    INSPECTION_ITEM_UPDATED = "INSPECTION_ITEM_UPDATED"
    PRE_AUDIT_CHECKLIST_CREATED = "PRE_AUDIT_CHECKLIST_CREATED"
    CHECKLIST_ITEM_UPDATED = "CHECKLIST_ITEM_UPDATED"
    AUDIT_DOCUMENT_UPLOADED = "AUDIT_DOCUMENT_UPLOADED"
    AUDIT_DOCUMENT_DELETED = "AUDIT_DOCUMENT_DELETED"


class ActivityLog(Base):
    """
    Immutable activity record.

    This table should have no UPDATE or DELETE permissions.
    """

    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        nullable=True,  # System actions may not have a user
        index=True,
    )
    action: Mapped[ActivityAction] = mapped_column(
        SQLEnum(ActivityAction),
        nullable=False,
        index=True,
    )
    target_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    target_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id}, action={self.action.value})>"
