"""
ComplyTrack - Notification Model

In-app notifications raised by the audit workflow (assignments, status
changes, "all major non-conformities closed" hints). Email delivery is
handled separately by the notification gateway.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, utcnow

if TYPE_CHECKING:
    from app.models.audit import Audit
    from app.models.user import User


class AuditNotification(BaseModel):
    """Notification shown to a single user inside the application."""

    __tablename__ = "audit_notifications"

    audit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    is_read: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    audit: Mapped["Audit"] = relationship(back_populates="notifications")
    user: Mapped["User"] = relationship()

    def __repr__(self) -> str:
        return f"<AuditNotification(id={self.id}, user_id={self.user_id}, title={self.title})>"
