"""
ComplyTrack - User Model

Internal user accounts and the departments they belong to.

Users appear throughout the audit domain as auditees, audit creators,
finding/action assignees, corrective-action verifiers and inspectors.
An internal Auditor record may point back at a user account.
"""

import uuid
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, ForeignKey, String, Text, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.audit import Audit


class UserRole(str, Enum):
    """User roles."""
    ADMIN = "admin"                  # Full access, may delete any audit document
    QUALITY_MANAGER = "quality_manager"  # Plans audits and verifies actions
    AUDITOR = "auditor"              # Internal auditor
    STAFF = "staff"                  # Auditee / action owner
    VIEWER = "viewer"                # Read-only


class Department(BaseModel):
    """Organisational unit an audit may be scoped to."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    users: Mapped[List["User"]] = relationship(back_populates="department")
    audits: Mapped[List["Audit"]] = relationship(back_populates="department")


class User(BaseModel):
    """
    User model for authentication and authorization.

    Authentication itself happens upstream; this service only resolves the
    bearer token's subject to a row in this table.
    """

    __tablename__ = "users"

    # Basic Info
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole),
        default=UserRole.STAFF,
        nullable=False,
    )

    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    department: Mapped[Optional["Department"]] = relationship(back_populates="users")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"
