"""
ComplyTrack - Audit Domain Models

Records for the audit lifecycle:

- Auditor: person or firm performing an audit (internal or external)
- Audit: a planned or in-progress compliance review
- Finding: an issue discovered during an audit, classified by severity
- CorrectiveAction: remedial work tied to an audit and optionally a finding
- InspectionItem: per-area checklist entry scored during execution
- PreAuditChecklistItem: preparation task completed before fieldwork
- AuditDocument: file attached to an audit (stored out of band)

Deleting an Audit cascades to everything it owns.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, String, Text, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.notification import AuditNotification
    from app.models.user import Department, User


# ===========================================
# ENUMS
# ===========================================

class AuditType(str, Enum):
    """Kind of audit being performed."""
    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"
    COMPLIANCE = "COMPLIANCE"
    PROCESS = "PROCESS"
    QUALITY = "QUALITY"
    SAFETY = "SAFETY"
    SUPPLIER = "SUPPLIER"
    SYSTEM = "SYSTEM"


class AuditStatus(str, Enum):
    """Lifecycle status of an audit."""
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DELAYED = "DELAYED"


class FindingType(str, Enum):
    """Severity classification of a finding."""
    OBSERVATION = "OBSERVATION"
    NON_CONFORMITY = "NON_CONFORMITY"
    MAJOR_NON_CONFORMITY = "MAJOR_NON_CONFORMITY"  # Blocks audit closure until CLOSED
    OPPORTUNITY_FOR_IMPROVEMENT = "OPPORTUNITY_FOR_IMPROVEMENT"


class FindingStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    VERIFIED = "VERIFIED"
    CLOSED = "CLOSED"


class FindingPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ActionType(str, Enum):
    CORRECTIVE = "CORRECTIVE"
    PREVENTIVE = "PREVENTIVE"


class ActionStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    VERIFIED = "VERIFIED"


# ===========================================
# AUDITOR
# ===========================================

class Auditor(BaseModel):
    """
    Person or firm performing an audit.

    Internal auditors are bound one-to-one to a user account through
    ``user_id``; external auditors never carry a user id.
    """

    __tablename__ = "auditors"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    is_external: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    firm_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )

    user: Mapped[Optional["User"]] = relationship(lazy="joined")
    audits: Mapped[List["Audit"]] = relationship(back_populates="auditor")

    def __repr__(self) -> str:
        return f"<Auditor(id={self.id}, name={self.name}, external={self.is_external})>"


# ===========================================
# AUDIT
# ===========================================

class Audit(BaseModel):
    """A planned or in-progress compliance review."""

    __tablename__ = "audits"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    audit_type: Mapped[AuditType] = mapped_column(SQLEnum(AuditType), nullable=False, index=True)
    status: Mapped[AuditStatus] = mapped_column(
        SQLEnum(AuditStatus),
        default=AuditStatus.PLANNED,
        nullable=False,
        index=True,
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    auditor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("auditors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    auditee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    firm_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    objectives: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Many-to-one references are small and always rendered with the audit
    auditor: Mapped["Auditor"] = relationship(back_populates="audits", lazy="joined")
    auditee: Mapped[Optional["User"]] = relationship(foreign_keys=[auditee_id], lazy="joined")
    created_by: Mapped[Optional["User"]] = relationship(foreign_keys=[created_by_id], lazy="joined")
    department: Mapped[Optional["Department"]] = relationship(back_populates="audits", lazy="joined")

    findings: Mapped[List["Finding"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
    )
    actions: Mapped[List["CorrectiveAction"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
    )
    inspection_items: Mapped[List["InspectionItem"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
    )
    checklist_items: Mapped[List["PreAuditChecklistItem"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
    )
    documents: Mapped[List["AuditDocument"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
    )
    notifications: Mapped[List["AuditNotification"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_audits_status_start_date", "status", "start_date"),
        Index("ix_audits_status_end_date", "status", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<Audit(id={self.id}, name={self.name}, status={self.status.value})>"


# ===========================================
# FINDING
# ===========================================

class Finding(BaseModel):
    """A discrete issue discovered during an audit."""

    __tablename__ = "findings"

    audit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    finding_type: Mapped[FindingType] = mapped_column(SQLEnum(FindingType), nullable=False)
    status: Mapped[FindingStatus] = mapped_column(
        SQLEnum(FindingStatus),
        default=FindingStatus.OPEN,
        nullable=False,
    )
    priority: Mapped[FindingPriority] = mapped_column(
        SQLEnum(FindingPriority),
        default=FindingPriority.MEDIUM,
        nullable=False,
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    evidence: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    audit: Mapped["Audit"] = relationship(back_populates="findings")
    assigned_to: Mapped[Optional["User"]] = relationship(lazy="joined")
    actions: Mapped[List["CorrectiveAction"]] = relationship(back_populates="finding")

    __table_args__ = (
        Index("ix_findings_audit_type_status", "audit_id", "finding_type", "status"),
    )

    @property
    def is_blocking_closure(self) -> bool:
        return (
            self.finding_type == FindingType.MAJOR_NON_CONFORMITY
            and self.status != FindingStatus.CLOSED
        )


# ===========================================
# CORRECTIVE ACTION
# ===========================================

class CorrectiveAction(BaseModel):
    """
    Remedial work item.

    ``completed_at`` and ``verified_at``/``verified_by_id`` are stamped once,
    on the first transition into COMPLETED and VERIFIED respectively.
    """

    __tablename__ = "corrective_actions"

    audit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    finding_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("findings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    action_type: Mapped[ActionType] = mapped_column(SQLEnum(ActionType), nullable=False)
    assigned_to_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ActionStatus] = mapped_column(
        SQLEnum(ActionStatus),
        default=ActionStatus.OPEN,
        nullable=False,
    )
    evidence: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    audit: Mapped["Audit"] = relationship(back_populates="actions")
    finding: Mapped[Optional["Finding"]] = relationship(back_populates="actions")
    assigned_to: Mapped["User"] = relationship(foreign_keys=[assigned_to_id], lazy="joined")
    verified_by: Mapped[Optional["User"]] = relationship(foreign_keys=[verified_by_id], lazy="joined")


# ===========================================
# INSPECTION CHECKLIST
# ===========================================

class InspectionItem(BaseModel):
    """
    Checklist entry for one compliance area within an audit.

    ``is_compliant`` is NULL until the item is inspected.
    """

    __tablename__ = "inspection_items"

    audit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    area_name: Mapped[str] = mapped_column(String(200), nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    standard_reference: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    is_compliant: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    evidence: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    inspected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    audit: Mapped["Audit"] = relationship(back_populates="inspection_items")
    inspected_by: Mapped[Optional["User"]] = relationship(lazy="joined")


class PreAuditChecklistItem(BaseModel):
    """Preparation task that should be done before fieldwork starts."""

    __tablename__ = "pre_audit_checklist_items"

    audit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    responsible_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    audit: Mapped["Audit"] = relationship(back_populates="checklist_items")
    responsible: Mapped[Optional["User"]] = relationship(foreign_keys=[responsible_id], lazy="joined")


# ===========================================
# DOCUMENTS
# ===========================================

class AuditDocument(BaseModel):
    """File attached to an audit. The bytes live in the document store."""

    __tablename__ = "audit_documents"

    audit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("audits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    document_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    uploaded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    audit: Mapped["Audit"] = relationship(back_populates="documents")
    uploaded_by: Mapped[Optional["User"]] = relationship(lazy="joined")
