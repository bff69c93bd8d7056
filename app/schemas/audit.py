"""
ComplyTrack - Audit Schemas

Pydantic schemas for audit lifecycle request/response validation.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator

from app.models.audit import (
    ActionStatus,
    ActionType,
    AuditStatus,
    AuditType,
    FindingPriority,
    FindingStatus,
    FindingType,
)
from app.utils.error_handling import AuditorSelectionException


# ===========================================
# SHARED
# ===========================================

class UserBrief(BaseModel):
    """Minimal user reference embedded in responses."""
    id: UUID
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class DepartmentCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None


class DepartmentResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AuditorResponse(BaseModel):
    id: UUID
    name: str
    email: str
    is_external: bool
    firm_name: Optional[str] = None
    user_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


# ===========================================
# AUDITOR SELECTOR
# ===========================================

class ExistingAuditor(BaseModel):
    """Reuse an auditor record that already exists."""
    kind: Literal["existing"] = "existing"
    auditor_id: UUID


class InternalAuditor(BaseModel):
    """Resolve (or create) the auditor record bound to an internal user."""
    kind: Literal["internal"] = "internal"
    user_id: UUID


class ExternalAuditor(BaseModel):
    """Always creates a new external auditor record."""
    kind: Literal["external"] = "external"
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    firm_name: Optional[str] = Field(None, max_length=200)


AuditorSelector = Annotated[
    Union[ExistingAuditor, InternalAuditor, ExternalAuditor],
    Field(discriminator="kind"),
]


def selector_from_fields(
    audit_type: AuditType,
    auditor_id: Optional[UUID] = None,
    auditor_user_id: Optional[UUID] = None,
    auditor_name: Optional[str] = None,
    auditor_email: Optional[str] = None,
    firm_name: Optional[str] = None,
) -> Union[ExistingAuditor, InternalAuditor, ExternalAuditor]:
    """
    Convert the flat auditor fields of a create request into a selector.

    An explicit ``auditor_id`` wins for every audit type. Otherwise INTERNAL
    audits need ``auditor_user_id`` and EXTERNAL audits need a name and an
    email; any other audit type can only reference an existing auditor.

    Raises:
        AuditorSelectionException: naming the fields required for the type
    """
    if auditor_id:
        return ExistingAuditor(auditor_id=auditor_id)

    if audit_type == AuditType.INTERNAL:
        if auditor_user_id:
            return InternalAuditor(user_id=auditor_user_id)
        raise AuditorSelectionException(audit_type.value, ["auditor_user_id"])

    if audit_type == AuditType.EXTERNAL:
        if auditor_name and auditor_email:
            return ExternalAuditor(name=auditor_name, email=auditor_email, firm_name=firm_name)
        raise AuditorSelectionException(audit_type.value, ["auditor_name", "auditor_email"])

    raise AuditorSelectionException(audit_type.value, [])


# ===========================================
# AUDIT
# ===========================================

class AuditCreateRequest(BaseModel):
    """
    Schema for creating an audit.

    The auditor is given either as a tagged ``auditor`` selector or through
    the flat ``auditor_*`` fields.
    """
    name: str = Field(..., min_length=1, max_length=255)
    audit_type: AuditType
    start_date: datetime
    end_date: Optional[datetime] = None

    auditor: Optional[AuditorSelector] = None
    auditor_id: Optional[UUID] = None
    auditor_user_id: Optional[UUID] = None
    auditor_name: Optional[str] = Field(None, max_length=200)
    auditor_email: Optional[EmailStr] = None
    firm_name: Optional[str] = Field(None, max_length=200)

    auditee_id: Optional[UUID] = None
    department_id: Optional[UUID] = None
    objectives: Optional[str] = None
    scope: Optional[str] = None

    def auditor_selector(self) -> Union[ExistingAuditor, InternalAuditor, ExternalAuditor]:
        if self.auditor is not None:
            return self.auditor
        return selector_from_fields(
            self.audit_type,
            auditor_id=self.auditor_id,
            auditor_user_id=self.auditor_user_id,
            auditor_name=self.auditor_name,
            auditor_email=self.auditor_email,
            firm_name=self.firm_name,
        )


class AuditUpdateRequest(BaseModel):
    """Schema for updating an audit. Only supplied fields change."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    audit_type: Optional[AuditType] = None
    status: Optional[AuditStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auditor_id: Optional[UUID] = None
    auditee_id: Optional[UUID] = None
    department_id: Optional[UUID] = None
    firm_name: Optional[str] = Field(None, max_length=200)
    objectives: Optional[str] = None
    scope: Optional[str] = None
    summary: Optional[str] = None

    @field_validator("name", "audit_type", "status", "start_date", "auditor_id")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class AuditStatusChangeRequest(BaseModel):
    status: AuditStatus


class ExecutionCompleteRequest(BaseModel):
    summary: Optional[str] = None


class AuditCloseRequest(BaseModel):
    closure_summary: Optional[str] = None


class AuditResponse(BaseModel):
    """Schema for audit response."""
    id: UUID
    name: str
    audit_type: AuditType
    status: AuditStatus
    start_date: datetime
    end_date: Optional[datetime] = None

    auditor: AuditorResponse
    auditee: Optional[UserBrief] = None
    created_by: Optional[UserBrief] = None
    department: Optional[DepartmentResponse] = None

    firm_name: Optional[str] = None
    objectives: Optional[str] = None
    scope: Optional[str] = None
    summary: Optional[str] = None

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditSummaryResponse(AuditResponse):
    """Audit row in a list, with child counts."""
    finding_count: int = 0
    action_count: int = 0


class AuditListResponse(BaseModel):
    audits: List[AuditSummaryResponse]
    total: int


class FindingStatRow(BaseModel):
    finding_type: FindingType
    status: FindingStatus
    count: int


class AuditClosureStatistics(BaseModel):
    findings: List[FindingStatRow]
    actions: Dict[str, int]


class AuditCloseResponse(BaseModel):
    audit: AuditResponse
    statistics: AuditClosureStatistics


class ExecutionCompleteResponse(BaseModel):
    audit: AuditResponse
    findings_summary: Dict[str, int]


class AuditStatisticsResponse(BaseModel):
    """Dashboard counts across all audits."""
    audits_by_status: Dict[str, int]
    audits_by_type: Dict[str, int]
    findings_by_status: Dict[str, int]
    actions_by_status: Dict[str, int]
    upcoming_audits: List[AuditResponse]


# ===========================================
# FINDINGS
# ===========================================

class FindingCreateRequest(BaseModel):
    """Schema for recording a finding."""
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    finding_type: FindingType
    priority: FindingPriority = FindingPriority.MEDIUM
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[UUID] = None
    evidence: Optional[str] = Field(None, max_length=1000)


class FindingUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    finding_type: Optional[FindingType] = None
    status: Optional[FindingStatus] = None
    priority: Optional[FindingPriority] = None
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[UUID] = None
    evidence: Optional[str] = Field(None, max_length=1000)

    @field_validator("title", "description", "finding_type", "status", "priority")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class FindingResponse(BaseModel):
    id: UUID
    audit_id: UUID
    title: str
    description: str
    finding_type: FindingType
    status: FindingStatus
    priority: FindingPriority
    due_date: Optional[datetime] = None
    assigned_to: Optional[UserBrief] = None
    evidence: Optional[str] = None
    closed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ===========================================
# CORRECTIVE ACTIONS
# ===========================================

class CorrectiveActionCreateRequest(BaseModel):
    finding_id: Optional[UUID] = None
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    action_type: ActionType
    assigned_to_id: UUID
    due_date: datetime


class CorrectiveActionUpdateRequest(BaseModel):
    status: ActionStatus
    description: Optional[str] = None
    evidence: Optional[str] = Field(None, max_length=1000)


class CorrectiveActionResponse(BaseModel):
    id: UUID
    audit_id: UUID
    finding_id: Optional[UUID] = None
    title: str
    description: str
    action_type: ActionType
    status: ActionStatus
    due_date: datetime
    assigned_to: UserBrief
    evidence: Optional[str] = None
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[UserBrief] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PreviousAuditActions(BaseModel):
    id: UUID
    name: str
    audit_type: AuditType
    status: AuditStatus
    start_date: datetime
    actions: List[CorrectiveActionResponse]


# ===========================================
# INSPECTION CHECKLIST
# ===========================================

class ComplianceVerdict(str, Enum):
    """Outcome of inspecting one checklist item."""
    NOT_INSPECTED = "NOT_INSPECTED"
    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"

    @classmethod
    def from_wire(cls, value: Any) -> "ComplianceVerdict":
        """
        Accept the representations clients send for the compliance flag:
        booleans, "true"/"false" strings, verdict names, or null.
        """
        if value is None or isinstance(value, cls):
            return value or cls.NOT_INSPECTED
        if isinstance(value, bool):
            return cls.COMPLIANT if value else cls.NON_COMPLIANT
        if isinstance(value, str):
            text = value.strip().lower()
            if text in ("true", "1", "yes", "compliant"):
                return cls.COMPLIANT
            if text in ("false", "0", "no", "non_compliant"):
                return cls.NON_COMPLIANT
            if text in ("", "null", "none", "not_inspected"):
                return cls.NOT_INSPECTED
        raise ValueError(f"Invalid compliance value: {value!r}")

    @classmethod
    def from_flag(cls, flag: Optional[bool]) -> "ComplianceVerdict":
        if flag is None:
            return cls.NOT_INSPECTED
        return cls.COMPLIANT if flag else cls.NON_COMPLIANT

    def to_flag(self) -> Optional[bool]:
        if self == ComplianceVerdict.NOT_INSPECTED:
            return None
        return self == ComplianceVerdict.COMPLIANT


class InspectionItemDefinition(BaseModel):
    item_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    standard_reference: Optional[str] = Field(None, max_length=200)


class InspectionChecklistCreateRequest(BaseModel):
    area_name: str = Field(..., min_length=1, max_length=200)
    items: List[InspectionItemDefinition] = Field(..., min_length=1)


class InspectionItemUpdateRequest(BaseModel):
    is_compliant: ComplianceVerdict = ComplianceVerdict.NOT_INSPECTED
    comments: Optional[str] = None
    evidence: Optional[str] = Field(None, max_length=1000)

    @field_validator("is_compliant", mode="before")
    @classmethod
    def parse_compliance(cls, v):
        return ComplianceVerdict.from_wire(v)


class InspectionItemResponse(BaseModel):
    id: UUID
    audit_id: UUID
    area_name: str
    item_name: str
    description: Optional[str] = None
    standard_reference: Optional[str] = None
    is_compliant: Optional[bool] = None
    comments: Optional[str] = None
    evidence: Optional[str] = None
    inspected_by: Optional[UserBrief] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def verdict(self) -> ComplianceVerdict:
        return ComplianceVerdict.from_flag(self.is_compliant)


class InspectionAreaResponse(BaseModel):
    area_name: str
    items: List[InspectionItemResponse]
    total_items: int
    compliant_items: int
    compliance_rate: float


class InspectionItemUpdateResponse(BaseModel):
    item: InspectionItemResponse
    suggest_finding: bool


# ===========================================
# PRE-AUDIT CHECKLIST
# ===========================================

class PreAuditChecklistItemCreate(BaseModel):
    description: str = Field(..., min_length=1)
    is_completed: bool = False
    responsible_id: Optional[UUID] = None
    due_date: Optional[datetime] = None


class PreAuditChecklistCreateRequest(BaseModel):
    items: List[PreAuditChecklistItemCreate] = Field(..., min_length=1)


class PreAuditChecklistItemUpdateRequest(BaseModel):
    is_completed: bool
    comments: Optional[str] = None


class PreAuditChecklistItemResponse(BaseModel):
    id: UUID
    audit_id: UUID
    description: str
    is_completed: bool
    comments: Optional[str] = None
    responsible: Optional[UserBrief] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ===========================================
# DOCUMENTS & NOTIFICATIONS
# ===========================================

class AuditDocumentResponse(BaseModel):
    id: UUID
    audit_id: UUID
    title: str
    description: Optional[str] = None
    document_type: str
    file_url: str
    uploaded_by: Optional[UserBrief] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditNotificationSendRequest(BaseModel):
    recipient_ids: List[UUID] = Field(..., min_length=1)
    title: Optional[str] = Field(None, max_length=255)
    message: Optional[str] = None


class AuditNotificationResponse(BaseModel):
    id: UUID
    audit_id: UUID
    user_id: UUID
    title: str
    message: str
    is_read: bool
    sent_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ===========================================
# DASHBOARD & CALENDAR
# ===========================================

class DashboardOverview(BaseModel):
    total_audits: int
    active_audits: int
    completed_audits: int
    planned_audits: int
    total_findings: int
    open_findings: int
    critical_findings: int
    overdue_actions: int
    audit_completion_rate: float


class StatusCount(BaseModel):
    status: str
    count: int


class FindingTypeCount(BaseModel):
    finding_type: str
    count: int


class OverdueActionResponse(BaseModel):
    """Corrective action past due, with the audit and finding it belongs to."""
    action: CorrectiveActionResponse
    audit_name: str
    finding_title: Optional[str] = None
    finding_priority: Optional[FindingPriority] = None
    days_overdue: int


class CriticalFindingResponse(BaseModel):
    finding: FindingResponse
    audit_name: str
    open_actions: List[CorrectiveActionResponse] = []


class MonthlyTrendRow(BaseModel):
    month: str  # YYYY-MM
    status: str
    count: int


class AuditTrendsResponse(BaseModel):
    since: datetime
    overall: Dict[str, int]
    monthly: List[MonthlyTrendRow]


class DepartmentStatsRow(BaseModel):
    department_id: UUID
    department_name: str
    total_audits: int
    completed_audits: int
    active_audits: int
    total_findings: int
    total_actions: int


class AuditorPerformanceRow(BaseModel):
    auditor_id: UUID
    auditor_name: str
    email: str
    is_external: bool
    firm_name: Optional[str] = None
    total_audits: int
    completed_audits: int
    active_audits: int
    total_findings: int
    total_actions: int
    average_findings_per_audit: float


class AuditDashboardResponse(BaseModel):
    """Everything the audit dashboard shows on first load."""
    overview: DashboardOverview
    status_distribution: List[StatusCount]
    findings_distribution: List[FindingTypeCount]
    recent_audits: List[AuditSummaryResponse]
    upcoming_audits: List[AuditResponse]
    overdue_actions: List[OverdueActionResponse]
    critical_findings: List[CriticalFindingResponse]


class CalendarEvent(BaseModel):
    id: UUID
    title: str
    start: datetime
    end: datetime
    audit_type: AuditType
    status: AuditStatus
    auditor: AuditorResponse
    auditee: Optional[UserBrief] = None
    department: Optional[str] = None
    color: str
    border_color: str


class CalendarEventsResponse(BaseModel):
    count: int
    events: List[CalendarEvent]
