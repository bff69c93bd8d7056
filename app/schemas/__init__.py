"""
ComplyTrack - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.audit import (
    # Auditor selector
    AuditorSelector,
    ExistingAuditor,
    InternalAuditor,
    ExternalAuditor,
    selector_from_fields,
    # Audit
    AuditCreateRequest,
    AuditUpdateRequest,
    AuditStatusChangeRequest,
    AuditCloseRequest,
    AuditResponse,
    AuditListResponse,
    AuditCloseResponse,
    AuditStatisticsResponse,
    # Findings & corrective actions
    FindingCreateRequest,
    FindingUpdateRequest,
    FindingResponse,
    CorrectiveActionCreateRequest,
    CorrectiveActionUpdateRequest,
    CorrectiveActionResponse,
    # Checklists
    ComplianceVerdict,
    InspectionChecklistCreateRequest,
    InspectionItemUpdateRequest,
    InspectionItemResponse,
    PreAuditChecklistCreateRequest,
    PreAuditChecklistItemUpdateRequest,
    PreAuditChecklistItemResponse,
    # Documents & notifications
    AuditDocumentResponse,
    AuditNotificationResponse,
    # Dashboard & calendar
    AuditDashboardResponse,
    CalendarEventsResponse,
)

__all__ = [
    "AuditorSelector",
    "ExistingAuditor",
    "InternalAuditor",
    "ExternalAuditor",
    "selector_from_fields",
    "AuditCreateRequest",
    "AuditUpdateRequest",
    "AuditStatusChangeRequest",
    "AuditCloseRequest",
    "AuditResponse",
    "AuditListResponse",
    "AuditCloseResponse",
    "AuditStatisticsResponse",
    "FindingCreateRequest",
    "FindingUpdateRequest",
    "FindingResponse",
    "CorrectiveActionCreateRequest",
    "CorrectiveActionUpdateRequest",
    "CorrectiveActionResponse",
    "ComplianceVerdict",
    "InspectionChecklistCreateRequest",
    "InspectionItemUpdateRequest",
    "InspectionItemResponse",
    "PreAuditChecklistCreateRequest",
    "PreAuditChecklistItemUpdateRequest",
    "PreAuditChecklistItemResponse",
    "AuditDocumentResponse",
    "AuditNotificationResponse",
    "AuditDashboardResponse",
    "CalendarEventsResponse",
]
