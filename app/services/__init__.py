"""
ComplyTrack - Services Package

Business logic services.
"""

from app.services.activity_log_service import ActivityLogService
from app.services.audit_lifecycle_service import AuditLifecycleService
from app.services.audit_status_scheduler import AuditStatusScheduler
from app.services.audit_dashboard_service import AuditDashboardService
from app.services.auditor_resolution import AuditorResolver
from app.services.document_service import DocumentService
from app.services.email_service import EmailService
from app.services.file_storage_service import FileStorageService
from app.services.finding_service import FindingService
from app.services.inspection_service import InspectionService
from app.services.notification_service import NotificationGateway, NotificationKind

__all__ = [
    # Audit workflow
    "AuditLifecycleService",
    "AuditorResolver",
    "FindingService",
    "InspectionService",
    "AuditStatusScheduler",
    "AuditDashboardService",
    # Supporting services
    "ActivityLogService",
    "DocumentService",
    "FileStorageService",
    "NotificationGateway",
    "NotificationKind",
    "EmailService",
]
