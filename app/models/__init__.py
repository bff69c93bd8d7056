"""
ComplyTrack - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin
from app.models.user import User, UserRole, Department
from app.models.audit import (
    Auditor,
    Audit,
    AuditType,
    AuditStatus,
    Finding,
    FindingType,
    FindingStatus,
    FindingPriority,
    CorrectiveAction,
    ActionType,
    ActionStatus,
    InspectionItem,
    PreAuditChecklistItem,
    AuditDocument,
)
from app.models.notification import AuditNotification
from app.models.activity_log import ActivityLog, ActivityAction

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    # Users
    "User",
    "UserRole",
    "Department",
    # Audit domain
    "Auditor",
    "Audit",
    "AuditType",
    "AuditStatus",
    "Finding",
    "FindingType",
    "FindingStatus",
    "FindingPriority",
    "CorrectiveAction",
    "ActionType",
    "ActionStatus",
    "InspectionItem",
    "PreAuditChecklistItem",
    "AuditDocument",
    # Notifications & activity
    "AuditNotification",
    "ActivityLog",
    "ActivityAction",
]
