"""
ComplyTrack - Background Tasks Package

Celery background tasks.
"""

from app.tasks.celery_tasks import run_async, update_audit_statuses_task

__all__ = [
    "run_async",
    "update_audit_statuses_task",
]
