"""
ComplyTrack - Celery Tasks

Background tasks for scheduled operations.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from app.config import settings
from app.database import async_session_factory, engine

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===========================================
# AUDIT STATUS TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.update_audit_statuses_task')
def update_audit_statuses_task() -> Dict[str, Any]:
    """Advance PLANNED and IN_PROGRESS audits whose dates have been reached."""
    return run_async(_update_audit_statuses())


async def _update_audit_statuses() -> Dict[str, Any]:
    """Async implementation of the audit status pass."""
    from app.services.audit_status_scheduler import AuditStatusScheduler

    try:
        async with async_session_factory() as db:
            result = await AuditStatusScheduler(db, settings.audit_status_batch_size).run_pass()
    except Exception as e:
        logger.exception(f"Audit status update job failed: {e}")
        return {"success": False, "error": str(e)}
    finally:
        # Pooled connections are bound to this task's event loop
        await engine.dispose()

    logger.info(f"Audit status update job completed. Updated {result['updated_count']} audits.")
    return {"success": True, **result}
