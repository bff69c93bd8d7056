"""
ComplyTrack - Routers Package

FastAPI route handlers, all under /api/audits.

Routers:
- dashboard: Dashboard aggregations and the audit calendar
- audits: Audit planning, status, execution phase, closure, departments
- findings: Findings and corrective actions (verification cascade)
- inspections: Inspection checklists and pre-audit checklists
- documents: Audit documents and in-app notifications
"""

from app.routers import audits, dashboard, documents, findings, inspections

__all__ = ["audits", "dashboard", "documents", "findings", "inspections"]
