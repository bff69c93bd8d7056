"""
API endpoint tests for the /api/audits surface.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.config import settings


def _iso(days: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def storage_root(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "storage_local_path", str(tmp_path))
    return tmp_path


class TestAuthentication:
    """Tests for bearer token handling"""

    async def test_missing_token(self, client):
        response = await client.get("/api/audits")
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    async def test_invalid_token(self, client):
        response = await client.get("/api/audits", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200


class TestAuditEndpoints:
    """Tests for audit CRUD and lifecycle endpoints"""

    async def test_create_internal_audit(self, client, manager_headers, auditor_user, staff_user):
        response = await client.post(
            "/api/audits",
            headers=manager_headers,
            json={
                "name": "Document Control Audit",
                "audit_type": "INTERNAL",
                "start_date": _iso(3),
                "end_date": _iso(4),
                "auditor_user_id": str(auditor_user.id),
                "auditee_id": str(staff_user.id),
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PLANNED"
        assert data["auditor"]["email"] == auditor_user.email
        assert data["auditee"]["id"] == str(staff_user.id)

    async def test_create_with_tagged_selector(self, client, manager_headers):
        response = await client.post(
            "/api/audits",
            headers=manager_headers,
            json={
                "name": "Supplier Audit",
                "audit_type": "SUPPLIER",
                "start_date": _iso(10),
                "auditor": {"kind": "external", "name": "Lee Outside", "email": "lee@bsi-audit.com"},
            },
        )
        assert response.status_code == 201
        assert response.json()["auditor"]["is_external"] is True

    async def test_incomplete_auditor_selection(self, client, manager_headers):
        response = await client.post(
            "/api/audits",
            headers=manager_headers,
            json={
                "name": "External Audit",
                "audit_type": "EXTERNAL",
                "start_date": _iso(3),
                "auditor_name": "Missing Email",
            },
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "AUDITOR_SELECTION_INCOMPLETE"
        assert detail["details"]["required_fields"] == ["auditor_id", "auditor_name", "auditor_email"]

    async def test_invalid_date_range(self, client, manager_headers, internal_auditor):
        response = await client.post(
            "/api/audits",
            headers=manager_headers,
            json={
                "name": "Backwards",
                "audit_type": "QUALITY",
                "start_date": _iso(5),
                "end_date": _iso(1),
                "auditor_id": str(internal_auditor.id),
            },
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_DATE_RANGE"

    async def test_list_includes_counts(self, client, manager_headers, planned_audit):
        await client.post(
            f"/api/audits/{planned_audit.id}/findings",
            headers=manager_headers,
            json={"title": "Gap", "description": "Gap found", "finding_type": "OBSERVATION"},
        )

        response = await client.get("/api/audits", headers=manager_headers, params={"status": "PLANNED"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["audits"][0]["finding_count"] == 1
        assert data["audits"][0]["action_count"] == 0

    async def test_unknown_audit(self, client, manager_headers):
        response = await client.get(
            "/api/audits/00000000-0000-0000-0000-000000000000", headers=manager_headers
        )
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "AUDIT_NOT_FOUND"

    async def test_status_change(self, client, manager_headers, planned_audit, sent_emails):
        response = await client.patch(
            f"/api/audits/{planned_audit.id}/status",
            headers=manager_headers,
            json={"status": "IN_PROGRESS"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "IN_PROGRESS"
        assert sent_emails[-1].subject == "Audit Status Updated: ISO 9001 Surveillance"

    async def test_update_rejects_null_required_field(self, client, manager_headers, planned_audit):
        response = await client.put(
            f"/api/audits/{planned_audit.id}", headers=manager_headers, json={"name": None}
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

        unchanged = await client.get(f"/api/audits/{planned_audit.id}", headers=manager_headers)
        assert unchanged.json()["name"] == "ISO 9001 Surveillance"

    async def test_update_allows_clearing_optional_field(self, client, manager_headers, planned_audit):
        response = await client.put(
            f"/api/audits/{planned_audit.id}", headers=manager_headers, json={"end_date": None}
        )
        assert response.status_code == 200
        assert response.json()["end_date"] is None

    async def test_delete_requires_admin(self, client, manager_headers, admin_headers, planned_audit):
        response = await client.delete(f"/api/audits/{planned_audit.id}", headers=manager_headers)
        assert response.status_code == 403

        response = await client.delete(f"/api/audits/{planned_audit.id}", headers=admin_headers)
        assert response.status_code == 204

        response = await client.get(f"/api/audits/{planned_audit.id}", headers=admin_headers)
        assert response.status_code == 404


class TestClosureFlow:
    """Tests for finding -> action -> verification -> closure over HTTP"""

    async def test_closure_blocked_then_allowed(
        self, client, manager_headers, staff_headers, planned_audit, staff_user
    ):
        base = f"/api/audits/{planned_audit.id}"

        finding = await client.post(
            f"{base}/findings",
            headers=manager_headers,
            json={
                "title": "No management review",
                "description": "Management review not held this year",
                "finding_type": "MAJOR_NON_CONFORMITY",
                "priority": "HIGH",
            },
        )
        assert finding.status_code == 201
        finding_id = finding.json()["id"]

        await client.post(f"{base}/execution/start", headers=manager_headers)

        blocked = await client.post(f"{base}/close", headers=manager_headers, json={})
        assert blocked.status_code == 409
        detail = blocked.json()["detail"]
        assert detail["code"] == "CLOSURE_BLOCKED"
        assert detail["details"]["open_major_findings"] == [
            {"id": finding_id, "title": "No management review"}
        ]

        action = await client.post(
            f"{base}/corrective-actions",
            headers=manager_headers,
            json={
                "finding_id": finding_id,
                "title": "Hold management review",
                "description": "Schedule and minute the review",
                "action_type": "CORRECTIVE",
                "assigned_to_id": str(staff_user.id),
                "due_date": _iso(30),
            },
        )
        assert action.status_code == 201
        action_id = action.json()["id"]

        completed = await client.patch(
            f"/api/audits/corrective-actions/{action_id}",
            headers=staff_headers,
            json={"status": "COMPLETED"},
        )
        assert completed.json()["completed_at"] is not None

        verified = await client.patch(
            f"/api/audits/corrective-actions/{action_id}",
            headers=manager_headers,
            json={"status": "VERIFIED"},
        )
        assert verified.status_code == 200
        assert verified.json()["verified_by"]["email"] == "manager@complytrack.test"

        closed_finding = await client.get(f"/api/audits/findings/{finding_id}", headers=manager_headers)
        assert closed_finding.json()["status"] == "CLOSED"

        closed = await client.post(
            f"{base}/close", headers=manager_headers, json={"closure_summary": "Certified"}
        )
        assert closed.status_code == 200
        body = closed.json()
        assert body["audit"]["status"] == "COMPLETED"
        assert body["statistics"]["actions"] == {"VERIFIED": 1}


class TestFindingEndpoints:
    """Tests for finding updates over HTTP"""

    async def test_update_rejects_null_status(self, client, manager_headers, planned_audit):
        finding = await client.post(
            f"/api/audits/{planned_audit.id}/findings",
            headers=manager_headers,
            json={"title": "Expired permit", "description": "Hot work permit expired", "finding_type": "NON_CONFORMITY"},
        )
        finding_id = finding.json()["id"]

        for body in ({"status": None}, {"title": None}, {"priority": None}):
            response = await client.patch(
                f"/api/audits/findings/{finding_id}", headers=manager_headers, json=body
            )
            assert response.status_code == 422

        current = await client.get(f"/api/audits/findings/{finding_id}", headers=manager_headers)
        assert current.json()["status"] == "OPEN"
        assert current.json()["title"] == "Expired permit"

    async def test_update_allows_clearing_assignee(self, client, manager_headers, planned_audit, staff_user):
        finding = await client.post(
            f"/api/audits/{planned_audit.id}/findings",
            headers=manager_headers,
            json={
                "title": "Expired permit",
                "description": "Hot work permit expired",
                "finding_type": "NON_CONFORMITY",
                "assigned_to_id": str(staff_user.id),
            },
        )
        finding_id = finding.json()["id"]

        response = await client.patch(
            f"/api/audits/findings/{finding_id}", headers=manager_headers, json={"assigned_to_id": None}
        )
        assert response.status_code == 200
        assert response.json()["assigned_to"] is None


class TestInspectionEndpoints:
    """Tests for inspection checklist endpoints"""

    async def test_false_string_recorded_as_non_compliant(self, client, manager_headers, planned_audit):
        created = await client.post(
            f"/api/audits/{planned_audit.id}/inspection-checklists",
            headers=manager_headers,
            json={"area_name": "Stores", "items": [{"item_name": "FIFO followed"}]},
        )
        assert created.status_code == 201
        item_id = created.json()[0]["id"]

        updated = await client.patch(
            f"/api/audits/inspection-items/{item_id}",
            headers=manager_headers,
            json={"is_compliant": "false", "comments": "Old stock at the back"},
        )
        assert updated.status_code == 200
        body = updated.json()
        assert body["item"]["is_compliant"] is False
        assert body["item"]["verdict"] == "NON_COMPLIANT"
        assert body["suggest_finding"] is True

        areas = await client.get(
            f"/api/audits/{planned_audit.id}/inspection-checklists", headers=manager_headers
        )
        assert areas.json()[0]["compliance_rate"] == 0.0

    async def test_bad_compliance_value(self, client, manager_headers, planned_audit):
        created = await client.post(
            f"/api/audits/{planned_audit.id}/inspection-checklists",
            headers=manager_headers,
            json={"area_name": "Stores", "items": [{"item_name": "Labels legible"}]},
        )
        item_id = created.json()[0]["id"]

        response = await client.patch(
            f"/api/audits/inspection-items/{item_id}",
            headers=manager_headers,
            json={"is_compliant": "sometimes"},
        )
        assert response.status_code == 422


class TestDocumentEndpoints:
    """Tests for document upload and deletion"""

    async def _upload(self, client, audit_id, headers):
        return await client.post(
            f"/api/audits/{audit_id}/documents",
            headers=headers,
            data={"title": "Audit plan", "document_type": "PLAN"},
            files={"file": ("plan.pdf", b"%PDF-1.4 plan", "application/pdf")},
        )

    async def test_upload_and_list(self, client, manager_headers, planned_audit, storage_root):
        response = await self._upload(client, planned_audit.id, manager_headers)
        assert response.status_code == 201
        assert response.json()["file_url"].endswith("plan.pdf")
        assert any(path.is_file() for path in storage_root.rglob("*plan.pdf"))

        listed = await client.get(f"/api/audits/{planned_audit.id}/documents", headers=manager_headers)
        assert [doc["title"] for doc in listed.json()] == ["Audit plan"]

    async def test_only_uploader_or_admin_deletes(
        self, client, manager_headers, admin_headers, staff_headers, planned_audit, storage_root
    ):
        document_id = (await self._upload(client, planned_audit.id, manager_headers)).json()["id"]
        url = f"/api/audits/{planned_audit.id}/documents/{document_id}"

        forbidden = await client.delete(url, headers=staff_headers)
        assert forbidden.status_code == 403
        assert forbidden.json()["detail"]["code"] == "FORBIDDEN"

        assert (await client.delete(url, headers=admin_headers)).status_code == 204
        assert not any(path.is_file() for path in storage_root.rglob("*plan.pdf"))

    async def test_finding_evidence_upload(self, client, manager_headers, planned_audit, storage_root):
        finding = await client.post(
            f"/api/audits/{planned_audit.id}/findings",
            headers=manager_headers,
            json={"title": "Dirty bench", "description": "Residue on bench 3", "finding_type": "OBSERVATION"},
        )
        finding_id = finding.json()["id"]

        response = await client.post(
            f"/api/audits/findings/{finding_id}/evidence",
            headers=manager_headers,
            files={"file": ("bench.jpg", b"\xff\xd8\xff", "image/jpeg")},
        )
        assert response.status_code == 200
        assert "finding-evidence" in response.json()["evidence"]


class TestNotificationEndpoints:
    """Tests for in-app notification endpoints"""

    async def test_send_list_and_read(
        self, client, manager_headers, staff_headers, planned_audit, staff_user, sent_emails
    ):
        sent = await client.post(
            f"/api/audits/{planned_audit.id}/notifications",
            headers=manager_headers,
            json={"recipient_ids": [str(staff_user.id)], "title": "Opening meeting"},
        )
        assert sent.status_code == 201
        assert sent_emails[-1].subject == "Opening meeting"
        assert sent_emails[-1].to == [staff_user.email]

        mine = await client.get("/api/audits/notifications/me", headers=staff_headers)
        assert [n["title"] for n in mine.json()] == ["Opening meeting"]

        notification_id = mine.json()[0]["id"]
        read = await client.patch(f"/api/audits/notifications/{notification_id}/read", headers=staff_headers)
        assert read.json()["is_read"] is True

        other = await client.patch(
            f"/api/audits/notifications/{notification_id}/read", headers=manager_headers
        )
        assert other.status_code == 404
