"""
HTTP API tests.

Validates:
- Bearer-token authentication and role checks
- Tenant scoping comes from the token, never the request
- Error envelope: typed service errors, request validation, 404s
- Decimal money and enums on the wire
- End-to-end flows for residents, billing, migration batches,
  medication and pilot feedback
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from care_api.app import create_app
from care_api.auth import Principal, TokenRegistry
from care_api.deps import get_clock
from care_api.settings import ApiSettings

MANAGER_ID = UUID("00000000-0000-4000-a000-0000000000a1")
NURSE_ID = UUID("00000000-0000-4000-a000-0000000000a2")
CARER_ID = UUID("00000000-0000-4000-a000-0000000000a3")
FINANCE_ID = UUID("00000000-0000-4000-a000-0000000000a4")
ADMIN_ID = UUID("00000000-0000-4000-a000-0000000000a5")
OTHER_MANAGER_ID = UUID("00000000-0000-4000-a000-0000000000b1")

RESIDENT = {
    "first_name": "Margaret",
    "last_name": "Thompson",
    "nhs_number": "943 476 5919",
    "date_of_birth": "1938-03-14",
    "admission_date": "2025-01-06",
    "care_level": "residential",
    "funding_source": "self_funded",
    "weekly_fee": "1050.00",
    "allergies": ["Penicillin"],
    "gdpr_consent_given": True,
}


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


MANAGER = _auth("manager-token")
NURSE = _auth("nurse-token")
CARER = _auth("carer-token")
FINANCE = _auth("finance-token")
ADMIN = _auth("admin-token")
OTHER_MANAGER = _auth("other-manager-token")


@pytest.fixture
def registry(tenant_id, other_tenant_id):
    reg = TokenRegistry()
    for token, user_id, role in (
        ("manager-token", MANAGER_ID, "manager"),
        ("nurse-token", NURSE_ID, "nurse"),
        ("carer-token", CARER_ID, "carer"),
        ("finance-token", FINANCE_ID, "finance"),
        ("admin-token", ADMIN_ID, "admin"),
    ):
        reg.register(token, Principal(user_id, tenant_id, frozenset({role})))
    reg.register("other-manager-token", Principal(OTHER_MANAGER_ID, other_tenant_id, frozenset({"manager"})))
    return reg


@pytest.fixture
def client(session_factory, registry, deterministic_clock):
    settings = ApiSettings(
        _env_file=None, audit_queue_enabled=False, create_tables=False, log_level="DEBUG",
    )
    app = create_app(settings, session_factory=session_factory, token_registry=registry)
    app.dependency_overrides[get_clock] = lambda: deterministic_clock
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def resident_id(client):
    response = client.post("/api/v1/residents", json=RESIDENT, headers=MANAGER)
    assert response.status_code == 201
    return response.json()["data"]["id"]


def _error(response):
    body = response.json()
    assert body["success"] is False
    return body["error"]


class TestHealthAndMiddleware:
    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": {"status": "ok", "audit_queue_running": False, "audit_events_pending": 0},
        }

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert client.get("/health").headers["X-Request-ID"]


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/v1/residents")
        assert response.status_code == 401
        assert _error(response)["code"] == "UNAUTHENTICATED"

    def test_unknown_token(self, client):
        response = client.get("/api/v1/residents", headers=_auth("stolen"))
        assert response.status_code == 401

    def test_wrong_scheme(self, client):
        response = client.get("/api/v1/residents", headers={"Authorization": "Basic bWFuYWdlcg=="})
        assert response.status_code == 401

    def test_role_required(self, client):
        response = client.post("/api/v1/residents", json=RESIDENT, headers=CARER)
        assert response.status_code == 403
        assert _error(response)["code"] == "FORBIDDEN"

    def test_admin_passes_role_checks(self, client):
        assert client.post("/api/v1/residents", json=RESIDENT, headers=ADMIN).status_code == 201

    def test_token_registry_from_yaml(self, tmp_path, tenant_id):
        from care_api.auth import hash_token

        path = tmp_path / "tokens.yaml"
        path.write_text(
            "tokens:\n"
            f"  - sha256: {hash_token('s3cret')}\n"
            f"    user_id: {MANAGER_ID}\n"
            f"    tenant_id: {tenant_id}\n"
            "    roles: [manager, nurse]\n",
            encoding="utf-8",
        )
        registry = TokenRegistry.from_yaml(path)
        principal = registry.resolve("s3cret")
        assert principal.tenant_id == tenant_id
        assert principal.roles == frozenset({"manager", "nurse"})
        assert registry.resolve("S3CRET") is None

    def test_token_registry_rejects_unknown_roles(self, tmp_path):
        path = tmp_path / "tokens.yaml"
        path.write_text(
            f"tokens:\n  - sha256: abc\n    user_id: {uuid4()}\n    tenant_id: {uuid4()}\n"
            "    roles: [superuser]\n",
            encoding="utf-8",
        )
        with pytest.raises(ValueError):
            TokenRegistry.from_yaml(path)


class TestResidents:
    def test_admit_and_read(self, client, resident_id):
        response = client.get(f"/api/v1/residents/{resident_id}", headers=CARER)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["nhs_number"] == "9434765919"
        assert data["care_level"] == "residential"
        assert data["status"] == "active"
        assert Decimal(data["weekly_fee"]) == Decimal("1050")
        assert isinstance(data["weekly_fee"], str)

    def test_search(self, client, resident_id):
        data = client.get("/api/v1/residents", params={"q": "marg"}, headers=NURSE).json()["data"]
        assert data["total"] == 1
        assert data["items"][0]["id"] == resident_id
        empty = client.get("/api/v1/residents", params={"q": "harold"}, headers=NURSE).json()["data"]
        assert empty["total"] == 0

    def test_other_tenant_refused(self, client, resident_id):
        response = client.get(f"/api/v1/residents/{resident_id}", headers=OTHER_MANAGER)
        assert response.status_code == 403
        assert _error(response)["code"] == "TENANT_ISOLATION_VIOLATION"

    def test_unknown_resident(self, client):
        response = client.get(f"/api/v1/residents/{uuid4()}", headers=MANAGER)
        assert response.status_code == 404
        assert _error(response)["code"] == "RESIDENT_NOT_FOUND"

    def test_invalid_nhs_number(self, client):
        response = client.post("/api/v1/residents", json={**RESIDENT, "nhs_number": "123 456 7890"},
                               headers=MANAGER)
        assert response.status_code == 400
        error = _error(response)
        assert error["code"] == "INVALID_NHS_NUMBER"
        assert error["details"] == {"field": "nhs_number"}

    def test_request_validation(self, client):
        body = {k: v for k, v in RESIDENT.items() if k != "date_of_birth"}
        response = client.post("/api/v1/residents", json=body, headers=MANAGER)
        assert response.status_code == 400
        error = _error(response)
        assert error["code"] == "VALIDATION_ERROR"
        assert "date_of_birth" in [d["field"] for d in error["details"]]

    def test_unknown_fields_rejected(self, client):
        response = client.post("/api/v1/residents", json={**RESIDENT, "shoe_size": 6}, headers=MANAGER)
        assert response.status_code == 400

    def test_duplicate(self, client, resident_id):
        response = client.post("/api/v1/residents", json=RESIDENT, headers=MANAGER)
        assert response.status_code == 409
        assert _error(response)["code"] == "DUPLICATE_ENTITY"

    def test_update_and_discharge(self, client, resident_id):
        response = client.patch(f"/api/v1/residents/{resident_id}", json={"room_number": "12A"},
                                headers=NURSE)
        assert response.json()["data"]["room_number"] == "12A"
        response = client.post(f"/api/v1/residents/{resident_id}/discharge",
                               json={"discharge_date": "2025-06-01", "reason": "Moved nearer family"},
                               headers=MANAGER)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "discharged"


class TestTenants:
    def test_current_tenant(self, client):
        data = client.get("/api/v1/tenants/me", headers=CARER).json()["data"]
        assert data["slug"] == "meadow-view"
        assert data["status"] == "active"

    def test_suspended_tenant_refused(self, client, tenant_id):
        response = client.post(f"/api/v1/tenants/{tenant_id}/suspend", headers=ADMIN)
        assert response.json()["data"]["status"] == "suspended"
        response = client.get("/api/v1/residents", headers=MANAGER)
        assert response.status_code == 403
        assert _error(response)["code"] == "TENANT_SUSPENDED"
        assert client.get("/api/v1/residents", headers=ADMIN).status_code == 200

    def test_only_admins_create_tenants(self, client):
        body = {"name": "Oak Lodge", "slug": "oak-lodge"}
        assert client.post("/api/v1/tenants", json=body, headers=MANAGER).status_code == 403
        response = client.post("/api/v1/tenants", json=body, headers=ADMIN)
        assert response.status_code == 201
        assert response.json()["data"]["slug"] == "oak-lodge"

    def test_manager_cannot_update_other_tenant(self, client, other_tenant_id):
        response = client.patch(f"/api/v1/tenants/{other_tenant_id}", json={"name": "Mine now"},
                                headers=MANAGER)
        assert response.status_code == 403

    def test_care_homes(self, client):
        response = client.post("/api/v1/tenants/me/care-homes",
                               json={"name": "Meadow View House", "registration_number": "1-1234567890",
                                     "capacity": 40},
                               headers=MANAGER)
        assert response.status_code == 201
        homes = client.get("/api/v1/tenants/me/care-homes", headers=CARER).json()["data"]
        assert [h["name"] for h in homes] == ["Meadow View House"]


class TestBilling:
    def test_bill_lifecycle(self, client, resident_id):
        response = client.post("/api/v1/billing/bills/generate", json={
            "resident_id": resident_id, "period_start": "2025-06-01", "period_end": "2025-06-30",
        }, headers=FINANCE)
        assert response.status_code == 201
        bill = response.json()["data"]
        assert bill["status"] == "draft"
        assert bill["total"] == "4500.00"

        issued = client.post(f"/api/v1/billing/bills/{bill['id']}/issue", json={}, headers=FINANCE)
        assert issued.json()["data"]["status"] == "issued"

        payment = client.post(f"/api/v1/billing/bills/{bill['id']}/payments",
                              json={"amount": "1000.00", "method": "bank_transfer"}, headers=FINANCE)
        assert payment.status_code == 201
        assert client.get(f"/api/v1/billing/bills/{bill['id']}", headers=FINANCE).json()["data"]["status"] == (
            "partially_paid"
        )
        outstanding = client.get("/api/v1/billing/outstanding", params={"resident_id": resident_id},
                                 headers=FINANCE).json()["data"]
        assert outstanding == {"resident_id": resident_id, "outstanding": "3500.00"}

    def test_carers_cannot_see_bills(self, client):
        assert client.get("/api/v1/billing/bills", headers=CARER).status_code == 403

    def test_overpayment_rejected(self, client, resident_id):
        bill = client.post("/api/v1/billing/bills/generate", json={
            "resident_id": resident_id, "period_start": "2025-06-01", "period_end": "2025-06-30",
        }, headers=FINANCE).json()["data"]
        client.post(f"/api/v1/billing/bills/{bill['id']}/issue", json={}, headers=FINANCE)
        response = client.post(f"/api/v1/billing/bills/{bill['id']}/payments",
                               json={"amount": "5000", "method": "card"}, headers=FINANCE)
        assert response.status_code == 422


class TestMedication:
    def test_prescribe_requires_nurse(self, client, resident_id):
        body = {
            "resident_id": resident_id, "medication_name": "Amlodipine", "dosage": "5mg",
            "route": "oral", "frequency": "OD", "start_date": "2025-06-01", "prescriber": "Dr Okafor",
        }
        assert client.post("/api/v1/medication", json=body, headers=CARER).status_code == 403
        response = client.post("/api/v1/medication", json=body, headers=NURSE)
        assert response.status_code == 201
        medication = response.json()["data"]
        listed = client.get("/api/v1/medication", params={"resident_id": resident_id}, headers=CARER)
        assert [m["id"] for m in listed.json()["data"]] == [medication["id"]]


class TestPilotFeedback:
    def test_submit_feedback(self, client):
        response = client.post("/api/v1/pilots/me/feedback", json={
            "module": "medication", "severity": "medium",
            "text": "The MAR chart takes too many clicks to sign off a round",
            "consent_improvement": True,
        }, headers=CARER)
        assert response.status_code == 202
        assert response.json()["data"]["accepted"] is True

    def test_feedback_needs_consent(self, client):
        response = client.post("/api/v1/pilots/me/feedback", json={
            "module": "medication", "severity": "low",
            "text": "The MAR chart takes too many clicks to sign off a round",
            "consent_improvement": False,
        }, headers=CARER)
        assert response.status_code == 400
        assert _error(response)["code"] == "CONSENT_REQUIRED"


class TestMigrations:
    def test_batch_flow(self, client, tmp_path):
        source = tmp_path / "residents.csv"
        source.write_text(
            "Forename,Surname,NHS No,DOB,Admitted\n"
            "Margaret,Thompson,943 476 5919,14/03/1938,06/01/2025\n"
            "Ada,Smith,123 456 7890,01/01/1945,01/02/2025\n",
            encoding="utf-8",
        )
        probe = client.post("/api/v1/migrations/probe", json={"source_path": str(source)}, headers=MANAGER)
        assert probe.json()["data"]["row_count"] == 2

        mappings = [
            {"source": "Forename", "target": "first_name", "required": True},
            {"source": "Surname", "target": "last_name", "required": True},
            {"source": "NHS No", "target": "nhs_number", "required": True},
            {"source": "DOB", "target": "date_of_birth", "field_type": "date", "required": True,
             "format": "%d/%m/%Y"},
            {"source": "Admitted", "target": "admission_date", "field_type": "date", "required": True,
             "format": "%d/%m/%Y"},
        ]
        staged = client.post("/api/v1/migrations/batches", json={
            "source_path": str(source), "entity_type": "resident", "mappings": mappings,
        }, headers=MANAGER)
        assert staged.status_code == 201
        batch = staged.json()["data"]
        assert (batch["status"], batch["total_records"]) == ("staged", 2)

        validated = client.post(f"/api/v1/migrations/batches/{batch['batch_id']}/validate", headers=MANAGER)
        assert validated.json()["data"]["valid_records"] == 1
        promoted = client.post(f"/api/v1/migrations/batches/{batch['batch_id']}/promote", headers=MANAGER)
        assert promoted.json()["data"]["promoted"] == 1

        report = client.get(f"/api/v1/migrations/batches/{batch['batch_id']}", headers=MANAGER).json()["data"]
        assert report["batch"]["status"] == "completed"
        assert report["status_counts"] == {"promoted": 1, "invalid": 1}
        assert report["record_errors"][0][0] == 2

        residents = client.get("/api/v1/residents", headers=MANAGER).json()["data"]
        assert [r["last_name"] for r in residents["items"]] == ["Thompson"]

    def test_stage_needs_mappings(self, client, tmp_path):
        response = client.post("/api/v1/migrations/batches", json={
            "source_path": str(tmp_path / "x.csv"), "entity_type": "resident", "mappings": [],
        }, headers=MANAGER)
        assert response.status_code == 400
        assert _error(response)["code"] == "VALIDATION_ERROR"

    def test_managers_only(self, client):
        response = client.get("/api/v1/migrations/batches", headers=NURSE)
        assert response.status_code == 403
