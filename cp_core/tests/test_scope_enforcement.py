import pytest
from django.test import Client
from rest_framework.test import APIClient

from cp_core.tests.helpers import advance_through, scoped

pytestmark = pytest.mark.django_db


@pytest.fixture
def session_client():
    def _client(user) -> Client:
        c = Client()
        c.force_login(user)
        return c

    return _client


def _bearer(nurse) -> APIClient:
    c = APIClient()
    r = c.post("/api/v1/auth/token/", {"username": nurse.username, "password": "testpass"}, format="json")
    assert r.status_code == 200, r.data
    c.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['access']}")
    return c


def test_queue_without_scope_headers_is_rejected(session_client, nurse):
    r = session_client(nurse).get("/api/v1/queues/nurse/")

    assert r.status_code == 400
    body = r.json()
    assert body["error"]["code"] == "validation_error"
    assert "Missing scope headers" in body["error"]["message"]
    assert body["error"]["request_id"]


def test_routing_with_malformed_scope_is_rejected(session_client, cashier):
    r = session_client(cashier).get(
        "/api/v1/routing/awaiting/",
        HTTP_X_TENANT_ID="not-a-uuid",
        HTTP_X_FACILITY_ID="also-not-a-uuid",
    )

    assert r.status_code == 400
    assert "Invalid scope headers" in r.json()["error"]["message"]


def test_session_user_outside_facility_gets_403(session_client, nurse, other_tenant, other_facility):
    r = session_client(nurse).get("/api/v1/queues/nurse/", **scoped(other_tenant, other_facility))

    assert r.status_code == 403
    body = r.json()
    assert body["error"]["code"] == "permission_denied"
    assert "do not have access" in body["error"]["message"].lower()


def test_token_endpoint_needs_no_scope_and_token_reads_own_queue(nurse, tenant, facility):
    r = _bearer(nurse).get("/api/v1/queues/nurse/", **scoped(tenant, facility))

    assert r.status_code == 200, r.data
    assert r.data["count"] == 0


def test_token_user_cannot_advance_in_foreign_facility(
    ctx_for, encounter, receptionist, nurse, other_tenant, other_facility
):
    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])

    r = _bearer(nurse).post(
        f"/api/v1/encounters/{encounter.id}/advance-stage/",
        {"requested_stage": "vitals_taken"},
        format="json",
        **scoped(other_tenant, other_facility),
    )

    assert r.status_code == 403, r.data
    assert r.data["error"]["code"] == "permission_denied"

    encounter.refresh_from_db()
    assert encounter.current_stage == "at_triage"
