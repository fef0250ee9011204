import pytest
from django.test import RequestFactory

from cp_core.common.api.exceptions import api_exception_handler
from cp_core.encounters.exceptions import ConcurrentModification, InvalidTransition
from cp_core.encounters.services import StageWritePath
from cp_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def _handle(exc):
    request = RequestFactory().post("/api/v1/encounters/")
    return api_exception_handler(exc, {"request": request})


def test_concurrent_modification_is_409_and_retryable():
    resp = _handle(ConcurrentModification("Encounter was modified by another request", encounter_id="e-1"))

    assert resp.status_code == 409
    err = resp.data["error"]
    assert err["code"] == "concurrent_modification"
    assert err["message"] == "Encounter was modified by another request"
    assert err["details"] == {"encounter_id": "e-1", "retryable": "true"}
    assert err["request_id"]


def test_invalid_transition_keeps_list_details_and_is_not_retryable():
    resp = _handle(
        InvalidTransition('Invalid transition from "registered" to "with_doctor"', allowed=["at_triage", "cancelled"])
    )

    assert resp.status_code == 409
    err = resp.data["error"]
    assert err["code"] == "invalid_transition"
    assert err["details"]["allowed"] == ["at_triage", "cancelled"]
    assert "retryable" not in err["details"]


def test_unexpected_error_becomes_server_error_envelope():
    resp = _handle(RuntimeError("boom"))

    assert resp.status_code == 500
    assert resp.data["error"]["code"] == "server_error"
    assert resp.data["error"]["message"] == "Unexpected server error."


def test_lost_write_race_surfaces_as_retryable_409(monkeypatch, client_for, receptionist, tenant, facility, encounter):
    def _lost_race(**kwargs):
        raise ConcurrentModification("Encounter was modified by another request", encounter_id=str(encounter.id))

    monkeypatch.setattr(StageWritePath, "apply", staticmethod(_lost_race))

    r = client_for(receptionist).post(
        f"/api/v1/encounters/{encounter.id}/advance-stage/",
        {"requested_stage": "at_triage"},
        format="json",
        **scoped(tenant, facility),
    )

    assert r.status_code == 409, r.data
    assert r.data["error"]["code"] == "concurrent_modification"
    assert r.data["error"]["details"]["retryable"] == "true"
    assert r.data["error"]["details"]["encounter_id"] == str(encounter.id)
