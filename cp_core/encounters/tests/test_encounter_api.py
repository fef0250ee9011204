# cp_core/encounters/tests/test_encounter_api.py
import pytest

from cp_core.encounters.models import StageTransitionEvent
from cp_core.tests.helpers import advance_through, scoped

pytestmark = pytest.mark.django_db


def test_encounter_create_and_retrieve(client_for, receptionist, tenant, facility, patient):
    c = client_for(receptionist)

    r = c.post(
        "/api/v1/encounters/",
        {"patient_id": str(patient.id), "reason": "Fever", "consultation_fee": "300.00"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 201, r.data
    enc_id = r.data["id"]
    assert r.data["current_stage"] == "registered"
    assert r.data["patient"]["mrn"] == patient.mrn

    g = c.get(f"/api/v1/encounters/{enc_id}/", **scoped(tenant, facility))
    assert g.status_code == 200, g.data
    assert str(g.data["patient_id"]) == str(patient.id)


def test_encounter_create_duplicate_active_returns_409(client_for, receptionist, tenant, facility, encounter, patient):
    r = client_for(receptionist).post(
        "/api/v1/encounters/",
        {"patient_id": str(patient.id)},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 409, r.data
    assert r.data["error"]["code"] == "invalid_transition"


def test_nurse_cannot_register(client_for, nurse, tenant, facility, patient):
    r = client_for(nurse).post(
        "/api/v1/encounters/",
        {"patient_id": str(patient.id)},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 403, r.data
    assert r.data["error"]["code"] == "permission_denied"


def test_encounter_list_filters_by_stage(api_client, ctx_for, tenant, facility, encounter, receptionist):
    advance_through(ctx_for, encounter, [(receptionist, "at_triage")])

    r = api_client.get("/api/v1/encounters/?current_stage=at_triage", **scoped(tenant, facility))
    assert r.status_code == 200, r.data
    assert r.data["count"] == 1
    assert r.data["results"][0]["id"] == str(encounter.id)

    r = api_client.get("/api/v1/encounters/?current_stage=registered", **scoped(tenant, facility))
    assert r.data["count"] == 0


def test_advance_stage_success(client_for, receptionist, tenant, facility, encounter):
    r = client_for(receptionist).post(
        f"/api/v1/encounters/{encounter.id}/advance-stage/",
        {"requested_stage": "paying_consultation"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 200, r.data
    assert r.data == {
        "success": True,
        "new_stage": "paying_consultation",
        "previous_stage": "registered",
        "routing_status": "routed",
    }


def test_advance_stage_forbidden_uses_error_envelope(client_for, ctx_for, receptionist, nurse, tenant, facility, encounter):
    advance_through(
        ctx_for,
        encounter,
        [(receptionist, "at_triage"), (nurse, "vitals_taken"), (nurse, "with_doctor")],
    )

    r = client_for(nurse).post(
        f"/api/v1/encounters/{encounter.id}/advance-stage/",
        {"requested_stage": "paying_diagnosis"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 403, r.data
    err = r.data["error"]
    assert err["code"] == "forbidden"
    assert "nurse" in err["message"] and "with_doctor" in err["message"]
    assert err["details"]["current_stage"] == "with_doctor"
    assert err["request_id"]


def test_advance_stage_invalid_transition_is_409(client_for, receptionist, tenant, facility, encounter):
    r = client_for(receptionist).post(
        f"/api/v1/encounters/{encounter.id}/advance-stage/",
        {"requested_stage": "at_pharmacy"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 409, r.data
    assert r.data["error"]["code"] == "invalid_transition"


def test_advance_stage_requires_requested_stage(client_for, receptionist, tenant, facility, encounter):
    r = client_for(receptionist).post(
        f"/api/v1/encounters/{encounter.id}/advance-stage/",
        {},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 400, r.data
    assert r.data["error"]["code"] == "validation_error"


def test_unknown_encounter_is_404(client_for, receptionist, tenant, facility):
    r = client_for(receptionist).get(
        "/api/v1/encounters/00000000-0000-0000-0000-000000000000/",
        **scoped(tenant, facility),
    )
    assert r.status_code == 404, r.data
    assert r.data["error"]["code"] == "not_found"


def test_stage_history_and_timeline(api_client, ctx_for, receptionist, nurse, tenant, facility, encounter):
    advance_through(ctx_for, encounter, [(receptionist, "at_triage"), (nurse, "vitals_taken")])

    h = api_client.get(f"/api/v1/encounters/{encounter.id}/stage-history/", **scoped(tenant, facility))
    assert h.status_code == 200, h.data
    assert [e["new_stage"] for e in h.data] == ["registered", "at_triage", "vitals_taken"]
    assert [e["sequence"] for e in h.data] == [1, 2, 3]
    assert len(h.data) == StageTransitionEvent.objects.filter(encounter=encounter).count()

    t = api_client.get(f"/api/v1/encounters/{encounter.id}/timeline/", **scoped(tenant, facility))
    assert t.status_code == 200, t.data
    assert t.data["encounter"]["current_stage"] == "vitals_taken"
    entries = t.data["entries"]
    assert [e["stage"] for e in entries] == ["registered", "at_triage", "vitals_taken"]
    assert [e["is_open"] for e in entries] == [False, False, True]


def test_post_vitals(client_for, nurse, tenant, facility, encounter):
    r = client_for(nurse).post(
        f"/api/v1/encounters/{encounter.id}/vitals/",
        {"temperature_c": 38.2, "pulse_bpm": 98},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 200, r.data
    assert r.data["temperature_c"] == 38.2
    assert r.data["recorded_by_user_id"] == nurse.id


def test_post_vitals_out_of_range(client_for, nurse, tenant, facility, encounter):
    r = client_for(nurse).post(
        f"/api/v1/encounters/{encounter.id}/vitals/",
        {"spo2": 140},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 400, r.data
    assert "spo2" in r.data["error"]["details"]


def test_other_facility_scope_is_denied(client_for, receptionist, other_tenant, other_facility, encounter):
    r = client_for(receptionist).get(
        f"/api/v1/encounters/{encounter.id}/",
        **scoped(other_tenant, other_facility),
    )
    assert r.status_code == 403, r.data
