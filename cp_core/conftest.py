# cp_core/conftest.py
import itertools
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from cp_core.common.scope import AccessContext
from cp_core.facilities.models import Facility
from cp_core.patients.models import Patient
from cp_core.tenants.models import Tenant

_usernames = itertools.count(1)


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(code="test-tenant", name="Test Tenant")


@pytest.fixture
def facility(db, tenant):
    return Facility.objects.create(tenant=tenant, code="main", name="Main Facility")


@pytest.fixture
def workflow_roles(db, tenant):
    from cp_core.iam.services.roles import ensure_workflow_roles

    return ensure_workflow_roles(tenant)


@pytest.fixture
def make_staff(db, tenant, facility, workflow_roles):
    """
    Factory: an active user holding `role_code` in the test facility.
    Graph: auth_user -> UserProfile -> FacilityMembership(role)
    """
    from cp_core.iam.models import FacilityMembership, UserProfile

    User = get_user_model()

    def _make(role_code: str, *, username: str | None = None, is_active: bool = True):
        user = User.objects.create_user(
            username=username or f"{role_code}-{next(_usernames)}",
            password="testpass",
            is_active=is_active,
        )
        profile = UserProfile.objects.create(user=user, tenant=tenant, is_active=True)
        FacilityMembership.objects.create(
            tenant=tenant,
            facility=facility,
            user_profile=profile,
            role=workflow_roles[role_code],
            is_active=True,
        )
        return user

    return _make


@pytest.fixture
def user(make_staff):
    return make_staff("admin", username="testuser")


@pytest.fixture
def receptionist(make_staff):
    return make_staff("receptionist")


@pytest.fixture
def cashier(make_staff):
    return make_staff("cashier")


@pytest.fixture
def nurse(make_staff):
    return make_staff("nurse")


@pytest.fixture
def doctor(make_staff):
    return make_staff("doctor")


@pytest.fixture
def lab_technician(make_staff):
    return make_staff("lab_technician")


@pytest.fixture
def super_admin(make_staff):
    return make_staff("super_admin")


@pytest.fixture
def ctx_for(tenant, facility):
    def _ctx(user=None) -> AccessContext:
        return AccessContext(
            tenant_id=tenant.id,
            facility_id=facility.id,
            caller_user_id=getattr(user, "id", None),
        )

    return _ctx


@pytest.fixture
def api_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def client_for():
    def _client(user) -> APIClient:
        c = APIClient()
        c.force_authenticate(user=user)
        return c

    return _client


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(code="other-tenant", name="Other Tenant")


@pytest.fixture
def other_facility(db, other_tenant):
    return Facility.objects.create(tenant=other_tenant, code="other", name="Other Facility")


@pytest.fixture
def patient(db, tenant, facility):
    return Patient.objects.create(
        tenant_id=tenant.id,
        facility_id=facility.id,
        full_name="Test Patient",
        mrn="MRN-TEST-001",
        gender="female",
    )


@pytest.fixture
def encounter(patient, receptionist, ctx_for):
    """
    Registered through EncounterService so the timeline, ledger and queues are seeded.
    """
    from cp_core.encounters.services import EncounterService

    return EncounterService.register(
        ctx=ctx_for(receptionist),
        patient_id=patient.id,
        consultation_fee=Decimal("500.00"),
    )
