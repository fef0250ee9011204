# cp_core/iam/roles.py
"""
Workflow capability codes and the default role -> capability grants.

Capabilities are stored as iam.Permission codes; roles are tenant-scoped and
seeded by the `ensure_roles` management command. Tenants may re-map grants
afterwards; the workflow engine only ever asks for capabilities.
"""
from __future__ import annotations


class Capability:
    RECEPTION = "workflow.reception"
    CASHIER = "workflow.cashier"
    TRIAGE = "workflow.triage"
    CONSULTATION = "workflow.consultation"
    LAB = "workflow.lab"
    IMAGING = "workflow.imaging"
    PHARMACY = "workflow.pharmacy"
    INPATIENT_CARE = "workflow.inpatient_care"

    DESCRIPTIONS = {
        RECEPTION: "Register patients and move them out of reception",
        CASHIER: "Collect payments and acknowledge payment-driven routing",
        TRIAGE: "Triage patients and record vitals",
        CONSULTATION: "Consult patients and route them to diagnostics/pharmacy",
        LAB: "Run lab work and return patients",
        IMAGING: "Run imaging studies and return patients",
        PHARMACY: "Dispense medication and discharge from pharmacy",
        INPATIENT_CARE: "Care for admitted patients and discharge them",
    }

    @classmethod
    def all(cls) -> tuple[str, ...]:
        return tuple(cls.DESCRIPTIONS.keys())


ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_RECEPTIONIST = "receptionist"
ROLE_CASHIER = "cashier"
ROLE_NURSE = "nurse"
ROLE_DOCTOR = "doctor"
ROLE_LAB_TECHNICIAN = "lab_technician"
ROLE_IMAGING_TECHNICIAN = "imaging_technician"
ROLE_PHARMACIST = "pharmacist"
ROLE_INPATIENT_NURSE = "inpatient_nurse"

# Roles that bypass capability and allowed-next checks.
SUPER_OPERATOR_ROLES = frozenset({ROLE_SUPER_ADMIN})

ROLE_NAMES = {
    ROLE_SUPER_ADMIN: "Super Administrator",
    ROLE_ADMIN: "Administrator",
    ROLE_RECEPTIONIST: "Receptionist",
    ROLE_CASHIER: "Cashier",
    ROLE_NURSE: "Nurse",
    ROLE_DOCTOR: "Doctor",
    ROLE_LAB_TECHNICIAN: "Lab Technician",
    ROLE_IMAGING_TECHNICIAN: "Imaging Technician",
    ROLE_PHARMACIST: "Pharmacist",
    ROLE_INPATIENT_NURSE: "Inpatient Nurse",
}

DEFAULT_ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_SUPER_ADMIN: frozenset(),
    ROLE_ADMIN: frozenset(),
    ROLE_RECEPTIONIST: frozenset({Capability.RECEPTION}),
    ROLE_CASHIER: frozenset({Capability.CASHIER}),
    ROLE_NURSE: frozenset({Capability.TRIAGE}),
    ROLE_DOCTOR: frozenset({Capability.CONSULTATION, Capability.INPATIENT_CARE}),
    ROLE_LAB_TECHNICIAN: frozenset({Capability.LAB}),
    ROLE_IMAGING_TECHNICIAN: frozenset({Capability.IMAGING}),
    ROLE_PHARMACIST: frozenset({Capability.PHARMACY}),
    ROLE_INPATIENT_NURSE: frozenset({Capability.INPATIENT_CARE}),
}

ALL_ROLES = frozenset(ROLE_NAMES.keys())
