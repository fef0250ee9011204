# cp_core/tests/helpers.py

def scoped(tenant, facility):
    return {
        "HTTP_X_TENANT_ID": str(tenant.id),
        "HTTP_X_FACILITY_ID": str(facility.id),
    }


def advance_through(ctx_for, encounter, steps):
    """
    Walk an encounter through [(user, stage), ...] via the transition service.
    """
    from cp_core.encounters.services import EncounterTransitionService

    for user, stage in steps:
        outcome = EncounterTransitionService.advance_stage(
            ctx=ctx_for(user),
            encounter_id=encounter.id,
            requested_stage=stage,
        )
        assert outcome.success, outcome.as_dict()
    encounter.refresh_from_db()
    return encounter
