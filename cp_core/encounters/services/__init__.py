from cp_core.encounters.services.registration import EncounterService
from cp_core.encounters.services.transitions import (
    EncounterTransitionService,
    StageWritePath,
    TransitionOutcome,
)

__all__ = [
    "EncounterService",
    "EncounterTransitionService",
    "StageWritePath",
    "TransitionOutcome",
]
