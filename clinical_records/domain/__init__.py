"""Domain layer for Clinical-Records.

This module contains the encounter aggregate, the collaborator ports and the
reconciliation logic. All domain models are pure Python with no external
dependencies beyond Pydantic.
"""

from .models import (
    CallerContext,
    Encounter,
    EncounterSnapshot,
    EncounterType,
    Location,
    Observation,
    Order,
    Patient,
    Person,
    SaveMode,
)

__all__ = [
    "CallerContext",
    "Encounter",
    "EncounterSnapshot",
    "EncounterType",
    "Location",
    "Observation",
    "Order",
    "Patient",
    "Person",
    "SaveMode",
]
