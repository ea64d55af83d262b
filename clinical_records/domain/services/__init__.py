"""Domain Services.

This package contains domain services that implement business logic
without infrastructure dependencies.
"""

from clinical_records.domain.services.reconciliation import ReconciliationEngine
from clinical_records.domain.services.encounter_service import EncounterService

__all__ = ['ReconciliationEngine', 'EncounterService']
