"""Encounter Service.

This service is the entry point for saving and listing encounters. It composes
independent collaborators (privilege check, validator, snapshot loader,
persistence gateway, permission filter) around the ReconciliationEngine.

Error Handling:
    - Collaborator exceptions propagate unchanged to the caller
    - Reconciliation mutates the in-memory aggregate only; nothing is written
      until the single terminal save, so a failure before that point leaves
      storage untouched

Architecture:
    - Pure domain service; all I/O goes through ports
    - Stateless between calls: safe to share across threads as long as the
      injected collaborators are
"""

import logging
from typing import Optional

from clinical_records.domain.models import CallerContext, Encounter, EncounterSnapshot
from clinical_records.domain.ports import (
    EncounterValidatorPort,
    InvalidArgumentError,
    PermissionFilterPort,
    PersistencePort,
    PrivilegeCheckPort,
    SnapshotLoaderPort,
)
from clinical_records.domain.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class EncounterService:
    """Saves encounters with dependent-entity reconciliation and lists them by patient.

    Parameters:
        storage: Persistence gateway
        snapshot_loader: Source of previously persisted encounter state
        privilege_check: Modification-rights check
        permission_filter: Result-set visibility filter
        validator: Structural validation of aggregates
        engine: Reconciliation engine (a default one is created if omitted)

    Example Usage:
        ```python
        service = EncounterService(
            storage=store,
            snapshot_loader=store,
            privilege_check=CallerPrivilegeCheck(),
            permission_filter=LocationPermissionFilter(),
            validator=RequiredFieldsValidator(),
        )
        saved = service.save_encounter(encounter, caller)
        ```
    """

    def __init__(
        self,
        storage: PersistencePort,
        snapshot_loader: SnapshotLoaderPort,
        privilege_check: PrivilegeCheckPort,
        permission_filter: PermissionFilterPort,
        validator: EncounterValidatorPort,
        engine: Optional[ReconciliationEngine] = None
    ):
        self.storage = storage
        self.snapshot_loader = snapshot_loader
        self.privilege_check = privilege_check
        self.permission_filter = permission_filter
        self.validator = validator
        self.engine = engine or ReconciliationEngine()

    @property
    def audit_logger(self):
        """The engine's change audit logger, or None when changes are not audited."""
        return self.engine.audit_logger

    def save_encounter(
        self,
        encounter: Encounter,
        caller: Optional[CallerContext] = None
    ) -> Encounter:
        """Reconcile an encounter's dependents and persist the aggregate.

        Parameters:
            encounter: Aggregate to save (mutated in place)
            caller: Identity of the requester

        Returns:
            Encounter: Whatever the persistence gateway returns

        Raises:
            InvalidArgumentError: If encounter is None
            AuthorizationError: If the caller may not modify the encounter
            MissingRequiredFieldError: If patient or encounter type is missing
            NotFoundError: If an existing encounter has no persisted snapshot
            PersistenceError: If storage fails
        """
        if encounter is None:
            raise InvalidArgumentError("encounter must not be None", argument="encounter")

        self.privilege_check.require(encounter, caller)
        self.validator.validate(encounter)

        previous = None
        if not encounter.is_new():
            previous = self.load_snapshot(encounter.encounter_id)

        plan = self.engine.plan(encounter, previous)
        changes = self.engine.apply(
            encounter,
            plan,
            changed_by=caller.username if caller is not None else None
        )
        if plan.has_changes():
            logger.info(
                f"Encounter {encounter.encounter_id} changed "
                f"(datetime={plan.datetime_changed}, location={plan.location_changed}, "
                f"patient={plan.patient_changed})"
            )
        logger.info(
            f"Reconciled encounter {encounter.encounter_id} ({plan.mode.value}): "
            f"{len(changes)} dependent field(s) updated"
        )

        return self.storage.save_encounter(encounter)

    def load_snapshot(self, encounter_id: int) -> EncounterSnapshot:
        """Load the persisted datetime, location and patient of an encounter."""
        return EncounterSnapshot(
            encounter_datetime=self.snapshot_loader.get_saved_datetime(encounter_id),
            location=self.snapshot_loader.get_saved_location(encounter_id),
            patient=self.snapshot_loader.get_saved_patient(encounter_id),
        )

    def get_encounters_by_patient_id(
        self,
        patient_id: int,
        caller: Optional[CallerContext] = None
    ) -> list[Encounter]:
        """List a patient's encounters visible to the caller, in storage order.

        Raises:
            InvalidArgumentError: If patient_id is None
        """
        if patient_id is None:
            raise InvalidArgumentError("patient_id must not be None", argument="patient_id")
        if patient_id <= 0:
            return []

        encounters = self.storage.get_encounters_by_patient_id(patient_id)
        return list(self.permission_filter.filter(encounters, caller))

    def get_encounter(self, encounter_id: Optional[int]) -> Optional[Encounter]:
        if encounter_id is None or encounter_id <= 0:
            return None
        return self.storage.get_encounter(encounter_id)

    def purge_encounter(
        self,
        encounter: Optional[Encounter],
        caller: Optional[CallerContext] = None
    ) -> None:
        """Delete an encounter from storage. None is a no-op."""
        if encounter is None:
            return
        self.privilege_check.require_purge(encounter, caller)
        self.storage.delete_encounter(encounter)
        logger.info(f"Purged encounter {encounter.encounter_id}")
