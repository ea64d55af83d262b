"""Encounter Reconciliation Engine.

This service propagates encounter-level attribute changes (date/time, location
and subject patient) down to the observations and orders attached to the
encounter, while preserving values the encounter does not own.

Rules:
    - A new observation gets every unset datetime/location/person initialised
      from the encounter
    - An observation field that equals the encounter's *previous* value is
      default-tracking and follows the change; any other value is an explicit
      override and is left alone
    - Nothing is touched for an attribute whose value did not change
    - Orders always mirror the encounter's current patient

Architecture:
    - Pure domain service with no infrastructure dependencies
    - Stateless: plan() and apply() operate only on the arguments they receive
    - Never creates or removes dependents, only mutates their fields in place
"""

import logging
from typing import Any, Optional, TYPE_CHECKING

from clinical_records.domain.cdc_models import ChangeEvent, ChangeType, ReconciliationPlan
from clinical_records.domain.models import (
    Encounter,
    EncounterSnapshot,
    Observation,
    Patient,
    Person,
    SaveMode,
)
from clinical_records.domain.ports import InvalidArgumentError

if TYPE_CHECKING:
    from clinical_records.infrastructure.audit.change_audit_logger import ChangeAuditLogger

logger = logging.getLogger(__name__)


def _person_of(patient: Optional[Patient]) -> Optional[Person]:
    return patient.person if patient is not None else None


class ReconciliationEngine:
    """Computes and applies the dependent-entity updates implied by an encounter save.

    Parameters:
        audit_logger: Optional ChangeAuditLogger receiving every applied change

    Example Usage:
        ```python
        engine = ReconciliationEngine()
        plan = engine.plan(encounter, previous=snapshot)
        changes = engine.apply(encounter, plan)
        ```
    """

    def __init__(self, audit_logger: Optional['ChangeAuditLogger'] = None):
        self.audit_logger = audit_logger

    def plan(
        self,
        encounter: Encounter,
        previous: Optional[EncounterSnapshot] = None
    ) -> ReconciliationPlan:
        """Diff the encounter's current attributes against its previous ones.

        For a new encounter the previous values are the encounter's own current
        values, so nothing counts as changed. For an existing encounter a
        snapshot is required; a snapshot without a patient means the patient
        is taken as unchanged.

        Parameters:
            encounter: The aggregate being saved
            previous: Persisted state of an existing encounter

        Returns:
            ReconciliationPlan: mode, "before" snapshot and change flags

        Raises:
            InvalidArgumentError: If encounter is None, or previous is None for
                an existing encounter
        """
        if encounter is None:
            raise InvalidArgumentError("encounter must not be None", argument="encounter")

        if encounter.is_new():
            mode = SaveMode.NEW
            previous = EncounterSnapshot(
                encounter_datetime=encounter.encounter_datetime,
                location=encounter.location,
                patient=encounter.patient,
            )
        else:
            mode = SaveMode.UPDATE
            if previous is None:
                raise InvalidArgumentError(
                    f"encounter {encounter.encounter_id} is not new; a previous snapshot is required",
                    argument="previous"
                )
            if previous.patient is None:
                previous = previous.model_copy(update={"patient": encounter.patient})

        return ReconciliationPlan(
            mode=mode,
            previous=previous,
            datetime_changed=encounter.encounter_datetime != previous.encounter_datetime,
            location_changed=encounter.location != previous.location,
            patient_changed=_person_of(encounter.patient) != _person_of(previous.patient),
        )

    def apply(
        self,
        encounter: Encounter,
        plan: ReconciliationPlan,
        changed_by: Optional[str] = None
    ) -> list[ChangeEvent]:
        """Apply a plan to the encounter's observations and orders in place.

        Parameters:
            encounter: The aggregate being saved
            plan: Result of plan() for this encounter
            changed_by: Caller username recorded on change events

        Returns:
            list[ChangeEvent]: Every field mutation that was applied
        """
        changes: list[ChangeEvent] = []
        person = _person_of(encounter.patient)
        previous_person = _person_of(plan.previous.patient)

        for observation in encounter.observations:
            tracked = (
                ("obs_datetime", encounter.encounter_datetime,
                 plan.previous.encounter_datetime, plan.datetime_changed),
                ("location", encounter.location, plan.previous.location, plan.location_changed),
                ("person", person, previous_person, plan.patient_changed),
            )
            for field_name, current, previous, changed in tracked:
                change = self._reconcile_field(observation, field_name, current, previous, changed)
                if change is not None:
                    changes.append(change)

        for order in encounter.orders:
            old_patient = order.patient
            order.patient = encounter.patient
            if old_patient != encounter.patient:
                changes.append(ChangeEvent(
                    entity="order",
                    record_id=order.order_id,
                    field_name="patient",
                    old_value=old_patient,
                    new_value=encounter.patient,
                    change_type=ChangeType.UPDATE,
                ))

        for change in changes:
            change.encounter_id = encounter.encounter_id
            change.changed_by = changed_by
            logger.debug(
                f"Reconciled {change.entity} {change.record_id} {change.field_name}: "
                f"{change.old_value!r} -> {change.new_value!r} ({change.change_type.value})"
            )
        if self.audit_logger is not None:
            self.audit_logger.log_changes_batch(changes)

        return changes

    def reconcile(
        self,
        encounter: Encounter,
        previous: Optional[EncounterSnapshot] = None,
        changed_by: Optional[str] = None
    ) -> list[ChangeEvent]:
        """Plan and apply in one step."""
        return self.apply(encounter, self.plan(encounter, previous), changed_by=changed_by)

    @staticmethod
    def _reconcile_field(
        observation: Observation,
        field_name: str,
        current: Any,
        previous: Any,
        changed: bool
    ) -> Optional[ChangeEvent]:
        value = getattr(observation, field_name)

        if observation.is_new() and value is None:
            if current is None:
                return None
            change_type = ChangeType.INITIALIZE
        elif changed and value == previous:
            change_type = ChangeType.UPDATE
        else:
            return None

        setattr(observation, field_name, current)
        return ChangeEvent(
            entity="observation",
            record_id=observation.observation_id,
            field_name=field_name,
            old_value=value,
            new_value=current,
            change_type=change_type,
        )
