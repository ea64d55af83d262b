"""Default encounter validator."""

from clinical_records.domain.models import Encounter
from clinical_records.domain.ports import EncounterValidatorPort, MissingRequiredFieldError


class RequiredFieldsValidator(EncounterValidatorPort):
    """Rejects encounters without a subject patient or an encounter type."""

    def validate(self, encounter: Encounter) -> None:
        if encounter.patient is None:
            raise MissingRequiredFieldError("Encounter requires a patient", field_name="patient")
        if encounter.encounter_type is None:
            raise MissingRequiredFieldError(
                "Encounter requires an encounter type",
                field_name="encounter_type"
            )
