"""Unit tests for RequiredFieldsValidator."""

import pytest

from clinical_records.adapters.validation import RequiredFieldsValidator
from clinical_records.domain.models import Encounter, EncounterType, Patient
from clinical_records.domain.ports import MissingRequiredFieldError


class TestRequiredFieldsValidator:
    """Test suite for RequiredFieldsValidator."""

    def test_complete_encounter_passes(self):
        """Test that an encounter with patient and type is accepted."""
        RequiredFieldsValidator().validate(
            Encounter(patient=Patient(patient_id=1), encounter_type=EncounterType())
        )

    def test_missing_patient(self):
        """Test that a missing patient is reported by field name."""
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            RequiredFieldsValidator().validate(Encounter(encounter_type=EncounterType()))
        assert exc_info.value.field_name == "patient"

    def test_missing_encounter_type(self):
        """Test that a missing encounter type is reported by field name."""
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            RequiredFieldsValidator().validate(Encounter(patient=Patient(patient_id=1)))
        assert exc_info.value.field_name == "encounter_type"
