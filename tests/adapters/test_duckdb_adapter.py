"""Tests for the DuckDB encounter store, including end-to-end saves through EncounterService."""

from datetime import datetime

import pytest

from clinical_records.adapters.security import CallerPrivilegeCheck, LocationPermissionFilter
from clinical_records.adapters.storage.duckdb_adapter import DuckDBEncounterStore
from clinical_records.adapters.validation import RequiredFieldsValidator
from clinical_records.domain.models import (
    CallerContext,
    Encounter,
    EncounterType,
    Location,
    Observation,
    Order,
    Patient,
    Person,
)
from clinical_records.domain.ports import NotFoundError, PersistenceError
from clinical_records.domain.services import EncounterService, ReconciliationEngine
from clinical_records.infrastructure.config_manager import DatabaseConfig

T0 = datetime(2024, 3, 1, 9, 0)
T1 = datetime(2024, 3, 1, 11, 0)


@pytest.fixture
def store():
    store = DuckDBEncounterStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def service(store):
    return EncounterService(
        storage=store,
        snapshot_loader=store,
        privilege_check=CallerPrivilegeCheck(),
        permission_filter=LocationPermissionFilter(),
        validator=RequiredFieldsValidator(),
        engine=ReconciliationEngine(),
    )


@pytest.fixture
def admin():
    return CallerContext(username="admin", privileges={"Add Encounters", "Edit Encounters", "Delete Encounters"})


def make_encounter(patient_id=1, when=T0, location_id=10):
    return Encounter(
        patient=Patient(patient_id=patient_id),
        encounter_type=EncounterType(encounter_type_id=1, name="Adult Initial"),
        encounter_datetime=when,
        location=Location(location_id=location_id, name=f"Ward {location_id}"),
    )


class TestDuckDBEncounterStoreInit:
    """Test store construction."""

    def test_defaults_to_memory(self):
        """Test that no arguments means an in-memory database."""
        assert DuckDBEncounterStore().db_path == ":memory:"

    def test_config_takes_precedence(self, tmp_path):
        """Test that db_config wins over db_path."""
        config = DatabaseConfig(db_path=str(tmp_path / "records.duckdb"))
        store = DuckDBEncounterStore(db_config=config, db_path=":memory:")
        assert store.db_path == str(tmp_path / "records.duckdb")

    def test_missing_directory_raises(self, tmp_path):
        """Test that a path in a missing directory is rejected."""
        with pytest.raises(PersistenceError):
            DuckDBEncounterStore(db_path=str(tmp_path / "nope" / "records.duckdb"))

    def test_file_database_persists_across_connections(self, tmp_path):
        """Test that a file-backed store keeps data after reopening."""
        path = str(tmp_path / "records.duckdb")
        first = DuckDBEncounterStore(db_path=path)
        saved = first.save_encounter(make_encounter())
        first.close()

        second = DuckDBEncounterStore(db_path=path)
        try:
            assert second.get_encounter(saved.encounter_id) is not None
        finally:
            second.close()


class TestSaveAndLoad:
    """Test persistence of aggregates."""

    def test_save_assigns_identities_in_place(self, store):
        """Test that new encounter, observation and order receive ids."""
        encounter = make_encounter()
        obs = Observation(obs_datetime=T0, concept="WEIGHT", value="70")
        order = Order(patient=encounter.patient, orderable="CBC")
        encounter.add_observation(obs)
        encounter.add_order(order)

        saved = store.save_encounter(encounter)

        assert saved is encounter
        assert encounter.encounter_id is not None
        assert obs.observation_id is not None
        assert order.order_id is not None

    def test_round_trip(self, store):
        """Test that a loaded encounter equals the saved one."""
        encounter = make_encounter()
        encounter.add_observation(
            Observation(obs_datetime=T0, location=encounter.location, person=Person(person_id=1), concept="BP", value="120/80")
        )
        encounter.add_order(Order(patient=encounter.patient, orderable="CBC"))
        store.save_encounter(encounter)

        loaded = store.get_encounter(encounter.encounter_id)

        assert loaded == encounter

    def test_get_unknown_encounter_returns_none(self, store):
        """Test that an unknown id yields None."""
        assert store.get_encounter(999) is None

    def test_update_rewrites_rows(self, store):
        """Test that saving an existing encounter updates instead of inserting."""
        encounter = make_encounter()
        store.save_encounter(encounter)
        encounter_id = encounter.encounter_id

        encounter.encounter_datetime = T1
        store.save_encounter(encounter)

        assert encounter.encounter_id == encounter_id
        assert store.get_encounter(encounter_id).encounter_datetime == T1
        assert len(store.get_encounters_by_patient_id(1)) == 1

    def test_detached_dependents_are_removed(self, store):
        """Test that observations dropped from the aggregate are deleted."""
        encounter = make_encounter()
        keep, drop = Observation(concept="A"), Observation(concept="B")
        encounter.add_observation(keep)
        encounter.add_observation(drop)
        encounter.add_order(Order(patient=encounter.patient))
        store.save_encounter(encounter)

        encounter.observations = [keep]
        encounter.orders = []
        store.save_encounter(encounter)

        loaded = store.get_encounter(encounter.encounter_id)
        assert [o.observation_id for o in loaded.observations] == [keep.observation_id]
        assert loaded.orders == []

    def test_listing_is_in_identity_order(self, store):
        """Test that a patient's encounters come back in save order."""
        first, second = make_encounter(), make_encounter(when=T1)
        store.save_encounter(first)
        store.save_encounter(second)
        store.save_encounter(make_encounter(patient_id=2))

        listed = store.get_encounters_by_patient_id(1)

        assert [e.encounter_id for e in listed] == [first.encounter_id, second.encounter_id]

    def test_listing_unknown_patient_is_empty(self, store):
        """Test that a patient with nothing stored yields an empty list."""
        assert store.get_encounters_by_patient_id(123) == []

    def test_delete_is_idempotent(self, store):
        """Test that deleting twice and deleting None do not fail."""
        encounter = make_encounter()
        encounter.add_observation(Observation(concept="A"))
        store.save_encounter(encounter)

        store.delete_encounter(encounter)
        store.delete_encounter(encounter)
        store.delete_encounter(None)

        assert store.get_encounter(encounter.encounter_id) is None


class TestIdentityAssignment:
    """Test identity assignment alongside caller-supplied ids."""

    def test_supplied_dependent_ids_are_not_reused(self, store):
        """Test that generated ids skip values already taken by supplied ones."""
        first = make_encounter()
        first.add_observation(Observation(observation_id=1, concept="A"))
        first.add_order(Order(order_id=1, orderable="CBC"))
        store.save_encounter(first)

        second = make_encounter(when=T1)
        obs, order = Observation(concept="B"), Order(orderable="LFT")
        second.add_observation(obs)
        second.add_order(order)
        store.save_encounter(second)

        assert obs.observation_id not in (None, 1)
        assert order.order_id not in (None, 1)
        assert len(store.get_encounter(second.encounter_id).observations) == 1

    def test_supplied_encounter_id_is_not_reused(self, store):
        """Test that a stored encounter with a supplied id does not collide with generated ones."""
        supplied = make_encounter()
        supplied.encounter_id = 1
        store.save_encounter(supplied)

        generated = store.save_encounter(make_encounter(when=T1))

        assert generated.encounter_id not in (None, 1)
        assert len(store.get_encounters_by_patient_id(1)) == 2


class TestFailedSave:
    """Test rollback behaviour when the driver rejects a save."""

    def test_failed_insert_rolls_back_and_clears_ids(self, store):
        """Test that a rejected save leaves no rows and no assigned ids behind."""
        kept = make_encounter()
        store.save_encounter(kept)

        encounter = make_encounter(when=T1)
        obs = Observation(location=Location(location_id=2**40))
        order = Order(orderable="CBC")
        encounter.add_observation(obs)
        encounter.add_order(order)

        with pytest.raises(PersistenceError) as exc_info:
            store.save_encounter(encounter)

        assert exc_info.value.operation == "save_encounter"
        assert encounter.encounter_id is None
        assert obs.observation_id is None
        assert order.order_id is None
        assert [e.encounter_id for e in store.get_encounters_by_patient_id(1)] == [kept.encounter_id]

    def test_failed_update_keeps_stored_rows(self, store):
        """Test that a rejected update leaves the previously stored aggregate intact."""
        encounter = make_encounter(when=T0)
        encounter.add_observation(Observation(concept="A"))
        store.save_encounter(encounter)
        encounter_id = encounter.encounter_id

        encounter.encounter_datetime = T1
        encounter.add_observation(Observation(location=Location(location_id=2**40)))
        with pytest.raises(PersistenceError):
            store.save_encounter(encounter)

        assert encounter.encounter_id == encounter_id
        loaded = store.get_encounter(encounter_id)
        assert loaded.encounter_datetime == T0
        assert [o.concept for o in loaded.observations] == ["A"]

    def test_retry_after_failed_save_succeeds(self, service, store, admin):
        """Test that a corrected aggregate can be saved again as new."""
        encounter = make_encounter()
        obs = Observation(location=Location(location_id=2**40))
        encounter.add_observation(obs)

        with pytest.raises(PersistenceError):
            service.save_encounter(encounter, admin)

        obs.location = Location(location_id=10)
        saved = service.save_encounter(encounter, admin)

        assert saved.encounter_id is not None
        loaded = store.get_encounter(saved.encounter_id)
        assert loaded.observations[0].location.location_id == 10


class TestSnapshotLoader:
    """Test reading previously persisted encounter attributes."""

    def test_saved_attributes(self, store):
        """Test that the persisted datetime, location and patient are returned."""
        encounter = make_encounter(patient_id=4, when=T0, location_id=10)
        store.save_encounter(encounter)

        encounter_id = encounter.encounter_id
        assert store.get_saved_datetime(encounter_id) == T0
        assert store.get_saved_location(encounter_id) == Location(location_id=10, name="Ward 10")
        assert store.get_saved_patient(encounter_id) == Patient(patient_id=4)

    def test_saved_location_may_be_unset(self, store):
        """Test that an encounter without a location has no saved location."""
        encounter = Encounter(patient=Patient(patient_id=1), encounter_type=EncounterType())
        store.save_encounter(encounter)
        assert store.get_saved_location(encounter.encounter_id) is None

    def test_unknown_encounter_raises(self, store):
        """Test that a never-persisted id raises NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            store.get_saved_datetime(42)
        assert exc_info.value.record_id == 42


class TestEndToEnd:
    """Test EncounterService against a real DuckDB store."""

    def test_update_reconciles_and_persists(self, service, store, admin):
        """Test that changing an encounter moves default-tracking observations in storage."""
        encounter = make_encounter(when=T0, location_id=10)
        tracking = Observation(concept="WEIGHT")
        overridden = Observation(obs_datetime=datetime(2024, 3, 1, 9, 30), concept="BP")
        encounter.add_observation(tracking)
        encounter.add_observation(overridden)
        service.save_encounter(encounter, admin)
        assert tracking.obs_datetime == T0

        encounter.encounter_datetime = T1
        encounter.location = Location(location_id=20, name="Ward 20")
        service.save_encounter(encounter, admin)

        loaded = store.get_encounter(encounter.encounter_id)
        by_concept = {o.concept: o for o in loaded.observations}
        assert by_concept["WEIGHT"].obs_datetime == T1
        assert by_concept["WEIGHT"].location.location_id == 20
        assert by_concept["BP"].obs_datetime == datetime(2024, 3, 1, 9, 30)
        assert by_concept["BP"].location.location_id == 20

    def test_patient_change_moves_observations_and_orders(self, service, store, admin):
        """Test that moving an encounter to another patient moves its dependents."""
        encounter = make_encounter(patient_id=2)
        encounter.add_observation(Observation(concept="A"))
        encounter.add_order(Order(orderable="CBC"))
        service.save_encounter(encounter, admin)

        encounter.patient = Patient(patient_id=1)
        service.save_encounter(encounter, admin)

        loaded = store.get_encounter(encounter.encounter_id)
        assert loaded.observations[0].person.person_id == 1
        assert loaded.orders[0].patient.patient_id == 1
        assert store.get_encounters_by_patient_id(2) == []

    def test_listing_respects_location_filter(self, service, admin):
        """Test that listing hides encounters at locations the caller cannot view."""
        service.save_encounter(make_encounter(location_id=10), admin)
        service.save_encounter(make_encounter(location_id=20), admin)
        restricted = CallerContext(username="nurse", allowed_location_ids={20})

        visible = service.get_encounters_by_patient_id(1, restricted)

        assert [e.location.location_id for e in visible] == [20]
        assert len(service.get_encounters_by_patient_id(1, admin)) == 2

    def test_purge_removes_encounter(self, service, admin):
        """Test that purge deletes the stored aggregate."""
        encounter = make_encounter()
        service.save_encounter(encounter, admin)

        service.purge_encounter(encounter, admin)

        assert service.get_encounter(encounter.encounter_id) is None
