"""Encounter Aggregate Definitions.

This module defines the in-memory representation of a clinical encounter and
the dependent entities attached to it (observations and orders), together with
the lightweight references they point at (person, patient, location, type).

Reconciliation Impact:
    - Models are mutable: reconciliation updates dependent fields in place
    - Equality is value equality (Pydantic field comparison; locations compare
      by identifier), which is what the engine uses to decide whether an
      attribute changed
    - Nested instances are kept by reference, so an Observation handed to an
      Encounter is the same object the caller inspects after a save

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Follows Hexagonal Architecture: Domain Core is isolated from Adapters
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Person(BaseModel):
    """Reference to a person (the subject of an observation)."""

    model_config = ConfigDict(validate_assignment=True)

    person_id: Optional[int] = Field(None, description="Person identifier")


class Patient(BaseModel):
    """Reference to a patient.

    A patient is a person; when no explicit person is supplied the patient's
    own person reference shares the patient identifier.
    """

    model_config = ConfigDict(validate_assignment=True)

    patient_id: Optional[int] = Field(None, description="Patient identifier")
    person: Optional[Person] = Field(None, description="The patient's person record")

    @model_validator(mode="after")
    def default_person(self) -> "Patient":
        if self.person is None:
            self.person = Person(person_id=self.patient_id)
        return self


class Location(BaseModel):
    """Reference to the physical location an encounter took place at.

    Locations with identifiers compare by identifier alone, so a bare
    reference matches the named row loaded from storage; the display name
    decides only when neither side has an identifier.
    """

    model_config = ConfigDict(validate_assignment=True)

    location_id: Optional[int] = Field(None, description="Location identifier")
    name: Optional[str] = Field(None, description="Display name")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Location):
            return NotImplemented
        if self.location_id is None and other.location_id is None:
            return self.name == other.name
        return self.location_id == other.location_id


class EncounterType(BaseModel):
    """Classification of an encounter (e.g. 'Adult Initial', 'Lab Visit')."""

    model_config = ConfigDict(validate_assignment=True)

    encounter_type_id: Optional[int] = Field(None, description="Encounter type identifier")
    name: Optional[str] = Field(None, description="Display name")


class Observation(BaseModel):
    """A discrete clinical data point attached to an encounter.

    Parameters:
        observation_id: Identity; None means the observation is created by this save
        obs_datetime: When the observation was made
        location: Where the observation was made
        person: Subject of the observation
        concept: Coded question (carried through, never reconciled)
        value: Recorded answer (carried through, never reconciled)
    """

    model_config = ConfigDict(validate_assignment=True)

    observation_id: Optional[int] = Field(None, description="Observation identifier")
    obs_datetime: Optional[datetime] = Field(None, description="Observation date/time")
    location: Optional[Location] = Field(None, description="Observation location")
    person: Optional[Person] = Field(None, description="Subject person")
    concept: Optional[str] = Field(None, description="Observed concept code")
    value: Optional[str] = Field(None, description="Observed value")

    def is_new(self) -> bool:
        return self.observation_id is None


class Order(BaseModel):
    """A clinical instruction (lab, medication, ...) attached to an encounter."""

    model_config = ConfigDict(validate_assignment=True)

    order_id: Optional[int] = Field(None, description="Order identifier")
    patient: Optional[Patient] = Field(None, description="Subject patient")
    orderable: Optional[str] = Field(None, description="What was ordered")


class Encounter(BaseModel):
    """A single clinical visit together with its attached observations and orders.

    Every attached Observation and Order is owned by exactly this encounter for
    the duration of a save.

    Parameters:
        encounter_id: Identity; None means the encounter has never been persisted
        patient: Subject patient
        encounter_datetime: When the encounter happened
        location: Where the encounter happened
        encounter_type: Kind of encounter
        observations: Attached observations (order irrelevant)
        orders: Attached orders (order irrelevant)
    """

    model_config = ConfigDict(validate_assignment=True)

    encounter_id: Optional[int] = Field(None, description="Encounter identifier")
    patient: Optional[Patient] = Field(None, description="Subject patient")
    encounter_datetime: Optional[datetime] = Field(None, description="Encounter date/time")
    location: Optional[Location] = Field(None, description="Encounter location")
    encounter_type: Optional[EncounterType] = Field(None, description="Encounter type")
    observations: list[Observation] = Field(default_factory=list)
    orders: list[Order] = Field(default_factory=list)

    def is_new(self) -> bool:
        return self.encounter_id is None

    def add_observation(self, observation: Observation) -> None:
        self.observations.append(observation)

    def add_order(self, order: Order) -> None:
        self.orders.append(order)


class EncounterSnapshot(BaseModel):
    """Previously persisted state of an encounter, used as the "before" side of a diff.

    The snapshot has no lifecycle of its own: it is loaded once per save and
    discarded afterwards.
    """

    model_config = ConfigDict(frozen=True)

    encounter_datetime: Optional[datetime] = None
    location: Optional[Location] = None
    patient: Optional[Patient] = None


class SaveMode(str, Enum):
    """Whether a save creates a new encounter or updates an existing one."""
    NEW = "NEW"
    UPDATE = "UPDATE"


class CallerContext(BaseModel):
    """Identity and rights of whoever invokes a service operation.

    Passed explicitly into every call instead of being read from a global
    session.

    Parameters:
        username: Caller's login name
        privileges: Privileges granted to the caller
        allowed_location_ids: Locations whose encounters the caller may view;
            None means unrestricted
    """

    model_config = ConfigDict(frozen=True)

    username: str = Field(..., description="Caller's login name")
    privileges: frozenset[str] = Field(default_factory=frozenset)
    allowed_location_ids: Optional[frozenset[int]] = None

    def has_privilege(self, privilege: str) -> bool:
        return privilege in self.privileges
