"""Domain Ports - Abstract Contracts for Encounter Collaborators.

This module defines the Port interfaces (abstract contracts) that Adapters must
implement, and the exception taxonomy shared by the domain and its adapters.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how
it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Each collaborator (persistence, snapshot loading, privilege checks,
      validation, permission filtering) is an independent port, so tests can
      substitute any one of them without touching the others
    - Caller identity is passed explicitly (CallerContext), never read from
      ambient session state
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional, Sequence

from clinical_records.domain.models import (
    CallerContext,
    Encounter,
    Location,
    Patient,
)


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class ClinicalRecordError(Exception):
    """Base exception for all clinical-record service errors."""
    pass


class InvalidArgumentError(ClinicalRecordError):
    """Raised when a required input is absent (None).

    Attributes:
        argument: Name of the offending argument
    """

    def __init__(self, message: str, argument: Optional[str] = None):
        super().__init__(message)
        self.argument = argument


class MissingRequiredFieldError(ClinicalRecordError):
    """Raised when an aggregate is structurally incomplete.

    Attributes:
        field_name: The required field that is missing
    """

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class AuthorizationError(ClinicalRecordError):
    """Raised when the caller lacks the privilege an operation requires.

    Attributes:
        privilege: The privilege that was required
        username: The caller that was refused
    """

    def __init__(
        self,
        message: str,
        privilege: Optional[str] = None,
        username: Optional[str] = None
    ):
        super().__init__(message)
        self.privilege = privilege
        self.username = username


class NotFoundError(ClinicalRecordError):
    """Raised when a lookup targets a record that was never persisted.

    Attributes:
        entity: Kind of record looked up (encounter, observation, ...)
        record_id: Identifier that was looked up
    """

    def __init__(self, message: str, entity: Optional[str] = None, record_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.record_id = record_id


class PersistenceError(ClinicalRecordError):
    """Raised when the storage backend fails.

    Attributes:
        operation: The storage operation that failed
        details: Additional error context
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


# ============================================================================
# Ports
# ============================================================================

class SnapshotLoaderPort(ABC):
    """Read-only access to the previously persisted state of an encounter.

    Used only for existing encounters (UPDATE mode) to obtain the "before"
    side of the reconciliation diff.
    """

    @abstractmethod
    def get_saved_datetime(self, encounter_id: int) -> Optional[datetime]:
        """Return the persisted encounter datetime.

        Raises:
            NotFoundError: If the encounter was never persisted
        """
        pass

    @abstractmethod
    def get_saved_location(self, encounter_id: int) -> Optional[Location]:
        """Return the persisted encounter location.

        Raises:
            NotFoundError: If the encounter was never persisted
        """
        pass

    def get_saved_patient(self, encounter_id: int) -> Optional[Patient]:
        """Return the persisted subject patient, or None if unknown.

        This is a default implementation that returns None, in which case the
        encounter's current patient is taken as the previous one.
        """
        return None


class PersistencePort(ABC):
    """Storage gateway for encounter aggregates.

    The gateway is authoritative for identities: on save it assigns identities
    to new encounters and their new dependents and returns the canonical
    stored aggregate.
    """

    @abstractmethod
    def save_encounter(self, encounter: Encounter) -> Encounter:
        """Persist the aggregate and return the stored version.

        Raises:
            PersistenceError: On storage failure
        """
        pass

    @abstractmethod
    def delete_encounter(self, encounter: Optional[Encounter]) -> None:
        """Delete the aggregate. Idempotent; None is a no-op."""
        pass

    @abstractmethod
    def get_encounters_by_patient_id(self, patient_id: int) -> list[Encounter]:
        """Return the patient's encounters in storage order."""
        pass

    @abstractmethod
    def get_encounter(self, encounter_id: int) -> Optional[Encounter]:
        """Return one encounter, or None if it does not exist."""
        pass


class PermissionFilterPort(ABC):
    """Restricts a result set to what the caller may view.

    Implementations never fail: lack of permission yields omission.
    Relative order of the kept encounters must be preserved.
    """

    @abstractmethod
    def filter(
        self,
        encounters: Sequence[Encounter],
        caller: Optional[CallerContext]
    ) -> list[Encounter]:
        pass


class PrivilegeCheckPort(ABC):
    """Verifies that the caller may modify an encounter."""

    @abstractmethod
    def require(self, encounter: Encounter, caller: Optional[CallerContext]) -> None:
        """Raise AuthorizationError if the caller lacks modification rights."""
        pass

    def require_purge(self, encounter: Encounter, caller: Optional[CallerContext]) -> None:
        """Raise AuthorizationError if the caller may not delete the encounter.

        Defaults to the modification check.
        """
        self.require(encounter, caller)


class EncounterValidatorPort(ABC):
    """Structural validation of an aggregate before it is reconciled."""

    @abstractmethod
    def validate(self, encounter: Encounter) -> None:
        """Raise MissingRequiredFieldError if the aggregate is incomplete."""
        pass
