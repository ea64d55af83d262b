"""Reconciliation Change Models.

Models describing what a reconciliation pass does to an encounter's
dependents: the diff it computes up front (ReconciliationPlan) and every
field-level mutation it applies (ChangeEvent). Plans can be inspected
without persisting anything; events feed the change audit log.

Architecture:
    - Pure domain models, no infrastructure dependencies
"""

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from clinical_records.domain.models import EncounterSnapshot, SaveMode


def render_value(value: Any) -> Optional[str]:
    """Render a reconciled value as text for audit storage."""
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, dict)):
        try:
            return json.dumps(value)
        except (TypeError, ValueError):
            pass
    return str(value)


class ChangeType(str, Enum):
    """How a dependent field was changed."""
    INITIALIZE = "INITIALIZE"
    UPDATE = "UPDATE"


class ChangeEvent(BaseModel):
    """One field of one observation or order rewritten by reconciliation.

    Parameters:
        entity: 'observation' or 'order'
        record_id: Identifier of the dependent (None while unsaved)
        field_name: Rewritten field
        old_value: Value before the rewrite
        new_value: Value after the rewrite
        change_type: INITIALIZE for unset fields of new dependents, UPDATE otherwise
        changed_at: When the rewrite happened
        encounter_id: Owning encounter (None for new encounters)
        changed_by: Caller username, if known
    """

    model_config = ConfigDict(validate_assignment=True)

    entity: str = Field(..., description="Kind of dependent record")
    record_id: Optional[int] = Field(None, description="Identifier of the dependent")
    field_name: str = Field(..., description="Rewritten field")
    old_value: Optional[Any] = Field(None, description="Value before the rewrite")
    new_value: Optional[Any] = Field(None, description="Value after the rewrite")
    change_type: ChangeType = Field(..., description="INITIALIZE or UPDATE")
    changed_at: datetime = Field(default_factory=datetime.now, description="When the rewrite happened")
    encounter_id: Optional[int] = Field(None, description="Owning encounter")
    changed_by: Optional[str] = Field(None, description="Caller username")

    def to_audit_dict(self) -> dict:
        """Flatten into an audit entry with text-rendered values and a fresh change_id."""
        entry = self.model_dump(exclude={"old_value", "new_value", "change_type"})
        entry.update(
            change_id=str(uuid.uuid4()),
            old_value=render_value(self.old_value),
            new_value=render_value(self.new_value),
            change_type=self.change_type.value,
        )
        return entry


class ReconciliationPlan(BaseModel):
    """The diff between an encounter's previous and current attributes.

    Parameters:
        mode: NEW or UPDATE
        previous: The "before" side of the diff
        datetime_changed: Encounter datetime differs from the previous one
        location_changed: Encounter location differs from the previous one
        patient_changed: Patient's person differs from the previous patient's person
    """

    model_config = ConfigDict(frozen=True)

    mode: SaveMode
    previous: EncounterSnapshot
    datetime_changed: bool = False
    location_changed: bool = False
    patient_changed: bool = False

    def has_changes(self) -> bool:
        return self.datetime_changed or self.location_changed or self.patient_changed
