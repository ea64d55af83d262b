"""Default Privilege and Permission Adapters.

These adapters implement PrivilegeCheckPort and PermissionFilterPort using
only the explicit CallerContext handed to each call.

Architecture:
    - Implements domain ports (Hexagonal Architecture)
    - No ambient session state: the caller is always an argument
"""

import logging
from typing import Optional, Sequence

from clinical_records.domain.models import CallerContext, Encounter
from clinical_records.domain.ports import (
    AuthorizationError,
    PermissionFilterPort,
    PrivilegeCheckPort,
)

logger = logging.getLogger(__name__)

ADD_ENCOUNTERS = "Add Encounters"
EDIT_ENCOUNTERS = "Edit Encounters"
DELETE_ENCOUNTERS = "Delete Encounters"


class CallerPrivilegeCheck(PrivilegeCheckPort):
    """Requires 'Add Encounters' for new encounters and 'Edit Encounters' otherwise.

    Parameters:
        superuser_privilege: Privilege that bypasses every check
    """

    def __init__(self, superuser_privilege: str = "System Developer"):
        self.superuser_privilege = superuser_privilege

    def require(self, encounter: Encounter, caller: Optional[CallerContext]) -> None:
        privilege = ADD_ENCOUNTERS if encounter.is_new() else EDIT_ENCOUNTERS
        self._require(privilege, caller)

    def require_purge(self, encounter: Encounter, caller: Optional[CallerContext]) -> None:
        self._require(DELETE_ENCOUNTERS, caller)

    def _require(self, privilege: str, caller: Optional[CallerContext]) -> None:
        if caller is None:
            raise AuthorizationError(
                f"Privilege required: {privilege} (no authenticated caller)",
                privilege=privilege
            )
        if caller.has_privilege(self.superuser_privilege) or caller.has_privilege(privilege):
            return
        logger.warning(f"User '{caller.username}' refused: missing privilege '{privilege}'")
        raise AuthorizationError(
            f"Privilege required: {privilege}",
            privilege=privilege,
            username=caller.username
        )


class AllowAllPermissionFilter(PermissionFilterPort):
    """Keeps every encounter."""

    def filter(
        self,
        encounters: Sequence[Encounter],
        caller: Optional[CallerContext]
    ) -> list[Encounter]:
        return list(encounters)


class LocationPermissionFilter(PermissionFilterPort):
    """Keeps encounters at locations the caller is allowed to view.

    A caller without a location restriction sees everything; no caller at
    all sees nothing. Encounters without a location are visible to anyone
    who is authenticated.
    """

    def filter(
        self,
        encounters: Sequence[Encounter],
        caller: Optional[CallerContext]
    ) -> list[Encounter]:
        if caller is None:
            return []
        if caller.allowed_location_ids is None:
            return list(encounters)

        allowed = caller.allowed_location_ids
        return [
            encounter for encounter in encounters
            if encounter.location is None or encounter.location.location_id in allowed
        ]
