"""Composition root for the Clinical-Records service.

Wires the configured storage adapter and the default collaborators into an
EncounterService.
"""

import logging
from typing import Optional

from clinical_records.adapters.security import CallerPrivilegeCheck, LocationPermissionFilter
from clinical_records.adapters.storage import DuckDBEncounterStore
from clinical_records.adapters.validation import RequiredFieldsValidator
from clinical_records.domain.services import EncounterService, ReconciliationEngine
from clinical_records.infrastructure.audit import ChangeAuditLogger
from clinical_records.infrastructure.settings import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_storage_adapter() -> DuckDBEncounterStore:
    """Create storage adapter based on configuration.

    Raises:
        ValueError: If database type is unsupported
    """
    db_config = settings.db_config

    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB adapter with path: {db_config.db_path or ':memory:'}")
        return DuckDBEncounterStore(db_config=db_config)
    raise ValueError(f"Unsupported database type: {db_config.db_type}")


def create_encounter_service(
    store: Optional[DuckDBEncounterStore] = None,
    audit_logger: Optional[ChangeAuditLogger] = None
) -> EncounterService:
    """Build an EncounterService backed by one store for persistence and snapshots.

    Parameters:
        store: Storage adapter (created from configuration if omitted)
        audit_logger: Change audit logger; changes are audited only when one
            is given, and the caller drains it via service.audit_logger
    """
    store = store or create_storage_adapter()

    return EncounterService(
        storage=store,
        snapshot_loader=store,
        privilege_check=CallerPrivilegeCheck(),
        permission_filter=LocationPermissionFilter(),
        validator=RequiredFieldsValidator(),
        engine=ReconciliationEngine(audit_logger=audit_logger),
    )
