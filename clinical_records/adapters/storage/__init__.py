"""Storage adapters for Clinical-Records.

This module contains storage adapters that implement the PersistencePort and
SnapshotLoaderPort interfaces for encounter aggregates.
"""

from clinical_records.adapters.storage.duckdb_adapter import DuckDBEncounterStore

__all__ = ["DuckDBEncounterStore"]
