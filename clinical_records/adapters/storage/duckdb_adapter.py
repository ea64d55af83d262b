"""DuckDB Storage Adapter.

This adapter implements the PersistencePort and SnapshotLoaderPort contracts
for encounter aggregates on top of DuckDB, an in-process database.

Persistence Impact:
    - One save is one transaction: the encounter row and all of its
      observation/order rows are written together or not at all
    - Identities of new encounters, observations and orders are drawn from
      sequences, skipping values already taken by caller-supplied ids, and
      assigned onto the saved aggregate in place (cleared again on failure)
    - Dependents that are no longer attached to a saved encounter are removed

Architecture:
    - Implements domain ports (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and models
    - Driver errors are surfaced as PersistenceError
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import duckdb

from clinical_records.domain.models import (
    Encounter,
    EncounterType,
    Location,
    Observation,
    Order,
    Patient,
    Person,
)
from clinical_records.domain.ports import (
    NotFoundError,
    PersistenceError,
    PersistencePort,
    SnapshotLoaderPort,
)
from clinical_records.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

_ENCOUNTER_COLUMNS = (
    "encounter_id, patient_id, person_id, encounter_datetime, location_id, "
    "location_name, encounter_type_id, encounter_type_name"
)
_OBSERVATION_COLUMNS = (
    "observation_id, obs_datetime, location_id, location_name, person_id, concept, value"
)
_ORDER_COLUMNS = "order_id, patient_id, person_id, orderable"


def _location(location_id: Optional[int], name: Optional[str]) -> Optional[Location]:
    if location_id is None and name is None:
        return None
    return Location(location_id=location_id, name=name)


def _patient(patient_id: Optional[int], person_id: Optional[int]) -> Optional[Patient]:
    if patient_id is None and person_id is None:
        return None
    return Patient(patient_id=patient_id, person=Person(person_id=person_id))


class DuckDBEncounterStore(PersistencePort, SnapshotLoaderPort):
    """DuckDB implementation of the encounter persistence gateway and snapshot loader.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        from clinical_records.infrastructure.config_manager import get_database_config

        store = DuckDBEncounterStore(db_config=get_database_config())
        store.initialize_schema()
        saved = store.save_encounter(encounter)
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        db_path: Optional[str] = None
    ):
        """Initialize DuckDB store.

        Note:
            If both db_config and db_path are provided, db_config takes precedence.
            If neither is provided, defaults to in-memory database.
        """
        if db_config:
            if db_config.db_type != "duckdb":
                raise PersistenceError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.get_connection_string()
        elif db_path:
            self.db_path = db_path
        else:
            self.db_path = ":memory:"

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False
        self._lock = threading.RLock()

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise PersistenceError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except duckdb.Error as e:
                raise PersistenceError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                ) from e
        return self._connection

    def _ensure_schema(self) -> duckdb.DuckDBPyConnection:
        if not self._initialized:
            self.initialize_schema()
        return self._get_connection()

    def initialize_schema(self) -> None:
        """Create sequences and tables for encounters, observations and orders.

        Raises:
            PersistenceError: If the schema cannot be created
        """
        with self._lock:
            try:
                conn = self._get_connection()

                conn.execute("CREATE SEQUENCE IF NOT EXISTS encounter_id_seq START 1")
                conn.execute("CREATE SEQUENCE IF NOT EXISTS observation_id_seq START 1")
                conn.execute("CREATE SEQUENCE IF NOT EXISTS order_id_seq START 1")

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS encounters (
                        encounter_id INTEGER PRIMARY KEY,
                        patient_id INTEGER,
                        person_id INTEGER,
                        encounter_datetime TIMESTAMP,
                        location_id INTEGER,
                        location_name VARCHAR,
                        encounter_type_id INTEGER,
                        encounter_type_name VARCHAR,
                        date_changed TIMESTAMP NOT NULL
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS observations (
                        observation_id INTEGER PRIMARY KEY,
                        encounter_id INTEGER NOT NULL,
                        obs_datetime TIMESTAMP,
                        location_id INTEGER,
                        location_name VARCHAR,
                        person_id INTEGER,
                        concept VARCHAR,
                        value VARCHAR
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS orders (
                        order_id INTEGER PRIMARY KEY,
                        encounter_id INTEGER NOT NULL,
                        patient_id INTEGER,
                        person_id INTEGER,
                        orderable VARCHAR
                    )
                """)

                # No secondary indexes: DuckDB rewrites updates of indexed
                # columns as delete+insert, which trips the primary key check
                # inside a transaction.
                self._initialized = True
                logger.info("Database schema initialized successfully")
            except duckdb.Error as e:
                error_msg = f"Failed to initialize schema: {str(e)}"
                logger.error(error_msg, exc_info=True)
                raise PersistenceError(error_msg, operation="initialize_schema") from e

    # ------------------------------------------------------------------
    # PersistencePort
    # ------------------------------------------------------------------

    def save_encounter(self, encounter: Encounter) -> Encounter:
        """Persist the aggregate in one transaction.

        New identities are assigned onto the given objects, and the same
        encounter instance is returned. If the save fails, identities assigned
        during it are cleared again so the aggregate still reads as unsaved.

        Raises:
            PersistenceError: On storage failure (the transaction is rolled back)
        """
        unsaved = [
            (obj, key) for obj, key in
            [(encounter, "encounter_id")]
            + [(obs, "observation_id") for obs in encounter.observations]
            + [(order, "order_id") for order in encounter.orders]
            if getattr(obj, key) is None
        ]

        with self._lock:
            conn = self._ensure_schema()
            try:
                conn.begin()
                self._write_encounter(conn, encounter)
                self._write_observations(conn, encounter)
                self._write_orders(conn, encounter)
                conn.commit()
            except duckdb.Error as e:
                conn.rollback()
                for obj, key in unsaved:
                    setattr(obj, key, None)
                error_msg = f"Failed to save encounter {encounter.encounter_id}: {str(e)}"
                logger.error(error_msg, exc_info=True)
                raise PersistenceError(
                    error_msg,
                    operation="save_encounter",
                    details={"encounter_id": encounter.encounter_id}
                ) from e

        logger.info(
            f"Saved encounter {encounter.encounter_id} with {len(encounter.observations)} "
            f"observation(s) and {len(encounter.orders)} order(s)"
        )
        return encounter

    def _next_id(self, conn: duckdb.DuckDBPyConnection, sequence: str, table: str, key: str) -> int:
        # Rows saved with caller-supplied ids do not advance the sequence
        while True:
            candidate = conn.execute(f"SELECT nextval('{sequence}')").fetchone()[0]
            if not self._exists(conn, table, key, candidate):
                return candidate

    def _exists(self, conn: duckdb.DuckDBPyConnection, table: str, key: str, value: int) -> bool:
        row = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {key} = ?", [value]).fetchone()
        return row[0] > 0

    def _write_encounter(self, conn: duckdb.DuckDBPyConnection, encounter: Encounter) -> None:
        patient = encounter.patient
        location = encounter.location
        encounter_type = encounter.encounter_type
        values = [
            patient.patient_id if patient else None,
            patient.person.person_id if patient and patient.person else None,
            encounter.encounter_datetime,
            location.location_id if location else None,
            location.name if location else None,
            encounter_type.encounter_type_id if encounter_type else None,
            encounter_type.name if encounter_type else None,
            datetime.now(),
        ]

        if encounter.encounter_id is not None and self._exists(
            conn, "encounters", "encounter_id", encounter.encounter_id
        ):
            conn.execute("""
                UPDATE encounters SET
                    patient_id = ?, person_id = ?, encounter_datetime = ?,
                    location_id = ?, location_name = ?,
                    encounter_type_id = ?, encounter_type_name = ?, date_changed = ?
                WHERE encounter_id = ?
            """, values + [encounter.encounter_id])
            return

        if encounter.encounter_id is None:
            encounter.encounter_id = self._next_id(conn, "encounter_id_seq", "encounters", "encounter_id")
        conn.execute(
            f"INSERT INTO encounters ({_ENCOUNTER_COLUMNS}, date_changed) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [encounter.encounter_id] + values
        )

    def _write_observations(self, conn: duckdb.DuckDBPyConnection, encounter: Encounter) -> None:
        kept_ids = []
        for obs in encounter.observations:
            values = [
                obs.obs_datetime,
                obs.location.location_id if obs.location else None,
                obs.location.name if obs.location else None,
                obs.person.person_id if obs.person else None,
                obs.concept,
                obs.value,
            ]
            if obs.observation_id is not None and self._exists(
                conn, "observations", "observation_id", obs.observation_id
            ):
                conn.execute("""
                    UPDATE observations SET
                        encounter_id = ?, obs_datetime = ?, location_id = ?, location_name = ?,
                        person_id = ?, concept = ?, value = ?
                    WHERE observation_id = ?
                """, [encounter.encounter_id] + values + [obs.observation_id])
            else:
                if obs.observation_id is None:
                    obs.observation_id = self._next_id(conn, "observation_id_seq", "observations", "observation_id")
                conn.execute(
                    f"INSERT INTO observations (encounter_id, {_OBSERVATION_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [encounter.encounter_id, obs.observation_id] + values
                )
            kept_ids.append(obs.observation_id)

        self._delete_detached(conn, "observations", "observation_id", encounter.encounter_id, kept_ids)

    def _write_orders(self, conn: duckdb.DuckDBPyConnection, encounter: Encounter) -> None:
        kept_ids = []
        for order in encounter.orders:
            patient = order.patient
            values = [
                patient.patient_id if patient else None,
                patient.person.person_id if patient and patient.person else None,
                order.orderable,
            ]
            if order.order_id is not None and self._exists(conn, "orders", "order_id", order.order_id):
                conn.execute("""
                    UPDATE orders SET encounter_id = ?, patient_id = ?, person_id = ?, orderable = ?
                    WHERE order_id = ?
                """, [encounter.encounter_id] + values + [order.order_id])
            else:
                if order.order_id is None:
                    order.order_id = self._next_id(conn, "order_id_seq", "orders", "order_id")
                conn.execute(
                    f"INSERT INTO orders (encounter_id, {_ORDER_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    [encounter.encounter_id, order.order_id] + values
                )
            kept_ids.append(order.order_id)

        self._delete_detached(conn, "orders", "order_id", encounter.encounter_id, kept_ids)

    def _delete_detached(
        self,
        conn: duckdb.DuckDBPyConnection,
        table: str,
        key: str,
        encounter_id: int,
        kept_ids: list[int]
    ) -> None:
        if kept_ids:
            placeholders = ", ".join("?" for _ in kept_ids)
            conn.execute(
                f"DELETE FROM {table} WHERE encounter_id = ? AND {key} NOT IN ({placeholders})",
                [encounter_id] + kept_ids
            )
        else:
            conn.execute(f"DELETE FROM {table} WHERE encounter_id = ?", [encounter_id])

    def delete_encounter(self, encounter: Optional[Encounter]) -> None:
        """Delete an encounter and its dependents. Idempotent; None is a no-op."""
        if encounter is None or encounter.encounter_id is None:
            return

        with self._lock:
            conn = self._ensure_schema()
            try:
                conn.begin()
                for table in ("observations", "orders", "encounters"):
                    conn.execute(f"DELETE FROM {table} WHERE encounter_id = ?", [encounter.encounter_id])
                conn.commit()
            except duckdb.Error as e:
                conn.rollback()
                error_msg = f"Failed to delete encounter {encounter.encounter_id}: {str(e)}"
                logger.error(error_msg, exc_info=True)
                raise PersistenceError(error_msg, operation="delete_encounter") from e

        logger.info(f"Deleted encounter {encounter.encounter_id}")

    def get_encounters_by_patient_id(self, patient_id: int) -> list[Encounter]:
        """Return the patient's encounters in insertion (identity) order."""
        with self._lock:
            conn = self._ensure_schema()
            try:
                rows = conn.execute(
                    f"SELECT {_ENCOUNTER_COLUMNS} FROM encounters "
                    "WHERE patient_id = ? ORDER BY encounter_id",
                    [patient_id]
                ).fetchall()
                return [self._load_aggregate(conn, row) for row in rows]
            except duckdb.Error as e:
                raise PersistenceError(
                    f"Failed to list encounters for patient {patient_id}: {str(e)}",
                    operation="get_encounters_by_patient_id"
                ) from e

    def get_encounter(self, encounter_id: int) -> Optional[Encounter]:
        with self._lock:
            conn = self._ensure_schema()
            try:
                row = conn.execute(
                    f"SELECT {_ENCOUNTER_COLUMNS} FROM encounters WHERE encounter_id = ?",
                    [encounter_id]
                ).fetchone()
                if row is None:
                    return None
                return self._load_aggregate(conn, row)
            except duckdb.Error as e:
                raise PersistenceError(
                    f"Failed to load encounter {encounter_id}: {str(e)}",
                    operation="get_encounter"
                ) from e

    def _load_aggregate(self, conn: duckdb.DuckDBPyConnection, row: tuple) -> Encounter:
        (encounter_id, patient_id, person_id, encounter_datetime, location_id,
         location_name, encounter_type_id, encounter_type_name) = row

        encounter_type = None
        if encounter_type_id is not None or encounter_type_name is not None:
            encounter_type = EncounterType(encounter_type_id=encounter_type_id, name=encounter_type_name)

        encounter = Encounter(
            encounter_id=encounter_id,
            patient=_patient(patient_id, person_id),
            encounter_datetime=encounter_datetime,
            location=_location(location_id, location_name),
            encounter_type=encounter_type,
        )

        obs_rows = conn.execute(
            f"SELECT {_OBSERVATION_COLUMNS} FROM observations "
            "WHERE encounter_id = ? ORDER BY observation_id",
            [encounter_id]
        ).fetchall()
        for observation_id, obs_datetime, obs_location_id, obs_location_name, obs_person_id, concept, value in obs_rows:
            encounter.add_observation(Observation(
                observation_id=observation_id,
                obs_datetime=obs_datetime,
                location=_location(obs_location_id, obs_location_name),
                person=Person(person_id=obs_person_id) if obs_person_id is not None else None,
                concept=concept,
                value=value,
            ))

        order_rows = conn.execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE encounter_id = ? ORDER BY order_id",
            [encounter_id]
        ).fetchall()
        for order_id, order_patient_id, order_person_id, orderable in order_rows:
            encounter.add_order(Order(
                order_id=order_id,
                patient=_patient(order_patient_id, order_person_id),
                orderable=orderable,
            ))

        return encounter

    # ------------------------------------------------------------------
    # SnapshotLoaderPort
    # ------------------------------------------------------------------

    def _saved_row(self, encounter_id: int, columns: str) -> tuple:
        with self._lock:
            conn = self._ensure_schema()
            try:
                row = conn.execute(
                    f"SELECT {columns} FROM encounters WHERE encounter_id = ?",
                    [encounter_id]
                ).fetchone()
            except duckdb.Error as e:
                raise PersistenceError(
                    f"Failed to read encounter {encounter_id}: {str(e)}",
                    operation="snapshot"
                ) from e
        if row is None:
            raise NotFoundError(
                f"Encounter {encounter_id} was never persisted",
                entity="encounter",
                record_id=encounter_id
            )
        return row

    def get_saved_datetime(self, encounter_id: int) -> Optional[datetime]:
        return self._saved_row(encounter_id, "encounter_datetime")[0]

    def get_saved_location(self, encounter_id: int) -> Optional[Location]:
        location_id, location_name = self._saved_row(encounter_id, "location_id, location_name")
        return _location(location_id, location_name)

    def get_saved_patient(self, encounter_id: int) -> Optional[Patient]:
        patient_id, person_id = self._saved_row(encounter_id, "patient_id, person_id")
        return _patient(patient_id, person_id)

    def close(self) -> None:
        """Close storage connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                self._connection = None
                self._initialized = False
                logger.info("Closed DuckDB connection")
            except duckdb.Error as e:
                logger.warning(f"Error closing connection: {str(e)}")
