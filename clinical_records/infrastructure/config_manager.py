"""Configuration Manager.

Loads the service configuration from `CR_`-prefixed environment variables
(optionally seeded from a .env file) or from a JSON document, and validates
the storage section with Pydantic before any adapter is built from it.

Architecture:
    - Infrastructure layer: the domain never reads configuration
    - Invalid settings fail at load time, not at first connection
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "CR_"
IN_MEMORY = ":memory:"
SUPPORTED_DB_TYPES = ("duckdb",)


class DatabaseConfig(BaseModel):
    """Storage settings for the encounter store.

    Parameters:
        db_type: Storage engine (only 'duckdb')
        db_path: Database file, or ':memory:' / None for a transient database
    """

    db_type: str = Field("duckdb", description="Storage engine")
    db_path: Optional[str] = Field(None, description="Database file location")

    @field_validator("db_type")
    @classmethod
    def normalize_db_type(cls, value: str) -> str:
        db_type = value.lower()
        if db_type not in SUPPORTED_DB_TYPES:
            raise ValueError(f"Unsupported database type '{value}' (expected one of {SUPPORTED_DB_TYPES})")
        return db_type

    @field_validator("db_path")
    @classmethod
    def check_parent_directory(cls, value: Optional[str]) -> Optional[str]:
        # The file itself is created on first connect; its directory is not
        if value in (None, IN_MEMORY):
            return value
        path = Path(value)
        if not path.parent.is_dir():
            raise ValueError(f"Directory for database file not found: {path.parent}")
        return str(path)

    def get_connection_string(self) -> str:
        return self.db_path if self.db_path else IN_MEMORY


class ConfigManager:
    """Holds raw configuration sections and hands out validated views of them.

    Example Usage:
        ```python
        manager = ConfigManager.from_environment()
        store = DuckDBEncounterStore(db_config=manager.get_database_config())

        manager = ConfigManager.from_file("clinical-records.json")
        manager.get("database.db_path")
        ```
    """

    def __init__(self, sections: Dict[str, Any]):
        self._sections = sections
        self._database: Optional[DatabaseConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[Path] = None) -> "ConfigManager":
        """Build configuration from the process environment.

        Reads CR_DB_TYPE and CR_DB_PATH. A .env file (env_file, or one in the
        working directory) is applied first; variables already set win.
        """
        dotenv_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if dotenv_path.is_file():
            load_dotenv(dotenv_path, override=False)
            logger.debug(f"Applied dotenv file {dotenv_path}")

        return cls({
            "database": {
                "db_type": os.getenv(f"{ENV_PREFIX}DB_TYPE", "duckdb"),
                "db_path": os.getenv(f"{ENV_PREFIX}DB_PATH"),
            }
        })

    @classmethod
    def from_file(cls, config_path: str) -> "ConfigManager":
        """Build configuration from a JSON document.

        Raises:
            FileNotFoundError: If the document does not exist
            ValueError: If the document is not valid JSON
        """
        path = Path(config_path)
        if not path.is_file():
            raise FileNotFoundError(f"No configuration file at {config_path}")

        try:
            sections = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"Configuration file {config_path} is not valid JSON: {e}") from e

        logger.debug(f"Loaded configuration from {config_path}")
        return cls(sections)

    def get_database_config(self) -> DatabaseConfig:
        """Validated storage section; unset values fall back to model defaults."""
        if self._database is None:
            raw = self._sections.get("database") or {}
            self._database = DatabaseConfig(**{k: v for k, v in raw.items() if v is not None})
        return self._database

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a raw value by dotted path, e.g. "database.db_path"."""
        node: Any = self._sections
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return default if node is None else node


def get_database_config() -> DatabaseConfig:
    """Storage settings from the environment (in-memory DuckDB when unset)."""
    return ConfigManager.from_environment().get_database_config()
