"""Process-wide settings.

Runtime switches read from `CR_`-prefixed environment variables, plus the
storage configuration resolved once through the configuration manager.
"""

import os
from typing import Optional

from clinical_records.infrastructure.config_manager import (
    ENV_PREFIX,
    DatabaseConfig,
    get_database_config,
)


class Settings:
    """Log level, audit switch and lazily resolved storage configuration."""

    def __init__(self):
        self._db_config: Optional[DatabaseConfig] = None

        self.log_level = os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO")

        # Whether the CLI records reconciliation changes, and how many it buffers
        self.audit_changes = os.getenv(f"{ENV_PREFIX}AUDIT_CHANGES", "true").lower() == "true"
        self.audit_max_entries = int(os.getenv(f"{ENV_PREFIX}AUDIT_MAX_ENTRIES", "10000"))

    @property
    def db_config(self) -> DatabaseConfig:
        """Database configuration, loaded lazily on first access."""
        if self._db_config is None:
            self._db_config = get_database_config()
        return self._db_config


# Shared by the composition root and the CLI
settings = Settings()
