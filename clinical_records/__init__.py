"""Clinical-Records: encounter storage with dependent-entity reconciliation."""

__version__ = "1.0.0"
