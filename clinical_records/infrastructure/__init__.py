"""Infrastructure layer for Clinical-Records: configuration, settings and audit."""
