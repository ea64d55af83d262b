"""Change Audit Logger.

Collects the field-level changes that reconciliation applies to observations
and orders, one audit entry per changed field, so that callers can report or
persist them after a save.

Architecture:
    - Infrastructure layer component, handed to ReconciliationEngine
    - In-memory buffer drained by the caller with get_logs()/clear_logs();
      with max_entries set, the oldest entries are dropped once it is full
    - Entries are the serialized form produced by ChangeEvent.to_audit_dict()
"""

import logging
import threading
from collections import deque
from typing import Deque, Iterable, List, Optional

from clinical_records.domain.cdc_models import ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "system"


class ChangeAuditLogger:
    """Thread-safe buffer of reconciliation audit entries.

    Parameters:
        max_entries: Upper bound on buffered entries (None for unbounded)

    Example Usage:
        ```python
        audit = ChangeAuditLogger(max_entries=10_000)
        audit.set_context(changed_by="clerk")
        service = create_encounter_service(audit_logger=audit)
        service.save_encounter(encounter, caller)
        for entry in audit.get_logs():
            print(entry["entity"], entry["field_name"], entry["new_value"])
        ```
    """

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._entries: Deque[dict] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._changed_by: Optional[str] = None

    def set_context(self, changed_by: Optional[str] = None) -> None:
        """Set the actor recorded on entries whose event names none."""
        self._changed_by = changed_by

    def log_change_event(self, change_event: ChangeEvent) -> None:
        entry = change_event.to_audit_dict()
        entry["changed_by"] = entry["changed_by"] or self._changed_by or DEFAULT_ACTOR

        with self._lock:
            self._entries.append(entry)
        logger.debug(
            f"Audited {entry['change_type']} of {entry['entity']} "
            f"{entry['record_id']}.{entry['field_name']} by {entry['changed_by']}"
        )

    def log_changes_batch(self, change_events: Iterable[ChangeEvent]) -> None:
        for change_event in change_events:
            self.log_change_event(change_event)

    def get_logs(self) -> List[dict]:
        """Snapshot of the buffered entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def clear_logs(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.debug("Cleared change audit buffer")

    def get_log_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def has_logs(self) -> bool:
        return self.get_log_count() > 0
