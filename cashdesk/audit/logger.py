"""
Activity Logger

DESIGN DECISION: Every create, update and delete of a tracked entity is
logged. This provides:
1. Traceability of who changed what
2. A snapshot of the entity at the time of the change
3. The activity history page

The activity logger:
- Always writes a structured local log line
- Persists the entry to the activity_logs collection when storage is set
- Is best effort by default: a failed storage write is logged and
  swallowed, so a mutation that already succeeded is never reported as
  failed. With strict mode on, the storage error propagates instead.
"""

import logging
from typing import Any, Optional

import structlog

from cashdesk.models.audit import ActivityLogEntry, ActivityType, EntityType
from cashdesk.services.storage import ActivityLogStorageInterface, StorageError


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(ensure_ascii=False)
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at `log_level`."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, str(log_level).upper(), logging.INFO),
    )


class ActivityLogger:
    """
    Central activity logging service.

    Logs entries both to:
    1. Structured local log (for debugging)
    2. The activity_logs collection (for the history page)
    """

    def __init__(
        self,
        storage: Optional[ActivityLogStorageInterface] = None,
        strict: bool = False,
    ):
        """
        Initialize activity logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            strict: Propagate storage failures instead of swallowing them.
        """
        self._storage = storage
        self._strict = strict
        self._logger = structlog.get_logger(__name__)

    async def log(self, entry: ActivityLogEntry) -> bool:
        """
        Log an activity entry.

        Always logs locally. Persists to storage if available.

        Returns True if the storage write succeeded (or no storage configured).
        """
        self._logger.info("activity", **entry.to_log_dict())

        if self._storage is None:
            return True

        try:
            return await self._storage.append_entry(entry)
        except StorageError as e:
            self._logger.error(
                "activity_storage_failed",
                error=str(e),
                activity_id=entry.id,
                entity_type=entry.entity_type.value,
                entity_id=entry.entity_id,
            )
            if self._strict:
                raise
            return False

    async def log_activity(
        self,
        actor_id: str,
        actor_name: str,
        activity_type: ActivityType,
        entity_type: EntityType,
        entity_id: str,
        entity_snapshot: Optional[dict[str, Any]] = None,
        note: str = "",
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> ActivityLogEntry:
        """Build and log one entry; returns the entry that was built."""
        entry = ActivityLogEntry(
            user_id=actor_id,
            user_name=actor_name,
            activity_type=activity_type,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_data=entity_snapshot or {},
            details=(note or "")[:500],
            project_id=project_id,
            project_name=project_name,
        )
        await self.log(entry)
        return entry
