"""
Activity Log Models for Cash Desk

Every create, update and delete of a tracked entity writes one
activity entry. This provides:
1. Traceability of who changed what, and when
2. A snapshot of the entity as it was at that moment
3. History that survives deletion of the entity itself

DESIGN DECISION: Activity logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from cashdesk.models.entities import StoredRecord, new_id, utcnow


class ActivityType(str, Enum):
    """Kind of mutation recorded."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    """Kind of entity an activity refers to."""
    EXPENSE = "expense"
    EXPENSE_ITEM = "expense_item"
    CASH_INFLOW = "cash_inflow"
    PROJECT = "project"
    CATEGORY = "category"
    ARTICLE = "article"
    UNIT = "unit"
    SUPPLIER = "supplier"
    PCA_REIMBURSEMENT = "pca_reimbursement"
    CLOSING = "closing"
    USER = "user"


class ActivityLogEntry(BaseModel):
    """
    A single activity entry.

    This is the core unit of the activity history.
    Entries are frozen once built.
    """
    model_config = ConfigDict(frozen=True)

    # Identity
    id: str = Field(
        default_factory=new_id,
        description="Unique entry identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the activity occurred (UTC)"
    )

    # Actor
    user_id: str = Field(..., description="ID of the acting user")
    user_name: str = Field(default="", description="Name of the acting user")

    # Classification
    activity_type: ActivityType
    entity_type: EntityType
    entity_id: str = Field(..., description="ID of the entity acted upon")

    # Copy of the entity data at the moment of the action
    entity_data: dict[str, Any] = Field(default_factory=dict)

    details: str = Field(
        default="",
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Optional project context
    project_id: Optional[str] = None
    project_name: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "activity_id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "user_name": self.user_name,
            "activity_type": self.activity_type.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "details": self.details,
            "project_id": self.project_id,
            "project_name": self.project_name,
        }


class ActivityLogBuilder:
    """
    Helper class to build activity entries with common patterns.

    Usage:
        entry = ActivityLogBuilder.created(actor_id, actor_name, EntityType.UNIT, unit)
        entry = ActivityLogBuilder.deleted(actor_id, actor_name, EntityType.EXPENSE, expense,
                                           details="Dépense supprimée: DEP-202401-0001")
    """

    @staticmethod
    def _build(
        activity_type: ActivityType,
        actor_id: str,
        actor_name: str,
        entity_type: EntityType,
        record: StoredRecord,
        details: Optional[str],
        project_id: Optional[str],
        project_name: Optional[str],
    ) -> ActivityLogEntry:
        return ActivityLogEntry(
            user_id=actor_id,
            user_name=actor_name,
            activity_type=activity_type,
            entity_type=entity_type,
            entity_id=record.id,
            entity_data=record.snapshot(),
            details=details or "",
            project_id=project_id,
            project_name=project_name,
        )

    @staticmethod
    def created(
        actor_id: str,
        actor_name: str,
        entity_type: EntityType,
        record: StoredRecord,
        details: Optional[str] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> ActivityLogEntry:
        return ActivityLogBuilder._build(
            ActivityType.CREATE, actor_id, actor_name, entity_type, record,
            details, project_id, project_name,
        )

    @staticmethod
    def updated(
        actor_id: str,
        actor_name: str,
        entity_type: EntityType,
        record: StoredRecord,
        details: Optional[str] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> ActivityLogEntry:
        return ActivityLogBuilder._build(
            ActivityType.UPDATE, actor_id, actor_name, entity_type, record,
            details, project_id, project_name,
        )

    @staticmethod
    def deleted(
        actor_id: str,
        actor_name: str,
        entity_type: EntityType,
        record: StoredRecord,
        details: Optional[str] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> ActivityLogEntry:
        return ActivityLogBuilder._build(
            ActivityType.DELETE, actor_id, actor_name, entity_type, record,
            details, project_id, project_name,
        )
