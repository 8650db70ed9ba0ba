"""
Data Models Package

This package contains all Pydantic models used in the Cash Desk system.
All data flowing through the system must conform to these schemas.
"""

from cashdesk.models.entities import (
    INFLOW_SOURCE_LABELS,
    PCA_REIMBURSEMENT_PROJECT_ID,
    PCA_REIMBURSEMENT_PROJECT_NAME,
    Article,
    CashInflow,
    Category,
    Closing,
    Expense,
    ExpenseItem,
    ExpenseStatus,
    InflowSource,
    PCAReimbursement,
    Project,
    StoredRecord,
    Supplier,
    Unit,
    UserProfile,
)
from cashdesk.models.audit import (
    ActivityLogBuilder,
    ActivityLogEntry,
    ActivityType,
    EntityType,
)
from cashdesk.models.session import (
    AccessDecision,
    AppPath,
    NavTab,
    Role,
    SessionContext,
)
from cashdesk.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Entity models
    "INFLOW_SOURCE_LABELS",
    "PCA_REIMBURSEMENT_PROJECT_ID",
    "PCA_REIMBURSEMENT_PROJECT_NAME",
    "Article",
    "CashInflow",
    "Category",
    "Closing",
    "Expense",
    "ExpenseItem",
    "ExpenseStatus",
    "InflowSource",
    "PCAReimbursement",
    "Project",
    "StoredRecord",
    "Supplier",
    "Unit",
    "UserProfile",
    # Activity models
    "ActivityLogBuilder",
    "ActivityLogEntry",
    "ActivityType",
    "EntityType",
    # Session models
    "AccessDecision",
    "AppPath",
    "NavTab",
    "Role",
    "SessionContext",
    # Validation
    "ValidationIssue",
    "ValidationResult",
]
