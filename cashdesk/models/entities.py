"""
Core Data Models for Cash Desk

These models define the schemas of every collection in the hosted store.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Carry the owner of each record for access checks

DESIGN DECISION: Each model maps one-to-one onto a collection
(one worksheet in Google Sheets). Expense line items live in their own
collection and are attached to their expense header at load time.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from cashdesk.models.session import Role


def utcnow() -> datetime:
    """Current UTC time (timezone aware)."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Document identifier, in the style of a hosted document store."""
    return uuid4().hex


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class InflowSource(str, Enum):
    """
    Origin of a cash inflow.

    PCA inflows are advances that the organization owes back;
    they feed the PCA debt.
    """
    REBUS = "rebus"
    BANK = "bank"
    PCA = "pca"
    GRANULE = "granule"
    ESPECE = "espece"

    @property
    def label(self) -> str:
        return INFLOW_SOURCE_LABELS[self]


INFLOW_SOURCE_LABELS = {
    InflowSource.REBUS: "Compte des rebus",
    InflowSource.BANK: "Compte bancaire",
    InflowSource.PCA: "Compte PCA",
    InflowSource.GRANULE: "Vente Granule",
    InflowSource.ESPECE: "Vente d'espèce client",
}


class ExpenseStatus(str, Enum):
    """
    Expense lifecycle status.

    Only VALIDATED expenses count against the PCA debt.
    """
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


# Project bucket used by reimbursement expenses
PCA_REIMBURSEMENT_PROJECT_ID = "pca_remboursement"
PCA_REIMBURSEMENT_PROJECT_NAME = "Remboursement PCA"


# =============================================================================
# BASE
# =============================================================================

class StoredRecord(BaseModel):
    """Fields shared by every stored document."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_id,
        description="Document identifier"
    )
    user_id: str = Field(
        default="",
        description="ID of the user who created the record"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def snapshot(self) -> dict:
        """JSON-safe copy of the record, as written into activity logs."""
        return self.model_dump(mode="json")


# =============================================================================
# CATALOG
# =============================================================================

class Project(StoredRecord):
    """A project that inflows and expenses are booked against."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode='after')
    def validate_dates(self) -> 'Project':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("Project end date cannot be before start date")
        return self


class Category(StoredRecord):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)


class Unit(StoredRecord):
    """Unit of measurement (kg, sac, litre...)."""

    name: str = Field(..., min_length=1, max_length=50)
    description: str = Field(default="", max_length=500)


class Article(StoredRecord):
    """Purchasable article. The reference is entered manually."""

    designation: str = Field(..., min_length=1, max_length=200)
    reference: str = Field(..., min_length=1, max_length=50)
    unit: str = Field(..., min_length=1, max_length=50)


class Supplier(StoredRecord):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(default="", max_length=200)
    phone: str = Field(default="", max_length=50)
    address: str = Field(default="", max_length=500)
    description: str = Field(default="", max_length=1000)


# =============================================================================
# CASH MOVEMENTS
# =============================================================================

class CashInflow(StoredRecord):
    """Money entering the cash desk."""

    inflow_date: date = Field(
        ...,
        description="Date of the inflow"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Amount received"
    )
    source: InflowSource
    description: str = Field(default="", max_length=1000)
    project_id: str = Field(..., min_length=1)


class ExpenseItem(StoredRecord):
    """One line of an expense."""

    expense_id: str = Field(
        default="",
        description="Expense header this line belongs to (set on save)"
    )
    article_id: str = Field(..., min_length=1)
    designation: str = Field(default="", max_length=200)
    reference: str = Field(default="", max_length=50)
    quantity: Decimal = Field(..., gt=0)
    unit: str = Field(default="", max_length=50)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)
    supplier: str = Field(default="", max_length=200)
    supplier_id: str = Field(..., min_length=1)
    amount_given: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        decimal_places=2,
        description="Cash advanced to the beneficiary"
    )
    beneficiary: Optional[str] = Field(default=None, max_length=200)

    @property
    def amount(self) -> Decimal:
        return self.quantity * self.unit_price


class Expense(StoredRecord):
    """
    Expense header.

    Items are stored in their own collection; `items` is populated
    when the expense is loaded and is never written with the header.
    """

    expense_date: date
    reference: str = Field(
        default="",
        max_length=50,
        description="Sequential code such as DEP-202401-0001"
    )
    description: str = Field(default="", max_length=1000)
    project_id: str = Field(..., min_length=1)
    status: ExpenseStatus = ExpenseStatus.VALIDATED
    pca_related: bool = Field(
        default=False,
        description="Paid out of the PCA advance"
    )

    items: list[ExpenseItem] = Field(default_factory=list, exclude=True)

    @property
    def total(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal("0"))

    def snapshot(self) -> dict:
        data = super().snapshot()
        data["items"] = [item.snapshot() for item in self.items]
        return data


class PCAReimbursement(StoredRecord):
    """Repayment of (part of) the PCA debt."""

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    reimbursement_date: date
    description: str = Field(default="", max_length=1000)


class Closing(StoredRecord):
    """Cash desk closing: the counted balance compared to the expected one."""

    closing_date: date
    initial_balance: Decimal
    final_balance: Decimal
    difference: Decimal
    notes: str = Field(default="", max_length=1000)


# =============================================================================
# USERS
# =============================================================================

class UserProfile(StoredRecord):
    """
    Stored user profile.

    `id` is the authenticated user's id. Role and flags are written at
    login and by the user administration page.
    """

    email: str = Field(..., min_length=3, max_length=200)
    display_name: str = Field(default="", max_length=200)
    role: Role = Role.NONE
    is_admin: bool = False
    access_entries: bool = False
    access_expenses: bool = False
    access_history: bool = False
    last_login: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role(cls, v: object) -> Role:
        return Role.parse(v)
