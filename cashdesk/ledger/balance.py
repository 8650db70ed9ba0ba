"""
Balance Aggregation

Pure aggregation over records that were already fetched in full.
Every function accepts pydantic records or raw mappings (as read from
the store) and never raises on bad data: missing or non-numeric amounts
count as zero, and unparseable dates are treated as unknown.

DESIGN DECISION: The PCA debt is presented as "amount owed" and is
clamped at zero. Overpaying it never produces a negative debt.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from cashdesk.models.entities import ExpenseStatus, InflowSource

ZERO = Decimal("0")

# Amounts whose exponent lies outside this range are treated as unusable
MAX_EXPONENT = 99


# =============================================================================
# COERCION HELPERS
# =============================================================================

def _get(record: Any, *names: str, default: Any = None) -> Any:
    """Read the first present attribute or key among `names`."""
    for name in names:
        if isinstance(record, Mapping):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return default


def coerce_amount(value: Any) -> Decimal:
    """Convert a stored amount to Decimal; anything unusable becomes 0."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return _usable(value)
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return ZERO
    return _usable(amount)


def _usable(amount: Decimal) -> Decimal:
    if not amount.is_finite() or abs(amount.adjusted()) > MAX_EXPONENT:
        return ZERO
    return amount


def parse_date_safely(value: Any) -> Optional[date]:
    """ISO date/datetime strings, dates and datetimes; None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _value(raw: Any) -> str:
    if isinstance(raw, Enum):
        return str(raw.value)
    return str(raw or "").strip().lower()


def _truthy(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() in {"true", "1", "yes"}


# =============================================================================
# ITEM / EXPENSE TOTALS
# =============================================================================

def item_amount(item: Any) -> Decimal:
    """quantity x unit price of one expense line."""
    quantity = coerce_amount(_get(item, "quantity"))
    unit_price = coerce_amount(_get(item, "unit_price", "unitPrice"))
    return quantity * unit_price


def expense_items(expense: Any) -> list:
    return list(_get(expense, "items", default=None) or [])


def expense_total(expense: Any) -> Decimal:
    """Sum of the expense's line items."""
    return sum((item_amount(item) for item in expense_items(expense)), ZERO)


def _inflow_date(inflow: Any) -> Optional[date]:
    return parse_date_safely(_get(inflow, "inflow_date", "date"))


def _expense_date(expense: Any) -> Optional[date]:
    return parse_date_safely(_get(expense, "expense_date", "date"))


def _sum_amounts(records: Iterable[Any]) -> Decimal:
    return sum((coerce_amount(_get(r, "amount")) for r in records), ZERO)


# =============================================================================
# PCA DEBT
# =============================================================================

def compute_outstanding_balance(
    inflows: Iterable[Any],
    validated_expenses: Iterable[Any],
    reimbursements: Iterable[Any],
) -> Decimal:
    """
    Outstanding PCA debt.

    PCA inflows minus the items of validated PCA-related expenses minus
    reimbursements, clamped at zero. Dates play no part.
    """
    inflow_sum = _sum_amounts(
        inflow for inflow in inflows
        if _value(_get(inflow, "source")) == InflowSource.PCA.value
    )

    expense_sum = sum(
        (
            expense_total(expense)
            for expense in validated_expenses
            if _value(_get(expense, "status")) == ExpenseStatus.VALIDATED.value
            and _truthy(_get(expense, "pca_related", "pcaRelated"))
        ),
        ZERO,
    )

    reimbursement_sum = _sum_amounts(reimbursements)

    balance = inflow_sum - expense_sum - reimbursement_sum
    return max(ZERO, balance)


# =============================================================================
# DASHBOARD
# =============================================================================

class DashboardSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_balance: Decimal
    total_inflow: Decimal
    total_expenses: Decimal
    daily_inflow: Decimal
    daily_expenses: Decimal
    daily_transactions: int


def compute_dashboard_summary(
    inflows: Iterable[Any],
    expenses: Iterable[Any],
    today: date,
) -> DashboardSummary:
    """Totals over all given records, plus the figures for `today`."""
    inflows = list(inflows)
    expenses = list(expenses)

    total_inflow = _sum_amounts(inflows)
    total_expenses = sum((expense_total(e) for e in expenses), ZERO)

    todays_inflows = [i for i in inflows if _inflow_date(i) == today]
    todays_expenses = [e for e in expenses if _expense_date(e) == today]

    return DashboardSummary(
        current_balance=total_inflow - total_expenses,
        total_inflow=total_inflow,
        total_expenses=total_expenses,
        daily_inflow=_sum_amounts(todays_inflows),
        daily_expenses=sum((expense_total(e) for e in todays_expenses), ZERO),
        daily_transactions=len(todays_inflows) + len(todays_expenses),
    )


# =============================================================================
# CLOSING
# =============================================================================

def _closing_sort_key(closing: Any) -> tuple:
    closing_day = parse_date_safely(_get(closing, "closing_date", "date"))
    created = _get(closing, "created_at")
    created_text = created.isoformat() if isinstance(created, datetime) else str(created or "")
    return (closing_day or date.min, created_text)


def compute_initial_closing_balance(
    closings: Iterable[Any],
    inflows: Iterable[Any],
) -> Decimal:
    """
    Opening balance for the next closing.

    Final balance of the most recent closing; with no closing yet,
    the total of all inflows.
    """
    closings = list(closings)
    if closings:
        latest = max(closings, key=_closing_sort_key)
        return coerce_amount(_get(latest, "final_balance", "finalBalance"))
    return _sum_amounts(inflows)


def closing_difference(final_balance: Any, initial_balance: Any) -> Decimal:
    return coerce_amount(final_balance) - coerce_amount(initial_balance)


# =============================================================================
# PROJECTS
# =============================================================================

class ProjectSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str
    total_inflow: Decimal
    total_expenses: Decimal
    balance: Decimal
    inflow_count: int
    expense_count: int


def summarize_project(
    project_id: str,
    inflows: Iterable[Any],
    expenses: Iterable[Any],
) -> ProjectSummary:
    project_inflows = [i for i in inflows if _get(i, "project_id", "projectId") == project_id]
    project_expenses = [e for e in expenses if _get(e, "project_id", "projectId") == project_id]

    total_inflow = _sum_amounts(project_inflows)
    total_expenses = sum((expense_total(e) for e in project_expenses), ZERO)

    return ProjectSummary(
        project_id=project_id,
        total_inflow=total_inflow,
        total_expenses=total_expenses,
        balance=total_inflow - total_expenses,
        inflow_count=len(project_inflows),
        expense_count=len(project_expenses),
    )
