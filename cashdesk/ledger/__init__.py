"""
Ledger arithmetic: balances, dashboard figures and reference codes.
"""

from cashdesk.ledger.balance import (
    DashboardSummary,
    ProjectSummary,
    closing_difference,
    coerce_amount,
    compute_dashboard_summary,
    compute_initial_closing_balance,
    compute_outstanding_balance,
    expense_total,
    item_amount,
    parse_date_safely,
    summarize_project,
)
from cashdesk.ledger.references import (
    expense_reference_prefix,
    next_reference,
    parse_counter,
)

__all__ = [
    "DashboardSummary",
    "ProjectSummary",
    "closing_difference",
    "coerce_amount",
    "compute_dashboard_summary",
    "compute_initial_closing_balance",
    "compute_outstanding_balance",
    "expense_total",
    "item_amount",
    "parse_date_safely",
    "summarize_project",
    "expense_reference_prefix",
    "next_reference",
    "parse_counter",
]
