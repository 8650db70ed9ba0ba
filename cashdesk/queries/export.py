"""
CSV Export

History tables export what the user currently sees (after filters)
as CSV text. Column headers are in French, as shown in the UI.
"""

import csv
import io
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from cashdesk.models.audit import ActivityLogEntry
from cashdesk.models.entities import CashInflow, Expense

INFLOW_HEADERS = ["Date", "Montant", "Source", "Description", "Projet"]
EXPENSE_HEADERS = ["Date", "Référence", "Description", "Projet", "Utilisateur", "Articles", "Total"]
ACTIVITY_HEADERS = [
    "Date",
    "Utilisateur",
    "Type d'activité",
    "Type d'entité",
    "ID Entité",
    "Détails",
    "Projet",
]

ACTIVITY_TYPE_LABELS = {
    "create": "Création",
    "update": "Modification",
    "delete": "Suppression",
}


def format_amount(amount: Decimal) -> str:
    """Plain two-decimal amount, no thousands separator."""
    return f"{amount:.2f}"


def export_filename(stem: str, now: Optional[datetime] = None) -> str:
    """e.g. historique_entrees_2024-01-31.csv"""
    now = now or datetime.now()
    return f"{stem}_{now.strftime('%Y-%m-%d')}.csv"


def _render(headers: list[str], rows: Iterable[list]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return output.getvalue()


def cash_inflows_to_csv(
    inflows: Iterable[CashInflow],
    project_names: Optional[Mapping[str, str]] = None,
) -> str:
    project_names = project_names or {}
    return _render(INFLOW_HEADERS, (
        [
            inflow.inflow_date.isoformat(),
            format_amount(inflow.amount),
            inflow.source.label,
            inflow.description,
            project_names.get(inflow.project_id, inflow.project_id),
        ]
        for inflow in inflows
    ))


def expenses_to_csv(
    expenses: Iterable[Expense],
    project_names: Optional[Mapping[str, str]] = None,
    user_names: Optional[Mapping[str, str]] = None,
) -> str:
    """One row per expense; items are listed as "designation x quantity"."""
    project_names = project_names or {}
    user_names = user_names or {}
    return _render(EXPENSE_HEADERS, (
        [
            expense.expense_date.isoformat(),
            expense.reference,
            expense.description,
            project_names.get(expense.project_id, expense.project_id),
            user_names.get(expense.user_id, expense.user_id),
            "; ".join(f"{item.designation} x {item.quantity}" for item in expense.items),
            format_amount(expense.total),
        ]
        for expense in expenses
    ))


def activity_logs_to_csv(entries: Iterable[ActivityLogEntry]) -> str:
    return _render(ACTIVITY_HEADERS, (
        [
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.user_name,
            ACTIVITY_TYPE_LABELS.get(entry.activity_type.value, entry.activity_type.value),
            entry.entity_type.value,
            entry.entity_id,
            entry.details,
            entry.project_name or "",
        ]
        for entry in entries
    ))
