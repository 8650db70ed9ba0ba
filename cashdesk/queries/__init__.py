"""History query and export package."""

from cashdesk.queries.export import (
    activity_logs_to_csv,
    cash_inflows_to_csv,
    expenses_to_csv,
    export_filename,
)
from cashdesk.queries.history import (
    HistoryQuery,
    Page,
    filter_activity_logs,
    filter_cash_inflows,
    filter_expenses,
    paginate,
    run_query,
    sort_records,
)

__all__ = [
    "activity_logs_to_csv",
    "cash_inflows_to_csv",
    "expenses_to_csv",
    "export_filename",
    "HistoryQuery",
    "Page",
    "filter_activity_logs",
    "filter_cash_inflows",
    "filter_expenses",
    "paginate",
    "run_query",
    "sort_records",
]
