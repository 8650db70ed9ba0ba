"""
History Queries

DESIGN DECISION: History pages fetch whole collections and filter,
sort and paginate in Python. Collections are small (one organization's
books), so this keeps storage a plain document store.

Filtering is DETERMINISTIC and never touches storage: the flows load the
records, these functions narrow them down.
"""

from datetime import date
from enum import Enum
from typing import Any, Generic, Iterable, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from cashdesk.ledger.balance import parse_date_safely
from cashdesk.models.audit import ActivityLogEntry, ActivityType, EntityType
from cashdesk.models.entities import CashInflow, Expense, InflowSource

T = TypeVar("T")


class HistoryQuery(BaseModel):
    """Filters, sort order and page of a history table."""
    model_config = ConfigDict(str_strip_whitespace=True)

    search: str = ""
    project_id: Optional[str] = None
    user_id: Optional[str] = None
    source: Optional[InflowSource] = None
    entity_type: Optional[EntityType] = None
    activity_type: Optional[ActivityType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    sort_field: str = "date"
    sort_direction: str = Field(default="desc", pattern="^(asc|desc)$")

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=500)


class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    page_size: int
    total_count: int
    total_pages: int

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


# =============================================================================
# HELPERS
# =============================================================================

def _in_range(day: Optional[date], query: HistoryQuery) -> bool:
    if query.date_from is None and query.date_to is None:
        return True
    if day is None:
        return False
    if query.date_from and day < query.date_from:
        return False
    if query.date_to and day > query.date_to:
        return False
    return True


def _matches_search(needle: str, *haystacks: Optional[str]) -> bool:
    if not needle:
        return True
    needle = needle.lower()
    return any(needle in (text or "").lower() for text in haystacks)


# =============================================================================
# FILTERS
# =============================================================================

def filter_cash_inflows(
    inflows: Iterable[CashInflow],
    query: HistoryQuery,
    project_names: Optional[Mapping[str, str]] = None,
) -> list[CashInflow]:
    """Apply project, user, source, date range and free-text filters."""
    project_names = project_names or {}
    results = []
    for inflow in inflows:
        if query.project_id and inflow.project_id != query.project_id:
            continue
        if query.user_id and inflow.user_id != query.user_id:
            continue
        if query.source and inflow.source != query.source:
            continue
        if not _in_range(inflow.inflow_date, query):
            continue
        if not _matches_search(
            query.search,
            inflow.description,
            inflow.source.label,
            project_names.get(inflow.project_id),
            str(inflow.amount),
        ):
            continue
        results.append(inflow)
    return results


def filter_expenses(
    expenses: Iterable[Expense],
    query: HistoryQuery,
    project_names: Optional[Mapping[str, str]] = None,
) -> list[Expense]:
    """Search covers reference, description, project name and item designations."""
    project_names = project_names or {}
    results = []
    for expense in expenses:
        if query.project_id and expense.project_id != query.project_id:
            continue
        if query.user_id and expense.user_id != query.user_id:
            continue
        if not _in_range(expense.expense_date, query):
            continue
        if not _matches_search(
            query.search,
            expense.reference,
            expense.description,
            project_names.get(expense.project_id),
            *(item.designation for item in expense.items),
            *(item.supplier for item in expense.items),
        ):
            continue
        results.append(expense)
    return results


def filter_activity_logs(
    entries: Iterable[ActivityLogEntry],
    query: HistoryQuery,
) -> list[ActivityLogEntry]:
    results = []
    for entry in entries:
        if query.user_id and entry.user_id != query.user_id:
            continue
        if query.project_id and entry.project_id != query.project_id:
            continue
        if query.entity_type and entry.entity_type != query.entity_type:
            continue
        if query.activity_type and entry.activity_type != query.activity_type:
            continue
        if not _in_range(parse_date_safely(entry.timestamp), query):
            continue
        if not _matches_search(
            query.search,
            entry.user_name,
            entry.details,
            entry.project_name,
            entry.entity_id,
        ):
            continue
        results.append(entry)
    return results


# =============================================================================
# SORT / PAGINATE
# =============================================================================

# Generic sort names -> record attribute, tried in order
_SORT_ALIASES = {
    "date": ("inflow_date", "expense_date", "reimbursement_date", "closing_date", "timestamp", "created_at"),
    "amount": ("amount", "total"),
}


def _sort_value(record: Any, field: str) -> Any:
    for name in _SORT_ALIASES.get(field, (field,)):
        if hasattr(record, name):
            value = getattr(record, name)
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, str):
                return value.lower()
            return value
    return None


def sort_records(records: Sequence[T], field: str = "date", direction: str = "desc") -> list[T]:
    """
    Sort by `field`; records missing the field always go last.

    The generic names "date" and "amount" resolve to the record's own
    date or amount attribute.
    """
    present = [r for r in records if _sort_value(r, field) is not None]
    missing = [r for r in records if _sort_value(r, field) is None]
    present.sort(key=lambda r: _sort_value(r, field), reverse=(direction == "desc"))
    return present + missing


def paginate(records: Sequence[T], page: int = 1, page_size: int = 10) -> Page[T]:
    """Slice one page; out-of-range pages are clamped to the nearest valid one."""
    page_size = max(1, page_size)
    total_count = len(records)
    total_pages = max(1, -(-total_count // page_size))
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    return Page(
        items=list(records[start:start + page_size]),
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=total_pages,
    )


def run_query(
    records: Sequence[T],
    query: HistoryQuery,
) -> Page[T]:
    """Sort then paginate already filtered records."""
    ordered = sort_records(records, query.sort_field, query.sort_direction)
    return paginate(ordered, query.page, query.page_size)
