"""
Main Orchestrator for Cash Desk

This module ties together all the components and defines the
end-to-end flows for:
1. Catalog upkeep (projects, categories, articles, units, suppliers)
2. Cash inflows, expenses and PCA reimbursements
3. Closings, the dashboard and the history pages
4. Login and user administration

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every flow receives the session explicitly; nothing reads global state
- No write happens before the form has been validated
- Every successful create/update/delete writes one activity entry
- Multi-document writes are sequential; a failure midway leaves the
  documents already written in place (there are no transactions)
"""

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Type

import structlog
from pydantic import ValidationError

from cashdesk.access import (
    PermissionDeniedError,
    build_session,
    ensure_admin,
    ensure_can_modify,
    resolve_access_code,
)
from cashdesk.audit import ActivityLogger, configure_logging
from cashdesk.config import AccessSettings, get_settings
from cashdesk.ledger import (
    DashboardSummary,
    ProjectSummary,
    closing_difference,
    compute_dashboard_summary,
    compute_initial_closing_balance,
    compute_outstanding_balance,
    expense_reference_prefix,
    next_reference,
    summarize_project,
)
from cashdesk.models import (
    PCA_REIMBURSEMENT_PROJECT_ID,
    PCA_REIMBURSEMENT_PROJECT_NAME,
    ActivityLogBuilder,
    ActivityLogEntry,
    ActivityType,
    Article,
    CashInflow,
    Category,
    Closing,
    EntityType,
    Expense,
    ExpenseItem,
    ExpenseStatus,
    PCAReimbursement,
    Project,
    Role,
    SessionContext,
    StoredRecord,
    Supplier,
    Unit,
    UserProfile,
)
from cashdesk.models.entities import new_id, utcnow
from cashdesk.queries import (
    HistoryQuery,
    Page,
    activity_logs_to_csv,
    cash_inflows_to_csv,
    expenses_to_csv,
    filter_activity_logs,
    filter_cash_inflows,
    filter_expenses,
    run_query,
    sort_records,
)
from cashdesk.services.storage import (
    ActivityLogStorageInterface,
    DocumentStorageInterface,
    GoogleSheetsActivityLogStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    InMemoryActivityLogStorage,
    InMemoryDocumentStorage,
    NotFoundError,
    StorageError,
)
from cashdesk.validation import FormValidator, parse_decimal

logger = structlog.get_logger(__name__)

UNKNOWN_PROJECT = "Projet inconnu"

# Collection name -> model stored in it
COLLECTION_MODELS: dict[str, Type[StoredRecord]] = {
    "projects": Project,
    "categories": Category,
    "articles": Article,
    "units": Unit,
    "suppliers": Supplier,
    "cash_inflow": CashInflow,
    "expenses": Expense,
    "expense_items": ExpenseItem,
    "pca_reimbursements": PCAReimbursement,
    "closings": Closing,
    "users": UserProfile,
}

_BASE_FIELDS = set(StoredRecord.model_fields)


# =============================================================================
# STORAGE WIRING
# =============================================================================

class StorageBundle:
    """One storage object per collection, plus the activity log."""

    def __init__(
        self,
        collections: Mapping[str, DocumentStorageInterface],
        activity_logs: ActivityLogStorageInterface,
        backend: str,
    ):
        self._collections = dict(collections)
        self.activity_logs = activity_logs
        self.backend = backend

    def __getattr__(self, name: str) -> DocumentStorageInterface:
        try:
            return self.__dict__["_collections"][name]
        except KeyError:
            raise AttributeError(name) from None

    @classmethod
    def in_memory(cls) -> "StorageBundle":
        return cls(
            {name: InMemoryDocumentStorage(name) for name in COLLECTION_MODELS},
            InMemoryActivityLogStorage(),
            backend="memory",
        )

    @classmethod
    def google_sheets(cls, client: GoogleSheetsClient) -> "StorageBundle":
        return cls(
            {
                name: GoogleSheetsDocumentStorage(name, model_cls, client)
                for name, model_cls in COLLECTION_MODELS.items()
            },
            GoogleSheetsActivityLogStorage(client),
            backend="google_sheets",
        )


def _form_fields(model_cls: Type[StoredRecord], form: Mapping[str, Any]) -> dict[str, Any]:
    """
    Keep the form values that map onto model fields.

    Blank values fall back to the field default, so clearing an optional
    field on update really clears it.
    """
    data = {}
    for name, field in model_cls.model_fields.items():
        if name in _BASE_FIELDS or field.exclude or name not in form:
            continue
        value = form[name]
        if isinstance(value, str):
            value = value.strip()
        if value in ("", None):
            if field.is_required():
                continue
            value = field.get_default(call_default_factory=True)
        data[name] = value
    return data


def _merge(record: StoredRecord, changes: Mapping[str, Any]) -> StoredRecord:
    """Validated copy of `record` with `changes` applied."""
    data = record.model_dump()
    data.update(changes)
    data["updated_at"] = utcnow()
    return type(record).model_validate(data)


# =============================================================================
# BASE FLOW
# =============================================================================

class _Flow:
    """Shared wiring: storage, activity logging and validation."""

    def __init__(
        self,
        stores: StorageBundle,
        activity_logger: Optional[ActivityLogger] = None,
        validator: Optional[FormValidator] = None,
    ):
        self._stores = stores
        self._activity_logger = activity_logger or ActivityLogger(stores.activity_logs)
        self._validator = validator or FormValidator()

    @staticmethod
    def _require_session(session: Optional[SessionContext]) -> SessionContext:
        if session is None:
            raise PermissionDeniedError("Vous devez être connecté")
        return session

    async def _log(
        self,
        session: SessionContext,
        activity_type: ActivityType,
        entity_type: EntityType,
        record: StoredRecord,
        details: str,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> ActivityLogEntry:
        build = {
            ActivityType.CREATE: ActivityLogBuilder.created,
            ActivityType.UPDATE: ActivityLogBuilder.updated,
            ActivityType.DELETE: ActivityLogBuilder.deleted,
        }[activity_type]
        entry = build(
            session.user_id,
            session.actor_name,
            entity_type,
            record,
            details=details[:500],
            project_id=project_id,
            project_name=project_name,
        )
        await self._activity_logger.log(entry)
        return entry

    async def _project_names(self) -> dict[str, str]:
        projects = await self._stores.projects.list_all()
        names = {project.id: project.name for project in projects}
        names.setdefault(PCA_REIMBURSEMENT_PROJECT_ID, PCA_REIMBURSEMENT_PROJECT_NAME)
        return names

    async def _project_name(self, project_id: Optional[str]) -> str:
        if not project_id:
            return UNKNOWN_PROJECT
        return (await self._project_names()).get(project_id, UNKNOWN_PROJECT)

    async def _user_names(self) -> dict[str, str]:
        users = await self._stores.users.list_all()
        return {user.id: user.display_name or user.email for user in users}

    async def _get_or_raise(self, collection: str, record_id: str) -> StoredRecord:
        record = await getattr(self._stores, collection).get(record_id)
        if record is None:
            raise NotFoundError(f"{collection} document not found: {record_id}")
        return record

    async def _expenses_with_items(self) -> list[Expense]:
        """Every expense with its items attached."""
        expenses = await self._stores.expenses.list_all()
        items = await self._stores.expense_items.list_all()
        by_expense: dict[str, list[ExpenseItem]] = {}
        for item in items:
            by_expense.setdefault(item.expense_id, []).append(item)
        for expense in expenses:
            expense.items = by_expense.get(expense.id, [])
        return expenses


# =============================================================================
# CATALOG
# =============================================================================

class _CatalogKind:
    def __init__(
        self,
        collection: str,
        entity_type: EntityType,
        label: str,
        sort_field: str = "name",
        admin_only: bool = False,
    ):
        self.collection = collection
        self.entity_type = entity_type
        self.label = label
        self.sort_field = sort_field
        self.admin_only = admin_only


class CatalogFlow(_Flow):
    """
    Projects, categories, articles, units and suppliers.

    Anyone who can open the page may create entries; updates and deletes
    are restricted to admins and the entry's author.
    """

    KINDS = {
        "projects": _CatalogKind("projects", EntityType.PROJECT, "Projet"),
        "categories": _CatalogKind("categories", EntityType.CATEGORY, "Catégorie", admin_only=True),
        "articles": _CatalogKind("articles", EntityType.ARTICLE, "Article", sort_field="designation"),
        "units": _CatalogKind("units", EntityType.UNIT, "Unité"),
        "suppliers": _CatalogKind("suppliers", EntityType.SUPPLIER, "Fournisseur"),
    }

    def _kind(self, kind: str) -> _CatalogKind:
        try:
            return self.KINDS[kind]
        except KeyError:
            raise ValueError(f"Unknown catalog kind: {kind}") from None

    def _validate(self, kind: str, form: Mapping[str, Any]) -> None:
        if kind == "projects":
            result = self._validator.validate_project(form)
        elif kind == "articles":
            result = self._validator.validate_article(form)
        else:
            result = self._validator.validate_named(form)
        self._validator.ensure_valid(result)

    @staticmethod
    def _describe(record: StoredRecord) -> str:
        return getattr(record, "name", None) or getattr(record, "designation", "") or record.id

    async def list_entries(self, kind: str) -> list[StoredRecord]:
        catalog_kind = self._kind(kind)
        records = await getattr(self._stores, catalog_kind.collection).list_all()
        return sort_records(records, catalog_kind.sort_field, "asc")

    async def get(self, kind: str, record_id: str) -> Optional[StoredRecord]:
        return await getattr(self._stores, self._kind(kind).collection).get(record_id)

    async def create(
        self,
        session: Optional[SessionContext],
        kind: str,
        form: Mapping[str, Any],
    ) -> StoredRecord:
        session = self._require_session(session)
        catalog_kind = self._kind(kind)
        if catalog_kind.admin_only:
            ensure_admin(session)
        self._validate(kind, form)

        model_cls = COLLECTION_MODELS[catalog_kind.collection]
        record = model_cls(user_id=session.user_id, **_form_fields(model_cls, form))
        await getattr(self._stores, catalog_kind.collection).add(record)

        project_id = record.id if kind == "projects" else None
        await self._log(
            session, ActivityType.CREATE, catalog_kind.entity_type, record,
            f"{catalog_kind.label} créé: {self._describe(record)}",
            project_id=project_id,
            project_name=getattr(record, "name", None) if project_id else None,
        )
        return record

    async def update(
        self,
        session: Optional[SessionContext],
        kind: str,
        record_id: str,
        form: Mapping[str, Any],
    ) -> StoredRecord:
        session = self._require_session(session)
        catalog_kind = self._kind(kind)
        existing = await self._get_or_raise(catalog_kind.collection, record_id)
        ensure_can_modify(session, existing.user_id)
        self._validate(kind, form)

        updated = _merge(existing, _form_fields(type(existing), form))
        await getattr(self._stores, catalog_kind.collection).update(updated)

        project_id = updated.id if kind == "projects" else None
        await self._log(
            session, ActivityType.UPDATE, catalog_kind.entity_type, updated,
            f"{catalog_kind.label} modifié: {self._describe(updated)}",
            project_id=project_id,
            project_name=getattr(updated, "name", None) if project_id else None,
        )
        return updated

    async def delete(
        self,
        session: Optional[SessionContext],
        kind: str,
        record_id: str,
    ) -> None:
        session = self._require_session(session)
        catalog_kind = self._kind(kind)
        existing = await self._get_or_raise(catalog_kind.collection, record_id)
        ensure_can_modify(session, existing.user_id)

        await getattr(self._stores, catalog_kind.collection).delete(record_id)
        await self._log(
            session, ActivityType.DELETE, catalog_kind.entity_type, existing,
            f"{catalog_kind.label} supprimé: {self._describe(existing)}",
        )

    async def project_summary(
        self,
        session: Optional[SessionContext],
        project_id: str,
    ) -> tuple[Project, ProjectSummary]:
        """A project with its income, spending and balance over the visible records."""
        session = self._require_session(session)
        project = await self._get_or_raise("projects", project_id)
        inflows = await self._stores.cash_inflow.find(project_id=project_id)
        expenses = [e for e in await self._expenses_with_items() if e.project_id == project_id]
        if not session.has_full_access:
            inflows = [i for i in inflows if i.user_id == session.user_id]
            expenses = [e for e in expenses if e.user_id == session.user_id]
        return project, summarize_project(project_id, inflows, expenses)


# =============================================================================
# CASH INFLOWS
# =============================================================================

class CashInflowFlow(_Flow):
    """Money entering the cash desk."""

    @staticmethod
    def _fields(form: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "inflow_date": form.get("inflow_date"),
            "amount": parse_decimal(form.get("amount")),
            "source": str(form.get("source") or "").strip().lower(),
            "description": str(form.get("description") or "").strip(),
            "project_id": str(form.get("project_id") or "").strip(),
        }

    async def record(self, session: Optional[SessionContext], form: Mapping[str, Any]) -> CashInflow:
        session = self._require_session(session)
        self._validator.ensure_valid(self._validator.validate_cash_inflow(form))

        inflow = CashInflow(user_id=session.user_id, **self._fields(form))
        await self._stores.cash_inflow.add(inflow)

        project_name = await self._project_name(inflow.project_id)
        await self._log(
            session, ActivityType.CREATE, EntityType.CASH_INFLOW, inflow,
            f"Nouvelle entrée: {inflow.amount} ({inflow.source.label})",
            inflow.project_id, project_name,
        )
        return inflow

    async def update(
        self,
        session: Optional[SessionContext],
        inflow_id: str,
        form: Mapping[str, Any],
    ) -> CashInflow:
        session = self._require_session(session)
        existing = await self._get_or_raise("cash_inflow", inflow_id)
        ensure_can_modify(session, existing.user_id)
        self._validator.ensure_valid(self._validator.validate_cash_inflow(form))

        updated = _merge(existing, self._fields(form))
        await self._stores.cash_inflow.update(updated)

        project_name = await self._project_name(updated.project_id)
        await self._log(
            session, ActivityType.UPDATE, EntityType.CASH_INFLOW, updated,
            f"Entrée modifiée: {updated.amount} ({updated.source.label})",
            updated.project_id, project_name,
        )
        return updated

    async def delete(self, session: Optional[SessionContext], inflow_id: str) -> None:
        session = self._require_session(session)
        existing = await self._get_or_raise("cash_inflow", inflow_id)
        ensure_can_modify(session, existing.user_id)

        await self._stores.cash_inflow.delete(inflow_id)
        project_name = await self._project_name(existing.project_id)
        await self._log(
            session, ActivityType.DELETE, EntityType.CASH_INFLOW, existing,
            f"Entrée supprimée: {existing.amount} ({existing.source.label})",
            existing.project_id, project_name,
        )

    async def list_for(self, session: Optional[SessionContext]) -> list[CashInflow]:
        """Admins see every inflow; everyone else only their own."""
        session = self._require_session(session)
        inflows = await self._stores.cash_inflow.list_all()
        if not session.has_full_access:
            inflows = [i for i in inflows if i.user_id == session.user_id]
        return sort_records(inflows, "date", "desc")

    async def list_by_project(self, session: Optional[SessionContext], project_id: str) -> list[CashInflow]:
        return [i for i in await self.list_for(session) if i.project_id == project_id]

    async def _filtered(self, session: Optional[SessionContext], query: HistoryQuery) -> tuple[list[CashInflow], dict]:
        inflows = await self.list_for(session)
        names = await self._project_names()
        return filter_cash_inflows(inflows, query, names), names

    async def history(self, session: Optional[SessionContext], query: HistoryQuery) -> Page:
        inflows, _ = await self._filtered(session, query)
        return run_query(inflows, query)

    async def export_csv(self, session: Optional[SessionContext], query: HistoryQuery) -> str:
        inflows, names = await self._filtered(session, query)
        ordered = sort_records(inflows, query.sort_field, query.sort_direction)
        return cash_inflows_to_csv(ordered, names)


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseFlow(_Flow):
    """
    Expense headers and their line items.

    Creating an expense assigns the next DEP-YYYYMM-NNNN reference.
    Only admins may update or delete an expense.
    """

    def __init__(
        self,
        stores: StorageBundle,
        activity_logger: Optional[ActivityLogger] = None,
        validator: Optional[FormValidator] = None,
        reference_stem: str = "DEP",
        reference_width: int = 4,
    ):
        super().__init__(stores, activity_logger, validator)
        self._reference_stem = reference_stem
        self._reference_width = reference_width

    async def next_reference(self, on: date) -> str:
        prefix = expense_reference_prefix(on, self._reference_stem)
        expenses = await self._stores.expenses.list_all()
        return next_reference(
            (e.reference for e in expenses),
            prefix,
            width=self._reference_width,
        )

    async def _build_items(
        self,
        session: SessionContext,
        expense_id: str,
        rows: list[Mapping[str, Any]],
    ) -> list[ExpenseItem]:
        """Fill designation/reference/unit and supplier name from the catalog."""
        articles = {a.id: a for a in await self._stores.articles.list_all()}
        suppliers = {s.id: s for s in await self._stores.suppliers.list_all()}

        items = []
        for row in rows:
            article = articles.get(str(row.get("article_id") or ""))
            supplier = suppliers.get(str(row.get("supplier_id") or ""))
            items.append(ExpenseItem(
                user_id=session.user_id,
                expense_id=expense_id,
                article_id=str(row.get("article_id")),
                designation=row.get("designation") or (article.designation if article else ""),
                reference=row.get("reference") or (article.reference if article else ""),
                unit=row.get("unit") or (article.unit if article else ""),
                quantity=parse_decimal(row.get("quantity")),
                unit_price=parse_decimal(row.get("unit_price")),
                supplier=row.get("supplier") or (supplier.name if supplier else ""),
                supplier_id=str(row.get("supplier_id")),
                amount_given=parse_decimal(row.get("amount_given")) or Decimal("0"),
                beneficiary=(row.get("beneficiary") or None),
            ))
        return items

    async def load(self, expense_id: str) -> Optional[Expense]:
        """An expense with its items attached."""
        expense = await self._stores.expenses.get(expense_id)
        if expense is None:
            return None
        expense.items = await self._stores.expense_items.find(expense_id=expense_id)
        return expense

    async def list_for(self, session: Optional[SessionContext]) -> list[Expense]:
        """Admins see every expense; everyone else only their own."""
        session = self._require_session(session)
        expenses = await self._expenses_with_items()
        if not session.has_full_access:
            expenses = [e for e in expenses if e.user_id == session.user_id]
        return sort_records(expenses, "date", "desc")

    async def list_by_project(self, session: Optional[SessionContext], project_id: str) -> list[Expense]:
        return [e for e in await self.list_for(session) if e.project_id == project_id]

    async def create(self, session: Optional[SessionContext], form: Mapping[str, Any]) -> Expense:
        session = self._require_session(session)
        self._validator.ensure_valid(self._validator.validate_expense(form))

        header = Expense(
            user_id=session.user_id,
            expense_date=form.get("expense_date"),
            description=str(form.get("description") or "").strip(),
            project_id=str(form.get("project_id")).strip(),
            status=form.get("status") or ExpenseStatus.VALIDATED,
            pca_related=bool(form.get("pca_related", False)),
        )
        header.reference = await self.next_reference(header.expense_date)
        items = await self._build_items(session, header.id, list(form.get("items") or []))

        await self._stores.expenses.add(header)
        header.items = items
        for item in header.items:
            await self._stores.expense_items.add(item)

        project_name = await self._project_name(header.project_id)
        await self._log(
            session, ActivityType.CREATE, EntityType.EXPENSE, header,
            f"Nouvelle dépense créée: {header.reference}",
            header.project_id, project_name,
        )
        for item in header.items:
            await self._log(
                session, ActivityType.CREATE, EntityType.EXPENSE_ITEM, item,
                f"Item de dépense créé pour la dépense {header.reference}",
                header.project_id, project_name,
            )
        return header

    async def update(
        self,
        session: Optional[SessionContext],
        expense_id: str,
        form: Mapping[str, Any],
    ) -> Expense:
        """Replace header fields and items: old items are deleted, new ones added."""
        ensure_admin(session)
        self._validator.ensure_valid(self._validator.validate_expense(form))
        existing = await self.load(expense_id)
        if existing is None:
            raise NotFoundError(f"expenses document not found: {expense_id}")

        changes = {
            "expense_date": form.get("expense_date"),
            "description": str(form.get("description") or "").strip(),
            "project_id": str(form.get("project_id")).strip(),
        }
        if form.get("status"):
            changes["status"] = form.get("status")
        if "pca_related" in form:
            changes["pca_related"] = bool(form.get("pca_related"))
        updated = _merge(existing, changes)
        new_items = await self._build_items(session, updated.id, list(form.get("items") or []))
        await self._stores.expenses.update(updated)

        project_name = await self._project_name(updated.project_id)
        for old_item in existing.items:
            await self._stores.expense_items.delete(old_item.id)
            await self._log(
                session, ActivityType.DELETE, EntityType.EXPENSE_ITEM, old_item,
                f"Item de dépense supprimé lors de la mise à jour de la dépense {updated.reference}",
                updated.project_id, project_name,
            )

        updated.items = new_items
        for item in updated.items:
            await self._stores.expense_items.add(item)

        await self._log(
            session, ActivityType.UPDATE, EntityType.EXPENSE, updated,
            f"Dépense mise à jour: {updated.reference}",
            updated.project_id, project_name,
        )
        return updated

    async def delete(self, session: Optional[SessionContext], expense_id: str) -> None:
        """Items first, then the header; each deletion is logged."""
        ensure_admin(session)
        existing = await self.load(expense_id)
        if existing is None:
            raise NotFoundError(f"expenses document not found: {expense_id}")

        project_name = await self._project_name(existing.project_id)
        for item in existing.items:
            await self._stores.expense_items.delete(item.id)
            await self._log(
                session, ActivityType.DELETE, EntityType.EXPENSE_ITEM, item,
                f"Item de dépense supprimé suite à la suppression de la dépense {existing.reference}",
                existing.project_id, project_name,
            )

        await self._stores.expenses.delete(expense_id)
        await self._log(
            session, ActivityType.DELETE, EntityType.EXPENSE, existing,
            f"Dépense supprimée: {existing.reference}",
            existing.project_id, project_name,
        )

    async def set_status(
        self,
        session: Optional[SessionContext],
        expense_id: str,
        status: ExpenseStatus,
    ) -> Expense:
        ensure_admin(session)
        existing = await self.load(expense_id)
        if existing is None:
            raise NotFoundError(f"expenses document not found: {expense_id}")

        updated = _merge(existing, {"status": ExpenseStatus(status)})
        updated.items = existing.items
        await self._stores.expenses.update(updated)

        await self._log(
            session, ActivityType.UPDATE, EntityType.EXPENSE, updated,
            f"Statut de la dépense {updated.reference}: {updated.status.value}",
            updated.project_id, await self._project_name(updated.project_id),
        )
        return updated

    async def _filtered(self, session: Optional[SessionContext], query: HistoryQuery) -> tuple[list[Expense], dict]:
        expenses = await self.list_for(session)
        names = await self._project_names()
        return filter_expenses(expenses, query, names), names

    async def history(self, session: Optional[SessionContext], query: HistoryQuery) -> Page:
        expenses, _ = await self._filtered(session, query)
        return run_query(expenses, query)

    async def export_csv(self, session: Optional[SessionContext], query: HistoryQuery) -> str:
        expenses, names = await self._filtered(session, query)
        ordered = sort_records(expenses, query.sort_field, query.sort_direction)
        return expenses_to_csv(ordered, names, await self._user_names())


# =============================================================================
# PCA REIMBURSEMENTS
# =============================================================================

class PCAReimbursementFlow(_Flow):
    """
    Repayment of the PCA advance.

    A reimbursement writes, in order: the reimbursement record, a
    "Remboursement PCA" expense with a single item, and one activity entry.
    """

    async def current_debt(self) -> Decimal:
        inflows = await self._stores.cash_inflow.list_all()
        expenses = await self._expenses_with_items()
        reimbursements = await self._stores.pca_reimbursements.list_all()
        return compute_outstanding_balance(inflows, expenses, reimbursements)

    async def reimburse(
        self,
        session: Optional[SessionContext],
        form: Mapping[str, Any],
    ) -> PCAReimbursement:
        session = self._require_session(session)
        form = dict(form)
        form.setdefault("reimbursement_date", date.today())

        debt = await self.current_debt()
        self._validator.ensure_valid(self._validator.validate_reimbursement(form, debt))

        amount = parse_decimal(form.get("amount"))
        description = str(form.get("description") or "").strip()

        reimbursement = PCAReimbursement(
            user_id=session.user_id,
            amount=amount,
            reimbursement_date=form["reimbursement_date"],
            description=description,
        )
        await self._stores.pca_reimbursements.add(reimbursement)

        expense = Expense(
            user_id=session.user_id,
            expense_date=reimbursement.reimbursement_date,
            description=f"Remboursement PCA: {description}",
            project_id=PCA_REIMBURSEMENT_PROJECT_ID,
        )
        await self._stores.expenses.add(expense)

        item = ExpenseItem(
            user_id=session.user_id,
            expense_id=expense.id,
            article_id="pca_reimbursement",
            designation="Remboursement PCA",
            reference="PCA-RMB",
            quantity=Decimal("1"),
            unit="FCFA",
            unit_price=amount,
            supplier="PCA",
            supplier_id="pca_internal",
            amount_given=amount,
            beneficiary="PCA",
        )
        await self._stores.expense_items.add(item)

        await self._log(
            session, ActivityType.CREATE, EntityType.PCA_REIMBURSEMENT, reimbursement,
            f"Remboursement PCA: {description}",
            PCA_REIMBURSEMENT_PROJECT_ID, PCA_REIMBURSEMENT_PROJECT_NAME,
        )
        return reimbursement

    async def history(self) -> list[PCAReimbursement]:
        reimbursements = await self._stores.pca_reimbursements.list_all()
        return sort_records(reimbursements, "date", "desc")


# =============================================================================
# CLOSINGS
# =============================================================================

class ClosingFlow(_Flow):

    async def initial_balance(self) -> Decimal:
        closings = await self._stores.closings.list_all()
        inflows = await self._stores.cash_inflow.list_all()
        return compute_initial_closing_balance(closings, inflows)

    async def record(self, session: Optional[SessionContext], form: Mapping[str, Any]) -> Closing:
        session = self._require_session(session)
        self._validator.ensure_valid(self._validator.validate_closing(form))

        initial = await self.initial_balance()
        final = parse_decimal(form.get("final_balance"))
        closing = Closing(
            user_id=session.user_id,
            closing_date=form.get("closing_date"),
            initial_balance=initial,
            final_balance=final,
            difference=closing_difference(final, initial),
            notes=str(form.get("notes") or "").strip(),
        )
        await self._stores.closings.add(closing)

        await self._log(
            session, ActivityType.CREATE, EntityType.CLOSING, closing,
            f"Clôture du {closing.closing_date.isoformat()}: écart {closing.difference}",
        )
        return closing

    async def list_closings(self) -> list[Closing]:
        closings = await self._stores.closings.list_all()
        return sort_records(closings, "date", "desc")


# =============================================================================
# USERS
# =============================================================================

class UserAdminFlow(_Flow):
    """User administration. Every operation is admin only."""

    async def list_users(self, session: Optional[SessionContext]) -> list[UserProfile]:
        ensure_admin(session)
        users = await self._stores.users.list_all()
        return sort_records(users, "email", "asc")

    async def _change(
        self,
        session: Optional[SessionContext],
        user_id: str,
        changes: dict[str, Any],
        details: str,
    ) -> UserProfile:
        ensure_admin(session)
        existing = await self._get_or_raise("users", user_id)
        updated = _merge(existing, changes)
        await self._stores.users.update(updated)
        await self._log(session, ActivityType.UPDATE, EntityType.USER, updated, details)
        return updated

    async def set_role(self, session: Optional[SessionContext], user_id: str, role: Any) -> UserProfile:
        self._validator.ensure_valid(self._validator.validate_role(role))
        role = Role.parse(role)
        return await self._change(
            session, user_id,
            {"role": role},
            f"Rôle modifié: {role.value or 'aucun'}",
        )

    async def set_admin(self, session: Optional[SessionContext], user_id: str, is_admin: bool) -> UserProfile:
        return await self._change(
            session, user_id,
            {"is_admin": bool(is_admin)},
            "Droits administrateur accordés" if is_admin else "Droits administrateur retirés",
        )

    async def set_access_flags(
        self,
        session: Optional[SessionContext],
        user_id: str,
        access_entries: bool,
        access_expenses: bool,
        access_history: bool,
    ) -> UserProfile:
        return await self._change(
            session, user_id,
            {
                "access_entries": bool(access_entries),
                "access_expenses": bool(access_expenses),
                "access_history": bool(access_history),
            },
            "Accès modifiés",
        )

    async def delete_user(self, session: Optional[SessionContext], user_id: str) -> None:
        ensure_admin(session)
        existing = await self._get_or_raise("users", user_id)
        if existing.id == session.user_id:
            raise PermissionDeniedError("Vous ne pouvez pas supprimer votre propre compte")
        await self._stores.users.delete(user_id)
        await self._log(
            session, ActivityType.DELETE, EntityType.USER, existing,
            f"Utilisateur supprimé: {existing.email}",
        )


# =============================================================================
# DASHBOARD / ACTIVITY HISTORY
# =============================================================================

class DashboardFlow(_Flow):

    async def summary(
        self,
        session: Optional[SessionContext],
        today: Optional[date] = None,
    ) -> DashboardSummary:
        """Admins see the whole cash desk; everyone else their own records."""
        session = self._require_session(session)
        inflows = await self._stores.cash_inflow.list_all()
        expenses = await self._expenses_with_items()
        if not session.has_full_access:
            inflows = [i for i in inflows if i.user_id == session.user_id]
            expenses = [e for e in expenses if e.user_id == session.user_id]
        return compute_dashboard_summary(inflows, expenses, today or date.today())

    async def project_summaries(self, session: Optional[SessionContext]) -> list[tuple[Project, ProjectSummary]]:
        self._require_session(session)
        projects = sort_records(await self._stores.projects.list_all(), "name", "asc")
        inflows = await self._stores.cash_inflow.list_all()
        expenses = await self._expenses_with_items()
        return [(p, summarize_project(p.id, inflows, expenses)) for p in projects]


class ActivityHistoryFlow(_Flow):
    """Admin-only view over the activity log."""

    async def _filtered(self, session: Optional[SessionContext], query: HistoryQuery) -> list[ActivityLogEntry]:
        ensure_admin(session)
        entries = await self._stores.activity_logs.list_entries()
        return filter_activity_logs(entries, query)

    async def history(self, session: Optional[SessionContext], query: HistoryQuery) -> Page:
        return run_query(await self._filtered(session, query), query)

    async def export_csv(self, session: Optional[SessionContext], query: HistoryQuery) -> str:
        entries = await self._filtered(session, query)
        return activity_logs_to_csv(sort_records(entries, query.sort_field, query.sort_direction))

    async def entity_history(
        self,
        session: Optional[SessionContext],
        entity_type: EntityType,
        entity_id: str,
    ) -> list[ActivityLogEntry]:
        ensure_admin(session)
        return await self._stores.activity_logs.get_entries_by_entity(entity_type, entity_id)


# =============================================================================
# LOGIN
# =============================================================================

class AuthFlow(_Flow):
    """Email + access code login."""

    def __init__(
        self,
        stores: StorageBundle,
        access_settings: Optional[AccessSettings] = None,
    ):
        super().__init__(stores)
        self._access_settings = access_settings or get_settings().access

    async def login(
        self,
        email: str,
        access_code: str,
        display_name: str = "",
    ) -> SessionContext:
        """
        Check the access code, create or refresh the user profile and
        return the session snapshot.
        """
        self._validator.ensure_valid(self._validator.validate_login({"email": email}))
        email = email.strip().lower()
        role, is_admin = resolve_access_code(access_code, self._access_settings)

        matches = await self._stores.users.find(email=email)
        if matches:
            profile = matches[0]
            changes: dict[str, Any] = {"last_login": utcnow()}
            if display_name:
                changes["display_name"] = display_name.strip()
            if is_admin:
                changes.update(is_admin=True, role=Role.ADMIN)
            profile = _merge(profile, changes)
            await self._stores.users.update(profile)
        else:
            profile_id = new_id()
            profile = UserProfile(
                id=profile_id,
                user_id=profile_id,
                email=email,
                display_name=(display_name or "").strip() or email.split("@")[0],
                role=role,
                is_admin=is_admin,
                last_login=utcnow(),
            )
            await self._stores.users.add(profile)

        session = build_session(profile, role, is_admin)
        logger.info(
            "login",
            user_id=session.user_id,
            role=session.role.value,
            is_admin=session.is_admin,
        )
        return session


# =============================================================================
# FACTORY
# =============================================================================

class AppComponents:
    """Every flow, wired to one storage bundle."""

    def __init__(
        self,
        stores: StorageBundle,
        activity_logger: ActivityLogger,
        validator: FormValidator,
        access_settings: AccessSettings,
        reference_stem: str = "DEP",
        reference_width: int = 4,
        sheets_client: Optional[GoogleSheetsClient] = None,
    ):
        self.stores = stores
        self.sheets_client = sheets_client
        self.activity_logger = activity_logger

        shared = dict(stores=stores, activity_logger=activity_logger, validator=validator)
        self.catalog = CatalogFlow(**shared)
        self.inflows = CashInflowFlow(**shared)
        self.expenses = ExpenseFlow(
            **shared,
            reference_stem=reference_stem,
            reference_width=reference_width,
        )
        self.reimbursements = PCAReimbursementFlow(**shared)
        self.closings = ClosingFlow(**shared)
        self.users = UserAdminFlow(**shared)
        self.dashboard = DashboardFlow(**shared)
        self.activity = ActivityHistoryFlow(**shared)
        self.auth = AuthFlow(stores, access_settings)

    @property
    def storage_backend(self) -> str:
        return self.stores.backend


def create_app_components(use_storage: bool = True) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage; the
                    in-memory backend is used instead.
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)

    sheets_client = None
    stores = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.get_spreadsheet()
            stores = StorageBundle.google_sheets(sheets_client)
        except (StorageError, ValidationError) as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None

    if stores is None:
        stores = StorageBundle.in_memory()

    activity_logger = ActivityLogger(
        stores.activity_logs,
        strict=app_settings.strict_activity_logging,
    )

    return AppComponents(
        stores=stores,
        activity_logger=activity_logger,
        validator=FormValidator(max_amount=app_settings.max_amount),
        access_settings=settings.access,
        reference_stem=app_settings.expense_reference_stem,
        reference_width=app_settings.reference_width,
        sheets_client=sheets_client,
    )
