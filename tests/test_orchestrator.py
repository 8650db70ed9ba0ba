"""
Integration tests for the flows, over in-memory storage.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from cashdesk.access import AccessCodeRejectedError, PermissionDeniedError
from cashdesk.audit import ActivityLogger
from cashdesk.config import AccessSettings
from cashdesk.models import (
    PCA_REIMBURSEMENT_PROJECT_ID,
    ActivityType,
    EntityType,
    ExpenseStatus,
    Role,
    SessionContext,
)
from cashdesk.orchestrator import AppComponents, StorageBundle
from cashdesk.queries import HistoryQuery
from cashdesk.services.storage import NotFoundError
from cashdesk.validation import FormValidator, ValidationFailedError


def run(coro):
    return asyncio.run(coro)


ADMIN = SessionContext(user_id="admin-1", display_name="Admin", is_admin=True, role=Role.ADMIN)
CASHIER = SessionContext(user_id="user-1", display_name="Awa", role=Role.USER, access_entries=True)
BUYER = SessionContext(user_id="user-2", display_name="Moussa", role=Role.EXPENSES)


@pytest.fixture
def components():
    stores = StorageBundle.in_memory()
    return AppComponents(
        stores=stores,
        activity_logger=ActivityLogger(stores.activity_logs),
        validator=FormValidator(max_amount=1_000_000_000),
        access_settings=AccessSettings(admin_code="ADMIN-CODE", user_code="USER-CODE"),
    )


@pytest.fixture
def catalog(components):
    """One project, article and supplier."""
    project = run(components.catalog.create(ADMIN, "projects", {"name": "Forage Nord"}))
    article = run(components.catalog.create(ADMIN, "articles", {
        "designation": "Ciment", "reference": "CIM-01", "unit": "sac",
    }))
    supplier = run(components.catalog.create(ADMIN, "suppliers", {"name": "Quincaillerie Diallo"}))
    return project, article, supplier


def expense_form(catalog, day=date(2024, 1, 12), **extra):
    project, article, supplier = catalog
    form = {
        "expense_date": day,
        "project_id": project.id,
        "description": "Achat chantier",
        "items": [
            {"article_id": article.id, "supplier_id": supplier.id, "quantity": "2", "unit_price": "5000"},
            {"article_id": article.id, "supplier_id": supplier.id, "quantity": "1", "unit_price": "250"},
        ],
    }
    form.update(extra)
    return form


def activity(components):
    return run(components.stores.activity_logs.list_entries())


def entries_since(components, before):
    """Activity entries written after `before` was taken."""
    seen = {e.id for e in before}
    return [e for e in activity(components) if e.id not in seen]


class TestAuthFlow:
    """Tests for login."""

    def test_first_login_creates_profile(self, components):
        session = run(components.auth.login("Awa@Example.org", "USER-CODE", "Awa"))

        users = run(components.stores.users.list_all())
        assert len(users) == 1
        assert users[0].email == "awa@example.org"
        assert session.user_id == users[0].id
        assert session.role == Role.USER
        assert session.is_admin is False

    def test_admin_code(self, components):
        session = run(components.auth.login("chef@example.org", "ADMIN-CODE"))
        assert session.has_full_access is True

    def test_user_code_after_admin_login_is_not_admin(self, components):
        run(components.auth.login("chef@example.org", "ADMIN-CODE"))
        session = run(components.auth.login("chef@example.org", "USER-CODE"))

        assert session.is_admin is False
        assert session.has_full_access is False
        assert len(run(components.stores.users.list_all())) == 1

    def test_wrong_code_rejected(self, components):
        with pytest.raises(AccessCodeRejectedError):
            run(components.auth.login("awa@example.org", "guess"))
        assert run(components.stores.users.list_all()) == []

    def test_invalid_email_rejected(self, components):
        with pytest.raises(ValidationFailedError):
            run(components.auth.login("not-an-email", "USER-CODE"))

    def test_assigned_role_kept_on_login(self, components):
        session = run(components.auth.login("pca@example.org", "USER-CODE"))
        run(components.users.set_role(ADMIN, session.user_id, "pca"))
        run(components.users.set_access_flags(ADMIN, session.user_id, False, False, True))

        again = run(components.auth.login("pca@example.org", "USER-CODE"))
        assert again.role == Role.PCA
        assert again.access_history is True


class TestCatalogFlow:

    def test_create_logs_activity(self, components, catalog):
        entries = activity(components)
        assert len(entries) == 3
        assert {e.activity_type for e in entries} == {ActivityType.CREATE}

    def test_categories_are_admin_only(self, components):
        with pytest.raises(PermissionDeniedError):
            run(components.catalog.create(BUYER, "categories", {"name": "Matériaux"}))
        run(components.catalog.create(ADMIN, "categories", {"name": "Matériaux"}))
        assert len(run(components.catalog.list_entries("categories"))) == 1

    def test_only_author_or_admin_modifies(self, components):
        unit = run(components.catalog.create(BUYER, "units", {"name": "sac"}))
        with pytest.raises(PermissionDeniedError):
            run(components.catalog.update(CASHIER, "units", unit.id, {"name": "tonne"}))

        updated = run(components.catalog.update(BUYER, "units", unit.id, {"name": "tonne"}))
        assert updated.name == "tonne"
        run(components.catalog.delete(ADMIN, "units", unit.id))
        assert run(components.catalog.list_entries("units")) == []

    def test_invalid_form_writes_nothing(self, components):
        with pytest.raises(ValidationFailedError):
            run(components.catalog.create(ADMIN, "articles", {"designation": "Ciment"}))
        assert run(components.catalog.list_entries("articles")) == []
        assert activity(components) == []

    def test_entries_sorted_by_name(self, components):
        for name in ("kg", "Litre", "carton"):
            run(components.catalog.create(ADMIN, "units", {"name": name}))
        names = [u.name for u in run(components.catalog.list_entries("units"))]
        assert names == ["carton", "kg", "Litre"]

    def test_no_session(self, components):
        with pytest.raises(PermissionDeniedError):
            run(components.catalog.create(None, "units", {"name": "kg"}))


class TestCashInflowFlow:

    def test_record_and_visibility(self, components, catalog):
        project = catalog[0]
        run(components.inflows.record(CASHIER, {
            "inflow_date": date(2024, 1, 5), "amount": "1000", "source": "bank", "project_id": project.id,
        }))
        run(components.inflows.record(ADMIN, {
            "inflow_date": date(2024, 1, 6), "amount": "500", "source": "pca", "project_id": project.id,
        }))

        assert len(run(components.inflows.list_for(CASHIER))) == 1
        assert len(run(components.inflows.list_for(ADMIN))) == 2

        entries = [e for e in activity(components) if e.entity_type == EntityType.CASH_INFLOW]
        assert len(entries) == 2
        assert {e.project_name for e in entries} == {"Forage Nord"}

    def test_other_user_cannot_delete(self, components, catalog):
        inflow = run(components.inflows.record(CASHIER, {
            "inflow_date": "2024-01-05", "amount": "1000", "source": "bank", "project_id": catalog[0].id,
        }))
        with pytest.raises(PermissionDeniedError):
            run(components.inflows.delete(BUYER, inflow.id))
        run(components.inflows.delete(CASHIER, inflow.id))
        assert run(components.inflows.list_for(ADMIN)) == []

    def test_history_and_export(self, components, catalog):
        for day in (1, 2, 3):
            run(components.inflows.record(CASHIER, {
                "inflow_date": date(2024, 1, day), "amount": str(day * 100),
                "source": "bank", "project_id": catalog[0].id,
            }))
        page = run(components.inflows.history(CASHIER, HistoryQuery(page_size=2)))
        assert page.total_count == 3
        assert [i.inflow_date.day for i in page.items] == [3, 2]

        csv_text = run(components.inflows.export_csv(CASHIER, HistoryQuery()))
        assert csv_text.splitlines()[1].startswith("2024-01-03,300.00,Compte bancaire")


class TestExpenseFlow:
    """Tests for expenses and their items."""

    def test_references_are_sequential_per_month(self, components, catalog):
        first = run(components.expenses.create(BUYER, expense_form(catalog)))
        second = run(components.expenses.create(BUYER, expense_form(catalog)))
        february = run(components.expenses.create(BUYER, expense_form(catalog, day=date(2024, 2, 1))))

        assert first.reference == "DEP-202401-0001"
        assert second.reference == "DEP-202401-0002"
        assert february.reference == "DEP-202402-0001"

    def test_items_filled_from_catalog(self, components, catalog):
        expense = run(components.expenses.create(BUYER, expense_form(catalog)))
        loaded = run(components.expenses.load(expense.id))

        assert loaded.total == Decimal("10250")
        assert {item.designation for item in loaded.items} == {"Ciment"}
        assert {item.supplier for item in loaded.items} == {"Quincaillerie Diallo"}

    def test_create_logs_header_and_items(self, components, catalog):
        before = activity(components)
        run(components.expenses.create(BUYER, expense_form(catalog)))
        new_entries = entries_since(components, before)

        kinds = sorted(e.entity_type.value for e in new_entries)
        assert kinds == ["expense", "expense_item", "expense_item"]

    def test_delete_logs_items_then_header(self, components, catalog):
        expense = run(components.expenses.create(BUYER, expense_form(catalog)))
        before = len(activity(components))

        run(components.expenses.delete(ADMIN, expense.id))

        deletions = [e for e in activity(components) if e.activity_type == ActivityType.DELETE]
        assert len(activity(components)) - before == 3
        assert len(deletions) == 3
        assert run(components.stores.expense_items.list_all()) == []
        assert run(components.expenses.load(expense.id)) is None

    def test_only_admin_updates_or_deletes(self, components, catalog):
        expense = run(components.expenses.create(BUYER, expense_form(catalog)))
        with pytest.raises(PermissionDeniedError):
            run(components.expenses.delete(BUYER, expense.id))
        with pytest.raises(PermissionDeniedError):
            run(components.expenses.update(BUYER, expense.id, expense_form(catalog)))

    def test_update_replaces_items(self, components, catalog):
        expense = run(components.expenses.create(BUYER, expense_form(catalog)))
        form = expense_form(catalog, description="Achat corrigé")
        form["items"] = form["items"][:1]

        updated = run(components.expenses.update(ADMIN, expense.id, form))

        assert updated.reference == expense.reference
        assert updated.description == "Achat corrigé"
        assert len(run(components.stores.expense_items.list_all())) == 1
        assert run(components.expenses.load(expense.id)).total == Decimal("10000")

    def test_delete_missing(self, components):
        with pytest.raises(NotFoundError):
            run(components.expenses.delete(ADMIN, "nope"))

    def test_visibility(self, components, catalog):
        run(components.expenses.create(BUYER, expense_form(catalog)))
        run(components.expenses.create(ADMIN, expense_form(catalog)))
        assert len(run(components.expenses.list_for(BUYER))) == 1
        assert len(run(components.expenses.list_for(ADMIN))) == 2

    def test_history_search_on_item(self, components, catalog):
        run(components.expenses.create(BUYER, expense_form(catalog)))
        page = run(components.expenses.history(ADMIN, HistoryQuery(search="ciment")))
        assert page.total_count == 1

    def test_price_beyond_cents_writes_nothing(self, components, catalog):
        """Test that a rejected line leaves no header, item or activity behind."""
        form = expense_form(catalog)
        form["items"][0]["unit_price"] = "10.005"
        before = activity(components)

        with pytest.raises(ValidationFailedError):
            run(components.expenses.create(BUYER, form))

        assert run(components.stores.expenses.list_all()) == []
        assert run(components.stores.expense_items.list_all()) == []
        assert entries_since(components, before) == []
        first = run(components.expenses.create(BUYER, expense_form(catalog)))
        assert first.reference == "DEP-202401-0001"

    def test_rejected_update_keeps_items(self, components, catalog):
        expense = run(components.expenses.create(BUYER, expense_form(catalog)))
        form = expense_form(catalog, description="Achat corrigé")
        form["items"][1]["unit_price"] = "1.999"

        with pytest.raises(ValidationFailedError):
            run(components.expenses.update(ADMIN, expense.id, form))

        loaded = run(components.expenses.load(expense.id))
        assert loaded.description == "Achat chantier"
        assert loaded.total == Decimal("10250")


class TestProjectDetail:
    """Tests for the per-project summary and record lists."""

    def record_both(self, components, catalog):
        project = catalog[0]
        other = run(components.catalog.create(ADMIN, "projects", {"name": "Puits Sud"}))
        for session, amount in ((CASHIER, "1000"), (ADMIN, "400")):
            run(components.inflows.record(session, {
                "inflow_date": date(2024, 1, 5), "amount": amount, "source": "bank", "project_id": project.id,
            }))
        run(components.inflows.record(ADMIN, {
            "inflow_date": date(2024, 1, 5), "amount": "99", "source": "bank", "project_id": other.id,
        }))
        run(components.expenses.create(ADMIN, expense_form(catalog)))
        return project

    def test_admin_summary_covers_every_record(self, components, catalog):
        project = self.record_both(components, catalog)

        found, summary = run(components.catalog.project_summary(ADMIN, project.id))

        assert found.name == "Forage Nord"
        assert summary.total_inflow == Decimal("1400")
        assert summary.total_expenses == Decimal("10250")
        assert summary.balance == Decimal("-8850")
        assert summary.inflow_count == 2
        assert summary.expense_count == 1

    def test_user_sees_own_records_only(self, components, catalog):
        project = self.record_both(components, catalog)

        _, summary = run(components.catalog.project_summary(CASHIER, project.id))
        inflows = run(components.inflows.list_by_project(CASHIER, project.id))

        assert summary.total_inflow == Decimal("1000")
        assert summary.expense_count == 0
        assert [i.amount for i in inflows] == [Decimal("1000")]
        assert run(components.expenses.list_by_project(CASHIER, project.id)) == []

    def test_lists_filtered_by_project(self, components, catalog):
        project = self.record_both(components, catalog)

        inflows = run(components.inflows.list_by_project(ADMIN, project.id))
        expenses = run(components.expenses.list_by_project(ADMIN, project.id))

        assert {i.project_id for i in inflows} == {project.id}
        assert len(inflows) == 2
        assert len(expenses) == 1

    def test_unknown_project(self, components):
        with pytest.raises(NotFoundError):
            run(components.catalog.project_summary(ADMIN, "nope"))

    def test_requires_session(self, components, catalog):
        with pytest.raises(PermissionDeniedError):
            run(components.inflows.list_by_project(None, catalog[0].id))


class TestPCAReimbursementFlow:
    """Tests for PCA debt and reimbursements."""

    @pytest.fixture
    def pca_advance(self, components, catalog):
        run(components.inflows.record(ADMIN, {
            "inflow_date": date(2024, 1, 2), "amount": "500", "source": "pca", "project_id": catalog[0].id,
        }))

    def test_debt_counts_validated_pca_expenses(self, components, catalog, pca_advance):
        run(components.expenses.create(ADMIN, expense_form(catalog, pca_related=False)))
        form = expense_form(catalog, pca_related=True)
        form["items"] = [dict(form["items"][0], quantity="1", unit_price="200")]
        expense = run(components.expenses.create(ADMIN, form))
        assert run(components.reimbursements.current_debt()) == Decimal("300")

        run(components.expenses.set_status(ADMIN, expense.id, ExpenseStatus.PENDING))
        assert run(components.reimbursements.current_debt()) == Decimal("500")

    def test_reimbursement_above_debt_writes_nothing(self, components, pca_advance):
        before = len(activity(components))
        with pytest.raises(ValidationFailedError) as excinfo:
            run(components.reimbursements.reimburse(ADMIN, {"amount": "600"}))

        assert excinfo.value.result.issues[0].issue_type == "exceeds_debt"
        assert run(components.stores.pca_reimbursements.list_all()) == []
        assert run(components.stores.expenses.list_all()) == []
        assert len(activity(components)) == before

    def test_reimbursement_writes_expense_and_one_entry(self, components, pca_advance):
        before = activity(components)
        reimbursement = run(components.reimbursements.reimburse(ADMIN, {
            "amount": "200", "description": "janvier",
        }))

        assert reimbursement.reimbursement_date == date.today()
        assert run(components.reimbursements.current_debt()) == Decimal("300")

        expenses = run(components.expenses.list_for(ADMIN))
        assert len(expenses) == 1
        assert expenses[0].project_id == PCA_REIMBURSEMENT_PROJECT_ID
        assert expenses[0].description == "Remboursement PCA: janvier"
        assert expenses[0].total == Decimal("200")
        assert expenses[0].items[0].supplier_id == "pca_internal"

        new_entries = entries_since(components, before)
        assert [e.entity_type for e in new_entries] == [EntityType.PCA_REIMBURSEMENT]

    def test_full_repayment_clears_debt(self, components, pca_advance):
        run(components.reimbursements.reimburse(ADMIN, {"amount": "500"}))
        assert run(components.reimbursements.current_debt()) == Decimal("0")
        with pytest.raises(ValidationFailedError):
            run(components.reimbursements.reimburse(ADMIN, {"amount": "1"}))


class TestClosingFlow:

    def test_first_closing_starts_from_inflows(self, components, catalog):
        run(components.inflows.record(ADMIN, {
            "inflow_date": date(2024, 1, 2), "amount": "800", "source": "bank", "project_id": catalog[0].id,
        }))
        closing = run(components.closings.record(ADMIN, {
            "closing_date": date(2024, 1, 31), "final_balance": "750",
        }))
        assert closing.initial_balance == Decimal("800")
        assert closing.difference == Decimal("-50")

        assert run(components.closings.initial_balance()) == Decimal("750")


class TestDashboardAndUsers:

    def test_dashboard_restricted_to_own_records(self, components, catalog):
        today = date(2024, 1, 5)
        run(components.inflows.record(CASHIER, {
            "inflow_date": today, "amount": "1000", "source": "bank", "project_id": catalog[0].id,
        }))
        run(components.inflows.record(ADMIN, {
            "inflow_date": today, "amount": "400", "source": "bank", "project_id": catalog[0].id,
        }))

        assert run(components.dashboard.summary(CASHIER, today)).total_inflow == Decimal("1000")
        summary = run(components.dashboard.summary(ADMIN, today))
        assert summary.total_inflow == Decimal("1400")
        assert summary.daily_transactions == 2

    def test_user_admin_requires_admin(self, components):
        with pytest.raises(PermissionDeniedError):
            run(components.users.list_users(CASHIER))

    def test_cannot_delete_own_account(self, components):
        session = run(components.auth.login("chef@example.org", "ADMIN-CODE"))
        with pytest.raises(PermissionDeniedError):
            run(components.users.delete_user(session, session.user_id))

    def test_set_role_rejects_unknown(self, components):
        session = run(components.auth.login("awa@example.org", "USER-CODE"))
        with pytest.raises(ValidationFailedError):
            run(components.users.set_role(ADMIN, session.user_id, "owner"))

    def test_activity_history_is_admin_only(self, components, catalog):
        with pytest.raises(PermissionDeniedError):
            run(components.activity.history(BUYER, HistoryQuery()))

        page = run(components.activity.history(ADMIN, HistoryQuery(entity_type="project")))
        assert page.total_count == 1
        project_history = run(components.activity.entity_history(ADMIN, EntityType.PROJECT, catalog[0].id))
        assert len(project_history) == 1
