"""
Tests for form validation.
"""

from datetime import date
from decimal import Decimal

import pytest

from cashdesk.models import ValidationResult
from cashdesk.validation import FormValidator, ValidationFailedError, parse_decimal


@pytest.fixture
def validator():
    return FormValidator(max_amount=1_000_000)


def issue_types(result: ValidationResult) -> dict[str, str]:
    return {issue.field: issue.issue_type for issue in result.issues}


class TestParseDecimal:

    @pytest.mark.parametrize("raw, expected", [
        ("12", Decimal("12")),
        (" 12,50 ", Decimal("12.50")),
        (3.5, Decimal("3.5")),
        (Decimal("7"), Decimal("7")),
    ])
    def test_valid(self, raw, expected):
        assert parse_decimal(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", True, "inf", Decimal("NaN"), "1e999999999"])
    def test_invalid(self, raw):
        assert parse_decimal(raw) is None


class TestCashInflowValidation:
    """Tests for the inflow form."""

    def test_valid_form(self, validator):
        result = validator.validate_cash_inflow({
            "inflow_date": date(2024, 1, 5),
            "amount": "2500",
            "source": "bank",
            "project_id": "p1",
        })
        assert result.is_valid
        assert result.issues == []

    def test_missing_fields(self, validator):
        result = validator.validate_cash_inflow({})
        assert issue_types(result) == {
            "inflow_date": "missing",
            "amount": "missing",
            "project_id": "missing",
            "source": "missing",
        }

    def test_unknown_source(self, validator):
        result = validator.validate_cash_inflow({
            "inflow_date": "2024-01-05", "amount": "10", "source": "lottery", "project_id": "p1",
        })
        assert issue_types(result) == {"source": "invalid_value"}

    def test_zero_amount_rejected(self, validator):
        result = validator.validate_cash_inflow({
            "inflow_date": "2024-01-05", "amount": "0", "source": "pca", "project_id": "p1",
        })
        assert issue_types(result) == {"amount": "invalid_value"}

    def test_large_amount_is_a_warning(self, validator):
        result = validator.validate_cash_inflow({
            "inflow_date": "2024-01-05", "amount": "5000000", "source": "pca", "project_id": "p1",
        })
        assert result.is_valid
        assert result.issues[0].severity == "warning"

    def test_invalid_date(self, validator):
        result = validator.validate_cash_inflow({
            "inflow_date": "31/31/2024", "amount": "10", "source": "pca", "project_id": "p1",
        })
        assert issue_types(result) == {"inflow_date": "invalid_value"}

    def test_amount_with_three_decimals_rejected(self, validator):
        result = validator.validate_cash_inflow({
            "inflow_date": "2024-01-05", "amount": "12,345", "source": "bank", "project_id": "p1",
        })
        assert issue_types(result) == {"amount": "invalid_value"}


class TestExpenseValidation:
    """Tests for the expense form."""

    @staticmethod
    def form(**items_override):
        item = {"article_id": "a1", "supplier_id": "s1", "quantity": "2", "unit_price": "100"}
        item.update(items_override)
        return {"expense_date": "2024-01-12", "project_id": "p1", "items": [item]}

    def test_valid(self, validator):
        assert validator.validate_expense(self.form()).is_valid

    def test_no_items(self, validator):
        form = self.form()
        form["items"] = []
        assert issue_types(validator.validate_expense(form)) == {"items": "missing"}

    def test_item_checks(self, validator):
        result = validator.validate_expense(self.form(article_id="", quantity="0", unit_price="-1"))
        assert issue_types(result) == {
            "items[1].article_id": "missing",
            "items[1].quantity": "invalid_value",
            "items[1].unit_price": "invalid_value",
        }

    def test_free_item_allowed(self, validator):
        assert validator.validate_expense(self.form(unit_price="0")).is_valid

    def test_negative_amount_given(self, validator):
        result = validator.validate_expense(self.form(amount_given="-5"))
        assert issue_types(result) == {"items[1].amount_given": "invalid_value"}

    def test_price_limited_to_cents(self, validator):
        result = validator.validate_expense(self.form(unit_price="10.005", amount_given="3.141"))
        assert issue_types(result) == {
            "items[1].unit_price": "invalid_value",
            "items[1].amount_given": "invalid_value",
        }

    def test_trailing_zeros_and_fractional_quantity_allowed(self, validator):
        assert validator.validate_expense(self.form(unit_price="10.500", quantity="0.125")).is_valid


class TestReimbursementValidation:

    def test_exceeds_debt(self, validator):
        result = validator.validate_reimbursement(
            {"reimbursement_date": date(2024, 1, 5), "amount": "600"},
            Decimal("500"),
        )
        assert issue_types(result) == {"amount": "exceeds_debt"}

    def test_full_repayment_allowed(self, validator):
        result = validator.validate_reimbursement(
            {"reimbursement_date": date(2024, 1, 5), "amount": "500"},
            Decimal("500"),
        )
        assert result.is_valid


class TestOtherForms:

    def test_closing(self, validator):
        assert validator.validate_closing({"closing_date": "2024-01-31", "final_balance": "0"}).is_valid
        result = validator.validate_closing({"closing_date": "2024-01-31", "final_balance": "n/a"})
        assert issue_types(result) == {"final_balance": "missing"}

    def test_project_dates(self, validator):
        result = validator.validate_project({
            "name": "Forage", "start_date": "2024-03-01", "end_date": "2024-02-01",
        })
        assert issue_types(result) == {"end_date": "inconsistent"}

    def test_article(self, validator):
        result = validator.validate_article({"designation": "Ciment"})
        assert set(issue_types(result)) == {"reference", "unit"}

    def test_login_email(self, validator):
        assert validator.validate_login({"email": "awa@example.org"}).is_valid
        assert issue_types(validator.validate_login({"email": "awa"})) == {"email": "invalid_value"}

    def test_role(self, validator):
        assert validator.validate_role("pca").is_valid
        assert validator.validate_role("").is_valid
        assert not validator.validate_role("owner").is_valid


class TestEnsureValid:

    def test_raises_with_result(self, validator):
        result = validator.validate_named({"name": ""}, "Le nom de l'unité")
        with pytest.raises(ValidationFailedError) as excinfo:
            FormValidator.ensure_valid(result)
        assert excinfo.value.result is result
        assert "Le nom de l'unité est obligatoire" in str(excinfo.value)

    def test_summary(self, validator):
        result = validator.validate_named({})
        result.add("name", "suspicious_value", "Nom inhabituel", severity="warning")
        summary = FormValidator.get_user_friendly_summary(result)
        assert summary.splitlines()[0].startswith("❌")
        assert "⚠️ À vérifier:" in summary

    def test_summary_when_valid(self):
        assert FormValidator.get_user_friendly_summary(ValidationResult()) == "✅ Formulaire valide"
