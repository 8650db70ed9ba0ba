"""
Form Validation

DESIGN DECISION: Every form is validated before anything is written.

Checks fall into two kinds:
- Required fields and formats (errors, block the write)
- Sanity checks such as an unusually large amount (warnings, shown
  to the user but not blocking)

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the form can show them inline.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from cashdesk.config import get_settings
from cashdesk.ledger.balance import MAX_EXPONENT, parse_date_safely
from cashdesk.models.entities import InflowSource
from cashdesk.models.session import Role
from cashdesk.models.validation import ValidationResult


class ValidationFailedError(Exception):
    """A form failed validation; carries the full result."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__("; ".join(result.messages) or "Validation failed")


# Stored amounts carry cents at most
MONEY_PLACES = 2


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Strict number parsing for form input: None when missing or not a number."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    try:
        number = Decimal(text)
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite() or abs(number.adjusted()) > MAX_EXPONENT:
        return None
    return number


def decimal_places(amount: Decimal) -> int:
    """Significant digits after the point, trailing zeros ignored."""
    exponent = amount.normalize().as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def _text(form: Mapping[str, Any], key: str) -> str:
    return str(form.get(key) or "").strip()


class FormValidator:
    """
    Validates form submissions for every entity the application writes.

    Each method returns a ValidationResult; `ensure_valid` turns an
    invalid result into a ValidationFailedError.
    """

    def __init__(self, max_amount: Optional[float] = None):
        self._max_amount = Decimal(str(
            max_amount if max_amount is not None else get_settings().app.max_amount
        ))

    # -------------------------------------------------------------------------
    # Shared checks
    # -------------------------------------------------------------------------

    def _require_text(
        self,
        result: ValidationResult,
        form: Mapping[str, Any],
        key: str,
        label: str,
    ) -> None:
        if not _text(form, key):
            result.add(key, "missing", f"{label} est obligatoire")

    def _require_date(
        self,
        result: ValidationResult,
        form: Mapping[str, Any],
        key: str,
    ) -> Optional[date]:
        raw = form.get(key)
        if raw in (None, ""):
            result.add(key, "missing", "La date est obligatoire")
            return None
        parsed = parse_date_safely(raw)
        if parsed is None:
            result.add(key, "invalid_value", f"Date invalide: {raw}")
        return parsed

    def _check_amount(
        self,
        result: ValidationResult,
        value: Any,
        field: str,
        label: str,
        allow_zero: bool = False,
        places: Optional[int] = MONEY_PLACES,
    ) -> Optional[Decimal]:
        amount = parse_decimal(value)
        if amount is None:
            result.add(field, "missing", f"{label} doit être un nombre")
            return None
        if places is not None and decimal_places(amount) > places:
            result.add(field, "invalid_value", f"{label} accepte au plus {places} décimales")
        elif amount < 0 or (amount == 0 and not allow_zero):
            qualifier = "positif ou nul" if allow_zero else "supérieur à zéro"
            result.add(field, "invalid_value", f"{label} doit être {qualifier}")
        elif amount > self._max_amount:
            result.add(
                field,
                "suspicious_value",
                f"{label} ({amount:,.2f}) semble anormalement élevé",
                severity="warning",
            )
        return amount

    # -------------------------------------------------------------------------
    # Forms
    # -------------------------------------------------------------------------

    def validate_cash_inflow(self, form: Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        self._require_date(result, form, "inflow_date")
        self._check_amount(result, form.get("amount"), "amount", "Le montant")
        self._require_text(result, form, "project_id", "Le projet")

        source = _text(form, "source").lower()
        if not source:
            result.add("source", "missing", "La source est obligatoire")
        elif source not in {s.value for s in InflowSource}:
            result.add("source", "invalid_value", f"Source inconnue: {source}")
        return result

    def validate_expense(self, form: Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        self._require_date(result, form, "expense_date")
        self._require_text(result, form, "project_id", "Le projet")

        items = form.get("items") or []
        if not items:
            result.add("items", "missing", "Ajoutez au moins un article")

        for index, item in enumerate(items, start=1):
            prefix = f"items[{index}]"
            if not _text(item, "article_id"):
                result.add(f"{prefix}.article_id", "missing", f"Ligne {index}: l'article est obligatoire")
            if not _text(item, "supplier_id"):
                result.add(f"{prefix}.supplier_id", "missing", f"Ligne {index}: le fournisseur est obligatoire")
            self._check_amount(
                result, item.get("quantity"), f"{prefix}.quantity",
                f"Ligne {index}: la quantité", places=None,
            )
            self._check_amount(
                result, item.get("unit_price"), f"{prefix}.unit_price",
                f"Ligne {index}: le prix unitaire", allow_zero=True,
            )
            if item.get("amount_given") not in (None, ""):
                self._check_amount(
                    result, item.get("amount_given"), f"{prefix}.amount_given",
                    f"Ligne {index}: le montant donné", allow_zero=True,
                )
        return result

    def validate_reimbursement(
        self,
        form: Mapping[str, Any],
        outstanding_debt: Decimal,
    ) -> ValidationResult:
        """Amount must be positive and may not exceed the current PCA debt."""
        result = ValidationResult()
        self._require_date(result, form, "reimbursement_date")
        amount = self._check_amount(result, form.get("amount"), "amount", "Le montant")
        if amount is not None and amount > outstanding_debt:
            result.add(
                "amount",
                "exceeds_debt",
                f"Le montant ({amount:,.2f}) dépasse la dette PCA actuelle ({outstanding_debt:,.2f})",
            )
        return result

    def validate_closing(self, form: Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        self._require_date(result, form, "closing_date")
        if parse_decimal(form.get("final_balance")) is None:
            result.add("final_balance", "missing", "Le solde final doit être un nombre")
        return result

    def validate_project(self, form: Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        self._require_text(result, form, "name", "Le nom du projet")
        start = parse_date_safely(form.get("start_date"))
        end = parse_date_safely(form.get("end_date"))
        if start and end and end < start:
            result.add("end_date", "inconsistent", "La date de fin précède la date de début")
        return result

    def validate_article(self, form: Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        self._require_text(result, form, "designation", "La désignation")
        self._require_text(result, form, "reference", "La référence")
        self._require_text(result, form, "unit", "L'unité")
        return result

    def validate_named(self, form: Mapping[str, Any], label: str = "Le nom") -> ValidationResult:
        """Categories, units and suppliers only require a name."""
        result = ValidationResult()
        self._require_text(result, form, "name", label)
        return result

    def validate_login(self, form: Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        email = _text(form, "email")
        if not email:
            result.add("email", "missing", "L'email est obligatoire")
        elif "@" not in email:
            result.add("email", "invalid_value", f"Email invalide: {email}")
        return result

    def validate_role(self, role: Any) -> ValidationResult:
        result = ValidationResult()
        value = "" if role is None else str(role.value if isinstance(role, Role) else role).strip().lower()
        if value not in {r.value for r in Role}:
            result.add("role", "invalid_value", f"Rôle inconnu: {role}")
        return result

    # -------------------------------------------------------------------------

    @staticmethod
    def ensure_valid(result: ValidationResult) -> ValidationResult:
        if not result.is_valid:
            raise ValidationFailedError(result)
        return result

    @staticmethod
    def get_user_friendly_summary(result: ValidationResult) -> str:
        """One line per issue, errors first."""
        if not result.issues:
            return "✅ Formulaire valide"

        lines = []
        errors = [i for i in result.issues if i.severity == "error"]
        warnings = [i for i in result.issues if i.severity == "warning"]
        if errors:
            lines.append("❌ Veuillez corriger les points suivants:")
            lines.extend(f"   • {issue.message}" for issue in errors)
        if warnings:
            lines.append("⚠️ À vérifier:")
            lines.extend(f"   • {issue.message}" for issue in warnings)
        return "\n".join(lines)
