"""
Session Models

A session is an immutable snapshot of who the user is and which
functional areas they may open. It is built once at login and passed
explicitly to the access resolver and to every flow.

DESIGN DECISION: The flags are taken at face value for the lifetime of
the session. They are not re-checked against the users collection on
every navigation.
"""

from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Role(str, Enum):
    """Closed set of session roles."""
    ADMIN = "admin"
    USER = "user"
    CASH_INFLOW = "cash_inflow"
    EXPENSES = "expenses"
    PCA = "pca"
    DASHBOARD_ONLY = "dashboard_only"
    NONE = ""

    @classmethod
    def parse(cls, value: object) -> "Role":
        """Map any value to a role; unknown values become NONE."""
        if isinstance(value, Role):
            return value
        if value is None:
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NONE


class AppPath:
    """Navigation paths of the application."""
    LOGIN = "/login"
    DASHBOARD = "/dashboard"
    PROJECTS = "/projects"
    CATEGORIES = "/categories"
    ARTICLES = "/articles"
    UNITS = "/units"
    USERS = "/users"
    SUPPLIERS = "/suppliers"
    INFLOW = "/inflow"
    INFLOW_HISTORY = "/inflow/history"
    EXPENSES = "/expenses"
    EXPENSE_HISTORY = "/expenses/history"
    ACTIVITY_HISTORY = "/activity-history"
    CLOSING = "/closing"

    @classmethod
    def all(cls) -> list[str]:
        """Every routed path except the login page."""
        return [
            cls.DASHBOARD,
            cls.PROJECTS,
            cls.CATEGORIES,
            cls.ARTICLES,
            cls.UNITS,
            cls.USERS,
            cls.SUPPLIERS,
            cls.INFLOW,
            cls.INFLOW_HISTORY,
            cls.EXPENSES,
            cls.EXPENSE_HISTORY,
            cls.ACTIVITY_HISTORY,
            cls.CLOSING,
        ]


def _truthy(value: object) -> bool:
    """Interpret a stored flag ('true', True, '1') as a boolean."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


class SessionContext(BaseModel):
    """
    Authenticated session snapshot.

    Built once at the application boundary (login) and threaded through
    the route guard and every flow.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    user_id: str = Field(
        ...,
        min_length=1,
        description="ID of the authenticated user"
    )
    display_name: str = Field(
        default="",
        description="Name shown in the header and recorded in activity logs"
    )
    email: Optional[str] = None

    is_admin: bool = False
    role: Role = Role.NONE

    # Independent feature flags
    access_entries: bool = False
    access_expenses: bool = False
    access_history: bool = False

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role(cls, v: object) -> Role:
        return Role.parse(v)

    @property
    def has_full_access(self) -> bool:
        """Admin flag or admin role supersede every feature flag."""
        return self.is_admin or self.role == Role.ADMIN

    @property
    def actor_name(self) -> str:
        return self.display_name or self.email or "Utilisateur inconnu"

    @classmethod
    def from_flags(cls, flags: Mapping[str, object]) -> Optional["SessionContext"]:
        """
        Build a session from a flat key/value flag store.

        Returns None when no user id is present (no authenticated session).
        Garbage values degrade to False / Role.NONE rather than raising.
        """
        user_id = flags.get("userId") or flags.get("currentUserId")
        if not user_id or not str(user_id).strip():
            return None
        return cls(
            user_id=str(user_id),
            display_name=str(flags.get("displayName") or ""),
            email=(str(flags["email"]) if flags.get("email") else None),
            is_admin=_truthy(flags.get("isAdmin")),
            role=Role.parse(flags.get("userRole")),
            access_entries=_truthy(flags.get("accessEntries")),
            access_expenses=_truthy(flags.get("accessExpenses")),
            access_history=_truthy(flags.get("accessHistory")),
        )

    def to_flags(self) -> dict[str, str]:
        """Flat string mapping, the inverse of from_flags."""
        flags = {
            "userId": self.user_id,
            "displayName": self.display_name,
            "isAdmin": str(self.is_admin).lower(),
            "userRole": self.role.value,
            "accessEntries": str(self.access_entries).lower(),
            "accessExpenses": str(self.access_expenses).lower(),
            "accessHistory": str(self.access_history).lower(),
        }
        if self.email:
            flags["email"] = self.email
        return flags


class NavTab(BaseModel):
    """A navigation tab. Produced fresh on every evaluation, never stored."""
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    icon: str
    path: str


class AccessDecision(BaseModel):
    """Outcome of a route guard check."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    redirect_path: Optional[str] = None
