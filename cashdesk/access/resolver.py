"""
Access Resolver

Decides which pages a session may open and which navigation tabs it sees.

DESIGN DECISION: This is the single source of truth for page access.
The route guard calls it once per navigation; pages never re-derive
access from the flags themselves.

Rules, in order:
1. No session -> login page
2. Admin flag or admin role -> everything
3. Dashboard -> always
4. Otherwise the path must be unlocked by a held grant
5. Denied -> dashboard (PCA sessions -> expense history)

Resolution never raises. It is a pure function of the session snapshot.
"""

from typing import Optional

from cashdesk.models.session import (
    AccessDecision,
    AppPath,
    NavTab,
    Role,
    SessionContext,
)


class PermissionDeniedError(Exception):
    """The session may not perform this mutation."""
    pass


# Every tab, in display order
TAB_CATALOG: list[NavTab] = [
    NavTab(id="dashboard", label="Tableau de bord", icon="bar-chart-3", path=AppPath.DASHBOARD),
    NavTab(id="projects", label="Projets", icon="folder-kanban", path=AppPath.PROJECTS),
    NavTab(id="articles", label="Articles", icon="package", path=AppPath.ARTICLES),
    NavTab(id="units", label="Unités", icon="ruler", path=AppPath.UNITS),
    NavTab(id="users", label="Utilisateurs", icon="user-cog", path=AppPath.USERS),
    NavTab(id="suppliers", label="Fournisseurs", icon="users", path=AppPath.SUPPLIERS),
    NavTab(id="inflow", label="Entrées", icon="wallet", path=AppPath.INFLOW),
    NavTab(id="inflow-history", label="Historique Entrées", icon="history", path=AppPath.INFLOW_HISTORY),
    NavTab(id="expenses", label="Dépenses", icon="receipt", path=AppPath.EXPENSES),
    NavTab(id="expense-history", label="Historique Dépenses", icon="history", path=AppPath.EXPENSE_HISTORY),
    NavTab(id="activity-history", label="Historique Activités", icon="bar-chart-3", path=AppPath.ACTIVITY_HISTORY),
    NavTab(id="closing", label="Clôture", icon="piggy-bank", path=AppPath.CLOSING),
]

# Feature grant -> routes it unlocks
ENTRIES_PATHS = frozenset({AppPath.INFLOW, AppPath.PROJECTS, AppPath.CLOSING})
ENTRIES_HISTORY_PATHS = frozenset({AppPath.INFLOW_HISTORY, AppPath.EXPENSE_HISTORY})
EXPENSES_PATHS = frozenset({
    AppPath.EXPENSES,
    AppPath.ARTICLES,
    AppPath.UNITS,
    AppPath.SUPPLIERS,
    AppPath.EXPENSE_HISTORY,
})

# Longest first, so /inflow/history wins over /inflow
_KNOWN_ROUTES = sorted(AppPath.all(), key=len, reverse=True)


def normalize_path(path: Optional[str]) -> str:
    """Strip query string, fragment and trailing slash; ensure a leading slash."""
    if not path:
        return "/"
    path = str(path).split("?", 1)[0].split("#", 1)[0].strip()
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def match_route(path: Optional[str]) -> Optional[str]:
    """
    Map a request path to the most specific known route.

    /projects/abc -> /projects, /inflow/history -> /inflow/history,
    anything else -> None.
    """
    path = normalize_path(path)
    for route in _KNOWN_ROUTES:
        if path == route or path.startswith(route + "/"):
            return route
    return None


def route_parameter(path: Optional[str]) -> Optional[str]:
    """Segment after the matched route: /projects/abc -> "abc", /projects -> None."""
    route = match_route(path)
    if route is None:
        return None
    return normalize_path(path)[len(route):].strip("/") or None


def _grants_entries(session: SessionContext) -> bool:
    return session.access_entries or session.role == Role.CASH_INFLOW


def _grants_expenses(session: SessionContext) -> bool:
    return session.access_expenses or session.role == Role.EXPENSES


def allowed_paths(session: SessionContext) -> set[str]:
    """Routes unlocked for a non-admin session (dashboard included)."""
    paths = {AppPath.DASHBOARD}

    if session.role == Role.DASHBOARD_ONLY:
        return paths

    if _grants_entries(session):
        paths |= ENTRIES_PATHS
        if session.access_history:
            paths |= ENTRIES_HISTORY_PATHS

    if _grants_expenses(session):
        paths |= EXPENSES_PATHS

    return paths


def denial_redirect(session: SessionContext) -> str:
    """Where a denied, authenticated session is sent."""
    if session.role == Role.PCA:
        return AppPath.EXPENSE_HISTORY
    return AppPath.DASHBOARD


def resolve_access(
    session: Optional[SessionContext],
    requested_path: Optional[str],
) -> AccessDecision:
    """
    Decide whether the session may view the requested page.

    Returns allowed=True, or allowed=False with the path to redirect to.
    """
    if session is None:
        return AccessDecision(allowed=False, redirect_path=AppPath.LOGIN)

    if session.has_full_access:
        return AccessDecision(allowed=True)

    route = match_route(requested_path)
    if route is not None and route in allowed_paths(session):
        return AccessDecision(allowed=True)

    return AccessDecision(allowed=False, redirect_path=denial_redirect(session))


def compute_visible_tabs(session: Optional[SessionContext]) -> list[NavTab]:
    """
    Navigation tabs for the session.

    Admins get the full fixed set. Everyone else gets the dashboard
    first, then the tabs unlocked by their grants.
    """
    if session is None:
        return []

    if session.has_full_access:
        return list(TAB_CATALOG)

    paths = allowed_paths(session)
    return [tab for tab in TAB_CATALOG if tab.path in paths]


def landing_path(session: SessionContext) -> str:
    """First page after login."""
    if session.role == Role.PCA:
        return AppPath.EXPENSE_HISTORY
    if session.role == Role.CASH_INFLOW:
        return AppPath.INFLOW
    return AppPath.DASHBOARD


def can_modify(session: Optional[SessionContext], owner_id: Optional[str]) -> bool:
    """Admins may modify anything; others only what they created."""
    if session is None:
        return False
    if session.has_full_access:
        return True
    return bool(owner_id) and owner_id == session.user_id


def ensure_can_modify(session: Optional[SessionContext], owner_id: Optional[str]) -> None:
    if not can_modify(session, owner_id):
        raise PermissionDeniedError(
            "Seul un administrateur ou l'auteur peut modifier cet élément"
        )


def ensure_admin(session: Optional[SessionContext]) -> None:
    if session is None or not session.has_full_access:
        raise PermissionDeniedError(
            "Accès non autorisé. Cette action est réservée aux administrateurs."
        )
