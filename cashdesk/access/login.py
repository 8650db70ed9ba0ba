"""
Login

Turns a submitted access code into a role, and a stored profile plus
that role into the session snapshot used for the rest of the visit.
"""

from typing import Optional

from cashdesk.config.settings import AccessSettings
from cashdesk.models.entities import UserProfile
from cashdesk.models.session import Role, SessionContext


class AccessCodeRejectedError(Exception):
    """Submitted access code is not recognized."""
    pass


def resolve_access_code(code: str, settings: AccessSettings) -> tuple[Role, bool]:
    """
    Match an access code against the recognized codes.

    Returns (role, is_admin). Raises AccessCodeRejectedError otherwise.
    """
    code = (code or "").strip()
    if code and code == settings.admin_code:
        return Role.ADMIN, True
    if code and code == settings.user_code:
        return Role.USER, False
    raise AccessCodeRejectedError("Code d'accès invalide")


def build_session(
    profile: UserProfile,
    role: Optional[Role] = None,
    is_admin: Optional[bool] = None,
) -> SessionContext:
    """
    Build the session snapshot at login.

    The role from the access code wins over the stored one, except that a
    plain user code keeps any more specific role an admin assigned
    (cash_inflow, expenses, pca...). Feature flags come from the profile.
    """
    effective_role = profile.role
    admin = profile.is_admin

    if role == Role.USER:
        # A user code never opens an admin session
        admin = False
        if profile.role in (Role.NONE, Role.ADMIN):
            effective_role = Role.USER
    elif role is not None:
        effective_role = role
        admin = bool(is_admin)

    return SessionContext(
        user_id=profile.id,
        display_name=profile.display_name,
        email=profile.email,
        is_admin=admin,
        role=effective_role,
        access_entries=profile.access_entries,
        access_expenses=profile.access_expenses,
        access_history=profile.access_history,
    )
