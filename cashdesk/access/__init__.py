"""
Access control: login and the route/tab resolver.
"""

from cashdesk.access.login import (
    AccessCodeRejectedError,
    build_session,
    resolve_access_code,
)
from cashdesk.access.resolver import (
    TAB_CATALOG,
    PermissionDeniedError,
    allowed_paths,
    can_modify,
    compute_visible_tabs,
    ensure_admin,
    ensure_can_modify,
    landing_path,
    match_route,
    resolve_access,
    route_parameter,
)

__all__ = [
    "AccessCodeRejectedError",
    "build_session",
    "resolve_access_code",
    "TAB_CATALOG",
    "PermissionDeniedError",
    "allowed_paths",
    "can_modify",
    "compute_visible_tabs",
    "ensure_admin",
    "ensure_can_modify",
    "landing_path",
    "match_route",
    "resolve_access",
    "route_parameter",
]
