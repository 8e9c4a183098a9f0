"""Collaborator roles and their permissions.

Roles form a small static registry. A role's effective permissions are its
own plus those of every role in ``subsets``, so ``admin`` carries everything
``editor`` and ``viewer`` do. Phantom roles never occupy a licensed seat and
cannot be assigned to a collaborator record.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Optional

from stackbit_api.utils.collections import unique
from stackbit_api.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    LOCK_SCREEN = "LOCK_SCREEN"
    BASIC_ACCESS = "BASIC_ACCESS"
    COLLABORATOR = "COLLABORATOR"
    EDIT_ACCESS = "EDIT_ACCESS"
    GET_ASSETS = "GET_ASSETS"
    MANAGE_COLLABORATORS = "MANAGE_COLLABORATORS"
    PUBLISH_SITE = "PUBLISH_SITE"
    MANAGE_SPLIT_TEST = "MANAGE_SPLIT_TEST"
    FULL_ACCESS = "FULL_ACCESS"
    BILLING = "BILLING"
    STACKBIT_ADMIN_IMPERSONATE = "STACKBIT_ADMIN_IMPERSONATE"
    STACKBIT_SUPPORT_ADMIN = "STACKBIT_SUPPORT_ADMIN"
    ON_SITE_WIDGET = "ON_SITE_WIDGET"


DEFAULT_ROLE_SETTINGS: dict[str, Any] = {"defaultStudioMode": "content"}


class CollaboratorRole:
    def __init__(
        self,
        name: str,
        *,
        phantom: bool,
        permissions: tuple[Permission, ...] = (),
        subsets: tuple["CollaboratorRole", ...] = (),
        settings: Optional[Mapping[str, Any]] = None,
    ):
        self.name = name
        self.phantom = phantom
        self.permissions = permissions
        self.subsets = subsets
        self.settings = dict(settings or {})

    def __repr__(self) -> str:
        return f"CollaboratorRole({self.name!r})"

    def is_authorized(self, permission: Permission | str) -> bool:
        if permission in self.permissions:
            return True
        return any(subset.is_authorized(permission) for subset in self.subsets)

    def list_permissions(self) -> list[Permission]:
        collected: list[Permission] = list(self.permissions)
        for subset in self.subsets:
            collected.extend(subset.list_permissions())
        return unique(collected)

    def get_settings(self) -> dict[str, Any]:
        merged = dict(DEFAULT_ROLE_SETTINGS)
        for subset in self.subsets:
            merged.update(subset.get_settings())
        merged.update(self.settings)
        return merged

    def is_default_collaborator_role(self) -> bool:
        return self is DEFAULT_COLLABORATOR_ROLE


NONE = CollaboratorRole("none", phantom=True)
INVITED = CollaboratorRole("invited", phantom=True)
# Assignable (a demotion target) but never counted as a licensed seat.
UNLICENSED = CollaboratorRole(
    "unlicensed",
    phantom=False,
    permissions=(
        Permission.BASIC_ACCESS,
        Permission.COLLABORATOR,
        Permission.LOCK_SCREEN,
    ),
)
VIEWER = CollaboratorRole(
    "viewer",
    phantom=False,
    permissions=(
        Permission.BASIC_ACCESS,
        Permission.COLLABORATOR,
        Permission.ON_SITE_WIDGET,
    ),
)
EDITOR = CollaboratorRole(
    "editor",
    phantom=False,
    permissions=(Permission.EDIT_ACCESS, Permission.GET_ASSETS),
    subsets=(VIEWER,),
)
ADMIN = CollaboratorRole(
    "admin",
    phantom=False,
    permissions=(
        Permission.MANAGE_COLLABORATORS,
        Permission.PUBLISH_SITE,
        Permission.MANAGE_SPLIT_TEST,
        Permission.BILLING,
    ),
    subsets=(EDITOR,),
)
DEVELOPER = CollaboratorRole(
    "developer",
    phantom=False,
    subsets=(ADMIN,),
    settings={"defaultStudioMode": "code"},
)
OWNER = CollaboratorRole(
    "owner",
    phantom=True,
    permissions=(Permission.FULL_ACCESS,),
    subsets=(ADMIN,),
)
STACKBIT_ADMIN = CollaboratorRole(
    "stackbit_admin",
    phantom=True,
    permissions=(
        Permission.BASIC_ACCESS,
        Permission.GET_ASSETS,
        Permission.STACKBIT_ADMIN_IMPERSONATE,
        Permission.ON_SITE_WIDGET,
    ),
)
STACKBIT_SUPPORT_ADMIN = CollaboratorRole(
    "stackbit_support_admin",
    phantom=True,
    permissions=(
        Permission.STACKBIT_ADMIN_IMPERSONATE,
        Permission.STACKBIT_SUPPORT_ADMIN,
    ),
    subsets=(STACKBIT_ADMIN, OWNER),
)

DEFAULT_COLLABORATOR_ROLE = ADMIN

ROLES: tuple[CollaboratorRole, ...] = (
    NONE,
    INVITED,
    UNLICENSED,
    EDITOR,
    DEVELOPER,
    VIEWER,
    ADMIN,
    OWNER,
    STACKBIT_ADMIN,
    STACKBIT_SUPPORT_ADMIN,
)

# Seat categories for tier limits.
VIEWER_SEAT_ROLES: frozenset[str] = frozenset({VIEWER.name})
EDITOR_SEAT_ROLES: frozenset[str] = frozenset({EDITOR.name, DEVELOPER.name, ADMIN.name})
ROLE_GATED_SEAT_ROLES: frozenset[str] = frozenset({EDITOR.name, DEVELOPER.name})


def from_name(name: Optional[str]) -> CollaboratorRole | None:
    for role in ROLES:
        if role.name == name:
            return role
    return None


def list_by_permission(permission: Permission | str) -> list[CollaboratorRole]:
    return [role for role in ROLES if role.is_authorized(permission)]


def list_non_phantom_roles() -> list[CollaboratorRole]:
    return [role for role in ROLES if not role.phantom]


def is_valid_non_phantom_role(name: Optional[str]) -> bool:
    return any(role.name == name for role in list_non_phantom_roles())


def resolve_role(name: Optional[str]) -> CollaboratorRole:
    """Role stored on a collaborator record, with legacy fallbacks.

    No name means the default collaborator role; a name no longer in the
    registry degrades to NONE.
    """
    if not name:
        return DEFAULT_COLLABORATOR_ROLE
    role = from_name(name)
    if role is None:
        logger.warning("Unknown collaborator role: %s", sanitize_for_log(name))
        return NONE
    return role


def is_unlicensed(role_name: Optional[str]) -> bool:
    return role_name == UNLICENSED.name


def is_viewer_seat_role(role_name: Optional[str]) -> bool:
    return role_name in VIEWER_SEAT_ROLES


def is_editor_seat_role(role_name: Optional[str]) -> bool:
    """Explicit editor-class role name. Records without a role are not counted."""
    return role_name in EDITOR_SEAT_ROLES


def takes_licensed_seat(role_name: Optional[str]) -> bool:
    """Whether a stored record keeps a licensed seat when a tier shrinks.

    Everything except unlicensed and viewer records does, including records
    without a role.
    """
    return (role_name or "") not in (UNLICENSED.name, VIEWER.name)
