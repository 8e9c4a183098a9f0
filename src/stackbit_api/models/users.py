from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

SYSTEM_ROLE_ADMIN = "admin"
SYSTEM_ROLE_SUPPORT_ADMIN = "support_admin"


@dataclass(frozen=True)
class User:
    """Platform user, as far as project access and billing need it."""

    id: Any
    email: str | None = None
    roles: tuple[str, ...] = ()
    features: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "User":
        return cls(
            id=doc.get("_id"),
            email=doc.get("email"),
            roles=tuple(doc.get("roles") or ()),
            features=dict(doc.get("features") or {}),
        )

    @property
    def is_admin(self) -> bool:
        return SYSTEM_ROLE_ADMIN in self.roles

    @property
    def is_support_admin(self) -> bool:
        return self.is_admin and SYSTEM_ROLE_SUPPORT_ADMIN in self.roles
