"""Storage contracts consumed by the entitlement engine.

Documents are plain mappings in their stored (camelCase) shape. Every write
goes through ``find_one_and_update`` so it is a single atomic match-then-
update against one project document.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, Sequence

from stackbit_api.models.users import User


class ProjectStore(Protocol):
    async def find_by_id(self, project_id: Any) -> Optional[dict[str, Any]]: ...

    async def find_one(self, query: Mapping[str, Any]) -> Optional[dict[str, Any]]: ...

    async def find(self, query: Mapping[str, Any]) -> list[dict[str, Any]]: ...

    async def find_one_and_update(
        self,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        array_filters: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> Optional[dict[str, Any]]: ...

    async def distinct(self, field: str, query: Mapping[str, Any]) -> list[Any]: ...

    async def update_many(self, query: Mapping[str, Any], update: Mapping[str, Any]) -> int: ...


class UserStore(Protocol):
    async def find_user_by_id(self, user_id: Any) -> Optional[User]: ...

    async def find_users_by_id(self, user_ids: Sequence[Any]) -> list[User]: ...


__all__ = ["ProjectStore", "UserStore"]
