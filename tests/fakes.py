"""In-memory stand-ins for the Mongo stores and shared test users."""

from __future__ import annotations

import copy
from typing import Any, Mapping, Optional, Sequence

from stackbit_api.models.users import User
from stackbit_api.utils.collections import add_to_set

_MISSING = object()


def _same(left: Any, right: Any) -> bool:
    if left == right:
        return True
    if left is None or right is None:
        return False
    return str(left) == str(right)


def _get_path(doc: Any, path: str) -> Any:
    current = doc
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _path_values(doc: Any, path: str) -> list[Any]:
    """Values reachable at ``path``, fanning out across arrays like Mongo does."""
    current = [doc]
    for part in path.split("."):
        found = []
        for item in current:
            if isinstance(item, Mapping) and part in item:
                found.append(item[part])
            elif isinstance(item, list):
                found.extend(e[part] for e in item if isinstance(e, Mapping) and part in e)
        current = found
    return current or [_MISSING]


def _unset_path(doc: dict, path: str) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _matches_condition(value: Any, cond: Any) -> bool:
    if isinstance(cond, Mapping) and cond and all(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                if value is _MISSING or not any(_same(value, a) for a in arg):
                    return False
            elif op == "$exists":
                if (value is not _MISSING) != bool(arg):
                    return False
            elif op == "$elemMatch":
                if not isinstance(value, list):
                    return False
                if not any(matches(elem, arg) for elem in value):
                    return False
            else:
                raise NotImplementedError(op)
        return True
    if value is _MISSING:
        return cond is None
    return _same(value, cond)


def matches(doc: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    """Tiny subset of Mongo query semantics used by the services."""
    for key, cond in query.items():
        if key == "$or":
            if not any(matches(doc, clause) for clause in cond):
                return False
            continue
        values = _path_values(doc, key)
        if isinstance(cond, Mapping) and set(cond) == {"$ne"}:
            if any(_matches_condition(v, cond["$ne"]) for v in values):
                return False
        elif not any(_matches_condition(v, cond) for v in values):
            return False
    return True


class FakeProjectStore:
    """In-memory project collection with the update operators the services issue."""

    def __init__(self, docs: Sequence[Mapping[str, Any]] = ()):
        self.docs: list[dict[str, Any]] = [copy.deepcopy(dict(d)) for d in docs]
        self.updates: list[tuple[dict, dict, Optional[list]]] = []

    def get(self, project_id: Any) -> dict[str, Any]:
        for doc in self.docs:
            if _same(doc.get("_id"), project_id):
                return doc
        raise KeyError(project_id)

    async def find_by_id(self, project_id: Any) -> Optional[dict[str, Any]]:
        return await self.find_one({"_id": project_id})

    async def find_one(self, query: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        for doc in self.docs:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find(self, query: Mapping[str, Any]) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self.docs if matches(doc, query)]

    async def distinct(self, field: str, query: Mapping[str, Any]) -> list[Any]:
        values: list[Any] = []
        for doc in self.docs:
            if matches(doc, query):
                value = _get_path(doc, field)
                if value is not _MISSING and value not in values:
                    values.append(value)
        return values

    async def find_one_and_update(
        self,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        array_filters: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> Optional[dict[str, Any]]:
        self.updates.append((dict(query), dict(update), list(array_filters or []) or None))
        for doc in self.docs:
            if matches(doc, query):
                self._apply(doc, query, update, array_filters or [])
                return copy.deepcopy(doc)
        return None

    async def update_many(self, query: Mapping[str, Any], update: Mapping[str, Any]) -> int:
        self.updates.append((dict(query), dict(update), None))
        matched = [doc for doc in self.docs if matches(doc, query)]
        for doc in matched:
            self._apply(doc, query, update, [])
        return len(matched)

    def _apply(
        self,
        doc: dict[str, Any],
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        array_filters: Sequence[Mapping[str, Any]],
    ) -> None:
        for op, fields in update.items():
            for path, value in fields.items():
                if op == "$set":
                    self._set(doc, query, path, value, array_filters)
                elif op == "$unset":
                    _unset_path(doc, path)
                elif op == "$addToSet":
                    current = _get_path(doc, path)
                    items = current if current is not _MISSING and current else []
                    _set_path(doc, path, add_to_set(items, copy.deepcopy(value)))
                elif op == "$push":
                    current = _get_path(doc, path)
                    items = list(current) if current is not _MISSING and current else []
                    _set_path(doc, path, items + [copy.deepcopy(value)])
                elif op == "$pull":
                    items = _get_path(doc, path)
                    if isinstance(items, list):
                        _set_path(doc, path, [i for i in items if not matches(i, value)])
                else:
                    raise NotImplementedError(op)

    def _set(self, doc, query, path, value, array_filters) -> None:
        if ".$[" in path:
            array_path, rest = path.split(".$[", 1)
            name, field = rest.split("].", 1)
            prefix = f"{name}."
            conditions = {}
            for array_filter in array_filters:
                for key, cond in array_filter.items():
                    if key.startswith(prefix):
                        conditions[key[len(prefix):]] = cond
            for elem in _get_path(doc, array_path) or []:
                if matches(elem, conditions):
                    _set_path(elem, field, copy.deepcopy(value))
            return
        if ".$." in path:
            array_path, field = path.split(".$.", 1)
            elem_match = query[array_path]["$elemMatch"]
            for elem in _get_path(doc, array_path) or []:
                if matches(elem, elem_match):
                    _set_path(elem, field, copy.deepcopy(value))
                    return
            return
        _set_path(doc, path, copy.deepcopy(value))


class FakeUserStore:
    def __init__(self, users: Sequence[User] = ()):
        self.users = {str(user.id): user for user in users}

    async def find_user_by_id(self, user_id: Any) -> Optional[User]:
        return self.users.get(str(user_id))

    async def find_users_by_id(self, user_ids: Sequence[Any]) -> list[User]:
        wanted = {str(user_id) for user_id in user_ids}
        return [user for key, user in self.users.items() if key in wanted]


def make_project(**overrides: Any) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "_id": "p1",
        "name": "Marketing Site",
        "ownerId": "owner",
        "siteUrl": "https://marketing.example.org",
        "wizard": {"cms": {"id": "git", "title": "Git"}},
        "collaborators": [],
        "subscription": {"tierId": "2021a-business"},
    }
    doc.update(overrides)
    return doc


OWNER = User(id="owner", email="owner@acme.io")
EDITOR_USER = User(id="editor-user", email="editor@acme.io")
ADMIN_USER = User(id="admin-user", email="admin@acme.io")
INVITEE = User(id="invitee", email="invitee@acme.io")
STAFF_ADMIN = User(id="staff", email="staff@acme.io", roles=("admin",))
STAFF_SUPPORT = User(id="support", email="support@acme.io", roles=("admin", "support_admin"))
