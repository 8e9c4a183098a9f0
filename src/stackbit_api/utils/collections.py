"""Set-like helpers over list-valued document fields.

Array fields such as ``subscription.pastTierIds`` and collaborator
``notifications`` behave as sets keyed by value or by a field. The helpers
here enforce that on the in-memory representation; the store writes use the
matching ``$addToSet`` / filtered ``$set`` operators.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, TypeVar

T = TypeVar("T")


def add_to_set(values: Iterable[T], value: T) -> list[T]:
    result = list(values)
    if value not in result:
        result.append(value)
    return result


def upsert_by_key(
    items: Iterable[T],
    item: T,
    key: Callable[[T], Any],
) -> list[T]:
    """Replace the entry whose ``key`` matches ``item``'s, else append it."""
    result = list(items)
    item_key = key(item)
    for index, existing in enumerate(result):
        if key(existing) == item_key:
            result[index] = item
            return result
    result.append(item)
    return result


def unique(values: Iterable[T]) -> list[T]:
    """Order-preserving de-duplication."""
    seen: list[T] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen
