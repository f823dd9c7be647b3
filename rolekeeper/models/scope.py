"""Scopes — the logical containers that partition roles, subjects and templates."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Scope:
    """One tenant's workspace in the remote system."""

    id: str
    name: str = ""

    def __str__(self) -> str:
        return self.name or self.id


class ScopeRegistry:
    """Maps remote container ids to their logical scope.

    Looking up the same container twice returns the same ``Scope``.
    """

    def __init__(self) -> None:
        self._scopes: dict[str, Scope] = {}

    def get(self, container_id: str | int, name: str = "") -> Scope:
        key = str(container_id)
        scope = self._scopes.get(key)
        if scope is None:
            scope = self._scopes.setdefault(key, Scope(id=key, name=name))
        return scope

    def find(self, container_id: str | int) -> Scope | None:
        return self._scopes.get(str(container_id))

    def __contains__(self, container_id: object) -> bool:
        return str(container_id) in self._scopes

    def __iter__(self):
        return iter(self._scopes.values())

    def __len__(self) -> int:
        return len(self._scopes)
