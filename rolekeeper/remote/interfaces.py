"""Collaborator protocols for the remote role system.

Implementations wrap whatever client talks to the remote system. Every call
is a coroutine; failures are reported with ``RemoteError`` subclasses.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence, runtime_checkable

from rolekeeper.models.member import MemberRecord
from rolekeeper.models.role import RemoteRole


@runtime_checkable
class RemoteRoleStore(Protocol):
    """Reads and writes roles in a scope."""

    async def find_all(self, scope_id: str) -> Sequence[RemoteRole]:
        ...

    async def get(self, scope_id: str, role_id: str) -> RemoteRole | None:
        ...

    async def create(
        self, scope_id: str, attributes: dict[str, Any], reason: str | None = None
    ) -> RemoteRole:
        ...

    async def modify(
        self, role: RemoteRole, attributes: dict[str, Any], reason: str | None = None
    ) -> RemoteRole:
        ...

    async def move(
        self, role: RemoteRole, position: int, reason: str | None = None
    ) -> RemoteRole:
        ...


@runtime_checkable
class RemoteMemberStore(Protocol):
    """Reads subjects and changes the roles they hold."""

    async def fetch_member(self, scope_id: str, subject_id: str) -> MemberRecord | None:
        ...

    async def list_members(self, scope_id: str) -> Sequence[MemberRecord]:
        ...

    async def grant(
        self, scope_id: str, subject_id: str, role_id: str, reason: str | None = None
    ) -> None:
        ...

    async def revoke(
        self, scope_id: str, subject_id: str, role_id: str, reason: str | None = None
    ) -> None:
        ...

    async def replace_roles(
        self,
        scope_id: str,
        subject_id: str,
        role_ids: Iterable[str],
        reason: str | None = None,
    ) -> None:
        ...
