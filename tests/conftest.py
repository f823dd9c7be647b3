"""Shared fixtures: an in-memory remote role system wired to an event bus."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from rolekeeper.audit import AuditTrail
from rolekeeper.errors import RemoteUnavailableError
from rolekeeper.models.member import MemberRecord
from rolekeeper.models.role import RemoteRole
from rolekeeper.remote.events import (
    EventBus,
    RoleAttributesChanged,
    RoleDeleted,
    SubjectAttributesChanged,
)
from rolekeeper.subjects.directory import SubjectDirectory

SCOPE = "guild-1"


class FakeRemote:
    """Implements both remote store protocols in memory.

    Every write publishes the event the real remote system would send back.
    ``fail(method)`` makes the next call(s) to that method raise
    ``RemoteUnavailableError``; ``gate`` holds ``modify`` until it is set.
    """

    def __init__(self, bus: EventBus):
        self.bus = bus
        self.roles: dict[tuple[str, str], RemoteRole] = {}
        self.members: dict[tuple[str, str], MemberRecord] = {}
        self.creates: list[dict] = []
        self.modify_calls: list[tuple[str, dict, str | None]] = []
        self.move_calls: list[tuple[str, int, str | None]] = []
        self.grants: list[tuple[str, str, str | None]] = []
        self.revokes: list[tuple[str, str, str | None]] = []
        self.replacements: list[tuple[str, list[str]]] = []
        self.gate: asyncio.Event | None = None
        self.modify_started = asyncio.Event()
        self._failures: dict[str, int] = {}
        self._next_id = 1000

    # -- test controls -------------------------------------------------------

    def fail(self, method: str, times: int = 1) -> None:
        self._failures[method] = self._failures.get(method, 0) + times

    def _maybe_fail(self, method: str) -> None:
        if self._failures.get(method):
            self._failures[method] -= 1
            raise RemoteUnavailableError(f"{method} is unavailable")

    def add_role(self, scope_id: str = SCOPE, **attributes) -> RemoteRole:
        role = RemoteRole(id=self._new_id(), scope_id=scope_id, **attributes)
        self.roles[(scope_id, role.id)] = role
        return role

    def add_member(self, subject_id: str, scope_id: str = SCOPE, roles=(), name: str = "") -> MemberRecord:
        record = MemberRecord(subject_id, scope_id, name or f"user-{subject_id}", frozenset(roles))
        self.members[(scope_id, subject_id)] = record
        return record

    def edit_role(self, role_id: str, scope_id: str = SCOPE, **changes) -> RemoteRole:
        """An operator edits a role by hand."""
        role = self.roles[(scope_id, role_id)].with_attributes(**changes)
        self.roles[(scope_id, role_id)] = role
        self.bus.publish(RoleAttributesChanged(scope_id, role))
        return role

    def delete_role(self, role_id: str, scope_id: str = SCOPE) -> None:
        """An operator deletes a role; every holder loses it."""
        del self.roles[(scope_id, role_id)]
        holders = []
        for key, record in self.members.items():
            if key[0] == scope_id and role_id in record.held_roles:
                self.members[key] = replace(record, held_roles=record.held_roles - {role_id})
                holders.append(key[1])
        self.bus.publish(RoleDeleted(scope_id, role_id))
        for subject_id in holders:
            self._publish_member(scope_id, subject_id)

    def set_member_roles(self, subject_id: str, roles, scope_id: str = SCOPE) -> None:
        """An operator edits a subject's roles by hand."""
        record = self.members[(scope_id, subject_id)]
        self.members[(scope_id, subject_id)] = replace(record, held_roles=frozenset(roles))
        self._publish_member(scope_id, subject_id)

    def held(self, subject_id: str, scope_id: str = SCOPE) -> frozenset[str]:
        return self.members[(scope_id, subject_id)].held_roles

    def role_named(self, name: str, scope_id: str = SCOPE) -> RemoteRole | None:
        for (scope, _), role in self.roles.items():
            if scope == scope_id and role.name == name:
                return role
        return None

    # -- RemoteRoleStore -----------------------------------------------------

    async def find_all(self, scope_id):
        self._maybe_fail("find_all")
        return [role for (scope, _), role in self.roles.items() if scope == scope_id]

    async def get(self, scope_id, role_id):
        self._maybe_fail("get")
        return self.roles.get((scope_id, role_id))

    async def create(self, scope_id, attributes, reason=None):
        self._maybe_fail("create")
        self.creates.append(dict(attributes))
        return self.add_role(scope_id, **attributes)

    async def modify(self, role, attributes, reason=None):
        self.modify_calls.append((role.id, dict(attributes), reason))
        self.modify_started.set()
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("modify")
        return self._apply(role, attributes)

    async def move(self, role, position, reason=None):
        self.move_calls.append((role.id, position, reason))
        self._maybe_fail("move")
        return self._apply(role, {"position": position})

    def _apply(self, role, attributes):
        updated = self.roles[(role.scope_id, role.id)].with_attributes(**attributes)
        self.roles[(role.scope_id, role.id)] = updated
        self.bus.publish(RoleAttributesChanged(role.scope_id, updated))
        return updated

    # -- RemoteMemberStore ---------------------------------------------------

    async def fetch_member(self, scope_id, subject_id):
        self._maybe_fail("fetch_member")
        record = self.members.get((scope_id, subject_id))
        return self._reported(record) if record is not None else None

    async def list_members(self, scope_id):
        self._maybe_fail("list_members")
        return [self._reported(record) for (scope, _), record in sorted(self.members.items()) if scope == scope_id]

    def _reported(self, record: MemberRecord) -> MemberRecord:
        integrated = frozenset(
            role_id
            for role_id in record.held_roles
            if getattr(self.roles.get((record.scope_id, role_id)), "integrated", False)
        )
        return replace(record, integrated_roles=integrated)

    async def grant(self, scope_id, subject_id, role_id, reason=None):
        self._maybe_fail("grant")
        self.grants.append((subject_id, role_id, reason))
        record = self.members[(scope_id, subject_id)]
        self.members[(scope_id, subject_id)] = replace(record, held_roles=record.held_roles | {role_id})
        self._publish_member(scope_id, subject_id)

    async def revoke(self, scope_id, subject_id, role_id, reason=None):
        self._maybe_fail("revoke")
        self.revokes.append((subject_id, role_id, reason))
        record = self.members[(scope_id, subject_id)]
        self.members[(scope_id, subject_id)] = replace(record, held_roles=record.held_roles - {role_id})
        self._publish_member(scope_id, subject_id)

    async def replace_roles(self, scope_id, subject_id, role_ids, reason=None):
        self._maybe_fail("replace_roles")
        role_ids = list(role_ids)
        self.replacements.append((subject_id, role_ids))
        record = self.members[(scope_id, subject_id)]
        self.members[(scope_id, subject_id)] = replace(record, held_roles=frozenset(role_ids))
        self._publish_member(scope_id, subject_id)

    def _publish_member(self, scope_id, subject_id):
        record = self.members[(scope_id, subject_id)]
        self.bus.publish(SubjectAttributesChanged(scope_id, subject_id, record.held_roles))

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def remote(bus):
    return FakeRemote(bus)


@pytest.fixture
def directory(remote, bus):
    directory = SubjectDirectory(remote)
    directory.attach(bus)
    return directory


@pytest.fixture
def audit():
    return AuditTrail()
