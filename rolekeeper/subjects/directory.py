"""Subject directory — the process-wide cache of subjects and their held roles.

Subjects are cached per ``(scope id, subject id)``; resolving the same id
twice returns the same instance. The directory subscribes to the event bus
so that cached held-role sets track ``SubjectAttributesChanged`` events.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from rolekeeper.errors import NotAuthorizedError, SubjectNotFoundError
from rolekeeper.models.member import MemberRecord
from rolekeeper.models.role import RemoteRole
from rolekeeper.remote.events import EventBus, RemoteEvent, SubjectAttributesChanged
from rolekeeper.remote.interfaces import RemoteMemberStore

logger = logging.getLogger(__name__)


class RoleGuard(Protocol):
    """Decides which roles are under membership control and who may hold them."""

    def is_protected(self, scope_id: str, role_id: str) -> bool:
        ...

    def authorizes(self, subject: Subject, role_id: str) -> bool:
        ...


class Subject:
    """A cached subject in one scope."""

    def __init__(
        self,
        directory: SubjectDirectory,
        scope_id: str,
        subject_id: str,
        display_name: str = "",
        held_roles: Iterable[str] = (),
        integrated_roles: Iterable[str] = (),
    ):
        self._directory = directory
        self.scope_id = scope_id
        self.subject_id = subject_id
        self.display_name = display_name
        self.held_roles: set[str] = set(held_roles)
        self.integrated_roles: set[str] = set(integrated_roles) & self.held_roles

    def has_role(self, role: RemoteRole | str) -> bool:
        role_id = role.id if isinstance(role, RemoteRole) else role
        return role_id in self.held_roles

    async def grant(self, role: RemoteRole, reason: str | None = None) -> bool:
        """Grant a role. Returns False if the subject already holds it.

        Raises:
            NotAuthorizedError: the role is integrated with the remote system.
        """
        if role.integrated:
            raise NotAuthorizedError(f"Cannot control integrated role {role}")
        if self.has_role(role):
            return False
        await self._directory.store.grant(self.scope_id, self.subject_id, role.id, reason)
        self.held_roles.add(role.id)
        return True

    async def revoke(self, role: RemoteRole, reason: str | None = None) -> bool:
        """Revoke a role. Returns False if the subject does not hold it.

        Raises:
            NotAuthorizedError: the role is integrated with the remote system.
        """
        if role.integrated:
            raise NotAuthorizedError(f"Cannot control integrated role {role}")
        if not self.has_role(role):
            return False
        await self._directory.store.revoke(self.scope_id, self.subject_id, role.id, reason)
        self.held_roles.discard(role.id)
        return True

    async def toggle(self, role: RemoteRole, reason: str | None = None) -> bool:
        """Grant the role if missing, revoke it if held. Returns True if it was granted."""
        if self.has_role(role):
            await self.revoke(role, reason)
            return False
        await self.grant(role, reason)
        return True

    async def replace_roles(self, roles: Iterable[RemoteRole], reason: str | None = None) -> set[str]:
        """Replace every role the subject holds with the given roles.

        Roles the caller cannot hand out are filtered politely instead of
        failing the whole replacement:

        - an integrated or protected managed role the subject does not hold
          and is not authorized for is dropped;
        - a protected managed role the subject legitimately holds is retained
          even when the replacement leaves it out;
        - an integrated role the subject holds is always retained.

        Returns the role ids actually written.
        """
        guard = self._directory.guard
        final: list[str] = []
        for role in roles:
            if role.id in final:
                continue
            if not self.has_role(role):
                if role.integrated:
                    logger.debug("Dropping integrated role %s from replacement for %s", role, self)
                    continue
                if guard is not None and guard.is_protected(self.scope_id, role.id) and not guard.authorizes(self, role.id):
                    logger.debug("Dropping managed role %s from replacement for %s", role, self)
                    continue
            final.append(role.id)

        for role_id in sorted(self.integrated_roles & self.held_roles):
            if role_id not in final:
                final.append(role_id)

        if guard is not None:
            for role_id in sorted(self.held_roles):
                if role_id in final:
                    continue
                if guard.is_protected(self.scope_id, role_id) and guard.authorizes(self, role_id):
                    final.append(role_id)

        await self._directory.store.replace_roles(self.scope_id, self.subject_id, final, reason)
        self.held_roles = set(final)
        return set(final)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Subject):
            return NotImplemented
        return self.scope_id == other.scope_id and self.subject_id == other.subject_id

    def __hash__(self) -> int:
        return hash((self.scope_id, self.subject_id))

    def __repr__(self) -> str:
        return f"Subject({self.scope_id!r}, {self.subject_id!r})"

    def __str__(self) -> str:
        return self.display_name or self.subject_id


class SubjectDirectory:
    """Resolves subject ids to cached ``Subject`` instances."""

    def __init__(self, store: RemoteMemberStore, guard: RoleGuard | None = None):
        self.store = store
        self.guard = guard
        self._cache: dict[tuple[str, str], Subject] = {}

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(self.apply)

    def detach(self, bus: EventBus) -> None:
        bus.unsubscribe(self.apply)

    def apply(self, event: RemoteEvent) -> bool:
        """Keep cached held-role sets in step with the event feed."""
        if not isinstance(event, SubjectAttributesChanged):
            return False
        subject = self._cache.get((event.scope_id, event.subject_id))
        if subject is None:
            return False
        subject.held_roles = set(event.held_roles)
        subject.integrated_roles &= subject.held_roles
        return True

    def cached(self, scope_id: str, subject_id: str) -> Subject | None:
        return self._cache.get((scope_id, subject_id))

    async def resolve(self, scope_id: str, subject_id: str | int) -> Subject:
        """Return the cached subject, fetching it from the remote on first use."""
        subject_id = str(subject_id)
        key = (scope_id, subject_id)
        subject = self._cache.get(key)
        if subject is not None:
            return subject

        record = await self.store.fetch_member(scope_id, subject_id)
        if record is None:
            raise SubjectNotFoundError(scope_id, subject_id)
        # Another resolve may have populated the key while we awaited.
        return self._cache.setdefault(key, self._from_record(record))

    async def members(self, scope_id: str) -> list[Subject]:
        """Every subject in the scope, refreshed from the remote listing."""
        subjects = []
        for record in await self.store.list_members(scope_id):
            subject = self._cache.setdefault((scope_id, record.subject_id), self._from_record(record))
            subject.held_roles = set(record.held_roles)
            subject.integrated_roles = set(record.integrated_roles) & subject.held_roles
            subject.display_name = record.display_name or subject.display_name
            subjects.append(subject)
        return subjects

    def _from_record(self, record: MemberRecord) -> Subject:
        return Subject(
            self,
            scope_id=record.scope_id,
            subject_id=record.subject_id,
            display_name=record.display_name,
            held_roles=record.held_roles,
            integrated_roles=record.integrated_roles,
        )

    def __len__(self) -> int:
        return len(self._cache)
