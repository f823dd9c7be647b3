"""Role templates — the desired state of a managed role.

A template names a subset of a role's attributes and the values they must
hold. ``None`` means the attribute is not managed: it is never compared and
never corrected, whatever the comparison flags say.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from rolekeeper.models.role import Color, RemoteRole
from rolekeeper.remote.interfaces import RemoteRoleStore
from rolekeeper.templates.flags import ATTRIBUTE_FIELDS, AttributeFlag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleTemplate:
    """Immutable desired-state descriptor for one role in one scope."""

    scope_id: str
    name: str | None = None
    color: Color | None = None
    position: int | None = None
    mentionable: bool | None = None
    hoisted: bool | None = None
    permissions: int | None = None
    comparison_policy: AttributeFlag = AttributeFlag.ALL

    def __post_init__(self) -> None:
        if self.color is not None and not isinstance(self.color, Color):
            object.__setattr__(self, "color", Color.parse(self.color))
        if not isinstance(self.comparison_policy, AttributeFlag):
            object.__setattr__(self, "comparison_policy", AttributeFlag(self.comparison_policy))

    # -- derived views -------------------------------------------------------

    @property
    def managed_attributes(self) -> AttributeFlag:
        """Flags of every attribute this template gives a value for."""
        flags = AttributeFlag.NONE
        for flag, attr in ATTRIBUTE_FIELDS:
            if getattr(self, attr) is not None:
                flags |= flag
        return flags

    def desired_attributes(
        self, flags: AttributeFlag | None = None, include_position: bool = True
    ) -> dict[str, Any]:
        """Return the attribute values to write for the given flags.

        Only non-null attributes are included.
        """
        if flags is None:
            flags = self.comparison_policy
        desired: dict[str, Any] = {}
        for flag, attr in ATTRIBUTE_FIELDS:
            if flag == AttributeFlag.POSITION and not include_position:
                continue
            value = getattr(self, attr)
            if flag in flags and value is not None:
                desired[attr] = value
        return desired

    # -- comparison ----------------------------------------------------------

    def matches(self, role: RemoteRole, flags: AttributeFlag | None = None) -> bool:
        """Return whether a live role satisfies this template.

        ``flags`` defaults to ``comparison_policy``. Comparing with
        ``AttributeFlag.NONE`` never matches, even an identical role.
        """
        if flags is None:
            flags = self.comparison_policy
        if flags == AttributeFlag.NONE:
            return False

        for flag, attr in ATTRIBUTE_FIELDS:
            if flag not in flags:
                continue
            expected = getattr(self, attr)
            if expected is not None and role.attribute(flag) != expected:
                return False
        return True

    def mismatched_attributes(self, role: RemoteRole, flags: AttributeFlag | None = None) -> AttributeFlag:
        """Flags of the managed attributes whose live value differs from the template."""
        if flags is None:
            flags = self.comparison_policy
        drift = AttributeFlag.NONE
        for flag, attr in ATTRIBUTE_FIELDS:
            expected = getattr(self, attr)
            if flag in flags and expected is not None and role.attribute(flag) != expected:
                drift |= flag
        return drift

    # -- remote resolution ---------------------------------------------------

    async def find(self, store: RemoteRoleStore) -> RemoteRole | None:
        """Return the first role in the scope that matches, or None."""
        for role in await store.find_all(self.scope_id):
            if self.matches(role):
                return role
        return None

    async def create(self, store: RemoteRoleStore, reason: str | None = None) -> RemoteRole:
        """Create a new role from this template, without looking for an existing one.

        The remote system cannot place a role at creation time, so position
        is applied with a follow-up move.
        """
        role = await store.create(
            self.scope_id, self.desired_attributes(AttributeFlag.ALL, include_position=False), reason
        )
        if self.position is not None:
            role = await store.move(role, self.position, reason)
        logger.info("Created role %s in scope %s", role, self.scope_id)
        return role

    async def resolve_or_create(self, store: RemoteRoleStore, reason: str | None = None) -> RemoteRole:
        """Find a matching role in the scope, creating one if none exists."""
        role = await self.find(store)
        if role is not None:
            return role
        return await self.create(store, reason)

    # -- construction helpers ------------------------------------------------

    @classmethod
    def from_role(
        cls, role: RemoteRole, comparison_policy: AttributeFlag = AttributeFlag.ALL
    ) -> RoleTemplate:
        """Build a template describing every attribute of an existing role."""
        return cls(
            scope_id=role.scope_id,
            name=role.name,
            color=role.color,
            position=role.position,
            mentionable=role.mentionable,
            hoisted=role.hoisted,
            permissions=role.permissions,
            comparison_policy=comparison_policy,
        )

    def to_config_data(self) -> str:
        from rolekeeper.templates.config import template_to_config_data

        return template_to_config_data(self)

    @classmethod
    def from_config_data(cls, data: str) -> RoleTemplate:
        from rolekeeper.templates.config import template_from_config_data

        return template_from_config_data(data)

    def __str__(self) -> str:
        return self.name or f"<unnamed template in {self.scope_id}>"
