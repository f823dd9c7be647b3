"""Remote subject snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MemberRecord:
    """A subject as the remote system reports it."""

    subject_id: str
    scope_id: str
    display_name: str = ""
    held_roles: frozenset[str] = field(default_factory=frozenset)
    # Held roles the remote system manages itself; they can not be granted or revoked.
    integrated_roles: frozenset[str] = field(default_factory=frozenset)
