"""Reconciliation triggers — the event feed from the remote system.

Three event kinds drive the engine. The ``EventBus`` fans each published
event out to its subscribers synchronously; subscribers that need to do I/O
(controllers) enqueue the event and process it on their own worker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Union

from rolekeeper.models.role import RemoteRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleAttributesChanged:
    """A role's attributes changed. ``role`` is the snapshot after the change."""

    scope_id: str
    role: RemoteRole

    @property
    def role_id(self) -> str:
        return self.role.id


@dataclass(frozen=True)
class RoleDeleted:
    """A role was deleted from the scope."""

    scope_id: str
    role_id: str


@dataclass(frozen=True)
class SubjectAttributesChanged:
    """A subject's attributes changed. ``held_roles`` is the full set after the change."""

    scope_id: str
    subject_id: str
    held_roles: frozenset[str] = field(default_factory=frozenset)


RemoteEvent = Union[RoleAttributesChanged, RoleDeleted, SubjectAttributesChanged]

Subscriber = Callable[[RemoteEvent], object]


class EventBus:
    """Explicit, injectable fan-out of remote events.

    Subscribers are called in subscription order. A subscriber returning
    ``False`` is counted as having declined the event.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: RemoteEvent) -> int:
        """Deliver an event to every subscriber. Returns how many accepted it."""
        accepted = 0
        for subscriber in list(self._subscribers):
            try:
                if subscriber(event) is not False:
                    accepted += 1
            except Exception:
                logger.exception("Subscriber %r failed on %s", subscriber, type(event).__name__)
        return accepted

    def __len__(self) -> int:
        return len(self._subscribers)
