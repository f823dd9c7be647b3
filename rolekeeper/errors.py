"""Exception hierarchy for rolekeeper.

Reconciliation passes absorb these (log and move on); construction and
caller-initiated operations let them propagate.
"""

from __future__ import annotations


class RolekeeperError(Exception):
    """Base class for every error raised by rolekeeper."""


class ConfigurationError(RolekeeperError):
    """A persisted template or managed-role declaration is malformed."""


class RemoteError(RolekeeperError):
    """The remote role system rejected or failed a request."""


class RemoteUnavailableError(RemoteError):
    """Transient remote failure. The next triggering event retries."""


class NotAuthorizedError(RemoteError):
    """The role is integrated with the remote system and cannot be granted or revoked."""


class RoleMissingError(RolekeeperError):
    """The controller has no live role (it was adopted from an id that did not resolve)."""


class SubjectNotFoundError(RolekeeperError):
    """No subject with the given id exists in the scope."""

    def __init__(self, scope_id: str, subject_id: str):
        super().__init__(f"Subject {subject_id} not found in scope {scope_id}")
        self.scope_id = scope_id
        self.subject_id = subject_id
