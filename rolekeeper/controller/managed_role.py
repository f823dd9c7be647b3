"""Managed role controllers — drift detection and self-healing for one role.

A controller owns one template, one membership policy, one allow-list and the
live handle to the remote role. It reacts to three remote events:

1. ``RoleAttributesChanged``: restore enforced attributes that drifted
2. ``RoleDeleted``: recreate the role and re-grant everyone who should hold it
3. ``SubjectAttributesChanged``: grant or revoke the role to match policy

Events are filtered at intake and processed one at a time, in arrival order,
on the controller's own worker task. While a correction write is in flight
the controller is ``suppressed``: attribute-change events for its role are
dropped at intake so the correction cannot re-trigger itself. Correction and
recreation additionally share a per-controller lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from rolekeeper.audit import AuditAction, AuditTrail
from rolekeeper.errors import RemoteError, RoleMissingError, RolekeeperError, SubjectNotFoundError
from rolekeeper.membership.policy import (
    EligibilityRule,
    MembershipPolicy,
    admits_unlisted,
    as_rule,
    is_eligible,
)
from rolekeeper.models.role import RemoteRole
from rolekeeper.remote.events import (
    RemoteEvent,
    RoleAttributesChanged,
    RoleDeleted,
    SubjectAttributesChanged,
)
from rolekeeper.remote.interfaces import RemoteRoleStore
from rolekeeper.settings import DEFAULT_SWEEP_DELAY
from rolekeeper.subjects.directory import Subject, SubjectDirectory
from rolekeeper.templates.flags import AttributeFlag
from rolekeeper.templates.template import RoleTemplate

logger = logging.getLogger(__name__)

_REASON = "Managed role state :: "
REASON_REQUIRED = _REASON + "Subject is required to have this role."
REASON_NOT_AUTHORIZED = _REASON + "Subject is not authorized to have this role."
REASON_NOW_REQUIRED = _REASON + "Subject is now required to have this role."
REASON_NO_LONGER_AUTHORIZED = _REASON + "Subject is no longer authorized to have this role."
REASON_MANUAL = _REASON + "Role membership changed by an operator."
REASON_PROPERTIES = _REASON + "Managed roles control their own properties."
REASON_CREATED = _REASON + "Managed role created from its template."
REASON_UNDELETABLE = _REASON + "Managed roles can not be deleted."

DEFAULT_POLICY = MembershipPolicy.LIST_AND_PREDICATE_OR_ABSENT


class ControllerState(Enum):
    """Lifecycle of a controller's hold on its live role."""

    ACTIVE = "active"
    RECREATING = "recreating"
    INCOMPLETE = "incomplete"  # Adopted from a role id that did not resolve


class MembershipChange(Enum):
    """Outcome of an allow-list mutation or a membership pass."""

    ADDED = "added"
    REMOVED = "removed"
    GRANTED = "granted"
    REVOKED = "revoked"
    UNCHANGED = "unchanged"


@dataclass
class SweepReport:
    """Result of a full-scope membership sweep."""

    role_id: str
    checked: int = 0
    granted: int = 0
    revoked: int = 0
    failed: int = 0
    skipped: bool = False

    @property
    def changed(self) -> int:
        return self.granted + self.revoked

    def summary(self) -> str:
        if self.skipped:
            return f"role {self.role_id}: sweep skipped (membership not enforced)"
        return (
            f"role {self.role_id}: checked {self.checked}, granted {self.granted}, "
            f"revoked {self.revoked}, failed {self.failed}"
        )


RecreatedCallback = Callable[["ManagedRoleController", str], None]


class ManagedRoleController:
    """Continuously enforces one managed role's attributes and membership."""

    def __init__(
        self,
        template: RoleTemplate,
        role: RemoteRole | None,
        *,
        roles: RemoteRoleStore,
        directory: SubjectDirectory,
        allow_list: Iterable[str | int] | None = None,
        rule: EligibilityRule | Callable[[Subject], bool] | None = None,
        policy: MembershipPolicy = DEFAULT_POLICY,
        enforce_membership: bool = True,
        properties_to_enforce: AttributeFlag | None = None,
        audit: AuditTrail | None = None,
        sweep_delay: float = DEFAULT_SWEEP_DELAY,
    ):
        self.template = template
        self.scope_id = template.scope_id
        self.role = role
        self.complete = role is not None
        self.state = ControllerState.ACTIVE if self.complete else ControllerState.INCOMPLETE
        self.allow_list: set[str] = {str(i) for i in allow_list or ()}
        self.rule = as_rule(rule)
        self.policy = policy
        self.enforce_membership = enforce_membership
        self.properties_to_enforce = properties_to_enforce
        self.sweep_delay = sweep_delay
        self.suppressed = False

        self._roles = roles
        self._directory = directory
        self._audit = audit
        self._lock = asyncio.Lock()
        self._queue: asyncio.Queue[RemoteEvent] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._recreated_callbacks: list[RecreatedCallback] = []

    # -- construction --------------------------------------------------------

    @classmethod
    async def deploy(
        cls,
        template: RoleTemplate,
        *,
        roles: RemoteRoleStore,
        directory: SubjectDirectory,
        **options,
    ) -> ManagedRoleController:
        """Resolve (or create) the role a template describes and control it."""
        role = await template.resolve_or_create(roles, REASON_CREATED)
        controller = cls(template, role, roles=roles, directory=directory, **options)
        logger.info("Initialized managed role [%s]", role)
        return controller

    @classmethod
    async def adopt(
        cls,
        scope_id: str,
        role_id: str,
        *,
        roles: RemoteRoleStore,
        directory: SubjectDirectory,
        comparison_policy: AttributeFlag = AttributeFlag.ALL,
        **options,
    ) -> ManagedRoleController:
        """Control an existing role by id, taking its current attributes as the template.

        If the id does not resolve the controller is returned incomplete: it
        accepts no events and ``require_role`` raises. Callers must check
        ``complete`` before use.
        """
        role = await roles.get(scope_id, str(role_id))
        if role is None:
            logger.error("Role %s does not exist in scope %s; controller is incomplete", role_id, scope_id)
            template = RoleTemplate(scope_id=scope_id, comparison_policy=AttributeFlag.NONE)
            return cls(template, None, roles=roles, directory=directory, **options)

        template = RoleTemplate.from_role(role, comparison_policy)
        controller = cls(template, role, roles=roles, directory=directory, **options)
        logger.info("Initialized managed role [%s]", role)
        return controller

    # -- configuration views -------------------------------------------------

    @property
    def properties_to_enforce(self) -> AttributeFlag:
        return self._properties_to_enforce

    @properties_to_enforce.setter
    def properties_to_enforce(self, value: AttributeFlag | None) -> None:
        # None falls back to the template's comparison flags, so this is never None.
        if value is None:
            value = self.template.comparison_policy
        self._properties_to_enforce = AttributeFlag(value)

    @property
    def enforced_attributes(self) -> AttributeFlag:
        """Requested flags clamped to the attributes the template actually sets."""
        return self._properties_to_enforce & self.template.managed_attributes

    def require_role(self) -> RemoteRole:
        if not self.complete or self.role is None:
            raise RoleMissingError(
                "This managed role controller is incomplete; its role could not be resolved."
            )
        return self.role

    def on_recreated(self, callback: RecreatedCallback) -> None:
        """Register a callback run with ``(controller, previous_role_id)`` after recreation."""
        self._recreated_callbacks.append(callback)

    # -- evaluation ----------------------------------------------------------

    def should_have(self, subject: Subject) -> bool:
        return is_eligible(self.policy, subject, self.allow_list, self.rule)

    def is_role_information_correct(self, role: RemoteRole, use_template_comparison: bool = False) -> bool:
        """Whether a role's controlled attributes hold their template values.

        With ``use_template_comparison`` the template's own comparison flags
        are used instead of the enforced set.
        """
        if use_template_comparison:
            return self.template.matches(role)
        enforced = self.enforced_attributes
        if enforced == AttributeFlag.NONE:
            return True
        return self.template.matches(role, enforced)

    # -- event intake --------------------------------------------------------

    def accepts(self, event: RemoteEvent) -> bool:
        """Whether an event concerns this controller at all."""
        if not self.complete or event.scope_id != self.scope_id:
            return False
        if isinstance(event, SubjectAttributesChanged):
            return True
        return event.role_id == self.role.id

    def submit(self, event: RemoteEvent) -> bool:
        """Queue an event for processing. Returns False if it was filtered out."""
        if not self.accepts(event):
            return False
        if isinstance(event, RoleAttributesChanged) and self.suppressed:
            logger.debug("Dropping attribute change for [%s]: correction in flight", self.role)
            return False
        self._queue.put_nowait(event)
        return True

    async def handle(self, event: RemoteEvent) -> None:
        """Run one reconciliation pass. Failures are logged, never raised."""
        if not self.complete:
            return
        try:
            if self.state is ControllerState.RECREATING:
                # A previous recreation failed; every event retries it first.
                if not await self._recreate() or isinstance(event, RoleDeleted):
                    return

            if isinstance(event, RoleAttributesChanged):
                await self.correct_attributes(event.role)
            elif isinstance(event, RoleDeleted):
                if event.role_id == self.role.id:
                    await self.on_role_deleted()
            elif isinstance(event, SubjectAttributesChanged):
                subject = await self._directory.resolve(self.scope_id, event.subject_id)
                await self.update_membership_for(subject)
        except RolekeeperError as e:
            logger.warning(
                "Reconciliation of [%s] on %s failed: %s", self.role, type(event).__name__, e
            )

    # -- worker --------------------------------------------------------------

    def start(self) -> None:
        """Start processing queued events on the running loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name=f"rolekeeper-{self.scope_id}-{self.role.id if self.role else 'incomplete'}"
            )

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.handle(event)
            except Exception:
                logger.exception("Unexpected failure reconciling [%s]", self.role)
            finally:
                self._queue.task_done()

    # -- attribute drift -----------------------------------------------------

    async def correct_attributes(self, live: RemoteRole | None = None) -> bool:
        """Restore enforced attributes that drifted. Returns True if a write was issued."""
        self.require_role()
        enforced = self.enforced_attributes
        if enforced == AttributeFlag.NONE or self.state is not ControllerState.ACTIVE:
            return False
        live = live or self.role
        if live.id != self.role.id:
            return False
        if self.is_role_information_correct(live):
            self.role = live
            return False

        async with self._lock:
            if self.state is not ControllerState.ACTIVE or live.id != self.role.id:
                return False
            drift = self.template.mismatched_attributes(live, enforced)
            logger.debug("Controlled attributes of [%s] drifted (%s); correcting", live, drift)

            # Only drifted attributes are written; matching ones are left alone.
            changes = self.template.desired_attributes(drift, include_position=False)
            self.suppressed = True
            try:
                role = live
                if changes:
                    role = await self._roles.modify(role, changes, REASON_PROPERTIES)
                    self._journal(AuditAction.MODIFY, REASON_PROPERTIES, details={"attributes": sorted(changes)})
                position = self.template.position
                if AttributeFlag.POSITION in enforced and position is not None and role.position != position:
                    role = await self._roles.move(role, position, REASON_PROPERTIES)
                    self._journal(AuditAction.MOVE, REASON_PROPERTIES, details={"position": position})
            except RemoteError as e:
                logger.warning("Correction of [%s] abandoned until the next change: %s", live, e)
                self._journal(AuditAction.MODIFY, REASON_PROPERTIES, success=False, details={"error": str(e)})
                return False
            finally:
                self.suppressed = False

            self.role = role
            logger.info("Restored controlled attributes of managed role [%s]", role)
            return True

    # -- deletion ------------------------------------------------------------

    async def on_role_deleted(self) -> bool:
        """Recreate the role and re-grant it. Returns True once the controller is active again."""
        self.require_role()
        logger.warning("Managed role [%s] was deleted. Recreating it and reassigning its members.", self.role)
        self.state = ControllerState.RECREATING
        return await self._recreate()

    async def _recreate(self) -> bool:
        async with self._lock:
            previous = self.role
            self.state = ControllerState.RECREATING
            try:
                role = await self.template.resolve_or_create(self._roles, REASON_UNDELETABLE)
            except RemoteError as e:
                logger.error("Recreating managed role %s failed; will retry on the next event: %s", self.template, e)
                self._journal(AuditAction.RECREATE, REASON_UNDELETABLE, success=False, details={"error": str(e)})
                return False

            self.role = role
            self._journal(AuditAction.RECREATE, REASON_UNDELETABLE, details={"previous_role_id": previous.id})
            for callback in self._recreated_callbacks:
                callback(self, previous.id)

            await self._replay_membership()
            self.state = ControllerState.ACTIVE
            logger.info("Successfully reinstated managed role [%s]", role)
            return True

    async def _replay_membership(self) -> None:
        """Restore membership after recreation, pausing between subjects like a sweep."""
        if not self.enforce_membership:
            return
        seen: set[str] = set()
        for subject_id in sorted(self.allow_list):
            if seen:
                await asyncio.sleep(self.sweep_delay)
            seen.add(subject_id)
            try:
                subject = await self._directory.resolve(self.scope_id, subject_id)
                await self._reconcile_subject(subject)
            except RolekeeperError as e:
                logger.warning("Could not restore [%s] for subject %s: %s", self.role, subject_id, e)

        if not admits_unlisted(self.policy):
            return
        try:
            subjects = await self._directory.members(self.scope_id)
        except RemoteError as e:
            logger.warning("Could not list subjects to restore [%s]: %s", self.role, e)
            return
        for subject in subjects:
            if subject.subject_id in seen:
                continue
            if seen:
                await asyncio.sleep(self.sweep_delay)
            seen.add(subject.subject_id)
            try:
                await self._reconcile_subject(subject)
            except RolekeeperError as e:
                logger.warning("Could not restore [%s] for subject %s: %s", self.role, subject, e)

    # -- membership ----------------------------------------------------------

    async def update_membership_for(self, subject: Subject) -> MembershipChange:
        """Grant or revoke the role so the subject matches policy."""
        if not self.enforce_membership or not self.complete:
            return MembershipChange.UNCHANGED
        if self.state is not ControllerState.ACTIVE:
            logger.debug("Skipping membership of %s: [%s] is being recreated", subject, self.template)
            return MembershipChange.UNCHANGED
        return await self._reconcile_subject(subject)

    async def _reconcile_subject(
        self,
        subject: Subject,
        grant_reason: str = REASON_REQUIRED,
        revoke_reason: str = REASON_NOT_AUTHORIZED,
    ) -> MembershipChange:
        should_have = self.should_have(subject)
        does_have = subject.has_role(self.role)
        if should_have == does_have:
            return MembershipChange.UNCHANGED

        if should_have:
            await self._write_membership(subject, AuditAction.GRANT, grant_reason)
            logger.info("Added managed role [%s] to subject %s", self.role.name, subject)
            return MembershipChange.GRANTED

        await self._write_membership(subject, AuditAction.REVOKE, revoke_reason)
        logger.info("Removed managed role [%s] from subject %s", self.role.name, subject)
        return MembershipChange.REVOKED

    async def _write_membership(self, subject: Subject, action: str, reason: str) -> bool:
        try:
            if action == AuditAction.GRANT:
                changed = await subject.grant(self.role, reason)
            else:
                changed = await subject.revoke(self.role, reason)
        except RemoteError as e:
            self._journal(action, reason, subject.subject_id, success=False, details={"error": str(e)})
            raise
        self._journal(action, reason, subject.subject_id)
        return changed

    async def enforce_all_subjects_compliant(self) -> SweepReport:
        """Reconcile every subject in the scope, pausing between subjects.

        The pause keeps a full sweep inside the remote system's write-rate
        limits; a sweep over a large scope takes a long time to finish.
        """
        report = SweepReport(role_id=self.role.id if self.role else "")
        if not self.enforce_membership or not self.complete:
            report.skipped = True
            return report

        subjects = await self._directory.members(self.scope_id)
        for index, subject in enumerate(subjects):
            if index:
                await asyncio.sleep(self.sweep_delay)
            report.checked += 1
            try:
                change = await self.update_membership_for(subject)
            except RolekeeperError as e:
                report.failed += 1
                logger.warning("Sweep of [%s] failed for subject %s: %s", self.role, subject, e)
                continue
            if change is MembershipChange.GRANTED:
                report.granted += 1
            elif change is MembershipChange.REVOKED:
                report.revoked += 1

        logger.info("Sweep finished: %s", report.summary())
        return report

    # -- allow-list ----------------------------------------------------------

    async def add_to_allow_list(self, subject_id: str | int) -> MembershipChange:
        """Allow a subject to hold the role and reconcile them.

        Adding an id already on the list is a no-op. For a role whose
        membership is not enforced, the role is granted directly instead.
        """
        role = self.require_role()
        subject_id = str(subject_id)

        if not self.enforce_membership:
            subject = await self._directory.resolve(self.scope_id, subject_id)
            if subject.has_role(role):
                return MembershipChange.UNCHANGED
            await self._write_membership(subject, AuditAction.GRANT, REASON_MANUAL)
            return MembershipChange.GRANTED

        if subject_id in self.allow_list:
            return MembershipChange.UNCHANGED
        self.allow_list.add(subject_id)
        logger.info("Added subject %s to the allow-list of managed role [%s]", subject_id, role.name)

        if self.state is ControllerState.ACTIVE:
            subject = await self._directory.resolve(self.scope_id, subject_id)
            await self._reconcile_subject(subject, grant_reason=REASON_NOW_REQUIRED)
        return MembershipChange.ADDED

    async def remove_from_allow_list(self, subject_id: str | int) -> MembershipChange:
        """Disallow a subject and reconcile them. Removing an absent id is a no-op."""
        role = self.require_role()
        subject_id = str(subject_id)

        if not self.enforce_membership:
            subject = await self._directory.resolve(self.scope_id, subject_id)
            if not subject.has_role(role):
                return MembershipChange.UNCHANGED
            await self._write_membership(subject, AuditAction.REVOKE, REASON_MANUAL)
            return MembershipChange.REVOKED

        if subject_id not in self.allow_list:
            return MembershipChange.UNCHANGED
        self.allow_list.discard(subject_id)
        logger.info("Removed subject %s from the allow-list of managed role [%s]", subject_id, role.name)

        if self.state is ControllerState.ACTIVE:
            try:
                subject = await self._directory.resolve(self.scope_id, subject_id)
            except SubjectNotFoundError:
                logger.debug("Subject %s left scope %s; nothing to revoke", subject_id, self.scope_id)
            else:
                await self._reconcile_subject(subject, revoke_reason=REASON_NO_LONGER_AUTHORIZED)
        return MembershipChange.REMOVED

    # -- helpers -------------------------------------------------------------

    def _journal(
        self,
        action: str,
        reason: str,
        subject_id: str = "",
        success: bool = True,
        details: dict | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.record(
            scope_id=self.scope_id,
            role_id=self.role.id if self.role else "",
            action=action,
            reason=reason,
            subject_id=subject_id,
            success=success,
            details=details,
        )

    def __repr__(self) -> str:
        role = self.role.id if self.role else None
        return f"ManagedRoleController(scope={self.scope_id!r}, role={role!r}, state={self.state.value})"
