"""Controller registry — every managed role in the process, keyed by scope and role id.

The registry deploys controllers, wires them to the event bus, re-keys them
when their role is recreated under a new id, and answers the subject
directory's questions about which roles are under membership control.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from rolekeeper.audit import AuditTrail
from rolekeeper.controller.managed_role import ManagedRoleController
from rolekeeper.errors import RolekeeperError
from rolekeeper.membership.policy import EligibilityRule
from rolekeeper.models.scope import ScopeRegistry
from rolekeeper.remote.events import EventBus
from rolekeeper.remote.interfaces import RemoteRoleStore
from rolekeeper.settings import Settings
from rolekeeper.subjects.directory import Subject, SubjectDirectory
from rolekeeper.templates.config import ManagedRoleRecord, load_managed_roles, parse_managed_roles
from rolekeeper.templates.template import RoleTemplate

logger = logging.getLogger(__name__)

RuleResolver = Callable[[ManagedRoleRecord], "EligibilityRule | None"]


@dataclass
class DeploymentReport:
    """Outcome of deploying controllers from declarations."""

    deployed: list[ManagedRoleController] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class ControllerRegistry:
    """Arena of managed role controllers indexed by ``(scope id, role id)``."""

    def __init__(
        self,
        bus: EventBus,
        roles: RemoteRoleStore,
        directory: SubjectDirectory,
        settings: Settings | None = None,
        audit: AuditTrail | None = None,
    ):
        self.bus = bus
        self.roles = roles
        self.directory = directory
        self.settings = settings or Settings()
        if audit is None and self.settings.audit_path:
            audit = AuditTrail(self.settings.audit_path)
        self.audit = audit
        self.scopes = ScopeRegistry()
        self._controllers: dict[tuple[str, str], ManagedRoleController] = {}

        # The directory must see subject events before any controller does.
        directory.attach(bus)
        if directory.guard is None:
            directory.guard = self

    # -- deployment ----------------------------------------------------------

    async def deploy(self, template: RoleTemplate, **options) -> ManagedRoleController:
        """Deploy a controller for a template and start it."""
        controller = await ManagedRoleController.deploy(
            template, roles=self.roles, directory=self.directory, **self._defaults(options)
        )
        self.register(controller)
        return controller

    async def adopt(self, scope_id: str, role_id: str, **options) -> ManagedRoleController:
        """Adopt an existing role by id. Incomplete controllers are returned but not registered."""
        controller = await ManagedRoleController.adopt(
            scope_id, role_id, roles=self.roles, directory=self.directory, **self._defaults(options)
        )
        if controller.complete:
            self.register(controller)
        return controller

    def register(self, controller: ManagedRoleController) -> None:
        role = controller.require_role()
        key = (controller.scope_id, role.id)
        if key in self._controllers:
            if self._controllers[key] is controller:
                return
            raise ValueError(f"Role {role.id} in scope {controller.scope_id} is already managed")
        self._controllers[key] = controller
        self.scopes.get(controller.scope_id)
        controller.on_recreated(self._rekey)
        self.bus.subscribe(controller.submit)
        controller.start()

    async def deploy_records(
        self, records: list[ManagedRoleRecord], rules: RuleResolver | None = None
    ) -> DeploymentReport:
        """Deploy one controller per declaration. A failing declaration does not stop the rest."""
        report = DeploymentReport()
        for record in records:
            try:
                controller = await self.deploy(
                    record.to_template(),
                    allow_list=record.allow_list,
                    rule=rules(record) if rules else None,
                    policy=record.policy or self.settings.default_policy,
                    enforce_membership=record.enforce_membership,
                    properties_to_enforce=record.enforced_flags,
                )
            except (RolekeeperError, ValueError) as e:
                message = f"{record.name or '<unnamed>'} in scope {record.scope_id}: {e}"
                logger.error("Could not deploy managed role %s", message)
                report.errors.append(message)
                continue
            report.deployed.append(controller)
        return report

    async def load(self, path: str | Path, rules: RuleResolver | None = None) -> DeploymentReport:
        """Load declarations from a file and deploy them.

        Malformed entries are reported alongside deployment failures.
        """
        result = load_managed_roles(path)
        report = await self.deploy_records(result.records, rules)
        report.errors = result.errors + report.errors
        return report

    async def load_data(self, data: dict, rules: RuleResolver | None = None) -> DeploymentReport:
        result = parse_managed_roles(data)
        report = await self.deploy_records(result.records, rules)
        report.errors = result.errors + report.errors
        return report

    def _defaults(self, options: dict) -> dict:
        options.setdefault("audit", self.audit)
        options.setdefault("sweep_delay", self.settings.sweep_delay)
        options.setdefault("policy", self.settings.default_policy)
        return options

    def _rekey(self, controller: ManagedRoleController, previous_role_id: str) -> None:
        self._controllers.pop((controller.scope_id, previous_role_id), None)
        self._controllers[(controller.scope_id, controller.role.id)] = controller
        logger.debug("Managed role %s re-keyed to %s", previous_role_id, controller.role.id)

    # -- lookup --------------------------------------------------------------

    def get(self, scope_id: str, role_id: str) -> ManagedRoleController | None:
        return self._controllers.get((scope_id, role_id))

    def for_scope(self, scope_id: str) -> list[ManagedRoleController]:
        return [c for (scope, _), c in self._controllers.items() if scope == scope_id]

    def __iter__(self) -> Iterator[ManagedRoleController]:
        return iter(list(self._controllers.values()))

    def __len__(self) -> int:
        return len(self._controllers)

    # -- role guard ----------------------------------------------------------

    def is_protected(self, scope_id: str, role_id: str) -> bool:
        controller = self.get(scope_id, role_id)
        return controller is not None and controller.complete and controller.enforce_membership

    def authorizes(self, subject: Subject, role_id: str) -> bool:
        controller = self.get(subject.scope_id, role_id)
        if controller is None or not controller.enforce_membership:
            return True
        return controller.should_have(subject)

    # -- lifecycle -----------------------------------------------------------

    async def join(self) -> None:
        """Wait until every controller has drained its queue.

        Writes made while draining can queue events for other controllers, so
        this repeats until nothing is pending.
        """
        while True:
            for controller in self:
                await controller.join()
            if not any(controller.pending for controller in self):
                return

    async def close(self) -> None:
        for controller in self:
            self.bus.unsubscribe(controller.submit)
            await controller.close()
        self.directory.detach(self.bus)
