"""Template persistence — flat key/value records and managed-role declaration files.

A persisted template is a flat record: ``scope_id`` plus one key per managed
attribute and the integer ``comparison_method``. An absent key reloads as a
``None`` attribute, so a record round-trips exactly.

Declaration files (YAML or JSON) list managed roles under ``managed_roles``.
A malformed entry is reported and skipped; it never stops the others from
loading.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rolekeeper.errors import ConfigurationError
from rolekeeper.membership.policy import MembershipPolicy
from rolekeeper.models.role import Color
from rolekeeper.templates.flags import AttributeFlag
from rolekeeper.templates.template import RoleTemplate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------


class TemplateRecord(BaseModel):
    """The persisted form of a ``RoleTemplate``."""

    model_config = ConfigDict(extra="ignore")

    scope_id: str
    name: Optional[str] = None
    color: Optional[int] = None
    position: Optional[int] = None
    mentionable: Optional[bool] = None
    hoisted: Optional[bool] = None
    permissions: Optional[int] = None
    comparison_method: int = int(AttributeFlag.ALL)

    @field_validator("scope_id", mode="before")
    @classmethod
    def _scope_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("color", mode="before")
    @classmethod
    def _color_as_int(cls, value: Any) -> Any:
        if value is None or isinstance(value, int):
            return value
        try:
            return Color.parse(value).value
        except ValueError as e:
            raise ValueError(f"invalid color {value!r}") from e

    @field_validator("comparison_method")
    @classmethod
    def _known_flags(cls, value: int) -> int:
        if value < 0 or value & ~int(AttributeFlag.ALL):
            raise ValueError(f"unknown comparison flags in {value}")
        return value

    def to_template(self) -> RoleTemplate:
        return RoleTemplate(
            scope_id=self.scope_id,
            name=self.name,
            color=Color(self.color) if self.color is not None else None,
            position=self.position,
            mentionable=self.mentionable,
            hoisted=self.hoisted,
            permissions=self.permissions,
            comparison_policy=AttributeFlag(self.comparison_method),
        )

    @classmethod
    def from_template(cls, template: RoleTemplate) -> TemplateRecord:
        return cls(
            scope_id=template.scope_id,
            name=template.name,
            color=template.color.value if template.color is not None else None,
            position=template.position,
            mentionable=template.mentionable,
            hoisted=template.hoisted,
            permissions=template.permissions,
            comparison_method=int(template.comparison_policy),
        )


class ManagedRoleRecord(TemplateRecord):
    """A managed-role declaration: a template plus its membership settings."""

    allow_list: list[str] = Field(default_factory=list)
    policy: Optional[MembershipPolicy] = None
    enforce_membership: bool = True
    properties_to_enforce: Optional[int] = None

    @field_validator("allow_list", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set)):
            return [str(v) for v in value]
        return value

    @field_validator("properties_to_enforce")
    @classmethod
    def _known_enforced_flags(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and (value < 0 or value & ~int(AttributeFlag.ALL)):
            raise ValueError(f"unknown attribute flags in {value}")
        return value

    @property
    def enforced_flags(self) -> AttributeFlag | None:
        if self.properties_to_enforce is None:
            return None
        return AttributeFlag(self.properties_to_enforce)


# ---------------------------------------------------------------------------
# Flat record round-trip
# ---------------------------------------------------------------------------


def template_to_record(template: RoleTemplate) -> dict[str, Any]:
    """Flatten a template, omitting keys for unmanaged attributes."""
    return TemplateRecord.from_template(template).model_dump(exclude_none=True)


def template_from_record(data: dict[str, Any]) -> RoleTemplate:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Template record must be a mapping, got {type(data).__name__}")
    if "scope_id" not in data:
        raise ConfigurationError('The template record does not contain required key "scope_id".')
    try:
        return TemplateRecord.model_validate(data).to_template()
    except ValidationError as e:
        raise ConfigurationError(f"Malformed template record: {e}") from e


def template_to_config_data(template: RoleTemplate) -> str:
    return json.dumps(template_to_record(template), sort_keys=True)


def template_from_config_data(data: str) -> RoleTemplate:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Template config data is not valid JSON: {e}") from e
    return template_from_record(parsed)


# ---------------------------------------------------------------------------
# Declaration files
# ---------------------------------------------------------------------------


@dataclass
class LoadResult:
    """Outcome of loading a declaration file."""

    source: str
    records: list[ManagedRoleRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_managed_roles(data: Any, source: str = "<memory>") -> LoadResult:
    """Validate already-parsed declaration data entry by entry."""
    result = LoadResult(source=source)
    if data is None:
        return result
    if not isinstance(data, dict) or not isinstance(data.get("managed_roles", []), list):
        result.errors.append(f"{source}: expected a mapping with a 'managed_roles' list")
        return result

    for index, entry in enumerate(data.get("managed_roles", [])):
        label = entry.get("name", f"#{index}") if isinstance(entry, dict) else f"#{index}"
        if not isinstance(entry, dict) or "scope_id" not in entry:
            result.errors.append(f"{source}[{index}] {label}: missing required key 'scope_id'")
            continue
        try:
            result.records.append(ManagedRoleRecord.model_validate(entry))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            result.errors.append(f"{source}[{index}] {label}: {problems}")

    for error in result.errors:
        logger.warning("Skipping managed role declaration: %s", error)
    return result


def load_managed_roles(path: str | Path) -> LoadResult:
    """Load managed-role declarations from a YAML or JSON file.

    Raises ``ConfigurationError`` only when the file itself is unreadable or
    unparseable; bad entries are reported in the result.
    """
    path = Path(path)
    try:
        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read managed role declarations from {path}: {e}") from e
    return parse_managed_roles(data, source=str(path))
