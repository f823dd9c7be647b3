"""Runtime settings.

Read from an optional YAML file, then overridden by ``ROLEKEEPER_*``
environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from rolekeeper.errors import ConfigurationError
from rolekeeper.membership.policy import MembershipPolicy

DEFAULT_SWEEP_DELAY = 0.2  # seconds between subjects in a full sweep

ENV_PREFIX = "ROLEKEEPER_"


@dataclass
class Settings:
    """Engine-wide settings."""

    sweep_delay: float = DEFAULT_SWEEP_DELAY
    default_policy: MembershipPolicy = MembershipPolicy.LIST_AND_PREDICATE_OR_ABSENT
    log_level: str = "INFO"
    audit_path: str | None = None
    managed_roles_path: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.default_policy, str):
            self.default_policy = MembershipPolicy(self.default_policy)
        self.sweep_delay = float(self.sweep_delay)
        if self.sweep_delay < 0:
            raise ConfigurationError(f"sweep_delay must not be negative, got {self.sweep_delay}")
        self.log_level = str(self.log_level).upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")


def load_settings(path: str | Path | None = None, environ: dict[str, str] | None = None) -> Settings:
    """Load settings from a YAML file and the environment."""
    environ = os.environ if environ is None else environ
    data: dict = {}

    if path is not None:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read settings from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a mapping")

    for key in ("sweep_delay", "default_policy", "log_level", "audit_path", "managed_roles_path"):
        value = environ.get(ENV_PREFIX + key.upper())
        if value:
            data[key] = value

    known = {k: v for k, v in data.items() if k in Settings.__dataclass_fields__}
    try:
        return Settings(**known)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
