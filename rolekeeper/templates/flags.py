"""Attribute flags — which role attributes take part in comparison and correction."""

from __future__ import annotations

from enum import IntFlag


class AttributeFlag(IntFlag):
    """Bit-set of role attributes a template compares and a controller enforces.

    ``NONE`` is special: a template compared with ``NONE`` never matches any
    role (it is not vacuously true).
    """

    NONE = 0
    NAME = 1 << 0
    COLOR = 1 << 1
    MENTIONABLE = 1 << 2
    HOISTED = 1 << 3
    PERMISSIONS = 1 << 4
    POSITION = 1 << 5
    ALL = NAME | COLOR | MENTIONABLE | HOISTED | PERMISSIONS | POSITION

    def has_flag(self, flag: AttributeFlag) -> bool:
        return (self & flag) == flag


# Single attributes in a stable order, paired with the field name they govern.
ATTRIBUTE_FIELDS: tuple[tuple[AttributeFlag, str], ...] = (
    (AttributeFlag.NAME, "name"),
    (AttributeFlag.COLOR, "color"),
    (AttributeFlag.MENTIONABLE, "mentionable"),
    (AttributeFlag.HOISTED, "hoisted"),
    (AttributeFlag.PERMISSIONS, "permissions"),
    (AttributeFlag.POSITION, "position"),
)


def field_for(flag: AttributeFlag) -> str:
    """Return the attribute name governed by a single flag."""
    for candidate, name in ATTRIBUTE_FIELDS:
        if candidate == flag:
            return name
    raise ValueError(f"Not a single attribute flag: {flag!r}")
