"""Remote role snapshots and role colors."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, ClassVar

from rolekeeper.templates.flags import AttributeFlag, field_for


@dataclass(frozen=True)
class Color:
    """A 24-bit RGB role color."""

    value: int = 0

    DEFAULT: ClassVar[Color]
    RED: ClassVar[Color]
    GREEN: ClassVar[Color]
    BLUE: ClassVar[Color]
    GOLD: ClassVar[Color]

    def __post_init__(self) -> None:
        if not 0 <= self.value <= 0xFFFFFF:
            raise ValueError(f"Color out of range: {self.value}")

    @classmethod
    def parse(cls, raw: int | str | Color) -> Color:
        """Build a color from an int, a ``#rrggbb`` / ``0xrrggbb`` string, or a Color."""
        if isinstance(raw, Color):
            return raw
        if isinstance(raw, bool):
            raise ValueError(f"Not a color: {raw!r}")
        if isinstance(raw, int):
            return cls(raw)
        text = str(raw).strip().lower()
        if text.startswith("#"):
            return cls(int(text[1:], 16))
        if text.startswith("0x"):
            return cls(int(text[2:], 16))
        return cls(int(text))

    @property
    def hex(self) -> str:
        return f"#{self.value:06x}"

    def __str__(self) -> str:
        return self.hex


Color.DEFAULT = Color(0)
Color.RED = Color(0xE74C3C)
Color.GREEN = Color(0x2ECC71)
Color.BLUE = Color(0x3498DB)
Color.GOLD = Color(0xF1C40F)


@dataclass(frozen=True)
class RemoteRole:
    """An immutable snapshot of a live role in the remote system."""

    id: str
    scope_id: str
    name: str = ""
    color: Color = Color.DEFAULT
    position: int = 0
    mentionable: bool = False
    hoisted: bool = False
    permissions: int = 0
    integrated: bool = False  # Managed by the remote system itself

    def attribute(self, flag: AttributeFlag) -> Any:
        """Return the value of the attribute governed by a single flag."""
        return getattr(self, field_for(flag))

    def with_attributes(self, **changes: Any) -> RemoteRole:
        return replace(self, **changes)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"
