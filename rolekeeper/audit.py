"""Audit trail of corrective writes.

Every write a controller issues to the remote system (attribute corrections,
moves, recreations, grants and revokes) is journaled here with the reason it
carried. Entries are kept in memory and, when a path is configured, appended
as newline-delimited JSON.
"""

from __future__ import annotations

import json
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class AuditAction:
    CREATE = "create"
    MODIFY = "modify"
    MOVE = "move"
    RECREATE = "recreate"
    GRANT = "grant"
    REVOKE = "revoke"


@dataclass
class AuditEntry:
    """A single corrective write."""

    id: str
    timestamp: str
    scope_id: str
    role_id: str
    action: str
    reason: str = ""
    subject_id: str = ""
    success: bool = True
    details: dict[str, Any] = field(default_factory=dict)


class AuditTrail:
    """In-memory journal with optional JSONL persistence."""

    def __init__(self, path: Optional[str | Path] = None, max_entries: int = 10_000) -> None:
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)
        self._path = Path(path) if path else None
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        scope_id: str,
        role_id: str,
        action: str,
        reason: str = "",
        subject_id: str = "",
        success: bool = True,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Journal a write and return the created entry."""
        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=datetime.now(timezone.utc).isoformat(),
            scope_id=scope_id,
            role_id=role_id,
            action=action,
            reason=reason,
            subject_id=subject_id,
            success=success,
            details=details or {},
        )
        self._entries.append(entry)
        if self._path is not None:
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(asdict(entry), default=str) + "\n")
        return entry

    def entries(
        self,
        *,
        action: Optional[str] = None,
        role_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        """Return matching entries, oldest first."""
        result = list(self._entries)
        if action:
            result = [e for e in result if e.action == action]
        if role_id:
            result = [e for e in result if e.role_id == role_id]
        if subject_id:
            result = [e for e in result if e.subject_id == subject_id]
        if success is not None:
            result = [e for e in result if e.success == success]
        if limit is not None:
            result = result[-limit:]
        return result

    @staticmethod
    def read(path: str | Path) -> list[AuditEntry]:
        """Read a persisted journal back."""
        entries: list[AuditEntry] = []
        path = Path(path)
        if not path.exists():
            return entries
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                entries.append(AuditEntry(**json.loads(line)))
        return entries

    def __len__(self) -> int:
        return len(self._entries)
