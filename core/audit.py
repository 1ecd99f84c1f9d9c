"""
Audit Log - Append-Only Trail of Pipeline Runs and Admin Decisions

Entries are immutable once written. The log is a write-only sink for the
pipeline: a failed write is logged and never fails the operation that
produced it.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from core.models import new_id


logger = logging.getLogger(__name__)


class ActorType(Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class AuditActions:
    """Common audit actions."""

    ETL_RUN = "etl.run"
    ETL_LISTING_CREATED = "etl.listing_created"
    RISK_SCORED = "risk.scored"
    ADMIN_OVERRIDE = "risk.admin_override"


@dataclass(frozen=True)
class AuditEntry:
    actor_type: ActorType
    actor_id: str
    action: str
    entity: str
    entity_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_type": self.actor_type.value,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class AuditLog:
    """
    Audit sink.

    Keeps entries in memory and, when given a path, appends each entry to a
    JSON-lines file.
    """

    def __init__(self, persist_path: Optional[Union[str, Path]] = None):
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()
        self._persist_path = Path(persist_path) if persist_path else None

    def record(
        self,
        actor_type: ActorType,
        actor_id: str,
        action: str,
        entity: str,
        entity_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Write an immutable audit entry."""
        entry = AuditEntry(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            payload=dict(payload or {}),
        )
        with self._lock:
            self._entries.append(entry)
            try:
                self._append_to_file(entry)
            except (OSError, TypeError, ValueError) as e:
                logger.error("Failed to write audit entry %s (%s): %s", entry.id, action, e)
        logger.info(
            "Audit entry created: %s %s/%s on %s %s",
            action,
            actor_type.value,
            actor_id,
            entity,
            entity_id or "",
        )
        return entry

    def _append_to_file(self, entry: AuditEntry) -> None:
        if not self._persist_path:
            return
        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        with self._persist_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry.to_dict(), default=str) + "\n")

    def entries(
        self,
        action: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> list[AuditEntry]:
        """Entries in write order, optionally filtered."""
        return [
            e for e in self._entries
            if (action is None or e.action == action)
            and (entity_id is None or e.entity_id == entity_id)
        ]


_audit_instance: Optional[AuditLog] = None


def get_audit_log(persist_path: Optional[str] = None) -> AuditLog:
    """Get the audit log singleton."""
    global _audit_instance
    if _audit_instance is None:
        _audit_instance = AuditLog(persist_path or "data/audit.jsonl")
    return _audit_instance
