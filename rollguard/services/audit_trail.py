"""
Append-only audit trail.

Every state-changing operation records an entry inside its own
transaction. Each entry carries the hash of the entry before it and its
own hash, so the log forms a chain that the verifier can recompute.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Optional, Any

from ..models import AuditLogEntry
from .base import BaseService, ServiceContext


def canonical_json(details: Optional[dict[str, Any]]) -> str:
    return json.dumps(details or {}, sort_keys=True, separators=(",", ":"), default=str)


def _utc_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def entry_digest(
    entry_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    actor: str,
    recorded_at: datetime,
    details: Optional[dict[str, Any]],
    previous_hash: Optional[str],
) -> str:
    """SHA-256 over the entry's fields and the previous entry's hash."""
    payload = "|".join([
        entry_id,
        action,
        entity_type or "",
        entity_id or "",
        actor or "",
        _utc_iso(recorded_at),
        canonical_json(details),
        previous_hash or "",
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def digest_for(entry: AuditLogEntry, previous_hash: Optional[str]) -> str:
    return entry_digest(
        entry.entry_id,
        entry.action,
        entry.entity_type,
        entry.entity_id,
        entry.actor,
        entry.recorded_at,
        entry.details,
        previous_hash,
    )


class AuditTrail(BaseService):
    """Writes chained audit entries through the shared store."""

    name = "AuditTrail"

    def __init__(self, context: ServiceContext):
        super().__init__(context)

    def record(
        self,
        action: str,
        entity_type: str = "",
        entity_id: Any = "",
        details: Optional[dict[str, Any]] = None,
        actor: str = "system",
    ) -> AuditLogEntry:
        """
        Append one entry to the chain.

        Joins the caller's transaction when there is one, so the entry is
        rolled back together with the change it describes.
        """
        # Round-trip so the stored details are exactly what was hashed.
        clean_details = json.loads(canonical_json(details))

        with self.store.transaction():
            head = self.store.last_audit_entry(lock=True)
            previous_hash = head.entry_hash if head else None

            recorded_at = self.now()
            if head is not None and recorded_at < head.recorded_at:
                # Keep (recorded_at, sequence) order equal to append order.
                recorded_at = head.recorded_at

            entry = AuditLogEntry(
                entry_id=str(uuid.uuid4()),
                action=action,
                recorded_at=recorded_at,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else "",
                actor=actor,
                details=clean_details,
                previous_hash=previous_hash,
            )
            entry.entry_hash = digest_for(entry, previous_hash)
            stored = self.store.append_audit_entry(entry)

        self.log_debug("Audit entry recorded", action=action, entity=f"{entity_type}:{entity_id}")
        return stored
