"""
Audit log and hash-chain verification models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any

from .states import ChainHealth


@dataclass
class AuditLogEntry:
    """
    Append-only audit record.

    ``previous_hash`` references the entry before it; ``entry_hash`` is this
    entry's own hash at write time. ``sequence`` breaks timestamp ties.
    """
    entry_id: str
    action: str
    recorded_at: datetime
    entity_type: str = ""
    entity_id: str = ""
    actor: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    previous_hash: Optional[str] = None
    entry_hash: str = ""
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "sequence": self.sequence,
            "recorded_at": self.recorded_at.isoformat(),
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor": self.actor,
            "details": self.details,
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
        }


@dataclass
class HashChainBlock:
    """Verification record for one audit entry; never modifies the entry."""
    run_id: str
    block_id: str
    previous_hash: Optional[str]
    stored_hash: Optional[str]
    computed_hash: str
    is_valid: bool
    verified_at: datetime
    verified_by: str = ""
    position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "block_id": self.block_id,
            "position": self.position,
            "previous_hash": self.previous_hash,
            "stored_hash": self.stored_hash,
            "computed_hash": self.computed_hash,
            "is_valid": self.is_valid,
            "verified_at": self.verified_at.isoformat(),
            "verified_by": self.verified_by,
        }


@dataclass
class ChainVerification:
    run_id: str
    total_blocks: int
    invalid_blocks: int
    chain_health: ChainHealth
    first_invalid_block: Optional[str] = None
    verified_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "total_blocks": self.total_blocks,
            "invalid_blocks": self.invalid_blocks,
            "chain_health": self.chain_health.value,
            "first_invalid_block": self.first_invalid_block,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }
