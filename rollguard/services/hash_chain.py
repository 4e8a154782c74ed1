"""
Audit log hash-chain verification.

Walks the audit log in (recorded_at, sequence) order from a consistent
snapshot and recomputes every entry's hash from its fields and the hash
computed for the entry before it. The log itself is never modified;
results are written as verification blocks under a run id.
"""

from __future__ import annotations

import uuid
from typing import Optional, Any, List

from ..models import ChainHealth, ChainVerification, HashChainBlock
from .audit_trail import digest_for
from .base import BaseService, ServiceContext


class HashChainVerifier(BaseService):
    """Recompute and record the audit chain's integrity."""

    name = "HashChainVerifier"

    def __init__(self, context: ServiceContext):
        super().__init__(context)

    def verify(self, verified_by: str = "system") -> dict[str, Any]:
        """
        Verify the whole chain.

        A block is valid when its stored previous-hash equals the hash
        computed for the entry before it, and its stored hash equals the
        hash recomputed from its own fields. A tampered entry therefore
        invalidates itself and, through the recomputed hash, the entry
        after it.

        Returns:
            {run_id, total_blocks, invalid_blocks, first_invalid_block, chain_health}
        """
        run_id = str(uuid.uuid4())
        verified_at = self.now()
        blocks: List[HashChainBlock] = []
        first_invalid: Optional[str] = None

        with self.unit_of_work("verify_hash_chain", snapshot=True):
            entries = self.store.list_audit_entries()

            previous_hash: Optional[str] = None
            for position, entry in enumerate(entries):
                computed = digest_for(entry, previous_hash)
                is_valid = entry.previous_hash == previous_hash and entry.entry_hash == computed
                if not is_valid and first_invalid is None:
                    first_invalid = entry.entry_id

                blocks.append(HashChainBlock(
                    run_id=run_id,
                    block_id=entry.entry_id,
                    previous_hash=previous_hash,
                    stored_hash=entry.previous_hash,
                    computed_hash=computed,
                    is_valid=is_valid,
                    verified_at=verified_at,
                    verified_by=verified_by,
                    position=position,
                ))
                previous_hash = computed

            invalid = sum(1 for block in blocks if not block.is_valid)
            summary = ChainVerification(
                run_id=run_id,
                total_blocks=len(blocks),
                invalid_blocks=invalid,
                chain_health=ChainHealth.HEALTHY if invalid == 0 else ChainHealth.COMPROMISED,
                first_invalid_block=first_invalid,
                verified_at=verified_at,
            )
            self.store.save_chain_verification(summary, blocks)

        if summary.chain_health == ChainHealth.COMPROMISED:
            self.log_warning(
                "Audit chain compromised",
                run_id=run_id,
                invalid=invalid,
                first_invalid=first_invalid,
            )
        else:
            self.log_info("Audit chain verified", run_id=run_id, blocks=len(blocks))

        return {
            "run_id": run_id,
            "total_blocks": summary.total_blocks,
            "invalid_blocks": summary.invalid_blocks,
            "first_invalid_block": summary.first_invalid_block,
            "chain_health": summary.chain_health.value,
        }

    def chain_status(self) -> dict[str, Any]:
        """Latest verification run, or ``never_verified``."""
        latest = self.store.latest_chain_verification()
        total_entries = len(self.store.list_audit_entries())
        if latest is None:
            return {"chain_health": "never_verified", "total_entries": total_entries}

        status = latest.to_dict()
        status["total_entries"] = total_entries
        status["entries_since_verification"] = max(0, total_entries - latest.total_blocks)
        return status

    def invalid_blocks(self, run_id: str) -> List[HashChainBlock]:
        return [block for block in self.store.list_chain_blocks(run_id) if not block.is_valid]
