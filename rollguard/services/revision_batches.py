"""
Revision batch engine.

A dry run scans the roll and records proposed changes as a draft batch
of flags without touching any registration. Committing applies the
flag types that are eligible for automatic action, all or nothing.

The batch stores an integrity digest over its scope and findings; the
digest is re-checked before commit so flags edited after the dry run
are caught.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Any, Callable, Iterable, List, Union

from ..exceptions import (
    DataPersistenceError,
    IntegrityError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import (
    DeathRecord,
    DeceasedFlagDetails,
    DuplicateFlagDetails,
    RevisionBatch,
    RevisionFlag,
    RevisionScope,
    Voter,
)
from ..models.states import (
    BatchStatus,
    BATCH_TRANSITIONS,
    RevisionFlagStatus,
    RevisionFlagType,
    REVISION_FLAG_TRANSITIONS,
)
from ..persistence import RollStore
from .audit_trail import AuditTrail, canonical_json
from .base import BaseService, ServiceContext


# Identity keys checked by the duplicate scan, strongest first.
DUPLICATE_KEYS = (
    ("national_id", 0.95),
    ("email", 0.85),
    ("mobile_number", 0.80),
)

DECEASED_CONFIDENCE = 0.95


def deactivate_voter(store: RollStore, flag: RevisionFlag, now: datetime) -> None:
    voter = store.get_voter(flag.voter_id, for_update=True)
    if voter is None:
        raise DataPersistenceError(f"Voter {flag.voter_id} missing while applying flag", operation="commit_batch")
    voter.is_active = False
    voter.validation_flags.add(flag.flag_type.value)
    voter.review_reason = flag.reason
    voter.updated_at = now
    store.update_voter(voter)


# Flag types applied automatically on commit; everything else stays
# pending for manual handling.
AUTO_APPLY_ACTIONS: dict[RevisionFlagType, Callable[[RollStore, RevisionFlag, datetime], None]] = {
    RevisionFlagType.DECEASED: deactivate_voter,
}

MANUAL_OUTCOMES = {
    "rejected": RevisionFlagStatus.REJECTED,
    "resolved": RevisionFlagStatus.RESOLVED,
}


def batch_digest(scope: RevisionScope, flags: Iterable[RevisionFlag]) -> str:
    """SHA-256 over the scope and the sorted findings (flag status excluded)."""
    findings = sorted(list(flag.digest_fields()) for flag in flags)
    payload = canonical_json({"scope": scope.to_dict(), "findings": findings})
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class DryRunResult:
    batch: RevisionBatch
    flags: List[RevisionFlag] = field(default_factory=list)
    voters_scanned: int = 0

    def to_dict(self) -> dict[str, Any]:
        by_type: dict[str, int] = {}
        for flag in self.flags:
            by_type[flag.flag_type.value] = by_type.get(flag.flag_type.value, 0) + 1
        return {
            "batch_id": self.batch.batch_id,
            "status": self.batch.status.value,
            "integrity_digest": self.batch.integrity_digest,
            "scope": self.batch.scope.to_dict(),
            "voters_scanned": self.voters_scanned,
            "flags_total": len(self.flags),
            "flags_by_type": by_type,
            "flags": [flag.to_dict() for flag in self.flags],
        }


class RevisionBatchEngine(BaseService):
    """Dry run, commit, cancel and inspect revision batches."""

    name = "RevisionBatchEngine"

    def __init__(self, context: ServiceContext, audit: Optional[AuditTrail] = None):
        super().__init__(context)
        self.settings = self.config.revision
        self.audit = audit or AuditTrail(context)

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def resolve_scope(self, scope: Optional[Union[RevisionScope, dict[str, Any]]] = None) -> RevisionScope:
        """Fill in defaults: region ``all``, today to today + window."""
        if scope is None:
            scope = RevisionScope()
        elif isinstance(scope, dict):
            scope = RevisionScope(**{k: v for k, v in scope.items() if k in RevisionScope.__dataclass_fields__})

        start = scope.start_date or self.now().date()
        if isinstance(start, str):
            start = date.fromisoformat(start)
        end = scope.end_date or start + timedelta(days=self.settings.window_days)
        if isinstance(end, str):
            end = date.fromisoformat(end)
        if end < start:
            raise ValidationError(
                "end_date must not be before start_date",
                field_name="end_date",
                field_value=end.isoformat(),
            )
        return RevisionScope(
            region=(scope.region or "all").strip() or "all",
            district=scope.district or None,
            state=scope.state or None,
            start_date=start,
            end_date=end,
        )

    def _voters_in_scope(self, scope: RevisionScope) -> List[Voter]:
        voters = self.store.list_voters(active_only=True, district=scope.district, state=scope.state)
        if scope.region.lower() == "all":
            return voters
        region = scope.region.lower()
        return [
            v for v in voters
            if region in (v.address.district.lower(), v.address.state.lower())
        ]

    def find_duplicates(self, voters: List[Voter], batch_id: str = "") -> List[RevisionFlag]:
        """
        One flag per pair of registrations sharing an identity key.

        The pair is reported on the lower voter id, with the strongest
        shared key deciding the confidence.
        """
        pairs: dict[tuple[str, str], tuple[str, float]] = {}
        for key, confidence in DUPLICATE_KEYS:
            by_value: dict[str, List[str]] = {}
            for voter in voters:
                value = getattr(voter, key)
                if value:
                    by_value.setdefault(value, []).append(voter.voter_id)
            for ids in by_value.values():
                ids = sorted(ids)
                for i, first in enumerate(ids):
                    for second in ids[i + 1:]:
                        if (first, second) not in pairs:
                            pairs[(first, second)] = (key, confidence)

        ordered = sorted(pairs.items(), key=lambda item: (-item[1][1], item[0]))
        flags = []
        for (first, second), (key, confidence) in ordered[: self.settings.duplicate_scan_limit]:
            flags.append(RevisionFlag(
                batch_id=batch_id,
                voter_id=first,
                flag_type=RevisionFlagType.DUPLICATE,
                reason=f"Shares {key} with voter {second}",
                score=confidence,
                details=DuplicateFlagDetails(other_voter_id=second, matched_on=key),
            ))
        return flags

    def find_deceased(self, voters: List[Voter], batch_id: str = "") -> List[RevisionFlag]:
        """Active registrations whose national id is in the death registry."""
        with_ids = [v for v in voters if v.national_id]
        records = self.store.get_death_records(v.national_id for v in with_ids)
        flags = []
        for voter in with_ids:
            record = records.get(voter.national_id)
            if record is None:
                continue
            flags.append(RevisionFlag(
                batch_id=batch_id,
                voter_id=voter.voter_id,
                flag_type=RevisionFlagType.DECEASED,
                reason=f"Death registry record dated {record.death_date.isoformat()}",
                score=DECEASED_CONFIDENCE,
                details=DeceasedFlagDetails(
                    death_date=record.death_date.isoformat(),
                    registry_source=record.source,
                ),
            ))
            if len(flags) >= self.settings.deceased_scan_limit:
                break
        return flags

    def run_dry_run(
        self,
        scope: Optional[Union[RevisionScope, dict[str, Any]]] = None,
        created_by: str = "system",
    ) -> DryRunResult:
        """
        Scan the roll and record a draft batch of proposed changes.

        Never modifies a registration.
        """
        scope = self.resolve_scope(scope)
        now = self.now()

        with self.unit_of_work("run_dry_run", snapshot=True):
            voters = self._voters_in_scope(scope)
            findings = self.find_duplicates(voters) + self.find_deceased(voters)

            batch = self.store.create_batch(RevisionBatch(
                region=scope.region,
                district=scope.district,
                state=scope.state,
                start_date=scope.start_date,
                end_date=scope.end_date,
                integrity_digest=batch_digest(scope, findings),
                created_by=created_by,
                created_at=now,
            ))

            flags = []
            for finding in findings:
                finding.batch_id = batch.batch_id
                finding.created_at = now
                flags.append(self.store.create_revision_flag(finding))

            self.audit.record(
                "revision_dry_run",
                entity_type="revision_batch",
                entity_id=batch.batch_id,
                details={
                    "scope": scope.to_dict(),
                    "voters_scanned": len(voters),
                    "flags": len(flags),
                    "integrity_digest": batch.integrity_digest,
                },
                actor=created_by,
            )

        result = DryRunResult(batch=batch, flags=flags, voters_scanned=len(voters))
        self.log_info(
            "Dry run complete",
            batch_id=batch.batch_id,
            voters=len(voters),
            flags=len(flags),
            region=scope.region,
        )
        return result

    # ------------------------------------------------------------------
    # Commit / cancel
    # ------------------------------------------------------------------

    def _load_batch(self, batch_id: str, for_update: bool = False) -> RevisionBatch:
        batch = self.store.get_batch(batch_id, for_update=for_update)
        if batch is None:
            raise NotFoundError("revision_batch", batch_id)
        return batch

    @staticmethod
    def _check_transition(batch: RevisionBatch, target: BatchStatus) -> None:
        if target not in BATCH_TRANSITIONS[batch.status]:
            raise InvalidStateTransitionError("revision_batch", batch.batch_id, batch.status.value, target.value)

    def _check_digest(self, batch: RevisionBatch, flags: List[RevisionFlag]) -> str:
        actual = batch_digest(batch.scope, flags)
        if actual != batch.integrity_digest:
            self.log_warning("Batch integrity digest mismatch", batch_id=batch.batch_id)
            raise IntegrityError(
                f"Revision batch {batch.batch_id} does not match its integrity digest",
                expected=batch.integrity_digest,
                actual=actual,
            )
        return actual

    def commit_batch(self, batch_id: str, committed_by: str = "system") -> dict[str, Any]:
        """
        Apply every eligible pending flag and mark the batch committed.

        Either every eligible flag is applied and the batch is committed,
        or nothing changes.

        Raises:
            NotFoundError: No such batch
            InvalidStateTransitionError: Batch is not a draft
            IntegrityError: Flags no longer match the digest
            TransactionFailureError: Anything else (rolled back)
        """
        now = self.now()
        applied = 0

        with self.unit_of_work("commit_batch"):
            batch = self._load_batch(batch_id, for_update=True)
            self._check_transition(batch, BatchStatus.COMMITTED)

            flags = self.store.list_revision_flags(batch_id)
            self._check_digest(batch, flags)

            for flag in flags:
                action = AUTO_APPLY_ACTIONS.get(flag.flag_type)
                if action is None or flag.status != RevisionFlagStatus.PENDING:
                    continue
                action(self.store, flag, now)
                flag.status = RevisionFlagStatus.APPLIED
                flag.resolved_at = now
                flag.resolved_by = committed_by
                self.store.update_revision_flag(flag)
                applied += 1

            batch.status = BatchStatus.COMMITTED
            batch.committed_at = now
            self.store.update_batch(batch)

            self.audit.record(
                "revision_batch_committed",
                entity_type="revision_batch",
                entity_id=batch_id,
                details={"flags_applied": applied, "flags_total": len(flags)},
                actor=committed_by,
            )

        self.log_info("Batch committed", batch_id=batch_id, flags_applied=applied)
        return {"batch_id": batch_id, "flags_applied": applied, "status": BatchStatus.COMMITTED.value}

    def cancel_batch(self, batch_id: str, cancelled_by: str = "system", reason: str = "") -> RevisionBatch:
        with self.unit_of_work("cancel_batch"):
            batch = self._load_batch(batch_id, for_update=True)
            self._check_transition(batch, BatchStatus.CANCELLED)
            batch.status = BatchStatus.CANCELLED
            self.store.update_batch(batch)
            self.audit.record(
                "revision_batch_cancelled",
                entity_type="revision_batch",
                entity_id=batch_id,
                details={"reason": reason},
                actor=cancelled_by,
            )

        self.log_info("Batch cancelled", batch_id=batch_id)
        return batch

    # ------------------------------------------------------------------
    # Queries and manual handling
    # ------------------------------------------------------------------

    def list_batches(self, status: Optional[str] = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive", field_name="page/limit")
        if status is not None:
            try:
                status = BatchStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown batch status: {status}", field_name="status", field_value=status)
        batches = self.store.list_batches(status=status, offset=(page - 1) * limit, limit=limit)
        return {
            "batches": [batch.to_dict() for batch in batches],
            "total": self.store.count_batches(status=status),
            "page": page,
            "limit": limit,
        }

    def get_batch(self, batch_id: str) -> RevisionBatch:
        return self._load_batch(batch_id)

    def get_batch_flags(self, batch_id: str) -> List[RevisionFlag]:
        self._load_batch(batch_id)
        return self.store.list_revision_flags(batch_id)

    def resolve_flag(
        self,
        flag_id: str,
        action: str,
        resolved_by: str = "system",
        notes: str = "",
    ) -> RevisionFlag:
        """Manually close a pending flag as ``rejected`` or ``resolved``."""
        target = MANUAL_OUTCOMES.get(str(action).lower())
        if target is None:
            raise ValidationError(
                f"Unknown flag action: {action}",
                field_name="action",
                field_value=action,
                expected="|".join(MANUAL_OUTCOMES),
            )

        with self.unit_of_work("resolve_revision_flag"):
            flag = self.store.get_revision_flag(flag_id, for_update=True)
            if flag is None:
                raise NotFoundError("revision_flag", flag_id)
            if target not in REVISION_FLAG_TRANSITIONS[flag.status]:
                raise InvalidStateTransitionError("revision_flag", flag_id, flag.status.value, target.value)

            flag.status = target
            flag.resolved_at = self.now()
            flag.resolved_by = resolved_by
            self.store.update_revision_flag(flag)
            self.audit.record(
                "revision_flag_resolved",
                entity_type="revision_flag",
                entity_id=flag_id,
                details={"batch_id": flag.batch_id, "status": target.value, "notes": notes},
                actor=resolved_by,
            )

        return flag

    def verify_batch_integrity(self, batch_id: str) -> dict[str, Any]:
        """Recompute the digest; raises IntegrityError on mismatch."""
        batch = self._load_batch(batch_id)
        digest = self._check_digest(batch, self.store.list_revision_flags(batch_id))
        return {"batch_id": batch_id, "integrity_digest": digest, "valid": True}

    def import_death_records(
        self,
        records: Iterable[Union[DeathRecord, dict[str, Any]]],
        imported_by: str = "system",
    ) -> int:
        rows = [
            r if isinstance(r, DeathRecord)
            else DeathRecord(**{k: v for k, v in r.items() if k in DeathRecord.__dataclass_fields__})
            for r in records
        ]
        rows = [r for r in rows if r.national_id]
        with self.unit_of_work("import_death_records"):
            written = self.store.upsert_death_records(rows)
            self.audit.record(
                "death_records_imported",
                entity_type="death_registry",
                entity_id="import",
                details={"records": written},
                actor=imported_by,
            )

        self.log_info("Death records imported", records=written)
        return written
