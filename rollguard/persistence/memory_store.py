"""
In-memory roll store.

Same transactional behaviour as the PostgreSQL store: one re-entrant lock
is held for the whole unit of work, and a deep snapshot of every table is
restored if the block raises. Used by the tests and by local runs without
a database.
"""

from __future__ import annotations

import copy
import threading
import uuid
from contextlib import contextmanager
from typing import Optional, List, Iterable, Iterator

from ..exceptions import NotFoundError
from ..logger import get_logger
from ..models import (
    Voter,
    AddressCacheEntry,
    NameFrequency,
    ClusterFlag,
    ReviewTask,
    RevisionBatch,
    RevisionFlag,
    DeathRecord,
    AuditLogEntry,
    HashChainBlock,
    ChainVerification,
)
from ..models.states import RISK_ORDER
from .repository import RollStore

logger = get_logger(__name__)


_TABLES = (
    "voters",
    "address_cache",
    "name_frequency",
    "cluster_flags",
    "review_tasks",
    "batches",
    "revision_flags",
    "death_records",
    "audit_log",
    "chain_runs",
    "chain_blocks",
)


class InMemoryRollStore(RollStore):
    """Dict-backed store. Records are copied in and out, never shared."""

    def __init__(self):
        self._lock = threading.RLock()
        self._local = threading.local()
        self.voters: dict[str, Voter] = {}
        self.address_cache: dict[str, AddressCacheEntry] = {}
        self.name_frequency: dict[tuple[str, str], NameFrequency] = {}
        self.cluster_flags: dict[str, ClusterFlag] = {}
        self.review_tasks: dict[str, ReviewTask] = {}
        self.batches: dict[str, RevisionBatch] = {}
        self.revision_flags: dict[str, RevisionFlag] = {}
        self.death_records: dict[str, DeathRecord] = {}
        self.audit_log: List[AuditLogEntry] = []
        self.chain_runs: List[ChainVerification] = []
        self.chain_blocks: dict[str, List[HashChainBlock]] = {}
        self._sequence = 0

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, snapshot: bool = False) -> Iterator[None]:
        with self._lock:
            depth = getattr(self._local, "depth", 0)
            if depth:
                self._local.depth = depth + 1
                try:
                    yield
                finally:
                    self._local.depth -= 1
                return

            saved = self._snapshot()
            self._local.depth = 1
            try:
                yield
            except BaseException:
                self._restore(saved)
                logger.debug("In-memory transaction rolled back")
                raise
            finally:
                self._local.depth = 0

    def _snapshot(self) -> dict:
        state = {name: copy.deepcopy(getattr(self, name)) for name in _TABLES}
        state["_sequence"] = self._sequence
        return state

    def _restore(self, saved: dict) -> None:
        for name in _TABLES:
            setattr(self, name, saved[name])
        self._sequence = saved["_sequence"]

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Voters
    # ------------------------------------------------------------------

    def save_voter(self, voter: Voter) -> Voter:
        with self._lock:
            stored = copy.deepcopy(voter)
            if not stored.voter_id:
                stored.voter_id = self._new_id()
            self.voters[stored.voter_id] = stored
            return copy.deepcopy(stored)

    def get_voter(self, voter_id: str, for_update: bool = False) -> Optional[Voter]:
        with self._lock:
            voter = self.voters.get(str(voter_id))
            return copy.deepcopy(voter) if voter else None

    def update_voter(self, voter: Voter) -> None:
        with self._lock:
            if voter.voter_id not in self.voters:
                raise NotFoundError("voter", voter.voter_id)
            self.voters[voter.voter_id] = copy.deepcopy(voter)

    def list_voters(
        self,
        active_only: bool = False,
        district: Optional[str] = None,
        state: Optional[str] = None,
        with_address_hash: bool = False,
    ) -> List[Voter]:
        with self._lock:
            result = []
            for voter_id in sorted(self.voters):
                voter = self.voters[voter_id]
                if active_only and not voter.is_active:
                    continue
                if district and voter.address.district.lower() != district.lower():
                    continue
                if state and voter.address.state.lower() != state.lower():
                    continue
                if with_address_hash and not voter.address_hash:
                    continue
                result.append(copy.deepcopy(voter))
            return result

    # ------------------------------------------------------------------
    # Address validation cache
    # ------------------------------------------------------------------

    def get_address_cache(self, address_hash: str) -> Optional[AddressCacheEntry]:
        with self._lock:
            entry = self.address_cache.get(address_hash)
            return copy.deepcopy(entry) if entry else None

    def put_address_cache(self, entry: AddressCacheEntry) -> None:
        with self._lock:
            self.address_cache[entry.address_hash] = copy.deepcopy(entry)

    # ------------------------------------------------------------------
    # Name frequency lookup
    # ------------------------------------------------------------------

    def get_name_frequency(self, name_token: str, name_type: str) -> Optional[NameFrequency]:
        with self._lock:
            row = self.name_frequency.get((name_token.lower(), name_type))
            return copy.deepcopy(row) if row else None

    def list_name_tokens(self, name_type: str) -> List[str]:
        with self._lock:
            return sorted(token for token, kind in self.name_frequency if kind == name_type)

    def upsert_name_frequencies(self, rows: Iterable[NameFrequency]) -> int:
        written = 0
        with self._lock:
            for row in rows:
                self.name_frequency[(row.name_token, row.name_type)] = copy.deepcopy(row)
                written += 1
        return written

    # ------------------------------------------------------------------
    # Address cluster flags
    # ------------------------------------------------------------------

    def get_cluster_flag(self, address_hash: str, for_update: bool = False) -> Optional[ClusterFlag]:
        with self._lock:
            flag = self.cluster_flags.get(address_hash)
            return copy.deepcopy(flag) if flag else None

    def upsert_cluster_flag(self, flag: ClusterFlag) -> bool:
        with self._lock:
            created = flag.address_hash not in self.cluster_flags
            self.cluster_flags[flag.address_hash] = copy.deepcopy(flag)
            return created

    def list_cluster_flags(
        self,
        status: Optional[str] = None,
        risk_level: Optional[str] = None,
        district: Optional[str] = None,
        suspicious_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[ClusterFlag]:
        with self._lock:
            flags = [
                flag for flag in self.cluster_flags.values()
                if (status is None or flag.status.value == status)
                and (risk_level is None or flag.risk_level.value == risk_level)
                and (district is None or flag.district.lower() == district.lower())
                and (not suspicious_only or flag.is_suspicious)
            ]
            flags.sort(key=lambda f: (-RISK_ORDER[f.risk_level], -f.risk_score, -f.voter_count, f.address_hash))
            if limit is not None:
                flags = flags[:limit]
            return copy.deepcopy(flags)

    # ------------------------------------------------------------------
    # Review tasks
    # ------------------------------------------------------------------

    def create_review_task(self, task: ReviewTask) -> ReviewTask:
        with self._lock:
            stored = copy.deepcopy(task)
            if not stored.task_id:
                stored.task_id = self._new_id()
            self.review_tasks[stored.task_id] = stored
            return copy.deepcopy(stored)

    def get_review_task(self, task_id: str, for_update: bool = False) -> Optional[ReviewTask]:
        with self._lock:
            task = self.review_tasks.get(str(task_id))
            return copy.deepcopy(task) if task else None

    def update_review_task(self, task: ReviewTask) -> None:
        with self._lock:
            if task.task_id not in self.review_tasks:
                raise NotFoundError("review_task", task.task_id)
            self.review_tasks[task.task_id] = copy.deepcopy(task)

    def list_review_tasks(
        self,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        assigned_to: Optional[str] = None,
        assigned_role: Optional[str] = None,
        priority: Optional[str] = None,
        voter_id: Optional[str] = None,
    ) -> List[ReviewTask]:
        with self._lock:
            tasks = [
                task for task in self.review_tasks.values()
                if (status is None or task.status.value == status)
                and (task_type is None or task.task_type.value == task_type)
                and (assigned_to is None or task.assigned_to == assigned_to)
                and (assigned_role is None or task.assigned_role == assigned_role)
                and (priority is None or task.priority.value == priority)
                and (voter_id is None or task.voter_id == voter_id)
            ]
            # Insertion order is creation order; newest first.
            tasks.reverse()
            return copy.deepcopy(tasks)

    # ------------------------------------------------------------------
    # Revision batches
    # ------------------------------------------------------------------

    def create_batch(self, batch: RevisionBatch) -> RevisionBatch:
        with self._lock:
            stored = copy.deepcopy(batch)
            if not stored.batch_id:
                stored.batch_id = self._new_id()
            self.batches[stored.batch_id] = stored
            return copy.deepcopy(stored)

    def get_batch(self, batch_id: str, for_update: bool = False) -> Optional[RevisionBatch]:
        with self._lock:
            batch = self.batches.get(str(batch_id))
            return copy.deepcopy(batch) if batch else None

    def update_batch(self, batch: RevisionBatch) -> None:
        with self._lock:
            if batch.batch_id not in self.batches:
                raise NotFoundError("revision_batch", batch.batch_id)
            self.batches[batch.batch_id] = copy.deepcopy(batch)

    def _filtered_batches(self, status: Optional[str]) -> List[RevisionBatch]:
        batches = [b for b in self.batches.values() if status is None or b.status.value == status]
        batches.reverse()
        return batches

    def list_batches(
        self,
        status: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[RevisionBatch]:
        with self._lock:
            batches = self._filtered_batches(status)[offset:]
            if limit is not None:
                batches = batches[:limit]
            return copy.deepcopy(batches)

    def count_batches(self, status: Optional[str] = None) -> int:
        with self._lock:
            return len(self._filtered_batches(status))

    def create_revision_flag(self, flag: RevisionFlag) -> RevisionFlag:
        with self._lock:
            stored = copy.deepcopy(flag)
            if not stored.flag_id:
                stored.flag_id = self._new_id()
            self.revision_flags[stored.flag_id] = stored
            return copy.deepcopy(stored)

    def get_revision_flag(self, flag_id: str, for_update: bool = False) -> Optional[RevisionFlag]:
        with self._lock:
            flag = self.revision_flags.get(str(flag_id))
            return copy.deepcopy(flag) if flag else None

    def update_revision_flag(self, flag: RevisionFlag) -> None:
        with self._lock:
            if flag.flag_id not in self.revision_flags:
                raise NotFoundError("revision_flag", flag.flag_id)
            self.revision_flags[flag.flag_id] = copy.deepcopy(flag)

    def list_revision_flags(self, batch_id: str) -> List[RevisionFlag]:
        with self._lock:
            return copy.deepcopy([f for f in self.revision_flags.values() if f.batch_id == batch_id])

    # ------------------------------------------------------------------
    # Death registry
    # ------------------------------------------------------------------

    def upsert_death_records(self, records: Iterable[DeathRecord]) -> int:
        written = 0
        with self._lock:
            for record in records:
                self.death_records[record.national_id] = copy.deepcopy(record)
                written += 1
        return written

    def get_death_records(self, national_ids: Iterable[str]) -> dict[str, DeathRecord]:
        with self._lock:
            wanted = {nid.upper() for nid in national_ids if nid}
            return {
                nid: copy.deepcopy(record)
                for nid, record in self.death_records.items()
                if nid in wanted
            }

    # ------------------------------------------------------------------
    # Audit log and hash-chain verification
    # ------------------------------------------------------------------

    def last_audit_entry(self, lock: bool = False) -> Optional[AuditLogEntry]:
        with self._lock:
            if not self.audit_log:
                return None
            return copy.deepcopy(self._ordered_entries()[-1])

    def _ordered_entries(self) -> List[AuditLogEntry]:
        return sorted(self.audit_log, key=lambda e: (e.recorded_at, e.sequence))

    def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        with self._lock:
            self._sequence += 1
            stored = copy.deepcopy(entry)
            stored.sequence = self._sequence
            self.audit_log.append(stored)
            return copy.deepcopy(stored)

    def list_audit_entries(self) -> List[AuditLogEntry]:
        with self._lock:
            return copy.deepcopy(self._ordered_entries())

    def save_chain_verification(self, summary: ChainVerification, blocks: List[HashChainBlock]) -> None:
        with self._lock:
            self.chain_runs.append(copy.deepcopy(summary))
            self.chain_blocks[summary.run_id] = copy.deepcopy(list(blocks))

    def latest_chain_verification(self) -> Optional[ChainVerification]:
        with self._lock:
            return copy.deepcopy(self.chain_runs[-1]) if self.chain_runs else None

    def list_chain_blocks(self, run_id: str) -> List[HashChainBlock]:
        with self._lock:
            return copy.deepcopy(self.chain_blocks.get(run_id, []))
