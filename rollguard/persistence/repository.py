"""
Repository pattern for roll persistence.

Defines the abstract interface every store implements. The services only
ever talk to a ``RollStore``, so the in-memory store used by tests and
local runs can be swapped for PostgreSQL without touching them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Optional, List, Iterable, Iterator

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


class RollStore(ABC):
    """
    Abstract repository for the roll and its integrity records.

    All writes made inside one ``transaction()`` block form a single unit
    of work: they become visible together or not at all. Nested
    ``transaction()`` blocks join the outermost one.
    """

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @abstractmethod
    @contextmanager
    def transaction(self, snapshot: bool = False) -> Iterator[None]:
        """
        Open (or join) a unit of work.

        Args:
            snapshot: Read from a single consistent snapshot for the whole
                block. Only honoured by the outermost block.
        """
        yield

    def init_db(self) -> None:
        """Create tables if the backend needs them."""

    def close(self) -> None:
        """Release backend resources."""

    # ------------------------------------------------------------------
    # Voters
    # ------------------------------------------------------------------

    @abstractmethod
    def save_voter(self, voter: Voter) -> Voter:
        """
        Insert a new registration.

        Args:
            voter: Voter to insert. An id is assigned when empty.

        Returns:
            The stored voter (with its id)
        """
        pass

    @abstractmethod
    def get_voter(self, voter_id: str, for_update: bool = False) -> Optional[Voter]:
        """
        Retrieve a voter by id.

        Args:
            voter_id: Voter identifier
            for_update: Lock the row until the transaction ends

        Returns:
            Voter if found, None otherwise
        """
        pass

    @abstractmethod
    def update_voter(self, voter: Voter) -> None:
        """Overwrite a stored voter. Raises NotFoundError when absent."""
        pass

    @abstractmethod
    def list_voters(
        self,
        active_only: bool = False,
        district: Optional[str] = None,
        state: Optional[str] = None,
        with_address_hash: bool = False,
    ) -> List[Voter]:
        """List voters ordered by id, optionally filtered."""
        pass

    # ------------------------------------------------------------------
    # Address validation cache
    # ------------------------------------------------------------------

    @abstractmethod
    def get_address_cache(self, address_hash: str) -> Optional[AddressCacheEntry]:
        pass

    @abstractmethod
    def put_address_cache(self, entry: AddressCacheEntry) -> None:
        pass

    # ------------------------------------------------------------------
    # Name frequency lookup
    # ------------------------------------------------------------------

    @abstractmethod
    def get_name_frequency(self, name_token: str, name_type: str) -> Optional[NameFrequency]:
        pass

    @abstractmethod
    def list_name_tokens(self, name_type: str) -> List[str]:
        pass

    @abstractmethod
    def upsert_name_frequencies(self, rows: Iterable[NameFrequency]) -> int:
        """Insert or refresh lookup rows. Returns the number written."""
        pass

    # ------------------------------------------------------------------
    # Address cluster flags
    # ------------------------------------------------------------------

    @abstractmethod
    def get_cluster_flag(self, address_hash: str, for_update: bool = False) -> Optional[ClusterFlag]:
        pass

    @abstractmethod
    def upsert_cluster_flag(self, flag: ClusterFlag) -> bool:
        """
        Insert or update the flag for ``flag.address_hash``.

        Returns:
            True if a new row was created
        """
        pass

    @abstractmethod
    def list_cluster_flags(
        self,
        status: Optional[str] = None,
        risk_level: Optional[str] = None,
        district: Optional[str] = None,
        suspicious_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[ClusterFlag]:
        """List flags, highest risk first."""
        pass

    # ------------------------------------------------------------------
    # Review tasks
    # ------------------------------------------------------------------

    @abstractmethod
    def create_review_task(self, task: ReviewTask) -> ReviewTask:
        pass

    @abstractmethod
    def get_review_task(self, task_id: str, for_update: bool = False) -> Optional[ReviewTask]:
        pass

    @abstractmethod
    def update_review_task(self, task: ReviewTask) -> None:
        pass

    @abstractmethod
    def list_review_tasks(
        self,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        assigned_to: Optional[str] = None,
        assigned_role: Optional[str] = None,
        priority: Optional[str] = None,
        voter_id: Optional[str] = None,
    ) -> List[ReviewTask]:
        """List tasks, newest first."""
        pass

    # ------------------------------------------------------------------
    # Revision batches
    # ------------------------------------------------------------------

    @abstractmethod
    def create_batch(self, batch: RevisionBatch) -> RevisionBatch:
        pass

    @abstractmethod
    def get_batch(self, batch_id: str, for_update: bool = False) -> Optional[RevisionBatch]:
        pass

    @abstractmethod
    def update_batch(self, batch: RevisionBatch) -> None:
        pass

    @abstractmethod
    def list_batches(
        self,
        status: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[RevisionBatch]:
        """List batches, newest first."""
        pass

    @abstractmethod
    def count_batches(self, status: Optional[str] = None) -> int:
        pass

    @abstractmethod
    def create_revision_flag(self, flag: RevisionFlag) -> RevisionFlag:
        pass

    @abstractmethod
    def get_revision_flag(self, flag_id: str, for_update: bool = False) -> Optional[RevisionFlag]:
        pass

    @abstractmethod
    def update_revision_flag(self, flag: RevisionFlag) -> None:
        pass

    @abstractmethod
    def list_revision_flags(self, batch_id: str) -> List[RevisionFlag]:
        """Flags of one batch in creation order."""
        pass

    # ------------------------------------------------------------------
    # Death registry
    # ------------------------------------------------------------------

    @abstractmethod
    def upsert_death_records(self, records: Iterable[DeathRecord]) -> int:
        pass

    @abstractmethod
    def get_death_records(self, national_ids: Iterable[str]) -> dict[str, DeathRecord]:
        """Death records keyed by national id, for the ids that have one."""
        pass

    # ------------------------------------------------------------------
    # Audit log and hash-chain verification
    # ------------------------------------------------------------------

    @abstractmethod
    def last_audit_entry(self, lock: bool = False) -> Optional[AuditLogEntry]:
        """
        Most recent audit entry.

        Args:
            lock: Serialize chain appends until the transaction ends
        """
        pass

    @abstractmethod
    def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Insert an entry; the store assigns ``sequence``."""
        pass

    @abstractmethod
    def list_audit_entries(self) -> List[AuditLogEntry]:
        """All entries in ``(recorded_at, sequence)`` order."""
        pass

    @abstractmethod
    def save_chain_verification(self, summary: ChainVerification, blocks: List[HashChainBlock]) -> None:
        pass

    @abstractmethod
    def latest_chain_verification(self) -> Optional[ChainVerification]:
        pass

    @abstractmethod
    def list_chain_blocks(self, run_id: str) -> List[HashChainBlock]:
        pass
