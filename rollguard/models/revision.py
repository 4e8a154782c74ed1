"""
Revision batch models.

A batch is a proposed roll-wide change set produced by a dry run. Its
flags are the individual findings; only flag types listed in the commit
eligibility table are applied automatically.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Any

from .payloads import FlagDetails, flag_details_from_dict
from .states import BatchStatus, RevisionFlagType, RevisionFlagStatus


@dataclass
class RevisionScope:
    """Region and date window a dry run covers."""
    region: str = "all"
    district: Optional[str] = None
    state: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "region": self.region,
            "district": self.district,
            "state": self.state,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


@dataclass
class RevisionBatch:
    region: str
    start_date: date
    end_date: date
    integrity_digest: str
    batch_id: str = ""
    district: Optional[str] = None
    state: Optional[str] = None
    status: BatchStatus = BatchStatus.DRAFT
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    committed_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = BatchStatus(self.status)

    @property
    def scope(self) -> RevisionScope:
        return RevisionScope(
            region=self.region,
            district=self.district,
            state=self.state,
            start_date=self.start_date,
            end_date=self.end_date,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "region": self.region,
            "district": self.district,
            "state": self.state,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status.value,
            "integrity_digest": self.integrity_digest,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "committed_at": self.committed_at.isoformat() if self.committed_at else None,
        }


@dataclass
class RevisionFlag:
    batch_id: str
    voter_id: str
    flag_type: RevisionFlagType
    reason: str
    score: float
    flag_id: str = ""
    status: RevisionFlagStatus = RevisionFlagStatus.PENDING
    details: Optional[FlagDetails] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    def __post_init__(self):
        self.flag_type = RevisionFlagType(self.flag_type)
        self.status = RevisionFlagStatus(self.status)
        if self.details is None or isinstance(self.details, dict):
            self.details = flag_details_from_dict(self.flag_type, self.details)

    def digest_fields(self) -> tuple:
        """Fields that make up the batch integrity digest (status excluded)."""
        return (self.voter_id, self.flag_type.value, self.reason, round(float(self.score), 4))

    def to_dict(self) -> dict[str, Any]:
        return {
            "flag_id": self.flag_id,
            "batch_id": self.batch_id,
            "voter_id": self.voter_id,
            "flag_type": self.flag_type.value,
            "reason": self.reason,
            "score": self.score,
            "status": self.status.value,
            "details": self.details.to_dict() if self.details else {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }


@dataclass
class DeathRecord:
    """Row of the external death registry, keyed by national id."""
    national_id: str
    death_date: date
    source: str = "registry"

    def __post_init__(self):
        self.national_id = (self.national_id or "").strip().upper()
        if isinstance(self.death_date, str):
            self.death_date = date.fromisoformat(self.death_date)
