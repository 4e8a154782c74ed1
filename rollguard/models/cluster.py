"""
Address cluster flag model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, List

from .states import ClusterFlagStatus, RiskLevel, TERMINAL_CLUSTER_STATUSES


@dataclass
class ClusterExample:
    """One registration shown to reviewers as a sample of the cluster."""
    voter_id: str
    name: str
    registered_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "voter_id": self.voter_id,
            "name": self.name,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClusterExample":
        registered = data.get("registered_at")
        if isinstance(registered, str):
            registered = datetime.fromisoformat(registered)
        return cls(voter_id=str(data.get("voter_id", "")), name=data.get("name", ""), registered_at=registered)


@dataclass
class ClusterFlag:
    """
    One flag per address-identity digest.

    The digest doubles as the cluster id, so re-running a sweep can only
    ever update the same row.
    """
    address_hash: str
    voter_count: int
    risk_score: float
    risk_level: RiskLevel
    is_suspicious: bool
    normalized_address: str = ""
    district: str = ""
    state: str = ""
    surname_diversity_score: float = 1.0
    dob_clustering_score: float = 1.0
    registration_span_days: Optional[float] = None
    top_examples: List[ClusterExample] = field(default_factory=list)
    status: ClusterFlagStatus = ClusterFlagStatus.OPEN
    assigned_to: Optional[str] = None
    assigned_role: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution_notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.risk_level, str):
            self.risk_level = RiskLevel(self.risk_level)
        if isinstance(self.status, str):
            self.status = ClusterFlagStatus(self.status)

    @property
    def cluster_id(self) -> str:
        return self.address_hash

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CLUSTER_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "address_hash": self.address_hash,
            "normalized_address": self.normalized_address,
            "district": self.district,
            "state": self.state,
            "voter_count": self.voter_count,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "is_suspicious": self.is_suspicious,
            "surname_diversity_score": self.surname_diversity_score,
            "dob_clustering_score": self.dob_clustering_score,
            "registration_span_days": self.registration_span_days,
            "top_examples": [example.to_dict() for example in self.top_examples],
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "assigned_role": self.assigned_role,
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
