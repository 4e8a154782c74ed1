"""
Typed evidence payloads for review tasks and revision flags.

Each task type / flag type has its own dataclass with explicit fields.
Every variant also keeps an ``extra`` dict so producers can attach
fields this version does not know about without losing them on a
round trip through the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Optional, Any, List, Union

from .states import TaskType, RevisionFlagType


def _split_known(cls, data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    names = {f.name for f in fields(cls)} - {"extra"}
    known = {k: v for k, v in data.items() if k in names}
    extra = {k: v for k, v in data.items() if k not in names and k not in ("extra", "kind")}
    extra.update(data.get("extra") or {})
    return known, extra


@dataclass
class _Payload:
    kind = ""

    def to_dict(self) -> dict[str, Any]:
        data = {"kind": self.kind}
        for f in fields(self):
            data[f.name] = getattr(self, f.name)
        data["extra"] = dict(data.get("extra") or {})
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        known, extra = _split_known(cls, data or {})
        return cls(**known, extra=extra)


# ---------------------------------------------------------------------------
# Review task evidence
# ---------------------------------------------------------------------------

@dataclass
class AddressClusterEvidence(_Payload):
    kind = TaskType.ADDRESS_CLUSTER.value
    cluster_id: str = ""
    voter_count: int = 0
    risk_score: float = 0.0
    risk_level: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class AddressVerificationEvidence(_Payload):
    kind = TaskType.ADDRESS_VERIFICATION.value
    address_hash: str = ""
    quality_score: float = 0.0
    flags: List[str] = field(default_factory=list)
    geocode_provider: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class NameVerificationEvidence(_Payload):
    kind = TaskType.NAME_VERIFICATION.value
    name: str = ""
    role: str = ""
    score: float = 0.0
    flags: List[str] = field(default_factory=list)
    reason: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class DocumentCheckEvidence(_Payload):
    kind = TaskType.DOCUMENT_CHECK.value
    document_id: str = ""
    document_type: str = ""
    issues: List[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class BiometricVerificationEvidence(_Payload):
    """Outcome supplied by the external matcher; nothing is matched here."""
    kind = TaskType.BIOMETRIC_VERIFICATION.value
    matcher: str = ""
    match_score: Optional[float] = None
    outcome: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class DuplicateReviewEvidence(_Payload):
    kind = TaskType.DUPLICATE_REVIEW.value
    other_voter_id: str = ""
    matched_on: str = ""
    confidence: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)


TaskEvidence = Union[
    AddressClusterEvidence,
    AddressVerificationEvidence,
    NameVerificationEvidence,
    DocumentCheckEvidence,
    BiometricVerificationEvidence,
    DuplicateReviewEvidence,
]

EVIDENCE_TYPES: dict[TaskType, type] = {
    TaskType.ADDRESS_CLUSTER: AddressClusterEvidence,
    TaskType.ADDRESS_VERIFICATION: AddressVerificationEvidence,
    TaskType.NAME_VERIFICATION: NameVerificationEvidence,
    TaskType.DOCUMENT_CHECK: DocumentCheckEvidence,
    TaskType.BIOMETRIC_VERIFICATION: BiometricVerificationEvidence,
    TaskType.DUPLICATE_REVIEW: DuplicateReviewEvidence,
}


def evidence_from_dict(task_type: TaskType, data: Optional[dict[str, Any]]) -> TaskEvidence:
    """Rebuild the evidence variant for ``task_type`` from stored JSON."""
    return EVIDENCE_TYPES[TaskType(task_type)].from_dict(data or {})


# ---------------------------------------------------------------------------
# Revision flag details
# ---------------------------------------------------------------------------

@dataclass
class DuplicateFlagDetails(_Payload):
    kind = RevisionFlagType.DUPLICATE.value
    other_voter_id: str = ""
    matched_on: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeceasedFlagDetails(_Payload):
    kind = RevisionFlagType.DECEASED.value
    death_date: str = ""
    registry_source: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenericFlagDetails(_Payload):
    """Used for address_mismatch, document_expired and other."""
    kind = RevisionFlagType.OTHER.value
    extra: dict[str, Any] = field(default_factory=dict)


FlagDetails = Union[DuplicateFlagDetails, DeceasedFlagDetails, GenericFlagDetails]

FLAG_DETAIL_TYPES: dict[RevisionFlagType, type] = {
    RevisionFlagType.DUPLICATE: DuplicateFlagDetails,
    RevisionFlagType.DECEASED: DeceasedFlagDetails,
}


def flag_details_from_dict(flag_type: RevisionFlagType, data: Optional[dict[str, Any]]) -> FlagDetails:
    cls = FLAG_DETAIL_TYPES.get(RevisionFlagType(flag_type), GenericFlagDetails)
    return cls.from_dict(data or {})
