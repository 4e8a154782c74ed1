"""
Data models for the roll integrity engine.

These models represent the core records and are designed to be easily
serializable to JSON and mappable to SQL database tables.
"""

from .states import (
    RegistrationStatus,
    ValidationResult,
    NameRole,
    RiskLevel,
    ClusterFlagStatus,
    TaskType,
    TaskPriority,
    ReviewerRole,
    TaskStatus,
    ResolutionAction,
    BatchStatus,
    RevisionFlagType,
    RevisionFlagStatus,
    ChainHealth,
)
from .voter import Voter, AddressComponents
from .validation import (
    GeocodeResult,
    AddressCacheEntry,
    PinValidation,
    AddressValidation,
    NameValidation,
    PLACEHOLDER_PROVIDER,
)
from .names import NameFrequency
from .cluster import ClusterFlag, ClusterExample
from .payloads import (
    AddressClusterEvidence,
    AddressVerificationEvidence,
    NameVerificationEvidence,
    DocumentCheckEvidence,
    BiometricVerificationEvidence,
    DuplicateReviewEvidence,
    DuplicateFlagDetails,
    DeceasedFlagDetails,
    GenericFlagDetails,
    evidence_from_dict,
    flag_details_from_dict,
)
from .review import ReviewTask
from .revision import RevisionScope, RevisionBatch, RevisionFlag, DeathRecord
from .audit import AuditLogEntry, HashChainBlock, ChainVerification

__all__ = [
    # States
    "RegistrationStatus",
    "ValidationResult",
    "NameRole",
    "RiskLevel",
    "ClusterFlagStatus",
    "TaskType",
    "TaskPriority",
    "ReviewerRole",
    "TaskStatus",
    "ResolutionAction",
    "BatchStatus",
    "RevisionFlagType",
    "RevisionFlagStatus",
    "ChainHealth",

    # Voter models
    "Voter",
    "AddressComponents",

    # Validation results
    "GeocodeResult",
    "AddressCacheEntry",
    "PinValidation",
    "AddressValidation",
    "NameValidation",
    "NameFrequency",
    "PLACEHOLDER_PROVIDER",

    # Clusters and review
    "ClusterFlag",
    "ClusterExample",
    "ReviewTask",
    "AddressClusterEvidence",
    "AddressVerificationEvidence",
    "NameVerificationEvidence",
    "DocumentCheckEvidence",
    "BiometricVerificationEvidence",
    "DuplicateReviewEvidence",
    "evidence_from_dict",

    # Revision batches
    "RevisionScope",
    "RevisionBatch",
    "RevisionFlag",
    "DeathRecord",
    "DuplicateFlagDetails",
    "DeceasedFlagDetails",
    "GenericFlagDetails",
    "flag_details_from_dict",

    # Audit
    "AuditLogEntry",
    "HashChainBlock",
    "ChainVerification",
]
