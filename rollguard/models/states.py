"""
Closed enumerations and allowed state transitions.

Values are the strings persisted in the store.
"""

from __future__ import annotations

from enum import Enum


class RegistrationStatus(str, Enum):
    ACTIVE = "active"
    PENDING_REVIEW = "pending_review"
    REJECTED = "rejected"


class ValidationResult(str, Enum):
    PASSED = "passed"
    FLAGGED = "flagged"
    REJECTED = "rejected"


class NameRole(str, Enum):
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    FATHER_NAME = "father_name"
    MOTHER_NAME = "mother_name"
    GUARDIAN_NAME = "guardian_name"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RISK_ORDER: dict[RiskLevel, int] = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class ClusterFlagStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


# Sweeps never touch these again unless the flag is explicitly reopened.
TERMINAL_CLUSTER_STATUSES = {ClusterFlagStatus.RESOLVED, ClusterFlagStatus.FALSE_POSITIVE}


class TaskType(str, Enum):
    ADDRESS_CLUSTER = "address_cluster"
    ADDRESS_VERIFICATION = "address_verification"
    NAME_VERIFICATION = "name_verification"
    DOCUMENT_CHECK = "document_check"
    BIOMETRIC_VERIFICATION = "biometric_verification"
    DUPLICATE_REVIEW = "duplicate_review"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ReviewerRole(str, Enum):
    BLO = "blo"
    ERO = "ero"
    DEO = "deo"
    CRO = "cro"


class TaskStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    NEEDS_MORE_INFO = "needs_more_info"


class ResolutionAction(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    NEEDS_MORE_INFO = "needs_more_info"


RESOLUTION_STATUS: dict[ResolutionAction, TaskStatus] = {
    ResolutionAction.APPROVED: TaskStatus.RESOLVED,
    ResolutionAction.REJECTED: TaskStatus.REJECTED,
    ResolutionAction.ESCALATED: TaskStatus.ESCALATED,
    ResolutionAction.NEEDS_MORE_INFO: TaskStatus.NEEDS_MORE_INFO,
}


TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.OPEN: {TaskStatus.IN_PROGRESS},
    TaskStatus.IN_PROGRESS: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.RESOLVED,
        TaskStatus.REJECTED,
        TaskStatus.ESCALATED,
        TaskStatus.NEEDS_MORE_INFO,
    },
    TaskStatus.RESOLVED: set(),
    TaskStatus.REJECTED: set(),
    TaskStatus.ESCALATED: set(),
    TaskStatus.NEEDS_MORE_INFO: set(),
}


class BatchStatus(str, Enum):
    DRAFT = "draft"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


BATCH_TRANSITIONS: dict[BatchStatus, set[BatchStatus]] = {
    BatchStatus.DRAFT: {BatchStatus.COMMITTED, BatchStatus.CANCELLED},
    BatchStatus.COMMITTED: set(),
    BatchStatus.CANCELLED: set(),
}


class RevisionFlagType(str, Enum):
    DUPLICATE = "duplicate"
    DECEASED = "deceased"
    ADDRESS_MISMATCH = "address_mismatch"
    DOCUMENT_EXPIRED = "document_expired"
    OTHER = "other"


class RevisionFlagStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"
    RESOLVED = "resolved"


REVISION_FLAG_TRANSITIONS: dict[RevisionFlagStatus, set[RevisionFlagStatus]] = {
    RevisionFlagStatus.PENDING: {
        RevisionFlagStatus.APPLIED,
        RevisionFlagStatus.REJECTED,
        RevisionFlagStatus.RESOLVED,
    },
    RevisionFlagStatus.APPLIED: set(),
    RevisionFlagStatus.REJECTED: set(),
    RevisionFlagStatus.RESOLVED: set(),
}


class ChainHealth(str, Enum):
    HEALTHY = "healthy"
    COMPROMISED = "compromised"
