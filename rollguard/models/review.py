"""
Review task model.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Any

from .payloads import TaskEvidence, GenericFlagDetails, evidence_from_dict
from .states import TaskType, TaskPriority, TaskStatus, ResolutionAction


@dataclass
class ReviewTask:
    """
    Unit of human adjudication.

    ``evidence`` is the typed payload for ``task_type``; ``voter_id`` is
    empty for tasks that do not reference a single registration (for
    example an address cluster as a whole).
    """
    task_type: TaskType
    task_id: str = ""
    voter_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.OPEN
    assigned_to: Optional[str] = None
    assigned_role: Optional[str] = None
    evidence: Optional[TaskEvidence] = None
    resolution_action: Optional[ResolutionAction] = None
    resolution_notes: str = ""
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.task_type = TaskType(self.task_type)
        self.priority = TaskPriority(self.priority)
        self.status = TaskStatus(self.status)
        if self.resolution_action is not None:
            self.resolution_action = ResolutionAction(self.resolution_action)
        if self.evidence is None or isinstance(self.evidence, dict):
            self.evidence = evidence_from_dict(self.task_type, self.evidence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_type": self.task_type.value,
            "voter_id": self.voter_id,
            "priority": self.priority.value,
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "assigned_role": self.assigned_role,
            "evidence": self.evidence.to_dict() if self.evidence else GenericFlagDetails().to_dict(),
            "resolution_action": self.resolution_action.value if self.resolution_action else None,
            "resolution_notes": self.resolution_notes,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
