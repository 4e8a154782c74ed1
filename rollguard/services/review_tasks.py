"""
Review task workflow.

Tasks move through a fixed transition table:

    open -> in_progress -> resolved | rejected | escalated | needs_more_info

``in_progress -> in_progress`` is a reassignment; terminal states accept
nothing. Resolving a task also applies its outcome to the registration
(and, for cluster tasks, to the cluster flag) in the same transaction.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Optional, Any, Union

from ..exceptions import InvalidStateTransitionError, NotFoundError, ValidationError
from ..models import AddressClusterEvidence, ClusterFlag, ReviewTask
from ..models.payloads import TaskEvidence
from ..models.states import (
    ClusterFlagStatus,
    RegistrationStatus,
    ResolutionAction,
    RESOLUTION_STATUS,
    ReviewerRole,
    TaskPriority,
    TaskStatus,
    TaskType,
    TASK_TRANSITIONS,
)
from ..persistence import RollStore
from .audit_trail import AuditTrail
from .base import BaseService, ServiceContext


CLUSTER_OUTCOMES: dict[ResolutionAction, ClusterFlagStatus] = {
    ResolutionAction.APPROVED: ClusterFlagStatus.RESOLVED,
    ResolutionAction.REJECTED: ClusterFlagStatus.FALSE_POSITIVE,
}


def parse_action(action: Union[str, ResolutionAction]) -> ResolutionAction:
    try:
        return ResolutionAction(action)
    except ValueError:
        raise ValidationError(
            f"Unknown resolution action: {action}",
            field_name="action",
            field_value=action,
            expected="|".join(a.value for a in ResolutionAction),
        )


def close_cluster_flag(
    store: RollStore,
    cluster_id: str,
    action: ResolutionAction,
    resolved_by: str,
    notes: str,
    now: datetime,
    strict: bool = True,
) -> Optional[ClusterFlag]:
    """
    Move a cluster flag to the terminal status for ``action``.

    Actions without a cluster outcome (escalated, needs_more_info) leave
    the flag alone. With ``strict`` a flag that is already terminal raises;
    otherwise it is left as it is and None is returned.
    """
    target = CLUSTER_OUTCOMES.get(action)
    if target is None:
        return None

    flag = store.get_cluster_flag(cluster_id, for_update=True)
    if flag is None:
        raise NotFoundError("cluster_flag", cluster_id)
    if flag.is_terminal:
        if strict:
            raise InvalidStateTransitionError("cluster_flag", cluster_id, flag.status.value, target.value)
        return None

    flag.status = target
    flag.resolved_by = resolved_by
    flag.resolution_notes = notes or ""
    flag.updated_at = now
    store.upsert_cluster_flag(flag)
    return flag


class ReviewTaskWorkflow(BaseService):
    """
    Creates, assigns and resolves human review tasks.

    Every mutation runs as one unit of work together with its audit entry.
    """

    name = "ReviewTaskWorkflow"

    def __init__(self, context: ServiceContext, audit: Optional[AuditTrail] = None):
        super().__init__(context)
        self.audit = audit or AuditTrail(context)

    # ------------------------------------------------------------------
    # Create / assign
    # ------------------------------------------------------------------

    def create_task(
        self,
        task_type: Union[str, TaskType],
        voter_id: Optional[str] = None,
        evidence: Optional[Union[TaskEvidence, dict[str, Any]]] = None,
        priority: Union[str, TaskPriority] = TaskPriority.MEDIUM,
        created_by: str = "system",
    ) -> ReviewTask:
        """
        Open a new task.

        Raises:
            ValidationError: Unknown task type or priority
            NotFoundError: ``voter_id`` given but no such registration
        """
        try:
            task_type = TaskType(task_type)
            priority = TaskPriority(priority)
        except ValueError as e:
            raise ValidationError(str(e), field_name="task_type/priority")

        now = self.now()
        with self.unit_of_work("create_task"):
            if voter_id is not None and self.store.get_voter(voter_id) is None:
                raise NotFoundError("voter", voter_id)

            task = self.store.create_review_task(ReviewTask(
                task_type=task_type,
                voter_id=voter_id,
                priority=priority,
                evidence=evidence,
                created_at=now,
                updated_at=now,
            ))
            self.audit.record(
                "review_task_created",
                entity_type="review_task",
                entity_id=task.task_id,
                details={"task_type": task_type.value, "voter_id": voter_id, "priority": priority.value},
                actor=created_by,
            )

        self.log_info("Review task created", task_id=task.task_id, task_type=task_type.value)
        return task

    def assign_task(
        self,
        task_id: str,
        assigned_to: str,
        role: Union[str, ReviewerRole],
        assigned_by: str = "system",
    ) -> ReviewTask:
        """Assign (or reassign) a task; it moves to ``in_progress``."""
        try:
            role = ReviewerRole(role)
        except ValueError:
            raise ValidationError(
                f"Unknown reviewer role: {role}",
                field_name="role",
                field_value=role,
                expected="|".join(r.value for r in ReviewerRole),
            )

        with self.unit_of_work("assign_task"):
            task = self._load(task_id)
            self._check_transition(task, TaskStatus.IN_PROGRESS)

            previous = task.assigned_to
            task.status = TaskStatus.IN_PROGRESS
            task.assigned_to = assigned_to
            task.assigned_role = role.value
            task.updated_at = self.now()
            self.store.update_review_task(task)
            self.audit.record(
                "review_task_assigned",
                entity_type="review_task",
                entity_id=task.task_id,
                details={"assigned_to": assigned_to, "role": role.value, "previous_assignee": previous},
                actor=assigned_by,
            )

        self.log_info("Review task assigned", task_id=task_id, assigned_to=assigned_to, role=role.value)
        return task

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    def resolve_task(
        self,
        task_id: str,
        action: Union[str, ResolutionAction],
        notes: str = "",
        resolved_by: str = "system",
    ) -> ReviewTask:
        """
        Resolve an in-progress task and apply its outcome.

        ``approved`` activates the referenced registration and ``rejected``
        rejects it with ``notes`` as the reason. Cluster tasks also close
        their cluster flag. Nothing is written unless everything succeeds.

        Raises:
            ValidationError: Unknown action
            NotFoundError: No such task (or referenced voter)
            InvalidStateTransitionError: Task is not in progress
            TransactionFailureError: Any other failure (rolled back)
        """
        action = parse_action(action)
        target = RESOLUTION_STATUS[action]
        now = self.now()

        with self.unit_of_work("resolve_task"):
            task = self._load(task_id)
            if task.status != TaskStatus.IN_PROGRESS:
                raise InvalidStateTransitionError("review_task", task_id, task.status.value, target.value)
            self._check_transition(task, target)

            voter_status = self._apply_voter_outcome(task, action, notes, now)

            cluster_status = None
            if isinstance(task.evidence, AddressClusterEvidence) and task.evidence.cluster_id:
                flag = close_cluster_flag(
                    self.store, task.evidence.cluster_id, action, resolved_by, notes, now, strict=False
                )
                if flag is not None:
                    cluster_status = flag.status.value

            task.status = target
            task.resolution_action = action
            task.resolution_notes = notes or ""
            task.resolved_by = resolved_by
            task.resolved_at = now
            task.updated_at = now
            self.store.update_review_task(task)

            self.audit.record(
                "review_task_resolved",
                entity_type="review_task",
                entity_id=task.task_id,
                details={
                    "action": action.value,
                    "status": target.value,
                    "voter_id": task.voter_id,
                    "voter_status": voter_status,
                    "cluster_status": cluster_status,
                    "notes": notes,
                },
                actor=resolved_by,
            )

        self.log_info("Review task resolved", task_id=task_id, action=action.value, status=target.value)
        return task

    def _apply_voter_outcome(
        self,
        task: ReviewTask,
        action: ResolutionAction,
        notes: str,
        now: datetime,
    ) -> Optional[str]:
        if not task.voter_id or action not in (ResolutionAction.APPROVED, ResolutionAction.REJECTED):
            return None

        voter = self.store.get_voter(task.voter_id, for_update=True)
        if voter is None:
            raise NotFoundError("voter", task.voter_id)

        if action == ResolutionAction.APPROVED:
            voter.registration_status = RegistrationStatus.ACTIVE
            voter.review_reason = ""
        else:
            voter.registration_status = RegistrationStatus.REJECTED
            voter.review_reason = notes or "rejected on review"
        voter.updated_at = now
        self.store.update_voter(voter)
        return voter.registration_status.value

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> ReviewTask:
        task = self.store.get_review_task(task_id)
        if task is None:
            raise NotFoundError("review_task", task_id)
        return task

    def list_tasks(self, **filters: Any) -> list[ReviewTask]:
        """Filter by status, task_type, assigned_to, assigned_role, priority or voter_id."""
        clean = {k: (v.value if hasattr(v, "value") else v) for k, v in filters.items() if v is not None}
        return self.store.list_review_tasks(**clean)

    def task_statistics(self) -> dict[str, Any]:
        tasks = self.store.list_review_tasks()
        open_statuses = {TaskStatus.OPEN, TaskStatus.IN_PROGRESS}
        return {
            "total": len(tasks),
            "open": sum(1 for t in tasks if t.status in open_statuses),
            "by_status": dict(Counter(t.status.value for t in tasks)),
            "by_type": dict(Counter(t.task_type.value for t in tasks)),
            "by_priority": dict(Counter(t.priority.value for t in tasks)),
            "unassigned": sum(1 for t in tasks if t.status == TaskStatus.OPEN and not t.assigned_to),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, task_id: str) -> ReviewTask:
        task = self.store.get_review_task(task_id, for_update=True)
        if task is None:
            raise NotFoundError("review_task", task_id)
        return task

    @staticmethod
    def _check_transition(task: ReviewTask, target: TaskStatus) -> None:
        if target not in TASK_TRANSITIONS[task.status]:
            raise InvalidStateTransitionError("review_task", task.task_id, task.status.value, target.value)
