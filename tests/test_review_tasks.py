import pytest

from rollguard.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    TransactionFailureError,
    ValidationError,
)
from rollguard.models import RegistrationStatus, TaskStatus
from rollguard.models.payloads import NameVerificationEvidence
from rollguard.services import ReviewTaskWorkflow


@pytest.fixture
def workflow(context):
    return ReviewTaskWorkflow(context)


@pytest.fixture
def pending_voter(add_voter):
    return add_voter(registration_status="pending_review", review_reason="name flagged")


def open_task(workflow, voter_id, **kwargs):
    return workflow.create_task("name_verification", voter_id=voter_id, **kwargs)


def test_create_task_defaults(workflow, pending_voter, store):
    task = open_task(
        workflow,
        pending_voter.voter_id,
        evidence=NameVerificationEvidence(name="Xkq Zvj", role="first_name", score=0.1, flags=["phonetic_violation"]),
    )

    assert task.status == TaskStatus.OPEN
    assert task.priority.value == "medium"
    assert task.assigned_to is None
    assert task.evidence.flags == ["phonetic_violation"]
    assert store.audit_log[-1].action == "review_task_created"


def test_create_task_validates_input(workflow, pending_voter):
    with pytest.raises(ValidationError):
        workflow.create_task("palm_reading", voter_id=pending_voter.voter_id)
    with pytest.raises(ValidationError):
        workflow.create_task("name_verification", voter_id=pending_voter.voter_id, priority="whenever")
    with pytest.raises(NotFoundError):
        workflow.create_task("name_verification", voter_id="missing")


def test_assign_moves_task_in_progress(workflow, pending_voter):
    task = open_task(workflow, pending_voter.voter_id)

    assigned = workflow.assign_task(task.task_id, "blo.ward7", "blo")

    assert assigned.status == TaskStatus.IN_PROGRESS
    assert assigned.assigned_to == "blo.ward7"
    assert assigned.assigned_role == "blo"


def test_reassignment_is_allowed(workflow, pending_voter, store):
    task = open_task(workflow, pending_voter.voter_id)
    workflow.assign_task(task.task_id, "blo.ward7", "blo")

    reassigned = workflow.assign_task(task.task_id, "ero.mumbai", "ero")

    assert reassigned.assigned_to == "ero.mumbai"
    assert store.audit_log[-1].details["previous_assignee"] == "blo.ward7"


def test_assign_rejects_unknown_role(workflow, pending_voter):
    task = open_task(workflow, pending_voter.voter_id)

    with pytest.raises(ValidationError):
        workflow.assign_task(task.task_id, "someone", "mayor")


def test_approve_activates_registration(workflow, pending_voter, store):
    task = open_task(workflow, pending_voter.voter_id)
    workflow.assign_task(task.task_id, "blo.ward7", "blo")

    resolved = workflow.resolve_task(task.task_id, "approved", "documents checked", "blo.ward7")

    voter = store.get_voter(pending_voter.voter_id)
    assert resolved.status == TaskStatus.RESOLVED
    assert resolved.resolved_by == "blo.ward7"
    assert voter.registration_status == RegistrationStatus.ACTIVE
    assert voter.review_reason == ""
    assert store.audit_log[-1].action == "review_task_resolved"


def test_reject_records_reason(workflow, pending_voter, store):
    task = open_task(workflow, pending_voter.voter_id)
    workflow.assign_task(task.task_id, "ero.mumbai", "ero")

    resolved = workflow.resolve_task(task.task_id, "rejected", "applicant not found at address", "ero.mumbai")

    voter = store.get_voter(pending_voter.voter_id)
    assert resolved.status == TaskStatus.REJECTED
    assert voter.registration_status == RegistrationStatus.REJECTED
    assert voter.review_reason == "applicant not found at address"


def test_escalation_leaves_registration_alone(workflow, pending_voter, store):
    task = open_task(workflow, pending_voter.voter_id)
    workflow.assign_task(task.task_id, "blo.ward7", "blo")

    resolved = workflow.resolve_task(task.task_id, "escalated", "needs ERO", "blo.ward7")

    assert resolved.status == TaskStatus.ESCALATED
    assert store.get_voter(pending_voter.voter_id).registration_status == RegistrationStatus.PENDING_REVIEW


def test_open_task_cannot_be_resolved(workflow, pending_voter):
    task = open_task(workflow, pending_voter.voter_id)

    with pytest.raises(InvalidStateTransitionError):
        workflow.resolve_task(task.task_id, "approved")


def test_terminal_task_accepts_nothing(workflow, pending_voter):
    task = open_task(workflow, pending_voter.voter_id)
    workflow.assign_task(task.task_id, "blo.ward7", "blo")
    workflow.resolve_task(task.task_id, "approved")

    with pytest.raises(InvalidStateTransitionError):
        workflow.resolve_task(task.task_id, "rejected")
    with pytest.raises(InvalidStateTransitionError):
        workflow.assign_task(task.task_id, "ero.mumbai", "ero")


def test_unknown_action_and_task(workflow, pending_voter):
    task = open_task(workflow, pending_voter.voter_id)
    workflow.assign_task(task.task_id, "blo.ward7", "blo")

    with pytest.raises(ValidationError):
        workflow.resolve_task(task.task_id, "maybe")
    with pytest.raises(NotFoundError):
        workflow.resolve_task("no-such-task", "approved")


def test_failed_resolution_rolls_back(workflow, pending_voter, store, monkeypatch):
    task = open_task(workflow, pending_voter.voter_id)
    workflow.assign_task(task.task_id, "blo.ward7", "blo")
    entries_before = len(store.audit_log)

    def broken_update(updated):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "update_review_task", broken_update)

    with pytest.raises(TransactionFailureError) as excinfo:
        workflow.resolve_task(task.task_id, "approved", resolved_by="blo.ward7")

    assert excinfo.value.details["operation"] == "resolve_task"
    assert store.get_voter(pending_voter.voter_id).registration_status == RegistrationStatus.PENDING_REVIEW
    assert store.get_review_task(task.task_id).status == TaskStatus.IN_PROGRESS
    assert len(store.audit_log) == entries_before


def test_list_and_statistics(workflow, add_voter):
    first = add_voter(registration_status="pending_review")
    second = add_voter(registration_status="pending_review")
    a = open_task(workflow, first.voter_id, priority="high")
    open_task(workflow, second.voter_id)
    workflow.create_task("address_verification", voter_id=second.voter_id)
    workflow.assign_task(a.task_id, "blo.ward7", "blo")

    stats = workflow.task_statistics()

    assert stats["total"] == 3
    assert stats["open"] == 3
    assert stats["unassigned"] == 2
    assert stats["by_type"] == {"name_verification": 2, "address_verification": 1}
    assert stats["by_priority"] == {"high": 1, "medium": 2}
    assert [t.task_id for t in workflow.list_tasks(assigned_to="blo.ward7")] == [a.task_id]
    assert len(workflow.list_tasks(status=TaskStatus.OPEN)) == 2
