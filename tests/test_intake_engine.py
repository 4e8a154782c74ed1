import pytest

from conftest import MUMBAI_ADDRESS
from rollguard.engine import RollIntegrityEngine, error_response
from rollguard.exceptions import (
    IntegrityError,
    InvalidStateTransitionError,
    NotFoundError,
    TransactionFailureError,
    ValidationError,
)
from rollguard.models import RegistrationStatus, TaskPriority, TaskType


@pytest.fixture
def engine(context):
    return RollIntegrityEngine(context)


def test_clean_registration_is_activated(engine, store):
    decision = engine.intake.submit({"name": "Priya Sharma", "address": MUMBAI_ADDRESS})

    voter = store.get_voter(decision.voter.voter_id)
    assert decision.status == RegistrationStatus.ACTIVE
    assert decision.tasks == []
    assert voter.address_hash == decision.address.address_hash
    assert voter.phonetic_code == "P600"
    assert voter.name_quality_score == decision.names["name"].score
    assert store.audit_log[-1].action == "registration_submitted"


def test_bad_name_waits_for_review(engine, store):
    decision = engine.intake.submit(
        {"name": "Xkqzvj Wpfbtm", "address": MUMBAI_ADDRESS},
        submitted_by="operator7",
    )

    assert decision.status == RegistrationStatus.PENDING_REVIEW
    assert decision.voter.review_reason == "name rejected"
    assert len(decision.tasks) == 1
    task = decision.tasks[0]
    assert task.task_type == TaskType.NAME_VERIFICATION
    assert task.priority == TaskPriority.HIGH
    assert task.evidence.extra == {"field": "name"}
    assert "name:phonetic_violation" in store.get_voter(decision.voter.voter_id).validation_flags


def test_weak_address_opens_address_task(context, geocoder):
    geocoder.confidence = 0.2
    engine = RollIntegrityEngine(context)

    decision = engine.intake.submit({"name": "Priya Sharma", "address": MUMBAI_ADDRESS})

    assert decision.status == RegistrationStatus.PENDING_REVIEW
    assert [t.task_type for t in decision.tasks] == [TaskType.ADDRESS_VERIFICATION]


def test_reviewed_registration_can_be_approved(engine, store):
    decision = engine.intake.submit({"name": "Xkqzvj Wpfbtm", "address": MUMBAI_ADDRESS})
    task_id = decision.tasks[0].task_id

    engine.assign_task(task_id, "blo.ward7", "blo")
    resolved = engine.resolve_task(task_id, "approved", "met applicant", "blo.ward7")

    assert resolved["status"] == "resolved"
    assert store.get_voter(decision.voter.voter_id).registration_status == RegistrationStatus.ACTIVE


@pytest.mark.parametrize("error, status, code", [
    (NotFoundError("voter", "v1"), 404, "not_found"),
    (InvalidStateTransitionError("review_task", "t1", "resolved", "in_progress"), 409, "invalid_transition"),
    (IntegrityError("digest mismatch"), 422, "integrity_failure"),
    (ValidationError("bad action", field_name="action"), 400, "invalid_argument"),
    (TransactionFailureError("commit failed", operation="commit_batch"), 500, "transaction_failed"),
])
def test_error_response_statuses(error, status, code):
    response = error_response(error)

    assert response["status"] == status
    assert response["body"]["error"] == code


def test_unexpected_errors_hide_their_message():
    response = error_response(RuntimeError("password=hunter2"))

    assert response["status"] == 500
    assert "hunter2" not in str(response)


def test_call_wraps_results_and_errors(engine):
    ok = engine.call("validate_name", "Priya Sharma")
    missing = engine.call("commit_batch", "no-such-batch")
    unknown = engine.call("drop_tables")

    assert ok["status"] == 200
    assert ok["body"]["validation_result"] == "passed"
    assert missing["status"] == 404
    assert unknown["status"] == 400


def test_engine_end_to_end(engine, add_voter):
    for i in range(25):
        add_voter(surname="kumar")

    sweep = engine.detect_address_clusters()
    dry_run = engine.run_dry_run(created_by="ero.mumbai")
    chain = engine.verify_hash_chain(verified_by="auditor")

    assert sweep["suspicious"] == 1
    assert engine.list_cluster_flags(suspicious_only=True)[0]["voter_count"] == 25
    assert dry_run["status"] == "draft"
    assert chain["chain_health"] == "healthy"
    assert chain["total_blocks"] == 2
    assert engine.chain_status()["chain_health"] == "healthy"
