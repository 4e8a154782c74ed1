from datetime import date

import pytest

from rollguard.exceptions import (
    IntegrityError,
    InvalidStateTransitionError,
    NotFoundError,
    TransactionFailureError,
    ValidationError,
)
from rollguard.models import BatchStatus, RevisionFlagStatus, RevisionFlagType
from rollguard.services import RevisionBatchEngine

PUNE = {"house_number": "4", "street": "FC Road", "village_city": "Pune",
        "district": "Pune", "state": "Maharashtra", "pin_code": "411004"}


@pytest.fixture
def engine(context):
    return RevisionBatchEngine(context)


@pytest.fixture
def deceased_roll(engine, add_voter):
    """Five voters with death registry records and one living voter."""
    voters = [add_voter(national_id=f"NID{i}") for i in range(5)]
    add_voter(national_id="ALIVE1")
    engine.import_death_records(
        [{"national_id": f"nid{i}", "death_date": "2024-01-0%d" % (i + 1)} for i in range(5)],
        imported_by="registrar",
    )
    return voters


def test_scope_defaults_and_validation(engine):
    scope = engine.resolve_scope()
    assert scope.region == "all"
    assert scope.start_date == date(2024, 6, 1)
    assert scope.end_date == date(2024, 7, 1)

    with pytest.raises(ValidationError):
        engine.resolve_scope({"start_date": "2024-06-10", "end_date": "2024-06-01"})


def test_dry_run_records_findings_without_touching_voters(engine, add_voter, store):
    a = add_voter(email="same@example.com")
    b = add_voter(email="Same@Example.com")
    c = add_voter(national_id="DEAD1")
    engine.import_death_records([{"national_id": "DEAD1", "death_date": date(2024, 2, 1)}])
    before = {v.voter_id: v.to_dict() for v in store.list_voters()}

    result = engine.run_dry_run(created_by="ero.mumbai")

    types = {flag.flag_type for flag in result.flags}
    assert types == {RevisionFlagType.DUPLICATE, RevisionFlagType.DECEASED}
    duplicate = next(f for f in result.flags if f.flag_type == RevisionFlagType.DUPLICATE)
    assert duplicate.voter_id == a.voter_id
    assert duplicate.details.other_voter_id == b.voter_id
    assert duplicate.score == 0.85
    deceased = next(f for f in result.flags if f.flag_type == RevisionFlagType.DECEASED)
    assert deceased.voter_id == c.voter_id

    assert result.batch.status == BatchStatus.DRAFT
    assert len(result.batch.integrity_digest) == 64
    assert all(f.status == RevisionFlagStatus.PENDING for f in result.flags)
    assert {v.voter_id: v.to_dict() for v in store.list_voters()} == before
    assert store.audit_log[-1].action == "revision_dry_run"


def test_strongest_shared_key_wins(engine, add_voter):
    add_voter(national_id="X1", email="twin@example.com", mobile_number="9876543210")
    add_voter(national_id="X1", email="twin@example.com", mobile_number="98765 43210")

    flags = engine.run_dry_run().flags

    assert len(flags) == 1
    assert flags[0].details.matched_on == "national_id"
    assert flags[0].score == 0.95


def test_region_scopes_the_scan(engine, add_voter):
    add_voter(email="dup@example.com")
    add_voter(email="dup@example.com")
    add_voter(address=PUNE, email="other@example.com")
    add_voter(address=PUNE, email="other@example.com")

    result = engine.run_dry_run({"region": "Pune"})

    assert result.voters_scanned == 2
    assert len(result.flags) == 1
    assert result.batch.region == "Pune"


def test_commit_applies_deceased_flags(engine, deceased_roll, store):
    batch_id = engine.run_dry_run().batch.batch_id

    outcome = engine.commit_batch(batch_id, committed_by="ero.mumbai")

    assert outcome == {"batch_id": batch_id, "flags_applied": 5, "status": "committed"}
    for voter in deceased_roll:
        stored = store.get_voter(voter.voter_id)
        assert not stored.is_active
        assert "deceased" in stored.validation_flags
    assert all(f.status == RevisionFlagStatus.APPLIED for f in engine.get_batch_flags(batch_id))
    assert engine.get_batch(batch_id).status == BatchStatus.COMMITTED
    assert store.audit_log[-1].action == "revision_batch_committed"


def test_duplicates_stay_pending_on_commit(engine, add_voter):
    add_voter(mobile_number="9000000001")
    add_voter(mobile_number="9000000001")
    batch_id = engine.run_dry_run().batch.batch_id

    assert engine.commit_batch(batch_id)["flags_applied"] == 0
    assert engine.get_batch_flags(batch_id)[0].status == RevisionFlagStatus.PENDING


def test_commit_is_one_shot(engine, deceased_roll, store):
    batch_id = engine.run_dry_run().batch.batch_id
    engine.commit_batch(batch_id)
    flags_before = [f.to_dict() for f in engine.get_batch_flags(batch_id)]
    voters_before = {v.voter_id: store.get_voter(v.voter_id).registration_status for v in deceased_roll}
    entries_before = len(store.audit_log)

    with pytest.raises(InvalidStateTransitionError):
        engine.commit_batch(batch_id)
    assert [f.to_dict() for f in engine.get_batch_flags(batch_id)] == flags_before
    assert {v.voter_id: store.get_voter(v.voter_id).registration_status for v in deceased_roll} == voters_before
    assert len(store.audit_log) == entries_before
    with pytest.raises(InvalidStateTransitionError):
        engine.cancel_batch(batch_id)
    with pytest.raises(NotFoundError):
        engine.commit_batch("no-such-batch")


def test_failed_commit_changes_nothing(engine, deceased_roll, store, monkeypatch):
    batch_id = engine.run_dry_run().batch.batch_id
    entries_before = len(store.audit_log)
    real_update = store.update_voter
    calls = {"n": 0}

    def flaky_update(voter):
        calls["n"] += 1
        if calls["n"] == 3:
            raise RuntimeError("connection reset")
        real_update(voter)

    monkeypatch.setattr(store, "update_voter", flaky_update)

    with pytest.raises(TransactionFailureError):
        engine.commit_batch(batch_id)

    assert all(store.get_voter(v.voter_id).is_active for v in deceased_roll)
    assert all(f.status == RevisionFlagStatus.PENDING for f in engine.get_batch_flags(batch_id))
    assert engine.get_batch(batch_id).status == BatchStatus.DRAFT
    assert len(store.audit_log) == entries_before


def test_tampered_batch_is_refused(engine, deceased_roll, store):
    batch_id = engine.run_dry_run().batch.batch_id
    flag = engine.get_batch_flags(batch_id)[0]
    store.revision_flags[flag.flag_id].voter_id = "v9999"

    with pytest.raises(IntegrityError):
        engine.verify_batch_integrity(batch_id)
    with pytest.raises(IntegrityError):
        engine.commit_batch(batch_id)
    assert engine.get_batch(batch_id).status == BatchStatus.DRAFT


def test_manual_resolution_keeps_digest_valid(engine, add_voter):
    add_voter(email="dup@example.com")
    add_voter(email="dup@example.com")
    batch_id = engine.run_dry_run().batch.batch_id
    flag = engine.get_batch_flags(batch_id)[0]

    resolved = engine.resolve_flag(flag.flag_id, "rejected", resolved_by="ero.mumbai", notes="twins")

    assert resolved.status == RevisionFlagStatus.REJECTED
    assert engine.verify_batch_integrity(batch_id)["valid"]
    with pytest.raises(InvalidStateTransitionError):
        engine.resolve_flag(flag.flag_id, "resolved")
    with pytest.raises(ValidationError):
        engine.resolve_flag(flag.flag_id, "applied")


def test_cancel_and_list(engine, clock):
    first = engine.run_dry_run().batch.batch_id
    clock.advance(days=1)
    second = engine.run_dry_run().batch.batch_id
    engine.cancel_batch(first, reason="superseded")

    page = engine.list_batches(page=1, limit=1)
    assert page["total"] == 2
    assert [b["batch_id"] for b in page["batches"]] == [second]
    assert engine.list_batches(status="cancelled")["batches"][0]["batch_id"] == first
    with pytest.raises(ValidationError):
        engine.list_batches(status="archived")


def test_import_skips_rows_without_id(engine, store):
    written = engine.import_death_records([
        {"national_id": " ab12 ", "death_date": "2023-12-31", "source": "crs", "extra": "ignored"},
        {"national_id": "", "death_date": "2023-12-31"},
    ])

    assert written == 1
    assert store.death_records["AB12"].source == "crs"
