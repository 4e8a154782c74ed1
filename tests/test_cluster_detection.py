from datetime import date, timedelta

import pytest

from rollguard.exceptions import InvalidStateTransitionError, ValidationError
from rollguard.models import ClusterFlagStatus, RiskLevel, TaskStatus, TaskType
from rollguard.services.cluster_detection import ClusterDetector, max_in_window, risk_level_for
from rollguard.services.review_tasks import ReviewTaskWorkflow

SURNAMES = ["sharma", "verma", "gupta", "yadav", "patel", "khan", "shah", "jain", "mehta", "reddy",
            "rao", "naidu", "iyer", "menon", "nair"]


@pytest.fixture
def detector(context):
    return ClusterDetector(context)


def spread_voters(add_voter, clock, count, **overrides):
    """``count`` voters at one address, a week and a day apart, all different surnames."""
    voters = []
    for i in range(count):
        fields = {
            "surname": SURNAMES[i % len(SURNAMES)] + str(i // len(SURNAMES)),
            "date_of_birth": date(1960 + i, 1, 1),
            "created_at": clock() + timedelta(days=8 * i),
        }
        fields.update(overrides)
        voters.append(add_voter(**fields))
    return voters


def test_risk_levels():
    assert risk_level_for(0.9) == RiskLevel.CRITICAL
    assert risk_level_for(0.8) == RiskLevel.CRITICAL
    assert risk_level_for(0.7) == RiskLevel.HIGH
    assert risk_level_for(0.5) == RiskLevel.MEDIUM
    assert risk_level_for(0.3) == RiskLevel.LOW


def test_max_in_window(clock):
    start = clock()
    times = [start, start + timedelta(days=1), start + timedelta(days=7), start + timedelta(days=9)]
    assert max_in_window(times, timedelta(days=7)) == 3
    assert max_in_window([], timedelta(days=7)) == 0


def test_small_households_are_not_flagged(detector, add_voter, clock):
    spread_voters(add_voter, clock, 5)

    result = detector.detect_address_clusters()

    assert result.clusters_found == 0
    assert result.flags == []


def test_inactive_and_rejected_registrations_do_not_count(detector, add_voter, clock, store):
    spread_voters(add_voter, clock, 4)
    add_voter(is_active=False)
    add_voter(registration_status="rejected")

    assert detector.detect_address_clusters().clusters_found == 0


def test_low_tier_cluster_without_other_signals(detector, add_voter, clock):
    spread_voters(add_voter, clock, 6)

    flag = detector.detect_address_clusters().flags[0]

    assert flag.voter_count == 6
    assert flag.risk_score == 0.1
    assert flag.risk_level == RiskLevel.LOW
    assert not flag.is_suspicious
    assert flag.surname_diversity_score == 1.0
    assert flag.registration_span_days == 40.0


def test_shared_birth_date_raises_risk(detector, add_voter, clock):
    spread_voters(add_voter, clock, 6, date_of_birth=date(1990, 5, 5))

    flag = detector.detect_address_clusters().flags[0]

    assert flag.risk_score == 0.3
    assert flag.dob_clustering_score == 0.0


def test_large_low_diversity_burst_is_suspicious(detector, add_voter):
    for i in range(25):
        add_voter(surname=["kumar", "singh", "devi"][i % 3])

    result = detector.detect_address_clusters()
    flag = result.flags[0]

    assert flag.voter_count == 25
    assert flag.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)
    assert flag.is_suspicious
    assert flag.surname_diversity_score == 0.12
    assert len(flag.top_examples) == 5
    assert result.suspicious == [flag]


def test_top_examples_are_earliest_registrations(detector, add_voter, clock):
    voters = spread_voters(add_voter, clock, 8)

    flag = detector.detect_address_clusters().flags[0]

    assert [e.voter_id for e in flag.top_examples] == [v.voter_id for v in voters[:5]]


def test_sweep_is_idempotent(detector, add_voter, clock, store):
    spread_voters(add_voter, clock, 12)

    first = detector.detect_address_clusters()
    second = detector.detect_address_clusters()

    assert first.new_flags == 1
    assert second.new_flags == 0
    assert second.flags_created == first.flags_created == 1
    assert len(store.cluster_flags) == 1
    assert second.flags[0].risk_score == first.flags[0].risk_score


def test_terminal_flags_are_skipped_until_reopened(detector, add_voter, clock, store):
    spread_voters(add_voter, clock, 6)
    cluster_id = detector.detect_address_clusters().flags[0].cluster_id

    detector.resolve_flag(cluster_id, "ero.mumbai", "rejected", notes="joint family")
    add_voter(surname="extra")
    result = detector.detect_address_clusters()

    assert result.skipped == 1
    assert result.flags == []
    stored = store.get_cluster_flag(cluster_id)
    assert stored.status == ClusterFlagStatus.FALSE_POSITIVE
    assert stored.voter_count == 6

    detector.reopen_flag(cluster_id, "deo.mumbai")
    reswept = detector.detect_address_clusters()
    assert reswept.flags[0].voter_count == 7
    assert reswept.flags[0].status == ClusterFlagStatus.OPEN


def test_reopen_notes_survive_resweep(detector, add_voter, clock, store):
    spread_voters(add_voter, clock, 6)
    cluster_id = detector.detect_address_clusters().flags[0].cluster_id

    detector.resolve_flag(cluster_id, "ero.mumbai", "rejected", notes="joint family")
    detector.reopen_flag(cluster_id, "deo.mumbai", notes="recheck after survey")
    add_voter(surname="extra")
    detector.detect_address_clusters()

    stored = store.get_cluster_flag(cluster_id)
    assert stored.status == ClusterFlagStatus.OPEN
    assert stored.voter_count == 7
    assert stored.resolution_notes == "recheck after survey"


def test_reopen_requires_terminal_flag(detector, add_voter, clock):
    spread_voters(add_voter, clock, 6)
    cluster_id = detector.detect_address_clusters().flags[0].cluster_id

    with pytest.raises(InvalidStateTransitionError):
        detector.reopen_flag(cluster_id, "deo.mumbai")


def test_assignment_survives_resweep_and_resolution_closes_flag(context, detector, add_voter, clock, store):
    spread_voters(add_voter, clock, 6)
    cluster_id = detector.detect_address_clusters().flags[0].cluster_id

    task = detector.assign_flag(cluster_id, "blo.ward7", "blo")
    detector.detect_address_clusters()

    flag = store.get_cluster_flag(cluster_id)
    assert flag.status == ClusterFlagStatus.UNDER_REVIEW
    assert flag.assigned_to == "blo.ward7"
    assert task.task_type == TaskType.ADDRESS_CLUSTER
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.evidence.cluster_id == cluster_id

    ReviewTaskWorkflow(context).resolve_task(task.task_id, "approved", "verified fake entries", "blo.ward7")

    assert store.get_cluster_flag(cluster_id).status == ClusterFlagStatus.RESOLVED


def test_threshold_override_and_validation(detector, add_voter, clock):
    spread_voters(add_voter, clock, 3)

    assert detector.detect_address_clusters({"low": 3}).clusters_found == 1
    with pytest.raises(ValidationError):
        detector.detect_address_clusters({"low": 10, "medium": 5})
    with pytest.raises(ValidationError):
        detector.detect_address_clusters({"extreme": 50})


def test_each_sweep_is_audited(detector, add_voter, clock, store):
    spread_voters(add_voter, clock, 6)

    detector.detect_address_clusters()
    detector.detect_address_clusters()

    runs = [e for e in store.audit_log if e.action == "anomaly_detection_run"]
    assert len(runs) == 2
    assert runs[0].details["clusters_found"] == 1


def test_list_flags_filters(detector, add_voter, clock):
    spread_voters(add_voter, clock, 6)
    other = {"house_number": "9", "street": "Park St", "village_city": "Kolkata",
             "district": "Kolkata", "state": "West Bengal", "pin_code": "700016"}
    for i in range(25):
        add_voter(address=other, surname="das")

    detector.detect_address_clusters()

    flags = detector.list_flags()
    assert [f.district for f in flags] == ["Kolkata", "Mumbai"]
    assert len(detector.list_flags(suspicious_only=True)) == 1
    assert len(detector.list_flags(district="mumbai")) == 1
