"""
Address cluster anomaly detection.

Groups countable registrations by address digest and flags addresses
where many people claim to live. Each flagged address gets one row,
keyed by its digest, so a sweep can be re-run any number of times.

Risk rules per address (n = registrations at the address):
- Base by size tier: n >= high -> 0.5, n >= medium -> 0.3, n >= low -> 0.1
- Surname diversity (distinct surnames / n) below the cut -> +0.2
- Most common date of birth shared by more than half -> +0.2
- More than velocity_count registrations within velocity_days -> +0.2
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Any, List, Union

import pandas as pd

from ..exceptions import InvalidStateTransitionError, NotFoundError, ValidationError
from ..models import (
    AddressClusterEvidence,
    ClusterExample,
    ClusterFlag,
    ReviewTask,
    Voter,
)
from ..models.states import (
    ClusterFlagStatus,
    ResolutionAction,
    ReviewerRole,
    RiskLevel,
    TaskPriority,
    TaskType,
)
from ..utils.timing import timed_operation
from .audit_trail import AuditTrail
from .base import BaseService, ServiceContext
from .review_tasks import ReviewTaskWorkflow, close_cluster_flag, parse_action


MAX_EXAMPLES = 5

TIER_BASE = {"high": 0.5, "medium": 0.3, "low": 0.1}

RISK_PRIORITY = {
    RiskLevel.CRITICAL: TaskPriority.URGENT,
    RiskLevel.HIGH: TaskPriority.HIGH,
    RiskLevel.MEDIUM: TaskPriority.MEDIUM,
    RiskLevel.LOW: TaskPriority.LOW,
}

_COLUMNS = ["voter_id", "name", "surname", "dob", "created_at", "address_hash", "normalized_address", "district", "state"]


def risk_level_for(score: float) -> RiskLevel:
    if score >= 0.8:
        return RiskLevel.CRITICAL
    if score >= 0.6:
        return RiskLevel.HIGH
    if score >= 0.4:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def max_in_window(times: List[pd.Timestamp], window: timedelta) -> int:
    """Largest number of timestamps inside any window of the given length."""
    times = sorted(times)
    best = 0
    start = 0
    for end, moment in enumerate(times):
        while moment - times[start] > window:
            start += 1
        best = max(best, end - start + 1)
    return best


@dataclass
class ClusterSweepResult:
    """Outcome of one detection sweep."""
    run_at: datetime
    clusters_found: int = 0
    flags_created: int = 0
    new_flags: int = 0
    skipped: int = 0
    flags: List[ClusterFlag] = field(default_factory=list)
    duration_sec: float = 0.0

    @property
    def suspicious(self) -> List[ClusterFlag]:
        return [flag for flag in self.flags if flag.is_suspicious]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_at": self.run_at.isoformat(),
            "clusters_found": self.clusters_found,
            "flags_created": self.flags_created,
            "new_flags": self.new_flags,
            "skipped": self.skipped,
            "suspicious": len(self.suspicious),
            "duration_sec": round(self.duration_sec, 3),
            "flags": [flag.to_dict() for flag in self.flags],
        }


class ClusterDetector(BaseService):
    """
    Address cluster sweep plus flag management.

    Flags in a terminal status (resolved, false_positive) are never
    rewritten by a sweep; ``reopen_flag`` is the only way back.
    """

    name = "ClusterDetector"

    def __init__(
        self,
        context: ServiceContext,
        audit: Optional[AuditTrail] = None,
        workflow: Optional[ReviewTaskWorkflow] = None,
    ):
        super().__init__(context)
        self.settings = self.config.cluster
        self.audit = audit or AuditTrail(context)
        self.workflow = workflow or ReviewTaskWorkflow(context, audit=self.audit)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def _thresholds(self, overrides: Optional[dict[str, int]]) -> dict[str, int]:
        thresholds = self.settings.thresholds()
        thresholds.update({k: int(v) for k, v in (overrides or {}).items() if v is not None})
        unknown = set(thresholds) - set(TIER_BASE)
        if unknown:
            raise ValidationError(f"Unknown threshold(s): {sorted(unknown)}", field_name="thresholds")
        if not 0 < thresholds["low"] <= thresholds["medium"] <= thresholds["high"]:
            raise ValidationError(
                "Thresholds must satisfy 0 < low <= medium <= high",
                field_name="thresholds",
                field_value=thresholds,
            )
        return thresholds

    def _frame(self) -> pd.DataFrame:
        voters: List[Voter] = [
            v for v in self.store.list_voters(active_only=True, with_address_hash=True)
            if v.is_countable
        ]
        rows = [{
            "voter_id": v.voter_id,
            "name": v.name,
            "surname": (v.surname or "").strip().lower(),
            "dob": v.date_of_birth.isoformat() if v.date_of_birth else None,
            "created_at": v.created_at,
            "address_hash": v.address_hash,
            "normalized_address": v.normalized_address,
            "district": v.address.district,
            "state": v.address.state,
        } for v in voters]
        df = pd.DataFrame(rows, columns=_COLUMNS)
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
        return df

    def score_group(self, group: pd.DataFrame, thresholds: dict[str, int]) -> Optional[dict[str, Any]]:
        """Risk metrics for one address group, or None below the low tier."""
        n = len(group)
        if n >= thresholds["high"]:
            score = TIER_BASE["high"]
        elif n >= thresholds["medium"]:
            score = TIER_BASE["medium"]
        elif n >= thresholds["low"]:
            score = TIER_BASE["low"]
        else:
            return None

        surnames = group["surname"].replace("", pd.NA).dropna()
        surname_diversity = surnames.nunique() / n
        if surname_diversity < self.settings.surname_diversity_cut:
            score += 0.2

        dob_counts = group["dob"].dropna().value_counts()
        top_dob_share = (dob_counts.iloc[0] / n) if len(dob_counts) else 0.0
        if top_dob_share > self.settings.dob_concentration_cut:
            score += 0.2

        times = group["created_at"].dropna().tolist()
        window = timedelta(days=self.settings.velocity_days)
        burst = max_in_window(times, window) if times else 0
        if burst > self.settings.velocity_count:
            score += 0.2

        span_days = None
        if times:
            span_days = round((max(times) - min(times)).total_seconds() / 86400, 2)

        score = round(max(0.0, min(1.0, score)), 2)
        return {
            "voter_count": n,
            "risk_score": score,
            "risk_level": risk_level_for(score),
            "surname_diversity_score": round(float(surname_diversity), 4),
            "dob_clustering_score": round(float(1 - top_dob_share), 4),
            "registration_span_days": span_days,
            "max_registrations_in_window": burst,
        }

    @staticmethod
    def _examples(group: pd.DataFrame) -> List[ClusterExample]:
        ordered = group.sort_values(["created_at", "voter_id"], na_position="last").head(MAX_EXAMPLES)
        examples = []
        for _, row in ordered.iterrows():
            registered = row["created_at"]
            examples.append(ClusterExample(
                voter_id=row["voter_id"],
                name=row["name"],
                registered_at=None if pd.isna(registered) else registered.to_pydatetime(),
            ))
        return examples

    @staticmethod
    def _first_value(series: pd.Series) -> str:
        values = series.replace("", pd.NA).dropna()
        if values.empty:
            return ""
        return str(values.mode().iloc[0])

    def detect_address_clusters(self, thresholds: Optional[dict[str, int]] = None) -> ClusterSweepResult:
        """
        Run one sweep and upsert a flag per address over the low tier.

        Idempotent: with unchanged registrations a second run updates the
        same rows and creates nothing new.
        """
        thresholds = self._thresholds(thresholds)
        now = self.now()
        result = ClusterSweepResult(run_at=now)

        with timed_operation("cluster_sweep", self.logger) as timing:
            df = self._frame()
            with self.unit_of_work("detect_address_clusters"):
                for address_hash, group in df.groupby("address_hash", sort=True):
                    metrics = self.score_group(group, thresholds)
                    if metrics is None:
                        continue
                    result.clusters_found += 1

                    existing = self.store.get_cluster_flag(address_hash, for_update=True)
                    if existing is not None and existing.is_terminal:
                        result.skipped += 1
                        continue

                    flag = ClusterFlag(
                        address_hash=address_hash,
                        voter_count=metrics["voter_count"],
                        risk_score=metrics["risk_score"],
                        risk_level=metrics["risk_level"],
                        is_suspicious=metrics["risk_level"] in (RiskLevel.HIGH, RiskLevel.CRITICAL),
                        normalized_address=self._first_value(group["normalized_address"]),
                        district=self._first_value(group["district"]),
                        state=self._first_value(group["state"]),
                        surname_diversity_score=metrics["surname_diversity_score"],
                        dob_clustering_score=metrics["dob_clustering_score"],
                        registration_span_days=metrics["registration_span_days"],
                        top_examples=self._examples(group),
                        created_at=now,
                        updated_at=now,
                    )
                    if existing is not None:
                        # Keep the review state of an existing flag.
                        flag.status = existing.status
                        flag.assigned_to = existing.assigned_to
                        flag.assigned_role = existing.assigned_role
                        flag.resolved_by = existing.resolved_by
                        flag.resolution_notes = existing.resolution_notes
                        flag.created_at = existing.created_at

                    if self.store.upsert_cluster_flag(flag):
                        result.new_flags += 1
                    result.flags_created += 1
                    result.flags.append(flag)

                self.audit.record(
                    "anomaly_detection_run",
                    entity_type="address_cluster",
                    entity_id="sweep",
                    details={
                        "thresholds": thresholds,
                        "voters_scanned": len(df),
                        "clusters_found": result.clusters_found,
                        "flags_created": result.flags_created,
                        "new_flags": result.new_flags,
                        "skipped": result.skipped,
                        "suspicious": len(result.suspicious),
                    },
                )

        result.duration_sec = timing.duration_sec
        self.log_info(
            "Cluster sweep complete",
            voters=len(df),
            clusters=result.clusters_found,
            flags=result.flags_created,
            new=result.new_flags,
            skipped=result.skipped,
            suspicious=len(result.suspicious),
        )
        return result

    # ------------------------------------------------------------------
    # Flag management
    # ------------------------------------------------------------------

    def list_flags(
        self,
        status: Optional[str] = None,
        risk_level: Optional[str] = None,
        district: Optional[str] = None,
        suspicious_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[ClusterFlag]:
        return self.store.list_cluster_flags(
            status=status,
            risk_level=risk_level,
            district=district,
            suspicious_only=suspicious_only,
            limit=limit,
        )

    def get_flag(self, cluster_id: str) -> ClusterFlag:
        flag = self.store.get_cluster_flag(cluster_id)
        if flag is None:
            raise NotFoundError("cluster_flag", cluster_id)
        return flag

    def assign_flag(
        self,
        cluster_id: str,
        assignee: str,
        role: Union[str, ReviewerRole] = ReviewerRole.ERO,
        assigned_by: str = "system",
    ) -> ReviewTask:
        """
        Put a flag under review and open an assigned cluster review task.

        Returns the new task.
        """
        with self.unit_of_work("assign_cluster_flag"):
            flag = self.store.get_cluster_flag(cluster_id, for_update=True)
            if flag is None:
                raise NotFoundError("cluster_flag", cluster_id)
            if flag.is_terminal:
                raise InvalidStateTransitionError(
                    "cluster_flag", cluster_id, flag.status.value, ClusterFlagStatus.UNDER_REVIEW.value
                )

            task = self.workflow.create_task(
                TaskType.ADDRESS_CLUSTER,
                evidence=AddressClusterEvidence(
                    cluster_id=flag.cluster_id,
                    voter_count=flag.voter_count,
                    risk_score=flag.risk_score,
                    risk_level=flag.risk_level.value,
                    extra={"normalized_address": flag.normalized_address},
                ),
                priority=RISK_PRIORITY[flag.risk_level],
                created_by=assigned_by,
            )
            task = self.workflow.assign_task(task.task_id, assignee, role, assigned_by=assigned_by)

            flag.status = ClusterFlagStatus.UNDER_REVIEW
            flag.assigned_to = assignee
            flag.assigned_role = task.assigned_role
            flag.updated_at = self.now()
            self.store.upsert_cluster_flag(flag)

        self.log_info("Cluster flag assigned", cluster_id=cluster_id[:12], assignee=assignee)
        return task

    def resolve_flag(
        self,
        cluster_id: str,
        resolved_by: str,
        action: Union[str, ResolutionAction],
        notes: str = "",
    ) -> ClusterFlag:
        """``approved`` -> resolved, ``rejected`` -> false_positive."""
        action = parse_action(action)
        if action not in (ResolutionAction.APPROVED, ResolutionAction.REJECTED):
            raise ValidationError(
                f"Cluster flags can only be approved or rejected, got {action.value}",
                field_name="action",
                field_value=action.value,
            )

        with self.unit_of_work("resolve_cluster_flag"):
            flag = close_cluster_flag(self.store, cluster_id, action, resolved_by, notes, self.now())
            self.audit.record(
                "cluster_flag_resolved",
                entity_type="address_cluster",
                entity_id=cluster_id,
                details={"action": action.value, "status": flag.status.value, "notes": notes},
                actor=resolved_by,
            )

        self.log_info("Cluster flag resolved", cluster_id=cluster_id[:12], status=flag.status.value)
        return flag

    def reopen_flag(self, cluster_id: str, reopened_by: str, notes: str = "") -> ClusterFlag:
        """Return a terminal flag to ``open`` so sweeps update it again."""
        with self.unit_of_work("reopen_cluster_flag"):
            flag = self.store.get_cluster_flag(cluster_id, for_update=True)
            if flag is None:
                raise NotFoundError("cluster_flag", cluster_id)
            if not flag.is_terminal:
                raise InvalidStateTransitionError(
                    "cluster_flag", cluster_id, flag.status.value, ClusterFlagStatus.OPEN.value
                )

            previous = flag.status.value
            flag.status = ClusterFlagStatus.OPEN
            flag.resolved_by = None
            flag.resolution_notes = notes or ""
            flag.assigned_to = None
            flag.assigned_role = None
            flag.updated_at = self.now()
            self.store.upsert_cluster_flag(flag)
            self.audit.record(
                "cluster_flag_reopened",
                entity_type="address_cluster",
                entity_id=cluster_id,
                details={"previous_status": previous, "notes": notes},
                actor=reopened_by,
            )

        return flag
