"""
Registration intake.

Scores a new registration's address and names, stores the result and
decides whether it goes straight to ``active`` or waits for review.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Any, List, Union

from ..models import (
    AddressValidation,
    AddressVerificationEvidence,
    NameValidation,
    NameVerificationEvidence,
    ReviewTask,
    Voter,
)
from ..models.states import (
    NameRole,
    RegistrationStatus,
    TaskPriority,
    TaskType,
    ValidationResult,
)
from .address_validation import AddressValidator
from .audit_trail import AuditTrail
from .base import BaseService, ServiceContext
from .name_validation import NameScorer
from .review_tasks import ReviewTaskWorkflow


# Voter attribute -> role it is scored as. The main name is always checked.
NAME_FIELDS = (
    ("name", NameRole.FIRST_NAME),
    ("father_name", NameRole.FATHER_NAME),
    ("mother_name", NameRole.MOTHER_NAME),
    ("guardian_name", NameRole.GUARDIAN_NAME),
)


def _priority(result: ValidationResult) -> TaskPriority:
    return TaskPriority.HIGH if result == ValidationResult.REJECTED else TaskPriority.MEDIUM


@dataclass
class IntakeDecision:
    voter: Voter
    address: AddressValidation
    names: dict[str, NameValidation] = field(default_factory=dict)
    tasks: List[ReviewTask] = field(default_factory=list)

    @property
    def status(self) -> RegistrationStatus:
        return self.voter.registration_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "voter_id": self.voter.voter_id,
            "registration_status": self.status.value,
            "review_reason": self.voter.review_reason,
            "address": self.address.to_dict(),
            "names": {key: result.to_dict() for key, result in self.names.items()},
            "tasks": [task.task_id for task in self.tasks],
        }


class RegistrationIntake(BaseService):
    """Scores and stores new registrations."""

    name = "RegistrationIntake"

    def __init__(
        self,
        context: ServiceContext,
        addresses: Optional[AddressValidator] = None,
        names: Optional[NameScorer] = None,
        workflow: Optional[ReviewTaskWorkflow] = None,
        audit: Optional[AuditTrail] = None,
    ):
        super().__init__(context)
        self.audit = audit or AuditTrail(context)
        self.addresses = addresses or AddressValidator(context)
        self.names = names or NameScorer(context)
        self.workflow = workflow or ReviewTaskWorkflow(context, audit=self.audit)

    def submit(self, voter: Union[Voter, dict[str, Any]], submitted_by: str = "applicant") -> IntakeDecision:
        """
        Score and store one registration.

        Passed address and passed names make the registration active;
        anything else stores it as ``pending_review`` with one review task
        per failing check.
        """
        if isinstance(voter, dict):
            voter = Voter.from_dict(voter)

        # Scoring may call external providers, so it runs before the
        # transaction is opened.
        address = self.addresses.validate(voter.address)
        names = {
            attr: self.names.score(getattr(voter, attr), role)
            for attr, role in NAME_FIELDS
            if attr == "name" or getattr(voter, attr)
        }

        now = self.now()
        voter.normalized_address = address.normalized
        voter.address_hash = address.address_hash
        voter.address_quality_score = address.quality_score
        voter.name_quality_score = names["name"].score
        voter.phonetic_code = names["name"].phonetic_code
        voter.validation_flags = set(address.flags)
        for attr, result in names.items():
            voter.validation_flags.update(f"{attr}:{flag}" for flag in result.flags)
        voter.created_at = voter.created_at or now
        voter.updated_at = now

        failing_names = {attr: r for attr, r in names.items() if r.validation_result != ValidationResult.PASSED}
        address_ok = address.validation_result == ValidationResult.PASSED
        if address_ok and not failing_names:
            voter.registration_status = RegistrationStatus.ACTIVE
            voter.review_reason = ""
        else:
            voter.registration_status = RegistrationStatus.PENDING_REVIEW
            reasons = [] if address_ok else [f"address {address.validation_result.value}"]
            reasons += [f"{attr} {r.validation_result.value}" for attr, r in failing_names.items()]
            voter.review_reason = "; ".join(reasons)

        tasks: List[ReviewTask] = []
        with self.unit_of_work("submit_registration"):
            voter = self.store.save_voter(voter)

            if not address_ok:
                tasks.append(self.workflow.create_task(
                    TaskType.ADDRESS_VERIFICATION,
                    voter_id=voter.voter_id,
                    evidence=AddressVerificationEvidence(
                        address_hash=address.address_hash,
                        quality_score=address.quality_score,
                        flags=list(address.flags),
                        geocode_provider=address.geocode.provider,
                    ),
                    priority=_priority(address.validation_result),
                ))
            for attr, result in failing_names.items():
                tasks.append(self.workflow.create_task(
                    TaskType.NAME_VERIFICATION,
                    voter_id=voter.voter_id,
                    evidence=NameVerificationEvidence(
                        name=result.name,
                        role=result.role,
                        score=result.score,
                        flags=list(result.flags),
                        reason=result.reason,
                        extra={"field": attr},
                    ),
                    priority=_priority(result.validation_result),
                ))

            self.audit.record(
                "registration_submitted",
                entity_type="voter",
                entity_id=voter.voter_id,
                details={
                    "registration_status": voter.registration_status.value,
                    "address_hash": voter.address_hash,
                    "address_result": address.validation_result.value,
                    "name_results": {attr: r.validation_result.value for attr, r in names.items()},
                    "review_tasks": [task.task_id for task in tasks],
                },
                actor=submitted_by,
            )

        self.log_info(
            "Registration processed",
            voter_id=voter.voter_id,
            status=voter.registration_status.value,
            tasks=len(tasks),
        )
        return IntakeDecision(voter=voter, address=address, names=names, tasks=tasks)
