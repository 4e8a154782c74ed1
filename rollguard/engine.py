"""
Roll integrity engine facade.

Composes every component around one ServiceContext and exposes the core
operations as plain-dict calls for an outer layer (CLI, web handler).
"""

from __future__ import annotations

from typing import Optional, Any, Union

from .exceptions import (
    RollGuardError,
    NotFoundError,
    InvalidStateTransitionError,
    IntegrityError,
    TransactionFailureError,
    ValidationError,
    ExternalProviderError,
)
from .logger import get_logger
from .models import AddressComponents, NameRole, RevisionScope
from .services import (
    AddressValidator,
    AuditTrail,
    ClusterDetector,
    HashChainVerifier,
    NameScorer,
    RegistrationIntake,
    ReviewTaskWorkflow,
    RevisionBatchEngine,
    ServiceContext,
)

logger = get_logger(__name__)


# Error class -> response status for the outer layer.
ERROR_STATUS = (
    (NotFoundError, 404),
    (InvalidStateTransitionError, 409),
    (IntegrityError, 422),
    (ValidationError, 400),
    (ExternalProviderError, 502),
    (TransactionFailureError, 500),
)


def error_response(exc: BaseException) -> dict[str, Any]:
    """
    Map an exception to a response shape.

    Each failure kind gets its own status and ``error`` code; anything
    that is not a RollGuardError is reported as an internal error without
    its message.
    """
    if isinstance(exc, RollGuardError):
        status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
        return {"status": status, "body": exc.to_dict()}
    return {
        "status": 500,
        "body": {"error": "internal_error", "message": "Internal error", "details": {}},
    }


class RollIntegrityEngine:
    """
    One entry point over all integrity components.

    Usage:
        engine = RollIntegrityEngine()
        engine.validate_name("Priya Sharma")
        engine.detect_address_clusters()
    """

    def __init__(self, context: Optional[ServiceContext] = None):
        self.context = context or ServiceContext()
        self.audit = AuditTrail(self.context)
        self.addresses = AddressValidator(self.context)
        self.names = NameScorer(self.context)
        self.workflow = ReviewTaskWorkflow(self.context, audit=self.audit)
        self.clusters = ClusterDetector(self.context, audit=self.audit, workflow=self.workflow)
        self.revisions = RevisionBatchEngine(self.context, audit=self.audit)
        self.chain = HashChainVerifier(self.context)
        self.intake = RegistrationIntake(
            self.context,
            addresses=self.addresses,
            names=self.names,
            workflow=self.workflow,
            audit=self.audit,
        )

    @property
    def store(self):
        return self.context.store

    # Address / name scoring

    def validate_address(self, components: Union[AddressComponents, dict[str, Any]]) -> dict[str, Any]:
        return self.addresses.validate(components).to_dict()

    def validate_name(self, name: str, role: Union[str, NameRole] = NameRole.FIRST_NAME) -> dict[str, Any]:
        return self.names.score(name, role).to_dict()

    def submit_registration(self, voter: dict[str, Any], submitted_by: str = "applicant") -> dict[str, Any]:
        return self.intake.submit(voter, submitted_by=submitted_by).to_dict()

    # Clusters

    def detect_address_clusters(self, thresholds: Optional[dict[str, int]] = None) -> dict[str, Any]:
        return self.clusters.detect_address_clusters(thresholds).to_dict()

    def list_cluster_flags(self, **filters: Any) -> list[dict[str, Any]]:
        return [flag.to_dict() for flag in self.clusters.list_flags(**filters)]

    # Review tasks

    def create_task(self, task_type: str, voter_id: Optional[str] = None, **kwargs: Any) -> dict[str, Any]:
        return self.workflow.create_task(task_type, voter_id=voter_id, **kwargs).to_dict()

    def assign_task(self, task_id: str, assigned_to: str, role: str) -> dict[str, Any]:
        return self.workflow.assign_task(task_id, assigned_to, role).to_dict()

    def resolve_task(self, task_id: str, action: str, notes: str = "", resolved_by: str = "system") -> dict[str, Any]:
        return self.workflow.resolve_task(task_id, action, notes=notes, resolved_by=resolved_by).to_dict()

    # Revision batches

    def run_dry_run(
        self,
        scope: Optional[Union[RevisionScope, dict[str, Any]]] = None,
        created_by: str = "system",
    ) -> dict[str, Any]:
        return self.revisions.run_dry_run(scope, created_by=created_by).to_dict()

    def commit_batch(self, batch_id: str, committed_by: str = "system") -> dict[str, Any]:
        return self.revisions.commit_batch(batch_id, committed_by=committed_by)

    def cancel_batch(self, batch_id: str, cancelled_by: str = "system") -> dict[str, Any]:
        return self.revisions.cancel_batch(batch_id, cancelled_by=cancelled_by).to_dict()

    # Audit chain

    def verify_hash_chain(self, verified_by: str = "system") -> dict[str, Any]:
        return self.chain.verify(verified_by=verified_by)

    def chain_status(self) -> dict[str, Any]:
        return self.chain.chain_status()

    def call(self, operation: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
        """
        Invoke an operation by name and wrap the outcome.

        Returns ``{"status": 200, "body": result}`` on success or the
        error_response shape on failure.
        """
        handler = getattr(self, operation, None)
        if handler is None or operation.startswith("_") or not callable(handler):
            return error_response(ValidationError(f"Unknown operation: {operation}", field_name="operation"))
        try:
            return {"status": 200, "body": handler(*args, **kwargs)}
        except RollGuardError as e:
            logger.warning(f"{operation} failed: {e}")
            return error_response(e)
        except Exception as e:
            logger.exception(f"{operation} failed unexpectedly")
            return error_response(e)
