"""
Custom exceptions for the roll integrity engine.

All application-specific exceptions inherit from RollGuardError. Each
carries an ``error_code`` so callers can map failures to distinct
response shapes (not found, invalid transition, integrity failure).

Ordinary validation rejections (low scores, digits in a name) are NOT
exceptions; they are returned as structured results.
"""

from __future__ import annotations

from typing import Optional, Any


class RollGuardError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human-readable error message
        details: Additional error details (for debugging)
        recoverable: Whether the error can potentially be recovered from
    """

    error_code: str = "error"

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(RollGuardError):
    """
    Invalid or missing configuration.

    Examples:
        - Database host not set when a Postgres store is requested
        - Pool bounds inverted
    """

    error_code = "configuration_error"

    def __init__(self, message: str, config_key: Optional[str] = None):
        details = {"config_key": config_key} if config_key else None
        super().__init__(message, details=details, recoverable=False)


class NotFoundError(RollGuardError):
    """A referenced entity (task, batch, flag, voter) does not exist."""

    error_code = "not_found"

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            details={"entity_type": entity_type, "entity_id": str(entity_id)},
            recoverable=False,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidStateTransitionError(RollGuardError):
    """
    Requested transition is not allowed from the entity's current state.

    Examples:
        - Committing a batch that is already committed
        - Resolving a task that has already been resolved

    Raised before any write, so no state is mutated.
    """

    error_code = "invalid_transition"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current: str,
        target: str
    ):
        super().__init__(
            f"Invalid transition for {entity_type} {entity_id}: {current} -> {target}",
            details={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "current": current,
                "target": target,
            },
            recoverable=False,
        )
        self.current = current
        self.target = target


class TransactionFailureError(RollGuardError):
    """
    A unit of work failed part-way and was rolled back.

    The store retains its pre-operation state.
    """

    error_code = "transaction_failed"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if cause is not None:
            details["cause"] = f"{type(cause).__name__}: {cause}"
        super().__init__(message, details=details, recoverable=True)
        self.cause = cause


class IntegrityError(RollGuardError):
    """
    Stored data no longer matches its recorded digest.

    Examples:
        - Revision batch flags edited after the dry run
    """

    error_code = "integrity_failure"

    def __init__(
        self,
        message: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None
    ):
        details = {}
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual
        super().__init__(message, details=details, recoverable=False)


class ExternalProviderError(RollGuardError):
    """
    External provider call failed (timeout, HTTP error, bad payload).

    Caught inside the geocoder fallback chain; never surfaces to callers
    of address validation.
    """

    error_code = "provider_failure"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status: Optional[str] = None
    ):
        details = {}
        if provider:
            details["provider"] = provider
        if status:
            details["status"] = status
        super().__init__(message, details=details, recoverable=True)


class DataPersistenceError(RollGuardError):
    """
    Failed to read or write the store.

    Examples:
        - Connection refused
        - Schema initialization failed
    """

    error_code = "persistence_error"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None
    ):
        details = {"operation": operation} if operation else None
        super().__init__(message, details=details, recoverable=False)


class ValidationError(RollGuardError):
    """
    Caller supplied an unusable argument.

    Examples:
        - Unknown resolution action
        - Unknown name role
    """

    error_code = "invalid_argument"

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        field_value: Optional[Any] = None,
        expected: Optional[str] = None
    ):
        details = {}
        if field_name:
            details["field_name"] = field_name
        if field_value is not None:
            details["field_value"] = str(field_value)[:100]
        if expected:
            details["expected"] = expected
        super().__init__(message, details=details, recoverable=False)
