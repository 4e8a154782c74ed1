"""
Integrity services.

Contains the components of the roll integrity engine:
- AddressValidator: Normalize, geocode (cached) and score addresses
- GeocoderChain: Google Maps -> Mapbox -> deterministic placeholder
- NameScorer: Rule, phonetic, entropy and frequency scoring of names
- ClusterDetector: Address cluster sweep and cluster flag management
- ReviewTaskWorkflow: Human review task lifecycle
- RevisionBatchEngine: Dry run / commit of roll-wide revisions
- HashChainVerifier: Audit log chain verification
- AuditTrail: Chained audit entries written by every mutation
- RegistrationIntake: Score and store new registrations
"""

from .base import BaseService, ServiceContext, utc_now
from .audit_trail import AuditTrail
from .geocoding import GeocoderChain, GoogleMapsGeocoder, MapboxGeocoder
from .address_validation import AddressValidator, normalize_address, address_digest
from .name_validation import NameScorer
from .review_tasks import ReviewTaskWorkflow
from .cluster_detection import ClusterDetector, ClusterSweepResult
from .revision_batches import RevisionBatchEngine, DryRunResult, AUTO_APPLY_ACTIONS
from .hash_chain import HashChainVerifier
from .intake import RegistrationIntake, IntakeDecision

__all__ = [
    "BaseService",
    "ServiceContext",
    "utc_now",
    "AuditTrail",
    "GeocoderChain",
    "GoogleMapsGeocoder",
    "MapboxGeocoder",
    "AddressValidator",
    "normalize_address",
    "address_digest",
    "NameScorer",
    "ReviewTaskWorkflow",
    "ClusterDetector",
    "ClusterSweepResult",
    "RevisionBatchEngine",
    "DryRunResult",
    "AUTO_APPLY_ACTIONS",
    "HashChainVerifier",
    "RegistrationIntake",
    "IntakeDecision",
]
