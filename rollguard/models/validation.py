"""
Validation result models for address and name scoring.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, List

from .states import ValidationResult


PLACEHOLDER_PROVIDER = "fallback_placeholder"


@dataclass
class GeocodeResult:
    """Coordinates returned by a geocoding provider."""
    latitude: float
    longitude: float
    confidence: float
    provider: str
    formatted_address: str = ""

    @property
    def is_placeholder(self) -> bool:
        """True when no provider answered and the coordinate is synthetic."""
        return self.provider == PLACEHOLDER_PROVIDER

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "confidence": self.confidence,
            "provider": self.provider,
            "formatted_address": self.formatted_address,
            "is_placeholder": self.is_placeholder,
        }


@dataclass
class AddressCacheEntry:
    """Read-through cache row keyed by the address-identity digest."""
    address_hash: str
    normalized_address: str
    geocode: GeocodeResult
    quality_score: float
    cached_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass
class PinValidation:
    valid: bool
    reason: str = ""


@dataclass
class AddressValidation:
    """Outcome of validating one submitted address."""
    normalized: str
    normalized_components: dict[str, str]
    address_hash: str
    geocode: GeocodeResult
    quality_score: float
    validation_result: ValidationResult
    flags: List[str] = field(default_factory=list)
    pin_validation: Optional[PinValidation] = None
    cache_hit: bool = False

    @property
    def valid(self) -> bool:
        return self.validation_result == ValidationResult.PASSED

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "normalized": self.normalized,
            "normalized_components": dict(self.normalized_components),
            "address_hash": self.address_hash,
            "geocode": self.geocode.to_dict(),
            "quality_score": self.quality_score,
            "validation_result": self.validation_result.value,
            "flags": list(self.flags),
            "pin_validation": (
                {"valid": self.pin_validation.valid, "reason": self.pin_validation.reason}
                if self.pin_validation else None
            ),
            "cache_hit": self.cache_hit,
        }


@dataclass
class NameValidation:
    """Outcome of validating one submitted name."""
    name: str
    role: str
    score: float
    validation_result: ValidationResult
    flags: List[str] = field(default_factory=list)
    reason: str = ""
    phonetic_code: str = ""
    tokens: List[str] = field(default_factory=list)
    entropy: Optional[float] = None
    ngram_score: Optional[float] = None
    dictionary_matches: int = 0
    fuzzy_matches: int = 0

    @property
    def valid(self) -> bool:
        return self.validation_result != ValidationResult.REJECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "role": self.role,
            "score": self.score,
            "valid": self.valid,
            "validation_result": self.validation_result.value,
            "flags": list(self.flags),
            "reason": self.reason,
            "phonetic_code": self.phonetic_code,
            "tokens": list(self.tokens),
            "entropy": self.entropy,
            "ngram_score": self.ngram_score,
            "dictionary_matches": self.dictionary_matches,
            "fuzzy_matches": self.fuzzy_matches,
        }
