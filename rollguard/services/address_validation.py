"""
Address normalization, identity digest, geocoding cache and quality score.

The normalized string is the address identity: two submissions that
normalize to the same string share one digest, one cache entry and one
cluster.
"""

from __future__ import annotations

import hashlib
import re
from datetime import timedelta
from typing import Optional, Union, List, Tuple

from ..models import (
    AddressComponents,
    AddressCacheEntry,
    AddressValidation,
    GeocodeResult,
    PinValidation,
    ValidationResult,
)
from .base import BaseService, ServiceContext
from .geocoding import GeocoderChain


COMPONENT_ORDER = ("house_number", "street", "village_city", "district", "state", "pin_code")

ABBREVIATIONS = {
    "st": "street",
    "rd": "road",
    "ave": "avenue",
    "blvd": "boulevard",
    "dr": "drive",
    "ln": "lane",
    "ct": "court",
    "pl": "place",
    "sq": "square",
    "n": "north",
    "s": "south",
    "e": "east",
    "w": "west",
    "ne": "northeast",
    "nw": "northwest",
    "se": "southeast",
    "sw": "southwest",
    "no": "number",
    "apt": "apartment",
    "fl": "floor",
    "bldg": "building",
}

_ABBREVIATION_RE = re.compile(r"\b(" + "|".join(sorted(ABBREVIATIONS, key=len, reverse=True)) + r")\b")
_PIN_RE = re.compile(r"^\d{6}$")

# First PIN digit -> postal zone states.
PIN_ZONES: dict[str, Tuple[str, ...]] = {
    "1": ("delhi", "haryana", "punjab", "himachal pradesh", "jammu and kashmir", "ladakh", "chandigarh"),
    "2": ("uttar pradesh", "uttarakhand"),
    "3": ("rajasthan", "gujarat", "daman and diu", "dadra and nagar haveli"),
    "4": ("maharashtra", "madhya pradesh", "chhattisgarh", "goa"),
    "5": ("andhra pradesh", "telangana", "karnataka"),
    "6": ("tamil nadu", "kerala", "puducherry", "lakshadweep"),
    "7": (
        "west bengal", "odisha", "assam", "sikkim", "arunachal pradesh", "nagaland",
        "manipur", "mizoram", "tripura", "meghalaya", "andaman and nicobar islands",
    ),
    "8": ("bihar", "jharkhand"),
}

AddressInput = Union[AddressComponents, dict]


def _clean(value: str) -> str:
    value = (value or "").strip().lower()
    value = re.sub(r"\s+", " ", value)
    value = re.sub(r"[^\w\s-]", "", value)
    return re.sub(r"\s+", " ", value).strip()


def _expand(value: str) -> str:
    return _ABBREVIATION_RE.sub(lambda m: ABBREVIATIONS[m.group(1)], value)


def normalize_components(components: AddressInput) -> dict[str, str]:
    """Clean every component; street abbreviations are expanded."""
    if isinstance(components, dict):
        components = AddressComponents.from_dict(components)
    return {
        "house_number": _clean(components.house_number),
        "street": _expand(_clean(components.street)),
        "village_city": _clean(components.village_city),
        "district": _clean(components.district),
        "state": _clean(components.state),
        "pin_code": (components.pin_code or "").strip(),
    }


def normalize_address(components: AddressInput) -> Tuple[str, dict[str, str]]:
    """
    Canonical address string and its cleaned components.

    Idempotent: normalizing the cleaned components again yields the same
    string.
    """
    cleaned = normalize_components(components)
    normalized = ", ".join(cleaned[key] for key in COMPONENT_ORDER if cleaned[key])
    return normalized, cleaned


def address_digest(normalized: str) -> str:
    """SHA-256 of the lower-cased, trimmed normalized string (64 hex chars)."""
    return hashlib.sha256(normalized.strip().lower().encode("utf-8")).hexdigest()


def validate_pin(pin_code: str, state: str = "") -> PinValidation:
    """Six digits, and when the state is known, the right postal zone."""
    pin_code = (pin_code or "").strip()
    if not pin_code:
        return PinValidation(valid=False, reason="PIN code missing")
    if not _PIN_RE.match(pin_code):
        return PinValidation(valid=False, reason="PIN code must be 6 digits")
    if pin_code[0] == "0":
        return PinValidation(valid=False, reason="PIN code cannot start with 0")

    state = _clean(state)
    zone_states = PIN_ZONES.get(pin_code[0])
    if state and zone_states is not None and state not in zone_states:
        known = any(state in states for states in PIN_ZONES.values())
        if known:
            return PinValidation(valid=False, reason=f"PIN zone {pin_code[0]} does not serve {state}")
    return PinValidation(valid=True)


def quality_score(components: dict[str, str], normalized: str, geocode: Optional[GeocodeResult]) -> float:
    """
    Weighted 0..1 quality score.

    Completeness 40, structure 20, geocode confidence 30, PIN format 10.
    """
    score = 0.0

    # Completeness
    if components.get("house_number"):
        score += 5
    if components.get("street"):
        score += 10
    if components.get("village_city"):
        score += 10
    if components.get("district"):
        score += 5
    if components.get("state"):
        score += 5
    pin_ok = bool(_PIN_RE.match(components.get("pin_code", "")))
    if pin_ok:
        score += 5

    # Structure
    parts = len([p for p in normalized.split(",") if p.strip()])
    if parts >= 3:
        score += 10
    if parts >= 4:
        score += 5
    if parts >= 5:
        score += 5

    if geocode is not None:
        score += max(0.0, min(1.0, geocode.confidence)) * 30

    if pin_ok:
        score += 10

    return round(max(0.0, min(1.0, score / 100)), 2)


class AddressValidator(BaseService):
    """
    Normalizes, geocodes (read-through cache) and scores addresses.

    Provides:
    - normalize_address / address_digest wrappers
    - validate(): the full pipeline used at intake
    """

    name = "AddressValidator"

    def __init__(self, context: ServiceContext, geocoder: Optional[GeocoderChain] = None):
        super().__init__(context)
        self.geocoder = geocoder or context.geocoder or GeocoderChain(self.config.geocoder)
        self.settings = self.config.address

    def normalize(self, components: AddressInput) -> Tuple[str, dict[str, str]]:
        return normalize_address(components)

    def digest(self, normalized: str) -> str:
        return address_digest(normalized)

    def _lookup(self, address_hash: str, normalized: str, cleaned: dict[str, str]) -> Tuple[GeocodeResult, float, bool]:
        now = self.now()
        cached = self.store.get_address_cache(address_hash)
        if cached is not None and cached.is_fresh(now):
            self.log_debug("Address cache hit", address_hash=address_hash[:12])
            return cached.geocode, cached.quality_score, True

        geocode = self.geocoder.geocode(normalized, address_hash, cleaned.get("pin_code", ""))
        score = quality_score(cleaned, normalized, geocode)

        if geocode.is_placeholder:
            # Not cached, so a real provider is retried next time.
            self.log_debug("Placeholder geocode not cached", address_hash=address_hash[:12])
        else:
            self.store.put_address_cache(AddressCacheEntry(
                address_hash=address_hash,
                normalized_address=normalized,
                geocode=geocode,
                quality_score=score,
                cached_at=now,
                expires_at=now + timedelta(days=self.settings.cache_ttl_days),
            ))
        return geocode, score, False

    def validate(self, components: AddressInput) -> AddressValidation:
        """
        Validate one submitted address.

        Provider failures never surface here; they degrade to the
        placeholder geocode with its flag.
        """
        normalized, cleaned = self.normalize(components)
        address_hash = self.digest(normalized)
        geocode, score, cache_hit = self._lookup(address_hash, normalized, cleaned)

        flags: List[str] = []
        if score < self.settings.reject_below:
            result = ValidationResult.REJECTED
            flags.append("low_quality_score")
        elif score < self.settings.flag_below:
            result = ValidationResult.FLAGGED
            flags.append("medium_quality_score")
        else:
            result = ValidationResult.PASSED

        pin_validation = None
        if self.settings.check_pin_zone:
            pin_validation = validate_pin(cleaned["pin_code"], cleaned["state"])
            if not pin_validation.valid:
                flags.append("pin_mismatch")

        if geocode.confidence < self.settings.low_geocode_confidence:
            flags.append("low_geocode_confidence")
        if geocode.is_placeholder:
            flags.append("placeholder_geocode")

        if result == ValidationResult.PASSED and len(flags) > 0:
            result = ValidationResult.FLAGGED

        self.log_debug(
            "Address validated",
            address_hash=address_hash[:12],
            score=score,
            result=result.value,
            flags=",".join(flags) or "-",
        )
        return AddressValidation(
            normalized=normalized,
            normalized_components=cleaned,
            address_hash=address_hash,
            geocode=geocode,
            quality_score=score,
            validation_result=result,
            flags=flags,
            pin_validation=pin_validation,
            cache_hit=cache_hit,
        )
