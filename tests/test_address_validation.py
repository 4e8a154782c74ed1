from rollguard.models import AddressComponents, ValidationResult
from rollguard.services.address_validation import (
    AddressValidator,
    address_digest,
    normalize_address,
    quality_score,
    validate_pin,
)
from rollguard.services.geocoding import GeocoderChain

from conftest import MUMBAI_ADDRESS


def test_normalize_expands_street_abbreviations_only():
    normalized, cleaned = normalize_address({
        "house_number": " 7 ",
        "street": "Station  Rd.",
        "village_city": "Pune",
        "district": "Pune",
        "state": "Maharashtra",
        "pin_code": "411001",
    })

    assert cleaned["street"] == "station road"
    assert normalized == "7, station road, pune, pune, maharashtra, 411001"


def test_normalization_is_idempotent():
    first, cleaned = normalize_address(MUMBAI_ADDRESS)
    second, _ = normalize_address(cleaned)

    assert first == second


def test_digest_ignores_case_and_spacing():
    a, _ = normalize_address(MUMBAI_ADDRESS)
    b, _ = normalize_address({**MUMBAI_ADDRESS, "street": "  mg   RD ", "village_city": "MUMBAI"})

    assert address_digest(a) == address_digest(b)
    assert len(address_digest(a)) == 64


def test_empty_components_are_skipped():
    normalized, _ = normalize_address(AddressComponents(village_city="Nashik", pin_code="422001"))
    assert normalized == "nashik, 422001"


def test_validate_pin():
    assert validate_pin("400001", "Maharashtra").valid
    assert not validate_pin("", "Maharashtra").valid
    assert not validate_pin("40001", "").valid
    assert not validate_pin("012345", "").valid
    assert not validate_pin("110001", "Maharashtra").valid
    # Unknown state names are not held against the PIN.
    assert validate_pin("110001", "Atlantis").valid


def test_quality_score_stays_in_unit_interval():
    _, cleaned = normalize_address({})
    assert quality_score(cleaned, "", None) == 0.0

    normalized, cleaned = normalize_address(MUMBAI_ADDRESS)
    assert 0.0 <= quality_score(cleaned, normalized, None) <= 1.0


def test_complete_address_with_rooftop_geocode_passes(context):
    result = AddressValidator(context).validate(MUMBAI_ADDRESS)

    assert result.quality_score >= 0.75
    assert result.validation_result == ValidationResult.PASSED
    assert result.flags == []
    assert result.valid


def test_sparse_address_is_rejected(context):
    result = AddressValidator(context).validate({"village_city": "X"})

    assert result.validation_result == ValidationResult.REJECTED
    assert "low_quality_score" in result.flags
    assert "pin_mismatch" in result.flags


def test_pin_zone_mismatch_downgrades_to_flagged(context):
    result = AddressValidator(context).validate({**MUMBAI_ADDRESS, "pin_code": "110001"})

    assert result.validation_result == ValidationResult.FLAGGED
    assert "pin_mismatch" in result.flags


def test_second_lookup_is_served_from_cache(context, geocoder, store):
    validator = AddressValidator(context)

    first = validator.validate(MUMBAI_ADDRESS)
    second = validator.validate(MUMBAI_ADDRESS)

    assert len(geocoder.calls) == 1
    assert not first.cache_hit
    assert second.cache_hit
    assert second.quality_score == first.quality_score
    assert first.address_hash in store.address_cache


def test_expired_cache_entry_is_refreshed(context, geocoder, clock):
    validator = AddressValidator(context)
    validator.validate(MUMBAI_ADDRESS)

    clock.advance(days=context.config.address.cache_ttl_days + 1)
    result = validator.validate(MUMBAI_ADDRESS)

    assert len(geocoder.calls) == 2
    assert not result.cache_hit


def test_placeholder_geocode_is_flagged_and_not_cached(context, store):
    validator = AddressValidator(context, geocoder=GeocoderChain(context.config.geocoder, providers=[]))

    result = validator.validate(MUMBAI_ADDRESS)

    assert result.geocode.is_placeholder
    assert result.geocode.confidence <= 0.45
    assert "placeholder_geocode" in result.flags
    assert "low_geocode_confidence" in result.flags
    assert result.validation_result != ValidationResult.PASSED
    assert store.address_cache == {}
