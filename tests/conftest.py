import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from rollguard.config import Config, GeocoderConfig
from rollguard.models import AddressComponents, GeocodeResult, Voter
from rollguard.persistence import InMemoryRollStore
from rollguard.services import ServiceContext
from rollguard.services.address_validation import address_digest, normalize_address


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeGeocoder:
    """Stands in for the provider chain; records every lookup."""

    def __init__(self, confidence=0.95, provider="google_maps"):
        self.confidence = confidence
        self.provider = provider
        self.calls = []

    def geocode(self, normalized, address_hash, pin_code=""):
        self.calls.append(normalized)
        return GeocodeResult(
            latitude=19.07,
            longitude=72.87,
            confidence=self.confidence,
            provider=self.provider,
            formatted_address=normalized,
        )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryRollStore()


@pytest.fixture
def config():
    # No provider keys, so nothing can reach a real geocoding API.
    cfg = Config()
    cfg.geocoder = GeocoderConfig(google_api_key="", mapbox_token="")
    return cfg


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def context(config, store, clock, geocoder):
    return ServiceContext(config=config, store=store, clock=clock, geocoder=geocoder)


MUMBAI_ADDRESS = {
    "house_number": "12",
    "street": "MG Rd",
    "village_city": "Mumbai",
    "district": "Mumbai",
    "state": "Maharashtra",
    "pin_code": "400001",
}


@pytest.fixture
def add_voter(store, clock):
    """Store a voter; keyword arguments override the defaults."""
    counter = {"n": 0}

    def _add(address=None, **overrides):
        counter["n"] += 1
        components = AddressComponents.from_dict(address or MUMBAI_ADDRESS)
        normalized, _ = normalize_address(components)
        fields = {
            "voter_id": f"v{counter['n']:04d}",
            "name": f"Voter {counter['n']}",
            "address": components,
            "normalized_address": normalized,
            "address_hash": address_digest(normalized),
            "registration_status": "active",
            "created_at": clock(),
        }
        fields.update(overrides)
        return store.save_voter(Voter(**fields))

    return _add
