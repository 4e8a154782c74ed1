import pytest
import requests

from rollguard.config import GeocoderConfig
from rollguard.exceptions import ExternalProviderError
from rollguard.services.geocoding import (
    Geocoder,
    GeocoderChain,
    GoogleMapsGeocoder,
    MapboxGeocoder,
    placeholder_geocode,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append({"url": url, "params": params, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def geo_config():
    return GeocoderConfig(google_api_key="g-key", mapbox_token="m-token")


def google_ok(lat=19.07, lng=72.87, location_type="ROOFTOP"):
    return FakeResponse({
        "status": "OK",
        "results": [{
            "formatted_address": "MG Road, Mumbai",
            "geometry": {"location": {"lat": lat, "lng": lng}, "location_type": location_type},
        }],
    })


def test_geocoder_base_is_abstract(geo_config):
    with pytest.raises(TypeError):
        Geocoder(geo_config, session=FakeSession())


def test_google_confidence_follows_location_type(geo_config):
    session = FakeSession(google_ok(), google_ok(location_type="RANGE_INTERPOLATED"), google_ok(location_type="APPROXIMATE"))
    geocoder = GoogleMapsGeocoder(geo_config, session=session)

    assert geocoder.geocode("mg road").confidence == 0.95
    assert geocoder.geocode("mg road").confidence == 0.85
    assert geocoder.geocode("mg road").confidence == 0.75
    assert session.requests[0]["params"]["region"] == "in"
    assert session.requests[0]["timeout"] == geo_config.timeout_sec


def test_google_zero_results_is_no_match(geo_config):
    geocoder = GoogleMapsGeocoder(geo_config, session=FakeSession(FakeResponse({"status": "ZERO_RESULTS"})))
    assert geocoder.geocode("nowhere") is None


def test_google_denied_raises_provider_error(geo_config):
    session = FakeSession(FakeResponse({"status": "REQUEST_DENIED", "error_message": "bad key"}))
    with pytest.raises(ExternalProviderError):
        GoogleMapsGeocoder(geo_config, session=session).geocode("mg road")


def test_mapbox_reads_center_as_lng_lat(geo_config):
    session = FakeSession(FakeResponse({
        "features": [{"center": [72.87, 19.07], "relevance": 0.9, "place_name": "Mumbai"}],
    }))
    result = MapboxGeocoder(geo_config, session=session).geocode("mg road, mumbai")

    assert (result.latitude, result.longitude) == (19.07, 72.87)
    assert result.confidence == 0.9
    assert session.requests[0]["url"].endswith("/mg%20road%2C%20mumbai.json")
    assert session.requests[0]["params"]["country"] == "in"


def test_malformed_bodies_raise_provider_error(geo_config):
    bodies = [
        (GoogleMapsGeocoder, ["unexpected"]),
        (GoogleMapsGeocoder, {"status": "OK", "results": ["oops"]}),
        (MapboxGeocoder, {"features": [{"center": [72.87, 19.07], "relevance": "high"}]}),
        (MapboxGeocoder, {"features": [{"center": None}]}),
    ]
    for geocoder_cls, body in bodies:
        geocoder = geocoder_cls(geo_config, session=FakeSession(FakeResponse(body)))
        with pytest.raises(ExternalProviderError):
            geocoder.geocode("mg road")


def test_chain_falls_through_to_secondary_on_failure(geo_config):
    google = GoogleMapsGeocoder(geo_config, session=FakeSession(requests.Timeout("slow")))
    mapbox = MapboxGeocoder(geo_config, session=FakeSession(FakeResponse({
        "features": [{"center": [72.87, 19.07], "relevance": 0.8}],
    })))
    chain = GeocoderChain(geo_config, providers=[google, mapbox])

    result = chain.geocode("mg road, mumbai", "a" * 64)

    assert result.provider == "mapbox"


def test_chain_rejects_out_of_bounds_and_http_errors(geo_config):
    google = GoogleMapsGeocoder(geo_config, session=FakeSession(google_ok(lat=51.5, lng=-0.12)))
    mapbox = MapboxGeocoder(geo_config, session=FakeSession(FakeResponse({}, status_code=503)))
    chain = GeocoderChain(geo_config, providers=[google, mapbox])

    result = chain.geocode("mg road, mumbai, maharashtra", "0f" * 32, "400001")

    assert result.is_placeholder
    assert geo_config.bounds.contains(result.latitude, result.longitude)


def test_chain_survives_non_dict_body(geo_config):
    google = GoogleMapsGeocoder(geo_config, session=FakeSession(FakeResponse(["unexpected"])))
    mapbox = MapboxGeocoder(geo_config, session=FakeSession(FakeResponse({"features": []})))
    chain = GeocoderChain(geo_config, providers=[google, mapbox])

    result = chain.geocode("mg road, mumbai", "ab" * 32, "400001")

    assert result.provider == "fallback_placeholder"


def test_chain_survives_non_numeric_relevance(geo_config):
    google = GoogleMapsGeocoder(geo_config, session=FakeSession(FakeResponse({"status": "ZERO_RESULTS"})))
    mapbox = MapboxGeocoder(geo_config, session=FakeSession(FakeResponse({
        "features": [{"center": [72.87, 19.07], "relevance": "high"}],
    })))
    chain = GeocoderChain(geo_config, providers=[google, mapbox])

    result = chain.geocode("mg road, mumbai", "ab" * 32, "400001")

    assert result.is_placeholder


def test_chain_sends_country_suffixed_query(geo_config):
    session = FakeSession(google_ok())
    chain = GeocoderChain(geo_config, providers=[GoogleMapsGeocoder(geo_config, session=session)])

    chain.geocode("mg road, mumbai", "a" * 64)

    assert session.requests[0]["params"]["address"] == "mg road, mumbai, India"


def test_placeholder_is_deterministic_and_capped(geo_config):
    digest = "1234abcd" + "0" * 56
    first = placeholder_geocode(digest, "a, b, c", "400001", geo_config.bounds)
    second = placeholder_geocode(digest, "a, b, c", "400001", geo_config.bounds)

    assert first == second
    assert first.confidence == 0.45
    assert placeholder_geocode(digest, "a", "", geo_config.bounds).confidence == 0.3


def test_chain_without_keys_has_no_providers():
    assert GeocoderChain(GeocoderConfig(google_api_key="", mapbox_token="")).providers == []
