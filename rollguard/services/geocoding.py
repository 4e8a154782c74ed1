"""
Geocoding providers and the fallback chain.

Google Maps is tried first, then Mapbox. Provider failures (timeouts, HTTP
errors, empty or out-of-bounds answers) are logged and the next provider
is tried. When nothing answers, a deterministic placeholder coordinate is
returned; it is labelled ``fallback_placeholder`` and never carries a
confidence above ``PLACEHOLDER_MAX_CONFIDENCE``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, List, Any, Tuple
from urllib.parse import quote

import requests

from ..config import GeocoderConfig, BoundsConfig
from ..exceptions import ExternalProviderError
from ..logger import get_logger
from ..models import GeocodeResult, PLACEHOLDER_PROVIDER

logger = get_logger(__name__)

PLACEHOLDER_BASE_CONFIDENCE = 0.3
PLACEHOLDER_MAX_CONFIDENCE = 0.45

GOOGLE_LOCATION_CONFIDENCE = {
    "ROOFTOP": 0.95,
    "RANGE_INTERPOLATED": 0.85,
}
GOOGLE_DEFAULT_CONFIDENCE = 0.75
MAPBOX_DEFAULT_CONFIDENCE = 0.8


class Geocoder(ABC):
    """
    Single external provider.

    Subclasses build the request and read the decoded body; anything
    unexpected in the body becomes ExternalProviderError so the chain can
    move on to the next provider.
    """

    provider = "geocoder"

    def __init__(self, config: GeocoderConfig, session: Optional[Any] = None):
        self.config = config
        self.session = session or requests.Session()

    def geocode(self, query: str) -> Optional[GeocodeResult]:
        """
        Look up one address.

        Returns:
            The best result, or None when the provider has no match

        Raises:
            ExternalProviderError: transport, provider-side or payload failure
        """
        url, params = self._request(query)
        data = self._get_json(url, params)
        try:
            return self._parse(data)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            raise ExternalProviderError(f"Malformed result: {e}", provider=self.provider) from e

    @abstractmethod
    def _request(self, query: str) -> Tuple[str, dict[str, Any]]:
        """URL and query parameters for one lookup."""

    @abstractmethod
    def _parse(self, data: dict[str, Any]) -> Optional[GeocodeResult]:
        """Best result from a decoded response body, or None."""

    def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout_sec)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise ExternalProviderError(str(e), provider=self.provider) from e
        except ValueError as e:
            raise ExternalProviderError(f"Invalid JSON response: {e}", provider=self.provider) from e
        if not isinstance(data, dict):
            raise ExternalProviderError(
                f"Unexpected response body: {type(data).__name__}", provider=self.provider
            )
        return data


class GoogleMapsGeocoder(Geocoder):
    provider = "google_maps"

    def _request(self, query: str) -> Tuple[str, dict[str, Any]]:
        return self.config.google_url, {
            "address": query,
            "key": self.config.google_api_key,
            "region": self.config.country_code,
        }

    def _parse(self, data: dict[str, Any]) -> Optional[GeocodeResult]:
        status = data.get("status", "")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise ExternalProviderError(
                data.get("error_message", "Geocoding request rejected"), provider=self.provider, status=status
            )

        results = data.get("results") or []
        if not results:
            return None
        best = results[0]
        geometry = best["geometry"]
        return GeocodeResult(
            latitude=float(geometry["location"]["lat"]),
            longitude=float(geometry["location"]["lng"]),
            confidence=GOOGLE_LOCATION_CONFIDENCE.get(geometry.get("location_type"), GOOGLE_DEFAULT_CONFIDENCE),
            provider=self.provider,
            formatted_address=best.get("formatted_address", ""),
        )


class MapboxGeocoder(Geocoder):
    provider = "mapbox"

    def _request(self, query: str) -> Tuple[str, dict[str, Any]]:
        return f"{self.config.mapbox_url}/{quote(query)}.json", {
            "access_token": self.config.mapbox_token,
            "country": self.config.country_code,
            "limit": 1,
        }

    def _parse(self, data: dict[str, Any]) -> Optional[GeocodeResult]:
        features = data.get("features") or []
        if not features:
            return None
        best = features[0]
        lng, lat = (float(v) for v in best["center"][:2])
        return GeocodeResult(
            latitude=lat,
            longitude=lng,
            confidence=float(best.get("relevance") or MAPBOX_DEFAULT_CONFIDENCE),
            provider=self.provider,
            formatted_address=best.get("place_name", ""),
        )


def placeholder_geocode(address_hash: str, normalized: str, pin_code: str, bounds: BoundsConfig) -> GeocodeResult:
    """
    Deterministic stand-in when no provider answered.

    The coordinate is derived from the address digest so the same address
    always lands on the same point inside ``bounds``. It is not a real
    location.
    """
    seed = int(address_hash[:8], 16)
    lat_fraction = (seed % 10000) / 10000
    lng_fraction = ((seed // 10000) % 10000) / 10000

    confidence = PLACEHOLDER_BASE_CONFIDENCE
    if len([part for part in normalized.split(",") if part.strip()]) >= 3:
        confidence += 0.1
    if len(pin_code) == 6 and pin_code.isdigit():
        confidence += 0.05
    confidence = min(round(confidence, 2), PLACEHOLDER_MAX_CONFIDENCE)

    return GeocodeResult(
        latitude=round(bounds.min_lat + lat_fraction * (bounds.max_lat - bounds.min_lat), 6),
        longitude=round(bounds.min_lng + lng_fraction * (bounds.max_lng - bounds.min_lng), 6),
        confidence=confidence,
        provider=PLACEHOLDER_PROVIDER,
    )


class GeocoderChain:
    """Tries each provider in order and falls back to a placeholder."""

    def __init__(self, config: GeocoderConfig, providers: Optional[List[Geocoder]] = None):
        self.config = config
        if providers is None:
            providers = []
            if config.has_google:
                providers.append(GoogleMapsGeocoder(config))
            if config.has_mapbox:
                providers.append(MapboxGeocoder(config))
        self.providers = providers

    def geocode(self, normalized: str, address_hash: str, pin_code: str = "") -> GeocodeResult:
        query = f"{normalized}, {self.config.country_name}" if normalized else self.config.country_name
        for provider in self.providers:
            try:
                result = provider.geocode(query)
            except ExternalProviderError as e:
                logger.warning(f"{provider.provider} geocoding failed, trying next provider: {e}")
                continue
            if result is None:
                logger.debug(f"{provider.provider} returned no match")
                continue
            if not self.config.bounds.contains(result.latitude, result.longitude):
                logger.warning(
                    f"{provider.provider} result outside {self.config.country_name} bounds: "
                    f"{result.latitude},{result.longitude}"
                )
                continue
            return result

        logger.info("No geocoding provider answered, using placeholder coordinate")
        return placeholder_geocode(address_hash, normalized, pin_code, self.config.bounds)
