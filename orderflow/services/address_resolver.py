"""Best-effort address enrichment through Mapbox forward geocoding.

Fields the client supplied always win; geocoding only fills the gaps and
adds coordinates. Any lookup failure leaves the raw address in place.
Order creation never fails because of this module.
"""

import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from orderflow.config import GeocodingConfig
from orderflow.services.order_payload import OrderIntent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAddress:
    """Address fields as they will be stored on a project."""

    address_line1: str
    address_line2: str | None = None
    city: str | None = None
    region: str | None = None
    postal_code: str | None = None
    country_code: str | None = None
    lat: float | None = None
    lng: float | None = None


def build_address_string(intent: OrderIntent) -> str:
    """Join the non-empty address parts into a single query string."""
    parts = [
        intent.address_line1,
        intent.address_line2,
        intent.city,
        intent.region,
        intent.postal_code,
        intent.country_code,
    ]
    return ", ".join(p for p in parts if p)


def _context_entry(context: list[dict], prefix: str) -> dict | None:
    for entry in context:
        if str(entry.get("id", "")).startswith(prefix):
            return entry
    return None


class AddressResolver:
    """Resolves order addresses, falling back to the raw input.

    Args:
        config: Geocoding settings. An empty token disables lookups.
        client: Optional httpx client, injected by tests.
    """

    def __init__(
        self,
        config: GeocodingConfig,
        client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._client = client

    def resolve(self, intent: OrderIntent) -> ResolvedAddress:
        """Resolve the intent's address. Never raises for lookup failures."""
        raw = ResolvedAddress(
            address_line1=intent.address_line1,
            address_line2=intent.address_line2,
            city=intent.city,
            region=intent.region,
            postal_code=intent.postal_code,
            country_code=intent.country_code,
            lat=intent.lat,
            lng=intent.lng,
        )
        if intent.lat is not None and intent.lng is not None:
            return raw

        geocoded = self.geocode(build_address_string(intent))
        if geocoded is None:
            return raw

        return ResolvedAddress(
            address_line1=intent.address_line1,
            address_line2=intent.address_line2,
            city=intent.city or geocoded.get("city"),
            region=intent.region or geocoded.get("region"),
            postal_code=intent.postal_code or geocoded.get("postal_code"),
            country_code=intent.country_code or geocoded.get("country_code"),
            lat=geocoded["lat"],
            lng=geocoded["lng"],
        )

    def geocode(self, address: str) -> dict | None:
        """Look up one address. Returns None when disabled or on any failure.

        Returns:
            Dict with ``lat``, ``lng`` and whichever of ``city``, ``region``,
            ``postal_code``, ``country_code`` the provider reported.
        """
        token = self._config.mapbox_token.strip()
        if not token or not address:
            return None

        url = f"{self._config.base_url.rstrip('/')}/{quote(address, safe='')}.json"
        params = {"access_token": token, "limit": 1}
        try:
            if self._client is not None:
                response = self._client.get(
                    url, params=params, timeout=self._config.timeout_seconds
                )
            else:
                with httpx.Client(timeout=self._config.timeout_seconds) as client:
                    response = client.get(url, params=params)

            if response.status_code != 200:
                logger.warning("Geocoding failed with HTTP %d", response.status_code)
                return None
            data = response.json()
        except httpx.TimeoutException:
            logger.warning("Geocoding timed out")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Geocoding error: %s", type(e).__name__)
            return None

        features = data.get("features") or []
        if not features:
            return None
        feature = features[0]
        center = feature.get("center") or []
        if len(center) < 2:
            return None

        lng, lat = center[0], center[1]
        context = feature.get("context") or []
        result: dict = {"lat": float(lat), "lng": float(lng)}

        place = _context_entry(context, "place") or _context_entry(context, "locality")
        if place and place.get("text"):
            result["city"] = place["text"]
        region = _context_entry(context, "region")
        if region:
            result["region"] = region.get("short_code") or region.get("text")
        postcode = _context_entry(context, "postcode")
        if postcode and postcode.get("text"):
            result["postal_code"] = postcode["text"]
        country = _context_entry(context, "country")
        if country and country.get("short_code"):
            result["country_code"] = str(country["short_code"]).upper()[:2]
        return result
