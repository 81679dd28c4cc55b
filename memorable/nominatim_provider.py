"""
Nominatim (OpenStreetMap) implementation of reverse geocoding.
"""

from typing import Dict, Any, Optional

from .config import AppConfig
from .errors import NotFound, NetworkFailure
from .geo_providers import ReverseGeocoder
from .logging_setup import get_logger

logger = get_logger(__name__)


class NominatimProvider(ReverseGeocoder):
    """Nominatim API implementation of reverse geocoding."""

    def __init__(self, config: AppConfig):
        super().__init__(config)
        self.api_url = self.geo_config.nominatim_url

    def reverse_geocode(self, latitude: float, longitude: float,
                        timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Look up the address of a coordinate.

        Args:
            latitude: Latitude in decimal degrees
            longitude: Longitude in decimal degrees
            timeout: Optional per-call timeout in seconds

        Returns:
            {'address': display name, 'raw_details': address components}

        Raises:
            NotFound: If Nominatim has no address for the position
            GeoTimeout: If the request timed out
            NetworkFailure: If the request failed
        """
        params = {
            'format': 'json',
            'lat': latitude,
            'lon': longitude,
            'zoom': 18,
            'addressdetails': 1,
        }

        def make_request() -> Any:
            return self.request_json('GET', self.api_url, timeout=timeout, params=params)

        data = self.call_with_retries(make_request)
        if not isinstance(data, dict):
            raise NetworkFailure("Unexpected reverse geocoding response")
        if 'error' in data or not data.get('display_name'):
            raise NotFound(f"No address found for {latitude}, {longitude}: {data.get('error', 'empty result')}")

        logger.debug(f"Reverse geocoded {latitude}, {longitude} to {data['display_name']}")
        return {
            'address': data['display_name'],
            'raw_details': data.get('address', {}),
        }
