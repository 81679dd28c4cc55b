"""
Overpass API implementation of the nearby point-of-interest search.
"""

from typing import Dict, Any, List, Optional

from .config import AppConfig
from .errors import NetworkFailure
from .geo_providers import PoiSource
from .logging_setup import get_logger

logger = get_logger(__name__)


def build_nearby_query(latitude: float, longitude: float, radius: int, timeout: int = 25) -> str:
    """Overpass QL for named nodes and ways around a point."""
    around = f"around:{int(radius)},{latitude},{longitude}"
    return (
        f"[out:json][timeout:{timeout}];\n"
        f"(\n"
        f"  node[\"name\"]({around});\n"
        f"  way[\"name\"]({around});\n"
        f");\n"
        f"out center;"
    )


def parse_element(element: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Flatten one Overpass element into {'id', 'name', 'tags', 'lat', 'lon'}.

    Ways carry their position in 'center'. Elements without a name are skipped.
    """
    tags = element.get('tags') or {}
    name = tags.get('name')
    if not name:
        return None

    lat = element.get('lat')
    lon = element.get('lon')
    if lat is None or lon is None:
        center = element.get('center') or {}
        lat = center.get('lat')
        lon = center.get('lon')

    return {
        'id': f"{element.get('type', 'node')}/{element.get('id')}",
        'name': name,
        'tags': tags,
        'lat': lat,
        'lon': lon,
    }


class OverpassProvider(PoiSource):
    """Overpass API implementation of the nearby search."""

    def __init__(self, config: AppConfig):
        super().__init__(config)
        self.api_url = self.geo_config.overpass_url

    def search_nearby(self, latitude: float, longitude: float, radius: int,
                      timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """
        Find named features within a radius.

        Args:
            latitude: Latitude in decimal degrees
            longitude: Longitude in decimal degrees
            radius: Search radius in meters
            timeout: Optional per-call timeout in seconds

        Returns:
            List of {'id', 'name', 'tags', 'lat', 'lon'}

        Raises:
            GeoTimeout: If the request timed out
            NetworkFailure: If the request failed
        """
        effective_timeout = self.timeout if timeout is None else timeout
        query = build_nearby_query(latitude, longitude, radius, timeout=max(1, int(effective_timeout)))

        def make_request() -> Any:
            return self.request_json('POST', self.api_url, timeout=effective_timeout, data={'data': query})

        data = self.call_with_retries(make_request)
        if not isinstance(data, dict):
            raise NetworkFailure("Unexpected Overpass response")

        results = []
        for element in data.get('elements', []):
            parsed = parse_element(element)
            if parsed:
                results.append(parsed)

        logger.debug(f"Overpass returned {len(results)} named features within {radius} m")
        return results
