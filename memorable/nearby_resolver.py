"""
Rank points of interest around a coordinate.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from .config import AppConfig
from .errors import MemorableError, NetworkFailure
from .geo_math import distance_meters
from .geo_providers import GeoProvider, PoiSource
from .logging_setup import get_logger
from .models import NearbyPlace

logger = get_logger(__name__)

DEFAULT_RADIUS = 100
MAX_RESULTS = 20

FOOD_AND_DRINK_AMENITIES = frozenset({
    'restaurant', 'cafe', 'bar', 'pub', 'fast_food', 'food_court', 'ice_cream', 'biergarten',
})

# First matching tag wins
_CATEGORY_TAGS = (
    ('tourism', 'Tourism'),
    ('historic', 'Historic'),
    ('leisure', 'Leisure'),
    ('shop', 'Shop'),
)


def categorize(tags: Dict[str, str]) -> str:
    """
    Map OSM tags onto the place taxonomy.

    Precedence: amenity, tourism, historic, leisure, shop, then "Place".
    """
    amenity = tags.get('amenity')
    if amenity:
        return 'Food & Drink' if amenity in FOOD_AND_DRINK_AMENITIES else 'Amenity'
    for tag, category in _CATEGORY_TAGS:
        if tags.get(tag):
            return category
    return 'Place'


@dataclass
class NearbySearchResult:
    """Ranked places, plus the error kind when the search could not complete."""
    latitude: float
    longitude: float
    radius: int
    places: List[NearbyPlace] = field(default_factory=list)
    error: Optional[str] = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'error': self.error,
            'message': self.message,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'radius': self.radius,
            'places': [place.to_dict() for place in self.places],
        }


class NearbyPlaceResolver:
    """Class to query a POI source and rank its results by distance."""

    def __init__(self, config: AppConfig, poi_source: Optional[PoiSource] = None):
        """
        Initialize the resolver.

        Args:
            config: Application configuration
            poi_source: POI source to query (defaults to the configured Overpass endpoint)
        """
        self.config = config
        self.poi_source = poi_source or GeoProvider.get_poi_source(config)
        self.limit = config.nearby_limit or MAX_RESULTS

    def rank(self, latitude: float, longitude: float, raw_places: List[Dict[str, Any]]) -> List[NearbyPlace]:
        """
        Categorize, deduplicate, sort and truncate raw POI results.

        Repeated ids are dropped, and of several places sharing a name and
        category only the nearest is kept. Places without coordinates sort last.
        """
        places: List[NearbyPlace] = []
        seen_ids = set()
        for raw in raw_places:
            place_id = str(raw.get('id'))
            if place_id in seen_ids:
                continue
            seen_ids.add(place_id)

            tags = raw.get('tags') or {}
            lat = raw.get('lat')
            lon = raw.get('lon')
            places.append(NearbyPlace(
                id=place_id,
                name=raw.get('name') or tags.get('name', ''),
                category=categorize(tags),
                latitude=lat,
                longitude=lon,
                distance=distance_meters(latitude, longitude, lat, lon),
                tags=tags,
            ))

        places.sort(key=lambda place: place.distance)

        ranked: List[NearbyPlace] = []
        seen_names = set()
        for place in places:
            key = (place.name.strip().lower(), place.category)
            if key in seen_names:
                continue
            seen_names.add(key)
            ranked.append(place)

        return ranked[:self.limit]

    def search(self, latitude: float, longitude: float, radius: Optional[int] = None,
               timeout: Optional[float] = None) -> NearbySearchResult:
        """
        Find and rank places around a coordinate.

        Network failures and timeouts yield an empty result carrying the error kind.

        Args:
            latitude: Latitude in decimal degrees
            longitude: Longitude in decimal degrees
            radius: Search radius in meters (defaults to the configured radius)
            timeout: Optional per-call timeout in seconds

        Returns:
            NearbySearchResult
        """
        radius = radius or self.config.nearby_radius or DEFAULT_RADIUS
        result = NearbySearchResult(latitude=latitude, longitude=longitude, radius=radius)

        try:
            raw_places = self.poi_source.search_nearby(latitude, longitude, radius, timeout=timeout)
        except NetworkFailure as e:
            logger.warning(f"Nearby search at {latitude}, {longitude} failed: {str(e)}")
            result.error = type(e).__name__
            result.message = str(e)
            return result
        except MemorableError as e:
            result.error = type(e).__name__
            result.message = str(e)
            return result

        result.places = self.rank(latitude, longitude, raw_places)
        result.message = f"Found {len(result.places)} places"
        logger.info(f"Found {len(result.places)} places within {radius} m of {latitude}, {longitude}")
        return result
