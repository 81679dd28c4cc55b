"""
Geo service provider interface and factory.
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, Callable, TypeVar

import requests

from .config import AppConfig
from .errors import NetworkFailure, GeoTimeout
from .logging_setup import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class GeoProvider(ABC):
    """Base class for HTTP geo services."""

    @staticmethod
    def get_reverse_geocoder(config: AppConfig) -> 'ReverseGeocoder':
        from .nominatim_provider import NominatimProvider
        return NominatimProvider(config)

    @staticmethod
    def get_poi_source(config: AppConfig) -> 'PoiSource':
        from .overpass_provider import OverpassProvider
        return OverpassProvider(config)

    def __init__(self, config: AppConfig):
        """
        Initialize the provider.

        Args:
            config: Application configuration
        """
        self.config = config
        self.geo_config = config.geo
        self.max_retries = max(1, config.max_retries)
        self.timeout = self.geo_config.timeout
        self.headers = {'User-Agent': self.geo_config.user_agent}

    def call_with_retries(self, request_func: Callable[[], T]) -> T:
        """
        Call a request function, retrying network failures with exponential backoff.

        Timeouts are not retried so the caller's timeout bounds the wait.

        Raises:
            GeoTimeout: If the request timed out
            NetworkFailure: If every attempt failed
        """
        last_error: Optional[NetworkFailure] = None
        for attempt in range(self.max_retries):
            try:
                return request_func()
            except GeoTimeout:
                raise
            except NetworkFailure as e:
                last_error = e
                logger.error(f"Error in geo request (attempt {attempt + 1}): {str(e)}")
                if attempt < self.max_retries - 1:
                    logger.info(f"Retrying in {2 ** attempt} seconds")
                    time.sleep(2 ** attempt)

        logger.error(f"Geo request failed after {self.max_retries} attempts")
        raise last_error

    def request_json(self, method: str, url: str, timeout: Optional[float] = None,
                     **kwargs: Any) -> Any:
        """
        Perform one HTTP request and decode its JSON body.

        Raises:
            GeoTimeout: If the request timed out
            NetworkFailure: On connection errors, HTTP errors or invalid JSON
        """
        timeout = self.timeout if timeout is None else timeout
        try:
            response = requests.request(method, url, headers=self.headers, timeout=timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.Timeout as e:
            raise GeoTimeout(f"Request to {url} timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise NetworkFailure(f"Request to {url} failed: {str(e)}") from e
        except ValueError as e:
            raise NetworkFailure(f"Invalid JSON from {url}: {str(e)}") from e


class ReverseGeocoder(GeoProvider):
    """Coordinate to postal address lookup."""

    @abstractmethod
    def reverse_geocode(self, latitude: float, longitude: float,
                        timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Look up the address of a coordinate.

        Returns:
            {'address': str, 'raw_details': dict}
        """


class PoiSource(GeoProvider):
    """Named points of interest around a coordinate."""

    @abstractmethod
    def search_nearby(self, latitude: float, longitude: float, radius: int,
                      timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """
        Find named features within a radius.

        Returns:
            List of {'id', 'name', 'tags', 'lat', 'lon'}; lat/lon may be None
        """
