"""
Import and export orchestration between image files and the metadata store.
"""

import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Iterable, Callable

from tqdm import tqdm

from .config import AppConfig
from .errors import MemorableError, NotFound, ValidationFailure, Outcome
from .exif_decoder import ExifDecoder
from .exif_encoder import ExifEncoder
from .filesystem import FilesystemHelper
from .geo_providers import GeoProvider, ReverseGeocoder
from .logging_setup import get_logger
from .metadata_store import MetadataStore
from .models import Photo, Location, ExifFields, NearbyPlace
from .nearby_resolver import NearbyPlaceResolver, NearbySearchResult

logger = get_logger(__name__)


@dataclass
class ImportStats:
    """Class to track import statistics."""
    total_files: int = 0
    imported: int = 0
    updated: int = 0
    failed: int = 0
    without_metadata: int = 0
    start_time: float = 0
    total_time: float = 0

    def to_dict(self) -> Dict[str, Any]:
        result = {k: v for k, v in self.__dict__.items()}
        processed = self.imported + self.updated + self.failed
        result['avg_time_per_file'] = self.total_time / processed if processed else 0
        return result


class SyncOrchestrator:
    """Class to drive decode -> store on import and store -> encode on export."""

    def __init__(self, store: MetadataStore, config: AppConfig,
                 decoder: Optional[ExifDecoder] = None,
                 encoder: Optional[ExifEncoder] = None,
                 geocoder: Optional[ReverseGeocoder] = None,
                 resolver: Optional[NearbyPlaceResolver] = None):
        """
        Initialize the orchestrator.

        Args:
            store: The library's metadata store
            config: Application configuration
            decoder: EXIF decoder (default built from config)
            encoder: EXIF encoder (default built from config)
            geocoder: Reverse geocoder (default Nominatim)
            resolver: Nearby-place resolver (default Overpass)
        """
        self.store = store
        self.config = config
        self.filesystem = FilesystemHelper(config)
        self.decoder = decoder or ExifDecoder(self.filesystem)
        self.encoder = encoder or ExifEncoder(config, self.filesystem)
        self._geocoder = geocoder
        self._resolver = resolver

        self.stats = ImportStats()
        self.stats_lock = threading.RLock()

        # One worker keeps submitted operations in order
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @property
    def geocoder(self) -> ReverseGeocoder:
        if self._geocoder is None:
            self._geocoder = GeoProvider.get_reverse_geocoder(self.config)
        return self._geocoder

    @property
    def resolver(self) -> NearbyPlaceResolver:
        if self._resolver is None:
            self._resolver = NearbyPlaceResolver(self.config)
        return self._resolver

    # ------------------------------------------------------------------ import

    def import_photo(self, file_path: str) -> Outcome:
        """
        Import a single file: stat, decode EXIF, assemble a Photo and persist it.

        Returns:
            Outcome with ``file_path`` and, on success, ``photo_id`` and ``created``
        """
        file_path = os.path.abspath(os.path.expanduser(file_path))
        try:
            file_size = self.filesystem.file_size(file_path)
            metadata = self.decoder.decode_file(file_path)
        except MemorableError as e:
            logger.warning(f"Cannot import {file_path}: {str(e)}")
            return Outcome.from_error(e, file_path=file_path)

        if metadata.is_empty():
            logger.debug(f"No EXIF metadata found in {file_path}")
            with self.stats_lock:
                self.stats.without_metadata += 1

        photo = Photo.from_metadata(file_path, os.path.basename(file_path), file_size, metadata)
        outcome = self.store.upsert_photo(photo)
        outcome.data['file_path'] = file_path
        if outcome.success:
            logger.info(f"{outcome.message}: {file_path} (ID: {outcome.data['photo_id']})")
        return outcome

    def import_photos(self, file_paths: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Import many files. A failing file is reported and the rest still run.

        Args:
            file_paths: Paths of the selected files

        Returns:
            One outcome dictionary per file, in input order
        """
        file_paths = list(file_paths)
        self.stats = ImportStats(total_files=len(file_paths), start_time=time.time())

        results = []
        progress = tqdm(file_paths, desc="Importing", unit="file", disable=not self.config.show_progress)
        for file_path in progress:
            try:
                outcome = self.import_photo(file_path)
            except Exception as e:
                logger.error(f"Unexpected error importing {file_path}: {str(e)}")
                outcome = Outcome(success=False, message=str(e), error="MemorableError",
                                  data={'file_path': file_path})

            with self.stats_lock:
                if not outcome.success:
                    self.stats.failed += 1
                elif outcome.data.get('created'):
                    self.stats.imported += 1
                else:
                    self.stats.updated += 1
            results.append(outcome.to_dict())

        with self.stats_lock:
            self.stats.total_time = time.time() - self.stats.start_time

        logger.info(
            f"Import complete: {self.stats.imported} new, {self.stats.updated} updated, "
            f"{self.stats.failed} failed of {self.stats.total_files} files "
            f"in {self.stats.total_time:.1f}s"
        )
        return results

    # ------------------------------------------------------------------ export

    def write_exif(self, photo_id: int) -> Outcome:
        """
        Write a photo's stored metadata into its original file. The store is not changed.
        """
        photo = self.store.get_photo(photo_id)
        if photo is None:
            return Outcome.from_error(NotFound(f"Photo {photo_id} not found"), photo_id=photo_id)

        outcome = self.encoder.write_metadata(photo.file_path, ExifFields.from_photo(photo))
        outcome.data['photo_id'] = photo_id
        return outcome

    def write_exif_batch(self, photo_ids: Iterable[int]) -> List[Dict[str, Any]]:
        """Write EXIF for many photos, one outcome per photo, without stopping at failures."""
        results = []
        for photo_id in photo_ids:
            try:
                outcome = self.write_exif(photo_id)
            except Exception as e:
                logger.error(f"Unexpected error writing EXIF for photo {photo_id}: {str(e)}")
                outcome = Outcome(success=False, message=str(e), error="MemorableError",
                                  data={'photo_id': photo_id})
            results.append(outcome.to_dict())
        succeeded = sum(1 for r in results if r['success'])
        logger.info(f"EXIF export: {succeeded}/{len(results)} photos written")
        return results

    # ---------------------------------------------------------------- location

    def bulk_set_location(self, photo_ids: List[int], latitude: Optional[float],
                          longitude: Optional[float], name: Optional[str] = None) -> Outcome:
        return self.store.bulk_set_location(photo_ids, latitude, longitude, name)

    def reverse_geocode(self, latitude: float, longitude: float,
                        timeout: Optional[float] = None) -> Outcome:
        """
        Look up the postal address of a coordinate.

        Returns:
            Outcome with ``address`` and ``raw_details`` on success
        """
        try:
            details = self.geocoder.reverse_geocode(latitude, longitude, timeout=timeout)
        except MemorableError as e:
            logger.warning(f"Reverse geocoding {latitude}, {longitude} failed: {str(e)}")
            return Outcome.from_error(e, address=None, raw_details={})
        return Outcome.ok("Address found", **details)

    def find_nearby_places(self, latitude: float, longitude: float,
                           radius: Optional[int] = None,
                           timeout: Optional[float] = None) -> NearbySearchResult:
        return self.resolver.search(latitude, longitude, radius, timeout=timeout)

    def find_places_near_photo(self, photo_id: int, radius: Optional[int] = None,
                               timeout: Optional[float] = None) -> NearbySearchResult:
        """
        Nearby places around a photo's stored position.

        A missing photo or a photo without coordinates yields an empty result with the error kind.
        """
        photo = self.store.get_photo(photo_id)
        if photo is None or not photo.has_location:
            error = NotFound(f"Photo {photo_id} not found") if photo is None \
                else ValidationFailure(f"Photo {photo_id} has no coordinates")
            return NearbySearchResult(
                latitude=photo.latitude if photo else None,
                longitude=photo.longitude if photo else None,
                radius=radius or self.config.nearby_radius,
                error=type(error).__name__,
                message=str(error),
            )
        return self.find_nearby_places(photo.latitude, photo.longitude, radius, timeout=timeout)

    def assign_place(self, photo_ids: List[int], place: NearbyPlace) -> Outcome:
        """
        Store a resolved place's name on photos. Its coordinates replace the photos'
        position when the place has them; otherwise each photo keeps its own.
        """
        if place.latitude is not None and place.longitude is not None:
            return self.store.bulk_set_location(photo_ids, place.latitude, place.longitude, place.name)

        return self.store.bulk_set_location_name(photo_ids, place.name)

    def create_location_from_photo(self, photo_id: int, name: str,
                                   category: Optional[str] = None,
                                   address: Optional[str] = None) -> Outcome:
        """Seed a new Location from a photo's coordinates. The two stay unlinked."""
        photo = self.store.get_photo(photo_id)
        if photo is None:
            return Outcome.from_error(NotFound(f"Photo {photo_id} not found"))
        location = Location(
            name=name,
            latitude=photo.latitude,
            longitude=photo.longitude,
            address=address,
            category=category,
        )
        return self.store.create_location(location)

    # ------------------------------------------------------------ asynchrony

    def submit(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """
        Run an orchestrator operation on the single background worker.

        Operations submitted from one caller run one after the other, in order.
        """
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="MemorableSync")
            return self._executor.submit(func, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None
