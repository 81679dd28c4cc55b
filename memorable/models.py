"""
Data model for photos, collections, locations and metadata records.
"""

import math
from dataclasses import dataclass, field, asdict, fields
from typing import Dict, Any, Optional, Mapping

LOCATION_CATEGORIES = (
    "restaurant", "cafe", "bar", "hotel", "attraction",
    "museum", "park", "shop", "other",
)


def _from_mapping(cls, row: Mapping[str, Any]):
    names = {f.name for f in fields(cls)}
    return cls(**{key: row[key] for key in row.keys() if key in names})


@dataclass
class PhotoMetadata:
    """Metadata decoded from an image's EXIF segment. Every field may be None."""
    date_taken: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    focal_length: Optional[float] = None
    aperture: Optional[float] = None
    shutter_speed: Optional[str] = None
    iso: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[int] = None

    def is_empty(self) -> bool:
        return all(value is None for value in asdict(self).values())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Photo:
    """A photo row. Identified by its absolute file path."""
    file_path: str
    file_name: str
    file_size: Optional[int] = None
    id: Optional[int] = None
    import_date: Optional[str] = None
    date_taken: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    focal_length: Optional[float] = None
    aperture: Optional[float] = None
    shutter_speed: Optional[str] = None
    iso: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[int] = None
    rating: int = 0
    notes: Optional[str] = None

    @classmethod
    def from_metadata(cls, file_path: str, file_name: str, file_size: int,
                      metadata: PhotoMetadata) -> 'Photo':
        """Assemble a new photo record from a decoded metadata record."""
        return cls(file_path=file_path, file_name=file_name, file_size=file_size,
                   **metadata.to_dict())

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'Photo':
        return _from_mapping(cls, row)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Collection:
    name: str
    description: Optional[str] = None
    id: Optional[int] = None
    created_date: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'Collection':
        return _from_mapping(cls, row)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Location:
    """A saved place. Independent of photos once created."""
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    category: Optional[str] = None
    rating: int = 0
    notes: Optional[str] = None
    id: Optional[int] = None
    created_date: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'Location':
        return _from_mapping(cls, row)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExifFields:
    """The subset of photo fields that is mirrored into a JPEG's EXIF block."""
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    date_taken: Optional[str] = None
    iso: Optional[int] = None
    focal_length: Optional[float] = None
    aperture: Optional[float] = None
    lens_model: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    rating: Optional[int] = None
    notes: Optional[str] = None

    @classmethod
    def from_photo(cls, photo: Photo) -> 'ExifFields':
        return cls(
            camera_make=photo.camera_make,
            camera_model=photo.camera_model,
            date_taken=photo.date_taken,
            iso=photo.iso,
            focal_length=photo.focal_length,
            aperture=photo.aperture,
            lens_model=photo.lens_model,
            latitude=photo.latitude,
            longitude=photo.longitude,
            rating=photo.rating,
            notes=photo.notes,
        )


@dataclass
class NearbyPlace:
    """A point of interest ranked by distance from a query point."""
    id: str
    name: str
    category: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance: float = math.inf
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
