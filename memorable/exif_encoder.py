"""
Encode photo fields into a JPEG's EXIF segment and write it back safely.
"""

import datetime
import os
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .config import AppConfig
from .errors import MemorableError, CorruptMetadata, UnsupportedFormat, ValidationFailure, Outcome
from .exif_ifd import (
    IfdStructure, Rational, load_ifd, dump_ifd, splice_exif, encode_user_comment,
    TAG_MAKE, TAG_MODEL, TAG_DATETIME, TAG_DATETIME_ORIGINAL, TAG_ISO, TAG_FOCAL_LENGTH,
    TAG_FNUMBER, TAG_LENS_MODEL, TAG_USER_COMMENT,
    TAG_GPS_LATITUDE, TAG_GPS_LATITUDE_REF, TAG_GPS_LONGITUDE, TAG_GPS_LONGITUDE_REF,
)
from .filesystem import FilesystemHelper, is_jpeg_path
from .geo_math import to_dms_rationals, hemisphere_ref, is_valid_coordinate, round_half_up
from .logging_setup import get_logger
from .models import ExifFields
from .utils import encode_exif_text

logger = get_logger(__name__)

RATING_GLYPH = "★"
USER_COMMENT_SEPARATOR = " | "
EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def format_exif_datetime(value: str) -> str:
    """
    Convert a stored timestamp into the EXIF form ``YYYY:MM:DD HH:MM:SS``.

    Aware timestamps are converted to UTC, naive ones are taken as UTC.
    Sub-second precision and the offset are dropped.

    Raises:
        ValidationFailure: If the timestamp cannot be parsed
    """
    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.datetime.strptime(text[:19], EXIF_DATETIME_FORMAT)
        except ValueError:
            raise ValidationFailure(f"Invalid date: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc)
    return parsed.strftime(EXIF_DATETIME_FORMAT)


def encode_focal_length(value: float) -> Rational:
    """Focal length in millimeters, rounded to a whole millimeter."""
    return (round_half_up(value), 1)


def encode_aperture(value: float) -> Rational:
    """F-number with one decimal digit."""
    return (round_half_up(value * 10), 10)


def build_user_comment(rating: Optional[int], notes: Optional[str]) -> Optional[str]:
    """
    Compose the user comment from a star rating and free-text notes.

    Returns:
        e.g. "Rating: ★★★ | Great light", or None when neither is set
    """
    parts = []
    if rating:
        if not isinstance(rating, int) or not 0 <= rating <= 5:
            raise ValidationFailure(f"Rating must be an integer between 0 and 5, got {rating!r}")
        parts.append(f"Rating: {RATING_GLYPH * rating}")
    if notes:
        parts.append(notes)
    return USER_COMMENT_SEPARATOR.join(parts) if parts else None


def apply_fields(ifd: IfdStructure, fields: ExifFields) -> IfdStructure:
    """
    Write the set fields of an ExifFields record into the IFD groups.

    Unset (None, empty or zero) fields leave existing tags alone.
    """
    if fields.camera_make:
        ifd.set("image", TAG_MAKE, encode_exif_text(fields.camera_make))
    if fields.camera_model:
        ifd.set("image", TAG_MODEL, encode_exif_text(fields.camera_model))
    if fields.date_taken:
        date_str = encode_exif_text(format_exif_datetime(fields.date_taken))
        ifd.set("exif", TAG_DATETIME_ORIGINAL, date_str)
        ifd.set("image", TAG_DATETIME, date_str)
    if fields.iso:
        ifd.set("exif", TAG_ISO, int(fields.iso))
    if fields.focal_length:
        ifd.set("exif", TAG_FOCAL_LENGTH, encode_focal_length(fields.focal_length))
    if fields.aperture:
        ifd.set("exif", TAG_FNUMBER, encode_aperture(fields.aperture))
    if fields.lens_model:
        ifd.set("exif", TAG_LENS_MODEL, encode_exif_text(fields.lens_model))

    if fields.latitude is not None and fields.longitude is not None:
        if not is_valid_coordinate(fields.latitude, fields.longitude):
            raise ValidationFailure(
                f"Invalid coordinates: {fields.latitude}, {fields.longitude}"
            )
        ifd.set("gps", TAG_GPS_LATITUDE, to_dms_rationals(fields.latitude))
        ifd.set("gps", TAG_GPS_LATITUDE_REF, hemisphere_ref(fields.latitude, True).encode('ascii'))
        ifd.set("gps", TAG_GPS_LONGITUDE, to_dms_rationals(fields.longitude))
        ifd.set("gps", TAG_GPS_LONGITUDE_REF, hemisphere_ref(fields.longitude, False).encode('ascii'))

    comment = build_user_comment(fields.rating, fields.notes)
    if comment:
        ifd.set("exif", TAG_USER_COMMENT, encode_user_comment(comment))

    return ifd


class ExifEncoder:
    """Class to write photo fields into JPEG originals."""

    _path_locks: Dict[str, List] = {}
    _locks_guard = threading.Lock()

    def __init__(self, config: Optional[AppConfig] = None,
                 filesystem: Optional[FilesystemHelper] = None):
        """
        Initialize the encoder.

        Args:
            config: Application configuration
            filesystem: Helper used for reads, backups and atomic writes
        """
        self.config = config or AppConfig()
        self.filesystem = filesystem or FilesystemHelper(self.config)

    @staticmethod
    def _lock_key(path: str) -> str:
        return os.path.abspath(path)

    @classmethod
    @contextmanager
    def _path_lock(cls, path: str) -> Iterator[None]:
        # Entries are [lock, holders]; the last holder out removes the entry
        key = cls._lock_key(path)
        with cls._locks_guard:
            entry = cls._path_locks.get(key)
            if entry is None:
                entry = cls._path_locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with cls._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del cls._path_locks[key]

    def encode_jpeg_bytes(self, jpeg_data: bytes, fields: ExifFields) -> bytes:
        """
        Merge fields into the JPEG's EXIF (or a fresh one) and return the new JPEG bytes.

        Raises:
            UnsupportedFormat: If the data is not a JPEG stream
            ValidationFailure: If a field value cannot be represented
            CorruptMetadata: If the EXIF block cannot be serialized
        """
        try:
            ifd = load_ifd(jpeg_data)
        except CorruptMetadata as e:
            logger.debug(f"Starting from empty EXIF: {str(e)}")
            ifd = IfdStructure.empty()

        apply_fields(ifd, fields)
        return splice_exif(dump_ifd(ifd), jpeg_data)

    def write_metadata(self, path: str, fields: ExifFields) -> Outcome:
        """
        Write fields into the EXIF segment of a JPEG file.

        The original is copied to ``<path>.backup`` first; only then is the new
        content written, atomically, over the original.

        Args:
            path: Path of the JPEG file
            fields: Values to write

        Returns:
            Outcome with ``path`` and, on success, ``backup_path``
        """
        if not is_jpeg_path(path):
            logger.warning(f"Refusing EXIF write on non-JPEG file: {path}")
            return Outcome.from_error(
                UnsupportedFormat("EXIF writing is only supported for JPEG files"), path=path
            )

        with self._path_lock(path):
            try:
                original = self.filesystem.read_bytes(path)
                new_data = self.encode_jpeg_bytes(original, fields)
                backup_path = self.filesystem.create_backup(path)
                self.filesystem.replace_contents(path, new_data)
            except MemorableError as e:
                logger.error(f"Failed to write EXIF to {path}: {str(e)}")
                return Outcome.from_error(e, path=path)

        logger.info(f"Wrote EXIF metadata to {path}")
        return Outcome.ok(
            "Metadata written to EXIF successfully. Backup created.",
            path=path,
            backup_path=backup_path,
        )
