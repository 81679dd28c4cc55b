"""
Decode camera, GPS and date metadata from image bytes.
"""

import datetime
import io
import re
from typing import Any, Optional, Tuple

from PIL import Image

from .errors import CorruptMetadata
from .exif_ifd import (
    IfdStructure, load_ifd, has_exif_container,
    TAG_MAKE, TAG_MODEL, TAG_DATETIME, TAG_ORIENTATION, TAG_IMAGE_WIDTH, TAG_IMAGE_LENGTH,
    TAG_DATETIME_ORIGINAL, TAG_OFFSET_TIME, TAG_OFFSET_TIME_ORIGINAL, TAG_EXPOSURE_TIME,
    TAG_FNUMBER, TAG_ISO, TAG_FOCAL_LENGTH, TAG_LENS_MODEL, TAG_PIXEL_X, TAG_PIXEL_Y,
    TAG_GPS_LATITUDE, TAG_GPS_LATITUDE_REF, TAG_GPS_LONGITUDE, TAG_GPS_LONGITUDE_REF,
)
from .filesystem import FilesystemHelper
from .geo_math import from_dms_rationals, is_valid_coordinate
from .logging_setup import get_logger
from .models import PhotoMetadata
from .utils import decode_exif_text, rational_to_float, rational_to_string, first_int

logger = get_logger(__name__)

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
_OFFSET_PATTERN = re.compile(r'^([+-])(\d{2}):?(\d{2})$')


def _parse_offset(value: Any) -> Optional[datetime.timezone]:
    text = decode_exif_text(value)
    if not text:
        return None
    match = _OFFSET_PATTERN.match(text)
    if not match:
        return None
    sign, hours, minutes = match.groups()
    delta = datetime.timedelta(hours=int(hours), minutes=int(minutes))
    return datetime.timezone(-delta if sign == '-' else delta)


def parse_exif_datetime(value: Any, offset: Any = None) -> Optional[str]:
    """
    Normalize an EXIF date string to ISO-8601 in UTC.

    Args:
        value: EXIF date value ("YYYY:MM:DD HH:MM:SS")
        offset: Optional EXIF offset value ("+HH:MM"); without it the time is taken as UTC

    Returns:
        ISO-8601 string, or None if the value is absent or malformed
    """
    text = decode_exif_text(value)
    if not text:
        return None
    try:
        parsed = datetime.datetime.strptime(text[:19], EXIF_DATETIME_FORMAT)
    except ValueError:
        logger.debug(f"Ignoring malformed EXIF date: {text!r}")
        return None

    tz = _parse_offset(offset) or datetime.timezone.utc
    return parsed.replace(tzinfo=tz).astimezone(datetime.timezone.utc).isoformat()


class ExifDecoder:
    """Class to turn image bytes into a PhotoMetadata record."""

    def __init__(self, filesystem: Optional[FilesystemHelper] = None):
        self.filesystem = filesystem or FilesystemHelper()

    def decode_file(self, path: str) -> PhotoMetadata:
        """
        Read a file and decode its metadata.

        Raises:
            NotFound: If the file does not exist
            IOFailure: If the file cannot be read
        """
        data = self.filesystem.read_bytes(path)
        return self.decode_bytes(data, source=path)

    def decode_bytes(self, data: bytes, source: str = "<bytes>") -> PhotoMetadata:
        """
        Decode metadata from image bytes.

        Never raises: a missing or corrupt EXIF segment yields an empty record.

        Args:
            data: Raw image bytes
            source: Name used in log messages

        Returns:
            PhotoMetadata with every undecodable field set to None
        """
        try:
            ifd = self.load_exif(data)
        except CorruptMetadata as e:
            logger.debug(f"No usable EXIF in {source}: {str(e)}")
            return PhotoMetadata()

        try:
            return self.metadata_from_ifd(ifd)
        except Exception as e:
            logger.warning(f"Unexpected EXIF content in {source}: {str(e)}")
            return PhotoMetadata()

    def load_exif(self, data: bytes) -> IfdStructure:
        """
        Load the IFD structure of any image Pillow or piexif can read.

        Raises:
            CorruptMetadata: If no EXIF block can be found or parsed
        """
        if has_exif_container(data):
            return load_ifd(data)

        exif_block = self._exif_block_via_pillow(data)
        if not exif_block:
            raise CorruptMetadata("Image has no EXIF block")
        return load_ifd(exif_block)

    def _exif_block_via_pillow(self, data: bytes) -> Optional[bytes]:
        try:
            with Image.open(io.BytesIO(data)) as img:
                block = img.info.get("exif")
                if not block:
                    exif = img.getexif()
                    block = exif.tobytes() if len(exif) else None
        except Exception as e:
            raise CorruptMetadata(f"Unreadable image container: {str(e)}")
        if isinstance(block, bytes) and block[:4] not in (b"Exif", b"II*\x00", b"MM\x00*"):
            block = b"Exif\x00\x00" + block
        return block

    def metadata_from_ifd(self, ifd: IfdStructure) -> PhotoMetadata:
        """Map IFD tags onto a PhotoMetadata record."""
        latitude, longitude = self._gps_coordinates(ifd)

        return PhotoMetadata(
            date_taken=self._date_taken(ifd),
            latitude=latitude,
            longitude=longitude,
            camera_make=decode_exif_text(ifd.get("image", TAG_MAKE)),
            camera_model=decode_exif_text(ifd.get("image", TAG_MODEL)),
            lens_model=decode_exif_text(ifd.get("exif", TAG_LENS_MODEL)),
            focal_length=rational_to_float(ifd.get("exif", TAG_FOCAL_LENGTH)),
            aperture=rational_to_float(ifd.get("exif", TAG_FNUMBER)),
            shutter_speed=rational_to_string(ifd.get("exif", TAG_EXPOSURE_TIME)),
            iso=first_int(ifd.get("exif", TAG_ISO)),
            width=self._dimension(ifd, TAG_PIXEL_X, TAG_IMAGE_WIDTH),
            height=self._dimension(ifd, TAG_PIXEL_Y, TAG_IMAGE_LENGTH),
            orientation=self._orientation(ifd),
        )

    def _date_taken(self, ifd: IfdStructure) -> Optional[str]:
        date_taken = parse_exif_datetime(
            ifd.get("exif", TAG_DATETIME_ORIGINAL),
            ifd.get("exif", TAG_OFFSET_TIME_ORIGINAL),
        )
        if date_taken is None:
            date_taken = parse_exif_datetime(
                ifd.get("image", TAG_DATETIME),
                ifd.get("exif", TAG_OFFSET_TIME),
            )
        return date_taken

    def _gps_coordinates(self, ifd: IfdStructure) -> Tuple[Optional[float], Optional[float]]:
        try:
            latitude = from_dms_rationals(
                ifd.get("gps", TAG_GPS_LATITUDE),
                decode_exif_text(ifd.get("gps", TAG_GPS_LATITUDE_REF)),
            )
            longitude = from_dms_rationals(
                ifd.get("gps", TAG_GPS_LONGITUDE),
                decode_exif_text(ifd.get("gps", TAG_GPS_LONGITUDE_REF)),
            )
        except (TypeError, ValueError):
            return None, None

        if not is_valid_coordinate(latitude, longitude):
            logger.debug(f"Ignoring out-of-range GPS position {latitude}, {longitude}")
            return None, None
        return latitude, longitude

    def _dimension(self, ifd: IfdStructure, exif_tag: int, image_tag: int) -> Optional[int]:
        value = first_int(ifd.get("exif", exif_tag))
        if not value:
            value = first_int(ifd.get("image", image_tag))
        return value if value and value > 0 else None

    def _orientation(self, ifd: IfdStructure) -> Optional[int]:
        value = first_int(ifd.get("image", TAG_ORIENTATION))
        return value if value is not None and 1 <= value <= 8 else None
