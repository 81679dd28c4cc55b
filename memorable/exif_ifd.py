"""
Typed representation of EXIF Image File Directories.

An ``IfdStructure`` maps each IFD group (image, exif, gps, interop, first) to a
mapping from tag id to value. Values keep EXIF's own types: ``bytes`` for ASCII
and UNDEFINED tags, ``int`` for SHORT/LONG, ``(numerator, denominator)`` tuples
for RATIONAL and tuples of those for multi-valued tags.

piexif is only the binary engine behind load_ifd(), dump_ifd() and
splice_exif(); nothing outside this module touches its dictionary layout.
"""

import io
import struct
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple, Union

import piexif
import piexif.helper

from .errors import CorruptMetadata, UnsupportedFormat
from .logging_setup import get_logger

logger = get_logger(__name__)

Rational = Tuple[int, int]
TagValue = Union[bytes, str, int, Rational, Tuple[Any, ...]]

IFD_GROUPS = ("image", "exif", "gps", "interop", "first")

_PIEXIF_GROUPS = {
    "image": "0th",
    "exif": "Exif",
    "gps": "GPS",
    "interop": "Interop",
    "first": "1st",
}

# image group
TAG_MAKE = piexif.ImageIFD.Make
TAG_MODEL = piexif.ImageIFD.Model
TAG_DATETIME = piexif.ImageIFD.DateTime
TAG_ORIENTATION = piexif.ImageIFD.Orientation
TAG_IMAGE_WIDTH = piexif.ImageIFD.ImageWidth
TAG_IMAGE_LENGTH = piexif.ImageIFD.ImageLength

# exif group
TAG_DATETIME_ORIGINAL = piexif.ExifIFD.DateTimeOriginal
TAG_OFFSET_TIME = 36880
TAG_OFFSET_TIME_ORIGINAL = 36881
TAG_EXPOSURE_TIME = piexif.ExifIFD.ExposureTime
TAG_FNUMBER = piexif.ExifIFD.FNumber
TAG_ISO = piexif.ExifIFD.ISOSpeedRatings
TAG_FOCAL_LENGTH = piexif.ExifIFD.FocalLength
TAG_LENS_MODEL = piexif.ExifIFD.LensModel
TAG_USER_COMMENT = piexif.ExifIFD.UserComment
TAG_PIXEL_X = piexif.ExifIFD.PixelXDimension
TAG_PIXEL_Y = piexif.ExifIFD.PixelYDimension
TAG_SCENE_TYPE = piexif.ExifIFD.SceneType
TAG_FILE_SOURCE = piexif.ExifIFD.FileSource

# gps group
TAG_GPS_LATITUDE_REF = piexif.GPSIFD.GPSLatitudeRef
TAG_GPS_LATITUDE = piexif.GPSIFD.GPSLatitude
TAG_GPS_LONGITUDE_REF = piexif.GPSIFD.GPSLongitudeRef
TAG_GPS_LONGITUDE = piexif.GPSIFD.GPSLongitude

_EXIF_MAGICS = (b"II*\x00", b"MM\x00*", b"Exif")


@dataclass
class IfdStructure:
    """EXIF tag groups of one image."""
    image: Dict[int, TagValue] = field(default_factory=dict)
    exif: Dict[int, TagValue] = field(default_factory=dict)
    gps: Dict[int, TagValue] = field(default_factory=dict)
    interop: Dict[int, TagValue] = field(default_factory=dict)
    first: Dict[int, TagValue] = field(default_factory=dict)
    thumbnail: Optional[bytes] = None

    @classmethod
    def empty(cls) -> 'IfdStructure':
        return cls()

    def group(self, name: str) -> Dict[int, TagValue]:
        if name not in IFD_GROUPS:
            raise KeyError(f"Unknown IFD group: {name}")
        return getattr(self, name)

    def get(self, group: str, tag: int, default: Any = None) -> Any:
        return self.group(group).get(tag, default)

    def set(self, group: str, tag: int, value: TagValue) -> None:
        self.group(group)[tag] = value

    def is_empty(self) -> bool:
        return not any(self.group(name) for name in IFD_GROUPS) and self.thumbnail is None


def _is_jpeg(data: bytes) -> bool:
    return data[:2] == b"\xff\xd8"


def _is_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def has_exif_container(data: bytes) -> bool:
    """Whether piexif can read EXIF straight out of these bytes."""
    return _is_jpeg(data) or _is_webp(data) or data[:4] in _EXIF_MAGICS


# Byte size of one value of each TIFF field type
_TYPE_SIZES = {1: 1, 2: 1, 3: 2, 4: 4, 5: 8, 6: 1, 7: 1, 8: 2, 9: 4, 10: 8, 11: 4, 12: 8}

# Sub-IFDs load_ifd() reads, by the IFD whose entry points at them
_SUB_IFD_POINTERS = {
    "0th": {piexif.ImageIFD.ExifTag: "Exif", piexif.ImageIFD.GPSTag: "GPS"},
    "Exif": {piexif.ExifIFD.InteroperabilityTag: "Interop"},
}


def _jpeg_tiff_block(data: bytes) -> Optional[bytes]:
    # Same segment walk piexif does: stop at start-of-scan, first APP1 Exif wins
    head = 2
    while data[head:head + 2] != b"\xff\xda":
        if head + 4 > len(data):
            raise CorruptMetadata("JPEG segment runs past end of data")
        length = struct.unpack(">H", data[head + 2:head + 4])[0]
        segment = data[head:head + length + 2]
        if segment[:2] == b"\xff\xe1" and segment[4:10] == b"Exif\x00\x00":
            return segment[10:]
        head += length + 2
        if head >= len(data):
            raise CorruptMetadata("JPEG data ends before start of scan")
    return None


def _webp_tiff_block(data: bytes) -> Optional[bytes]:
    head = 12
    while head + 8 <= len(data):
        fourcc = data[head:head + 4]
        size = struct.unpack("<L", data[head + 4:head + 8])[0]
        if fourcc == b"EXIF":
            chunk = data[head + 8:head + 8 + size]
            return chunk[6:] if chunk[:6] == b"Exif\x00\x00" else chunk
        head += 8 + size + (size & 1)
    return None


def _tiff_block(data: bytes) -> Optional[bytes]:
    if _is_jpeg(data):
        return _jpeg_tiff_block(data)
    if _is_webp(data):
        return _webp_tiff_block(data)
    if data[:4] == b"Exif":
        return data[6:]
    return data


def check_ifd_bounds(tiff: bytes) -> None:
    """
    Walk the IFD chain of a TIFF block and verify every entry fits inside it.

    Covers IFD0, the Exif, GPS and Interop sub-IFDs and the thumbnail IFD,
    which is everything load_ifd() reads.

    Raises:
        CorruptMetadata: If an entry table or value lies outside the block
    """
    if tiff[:2] == b"II":
        endian = "<"
    elif tiff[:2] == b"MM":
        endian = ">"
    else:
        raise CorruptMetadata("EXIF block has no TIFF byte order mark")
    if len(tiff) < 8:
        raise CorruptMetadata("EXIF block is shorter than a TIFF header")

    first = struct.unpack(endian + "L", tiff[4:8])[0]
    pending = [(first, "0th")]
    visited = set()
    while pending:
        offset, name = pending.pop()
        if (offset, name) in visited:
            continue
        visited.add((offset, name))
        if offset + 2 > len(tiff):
            raise CorruptMetadata(f"{name} IFD offset {offset} lies outside the EXIF block")
        entries = struct.unpack(endian + "H", tiff[offset:offset + 2])[0]
        table_end = offset + 2 + 12 * entries
        if table_end > len(tiff):
            raise CorruptMetadata(f"{name} IFD declares {entries} entries past the EXIF block")

        pointers = _SUB_IFD_POINTERS.get(name, {})
        for position in range(offset + 2, table_end, 12):
            tag, value_type, count = struct.unpack(endian + "HHL", tiff[position:position + 8])
            value = tiff[position + 8:position + 12]
            size = _TYPE_SIZES.get(value_type, 1) * count
            if size > 4 and struct.unpack(endian + "L", value)[0] + size > len(tiff):
                raise CorruptMetadata(
                    f"Tag {tag} holds {count} values of type {value_type} past the EXIF block"
                )
            if tag in pointers:
                if count != 1 or value_type not in (3, 4):
                    raise CorruptMetadata(f"Tag {tag} is not a single IFD offset")
                fmt = "H" if value_type == 3 else "L"
                pending.append((struct.unpack(endian + fmt, value[:struct.calcsize(fmt)])[0], pointers[tag]))

        if name == "0th" and table_end + 4 <= len(tiff):
            next_ifd = struct.unpack(endian + "L", tiff[table_end:table_end + 4])[0]
            if next_ifd:
                pending.append((next_ifd, "1st"))


def load_ifd(data: bytes) -> IfdStructure:
    """
    Parse the EXIF groups out of JPEG, TIFF or WebP bytes, or a raw EXIF block.

    A JPEG without an EXIF segment yields an empty structure.

    Args:
        data: Image bytes or EXIF block

    Returns:
        IfdStructure

    Raises:
        CorruptMetadata: If the container is not recognized or the EXIF block is malformed
    """
    if not data or not has_exif_container(data):
        raise CorruptMetadata("No EXIF-capable container found in data")

    tiff = _tiff_block(data)
    if tiff is not None:
        check_ifd_bounds(tiff)

    try:
        raw = piexif.load(data)
    except Exception as e:
        raise CorruptMetadata(f"Malformed EXIF segment: {e}")

    ifd = IfdStructure()
    for name, piexif_name in _PIEXIF_GROUPS.items():
        ifd.group(name).update(raw.get(piexif_name) or {})
    ifd.thumbnail = raw.get("thumbnail")
    return ifd


def _sanitize(exif_group: Dict[int, TagValue]) -> None:
    # piexif loads these UNDEFINED tags as ints but only dumps bytes
    for tag in (TAG_SCENE_TYPE, TAG_FILE_SOURCE):
        value = exif_group.get(tag)
        if isinstance(value, int):
            exif_group[tag] = bytes([value & 0xFF])


def dump_ifd(ifd: IfdStructure) -> bytes:
    """
    Serialize the groups into an EXIF block (starting with ``Exif\\0\\0``).

    Raises:
        CorruptMetadata: If a tag value cannot be encoded
    """
    raw: Dict[str, Any] = {}
    for name, piexif_name in _PIEXIF_GROUPS.items():
        raw[piexif_name] = dict(ifd.group(name))
    _sanitize(raw["Exif"])

    if ifd.thumbnail is not None and raw["1st"]:
        raw["thumbnail"] = ifd.thumbnail
    else:
        # piexif refuses a first IFD without its thumbnail
        raw["1st"] = {}
        raw["thumbnail"] = None

    try:
        return piexif.dump(raw)
    except (ValueError, struct.error, TypeError, KeyError) as e:
        raise CorruptMetadata(f"Cannot serialize EXIF data: {e}")


def splice_exif(exif_block: bytes, jpeg_data: bytes) -> bytes:
    """
    Insert an EXIF block into JPEG bytes, replacing any existing EXIF segment.

    Raises:
        UnsupportedFormat: If the data is not a JPEG stream
        CorruptMetadata: If the JPEG segments cannot be parsed
    """
    if not _is_jpeg(jpeg_data):
        raise UnsupportedFormat("EXIF can only be written into JPEG data")

    output = io.BytesIO()
    try:
        piexif.insert(exif_block, jpeg_data, output)
    except (ValueError, struct.error, IndexError) as e:
        raise CorruptMetadata(f"Cannot insert EXIF segment: {e}")
    return output.getvalue()


def encode_user_comment(text: str) -> bytes:
    """Encode a user comment with the EXIF UNICODE character code prefix."""
    return piexif.helper.UserComment.dump(text, encoding="unicode")


def decode_user_comment(value: TagValue) -> Optional[str]:
    if not isinstance(value, bytes):
        return None
    try:
        return piexif.helper.UserComment.load(value).rstrip("\x00") or None
    except ValueError:
        return None
