import io
import os
import shutil
import struct
import tempfile
import threading
import unittest
from unittest.mock import patch

import piexif
from PIL import Image

from memorable.config import AppConfig
from memorable.errors import IOFailure, ValidationFailure
from memorable.exif_decoder import ExifDecoder
from memorable.exif_encoder import (
    ExifEncoder, format_exif_datetime, encode_focal_length, encode_aperture, build_user_comment,
)
from memorable.exif_ifd import load_ifd, decode_user_comment, TAG_USER_COMMENT
from memorable.filesystem import FilesystemHelper
from memorable.models import ExifFields


def write_jpeg(path, exif_dict=None):
    img = Image.new('RGB', (32, 24), (10, 120, 200))
    if exif_dict is not None:
        img.save(path, format='JPEG', exif=piexif.dump(exif_dict))
    else:
        img.save(path, format='JPEG')


def read(path):
    with open(path, 'rb') as f:
        return f.read()


class TestFieldEncoding(unittest.TestCase):
    """Test cases for the value conversions written into EXIF."""

    def test_aperture_keeps_one_decimal(self):
        self.assertEqual(encode_aperture(2.8), (28, 10))
        self.assertEqual(encode_aperture(1.4), (14, 10))
        self.assertEqual(encode_aperture(16), (160, 10))
        self.assertEqual(encode_aperture(3.25), (33, 10))

    def test_focal_length_rounds_to_whole_millimeters(self):
        self.assertEqual(encode_focal_length(50.0), (50, 1))
        self.assertEqual(encode_focal_length(50.6), (51, 1))
        self.assertEqual(encode_focal_length(50.4), (50, 1))
        self.assertEqual(encode_focal_length(24.5), (25, 1))

    def test_date_format(self):
        self.assertEqual(format_exif_datetime("2023-06-15T14:30:00+00:00"), "2023:06:15 14:30:00")
        self.assertEqual(format_exif_datetime("2023-06-15T14:30:00.123456Z"), "2023:06:15 14:30:00")
        self.assertEqual(format_exif_datetime("2023-06-15T16:30:00+02:00"), "2023:06:15 14:30:00")
        self.assertEqual(format_exif_datetime("2023-06-15T14:30:00"), "2023:06:15 14:30:00")
        self.assertEqual(format_exif_datetime("2023:06:15 14:30:00"), "2023:06:15 14:30:00")

    def test_invalid_date_raises(self):
        with self.assertRaises(ValidationFailure):
            format_exif_datetime("last summer")

    def test_user_comment(self):
        self.assertEqual(build_user_comment(3, "Opera House"), "Rating: ★★★ | Opera House")
        self.assertEqual(build_user_comment(5, None), "Rating: ★★★★★")
        self.assertEqual(build_user_comment(0, "Just notes"), "Just notes")
        self.assertIsNone(build_user_comment(0, None))
        self.assertIsNone(build_user_comment(None, ""))

    def test_user_comment_rejects_bad_rating(self):
        with self.assertRaises(ValidationFailure):
            build_user_comment(6, None)


class TestExifEncoder(unittest.TestCase):
    """Test cases for the ExifEncoder class."""

    def setUp(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "photo.jpg")
        write_jpeg(self.path)

        self.config = AppConfig()
        self.filesystem = FilesystemHelper(self.config)
        self.encoder = ExifEncoder(self.config, self.filesystem)
        self.decoder = ExifDecoder(self.filesystem)

        self.fields = ExifFields(
            camera_make="Fujifilm",
            camera_model="X-T5",
            date_taken="2023-06-15T14:30:00+00:00",
            iso=400,
            focal_length=50.6,
            aperture=2.8,
            lens_model="XF 33mm F1.4",
            latitude=-33.856784,
            longitude=151.215297,
            rating=3,
            notes="Opera House",
        )

    def tearDown(self):
        """Clean up after tests."""
        shutil.rmtree(self.temp_dir)

    def test_write_and_decode_round_trip(self):
        """Test that written fields decode back to the same values."""
        original = read(self.path)

        outcome = self.encoder.write_metadata(self.path, self.fields)

        self.assertTrue(outcome.success, outcome.message)
        self.assertEqual(outcome.message, "Metadata written to EXIF successfully. Backup created.")
        self.assertEqual(outcome.data['backup_path'], self.path + ".backup")
        self.assertEqual(read(self.path + ".backup"), original)

        metadata = self.decoder.decode_file(self.path)
        self.assertEqual(metadata.camera_make, "Fujifilm")
        self.assertEqual(metadata.camera_model, "X-T5")
        self.assertEqual(metadata.lens_model, "XF 33mm F1.4")
        self.assertEqual(metadata.date_taken, "2023-06-15T14:30:00+00:00")
        self.assertEqual(metadata.iso, 400)
        self.assertEqual(metadata.focal_length, 51.0)
        self.assertAlmostEqual(metadata.aperture, 2.8)

        self.assertLess(metadata.latitude, 0)
        self.assertLessEqual(abs(self.fields.latitude) - abs(metadata.latitude), 1 / 3600)
        self.assertGreaterEqual(abs(self.fields.latitude) - abs(metadata.latitude), -1e-9)
        self.assertLessEqual(abs(self.fields.longitude - metadata.longitude), 1 / 3600)

        ifd = load_ifd(read(self.path))
        self.assertEqual(decode_user_comment(ifd.get("exif", TAG_USER_COMMENT)), "Rating: ★★★ | Opera House")
        self.assertEqual(ifd.get("image", piexif.ImageIFD.DateTime), b"2023:06:15 14:30:00")

    def test_image_data_survives(self):
        """Test that the rewritten file is still a readable JPEG of the same size."""
        self.encoder.write_metadata(self.path, self.fields)

        with Image.open(self.path) as img:
            img.load()
            self.assertEqual(img.size, (32, 24))

    def test_existing_tags_are_preserved(self):
        """Test that tags the encoder does not manage survive a write."""
        write_jpeg(self.path, {
            '0th': {piexif.ImageIFD.Orientation: 6, piexif.ImageIFD.Software: b"Darkroom 2"},
            'Exif': {piexif.ExifIFD.ExposureTime: (1, 60)},
        })

        outcome = self.encoder.write_metadata(self.path, ExifFields(camera_make="Leica"))

        self.assertTrue(outcome.success, outcome.message)
        ifd = load_ifd(read(self.path))
        self.assertEqual(ifd.get("image", piexif.ImageIFD.Orientation), 6)
        self.assertEqual(ifd.get("image", piexif.ImageIFD.Software), b"Darkroom 2")
        self.assertEqual(ifd.get("exif", piexif.ExifIFD.ExposureTime), (1, 60))
        self.assertEqual(ifd.get("image", piexif.ImageIFD.Make), b"Leica")

    def test_unset_fields_leave_tags_alone(self):
        write_jpeg(self.path, {'0th': {piexif.ImageIFD.Model: b"Old Model"}})

        self.encoder.write_metadata(self.path, ExifFields(iso=100))

        self.assertEqual(self.decoder.decode_file(self.path).camera_model, "Old Model")

    def test_non_jpeg_is_rejected_without_io(self):
        """Test that a PNG is refused and left byte-identical, with no backup."""
        png_path = os.path.join(self.temp_dir, "photo.png")
        Image.new('RGB', (8, 8)).save(png_path, format='PNG')
        before = read(png_path)

        outcome = self.encoder.write_metadata(png_path, self.fields)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "UnsupportedFormat")
        self.assertEqual(read(png_path), before)
        self.assertFalse(os.path.exists(png_path + ".backup"))

    def test_missing_file(self):
        outcome = self.encoder.write_metadata(os.path.join(self.temp_dir, "gone.jpg"), self.fields)
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "NotFound")

    def test_backup_failure_leaves_original(self):
        """Test that no write happens when the backup cannot be made."""
        original = read(self.path)
        with patch.object(self.filesystem, 'create_backup', side_effect=IOFailure("read-only")), \
                patch.object(self.filesystem, 'replace_contents') as mock_replace:
            outcome = self.encoder.write_metadata(self.path, self.fields)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "IOFailure")
        mock_replace.assert_not_called()
        self.assertEqual(read(self.path), original)

    def test_write_failure_leaves_original(self):
        """Test that a failed final write leaves the original byte-identical."""
        original = read(self.path)
        with patch('memorable.filesystem.os.replace', side_effect=OSError("disk full")):
            outcome = self.encoder.write_metadata(self.path, self.fields)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "IOFailure")
        self.assertEqual(read(self.path), original)
        self.assertEqual(read(self.path + ".backup"), original)

    def test_invalid_date_fails_validation(self):
        original = read(self.path)
        self.fields.date_taken = "not a date"

        outcome = self.encoder.write_metadata(self.path, self.fields)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "ValidationFailure")
        self.assertEqual(read(self.path), original)

    def test_concurrent_writes_to_same_file(self):
        """Test that parallel writes to one file all succeed and leave a valid JPEG."""
        outcomes = []

        def worker(iso):
            outcomes.append(self.encoder.write_metadata(self.path, ExifFields(iso=iso)))

        threads = [threading.Thread(target=worker, args=(100 * (i + 1),)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertTrue(all(o.success for o in outcomes))
        self.assertIn(self.decoder.decode_file(self.path).iso, (100, 200, 300, 400))

    def test_oversized_entry_count_starts_from_empty_exif(self):
        """Test that a JPEG whose Make entry overruns the EXIF block is rewritten from scratch."""
        exif = bytearray(piexif.dump({'0th': {piexif.ImageIFD.Make: b"Canon"}}))
        exif[6 + 8 + 2 + 4:6 + 8 + 2 + 8] = struct.pack(">L", 0xFFFFFFF0)
        jpeg = read(self.path)
        with open(self.path, 'wb') as f:
            f.write(jpeg[:2] + b"\xff\xe1" + struct.pack(">H", len(exif) + 2) + bytes(exif) + jpeg[2:])

        outcome = self.encoder.write_metadata(self.path, ExifFields(camera_make="Fujifilm"))

        self.assertTrue(outcome.success, outcome.message)
        self.assertEqual(self.decoder.decode_file(self.path).camera_make, "Fujifilm")

    def test_path_locks_are_released_after_write(self):
        """Test that the per-file lock is keyed by absolute path and dropped once the write ends."""
        held_keys = []
        real_read = self.filesystem.read_bytes

        def read_and_record(path):
            held_keys.append(list(ExifEncoder._path_locks))
            return real_read(path)

        with patch.object(self.filesystem, 'read_bytes', side_effect=read_and_record):
            outcome = self.encoder.write_metadata(self.path, ExifFields(iso=200))

        self.assertTrue(outcome.success, outcome.message)
        self.assertEqual(held_keys, [[os.path.abspath(self.path)]])
        self.assertEqual(ExifEncoder._path_locks, {})

    def test_relative_and_absolute_paths_share_a_lock(self):
        relative = os.path.relpath(self.path)
        self.assertEqual(ExifEncoder._lock_key(relative), ExifEncoder._lock_key(self.path))

    def test_encode_jpeg_bytes_replaces_previous_exif(self):
        buffer = io.BytesIO()
        Image.new('RGB', (8, 8)).save(buffer, format='JPEG')
        data = self.encoder.encode_jpeg_bytes(buffer.getvalue(), ExifFields(camera_make="A"))
        data = self.encoder.encode_jpeg_bytes(data, ExifFields(camera_make="B"))

        self.assertEqual(data.count(b"Exif\x00\x00"), 1)
        self.assertEqual(self.decoder.decode_bytes(data).camera_make, "B")


if __name__ == '__main__':
    unittest.main()
