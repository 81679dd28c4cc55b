import os
import shutil
import tempfile
import unittest
from unittest.mock import patch, MagicMock

import piexif
from PIL import Image

from memorable.config import AppConfig
from memorable.errors import GeoTimeout, NotFound
from memorable.metadata_store import MetadataStore
from memorable.models import NearbyPlace
from memorable.nearby_resolver import NearbyPlaceResolver
from memorable.sync_orchestrator import SyncOrchestrator


class TestSyncOrchestrator(unittest.TestCase):
    """Test cases for the SyncOrchestrator class."""

    def setUp(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

        self.config = AppConfig()
        self.config.show_progress = False
        self.config.database_path = os.path.join(self.temp_dir, "memorable.db")

        self.store = MetadataStore(self.config.database_path, self.config)
        self.geocoder = MagicMock()
        self.poi_source = MagicMock()
        self.resolver = NearbyPlaceResolver(self.config, poi_source=self.poi_source)
        self.orchestrator = SyncOrchestrator(
            self.store, self.config, geocoder=self.geocoder, resolver=self.resolver
        )

    def tearDown(self):
        """Clean up after tests."""
        self.orchestrator.shutdown()
        shutil.rmtree(self.temp_dir)

    def _jpeg(self, name, make=None):
        path = os.path.join(self.temp_dir, name)
        img = Image.new('RGB', (40, 30), (0, 128, 0))
        if make:
            exif = {
                '0th': {piexif.ImageIFD.Make: make.encode('ascii')},
                'Exif': {piexif.ExifIFD.DateTimeOriginal: b"2022:08:01 09:15:00",
                         piexif.ExifIFD.ISOSpeedRatings: 200},
                'GPS': {
                    piexif.GPSIFD.GPSLatitudeRef: b"N",
                    piexif.GPSIFD.GPSLatitude: ((35, 1), (39, 1), (3096, 100)),
                    piexif.GPSIFD.GPSLongitudeRef: b"E",
                    piexif.GPSIFD.GPSLongitude: ((139, 1), (44, 1), (4344, 100)),
                },
            }
            img.save(path, format='JPEG', exif=piexif.dump(exif))
        else:
            img.save(path, format='JPEG')
        return path

    # ------------------------------------------------------------------ import

    def test_import_photo(self):
        """Test that an import stores the decoded metadata."""
        path = self._jpeg("tokyo.jpg", make="Sony")

        outcome = self.orchestrator.import_photo(path)

        self.assertTrue(outcome.success, outcome.message)
        photo = self.store.get_photo(outcome.data['photo_id'])
        self.assertEqual(photo.file_path, path)
        self.assertEqual(photo.file_name, "tokyo.jpg")
        self.assertEqual(photo.file_size, os.path.getsize(path))
        self.assertEqual(photo.camera_make, "Sony")
        self.assertEqual(photo.iso, 200)
        self.assertEqual(photo.date_taken, "2022-08-01T09:15:00+00:00")
        self.assertAlmostEqual(photo.latitude, 35.6586, places=3)
        self.assertIsNotNone(photo.import_date)

    def test_import_without_exif(self):
        path = self._jpeg("plain.jpg")

        outcome = self.orchestrator.import_photo(path)

        self.assertTrue(outcome.success)
        photo = self.store.get_photo(outcome.data['photo_id'])
        self.assertIsNone(photo.date_taken)
        self.assertIsNone(photo.camera_make)

    def test_import_batch_isolates_failures(self):
        """Test that a missing file fails alone and the batch carries on."""
        good = self._jpeg("good.jpg", make="Canon")
        missing = os.path.join(self.temp_dir, "missing.jpg")
        other = self._jpeg("other.jpg")

        results = self.orchestrator.import_photos([good, missing, other])

        self.assertEqual([r['success'] for r in results], [True, False, True])
        self.assertEqual(results[1]['error'], "NotFound")
        self.assertEqual(results[1]['file_path'], missing)
        self.assertEqual(len(self.store.get_photos()), 2)

        stats = self.orchestrator.stats
        self.assertEqual((stats.total_files, stats.imported, stats.failed), (3, 2, 1))
        self.assertEqual(stats.without_metadata, 1)

    def test_import_batch_survives_unexpected_errors(self):
        paths = [self._jpeg("a.jpg"), self._jpeg("b.jpg")]
        real_decode = self.orchestrator.decoder.decode_file

        def flaky(path):
            if path.endswith("a.jpg"):
                raise RuntimeError("decoder crashed")
            return real_decode(path)

        with patch.object(self.orchestrator.decoder, 'decode_file', side_effect=flaky):
            results = self.orchestrator.import_photos(paths)

        self.assertEqual([r['success'] for r in results], [False, True])
        self.assertEqual(results[0]['error'], "MemorableError")

    def test_reimport_refreshes_one_row(self):
        """Test that importing the same file twice keeps a single, updated row."""
        path = self._jpeg("same.jpg", make="Canon")
        first = self.orchestrator.import_photo(path)
        self.store.update_photo(first.data['photo_id'], {'rating': 5})

        self._jpeg("same.jpg", make="Nikon")
        results = self.orchestrator.import_photos([path])

        self.assertFalse(results[0]['created'])
        self.assertEqual(self.orchestrator.stats.updated, 1)
        photos = self.store.get_photos()
        self.assertEqual(len(photos), 1)
        self.assertEqual(photos[0].camera_make, "Nikon")
        self.assertEqual(photos[0].rating, 5)

    # ------------------------------------------------------------------ export

    def test_write_exif(self):
        """Test exporting edited fields into the original file."""
        path = self._jpeg("edit.jpg")
        photo_id = self.orchestrator.import_photo(path).data['photo_id']
        self.store.update_photo(photo_id, {
            'camera_make': "Ricoh", 'rating': 2, 'notes': "Street",
            'latitude': 51.5007, 'longitude': -0.1246,
        })
        before = self.store.get_photo(photo_id)

        outcome = self.orchestrator.write_exif(photo_id)

        self.assertTrue(outcome.success, outcome.message)
        self.assertEqual(outcome.data['photo_id'], photo_id)
        self.assertTrue(os.path.exists(path + ".backup"))
        self.assertEqual(self.store.get_photo(photo_id), before)

        decoded = self.orchestrator.decoder.decode_file(path)
        self.assertEqual(decoded.camera_make, "Ricoh")
        self.assertLess(decoded.longitude, 0)

    def test_write_exif_missing_photo(self):
        outcome = self.orchestrator.write_exif(12345)
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "NotFound")

    def test_write_exif_batch(self):
        path = self._jpeg("batch.jpg")
        photo_id = self.orchestrator.import_photo(path).data['photo_id']

        results = self.orchestrator.write_exif_batch([photo_id, 999])

        self.assertEqual([r['success'] for r in results], [True, False])
        self.assertEqual(results[1]['error'], "NotFound")

    def test_write_exif_non_jpeg(self):
        path = os.path.join(self.temp_dir, "scan.png")
        Image.new('RGB', (10, 10)).save(path, format='PNG')
        photo_id = self.orchestrator.import_photo(path).data['photo_id']

        outcome = self.orchestrator.write_exif(photo_id)

        self.assertEqual(outcome.error, "UnsupportedFormat")
        self.assertFalse(os.path.exists(path + ".backup"))

    # ---------------------------------------------------------------- location

    def test_bulk_set_location(self):
        ids = [self.orchestrator.import_photo(self._jpeg(f"{i}.jpg")).data['photo_id'] for i in range(2)]
        outcome = self.orchestrator.bulk_set_location(ids, 40.6892, -74.0445, "Statue of Liberty")
        self.assertTrue(outcome.success)
        self.assertEqual(len(self.store.get_photos_with_location()), 2)

    def test_reverse_geocode(self):
        self.geocoder.reverse_geocode.return_value = {'address': "Big Ben, London", 'raw_details': {'city': "London"}}

        outcome = self.orchestrator.reverse_geocode(51.5007, -0.1246, timeout=2)

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.data['address'], "Big Ben, London")
        self.geocoder.reverse_geocode.assert_called_once_with(51.5007, -0.1246, timeout=2)

    def test_reverse_geocode_failure(self):
        self.geocoder.reverse_geocode.side_effect = GeoTimeout("slow")

        outcome = self.orchestrator.reverse_geocode(51.5007, -0.1246)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "GeoTimeout")
        self.assertIsNone(outcome.data['address'])

    def test_find_places_near_photo(self):
        """Test the search around a photo's stored position."""
        photo_id = self.orchestrator.import_photo(self._jpeg("geo.jpg", make="Sony")).data['photo_id']
        photo = self.store.get_photo(photo_id)
        self.poi_source.search_nearby.return_value = [
            {'id': 'node/1', 'name': "Tokyo Tower", 'tags': {'tourism': 'attraction'},
             'lat': photo.latitude, 'lon': photo.longitude},
        ]

        result = self.orchestrator.find_places_near_photo(photo_id, radius=50)

        self.assertTrue(result.success)
        self.assertEqual(result.places[0].category, "Tourism")
        self.assertEqual(result.places[0].distance, 0)
        self.poi_source.search_nearby.assert_called_once_with(photo.latitude, photo.longitude, 50, timeout=None)

    def test_find_places_near_photo_without_position(self):
        photo_id = self.orchestrator.import_photo(self._jpeg("nogeo.jpg")).data['photo_id']

        self.assertEqual(self.orchestrator.find_places_near_photo(photo_id).error, "ValidationFailure")
        self.assertEqual(self.orchestrator.find_places_near_photo(999).error, "NotFound")
        self.poi_source.search_nearby.assert_not_called()

    def test_assign_place(self):
        ids = [self.orchestrator.import_photo(self._jpeg(f"p{i}.jpg")).data['photo_id'] for i in range(2)]
        place = NearbyPlace(id='node/1', name="Louvre", category="Tourism", latitude=48.8606, longitude=2.3376)

        self.assertTrue(self.orchestrator.assign_place(ids, place).success)

        for photo_id in ids:
            photo = self.store.get_photo(photo_id)
            self.assertEqual(photo.location_name, "Louvre")
            self.assertEqual((photo.latitude, photo.longitude), (48.8606, 2.3376))

    def test_assign_place_without_coordinates_keeps_position(self):
        photo_id = self.orchestrator.import_photo(self._jpeg("pos.jpg", make="Sony")).data['photo_id']
        latitude = self.store.get_photo(photo_id).latitude

        outcome = self.orchestrator.assign_place([photo_id], NearbyPlace(id='way/2', name="Shibuya", category="Place"))

        self.assertTrue(outcome.success)
        photo = self.store.get_photo(photo_id)
        self.assertEqual(photo.location_name, "Shibuya")
        self.assertEqual(photo.latitude, latitude)

    def test_assign_place_without_coordinates_is_atomic(self):
        """Test that one missing id leaves the other photos' place name untouched."""
        photo_id = self.orchestrator.import_photo(self._jpeg("one.jpg")).data['photo_id']

        outcome = self.orchestrator.assign_place([photo_id, 9999], NearbyPlace(id='node/3', name="Cafe X", category="Food"))

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.error, "NotFound")
        self.assertIsNone(self.store.get_photo(photo_id).location_name)

    def test_create_location_from_photo(self):
        photo_id = self.orchestrator.import_photo(self._jpeg("loc.jpg", make="Sony")).data['photo_id']
        photo = self.store.get_photo(photo_id)

        outcome = self.orchestrator.create_location_from_photo(photo_id, "Tokyo Tower", category="attraction")

        self.assertTrue(outcome.success, outcome.message)
        location = self.store.get_location(outcome.data['location_id'])
        self.assertEqual((location.latitude, location.longitude), (photo.latitude, photo.longitude))
        self.assertEqual(self.orchestrator.create_location_from_photo(999, "X").error, "NotFound")

    # ------------------------------------------------------------ asynchrony

    def test_submit_runs_in_order(self):
        """Test that submitted operations complete in submission order."""
        order = []
        futures = [self.orchestrator.submit(order.append, i) for i in range(5)]
        for future in futures:
            future.result(timeout=5)
        self.assertEqual(order, [0, 1, 2, 3, 4])

    def test_submit_import(self):
        path = self._jpeg("async.jpg")
        future = self.orchestrator.submit(self.orchestrator.import_photos, [path])
        results = future.result(timeout=10)
        self.assertTrue(results[0]['success'])


if __name__ == '__main__':
    unittest.main()
