"""
Tests for the geo math helpers.
"""
import math
import unittest
from unittest.mock import patch

from memorable.geo_math import (
    haversine_distance, distance_meters, to_dms_rationals, from_dms_rationals,
    hemisphere_ref, is_valid_coordinate, round_half_up,
)


class TestHaversine(unittest.TestCase):
    """Test cases for great-circle distances."""

    def test_one_degree_of_longitude_at_equator(self):
        distance = haversine_distance(0, 0, 0, 1)
        self.assertAlmostEqual(distance, 111195, delta=50)

    def test_distance_meters_rounds_to_whole_meters(self):
        self.assertEqual(distance_meters(0, 0, 0, 1), 111195)
        self.assertIsInstance(distance_meters(48.8584, 2.2945, 48.8606, 2.3376), int)

    def test_half_meters_round_up(self):
        with patch('memorable.geo_math.haversine_distance', return_value=12.5):
            self.assertEqual(distance_meters(0, 0, 0, 0.0001), 13)
        with patch('memorable.geo_math.haversine_distance', return_value=12.4999):
            self.assertEqual(distance_meters(0, 0, 0, 0.0001), 12)

    def test_round_half_up(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(0.5), 1)
        self.assertEqual(round_half_up(2.4), 2)

    def test_same_point_is_zero(self):
        self.assertEqual(distance_meters(51.5, -0.12, 51.5, -0.12), 0)

    def test_missing_coordinates_are_infinitely_far(self):
        self.assertEqual(distance_meters(0, 0, None, 1), math.inf)
        self.assertEqual(distance_meters(0, 0, 1, None), math.inf)


class TestDmsConversion(unittest.TestCase):
    """Test cases for decimal degrees <-> EXIF DMS rationals."""

    def test_known_value(self):
        # 48.858370 = 48 deg 51 min 30.132 sec
        self.assertEqual(to_dms_rationals(48.858370), ((48, 1), (51, 1), (3013, 100)))

    def test_sign_is_dropped(self):
        self.assertEqual(to_dms_rationals(-33.8688), to_dms_rationals(33.8688))

    def test_round_trip_within_one_arc_second_floor_direction(self):
        values = [-90.0, -89.999999, -45.123456, -12.5, -0.000277, 0.0, 0.5,
                  12.3456789, 48.858370, 89.9999, 90.0,
                  -180.0, -122.419416, 2.294481, 139.691706, 179.999999, 180.0]
        for value in values:
            with self.subTest(value=value):
                ref = 'S' if value < 0 else 'N'
                decoded = from_dms_rationals(to_dms_rationals(value), ref)
                error = abs(value) - abs(decoded)
                self.assertGreaterEqual(error, -1e-9)
                self.assertLessEqual(error, 1 / 3600)
                if value != 0:
                    self.assertEqual(math.copysign(1, decoded), math.copysign(1, value))

    def test_encoding_is_deterministic(self):
        self.assertEqual(to_dms_rationals(12.3456789), to_dms_rationals(12.3456789))

    def test_from_dms_rejects_zero_denominator(self):
        with self.assertRaises(ValueError):
            from_dms_rationals(((1, 0), (0, 1), (0, 1)))

    def test_from_dms_rejects_wrong_length(self):
        with self.assertRaises(ValueError):
            from_dms_rationals(((1, 1), (0, 1)))

    def test_hemisphere_refs(self):
        self.assertEqual(hemisphere_ref(10, True), 'N')
        self.assertEqual(hemisphere_ref(-10, True), 'S')
        self.assertEqual(hemisphere_ref(0, True), 'N')
        self.assertEqual(hemisphere_ref(10, False), 'E')
        self.assertEqual(hemisphere_ref(-10, False), 'W')

    def test_coordinate_ranges(self):
        self.assertTrue(is_valid_coordinate(90, 180))
        self.assertFalse(is_valid_coordinate(90.1, 0))
        self.assertFalse(is_valid_coordinate(0, -180.5))
        self.assertFalse(is_valid_coordinate("north", 0))


if __name__ == '__main__':
    unittest.main()
