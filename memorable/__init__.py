"""
Memorable photo library metadata engine.

This package keeps a photo library's metadata in a SQLite store, imports it from
the EXIF segment of image files, writes it back into JPEG originals, and enriches
photo coordinates with nearby points of interest.
"""

__version__ = "1.0.0"
__author__ = "Memorable developers"
