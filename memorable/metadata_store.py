"""
SQLite store for photos, collections, locations and custom metadata.
"""

import os
import sqlite3
import time
from contextlib import contextmanager
from typing import List, Dict, Any, Optional, Iterable, Callable

from .config import AppConfig
from .errors import MemorableError, NotFound, ValidationFailure, Outcome
from .geo_math import is_valid_coordinate
from .logging_setup import get_logger
from .models import Photo, Collection, Location, LOCATION_CATEGORIES
from .utils import utc_now_iso

logger = get_logger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS photos (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      file_path TEXT UNIQUE NOT NULL,
      file_name TEXT NOT NULL,
      file_size INTEGER,
      import_date TEXT,
      date_taken TEXT,
      latitude REAL,
      longitude REAL,
      location_name TEXT,
      camera_make TEXT,
      camera_model TEXT,
      lens_model TEXT,
      focal_length REAL,
      aperture REAL,
      shutter_speed TEXT,
      iso INTEGER,
      width INTEGER,
      height INTEGER,
      orientation INTEGER,
      rating INTEGER DEFAULT 0 CHECK (rating BETWEEN 0 AND 5),
      notes TEXT
    );

    CREATE TABLE IF NOT EXISTS collections (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      description TEXT,
      created_date TEXT
    );

    CREATE TABLE IF NOT EXISTS photo_collections (
      photo_id INTEGER NOT NULL,
      collection_id INTEGER NOT NULL,
      added_date TEXT,
      PRIMARY KEY (photo_id, collection_id),
      FOREIGN KEY (photo_id) REFERENCES photos(id) ON DELETE CASCADE,
      FOREIGN KEY (collection_id) REFERENCES collections(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS custom_metadata (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      photo_id INTEGER NOT NULL,
      key TEXT NOT NULL,
      value TEXT,
      FOREIGN KEY (photo_id) REFERENCES photos(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS locations (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL,
      latitude REAL,
      longitude REAL,
      address TEXT,
      category TEXT,
      rating INTEGER DEFAULT 0 CHECK (rating BETWEEN 0 AND 5),
      notes TEXT,
      created_date TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_photos_location ON photos(latitude, longitude);
    CREATE INDEX IF NOT EXISTS idx_photos_date ON photos(date_taken);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_custom_metadata_key ON custom_metadata(photo_id, key);
"""

# Columns written by an import; user-edited columns (rating, notes, location_name) are kept
IMPORT_COLUMNS = (
    'file_path', 'file_name', 'file_size', 'import_date', 'date_taken', 'latitude', 'longitude',
    'camera_make', 'camera_model', 'lens_model', 'focal_length', 'aperture',
    'shutter_speed', 'iso', 'width', 'height', 'orientation',
)

EDITABLE_PHOTO_FIELDS = (
    'date_taken', 'latitude', 'longitude', 'location_name', 'rating', 'notes',
    'camera_make', 'camera_model', 'lens_model', 'focal_length',
    'aperture', 'shutter_speed', 'iso', 'orientation',
)

EDITABLE_LOCATION_FIELDS = ('name', 'latitude', 'longitude', 'address', 'category', 'rating', 'notes')


def validate_rating(rating: Any) -> None:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 0 <= rating <= 5:
        raise ValidationFailure(f"Rating must be an integer between 0 and 5, got {rating!r}")


def validate_coordinates(latitude: Any, longitude: Any) -> None:
    """Coordinates must be both null or both set and within WGS84 ranges."""
    if latitude is None and longitude is None:
        return
    if latitude is None or longitude is None:
        raise ValidationFailure("Latitude and longitude must be set together")
    if not is_valid_coordinate(latitude, longitude):
        raise ValidationFailure(f"Invalid coordinates: {latitude}, {longitude}")


def validate_category(category: Any) -> None:
    if category is not None and category not in LOCATION_CATEGORIES:
        raise ValidationFailure(
            f"Unknown location category {category!r}; expected one of {', '.join(LOCATION_CATEGORIES)}"
        )


def _placeholders(values: Iterable[Any]) -> str:
    return ','.join('?' for _ in values)


class MetadataStore:
    """Class to handle all persisted photo library state."""

    def __init__(self, database_path: str, config: Optional[AppConfig] = None):
        """
        Open (and create if needed) the library database.

        Args:
            database_path: Path to the SQLite database file
            config: Application configuration

        Raises:
            RuntimeError: If the database cannot be created
        """
        self.config = config or AppConfig()
        self.database_path = os.path.abspath(os.path.expanduser(database_path))
        self.db_busy_timeout = self.config.db_busy_timeout
        self.max_retries = self.config.max_retries

        db_dir = os.path.dirname(self.database_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        """
        Establish a connection to the SQLite database.
        A new connection is made per operation so the store can be used from any thread.
        """
        try:
            conn = sqlite3.connect(self.database_path, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.db_busy_timeout)}")
            return conn
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to library database: {str(e)}")
            raise RuntimeError(f"Failed to connect to library database: {str(e)}")

    def _begin(self, conn: sqlite3.Connection) -> None:
        retry_count = 0
        while True:
            try:
                conn.execute("BEGIN IMMEDIATE")
                return
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e) and retry_count < self.max_retries:
                    retry_count += 1
                    wait_time = 0.5 * (2 ** retry_count)  # Exponential backoff
                    logger.warning(
                        f"Database locked, retrying in {wait_time:.2f}s (attempt {retry_count}/{self.max_retries})"
                    )
                    time.sleep(wait_time)
                else:
                    raise

    @contextmanager
    def cursor(self):
        """
        Get a cursor inside a transaction.
        Commits when the block succeeds, rolls back when it raises, then closes.
        """
        conn = self._connect()
        try:
            self._begin(conn)
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                cursor.close()
        finally:
            conn.close()

    def _init_schema(self) -> None:
        try:
            conn = self._connect()
            try:
                conn.executescript(SCHEMA)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to initialize library database: {str(e)}")
        logger.debug(f"Library database ready at {self.database_path}")

    def _mutate(self, action: str, func: Callable[[sqlite3.Cursor], Outcome]) -> Outcome:
        """
        Run a mutation in one transaction and turn errors into a failed Outcome.
        """
        try:
            with self.cursor() as cursor:
                return func(cursor)
        except MemorableError as e:
            logger.warning(f"{action} failed: {str(e)}")
            return Outcome.from_error(e)
        except sqlite3.Error as e:
            logger.error(f"{action} failed: {str(e)}")
            return Outcome(success=False, message=f"{action} failed: {str(e)}", error="IOFailure")

    def _query(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(sql, tuple(params)).fetchall()
        finally:
            conn.close()

    # ------------------------------------------------------------------ photos

    def upsert_photo(self, photo: Photo) -> Outcome:
        """
        Insert a photo, or update the existing row with the same file path in place.

        The row keeps its id, memberships, custom metadata, rating, notes and
        location name; the imported columns are replaced.

        Returns:
            Outcome with ``photo_id`` and ``created``
        """
        def run(cursor: sqlite3.Cursor) -> Outcome:
            validate_coordinates(photo.latitude, photo.longitude)
            values = photo.to_dict()
            values['import_date'] = values.get('import_date') or utc_now_iso()

            cursor.execute("SELECT id FROM photos WHERE file_path = ?", (photo.file_path,))
            existing = cursor.fetchone()

            columns = ', '.join(IMPORT_COLUMNS)
            updates = ', '.join(f"{col} = excluded.{col}" for col in IMPORT_COLUMNS if col != 'file_path')
            cursor.execute(
                f"INSERT INTO photos ({columns}) VALUES ({_placeholders(IMPORT_COLUMNS)}) "
                f"ON CONFLICT(file_path) DO UPDATE SET {updates}",
                [values[col] for col in IMPORT_COLUMNS],
            )
            cursor.execute("SELECT id FROM photos WHERE file_path = ?", (photo.file_path,))
            photo_id = cursor.fetchone()[0]
            return Outcome.ok(
                "Photo updated" if existing else "Photo imported",
                photo_id=photo_id,
                created=existing is None,
            )

        return self._mutate(f"Saving photo {photo.file_path}", run)

    def get_photo(self, photo_id: int) -> Optional[Photo]:
        rows = self._query("SELECT * FROM photos WHERE id = ?", (photo_id,))
        return Photo.from_row(rows[0]) if rows else None

    def get_photo_by_path(self, file_path: str) -> Optional[Photo]:
        rows = self._query("SELECT * FROM photos WHERE file_path = ?", (file_path,))
        return Photo.from_row(rows[0]) if rows else None

    def get_photos(self) -> List[Photo]:
        """All photos, newest capture first, then newest import; undated photos last."""
        rows = self._query("""
            SELECT * FROM photos
            ORDER BY date_taken IS NULL, date_taken DESC,
                     import_date IS NULL, import_date DESC
        """)
        return [Photo.from_row(row) for row in rows]

    def get_photos_with_location(self) -> List[Photo]:
        rows = self._query("""
            SELECT * FROM photos
            WHERE latitude IS NOT NULL AND longitude IS NOT NULL
            ORDER BY date_taken IS NULL, date_taken DESC, import_date DESC
        """)
        return [Photo.from_row(row) for row in rows]

    def update_photo(self, photo_id: int, updates: Dict[str, Any]) -> Outcome:
        """
        Update editable photo fields. Unknown fields are ignored.

        Coordinates are validated against the row's other coordinate when only one is given.
        """
        fields = [key for key in updates if key in EDITABLE_PHOTO_FIELDS]
        if not fields:
            return Outcome(success=False, message="No editable fields given", error="ValidationFailure")

        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute("SELECT latitude, longitude FROM photos WHERE id = ?", (photo_id,))
            row = cursor.fetchone()
            if row is None:
                raise NotFound(f"Photo {photo_id} not found")

            if 'rating' in updates:
                validate_rating(updates['rating'])
            if 'latitude' in updates or 'longitude' in updates:
                validate_coordinates(
                    updates.get('latitude', row['latitude']),
                    updates.get('longitude', row['longitude']),
                )

            set_clause = ', '.join(f"{field} = ?" for field in fields)
            cursor.execute(
                f"UPDATE photos SET {set_clause} WHERE id = ?",
                [updates[field] for field in fields] + [photo_id],
            )
            return Outcome.ok("Photo updated", photo_id=photo_id)

        return self._mutate(f"Updating photo {photo_id}", run)

    def delete_photo(self, photo_id: int) -> Outcome:
        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute("DELETE FROM photos WHERE id = ?", (photo_id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Photo {photo_id} not found")
            return Outcome.ok("Photo deleted", photo_id=photo_id)

        return self._mutate(f"Deleting photo {photo_id}", run)

    def delete_photos(self, photo_ids: List[int]) -> Outcome:
        """Delete many photos in one transaction."""
        if not photo_ids:
            return Outcome(success=False, message="No photos given", error="ValidationFailure")

        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute(f"DELETE FROM photos WHERE id IN ({_placeholders(photo_ids)})", list(photo_ids))
            return Outcome.ok(f"Deleted {cursor.rowcount} photos", count=cursor.rowcount)

        return self._mutate("Bulk photo delete", run)

    def bulk_set_location(self, photo_ids: List[int], latitude: Optional[float],
                          longitude: Optional[float], location_name: Optional[str] = None) -> Outcome:
        """
        Assign the same position (and optional place name) to many photos atomically.

        Every photo must exist; otherwise nothing is changed.
        """
        if not photo_ids:
            return Outcome(success=False, message="No photos given", error="ValidationFailure")

        def run(cursor: sqlite3.Cursor) -> Outcome:
            validate_coordinates(latitude, longitude)
            ids = self._require_photos(cursor, photo_ids)
            cursor.execute(
                f"UPDATE photos SET latitude = ?, longitude = ?, location_name = ? "
                f"WHERE id IN ({_placeholders(ids)})",
                [latitude, longitude, location_name] + ids,
            )
            return Outcome.ok(f"Location set on {len(ids)} photos", count=len(ids))

        return self._mutate("Bulk location update", run)

    def bulk_set_location_name(self, photo_ids: List[int], location_name: Optional[str]) -> Outcome:
        """
        Set the place name of many photos atomically, leaving their coordinates alone.

        Every photo must exist; otherwise nothing is changed.
        """
        if not photo_ids:
            return Outcome(success=False, message="No photos given", error="ValidationFailure")

        def run(cursor: sqlite3.Cursor) -> Outcome:
            ids = self._require_photos(cursor, photo_ids)
            cursor.execute(
                f"UPDATE photos SET location_name = ? WHERE id IN ({_placeholders(ids)})",
                [location_name] + ids,
            )
            return Outcome.ok(f"Place name set on {len(ids)} photos", count=len(ids))

        return self._mutate("Bulk place name update", run)

    def _require_photos(self, cursor: sqlite3.Cursor, photo_ids: List[int]) -> List[int]:
        ids = list(dict.fromkeys(photo_ids))
        cursor.execute(f"SELECT COUNT(*) FROM photos WHERE id IN ({_placeholders(ids)})", ids)
        found = cursor.fetchone()[0]
        if found != len(ids):
            raise NotFound(f"{len(ids) - found} of {len(ids)} photos not found")
        return ids

    # ------------------------------------------------------------- collections

    def create_collection(self, name: str, description: Optional[str] = None) -> Outcome:
        def run(cursor: sqlite3.Cursor) -> Outcome:
            if not name or not name.strip():
                raise ValidationFailure("Collection name is required")
            cursor.execute(
                "INSERT INTO collections (name, description, created_date) VALUES (?, ?, ?)",
                (name.strip(), description, utc_now_iso()),
            )
            return Outcome.ok("Collection created", collection_id=cursor.lastrowid)

        return self._mutate(f"Creating collection {name!r}", run)

    def get_collection(self, collection_id: int) -> Optional[Collection]:
        rows = self._query("SELECT * FROM collections WHERE id = ?", (collection_id,))
        return Collection.from_row(rows[0]) if rows else None

    def get_collections(self) -> List[Collection]:
        return [Collection.from_row(row) for row in self._query("SELECT * FROM collections ORDER BY name")]

    def update_collection(self, collection_id: int, name: str, description: Optional[str] = None) -> Outcome:
        def run(cursor: sqlite3.Cursor) -> Outcome:
            if not name or not name.strip():
                raise ValidationFailure("Collection name is required")
            cursor.execute(
                "UPDATE collections SET name = ?, description = ? WHERE id = ?",
                (name.strip(), description, collection_id),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"Collection {collection_id} not found")
            return Outcome.ok("Collection updated", collection_id=collection_id)

        return self._mutate(f"Updating collection {collection_id}", run)

    def delete_collection(self, collection_id: int) -> Outcome:
        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute("DELETE FROM collections WHERE id = ?", (collection_id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Collection {collection_id} not found")
            return Outcome.ok("Collection deleted", collection_id=collection_id)

        return self._mutate(f"Deleting collection {collection_id}", run)

    def _require(self, cursor: sqlite3.Cursor, table: str, row_id: int, label: str) -> None:
        cursor.execute(f"SELECT 1 FROM {table} WHERE id = ?", (row_id,))
        if cursor.fetchone() is None:
            raise NotFound(f"{label} {row_id} not found")

    def add_photo_to_collection(self, photo_id: int, collection_id: int) -> Outcome:
        return self.add_photos_to_collection([photo_id], collection_id)

    def add_photos_to_collection(self, photo_ids: List[int], collection_id: int) -> Outcome:
        """Add photos to a collection in one transaction. Existing memberships are kept as they are."""
        if not photo_ids:
            return Outcome(success=False, message="No photos given", error="ValidationFailure")

        def run(cursor: sqlite3.Cursor) -> Outcome:
            self._require(cursor, "collections", collection_id, "Collection")
            added_date = utc_now_iso()
            added = 0
            for photo_id in photo_ids:
                self._require(cursor, "photos", photo_id, "Photo")
                cursor.execute(
                    "INSERT OR IGNORE INTO photo_collections (photo_id, collection_id, added_date) VALUES (?, ?, ?)",
                    (photo_id, collection_id, added_date),
                )
                added += cursor.rowcount
            return Outcome.ok(f"Added {added} photos to collection", count=added)

        return self._mutate(f"Adding photos to collection {collection_id}", run)

    def remove_photo_from_collection(self, photo_id: int, collection_id: int) -> Outcome:
        return self.remove_photos_from_collection([photo_id], collection_id)

    def remove_photos_from_collection(self, photo_ids: List[int], collection_id: int) -> Outcome:
        if not photo_ids:
            return Outcome(success=False, message="No photos given", error="ValidationFailure")

        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute(
                f"DELETE FROM photo_collections WHERE photo_id IN ({_placeholders(photo_ids)}) "
                f"AND collection_id = ?",
                list(photo_ids) + [collection_id],
            )
            return Outcome.ok(f"Removed {cursor.rowcount} photos from collection", count=cursor.rowcount)

        return self._mutate(f"Removing photos from collection {collection_id}", run)

    def get_collection_photos(self, collection_id: int) -> List[Photo]:
        rows = self._query("""
            SELECT p.* FROM photos p
            JOIN photo_collections pc ON p.id = pc.photo_id
            WHERE pc.collection_id = ?
            ORDER BY pc.added_date DESC, p.id DESC
        """, (collection_id,))
        return [Photo.from_row(row) for row in rows]

    def get_photo_collections(self, photo_id: int) -> List[Collection]:
        rows = self._query("""
            SELECT c.* FROM collections c
            JOIN photo_collections pc ON c.id = pc.collection_id
            WHERE pc.photo_id = ?
            ORDER BY c.name
        """, (photo_id,))
        return [Collection.from_row(row) for row in rows]

    # --------------------------------------------------------- custom metadata

    def set_custom_metadata(self, photo_id: int, key: str, value: Optional[str]) -> Outcome:
        """Set a key on a photo, replacing any previous value (delete, then insert)."""
        def run(cursor: sqlite3.Cursor) -> Outcome:
            if not key:
                raise ValidationFailure("Metadata key is required")
            self._require(cursor, "photos", photo_id, "Photo")
            cursor.execute("DELETE FROM custom_metadata WHERE photo_id = ? AND key = ?", (photo_id, key))
            cursor.execute(
                "INSERT INTO custom_metadata (photo_id, key, value) VALUES (?, ?, ?)",
                (photo_id, key, value),
            )
            return Outcome.ok("Metadata saved", photo_id=photo_id, key=key)

        return self._mutate(f"Setting metadata {key!r} on photo {photo_id}", run)

    def get_custom_metadata(self, photo_id: int) -> Dict[str, Optional[str]]:
        rows = self._query(
            "SELECT key, value FROM custom_metadata WHERE photo_id = ? ORDER BY key", (photo_id,)
        )
        return {row['key']: row['value'] for row in rows}

    def delete_custom_metadata(self, photo_id: int, key: str) -> Outcome:
        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute("DELETE FROM custom_metadata WHERE photo_id = ? AND key = ?", (photo_id, key))
            if cursor.rowcount == 0:
                raise NotFound(f"Photo {photo_id} has no metadata key {key!r}")
            return Outcome.ok("Metadata deleted", photo_id=photo_id, key=key)

        return self._mutate(f"Deleting metadata {key!r} on photo {photo_id}", run)

    # --------------------------------------------------------------- locations

    def _validate_location(self, values: Dict[str, Any]) -> None:
        if 'name' in values and (not values['name'] or not str(values['name']).strip()):
            raise ValidationFailure("Location name is required")
        if 'rating' in values:
            validate_rating(values['rating'])
        validate_category(values.get('category'))
        validate_coordinates(values.get('latitude'), values.get('longitude'))

    def create_location(self, location: Location) -> Outcome:
        def run(cursor: sqlite3.Cursor) -> Outcome:
            values = location.to_dict()
            self._validate_location(values)
            cursor.execute(
                "INSERT INTO locations (name, latitude, longitude, address, category, rating, notes, created_date) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (location.name.strip(), location.latitude, location.longitude, location.address,
                 location.category, location.rating, location.notes, utc_now_iso()),
            )
            return Outcome.ok("Location created", location_id=cursor.lastrowid)

        return self._mutate(f"Creating location {location.name!r}", run)

    def get_location(self, location_id: int) -> Optional[Location]:
        rows = self._query("SELECT * FROM locations WHERE id = ?", (location_id,))
        return Location.from_row(rows[0]) if rows else None

    def get_locations(self) -> List[Location]:
        return [Location.from_row(row) for row in self._query("SELECT * FROM locations ORDER BY name")]

    def update_location(self, location_id: int, updates: Dict[str, Any]) -> Outcome:
        fields = [key for key in updates if key in EDITABLE_LOCATION_FIELDS]
        if not fields:
            return Outcome(success=False, message="No editable fields given", error="ValidationFailure")

        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute("SELECT * FROM locations WHERE id = ?", (location_id,))
            row = cursor.fetchone()
            if row is None:
                raise NotFound(f"Location {location_id} not found")

            merged = {key: row[key] for key in EDITABLE_LOCATION_FIELDS}
            merged.update({field: updates[field] for field in fields})
            self._validate_location(merged)

            set_clause = ', '.join(f"{field} = ?" for field in fields)
            cursor.execute(
                f"UPDATE locations SET {set_clause} WHERE id = ?",
                [updates[field] for field in fields] + [location_id],
            )
            return Outcome.ok("Location updated", location_id=location_id)

        return self._mutate(f"Updating location {location_id}", run)

    def delete_location(self, location_id: int) -> Outcome:
        def run(cursor: sqlite3.Cursor) -> Outcome:
            cursor.execute("DELETE FROM locations WHERE id = ?", (location_id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Location {location_id} not found")
            return Outcome.ok("Location deleted", location_id=location_id)

        return self._mutate(f"Deleting location {location_id}", run)
