"""SQLite-backed content store for submissions and gallery items.

The store is the only writer of persisted state.  It exposes a small keyed
collection API (``put``/``get``/``find``/``update``) over two tables:

- ``submissions``: locally uploaded artwork and its moderation status
- ``gallery_items``: publicly visible artwork from either origin

``gallery_items.external_id`` carries a UNIQUE constraint.  A second write of
the same external identifier fails inside SQLite and surfaces as
:class:`~gallerysync.core.errors.DuplicateKeyError`; nothing in the
application checks for existence before inserting.

Each call opens its own connection, so the store can be shared between the
request handlers and the ingestion task.  Multi-step writes go through
:meth:`ContentStore.atomic`, which commits or rolls back as one unit.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from gallerysync.core.errors import DuplicateKeyError, NotFoundError, StoreError

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    """Logical collections held by the store (one table each)."""

    SUBMISSIONS = "submissions"
    GALLERY = "gallery_items"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Origin(str, Enum):
    EXTERNAL = "external"
    LOCAL = "local"


def to_timestamp(moment: datetime) -> str:
    """Render a datetime as the ISO-8601 UTC text stored in timestamp columns."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now() -> str:
    return to_timestamp(datetime.now(timezone.utc))


_COLUMNS: dict[Collection, tuple[str, ...]] = {
    Collection.SUBMISSIONS: (
        "artist_name",
        "artist_social",
        "description",
        "files",
        "created_at",
        "status",
        "reviewed_at",
    ),
    Collection.GALLERY: (
        "image_url",
        "artist_name",
        "artist_social",
        "description",
        "display_at",
        "origin",
        "external_id",
        "submission_id",
        "media_group_id",
        "created_at",
    ),
}

# Columns stored as JSON text.
_JSON_COLUMNS = {"files"}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    artist_name TEXT NOT NULL,
    artist_social TEXT,
    description TEXT,
    files TEXT NOT NULL,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'approved', 'rejected')),
    reviewed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_submissions_status
ON submissions(status, created_at DESC);

CREATE TABLE IF NOT EXISTS gallery_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    image_url TEXT NOT NULL,
    artist_name TEXT NOT NULL,
    artist_social TEXT,
    description TEXT,
    display_at TEXT NOT NULL,
    origin TEXT NOT NULL CHECK (origin IN ('external', 'local')),
    external_id TEXT UNIQUE,
    submission_id INTEGER REFERENCES submissions(id),
    media_group_id TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_gallery_items_display_at
ON gallery_items(display_at DESC);
"""


def _check_columns(collection: Collection, names) -> None:
    unknown = set(names) - set(_COLUMNS[collection])
    if unknown:
        raise ValueError(f"Unknown {collection.value} fields: {sorted(unknown)}")


def _encode(record: dict[str, Any]) -> dict[str, Any]:
    return {
        key: json.dumps(value) if key in _JSON_COLUMNS else value
        for key, value in record.items()
    }


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    record = dict(row)
    for key in _JSON_COLUMNS & record.keys():
        record[key] = json.loads(record[key]) if record[key] else []
    return record


@contextmanager
def _translate_errors(operation: str, collection: Collection) -> Iterator[None]:
    """Re-raise SQLite failures as :class:`StoreError` with context logged."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error(f"Store {operation} on {collection.value} failed: {e}")
        raise StoreError(f"{operation} on {collection.value} failed") from e


class Transaction:
    """Store operations bound to one open SQLite transaction.

    Obtained from :meth:`ContentStore.atomic`; never constructed directly.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def put(self, collection: Collection, record: dict[str, Any]) -> int:
        """Insert a record and return its store-assigned id.

        Raises:
            DuplicateKeyError: The gallery record's ``external_id`` exists.
            StoreError: Any other persistence failure.
        """
        _check_columns(collection, record)
        encoded = _encode(record)
        columns = ", ".join(encoded)
        placeholders = ", ".join("?" for _ in encoded)
        sql = f"INSERT INTO {collection.value} ({columns}) VALUES ({placeholders})"

        try:
            cursor = self._conn.execute(sql, tuple(encoded.values()))
        except sqlite3.IntegrityError as e:
            if "external_id" in str(e):
                raise DuplicateKeyError(record.get("external_id")) from e
            logger.error(f"Store put on {collection.value} failed: {e}")
            raise StoreError(f"put on {collection.value} failed") from e
        except sqlite3.Error as e:
            logger.error(f"Store put on {collection.value} failed: {e}")
            raise StoreError(f"put on {collection.value} failed") from e

        return cursor.lastrowid

    def get(self, collection: Collection, record_id: int) -> dict[str, Any]:
        """Return one record by id.

        Raises:
            NotFoundError: No record has this id.
        """
        with _translate_errors("get", collection):
            row = self._conn.execute(
                f"SELECT * FROM {collection.value} WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"{collection.value} record {record_id} not found")
        return _decode(row)

    def find(
        self,
        collection: Collection,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
        **equals: Any,
    ) -> list[dict[str, Any]]:
        """Return records matching ``equals`` (and ``predicate``) in id order."""
        _check_columns(collection, equals)
        sql = f"SELECT * FROM {collection.value}"
        if equals:
            sql += " WHERE " + " AND ".join(f"{key} = ?" for key in equals)
        sql += " ORDER BY id"

        with _translate_errors("find", collection):
            rows = self._conn.execute(sql, tuple(equals.values())).fetchall()

        records = [_decode(row) for row in rows]
        if predicate is not None:
            records = [record for record in records if predicate(record)]
        return records

    def update(
        self,
        collection: Collection,
        record_id: int,
        patch: dict[str, Any],
        only_if: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Apply ``patch`` to one record, optionally as a compare-and-set.

        Args:
            collection: Target collection.
            record_id: Record to modify.
            patch: Field values to write.
            only_if: Field values the stored record must currently have.  The
                check and the write happen in a single UPDATE statement.

        Returns:
            The updated record, or ``None`` when ``only_if`` did not match.

        Raises:
            NotFoundError: No record has this id.
        """
        only_if = only_if or {}
        _check_columns(collection, patch)
        _check_columns(collection, only_if)

        encoded = _encode(patch)
        assignments = ", ".join(f"{key} = ?" for key in encoded)
        conditions = "".join(f" AND {key} = ?" for key in only_if)
        sql = f"UPDATE {collection.value} SET {assignments} WHERE id = ?{conditions}"
        params = (*encoded.values(), record_id, *only_if.values())

        with _translate_errors("update", collection):
            cursor = self._conn.execute(sql, params)

        if cursor.rowcount == 0:
            # Distinguish "missing" from "precondition failed".
            self.get(collection, record_id)
            return None

        return self.get(collection, record_id)

    def exists(self, collection: Collection, **equals: Any) -> bool:
        """Return whether any record matches ``equals``."""
        _check_columns(collection, equals)
        where = " AND ".join(f"{key} = ?" for key in equals) or "1 = 1"
        with _translate_errors("exists", collection):
            row = self._conn.execute(
                f"SELECT 1 FROM {collection.value} WHERE {where} LIMIT 1",
                tuple(equals.values()),
            ).fetchone()
        return row is not None


class ContentStore:
    """Durable keyed storage for submissions and gallery items.

    Every public method runs in its own short transaction.  Use
    :meth:`atomic` to group several writes.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0):
        """Open (and if needed create) the SQLite database.

        Args:
            db_path: Path to the SQLite database file.
            timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout
        self._initialize_db()
        logger.info(f"Initialized content store at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialize_db(self) -> None:
        """Create the schema if it doesn't exist."""
        try:
            conn = self._connect()
            try:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.executescript(_SCHEMA)
                self._migrate(conn)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Error initializing content store {self.db_path}: {e}")
            raise StoreError(f"Cannot initialize store at {self.db_path}") from e

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Bring databases created by earlier versions up to the current schema."""
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(gallery_items)")}
        if "media_group_id" not in columns:
            logger.info(f"Adding media_group_id column to {self.db_path}")
            conn.execute("ALTER TABLE gallery_items ADD COLUMN media_group_id TEXT")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_gallery_items_media_group "
            "ON gallery_items(media_group_id)"
        )

    @contextmanager
    def atomic(self, immediate: bool = False) -> Iterator[Transaction]:
        """Run several operations as one transaction.

        Commits when the block exits normally and rolls back when it raises,
        re-raising the original exception.  With ``immediate`` the write lock
        is taken up front, so reads inside the block see no concurrent writes.

        Example::

            with store.atomic() as tx:
                tx.update(Collection.SUBMISSIONS, 7, {"status": "approved"})
                tx.put(Collection.GALLERY, {...})
        """
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            logger.error(f"Cannot open content store {self.db_path}: {e}")
            raise StoreError("Cannot open content store") from e

        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield Transaction(conn)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Transaction on {self.db_path} failed: {e}")
            raise StoreError("Transaction failed") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def put(self, collection: Collection, record: dict[str, Any]) -> int:
        """Insert a record; see :meth:`Transaction.put`."""
        with self.atomic() as tx:
            return tx.put(collection, record)

    def get(self, collection: Collection, record_id: int) -> dict[str, Any]:
        """Fetch a record; see :meth:`Transaction.get`."""
        with self.atomic() as tx:
            return tx.get(collection, record_id)

    def find(
        self,
        collection: Collection,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
        **equals: Any,
    ) -> list[dict[str, Any]]:
        """Query records; see :meth:`Transaction.find`."""
        with self.atomic() as tx:
            return tx.find(collection, predicate, **equals)

    def update(
        self,
        collection: Collection,
        record_id: int,
        patch: dict[str, Any],
        only_if: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Modify a record; see :meth:`Transaction.update`."""
        with self.atomic() as tx:
            return tx.update(collection, record_id, patch, only_if=only_if)

    def exists(self, collection: Collection, **equals: Any) -> bool:
        """Check for a matching record; see :meth:`Transaction.exists`."""
        with self.atomic() as tx:
            return tx.exists(collection, **equals)
