"""
HarmonyVault - Collection Store

This file handles:
- SQLite database (one table per collection)
- Schema initialization gated by a version check
- Keyed put / get / full-scan reads per collection

Database structure:
- userProfile: the single profile record (key: fixed id "main")
- symptomLogs, medLogs, progressLogs: log records (key: timestamp in ms)
- cycles: cycle records (key: auto-assigned sequential id)

Every table stores the full record as JSON next to its key. A put replaces
the whole record at that key; there is no field-level merge.
"""

import asyncio
import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .errors import StorageFault

logger = logging.getLogger(__name__)


# =============================================================================
# COLLECTIONS
# =============================================================================

PROFILE = "userProfile"
SYMPTOMS = "symptomLogs"
MEDICATIONS = "medLogs"
CYCLES = "cycles"
PROGRESS = "progressLogs"

# Key of the one and only profile record
PROFILE_ID = "main"

# Bumped from 1 when progressLogs was added. Upgrades only create what is missing.
SCHEMA_VERSION = 2

# SQLite INTEGER keys are signed 64-bit
SQLITE_INT_MIN = -(2**63)
SQLITE_INT_MAX = 2**63 - 1


@dataclass(frozen=True)
class Collection:
    """Key policy of one collection."""

    name: str
    key_path: str
    key_type: type = int
    auto_increment: bool = False
    fixed_key: Optional[str] = None

    def ddl(self) -> str:
        if self.key_type is str:
            key_column = "key TEXT PRIMARY KEY"
        elif self.auto_increment:
            key_column = "key INTEGER PRIMARY KEY AUTOINCREMENT"
        else:
            key_column = "key INTEGER PRIMARY KEY"
        return f'CREATE TABLE IF NOT EXISTS "{self.name}" ({key_column}, data TEXT NOT NULL)'

    def key_of(self, record: Dict[str, Any]) -> Any:
        """
        Extract the key from a record, enforcing the collection's key policy.

        Returns None only for auto-increment collections without a key.
        """
        key = record.get(self.key_path)
        if key is None:
            if self.auto_increment:
                return None
            raise ValueError(f"Record for {self.name} is missing its key field '{self.key_path}'")
        if self.key_type is int and (isinstance(key, bool) or not isinstance(key, int)):
            raise ValueError(f"Key '{self.key_path}' of {self.name} must be an integer, got {key!r}")
        if self.key_type is str and (not isinstance(key, str) or not key):
            raise ValueError(f"Key '{self.key_path}' of {self.name} must be a non-empty string")
        if self.fixed_key is not None and key != self.fixed_key:
            raise ValueError(f"Key '{self.key_path}' of {self.name} must be {self.fixed_key!r}, got {key!r}")
        if self.key_type is int and not SQLITE_INT_MIN <= key <= SQLITE_INT_MAX:
            raise ValueError(f"Key '{self.key_path}' of {self.name} is outside the 64-bit integer range")
        return key


COLLECTIONS: Dict[str, Collection] = {
    c.name: c for c in (
        Collection(PROFILE, "id", key_type=str, fixed_key=PROFILE_ID),
        Collection(SYMPTOMS, "timestamp"),
        Collection(MEDICATIONS, "timestamp"),
        Collection(CYCLES, "id", auto_increment=True),
        Collection(PROGRESS, "timestamp"),
    )
}

# Per-connection PRAGMAs: every commit is durable before put() returns
PRAGMAS = """
PRAGMA synchronous=FULL;
PRAGMA secure_delete=ON;
"""


# =============================================================================
# STORE CLASS
# =============================================================================

class Store:
    """
    Keyed-collection store over one SQLite file.

    Usage:
        store = Store("harmony.db")
        await store.open()

        await store.put(SYMPTOMS, {"timestamp": 1700000000000, "symptom": "Headache"})
        cycle_id = await store.put(CYCLES, {"start": 1700000000000, "end": None})

        logs = await store.get_all(SYMPTOMS)   # sorted by key

    Concurrency:
        Operations on the same collection are serialized in issue order by a
        per-collection lock. Different collections are independent. Blocking
        SQLite work runs in a worker thread with its own connection.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000):
        """
        Create a store handle (doesn't open it yet).

        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long a connection waits on a locked database
        """
        if db_path == ":memory:":
            raise ValueError("Store needs a file path; each operation opens its own connection")
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self._ready = False
        self._locks: Dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in COLLECTIONS}

    async def __aenter__(self) -> "Store":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def open(self) -> None:
        """
        Create or upgrade the schema, then mark the store usable.

        Raises:
            StorageFault: If the database can't be opened, was written by a
                newer schema, or setup fails. The store stays unusable.
        """
        self._ready = False
        previous = await self._run(self._open_sync)
        if previous < SCHEMA_VERSION:
            logger.info("Store %s upgraded from schema %d to %d", self.db_path, previous, SCHEMA_VERSION)
        self._ready = True
        logger.info("Store opened: %s", self.db_path)

    def close(self) -> None:
        """Mark the store unusable. Connections are per operation, so nothing else to release."""
        self._ready = False

    @property
    def is_open(self) -> bool:
        return self._ready

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def put(self, collection: str, record: Dict[str, Any]) -> Any:
        """
        Write a record at its key, replacing any record already there.

        For the cycles collection a record without an id gets the next
        sequential id, which is also stored in the record.

        Args:
            collection: Collection name (e.g. SYMPTOMS)
            record: JSON-compatible dict containing the key field

        Returns:
            The key the record was written at

        Raises:
            KeyError: Unknown collection
            ValueError: Missing or invalid key
            StorageFault: Write not durably committed
        """
        coll = self._collection(collection)
        self._require_open()
        key = coll.key_of(record)
        record = dict(record)
        data = json.dumps(record)

        async with self._locks[coll.name]:
            key = await self._run(self._put_sync, coll, key, record, data)
        logger.debug("put %s key=%r", coll.name, key)
        return key

    async def get(self, collection: str, key: Any) -> Optional[Dict[str, Any]]:
        """Return the record at key, or None."""
        coll = self._collection(collection)
        self._require_open()
        async with self._locks[coll.name]:
            return await self._run(self._get_sync, coll, key)

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        """Return every committed record of a collection, ascending by key."""
        coll = self._collection(collection)
        self._require_open()
        async with self._locks[coll.name]:
            return await self._run(self._get_all_sync, coll)

    async def count(self, collection: str) -> int:
        coll = self._collection(collection)
        self._require_open()
        async with self._locks[coll.name]:
            return await self._run(self._count_sync, coll)

    async def read_snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Read all collections inside one SQLite read transaction.

        Holds every collection lock while reading, so no put issued through
        this handle can land between two collections.
        """
        self._require_open()
        names = sorted(COLLECTIONS)
        for name in names:
            await self._locks[name].acquire()
        try:
            return await self._run(self._snapshot_sync)
        finally:
            for name in reversed(names):
                self._locks[name].release()

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _collection(self, name: str) -> Collection:
        try:
            return COLLECTIONS[name]
        except KeyError:
            raise KeyError(f"Unknown collection: {name}") from None

    def _require_open(self) -> None:
        """Check that open() succeeded."""
        if not self._ready:
            raise StorageFault("Store is not initialized. Call open() first.")

    async def _run(self, func, *args):
        """Run blocking SQLite work off the event loop, mapping failures to StorageFault."""
        try:
            return await asyncio.to_thread(func, *args)
        except (sqlite3.Error, OSError) as e:
            raise StorageFault(f"Storage operation failed: {e}") from e

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.executescript(PRAGMAS)
            yield conn
        finally:
            conn.close()

    def _open_sync(self) -> int:
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            if version > SCHEMA_VERSION:
                raise StorageFault(
                    f"Database schema version {version} is newer than supported version {SCHEMA_VERSION}"
                )
            if version < SCHEMA_VERSION:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for coll in COLLECTIONS.values():
                        conn.execute(coll.ddl())
                    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        return version

    def _put_sync(self, coll: Collection, key: Any, record: Dict[str, Any], data: str) -> Any:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if key is None:
                    cursor = conn.execute(f'INSERT INTO "{coll.name}" (data) VALUES (?)', (data,))
                    key = cursor.lastrowid
                    record[coll.key_path] = key
                    conn.execute(
                        f'UPDATE "{coll.name}" SET data = ? WHERE key = ?',
                        (json.dumps(record), key),
                    )
                else:
                    conn.execute(
                        f'INSERT OR REPLACE INTO "{coll.name}" (key, data) VALUES (?, ?)',
                        (key, data),
                    )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return key

    def _get_sync(self, coll: Collection, key: Any) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(f'SELECT data FROM "{coll.name}" WHERE key = ?', (key,)).fetchone()
        return json.loads(row["data"]) if row else None

    def _get_all_sync(self, coll: Collection) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(f'SELECT data FROM "{coll.name}" ORDER BY key').fetchall()
        return [json.loads(row["data"]) for row in rows]

    def _count_sync(self, coll: Collection) -> int:
        with self._connect() as conn:
            return conn.execute(f'SELECT COUNT(*) FROM "{coll.name}"').fetchone()[0]

    def _snapshot_sync(self) -> Dict[str, List[Dict[str, Any]]]:
        snapshot = {}
        with self._connect() as conn:
            conn.execute("BEGIN")
            try:
                for coll in COLLECTIONS.values():
                    rows = conn.execute(f'SELECT data FROM "{coll.name}" ORDER BY key').fetchall()
                    snapshot[coll.name] = [json.loads(row["data"]) for row in rows]
            finally:
                conn.execute("COMMIT")
        return snapshot
