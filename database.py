import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)

# Datasets written by the catalog, in save order.
DATASET_NAMES = ("catalog", "by_year", "by_subject", "by_author", "loans")


class StorageError(Exception):
    """Raised by a storage adapter when a dataset cannot be saved or loaded."""


def get_db_connection(db_file: str) -> sqlite3.Connection:
    """Opens a connection to the SQLite database file."""
    conn = sqlite3.connect(db_file)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(db_file: str) -> None:
    """Creates the dataset table if it does not exist yet."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS datasets (
                name TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
    finally:
        conn.close()


class SQLiteStorage:
    """Stores every dataset as one JSON row of the ``datasets`` table.

    Saves issued inside ``batch()`` share a single connection and are
    committed together, so a failed batch leaves nothing behind.
    """

    atomic_batches = True

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file
        try:
            create_tables(db_file)
        except sqlite3.Error as e:
            raise StorageError(f"Could not initialize database {db_file}: {e}") from e
        self._batch_conn: Optional[sqlite3.Connection] = None

    @contextmanager
    def batch(self) -> Iterator[None]:
        if self._batch_conn is not None:
            # Nested batches join the outer transaction
            yield
            return
        try:
            conn = get_db_connection(self.db_file)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database {self.db_file}: {e}") from e
        self._batch_conn = conn
        try:
            yield
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Batch write failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._batch_conn = None
            conn.close()

    def save(self, name: str, data: Any) -> None:
        payload = json.dumps(data, ensure_ascii=False, sort_keys=True)
        conn = self._batch_conn or get_db_connection(self.db_file)
        try:
            conn.execute(
                """
                INSERT INTO datasets (name, payload, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(name) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (name, payload),
            )
            if conn is not self._batch_conn:
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not save dataset '{name}': {e}") from e
        finally:
            if conn is not self._batch_conn:
                conn.close()

    def load(self, name: str) -> Optional[Any]:
        try:
            conn = get_db_connection(self.db_file)
            try:
                row = conn.execute(
                    "SELECT payload FROM datasets WHERE name = ?", (name,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Could not load dataset '{name}': {e}") from e
        if row is None:
            return None
        try:
            return json.loads(row["payload"])
        except json.JSONDecodeError as e:
            raise StorageError(f"Dataset '{name}' is corrupt: {e}") from e


class MemoryStorage:
    """In-process storage; every save lands immediately."""

    atomic_batches = False

    def __init__(self) -> None:
        self.datasets: Dict[str, str] = {}

    @contextmanager
    def batch(self) -> Iterator[None]:
        yield

    def save(self, name: str, data: Any) -> None:
        # Serialize so later in-memory mutation cannot leak into the stored copy
        self.datasets[name] = json.dumps(data, sort_keys=True)

    def load(self, name: str) -> Optional[Any]:
        raw = self.datasets.get(name)
        return None if raw is None else json.loads(raw)
