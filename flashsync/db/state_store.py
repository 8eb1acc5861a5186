"""
DuckDB persistence of sync state and the cached schema registry.
"""

import duckdb
import logging
from pathlib import Path
from typing import Callable, List, Tuple, Union

from . import schema
from .connection import StateConnection
from .schema_manager import SchemaManager
from ..exceptions import StateStoreError
from ..models import SchemaRegistry, SyncState

logger = logging.getLogger(__name__)


class SyncStateStore:
    """
    Loads and atomically saves the fingerprints and uploaded media of the
    last completed pass. Intended for use as a context manager.

    Opened read-only, a database that was never written reads as empty state
    and is not created.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        self._connection = StateConnection(db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._connection)

    def __enter__(self) -> "SyncStateStore":
        if self._connection.read_only:
            if self._connection.exists:
                self._connection.open()
        else:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_connection()

    def close_connection(self) -> None:
        self._connection.close()

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        self._schema_manager.initialize_schema(
            force_recreate_tables=force_recreate_tables
        )

    # --- Sync state ---

    def _is_unwritten(self) -> bool:
        return self._connection.read_only and not self._connection.exists

    def load(self) -> SyncState:
        if self._is_unwritten():
            return SyncState()
        conn = self._connection.open()
        try:
            fingerprints = dict(
                conn.execute("SELECT path, fingerprint FROM file_hashes").fetchall()
            )
            media = {
                row[0]
                for row in conn.execute("SELECT link FROM added_media").fetchall()
            }
        except duckdb.Error as e:
            raise StateStoreError(
                f"Could not load sync state: {e}", original_exception=e
            ) from e
        return SyncState(fingerprints=fingerprints, uploaded_media=media)

    def save(self, state: SyncState) -> None:
        """Replace the stored state with ``state`` in a single transaction."""

        def _write(cursor: duckdb.DuckDBPyConnection) -> None:
            cursor.execute("DELETE FROM file_hashes;")
            cursor.execute("DELETE FROM added_media;")
            if state.fingerprints:
                cursor.executemany(
                    "INSERT INTO file_hashes (path, fingerprint) VALUES (?, ?);",
                    sorted(state.fingerprints.items()),
                )
            if state.uploaded_media:
                cursor.executemany(
                    "INSERT INTO added_media (link) VALUES (?);",
                    [(link,) for link in sorted(state.uploaded_media)],
                )

        self._run_transaction(_write, "save sync state")
        logger.info(
            f"Saved sync state: {len(state.fingerprints)} fingerprints, "
            f"{len(state.uploaded_media)} media files"
        )

    def reset(self) -> None:
        """Forget every fingerprint and uploaded media file."""

        def _clear(cursor: duckdb.DuckDBPyConnection) -> None:
            for table in schema.STATE_TABLES:
                cursor.execute(f"DELETE FROM {table};")

        self._run_transaction(_clear, "reset sync state")

    # --- Schema registry cache ---

    def load_registry(self) -> SchemaRegistry:
        if self._is_unwritten():
            return {}
        conn = self._connection.open()
        try:
            rows = conn.execute(
                "SELECT schema_name, field_name FROM schema_fields "
                "ORDER BY schema_name, position"
            ).fetchall()
        except duckdb.Error as e:
            raise StateStoreError(
                f"Could not load schema registry: {e}", original_exception=e
            ) from e
        registry: SchemaRegistry = {}
        for schema_name, field_name in rows:
            registry.setdefault(schema_name, []).append(field_name)
        return registry

    def save_registry(self, registry: SchemaRegistry) -> None:
        rows: List[Tuple[str, int, str]] = [
            (schema_name, position, field_name)
            for schema_name, fields in sorted(registry.items())
            for position, field_name in enumerate(fields)
        ]

        def _write(cursor: duckdb.DuckDBPyConnection) -> None:
            cursor.execute("DELETE FROM schema_fields;")
            if rows:
                cursor.executemany(
                    "INSERT INTO schema_fields (schema_name, position, field_name) "
                    "VALUES (?, ?, ?);",
                    rows,
                )

        self._run_transaction(_write, "save schema registry")

    def _run_transaction(
        self, work: Callable[[duckdb.DuckDBPyConnection], None], label: str
    ) -> None:
        if self._connection.read_only:
            raise StateStoreError(f"Cannot {label} in read-only mode.")
        conn = self._connection.open()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                work(cursor)
                cursor.commit()
            except duckdb.Error as e:
                logger.error(f"Failed to {label}: {e}")
                try:
                    cursor.rollback()
                    logger.info(f"Transaction rolled back ({label}).")
                except duckdb.Error as rb_err:
                    logger.error(f"Failed to rollback transaction: {rb_err}")
                raise StateStoreError(
                    f"Failed to {label}: {e}", original_exception=e
                ) from e
