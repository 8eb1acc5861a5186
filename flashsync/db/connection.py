import duckdb
import logging
from pathlib import Path
from typing import Optional, Union

from ..exceptions import StateConnectionError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class StateConnection:
    """
    Lazily opened DuckDB connection to the sync state database.

    The database file and its directory are created on the first writable
    open. A read-only connection never creates anything, so callers check
    ``exists`` first and treat a missing database as empty state.
    """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Parameters:
            db_path (Union[str, Path]): State database file, or ":memory:" (case-insensitive).
            read_only (bool): Open the file without write access. Ignored for in-memory databases.
        """
        self.in_memory = str(db_path).lower() == MEMORY_DB
        self.path = Path(MEMORY_DB) if self.in_memory else Path(db_path).resolve()
        self.read_only = read_only and not self.in_memory
        self._connection: Optional[duckdb.DuckDBPyConnection] = None

    @property
    def exists(self) -> bool:
        return self.in_memory or self.path.exists()

    def open(self) -> duckdb.DuckDBPyConnection:
        """
        Return the open connection, connecting on first use.

        Raises:
            StateConnectionError: If the database cannot be created or opened, or a read-only open finds no database.
        """
        if self._connection is not None:
            return self._connection
        if not self.exists:
            if self.read_only:
                raise StateConnectionError(
                    f"No sync state has been recorded at {self.path} yet."
                )
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StateConnectionError(
                    f"Cannot create state directory {self.path.parent}: {e}",
                    original_exception=e,
                ) from e
            logger.info(f"Creating sync state database at {self.path}")
        try:
            self._connection = duckdb.connect(
                database=str(self.path), read_only=self.read_only
            )
        except duckdb.Error as e:
            raise StateConnectionError(
                f"Failed to open state database {self.path}: {e}",
                original_exception=e,
            ) from e
        logger.debug(f"Opened state database {self.path} (read_only={self.read_only})")
        return self._connection

    def close(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        except duckdb.Error as e:
            logger.error(f"Error closing state database {self.path}: {e}")
        finally:
            self._connection = None
