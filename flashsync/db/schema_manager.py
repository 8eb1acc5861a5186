import duckdb
import logging

from . import schema
from .connection import StateConnection
from ..exceptions import SchemaInitializationError, StateConnectionError

logger = logging.getLogger(__name__)


class SchemaManager:
    """Creates and recreates the sync state tables."""

    def __init__(self, connection: StateConnection):
        self._connection = connection

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        """
        Create the state tables in one transaction. A read-only database is
        left as it is. ``force_recreate_tables`` drops all stored state
        first.
        """
        if self._connection.read_only:
            if force_recreate_tables:
                raise StateConnectionError(
                    "Cannot recreate state tables in read-only mode."
                )
            return

        conn = self._connection.open()
        with conn.cursor() as cursor:
            try:
                cursor.begin()
                if force_recreate_tables:
                    logger.warning(
                        f"Dropping all sync state in {self._connection.path}"
                    )
                    for table in schema.ALL_TABLES:
                        cursor.execute(f"DROP TABLE IF EXISTS {table};")
                cursor.execute(schema.DB_SCHEMA_SQL)
                cursor.commit()
            except duckdb.Error as e:
                logger.error(f"Could not create state tables: {e}")
                try:
                    cursor.rollback()
                except duckdb.Error as rb_err:
                    logger.error(f"Failed to rollback transaction: {rb_err}")
                raise SchemaInitializationError(
                    f"Failed to initialize schema: {e}", original_exception=e
                ) from e
        logger.debug(f"State tables ready in {self._connection.path}")
