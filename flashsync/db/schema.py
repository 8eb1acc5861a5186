# SQL for the sync state database.

DB_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS file_hashes (
    path VARCHAR PRIMARY KEY,
    fingerprint VARCHAR NOT NULL
);

CREATE TABLE IF NOT EXISTS added_media (
    link VARCHAR PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS schema_fields (
    schema_name VARCHAR NOT NULL,
    position INTEGER NOT NULL,
    field_name VARCHAR NOT NULL,
    PRIMARY KEY (schema_name, position)
);
"""

STATE_TABLES = ("file_hashes", "added_media")
ALL_TABLES = STATE_TABLES + ("schema_fields",)
