"""SQLite schema for the FTS5 document index.

The schema uses:
- documents: Base table, one row per indexed file, keyed by unique path
- documents_fts: FTS5 virtual table over file_name and content
  (external content, kept in sync by triggers)

A document is always replaced wholesale: the row for a path is deleted
and a new row inserted, so the FTS triggers never see a partial update.
"""

import logging
import os
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version for migrations
SCHEMA_VERSION = 1

# Default PRAGMAs for all connections (centralized to avoid drift)
DEFAULT_PRAGMAS = {
    "journal_mode": "WAL",  # Readers don't block the writer
    "synchronous": "NORMAL",
    "busy_timeout": 5000,  # Wait up to 5s for locks
}

DELETE_DOCUMENT_SQL = "DELETE FROM documents WHERE path = ?"

INSERT_DOCUMENT_SQL = """INSERT INTO documents
    (path, file_name, extension, content, size, modified, indexed_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)"""

# Column order of documents_fts (used by highlight())
FTS_COLUMNS = ("file_name", "content")


def create_connection(db_path: Path) -> sqlite3.Connection:
    """
    Create a database connection with standard configuration.

    Used for both the single writer connection and every read view so
    PRAGMA settings cannot drift between them.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        Configured connection with WAL mode, busy timeout and Row factory
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    for pragma, value in DEFAULT_PRAGMAS.items():
        conn.execute(f"PRAGMA {pragma}={value}")

    return conn


def get_schema_sql() -> str:
    """Return the complete schema creation SQL."""
    return """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- One row per indexed file
CREATE TABLE IF NOT EXISTS documents (
    rowid INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,       -- Absolute file path (document key)
    file_name TEXT NOT NULL,
    extension TEXT NOT NULL,
    content TEXT,
    size INTEGER DEFAULT 0,
    modified REAL,                   -- File mtime, epoch seconds
    indexed_at REAL                  -- Wall clock at indexing
);

CREATE INDEX IF NOT EXISTS idx_documents_extension
    ON documents(extension);

-- FTS5 index (external content - shares storage with documents table)
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    file_name,
    content,
    content='documents',
    content_rowid='rowid',
    tokenize='porter unicode61'
);

-- Triggers to keep FTS index in sync with documents table
-- (documents are replaced by delete + insert, never updated in place)
CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
    INSERT INTO documents_fts(rowid, file_name, content)
    VALUES (new.rowid, new.file_name, new.content);
END;

CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, file_name, content)
    VALUES('delete', old.rowid, old.file_name, old.content);
END;
"""


def init_database(db_path: Path) -> sqlite3.Connection:
    """
    Initialize the database with schema, creating parent directories if needed.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        Open database connection with check_same_thread=False

    Security:
        Sets file permissions to 0600 (owner read/write only) on new
        databases, since the index holds the full text of the files.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    is_new_db = not db_path.exists()

    conn = create_connection(db_path)

    # Must be done after sqlite3.connect() creates the file
    if is_new_db:
        try:
            os.chmod(db_path, 0o600)
            logger.debug("Set secure permissions (0600) on %s", db_path)
        except OSError as e:
            logger.warning(
                "Could not set secure permissions on %s: %s", db_path, e
            )

    sql = "SELECT name FROM sqlite_master "
    sql += "WHERE type='table' AND name='schema_version'"
    cursor = conn.execute(sql)
    if cursor.fetchone() is None:
        logger.info(
            "Creating fresh database schema (version %d)", SCHEMA_VERSION
        )
        conn.executescript(get_schema_sql())
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        conn.commit()
    else:
        cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
        row = cursor.fetchone()
        current_version = row[0] if row else 0

        if current_version != SCHEMA_VERSION:
            logger.warning(
                "Index schema version %d does not match %d, recreating. "
                "Run 'searchease rebuild' to re-index.",
                current_version,
                SCHEMA_VERSION,
            )
            _reset_schema(conn)

    return conn


def _reset_schema(conn: sqlite3.Connection) -> None:
    """Drop and recreate all tables at the current schema version."""
    conn.executescript("""
        DROP TABLE IF EXISTS documents_fts;
        DROP TABLE IF EXISTS documents;
        DROP TABLE IF EXISTS schema_version;
    """)
    conn.executescript(get_schema_sql())
    conn.execute(
        "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
    )
    conn.commit()


def optimize_fts_index(conn: sqlite3.Connection) -> None:
    """
    Optimize the FTS index for better query performance.

    Call after a sweep that changed many documents.
    """
    conn.execute("INSERT INTO documents_fts(documents_fts) VALUES('optimize')")
    conn.commit()
