"""Index engine adapter over SQLite FTS5.

Provides:
- IndexEngine: the single, process-wide handle to the index database
- ReadView: an independently opened connection used by searches
- IndexedDocument / Hit: the document and query-hit records

Thread Safety:
- All mutations go through one writer connection guarded by a lock
- write() gives an exclusive section, so delete + add + commit of a
  document is observed as one unit by every reader
- Readers open their own connection (WAL mode), so each new ReadView
  sees everything committed before it was opened
"""

from __future__ import annotations

import logging
import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .schema import (
    DELETE_DOCUMENT_SQL,
    FTS_COLUMNS,
    INSERT_DOCUMENT_SQL,
    create_connection,
    init_database,
    optimize_fts_index,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

# Markup wrapped around matched terms in highlighted fragments
HIGHLIGHT_OPEN = "<b>"
HIGHLIGHT_CLOSE = "</b>"

# Internal sentinels handed to FTS5 highlight() so markup already present
# in a document can't be mistaken for a match
_MATCH_START = "\x02"
_MATCH_END = "\x03"
_MATCH_SPLIT = re.compile(f"({_MATCH_START}.*?{_MATCH_END})", re.DOTALL)
_WORD_SPLIT = re.compile(r"(\s+)")

# BM25 column weights (file_name, content)
BM25_WEIGHTS = (2.0, 1.0)


@dataclass
class IndexedDocument:
    """A file as stored in the index (replaced wholesale on reindex)."""

    path: str
    file_name: str
    extension: str
    content: str
    size: int
    modified: float
    indexed_at: float


@dataclass
class Hit:
    """A ranked query hit."""

    doc_id: int
    path: str
    score: float


class ReadView:
    """A read-only view of the index on its own connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> ReadView:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class IndexEngine:
    """
    Stores, deletes and queries documents keyed by absolute file path.

    Usage:
        engine = IndexEngine(db_path)
        with engine.write():
            engine.add_or_replace(doc)
            engine.commit()
        with engine.open_reader() as reader:
            hits = engine.search(reader, "index OR build", 10)
    """

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()
        self._write_lock = threading.RLock()

    @property
    def db_path(self) -> Path:
        """Get the database file path."""
        return self._db_path

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create the writer connection (thread-safe)."""
        with self._conn_lock:
            if self._conn is None:
                self._conn = init_database(self._db_path)
            return self._conn

    def close(self) -> None:
        """Close the writer connection."""
        with self._write_lock, self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @contextmanager
    def write(self) -> Iterator[IndexEngine]:
        """
        Hold the exclusive write section.

        Uncommitted changes are rolled back if the block raises.
        """
        with self._write_lock:
            conn = self._get_conn()
            try:
                yield self
            except BaseException:
                conn.rollback()
                raise

    def add_or_replace(self, document: IndexedDocument) -> None:
        """Delete any document for the path, then add this one."""
        with self._write_lock:
            conn = self._get_conn()
            conn.execute(DELETE_DOCUMENT_SQL, (document.path,))
            conn.execute(
                INSERT_DOCUMENT_SQL,
                (
                    document.path,
                    document.file_name,
                    document.extension,
                    document.content,
                    document.size,
                    document.modified,
                    document.indexed_at,
                ),
            )

    def delete(self, path: str) -> bool:
        """
        Delete the document for a path.

        Returns:
            True if a document was deleted
        """
        with self._write_lock:
            cursor = self._get_conn().execute(DELETE_DOCUMENT_SQL, (path,))
            return cursor.rowcount > 0

    def delete_under(self, directory: str) -> int:
        """
        Delete every document whose path lies below a directory.

        Returns:
            Number of documents deleted
        """
        prefix = directory.rstrip(os.sep) + os.sep
        with self._write_lock:
            cursor = self._get_conn().execute(
                "DELETE FROM documents WHERE substr(path, 1, ?) = ?",
                (len(prefix), prefix),
            )
            return cursor.rowcount

    def delete_all(self) -> None:
        """Delete every document."""
        with self._write_lock:
            self._get_conn().execute("DELETE FROM documents")

    def commit(self) -> None:
        with self._write_lock:
            self._get_conn().commit()

    def optimize(self) -> None:
        """Merge FTS segments after a large batch of changes."""
        with self._write_lock:
            optimize_fts_index(self._get_conn())

    # ─────────────────────────────────────────────────────────────────
    # Inventory
    # ─────────────────────────────────────────────────────────────────

    def indexed_paths(self) -> set[str]:
        """Get the paths of all committed documents."""
        with self.open_reader() as reader:
            cursor = reader.conn.execute("SELECT path FROM documents")
            return {row[0] for row in cursor}

    def has_document(self, path: str) -> bool:
        with self.open_reader() as reader:
            row = reader.conn.execute(
                "SELECT 1 FROM documents WHERE path = ?", (path,)
            ).fetchone()
        return row is not None

    def count(self) -> int:
        """Get the number of committed documents."""
        with self.open_reader() as reader:
            return reader.conn.execute(
                "SELECT COUNT(*) FROM documents"
            ).fetchone()[0]

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    def open_reader(self) -> ReadView:
        """Open a fresh read view of the committed index."""
        # Make sure the schema exists before the first reader connects
        self._get_conn()
        conn = create_connection(self._db_path)
        # One snapshot for the lifetime of the view
        conn.execute("BEGIN")
        return ReadView(conn)

    def search(self, reader: ReadView, match: str, limit: int) -> list[Hit]:
        """
        Run an FTS5 MATCH query.

        Args:
            reader: Read view to query through
            match: FTS5 query expression
            limit: Maximum number of hits

        Returns:
            Hits ordered by descending BM25 score
        """
        # bm25() is negative (more negative = better), negate it
        sql = f"""
            SELECT d.rowid, d.path,
                   -bm25(documents_fts, {BM25_WEIGHTS[0]}, {BM25_WEIGHTS[1]})
                       AS score
            FROM documents_fts
            JOIN documents d ON documents_fts.rowid = d.rowid
            WHERE documents_fts MATCH ?
            ORDER BY score DESC
            LIMIT ?
        """
        cursor = reader.conn.execute(sql, (match, limit))
        return [
            Hit(doc_id=row[0], path=row[1], score=float(row[2]))
            for row in cursor
        ]

    def get_document(
        self, reader: ReadView, doc_id: int
    ) -> IndexedDocument | None:
        row = reader.conn.execute(
            """SELECT path, file_name, extension, content, size, modified,
                      indexed_at
               FROM documents WHERE rowid = ?""",
            (doc_id,),
        ).fetchone()
        if row is None:
            return None
        return IndexedDocument(
            path=row["path"],
            file_name=row["file_name"],
            extension=row["extension"],
            content=row["content"] or "",
            size=row["size"] or 0,
            modified=row["modified"] or 0.0,
            indexed_at=row["indexed_at"] or 0.0,
        )

    def highlight(
        self,
        reader: ReadView,
        doc_id: int,
        field: str,
        match: str,
        max_fragments: int,
        fragment_length: int,
    ) -> list[str]:
        """
        Get the best highlighted fragments of one document field.

        Matched terms are wrapped in <b>...</b>.

        Args:
            reader: Read view to query through
            doc_id: Document rowid (from a Hit)
            field: Column name ("file_name" or "content")
            match: The FTS5 query expression that produced the hit
            max_fragments: Maximum number of fragments
            fragment_length: Target visible length of each fragment

        Returns:
            Fragments containing at least one match, best first
        """
        column = FTS_COLUMNS.index(field)
        row = reader.conn.execute(
            f"""SELECT highlight(documents_fts, {column}, ?, ?)
                FROM documents_fts
                WHERE documents_fts MATCH ? AND rowid = ?""",
            (_MATCH_START, _MATCH_END, match, doc_id),
        ).fetchone()
        if row is None or not row[0]:
            return []
        return best_fragments(row[0], max_fragments, fragment_length)


def best_fragments(
    marked: str, max_fragments: int, fragment_length: int
) -> list[str]:
    """
    Cut sentinel-marked text into fragments and keep the best ones.

    Text is packed word by word into fragments of about fragment_length
    visible characters; a marked match is never split. Fragments without
    a match are dropped, the rest ranked by number of matches (earlier
    fragment wins ties).
    """
    if max_fragments <= 0:
        return []

    # (text, is_match) units; matches are atomic
    units: list[tuple[str, bool]] = []
    for segment in _MATCH_SPLIT.split(marked):
        if not segment:
            continue
        if segment.startswith(_MATCH_START) and segment.endswith(_MATCH_END):
            units.append((segment[1:-1], True))
        else:
            units.extend(
                (word, False) for word in _WORD_SPLIT.split(segment) if word
            )

    fragments: list[tuple[int, int, str]] = []  # (matches, order, text)
    parts: list[str] = []
    visible = 0
    matches = 0

    def flush() -> None:
        nonlocal parts, visible, matches
        text = "".join(parts).strip()
        if text and matches:
            fragments.append((matches, len(fragments), text))
        parts, visible, matches = [], 0, 0

    for text, is_match in units:
        if parts and visible + len(text) > fragment_length:
            flush()
        if not is_match and not parts and text.isspace():
            continue
        if is_match:
            parts.append(f"{HIGHLIGHT_OPEN}{text}{HIGHLIGHT_CLOSE}")
            matches += 1
        else:
            parts.append(text)
        visible += len(text)
    flush()

    fragments.sort(key=lambda f: (-f[0], f[1]))
    return [text for _, _, text in fragments[:max_fragments]]
