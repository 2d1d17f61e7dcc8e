"""Keeps the index and the ledger in step with a directory tree.

Two sources drive the Synchronizer:
- A periodic full sweep over every eligible file under the root, followed
  by garbage collection of ledger entries whose files are gone
- Watch events (created / modified / deleted / renamed) for single paths,
  delivered through apply()

Per file, the staleness decision is: index when the path has no ledger
entry, or when the file's mtime is strictly newer than the recorded
last-indexed time.

Thread Safety:
- Same-path operations are serialized by a per-path lock
- Different paths proceed concurrently; the IndexEngine serializes the
  actual writes
- The ledger is internally locked
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .engine import IndexedDocument
from .extract import read_file_metadata

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from .engine import IndexEngine
    from .extract import ContentExtractor
    from .ledger import IndexLedger

logger = logging.getLogger(__name__)

# Optimize FTS segments after a sweep that changed at least this many files
OPTIMIZE_THRESHOLD = 500


class ChangeKind(Enum):
    """Kind of filesystem change reported by the watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class FileChange:
    """A single filesystem change (old_path is set for renames)."""

    kind: ChangeKind
    path: str
    old_path: str | None = None


class IndexOutcome(Enum):
    """What index_file() did with a path."""

    INDEXED = "indexed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"  # Ineligible or no longer on disk
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of a sweep or of applying a change."""

    indexed: int = 0
    removed: int = 0
    unchanged: int = 0
    errors: int = 0
    cancelled: bool = False

    @property
    def total_changes(self) -> int:
        return self.indexed + self.removed

    def record(self, outcome: IndexOutcome) -> None:
        if outcome is IndexOutcome.INDEXED:
            self.indexed += 1
        elif outcome is IndexOutcome.UNCHANGED:
            self.unchanged += 1
        elif outcome is IndexOutcome.FAILED:
            self.errors += 1


def normalize_path(path: str | Path) -> str:
    """Absolute, unresolved path string used as document and ledger key."""
    return os.path.abspath(os.fspath(path))


class Synchronizer:
    """
    Decides which files need (re)indexing and keeps index + ledger consistent.

    Usage:
        sync = Synchronizer(engine, ledger, extractor, root, {".txt"})
        sync.sweep()                       # one full pass
        sync.apply(FileChange(ChangeKind.DELETED, "/root/a.txt"))
        sync.start(interval=300)           # periodic sweeps in background
        sync.stop()
    """

    def __init__(
        self,
        engine: IndexEngine,
        ledger: IndexLedger,
        extractor: ContentExtractor,
        root: Path | None,
        extensions: Iterable[str],
    ):
        self._engine = engine
        self._ledger = ledger
        self._extractor = extractor
        self._root = Path(normalize_path(root)) if root is not None else None
        self._extensions = frozenset(e.lower() for e in extensions)

        # path -> [lock, number of holders/waiters]
        self._path_locks: dict[str, list] = {}
        self._path_locks_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.last_sync: datetime | None = None
        self.last_result: SyncResult | None = None

    @property
    def root(self) -> Path | None:
        return self._root

    @property
    def extensions(self) -> frozenset[str]:
        return self._extensions

    @property
    def ledger(self) -> IndexLedger:
        return self._ledger

    # ─────────────────────────────────────────────────────────────────
    # Per-path locking
    # ─────────────────────────────────────────────────────────────────

    @contextmanager
    def _path_lock(self, key: str) -> Iterator[None]:
        """Serialize all work on one path; entries are dropped when idle."""
        with self._path_locks_lock:
            entry = self._path_locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._path_locks[key] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._path_locks_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._path_locks[key]

    # ─────────────────────────────────────────────────────────────────
    # Decisions
    # ─────────────────────────────────────────────────────────────────

    def is_eligible(self, path: str | Path) -> bool:
        """Check whether a file's extension is in the allow-set."""
        return Path(path).suffix.lower() in self._extensions

    def is_under_root(self, path: str | Path) -> bool:
        if self._root is None:
            return False
        return Path(normalize_path(path)).is_relative_to(self._root)

    def needs_index(self, path: str, modified: float) -> bool:
        """
        Staleness decision for one file.

        Args:
            path: Normalized file path
            modified: Current on-disk mtime (epoch seconds)

        Returns:
            True if the file has never been indexed or changed since
        """
        last_indexed = self._ledger.get(path)
        return last_indexed is None or modified > last_indexed

    # ─────────────────────────────────────────────────────────────────
    # Single-path operations
    # ─────────────────────────────────────────────────────────────────

    def index_file(
        self, path: str | Path, *, force: bool = False
    ) -> IndexOutcome:
        """
        Index one file if it is stale (or unconditionally with force).

        The document is replaced with delete-then-add and committed in one
        exclusive write section; only then is the ledger updated. On any
        failure the ledger entry is left untouched, so the file is retried
        by the next sweep or event.

        Args:
            path: File to index
            force: Skip the staleness decision

        Returns:
            IndexOutcome describing what happened
        """
        key = normalize_path(path)
        if not self.is_eligible(key):
            logger.debug("Not eligible for indexing: %s", key)
            return IndexOutcome.SKIPPED

        with self._path_lock(key):
            return self._index_locked(key, force)

    def _index_locked(self, key: str, force: bool) -> IndexOutcome:
        file_path = Path(key)
        metadata = read_file_metadata(file_path)
        if metadata is None or not file_path.is_file():
            logger.debug("File vanished before indexing: %s", key)
            return IndexOutcome.SKIPPED

        if not force and not self.needs_index(key, metadata.modified):
            return IndexOutcome.UNCHANGED

        # Taken before reading, so a write during extraction leaves the
        # file stale rather than marked as indexed
        started_at = time.time()

        try:
            content = self._extractor.extract(file_path)
            document = IndexedDocument(
                path=key,
                file_name=file_path.name,
                extension=file_path.suffix.lower(),
                content=content,
                size=metadata.size,
                modified=metadata.modified,
                indexed_at=started_at,
            )
            with self._engine.write():
                # A directory delete only holds the directory's path lock,
                # so the file may have gone while it was being read
                if not file_path.is_file():
                    logger.debug("File vanished during indexing: %s", key)
                    return IndexOutcome.SKIPPED
                self._engine.add_or_replace(document)
                self._engine.commit()
                self._ledger.put(key, started_at)
        except (OSError, sqlite3.Error, ValueError) as e:
            logger.error("Error indexing file %s: %s", key, e)
            return IndexOutcome.FAILED

        logger.debug("Indexed %s", key)
        return IndexOutcome.INDEXED

    def sync_path(self, path: str | Path) -> SyncResult:
        """
        Apply the staleness decision to a created or modified path.

        A directory (e.g. one moved into the tree) is synced file by file.
        """
        result = SyncResult()
        key = normalize_path(path)

        if os.path.isdir(key):
            for file_path in self.iter_eligible_files(Path(key)):
                result.record(self.index_file(file_path))
        else:
            result.record(self.index_file(key))

        return result

    def remove_path(self, path: str | Path) -> int:
        """
        Remove the document and ledger entry for a deleted path.

        If the path was a directory, everything recorded below it is
        removed as well.

        Returns:
            Number of ledger entries removed
        """
        key = normalize_path(path)

        with self._path_lock(key):
            try:
                with self._engine.write():
                    self._engine.delete(key)
                    self._engine.delete_under(key)
                    self._engine.commit()
                    removed = int(self._ledger.remove(key))
                    removed += len(self._ledger.remove_under(key))
            except sqlite3.Error as e:
                logger.error("Error removing %s from index: %s", key, e)
                return 0

        if removed:
            logger.debug("Removed %s (%d entries)", key, removed)
        return removed

    def rename_path(
        self, old_path: str | Path, new_path: str | Path
    ) -> SyncResult:
        """Handle a rename as delete-old followed by create-new."""
        result = SyncResult(removed=self.remove_path(old_path))
        new_result = self.sync_path(new_path)
        result.indexed += new_result.indexed
        result.unchanged += new_result.unchanged
        result.errors += new_result.errors
        return result

    def apply(self, change: FileChange) -> SyncResult:
        """
        Apply one watch event and persist the ledger if anything changed.

        Args:
            change: The filesystem change

        Returns:
            SyncResult for this change
        """
        if change.kind is ChangeKind.DELETED:
            result = SyncResult(removed=self.remove_path(change.path))
        elif change.kind is ChangeKind.RENAMED:
            if change.old_path is None:
                result = self.sync_path(change.path)
            else:
                result = self.rename_path(change.old_path, change.path)
        else:
            result = self.sync_path(change.path)

        if result.total_changes:
            self._ledger.save()

        return result

    # ─────────────────────────────────────────────────────────────────
    # Full sweep
    # ─────────────────────────────────────────────────────────────────

    def iter_eligible_files(
        self, directory: Path | None = None
    ) -> Iterator[str]:
        """
        Yield every eligible file below a directory (default: the root).

        Yields:
            Normalized absolute file paths
        """
        base = directory if directory is not None else self._root
        if base is None:
            return

        for file_path in base.rglob("*"):
            if not self.is_eligible(file_path):
                continue
            try:
                if not file_path.is_file():
                    continue
            except OSError:
                continue
            yield normalize_path(file_path)

    def sweep(self, stop_event: threading.Event | None = None) -> SyncResult:
        """
        Run one full sync pass over the root folder.

        Every eligible file gets the staleness decision, then ledger
        entries for files that are gone (or no longer eligible or under
        the root) are removed together with their documents, as are
        documents that have no ledger entry.

        Args:
            stop_event: Checked between files; when set the sweep stops
                early and the result is marked cancelled

        Returns:
            SyncResult with counts for this pass
        """
        result = SyncResult()

        if self._root is None or not self._root.is_dir():
            logger.warning(
                "Folder to index is not configured or does not exist: %s",
                self._root,
            )
            return result

        logger.info("Starting sync of folder: %s", self._root)

        try:
            self._forget_unindexed()
            for path in self.iter_eligible_files():
                if stop_event is not None and stop_event.is_set():
                    result.cancelled = True
                    break
                result.record(self.index_file(path))

            if not result.cancelled:
                self._collect_garbage(result, stop_event)
        finally:
            self._ledger.save()

        if result.total_changes >= OPTIMIZE_THRESHOLD:
            self._engine.optimize()

        self.last_sync = datetime.now()
        self.last_result = result

        logger.info(
            "Sync %s: indexed=%d, removed=%d, unchanged=%d, errors=%d",
            "cancelled" if result.cancelled else "complete",
            result.indexed,
            result.removed,
            result.unchanged,
            result.errors,
        )
        return result

    def _forget_unindexed(self) -> None:
        """Drop ledger entries whose document is missing from the index."""
        indexed = self._engine.indexed_paths()
        forgotten = 0
        for path in self._ledger.snapshot():
            if path in indexed:
                continue
            with self._path_lock(path):
                if self._engine.has_document(path):
                    continue
                self._ledger.remove(path)
                forgotten += 1
        if forgotten:
            logger.info(
                "%d ledger entries had no indexed document, reindexing",
                forgotten,
            )

    def _should_keep(self, path: str) -> bool:
        return (
            self.is_eligible(path)
            and self.is_under_root(path)
            and os.path.isfile(path)
        )

    def _collect_garbage(
        self, result: SyncResult, stop_event: threading.Event | None
    ) -> None:
        """Drop ledger entries and documents for files that are gone."""
        for path in self._ledger.snapshot():
            if stop_event is not None and stop_event.is_set():
                result.cancelled = True
                return
            if self._should_keep(path):
                continue
            # Re-check under the lock, an event may have recreated the file
            with self._path_lock(path):
                if self._should_keep(path):
                    continue
                try:
                    with self._engine.write():
                        self._engine.delete(path)
                        self._engine.commit()
                except sqlite3.Error as e:
                    logger.error("Error removing %s from index: %s", path, e)
                    result.errors += 1
                    continue
                self._ledger.remove(path)
                result.removed += 1

        # Documents without a ledger entry (e.g. the ledger store was lost)
        for path in self._engine.indexed_paths():
            if path in self._ledger:
                continue
            with self._path_lock(path):
                if path in self._ledger:
                    continue
                try:
                    with self._engine.write():
                        self._engine.delete(path)
                        self._engine.commit()
                except sqlite3.Error as e:
                    logger.error("Error removing orphan %s: %s", path, e)
                    result.errors += 1
                    continue
                logger.debug("Removed orphan document %s", path)
                result.removed += 1

    def rebuild(self) -> SyncResult:
        """Clear the index and ledger, then index everything again."""
        with self._engine.write():
            self._engine.delete_all()
            self._engine.commit()
        self._ledger.clear()
        self._ledger.save()
        return self.sweep()

    # ─────────────────────────────────────────────────────────────────
    # Periodic loop
    # ─────────────────────────────────────────────────────────────────

    def start(
        self, interval: float = 300.0, retry_delay: float = 30.0
    ) -> bool:
        """
        Start periodic sweeps in a background thread.

        Args:
            interval: Seconds between the end of one sweep and the next
            retry_delay: Seconds to wait after a sweep failed

        Returns:
            True if started, False if already running
        """
        if self.is_running:
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(interval, retry_delay),
            name="Synchronizer",
            daemon=True,
        )
        self._thread.start()
        logger.info("Periodic sync started (every %.0fs)", interval)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the periodic loop and wait for the thread to finish."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Periodic sync stopped")

    @property
    def is_running(self) -> bool:
        """Check if the periodic loop is running."""
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self, interval: float, retry_delay: float) -> None:
        """Sweep, wait, repeat until stopped (runs in background thread)."""
        while not self._stop_event.is_set():
            try:
                self.sweep(self._stop_event)
                delay = interval
            except Exception:  # Broad: the loop must survive any cycle error
                logger.exception("Error occurred while indexing files")
                delay = retry_delay
            self._stop_event.wait(delay)
