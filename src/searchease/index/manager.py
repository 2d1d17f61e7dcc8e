"""IndexManager - Central interface for the file search index.

Provides:
- sync(): One full sweep of the root folder
- rebuild(): Clear and re-index everything
- search(): Ranked FTS5 search with highlighted snippets
- get_stats(): Index statistics for status reporting
- start_background() / stop_background(): periodic sync and file watcher

Thread Safety:
- get_instance() uses a class-level lock
- The IndexEngine owns the single writer connection; searches open
  their own read views
- The periodic sync and the watcher run in their own threads and share
  the same engine and ledger
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import Settings
from .engine import IndexEngine
from .extract import ContentExtractor
from .ledger import IndexLedger
from .search import SearchAssembler, SearchResult
from .sync import Synchronizer, SyncResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from .watcher import IndexWatcher

logger = logging.getLogger(__name__)


@dataclass
class IndexStats:
    """Statistics about the search index."""

    document_count: int
    ledger_count: int
    last_sync: datetime | None
    db_size_mb: float
    folder: Path | None


class IndexManager:
    """
    Owns the index engine, ledger, synchronizer and search assembler.

    The index is stored at ~/.searchease/index.db by default.
    Use environment variables to customize (see searchease.config):
    - SEARCHEASE_FOLDER: Root folder to index
    - SEARCHEASE_INDEX_PATH: Database location
    - SEARCHEASE_SYNC_INTERVAL: Seconds between periodic syncs (300)
    """

    _instance: IndexManager | None = None
    _instance_lock = threading.Lock()

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the IndexManager.

        Args:
            settings: Runtime settings (read from the environment if None)
        """
        self.settings = settings or Settings.from_env()

        self.engine = IndexEngine(self.settings.index_path)
        self.ledger = IndexLedger(self.settings.ledger_path)
        self.ledger.load()
        self.extractor = ContentExtractor()
        self.synchronizer = Synchronizer(
            self.engine,
            self.ledger,
            self.extractor,
            self.settings.folder_to_index,
            self.settings.extensions,
        )
        self.assembler = SearchAssembler(
            self.engine,
            max_snippet_length=self.settings.max_snippet_length,
            max_fragments=self.settings.max_fragments,
        )
        self._watcher: IndexWatcher | None = None

    @classmethod
    def get_instance(cls) -> IndexManager:
        """Get the singleton IndexManager instance (thread-safe)."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = IndexManager()
            return cls._instance

    @property
    def db_path(self) -> Path:
        """Get the database file path."""
        return self.settings.index_path

    def has_index(self) -> bool:
        """Check if an index database exists."""
        return self.settings.index_path.exists()

    def close(self) -> None:
        """Stop background work, persist the ledger and close the engine."""
        self.stop_background()
        self.ledger.save()
        self.engine.close()

    def get_stats(self) -> IndexStats:
        """
        Get index statistics.

        Returns:
            IndexStats with counts, size, and last sync time
        """
        db_size_mb = 0.0
        if self.settings.index_path.exists():
            db_size_mb = self.settings.index_path.stat().st_size / (
                1024 * 1024
            )

        return IndexStats(
            document_count=self.engine.count(),
            ledger_count=len(self.ledger),
            last_sync=self.synchronizer.last_sync,
            db_size_mb=db_size_mb,
            folder=self.settings.folder_to_index,
        )

    def sync(self) -> SyncResult:
        """Run one full sweep of the root folder."""
        return self.synchronizer.sweep()

    def rebuild(self) -> SyncResult:
        """Clear the index and ledger, then index the root folder again."""
        return self.synchronizer.rebuild()

    def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        """
        Search indexed files.

        Args:
            query: Free-text query, terms are OR-ed
            max_results: Maximum results (default: 10)

        Returns:
            List of SearchResult ordered by relevance

        Raises:
            SearchError: If the query fails
        """
        return self.assembler.search(query, max_results)

    # ─────────────────────────────────────────────────────────────────
    # Background Sync Methods
    # ─────────────────────────────────────────────────────────────────

    def start_background(
        self,
        watch: bool = True,
        on_update: Callable[[int, int], None] | None = None,
    ) -> bool:
        """
        Start the periodic sync and the file watcher.

        Args:
            watch: Watch the root folder for real-time updates
            on_update: Optional callback(indexed, removed) for watcher
                       changes

        Returns:
            True if the periodic sync started
        """
        started = self.synchronizer.start(
            interval=self.settings.sync_interval,
            retry_delay=self.settings.retry_delay,
        )

        if watch:
            self.start_watcher(on_update=on_update)

        return started

    def start_watcher(
        self,
        on_update: Callable[[int, int], None] | None = None,
    ) -> bool:
        """
        Start the file watcher for real-time index updates.

        Returns:
            True if watcher started, False if already running or failed
        """
        if self._watcher is not None and self._watcher.is_running:
            return False

        folder = self.settings.folder_to_index
        if folder is None:
            logger.warning("No folder configured, watcher not started")
            return False

        from .watcher import IndexWatcher

        self._watcher = IndexWatcher(
            folder,
            self.synchronizer,
            on_update=on_update,
            debounce_ms=self.settings.debounce_ms,
        )
        return self._watcher.start()

    def stop_background(self) -> None:
        """Stop the file watcher and the periodic sync if running."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self.synchronizer.is_running:
            self.synchronizer.stop()

    @property
    def watcher_running(self) -> bool:
        """Check if the file watcher is running."""
        return self._watcher is not None and self._watcher.is_running

    @property
    def sync_running(self) -> bool:
        """Check if the periodic sync is running."""
        return self.synchronizer.is_running
