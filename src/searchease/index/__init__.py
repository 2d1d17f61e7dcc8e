"""FTS5 search index kept in sync with a folder on disk.

This module provides:
- IndexManager: Main interface for syncing and searching the index
- Synchronizer: Staleness decisions, per-file indexing, periodic sweeps
- IndexWatcher: Real-time file watcher feeding the Synchronizer
- IndexLedger: Persisted path -> last-indexed time map
- SearchAssembler: Ranked search with tiered snippets
"""

from .engine import IndexEngine
from .ledger import IndexLedger
from .manager import IndexManager, IndexStats
from .search import SearchAssembler, SearchError, SearchResult
from .sync import ChangeKind, FileChange, Synchronizer, SyncResult
from .watcher import IndexWatcher

__all__ = [
    "ChangeKind",
    "FileChange",
    "IndexEngine",
    "IndexLedger",
    "IndexManager",
    "IndexStats",
    "IndexWatcher",
    "SearchAssembler",
    "SearchError",
    "SearchResult",
    "SyncResult",
    "Synchronizer",
]
