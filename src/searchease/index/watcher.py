"""File watcher for real-time index updates.

Watches the root folder recursively and turns filesystem changes into
FileChange messages for the Synchronizer.

Uses watchfiles (Rust-based, efficient). Two background threads:
- The watch thread translates each debounced batch of changes into
  messages on a bounded queue
- A single dispatcher thread applies the messages in order, so all
  changes to one path are handled sequentially

Within a batch, deletions are queued before creations, so a file that
was deleted and recreated (or renamed) never ends up with a stale or
duplicate document.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, watch

from .sync import ChangeKind, FileChange, normalize_path

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .sync import Synchronizer

logger = logging.getLogger(__name__)

# Constants for safety limits
MAX_PENDING_CHANGES = 10000  # Prevent unbounded memory growth
FILE_RETRY_DELAY_MS = 200  # Wait for the writer to release the file
MAX_FILE_RETRIES = 3
DISPATCH_POLL_SECONDS = 0.5


def changes_to_events(
    changes: Iterable[tuple[Change, str]],
) -> list[FileChange]:
    """
    Translate one watchfiles batch into ordered FileChange messages.

    A batch holding exactly one deletion and one addition of different
    paths is reported as a rename, since watchfiles has no rename event.
    Otherwise deletions come first, then additions, then modifications.

    Args:
        changes: (Change, path) pairs from watchfiles

    Returns:
        Messages in the order they must be applied
    """
    deleted: list[str] = []
    added: list[str] = []
    modified: list[str] = []

    for change_type, path_str in changes:
        path = normalize_path(path_str)
        if change_type == Change.deleted:
            if path not in deleted:
                deleted.append(path)
        elif change_type == Change.added:
            if path not in added:
                added.append(path)
        elif change_type == Change.modified:
            if path not in modified:
                modified.append(path)

    # Added then modified in the same batch is a single creation
    modified = [p for p in modified if p not in added]

    if len(deleted) == 1 and len(added) == 1 and deleted[0] != added[0]:
        events = [FileChange(ChangeKind.RENAMED, added[0], deleted[0])]
    else:
        events = [FileChange(ChangeKind.DELETED, p) for p in deleted]
        events += [FileChange(ChangeKind.CREATED, p) for p in added]

    events += [FileChange(ChangeKind.MODIFIED, p) for p in modified]
    return events


def wait_until_readable(path: Path) -> bool:
    """
    Wait for a file to become readable (the writer may still hold it).

    Returns:
        True if the file could be opened, False if it vanished or stayed
        locked after MAX_FILE_RETRIES attempts
    """
    for attempt in range(MAX_FILE_RETRIES):
        try:
            with open(path, "rb"):
                return True
        except FileNotFoundError:
            return False
        except IsADirectoryError:
            return True
        except OSError as e:
            if attempt < MAX_FILE_RETRIES - 1:
                logger.debug("Retry %d for %s: %s", attempt + 1, path, e)
                time.sleep(FILE_RETRY_DELAY_MS / 1000)
            else:
                logger.warning(
                    "File still locked after retries %s: %s", path, e
                )
    return False


class IndexWatcher:
    """
    Watches the root folder for changes and updates the index.

    Usage:
        watcher = IndexWatcher(root, synchronizer, on_update=callback)
        watcher.start()
        # ... later ...
        watcher.stop()
    """

    def __init__(
        self,
        root: Path,
        synchronizer: Synchronizer,
        on_update: Callable[[int, int], None] | None = None,
        debounce_ms: int = 500,
        max_pending: int = MAX_PENDING_CHANGES,
    ):
        """
        Initialize the watcher.

        Args:
            root: Directory tree to watch
            synchronizer: Applies the changes to index and ledger
            on_update: Optional callback(indexed, removed) after a change
            debounce_ms: Milliseconds of quiet before a batch is delivered
            max_pending: Capacity of the change queue
        """
        self.root = root
        self.synchronizer = synchronizer
        self.on_update = on_update
        self.debounce_ms = debounce_ms

        self._queue: queue.Queue[FileChange] = queue.Queue(maxsize=max_pending)
        self._stop_event = threading.Event()
        self._watch_thread: threading.Thread | None = None
        self._dispatch_thread: threading.Thread | None = None

    def start(self) -> bool:
        """
        Start watching for changes.

        Returns:
            True if started successfully, False if the root is missing
        """
        if not self.root.is_dir():
            logger.warning(
                "Folder %s not found, watcher not started", self.root
            )
            return False

        self._stop_event.clear()
        self._dispatch_thread = threading.Thread(
            target=self._dispatch_loop,
            name="IndexWatcherDispatch",
            daemon=True,
        )
        self._watch_thread = threading.Thread(
            target=self._watch_loop,
            name="IndexWatcher",
            daemon=True,
        )
        self._dispatch_thread.start()
        self._watch_thread.start()
        logger.info("File watcher started for %s", self.root)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop watching and wait for both threads to finish."""
        self._stop_event.set()
        for thread in (self._watch_thread, self._dispatch_thread):
            if thread and thread.is_alive():
                thread.join(timeout=timeout)
        self._watch_thread = None
        self._dispatch_thread = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        """Check if watcher is running."""
        return (
            self._watch_thread is not None and self._watch_thread.is_alive()
        )

    @property
    def pending(self) -> int:
        """Number of changes waiting to be applied."""
        return self._queue.qsize()

    def _accept(self, change: Change, path: str) -> bool:
        """watchfiles filter: eligible files, plus every deletion."""
        # Deletions may be directories, whose contents must be dropped
        if change == Change.deleted:
            return True
        if self.synchronizer.is_eligible(path):
            return True
        return Path(path).is_dir()

    def enqueue(self, change: FileChange) -> bool:
        """
        Queue a change for the dispatcher.

        Returns:
            False if the queue is full and the change was dropped (the
            next periodic sweep picks it up)
        """
        try:
            self._queue.put_nowait(change)
            return True
        except queue.Full:
            logger.warning(
                "Pending limit (%d) reached, dropping %s %s",
                self._queue.maxsize,
                change.kind.value,
                change.path,
            )
            return False

    def _watch_loop(self) -> None:
        """Main watch loop (runs in background thread)."""
        logger.debug("Starting watch loop on %s", self.root)

        try:
            for changes in watch(
                self.root,
                watch_filter=self._accept,
                stop_event=self._stop_event,
                debounce=self.debounce_ms,
                recursive=True,
            ):
                if self._stop_event.is_set():
                    break
                for event in changes_to_events(changes):
                    self.enqueue(event)
        except (OSError, RuntimeError) as e:
            logger.error("Watch loop on %s failed: %s", self.root, e)

    def _dispatch_loop(self) -> None:
        """Apply queued changes one at a time (runs in background thread)."""
        while not self._stop_event.is_set():
            try:
                change = self._queue.get(timeout=DISPATCH_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                self.process(change)
            finally:
                self._queue.task_done()

    def process(self, change: FileChange) -> None:
        """Apply one change and notify the callback."""
        if change.kind in (ChangeKind.CREATED, ChangeKind.MODIFIED):
            if not wait_until_readable(Path(change.path)):
                logger.debug("Skipping unreadable %s", change.path)
                return

        try:
            result = self.synchronizer.apply(change)
        except Exception as e:  # Broad: the dispatcher must keep running
            logger.error(
                "Error applying %s for %s: %s",
                change.kind.value,
                change.path,
                e,
            )
            return

        if result.total_changes:
            logger.debug(
                "Processed %s %s: +%d -%d",
                change.kind.value,
                change.path,
                result.indexed,
                result.removed,
            )

        if self.on_update and result.total_changes:
            try:
                self.on_update(result.indexed, result.removed)
            except Exception as e:  # Broad: user callback
                logger.warning("Error in on_update callback: %s", e)
