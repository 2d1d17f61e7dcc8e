"""Persisted record of when each file was last indexed.

The ledger maps an absolute file path to the wall-clock time (epoch
seconds) at which that path was last indexed successfully. A path is in
the ledger exactly when the index holds a document for it.

Store format (single JSON file):
    {"version": 1, "entries": {"/abs/path.txt": 1718000000.25, ...}}

Loading never fails: a missing or unreadable store yields an empty
ledger, which makes the next sweep reindex everything. Saving is
best-effort and only logs on failure.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

LEDGER_FORMAT_VERSION = 1


class IndexLedger:
    """
    Thread-safe path -> last-indexed timestamp map with JSON persistence.

    Usage:
        ledger = IndexLedger(path)
        ledger.load()
        ledger.put("/docs/a.txt", time.time())
        ledger.save()
    """

    def __init__(self, store_path: Path):
        self._store_path = store_path
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def store_path(self) -> Path:
        """Get the ledger file path."""
        return self._store_path

    def get(self, path: str) -> float | None:
        with self._lock:
            return self._entries.get(path)

    def put(self, path: str, timestamp: float) -> None:
        with self._lock:
            self._entries[path] = timestamp

    def remove(self, path: str) -> bool:
        """Remove a path. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(path, None) is not None

    def remove_under(self, directory: str) -> list[str]:
        """
        Remove every entry located below a directory.

        Args:
            directory: Absolute directory path

        Returns:
            The removed paths
        """
        prefix = directory.rstrip(os.sep) + os.sep
        with self._lock:
            removed = [p for p in self._entries if p.startswith(prefix)]
            for p in removed:
                del self._entries[p]
        return removed

    def snapshot(self) -> dict[str, float]:
        """Return a copy of all entries."""
        with self._lock:
            return dict(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._entries

    def load(self) -> None:
        """
        Replace in-memory entries with the contents of the store.

        A missing, unreadable or malformed store results in an empty
        ledger; this never raises.
        """
        entries: dict[str, float] = {}
        try:
            raw = json.loads(self._store_path.read_text(encoding="utf-8"))
            stored = raw.get("entries", {}) if isinstance(raw, dict) else {}
            if not isinstance(stored, dict):
                raise ValueError("ledger entries must be an object")
            for path, ts in stored.items():
                entries[str(path)] = float(ts)
        except FileNotFoundError:
            logger.info("No ledger at %s, starting empty", self._store_path)
        except (OSError, ValueError, TypeError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(
                "Unreadable ledger %s, starting empty: %s",
                self._store_path,
                e,
            )
            entries = {}

        with self._lock:
            self._entries = entries

        logger.debug("Loaded %d ledger entries", len(entries))

    def save(self) -> bool:
        """
        Write all entries to the store atomically.

        Returns:
            True if the store was written, False if persisting failed
        """
        payload = {
            "version": LEDGER_FORMAT_VERSION,
            "entries": self.snapshot(),
        }

        tmp_name: str | None = None
        try:
            self._store_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._store_path.parent,
                prefix=".ledger-",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_name, self._store_path)
            tmp_name = None
            return True
        except OSError as e:
            logger.error("Failed to save ledger %s: %s", self._store_path, e)
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
