"""Configuration for the SearchEase indexer and search server."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

# Default index location
DEFAULT_INDEX_PATH = Path.home() / ".searchease" / "index.db"

DEFAULT_EXTENSIONS = (".txt", ".md", ".cs", ".json")


def get_index_path() -> Path:
    """
    Get the FTS5 index database path.

    Set SEARCHEASE_INDEX_PATH to customize the location.
    Defaults to ~/.searchease/index.db

    Returns:
        Path to the index database file.
    """
    env_path = os.environ.get("SEARCHEASE_INDEX_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_INDEX_PATH


def get_ledger_path() -> Path:
    """
    Get the path of the last-indexed ledger file.

    Set SEARCHEASE_LEDGER_PATH to customize. Defaults to ledger.json
    next to the index database.

    Returns:
        Path to the ledger JSON file.
    """
    env_path = os.environ.get("SEARCHEASE_LEDGER_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return get_index_path().parent / "ledger.json"


def get_folder_to_index() -> Path | None:
    """
    Get the root folder to monitor.

    Set SEARCHEASE_FOLDER to the directory tree that should be indexed.

    Returns:
        Root folder, or None when not configured.
    """
    env_path = os.environ.get("SEARCHEASE_FOLDER")
    if env_path and env_path.strip():
        return Path(env_path.strip()).expanduser()
    return None


def get_sync_interval_seconds() -> float:
    """
    Get the interval between periodic full syncs.

    Set SEARCHEASE_SYNC_INTERVAL to customize. Defaults to 300 seconds.
    """
    return float(os.environ.get("SEARCHEASE_SYNC_INTERVAL", "300"))


def get_retry_delay_seconds() -> float:
    """
    Get the delay before retrying a sync cycle that failed.

    Set SEARCHEASE_RETRY_DELAY to customize. Defaults to 30 seconds.
    """
    return float(os.environ.get("SEARCHEASE_RETRY_DELAY", "30"))


def normalize_extension(ext: str) -> str:
    """Lower-case an extension and make sure it starts with a dot."""
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


def get_file_extensions() -> frozenset[str]:
    """
    Get the set of file extensions eligible for indexing.

    Set SEARCHEASE_EXTENSIONS to a comma-separated list
    (e.g. ".txt,.md,docx"). Defaults to .txt, .md, .cs and .json.

    Returns:
        Set of normalized extensions (lower case, leading dot).
    """
    env_val = os.environ.get("SEARCHEASE_EXTENSIONS")
    if env_val is not None:
        return frozenset(
            normalize_extension(e) for e in env_val.split(",") if e.strip()
        )
    return frozenset(DEFAULT_EXTENSIONS)


def get_max_snippet_length() -> int:
    """
    Get the maximum length of a content snippet.

    Set SEARCHEASE_MAX_SNIPPET_LENGTH to customize. Defaults to 150.
    """
    return int(os.environ.get("SEARCHEASE_MAX_SNIPPET_LENGTH", "150"))


def get_max_fragments() -> int:
    """
    Get the maximum number of snippets returned per search hit.

    Set SEARCHEASE_MAX_FRAGMENTS to customize. Defaults to 5.
    """
    return int(os.environ.get("SEARCHEASE_MAX_FRAGMENTS", "5"))


def get_debounce_ms() -> int:
    """
    Get the watcher debounce window in milliseconds.

    Set SEARCHEASE_DEBOUNCE_MS to customize. Defaults to 500.
    """
    return int(os.environ.get("SEARCHEASE_DEBOUNCE_MS", "500"))


@dataclass
class Settings:
    """All runtime settings, resolved once and injected into components."""

    index_path: Path = DEFAULT_INDEX_PATH
    ledger_path: Path = DEFAULT_INDEX_PATH.parent / "ledger.json"
    folder_to_index: Path | None = None
    sync_interval: float = 300.0
    retry_delay: float = 30.0
    extensions: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_EXTENSIONS)
    )
    max_snippet_length: int = 150
    max_fragments: int = 5
    debounce_ms: int = 500

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from SEARCHEASE_* environment variables."""
        return cls(
            index_path=get_index_path(),
            ledger_path=get_ledger_path(),
            folder_to_index=get_folder_to_index(),
            sync_interval=get_sync_interval_seconds(),
            retry_delay=get_retry_delay_seconds(),
            extensions=get_file_extensions(),
            max_snippet_length=get_max_snippet_length(),
            max_fragments=get_max_fragments(),
            debounce_ms=get_debounce_ms(),
        )
