"""Command-line interface for searchease.

Provides commands for:
- serve: Run the MCP server with background sync (default)
- index: Sync the index with the folder once
- status: Show index statistics
- rebuild: Clear and rebuild the index
- search: Search the index from the terminal

Usage:
    searchease                  # Run MCP server (default)
    searchease serve --no-watch # Run without real-time index updates
    searchease index            # Sync index with the folder
    searchease status           # Show index status
    searchease rebuild          # Force rebuild index
    searchease search "query"   # Search from the terminal
"""

import logging
import sys
import time
from typing import Annotated

import cyclopts

from .config import get_folder_to_index, get_index_path

app = cyclopts.App(
    name="searchease",
    help="Full-text search over a folder, kept in sync as files change.",
)


def _setup_logging(verbose: bool = False) -> None:
    """Send log records to stderr (stdout carries MCP traffic)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _format_size(size_mb: float) -> str:
    """Format file size for display."""
    if size_mb < 1:
        return f"{size_mb * 1024:.1f} KB"
    return f"{size_mb:.1f} MB"


def _format_time(seconds: float) -> str:
    """Format duration for display."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.1f}s"


def _require_folder() -> None:
    if get_folder_to_index() is None:
        print(
            "Error: no folder configured. Set SEARCHEASE_FOLDER to the "
            "directory to index.",
            file=sys.stderr,
        )
        sys.exit(1)


def _run_serve(watch: bool = True) -> None:
    """Internal function to run the MCP server."""
    from .index import IndexManager
    from .server import mcp

    manager = IndexManager.get_instance()

    if get_folder_to_index() is not None:
        try:
            print("Syncing index...", file=sys.stderr, flush=True)
            start = time.time()
            result = manager.sync()
            elapsed = time.time() - start
            if result.total_changes > 0:
                print(
                    f"Synced {result.total_changes} changes in "
                    f"{_format_time(elapsed)}",
                    file=sys.stderr,
                )
            else:
                print(
                    f"Index up to date ({_format_time(elapsed)})",
                    file=sys.stderr,
                )
        except Exception as e:
            print(f"Warning: Index sync failed: {e}", file=sys.stderr)

        def on_update(indexed: int, removed: int) -> None:
            print(f"Index updated: +{indexed} -{removed}", file=sys.stderr)

        manager.start_background(watch=watch, on_update=on_update)
        if watch and not manager.watcher_running:
            print("Warning: Could not start file watcher", file=sys.stderr)
    else:
        print(
            "Warning: SEARCHEASE_FOLDER not set, serving existing index only",
            file=sys.stderr,
        )

    try:
        mcp.run()
    finally:
        manager.close()


@app.command
def serve(
    watch: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--watch", "-w"],
            negative="--no-watch",
            help="Watch the folder and update the index in real-time",
        ),
    ] = True,
    verbose: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--verbose", "-v"],
            help="Enable verbose output",
        ),
    ] = False,
) -> None:
    """
    Run the MCP server.

    This is the default command when no subcommand is specified.
    At startup the index is synced with the folder, then re-synced
    periodically (SEARCHEASE_SYNC_INTERVAL seconds). File changes are
    applied as they happen unless --no-watch is given.
    """
    _setup_logging(verbose)
    _run_serve(watch=watch)


@app.command
def index(
    verbose: Annotated[
        bool,
        cyclopts.Parameter(name=["--verbose", "-v"], help="Show progress"),
    ] = False,
) -> None:
    """
    Sync the search index with the folder.

    Only files that are new or modified since they were last indexed are
    read; files deleted from disk are removed from the index.
    """
    _setup_logging(verbose)
    _require_folder()

    from .index import IndexManager

    print(f"Indexing {get_folder_to_index()}...")
    print(f"Index location: {get_index_path()}")
    print()

    manager = IndexManager()
    start = time.time()

    try:
        result = manager.sync()
        elapsed = time.time() - start

        print(
            f"✓ Indexed {result.indexed:,} files, removed {result.removed:,} "
            f"in {_format_time(elapsed)}"
        )
        print(f"  Unchanged: {result.unchanged:,}")
        if result.errors:
            print(f"  Errors:    {result.errors:,} (see log)")

        stats = manager.get_stats()
        print(f"  Documents: {stats.document_count:,}")
        print(f"  Database size: {_format_size(stats.db_size_mb)}")

    except Exception as e:
        print(f"\n✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        manager.close()


@app.command
def status(
    verbose: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--verbose", "-v"],
            help="Enable verbose output",
        ),
    ] = False,
) -> None:
    """
    Show index statistics.

    Displays:
    - Folder being indexed
    - Document count and ledger entries
    - Database file size
    """
    _setup_logging(verbose)

    from .index import IndexManager

    manager = IndexManager()

    if not manager.has_index():
        print("No index found.")
        print(f"Expected location: {get_index_path()}")
        print()
        print("Run 'searchease index' to build the index.")
        sys.exit(1)

    try:
        stats = manager.get_stats()
    finally:
        manager.close()

    print("SearchEase Index Status")
    print("=" * 40)
    print(f"Folder:       {stats.folder or '(not configured)'}")
    print(f"Location:     {get_index_path()}")
    print(f"Documents:    {stats.document_count:,}")
    print(f"Ledger:       {stats.ledger_count:,} entries")
    print(f"Database:     {_format_size(stats.db_size_mb)}")

    if stats.document_count != stats.ledger_count:
        print()
        print("⚠ Index and ledger disagree. Run 'searchease index' to repair.")


@app.command
def rebuild(
    verbose: Annotated[
        bool,
        cyclopts.Parameter(name=["--verbose", "-v"], help="Show progress"),
    ] = False,
) -> None:
    """
    Force rebuild the search index.

    Clears all documents and the ledger, then indexes the folder again.
    """
    _setup_logging(verbose)
    _require_folder()

    from .index import IndexManager

    print(f"Rebuilding index of {get_folder_to_index()}...")

    manager = IndexManager()
    start = time.time()

    try:
        result = manager.rebuild()
        elapsed = time.time() - start
        print(f"✓ Rebuilt {result.indexed:,} files in {_format_time(elapsed)}")

    except Exception as e:
        print(f"\n✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        manager.close()


@app.command
def search(
    query: str,
    max_results: Annotated[
        int,
        cyclopts.Parameter(
            name=["--max-results", "-n"],
            help="Maximum number of results",
        ),
    ] = 10,
    verbose: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--verbose", "-v"],
            help="Enable verbose output",
        ),
    ] = False,
) -> None:
    """
    Search the index and print matching files with snippets.
    """
    _setup_logging(verbose)

    if not query.strip():
        print("Error: search query cannot be empty", file=sys.stderr)
        sys.exit(1)

    from .index import IndexManager, SearchError

    manager = IndexManager()

    try:
        results = manager.search(query, max_results=max_results)
    except SearchError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        manager.close()

    if not results:
        print("No results.")
        return

    for r in results:
        print(f"{r.score:>8.3f}  {r.file_path}")
        for snippet in r.content_snippets:
            print(f"          {snippet}")


@app.default
def default_handler(
    watch: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--watch", "-w"],
            negative="--no-watch",
            help="Watch the folder and update the index in real-time",
        ),
    ] = True,
    verbose: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--verbose", "-v"],
            help="Enable verbose output",
        ),
    ] = False,
) -> None:
    """Run the MCP server (default when no command specified)."""
    _setup_logging(verbose)
    _run_serve(watch=watch)


def main() -> None:
    """Entry point for the CLI."""
    app()
