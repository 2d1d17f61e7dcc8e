"""SearchEase - Full-text search over a folder, kept in sync as files change.

Features:
- Incremental indexing: only new or modified files are re-read
- Real-time updates from a file watcher, plus periodic full syncs
- FTS5 search with BM25 ranking and highlighted snippets

Usage:
    searchease            # Run MCP server (default)
    searchease index      # Sync search index with the folder
    searchease status     # Show index statistics
    searchease rebuild    # Force rebuild index
"""

from .cli import main
from .server import mcp

__all__ = ["main", "mcp"]
