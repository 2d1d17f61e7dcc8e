"""
SearchEase MCP Server

Provides MCP tools for searching files in the indexed folder.
The FTS5 index is kept current by the background synchronizer.

TOOLS (2 total):
- search(query, max_results?) - Ranked search with highlighted snippets
- index_status() - Document counts and last sync time
"""

from __future__ import annotations

import asyncio
import logging
from typing_extensions import TypedDict

from fastmcp import FastMCP

from .index.search import SearchError

logger = logging.getLogger(__name__)

mcp = FastMCP("SearchEase")

DEFAULT_MAX_RESULTS = 10
MAX_RESULTS_LIMIT = 100


# ========== Response Type Definitions ==========


class SearchResultDict(TypedDict):
    """A file matching a search."""

    file_name: str
    file_path: str
    file_extension: str
    content_snippets: list[str]
    file_size: int
    last_modified: str
    score: float


class IndexStatusDict(TypedDict):
    """Index statistics."""

    folder: str | None
    document_count: int
    ledger_count: int
    last_sync: str | None
    db_size_mb: float
    watcher_running: bool


# ========== Helper Functions ==========


def _get_index_manager():
    """Get the IndexManager singleton, lazily imported."""
    from .index import IndexManager

    return IndexManager.get_instance()


# ========== MCP Tools ==========


@mcp.tool
async def search(
    query: str,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> list[SearchResultDict]:
    """
    Search file names and contents in the indexed folder.

    Terms are combined with OR; results are ranked by BM25 relevance.
    Each result carries up to a few content snippets with matched terms
    wrapped in <b>...</b>.

    Args:
        query: Search terms. Supports "exact phrases", prefix* and
            AND / OR / NOT.
        max_results: Maximum number of results (default: 10, max: 100)

    Returns:
        Matching files, most relevant first

    Examples:
        >>> search("invoice")
        >>> search('"quarterly report" draft*', max_results=5)
    """
    if not query or not query.strip():
        raise ValueError("Search query cannot be empty")

    max_results = max(1, min(max_results, MAX_RESULTS_LIMIT))
    manager = _get_index_manager()

    try:
        results = await asyncio.to_thread(manager.search, query, max_results)
    except SearchError as e:
        logger.error("Error occurred while searching for %r: %s", query, e)
        raise ValueError(
            "An error occurred while processing your search request"
        ) from e

    return [r.to_dict() for r in results]


@mcp.tool
async def index_status() -> IndexStatusDict:
    """
    Show statistics about the search index.

    Returns:
        Folder being indexed, document and ledger counts, last sync time,
        database size and whether the file watcher is running
    """
    manager = _get_index_manager()
    stats = await asyncio.to_thread(manager.get_stats)

    return {
        "folder": str(stats.folder) if stats.folder else None,
        "document_count": stats.document_count,
        "ledger_count": stats.ledger_count,
        "last_sync": stats.last_sync.isoformat() if stats.last_sync else None,
        "db_size_mb": round(stats.db_size_mb, 3),
        "watcher_running": manager.watcher_running,
    }


if __name__ == "__main__":
    mcp.run()
