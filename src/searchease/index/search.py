"""FTS5 search with tiered snippet assembly.

Provides:
- build_match_query(): Turn free text into an FTS5 OR-of-terms query
- SearchAssembler: Run a query and build SearchResult objects

Snippets for each hit come from the first tier that yields anything:
1. Highlighted fragments of the content (matches wrapped in <b>...</b>)
2. Sentences of the raw content, each ending with a period
3. The first max_snippet_length characters followed by "..."

Query syntax supported:
- Simple terms: "meeting notes" (either term matches)
- Phrases: '"exact phrase"'
- Boolean: "meeting AND notes", "meeting NOT draft"
- Prefix: "meet*"
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .extract import EPOCH, read_file_metadata

if TYPE_CHECKING:
    from .engine import Hit, IndexEngine, ReadView

logger = logging.getLogger(__name__)

# A bare FTS5 token may only hold word characters
_BAREWORD = re.compile(r"^\w+$")

# FTS5 boolean operators that should be passed through
_FTS5_OPERATORS = {"OR", "AND", "NOT"}

_SENTENCE_END = re.compile(r"[.!?]")

ELLIPSIS = "..."


class SearchError(Exception):
    """Raised when a query can't be parsed or executed."""


@dataclass
class SearchResult:
    """A single search result with snippets and live file metadata."""

    file_name: str
    file_path: str
    file_extension: str
    content_snippets: list[str] = field(default_factory=list)
    file_size: int = 0
    last_modified: datetime = EPOCH
    score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_extension": self.file_extension,
            "content_snippets": list(self.content_snippets),
            "file_size": self.file_size,
            "last_modified": self.last_modified.isoformat(),
            "score": self.score,
        }


def _tokenize_query(query: str) -> list[str]:
    """Split query into phrase blocks and bare tokens.

    Balanced double-quoted segments are kept intact (including quotes).
    Unbalanced quotes are dropped.

    Returns:
        List of tokens: quoted phrases and individual bare words.
    """
    tokens: list[str] = []
    i = 0
    n = len(query)

    while i < n:
        if query[i].isspace():
            i += 1
            continue

        if query[i] == '"':
            end = query.find('"', i + 1)
            if end != -1:
                tokens.append(query[i : end + 1])
                i = end + 1
            else:
                i += 1
        else:
            start = i
            while i < n and not query[i].isspace() and query[i] != '"':
                i += 1
            tokens.append(query[start:i])

    return tokens


def _quote(term: str) -> str:
    """Wrap a term in double quotes (FTS5's only escaping mechanism)."""
    return '"' + term.replace('"', '""') + '"'


def _sanitize_bare_token(token: str) -> str:
    """Sanitize a single bare token.

    Tokens that are not plain FTS5 barewords are wrapped in ``"..."``
    so punctuation can't be read as an operator or column filter.

    Preserves:
    - Trailing ``*`` (prefix search)
    - Boolean operators (OR, AND, NOT)
    """
    if token in _FTS5_OPERATORS:
        return token

    has_wildcard = token.endswith("*") and len(token) > 1
    core = token[:-1] if has_wildcard else token

    if _BAREWORD.match(core):
        return token

    # Wildcard must go outside the quotes for FTS5
    return _quote(core) + "*" if has_wildcard else _quote(core)


def build_match_query(query: str) -> str:
    """Build an FTS5 MATCH expression from free text.

    Terms are combined with OR unless the user wrote an explicit
    AND / OR / NOT, in which case FTS5's own precedence applies.
    Operators at the start or end of the query are dropped.

    Args:
        query: Raw user query

    Returns:
        FTS5 query over file_name and content, or "" for an empty query
    """
    if not query or not query.strip():
        return ""

    parts: list[str] = []
    for token in _tokenize_query(query.strip()):
        if token.startswith('"') and token.endswith('"') and len(token) > 1:
            parts.append(token)
        else:
            parts.append(_sanitize_bare_token(token))

    while parts and parts[0] in _FTS5_OPERATORS:
        parts.pop(0)
    while parts and parts[-1] in _FTS5_OPERATORS:
        parts.pop()

    if any(p in _FTS5_OPERATORS for p in parts):
        return " ".join(parts)
    return " OR ".join(parts)


def _escape_all_terms(query: str) -> str:
    """Quote every word and OR them together.

    Last-resort fallback used when the first attempt raises an FTS5
    syntax error.
    """
    words = [w for w in query.split() if w not in _FTS5_OPERATORS]
    return " OR ".join(_quote(w) for w in words)


def split_sentences(content: str, limit: int) -> list[str]:
    """
    Split content into sentences on '.', '!' and '?'.

    Args:
        content: Raw document text
        limit: Maximum number of sentences

    Returns:
        Up to limit trimmed, non-empty sentences, each ending in "."
        ([] when the content has no sentence punctuation)
    """
    if limit <= 0 or not _SENTENCE_END.search(content):
        return []

    sentences = [s.strip() for s in _SENTENCE_END.split(content)]
    return [s + "." for s in sentences if s][:limit]


def truncate_content(content: str, length: int) -> list[str]:
    """Return the first length characters of content plus an ellipsis."""
    if not content:
        return []
    return [content[:length] + ELLIPSIS]


class SearchAssembler:
    """
    Runs queries against the index engine and assembles results.

    Every search opens its own read view, so documents committed by the
    synchronizer are visible to the next search without coordination.
    """

    def __init__(
        self,
        engine: IndexEngine,
        max_snippet_length: int = 150,
        max_fragments: int = 5,
    ):
        self._engine = engine
        self.max_snippet_length = max_snippet_length
        self.max_fragments = max_fragments

    def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        """
        Search file names and content.

        Args:
            query: Free-text query
            max_results: Maximum number of results

        Returns:
            Results ordered by descending relevance

        Raises:
            SearchError: If the query fails; no partial results are returned
        """
        match = build_match_query(query)
        if not match or max_results <= 0:
            return []

        try:
            with self._engine.open_reader() as reader:
                try:
                    hits = self._engine.search(reader, match, max_results)
                except sqlite3.OperationalError as e:
                    if "fts5: syntax error" not in str(e).lower():
                        raise
                    match = _escape_all_terms(query)
                    logger.debug("Retrying query as %r", match)
                    hits = self._engine.search(reader, match, max_results)

                results = []
                for hit in hits:
                    result = self._assemble(reader, hit, match)
                    if result is not None:
                        results.append(result)
                return results

        except sqlite3.Error as e:
            logger.error("Error searching with term %r: %s", query, e)
            raise SearchError(f"Search failed for {query!r}: {e}") from e

    def _assemble(
        self, reader: ReadView, hit: Hit, match: str
    ) -> SearchResult | None:
        """Build one SearchResult, reading size/mtime live from disk."""
        document = self._engine.get_document(reader, hit.doc_id)
        if document is None:
            return None

        path = Path(document.path)
        metadata = read_file_metadata(path)

        return SearchResult(
            file_name=document.file_name,
            file_path=document.path,
            file_extension=document.extension,
            content_snippets=self._snippets(
                reader, hit, match, document.content
            ),
            file_size=metadata.size if metadata else 0,
            last_modified=metadata.modified_at if metadata else EPOCH,
            score=round(hit.score, 3),
        )

    def _snippets(
        self, reader: ReadView, hit: Hit, match: str, content: str
    ) -> list[str]:
        fragments = self._engine.highlight(
            reader,
            hit.doc_id,
            "content",
            match,
            self.max_fragments,
            self.max_snippet_length,
        )
        if fragments:
            return fragments

        fragments = split_sentences(content, self.max_fragments)
        if fragments:
            return fragments

        return truncate_content(content, self.max_snippet_length)
