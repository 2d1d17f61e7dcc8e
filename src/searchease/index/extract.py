"""Text extraction from files on disk.

Extraction is chosen by file extension:
- PLAIN: the file is read as UTF-8 text, unchanged
- DOCX: paragraph text followed by table-cell text (python-docx)
- UNSUPPORTED: nothing is read, an empty string is returned

extract() never raises. Failures are logged and produce "" so a single
unreadable file cannot stop an indexing sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import docx

logger = logging.getLogger(__name__)

# Skip huge files to prevent OOM on accidental binaries (25 MB)
MAX_FILE_SIZE = 25 * 1024 * 1024

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class ExtractionStrategy(Enum):
    """How text is pulled out of a file."""

    PLAIN = "plain"
    DOCX = "docx"
    UNSUPPORTED = "unsupported"


STRATEGIES: dict[str, ExtractionStrategy] = {
    ".txt": ExtractionStrategy.PLAIN,
    ".md": ExtractionStrategy.PLAIN,
    ".cs": ExtractionStrategy.PLAIN,
    ".json": ExtractionStrategy.PLAIN,
    ".py": ExtractionStrategy.PLAIN,
    ".csv": ExtractionStrategy.PLAIN,
    ".log": ExtractionStrategy.PLAIN,
    ".xml": ExtractionStrategy.PLAIN,
    ".html": ExtractionStrategy.PLAIN,
    ".yaml": ExtractionStrategy.PLAIN,
    ".yml": ExtractionStrategy.PLAIN,
    ".ini": ExtractionStrategy.PLAIN,
    ".docx": ExtractionStrategy.DOCX,
}


@dataclass
class FileMetadata:
    """Size and modification time of a file."""

    size: int
    modified: float

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.modified, tz=timezone.utc)


def read_file_metadata(path: Path) -> FileMetadata | None:
    """
    Read size and modification time of a file.

    Returns:
        FileMetadata, or None if the file does not exist or can't be read
    """
    try:
        st = path.stat()
    except OSError:
        return None
    return FileMetadata(size=st.st_size, modified=st.st_mtime)


def read_plain_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def read_docx_text(path: Path) -> str:
    """
    Extract text from a .docx document.

    All paragraphs come first, in document order, followed by the text
    of every table cell, row by row.
    """
    document = docx.Document(str(path))

    parts = [p.text for p in document.paragraphs if p.text]
    for table in document.tables:
        for row in table.rows:
            for cell in row.cells:
                if cell.text:
                    parts.append(cell.text)

    return "\n".join(parts)


class ContentExtractor:
    """Extracts plain text from files, dispatching on extension."""

    def __init__(
        self,
        strategies: dict[str, ExtractionStrategy] | None = None,
        max_file_size: int = MAX_FILE_SIZE,
    ):
        self._strategies = dict(strategies or STRATEGIES)
        self._max_file_size = max_file_size

    def strategy_for(self, path: Path) -> ExtractionStrategy:
        """Map a file's extension to its extraction strategy."""
        return self._strategies.get(
            path.suffix.lower(), ExtractionStrategy.UNSUPPORTED
        )

    def extract(self, path: Path) -> str:
        """
        Extract the text content of a file.

        Args:
            path: File to read

        Returns:
            Extracted text, or "" for unsupported, oversized or
            unreadable files
        """
        strategy = self.strategy_for(path)

        if strategy is ExtractionStrategy.UNSUPPORTED:
            logger.warning("Unsupported file type, not extracted: %s", path)
            return ""

        try:
            size = path.stat().st_size
            if size > self._max_file_size:
                logger.warning(
                    "Skipping %s: %d bytes exceeds limit of %d",
                    path,
                    size,
                    self._max_file_size,
                )
                return ""

            if strategy is ExtractionStrategy.DOCX:
                return read_docx_text(path)
            return read_plain_text(path)
        except Exception as e:  # Broad: malformed documents raise anything
            logger.error("Failed to extract text from %s: %s", path, e)
            return ""
