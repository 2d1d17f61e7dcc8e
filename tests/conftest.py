"""Shared pytest fixtures for searchease tests."""

from __future__ import annotations

import os
import sqlite3
import time
from pathlib import Path

import pytest

from searchease.index.engine import IndexEngine
from searchease.index.extract import ContentExtractor
from searchease.index.ledger import IndexLedger
from searchease.index.schema import SCHEMA_VERSION, get_schema_sql
from searchease.index.search import SearchAssembler
from searchease.index.sync import Synchronizer

EXTENSIONS = {".txt", ".md", ".json"}


def write_file(path: Path, text: str, age: float = 60.0) -> Path:
    """Write a file and backdate its mtime by age seconds."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    past = time.time() - age
    os.utime(path, (past, past))
    return path


@pytest.fixture
def temp_db():
    """Create an in-memory database with the schema."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.executescript(get_schema_sql())
    conn.execute(
        "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
    )
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Return a temporary path for a database file."""
    return tmp_path / "data" / "test_index.db"


@pytest.fixture
def engine(temp_db_path: Path):
    """IndexEngine on a temporary database file."""
    eng = IndexEngine(temp_db_path)
    yield eng
    eng.close()


@pytest.fixture
def ledger(tmp_path: Path) -> IndexLedger:
    return IndexLedger(tmp_path / "data" / "ledger.json")


@pytest.fixture
def docs_root(tmp_path: Path) -> Path:
    """A folder with a few indexable files and one that isn't."""
    root = tmp_path / "docs"
    write_file(root / "notes.txt", "Build fails. Retry index.")
    write_file(
        root / "guide.md",
        "Install the package. Run the indexer! Does it work?",
    )
    write_file(root / "sub" / "config.json", '{"name": "search engine"}')
    write_file(root / "image.png", "not really an image")
    return root


@pytest.fixture
def synchronizer(engine, ledger, docs_root) -> Synchronizer:
    return Synchronizer(
        engine, ledger, ContentExtractor(), docs_root, EXTENSIONS
    )


@pytest.fixture
def assembler(engine) -> SearchAssembler:
    return SearchAssembler(engine, max_snippet_length=150, max_fragments=5)


@pytest.fixture
def make_file():
    """Factory for files with a backdated mtime."""
    return write_file
