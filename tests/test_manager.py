"""Tests for IndexManager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from searchease.config import Settings
from searchease.index.manager import IndexManager


@pytest.fixture
def settings(tmp_path: Path, docs_root: Path) -> Settings:
    return Settings(
        index_path=tmp_path / "data" / "index.db",
        ledger_path=tmp_path / "data" / "ledger.json",
        folder_to_index=docs_root,
        sync_interval=60.0,
        retry_delay=60.0,
        extensions=frozenset({".txt", ".md", ".json"}),
    )


@pytest.fixture
def manager(settings: Settings):
    mgr = IndexManager(settings)
    yield mgr
    mgr.close()


class TestSingleton:
    def test_get_instance_returns_same_object(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SEARCHEASE_INDEX_PATH", str(tmp_path / "i.db"))
        monkeypatch.setattr(IndexManager, "_instance", None)

        first = IndexManager.get_instance()
        second = IndexManager.get_instance()

        assert first is second
        assert first.db_path == tmp_path / "i.db"
        first.close()


class TestIndexManager:
    def test_has_index(self, manager: IndexManager):
        assert manager.has_index() is False
        manager.sync()
        assert manager.has_index() is True

    def test_sync_then_search(self, manager: IndexManager, docs_root: Path):
        result = manager.sync()
        assert result.indexed == 3

        results = manager.search("retry", 10)

        assert len(results) == 1
        assert results[0].file_path == str(docs_root / "notes.txt")
        assert results[0].content_snippets == [
            "Build fails. <b>Retry</b> index."
        ]

    def test_deleted_file_leaves_results_after_sweep(
        self, settings: Settings, tmp_path: Path, make_file
    ):
        folder = tmp_path / "single"
        notes = make_file(folder / "notes.txt", "Build fails. Retry index.")
        settings.folder_to_index = folder
        mgr = IndexManager(settings)
        try:
            mgr.sync()
            results = mgr.search("index", 10)
            assert len(results) == 1
            assert results[0].content_snippets == [
                "Build fails. Retry <b>index</b>."
            ]

            notes.unlink()
            result = mgr.sync()

            assert result.removed == 1
            assert mgr.search("index", 10) == []
        finally:
            mgr.close()

    def test_get_stats(self, manager: IndexManager, docs_root: Path):
        manager.sync()

        stats = manager.get_stats()

        assert stats.document_count == 3
        assert stats.ledger_count == 3
        assert stats.last_sync is not None
        assert stats.db_size_mb > 0
        assert stats.folder == docs_root

    def test_rebuild(self, manager: IndexManager):
        manager.sync()
        result = manager.rebuild()
        assert result.indexed == 3

    def test_close_persists_ledger(self, settings: Settings):
        mgr = IndexManager(settings)
        mgr.sync()
        mgr.close()

        restored = IndexManager(settings)
        try:
            assert len(restored.ledger) == 3
            assert restored.sync().indexed == 0
        finally:
            restored.close()


class TestBackground:
    def test_start_and_stop_background(self, manager: IndexManager):
        with patch.object(manager.synchronizer, "sweep"):
            assert manager.start_background() is True
            assert manager.sync_running
            assert manager.watcher_running

            manager.stop_background()

        assert not manager.sync_running
        assert not manager.watcher_running

    def test_watcher_starts_by_default(self, manager: IndexManager):
        with (
            patch.object(manager.synchronizer, "sweep"),
            patch.object(manager, "start_watcher") as mock_watch,
        ):
            manager.start_background()
            manager.stop_background()

        mock_watch.assert_called_once_with(on_update=None)

    def test_start_background_without_watcher(self, manager: IndexManager):
        with (
            patch.object(manager.synchronizer, "sweep"),
            patch.object(manager, "start_watcher") as mock_watch,
        ):
            manager.start_background(watch=False)
            manager.stop_background()

        mock_watch.assert_not_called()

    def test_watcher_lifecycle(self, manager: IndexManager):
        assert manager.start_watcher() is True
        assert manager.watcher_running
        assert manager.start_watcher() is False

        manager.stop_background()

        assert not manager.watcher_running

    def test_watcher_needs_folder(self, settings: Settings):
        settings.folder_to_index = None
        mgr = IndexManager(settings)
        try:
            assert mgr.start_watcher() is False
        finally:
            mgr.close()
