"""Tests for CLI commands and formatting helpers."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from searchease import cli
from searchease.index.search import SearchError, SearchResult
from searchease.index.sync import SyncResult


class TestFormatting:
    @pytest.mark.parametrize(
        "size_mb,expected",
        [(0.5, "512.0 KB"), (1.0, "1.0 MB"), (12.34, "12.3 MB")],
    )
    def test_format_size(self, size_mb, expected):
        assert cli._format_size(size_mb) == expected

    @pytest.mark.parametrize(
        "seconds,expected",
        [(1.25, "1.2s"), (59.0, "59.0s"), (125.0, "2m 5.0s")],
    )
    def test_format_time(self, seconds, expected):
        assert cli._format_time(seconds) == expected


@pytest.fixture
def env(monkeypatch, tmp_path: Path, docs_root: Path):
    monkeypatch.setenv("SEARCHEASE_INDEX_PATH", str(tmp_path / "cli.db"))
    monkeypatch.delenv("SEARCHEASE_LEDGER_PATH", raising=False)
    monkeypatch.setenv("SEARCHEASE_FOLDER", str(docs_root))
    monkeypatch.setenv("SEARCHEASE_EXTENSIONS", ".txt,.md,.json")
    return tmp_path


class TestCommands:
    def test_index_requires_folder(self, monkeypatch, capsys):
        monkeypatch.delenv("SEARCHEASE_FOLDER", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            cli.index()

        assert exc_info.value.code == 1
        assert "SEARCHEASE_FOLDER" in capsys.readouterr().err

    def test_index_then_search(self, env, capsys):
        cli.index()
        out = capsys.readouterr().out
        assert "Indexed 3 files" in out

        cli.search("retry")
        out = capsys.readouterr().out
        assert "notes.txt" in out
        assert "<b>Retry</b>" in out

    def test_search_without_results(self, env, capsys):
        cli.index()
        capsys.readouterr()

        cli.search("zzzznothing")

        assert "No results." in capsys.readouterr().out

    def test_search_empty_query(self, env):
        with pytest.raises(SystemExit):
            cli.search("  ")

    def test_search_error_exits(self, env, capsys):
        with (
            patch(
                "searchease.index.IndexManager.search",
                side_effect=SearchError("broken"),
            ),
            pytest.raises(SystemExit),
        ):
            cli.search("index")

        assert "broken" in capsys.readouterr().err

    def test_status_without_index(self, env, capsys):
        with pytest.raises(SystemExit):
            cli.status()
        assert "No index found." in capsys.readouterr().out

    def test_status_after_index(self, env, capsys):
        cli.index()
        capsys.readouterr()

        cli.status()

        out = capsys.readouterr().out
        assert "Documents:    3" in out
        assert "Ledger:       3 entries" in out

    def test_search_prints_scores(self, env, capsys):
        result = SearchResult(
            file_name="a.txt",
            file_path="/docs/a.txt",
            file_extension=".txt",
            content_snippets=["first <b>hit</b>"],
            score=2.5,
        )
        with patch(
            "searchease.index.IndexManager.search", return_value=[result]
        ):
            cli.search("hit")

        out = capsys.readouterr().out
        assert "   2.500  /docs/a.txt" in out
        assert "first <b>hit</b>" in out


class TestServe:
    def test_watches_by_default(self):
        with (
            patch.object(cli, "_run_serve") as mock_run,
            patch.object(cli, "_setup_logging"),
        ):
            cli.serve()
            cli.default_handler()

        assert mock_run.call_args_list == [call(watch=True), call(watch=True)]

    @pytest.mark.parametrize(
        "argv,expected",
        [(["serve"], True), (["serve", "--no-watch"], False)],
    )
    def test_watch_flag(self, argv, expected):
        _, bound, _ = cli.app.parse_args(argv)
        assert bound.arguments.get("watch", True) is expected

    def test_run_serve_starts_watcher(self, env):
        manager = MagicMock()
        manager.sync.return_value = SyncResult()

        with (
            patch(
                "searchease.index.IndexManager.get_instance",
                return_value=manager,
            ),
            patch("searchease.server.mcp.run") as mock_run,
        ):
            cli._run_serve()

        manager.start_background.assert_called_once()
        assert manager.start_background.call_args.kwargs["watch"] is True
        mock_run.assert_called_once()
        manager.close.assert_called_once()
