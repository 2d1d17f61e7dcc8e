"""Tests for the FTS5 index engine adapter."""

from __future__ import annotations

import os

import pytest

from searchease.index.engine import (
    _MATCH_END,
    _MATCH_START,
    IndexedDocument,
    IndexEngine,
    best_fragments,
)


def _doc(path: str, content: str) -> IndexedDocument:
    name = os.path.basename(path)
    return IndexedDocument(
        path=path,
        file_name=name,
        extension=os.path.splitext(name)[1],
        content=content,
        size=len(content),
        modified=1.0,
        indexed_at=2.0,
    )


def _store(engine: IndexEngine, *docs: IndexedDocument) -> None:
    with engine.write():
        for doc in docs:
            engine.add_or_replace(doc)
        engine.commit()


def _mark(text: str) -> str:
    return f"{_MATCH_START}{text}{_MATCH_END}"


class TestMutations:
    def test_add_or_replace_keeps_one_document(self, engine: IndexEngine):
        _store(engine, _doc("/docs/a.txt", "first version"))
        _store(engine, _doc("/docs/a.txt", "second version"))

        assert engine.count() == 1
        with engine.open_reader() as reader:
            assert engine.search(reader, "first", 10) == []
            hits = engine.search(reader, "second", 10)
        assert [h.path for h in hits] == ["/docs/a.txt"]

    def test_delete(self, engine: IndexEngine):
        _store(engine, _doc("/docs/a.txt", "alpha"))
        assert engine.has_document("/docs/a.txt")

        with engine.write():
            assert engine.delete("/docs/a.txt") is True
            assert engine.delete("/docs/a.txt") is False
            engine.commit()

        assert not engine.has_document("/docs/a.txt")
        assert engine.count() == 0

    def test_delete_under(self, engine: IndexEngine):
        base = os.sep + os.path.join("docs", "sub")
        _store(
            engine,
            _doc(os.path.join(base, "a.txt"), "alpha"),
            _doc(os.path.join(base, "deep", "b.txt"), "bravo"),
            _doc(base + "-other.txt", "charlie"),
        )

        with engine.write():
            assert engine.delete_under(base) == 2
            engine.commit()

        assert engine.indexed_paths() == {base + "-other.txt"}

    def test_delete_all(self, engine: IndexEngine):
        _store(engine, _doc("/docs/a.txt", "a"), _doc("/docs/b.txt", "b"))
        with engine.write():
            engine.delete_all()
            engine.commit()
        assert engine.count() == 0

    def test_failed_write_rolls_back(self, engine: IndexEngine):
        _store(engine, _doc("/docs/a.txt", "alpha"))

        with pytest.raises(RuntimeError):
            with engine.write():
                engine.delete("/docs/a.txt")
                raise RuntimeError("boom")

        assert engine.indexed_paths() == {"/docs/a.txt"}


class TestReaders:
    def test_uncommitted_changes_are_invisible(self, engine: IndexEngine):
        with engine.write():
            engine.add_or_replace(_doc("/docs/a.txt", "pending"))
            assert engine.count() == 0
            engine.commit()
        assert engine.count() == 1

    def test_new_reader_sees_latest_commit(self, engine: IndexEngine):
        _store(engine, _doc("/docs/a.txt", "alpha"))
        with engine.open_reader() as reader:
            assert len(engine.search(reader, "alpha", 10)) == 1

        _store(engine, _doc("/docs/b.txt", "alpha again"))
        with engine.open_reader() as reader:
            assert len(engine.search(reader, "alpha", 10)) == 2

    def test_open_reader_keeps_its_snapshot(self, engine: IndexEngine):
        _store(engine, _doc("/docs/a.txt", "alpha"))

        with engine.open_reader() as reader:
            assert len(engine.search(reader, "alpha", 10)) == 1
            _store(engine, _doc("/docs/b.txt", "alpha again"))
            assert len(engine.search(reader, "alpha", 10)) == 1


class TestSearch:
    def test_file_name_matches(self, engine: IndexEngine):
        _store(engine, _doc("/docs/budget.txt", "nothing relevant"))
        with engine.open_reader() as reader:
            hits = engine.search(reader, "budget", 10)
        assert len(hits) == 1

    def test_scores_are_descending(self, engine: IndexEngine):
        _store(
            engine,
            _doc("/docs/a.txt", "index"),
            _doc("/docs/b.txt", "index index index build"),
            _doc("/docs/c.txt", "unrelated words only"),
        )
        with engine.open_reader() as reader:
            hits = engine.search(reader, "index", 10)
        assert len(hits) == 2
        assert hits[0].score >= hits[1].score
        assert all(h.score > 0 for h in hits)

    def test_limit(self, engine: IndexEngine):
        _store(
            engine,
            *[_doc(f"/docs/{i}.txt", "common term") for i in range(5)],
        )
        with engine.open_reader() as reader:
            assert len(engine.search(reader, "common", 3)) == 3

    def test_get_document(self, engine: IndexEngine):
        _store(engine, _doc("/docs/a.txt", "alpha"))
        with engine.open_reader() as reader:
            hit = engine.search(reader, "alpha", 1)[0]
            doc = engine.get_document(reader, hit.doc_id)
            missing = engine.get_document(reader, hit.doc_id + 1000)
        assert doc is not None
        assert doc.content == "alpha"
        assert doc.extension == ".txt"
        assert missing is None


class TestHighlight:
    def test_highlights_content(self, engine: IndexEngine):
        _store(engine, _doc("/docs/notes.txt", "Build fails. Retry index."))
        with engine.open_reader() as reader:
            hit = engine.search(reader, "index", 1)[0]
            fragments = engine.highlight(
                reader, hit.doc_id, "content", "index", 5, 150
            )
        assert fragments == ["Build fails. Retry <b>index</b>."]

    def test_no_content_match(self, engine: IndexEngine):
        _store(engine, _doc("/docs/budget.txt", "nothing relevant"))
        with engine.open_reader() as reader:
            hit = engine.search(reader, "budget", 1)[0]
            fragments = engine.highlight(
                reader, hit.doc_id, "content", "budget", 5, 150
            )
        assert fragments == []


class TestBestFragments:
    def test_single_fragment(self):
        marked = f"Build fails. Retry {_mark('index')}."
        assert best_fragments(marked, 5, 150) == [
            "Build fails. Retry <b>index</b>."
        ]

    def test_fragments_without_matches_are_dropped(self):
        marked = "aaaa bbbb cccc " + _mark("hit") + " dddd eeee ffff"
        fragments = best_fragments(marked, 5, 10)
        assert fragments
        assert all("<b>hit</b>" in f for f in fragments)

    def test_ranked_by_match_count(self):
        marked = (
            _mark("one")
            + " filler filler "
            + _mark("two")
            + " "
            + _mark("two")
        )
        fragments = best_fragments(marked, 5, 16)
        assert fragments[0] == "filler <b>two</b> <b>two</b>"
        assert fragments[1] == "<b>one</b> filler"

    def test_respects_max_fragments(self):
        marked = " ".join(_mark("x") + " padding words" for _ in range(10))
        assert len(best_fragments(marked, 3, 20)) == 3

    def test_zero_fragments(self):
        assert best_fragments(_mark("x"), 0, 150) == []

    def test_existing_markup_is_untouched(self):
        marked = "<b>not a match</b> " + _mark("real")
        assert best_fragments(marked, 5, 150) == [
            "<b>not a match</b> <b>real</b>"
        ]
