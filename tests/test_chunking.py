import pytest

from etl.load_book import build_rows, parse_args
from etl.utils import chunk_id, chunk_text, normalize_text


def test_normalize_text_collapses_spaces():
    assert normalize_text("a\xa0 b\r\n\n\n\nc  ") == "a b\n\nc"


def test_chunk_text_packs_paragraphs():
    text = "First para.\n\nSecond para.\n\nThird para."
    assert chunk_text(text, 1000) == ["First para.\n\nSecond para.\n\nThird para."]


def test_chunk_text_respects_max_chars():
    text = "\n\n".join(["word " * 30] * 5)
    chunks = chunk_text(text, 100)
    assert chunks
    assert all(len(c) <= 100 for c in chunks)


def test_chunk_text_splits_overlong_words():
    chunks = chunk_text("x" * 250, 100)
    assert chunks == ["x" * 100, "x" * 100, "x" * 50]


def test_build_rows_keeps_storage_order():
    rows = build_rows("b1", "One.\n\nTwo.", max_chars=5)
    assert [(r[1], r[2], r[3]) for r in rows] == [("b1", 0, "One."), ("b1", 1, "Two.")]
    assert rows[0][0] == chunk_id("b1", 0)


def test_chunk_text_rejects_non_positive_size():
    with pytest.raises(ValueError):
        chunk_text("some words", 0)


def test_cli_rejects_non_positive_max_chars():
    with pytest.raises(SystemExit):
        parse_args(["book.txt", "--book-id", "b1", "--title", "Book", "--max-chars", "0"])
    assert parse_args(["book.txt", "--book-id", "b1", "--title", "Book", "--max-chars", "1"]).max_chars == 1
