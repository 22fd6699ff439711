# etl/load_book.py
import argparse

from etl.config import CHUNK_MAX_CHARS, DB, SCHEMA_PATH
from etl.db import get_conn, init_schema, replace_chunks, upsert_book
from etl.utils import chunk_id, chunk_text


def build_rows(book_id: str, text: str, max_chars: int = CHUNK_MAX_CHARS):
    return [
        (chunk_id(book_id, idx), book_id, idx, content)
        for idx, content in enumerate(chunk_text(text, max_chars))
    ]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Load a book into the tutor database")
    parser.add_argument("path", nargs="?", help="UTF-8 text file with the book content")
    parser.add_argument("--book-id")
    parser.add_argument("--title")
    parser.add_argument("--author")
    parser.add_argument("--description")
    parser.add_argument("--max-chars", type=int, default=CHUNK_MAX_CHARS)
    parser.add_argument("--init-schema", action="store_true")
    args = parser.parse_args(argv)
    if args.max_chars < 1:
        parser.error("--max-chars must be at least 1")
    if args.path and not (args.book_id and args.title):
        parser.error("--book-id and --title are required when loading a book")
    if not args.path and not args.init_schema:
        parser.error("nothing to do")
    return args


def main(argv=None):
    args = parse_args(argv)
    conn = get_conn(DB)
    conn.autocommit = False

    try:
        if args.init_schema:
            init_schema(conn, SCHEMA_PATH)
            conn.commit()
            print("OK schema")

        if args.path:
            with open(args.path, encoding="utf-8") as f:
                text = f.read()
            rows = build_rows(args.book_id, text, args.max_chars)
            upsert_book(conn, args.book_id, args.title, args.author, args.description)
            replace_chunks(conn, args.book_id, rows)
            conn.commit()
            print(f"OK book={args.book_id} chunks={len(rows)}")

    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    main()
