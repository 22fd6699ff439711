# etl/db.py
import psycopg2
from psycopg2.extras import execute_values

UPSERT_BOOK_SQL = """
INSERT INTO books (id, title, author, description)
VALUES (%s, %s, %s, %s)
ON CONFLICT (id)
DO UPDATE SET
  title = EXCLUDED.title,
  author = EXCLUDED.author,
  description = EXCLUDED.description;
"""

UPSERT_CHUNK_SQL = """
INSERT INTO book_chunks
(id, book_id, chunk_index, content)
VALUES %s
ON CONFLICT (book_id, chunk_index)
DO UPDATE SET
  content = EXCLUDED.content;
"""

def get_conn(cfg):
    return psycopg2.connect(**cfg)

def init_schema(conn, schema_path):
    with open(schema_path, encoding="utf-8") as f:
        ddl = f.read()
    with conn.cursor() as cur:
        cur.execute(ddl)

def upsert_book(conn, book_id, title, author=None, description=None):
    with conn.cursor() as cur:
        cur.execute(UPSERT_BOOK_SQL, (book_id, title, author, description))

def replace_chunks(conn, book_id, rows):
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM book_chunks WHERE book_id=%s AND chunk_index >= %s",
            (book_id, len(rows)),
        )
        if rows:
            execute_values(cur, UPSERT_CHUNK_SQL, rows)
