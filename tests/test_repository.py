import json
from datetime import datetime, timezone

import psycopg2
import pytest

from api.db import TutorRepository, guest_user_id


class FakeCursor:
    def __init__(self, rows=None, error=None):
        self.queries = []
        self.params = []
        self._rows = rows or []
        self._error = error

    def execute(self, query, params=None):
        if self._error:
            raise self._error
        self.queries.append(" ".join(str(query).split()))
        self.params.append(params)

    def fetchall(self):
        return self._rows

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def test_guest_conversation_upserts_user_first():
    cursor = FakeCursor()
    conn = FakeConn(cursor)
    conversation_id = TutorRepository(conn).create_conversation(guest_user_id("g1"), "b1", guest_id="g1")

    assert len(cursor.queries) == 2
    assert cursor.queries[0].startswith("INSERT INTO users")
    assert "ON CONFLICT DO NOTHING" in cursor.queries[0]
    assert cursor.params[0] == ("guest_g1", "g1")
    assert cursor.queries[1].startswith("INSERT INTO conversations")
    assert cursor.params[1] == (conversation_id, "guest_g1", "b1")
    assert conn.commits == 1


def test_registered_conversation_skips_guest_upsert():
    cursor = FakeCursor()
    TutorRepository(FakeConn(cursor)).create_conversation("u1", "b1")
    assert len(cursor.queries) == 1
    assert cursor.queries[0].startswith("INSERT INTO conversations")


def test_book_chunks_are_bounded():
    cursor = FakeCursor(rows=[{"id": "c1", "book_id": "b1", "chunk_index": 0, "content": "text"}])
    chunks = TutorRepository(FakeConn(cursor)).get_book_chunks("b1", limit=5)
    assert chunks[0]["content"] == "text"
    assert "LIMIT %s" in cursor.queries[0]
    assert cursor.params[0] == ("b1", 5)


def test_user_lookup_excludes_guests():
    cursor = FakeCursor()
    assert TutorRepository(FakeConn(cursor)).get_user_by_email("a@example.com") is None
    assert "is_guest = FALSE" in cursor.queries[0]


def test_guest_count_only_counts_student_messages():
    cursor = FakeCursor(rows=[{"count": 3}])
    assert TutorRepository(FakeConn(cursor)).get_guest_message_count("g1") == 3
    assert "m.role = 'user'" in cursor.queries[0]


def test_add_message_serializes_feedback():
    cursor = FakeCursor()
    conn = FakeConn(cursor)
    feedback = {"grammar": "Perfect!", "vocabulary": "", "encouragement": "Nice"}
    TutorRepository(conn).add_message("c1", "assistant", "Hi", feedback=feedback)
    params = cursor.params[0]
    assert params[1:4] == ("c1", "assistant", "Hi")
    assert json.loads(params[4]) == feedback
    assert conn.commits == 1


def test_add_message_without_feedback_stores_null():
    cursor = FakeCursor()
    TutorRepository(FakeConn(cursor)).add_message("c1", "user", "Hello")
    assert cursor.params[0][4] is None


def test_history_deserializes_feedback():
    now = datetime.now(timezone.utc)
    rows = [
        {"id": "m1", "conversation_id": "c1", "role": "user", "content": "Hi", "feedback_json": None, "created_at": now},
        {
            "id": "m2",
            "conversation_id": "c1",
            "role": "assistant",
            "content": "Hello",
            "feedback_json": json.dumps({"grammar": "Perfect!"}),
            "created_at": now,
        },
    ]
    history = TutorRepository(FakeConn(FakeCursor(rows=rows))).get_conversation_history("c1")
    assert history[0]["feedback"] is None
    assert history[1]["feedback"] == {"grammar": "Perfect!", "vocabulary": "", "encouragement": ""}
    assert "feedback_json" not in history[1]


def test_history_with_limit_orders_ascending():
    cursor = FakeCursor()
    TutorRepository(FakeConn(cursor)).get_conversation_history("c1", limit=3)
    assert cursor.queries[0].endswith("ORDER BY created_at ASC")
    assert cursor.params[0] == ("c1", 3)


def test_database_error_rolls_back_and_propagates():
    conn = FakeConn(FakeCursor(error=psycopg2.OperationalError("gone")))
    repo = TutorRepository(conn)
    with pytest.raises(psycopg2.OperationalError):
        repo.get_books()
    with pytest.raises(psycopg2.OperationalError):
        repo.add_message("c1", "user", "Hello")
    assert conn.rollbacks == 2
    assert conn.commits == 0
