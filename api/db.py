import json
import uuid
from typing import List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from api.config import DB

GUEST_USER_PREFIX = "guest_"


def guest_user_id(guest_id: str) -> str:
    return f"{GUEST_USER_PREFIX}{guest_id}"


def get_conn(cfg: dict | None = None):
    return psycopg2.connect(**(cfg or DB))


def _load_feedback(raw) -> Optional[dict]:
    if not raw:
        return None
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return None
    if not isinstance(data, dict):
        return None
    return {
        "grammar": str(data.get("grammar") or ""),
        "vocabulary": str(data.get("vocabulary") or ""),
        "encouragement": str(data.get("encouragement") or ""),
    }


class TutorRepository:
    """Point reads and writes over users, books, conversations and messages.

    Every write commits on its own. Any database error rolls the connection
    back before propagating so a later read on the same connection still
    works.
    """

    def __init__(self, conn):
        self.conn = conn

    def _fetchall(self, query: str, params: tuple) -> List[dict]:
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return [dict(row) for row in cur.fetchall()]
        except psycopg2.Error:
            self.conn.rollback()
            raise

    def _fetchone(self, query: str, params: tuple) -> Optional[dict]:
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        except psycopg2.Error:
            self.conn.rollback()
            raise
        return dict(row) if row else None

    def _write(self, statements: List[tuple]) -> None:
        try:
            with self.conn.cursor() as cur:
                for query, params in statements:
                    cur.execute(query, params)
            self.conn.commit()
        except psycopg2.Error:
            self.conn.rollback()
            raise

    def get_books(self) -> List[dict]:
        return self._fetchall(
            """
            SELECT id, title
            FROM books
            ORDER BY title
            """,
            (),
        )

    def get_book(self, book_id: str) -> Optional[dict]:
        return self._fetchone(
            """
            SELECT id, title
            FROM books
            WHERE id = %s
            """,
            (book_id,),
        )

    def get_book_chunks(self, book_id: str, limit: int = 5) -> List[dict]:
        return self._fetchall(
            """
            SELECT id, book_id, chunk_index, content
            FROM book_chunks
            WHERE book_id = %s
            ORDER BY chunk_index
            LIMIT %s
            """,
            (book_id, limit),
        )

    def get_user_by_email(self, email: str) -> Optional[dict]:
        return self._fetchone(
            """
            SELECT id, email, password_hash, created_at
            FROM users
            WHERE email = %s AND is_guest = FALSE
            """,
            (email,),
        )

    def get_user_by_id(self, user_id: str) -> Optional[dict]:
        return self._fetchone(
            """
            SELECT id, email, is_guest, guest_id, created_at
            FROM users
            WHERE id = %s
            """,
            (user_id,),
        )

    def create_user(self, email: str, password_hash: str) -> str:
        user_id = uuid.uuid4().hex
        self._write(
            [
                (
                    """
                    INSERT INTO users (id, email, password_hash, is_guest, created_at)
                    VALUES (%s, %s, %s, FALSE, now())
                    """,
                    (user_id, email, password_hash),
                )
            ]
        )
        return user_id

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        self._write(
            [
                (
                    """
                    UPDATE users
                    SET password_hash = %s
                    WHERE id = %s
                    """,
                    (password_hash, user_id),
                )
            ]
        )

    def get_guest_message_count(self, guest_id: str) -> int:
        row = self._fetchone(
            """
            SELECT COUNT(*) AS count
            FROM messages m
            JOIN conversations c ON m.conversation_id = c.id
            JOIN users u ON c.user_id = u.id
            WHERE u.guest_id = %s AND u.is_guest = TRUE AND m.role = 'user'
            """,
            (guest_id,),
        )
        return int(row["count"]) if row else 0

    def create_conversation(self, user_id: str, book_id: str, guest_id: Optional[str] = None) -> str:
        conversation_id = uuid.uuid4().hex
        statements = []
        if guest_id:
            # guest rows live under guest_user_id(guest_id), apart from registered ids
            statements.append(
                (
                    """
                    INSERT INTO users (id, email, password_hash, is_guest, guest_id, created_at)
                    VALUES (%s, NULL, NULL, TRUE, %s, now())
                    ON CONFLICT DO NOTHING
                    """,
                    (user_id, guest_id),
                )
            )
        statements.append(
            (
                """
                INSERT INTO conversations (id, user_id, book_id, created_at)
                VALUES (%s, %s, %s, now())
                """,
                (conversation_id, user_id, book_id),
            )
        )
        self._write(statements)
        return conversation_id

    def get_conversation(self, conversation_id: str) -> Optional[dict]:
        return self._fetchone(
            """
            SELECT id, user_id, book_id, created_at
            FROM conversations
            WHERE id = %s
            """,
            (conversation_id,),
        )

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        feedback: Optional[dict] = None,
    ) -> str:
        message_id = uuid.uuid4().hex
        feedback_json = json.dumps(feedback, ensure_ascii=False) if feedback is not None else None
        self._write(
            [
                (
                    """
                    INSERT INTO messages (id, conversation_id, role, content, feedback_json, created_at)
                    VALUES (%s, %s, %s, %s, %s, clock_timestamp())
                    """,
                    (message_id, conversation_id, role, content, feedback_json),
                )
            ]
        )
        return message_id

    def get_conversation_history(self, conversation_id: str, limit: Optional[int] = None) -> List[dict]:
        if limit:
            rows = self._fetchall(
                """
                SELECT id, conversation_id, role, content, feedback_json, created_at
                FROM (
                    SELECT id, conversation_id, role, content, feedback_json, created_at
                    FROM messages
                    WHERE conversation_id = %s
                    ORDER BY created_at DESC
                    LIMIT %s
                ) recent
                ORDER BY created_at ASC
                """,
                (conversation_id, limit),
            )
        else:
            rows = self._fetchall(
                """
                SELECT id, conversation_id, role, content, feedback_json, created_at
                FROM messages
                WHERE conversation_id = %s
                ORDER BY created_at ASC
                """,
                (conversation_id,),
            )
        messages = []
        for row in rows:
            feedback_json = row.pop("feedback_json", None)
            row["feedback"] = _load_feedback(feedback_json)
            messages.append(row)
        return messages
