import itertools
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from api.config import TutorConfig
from api.llm import ChatReply

TEST_SECRET = "test-secret-with-enough-bytes-for-hs256"
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class MemoryRepository:
    """In-memory stand-in for TutorRepository with the same method surface."""

    def __init__(self):
        self.users = {}
        self.books = {}
        self.chunks = {}
        self.conversations = {}
        self.messages = []
        self.fail_chunks = False
        self._clock = itertools.count(1)

    def _now(self):
        return BASE_TIME + timedelta(milliseconds=next(self._clock))

    def add_book(self, book_id, title, chunks=()):
        self.books[book_id] = {"id": book_id, "title": title}
        self.chunks[book_id] = [
            {"id": f"{book_id}-{idx}", "book_id": book_id, "chunk_index": idx, "content": content}
            for idx, content in enumerate(chunks)
        ]

    def get_books(self):
        return sorted(self.books.values(), key=lambda b: b["title"])

    def get_book(self, book_id):
        return self.books.get(book_id)

    def get_book_chunks(self, book_id, limit=5):
        if self.fail_chunks:
            raise RuntimeError("chunk store offline")
        return list(self.chunks.get(book_id, []))[:limit]

    def get_user_by_email(self, email):
        for user in self.users.values():
            if user["email"] == email and not user["is_guest"]:
                return dict(user)
        return None

    def get_user_by_id(self, user_id):
        user = self.users.get(user_id)
        return dict(user) if user else None

    def create_user(self, email, password_hash):
        user_id = uuid.uuid4().hex
        self.users[user_id] = {
            "id": user_id,
            "email": email,
            "password_hash": password_hash,
            "is_guest": False,
            "guest_id": None,
            "created_at": self._now(),
        }
        return user_id

    def update_password_hash(self, user_id, password_hash):
        self.users[user_id]["password_hash"] = password_hash

    def get_guest_message_count(self, guest_id):
        guest_conversations = {
            c["id"]
            for c in self.conversations.values()
            if self.users.get(c["user_id"], {}).get("guest_id") == guest_id
            and self.users[c["user_id"]]["is_guest"]
        }
        return sum(
            1
            for m in self.messages
            if m["conversation_id"] in guest_conversations and m["role"] == "user"
        )

    def create_conversation(self, user_id, book_id, guest_id=None):
        if guest_id and user_id not in self.users:
            self.users[user_id] = {
                "id": user_id,
                "email": None,
                "password_hash": None,
                "is_guest": True,
                "guest_id": guest_id,
                "created_at": self._now(),
            }
        assert user_id in self.users, "conversation must reference an existing user"
        assert book_id in self.books, "conversation must reference an existing book"
        conversation_id = uuid.uuid4().hex
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "user_id": user_id,
            "book_id": book_id,
            "created_at": self._now(),
        }
        return conversation_id

    def get_conversation(self, conversation_id):
        conversation = self.conversations.get(conversation_id)
        return dict(conversation) if conversation else None

    def add_message(self, conversation_id, role, content, feedback=None):
        message_id = uuid.uuid4().hex
        self.messages.append(
            {
                "id": message_id,
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "feedback": dict(feedback) if feedback is not None else None,
                "created_at": self._now(),
            }
        )
        return message_id

    def get_conversation_history(self, conversation_id, limit=None):
        rows = sorted(
            (dict(m) for m in self.messages if m["conversation_id"] == conversation_id),
            key=lambda m: m["created_at"],
        )
        if limit:
            rows = rows[-limit:]
        return rows


class StubModelClient:
    def __init__(self, reply=None, ok=True):
        self.prompts = []
        self.reply = reply or ChatReply(
            reply="Great question! What did the rabbit do next?",
            feedback={
                "grammar": "Perfect!",
                "vocabulary": "Good usage!",
                "encouragement": "Keep going!",
            },
            require_rewrite=False,
            ok=ok,
        )

    def complete(self, prompt, history=None):
        self.prompts.append(prompt)
        return self.reply


@pytest.fixture(autouse=True)
def _event_log(tmp_path, monkeypatch):
    path = tmp_path / "events.log"
    monkeypatch.setenv("EVENT_LOG_PATH", str(path))
    return path


@pytest.fixture
def config():
    return TutorConfig(jwt_secret=TEST_SECRET, token_ttl_sec=3600, history_limit=20)


@pytest.fixture
def repo():
    memory = MemoryRepository()
    memory.add_book("b1", "The Velveteen Rabbit", ["There was once a velveteen rabbit.", "He was fat and bunchy."])
    return memory


@pytest.fixture
def model_client():
    return StubModelClient()
