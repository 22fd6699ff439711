from dataclasses import dataclass, field
from typing import List, Optional

from api.config import TutorConfig
from api.db import guest_user_id
from api.events import log_chat_event
from api.jwt_utils import verify_access_token
from api.llm import ModelClient
from api.prompts import assemble_prompt, format_history
from api.quota import guest_usage, is_exhausted, remaining_messages

LIMIT_REPLY = (
    "You've used all of your free practice messages. "
    "Please sign up or log in to keep chatting with your teacher!"
)
LIMIT_ERROR = "Guest message limit reached"
CONTEXT_FAILED = "Context retrieval failed."
CONTEXT_EMPTY = "No specific book context found."


@dataclass
class Caller:
    user_id: str
    is_guest: bool
    guest_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class TurnResult:
    reply: str
    feedback: dict = field(default_factory=dict)
    require_rewrite: bool = False
    conversation_id: Optional[str] = None
    remaining_messages: Optional[int] = None
    max_messages: Optional[int] = None
    blocked: bool = False
    model_ok: bool = True

    def as_response(self) -> dict:
        if self.blocked:
            return {
                "error": LIMIT_ERROR,
                "reply": self.reply,
                "limitReached": True,
                "remainingMessages": 0,
                "maxMessages": self.max_messages,
            }
        payload = {
            "reply": self.reply,
            "feedback": self.feedback,
            "requireRewrite": self.require_rewrite,
            "conversationId": self.conversation_id,
        }
        if self.remaining_messages is not None:
            payload["remainingMessages"] = self.remaining_messages
            payload["maxMessages"] = self.max_messages
        return payload


class ChatValidationError(ValueError):
    pass


class NotFound(LookupError):
    pass


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class TurnOrchestrator:
    """Runs one chat turn from caller resolution to the persisted reply.

    Storage errors propagate to the caller; context retrieval and model
    failures degrade to placeholder values so the turn still completes.
    """

    def __init__(self, config: TutorConfig, model_client: ModelClient):
        self.config = config
        self.model_client = model_client

    def resolve_caller(self, repo, bearer_token: Optional[str], guest_id: Optional[str]) -> Caller:
        payload = verify_access_token(bearer_token, self.config) if bearer_token else None
        if payload:
            user = repo.get_user_by_id(payload["sub"])
            if user and not user.get("is_guest"):
                return Caller(user_id=user["id"], is_guest=False, email=user.get("email"))
        guest_id = _clean(guest_id)
        if not guest_id:
            raise ChatValidationError("Missing required fields: guestId or valid token")
        return Caller(user_id=guest_user_id(guest_id), is_guest=True, guest_id=guest_id)

    def usage(self, repo, guest_id: Optional[str]) -> dict:
        guest_id = _clean(guest_id)
        if not guest_id:
            raise ChatValidationError("guestId is required")
        info = guest_usage(repo, guest_id, self.config.max_guest_messages)
        return {"remainingMessages": info["remaining"], "maxMessages": info["max"]}

    def _owned_conversation(self, repo, caller: Caller, conversation_id: str) -> dict:
        conversation = repo.get_conversation(conversation_id)
        if not conversation or conversation["user_id"] != caller.user_id:
            raise NotFound("conversation not found")
        owner = repo.get_user_by_id(conversation["user_id"])
        if not owner or bool(owner.get("is_guest")) != caller.is_guest:
            raise NotFound("conversation not found")
        return conversation

    def _resolve_conversation(self, repo, caller: Caller, book_id: str, conversation_id: Optional[str]) -> str:
        if conversation_id:
            return self._owned_conversation(repo, caller, conversation_id)["id"]
        if not repo.get_book(book_id):
            raise NotFound("book not found")
        conversation_id = repo.create_conversation(caller.user_id, book_id, guest_id=caller.guest_id)
        log_chat_event(
            "chat_created",
            {"conversation_id": conversation_id, "book_id": book_id, "is_guest": caller.is_guest},
        )
        return conversation_id

    def _book_context(self, repo, book_id: str, conversation_id: str) -> str:
        try:
            chunks = repo.get_book_chunks(book_id, self.config.chunk_limit)
        except Exception as exc:
            log_chat_event(
                "context_failed",
                {"conversation_id": conversation_id, "book_id": book_id, "error": type(exc).__name__},
            )
            return CONTEXT_FAILED
        log_chat_event(
            "context_loaded",
            {"conversation_id": conversation_id, "book_id": book_id, "chunks": len(chunks)},
        )
        return "\n\n".join(chunk["content"] for chunk in chunks) or CONTEXT_EMPTY

    def _history_lines(self, repo, conversation_id: str, exclude_id: str) -> List[str]:
        limit = self.config.history_limit
        messages = repo.get_conversation_history(conversation_id, limit + 1 if limit else None)
        messages = [m for m in messages if m["id"] != exclude_id]
        if limit:
            messages = messages[-limit:]
        return format_history(messages)

    def run_turn(
        self,
        repo,
        caller: Caller,
        book_id: Optional[str],
        message: Optional[str],
        conversation_id: Optional[str] = None,
    ) -> TurnResult:
        book_id = _clean(book_id)
        message = _clean(message)
        if not book_id or not message:
            raise ChatValidationError("Missing required fields: bookId and message")
        max_messages = self.config.max_guest_messages

        if caller.is_guest:
            count = repo.get_guest_message_count(caller.guest_id)
            if is_exhausted(count, max_messages):
                log_chat_event("chat_blocked", {"guest_id": caller.guest_id, "count": count})
                return TurnResult(
                    reply=LIMIT_REPLY,
                    blocked=True,
                    remaining_messages=0,
                    max_messages=max_messages,
                )

        conversation_id = self._resolve_conversation(repo, caller, book_id, _clean(conversation_id) or None)
        user_message_id = repo.add_message(conversation_id, "user", message)
        log_chat_event(
            "chat_message",
            {"conversation_id": conversation_id, "role": "user", "is_guest": caller.is_guest},
        )

        book_context = self._book_context(repo, book_id, conversation_id)
        history = self._history_lines(repo, conversation_id, user_message_id)
        prompt = assemble_prompt(book_context, history, message)

        result = self.model_client.complete(prompt)
        repo.add_message(
            conversation_id,
            "assistant",
            result.reply,
            feedback=result.feedback if result.ok else None,
        )
        log_chat_event(
            "chat_response",
            {
                "conversation_id": conversation_id,
                "llm_ok": result.ok,
                "require_rewrite": result.require_rewrite,
                "history_lines": len(history),
            },
        )

        turn = TurnResult(
            reply=result.reply,
            feedback=result.feedback,
            require_rewrite=result.require_rewrite,
            conversation_id=conversation_id,
            model_ok=result.ok,
        )
        if caller.is_guest:
            count = repo.get_guest_message_count(caller.guest_id)
            turn.remaining_messages = remaining_messages(count, max_messages)
            turn.max_messages = max_messages
        return turn

    def conversation_messages(self, repo, caller: Caller, conversation_id: str) -> dict:
        self._owned_conversation(repo, caller, conversation_id)
        messages = repo.get_conversation_history(conversation_id)
        return {
            "conversationId": conversation_id,
            "messages": [
                {
                    "id": m["id"],
                    "role": m["role"],
                    "content": m["content"],
                    "feedback": m.get("feedback"),
                    "createdAt": m["created_at"].isoformat()
                    if hasattr(m["created_at"], "isoformat")
                    else str(m["created_at"]),
                }
                for m in messages
            ],
        }
