import json
import os
import re
import time
from dataclasses import dataclass, field
from typing import List, Optional, Union

import requests
from pydantic import BaseModel, ValidationError, field_validator

from api.events import log_llm_event
from api.models import Feedback

LLM_SLOW_MS = int(os.getenv("LLM_SLOW_MS", "2000"))
JSON_SYSTEM_MESSAGE = "You are a helpful assistant that outputs JSON."

FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


class ModelOutput(BaseModel):
    reply: str
    feedback: Feedback = Feedback()
    requireRewrite: bool = False

    @field_validator("reply")
    @classmethod
    def _reply_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reply is empty")
        return value


FALLBACK_OUTPUT = ModelOutput(
    reply="I'm having trouble connecting to my brain right now. Please try again.",
    feedback=Feedback(grammar="", vocabulary="", encouragement=""),
    requireRewrite=False,
)


@dataclass(frozen=True)
class Ok:
    output: ModelOutput


@dataclass(frozen=True)
class Malformed:
    raw: str
    reason: str


@dataclass(frozen=True)
class TransportFailure:
    cause: str


ModelOutcome = Union[Ok, Malformed, TransportFailure]


@dataclass
class ChatReply:
    reply: str
    feedback: dict = field(default_factory=dict)
    require_rewrite: bool = False
    ok: bool = True


def _extract_text(raw) -> str:
    if isinstance(raw, dict):
        message = raw.get("message")
        if isinstance(message, dict) and "content" in message:
            raw = message["content"]
        elif "response" in raw:
            raw = raw["response"]
    if isinstance(raw, str):
        return raw
    return json.dumps(raw)


def _strip_fences(text: str) -> str:
    return FENCE_PATTERN.sub("", text).strip()


def normalize_output(raw) -> ModelOutcome:
    text = _strip_fences(_extract_text(raw))
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return Malformed(raw=text, reason="invalid_json")
    if not isinstance(data, dict):
        return Malformed(raw=text, reason="not_an_object")
    try:
        return Ok(ModelOutput.model_validate(data))
    except ValidationError:
        return Malformed(raw=text, reason="schema_mismatch")


class ModelClient:
    def __init__(self, base_url: str, model: str, timeout_sec: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_sec = timeout_sec

    def run(self, model: str, options: dict) -> dict:
        payload = {
            "model": model,
            "messages": options.get("messages", []),
            "stream": False,
        }
        response_format = options.get("response_format") or {}
        if response_format.get("type") == "json_object":
            payload["format"] = "json"
        res = requests.post(f"{self.base_url}/api/chat", json=payload, timeout=self.timeout_sec)
        res.raise_for_status()
        return res.json()

    def invoke(self, prompt: str, history: Optional[List[dict]] = None) -> ModelOutcome:
        messages = [{"role": "system", "content": JSON_SYSTEM_MESSAGE}]
        for item in history or []:
            messages.append({"role": item["role"], "content": item["content"]})
        messages.append({"role": "user", "content": prompt})

        start = time.perf_counter()
        try:
            raw = self.run(
                self.model,
                {"messages": messages, "response_format": {"type": "json_object"}},
            )
        except (requests.RequestException, ValueError) as exc:
            log_llm_event("llm_error", {"model": self.model, "error": type(exc).__name__})
            return TransportFailure(cause=str(exc))
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_llm_event("llm_latency", {"model": self.model, "elapsed_ms": elapsed_ms})
        if elapsed_ms > LLM_SLOW_MS:
            log_llm_event("llm_slow", {"model": self.model, "elapsed_ms": elapsed_ms})

        outcome = normalize_output(raw)
        if isinstance(outcome, Malformed):
            log_llm_event("llm_malformed", {"model": self.model, "reason": outcome.reason})
        return outcome

    def complete(self, prompt: str, history: Optional[List[dict]] = None) -> ChatReply:
        try:
            outcome = self.invoke(prompt, history)
        except Exception as exc:
            log_llm_event("llm_error", {"model": self.model, "error": type(exc).__name__})
            outcome = TransportFailure(cause=str(exc))
        if isinstance(outcome, Ok):
            output, ok = outcome.output, True
        else:
            output, ok = FALLBACK_OUTPUT, False
        return ChatReply(
            reply=output.reply,
            feedback=output.feedback.model_dump(),
            require_rewrite=output.requireRewrite,
            ok=ok,
        )
