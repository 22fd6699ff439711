import hashlib
import json
import os
from datetime import datetime, timezone

EVENT_LOG_PATH = os.getenv("EVENT_LOG_PATH", "logs/events.log")
LOG_ID_SALT = os.getenv("LOG_ID_SALT", "")

HASHED_FIELDS = ("conversation_id", "guest_id", "user_id")


def _log_path() -> str:
    return os.getenv("EVENT_LOG_PATH", EVENT_LOG_PATH)


def _hash_id(value: str) -> str:
    raw = f"{LOG_ID_SALT}{value}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def _write_record(record: dict) -> None:
    path = _log_path()
    try:
        dir_path = os.path.dirname(path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=True, default=str) + "\n")
    except OSError:
        pass


def _log_event(event_type: str, payload: dict | None) -> None:
    safe_payload = dict(payload or {})
    for field in HASHED_FIELDS:
        if safe_payload.get(field):
            safe_payload[field] = _hash_id(str(safe_payload[field]))
    _write_record(
        {
            "event_type": event_type,
            "ts": datetime.now(timezone.utc).isoformat(),
            **safe_payload,
        }
    )


def log_chat_event(event_type: str, payload: dict | None = None) -> None:
    _log_event(event_type, payload)


def log_api_event(event_type: str, payload: dict | None = None) -> None:
    _log_event(event_type, payload)


def log_llm_event(event_type: str, payload: dict | None = None) -> None:
    _log_event(event_type, payload)


def reset_event_log(reason: str) -> None:
    path = _log_path()
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError:
        return
    _log_event("log_reset", {"reason": reason})
