import os
from dataclasses import dataclass

from api.quota import MAX_GUEST_MESSAGES

DB = {
    "host": os.getenv("TUTOR_DB_HOST", "localhost"),
    "port": int(os.getenv("TUTOR_DB_PORT", "5432")),
    "dbname": os.getenv("TUTOR_DB_NAME", "tutor_app"),
    "user": os.getenv("TUTOR_DB_USER", "tutor"),
    "password": os.getenv("TUTOR_DB_PASSWORD", "tutorpassword"),
}

API_TITLE = "Storybook Tutor API"
API_VERSION = "0.1.0"


@dataclass(frozen=True)
class TutorConfig:
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    token_ttl_sec: int = 604800
    max_guest_messages: int = MAX_GUEST_MESSAGES
    chunk_limit: int = 5
    history_limit: int = 20
    llm_url: str = "http://ollama:11434"
    llm_model: str = "llama3.1"
    llm_timeout_sec: float = 20.0


def load_config() -> TutorConfig:
    return TutorConfig(
        jwt_secret=os.getenv("JWT_SECRET", "change-me"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        token_ttl_sec=int(os.getenv("JWT_ACCESS_TTL_SEC", "604800")),
        max_guest_messages=int(os.getenv("MAX_GUEST_MESSAGES", str(MAX_GUEST_MESSAGES))),
        chunk_limit=int(os.getenv("BOOK_CHUNK_LIMIT", "5")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "20")),
        llm_url=os.getenv("LLM_URL", "http://ollama:11434"),
        llm_model=os.getenv("LLM_MODEL", "llama3.1"),
        llm_timeout_sec=float(os.getenv("LLM_TIMEOUT_SEC", "20")),
    )
