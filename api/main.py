import os
from typing import List, Optional

import psycopg2
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.auth import (
    hash_password,
    needs_password_upgrade,
    normalize_email,
    validate_email,
    verify_password,
)
from api.chat import ChatValidationError, NotFound, TurnOrchestrator
from api.config import API_TITLE, API_VERSION, load_config
from api.db import TutorRepository, get_conn as _connect
from api.events import log_api_event, reset_event_log
from api.jwt_utils import create_access_token
from api.llm import ModelClient
from api.models import (
    AuthLoginRequest,
    AuthLoginResponse,
    AuthRegisterRequest,
    AuthRegisterResponse,
    BookItem,
    ChatBlockedResponse,
    ChatRequest,
    ChatResponse,
    ConversationMessagesResponse,
    UsageResponse,
)

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "0") == "1"

CONFIG = load_config()
orchestrator = TurnOrchestrator(
    CONFIG,
    ModelClient(CONFIG.llm_url, CONFIG.llm_model, timeout_sec=CONFIG.llm_timeout_sec),
)


@app.on_event("startup")
def _reset_event_log_on_startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")


@app.exception_handler(HTTPException)
def handle_http_exception(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
def handle_unexpected_exception(_request: Request, exc: Exception):
    log_api_event("api_error", {"error": type(exc).__name__})
    return JSONResponse(status_code=500, content={"error": str(exc)})


def get_conn():
    conn = _connect()
    try:
        yield conn
    finally:
        conn.close()


def get_repo(conn=Depends(get_conn)) -> TutorRepository:
    return TutorRepository(conn)


def get_orchestrator() -> TurnOrchestrator:
    return orchestrator


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


@app.get("/")
def health():
    return {"status": "ok", "service": API_TITLE}


@app.get("/api/books", response_model=List[BookItem])
def list_books(repo=Depends(get_repo)):
    try:
        rows = repo.get_books()
    except psycopg2.Error as exc:
        log_api_event("api_books_failed", {"error": type(exc).__name__})
        raise HTTPException(status_code=500, detail=str(exc))
    log_api_event("api_books", {"count": len(rows)})
    return [{"id": str(row["id"]), "title": row["title"]} for row in rows]


@app.post("/api/auth/register", response_model=AuthRegisterResponse)
def register(payload: AuthRegisterRequest, repo=Depends(get_repo)):
    email = normalize_email(payload.email)
    password = payload.password or ""
    if not email or not password:
        log_api_event("auth_register_failed", {"reason": "missing_fields"})
        raise HTTPException(status_code=400, detail="Missing email or password")
    if not validate_email(email):
        log_api_event("auth_register_failed", {"reason": "invalid_email"})
        raise HTTPException(status_code=400, detail="Invalid email")
    if repo.get_user_by_email(email):
        log_api_event("auth_register_failed", {"reason": "email_exists"})
        raise HTTPException(status_code=400, detail="Email already registered")
    try:
        user_id = repo.create_user(email, hash_password(password))
    except psycopg2.IntegrityError:
        log_api_event("auth_register_failed", {"reason": "email_exists"})
        raise HTTPException(status_code=400, detail="Email already registered")
    log_api_event("auth_register_success", {"user_id": user_id})
    return {"success": True, "userId": user_id}


@app.post("/api/auth/login", response_model=AuthLoginResponse)
def login(
    payload: AuthLoginRequest,
    repo=Depends(get_repo),
    tutor: TurnOrchestrator = Depends(get_orchestrator),
):
    email = normalize_email(payload.email)
    password = payload.password or ""
    if not email or not password:
        log_api_event("auth_login_failed", {"reason": "missing_fields"})
        raise HTTPException(status_code=400, detail="Missing email or password")
    user = repo.get_user_by_email(email)
    if not user or not verify_password(password, user.get("password_hash")):
        log_api_event("auth_login_failed", {"reason": "invalid_credentials"})
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if needs_password_upgrade(user["password_hash"]):
        repo.update_password_hash(user["id"], hash_password(password))
    token = create_access_token(user["id"], user.get("email"), tutor.config)
    log_api_event("auth_login_success", {"user_id": user["id"]})
    return {"token": token, "userId": user["id"]}


@app.get("/api/usage", response_model=UsageResponse)
def usage(
    guestId: Optional[str] = Query(None),
    repo=Depends(get_repo),
    tutor: TurnOrchestrator = Depends(get_orchestrator),
):
    try:
        result = tutor.usage(repo, guestId)
    except ChatValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    log_api_event("api_usage", {"guest_id": guestId, "remaining": result["remainingMessages"]})
    return result


@app.post(
    "/api/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    responses={403: {"model": ChatBlockedResponse, "description": "Guest message limit reached"}},
)
def chat(
    payload: ChatRequest,
    request: Request,
    repo=Depends(get_repo),
    tutor: TurnOrchestrator = Depends(get_orchestrator),
):
    try:
        caller = tutor.resolve_caller(repo, _get_bearer_token(request), payload.guestId)
        result = tutor.run_turn(
            repo,
            caller,
            payload.bookId,
            payload.message,
            conversation_id=payload.conversationId,
        )
    except ChatValidationError as exc:
        log_api_event("api_chat_failed", {"reason": "validation"})
        raise HTTPException(status_code=400, detail=str(exc))
    except NotFound as exc:
        log_api_event("api_chat_failed", {"reason": "not_found"})
        raise HTTPException(status_code=404, detail=str(exc))
    except psycopg2.Error as exc:
        log_api_event("api_chat_failed", {"reason": "storage", "error": type(exc).__name__})
        raise HTTPException(status_code=500, detail=str(exc))

    if result.blocked:
        log_api_event("api_chat_blocked", {"guest_id": caller.guest_id})
        return JSONResponse(status_code=403, content=result.as_response())
    log_api_event(
        "api_chat",
        {"conversation_id": result.conversation_id, "is_guest": caller.is_guest, "llm_ok": result.model_ok},
    )
    return result.as_response()


@app.get(
    "/api/conversations/{conversation_id}/messages",
    response_model=ConversationMessagesResponse,
)
def conversation_messages(
    conversation_id: str,
    request: Request,
    guestId: Optional[str] = Query(None),
    repo=Depends(get_repo),
    tutor: TurnOrchestrator = Depends(get_orchestrator),
):
    try:
        caller = tutor.resolve_caller(repo, _get_bearer_token(request), guestId)
        result = tutor.conversation_messages(repo, caller, conversation_id)
    except ChatValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    log_api_event(
        "api_conversation_messages",
        {"conversation_id": conversation_id, "count": len(result["messages"])},
    )
    return result


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "9000"))
    uvicorn.run("api.main:app", host="0.0.0.0", port=port, reload=True)
