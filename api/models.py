from typing import List, Optional

from pydantic import BaseModel


class BookItem(BaseModel):
    id: str
    title: str


class Feedback(BaseModel):
    grammar: str = ""
    vocabulary: str = ""
    encouragement: str = ""


class ChatRequest(BaseModel):
    bookId: Optional[str] = None
    message: Optional[str] = None
    conversationId: Optional[str] = None
    guestId: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str
    feedback: Feedback
    requireRewrite: bool = False
    conversationId: str
    remainingMessages: Optional[int] = None
    maxMessages: Optional[int] = None


class ChatBlockedResponse(BaseModel):
    error: str
    reply: str
    limitReached: bool = True
    remainingMessages: int = 0
    maxMessages: int


class UsageResponse(BaseModel):
    remainingMessages: int
    maxMessages: int


class MessageItem(BaseModel):
    id: str
    role: str
    content: str
    feedback: Optional[Feedback] = None
    createdAt: str


class ConversationMessagesResponse(BaseModel):
    conversationId: str
    messages: List[MessageItem]


class AuthRegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AuthRegisterResponse(BaseModel):
    success: bool
    userId: str


class AuthLoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AuthLoginResponse(BaseModel):
    token: str
    userId: str
