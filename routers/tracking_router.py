"""
Tracking Router - journal entries, mood logs, chat sessions and notifications.
These records are the history the analysis jobs read.
"""

import logging
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.utils.responses import success_response, error_response
from crud.notification import NotificationRepository
from crud.tracking import ChatSessionRepository, JournalRepository, MoodRepository
from database import get_db
from database_models import ChatSession, User

logger = logging.getLogger(__name__)

tracking_router = APIRouter(prefix="/api", tags=["tracking"])


class JournalRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    mood: int = Field(..., ge=1, le=6)
    tags: List[str] = []
    emotional_state: Optional[str] = None


class MoodRequest(BaseModel):
    score: int = Field(..., ge=0, le=100)
    note: Optional[str] = None


class ChatMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    role: str = Field(default="user", pattern="^(user|assistant)$")


def _serialize_session(session: ChatSession) -> dict:
    return {
        "session_id": session.session_id,
        "status": session.status,
        "start_time": session.start_time.isoformat() if session.start_time else None,
        "end_time": session.end_time.isoformat() if session.end_time else None,
        "message_count": len(session.messages or []),
        "messages": session.messages or [],
    }


@tracking_router.post("/journal")
async def create_journal_entry(
    request: JournalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    entry = await JournalRepository(db).create(user.id, request.model_dump())
    return success_response({"id": entry.id}, message="Journal entry saved", status=201)


@tracking_router.post("/mood")
async def log_mood(
    request: MoodRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    entry = await MoodRepository(db).create(user.id, request.score, request.note)
    return success_response({"id": entry.id, "score": entry.score}, message="Mood logged", status=201)


@tracking_router.post("/chat/sessions")
async def start_chat_session(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    session = await ChatSessionRepository(db).create(user.id)
    return success_response(_serialize_session(session), message="Session started", status=201)


@tracking_router.post("/chat/sessions/{session_id}/messages")
async def add_chat_message(
    session_id: str,
    request: ChatMessageRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Append a message to an open session."""
    repo = ChatSessionRepository(db)
    session = await repo.get_by_session_id(session_id, user.id)
    if not session:
        return error_response("SESSION_NOT_FOUND", status=404, message="Chat session not found")
    if session.status != "active":
        return error_response("SESSION_CLOSED", status=409, message="Chat session has ended")

    session = await repo.append_message(session, request.role, request.content)
    return success_response(_serialize_session(session))


@tracking_router.post("/chat/sessions/{session_id}/end")
async def end_chat_session(
    session_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    repo = ChatSessionRepository(db)
    session = await repo.get_by_session_id(session_id, user.id)
    if not session:
        return error_response("SESSION_NOT_FOUND", status=404, message="Chat session not found")
    if session.status == "active":
        session = await repo.end(session)
    return success_response(_serialize_session(session), message="Session ended")


@tracking_router.get("/notifications")
async def list_notifications(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    notifications = await NotificationRepository(db).list_for_user(user.id)
    return success_response([
        {
            "id": n.id,
            "type": n.type,
            "message": n.message,
            "is_read": n.is_read,
            "created_at": n.created_at.isoformat(),
        }
        for n in notifications
    ])
