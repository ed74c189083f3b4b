# -*- coding: utf-8 -*-
"""Rotas /api/v1/notifications e /api/v1/chat"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter
from legalflow.chat import ChatManager
from legalflow.notifications import NotificationManager
from legalflow.responses import ok

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])
chat_router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


class ThreadCreate(BaseModel):
    context_type: str
    context_id: Optional[str] = None
    title: str = Field(default="", max_length=200)


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=20000)
    sender_type: str = "user"


@router.get("")
@limiter.limit("60/minute")
async def list_notifications(request: Request, oab: Optional[str] = None, unread_only: bool = False,
                             limit: int = 50, sb: Client = Depends(get_db),
                             user: dict = Depends(get_current_user)):
    return ok(NotificationManager(sb).list_notifications(user["id"], oab, unread_only, limit))


@router.get("/unread-count")
@limiter.limit("120/minute")
async def unread_count(request: Request, oab: Optional[str] = None, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok({"count": NotificationManager(sb).unread_count(user["id"], oab)})


@router.post("/read-all")
@limiter.limit("30/minute")
async def mark_all_read(request: Request, oab: Optional[str] = None, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok({"updated": NotificationManager(sb).mark_all_read(user["id"], oab)})


@router.post("/{notification_id}/read")
@limiter.limit("60/minute")
async def mark_read(request: Request, notification_id: str, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    return ok(NotificationManager(sb).mark_read(notification_id))


# ============================================================
# CHAT
# ============================================================

@chat_router.get("/threads")
@limiter.limit("60/minute")
async def list_threads(request: Request, context_type: Optional[str] = None, context_id: Optional[str] = None,
                       sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(ChatManager(sb).list_threads(context_type, context_id))


@chat_router.post("/threads", status_code=201)
@limiter.limit("30/minute")
async def create_thread(request: Request, req: ThreadCreate, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(ChatManager(sb).create_thread(req.context_type, req.context_id, req.title, created_by=user["id"]))


@chat_router.get("/threads/{thread_id}/messages")
@limiter.limit("60/minute")
async def thread_messages(request: Request, thread_id: str, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(ChatManager(sb).messages(thread_id))


@chat_router.post("/threads/{thread_id}/messages", status_code=201)
@limiter.limit("60/minute")
async def post_message(request: Request, thread_id: str, req: MessageCreate, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(ChatManager(sb).post_message(thread_id, req.content, req.sender_type, sender_id=user["id"]))


@chat_router.get("/threads/{thread_id}/export", response_class=PlainTextResponse)
@limiter.limit("30/minute")
async def export_thread(request: Request, thread_id: str, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    markdown = ChatManager(sb).export_markdown(thread_id)
    return PlainTextResponse(
        markdown,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="conversa_{thread_id[:8]}.md"'},
    )
