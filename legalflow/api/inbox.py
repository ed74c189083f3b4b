# -*- coding: utf-8 -*-
"""Rotas /api/v1/inbox (triagem de publicações e movimentações)"""

from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter
from legalflow.inbox import InboxManager
from legalflow.responses import ok, paginated

router = APIRouter(prefix="/api/v1/inbox", tags=["inbox"])

Kind = Literal["publicacoes", "movimentacoes"]


class LinkRequest(BaseModel):
    numero_cnj: str
    create_processo: bool = False


class BulkLinkRequest(BaseModel):
    item_ids: list[str] = Field(min_length=1, max_length=200)
    numero_cnj: str


@router.get("/stats")
@limiter.limit("60/minute")
async def inbox_stats(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(InboxManager(sb).stats())


@router.get("/{kind}")
@limiter.limit("60/minute")
async def list_pending(request: Request, kind: Kind, page: int = 1, limit: int = 20,
                       sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return paginated(InboxManager(sb).list_pending(kind, page, limit))


@router.get("/{kind}/{item_id}")
@limiter.limit("60/minute")
async def get_item(request: Request, kind: Kind, item_id: str, sb: Client = Depends(get_db),
                   user: dict = Depends(get_current_user)):
    return ok(InboxManager(sb).get_item(kind, item_id))


@router.post("/{kind}/bulk-link")
@limiter.limit("10/minute")
async def bulk_link(request: Request, kind: Kind, req: BulkLinkRequest, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    result = InboxManager(sb).bulk_link(kind, req.item_ids, req.numero_cnj)
    return ok(result, f"{len(result['linked'])} item(s) vinculado(s)")


@router.post("/{kind}/{item_id}/link")
@limiter.limit("30/minute")
async def link_item(request: Request, kind: Kind, item_id: str, req: LinkRequest, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    result = InboxManager(sb).link(kind, item_id, req.numero_cnj, req.create_processo, linked_by=user["id"])
    return ok(result, "Item vinculado ao processo")
