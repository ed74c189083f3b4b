# -*- coding: utf-8 -*-
"""Rotas /api/v1/agenda"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.agenda import AgendaManager, to_ics
from legalflow.api.deps import get_db, limiter
from legalflow.errors import ValidationError
from legalflow.responses import ok

router = APIRouter(prefix="/api/v1/agenda", tags=["agenda"])


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    event_type: str = "compromisso"
    starts_at: str
    ends_at: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    video_url: Optional[str] = None
    numero_cnj: Optional[str] = None
    cliente_cpfcnpj: Optional[str] = None
    stage_instance_id: Optional[str] = None
    owner_oab: Optional[str] = None


class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    event_type: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    video_url: Optional[str] = None
    numero_cnj: Optional[str] = None
    cliente_cpfcnpj: Optional[str] = None
    stage_instance_id: Optional[str] = None
    owner_oab: Optional[str] = None


def _parse_bound(value: str, field: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Data inválida", field=field, code="INVALID_FORMAT")
    if parsed.tzinfo is None:
        raise ValidationError("Data sem fuso horário", field=field, code="INVALID_FORMAT")
    return parsed


@router.get("/events")
@limiter.limit("60/minute")
async def list_events(request: Request, start: str, end: str, owner_oab: Optional[str] = None,
                      event_type: Optional[str] = None, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    manager = AgendaManager(sb)
    events = manager.list_range(_parse_bound(start, "start"), _parse_bound(end, "end"), owner_oab, event_type)
    return ok([manager.describe(e) for e in events])


@router.get("/week")
@limiter.limit("60/minute")
async def week_view(request: Request, day: Optional[str] = None, owner_oab: Optional[str] = None,
                    sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(AgendaManager(sb).week(day, owner_oab))


@router.get("/month")
@limiter.limit("60/minute")
async def month_view(request: Request, year: int, month: int, owner_oab: Optional[str] = None,
                     sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(AgendaManager(sb).month(year, month, owner_oab))


@router.get("/upcoming")
@limiter.limit("60/minute")
async def upcoming(request: Request, days: int = Query(7, ge=1, le=90), owner_oab: Optional[str] = None,
                   sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    manager = AgendaManager(sb)
    return ok([manager.describe(e) for e in manager.upcoming(days, owner_oab)])


@router.get("/export.ics", response_class=PlainTextResponse)
@limiter.limit("10/minute")
async def export_ics(request: Request, days: int = Query(90, ge=1, le=365), owner_oab: Optional[str] = None,
                     sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    events = AgendaManager(sb).upcoming(days, owner_oab)
    return PlainTextResponse(
        to_ics(events),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="agenda_legalflow.ics"'},
    )


@router.post("/events", status_code=201)
@limiter.limit("30/minute")
async def create_event(request: Request, req: EventCreate, allow_conflicts: bool = False,
                       sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(AgendaManager(sb).create_event(req.model_dump(exclude_none=True), allow_conflicts), "Evento criado")


@router.get("/events/{event_id}")
@limiter.limit("60/minute")
async def get_event(request: Request, event_id: str, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    manager = AgendaManager(sb)
    return ok(manager.describe(manager.get(event_id)))


@router.patch("/events/{event_id}")
@limiter.limit("30/minute")
async def update_event(request: Request, event_id: str, req: EventUpdate, allow_conflicts: bool = False,
                       sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(AgendaManager(sb).update_event(event_id, req.model_dump(exclude_unset=True), allow_conflicts))


@router.delete("/events/{event_id}")
@limiter.limit("30/minute")
async def delete_event(request: Request, event_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    AgendaManager(sb).delete_event(event_id)
    return ok(None, "Evento removido")
