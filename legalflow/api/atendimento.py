# -*- coding: utf-8 -*-
"""
Rotas de atendimento
============================================================
/api/v1/tickets       tickets, mensagens, CSAT
/api/v1/activities    actividades, comentários, tempo
/api/v1/bridge        ligação ticket ↔ actividade
============================================================
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.activities import ActivityManager, available_transitions
from legalflow.api.deps import get_db, limiter
from legalflow.bridge import BridgeManager
from legalflow.responses import ok, paginated
from legalflow.tickets import TicketManager, ticket_sla

router = APIRouter(prefix="/api/v1", tags=["atendimento"])


class TicketCreate(BaseModel):
    subject: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    priority: str = "media"
    channel: str = "sistema"
    assigned_oab: Optional[str] = None
    cliente_cpfcnpj: Optional[str] = None
    numero_cnj: Optional[str] = None
    tags: list[str] = []


class TicketUpdate(BaseModel):
    subject: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[str] = None
    channel: Optional[str] = None
    assigned_oab: Optional[str] = None
    cliente_cpfcnpj: Optional[str] = None
    numero_cnj: Optional[str] = None
    tags: Optional[list[str]] = None


class StatusChange(BaseModel):
    status: str


class TicketMessage(BaseModel):
    body: str = Field(min_length=1, max_length=20000)
    internal: bool = False
    author_type: str = "agent"


class RatingRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str = Field(default="", max_length=2000)


class ActivityCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    priority: str = "media"
    due_at: Optional[str] = None
    assigned_oab: Optional[str] = None
    cliente_cpfcnpj: Optional[str] = None
    numero_cnj: Optional[str] = None
    ticket_id: Optional[str] = None
    deal_id: Optional[str] = None
    stage_instance_id: Optional[str] = None


class ActivityUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    priority: Optional[str] = None
    due_at: Optional[str] = None
    assigned_oab: Optional[str] = None
    cliente_cpfcnpj: Optional[str] = None
    numero_cnj: Optional[str] = None
    ticket_id: Optional[str] = None
    deal_id: Optional[str] = None
    stage_instance_id: Optional[str] = None


class CommentCreate(BaseModel):
    body: str = Field(min_length=1, max_length=10000)


class TimeLog(BaseModel):
    minutes: int = Field(gt=0, le=24 * 60)
    note: str = ""


class ActivityFromTicket(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    due_at: Optional[str] = None
    assigned_oab: Optional[str] = None


class LinkTicket(BaseModel):
    ticket_id: str


# ============================================================
# TICKETS
# ============================================================

@router.get("/tickets")
@limiter.limit("60/minute")
async def list_tickets(
    request: Request,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_oab: Optional[str] = None,
    cliente_cpfcnpj: Optional[str] = None,
    numero_cnj: Optional[str] = None,
    query: Optional[str] = None,
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return paginated(TicketManager(sb).list_tickets(
        page, limit, status, priority, assigned_oab, cliente_cpfcnpj, numero_cnj, query))


@router.get("/tickets/csat")
@limiter.limit("60/minute")
async def csat_summary(request: Request, since: Optional[str] = None, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(TicketManager(sb).csat_summary(since))


@router.post("/tickets", status_code=201)
@limiter.limit("30/minute")
async def create_ticket(request: Request, req: TicketCreate, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(TicketManager(sb).create(req.model_dump(), created_by=user["id"]), "Ticket criado")


@router.get("/tickets/{ticket_id}")
@limiter.limit("60/minute")
async def get_ticket(request: Request, ticket_id: str, sb: Client = Depends(get_db),
                     user: dict = Depends(get_current_user)):
    ticket = TicketManager(sb).get(ticket_id)
    return ok({**ticket, "sla": ticket_sla(ticket)})


@router.patch("/tickets/{ticket_id}")
@limiter.limit("30/minute")
async def update_ticket(request: Request, ticket_id: str, req: TicketUpdate, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(TicketManager(sb).update(ticket_id, req.model_dump(exclude_unset=True)))


@router.post("/tickets/{ticket_id}/status")
@limiter.limit("30/minute")
async def ticket_status(request: Request, ticket_id: str, req: StatusChange, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(TicketManager(sb).transition(ticket_id, req.status))


@router.get("/tickets/{ticket_id}/messages")
@limiter.limit("60/minute")
async def ticket_messages(request: Request, ticket_id: str, include_internal: bool = True,
                          sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(TicketManager(sb).messages(ticket_id, include_internal))


@router.post("/tickets/{ticket_id}/messages", status_code=201)
@limiter.limit("60/minute")
async def add_ticket_message(request: Request, ticket_id: str, req: TicketMessage, sb: Client = Depends(get_db),
                             user: dict = Depends(get_current_user)):
    return ok(TicketManager(sb).add_message(ticket_id, user["id"], req.body, req.internal, req.author_type))


@router.post("/tickets/{ticket_id}/rating", status_code=201)
@limiter.limit("10/minute")
async def rate_ticket(request: Request, ticket_id: str, req: RatingRequest, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(TicketManager(sb).rate(ticket_id, req.rating, req.comment, rated_by=user["id"]),
              "Obrigado pela avaliação")


@router.get("/tickets/{ticket_id}/activities")
@limiter.limit("60/minute")
async def ticket_activities(request: Request, ticket_id: str, sb: Client = Depends(get_db),
                            user: dict = Depends(get_current_user)):
    return ok(BridgeManager(sb).linked_activities(ticket_id))


@router.post("/tickets/{ticket_id}/activities", status_code=201)
@limiter.limit("30/minute")
async def activity_from_ticket(request: Request, ticket_id: str, req: ActivityFromTicket,
                               sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    activity = BridgeManager(sb).create_activity_from_ticket(
        ticket_id, req.model_dump(exclude_none=True), created_by=user["id"])
    return ok(activity, "Actividade criada a partir do ticket")


@router.post("/tickets/{ticket_id}/align")
@limiter.limit("30/minute")
async def align_ticket(request: Request, ticket_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(BridgeManager(sb).align_status(ticket_id))


# ============================================================
# ACTIVIDADES
# ============================================================

@router.get("/activities")
@limiter.limit("60/minute")
async def list_activities(
    request: Request,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_oab: Optional[str] = None,
    numero_cnj: Optional[str] = None,
    ticket_id: Optional[str] = None,
    query: Optional[str] = None,
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return paginated(ActivityManager(sb).list_activities(
        page, limit, status, priority, assigned_oab, numero_cnj, ticket_id, query))


@router.get("/activities/stats")
@limiter.limit("60/minute")
async def activity_stats(request: Request, assigned_oab: Optional[str] = None, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).stats(assigned_oab))


@router.post("/activities", status_code=201)
@limiter.limit("30/minute")
async def create_activity(request: Request, req: ActivityCreate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).create(req.model_dump(), created_by=user["id"]), "Actividade criada")


@router.get("/activities/{activity_id}")
@limiter.limit("60/minute")
async def get_activity(request: Request, activity_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    activity = ActivityManager(sb).get(activity_id)
    return ok({**activity, "available_transitions": available_transitions(activity.get("status") or "todo")})


@router.patch("/activities/{activity_id}")
@limiter.limit("30/minute")
async def update_activity(request: Request, activity_id: str, req: ActivityUpdate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).update(activity_id, req.model_dump(exclude_unset=True)))


@router.delete("/activities/{activity_id}")
@limiter.limit("30/minute")
async def delete_activity(request: Request, activity_id: str, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    ActivityManager(sb).delete(activity_id)
    return ok(None, "Actividade removida")


@router.post("/activities/{activity_id}/status")
@limiter.limit("60/minute")
async def activity_status(request: Request, activity_id: str, req: StatusChange, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).transition(activity_id, req.status))


@router.get("/activities/{activity_id}/comments")
@limiter.limit("60/minute")
async def list_comments(request: Request, activity_id: str, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).list_comments(activity_id))


@router.post("/activities/{activity_id}/comments", status_code=201)
@limiter.limit("60/minute")
async def add_comment(request: Request, activity_id: str, req: CommentCreate, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).add_comment(activity_id, user["id"], req.body))


@router.post("/activities/{activity_id}/timer/start", status_code=201)
@limiter.limit("30/minute")
async def start_timer(request: Request, activity_id: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).start_timer(activity_id, user["id"]), "Cronómetro iniciado")


@router.post("/activities/{activity_id}/timer/stop")
@limiter.limit("30/minute")
async def stop_timer(request: Request, activity_id: str, sb: Client = Depends(get_db),
                     user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).stop_timer(activity_id, user["id"]), "Cronómetro parado")


@router.post("/activities/{activity_id}/time", status_code=201)
@limiter.limit("30/minute")
async def log_time(request: Request, activity_id: str, req: TimeLog, sb: Client = Depends(get_db),
                   user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).log_time(activity_id, user["id"], req.minutes, req.note))


@router.get("/activities/{activity_id}/time")
@limiter.limit("60/minute")
async def time_summary(request: Request, activity_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(ActivityManager(sb).time_summary(activity_id))


@router.put("/activities/{activity_id}/ticket")
@limiter.limit("30/minute")
async def link_ticket(request: Request, activity_id: str, req: LinkTicket, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(BridgeManager(sb).link_activity_to_ticket(activity_id, req.ticket_id))


@router.delete("/activities/{activity_id}/ticket")
@limiter.limit("30/minute")
async def unlink_ticket(request: Request, activity_id: str, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(BridgeManager(sb).unlink(activity_id))


# ============================================================
# BRIDGE
# ============================================================

@router.get("/bridge/suggestions")
@limiter.limit("20/minute")
async def suggest_links(request: Request, limit: int = 20, min_score: float = 0.4,
                        sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(BridgeManager(sb).suggest_links(limit, min_score))


@router.get("/bridge/stats")
@limiter.limit("30/minute")
async def bridge_stats(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(BridgeManager(sb).bridge_stats())
