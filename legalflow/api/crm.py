# -*- coding: utf-8 -*-
"""
Rotas de CRM
============================================================
/api/v1/crm/contacts      clientes + leads num formato único
/api/v1/crm/leads         leads e conversão em cliente
/api/v1/crm/pipelines     funis, etapas, kanban
/api/v1/crm/deals         oportunidades
============================================================
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter
from legalflow.crm import CRMManager
from legalflow.deals import DealManager
from legalflow.responses import ok, paginated

router = APIRouter(prefix="/api/v1/crm", tags=["crm"])


class LeadCreate(BaseModel):
    nome: str = Field(min_length=1, max_length=200)
    email: Optional[str] = None
    whatsapp: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    owner_oab: Optional[str] = None


class LeadUpdate(BaseModel):
    nome: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[str] = None
    whatsapp: Optional[str] = None
    source: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    owner_oab: Optional[str] = None


class LeadConvert(BaseModel):
    cpfcnpj: str


class PipelineCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    code: Optional[str] = None
    description: Optional[str] = None
    is_default: bool = False
    with_default_stages: bool = False


class PipelineUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_default: Optional[bool] = None


class PipelineStageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    position: Optional[int] = Field(default=None, ge=1)
    probability: int = Field(default=0, ge=0, le=100)
    color: Optional[str] = None
    is_won: bool = False
    is_lost: bool = False


class PipelineStageUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    position: Optional[int] = Field(default=None, ge=1)
    probability: Optional[int] = Field(default=None, ge=0, le=100)
    color: Optional[str] = None
    is_won: Optional[bool] = None
    is_lost: Optional[bool] = None


class DealCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    stage_id: str
    value: float = Field(default=0, ge=0)
    currency: Optional[str] = None
    probability: Optional[int] = Field(default=None, ge=0, le=100)
    cliente_cpfcnpj: Optional[str] = None
    lead_id: Optional[str] = None
    owner_oab: Optional[str] = None
    expected_close_date: Optional[str] = None
    tags: list[str] = []
    notes: Optional[str] = None


class DealUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    value: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    probability: Optional[int] = Field(default=None, ge=0, le=100)
    cliente_cpfcnpj: Optional[str] = None
    lead_id: Optional[str] = None
    owner_oab: Optional[str] = None
    expected_close_date: Optional[str] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = None
    stripe_subscription_id: Optional[str] = None


class DealMove(BaseModel):
    stage_id: str


class DealLost(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


# ============================================================
# CONTACTOS E LEADS
# ============================================================

@router.get("/contacts")
@limiter.limit("60/minute")
async def list_contacts(request: Request, query: Optional[str] = None, kind: Optional[str] = None,
                        page: int = 1, limit: int = 20, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return paginated(CRMManager(sb).contacts(query, kind, page, limit))


@router.get("/leads")
@limiter.limit("60/minute")
async def list_leads(request: Request, status: Optional[str] = None, owner_oab: Optional[str] = None,
                     sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(CRMManager(sb).list_leads(status, owner_oab))


@router.post("/leads", status_code=201)
@limiter.limit("30/minute")
async def create_lead(request: Request, req: LeadCreate, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(CRMManager(sb).create_lead(req.model_dump(exclude_none=True)), "Lead criado")


@router.get("/leads/{lead_id}")
@limiter.limit("60/minute")
async def get_lead(request: Request, lead_id: str, sb: Client = Depends(get_db),
                   user: dict = Depends(get_current_user)):
    return ok(CRMManager(sb).get_lead(lead_id))


@router.patch("/leads/{lead_id}")
@limiter.limit("30/minute")
async def update_lead(request: Request, lead_id: str, req: LeadUpdate, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(CRMManager(sb).update_lead(lead_id, req.model_dump(exclude_unset=True)))


@router.delete("/leads/{lead_id}")
@limiter.limit("30/minute")
async def delete_lead(request: Request, lead_id: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    CRMManager(sb).delete_lead(lead_id)
    return ok(None, "Lead removido")


@router.post("/leads/{lead_id}/convert", status_code=201)
@limiter.limit("10/minute")
async def convert_lead(request: Request, lead_id: str, req: LeadConvert, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(CRMManager(sb).convert_lead(lead_id, req.cpfcnpj), "Lead convertido em cliente")


# ============================================================
# PIPELINES
# ============================================================

@router.get("/pipelines")
@limiter.limit("60/minute")
async def list_pipelines(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).list_pipelines())


@router.get("/pipelines/stats")
@limiter.limit("30/minute")
async def pipeline_stats(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).pipeline_stats())


@router.post("/pipelines", status_code=201)
@limiter.limit("10/minute")
async def create_pipeline(request: Request, req: PipelineCreate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    manager = DealManager(sb)
    if req.with_default_stages:
        pipeline = manager.create_default_pipeline(req.name, req.code or "sales")
    else:
        pipeline = manager.create_pipeline(req.model_dump(exclude={"with_default_stages"}))
    return ok(pipeline, "Pipeline criado")


@router.get("/pipelines/{pipeline_id}")
@limiter.limit("60/minute")
async def get_pipeline(request: Request, pipeline_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).get_pipeline(pipeline_id))


@router.patch("/pipelines/{pipeline_id}")
@limiter.limit("30/minute")
async def update_pipeline(request: Request, pipeline_id: str, req: PipelineUpdate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).update_pipeline(pipeline_id, req.model_dump(exclude_unset=True)))


@router.delete("/pipelines/{pipeline_id}")
@limiter.limit("10/minute")
async def delete_pipeline(request: Request, pipeline_id: str, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    DealManager(sb).delete_pipeline(pipeline_id)
    return ok(None, "Pipeline removido")


@router.get("/pipelines/{pipeline_id}/kanban")
@limiter.limit("60/minute")
async def kanban(request: Request, pipeline_id: str, sb: Client = Depends(get_db),
                 user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).kanban(pipeline_id))


@router.post("/pipelines/{pipeline_id}/stages", status_code=201)
@limiter.limit("30/minute")
async def add_pipeline_stage(request: Request, pipeline_id: str, req: PipelineStageCreate,
                             sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).add_stage(pipeline_id, req.model_dump(exclude_none=True)))


@router.patch("/pipeline-stages/{stage_id}")
@limiter.limit("30/minute")
async def update_pipeline_stage(request: Request, stage_id: str, req: PipelineStageUpdate,
                                sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).update_stage(stage_id, req.model_dump(exclude_unset=True)))


@router.delete("/pipeline-stages/{stage_id}")
@limiter.limit("30/minute")
async def delete_pipeline_stage(request: Request, stage_id: str, sb: Client = Depends(get_db),
                                user: dict = Depends(get_current_user)):
    DealManager(sb).delete_stage(stage_id)
    return ok(None, "Etapa removida")


# ============================================================
# DEALS
# ============================================================

@router.get("/deals")
@limiter.limit("60/minute")
async def list_deals(
    request: Request,
    pipeline_id: Optional[str] = None,
    search: Optional[str] = None,
    stage_id: Optional[str] = None,
    owner_oab: Optional[str] = None,
    status: Optional[str] = None,
    value_min: Optional[float] = None,
    value_max: Optional[float] = None,
    sort_by: str = "created_at",
    descending: bool = True,
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return ok(DealManager(sb).list_deals(
        pipeline_id, search=search, stage_id=stage_id, owner_oab=owner_oab, status=status,
        value_min=value_min, value_max=value_max, sort_by=sort_by, descending=descending,
    ))


@router.post("/deals", status_code=201)
@limiter.limit("30/minute")
async def create_deal(request: Request, req: DealCreate, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).create_deal(req.model_dump(exclude_none=True), created_by=user["id"]), "Deal criado")


@router.get("/deals/{deal_id}")
@limiter.limit("60/minute")
async def get_deal(request: Request, deal_id: str, sb: Client = Depends(get_db),
                   user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).get_deal(deal_id))


@router.patch("/deals/{deal_id}")
@limiter.limit("30/minute")
async def update_deal(request: Request, deal_id: str, req: DealUpdate, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).update_deal(deal_id, req.model_dump(exclude_unset=True)))


@router.delete("/deals/{deal_id}")
@limiter.limit("30/minute")
async def delete_deal(request: Request, deal_id: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    DealManager(sb).delete_deal(deal_id)
    return ok(None, "Deal removido")


@router.post("/deals/{deal_id}/move")
@limiter.limit("120/minute")
async def move_deal(request: Request, deal_id: str, req: DealMove, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).move_deal(deal_id, req.stage_id))


@router.post("/deals/{deal_id}/won")
@limiter.limit("30/minute")
async def mark_won(request: Request, deal_id: str, sb: Client = Depends(get_db),
                   user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).mark_won(deal_id), "Deal ganho")


@router.post("/deals/{deal_id}/lost")
@limiter.limit("30/minute")
async def mark_lost(request: Request, deal_id: str, req: DealLost, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    return ok(DealManager(sb).mark_lost(deal_id, req.reason), "Deal perdido")
