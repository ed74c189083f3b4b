# -*- coding: utf-8 -*-
"""
Rotas de jornadas
============================================================
/api/v1/stage-types               catálogo dos tipos de etapa
/api/v1/journey-templates         designer de templates (etapas, regras)
/api/v1/journeys                  instâncias e transições de etapas
============================================================
"""

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter, require_admin
from legalflow.journeys.instances import JourneyManager
from legalflow.journeys.templates import TemplateManager
from legalflow.responses import ok, paginated

router = APIRouter(prefix="/api/v1", tags=["jornadas"])

StageTypeName = Literal["lesson", "form", "upload", "meeting", "gate", "task"]
StageTarget = Literal["in_progress", "completed", "skipped", "blocked"]


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    niche: Optional[str] = None
    tags: list[str] = []
    is_active: bool = True


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    niche: Optional[str] = None
    tags: Optional[list[str]] = None
    is_active: Optional[bool] = None


class DuplicateRequest(BaseModel):
    name: Optional[str] = None


class StageCreate(BaseModel):
    stage_type: StageTypeName
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    is_mandatory: bool = True
    sla_days: int = Field(default=0, ge=0)
    config: dict[str, Any] = {}
    position: Optional[int] = Field(default=None, ge=1)
    with_default_rules: bool = True


class StageUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_mandatory: Optional[bool] = None
    sla_days: Optional[int] = Field(default=None, ge=0)
    config: Optional[dict[str, Any]] = None


class ReorderRequest(BaseModel):
    ordered_ids: list[str]


class MoveRequest(BaseModel):
    new_position: int


class RuleCreate(BaseModel):
    trigger_event: Literal["on_enter", "on_done", "on_overdue"]
    action_type: Literal["notify", "create_activity", "create_ticket", "schedule", "webhook"]
    action_config: dict[str, Any] = {}
    is_active: bool = True


class RuleUpdate(BaseModel):
    trigger_event: Optional[Literal["on_enter", "on_done", "on_overdue"]] = None
    action_type: Optional[Literal["notify", "create_activity", "create_ticket", "schedule", "webhook"]] = None
    action_config: Optional[dict[str, Any]] = None
    is_active: Optional[bool] = None


class JourneyStart(BaseModel):
    template_id: str
    cliente_cpfcnpj: str
    owner_oab: Optional[str] = None
    numero_cnj: Optional[str] = None
    start_date: Optional[str] = None


class StageTransition(BaseModel):
    status: StageTarget
    completion_data: Optional[dict[str, Any]] = None
    reason: Optional[str] = None


class CompleteRequest(BaseModel):
    completion_data: dict[str, Any] = {}


class GateDecision(BaseModel):
    approved: bool
    notes: str = ""


# ============================================================
# TIPOS DE ETAPA
# ============================================================

@router.get("/stage-types")
@limiter.limit("60/minute")
async def list_stage_types(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).list_stage_types())


@router.post("/stage-types/seed")
@limiter.limit("10/minute")
async def seed_stage_types(request: Request, sb: Client = Depends(get_db), admin: dict = Depends(require_admin)):
    return ok(TemplateManager(sb).seed_stage_types(), "Tipos de etapa sincronizados")


# ============================================================
# TEMPLATES
# ============================================================

@router.get("/journey-templates")
@limiter.limit("60/minute")
async def list_templates(request: Request, search: Optional[str] = None, niche: Optional[str] = None,
                         is_active: Optional[bool] = None, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).list_templates(search, niche, is_active))


@router.post("/journey-templates", status_code=201)
@limiter.limit("30/minute")
async def create_template(request: Request, req: TemplateCreate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).create_template(req.model_dump(), created_by=user["id"]), "Template criado")


@router.get("/journey-templates/{template_id}")
@limiter.limit("60/minute")
async def get_template(request: Request, template_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).get_template(template_id))


@router.patch("/journey-templates/{template_id}")
@limiter.limit("30/minute")
async def update_template(request: Request, template_id: str, req: TemplateUpdate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).update_template(template_id, req.model_dump(exclude_unset=True)))


@router.delete("/journey-templates/{template_id}")
@limiter.limit("30/minute")
async def delete_template(request: Request, template_id: str, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    TemplateManager(sb).delete_template(template_id)
    return ok(None, "Template removido")


@router.post("/journey-templates/{template_id}/duplicate", status_code=201)
@limiter.limit("10/minute")
async def duplicate_template(request: Request, template_id: str, req: DuplicateRequest,
                             sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).duplicate_template(template_id, req.name, created_by=user["id"]),
              "Template duplicado")


@router.post("/journey-templates/{template_id}/stages", status_code=201)
@limiter.limit("60/minute")
async def add_stage(request: Request, template_id: str, req: StageCreate, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    stage = req.model_dump(exclude={"position", "with_default_rules"})
    return ok(TemplateManager(sb).add_stage(template_id, stage, req.position, req.with_default_rules))


@router.put("/journey-templates/{template_id}/stages/order")
@limiter.limit("60/minute")
async def reorder_stages(request: Request, template_id: str, req: ReorderRequest, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).reorder_stages(template_id, req.ordered_ids))


@router.post("/journey-templates/{template_id}/stages/{stage_id}/move")
@limiter.limit("120/minute")
async def move_stage(request: Request, template_id: str, stage_id: str, req: MoveRequest,
                     sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).move_stage(template_id, stage_id, req.new_position))


@router.patch("/template-stages/{stage_id}")
@limiter.limit("60/minute")
async def update_stage(request: Request, stage_id: str, req: StageUpdate, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).update_stage(stage_id, req.model_dump(exclude_unset=True)))


@router.delete("/template-stages/{stage_id}")
@limiter.limit("60/minute")
async def remove_stage(request: Request, stage_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).remove_stage(stage_id), "Etapa removida")


@router.get("/template-stages/{stage_id}/rules")
@limiter.limit("60/minute")
async def list_rules(request: Request, stage_id: str, trigger_event: Optional[str] = None,
                     sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).list_rules(stage_id, trigger_event))


@router.post("/template-stages/{stage_id}/rules", status_code=201)
@limiter.limit("60/minute")
async def add_rule(request: Request, stage_id: str, req: RuleCreate, sb: Client = Depends(get_db),
                   user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).add_rule(stage_id, req.model_dump()))


@router.patch("/stage-rules/{rule_id}")
@limiter.limit("60/minute")
async def update_rule(request: Request, rule_id: str, req: RuleUpdate, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(TemplateManager(sb).update_rule(rule_id, req.model_dump(exclude_unset=True)))


@router.delete("/stage-rules/{rule_id}")
@limiter.limit("60/minute")
async def delete_rule(request: Request, rule_id: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    TemplateManager(sb).delete_rule(rule_id)
    return ok(None, "Regra removida")


# ============================================================
# INSTÂNCIAS
# ============================================================

@router.get("/journeys")
@limiter.limit("60/minute")
async def list_journeys(
    request: Request,
    status: Optional[str] = None,
    cliente_cpfcnpj: Optional[str] = None,
    owner_oab: Optional[str] = None,
    template_id: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    descending: bool = True,
    page: int = 1,
    limit: int = 10,
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return paginated(JourneyManager(sb).list_instances(
        status, cliente_cpfcnpj, owner_oab, template_id, search, sort_by, descending, page, limit))


@router.get("/journeys/stats")
@limiter.limit("60/minute")
async def journey_stats(request: Request, owner_oab: Optional[str] = None, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(JourneyManager(sb).journey_stats(owner_oab))


@router.post("/journeys", status_code=201)
@limiter.limit("30/minute")
async def start_journey(request: Request, req: JourneyStart, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    journey = JourneyManager(sb).start_journey(
        req.template_id, req.cliente_cpfcnpj, req.owner_oab, req.numero_cnj, req.start_date)
    return ok(journey, "Jornada iniciada")


@router.get("/journeys/{instance_id}")
@limiter.limit("60/minute")
async def get_journey(request: Request, instance_id: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(JourneyManager(sb).get_instance(instance_id))


@router.post("/journeys/{instance_id}/{action}")
@limiter.limit("30/minute")
async def journey_lifecycle(request: Request, instance_id: str, action: Literal["pause", "resume", "cancel"],
                            sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    manager = JourneyManager(sb)
    return ok(getattr(manager, action)(instance_id))


@router.patch("/journey-stages/{stage_id}")
@limiter.limit("60/minute")
async def transition_stage(request: Request, stage_id: str, req: StageTransition, sb: Client = Depends(get_db),
                           user: dict = Depends(get_current_user)):
    data = {"completion_data": req.completion_data, "reason": req.reason}
    return ok(JourneyManager(sb).transition_stage(stage_id, req.status, data, user=user["id"]))


@router.post("/journey-stages/{stage_id}/complete")
@limiter.limit("60/minute")
async def complete_stage(request: Request, stage_id: str, req: CompleteRequest, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    return ok(JourneyManager(sb).complete_stage(stage_id, req.completion_data, user["id"]), "Etapa concluída")


@router.post("/journey-stages/{stage_id}/approval")
@limiter.limit("30/minute")
async def approve_gate(request: Request, stage_id: str, req: GateDecision, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    result = JourneyManager(sb).approve_gate(stage_id, req.approved, req.notes, approved_by=user["id"])
    return ok(result, "Etapa aprovada" if req.approved else "Etapa rejeitada")
