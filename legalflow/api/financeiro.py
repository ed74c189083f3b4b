# -*- coding: utf-8 -*-
"""Rotas /api/v1/financeiro (planos de pagamento e parcelas)"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter
from legalflow.financeiro import FinanceiroManager
from legalflow.responses import ok

router = APIRouter(prefix="/api/v1/financeiro", tags=["financeiro"])


class PlanoCreate(BaseModel):
    cliente_cpfcnpj: str
    amount_total: float = Field(gt=0)
    installments: int = Field(default=1, ge=1)
    first_due_date: Optional[str] = None
    numero_cnj: Optional[str] = None
    description: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0)
    paid_at: Optional[str] = None


class PlanoStatus(BaseModel):
    status: Literal["ativo", "pausado"]


class StageLink(BaseModel):
    template_stage_id: str
    parcela_n: Optional[int] = Field(default=None, ge=1)
    action: str = "activate_installment"
    amount: Optional[float] = Field(default=None, gt=0)


@router.get("/planos")
@limiter.limit("60/minute")
async def list_planos(request: Request, cliente_cpfcnpj: Optional[str] = None, status: Optional[str] = None,
                      sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).list_planos(cliente_cpfcnpj, status))


@router.get("/metrics")
@limiter.limit("30/minute")
async def payment_metrics(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).payment_metrics())


@router.post("/planos", status_code=201)
@limiter.limit("20/minute")
async def create_plano(request: Request, req: PlanoCreate, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).create_plano(req.model_dump(), created_by=user["id"]),
              "Plano de pagamento criado")


@router.get("/planos/{plano_id}")
@limiter.limit("60/minute")
async def get_plano(request: Request, plano_id: str, sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).get_plano(plano_id))


@router.post("/planos/{plano_id}/cancel")
@limiter.limit("10/minute")
async def cancel_plano(request: Request, plano_id: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).cancel_plano(plano_id), "Plano cancelado")


@router.post("/planos/{plano_id}/status")
@limiter.limit("30/minute")
async def plano_status(request: Request, plano_id: str, req: PlanoStatus, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).set_plano_status(plano_id, req.status))


@router.post("/planos/{plano_id}/stage-links", status_code=201)
@limiter.limit("30/minute")
async def link_stage(request: Request, plano_id: str, req: StageLink, sb: Client = Depends(get_db),
                     user: dict = Depends(get_current_user)):
    link = FinanceiroManager(sb).link_stage(req.template_stage_id, plano_id, req.parcela_n, req.action, req.amount)
    return ok(link, "Etapa ligada ao plano")


@router.get("/stage-links/{template_stage_id}")
@limiter.limit("60/minute")
async def stage_links(request: Request, template_stage_id: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).stage_links(template_stage_id))


@router.get("/parcelas/{parcela_id}")
@limiter.limit("60/minute")
async def get_parcela(request: Request, parcela_id: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).get_parcela(parcela_id))


@router.post("/parcelas/{parcela_id}/payment")
@limiter.limit("30/minute")
async def register_payment(request: Request, parcela_id: str, req: PaymentRequest, sb: Client = Depends(get_db),
                           user: dict = Depends(get_current_user)):
    return ok(FinanceiroManager(sb).register_payment(parcela_id, req.amount, req.paid_at), "Pagamento registado")
