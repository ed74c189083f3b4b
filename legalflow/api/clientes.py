# -*- coding: utf-8 -*-
"""Rotas /api/v1/clientes e /api/v1/cadastro"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_cadastro, get_db, limiter
from legalflow.clientes import ClienteManager
from legalflow.external.cadastro import CadastroClient, validar_documento
from legalflow.responses import ok, paginated

router = APIRouter(prefix="/api/v1/clientes", tags=["clientes"])
cadastro_router = APIRouter(prefix="/api/v1/cadastro", tags=["cadastro"])


class Endereco(BaseModel):
    cep: str = ""
    logradouro: str = ""
    numero: str = ""
    complemento: str = ""
    bairro: str = ""
    cidade: str = ""
    uf: str = Field(default="", max_length=2)


class ClienteCreate(BaseModel):
    cpfcnpj: str
    nome: str = Field(min_length=2, max_length=255)
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    crm_id: Optional[str] = None
    endereco: Optional[Endereco] = None
    observacoes: Optional[str] = None


class ClienteUpdate(BaseModel):
    nome: Optional[str] = Field(default=None, min_length=2, max_length=255)
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    crm_id: Optional[str] = None
    endereco: Optional[Endereco] = None
    observacoes: Optional[str] = None


def _manager(sb: Client, cadastro: CadastroClient) -> ClienteManager:
    return ClienteManager(sb, cadastro=cadastro)


@router.get("")
@limiter.limit("60/minute")
async def list_clientes(
    request: Request,
    page: int = 1,
    limit: int = 10,
    query: Optional[str] = None,
    has_whatsapp: Optional[bool] = None,
    created_after: Optional[str] = None,
    created_before: Optional[str] = None,
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return paginated(ClienteManager(sb).list_clientes(
        page, limit, query, has_whatsapp, created_after, created_before))


@router.post("", status_code=201)
@limiter.limit("30/minute")
async def create_cliente(
    request: Request,
    req: ClienteCreate,
    enrich: bool = False,
    sb: Client = Depends(get_db),
    cadastro: CadastroClient = Depends(get_cadastro),
    user: dict = Depends(get_current_user),
):
    return ok(_manager(sb, cadastro).create(req.model_dump(), enrich=enrich), "Cliente criado com sucesso")


@router.get("/{cpfcnpj}")
@limiter.limit("60/minute")
async def get_cliente(request: Request, cpfcnpj: str, sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(ClienteManager(sb).get(cpfcnpj))


@router.patch("/{cpfcnpj}")
@limiter.limit("30/minute")
async def update_cliente(request: Request, cpfcnpj: str, req: ClienteUpdate, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    return ok(ClienteManager(sb).update(cpfcnpj, req.model_dump(exclude_unset=True)), "Cliente actualizado")


@router.delete("/{cpfcnpj}")
@limiter.limit("30/minute")
async def delete_cliente(request: Request, cpfcnpj: str, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    ClienteManager(sb).delete(cpfcnpj)
    return ok(None, "Cliente removido")


@router.get("/{cpfcnpj}/processos")
@limiter.limit("60/minute")
async def cliente_processos(request: Request, cpfcnpj: str, sb: Client = Depends(get_db),
                            user: dict = Depends(get_current_user)):
    return ok(ClienteManager(sb).processos(cpfcnpj))


@router.get("/{cpfcnpj}/planos")
@limiter.limit("60/minute")
async def cliente_planos(request: Request, cpfcnpj: str, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    return ok(ClienteManager(sb).planos(cpfcnpj))


@router.get("/{cpfcnpj}/jornadas")
@limiter.limit("60/minute")
async def cliente_jornadas(request: Request, cpfcnpj: str, sb: Client = Depends(get_db),
                           user: dict = Depends(get_current_user)):
    return ok(ClienteManager(sb).jornadas(cpfcnpj))


@router.get("/{cpfcnpj}/documentos")
@limiter.limit("60/minute")
async def cliente_documentos(request: Request, cpfcnpj: str, sb: Client = Depends(get_db),
                             user: dict = Depends(get_current_user)):
    return ok(ClienteManager(sb).documentos(cpfcnpj))


# ============================================================
# CONSULTAS EXTERNAS
# ============================================================

@cadastro_router.get("/cpf/{cpf}")
@limiter.limit("20/minute")
@limiter.limit("200/day")
async def consultar_cpf(request: Request, cpf: str, cadastro: CadastroClient = Depends(get_cadastro),
                        user: dict = Depends(get_current_user)):
    return ok(cadastro.consultar_cpf(cpf))


@cadastro_router.get("/cep/{cep}")
@limiter.limit("60/minute")
async def consultar_cep(request: Request, cep: str, cadastro: CadastroClient = Depends(get_cadastro),
                        user: dict = Depends(get_current_user)):
    return ok(cadastro.consultar_cep(cep))


@cadastro_router.get("/validar/{documento}")
@limiter.limit("120/minute")
async def validar(request: Request, documento: str, user: dict = Depends(get_current_user)):
    return ok(validar_documento(documento))
