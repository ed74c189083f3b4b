# -*- coding: utf-8 -*-
"""Rotas /api/v1/processos"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter
from legalflow.documentos import DocumentoManager
from legalflow.processos import ProcessoManager
from legalflow.responses import ok, paginated

router = APIRouter(prefix="/api/v1/processos", tags=["processos"])


class ProcessoCreate(BaseModel):
    numero_cnj: str
    tribunal_sigla: Optional[str] = Field(default=None, max_length=10)
    titulo_polo_ativo: Optional[str] = Field(default=None, max_length=500)
    titulo_polo_passivo: Optional[str] = Field(default=None, max_length=500)
    data: Optional[dict[str, Any]] = None
    tags: list[str] = []
    crm_id: Optional[str] = None


class ProcessoUpdate(BaseModel):
    tribunal_sigla: Optional[str] = Field(default=None, max_length=10)
    titulo_polo_ativo: Optional[str] = Field(default=None, max_length=500)
    titulo_polo_passivo: Optional[str] = Field(default=None, max_length=500)
    data: Optional[dict[str, Any]] = None
    decisoes: Optional[Any] = None
    tags: Optional[list[str]] = None
    crm_id: Optional[str] = None


class TagRequest(BaseModel):
    tag: str = Field(min_length=1, max_length=50)


class ClienteLink(BaseModel):
    cpfcnpj: str


class AdvogadoLink(BaseModel):
    oab: str


@router.get("")
@limiter.limit("60/minute")
async def list_processos(
    request: Request,
    page: int = 1,
    limit: int = 10,
    query: Optional[str] = None,
    tribunal_sigla: Optional[str] = None,
    tag: Optional[str] = None,
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return paginated(ProcessoManager(sb).list_processos(page, limit, query, tribunal_sigla, tag))


@router.post("", status_code=201)
@limiter.limit("30/minute")
async def create_processo(request: Request, req: ProcessoCreate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).create(req.model_dump()), "Processo criado com sucesso")


@router.get("/{cnj}")
@limiter.limit("60/minute")
async def get_processo(request: Request, cnj: str, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).get(cnj))


@router.patch("/{cnj}")
@limiter.limit("30/minute")
async def update_processo(request: Request, cnj: str, req: ProcessoUpdate, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).update(cnj, req.model_dump(exclude_unset=True)), "Processo actualizado")


@router.delete("/{cnj}")
@limiter.limit("30/minute")
async def delete_processo(request: Request, cnj: str, sb: Client = Depends(get_db),
                          user: dict = Depends(get_current_user)):
    ProcessoManager(sb).delete(cnj)
    return ok(None, "Processo removido")


@router.post("/{cnj}/tags")
@limiter.limit("30/minute")
async def add_tag(request: Request, cnj: str, req: TagRequest, sb: Client = Depends(get_db),
                  user: dict = Depends(get_current_user)):
    return ok({"tags": ProcessoManager(sb).add_tag(cnj, req.tag)})


@router.delete("/{cnj}/tags/{tag}")
@limiter.limit("30/minute")
async def remove_tag(request: Request, cnj: str, tag: str, sb: Client = Depends(get_db),
                     user: dict = Depends(get_current_user)):
    return ok({"tags": ProcessoManager(sb).remove_tag(cnj, tag)})


@router.get("/{cnj}/overview")
@limiter.limit("60/minute")
async def processo_overview(request: Request, cnj: str, sb: Client = Depends(get_db),
                            user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).overview(cnj))


@router.get("/{cnj}/timeline")
@limiter.limit("60/minute")
async def processo_timeline(request: Request, cnj: str, limit: int = Query(100, ge=1, le=500),
                            sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).timeline(cnj, limit))


@router.get("/{cnj}/movimentacoes")
@limiter.limit("60/minute")
async def processo_movimentacoes(request: Request, cnj: str, page: int = 1, limit: int = 20,
                                 sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return paginated(ProcessoManager(sb).movimentacoes(cnj, page, limit))


@router.get("/{cnj}/publicacoes")
@limiter.limit("60/minute")
async def processo_publicacoes(request: Request, cnj: str, page: int = 1, limit: int = 20,
                               sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return paginated(ProcessoManager(sb).publicacoes(cnj, page, limit))


@router.get("/{cnj}/documentos")
@limiter.limit("60/minute")
async def processo_documentos(request: Request, cnj: str, sb: Client = Depends(get_db),
                              user: dict = Depends(get_current_user)):
    processo = ProcessoManager(sb).get(cnj)
    return ok(DocumentoManager(sb).por_processo(processo["numero_cnj"]))


@router.get("/{cnj}/clientes")
@limiter.limit("60/minute")
async def processo_clientes(request: Request, cnj: str, sb: Client = Depends(get_db),
                            user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).clientes(cnj))


@router.post("/{cnj}/clientes", status_code=201)
@limiter.limit("30/minute")
async def link_cliente(request: Request, cnj: str, req: ClienteLink, sb: Client = Depends(get_db),
                       user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).link_cliente(cnj, req.cpfcnpj), "Cliente associado ao processo")


@router.delete("/{cnj}/clientes/{cpfcnpj}")
@limiter.limit("30/minute")
async def unlink_cliente(request: Request, cnj: str, cpfcnpj: str, sb: Client = Depends(get_db),
                         user: dict = Depends(get_current_user)):
    ProcessoManager(sb).unlink_cliente(cnj, cpfcnpj)
    return ok(None, "Cliente desassociado do processo")


@router.get("/{cnj}/advogados")
@limiter.limit("60/minute")
async def processo_advogados(request: Request, cnj: str, sb: Client = Depends(get_db),
                             user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).advogados(cnj))


@router.post("/{cnj}/advogados", status_code=201)
@limiter.limit("30/minute")
async def link_advogado(request: Request, cnj: str, req: AdvogadoLink, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(ProcessoManager(sb).link_advogado(cnj, req.oab), "Advogado associado ao processo")
