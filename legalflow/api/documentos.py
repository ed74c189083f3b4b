# -*- coding: utf-8 -*-
"""Rotas /api/v1/documentos"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from pydantic import BaseModel
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter
from legalflow.config import MAX_DOCUMENT_SIZE, SIGNED_URL_TTL
from legalflow.documentos import DocumentoManager
from legalflow.responses import ok, paginated

router = APIRouter(prefix="/api/v1/documentos", tags=["documentos"])


class DocumentoUpdate(BaseModel):
    description: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[list[str]] = None
    numero_cnj: Optional[str] = None
    cliente_cpfcnpj: Optional[str] = None


@router.get("")
@limiter.limit("60/minute")
async def list_documentos(
    request: Request,
    page: int = 1,
    limit: int = 10,
    query: Optional[str] = None,
    numero_cnj: Optional[str] = None,
    cliente_cpfcnpj: Optional[str] = None,
    file_type: Optional[str] = None,
    category: Optional[str] = None,
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return paginated(DocumentoManager(sb).list_documentos(
        page, limit, query, numero_cnj, cliente_cpfcnpj, file_type, category))


@router.post("", status_code=201)
@limiter.limit("20/minute")
@limiter.limit("300/day")
async def upload_documento(
    request: Request,
    file: UploadFile = File(...),
    numero_cnj: Optional[str] = Form(None),
    cliente_cpfcnpj: Optional[str] = Form(None),
    category: str = Form("outros"),
    description: str = Form(""),
    tags: str = Form(""),
    sb: Client = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Upload multipart. `tags` separadas por vírgula."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_DOCUMENT_SIZE + 1024 * 1024:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Ficheiro demasiado grande. Máximo: 50MB.",
        )
    content = await file.read()
    doc = DocumentoManager(sb).upload(
        file_name=file.filename or "documento",
        content=content,
        numero_cnj=numero_cnj or None,
        cliente_cpfcnpj=cliente_cpfcnpj or None,
        category=category,
        description=description,
        tags=[t.strip() for t in tags.split(",") if t.strip()],
        uploaded_by=user["id"],
    )
    return ok(doc, "Documento enviado com sucesso")


@router.get("/{document_id}")
@limiter.limit("60/minute")
async def get_documento(request: Request, document_id: str, sb: Client = Depends(get_db),
                        user: dict = Depends(get_current_user)):
    return ok(DocumentoManager(sb).get(document_id))


@router.patch("/{document_id}")
@limiter.limit("30/minute")
async def update_documento(request: Request, document_id: str, req: DocumentoUpdate,
                           sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(DocumentoManager(sb).update(document_id, req.model_dump(exclude_unset=True)))


@router.delete("/{document_id}")
@limiter.limit("30/minute")
async def delete_documento(request: Request, document_id: str, sb: Client = Depends(get_db),
                           user: dict = Depends(get_current_user)):
    DocumentoManager(sb).delete(document_id)
    return ok(None, "Documento removido")


@router.get("/{document_id}/download")
@limiter.limit("60/minute")
async def download_documento(request: Request, document_id: str,
                             expires_in: int = Query(SIGNED_URL_TTL, ge=60, le=86400),
                             sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(DocumentoManager(sb).download_url(document_id, expires_in))
