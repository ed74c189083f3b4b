# -*- coding: utf-8 -*-
"""Rotas /api/v1/audit (auditoria e autofix, apenas admin)"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from supabase import Client

from legalflow.api.deps import get_db, limiter, require_admin
from legalflow.audit import AuditManager
from legalflow.errors import NotFoundError
from legalflow.responses import ok

router = APIRouter(prefix="/api/v1/audit", tags=["audit"])


@router.get("")
@limiter.limit("10/minute")
async def run_audit(request: Request, sb: Client = Depends(get_db), admin: dict = Depends(require_admin)):
    return ok(AuditManager(sb).run_audit())


@router.get("/history")
@limiter.limit("30/minute")
async def autofix_history(request: Request, limit: int = Query(20, ge=1, le=100), offset: int = Query(0, ge=0),
                          module: Optional[str] = None, sb: Client = Depends(get_db),
                          admin: dict = Depends(require_admin)):
    return ok(AuditManager(sb).history(limit, offset, module))


@router.get("/{module}")
@limiter.limit("30/minute")
async def audit_module(request: Request, module: str, sb: Client = Depends(get_db),
                       admin: dict = Depends(require_admin)):
    manager = AuditManager(sb)
    if module not in manager.modules:
        raise NotFoundError(f"Módulo desconhecido: {module}")
    return ok(manager.audit_module(module))


@router.post("/autofix/{patch_code}")
@limiter.limit("5/minute")
async def autofix(request: Request, patch_code: str, sb: Client = Depends(get_db),
                  admin: dict = Depends(require_admin)):
    result = AuditManager(sb).autofix(patch_code, user_id=admin["id"])
    return ok(result, result["message"])
