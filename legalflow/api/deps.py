# -*- coding: utf-8 -*-
"""
DEPENDÊNCIAS PARTILHADAS DOS ROUTERS
============================================================
- limiter:        rate limiting por IP (slowapi), registado no main.py
- get_db:         cliente Supabase service_role
- get_cadastro:   cliente DirectData/ViaCEP
- require_admin:  utilizador autenticado e listado em ADMIN_EMAILS
============================================================
"""

import logging

from fastapi import Depends, HTTPException, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from supabase import Client

from auth_service import get_current_user, get_supabase_admin, is_admin
from legalflow.external.cadastro import CadastroClient, get_cadastro_client

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def get_db() -> Client:
    return get_supabase_admin()


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(user):
        logger.warning(f"[SECURITY] Acesso admin negado: {(user.get('email') or '')[:3]}***")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Apenas administradores.")
    return user


def get_cadastro() -> CadastroClient:
    return get_cadastro_client()
