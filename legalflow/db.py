# -*- coding: utf-8 -*-
"""
ACESSO AO SUPABASE - helpers partilhados pelos managers
============================================================
As tabelas de negócio vivem no schema LEGALFLOW_SCHEMA; as tabelas
"clássicas" (processos, clientes, publicações...) no schema public.
============================================================
"""

import math
import logging
from typing import Any, Optional

from supabase import Client

from legalflow.config import LEGALFLOW_SCHEMA, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

logger = logging.getLogger(__name__)


class BaseManager:
    """
    Base dos managers de domínio.

    Args:
        supabase_client: Cliente Supabase (service_role)
    """

    def __init__(self, supabase_client: Client):
        self.sb = supabase_client
        self.lf = supabase_client.schema(LEGALFLOW_SCHEMA)


def clamp_pagination(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    return page, limit


def page_range(page: int, limit: int) -> tuple[int, int]:
    """Intervalo inclusivo para `.range()`."""
    start = (page - 1) * limit
    return start, start + limit - 1


def page_result(rows: list[dict], total: Optional[int], page: int, limit: int) -> dict[str, Any]:
    total = total if total is not None else len(rows)
    return {
        "items": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        },
    }


def paginate(query, page: Optional[int], limit: Optional[int]) -> dict[str, Any]:
    """Executa uma query (já com select count='exact' e filtros) com paginação."""
    page, limit = clamp_pagination(page, limit)
    start, end = page_range(page, limit)
    result = query.range(start, end).execute()
    return page_result(result.data or [], result.count, page, limit)


def first_row(result) -> Optional[dict]:
    data = getattr(result, "data", None)
    if isinstance(data, list):
        return data[0] if data else None
    return data or None
