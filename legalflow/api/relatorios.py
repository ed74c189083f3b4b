# -*- coding: utf-8 -*-
"""Rotas /api/v1/relatorios (métricas e exportação PDF/DOCX)"""

import io
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from supabase import Client

from auth_service import get_current_user
from legalflow.api.deps import get_db, limiter
from legalflow.relatorios import RelatorioManager, build_docx, build_pdf, dashboard_report
from legalflow.responses import ok
from legalflow.utils.datas import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/relatorios", tags=["relatorios"])

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@router.get("/dashboard")
@limiter.limit("30/minute")
async def dashboard(request: Request, period_days: int = Query(30, ge=1, le=365), sb: Client = Depends(get_db),
                    user: dict = Depends(get_current_user)):
    return ok(RelatorioManager(sb).dashboard(period_days))


@router.get("/sla")
@limiter.limit("30/minute")
async def sla_metrics(request: Request, period_days: int = Query(30, ge=1, le=365), sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    return ok(RelatorioManager(sb).sla_metrics(period_days))


@router.get("/jornadas")
@limiter.limit("30/minute")
async def journey_metrics(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(RelatorioManager(sb).journey_metrics())


@router.get("/pagamentos")
@limiter.limit("30/minute")
async def payment_metrics(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(RelatorioManager(sb).payment_metrics())


@router.get("/pipelines")
@limiter.limit("30/minute")
async def pipeline_metrics(request: Request, sb: Client = Depends(get_db), user: dict = Depends(get_current_user)):
    return ok(RelatorioManager(sb).pipeline_metrics())


def _report_filename(ext: str) -> str:
    return f'attachment; filename="relatorio_legalflow_{utcnow().strftime("%Y%m%d")}.{ext}"'


@router.get("/export/pdf")
@limiter.limit("30/minute")
async def export_pdf(request: Request, period_days: int = Query(30, ge=1, le=365), sb: Client = Depends(get_db),
                     user: dict = Depends(get_current_user)):
    """Exporta o painel de gestão como PDF."""
    report = dashboard_report(RelatorioManager(sb).dashboard(period_days))
    try:
        pdf_bytes = build_pdf(report)
        return StreamingResponse(
            io.BytesIO(pdf_bytes),
            media_type="application/pdf",
            headers={"Content-Disposition": _report_filename("pdf")},
        )
    except Exception:
        logger.exception("Erro ao gerar PDF")
        raise HTTPException(status_code=500, detail="Erro ao gerar PDF.")


@router.get("/export/docx")
@limiter.limit("30/minute")
async def export_docx(request: Request, period_days: int = Query(30, ge=1, le=365), sb: Client = Depends(get_db),
                      user: dict = Depends(get_current_user)):
    """Exporta o painel de gestão como DOCX."""
    report = dashboard_report(RelatorioManager(sb).dashboard(period_days))
    try:
        docx_bytes = build_docx(report)
        return StreamingResponse(
            io.BytesIO(docx_bytes),
            media_type=DOCX_MEDIA_TYPE,
            headers={"Content-Disposition": _report_filename("docx")},
        )
    except Exception:
        logger.exception("Erro ao gerar DOCX")
        raise HTTPException(status_code=500, detail="Erro ao gerar DOCX.")
