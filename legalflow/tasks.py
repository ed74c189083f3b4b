# -*- coding: utf-8 -*-
"""
TASKS - Sweeps periódicos (Celery beat)
============================================================
Cada task abre o cliente service_role e delega no manager do
domínio; o resultado (contagens) fica no backend Redis.
============================================================
"""

import logging

from auth_service import get_supabase_admin
from legalflow.celery_app import celery_app
from legalflow.financeiro import FinanceiroManager
from legalflow.journeys.instances import JourneyManager
from legalflow.tickets import TicketManager

logger = logging.getLogger(__name__)


@celery_app.task(name="legalflow.tasks.sweep_overdue_stages")
def sweep_overdue_stages() -> dict:
    result = JourneyManager(get_supabase_admin()).sweep_overdue()
    logger.info(f"[SWEEP] Etapas vencidas: {result['overdue']} em {result['instances']} jornada(s)")
    return result


@celery_app.task(name="legalflow.tasks.sweep_overdue_parcelas")
def sweep_overdue_parcelas() -> dict:
    result = FinanceiroManager(get_supabase_admin()).sweep_overdue()
    logger.info(f"[SWEEP] Parcelas vencidas: {result['parcelas_vencidas']}, "
                f"planos inadimplentes: {result['planos_inadimplentes']}")
    return result


@celery_app.task(name="legalflow.tasks.sweep_ticket_sla")
def sweep_ticket_sla() -> dict:
    result = TicketManager(get_supabase_admin()).sweep_sla()
    logger.info(f"[SWEEP] SLA: {result}")
    return result
