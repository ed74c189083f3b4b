# -*- coding: utf-8 -*-
"""
JORNADAS - Execução de regras automáticas
============================================================
Cada etapa de template tem regras (journey_stage_rules) disparadas
nos eventos on_enter / on_done / on_overdue das etapas de instância.

Acções:
  notify           notificação para o responsável (owner_oab)
  create_activity  actividade ligada à etapa de instância
  create_ticket    ticket com prazos SLA
  schedule         evento na agenda
  webhook          POST JSON para action_config.url

Uma regra que falha é registada e não impede as restantes.
============================================================
"""

import logging
from datetime import datetime, time, timedelta
from typing import Any, Optional

import httpx
from supabase import Client

from legalflow.activities import ActivityManager
from legalflow.agenda import AgendaManager
from legalflow.config import LEGALFLOW_SCHEMA, WEBHOOK_TIMEOUT
from legalflow.db import first_row
from legalflow.financeiro import FinanceiroManager
from legalflow.journeys.stage_types import ActionType, TriggerEvent
from legalflow.notifications import NotificationManager
from legalflow.tickets import TicketManager
from legalflow.utils.datas import app_tz, next_business_day, now_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MEETING_HOUR = 10


def render_text(template: Optional[str], context: dict[str, str]) -> str:
    """Substitui {stage} / {cliente} sem falhar em chaves desconhecidas."""
    text = template or ""
    for key, value in context.items():
        text = text.replace("{" + key + "}", value or "")
    return text


class RuleEngine:
    """
    Dispara as regras de uma etapa.

    Args:
        supabase_client: Cliente Supabase (service_role)
        http_client: httpx.Client opcional (webhooks; injectável em testes)
    """

    def __init__(self, supabase_client: Client, http_client: Optional[httpx.Client] = None):
        self.sb = supabase_client
        self.lf = supabase_client.schema(LEGALFLOW_SCHEMA)
        self.http = http_client
        self.notifications = NotificationManager(supabase_client)
        self.activities = ActivityManager(supabase_client)
        self.tickets = TicketManager(supabase_client)
        self.agenda = AgendaManager(supabase_client)
        self.financeiro = FinanceiroManager(supabase_client)

    def _rules(self, template_stage_id: str, trigger_event: str) -> list[dict]:
        return self.lf.table("journey_stage_rules").select("*").eq(
            "stage_id", template_stage_id).eq("trigger_event", trigger_event).eq(
            "is_active", True).order("created_at").execute().data or []

    def _context(self, stage: dict, instance: dict) -> dict[str, str]:
        cliente_nome = instance.get("cliente_nome")
        if not cliente_nome and instance.get("cliente_cpfcnpj"):
            cliente = first_row(
                self.sb.table("clientes").select("nome").eq("cpfcnpj", instance["cliente_cpfcnpj"]).limit(1).execute()
            )
            cliente_nome = (cliente or {}).get("nome")
        return {
            "stage": stage.get("title") or "",
            "cliente": cliente_nome or instance.get("cliente_cpfcnpj") or "",
        }

    def fire(self, trigger_event: str, stage: dict, instance: dict) -> list[dict[str, Any]]:
        """Executa as regras activas; devolve [{rule_id, action_type, ok, result|error}]."""
        template_stage_id = stage.get("template_stage_id")
        if not template_stage_id:
            return []
        rules = self._rules(template_stage_id, trigger_event)
        context = self._context(stage, instance) if rules else {}

        outcomes = []
        for rule in rules:
            action = rule.get("action_type")
            try:
                result = self._execute(action, rule.get("action_config") or {}, stage, instance, context)
                outcomes.append({"rule_id": rule.get("id"), "action_type": action, "ok": True, "result": result})
            except Exception as e:
                logger.error(f"[REGRAS] Regra {rule.get('id')} ({action}) falhou na etapa "
                             f"{stage.get('id')}: {e}")
                outcomes.append({"rule_id": rule.get("id"), "action_type": action, "ok": False, "error": str(e)})

        if trigger_event == TriggerEvent.ON_DONE.value:
            outcomes.extend(self._payment_links(template_stage_id, stage, instance))

        if outcomes:
            ok = sum(1 for o in outcomes if o["ok"])
            logger.info(f"[REGRAS] {trigger_event} '{stage.get('title')}': {ok}/{len(outcomes)} acções ok")
        return outcomes

    def _execute(self, action: str, config: dict, stage: dict, instance: dict, context: dict) -> Any:
        handlers = {
            ActionType.NOTIFY.value: self._notify,
            ActionType.CREATE_ACTIVITY.value: self._create_activity,
            ActionType.CREATE_TICKET.value: self._create_ticket,
            ActionType.SCHEDULE.value: self._schedule,
            ActionType.WEBHOOK.value: self._webhook,
        }
        handler = handlers.get(action)
        if not handler:
            raise ValueError(f"Acção desconhecida: {action}")
        return handler(config, stage, instance, context)

    # ============================================================
    # ACÇÕES
    # ============================================================

    def _notify(self, config, stage, instance, context):
        return self.notifications.create(
            title=render_text(config.get("title") or "Etapa actualizada", context),
            message=render_text(config.get("message") or "{stage}", context),
            oab=config.get("oab") or instance.get("owner_oab"),
            user_id=config.get("user_id"),
            type="jornada",
            link=f"/jornadas/{instance.get('id')}",
        )

    def _create_activity(self, config, stage, instance, context):
        return self.activities.create({
            "title": render_text(config.get("title") or "{stage}", context),
            "description": render_text(config.get("description"), context),
            "priority": config.get("priority") or "media",
            "due_at": stage.get("due_at"),
            "assigned_oab": instance.get("owner_oab"),
            "cliente_cpfcnpj": instance.get("cliente_cpfcnpj"),
            "numero_cnj": instance.get("numero_cnj"),
            "stage_instance_id": stage.get("id"),
        })

    def _create_ticket(self, config, stage, instance, context):
        return self.tickets.create({
            "subject": render_text(config.get("subject") or "Jornada: {stage}", context),
            "description": render_text(config.get("description"), context),
            "priority": config.get("priority") or "media",
            "channel": "sistema",
            "assigned_oab": instance.get("owner_oab"),
            "cliente_cpfcnpj": instance.get("cliente_cpfcnpj"),
            "numero_cnj": instance.get("numero_cnj"),
        })

    def _schedule(self, config, stage, instance, context):
        day = next_business_day(utcnow().astimezone(app_tz()) + timedelta(days=int(config.get("days_ahead") or 0)))
        starts = datetime.combine(day, time(int(config.get("hour") or DEFAULT_MEETING_HOUR)), tzinfo=app_tz())
        minutes = int(config.get("duration_minutes") or (stage.get("config") or {}).get("duration_minutes") or 60)
        return self.agenda.create_event({
            "title": render_text(config.get("title") or "{stage} - {cliente}", context),
            "event_type": config.get("event_type") or "reuniao",
            "starts_at": starts.isoformat(),
            "ends_at": (starts + timedelta(minutes=minutes)).isoformat(),
            "owner_oab": instance.get("owner_oab"),
            "cliente_cpfcnpj": instance.get("cliente_cpfcnpj"),
            "numero_cnj": instance.get("numero_cnj"),
            "stage_instance_id": stage.get("id"),
        }, allow_conflicts=True)

    def _webhook(self, config, stage, instance, context):
        url = config.get("url")
        if not url:
            raise ValueError("Webhook sem URL")
        payload = {
            "event": config.get("event") or "journey.stage",
            "instance_id": instance.get("id"),
            "stage_instance_id": stage.get("id"),
            "stage": context.get("stage"),
            "stage_status": stage.get("status"),
            "cliente_cpfcnpj": instance.get("cliente_cpfcnpj"),
            "numero_cnj": instance.get("numero_cnj"),
            "timestamp": now_iso(),
        }
        headers = {str(k): str(v) for k, v in (config.get("headers") or {}).items()}
        client = self.http or httpx.Client(timeout=WEBHOOK_TIMEOUT)
        try:
            response = client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        finally:
            if client is not self.http:
                client.close()
        return {"status_code": response.status_code}

    # ============================================================
    # LIGAÇÕES ETAPA ↔ PAGAMENTO
    # ============================================================

    def _payment_links(self, template_stage_id: str, stage: dict, instance: dict) -> list[dict]:
        outcomes = []
        for link in self.financeiro.stage_links(template_stage_id):
            action = link.get("action")
            try:
                if action == "activate_installment":
                    result = self.financeiro.activate_installment(link["plano_id"], link.get("parcela_n") or 1)
                elif action == "create_installment":
                    result = self.financeiro.create_installment(link["plano_id"], link.get("amount") or 0)
                else:
                    result = self.notifications.create(
                        title="Etapa com pagamento associado concluída",
                        message=f"A etapa '{stage.get('title')}' foi concluída. "
                                f"Verifique o plano de pagamento {link['plano_id']}.",
                        oab=instance.get("owner_oab"),
                        type="financeiro",
                        link=f"/financeiro/planos/{link['plano_id']}",
                    )
                outcomes.append({"rule_id": link.get("id"), "action_type": action, "ok": True, "result": result})
            except Exception as e:
                logger.error(f"[REGRAS] Ligação de pagamento {link.get('id')} ({action}) falhou: {e}")
                outcomes.append({"rule_id": link.get("id"), "action_type": action, "ok": False, "error": str(e)})
        return outcomes
