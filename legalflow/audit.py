# -*- coding: utf-8 -*-
"""
AUDITORIA / AUTOFIX - Verificação de saúde dos módulos
============================================================
run_audit()        corre as verificações de cada módulo
autofix(code)      aplica uma correcção conhecida e regista-a
history()          histórico de correcções (legalflow.autofix_history)

Estado de um módulo: ok | error | pending
============================================================
"""

import logging
from typing import Any, Callable, Optional

from legalflow.crm import CRMManager
from legalflow.db import BaseManager, first_row
from legalflow.financeiro import FinanceiroManager
from legalflow.journeys.instances import JourneyManager
from legalflow.journeys.stage_types import DEFAULT_STAGE_TYPES, JourneyStatus
from legalflow.journeys.templates import TemplateManager
from legalflow.tickets import OPEN_TICKET_STATUSES, TicketManager
from legalflow.utils.datas import local_today, now_iso

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_PENDING = "pending"

PATCH_MODULES = {
    "STAGE_TYPES_FIX": "stage-types",
    "NEXT_ACTION_CORE": "next-action",
    "SLA_BACKFILL": "sla-core",
    "FINANCE_OVERDUE": "finance-core",
    "API_SEED": "api-library",
}


def _check(check_id: str, name: str, ok: bool, details: str, pending: bool = False) -> dict[str, Any]:
    if ok:
        status = STATUS_OK
    else:
        status = STATUS_PENDING if pending else STATUS_ERROR
    return {"id": check_id, "name": name, "status": status, "details": details}


def _module_status(checks: list[dict]) -> str:
    statuses = {c["status"] for c in checks}
    if STATUS_ERROR in statuses:
        return STATUS_ERROR
    if STATUS_PENDING in statuses:
        return STATUS_PENDING
    return STATUS_OK


class AuditManager(BaseManager):
    """Verificações e correcções automáticas."""

    def __init__(self, supabase_client):
        super().__init__(supabase_client)
        self.modules: dict[str, Callable[[], list[dict]]] = {
            "stage-types": self._check_stage_types,
            "next-action": self._check_next_action,
            "timeline-view": self._check_timeline,
            "conversation-core": self._check_conversation,
            "sla-core": self._check_sla,
            "contacts-view": self._check_contacts,
            "finance-core": self._check_finance,
        }

    # ============================================================
    # VERIFICAÇÕES
    # ============================================================

    def _check_stage_types(self) -> list[dict]:
        rows = self.lf.table("stage_types").select("code, label").execute().data or []
        by_code = {r["code"]: r for r in rows}
        missing = [code for code in DEFAULT_STAGE_TYPES if code not in by_code]
        unlabeled = [code for code, r in by_code.items() if not (r.get("label") or "").strip()]
        return [
            _check("stage_types_present", "Tipos de etapa presentes", not missing,
                   f"Em falta: {', '.join(missing)}" if missing else f"{len(by_code)} tipos registados"),
            _check("stage_types_labels", "Tipos de etapa com label", not unlabeled,
                   f"Sem label: {', '.join(unlabeled)}" if unlabeled else "Todos com label"),
        ]

    def _check_next_action(self) -> list[dict]:
        active = self.lf.table("journey_instances").select("id, next_action, progress_pct").eq(
            "status", JourneyStatus.ATIVO.value).execute().data or []
        broken = [i["id"] for i in active if not i.get("next_action") or i.get("progress_pct") is None]
        return [_check(
            "next_action_filled", "Jornadas activas com próxima acção", not broken,
            f"{len(broken)} jornada(s) sem next_action/progresso" if broken else f"{len(active)} jornadas OK",
            pending=True,
        )]

    def _check_timeline(self) -> list[dict]:
        checks = []
        for table in ("movimentacoes", "publicacoes"):
            result = self.sb.table(table).select("id", count="exact").limit(1).execute()
            checks.append(_check(f"{table}_readable", f"Leitura de {table}", True,
                                 f"{result.count or 0} registos"))
        return checks

    def _check_conversation(self) -> list[dict]:
        threads = self.lf.table("thread_links").select("id", count="exact").limit(1).execute()
        messages = self.lf.table("ai_messages").select("id", count="exact").limit(1).execute()
        return [
            _check("threads_readable", "Leitura de thread_links", True, f"{threads.count or 0} conversas"),
            _check("messages_readable", "Leitura de ai_messages", True, f"{messages.count or 0} mensagens"),
        ]

    def _check_sla(self) -> list[dict]:
        open_tickets = self.lf.table("tickets").select("id, frt_due_at, ttr_due_at").in_(
            "status", list(OPEN_TICKET_STATUSES)).execute().data or []
        missing = [t["id"] for t in open_tickets if not t.get("frt_due_at") or not t.get("ttr_due_at")]
        return [_check(
            "sla_due_dates", "Tickets abertos com prazos SLA", not missing,
            f"{len(missing)} ticket(s) sem prazos" if missing else f"{len(open_tickets)} tickets OK",
            pending=True,
        )]

    def _check_contacts(self) -> list[dict]:
        page = CRMManager(self.sb).contacts(limit=1)
        return [_check("contacts_build", "Lista unificada de contactos", True,
                       f"{page['pagination']['total']} contactos")]

    def _check_finance(self) -> list[dict]:
        overdue = self.lf.table("parcelas").select("id").eq("status", "pendente").lt(
            "due_date", local_today().isoformat()).execute().data or []
        return [_check(
            "parcelas_overdue", "Parcelas pendentes dentro do prazo", not overdue,
            f"{len(overdue)} parcela(s) vencida(s) por marcar" if overdue else "Sem parcelas em atraso",
            pending=True,
        )]

    def audit_module(self, module: str) -> dict[str, Any]:
        check_fn = self.modules[module]
        try:
            checks = check_fn()
        except Exception as e:
            logger.error(f"[AUDIT] Falha no módulo {module}: {e}")
            checks = [_check("general_error", "Erro geral", False, str(e))]
        return {"status": _module_status(checks), "checks": checks, "last_checked": now_iso()}

    def run_audit(self) -> dict[str, dict[str, Any]]:
        report = {module: self.audit_module(module) for module in self.modules}
        failing = [m for m, r in report.items() if r["status"] != STATUS_OK]
        logger.info(f"[AUDIT] Auditoria concluída: {len(report) - len(failing)}/{len(report)} módulos OK"
                    + (f" (atenção: {', '.join(failing)})" if failing else ""))
        return report

    # ============================================================
    # AUTOFIX
    # ============================================================

    def _fix_stage_types(self) -> list[str]:
        seeded = TemplateManager(self.sb).seed_stage_types()
        return [f"{len(seeded)} tipos de etapa sincronizados"]

    def _fix_next_action(self) -> list[str]:
        count = JourneyManager(self.sb).recompute_all()
        return [f"{count} jornada(s) recalculada(s)"]

    def _fix_sla(self) -> list[str]:
        count = TicketManager(self.sb).backfill_sla()
        return [f"{count} ticket(s) com prazos preenchidos"]

    def _fix_finance(self) -> list[str]:
        result = FinanceiroManager(self.sb).sweep_overdue()
        return [f"{result['parcelas_vencidas']} parcela(s) marcada(s) como vencida(s)",
                f"{result['planos_inadimplentes']} plano(s) inadimplente(s)"]

    def _fix_api_seed(self) -> list[str]:
        result = self.lf.rpc("seed_api_library", {}).execute().data
        return [f"Biblioteca de APIs: {result if result is not None else 'OK'}"]

    def autofix(self, patch_code: str, user_id: Optional[str] = None) -> dict[str, Any]:
        fixes = {
            "STAGE_TYPES_FIX": self._fix_stage_types,
            "NEXT_ACTION_CORE": self._fix_next_action,
            "SLA_BACKFILL": self._fix_sla,
            "FINANCE_OVERDUE": self._fix_finance,
            "API_SEED": self._fix_api_seed,
        }
        fix = fixes.get(patch_code)
        if not fix:
            result = {"success": False, "message": f"Código de patch desconhecido: {patch_code}",
                      "changes": [], "errors": [f"Código de patch desconhecido: {patch_code}"]}
        else:
            try:
                changes = fix()
                result = {"success": True, "message": f"Patch {patch_code} aplicado", "changes": changes,
                          "errors": []}
            except Exception as e:
                logger.error(f"[AUTOFIX] {patch_code} falhou: {e}")
                result = {"success": False, "message": f"Patch {patch_code} falhou", "changes": [],
                          "errors": [str(e)]}

        self._record(patch_code, result, user_id)
        logger.info(f"[AUTOFIX] {patch_code}: {'OK' if result['success'] else 'FALHOU'}")
        return result

    def _record(self, patch_code: str, result: dict[str, Any], user_id: Optional[str]) -> None:
        row = {
            "type": "autofix",
            "module": PATCH_MODULES.get(patch_code, "desconhecido"),
            "patch_code": patch_code,
            "description": result["message"],
            "changes": result["changes"],
            "errors": result["errors"],
            "success": result["success"],
            "user_id": user_id,
            "created_at": now_iso(),
        }
        try:
            first_row(self.lf.table("autofix_history").insert(row).execute())
        except Exception as e:
            logger.error(f"[AUTOFIX] Falha ao registar histórico de {patch_code}: {e}")

    def history(self, limit: int = 20, offset: int = 0, module: Optional[str] = None) -> list[dict]:
        limit = max(1, min(int(limit), 100))
        offset = max(0, int(offset))
        q = self.lf.table("autofix_history").select("*")
        if module:
            q = q.eq("module", module)
        return q.order("created_at", desc=True).range(offset, offset + limit - 1).execute().data or []
