# -*- coding: utf-8 -*-
"""
JORNADAS - Motor de progresso das instâncias
============================================================
journey_instances   jornada de um cliente (a partir de um template)
stage_instances     cópia das etapas do template, com prazos e estado

Fluxo:
  start_journey → 1ª etapa in_progress (+ on_enter)
  complete_stage → on_done → próxima etapa pendente in_progress (+ on_enter)
  todas concluídas/dispensadas → jornada concluido

progress_pct e next_action são gravados na instância sempre que
uma etapa muda de estado.
============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from supabase import Client

from legalflow.clientes import ClienteManager
from legalflow.db import BaseManager, clamp_pagination, first_row, page_result
from legalflow.errors import NotFoundError, TransitionError, ValidationError
from legalflow.journeys.rules import RuleEngine
from legalflow.journeys.stage_types import (
    DONE_STATUSES,
    OPEN_STATUSES,
    STAGE_TRANSITIONS,
    JourneyStatus,
    StageStatus,
    StageType,
    TriggerEvent,
    calculate_journey_stats,
    calculate_next_action,
    calculate_progress,
    days_until_due,
    filter_journeys,
    is_stage_overdue,
    sort_journeys,
)
from legalflow.journeys.templates import TemplateManager
from legalflow.utils.datas import DateLike, now_iso, parse_datetime, utcnow
from legalflow.utils.documentos import only_digits

logger = logging.getLogger(__name__)

INSTANCE_TRANSITIONS: dict[str, set[str]] = {
    JourneyStatus.ATIVO.value: {JourneyStatus.PAUSADO.value, JourneyStatus.CANCELADO.value},
    JourneyStatus.PAUSADO.value: {JourneyStatus.ATIVO.value, JourneyStatus.CANCELADO.value},
    JourneyStatus.CONCLUIDO.value: set(),
    JourneyStatus.CANCELADO.value: set(),
}


def required_form_fields(config: Optional[dict]) -> list[str]:
    """
    Campos obrigatórios de uma etapa `form`.

    Aceita strings (sempre obrigatórias) ou dicts {name, required}.
    """
    names = []
    for field in (config or {}).get("fields") or []:
        if isinstance(field, str):
            names.append(field)
        elif isinstance(field, dict) and field.get("required", True):
            name = field.get("name") or field.get("key") or field.get("id")
            if name:
                names.append(str(name))
    return names


def check_completion(stage: dict, completion_data: Optional[dict]) -> None:
    """
    Requisitos de conclusão por tipo de etapa.

    Raises:
        ValidationError: requisito em falta
    """
    data = completion_data or {}
    stage_type = stage.get("stage_type")
    config = stage.get("config") or {}

    if stage_type == StageType.FORM.value:
        responses = data.get("responses") or {}
        missing = [
            name for name in required_form_fields(config)
            if responses.get(name) in (None, "", [], {})
        ]
        if missing:
            raise ValidationError(
                "Formulário incompleto",
                errors=[{"field": f"responses.{name}", "message": "Resposta obrigatória",
                         "code": "REQUIRED_FIELD"} for name in missing],
            )
    elif stage_type == StageType.UPLOAD.value:
        if not data.get("document_ids"):
            raise ValidationError("Nenhum documento enviado", field="document_ids", code="REQUIRED_FIELD")
    elif stage_type == StageType.GATE.value and config.get("approval_type", "manual") == "manual":
        raise ValidationError("Esta etapa exige aprovação manual", field="approval", code="APPROVAL_REQUIRED")


class JourneyManager(BaseManager):
    """
    Instâncias de jornada e transições de etapas.

    Args:
        supabase_client: Cliente Supabase (service_role)
        rules: RuleEngine opcional (injectável em testes)
    """

    def __init__(self, supabase_client: Client, rules: Optional[RuleEngine] = None):
        super().__init__(supabase_client)
        self.templates = TemplateManager(supabase_client)
        self.rules = rules or RuleEngine(supabase_client)

    # ============================================================
    # LEITURA
    # ============================================================

    def _instance_row(self, instance_id: str) -> dict[str, Any]:
        inst = first_row(self.lf.table("journey_instances").select("*").eq("id", instance_id).limit(1).execute())
        if not inst:
            raise NotFoundError("Jornada não encontrada")
        return inst

    def stages(self, instance_id: str) -> list[dict]:
        return self.lf.table("stage_instances").select("*").eq(
            "instance_id", instance_id).order("order_index").execute().data or []

    def _stage_row(self, stage_id: str) -> dict[str, Any]:
        stage = first_row(self.lf.table("stage_instances").select("*").eq("id", stage_id).limit(1).execute())
        if not stage:
            raise NotFoundError("Etapa não encontrada")
        return stage

    @staticmethod
    def describe_stage(stage: dict, now: Optional[datetime] = None) -> dict[str, Any]:
        return {
            **stage,
            "is_overdue": is_stage_overdue(stage, now),
            "days_until_due": days_until_due(stage, now),
        }

    def get_instance(self, instance_id: str) -> dict[str, Any]:
        inst = self._instance_row(instance_id)
        now = utcnow()
        return {**inst, "stages": [self.describe_stage(s, now) for s in self.stages(instance_id)]}

    def _load_with_stages(self, query) -> list[dict]:
        instances = query.execute().data or []
        if not instances:
            return []
        ids = [i["id"] for i in instances]
        by_instance: dict[str, list[dict]] = {}
        for stage in self.lf.table("stage_instances").select("*").in_("instance_id", ids).execute().data or []:
            by_instance.setdefault(stage["instance_id"], []).append(stage)
        for inst in instances:
            inst["stages"] = sorted(by_instance.get(inst["id"], []), key=lambda s: s.get("order_index") or 0)
        return instances

    def list_instances(
        self,
        status: Optional[str] = None,
        cliente_cpfcnpj: Optional[str] = None,
        owner_oab: Optional[str] = None,
        template_id: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        descending: bool = True,
        page: int = 1,
        limit: int = 10,
    ) -> dict[str, Any]:
        q = self.lf.table("journey_instances").select("*")
        if status:
            q = q.eq("status", status)
        if cliente_cpfcnpj:
            q = q.eq("cliente_cpfcnpj", only_digits(cliente_cpfcnpj))
        if owner_oab:
            q = q.eq("owner_oab", owner_oab)
        if template_id:
            q = q.eq("template_id", template_id)
        instances = filter_journeys(self._load_with_stages(q), search=search)
        instances = sort_journeys(instances, sort_by, descending)

        page, limit = clamp_pagination(page, limit)
        start = (page - 1) * limit
        now = utcnow()
        items = []
        for inst in instances[start:start + limit]:
            stages = inst.pop("stages")
            inst["overdue_stages"] = sum(1 for s in stages if is_stage_overdue(s, now))
            inst["stages_total"] = len(stages)
            items.append(inst)
        return page_result(items, len(instances), page, limit)

    def journey_stats(self, owner_oab: Optional[str] = None) -> dict[str, Any]:
        q = self.lf.table("journey_instances").select("*")
        if owner_oab:
            q = q.eq("owner_oab", owner_oab)
        return calculate_journey_stats(self._load_with_stages(q))

    # ============================================================
    # CRIAÇÃO
    # ============================================================

    def start_journey(
        self,
        template_id: str,
        cliente_cpfcnpj: str,
        owner_oab: Optional[str] = None,
        numero_cnj: Optional[str] = None,
        start_date: DateLike = None,
    ) -> dict[str, Any]:
        """
        Instancia um template para um cliente.

        Raises:
            NotFoundError: template ou cliente inexistente
            ValidationError: template inactivo ou sem etapas
        """
        template = self.templates.get_template(template_id)
        if not template.get("is_active", True):
            raise ValidationError("Template inactivo", field="template_id")
        if not template["stages"]:
            raise ValidationError("Template sem etapas", field="template_id")
        cliente = ClienteManager(self.sb).get(cliente_cpfcnpj)

        start = parse_datetime(start_date) or utcnow()
        inst_row = {
            "template_id": template_id,
            "template_name": template.get("name"),
            "cliente_cpfcnpj": cliente["cpfcnpj"],
            "cliente_nome": cliente.get("nome"),
            "numero_cnj": numero_cnj,
            "owner_oab": owner_oab,
            "status": JourneyStatus.ATIVO.value,
            "progress_pct": 0,
            "next_action": None,
            "start_date": start.isoformat(),
            "completed_at": None,
            "created_at": now_iso(),
        }
        instance = first_row(self.lf.table("journey_instances").insert(inst_row).execute()) or inst_row

        cumulative = 0
        stage_rows = []
        for tpl_stage in template["stages"]:
            cumulative += int(tpl_stage.get("sla_days") or 0)
            stage_rows.append({
                "instance_id": instance["id"],
                "template_stage_id": tpl_stage["id"],
                "stage_type": tpl_stage["stage_type"],
                "title": tpl_stage["title"],
                "order_index": tpl_stage["order_index"],
                "is_mandatory": tpl_stage.get("is_mandatory", True),
                "config": tpl_stage.get("config") or {},
                "status": StageStatus.PENDING.value,
                "due_at": (start + timedelta(days=cumulative)).isoformat(),
                "started_at": None,
                "completed_at": None,
                "completion_data": {},
                "overdue_notified_at": None,
            })
        stages = self.lf.table("stage_instances").insert(stage_rows).execute().data or stage_rows
        stages.sort(key=lambda s: s["order_index"])

        self._enter_stage(stages[0], instance)
        logger.info(f"[JORNADAS] Jornada iniciada: '{template.get('name')}' para {cliente['cpfcnpj']} "
                    f"({len(stages)} etapas, instância {instance['id']})")
        return self.refresh_instance(instance["id"])

    # ============================================================
    # ESTADO DA INSTÂNCIA
    # ============================================================

    def refresh_instance(self, instance_id: str, now: Optional[datetime] = None) -> dict[str, Any]:
        """Recalcula progress_pct / next_action e conclui a jornada se for o caso."""
        inst = self._instance_row(instance_id)
        stages = self.stages(instance_id)
        changes: dict[str, Any] = {
            "progress_pct": calculate_progress(stages),
            "next_action": calculate_next_action(stages, now),
            "updated_at": now_iso(),
        }
        all_done = bool(stages) and all(s.get("status") in DONE_STATUSES for s in stages)
        if all_done and inst.get("status") == JourneyStatus.ATIVO.value:
            changes["status"] = JourneyStatus.CONCLUIDO.value
            changes["completed_at"] = changes["updated_at"]
            logger.info(f"[JORNADAS] Jornada {instance_id} concluída")
        updated = first_row(
            self.lf.table("journey_instances").update(changes).eq("id", instance_id).execute()
        ) or {**inst, **changes}
        return {**updated, "stages": stages}

    def _set_instance_status(self, instance_id: str, target: str) -> dict[str, Any]:
        inst = self._instance_row(instance_id)
        current = inst.get("status")
        if target not in INSTANCE_TRANSITIONS.get(current, set()):
            raise TransitionError(current, target, "jornada")
        self.lf.table("journey_instances").update({"status": target, "updated_at": now_iso()}).eq(
            "id", instance_id).execute()
        logger.info(f"[JORNADAS] Jornada {instance_id}: {current} → {target}")
        return self.get_instance(instance_id)

    def pause(self, instance_id: str) -> dict[str, Any]:
        return self._set_instance_status(instance_id, JourneyStatus.PAUSADO.value)

    def resume(self, instance_id: str) -> dict[str, Any]:
        return self._set_instance_status(instance_id, JourneyStatus.ATIVO.value)

    def cancel(self, instance_id: str) -> dict[str, Any]:
        return self._set_instance_status(instance_id, JourneyStatus.CANCELADO.value)

    # ============================================================
    # TRANSIÇÕES DE ETAPA
    # ============================================================

    def _active_context(self, stage_id: str) -> tuple[dict, dict]:
        stage = self._stage_row(stage_id)
        instance = self._instance_row(stage["instance_id"])
        if instance.get("status") != JourneyStatus.ATIVO.value:
            raise TransitionError(instance.get("status"), "alteração de etapa", "jornada")
        return stage, instance

    @staticmethod
    def _check_transition(stage: dict, target: str) -> None:
        current = stage.get("status")
        if target not in STAGE_TRANSITIONS.get(current, set()):
            raise TransitionError(current, target, "etapa")
        if target == StageStatus.SKIPPED.value and stage.get("is_mandatory", True):
            raise TransitionError(current, target, "etapa obrigatória")

    def _update_stage(self, stage: dict, changes: dict[str, Any]) -> dict[str, Any]:
        return first_row(
            self.lf.table("stage_instances").update(changes).eq("id", stage["id"]).execute()
        ) or {**stage, **changes}

    def _enter_stage(self, stage: dict, instance: dict) -> dict[str, Any]:
        entered = self._update_stage(stage, {
            "status": StageStatus.IN_PROGRESS.value,
            "started_at": stage.get("started_at") or now_iso(),
        })
        self.rules.fire(TriggerEvent.ON_ENTER.value, entered, instance)
        return entered

    def _advance(self, instance: dict) -> Optional[dict]:
        """Inicia a próxima etapa pendente, se nenhuma estiver em curso."""
        stages = self.stages(instance["id"])
        if any(s.get("status") == StageStatus.IN_PROGRESS.value for s in stages):
            return None
        pending = [s for s in stages if s.get("status") == StageStatus.PENDING.value]
        if not pending:
            return None
        return self._enter_stage(pending[0], instance)

    def start_stage(self, stage_id: str) -> dict[str, Any]:
        stage, instance = self._active_context(stage_id)
        self._check_transition(stage, StageStatus.IN_PROGRESS.value)
        if stage.get("status") == StageStatus.PENDING.value:
            self._enter_stage(stage, instance)
        else:
            self._update_stage(stage, {"status": StageStatus.IN_PROGRESS.value})
        return self.refresh_instance(instance["id"])

    def complete_stage(self, stage_id: str, completion_data: Optional[dict] = None,
                       completed_by: Optional[str] = None) -> dict[str, Any]:
        """
        Conclui uma etapa em curso, dispara on_done e avança para a seguinte.

        Raises:
            TransitionError: etapa não está in_progress ou jornada não activa
            ValidationError: requisitos do tipo de etapa em falta
        """
        stage, instance = self._active_context(stage_id)
        self._check_transition(stage, StageStatus.COMPLETED.value)
        check_completion(stage, completion_data)
        return self._finish_stage(stage, instance, completion_data or {}, completed_by)

    def _finish_stage(self, stage: dict, instance: dict, completion_data: dict,
                      completed_by: Optional[str]) -> dict[str, Any]:
        data = {**(stage.get("completion_data") or {}), **completion_data}
        if completed_by:
            data["completed_by"] = completed_by
        done = self._update_stage(stage, {
            "status": StageStatus.COMPLETED.value,
            "completed_at": now_iso(),
            "completion_data": data,
        })
        self.rules.fire(TriggerEvent.ON_DONE.value, done, instance)
        self._advance(instance)
        logger.info(f"[JORNADAS] Etapa concluída: '{stage.get('title')}' (jornada {instance['id']})")
        return self.refresh_instance(instance["id"])

    def approve_gate(self, stage_id: str, approved: bool, notes: str = "",
                     approved_by: Optional[str] = None) -> dict[str, Any]:
        stage, instance = self._active_context(stage_id)
        if stage.get("stage_type") != StageType.GATE.value:
            raise ValidationError("Apenas etapas de aprovação aceitam esta operação", field="stage_type")
        decision = {"approved": approved, "notes": notes, "decided_by": approved_by, "decided_at": now_iso()}
        if approved:
            self._check_transition(stage, StageStatus.COMPLETED.value)
            return self._finish_stage(stage, instance, {"approval": decision}, approved_by)

        self._check_transition(stage, StageStatus.BLOCKED.value)
        self._update_stage(stage, {
            "status": StageStatus.BLOCKED.value,
            "completion_data": {**(stage.get("completion_data") or {}), "approval": decision},
        })
        logger.warning(f"[JORNADAS] Aprovação rejeitada: '{stage.get('title')}' ({notes[:80]})")
        return self.refresh_instance(instance["id"])

    def block_stage(self, stage_id: str, reason: str = "") -> dict[str, Any]:
        stage, instance = self._active_context(stage_id)
        self._check_transition(stage, StageStatus.BLOCKED.value)
        self._update_stage(stage, {
            "status": StageStatus.BLOCKED.value,
            "completion_data": {**(stage.get("completion_data") or {}), "blocked_reason": reason},
        })
        return self.refresh_instance(instance["id"])

    def skip_stage(self, stage_id: str) -> dict[str, Any]:
        stage, instance = self._active_context(stage_id)
        self._check_transition(stage, StageStatus.SKIPPED.value)
        self._update_stage(stage, {"status": StageStatus.SKIPPED.value, "completed_at": now_iso()})
        self._advance(instance)
        return self.refresh_instance(instance["id"])

    def reopen_stage(self, stage_id: str) -> dict[str, Any]:
        stage, instance = self._active_context(stage_id)
        if stage.get("status") != StageStatus.COMPLETED.value:
            raise TransitionError(stage.get("status"), StageStatus.IN_PROGRESS.value, "etapa")
        self._update_stage(stage, {"status": StageStatus.IN_PROGRESS.value, "completed_at": None})
        return self.refresh_instance(instance["id"])

    def transition_stage(self, stage_id: str, target: str, data: Optional[dict] = None,
                         user: Optional[str] = None) -> dict[str, Any]:
        """Ponto de entrada único usado pela API (PATCH /stages/{id})."""
        data = data or {}
        stage = self._stage_row(stage_id)
        if target == StageStatus.COMPLETED.value:
            return self.complete_stage(stage_id, data.get("completion_data"), user)
        if target == StageStatus.SKIPPED.value:
            return self.skip_stage(stage_id)
        if target == StageStatus.BLOCKED.value:
            return self.block_stage(stage_id, data.get("reason") or "")
        if target == StageStatus.IN_PROGRESS.value:
            if stage.get("status") == StageStatus.COMPLETED.value:
                return self.reopen_stage(stage_id)
            return self.start_stage(stage_id)
        raise TransitionError(stage.get("status"), target, "etapa")

    # ============================================================
    # SWEEP DE PRAZOS (Celery)
    # ============================================================

    def sweep_overdue(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Dispara on_overdue uma única vez por etapa vencida de jornadas activas.

        O estado da etapa não muda; overdue_notified_at marca o disparo.
        """
        now = now or utcnow()
        candidates = self.lf.table("stage_instances").select("*").in_(
            "status", sorted(OPEN_STATUSES)).lt("due_at", now.isoformat()).is_(
            "overdue_notified_at", "null").execute().data or []
        if not candidates:
            return {"overdue": 0, "instances": 0}

        instance_ids = sorted({s["instance_id"] for s in candidates})
        instances = {
            i["id"]: i for i in self.lf.table("journey_instances").select("*").in_(
                "id", instance_ids).eq("status", JourneyStatus.ATIVO.value).execute().data or []
        }
        fired = 0
        touched = set()
        for stage in candidates:
            instance = instances.get(stage["instance_id"])
            if not instance or not is_stage_overdue(stage, now):
                continue
            self.rules.fire(TriggerEvent.ON_OVERDUE.value, stage, instance)
            self._update_stage(stage, {"overdue_notified_at": now.isoformat()})
            fired += 1
            touched.add(instance["id"])
        for instance_id in touched:
            self.refresh_instance(instance_id, now)
        if fired:
            logger.warning(f"[JORNADAS] {fired} etapa(s) atrasada(s) em {len(touched)} jornada(s)")
        return {"overdue": fired, "instances": len(touched)}

    def recompute_all(self) -> int:
        """Recalcula progress/next_action de todas as jornadas activas."""
        active = self.lf.table("journey_instances").select("id").eq(
            "status", JourneyStatus.ATIVO.value).execute().data or []
        for inst in active:
            self.refresh_instance(inst["id"])
        return len(active)
