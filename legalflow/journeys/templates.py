# -*- coding: utf-8 -*-
"""
JORNADAS - Designer de templates
============================================================
journey_templates          template (nome, nicho, eta_days)
journey_template_stages    etapas ordenadas (order_index 1..n contíguo)
journey_stage_rules        regras on_enter / on_done / on_overdue

steps_count e eta_days (soma de sla_days) são mantidos pelo manager
sempre que as etapas mudam.
============================================================
"""

import logging
from typing import Any, Optional

from legalflow.db import BaseManager, first_row
from legalflow.errors import ConflictError, NotFoundError, ValidationError
from legalflow.journeys.stage_types import (
    DEFAULT_STAGE_TYPES,
    ActionType,
    JourneyStatus,
    TriggerEvent,
    default_rules,
    validate_stage_config,
)
from legalflow.utils.datas import now_iso
from legalflow.utils.sanitize import sanitize_search_term

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = {"name", "description", "niche", "tags", "is_active"}
STAGE_FIELDS = {"stage_type", "title", "description", "is_mandatory", "sla_days", "config"}
RULE_FIELDS = {"trigger_event", "action_type", "action_config", "is_active"}

TRIGGER_EVENTS = {t.value for t in TriggerEvent}
ACTION_TYPES = {a.value for a in ActionType}


def _validate_rule(rule: dict[str, Any], partial: bool = False) -> None:
    errors = []
    if (not partial or "trigger_event" in rule) and rule.get("trigger_event") not in TRIGGER_EVENTS:
        errors.append({"field": "trigger_event", "message": "Evento inválido", "code": "INVALID_ENUM"})
    if (not partial or "action_type" in rule) and rule.get("action_type") not in ACTION_TYPES:
        errors.append({"field": "action_type", "message": "Acção inválida", "code": "INVALID_ENUM"})
    if "action_config" in rule and not isinstance(rule["action_config"] or {}, dict):
        errors.append({"field": "action_config", "message": "Configuração inválida", "code": "INVALID_TYPE"})
    if rule.get("action_type") == ActionType.WEBHOOK.value and not (rule.get("action_config") or {}).get("url"):
        errors.append({"field": "action_config.url", "message": "URL do webhook é obrigatório",
                       "code": "REQUIRED_FIELD"})
    if errors:
        raise ValidationError("Regra inválida", errors=errors)


def _validate_sla_days(value) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("sla_days deve ser inteiro ≥ 0", field="sla_days", code="INVALID_FORMAT")
    return value


class TemplateManager(BaseManager):
    """CRUD de templates, etapas e regras."""

    # ============================================================
    # TIPOS DE ETAPA
    # ============================================================

    def seed_stage_types(self) -> list[dict]:
        rows = [
            {
                "code": code,
                "label": meta["label"],
                "description": meta["description"],
                "config_schema": {
                    key: list(expected) if isinstance(expected, tuple) else expected.__name__
                    for key, expected in meta["config_schema"].items()
                },
            }
            for code, meta in DEFAULT_STAGE_TYPES.items()
        ]
        result = self.lf.table("stage_types").upsert(rows, on_conflict="code").execute()
        logger.info(f"[JORNADAS] {len(rows)} tipos de etapa sincronizados")
        return result.data or rows

    def list_stage_types(self) -> list[dict]:
        return self.lf.table("stage_types").select("*").order("code").execute().data or []

    # ============================================================
    # TEMPLATES
    # ============================================================

    def list_templates(self, search: Optional[str] = None, niche: Optional[str] = None,
                       is_active: Optional[bool] = None) -> list[dict]:
        q = self.lf.table("journey_templates").select("*")
        term = sanitize_search_term(search)
        if term:
            q = q.ilike("name", f"%{term}%")
        if niche:
            q = q.eq("niche", niche)
        if is_active is not None:
            q = q.eq("is_active", is_active)
        return q.order("name").execute().data or []

    def _template_row(self, template_id: str) -> dict[str, Any]:
        tpl = first_row(self.lf.table("journey_templates").select("*").eq("id", template_id).limit(1).execute())
        if not tpl:
            raise NotFoundError("Template não encontrado")
        return tpl

    def get_template(self, template_id: str) -> dict[str, Any]:
        tpl = self._template_row(template_id)
        stages = self.stages(template_id)
        rules = self._rules_for_stages([s["id"] for s in stages])
        for stage in stages:
            stage["rules"] = [r for r in rules if r.get("stage_id") == stage["id"]]
        return {**tpl, "stages": stages}

    def create_template(self, data: dict[str, Any], created_by: Optional[str] = None) -> dict[str, Any]:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Nome do template é obrigatório", field="name", code="REQUIRED_FIELD")
        row = {k: v for k, v in data.items() if k in TEMPLATE_FIELDS}
        row.update({
            "name": name[:200],
            "tags": data.get("tags") or [],
            "is_active": data.get("is_active", True),
            "steps_count": 0,
            "eta_days": 0,
            "created_by": created_by,
            "created_at": now_iso(),
        })
        tpl = first_row(self.lf.table("journey_templates").insert(row).execute()) or row
        logger.info(f"[JORNADAS] Template criado: '{name}' ({tpl.get('id')})")
        return tpl

    def update_template(self, template_id: str, data: dict[str, Any]) -> dict[str, Any]:
        tpl = self._template_row(template_id)
        changes = {k: v for k, v in data.items() if k in TEMPLATE_FIELDS}
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise ValidationError("Nome do template é obrigatório", field="name", code="REQUIRED_FIELD")
        changes["updated_at"] = now_iso()
        return first_row(self.lf.table("journey_templates").update(changes).eq("id", template_id).execute()) or {
            **tpl, **changes}

    def duplicate_template(self, template_id: str, name: Optional[str] = None,
                           created_by: Optional[str] = None) -> dict[str, Any]:
        source = self.get_template(template_id)
        copy = self.create_template({
            "name": name or f"{source['name']} (cópia)",
            "description": source.get("description"),
            "niche": source.get("niche"),
            "tags": list(source.get("tags") or []),
            "is_active": False,
        }, created_by=created_by)

        for stage in source["stages"]:
            new_stage = self._insert_stage(copy["id"], stage, stage["order_index"])
            for rule in stage.get("rules") or []:
                self._insert_rule(new_stage["id"], rule)
        self._refresh_counters(copy["id"])
        logger.info(f"[JORNADAS] Template {template_id} duplicado → {copy['id']}")
        return self.get_template(copy["id"])

    def delete_template(self, template_id: str) -> None:
        self._template_row(template_id)
        active = self.lf.table("journey_instances").select("id").eq("template_id", template_id).in_(
            "status", [JourneyStatus.ATIVO.value, JourneyStatus.PAUSADO.value]).limit(1).execute()
        if active.data:
            raise ConflictError("Template possui jornadas activas")
        stage_ids = [s["id"] for s in self.stages(template_id)]
        if stage_ids:
            self.lf.table("journey_stage_rules").delete().in_("stage_id", stage_ids).execute()
            self.lf.table("journey_template_stages").delete().eq("template_id", template_id).execute()
        self.lf.table("journey_templates").delete().eq("id", template_id).execute()
        logger.info(f"[JORNADAS] Template removido: {template_id}")

    def _refresh_counters(self, template_id: str) -> None:
        stages = self.stages(template_id)
        self.lf.table("journey_templates").update({
            "steps_count": len(stages),
            "eta_days": sum(int(s.get("sla_days") or 0) for s in stages),
            "updated_at": now_iso(),
        }).eq("id", template_id).execute()

    # ============================================================
    # ETAPAS
    # ============================================================

    def stages(self, template_id: str) -> list[dict]:
        return self.lf.table("journey_template_stages").select("*").eq(
            "template_id", template_id).order("order_index").execute().data or []

    def get_stage(self, stage_id: str) -> dict[str, Any]:
        stage = first_row(self.lf.table("journey_template_stages").select("*").eq("id", stage_id).limit(1).execute())
        if not stage:
            raise NotFoundError("Etapa não encontrada")
        return stage

    def _insert_stage(self, template_id: str, stage: dict[str, Any], order_index: int) -> dict[str, Any]:
        row = {k: v for k, v in stage.items() if k in STAGE_FIELDS}
        row.update({
            "template_id": template_id,
            "order_index": order_index,
            "is_mandatory": stage.get("is_mandatory", True),
            "sla_days": _validate_sla_days(stage.get("sla_days")),
            "config": validate_stage_config(stage.get("stage_type"), stage.get("config")),
            "created_at": now_iso(),
        })
        return first_row(self.lf.table("journey_template_stages").insert(row).execute()) or row

    def _set_order(self, ordered: list[dict]) -> None:
        for index, stage in enumerate(ordered, start=1):
            if stage.get("order_index") != index:
                self.lf.table("journey_template_stages").update({"order_index": index}).eq(
                    "id", stage["id"]).execute()
                stage["order_index"] = index

    def add_stage(self, template_id: str, stage: dict[str, Any], position: Optional[int] = None,
                  with_default_rules: bool = True) -> dict[str, Any]:
        """
        Adiciona uma etapa no fim ou em `position` (1-based), deslocando as seguintes.

        Raises:
            ValidationError: título em falta, tipo/config inválidos
        """
        self._template_row(template_id)
        if not (stage.get("title") or "").strip():
            raise ValidationError("Título da etapa é obrigatório", field="title", code="REQUIRED_FIELD")
        validate_stage_config(stage.get("stage_type"), stage.get("config"))

        existing = self.stages(template_id)
        n = len(existing)
        position = n + 1 if position is None else min(max(int(position), 1), n + 1)

        # Abrir espaço: deslocar de trás para a frente
        for other in reversed(existing[position - 1:]):
            self.lf.table("journey_template_stages").update(
                {"order_index": other["order_index"] + 1}).eq("id", other["id"]).execute()

        created = self._insert_stage(template_id, {**stage, "title": stage["title"].strip()}, position)
        if with_default_rules:
            created["rules"] = [self._insert_rule(created["id"], r) for r in default_rules(created["stage_type"])]
        self._refresh_counters(template_id)
        logger.info(f"[JORNADAS] Etapa '{created['title']}' ({created['stage_type']}) "
                    f"na posição {position} do template {template_id}")
        return created

    def update_stage(self, stage_id: str, data: dict[str, Any]) -> dict[str, Any]:
        stage = self.get_stage(stage_id)
        changes = {k: v for k, v in data.items() if k in STAGE_FIELDS}
        stage_type = changes.get("stage_type", stage["stage_type"])
        if "config" in changes or "stage_type" in changes:
            changes["config"] = validate_stage_config(stage_type, changes.get("config", stage.get("config")))
        if "sla_days" in changes:
            changes["sla_days"] = _validate_sla_days(changes["sla_days"])
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("Título da etapa é obrigatório", field="title", code="REQUIRED_FIELD")
        changes["updated_at"] = now_iso()
        updated = first_row(
            self.lf.table("journey_template_stages").update(changes).eq("id", stage_id).execute()
        ) or {**stage, **changes}
        if "sla_days" in changes:
            self._refresh_counters(stage["template_id"])
        return updated

    def remove_stage(self, stage_id: str) -> list[dict]:
        """Remove a etapa e reindexa as restantes. Devolve a nova ordem."""
        stage = self.get_stage(stage_id)
        self.lf.table("journey_stage_rules").delete().eq("stage_id", stage_id).execute()
        self.lf.table("journey_template_stages").delete().eq("id", stage_id).execute()
        remaining = self.stages(stage["template_id"])
        self._set_order(remaining)
        self._refresh_counters(stage["template_id"])
        return remaining

    def reorder_stages(self, template_id: str, ordered_ids: list[str]) -> list[dict]:
        """
        Raises:
            ValidationError: `ordered_ids` não é uma permutação das etapas do template
        """
        stages = {s["id"]: s for s in self.stages(template_id)}
        if len(ordered_ids) != len(stages) or set(ordered_ids) != set(stages):
            raise ValidationError(
                "A nova ordem deve conter exactamente as etapas do template",
                field="ordered_ids", code="INVALID_FORMAT",
            )
        ordered = [stages[i] for i in ordered_ids]
        self._set_order(ordered)
        return ordered

    def move_stage(self, template_id: str, stage_id: str, new_position: int) -> list[dict]:
        stages = self.stages(template_id)
        ids = [s["id"] for s in stages]
        if stage_id not in ids:
            raise NotFoundError("Etapa não encontrada neste template")
        ids.remove(stage_id)
        position = min(max(int(new_position), 1), len(ids) + 1)
        ids.insert(position - 1, stage_id)
        return self.reorder_stages(template_id, ids)

    # ============================================================
    # REGRAS
    # ============================================================

    def _insert_rule(self, stage_id: str, rule: dict[str, Any]) -> dict[str, Any]:
        row = {k: v for k, v in rule.items() if k in RULE_FIELDS}
        row.update({
            "stage_id": stage_id,
            "action_config": rule.get("action_config") or {},
            "is_active": rule.get("is_active", True),
            "created_at": now_iso(),
        })
        return first_row(self.lf.table("journey_stage_rules").insert(row).execute()) or row

    def _rules_for_stages(self, stage_ids: list[str]) -> list[dict]:
        if not stage_ids:
            return []
        return self.lf.table("journey_stage_rules").select("*").in_(
            "stage_id", stage_ids).order("created_at").execute().data or []

    def list_rules(self, stage_id: str, trigger_event: Optional[str] = None,
                   active_only: bool = False) -> list[dict]:
        q = self.lf.table("journey_stage_rules").select("*").eq("stage_id", stage_id)
        if trigger_event:
            q = q.eq("trigger_event", trigger_event)
        if active_only:
            q = q.eq("is_active", True)
        return q.order("created_at").execute().data or []

    def add_rule(self, stage_id: str, rule: dict[str, Any]) -> dict[str, Any]:
        self.get_stage(stage_id)
        _validate_rule(rule)
        return self._insert_rule(stage_id, rule)

    def get_rule(self, rule_id: str) -> dict[str, Any]:
        rule = first_row(self.lf.table("journey_stage_rules").select("*").eq("id", rule_id).limit(1).execute())
        if not rule:
            raise NotFoundError("Regra não encontrada")
        return rule

    def update_rule(self, rule_id: str, data: dict[str, Any]) -> dict[str, Any]:
        rule = self.get_rule(rule_id)
        changes = {k: v for k, v in data.items() if k in RULE_FIELDS}
        _validate_rule({**rule, **changes}, partial=True)
        return first_row(self.lf.table("journey_stage_rules").update(changes).eq("id", rule_id).execute()) or {
            **rule, **changes}

    def delete_rule(self, rule_id: str) -> None:
        self.get_rule(rule_id)
        self.lf.table("journey_stage_rules").delete().eq("id", rule_id).execute()
