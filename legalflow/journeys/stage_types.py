# -*- coding: utf-8 -*-
"""
JORNADAS - Tipos de etapa, regras por defeito e cálculos puros
============================================================
Tipos de etapa: lesson / form / upload / meeting / gate / task.
Cada tipo declara um config_schema (chaves obrigatórias e tipo).

Progresso e próxima acção são calculados a partir das etapas da
instância; nada aqui acede à base de dados.
============================================================
"""

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from legalflow.errors import ValidationError
from legalflow.utils.datas import parse_datetime, utcnow


class StageType(str, Enum):
    LESSON = "lesson"
    FORM = "form"
    UPLOAD = "upload"
    MEETING = "meeting"
    GATE = "gate"
    TASK = "task"


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


class JourneyStatus(str, Enum):
    ATIVO = "ativo"
    PAUSADO = "pausado"
    CONCLUIDO = "concluido"
    CANCELADO = "cancelado"


class TriggerEvent(str, Enum):
    ON_ENTER = "on_enter"
    ON_DONE = "on_done"
    ON_OVERDUE = "on_overdue"


class ActionType(str, Enum):
    NOTIFY = "notify"
    CREATE_ACTIVITY = "create_activity"
    CREATE_TICKET = "create_ticket"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"


# config_schema: chave → tipo python esperado (ou tuplo de valores permitidos)
DEFAULT_STAGE_TYPES: dict[str, dict[str, Any]] = {
    StageType.LESSON.value: {
        "label": "Aula / Conteúdo",
        "description": "Conteúdo educativo para o cliente (vídeo, texto, link)",
        "config_schema": {"content_url": str},
    },
    StageType.FORM.value: {
        "label": "Formulário",
        "description": "Recolha de informação estruturada",
        "config_schema": {"fields": list},
    },
    StageType.UPLOAD.value: {
        "label": "Envio de documentos",
        "description": "Cliente envia documentos obrigatórios",
        "config_schema": {"required_documents": list},
    },
    StageType.MEETING.value: {
        "label": "Reunião",
        "description": "Reunião agendada com o cliente",
        "config_schema": {"duration_minutes": int},
    },
    StageType.GATE.value: {
        "label": "Aprovação",
        "description": "Ponto de controlo que exige aprovação",
        "config_schema": {"approval_type": ("manual", "automatic")},
    },
    StageType.TASK.value: {
        "label": "Tarefa",
        "description": "Tarefa interna do escritório",
        "config_schema": {},
    },
}

# Transições permitidas para etapas de instância
STAGE_TRANSITIONS: dict[str, set[str]] = {
    StageStatus.PENDING.value: {StageStatus.IN_PROGRESS.value, StageStatus.SKIPPED.value},
    StageStatus.IN_PROGRESS.value: {
        StageStatus.COMPLETED.value, StageStatus.BLOCKED.value, StageStatus.SKIPPED.value,
    },
    StageStatus.BLOCKED.value: {StageStatus.IN_PROGRESS.value},
    StageStatus.COMPLETED.value: {StageStatus.IN_PROGRESS.value},
    StageStatus.SKIPPED.value: set(),
}

DONE_STATUSES = {StageStatus.COMPLETED.value, StageStatus.SKIPPED.value}
OPEN_STATUSES = {StageStatus.PENDING.value, StageStatus.IN_PROGRESS.value}

JORNADA_CONCLUIDA = "Jornada Concluída"
AGUARDANDO_PROXIMA = "Aguardando próxima etapa"


def validate_stage_config(stage_type: str, config: Optional[dict]) -> dict:
    """
    Valida `config` contra o config_schema do tipo de etapa.

    Raises:
        ValidationError: tipo desconhecido ou chave obrigatória em falta/inválida
    """
    if stage_type not in DEFAULT_STAGE_TYPES:
        raise ValidationError(
            f"Tipo de etapa inválido: {stage_type}", field="stage_type", code="INVALID_ENUM"
        )
    config = dict(config or {})
    schema = DEFAULT_STAGE_TYPES[stage_type]["config_schema"]
    errors = []
    for key, expected in schema.items():
        field = f"config.{key}"
        if key not in config or config[key] in (None, ""):
            errors.append({"field": field, "message": f"'{key}' é obrigatório", "code": "REQUIRED_FIELD"})
        elif isinstance(expected, tuple):
            if config[key] not in expected:
                errors.append({"field": field, "code": "INVALID_ENUM",
                               "message": f"'{key}' deve ser um de: {', '.join(expected)}"})
        elif expected is int and (isinstance(config[key], bool) or not isinstance(config[key], int)):
            errors.append({"field": field, "message": f"'{key}' deve ser inteiro", "code": "INVALID_TYPE"})
        elif expected is not int and not isinstance(config[key], expected):
            errors.append({"field": field, "message": f"'{key}' tem tipo inválido", "code": "INVALID_TYPE"})
    if errors:
        raise ValidationError("Configuração de etapa inválida", errors=errors)
    return config


def default_rules(stage_type: str) -> list[dict[str, Any]]:
    """Regras criadas automaticamente ao adicionar uma etapa."""
    rules = [{
        "trigger_event": TriggerEvent.ON_ENTER.value,
        "action_type": ActionType.NOTIFY.value,
        "action_config": {
            "title": "Nova etapa iniciada",
            "message": "A etapa '{stage}' foi iniciada para {cliente}.",
        },
    }]
    if stage_type == StageType.UPLOAD.value:
        rules.append({
            "trigger_event": TriggerEvent.ON_DONE.value,
            "action_type": ActionType.CREATE_ACTIVITY.value,
            "action_config": {"title": "Documentos enviados", "priority": "media"},
        })
    elif stage_type == StageType.MEETING.value:
        rules.append({
            "trigger_event": TriggerEvent.ON_ENTER.value,
            "action_type": ActionType.SCHEDULE.value,
            "action_config": {"event_type": "reuniao"},
        })
    elif stage_type == StageType.TASK.value:
        rules.append({
            "trigger_event": TriggerEvent.ON_DONE.value,
            "action_type": ActionType.CREATE_ACTIVITY.value,
            "action_config": {"title": "Tarefa concluída", "priority": "media"},
        })
    return rules


# ============================================================
# CÁLCULOS SOBRE ETAPAS DE INSTÂNCIA
# ============================================================

def calculate_progress(stages: list[dict]) -> int:
    """Percentagem de etapas concluídas ou dispensadas (0 sem etapas)."""
    if not stages:
        return 0
    done = sum(1 for s in stages if s.get("status") in DONE_STATUSES)
    return round(done / len(stages) * 100)


def is_stage_overdue(stage: dict, now: Optional[datetime] = None) -> bool:
    if stage.get("status") not in OPEN_STATUSES:
        return False
    due = parse_datetime(stage.get("due_at"))
    return bool(due and due < (now or utcnow()))


def days_until_due(stage: dict, now: Optional[datetime] = None) -> Optional[int]:
    """Dias (inteiros, arredondados para baixo) até ao prazo; negativo se atrasada."""
    due = parse_datetime(stage.get("due_at"))
    if not due:
        return None
    delta = due - (now or utcnow())
    return delta.days


def _sorted_by_due(stages: Iterable[dict]) -> list[dict]:
    stages = list(stages)
    with_due = [s for s in stages if parse_datetime(s.get("due_at"))]
    without_due = [s for s in stages if not parse_datetime(s.get("due_at"))]
    with_due.sort(key=lambda s: (parse_datetime(s["due_at"]), s.get("order_index") or 0))
    without_due.sort(key=lambda s: s.get("order_index") or 0)
    return with_due + without_due


def calculate_next_action(stages: list[dict], now: Optional[datetime] = None) -> str:
    """
    Próxima acção da jornada:
      1. Etapa obrigatória em aberto com prazo mais próximo ("(Atrasado)" se vencida)
      2. Senão, etapa opcional em aberto com prazo mais próximo
      3. "Jornada Concluída" se todas concluídas/dispensadas
      4. "Aguardando próxima etapa"
    """
    now = now or utcnow()
    open_stages = [s for s in stages if s.get("status") in OPEN_STATUSES]

    mandatory = _sorted_by_due(s for s in open_stages if s.get("is_mandatory", True))
    if mandatory:
        stage = mandatory[0]
        if is_stage_overdue(stage, now):
            return f"{stage.get('title')} (Atrasado)"
        return stage.get("title") or AGUARDANDO_PROXIMA

    optional = _sorted_by_due(s for s in open_stages if not s.get("is_mandatory", True))
    if optional:
        return optional[0].get("title") or AGUARDANDO_PROXIMA

    if stages and all(s.get("status") in DONE_STATUSES for s in stages):
        return JORNADA_CONCLUIDA
    return AGUARDANDO_PROXIMA


def calculate_journey_stats(instances: list[dict], now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Totais por estado, progresso médio e etapas atrasadas.

    Cada instância pode trazer a lista `stages` (para contar atrasos).
    """
    now = now or utcnow()
    by_status = {s.value: 0 for s in JourneyStatus}
    overdue = 0
    for inst in instances:
        status = inst.get("status") or JourneyStatus.ATIVO.value
        by_status[status] = by_status.get(status, 0) + 1
        if status == JourneyStatus.ATIVO.value:
            overdue += sum(1 for s in inst.get("stages") or [] if is_stage_overdue(s, now))

    total = len(instances)
    avg = round(sum(float(i.get("progress_pct") or 0) for i in instances) / total, 1) if total else 0.0
    return {
        "total": total,
        "by_status": by_status,
        "average_progress": avg,
        "overdue_stages": overdue,
        "completion_rate": round(by_status.get(JourneyStatus.CONCLUIDO.value, 0) / total * 100, 1) if total else 0.0,
    }


SORTABLE_FIELDS = {"progress_pct", "next_action", "created_at", "start_date"}


def filter_journeys(
    instances: list[dict],
    status: Optional[str] = None,
    cliente_cpfcnpj: Optional[str] = None,
    owner_oab: Optional[str] = None,
    template_id: Optional[str] = None,
    search: Optional[str] = None,
) -> list[dict]:
    result = []
    term = (search or "").strip().lower()
    for inst in instances:
        if status and inst.get("status") != status:
            continue
        if cliente_cpfcnpj and inst.get("cliente_cpfcnpj") != cliente_cpfcnpj:
            continue
        if owner_oab and inst.get("owner_oab") != owner_oab:
            continue
        if template_id and inst.get("template_id") != template_id:
            continue
        if term:
            haystack = " ".join(str(inst.get(k) or "") for k in (
                "template_name", "cliente_nome", "cliente_cpfcnpj", "numero_cnj", "next_action",
            )).lower()
            if term not in haystack:
                continue
        result.append(inst)
    return result


def sort_journeys(instances: list[dict], sort_by: str = "created_at", descending: bool = True) -> list[dict]:
    if sort_by not in SORTABLE_FIELDS:
        sort_by = "created_at"

    def key(inst):
        value = inst.get(sort_by)
        if sort_by == "progress_pct":
            return float(value or 0)
        if sort_by == "next_action":
            return str(value or "").lower()
        dt = parse_datetime(value)
        return dt.timestamp() if dt else 0.0

    return sorted(instances, key=key, reverse=descending)
