# -*- coding: utf-8 -*-
"""
SLA DE TICKETS - FRT (primeira resposta) e TTR (resolução)
============================================================
Metas em horas corridas por prioridade:

    prioridade   FRT   TTR
    urgente        2     8
    alta           4    24
    media          8    72
    baixa         24   120
============================================================
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from legalflow.utils.datas import DateLike, hours_between, parse_datetime, utcnow

PRIORITIES = ("baixa", "media", "alta", "urgente")

SLA_HOURS: dict[str, dict[str, int]] = {
    "urgente": {"frt": 2, "ttr": 8},
    "alta": {"frt": 4, "ttr": 24},
    "media": {"frt": 8, "ttr": 72},
    "baixa": {"frt": 24, "ttr": 120},
}

ESCALATION_ORDER = ("none", "low", "medium", "high", "critical")


def sla_due_dates(priority: str, created_at: DateLike = None) -> dict[str, str]:
    """frt_due_at / ttr_due_at a partir da criação do ticket."""
    hours = SLA_HOURS.get(priority, SLA_HOURS["media"])
    base = parse_datetime(created_at) or utcnow()
    return {
        "frt_due_at": (base + timedelta(hours=hours["frt"])).isoformat(),
        "ttr_due_at": (base + timedelta(hours=hours["ttr"])).isoformat(),
    }


def _remaining_label(hours: float) -> str:
    if hours < 0:
        return f"Atrasado há {int(abs(hours))}h"
    days, rem = divmod(int(hours), 24)
    if days:
        return f"{days}d {rem}h restantes"
    return f"{int(hours)}h restantes"


def sla_status(due_at: DateLike, now: Optional[datetime] = None,
               completed_at: DateLike = None) -> dict[str, Any]:
    """
    Estado de um prazo SLA.

    state: met | breached | overdue | urgent | caution | ok | none
    """
    due = parse_datetime(due_at)
    if not due:
        return {"state": "none", "label": "Sem SLA", "hours_remaining": None}

    done = parse_datetime(completed_at)
    if done:
        if done <= due:
            return {"state": "met", "label": "SLA cumprido", "hours_remaining": None}
        return {"state": "breached", "label": "SLA violado", "hours_remaining": None}

    remaining = hours_between(now or utcnow(), due)
    if remaining < 0:
        state = "overdue"
    elif remaining < 8:
        state = "urgent"
    elif remaining < 24:
        state = "caution"
    else:
        state = "ok"
    return {"state": state, "label": _remaining_label(remaining), "hours_remaining": round(remaining, 2)}


def escalation_level(due_at: DateLike, now: Optional[datetime] = None) -> str:
    """
    none → low (< 2h para o prazo) → medium (atrasado) → high (> 24h) → critical (> 48h)
    """
    due = parse_datetime(due_at)
    if not due:
        return "none"
    remaining = hours_between(now or utcnow(), due)
    if remaining < 0:
        overdue = abs(remaining)
        if overdue > 48:
            return "critical"
        if overdue > 24:
            return "high"
        return "medium"
    if remaining < 2:
        return "low"
    return "none"


def escalation_rank(level: Optional[str]) -> int:
    return ESCALATION_ORDER.index(level) if level in ESCALATION_ORDER else 0
