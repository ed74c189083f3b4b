# -*- coding: utf-8 -*-
"""
ACTIVIDADES - Tarefas, comentários e registo de tempo
============================================================
Estados: todo → in_progress → done, com blocked como desvio.

Ordenação por prioridade:
  1. atrasadas primeiro
  2. peso da prioridade (urgente 4, alta 3, media 2, baixa 1)
  3. prazo mais próximo
  4. mais recentes
============================================================
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from legalflow.db import BaseManager, first_row, paginate
from legalflow.errors import ConflictError, NotFoundError, TransitionError, ValidationError
from legalflow.sla import PRIORITIES
from legalflow.utils.datas import app_tz, format_duration, now_iso, parse_datetime, utcnow
from legalflow.utils.documentos import only_digits
from legalflow.utils.sanitize import sanitize_search_term

logger = logging.getLogger(__name__)

ACTIVITY_STATUSES = ("todo", "in_progress", "done", "blocked")

ACTIVITY_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "todo": ("in_progress", "blocked"),
    "in_progress": ("done", "blocked", "todo"),
    "blocked": ("todo", "in_progress"),
    "done": ("todo",),
}

PRIORITY_WEIGHT = {"urgente": 4, "alta": 3, "media": 2, "baixa": 1}

EDITABLE_FIELDS = {"title", "description", "priority", "due_at", "assigned_oab", "cliente_cpfcnpj",
                   "numero_cnj", "ticket_id", "deal_id", "stage_instance_id"}


def available_transitions(status: str) -> list[str]:
    return list(ACTIVITY_TRANSITIONS.get(status, ()))


def is_activity_overdue(activity: dict, now: Optional[datetime] = None) -> bool:
    if activity.get("status") == "done":
        return False
    due = parse_datetime(activity.get("due_at"))
    return bool(due and due < (now or utcnow()))


def sort_activities_by_priority(activities: Iterable[dict], now: Optional[datetime] = None) -> list[dict]:
    now = now or utcnow()

    def key(act):
        due = parse_datetime(act.get("due_at"))
        created = parse_datetime(act.get("created_at"))
        return (
            0 if is_activity_overdue(act, now) else 1,
            -PRIORITY_WEIGHT.get(act.get("priority"), 0),
            due.timestamp() if due else float("inf"),
            -(created.timestamp() if created else 0.0),
        )

    return sorted(activities, key=key)


def calculate_activity_stats(activities: list[dict], now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utcnow()
    today = now.astimezone(app_tz()).date()
    by_status = {s: 0 for s in ACTIVITY_STATUSES}
    overdue = due_today = 0
    for act in activities:
        status = act.get("status") or "todo"
        by_status[status] = by_status.get(status, 0) + 1
        if is_activity_overdue(act, now):
            overdue += 1
        due = parse_datetime(act.get("due_at"))
        if due and status != "done" and due.astimezone(app_tz()).date() == today:
            due_today += 1
    total = len(activities)
    return {
        "total": total,
        "by_status": by_status,
        "overdue": overdue,
        "due_today": due_today,
        "completion_rate": round(by_status["done"] / total * 100, 1) if total else 0.0,
    }


def filter_activities(
    activities: Iterable[dict],
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_oab: Optional[str] = None,
    search: Optional[str] = None,
    overdue_only: bool = False,
    now: Optional[datetime] = None,
) -> list[dict]:
    term = (search or "").strip().lower()
    result = []
    for act in activities:
        if status and act.get("status") != status:
            continue
        if priority and act.get("priority") != priority:
            continue
        if assigned_oab and act.get("assigned_oab") != assigned_oab:
            continue
        if term and term not in f"{act.get('title') or ''} {act.get('description') or ''}".lower():
            continue
        if overdue_only and not is_activity_overdue(act, now):
            continue
        result.append(act)
    return result


def _validate(data: dict[str, Any]) -> None:
    if "priority" in data and data["priority"] not in PRIORITIES:
        raise ValidationError("Prioridade inválida", field="priority", code="INVALID_ENUM")
    if data.get("due_at") and not parse_datetime(data["due_at"]):
        raise ValidationError("Prazo inválido", field="due_at", code="INVALID_FORMAT")


class ActivityManager(BaseManager):
    """CRUD de actividades, comentários e time tracking."""

    def list_activities(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_oab: Optional[str] = None,
        numero_cnj: Optional[str] = None,
        ticket_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> dict[str, Any]:
        q = self.lf.table("activities").select("*", count="exact")
        if status:
            q = q.eq("status", status)
        if priority:
            q = q.eq("priority", priority)
        if assigned_oab:
            q = q.eq("assigned_oab", assigned_oab)
        if numero_cnj:
            q = q.eq("numero_cnj", numero_cnj)
        if ticket_id:
            q = q.eq("ticket_id", ticket_id)
        term = sanitize_search_term(query)
        if term:
            q = q.ilike("title", f"%{term}%")
        return paginate(q.order("due_at"), page, limit)

    def all_activities(self, assigned_oab: Optional[str] = None) -> list[dict]:
        q = self.lf.table("activities").select("*")
        if assigned_oab:
            q = q.eq("assigned_oab", assigned_oab)
        return q.execute().data or []

    def get(self, activity_id: str) -> dict[str, Any]:
        act = first_row(self.lf.table("activities").select("*").eq("id", activity_id).limit(1).execute())
        if not act:
            raise NotFoundError("Actividade não encontrada")
        return act

    def create(self, data: dict[str, Any], created_by: Optional[str] = None) -> dict[str, Any]:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("Título é obrigatório", field="title", code="REQUIRED_FIELD")
        data = {"priority": "media", **data}
        _validate(data)
        row = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        row.update({
            "title": title[:255],
            "status": "todo",
            "created_by": created_by,
            "created_at": now_iso(),
        })
        if row.get("cliente_cpfcnpj"):
            row["cliente_cpfcnpj"] = only_digits(row["cliente_cpfcnpj"])
        created = first_row(self.lf.table("activities").insert(row).execute()) or row
        logger.info(f"[ACTIVIDADES] Criada: '{title[:40]}' ({row['priority']})")
        return created

    def update(self, activity_id: str, data: dict[str, Any]) -> dict[str, Any]:
        act = self.get(activity_id)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        _validate(changes)
        changes["updated_at"] = now_iso()
        return first_row(self.lf.table("activities").update(changes).eq("id", activity_id).execute()) or {
            **act, **changes}

    def transition(self, activity_id: str, target: str) -> dict[str, Any]:
        act = self.get(activity_id)
        current = act.get("status") or "todo"
        if target not in ACTIVITY_TRANSITIONS.get(current, ()):
            raise TransitionError(current, target, "actividade")
        changes: dict[str, Any] = {"status": target, "updated_at": now_iso()}
        changes["completed_at"] = changes["updated_at"] if target == "done" else None
        return first_row(self.lf.table("activities").update(changes).eq("id", activity_id).execute()) or {
            **act, **changes}

    def delete(self, activity_id: str) -> None:
        self.get(activity_id)
        self.lf.table("activity_comments").delete().eq("activity_id", activity_id).execute()
        self.lf.table("time_entries").delete().eq("activity_id", activity_id).execute()
        self.lf.table("activities").delete().eq("id", activity_id).execute()

    def stats(self, assigned_oab: Optional[str] = None) -> dict[str, Any]:
        return calculate_activity_stats(self.all_activities(assigned_oab))

    # ============================================================
    # COMENTÁRIOS
    # ============================================================

    def add_comment(self, activity_id: str, author_id: str, body: str) -> dict[str, Any]:
        if not body or not body.strip():
            raise ValidationError("Comentário vazio", field="body", code="REQUIRED_FIELD")
        self.get(activity_id)
        row = {"activity_id": activity_id, "author_id": author_id, "body": body.strip(), "created_at": now_iso()}
        return first_row(self.lf.table("activity_comments").insert(row).execute()) or row

    def list_comments(self, activity_id: str) -> list[dict]:
        return self.lf.table("activity_comments").select("*").eq(
            "activity_id", activity_id
        ).order("created_at").execute().data or []

    # ============================================================
    # TIME TRACKING
    # ============================================================

    def _running_timer(self, activity_id: str, user_id: str) -> Optional[dict]:
        return first_row(
            self.lf.table("time_entries").select("*")
            .eq("activity_id", activity_id).eq("user_id", user_id)
            .is_("ended_at", "null").limit(1).execute()
        )

    def start_timer(self, activity_id: str, user_id: str) -> dict[str, Any]:
        self.get(activity_id)
        if self._running_timer(activity_id, user_id):
            raise ConflictError("Já existe um cronómetro activo para esta actividade")
        row = {
            "activity_id": activity_id,
            "user_id": user_id,
            "started_at": now_iso(),
            "ended_at": None,
            "duration_minutes": None,
            "source": "timer",
        }
        return first_row(self.lf.table("time_entries").insert(row).execute()) or row

    def stop_timer(self, activity_id: str, user_id: str, now: Optional[datetime] = None) -> dict[str, Any]:
        entry = self._running_timer(activity_id, user_id)
        if not entry:
            raise NotFoundError("Nenhum cronómetro activo")
        ended = now or utcnow()
        started = parse_datetime(entry["started_at"])
        minutes = max(int(round((ended - started).total_seconds() / 60)), 0)
        changes = {"ended_at": ended.isoformat(), "duration_minutes": minutes}
        logger.info(f"[ACTIVIDADES] Cronómetro parado: {activity_id} ({format_duration(minutes)})")
        return first_row(self.lf.table("time_entries").update(changes).eq("id", entry["id"]).execute()) or {
            **entry, **changes}

    def log_time(self, activity_id: str, user_id: str, minutes: int, note: str = "") -> dict[str, Any]:
        if not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError("Minutos devem ser positivos", field="minutes", code="INVALID_FORMAT")
        self.get(activity_id)
        now = now_iso()
        row = {
            "activity_id": activity_id,
            "user_id": user_id,
            "started_at": now,
            "ended_at": now,
            "duration_minutes": minutes,
            "note": note,
            "source": "manual",
        }
        return first_row(self.lf.table("time_entries").insert(row).execute()) or row

    def time_summary(self, activity_id: str) -> dict[str, Any]:
        entries = self.lf.table("time_entries").select("*").eq("activity_id", activity_id).execute().data or []
        total = sum(int(e.get("duration_minutes") or 0) for e in entries)
        return {
            "activity_id": activity_id,
            "entries": len(entries),
            "total_minutes": total,
            "formatted": format_duration(total),
            "running": any(e.get("ended_at") is None for e in entries),
        }
