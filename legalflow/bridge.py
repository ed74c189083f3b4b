# -*- coding: utf-8 -*-
"""
BRIDGE TICKET ↔ ACTIVIDADE
============================================================
Liga actividades a tickets (activities.ticket_id), sugere ligações
por cliente/CNJ/semelhança de título e detecta desalinhamentos de
estado entre os dois lados.
============================================================
"""

import logging
from difflib import SequenceMatcher
from typing import Any, Optional

from legalflow.activities import ActivityManager
from legalflow.db import BaseManager
from legalflow.errors import ValidationError
from legalflow.tickets import OPEN_TICKET_STATUSES, TicketManager

logger = logging.getLogger(__name__)

CLIENT_MATCH_SCORE = 0.4
CNJ_MATCH_SCORE = 0.4
TITLE_MATCH_WEIGHT = 0.2


def link_score(activity: dict, ticket: dict) -> float:
    score = 0.0
    if activity.get("cliente_cpfcnpj") and activity.get("cliente_cpfcnpj") == ticket.get("cliente_cpfcnpj"):
        score += CLIENT_MATCH_SCORE
    if activity.get("numero_cnj") and activity.get("numero_cnj") == ticket.get("numero_cnj"):
        score += CNJ_MATCH_SCORE
    title = (activity.get("title") or "").lower()
    subject = (ticket.get("subject") or "").lower()
    if title and subject:
        score += SequenceMatcher(None, title, subject).ratio() * TITLE_MATCH_WEIGHT
    return round(score, 3)


class BridgeManager(BaseManager):
    """Operações que atravessam tickets e actividades."""

    def __init__(self, supabase_client):
        super().__init__(supabase_client)
        self.tickets = TicketManager(supabase_client)
        self.activities = ActivityManager(supabase_client)

    def create_activity_from_ticket(self, ticket_id: str, overrides: Optional[dict] = None,
                                    created_by: Optional[str] = None) -> dict[str, Any]:
        ticket = self.tickets.get(ticket_id)
        data = {
            "title": ticket.get("subject"),
            "description": ticket.get("description"),
            "priority": ticket.get("priority") or "media",
            "cliente_cpfcnpj": ticket.get("cliente_cpfcnpj"),
            "numero_cnj": ticket.get("numero_cnj"),
            "assigned_oab": ticket.get("assigned_oab"),
            "due_at": ticket.get("ttr_due_at"),
            "ticket_id": ticket_id,
        }
        data.update(overrides or {})
        data["ticket_id"] = ticket_id
        activity = self.activities.create(data, created_by=created_by)
        logger.info(f"[BRIDGE] Actividade {activity.get('id')} criada a partir do ticket {ticket_id}")
        return activity

    def link_activity_to_ticket(self, activity_id: str, ticket_id: str) -> dict[str, Any]:
        self.tickets.get(ticket_id)
        activity = self.activities.get(activity_id)
        if activity.get("ticket_id") and activity["ticket_id"] != ticket_id:
            raise ValidationError("Actividade já ligada a outro ticket", field="ticket_id")
        return self.activities.update(activity_id, {"ticket_id": ticket_id})

    def unlink(self, activity_id: str) -> dict[str, Any]:
        return self.activities.update(activity_id, {"ticket_id": None})

    def linked_activities(self, ticket_id: str) -> list[dict]:
        return self.lf.table("activities").select("*").eq("ticket_id", ticket_id).execute().data or []

    def suggest_links(self, limit: int = 20, min_score: float = 0.4) -> list[dict[str, Any]]:
        activities = self.lf.table("activities").select("*").is_("ticket_id", "null").neq(
            "status", "done").execute().data or []
        tickets = self.lf.table("tickets").select("*").in_(
            "status", list(OPEN_TICKET_STATUSES)).execute().data or []

        suggestions = []
        for act in activities:
            for ticket in tickets:
                score = link_score(act, ticket)
                if score >= min_score:
                    suggestions.append({
                        "activity_id": act["id"],
                        "activity_title": act.get("title"),
                        "ticket_id": ticket["id"],
                        "ticket_subject": ticket.get("subject"),
                        "score": score,
                    })
        suggestions.sort(key=lambda s: s["score"], reverse=True)
        return suggestions[:limit]

    def bridge_stats(self) -> dict[str, Any]:
        activities = self.lf.table("activities").select("*").execute().data or []
        tickets = {t["id"]: t for t in self.lf.table("tickets").select("*").execute().data or []}

        by_ticket: dict[str, list[dict]] = {}
        for act in activities:
            if act.get("ticket_id"):
                by_ticket.setdefault(act["ticket_id"], []).append(act)

        misalignments = []
        for ticket_id, acts in by_ticket.items():
            ticket = tickets.get(ticket_id)
            if not ticket:
                continue
            open_acts = [a for a in acts if a.get("status") != "done"]
            if ticket.get("status") in ("resolvido", "fechado") and open_acts:
                misalignments.append({
                    "ticket_id": ticket_id,
                    "type": "ticket_closed_with_open_activities",
                    "open_activities": len(open_acts),
                })
            elif ticket.get("status") in OPEN_TICKET_STATUSES and not open_acts:
                misalignments.append({
                    "ticket_id": ticket_id,
                    "type": "activities_done_ticket_open",
                    "open_activities": 0,
                })

        linked = sum(len(a) for a in by_ticket.values())
        return {
            "linked_activities": linked,
            "unlinked_activities": len(activities) - linked,
            "tickets_with_activities": len(by_ticket),
            "status_misalignments": misalignments,
        }

    def align_status(self, ticket_id: str) -> dict[str, Any]:
        ticket = self.tickets.get(ticket_id)
        acts = self.linked_activities(ticket_id)
        if not acts or any(a.get("status") != "done" for a in acts):
            return {"aligned": False, "ticket": ticket}
        if ticket.get("status") not in OPEN_TICKET_STATUSES:
            return {"aligned": False, "ticket": ticket}
        updated = self.tickets.transition(ticket_id, "resolvido")
        logger.info(f"[BRIDGE] Ticket {ticket_id} resolvido (todas as actividades concluídas)")
        return {"aligned": True, "ticket": updated}
