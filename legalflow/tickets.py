# -*- coding: utf-8 -*-
"""
TICKETS - Atendimento com SLA e CSAT
============================================================
Estados: aberto → em_andamento → resolvido → fechado
(reabertura volta a em_andamento e limpa resolved_at/closed_at).

SLA: frt_due_at / ttr_due_at calculados na criação e recalculados
a partir de created_at quando a prioridade muda.
============================================================
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Optional

from legalflow.db import BaseManager, first_row, paginate
from legalflow.errors import ConflictError, NotFoundError, TransitionError, ValidationError
from legalflow.notifications import NotificationManager
from legalflow.sla import PRIORITIES, escalation_level, escalation_rank, sla_due_dates, sla_status
from legalflow.utils.datas import now_iso, utcnow
from legalflow.utils.documentos import only_digits
from legalflow.utils.sanitize import sanitize_search_term

logger = logging.getLogger(__name__)

TICKET_STATUSES = ("aberto", "em_andamento", "resolvido", "fechado")
OPEN_TICKET_STATUSES = ("aberto", "em_andamento")
CHANNELS = ("email", "whatsapp", "telefone", "presencial", "sistema")

TICKET_TRANSITIONS: dict[str, set[str]] = {
    "aberto": {"em_andamento", "resolvido", "fechado"},
    "em_andamento": {"aberto", "resolvido", "fechado"},
    "resolvido": {"fechado", "em_andamento"},
    "fechado": {"em_andamento"},
}

EDITABLE_FIELDS = {"subject", "description", "priority", "channel", "assigned_oab",
                   "cliente_cpfcnpj", "numero_cnj", "tags"}


def _validate_enums(data: dict[str, Any]) -> None:
    errors = []
    if "priority" in data and data["priority"] not in PRIORITIES:
        errors.append({"field": "priority", "message": "Prioridade inválida", "code": "INVALID_ENUM"})
    if "channel" in data and data["channel"] not in CHANNELS:
        errors.append({"field": "channel", "message": "Canal inválido", "code": "INVALID_ENUM"})
    if errors:
        raise ValidationError("Dados do ticket inválidos", errors=errors)


def ticket_sla(ticket: dict, now: Optional[datetime] = None) -> dict[str, Any]:
    """Estado FRT/TTR e nível de escalonamento de um ticket."""
    now = now or utcnow()
    is_open = ticket.get("status") in OPEN_TICKET_STATUSES
    return {
        "frt": sla_status(ticket.get("frt_due_at"), now, ticket.get("first_response_at")),
        "ttr": sla_status(ticket.get("ttr_due_at"), now, ticket.get("resolved_at") or ticket.get("closed_at")),
        "escalation": escalation_level(ticket.get("ttr_due_at"), now) if is_open else "none",
    }


class TicketManager(BaseManager):
    """Tickets, mensagens, SLA e avaliações CSAT."""

    def list_tickets(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_oab: Optional[str] = None,
        cliente_cpfcnpj: Optional[str] = None,
        numero_cnj: Optional[str] = None,
        query: Optional[str] = None,
    ) -> dict[str, Any]:
        q = self.lf.table("tickets").select("*", count="exact")
        if status:
            q = q.eq("status", status)
        if priority:
            q = q.eq("priority", priority)
        if assigned_oab:
            q = q.eq("assigned_oab", assigned_oab)
        if cliente_cpfcnpj:
            q = q.eq("cliente_cpfcnpj", only_digits(cliente_cpfcnpj))
        if numero_cnj:
            q = q.eq("numero_cnj", numero_cnj)
        term = sanitize_search_term(query)
        if term:
            q = q.ilike("subject", f"%{term}%")
        page_data = paginate(q.order("created_at", desc=True), page, limit)
        now = utcnow()
        for ticket in page_data["items"]:
            ticket["sla"] = ticket_sla(ticket, now)
        return page_data

    def get(self, ticket_id: str) -> dict[str, Any]:
        ticket = first_row(self.lf.table("tickets").select("*").eq("id", ticket_id).limit(1).execute())
        if not ticket:
            raise NotFoundError("Ticket não encontrado")
        return ticket

    def create(self, data: dict[str, Any], created_by: Optional[str] = None) -> dict[str, Any]:
        subject = (data.get("subject") or "").strip()
        if not subject:
            raise ValidationError("Assunto é obrigatório", field="subject", code="REQUIRED_FIELD")
        data = {"priority": "media", "channel": "sistema", **data}
        _validate_enums(data)

        created_at = now_iso()
        row = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        row.update({
            "subject": subject[:255],
            "status": "aberto",
            "created_by": created_by,
            "created_at": created_at,
            "updated_at": created_at,
            "escalation_level": "none",
        })
        if row.get("cliente_cpfcnpj"):
            row["cliente_cpfcnpj"] = only_digits(row["cliente_cpfcnpj"])
        row.update(sla_due_dates(row["priority"], created_at))

        ticket = first_row(self.lf.table("tickets").insert(row).execute()) or row
        logger.info(f"[TICKETS] Ticket criado: {ticket.get('id')} ({row['priority']}) '{subject[:40]}'")
        return ticket

    def update(self, ticket_id: str, data: dict[str, Any]) -> dict[str, Any]:
        ticket = self.get(ticket_id)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        _validate_enums(changes)
        if "priority" in changes and changes["priority"] != ticket.get("priority"):
            changes.update(sla_due_dates(changes["priority"], ticket.get("created_at")))
            logger.info(f"[TICKETS] Prioridade {ticket.get('priority')} → {changes['priority']}: SLA recalculado")
        if changes.get("cliente_cpfcnpj"):
            changes["cliente_cpfcnpj"] = only_digits(changes["cliente_cpfcnpj"])
        changes["updated_at"] = now_iso()
        return first_row(self.lf.table("tickets").update(changes).eq("id", ticket_id).execute()) or {
            **ticket, **changes}

    def transition(self, ticket_id: str, target: str) -> dict[str, Any]:
        ticket = self.get(ticket_id)
        current = ticket.get("status", "aberto")
        if target not in TICKET_TRANSITIONS.get(current, set()):
            raise TransitionError(current, target, "ticket")

        now = now_iso()
        changes: dict[str, Any] = {"status": target, "updated_at": now}
        if target == "resolvido":
            changes["resolved_at"] = now
        elif target == "fechado":
            changes["closed_at"] = now
            if not ticket.get("resolved_at"):
                changes["resolved_at"] = now
        elif current in ("resolvido", "fechado"):
            changes["resolved_at"] = None
            changes["closed_at"] = None
            logger.info(f"[TICKETS] Ticket {ticket_id} reaberto")

        return first_row(self.lf.table("tickets").update(changes).eq("id", ticket_id).execute()) or {
            **ticket, **changes}

    # ============================================================
    # MENSAGENS
    # ============================================================

    def add_message(self, ticket_id: str, author_id: str, body: str,
                    internal: bool = False, author_type: str = "agent") -> dict[str, Any]:
        if not body or not body.strip():
            raise ValidationError("Mensagem vazia", field="body", code="REQUIRED_FIELD")
        ticket = self.get(ticket_id)
        row = {
            "ticket_id": ticket_id,
            "author_id": author_id,
            "author_type": author_type,
            "body": body.strip(),
            "internal": internal,
            "created_at": now_iso(),
        }
        message = first_row(self.lf.table("ticket_messages").insert(row).execute()) or row

        if author_type == "agent" and not internal and not ticket.get("first_response_at"):
            changes = {"first_response_at": row["created_at"], "updated_at": row["created_at"]}
            if ticket.get("status") == "aberto":
                changes["status"] = "em_andamento"
            self.lf.table("tickets").update(changes).eq("id", ticket_id).execute()
            logger.info(f"[TICKETS] Primeira resposta registada no ticket {ticket_id}")
        return message

    def messages(self, ticket_id: str, include_internal: bool = True) -> list[dict]:
        self.get(ticket_id)
        q = self.lf.table("ticket_messages").select("*").eq("ticket_id", ticket_id)
        if not include_internal:
            q = q.eq("internal", False)
        return q.order("created_at").execute().data or []

    # ============================================================
    # CSAT
    # ============================================================

    def rate(self, ticket_id: str, rating: int, comment: str = "",
             rated_by: Optional[str] = None) -> dict[str, Any]:
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Avaliação deve ser entre 1 e 5", field="rating", code="INVALID_FORMAT")
        ticket = self.get(ticket_id)
        if ticket.get("status") not in ("resolvido", "fechado"):
            raise ValidationError("Apenas tickets resolvidos ou fechados podem ser avaliados", field="status")
        existing = self.lf.table("csat_ratings").select("id").eq("ticket_id", ticket_id).limit(1).execute()
        if existing.data:
            raise ConflictError("Ticket já avaliado")
        row = {
            "ticket_id": ticket_id,
            "rating": rating,
            "comment": comment,
            "rated_by": rated_by,
            "created_at": now_iso(),
        }
        return first_row(self.lf.table("csat_ratings").insert(row).execute()) or row

    def csat_summary(self, since: Optional[str] = None) -> dict[str, Any]:
        q = self.lf.table("csat_ratings").select("rating, created_at")
        if since:
            q = q.gte("created_at", since)
        ratings = [int(r["rating"]) for r in (q.execute().data or []) if r.get("rating")]
        distribution = Counter(ratings)
        return {
            "count": len(ratings),
            "average": round(sum(ratings) / len(ratings), 2) if ratings else None,
            "distribution": {str(n): distribution.get(n, 0) for n in range(1, 6)},
        }

    # ============================================================
    # SWEEP SLA (Celery)
    # ============================================================

    def sweep_sla(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Recalcula o escalonamento dos tickets abertos e notifica o
        responsável sempre que o nível sobe.
        """
        now = now or utcnow()
        result = self.lf.table("tickets").select("*").in_("status", list(OPEN_TICKET_STATUSES)).execute()
        notifier = NotificationManager(self.sb)
        escalated = 0
        for ticket in result.data or []:
            level = escalation_level(ticket.get("ttr_due_at"), now)
            previous = ticket.get("escalation_level") or "none"
            if escalation_rank(level) <= escalation_rank(previous):
                continue
            self.lf.table("tickets").update({"escalation_level": level}).eq("id", ticket["id"]).execute()
            escalated += 1
            if ticket.get("assigned_oab"):
                notifier.create(
                    title=f"SLA em risco: {ticket.get('subject', '')[:80]}",
                    message=f"Escalonamento {previous} → {level}. "
                            f"{sla_status(ticket.get('ttr_due_at'), now)['label']}.",
                    oab=ticket["assigned_oab"],
                    type="ticket",
                    link=f"/tickets/{ticket['id']}",
                )
        if escalated:
            logger.warning(f"[TICKETS] {escalated} ticket(s) com escalonamento agravado")
        return {"checked": len(result.data or []), "escalated": escalated}

    def backfill_sla(self) -> int:
        """Preenche prazos SLA em tickets que não os têm."""
        result = self.lf.table("tickets").select("*").is_("ttr_due_at", "null").execute()
        for ticket in result.data or []:
            dates = sla_due_dates(ticket.get("priority") or "media", ticket.get("created_at"))
            self.lf.table("tickets").update(dates).eq("id", ticket["id"]).execute()
        return len(result.data or [])
