# -*- coding: utf-8 -*-
"""
NOTIFICAÇÕES
============================================================
Tabela public.notifications. Destinatário identificado por
user_id (Supabase auth) e/ou oab (advogado responsável).
============================================================
"""

import logging
from typing import Any, Optional

from legalflow.db import BaseManager, first_row
from legalflow.errors import NotFoundError, ValidationError
from legalflow.utils.datas import now_iso

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {"info", "alerta", "prazo", "jornada", "ticket", "financeiro", "sistema"}


class NotificationManager(BaseManager):
    """Criação e leitura de notificações."""

    def create(
        self,
        title: str,
        message: str,
        user_id: Optional[str] = None,
        oab: Optional[str] = None,
        type: str = "info",
        link: Optional[str] = None,
    ) -> dict[str, Any]:
        if not title or not title.strip():
            raise ValidationError("Título da notificação é obrigatório", field="title", code="REQUIRED_FIELD")
        if not user_id and not oab:
            raise ValidationError("Notificação sem destinatário (user_id ou oab)", field="user_id",
                                  code="REQUIRED_FIELD")
        if type not in NOTIFICATION_TYPES:
            type = "info"

        row = {
            "user_id": user_id,
            "oab": oab,
            "title": title.strip()[:200],
            "message": (message or "")[:2000],
            "type": type,
            "link": link,
            "read": False,
            "created_at": now_iso(),
        }
        result = self.sb.table("notifications").insert(row).execute()
        created = first_row(result) or row
        logger.info(f"[NOTIF] '{created['title']}' → {user_id or oab}")
        return created

    def _recipient_query(self, query, user_id: Optional[str], oab: Optional[str]):
        if user_id and oab:
            return query.or_(f"user_id.eq.{user_id},oab.eq.{oab}")
        if user_id:
            return query.eq("user_id", user_id)
        return query.eq("oab", oab)

    def list_notifications(self, user_id: Optional[str] = None, oab: Optional[str] = None,
                           unread_only: bool = False, limit: int = 50) -> list[dict]:
        query = self._recipient_query(
            self.sb.table("notifications").select("*"), user_id, oab
        )
        if unread_only:
            query = query.eq("read", False)
        result = query.order("created_at", desc=True).limit(min(limit, 200)).execute()
        return result.data or []

    def unread_count(self, user_id: Optional[str] = None, oab: Optional[str] = None) -> int:
        query = self._recipient_query(
            self.sb.table("notifications").select("id", count="exact"), user_id, oab
        )
        result = query.eq("read", False).execute()
        return result.count if result.count is not None else len(result.data or [])

    def mark_read(self, notification_id: str, user_id: Optional[str] = None) -> dict[str, Any]:
        query = self.sb.table("notifications").update({"read": True}).eq("id", notification_id)
        if user_id:
            query = query.eq("user_id", user_id)
        row = first_row(query.execute())
        if not row:
            raise NotFoundError("Notificação não encontrada")
        return row

    def mark_all_read(self, user_id: Optional[str] = None, oab: Optional[str] = None) -> int:
        query = self._recipient_query(
            self.sb.table("notifications").update({"read": True}), user_id, oab
        )
        result = query.eq("read", False).execute()
        updated = len(result.data or [])
        logger.info(f"[NOTIF] {updated} notificação(ões) marcadas como lidas para {user_id or oab}")
        return updated
