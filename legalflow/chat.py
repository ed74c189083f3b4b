# -*- coding: utf-8 -*-
"""
CHAT - Threads de conversa por contexto
============================================================
thread_links   thread associada a processo / cliente / ticket / geral
ai_messages    mensagens (user | agent | system)
============================================================
"""

import logging
from typing import Any, Optional

from legalflow.db import BaseManager, first_row
from legalflow.errors import NotFoundError, ValidationError
from legalflow.utils.datas import now_iso, parse_datetime

logger = logging.getLogger(__name__)

CONTEXT_TYPES = ("processo", "cliente", "ticket", "geral")
SENDER_TYPES = ("user", "agent", "system")
SENDER_LABELS = {"user": "Utilizador", "agent": "Assistente", "system": "Sistema"}


class ChatManager(BaseManager):
    """Threads e mensagens."""

    def create_thread(self, context_type: str, context_id: Optional[str] = None, title: str = "",
                      created_by: Optional[str] = None) -> dict[str, Any]:
        if context_type not in CONTEXT_TYPES:
            raise ValidationError("Contexto inválido", field="context_type", code="INVALID_ENUM")
        if context_type != "geral" and not context_id:
            raise ValidationError("context_id é obrigatório", field="context_id", code="REQUIRED_FIELD")
        row = {
            "context_type": context_type,
            "context_id": context_id,
            "title": (title or "").strip()[:200] or f"Conversa {context_type}",
            "created_by": created_by,
            "created_at": now_iso(),
        }
        return first_row(self.lf.table("thread_links").insert(row).execute()) or row

    def list_threads(self, context_type: Optional[str] = None, context_id: Optional[str] = None) -> list[dict]:
        q = self.lf.table("thread_links").select("*")
        if context_type:
            q = q.eq("context_type", context_type)
        if context_id:
            q = q.eq("context_id", context_id)
        return q.order("created_at", desc=True).execute().data or []

    def get_thread(self, thread_id: str) -> dict[str, Any]:
        thread = first_row(self.lf.table("thread_links").select("*").eq("id", thread_id).limit(1).execute())
        if not thread:
            raise NotFoundError("Conversa não encontrada")
        return thread

    def post_message(self, thread_id: str, content: str, sender_type: str = "user",
                     sender_id: Optional[str] = None) -> dict[str, Any]:
        if sender_type not in SENDER_TYPES:
            raise ValidationError("Remetente inválido", field="sender_type", code="INVALID_ENUM")
        if not content or not content.strip():
            raise ValidationError("Mensagem vazia", field="content", code="REQUIRED_FIELD")
        self.get_thread(thread_id)
        row = {
            "thread_id": thread_id,
            "sender_type": sender_type,
            "sender_id": sender_id,
            "content": content.strip(),
            "created_at": now_iso(),
        }
        return first_row(self.lf.table("ai_messages").insert(row).execute()) or row

    def messages(self, thread_id: str) -> list[dict]:
        self.get_thread(thread_id)
        return self.lf.table("ai_messages").select("*").eq("thread_id", thread_id).order(
            "created_at").execute().data or []

    def export_markdown(self, thread_id: str) -> str:
        thread = self.get_thread(thread_id)
        lines = [f"# {thread.get('title') or 'Conversa'}", ""]
        context = thread.get("context_type")
        if thread.get("context_id"):
            context = f"{context} {thread['context_id']}"
        lines += [f"- Contexto: {context}", f"- Criada em: {thread.get('created_at') or ''}", ""]
        for msg in self.messages(thread_id):
            when = parse_datetime(msg.get("created_at"))
            stamp = when.strftime("%d/%m/%Y %H:%M") if when else ""
            lines.append(f"**{SENDER_LABELS.get(msg.get('sender_type'), msg.get('sender_type'))}** ({stamp})")
            lines.append("")
            lines.append(msg.get("content") or "")
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"
