# -*- coding: utf-8 -*-
"""
CHAT THREADS AND NOTIFICATIONS
=======================================
"""

import pytest

from legalflow.chat import ChatManager
from legalflow.errors import NotFoundError, ValidationError
from legalflow.notifications import NotificationManager


class TestChatManager:
    """Tests for ChatManager."""

    def test_create_thread(self, fake_sb):
        thread = ChatManager(fake_sb).create_thread("processo", "0001234-56.2024.8.26.0100", created_by="user-1")
        assert thread["title"] == "Conversa processo"
        assert fake_sb.rows("thread_links")[0]["context_id"] == "0001234-56.2024.8.26.0100"

    def test_thread_validation(self, fake_sb):
        chat = ChatManager(fake_sb)
        with pytest.raises(ValidationError):
            chat.create_thread("whatsapp")
        with pytest.raises(ValidationError):
            chat.create_thread("cliente")
        assert chat.create_thread("geral", title="  Dúvidas  ")["title"] == "Dúvidas"

    def test_list_threads_by_context(self, fake_sb):
        chat = ChatManager(fake_sb)
        chat.create_thread("cliente", "52998224725")
        chat.create_thread("ticket", "t-1")
        assert len(chat.list_threads()) == 2
        assert [t["context_id"] for t in chat.list_threads(context_type="ticket")] == ["t-1"]

    def test_messages(self, fake_sb):
        chat = ChatManager(fake_sb)
        thread = chat.create_thread("geral")
        chat.post_message(thread["id"], " Olá ", sender_id="user-1")
        chat.post_message(thread["id"], "Como posso ajudar?", sender_type="agent")
        assert [m["content"] for m in chat.messages(thread["id"])] == ["Olá", "Como posso ajudar?"]

    def test_message_validation(self, fake_sb):
        chat = ChatManager(fake_sb)
        thread = chat.create_thread("geral")
        with pytest.raises(ValidationError):
            chat.post_message(thread["id"], "   ")
        with pytest.raises(ValidationError):
            chat.post_message(thread["id"], "oi", sender_type="bot")
        with pytest.raises(NotFoundError):
            chat.post_message("nope", "oi")

    def test_export_markdown(self, fake_sb):
        chat = ChatManager(fake_sb)
        thread = chat.create_thread("cliente", "52998224725", title="Divórcio")
        fake_sb.seed("ai_messages", [
            {"thread_id": thread["id"], "sender_type": "user", "content": "Preciso de ajuda",
             "created_at": "2024-03-11T13:05:00+00:00"},
            {"thread_id": thread["id"], "sender_type": "system", "content": "Ticket aberto",
             "created_at": "2024-03-11T13:06:00+00:00"},
        ])
        markdown = chat.export_markdown(thread["id"])
        lines = markdown.splitlines()
        assert lines[0] == "# Divórcio"
        assert "- Contexto: cliente 52998224725" in lines
        assert "**Utilizador** (11/03/2024 13:05)" in lines
        assert "**Sistema** (11/03/2024 13:06)" in lines
        assert markdown.endswith("Ticket aberto\n")


class TestNotificationManager:
    """Tests for NotificationManager."""

    def test_create_requires_recipient(self, fake_sb):
        manager = NotificationManager(fake_sb)
        with pytest.raises(ValidationError):
            manager.create("Prazo", "amanhã")
        with pytest.raises(ValidationError):
            manager.create(" ", "x", user_id="user-1")

    def test_unknown_type_becomes_info(self, fake_sb):
        created = NotificationManager(fake_sb).create("Aviso", "x", oab="SP1", type="marketing")
        assert created["type"] == "info"
        assert created["read"] is False

    def test_list_and_count_by_recipient(self, fake_sb):
        manager = NotificationManager(fake_sb)
        manager.create("A", "x", user_id="user-1")
        manager.create("B", "x", oab="SP1")
        manager.create("C", "x", user_id="user-2")
        assert len(manager.list_notifications(user_id="user-1", oab="SP1")) == 2
        assert manager.unread_count(user_id="user-2") == 1

    def test_mark_read(self, fake_sb):
        manager = NotificationManager(fake_sb)
        first = manager.create("A", "x", user_id="user-1")
        manager.create("B", "x", user_id="user-1")
        assert manager.mark_read(first["id"], user_id="user-1")["read"] is True
        with pytest.raises(NotFoundError):
            manager.mark_read(first["id"], user_id="user-2")
        assert manager.unread_count(user_id="user-1") == 1
        assert manager.mark_all_read(user_id="user-1") == 1
        assert manager.list_notifications(user_id="user-1", unread_only=True) == []
