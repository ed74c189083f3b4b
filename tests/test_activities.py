# -*- coding: utf-8 -*-
"""
ACTIVITIES AND TICKET ↔ ACTIVITY BRIDGE
=======================================
"""

from datetime import datetime, timedelta, timezone

import pytest

from legalflow.activities import (
    ActivityManager,
    available_transitions,
    calculate_activity_stats,
    filter_activities,
    is_activity_overdue,
    sort_activities_by_priority,
)
from legalflow.bridge import BridgeManager, link_score
from legalflow.errors import ConflictError, NotFoundError, TransitionError, ValidationError
from legalflow.tickets import TicketManager
from legalflow.utils.datas import parse_datetime

NOW = datetime(2024, 3, 6, 15, 0, tzinfo=timezone.utc)


def _iso(delta_hours):
    return (NOW + timedelta(hours=delta_hours)).isoformat()


class TestActivityHelpers:
    """Tests for the pure activity helpers."""

    def test_available_transitions(self):
        assert available_transitions("todo") == ["in_progress", "blocked"]
        assert available_transitions("desconhecido") == []

    def test_done_is_never_overdue(self):
        assert not is_activity_overdue({"status": "done", "due_at": _iso(-10)}, NOW)
        assert is_activity_overdue({"status": "todo", "due_at": _iso(-10)}, NOW)
        assert not is_activity_overdue({"status": "todo"}, NOW)

    def test_sort_overdue_then_priority_then_due(self):
        acts = [
            {"id": "baixa", "priority": "baixa", "due_at": _iso(5)},
            {"id": "urgente", "priority": "urgente", "due_at": _iso(48)},
            {"id": "atrasada", "priority": "baixa", "due_at": _iso(-1)},
            {"id": "alta-cedo", "priority": "alta", "due_at": _iso(2)},
            {"id": "alta-tarde", "priority": "alta", "due_at": _iso(20)},
        ]
        ordered = [a["id"] for a in sort_activities_by_priority(acts, NOW)]
        assert ordered == ["atrasada", "urgente", "alta-cedo", "alta-tarde", "baixa"]

    def test_stats(self):
        acts = [
            {"status": "done"},
            {"status": "todo", "due_at": _iso(-30)},
            {"status": "in_progress", "due_at": _iso(1)},
            {"status": "blocked"},
        ]
        stats = calculate_activity_stats(acts, NOW)
        assert stats["total"] == 4
        assert stats["overdue"] == 1
        assert stats["due_today"] == 1
        assert stats["completion_rate"] == 25.0
        assert stats["by_status"]["blocked"] == 1

    def test_stats_empty(self):
        assert calculate_activity_stats([], NOW)["completion_rate"] == 0.0

    def test_filter(self):
        acts = [
            {"title": "Preparar contestação", "status": "todo", "priority": "alta"},
            {"title": "Ligar ao cliente", "status": "done", "priority": "baixa"},
        ]
        assert len(filter_activities(acts, search="contesta")) == 1
        assert len(filter_activities(acts, status="done")) == 1
        assert filter_activities(acts, priority="urgente") == []


class TestActivityManager:
    """Tests for ActivityManager CRUD, comments and time tracking."""

    def test_create_defaults(self, fake_sb):
        act = ActivityManager(fake_sb).create({"title": " Protocolar recurso "}, created_by="u1")
        assert act["status"] == "todo"
        assert act["priority"] == "media"
        assert act["title"] == "Protocolar recurso"

    def test_create_validation(self, fake_sb):
        manager = ActivityManager(fake_sb)
        with pytest.raises(ValidationError):
            manager.create({"title": ""})
        with pytest.raises(ValidationError):
            manager.create({"title": "x", "priority": "máxima"})

    def test_transition_sets_completed_at(self, fake_sb):
        manager = ActivityManager(fake_sb)
        act = manager.create({"title": "Audiência"})
        manager.transition(act["id"], "in_progress")
        done = manager.transition(act["id"], "done")
        assert done["completed_at"]
        reopened = manager.transition(act["id"], "todo")
        assert reopened["completed_at"] is None

    def test_invalid_transition(self, fake_sb):
        manager = ActivityManager(fake_sb)
        act = manager.create({"title": "Audiência"})
        with pytest.raises(TransitionError):
            manager.transition(act["id"], "done")

    def test_delete_cascades(self, fake_sb):
        manager = ActivityManager(fake_sb)
        act = manager.create({"title": "Audiência"})
        manager.add_comment(act["id"], "u1", "ok")
        manager.log_time(act["id"], "u1", 30)
        manager.delete(act["id"])
        assert fake_sb.rows("activities") == []
        assert fake_sb.rows("activity_comments") == []
        assert fake_sb.rows("time_entries") == []
        with pytest.raises(NotFoundError):
            manager.get(act["id"])

    def test_comments(self, fake_sb):
        manager = ActivityManager(fake_sb)
        act = manager.create({"title": "Audiência"})
        with pytest.raises(ValidationError):
            manager.add_comment(act["id"], "u1", "  ")
        manager.add_comment(act["id"], "u1", "Primeiro")
        assert [c["body"] for c in manager.list_comments(act["id"])] == ["Primeiro"]

    def test_timer_lifecycle(self, fake_sb):
        manager = ActivityManager(fake_sb)
        act = manager.create({"title": "Minuta"})
        entry = manager.start_timer(act["id"], "u1")
        with pytest.raises(ConflictError):
            manager.start_timer(act["id"], "u1")
        stopped = manager.stop_timer(act["id"], "u1", now=parse_datetime(entry["started_at"]) + timedelta(minutes=25))
        assert stopped["duration_minutes"] == 25
        with pytest.raises(NotFoundError):
            manager.stop_timer(act["id"], "u1")

    def test_time_summary(self, fake_sb):
        manager = ActivityManager(fake_sb)
        act = manager.create({"title": "Minuta"})
        manager.log_time(act["id"], "u1", 60, "pesquisa")
        manager.log_time(act["id"], "u2", 30)
        manager.start_timer(act["id"], "u1")
        summary = manager.time_summary(act["id"])
        assert summary["total_minutes"] == 90
        assert summary["formatted"] == "1h 30min"
        assert summary["entries"] == 3
        assert summary["running"] is True

    def test_log_time_rejects_non_positive(self, fake_sb):
        manager = ActivityManager(fake_sb)
        act = manager.create({"title": "Minuta"})
        with pytest.raises(ValidationError):
            manager.log_time(act["id"], "u1", 0)


class TestBridge:
    """Tests for BridgeManager."""

    def test_link_score(self):
        act = {"cliente_cpfcnpj": "1", "numero_cnj": "X", "title": "Audiência"}
        ticket = {"cliente_cpfcnpj": "1", "numero_cnj": "X", "subject": "Audiência"}
        assert link_score(act, ticket) == 1.0
        assert link_score({"title": ""}, {"subject": ""}) == 0.0

    def test_create_activity_from_ticket_inherits_fields(self, fake_sb):
        ticket = TicketManager(fake_sb).create(
            {"subject": "Revisar contrato", "priority": "alta", "numero_cnj": "0001234-56.2024.8.26.0100"})
        act = BridgeManager(fake_sb).create_activity_from_ticket(ticket["id"], {"priority": "urgente"})
        assert act["ticket_id"] == ticket["id"]
        assert act["title"] == "Revisar contrato"
        assert act["priority"] == "urgente"
        assert act["due_at"] == ticket["ttr_due_at"]

    def test_link_conflict_with_other_ticket(self, fake_sb):
        tickets = TicketManager(fake_sb)
        t1 = tickets.create({"subject": "A"})
        t2 = tickets.create({"subject": "B"})
        act = ActivityManager(fake_sb).create({"title": "x"})
        bridge = BridgeManager(fake_sb)
        bridge.link_activity_to_ticket(act["id"], t1["id"])
        with pytest.raises(ValidationError):
            bridge.link_activity_to_ticket(act["id"], t2["id"])
        bridge.unlink(act["id"])
        assert bridge.link_activity_to_ticket(act["id"], t2["id"])["ticket_id"] == t2["id"]

    def test_suggest_links(self, fake_sb):
        ticket = TicketManager(fake_sb).create({"subject": "Audiência trabalhista", "cliente_cpfcnpj": "52998224725"})
        ActivityManager(fake_sb).create({"title": "Audiência trabalhista", "cliente_cpfcnpj": "52998224725"})
        ActivityManager(fake_sb).create({"title": "Sem relação"})
        suggestions = BridgeManager(fake_sb).suggest_links()
        assert len(suggestions) == 1
        assert suggestions[0]["ticket_id"] == ticket["id"]
        assert suggestions[0]["score"] == 0.6

    def test_stats_and_align(self, fake_sb):
        tickets = TicketManager(fake_sb)
        activities = ActivityManager(fake_sb)
        bridge = BridgeManager(fake_sb)
        ticket = tickets.create({"subject": "Parecer"})
        act = bridge.create_activity_from_ticket(ticket["id"])
        assert bridge.align_status(ticket["id"])["aligned"] is False

        activities.transition(act["id"], "in_progress")
        activities.transition(act["id"], "done")
        stats = bridge.bridge_stats()
        assert stats["linked_activities"] == 1
        assert stats["status_misalignments"][0]["type"] == "activities_done_ticket_open"

        result = bridge.align_status(ticket["id"])
        assert result["aligned"] is True
        assert result["ticket"]["status"] == "resolvido"
