# -*- coding: utf-8 -*-
"""
CLIENT JOURNEYS: STAGE TYPES, TEMPLATES, INSTANCES AND RULES
=======================================
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from legalflow.errors import ConflictError, NotFoundError, TransitionError, ValidationError
from legalflow.financeiro import FinanceiroManager
from legalflow.journeys.instances import JourneyManager, check_completion, required_form_fields
from legalflow.journeys.rules import RuleEngine, render_text
from legalflow.journeys.stage_types import (
    AGUARDANDO_PROXIMA,
    JORNADA_CONCLUIDA,
    calculate_journey_stats,
    calculate_next_action,
    calculate_progress,
    default_rules,
    days_until_due,
    filter_journeys,
    sort_journeys,
    validate_stage_config,
)
from legalflow.journeys.templates import TemplateManager

VALID_CPF = "52998224725"
NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _iso(days):
    return (NOW + timedelta(days=days)).isoformat()


@pytest.fixture
def cliente(fake_sb):
    return fake_sb.seed("clientes", [{"cpfcnpj": VALID_CPF, "nome": "Maria Souza"}], schema="public")[0]


@pytest.fixture
def template(fake_sb):
    """Template de três etapas: form (2 dias), upload (3 dias), task opcional (5 dias)."""
    manager = TemplateManager(fake_sb)
    tpl = manager.create_template({"name": "Divórcio consensual", "niche": "familia"})
    manager.add_stage(tpl["id"], {
        "stage_type": "form", "title": "Dados do casal", "sla_days": 2,
        "config": {"fields": ["nome_conjuge", {"name": "regime"}, {"name": "obs", "required": False}]},
    })
    manager.add_stage(tpl["id"], {
        "stage_type": "upload", "title": "Documentos", "sla_days": 3,
        "config": {"required_documents": ["RG", "Certidão de casamento"]},
    })
    manager.add_stage(tpl["id"], {
        "stage_type": "task", "title": "Petição", "sla_days": 5, "config": {}, "is_mandatory": False,
    })
    return manager.get_template(tpl["id"])


class TestStageTypes:
    """Tests for the pure journey helpers."""

    def test_config_validation(self):
        assert validate_stage_config("meeting", {"duration_minutes": 30}) == {"duration_minutes": 30}
        with pytest.raises(ValidationError):
            validate_stage_config("meeting", {"duration_minutes": True})
        with pytest.raises(ValidationError):
            validate_stage_config("gate", {"approval_type": "talvez"})
        with pytest.raises(ValidationError):
            validate_stage_config("upload", {})
        with pytest.raises(ValidationError):
            validate_stage_config("video", {})

    def test_default_rules_by_type(self):
        assert len(default_rules("lesson")) == 1
        assert [r["action_type"] for r in default_rules("upload")] == ["notify", "create_activity"]
        assert default_rules("meeting")[1]["action_type"] == "schedule"

    def test_progress_counts_skipped(self):
        stages = [{"status": "completed"}, {"status": "skipped"}, {"status": "pending"}, {"status": "blocked"}]
        assert calculate_progress(stages) == 50
        assert calculate_progress([]) == 0

    def test_next_action_prefers_mandatory(self):
        stages = [
            {"title": "Opcional", "status": "pending", "is_mandatory": False, "due_at": _iso(1)},
            {"title": "Obrigatória", "status": "pending", "due_at": _iso(5)},
        ]
        assert calculate_next_action(stages, NOW) == "Obrigatória"

    def test_next_action_overdue_label(self):
        stages = [{"title": "Documentos", "status": "in_progress", "due_at": _iso(-1)}]
        assert calculate_next_action(stages, NOW) == "Documentos (Atrasado)"

    def test_next_action_terminal_states(self):
        assert calculate_next_action([{"status": "completed"}, {"status": "skipped"}], NOW) == JORNADA_CONCLUIDA
        assert calculate_next_action([{"status": "blocked"}], NOW) == AGUARDANDO_PROXIMA
        assert calculate_next_action([], NOW) == AGUARDANDO_PROXIMA

    def test_days_until_due(self):
        assert days_until_due({"due_at": _iso(3)}, NOW) == 3
        assert days_until_due({"due_at": (NOW - timedelta(hours=1)).isoformat()}, NOW) == -1
        assert days_until_due({}, NOW) is None

    def test_stats(self):
        instances = [
            {"status": "ativo", "progress_pct": 50, "stages": [{"status": "in_progress", "due_at": _iso(-2)}]},
            {"status": "concluido", "progress_pct": 100},
            {"status": "pausado", "progress_pct": 0, "stages": [{"status": "pending", "due_at": _iso(-2)}]},
        ]
        stats = calculate_journey_stats(instances, NOW)
        assert stats["total"] == 3
        assert stats["average_progress"] == 50.0
        assert stats["overdue_stages"] == 1
        assert stats["completion_rate"] == 33.3

    def test_filter_and_sort(self):
        instances = [
            {"template_name": "Divórcio", "cliente_nome": "Maria", "progress_pct": 20, "status": "ativo"},
            {"template_name": "Inventário", "cliente_nome": "João", "progress_pct": 80, "status": "pausado"},
        ]
        assert len(filter_journeys(instances, search="maria")) == 1
        assert len(filter_journeys(instances, status="pausado")) == 1
        assert [i["progress_pct"] for i in sort_journeys(instances, "progress_pct")] == [80, 20]


class TestTemplateManager:
    """Tests for TemplateManager."""

    def test_counters_and_default_rules(self, fake_sb, template):
        assert template["steps_count"] == 3
        assert template["eta_days"] == 10
        assert [s["order_index"] for s in template["stages"]] == [1, 2, 3]
        assert len(template["stages"][1]["rules"]) == 2

    def test_add_stage_at_position_shifts(self, fake_sb, template):
        manager = TemplateManager(fake_sb)
        manager.add_stage(template["id"], {"stage_type": "lesson", "title": "Boas-vindas",
                                           "config": {"content_url": "https://x"}}, position=1)
        titles = [s["title"] for s in manager.stages(template["id"])]
        assert titles == ["Boas-vindas", "Dados do casal", "Documentos", "Petição"]
        assert [s["order_index"] for s in manager.stages(template["id"])] == [1, 2, 3, 4]

    def test_add_stage_validation(self, fake_sb, template):
        manager = TemplateManager(fake_sb)
        with pytest.raises(ValidationError):
            manager.add_stage(template["id"], {"stage_type": "task", "title": " "})
        with pytest.raises(ValidationError):
            manager.add_stage(template["id"], {"stage_type": "task", "title": "x", "sla_days": -1})
        with pytest.raises(NotFoundError):
            manager.add_stage("nope", {"stage_type": "task", "title": "x"})

    def test_remove_stage_reindexes(self, fake_sb, template):
        manager = TemplateManager(fake_sb)
        remaining = manager.remove_stage(template["stages"][0]["id"])
        assert [(s["title"], s["order_index"]) for s in remaining] == [("Documentos", 1), ("Petição", 2)]
        assert manager.get_template(template["id"])["eta_days"] == 8

    def test_reorder_and_move(self, fake_sb, template):
        manager = TemplateManager(fake_sb)
        ids = [s["id"] for s in template["stages"]]
        with pytest.raises(ValidationError):
            manager.reorder_stages(template["id"], ids[:2])
        moved = manager.move_stage(template["id"], ids[2], 1)
        assert [s["id"] for s in moved] == [ids[2], ids[0], ids[1]]
        assert [s["order_index"] for s in manager.stages(template["id"])] == [1, 2, 3]

    def test_duplicate_copies_stages_and_rules(self, fake_sb, template):
        manager = TemplateManager(fake_sb)
        copy = manager.duplicate_template(template["id"])
        assert copy["name"] == "Divórcio consensual (cópia)"
        assert copy["is_active"] is False
        assert [s["title"] for s in copy["stages"]] == [s["title"] for s in template["stages"]]
        assert sum(len(s["rules"]) for s in copy["stages"]) == sum(len(s["rules"]) for s in template["stages"])
        assert copy["steps_count"] == 3

    def test_rule_validation(self, fake_sb, template):
        manager = TemplateManager(fake_sb)
        stage_id = template["stages"][0]["id"]
        with pytest.raises(ValidationError):
            manager.add_rule(stage_id, {"trigger_event": "on_enter", "action_type": "webhook"})
        with pytest.raises(ValidationError):
            manager.add_rule(stage_id, {"trigger_event": "ao_entrar", "action_type": "notify"})
        rule = manager.add_rule(stage_id, {"trigger_event": "on_overdue", "action_type": "notify"})
        assert manager.update_rule(rule["id"], {"is_active": False})["is_active"] is False
        assert manager.list_rules(stage_id, active_only=True, trigger_event="on_overdue") == []

    def test_delete_blocked_by_active_journey(self, fake_sb, template, cliente):
        JourneyManager(fake_sb).start_journey(template["id"], VALID_CPF)
        with pytest.raises(ConflictError):
            TemplateManager(fake_sb).delete_template(template["id"])

    def test_seed_stage_types_is_idempotent(self, fake_sb):
        manager = TemplateManager(fake_sb)
        manager.seed_stage_types()
        manager.seed_stage_types()
        types = manager.list_stage_types()
        assert len(types) == 6
        gate = next(t for t in types if t["code"] == "gate")
        assert gate["config_schema"] == {"approval_type": ["manual", "automatic"]}


class TestJourneyManager:
    """Tests for the journey engine."""

    def test_start_journey(self, fake_sb, template, cliente):
        start = datetime.now(timezone.utc)
        inst = JourneyManager(fake_sb).start_journey(template["id"], "529.982.247-25", owner_oab="SP123",
                                                    start_date=start)
        assert inst["status"] == "ativo"
        assert inst["cliente_nome"] == "Maria Souza"
        assert inst["template_name"] == "Divórcio consensual"
        assert [s["status"] for s in inst["stages"]] == ["in_progress", "pending", "pending"]
        assert inst["next_action"] == "Dados do casal"
        assert inst["progress_pct"] == 0
        due = [datetime.fromisoformat(s["due_at"]) for s in inst["stages"]]
        assert [(d - start).days for d in due] == [2, 5, 10]
        notifications = fake_sb.rows("notifications", schema="public")
        assert notifications[0]["title"] == "Nova etapa iniciada"
        assert "Maria Souza" in notifications[0]["message"]

    def test_start_requires_active_template_and_client(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        with pytest.raises(NotFoundError):
            manager.start_journey(template["id"], "11.222.333/0001-81")
        TemplateManager(fake_sb).update_template(template["id"], {"is_active": False})
        with pytest.raises(ValidationError):
            manager.start_journey(template["id"], VALID_CPF)

    def test_full_flow(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(template["id"], VALID_CPF, owner_oab="SP123")
        form, upload, task = (s["id"] for s in inst["stages"])

        with pytest.raises(ValidationError) as exc:
            manager.complete_stage(form, {"responses": {"nome_conjuge": "João"}})
        assert [e["field"] for e in exc.value.errors] == ["responses.regime"]

        inst = manager.complete_stage(form, {"responses": {"nome_conjuge": "João", "regime": "parcial"}},
                                      completed_by="user-1")
        assert [s["status"] for s in inst["stages"]] == ["completed", "in_progress", "pending"]
        assert inst["stages"][0]["completion_data"]["completed_by"] == "user-1"
        assert inst["progress_pct"] == 33

        with pytest.raises(ValidationError):
            manager.complete_stage(upload, {})
        inst = manager.complete_stage(upload, {"document_ids": ["doc-1"]})
        assert inst["progress_pct"] == 67
        assert inst["next_action"] == "Petição"
        activities = fake_sb.rows("activities")
        assert [a["title"] for a in activities] == ["Documentos enviados"]
        assert activities[0]["stage_instance_id"] == upload

        inst = manager.skip_stage(task)
        assert inst["status"] == "concluido"
        assert inst["progress_pct"] == 100
        assert inst["next_action"] == JORNADA_CONCLUIDA
        assert inst["completed_at"]

    def test_mandatory_stage_cannot_be_skipped(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(template["id"], VALID_CPF)
        with pytest.raises(TransitionError):
            manager.skip_stage(inst["stages"][0]["id"])

    def test_pending_stage_cannot_complete(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(template["id"], VALID_CPF)
        with pytest.raises(TransitionError):
            manager.complete_stage(inst["stages"][1]["id"], {"document_ids": ["x"]})

    def test_pause_blocks_stage_changes(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(template["id"], VALID_CPF)
        manager.pause(inst["id"])
        with pytest.raises(TransitionError):
            manager.block_stage(inst["stages"][0]["id"], "aguardando cliente")
        assert manager.resume(inst["id"])["status"] == "ativo"
        manager.cancel(inst["id"])
        with pytest.raises(TransitionError):
            manager.resume(inst["id"])

    def test_block_and_resume_stage(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(template["id"], VALID_CPF)
        stage_id = inst["stages"][0]["id"]
        inst = manager.transition_stage(stage_id, "blocked", {"reason": "falta certidão"})
        assert inst["stages"][0]["status"] == "blocked"
        assert inst["stages"][0]["completion_data"]["blocked_reason"] == "falta certidão"
        inst = manager.transition_stage(stage_id, "in_progress")
        assert inst["stages"][0]["status"] == "in_progress"
        with pytest.raises(TransitionError):
            manager.transition_stage(stage_id, "pending")

    def test_reopen_completed_stage(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(template["id"], VALID_CPF)
        form = inst["stages"][0]["id"]
        manager.complete_stage(form, {"responses": {"nome_conjuge": "a", "regime": "b"}})
        inst = manager.transition_stage(form, "in_progress")
        assert inst["stages"][0]["status"] == "in_progress"
        assert inst["stages"][0]["completed_at"] is None

    def test_gate_approval(self, fake_sb, cliente):
        templates = TemplateManager(fake_sb)
        tpl = templates.create_template({"name": "Aprovação"})
        templates.add_stage(tpl["id"], {"stage_type": "gate", "title": "Revisão do sócio",
                                        "config": {"approval_type": "manual"}})
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(tpl["id"], VALID_CPF)
        gate = inst["stages"][0]["id"]
        with pytest.raises(ValidationError):
            manager.complete_stage(gate, {})
        inst = manager.approve_gate(gate, False, "faltam dados", approved_by="socio")
        assert inst["stages"][0]["status"] == "blocked"
        manager.start_stage(gate)
        inst = manager.approve_gate(gate, True, approved_by="socio")
        assert inst["status"] == "concluido"
        assert inst["stages"][0]["completion_data"]["approval"]["approved"] is True

    def test_sweep_overdue_fires_once(self, fake_sb, template, cliente):
        stage_id = template["stages"][0]["id"]
        TemplateManager(fake_sb).add_rule(stage_id, {
            "trigger_event": "on_overdue", "action_type": "notify",
            "action_config": {"title": "Atraso: {stage}", "message": "Cliente {cliente}"},
        })
        manager = JourneyManager(fake_sb)
        inst = manager.start_journey(template["id"], VALID_CPF, owner_oab="SP123",
                                     start_date="2024-03-01T12:00:00+00:00")
        assert manager.sweep_overdue(NOW) == {"overdue": 2, "instances": 1}
        assert manager.sweep_overdue(NOW) == {"overdue": 0, "instances": 0}
        titles = [n["title"] for n in fake_sb.rows("notifications", schema="public")]
        assert titles.count("Atraso: Dados do casal") == 1
        stored = manager.get_instance(inst["id"])
        assert stored["stages"][0]["status"] == "in_progress"
        assert stored["stages"][0]["is_overdue"] is True

    def test_list_instances(self, fake_sb, template, cliente):
        manager = JourneyManager(fake_sb)
        manager.start_journey(template["id"], VALID_CPF, owner_oab="SP123")
        page = manager.list_instances(owner_oab="SP123", search="divórcio")
        assert page["pagination"]["total"] == 1
        assert page["items"][0]["stages_total"] == 3
        assert manager.list_instances(status="concluido")["items"] == []
        assert manager.journey_stats()["by_status"]["ativo"] == 1


class TestCompletionRules:
    """Tests for stage completion requirements."""

    def test_required_form_fields(self):
        config = {"fields": ["a", {"name": "b"}, {"key": "c", "required": False}, {"id": "d", "required": True}]}
        assert required_form_fields(config) == ["a", "b", "d"]
        assert required_form_fields(None) == []

    def test_automatic_gate_completes_freely(self):
        check_completion({"stage_type": "gate", "config": {"approval_type": "automatic"}}, None)
        check_completion({"stage_type": "lesson"}, None)


class TestRuleEngine:
    """Tests for rule execution."""

    def _seed_rules(self, fake_sb, *rules):
        return fake_sb.seed("journey_stage_rules", [
            {"stage_id": "ts-1", "trigger_event": "on_done", "is_active": True, **r} for r in rules
        ])

    def test_render_text(self):
        assert render_text("{stage} / {cliente} / {outro}", {"stage": "A", "cliente": "B"}) == "A / B / {outro}"
        assert render_text(None, {}) == ""

    def test_failing_rule_does_not_stop_others(self, fake_sb):
        self._seed_rules(
            fake_sb,
            {"action_type": "fax", "action_config": {}},
            {"action_type": "create_ticket", "action_config": {"subject": "Revisar {stage}", "priority": "alta"}},
        )
        outcomes = RuleEngine(fake_sb).fire(
            "on_done", {"id": "si-1", "template_stage_id": "ts-1", "title": "Contrato"},
            {"id": "ji-1", "cliente_nome": "Maria"},
        )
        assert [o["ok"] for o in outcomes] == [False, True]
        assert fake_sb.rows("tickets")[0]["subject"] == "Revisar Contrato"

    def test_webhook_posts_payload(self, fake_sb):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["token"] = request.headers.get("x-token")
            return httpx.Response(200, json={"ok": True})

        self._seed_rules(fake_sb, {"action_type": "webhook", "action_config": {
            "url": "https://hooks.exemplo.com/jornada", "headers": {"X-Token": "abc"}}})
        engine = RuleEngine(fake_sb, http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        outcomes = engine.fire("on_done", {"id": "si-1", "template_stage_id": "ts-1", "title": "Contrato",
                                           "status": "completed"},
                               {"id": "ji-1", "cliente_cpfcnpj": VALID_CPF})
        assert outcomes[0]["result"] == {"status_code": 200}
        assert seen["url"] == "https://hooks.exemplo.com/jornada"
        assert seen["body"]["stage"] == "Contrato"
        assert seen["body"]["instance_id"] == "ji-1"
        assert seen["token"] == "abc"

    def test_webhook_http_error_is_reported(self, fake_sb):
        self._seed_rules(fake_sb, {"action_type": "webhook", "action_config": {"url": "https://x.test/h"}})
        engine = RuleEngine(fake_sb, http_client=httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))))
        outcomes = engine.fire("on_done", {"id": "si-1", "template_stage_id": "ts-1"}, {"id": "ji-1"})
        assert outcomes[0]["ok"] is False

    def test_schedule_creates_event(self, fake_sb):
        fake_sb.seed("journey_stage_rules", [{"stage_id": "ts-1", "trigger_event": "on_enter", "is_active": True,
                                              "action_type": "schedule", "action_config": {"hour": 14}}])
        RuleEngine(fake_sb).fire("on_enter", {"id": "si-1", "template_stage_id": "ts-1", "title": "Reunião inicial",
                                              "config": {"duration_minutes": 45}},
                                 {"id": "ji-1", "cliente_nome": "Maria", "owner_oab": "SP1"})
        event = fake_sb.rows("eventos_agenda")[0]
        assert event["title"] == "Reunião inicial - Maria"
        assert event["event_type"] == "reuniao"
        start = datetime.fromisoformat(event["starts_at"])
        end = datetime.fromisoformat(event["ends_at"])
        assert end - start == timedelta(minutes=45)
        assert start.weekday() < 5

    def test_payment_link_activates_installment(self, fake_sb):
        financeiro = FinanceiroManager(fake_sb)
        plano = financeiro.create_plano({"cliente_cpfcnpj": VALID_CPF, "amount_total": 300, "installments": 3,
                                         "first_due_date": "2099-01-01"})
        financeiro.link_stage("ts-1", plano["id"], 2)
        outcomes = RuleEngine(fake_sb).fire("on_done", {"id": "si-1", "template_stage_id": "ts-1"},
                                            {"id": "ji-1", "owner_oab": "SP1"})
        assert [(o["action_type"], o["ok"]) for o in outcomes] == [("activate_installment", True)]
        assert financeiro.parcelas(plano["id"])[1]["activated_at"]

    def test_stage_without_template_link_fires_nothing(self, fake_sb):
        assert RuleEngine(fake_sb).fire("on_done", {"id": "si-1"}, {"id": "ji-1"}) == []
