# -*- coding: utf-8 -*-
"""
AUDIT AND AUTOFIX
=======================================
"""

from datetime import datetime, timezone

import pytest

from legalflow.audit import STATUS_ERROR, STATUS_OK, STATUS_PENDING, AuditManager
from legalflow.financeiro import FinanceiroManager
from legalflow.utils import datas


@pytest.fixture
def audit(fake_sb):
    return AuditManager(fake_sb)


class TestAudit:
    """Tests for the module health checks."""

    def test_empty_database(self, audit):
        report = audit.run_audit()
        assert set(report) == {"stage-types", "next-action", "timeline-view", "conversation-core",
                               "sla-core", "contacts-view", "finance-core"}
        assert report["stage-types"]["status"] == STATUS_ERROR
        assert all(r["status"] == STATUS_OK for m, r in report.items() if m != "stage-types")
        assert report["finance-core"]["last_checked"]

    def test_active_journey_without_next_action_is_pending(self, fake_sb, audit):
        fake_sb.seed("journey_instances", [
            {"status": "ativo", "next_action": None, "progress_pct": 0},
            {"status": "ativo", "next_action": {"type": "start"}, "progress_pct": 10},
        ])
        result = audit.audit_module("next-action")
        assert result["status"] == STATUS_PENDING
        assert result["checks"][0]["details"] == "1 jornada(s) sem next_action/progresso"

    def test_open_ticket_without_sla_is_pending(self, fake_sb, audit):
        fake_sb.seed("tickets", [
            {"status": "aberto", "priority": "alta", "created_at": "2024-03-11T13:00:00+00:00"},
            {"status": "fechado"},
        ])
        assert audit.audit_module("sla-core")["status"] == STATUS_PENDING

    def test_counts_in_details(self, fake_sb, audit):
        fake_sb.seed("movimentacoes", [{"numero_cnj": "x"}, {"numero_cnj": "y"}], schema="public")
        details = [c["details"] for c in audit.audit_module("timeline-view")["checks"]]
        assert details == ["2 registos", "0 registos"]

    def test_check_failure_becomes_error(self, audit):
        def boom():
            raise RuntimeError("relation does not exist")

        audit.modules["timeline-view"] = boom
        result = audit.audit_module("timeline-view")
        assert result["status"] == STATUS_ERROR
        assert result["checks"][0]["id"] == "general_error"
        assert result["checks"][0]["details"] == "relation does not exist"


class TestAutofix:
    """Tests for autofix patches and their history."""

    def test_stage_types_fix(self, fake_sb, audit):
        result = audit.autofix("STAGE_TYPES_FIX", user_id="admin-1")
        assert result["success"] is True
        assert audit.audit_module("stage-types")["status"] == STATUS_OK
        history = audit.history()
        assert history[0]["module"] == "stage-types"
        assert history[0]["user_id"] == "admin-1"

    def test_sla_backfill(self, fake_sb, audit):
        fake_sb.seed("tickets", [{"status": "aberto", "priority": "alta",
                                  "created_at": "2024-03-11T13:00:00+00:00"}])
        result = audit.autofix("SLA_BACKFILL")
        assert result["changes"] == ["1 ticket(s) com prazos preenchidos"]
        assert audit.audit_module("sla-core")["status"] == STATUS_OK

    def test_finance_overdue(self, fake_sb, audit):
        FinanceiroManager(fake_sb).create_plano({
            "cliente_cpfcnpj": "52998224725", "amount_total": 100, "installments": 1,
            "first_due_date": "2020-01-01",
        })
        assert audit.audit_module("finance-core")["status"] == STATUS_PENDING
        result = audit.autofix("FINANCE_OVERDUE")
        assert result["changes"][0] == "1 parcela(s) marcada(s) como vencida(s)"
        assert audit.audit_module("finance-core")["status"] == STATUS_OK

    def test_unknown_patch(self, fake_sb, audit):
        result = audit.autofix("DROP_ALL")
        assert result["success"] is False
        assert fake_sb.rows("autofix_history")[0]["module"] == "desconhecido"

    def test_failing_patch_is_recorded(self, fake_sb, audit):
        def fail(params):
            raise RuntimeError("function seed_api_library does not exist")

        fake_sb.rpc_handlers["seed_api_library"] = fail
        result = audit.autofix("API_SEED")
        assert result["success"] is False
        assert result["errors"] == ["function seed_api_library does not exist"]
        assert fake_sb.rows("autofix_history")[0]["success"] is False

    def test_history_filters(self, audit):
        audit.autofix("API_SEED")
        audit.autofix("STAGE_TYPES_FIX")
        audit.autofix("API_SEED")
        assert len(audit.history(module="api-library")) == 2
        assert len(audit.history(limit=1)) == 1
        assert len(audit.history(limit=500)) == 3
        assert audit.history(offset=2)[0]["patch_code"] == "API_SEED"

    def test_finance_check_uses_office_date(self, fake_sb, audit, monkeypatch):
        fake_sb.seed("parcelas", [{"plano_id": "p1", "status": "pendente", "due_date": "2024-03-10"}])
        # 01:00 UTC ainda é dia 10 em São Paulo
        monkeypatch.setattr(datas, "utcnow", lambda: datetime(2024, 3, 11, 1, 0, tzinfo=timezone.utc))
        assert audit.audit_module("finance-core")["status"] == STATUS_OK
        assert audit.autofix("FINANCE_OVERDUE")["changes"][0] == "0 parcela(s) marcada(s) como vencida(s)"

        monkeypatch.setattr(datas, "utcnow", lambda: datetime(2024, 3, 11, 4, 0, tzinfo=timezone.utc))
        assert audit.audit_module("finance-core")["status"] == STATUS_PENDING
        assert audit.autofix("FINANCE_OVERDUE")["changes"][0] == "1 parcela(s) marcada(s) como vencida(s)"
        assert audit.audit_module("finance-core")["status"] == STATUS_OK

    def test_api_seed_runs_in_legalflow_schema(self, fake_sb, audit):
        assert audit.autofix("API_SEED")["success"] is True
        assert fake_sb.rpc_schemas == [("legalflow", "seed_api_library")]
