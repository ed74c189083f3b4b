# -*- coding: utf-8 -*-
"""
CELERY SWEEPS
=======================================
Tasks are called directly (synchronously) against the in-memory Supabase.
"""

import pytest

from legalflow import tasks
from legalflow.celery_app import celery_app
from legalflow.financeiro import FinanceiroManager


@pytest.fixture(autouse=True)
def admin_client(fake_sb, monkeypatch):
    monkeypatch.setattr(tasks, "get_supabase_admin", lambda: fake_sb)
    return fake_sb


class TestSweeps:
    """Tests for the periodic sweep tasks."""

    def test_beat_schedule_points_to_registered_tasks(self):
        scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
        assert scheduled == {
            "legalflow.tasks.sweep_overdue_stages",
            "legalflow.tasks.sweep_overdue_parcelas",
            "legalflow.tasks.sweep_ticket_sla",
        }
        assert scheduled <= set(celery_app.tasks)

    def test_sweep_overdue_parcelas(self, fake_sb):
        FinanceiroManager(fake_sb).create_plano({
            "cliente_cpfcnpj": "52998224725", "amount_total": 200, "installments": 2,
            "first_due_date": "2020-01-10",
        })
        assert tasks.sweep_overdue_parcelas() == {"parcelas_vencidas": 2, "planos_inadimplentes": 1}
        assert tasks.sweep_overdue_parcelas()["parcelas_vencidas"] == 0

    def test_sweep_overdue_stages_empty(self):
        assert tasks.sweep_overdue_stages() == {"overdue": 0, "instances": 0}

    def test_sweep_ticket_sla_empty(self):
        assert isinstance(tasks.sweep_ticket_sla(), dict)
