# -*- coding: utf-8 -*-
"""
FINANCEIRO - Planos de pagamento e parcelas
============================================================
Plano:   ativo → concluido | inadimplente | cancelado (pausado manual)
Parcela: pendente → pago | vencido | cancelado

Valores são divididos em centavos; o resto da divisão vai para
a última parcela, de forma que a soma bate sempre com o total.
============================================================
"""

import logging
from datetime import date
from typing import Any, Optional

from legalflow.db import BaseManager, first_row
from legalflow.errors import NotFoundError, TransitionError, ValidationError
from legalflow.utils.datas import DateLike, add_months, local_today, now_iso, parse_date
from legalflow.utils.documentos import only_digits

logger = logging.getLogger(__name__)

PLANO_STATUSES = ("ativo", "pausado", "concluido", "inadimplente", "cancelado")
OPEN_PLANO_STATUSES = ("ativo", "pausado", "inadimplente")
PARCELA_STATUSES = ("pendente", "pago", "vencido", "cancelado")
OPEN_PARCELA_STATUSES = ("pendente", "vencido")
STAGE_PAYMENT_ACTIONS = ("activate_installment", "create_installment", "send_notification")
MAX_INSTALLMENTS = 120


def to_cents(amount) -> int:
    return int(round(float(amount) * 100))


def split_installments(amount_total, installments: int) -> list[float]:
    """
    Divide o total em `installments` valores (2 casas decimais).

    >>> split_installments(100, 3)
    [33.33, 33.33, 33.34]
    """
    if installments < 1:
        raise ValidationError("Número de parcelas deve ser ≥ 1", field="installments")
    total_cents = to_cents(amount_total)
    base, remainder = divmod(total_cents, installments)
    values = [base] * installments
    values[-1] += remainder
    return [v / 100 for v in values]


def installment_schedule(amount_total, installments: int, first_due_date: DateLike) -> list[dict[str, Any]]:
    try:
        first = parse_date(first_due_date)
    except ValueError:
        raise ValidationError("Data do primeiro vencimento inválida (use AAAA-MM-DD)", field="first_due_date")
    if not first:
        raise ValidationError("Data do primeiro vencimento é obrigatória", field="first_due_date",
                              code="REQUIRED_FIELD")
    return [
        {"n_parcela": n + 1, "due_date": add_months(first, n).isoformat(), "amount": amount}
        for n, amount in enumerate(split_installments(amount_total, installments))
    ]


class FinanceiroManager(BaseManager):
    """Planos de pagamento, parcelas e métricas de cobrança."""

    def list_planos(self, cliente_cpfcnpj: Optional[str] = None, status: Optional[str] = None) -> list[dict]:
        q = self.lf.table("planos_pagamento").select("*")
        if cliente_cpfcnpj:
            q = q.eq("cliente_cpfcnpj", only_digits(cliente_cpfcnpj))
        if status:
            q = q.eq("status", status)
        return q.order("created_at", desc=True).execute().data or []

    def get_plano(self, plano_id: str) -> dict[str, Any]:
        plano = first_row(self.lf.table("planos_pagamento").select("*").eq("id", plano_id).limit(1).execute())
        if not plano:
            raise NotFoundError("Plano de pagamento não encontrado")
        plano["parcelas"] = self.parcelas(plano_id)
        return plano

    def parcelas(self, plano_id: str) -> list[dict]:
        return self.lf.table("parcelas").select("*").eq("plano_id", plano_id).order(
            "n_parcela").execute().data or []

    def get_parcela(self, parcela_id: str) -> dict[str, Any]:
        parcela = first_row(self.lf.table("parcelas").select("*").eq("id", parcela_id).limit(1).execute())
        if not parcela:
            raise NotFoundError("Parcela não encontrada")
        return parcela

    def create_plano(self, data: dict[str, Any], created_by: Optional[str] = None) -> dict[str, Any]:
        errors = []
        cpfcnpj = only_digits(data.get("cliente_cpfcnpj"))
        if not cpfcnpj:
            errors.append({"field": "cliente_cpfcnpj", "message": "Cliente é obrigatório", "code": "REQUIRED_FIELD"})
        try:
            amount_total = float(data.get("amount_total") or 0)
        except (TypeError, ValueError):
            amount_total = 0
        if amount_total <= 0:
            errors.append({"field": "amount_total", "message": "Valor deve ser positivo", "code": "INVALID_FORMAT"})
        installments = data.get("installments")
        if installments is None:
            installments = 1
        if not isinstance(installments, int) or not 1 <= installments <= MAX_INSTALLMENTS:
            errors.append({"field": "installments", "message": f"Parcelas entre 1 e {MAX_INSTALLMENTS}",
                           "code": "INVALID_FORMAT"})
        if errors:
            raise ValidationError("Plano de pagamento inválido", errors=errors)

        schedule = installment_schedule(amount_total, installments, data.get("first_due_date"))
        plano_row = {
            "cliente_cpfcnpj": cpfcnpj,
            "numero_cnj": data.get("numero_cnj"),
            "description": data.get("description") or "",
            "amount_total": round(amount_total, 2),
            "installments": installments,
            "paid_amount": 0.0,
            "first_due_date": schedule[0]["due_date"],
            "status": "ativo",
            "created_by": created_by,
            "created_at": now_iso(),
        }
        plano = first_row(self.lf.table("planos_pagamento").insert(plano_row).execute()) or plano_row

        parcelas_rows = [
            {**p, "plano_id": plano["id"], "status": "pendente", "paid_at": None, "paid_amount": None}
            for p in schedule
        ]
        parcelas = self.lf.table("parcelas").insert(parcelas_rows).execute().data or parcelas_rows
        logger.info(f"[FINANCEIRO] Plano {plano['id']}: {installments}x para {cpfcnpj} "
                    f"(total {plano_row['amount_total']:.2f})")
        return {**plano, "parcelas": parcelas}

    def register_payment(self, parcela_id: str, amount=None, paid_at: DateLike = None) -> dict[str, Any]:
        parcela = self.get_parcela(parcela_id)
        if parcela.get("status") not in OPEN_PARCELA_STATUSES:
            raise TransitionError(parcela.get("status"), "pago", "parcela")
        paid_amount = round(float(amount if amount is not None else parcela["amount"]), 2)
        if paid_amount <= 0:
            raise ValidationError("Valor pago deve ser positivo", field="amount")

        try:
            paid_date = parse_date(paid_at) or local_today()
        except ValueError:
            raise ValidationError("Data de pagamento inválida (use AAAA-MM-DD)", field="paid_at")
        changes = {"status": "pago", "paid_at": paid_date.isoformat(), "paid_amount": paid_amount}
        updated = first_row(self.lf.table("parcelas").update(changes).eq("id", parcela_id).execute()) or {
            **parcela, **changes}

        plano = self._refresh_plano(parcela["plano_id"])
        logger.info(f"[FINANCEIRO] Pagamento registado: parcela {parcela.get('n_parcela')} "
                    f"do plano {parcela['plano_id']} ({paid_amount:.2f})")
        return {"parcela": updated, "plano": plano}

    def _refresh_plano(self, plano_id: str) -> dict[str, Any]:
        """Recalcula paid_amount e estado do plano a partir das parcelas."""
        plano = first_row(self.lf.table("planos_pagamento").select("*").eq("id", plano_id).limit(1).execute())
        if not plano:
            raise NotFoundError("Plano de pagamento não encontrado")
        parcelas = self.parcelas(plano_id)
        paid_cents = sum(to_cents(p.get("paid_amount") or 0) for p in parcelas if p.get("status") == "pago")
        changes: dict[str, Any] = {"paid_amount": paid_cents / 100, "updated_at": now_iso()}

        active = [p for p in parcelas if p.get("status") != "cancelado"]
        if plano.get("status") != "cancelado":
            if active and all(p.get("status") == "pago" for p in active):
                changes["status"] = "concluido"
            elif any(p.get("status") == "vencido" for p in active):
                changes["status"] = "inadimplente"
            elif plano.get("status") == "inadimplente":
                changes["status"] = "ativo"
        return first_row(self.lf.table("planos_pagamento").update(changes).eq("id", plano_id).execute()) or {
            **plano, **changes}

    def cancel_plano(self, plano_id: str) -> dict[str, Any]:
        plano = self.get_plano(plano_id)
        if plano.get("status") in ("concluido", "cancelado"):
            raise TransitionError(plano.get("status"), "cancelado", "plano")
        self.lf.table("parcelas").update({"status": "cancelado"}).eq(
            "plano_id", plano_id).in_("status", list(OPEN_PARCELA_STATUSES)).execute()
        changes = {"status": "cancelado", "updated_at": now_iso()}
        self.lf.table("planos_pagamento").update(changes).eq("id", plano_id).execute()
        logger.info(f"[FINANCEIRO] Plano {plano_id} cancelado")
        return self.get_plano(plano_id)

    def set_plano_status(self, plano_id: str, status: str) -> dict[str, Any]:
        """Pausar/retomar manualmente (ativo ↔ pausado)."""
        plano = self.get_plano(plano_id)
        allowed = {"ativo": {"pausado"}, "pausado": {"ativo"}}
        if status not in allowed.get(plano.get("status"), set()):
            raise TransitionError(plano.get("status"), status, "plano")
        self.lf.table("planos_pagamento").update({"status": status, "updated_at": now_iso()}).eq(
            "id", plano_id).execute()
        return {**plano, "status": status}

    def sweep_overdue(self, today: Optional[date] = None) -> dict[str, int]:
        """Parcelas pendentes vencidas → vencido; planos respectivos → inadimplente."""
        today = today or local_today()
        overdue = self.lf.table("parcelas").select("*").eq("status", "pendente").lt(
            "due_date", today.isoformat()).execute().data or []
        plano_ids = sorted({p["plano_id"] for p in overdue})
        for parcela in overdue:
            self.lf.table("parcelas").update({"status": "vencido"}).eq("id", parcela["id"]).execute()
        for plano_id in plano_ids:
            self.lf.table("planos_pagamento").update({"status": "inadimplente", "updated_at": now_iso()}).eq(
                "id", plano_id).eq("status", "ativo").execute()
        if overdue:
            logger.warning(f"[FINANCEIRO] {len(overdue)} parcela(s) vencida(s) em {len(plano_ids)} plano(s)")
        return {"parcelas_vencidas": len(overdue), "planos_inadimplentes": len(plano_ids)}

    def payment_metrics(self) -> dict[str, Any]:
        parcelas = self.lf.table("parcelas").select("*").execute().data or []
        planos = self.lf.table("planos_pagamento").select("id, status").execute().data or []

        def total(status):
            key = "paid_amount" if status == "pago" else "amount"
            return sum(to_cents(p.get(key) or 0) for p in parcelas if p.get("status") == status) / 100

        counts = {s: sum(1 for p in parcelas if p.get("status") == s) for s in PARCELA_STATUSES}
        plano_counts = {s: sum(1 for p in planos if p.get("status") == s) for s in PLANO_STATUSES}
        relevant = len(planos) - plano_counts["cancelado"]
        return {
            "received": total("pago"),
            "pending": total("pendente"),
            "overdue": total("vencido"),
            "parcelas": counts,
            "planos": plano_counts,
            "delinquency_rate": round(plano_counts["inadimplente"] / relevant * 100, 1) if relevant else 0.0,
        }

    # ============================================================
    # LIGAÇÃO ETAPA ↔ PARCELA
    # ============================================================

    def link_stage(self, template_stage_id: str, plano_id: str, parcela_n: Optional[int] = None,
                   action: str = "activate_installment", amount=None) -> dict[str, Any]:
        if action not in STAGE_PAYMENT_ACTIONS:
            raise ValidationError("Acção de pagamento inválida", field="action", code="INVALID_ENUM")
        plano = self.get_plano(plano_id)
        if parcela_n is not None and not any(p.get("n_parcela") == parcela_n for p in plano["parcelas"]):
            if action != "create_installment":
                raise NotFoundError(f"Parcela {parcela_n} não existe no plano")
        if action == "create_installment" and not amount:
            raise ValidationError("Valor da nova parcela é obrigatório", field="amount", code="REQUIRED_FIELD")
        row = {
            "template_stage_id": template_stage_id,
            "plano_id": plano_id,
            "parcela_n": parcela_n,
            "action": action,
            "amount": round(float(amount), 2) if amount else None,
            "is_active": True,
            "created_at": now_iso(),
        }
        return first_row(self.lf.table("stage_payment_links").insert(row).execute()) or row

    def stage_links(self, template_stage_id: str) -> list[dict]:
        return self.lf.table("stage_payment_links").select("*").eq(
            "template_stage_id", template_stage_id).eq("is_active", True).execute().data or []

    def activate_installment(self, plano_id: str, parcela_n: int) -> Optional[dict]:
        """Torna exigível (vence hoje) uma parcela ainda pendente."""
        parcela = first_row(
            self.lf.table("parcelas").select("*").eq("plano_id", plano_id).eq("n_parcela", parcela_n)
            .limit(1).execute()
        )
        if not parcela or parcela.get("status") != "pendente":
            return None
        changes = {"due_date": local_today().isoformat(), "activated_at": now_iso()}
        return first_row(self.lf.table("parcelas").update(changes).eq("id", parcela["id"]).execute()) or {
            **parcela, **changes}

    def create_installment(self, plano_id: str, amount, due_date: DateLike = None) -> dict[str, Any]:
        plano = self.get_plano(plano_id)
        n = max((p.get("n_parcela") or 0 for p in plano["parcelas"]), default=0) + 1
        row = {
            "plano_id": plano_id,
            "n_parcela": n,
            "due_date": (parse_date(due_date) or local_today()).isoformat(),
            "amount": round(float(amount), 2),
            "status": "pendente",
            "paid_at": None,
            "paid_amount": None,
        }
        created = first_row(self.lf.table("parcelas").insert(row).execute()) or row
        new_total = (to_cents(plano.get("amount_total") or 0) + to_cents(row["amount"])) / 100
        self.lf.table("planos_pagamento").update({"amount_total": new_total, "installments": n}).eq(
            "id", plano_id).execute()
        return created
