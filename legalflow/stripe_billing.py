# -*- coding: utf-8 -*-
"""
STRIPE - Webhook, espelho local e ciclo de vida das subscrições
============================================================
O webhook grava cada evento uma única vez (RPC stripe_record_event)
e delega o upsert nas RPCs stripe_upsert_* do Postgres.

Subscrição active            → deals ligados vão para "Ganho" (pipeline sales)
Subscrição canceled/past_due/unpaid → deals ligados vão para "Perdido"
============================================================
"""

import json
import logging
import os
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
from supabase import Client

from legalflow.db import BaseManager
from legalflow.deals import DealManager
from legalflow.errors import ValidationError
from legalflow.utils.datas import parse_datetime, utcnow

logger = logging.getLogger(__name__)

# Ordem importa: customer.subscription.* antes de customer.*
EVENT_HANDLERS = (
    ("customer.subscription.", "stripe_upsert_subscription"),
    ("customer.", "stripe_upsert_customer"),
    ("product.", "stripe_upsert_product"),
    ("price.", "stripe_upsert_price"),
    ("invoice.", "stripe_upsert_invoice"),
    ("payment_intent.", "stripe_upsert_payment_intent"),
    ("checkout.session.", "stripe_upsert_checkout_session"),
)
# Só registados no log; não há espelho local para estes
LOG_ONLY_EVENTS = ("customer.subscription.trial_will_end", "invoice.upcoming")
WON_SUBSCRIPTION_STATUSES = {"active"}
LOST_SUBSCRIPTION_STATUSES = {"canceled", "past_due", "unpaid"}
PAST_DUE_INVOICE_STATUSES = ("open", "uncollectible")
SALES_PIPELINE_CODE = "sales"


def rpc_for_event(event_type: str) -> Optional[str]:
    if event_type in LOG_ONLY_EVENTS:
        return None
    for prefix, rpc in EVENT_HANDLERS:
        if event_type.startswith(prefix):
            return rpc
    return None


def _stripe_time(value) -> Optional[datetime]:
    """Stripe usa epoch em segundos; o espelho local pode guardar ISO."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return parse_datetime(value)


class StripeBillingManager(BaseManager):
    """
    Args:
        supabase_client: Cliente Supabase (service_role)
        api_key: STRIPE_SECRET_KEY (default: env)
        webhook_secret: STRIPE_WEBHOOK_SECRET (default: env)
    """

    def __init__(self, supabase_client: Client, api_key: Optional[str] = None,
                 webhook_secret: Optional[str] = None):
        super().__init__(supabase_client)
        self.api_key = api_key if api_key is not None else os.getenv("STRIPE_SECRET_KEY", "")
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else os.getenv("STRIPE_WEBHOOK_SECRET", "")
        )

    # ============================================================
    # WEBHOOK
    # ============================================================

    def parse_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """
        Raises:
            ValidationError: assinatura inválida ou payload não-JSON
        """
        if self.webhook_secret:
            try:
                stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
            except stripe.SignatureVerificationError:
                logger.warning("[STRIPE] Assinatura de webhook inválida")
                raise ValidationError("Assinatura Stripe inválida", field="stripe-signature")
            except ValueError:
                raise ValidationError("Payload Stripe inválido", field="body")
        else:
            logger.warning("[STRIPE] STRIPE_WEBHOOK_SECRET não configurado: assinatura não verificada")
        try:
            event = json.loads(payload)
        except (TypeError, ValueError):
            raise ValidationError("Payload Stripe inválido", field="body")
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise ValidationError("Evento Stripe sem id/type", field="body")
        return event

    def handle_event(self, event: dict[str, Any]) -> dict[str, Any]:
        event_id = event["id"]
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}
        response = {"received": True, "processed": False, "event_type": event_type,
                    "event_id": event_id, "error": None}

        is_new = self.sb.rpc("stripe_record_event", {"p_event": event}).execute().data
        if is_new is False:
            logger.info(f"[STRIPE] Evento repetido ignorado: {event_id} ({event_type})")
            return response

        ok, error = True, None
        try:
            rpc = rpc_for_event(event_type)
            if rpc:
                self.sb.rpc(rpc, {"p": obj}).execute()
            elif event_type in LOG_ONLY_EVENTS:
                logger.info(f"[STRIPE] {event_type}: {obj.get('id')} (cliente {obj.get('customer')})")
            if rpc == "stripe_upsert_subscription":
                self.apply_subscription_lifecycle(obj)
        except Exception as e:
            ok, error = False, str(e)
            logger.error(f"[STRIPE] Falha ao processar {event_id} ({event_type}): {e}")

        self.sb.rpc("stripe_mark_event_processed", {
            "p_event_id": event_id, "p_ok": ok, "p_error": error,
        }).execute()
        response.update({"processed": ok, "error": error})
        return response

    def apply_subscription_lifecycle(self, subscription: dict[str, Any]) -> int:
        """
        Move os deals ligados à subscrição para ganho/perdido. Devolve quantos moveu.

        Falhas aqui ficam no log: o upsert da subscrição já foi gravado.
        """
        try:
            return self._move_subscription_deals(subscription)
        except Exception as e:
            logger.error(f"[STRIPE] Ciclo de vida da subscrição {subscription.get('id')} falhou: {e}")
            return 0

    def _move_subscription_deals(self, subscription: dict[str, Any]) -> int:
        status = subscription.get("status")
        if status in WON_SUBSCRIPTION_STATUSES:
            flag = "is_won"
        elif status in LOST_SUBSCRIPTION_STATUSES:
            flag = "is_lost"
        else:
            return 0

        deals = DealManager(self.sb)
        pipeline = deals.get_pipeline_by_code(SALES_PIPELINE_CODE)
        if not pipeline:
            logger.warning(f"[STRIPE] Pipeline '{SALES_PIPELINE_CODE}' inexistente; ciclo de vida ignorado")
            return 0
        target = next((s for s in deals.stages(pipeline["id"]) if s.get(flag)), None)
        if not target:
            return 0

        linked = self.lf.table("deals").select("*").eq(
            "stripe_subscription_id", subscription.get("id")).eq("pipeline_id", pipeline["id"]).execute().data or []
        moved = 0
        for deal in linked:
            if deal.get("stage_id") == target["id"]:
                continue
            deals.move_deal(deal["id"], target["id"])
            moved += 1
        if moved:
            logger.info(f"[STRIPE] Subscrição {subscription.get('id')} ({status}): {moved} deal(s) → "
                        f"'{target['name']}'")
        return moved

    # ============================================================
    # CONSULTAS
    # ============================================================

    def customers(self) -> list[dict]:
        return self.sb.table("stripe_customers").select("*").order("created_at", desc=True).execute().data or []

    def subscriptions(self, status: Optional[str] = None) -> list[dict]:
        q = self.sb.table("stripe_subscriptions").select("*")
        if status:
            q = q.eq("status", status)
        return q.order("created_at", desc=True).execute().data or []

    def invoices(self, status: Optional[str] = None, customer: Optional[str] = None) -> list[dict]:
        q = self.sb.table("stripe_invoices").select("*")
        if status:
            q = q.eq("status", status)
        if customer:
            q = q.eq("customer", customer)
        return q.order("created_at", desc=True).execute().data or []

    def past_due_summary(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utcnow()
        invoices = self.sb.table("stripe_invoices").select("*").in_(
            "status", list(PAST_DUE_INVOICE_STATUSES)).execute().data or []

        by_customer: dict[str, dict[str, Any]] = defaultdict(lambda: {"invoices": 0, "amount_due": 0.0})
        total = 0.0
        count = 0
        for inv in invoices:
            due = _stripe_time(inv.get("due_date"))
            if not due or due >= now:
                continue
            amount = int(inv.get("amount_due") or 0) / 100
            bucket = by_customer[inv.get("customer") or "desconhecido"]
            bucket["invoices"] += 1
            bucket["amount_due"] = round(bucket["amount_due"] + amount, 2)
            total += amount
            count += 1

        customers = sorted(
            ({"customer": c, **data} for c, data in by_customer.items()),
            key=lambda c: c["amount_due"], reverse=True,
        )
        return {"invoices": count, "amount_due": round(total, 2), "customers": customers}

    def test_connection(self) -> dict[str, Any]:
        if not self.api_key:
            return {"ok": False, "error": "STRIPE_SECRET_KEY não configurado"}
        try:
            balance = stripe.Balance.retrieve(api_key=self.api_key)
            return {"ok": True, "livemode": bool(getattr(balance, "livemode", False))}
        except stripe.StripeError as e:
            logger.error(f"[STRIPE] Teste de ligação falhou: {e}")
            return {"ok": False, "error": str(e)}
