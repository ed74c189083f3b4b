# -*- coding: utf-8 -*-
"""
DEALS - Pipelines de vendas e oportunidades
============================================================
pipelines         funis (code único; um is_default)
pipeline_stages   colunas do kanban (position, probability, is_won/is_lost)
deals             oportunidades (open | won | lost)

Taxa de conversão = won / (won + lost) × 100 (deals em aberto
não contam).
============================================================
"""

import logging
from datetime import date
from typing import Any, Iterable, Optional

from legalflow.config import DEFAULT_CURRENCY
from legalflow.db import BaseManager, first_row
from legalflow.errors import ConflictError, NotFoundError, TransitionError, ValidationError
from legalflow.utils.datas import app_tz, now_iso, parse_date, parse_datetime, utcnow
from legalflow.utils.documentos import only_digits

logger = logging.getLogger(__name__)

DEAL_STATUSES = ("open", "won", "lost")
DEAL_FIELDS = {"title", "value", "currency", "probability", "stage_id", "cliente_cpfcnpj", "lead_id",
               "owner_oab", "expected_close_date", "tags", "notes", "stripe_subscription_id"}
PIPELINE_FIELDS = {"name", "code", "description", "is_default"}
STAGE_FIELDS = {"name", "position", "probability", "color", "is_won", "is_lost"}

DEFAULT_STAGE_COLOR = "#3B82F6"
DEFAULT_PIPELINE_STAGES = (
    {"name": "Prospecção", "probability": 10, "color": "#94A3B8"},
    {"name": "Qualificação", "probability": 25, "color": "#3B82F6"},
    {"name": "Proposta", "probability": 50, "color": "#8B5CF6"},
    {"name": "Negociação", "probability": 75, "color": "#F59E0B"},
    {"name": "Ganho", "probability": 100, "color": "#10B981", "is_won": True},
    {"name": "Perdido", "probability": 0, "color": "#EF4444", "is_lost": True},
)
SORTABLE_FIELDS = {"value", "probability", "expected_close_date", "created_at", "updated_at", "title"}


# ============================================================
# FUNÇÕES PURAS
# ============================================================

def format_currency(value, currency: str = DEFAULT_CURRENCY) -> str:
    """
    >>> format_currency(1234.56)
    'R$ 1.234,56'
    """
    amount = float(value or 0)
    text = f"{abs(amount):,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    symbol = "R$" if currency == "BRL" else currency
    return f"{'-' if amount < 0 else ''}{symbol} {text}"


def calculate_weighted_value(deal: dict) -> float:
    return float(deal.get("value") or 0) * float(deal.get("probability") or 0) / 100


def is_deal_overdue(deal: dict, today: Optional[date] = None) -> bool:
    close = parse_date(deal.get("expected_close_date"))
    today = today or utcnow().astimezone(app_tz()).date()
    return deal.get("status") == "open" and bool(close) and close < today


def calculate_deal_stats(deals: list[dict]) -> dict[str, Any]:
    stats: dict[str, Any] = {
        "total_deals": len(deals),
        "open_deals": 0,
        "won_deals": 0,
        "lost_deals": 0,
        "total_value": 0.0,
        "won_value": 0.0,
        "weighted_value": 0.0,
        "conversion_rate": 0.0,
        "avg_deal_value": 0.0,
        "stage_breakdown": {},
    }
    for deal in deals:
        value = float(deal.get("value") or 0)
        status = deal.get("status") or "open"
        stats["total_value"] += value
        stats[f"{status}_deals"] = stats.get(f"{status}_deals", 0) + 1
        if status == "won":
            stats["won_value"] += value
        if status == "open":
            stats["weighted_value"] += calculate_weighted_value(deal)
        bucket = stats["stage_breakdown"].setdefault(deal.get("stage_id"), {"count": 0, "value": 0.0})
        bucket["count"] += 1
        bucket["value"] += value

    closed = stats["won_deals"] + stats["lost_deals"]
    if closed:
        stats["conversion_rate"] = round(stats["won_deals"] / closed * 100, 1)
    if deals:
        stats["avg_deal_value"] = round(stats["total_value"] / len(deals), 2)
    stats["total_value"] = round(stats["total_value"], 2)
    stats["won_value"] = round(stats["won_value"], 2)
    stats["weighted_value"] = round(stats["weighted_value"], 2)
    return stats


def filter_deals(
    deals: Iterable[dict],
    search: Optional[str] = None,
    stage_id: Optional[str] = None,
    pipeline_id: Optional[str] = None,
    owner_oab: Optional[str] = None,
    status: Optional[str] = None,
    value_min: Optional[float] = None,
    value_max: Optional[float] = None,
    expected_close_from=None,
    expected_close_to=None,
    tags: Optional[list[str]] = None,
) -> list[dict]:
    term = (search or "").strip().lower()
    close_from = parse_date(expected_close_from)
    close_to = parse_date(expected_close_to)
    result = []
    for deal in deals:
        value = float(deal.get("value") or 0)
        deal_tags = deal.get("tags") or []
        if term:
            haystack = [deal.get("title") or "", deal.get("notes") or ""] + list(deal_tags)
            if not any(term in str(h).lower() for h in haystack):
                continue
        if stage_id and deal.get("stage_id") != stage_id:
            continue
        if pipeline_id and deal.get("pipeline_id") != pipeline_id:
            continue
        if owner_oab and deal.get("owner_oab") != owner_oab:
            continue
        if status and deal.get("status") != status:
            continue
        if value_min is not None and value < value_min:
            continue
        if value_max is not None and value > value_max:
            continue
        close = parse_date(deal.get("expected_close_date"))
        if close_from and (not close or close < close_from):
            continue
        if close_to and (not close or close > close_to):
            continue
        if tags and not any(t in deal_tags for t in tags):
            continue
        result.append(deal)
    return result


def sort_deals(deals: Iterable[dict], sort_by: str = "created_at", descending: bool = True) -> list[dict]:
    deals = list(deals)
    if sort_by not in SORTABLE_FIELDS:
        return deals

    def key(deal):
        value = deal.get(sort_by)
        if sort_by in ("value", "probability"):
            return float(value or 0)
        if sort_by == "title":
            return str(value or "").lower()
        dt = parse_datetime(value)
        return dt.timestamp() if dt else 0.0

    return sorted(deals, key=key, reverse=descending)


def group_deals_by_stage(deals: Iterable[dict], stages: list[dict]) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = {s["id"]: [] for s in stages}
    for deal in deals:
        if deal.get("stage_id") in grouped:
            grouped[deal["stage_id"]].append(deal)
    return grouped


def _validate_probability(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
        raise ValidationError("Probabilidade deve estar entre 0 e 100", field="probability",
                              code="INVALID_FORMAT")
    return int(value)


# ============================================================
# MANAGER
# ============================================================

class DealManager(BaseManager):
    """Pipelines, etapas e deals."""

    # --- Pipelines -------------------------------------------------

    def list_pipelines(self) -> list[dict]:
        return self.lf.table("pipelines").select("*").order("created_at").execute().data or []

    def get_pipeline(self, pipeline_id: str) -> dict[str, Any]:
        pipeline = first_row(self.lf.table("pipelines").select("*").eq("id", pipeline_id).limit(1).execute())
        if not pipeline:
            raise NotFoundError("Pipeline não encontrado")
        pipeline["stages"] = self.stages(pipeline_id)
        return pipeline

    def get_pipeline_by_code(self, code: str) -> Optional[dict[str, Any]]:
        return first_row(self.lf.table("pipelines").select("*").eq("code", code).limit(1).execute())

    def create_pipeline(self, data: dict[str, Any]) -> dict[str, Any]:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Nome do pipeline é obrigatório", field="name", code="REQUIRED_FIELD")
        code = (data.get("code") or name).strip().lower().replace(" ", "_")
        if self.get_pipeline_by_code(code):
            raise ConflictError(f"Pipeline '{code}' já existe")
        row = {k: v for k, v in data.items() if k in PIPELINE_FIELDS}
        row.update({"name": name, "code": code, "is_default": bool(data.get("is_default")),
                    "created_at": now_iso()})
        if row["is_default"]:
            self.lf.table("pipelines").update({"is_default": False}).eq("is_default", True).execute()
        return first_row(self.lf.table("pipelines").insert(row).execute()) or row

    def update_pipeline(self, pipeline_id: str, data: dict[str, Any]) -> dict[str, Any]:
        pipeline = self.get_pipeline(pipeline_id)
        changes = {k: v for k, v in data.items() if k in PIPELINE_FIELDS and k != "code"}
        if changes.get("is_default"):
            self.lf.table("pipelines").update({"is_default": False}).eq("is_default", True).execute()
        changes["updated_at"] = now_iso()
        return first_row(self.lf.table("pipelines").update(changes).eq("id", pipeline_id).execute()) or {
            **pipeline, **changes}

    def delete_pipeline(self, pipeline_id: str) -> None:
        self.get_pipeline(pipeline_id)
        deals = self.lf.table("deals").select("id").eq("pipeline_id", pipeline_id).limit(1).execute()
        if deals.data:
            raise ConflictError("Pipeline possui deals")
        self.lf.table("pipeline_stages").delete().eq("pipeline_id", pipeline_id).execute()
        self.lf.table("pipelines").delete().eq("id", pipeline_id).execute()

    def create_default_pipeline(self, name: str = "Vendas", code: str = "sales") -> dict[str, Any]:
        existing = self.get_pipeline_by_code(code)
        if existing:
            return self.get_pipeline(existing["id"])
        pipeline = self.create_pipeline({"name": name, "code": code, "is_default": True})
        for stage in DEFAULT_PIPELINE_STAGES:
            self.add_stage(pipeline["id"], dict(stage))
        logger.info(f"[DEALS] Pipeline padrão criado: {code} ({len(DEFAULT_PIPELINE_STAGES)} etapas)")
        return self.get_pipeline(pipeline["id"])

    # --- Etapas ----------------------------------------------------

    def stages(self, pipeline_id: str) -> list[dict]:
        return self.lf.table("pipeline_stages").select("*").eq(
            "pipeline_id", pipeline_id).order("position").execute().data or []

    def get_stage(self, stage_id: str) -> dict[str, Any]:
        stage = first_row(self.lf.table("pipeline_stages").select("*").eq("id", stage_id).limit(1).execute())
        if not stage:
            raise NotFoundError("Etapa do pipeline não encontrada")
        return stage

    def add_stage(self, pipeline_id: str, data: dict[str, Any]) -> dict[str, Any]:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Nome da etapa é obrigatório", field="name", code="REQUIRED_FIELD")
        if data.get("is_won") and data.get("is_lost"):
            raise ValidationError("Etapa não pode ser ganho e perdido", field="is_won")
        existing = self.stages(pipeline_id)
        row = {k: v for k, v in data.items() if k in STAGE_FIELDS}
        row.update({
            "pipeline_id": pipeline_id,
            "name": name,
            "position": data.get("position") or len(existing) + 1,
            "probability": _validate_probability(data.get("probability", 0)),
            "color": data.get("color") or DEFAULT_STAGE_COLOR,
            "is_won": bool(data.get("is_won")),
            "is_lost": bool(data.get("is_lost")),
            "created_at": now_iso(),
        })
        return first_row(self.lf.table("pipeline_stages").insert(row).execute()) or row

    def update_stage(self, stage_id: str, data: dict[str, Any]) -> dict[str, Any]:
        stage = self.get_stage(stage_id)
        changes = {k: v for k, v in data.items() if k in STAGE_FIELDS}
        if "probability" in changes:
            changes["probability"] = _validate_probability(changes["probability"])
        merged = {**stage, **changes}
        if merged.get("is_won") and merged.get("is_lost"):
            raise ValidationError("Etapa não pode ser ganho e perdido", field="is_won")
        return first_row(self.lf.table("pipeline_stages").update(changes).eq("id", stage_id).execute()) or merged

    def delete_stage(self, stage_id: str) -> None:
        self.get_stage(stage_id)
        deals = self.lf.table("deals").select("id").eq("stage_id", stage_id).limit(1).execute()
        if deals.data:
            raise ConflictError("Etapa possui deals")
        self.lf.table("pipeline_stages").delete().eq("id", stage_id).execute()

    # --- Deals -----------------------------------------------------

    def list_deals(self, pipeline_id: Optional[str] = None, **filters) -> list[dict]:
        q = self.lf.table("deals").select("*")
        if pipeline_id:
            q = q.eq("pipeline_id", pipeline_id)
        sort_by = filters.pop("sort_by", "created_at")
        descending = filters.pop("descending", True)
        return sort_deals(filter_deals(q.execute().data or [], **filters), sort_by, descending)

    def kanban(self, pipeline_id: str) -> dict[str, Any]:
        pipeline = self.get_pipeline(pipeline_id)
        deals = self.list_deals(pipeline_id, status="open")
        return {
            "pipeline": pipeline,
            "columns": group_deals_by_stage(deals, pipeline["stages"]),
            "stats": calculate_deal_stats(self.list_deals(pipeline_id)),
        }

    def get_deal(self, deal_id: str) -> dict[str, Any]:
        deal = first_row(self.lf.table("deals").select("*").eq("id", deal_id).limit(1).execute())
        if not deal:
            raise NotFoundError("Deal não encontrado")
        return deal

    def create_deal(self, data: dict[str, Any], created_by: Optional[str] = None) -> dict[str, Any]:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("Título é obrigatório", field="title", code="REQUIRED_FIELD")
        if not data.get("stage_id"):
            raise ValidationError("Etapa é obrigatória", field="stage_id", code="REQUIRED_FIELD")
        stage = self.get_stage(data["stage_id"])
        try:
            value = round(float(data.get("value") or 0), 2)
        except (TypeError, ValueError):
            raise ValidationError("Valor inválido", field="value")
        if value < 0:
            raise ValidationError("Valor não pode ser negativo", field="value")

        row = {k: v for k, v in data.items() if k in DEAL_FIELDS}
        row.update({
            "title": title[:255],
            "value": value,
            "currency": data.get("currency") or DEFAULT_CURRENCY,
            "probability": _validate_probability(
                data["probability"] if data.get("probability") is not None else stage.get("probability", 0)
            ),
            "pipeline_id": stage["pipeline_id"],
            "status": "won" if stage.get("is_won") else "lost" if stage.get("is_lost") else "open",
            "tags": data.get("tags") or [],
            "notes": data.get("notes") or "",
            "created_by": created_by,
            "created_at": now_iso(),
        })
        if row.get("cliente_cpfcnpj"):
            row["cliente_cpfcnpj"] = only_digits(row["cliente_cpfcnpj"])
        deal = first_row(self.lf.table("deals").insert(row).execute()) or row
        logger.info(f"[DEALS] Deal criado: '{title[:40]}' {format_currency(value)} em '{stage['name']}'")
        return deal

    def update_deal(self, deal_id: str, data: dict[str, Any]) -> dict[str, Any]:
        deal = self.get_deal(deal_id)
        changes = {k: v for k, v in data.items() if k in DEAL_FIELDS and k != "stage_id"}
        if "probability" in changes:
            changes["probability"] = _validate_probability(changes["probability"])
        if "value" in changes:
            changes["value"] = round(float(changes["value"] or 0), 2)
        changes["updated_at"] = now_iso()
        return first_row(self.lf.table("deals").update(changes).eq("id", deal_id).execute()) or {
            **deal, **changes}

    def delete_deal(self, deal_id: str) -> None:
        self.get_deal(deal_id)
        self.lf.table("deals").delete().eq("id", deal_id).execute()

    def move_deal(self, deal_id: str, stage_id: str) -> dict[str, Any]:
        """
        Raises:
            ValidationError: etapa de outro pipeline
        """
        deal = self.get_deal(deal_id)
        stage = self.get_stage(stage_id)
        if stage["pipeline_id"] != deal.get("pipeline_id"):
            raise ValidationError("Etapa pertence a outro pipeline", field="stage_id")

        now = now_iso()
        changes: dict[str, Any] = {
            "stage_id": stage_id,
            "probability": stage.get("probability", 0),
            "updated_at": now,
        }
        if stage.get("is_won"):
            changes.update({"status": "won", "won_at": now, "lost_at": None, "lost_reason": None})
        elif stage.get("is_lost"):
            changes.update({"status": "lost", "lost_at": now, "won_at": None})
        else:
            changes.update({"status": "open", "won_at": None, "lost_at": None})
        logger.info(f"[DEALS] Deal {deal_id} → '{stage['name']}' ({changes['status']})")
        return first_row(self.lf.table("deals").update(changes).eq("id", deal_id).execute()) or {
            **deal, **changes}

    def _flag_stage(self, pipeline_id: str, flag: str) -> Optional[dict]:
        return next((s for s in self.stages(pipeline_id) if s.get(flag)), None)

    def mark_won(self, deal_id: str) -> dict[str, Any]:
        deal = self.get_deal(deal_id)
        if deal.get("status") == "won":
            raise TransitionError("won", "won", "deal")
        stage = self._flag_stage(deal["pipeline_id"], "is_won")
        if stage:
            return self.move_deal(deal_id, stage["id"])
        now = now_iso()
        changes = {"status": "won", "won_at": now, "probability": 100, "updated_at": now}
        return first_row(self.lf.table("deals").update(changes).eq("id", deal_id).execute()) or {
            **deal, **changes}

    def mark_lost(self, deal_id: str, reason: str) -> dict[str, Any]:
        if not reason or not reason.strip():
            raise ValidationError("Motivo da perda é obrigatório", field="reason", code="REQUIRED_FIELD")
        deal = self.get_deal(deal_id)
        if deal.get("status") == "lost":
            raise TransitionError("lost", "lost", "deal")
        stage = self._flag_stage(deal["pipeline_id"], "is_lost")
        if stage:
            self.move_deal(deal_id, stage["id"])
        now = now_iso()
        changes = {"status": "lost", "lost_at": now, "lost_reason": reason.strip(), "probability": 0,
                   "updated_at": now}
        return first_row(self.lf.table("deals").update(changes).eq("id", deal_id).execute()) or {
            **deal, **changes}

    def pipeline_stats(self) -> list[dict[str, Any]]:
        return [
            {"pipeline_id": p["id"], "name": p["name"], "code": p.get("code"),
             **calculate_deal_stats(self.list_deals(p["id"]))}
            for p in self.list_pipelines()
        ]
