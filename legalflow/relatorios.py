# -*- coding: utf-8 -*-
"""
RELATÓRIOS - Métricas agregadas e exportação PDF/DOCX
============================================================
Estrutura de um relatório exportável:
    {
        "title": str,
        "meta": [[label, valor], ...],
        "sections": [{"title": str, "rows": [[label, valor], ...]}, ...]
    }
============================================================
"""

import io
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from legalflow.db import BaseManager
from legalflow.deals import DealManager, format_currency
from legalflow.financeiro import FinanceiroManager
from legalflow.journeys.stage_types import JourneyStatus
from legalflow.tickets import TicketManager
from legalflow.utils.datas import hours_between, parse_datetime, utcnow

logger = logging.getLogger(__name__)

SEM_NICHO = "Sem nicho"
REPORT_FOOTER = "Gerado automaticamente pelo LegalFlow."


def _compliance(tickets: list[dict], due_key: str, done_keys: tuple[str, ...], now: datetime) -> Optional[float]:
    """% de prazos cumpridos entre os já decididos (cumpridos, violados ou vencidos em aberto)."""
    met = decided = 0
    for t in tickets:
        due = parse_datetime(t.get(due_key))
        if not due:
            continue
        done = next((parse_datetime(t[k]) for k in done_keys if t.get(k)), None)
        if done:
            decided += 1
            met += 1 if done <= due else 0
        elif due < now:
            decided += 1
    return round(met / decided * 100, 1) if decided else None


class RelatorioManager(BaseManager):
    """Métricas para o dashboard e relatórios."""

    def sla_metrics(self, period_days: int = 30, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utcnow()
        since = (now - timedelta(days=period_days)).isoformat()
        tickets = self.lf.table("tickets").select("*").gte("created_at", since).execute().data or []

        response_hours = []
        for t in tickets:
            created = parse_datetime(t.get("created_at"))
            first = parse_datetime(t.get("first_response_at"))
            if created and first:
                response_hours.append(hours_between(created, first))

        by_status: dict[str, int] = {}
        for t in tickets:
            by_status[t.get("status")] = by_status.get(t.get("status"), 0) + 1

        csat = TicketManager(self.sb).csat_summary(since)
        return {
            "period_days": period_days,
            "tickets": len(tickets),
            "by_status": by_status,
            "frt_compliance": _compliance(tickets, "frt_due_at", ("first_response_at",), now),
            "ttr_compliance": _compliance(tickets, "ttr_due_at", ("resolved_at", "closed_at"), now),
            "avg_first_response_hours": (
                round(sum(response_hours) / len(response_hours), 2) if response_hours else None
            ),
            "csat_average": csat["average"],
            "csat_count": csat["count"],
        }

    def journey_metrics(self) -> list[dict[str, Any]]:
        """Conclusão de jornadas por nicho de template."""
        templates = {t["id"]: t for t in self.lf.table("journey_templates").select("id, niche").execute().data or []}
        instances = self.lf.table("journey_instances").select(
            "template_id, status, progress_pct").execute().data or []

        by_niche: dict[str, dict[str, Any]] = {}
        for inst in instances:
            niche = (templates.get(inst.get("template_id")) or {}).get("niche") or SEM_NICHO
            bucket = by_niche.setdefault(niche, {"niche": niche, "instances": 0, "completed": 0, "_progress": 0.0})
            bucket["instances"] += 1
            bucket["_progress"] += float(inst.get("progress_pct") or 0)
            if inst.get("status") == JourneyStatus.CONCLUIDO.value:
                bucket["completed"] += 1

        result = []
        for bucket in by_niche.values():
            total = bucket["instances"]
            result.append({
                "niche": bucket["niche"],
                "instances": total,
                "completed": bucket["completed"],
                "completion_rate": round(bucket["completed"] / total * 100, 1) if total else 0.0,
                "avg_progress": round(bucket.pop("_progress") / total, 1) if total else 0.0,
            })
        return sorted(result, key=lambda r: r["instances"], reverse=True)

    def payment_metrics(self) -> dict[str, Any]:
        return FinanceiroManager(self.sb).payment_metrics()

    def pipeline_metrics(self) -> list[dict[str, Any]]:
        return DealManager(self.sb).pipeline_stats()

    def dashboard(self, period_days: int = 30) -> dict[str, Any]:
        return {
            "generated_at": utcnow().isoformat(),
            "sla": self.sla_metrics(period_days),
            "journeys": self.journey_metrics(),
            "payments": self.payment_metrics(),
            "pipelines": self.pipeline_metrics(),
        }


# ============================================================
# EXPORTAÇÃO
# ============================================================

def _pct(value) -> str:
    return "N/A" if value is None else f"{value:.1f}%"


def dashboard_report(dashboard: dict[str, Any]) -> dict[str, Any]:
    """Converte o dashboard no formato exportável."""
    sla = dashboard["sla"]
    payments = dashboard["payments"]
    sections = [
        {"title": "Atendimento (SLA)", "rows": [
            ["Tickets no período", sla["tickets"]],
            ["Cumprimento FRT", _pct(sla["frt_compliance"])],
            ["Cumprimento TTR", _pct(sla["ttr_compliance"])],
            ["1ª resposta média (h)", sla["avg_first_response_hours"] if sla["avg_first_response_hours"] is not None
             else "N/A"],
            ["CSAT médio", sla["csat_average"] if sla["csat_average"] is not None else "N/A"],
        ]},
        {"title": "Jornadas por nicho", "rows": [
            [j["niche"], f"{j['completed']}/{j['instances']} concluídas ({_pct(j['completion_rate'])})"]
            for j in dashboard["journeys"]
        ] or [["Sem jornadas", "-"]]},
        {"title": "Financeiro", "rows": [
            ["Recebido", format_currency(payments["received"])],
            ["Pendente", format_currency(payments["pending"])],
            ["Vencido", format_currency(payments["overdue"])],
            ["Inadimplência", _pct(payments["delinquency_rate"])],
        ]},
        {"title": "Pipelines", "rows": [
            [p["name"], f"{p['total_deals']} deals, {format_currency(p['total_value'])}, "
                        f"conversão {_pct(p['conversion_rate'])}"]
            for p in dashboard["pipelines"]
        ] or [["Sem pipelines", "-"]]},
    ]
    return {
        "title": "Relatório de Gestão - LegalFlow",
        "meta": [
            ["Gerado em", (dashboard.get("generated_at") or "")[:16].replace("T", " ")],
            ["Período (dias)", sla["period_days"]],
        ],
        "sections": sections,
    }


def _escape(text) -> str:
    return str(text).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def build_pdf(report: dict[str, Any]) -> bytes:
    """Gera PDF (reportlab) a partir de um relatório."""
    from reportlab.lib.colors import HexColor
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.lib.units import cm
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        topMargin=2 * cm, bottomMargin=2 * cm,
        leftMargin=2 * cm, rightMargin=2 * cm,
        title=report.get("title", "Relatório"),
    )
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        "LegalFlowTitle", parent=styles["Title"],
        fontSize=18, textColor=HexColor("#1a1a2e"), spaceAfter=16,
    ))
    styles.add(ParagraphStyle(
        "SectionHead", parent=styles["Heading2"],
        fontSize=13, textColor=HexColor("#16213e"), spaceBefore=14, spaceAfter=6,
    ))
    cell_style = ParagraphStyle("Cell", parent=styles["BodyText"], fontSize=9, leading=12)

    table_style = TableStyle([
        ("BACKGROUND", (0, 0), (0, -1), HexColor("#e8e8e8")),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 0.5, HexColor("#cccccc")),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ])

    def rows_table(rows):
        data = [[_escape(label), Paragraph(_escape(value), cell_style)] for label, value in rows]
        t = Table(data, colWidths=[6 * cm, 11 * cm])
        t.setStyle(table_style)
        return t

    elements = [Paragraph(_escape(report.get("title", "Relatório")), styles["LegalFlowTitle"])]
    if report.get("meta"):
        elements += [rows_table(report["meta"]), Spacer(1, 12)]
    for section in report.get("sections") or []:
        elements.append(Paragraph(_escape(section["title"]), styles["SectionHead"]))
        if section.get("rows"):
            elements.append(rows_table(section["rows"]))
    elements.append(Spacer(1, 24))
    elements.append(Paragraph(
        REPORT_FOOTER,
        ParagraphStyle("Footer", parent=styles["Normal"], fontSize=7, textColor=HexColor("#999999")),
    ))
    doc.build(elements)
    return buf.getvalue()


def build_docx(report: dict[str, Any]) -> bytes:
    """Gera DOCX (python-docx) a partir de um relatório."""
    from docx import Document
    from docx.enum.text import WD_ALIGN_PARAGRAPH
    from docx.shared import Pt, RGBColor

    doc = Document()
    style = doc.styles["Normal"]
    style.font.size = Pt(10)
    style.font.name = "Calibri"

    title = doc.add_heading(report.get("title", "Relatório"), level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    def rows_table(rows):
        table = doc.add_table(rows=len(rows), cols=2)
        table.style = "Light Grid Accent 1"
        for i, (label, value) in enumerate(rows):
            table.rows[i].cells[0].text = str(label)
            table.rows[i].cells[1].text = str(value)
            for cell in table.rows[i].cells:
                for paragraph in cell.paragraphs:
                    for run in paragraph.runs:
                        run.font.size = Pt(9)

    if report.get("meta"):
        rows_table(report["meta"])
        doc.add_paragraph("")
    for section in report.get("sections") or []:
        doc.add_heading(section["title"], level=1)
        if section.get("rows"):
            rows_table(section["rows"])

    doc.add_paragraph("")
    footer = doc.add_paragraph(REPORT_FOOTER)
    if footer.runs:
        footer.runs[0].font.size = Pt(7)
        footer.runs[0].font.color.rgb = RGBColor(0x99, 0x99, 0x99)

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()
