# -*- coding: utf-8 -*-
"""
AGENDA - Audiências, reuniões, prazos
============================================================
Sobreposição: a.start < b.end and b.start < a.end
Eventos sem ends_at duram 1 hora.
============================================================
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Optional

from legalflow.db import BaseManager, first_row
from legalflow.errors import ConflictError, NotFoundError, ValidationError
from legalflow.utils.datas import app_tz, format_duration, now_iso, parse_date, parse_datetime, utcnow
from legalflow.utils.documentos import only_digits

logger = logging.getLogger(__name__)

EVENT_TYPES = ("audiencia", "reuniao", "prazo", "entrega", "compromisso", "outros")
DEFAULT_EVENT_DURATION = timedelta(hours=1)

VIDEO_PLATFORMS = {
    "meet": ("meet.google.com",),
    "zoom": ("zoom.us", "zoom.com"),
    "teams": ("teams.microsoft.com", "teams.live.com"),
    "whereby": ("whereby.com",),
}

EDITABLE_FIELDS = {"title", "description", "event_type", "starts_at", "ends_at", "location", "video_url",
                   "numero_cnj", "cliente_cpfcnpj", "stage_instance_id", "owner_oab"}


def event_bounds(event: dict) -> tuple[datetime, datetime]:
    start = parse_datetime(event.get("starts_at"))
    end = parse_datetime(event.get("ends_at")) or start + DEFAULT_EVENT_DURATION
    return start, end


def events_overlap(a: dict, b: dict) -> bool:
    a_start, a_end = event_bounds(a)
    b_start, b_end = event_bounds(b)
    return a_start < b_end and b_start < a_end


def check_conflicts(event: dict, existing: Iterable[dict]) -> list[dict]:
    """Eventos de `existing` (excepto o próprio) que se sobrepõem a `event`."""
    return [
        other for other in existing
        if other.get("id") != event.get("id") and events_overlap(event, other)
    ]


def event_duration(event: dict) -> int:
    """Duração em minutos."""
    start, end = event_bounds(event)
    return int((end - start).total_seconds() // 60)


def detect_video_platform(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    lowered = url.lower()
    for platform, hosts in VIDEO_PLATFORMS.items():
        if any(host in lowered for host in hosts):
            return platform
    return None


def _ics_escape(text: Optional[str]) -> str:
    return (
        (text or "")
        .replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _ics_time(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def to_ics(events: Iterable[dict], calendar_name: str = "LegalFlow") -> str:
    """Exporta eventos como iCalendar (RFC 5545)."""
    stamp = _ics_time(utcnow())
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//LegalFlow//Agenda//PT",
        "CALSCALE:GREGORIAN",
        f"X-WR-CALNAME:{_ics_escape(calendar_name)}",
    ]
    for event in events:
        start, end = event_bounds(event)
        lines += [
            "BEGIN:VEVENT",
            f"UID:{event.get('id')}@legalflow",
            f"DTSTAMP:{stamp}",
            f"DTSTART:{_ics_time(start)}",
            f"DTEND:{_ics_time(end)}",
            f"SUMMARY:{_ics_escape(event.get('title'))}",
        ]
        if event.get("description"):
            lines.append(f"DESCRIPTION:{_ics_escape(event['description'])}")
        location = event.get("location") or event.get("video_url")
        if location:
            lines.append(f"LOCATION:{_ics_escape(location)}")
        if event.get("event_type"):
            lines.append(f"CATEGORIES:{event['event_type'].upper()}")
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def _validate(data: dict[str, Any], partial: bool = False) -> None:
    errors = []
    if not partial and not (data.get("title") or "").strip():
        errors.append({"field": "title", "message": "Título é obrigatório", "code": "REQUIRED_FIELD"})
    if not partial and not data.get("starts_at"):
        errors.append({"field": "starts_at", "message": "Início é obrigatório", "code": "REQUIRED_FIELD"})
    if "event_type" in data and data["event_type"] not in EVENT_TYPES:
        errors.append({"field": "event_type", "message": "Tipo de evento inválido", "code": "INVALID_ENUM"})
    for field in ("starts_at", "ends_at"):
        if data.get(field):
            try:
                parse_datetime(data[field])
            except ValueError:
                errors.append({"field": field, "message": "Data inválida", "code": "INVALID_FORMAT"})
    if errors:
        raise ValidationError("Dados do evento inválidos", errors=errors)
    if data.get("starts_at") and data.get("ends_at"):
        if parse_datetime(data["ends_at"]) <= parse_datetime(data["starts_at"]):
            raise ValidationError("Fim deve ser posterior ao início", field="ends_at")


class AgendaManager(BaseManager):
    """Eventos da agenda do escritório."""

    def get(self, event_id: str) -> dict[str, Any]:
        event = first_row(self.lf.table("eventos_agenda").select("*").eq("id", event_id).limit(1).execute())
        if not event:
            raise NotFoundError("Evento não encontrado")
        return event

    def list_range(self, start: datetime, end: datetime, owner_oab: Optional[str] = None,
                   event_type: Optional[str] = None) -> list[dict]:
        q = self.lf.table("eventos_agenda").select("*").gte(
            "starts_at", start.isoformat()).lt("starts_at", end.isoformat())
        if owner_oab:
            q = q.eq("owner_oab", owner_oab)
        if event_type:
            q = q.eq("event_type", event_type)
        return q.order("starts_at").execute().data or []

    def _local_day_start(self, d: date) -> datetime:
        return datetime.combine(d, time.min, tzinfo=app_tz())

    def week(self, day=None, owner_oab: Optional[str] = None) -> dict[str, Any]:
        """Semana de segunda a domingo que contém `day`."""
        try:
            d = parse_date(day) or utcnow().astimezone(app_tz()).date()
        except ValueError:
            raise ValidationError("Data inválida (use AAAA-MM-DD)", field="day", code="INVALID_FORMAT")
        monday = d - timedelta(days=d.weekday())
        start = self._local_day_start(monday)
        end = start + timedelta(days=7)
        return {
            "start": monday.isoformat(),
            "end": (monday + timedelta(days=6)).isoformat(),
            "events": self.list_range(start, end, owner_oab),
        }

    def month(self, year: int, month: int, owner_oab: Optional[str] = None) -> dict[str, Any]:
        if not 1 <= month <= 12:
            raise ValidationError("Mês inválido", field="month", code="INVALID_FORMAT")
        first = date(year, month, 1)
        following = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        return {
            "year": year,
            "month": month,
            "events": self.list_range(self._local_day_start(first), self._local_day_start(following), owner_oab),
        }

    def upcoming(self, days: int = 7, owner_oab: Optional[str] = None) -> list[dict]:
        now = utcnow()
        return self.list_range(now, now + timedelta(days=days), owner_oab)

    def _owner_events_around(self, event: dict) -> list[dict]:
        start, end = event_bounds(event)
        q = self.lf.table("eventos_agenda").select("*").lt("starts_at", end.isoformat()).gte(
            "starts_at", (start - timedelta(days=1)).isoformat())
        if event.get("owner_oab"):
            q = q.eq("owner_oab", event["owner_oab"])
        else:
            q = q.is_("owner_oab", "null")
        return q.execute().data or []

    def create_event(self, data: dict[str, Any], allow_conflicts: bool = False) -> dict[str, Any]:
        data = {"event_type": "compromisso", **data}
        _validate(data)
        row = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        row["title"] = row["title"].strip()[:255]
        row["starts_at"] = parse_datetime(row["starts_at"]).isoformat()
        row["ends_at"] = event_bounds(row)[1].isoformat()
        if row.get("cliente_cpfcnpj"):
            row["cliente_cpfcnpj"] = only_digits(row["cliente_cpfcnpj"])
        row["created_at"] = now_iso()

        if not allow_conflicts:
            conflicts = check_conflicts(row, self._owner_events_around(row))
            if conflicts:
                raise ConflictError(
                    "Conflito de agenda",
                    detail=f"{len(conflicts)} evento(s) sobrepostos",
                    conflicts=conflicts,
                )
        created = first_row(self.lf.table("eventos_agenda").insert(row).execute()) or row
        logger.info(f"[AGENDA] Evento criado: {row['event_type']} '{row['title'][:40]}' em {row['starts_at']}")
        return created

    def update_event(self, event_id: str, data: dict[str, Any], allow_conflicts: bool = False) -> dict[str, Any]:
        event = self.get(event_id)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        _validate({**event, **changes}, partial=True)
        merged = {**event, **changes}
        if not allow_conflicts and ("starts_at" in changes or "ends_at" in changes):
            conflicts = check_conflicts(merged, self._owner_events_around(merged))
            if conflicts:
                raise ConflictError("Conflito de agenda", conflicts=conflicts)
        changes["updated_at"] = now_iso()
        return first_row(self.lf.table("eventos_agenda").update(changes).eq("id", event_id).execute()) or {
            **merged, **changes}

    def delete_event(self, event_id: str) -> None:
        self.get(event_id)
        self.lf.table("eventos_agenda").delete().eq("id", event_id).execute()

    def describe(self, event: dict) -> dict[str, Any]:
        return {
            **event,
            "duration_minutes": event_duration(event),
            "duration_label": format_duration(event_duration(event)),
            "video_platform": detect_video_platform(event.get("video_url")),
        }
