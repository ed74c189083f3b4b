# -*- coding: utf-8 -*-
"""
DATAS E HORÁRIOS
============================================================
Todas as datas persistidas são ISO 8601 em UTC. O fuso do
escritório (APP_TIMEZONE) só é usado para regras de calendário
(horário comercial, dias úteis, semanas da agenda).
============================================================
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from legalflow.config import APP_TIMEZONE

DateLike = Union[str, datetime, date, None]

BUSINESS_START_HOUR = 9
BUSINESS_END_HOUR = 18


def app_tz() -> ZoneInfo:
    return ZoneInfo(APP_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_today() -> date:
    """Data corrente no fuso do escritório."""
    return utcnow().astimezone(app_tz()).date()


def now_iso() -> str:
    return utcnow().isoformat()


def parse_datetime(value: DateLike) -> Optional[datetime]:
    """
    Converte str/date/datetime para datetime com fuso (UTC quando naive).

    Datas sem hora são interpretadas como meia-noite UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(value: DateLike) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def to_iso(value: DateLike) -> Optional[str]:
    dt = parse_datetime(value)
    return dt.isoformat() if dt else None


def add_months(d: date, months: int) -> date:
    """Soma meses mantendo o dia, limitado ao último dia do mês destino."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


# ============================================================
# HORÁRIO COMERCIAL
# ============================================================

def is_business_day(d: date) -> bool:
    return d.weekday() < 5


def calculate_business_hours(start: DateLike, end: DateLike) -> float:
    """
    Horas úteis (09h-18h, seg-sex, fuso do escritório) entre duas datas.
    """
    start_dt = parse_datetime(start)
    end_dt = parse_datetime(end)
    if not start_dt or not end_dt or end_dt <= start_dt:
        return 0.0

    tz = app_tz()
    start_local = start_dt.astimezone(tz)
    end_local = end_dt.astimezone(tz)

    total = 0.0
    day = start_local.date()
    while day <= end_local.date():
        if is_business_day(day):
            open_at = datetime.combine(day, time(BUSINESS_START_HOUR), tzinfo=tz)
            close_at = datetime.combine(day, time(BUSINESS_END_HOUR), tzinfo=tz)
            window_start = max(open_at, start_local)
            window_end = min(close_at, end_local)
            if window_end > window_start:
                total += hours_between(window_start, window_end)
        day += timedelta(days=1)
    return round(total, 2)


def next_business_day(value: DateLike) -> date:
    """Próximo dia útil estritamente posterior à data dada."""
    d = parse_date(value) or utcnow().date()
    d += timedelta(days=1)
    while not is_business_day(d):
        d += timedelta(days=1)
    return d


# ============================================================
# FORMATAÇÃO
# ============================================================

def format_duration(minutes: Union[int, float, None]) -> str:
    """90 → '1h 30min', 45 → '45min', 120 → '2h'."""
    if not minutes or minutes <= 0:
        return "0min"
    minutes = int(round(minutes))
    hours, mins = divmod(minutes, 60)
    if hours and mins:
        return f"{hours}h {mins}min"
    if hours:
        return f"{hours}h"
    return f"{mins}min"
