# -*- coding: utf-8 -*-
"""
AGENDA
=======================================
"""

import pytest

from legalflow.agenda import (
    AgendaManager,
    check_conflicts,
    detect_video_platform,
    event_duration,
    events_overlap,
    to_ics,
)
from legalflow.errors import ConflictError, NotFoundError, ValidationError


def _event(start, end=None, **extra):
    return {"starts_at": start, "ends_at": end, **extra}


class TestOverlap:
    """Tests for the overlap and conflict helpers."""

    def test_touching_events_do_not_overlap(self):
        a = _event("2024-03-11T13:00:00Z", "2024-03-11T14:00:00Z")
        b = _event("2024-03-11T14:00:00Z", "2024-03-11T15:00:00Z")
        assert not events_overlap(a, b)

    def test_partial_overlap(self):
        a = _event("2024-03-11T13:00:00Z", "2024-03-11T14:30:00Z")
        b = _event("2024-03-11T14:00:00Z", "2024-03-11T15:00:00Z")
        assert events_overlap(a, b)
        assert events_overlap(b, a)

    def test_missing_end_defaults_to_one_hour(self):
        a = _event("2024-03-11T13:00:00Z")
        assert event_duration(a) == 60
        assert events_overlap(a, _event("2024-03-11T13:59:00Z", "2024-03-11T16:00:00Z"))
        assert not events_overlap(a, _event("2024-03-11T14:00:00Z"))

    def test_check_conflicts_skips_itself(self):
        event = _event("2024-03-11T13:00:00Z", id="e1")
        existing = [
            _event("2024-03-11T13:00:00Z", id="e1"),
            _event("2024-03-11T13:30:00Z", id="e2"),
            _event("2024-03-11T18:00:00Z", id="e3"),
        ]
        assert [c["id"] for c in check_conflicts(event, existing)] == ["e2"]


class TestVideoAndIcs:
    """Tests for video platform detection and iCalendar export."""

    @pytest.mark.parametrize("url,platform", [
        ("https://meet.google.com/abc-defg-hij", "meet"),
        ("https://us02web.ZOOM.us/j/123", "zoom"),
        ("https://teams.microsoft.com/l/meetup-join/x", "teams"),
        ("https://whereby.com/escritorio", "whereby"),
        ("https://exemplo.com/sala", None),
        (None, None),
    ])
    def test_detect_platform(self, url, platform):
        assert detect_video_platform(url) == platform

    def test_ics_structure(self):
        ics = to_ics([{
            "id": "e1",
            "title": "Audiência; vara 2, sala 3",
            "description": "Levar\ndocumentos",
            "starts_at": "2024-03-11T13:00:00Z",
            "video_url": "https://meet.google.com/x",
            "event_type": "audiencia",
        }])
        lines = ics.split("\r\n")
        assert lines[0] == "BEGIN:VCALENDAR"
        assert ics.endswith("END:VCALENDAR\r\n")
        assert "UID:e1@legalflow" in lines
        assert "DTSTART:20240311T130000Z" in lines
        assert "DTEND:20240311T140000Z" in lines
        assert "SUMMARY:Audiência\\; vara 2\\, sala 3" in lines
        assert "DESCRIPTION:Levar\\ndocumentos" in lines
        assert "LOCATION:https://meet.google.com/x" in lines
        assert "CATEGORIES:AUDIENCIA" in lines

    def test_ics_empty_calendar(self):
        ics = to_ics([])
        assert "BEGIN:VEVENT" not in ics
        assert ics.count("VCALENDAR") == 2


class TestAgendaManager:
    """Tests for AgendaManager against the in-memory Supabase."""

    def test_create_normalizes(self, fake_sb):
        event = AgendaManager(fake_sb).create_event({
            "title": "  Reunião com cliente ",
            "starts_at": "2024-03-11T13:00:00Z",
            "cliente_cpfcnpj": "529.982.247-25",
        })
        assert event["title"] == "Reunião com cliente"
        assert event["event_type"] == "compromisso"
        assert event["starts_at"] == "2024-03-11T13:00:00+00:00"
        assert event["ends_at"] == "2024-03-11T14:00:00+00:00"
        assert event["cliente_cpfcnpj"] == "52998224725"

    def test_validation(self, fake_sb):
        manager = AgendaManager(fake_sb)
        with pytest.raises(ValidationError) as exc:
            manager.create_event({"event_type": "festa"})
        assert {e["field"] for e in exc.value.errors} == {"title", "starts_at", "event_type"}
        with pytest.raises(ValidationError):
            manager.create_event({"title": "x", "starts_at": "2024-03-11T13:00:00Z",
                                  "ends_at": "2024-03-11T12:00:00Z"})

    def test_conflict_same_owner(self, fake_sb):
        manager = AgendaManager(fake_sb)
        manager.create_event({"title": "Audiência", "starts_at": "2024-03-11T13:00:00Z", "owner_oab": "SP1"})
        with pytest.raises(ConflictError) as exc:
            manager.create_event({"title": "Reunião", "starts_at": "2024-03-11T13:30:00Z", "owner_oab": "SP1"})
        assert len(exc.value.conflicts) == 1

    def test_other_owner_or_allow_conflicts(self, fake_sb):
        manager = AgendaManager(fake_sb)
        manager.create_event({"title": "Audiência", "starts_at": "2024-03-11T13:00:00Z", "owner_oab": "SP1"})
        manager.create_event({"title": "Reunião", "starts_at": "2024-03-11T13:30:00Z", "owner_oab": "SP2"})
        manager.create_event({"title": "Prazo", "starts_at": "2024-03-11T13:30:00Z", "owner_oab": "SP1"},
                             allow_conflicts=True)
        assert len(fake_sb.rows("eventos_agenda")) == 3

    def test_event_without_owner_ignores_owned_events(self, fake_sb):
        manager = AgendaManager(fake_sb)
        manager.create_event({"title": "Audiência", "starts_at": "2024-03-11T13:00:00Z", "owner_oab": "SP1"})
        manager.create_event({"title": "Reunião geral", "starts_at": "2024-03-11T13:30:00Z"})
        with pytest.raises(ConflictError) as exc:
            manager.create_event({"title": "Almoço", "starts_at": "2024-03-11T13:45:00Z"})
        assert [c["title"] for c in exc.value.conflicts] == ["Reunião geral"]

    def test_update_checks_conflicts_only_when_moving(self, fake_sb):
        manager = AgendaManager(fake_sb)
        manager.create_event({"title": "A", "starts_at": "2024-03-11T13:00:00Z", "owner_oab": "SP1"})
        b = manager.create_event({"title": "B", "starts_at": "2024-03-11T15:00:00Z", "owner_oab": "SP1"})
        assert manager.update_event(b["id"], {"title": "B2"})["title"] == "B2"
        with pytest.raises(ConflictError):
            manager.update_event(b["id"], {"starts_at": "2024-03-11T13:15:00+00:00",
                                           "ends_at": "2024-03-11T13:45:00+00:00"})

    def test_week_uses_office_timezone(self, fake_sb):
        fake_sb.seed("eventos_agenda", [
            {"title": "domingo à noite", "starts_at": "2024-03-11T02:00:00+00:00"},
            {"title": "segunda", "starts_at": "2024-03-11T12:00:00+00:00"},
            {"title": "último domingo", "starts_at": "2024-03-18T02:00:00+00:00"},
        ])
        week = AgendaManager(fake_sb).week("2024-03-13")
        assert week["start"] == "2024-03-11"
        assert week["end"] == "2024-03-17"
        assert [e["title"] for e in week["events"]] == ["segunda", "último domingo"]

    def test_week_rejects_malformed_day(self, fake_sb):
        with pytest.raises(ValidationError) as exc:
            AgendaManager(fake_sb).week("2024-13-40")
        assert exc.value.errors[0]["code"] == "INVALID_FORMAT"

    def test_month(self, fake_sb):
        fake_sb.seed("eventos_agenda", [
            {"title": "fim de fevereiro", "starts_at": "2024-02-29T20:00:00+00:00"},
            {"title": "março", "starts_at": "2024-03-20T20:00:00+00:00"},
        ])
        manager = AgendaManager(fake_sb)
        assert [e["title"] for e in manager.month(2024, 3)["events"]] == ["março"]
        with pytest.raises(ValidationError):
            manager.month(2024, 13)

    def test_delete_and_describe(self, fake_sb):
        manager = AgendaManager(fake_sb)
        event = manager.create_event({"title": "Call", "starts_at": "2024-03-11T13:00:00Z",
                                      "ends_at": "2024-03-11T14:30:00Z", "video_url": "https://zoom.us/j/1"})
        described = manager.describe(event)
        assert described["duration_minutes"] == 90
        assert described["duration_label"] == "1h 30min"
        assert described["video_platform"] == "zoom"
        manager.delete_event(event["id"])
        with pytest.raises(NotFoundError):
            manager.get(event["id"])
