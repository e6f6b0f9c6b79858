"""Tests for ipwatch.services.dedup: windowed duplicate suppression."""

from __future__ import annotations

from datetime import timedelta

import pytest

from ipwatch.core.config import settings
from ipwatch.services.alert_service import persist_candidate
from ipwatch.services.dedup import DedupGate, dedup_key
from ipwatch.services.errors import DuplicateAlert
from ipwatch.models.monitoring_alert import MonitoringAlert
from tests.conftest import NOW, make_alert, make_candidate


class TestDedupGate:
    def test_admits_novel_url(self, db_session):
        gate = DedupGate(db_session, now=NOW)
        assert gate.admit(make_candidate(source_url="https://new.example/x")) is True

    def test_rejects_same_url_within_window(self, db_session):
        make_alert(db_session, source_url="https://dup.example/x", detected_at=NOW - timedelta(hours=23))
        gate = DedupGate(db_session, now=NOW)
        assert gate.admit(make_candidate(source_url="https://dup.example/x")) is False

    def test_admits_same_url_outside_window(self, db_session):
        make_alert(db_session, source_url="https://dup.example/x", detected_at=NOW - timedelta(hours=25))
        gate = DedupGate(db_session, now=NOW)
        assert gate.admit(make_candidate(source_url="https://dup.example/x")) is True

    def test_other_url_not_affected(self, db_session):
        make_alert(db_session, source_url="https://dup.example/x", detected_at=NOW)
        gate = DedupGate(db_session, now=NOW)
        assert gate.admit(make_candidate(source_url="https://dup.example/y")) is True

    def test_candidate_without_url_always_admitted(self, db_session):
        make_alert(db_session, source_url="", detected_at=NOW)
        gate = DedupGate(db_session, now=NOW)
        assert gate.admit(make_candidate(source_url="")) is True


class TestPersistDedup:
    def test_two_detections_within_day_exactly_one_stored(self, db_session):
        persist_candidate(db_session, make_candidate(source_url="https://one.example/a"), now=NOW)
        with pytest.raises(DuplicateAlert):
            persist_candidate(db_session, make_candidate(source_url="https://one.example/a"), now=NOW + timedelta(hours=5))
        assert db_session.query(MonitoringAlert).count() == 1

    def test_earlier_detection_within_day_also_rejected(self, db_session):
        persist_candidate(db_session, make_candidate(source_url="https://one.example/a"), now=NOW)
        with pytest.raises(DuplicateAlert):
            persist_candidate(db_session, make_candidate(source_url="https://one.example/a"), now=NOW - timedelta(hours=3))
        assert db_session.query(MonitoringAlert).count() == 1

    def test_next_day_detection_stored(self, db_session):
        persist_candidate(db_session, make_candidate(source_url="https://one.example/a"), now=NOW)
        persist_candidate(db_session, make_candidate(source_url="https://one.example/a"), now=NOW + timedelta(hours=25))
        assert db_session.query(MonitoringAlert).count() == 2

    def test_storage_constraint_rejects_when_gate_is_bypassed(self, db_session, monkeypatch):
        persist_candidate(db_session, make_candidate(source_url="https://race.example/a"), now=NOW)
        monkeypatch.setattr(DedupGate, "admit", lambda self, candidate: True)
        with pytest.raises(DuplicateAlert):
            persist_candidate(db_session, make_candidate(source_url="https://race.example/a"), now=NOW + timedelta(minutes=1))
        assert db_session.query(MonitoringAlert).count() == 1


class TestDedupKey:
    def test_same_day_same_key(self):
        assert dedup_key("https://x", NOW) == dedup_key("https://x", NOW + timedelta(hours=6))

    def test_different_day_different_key(self):
        assert dedup_key("https://x", NOW) != dedup_key("https://x", NOW + timedelta(days=1))

    def test_no_url_no_key(self):
        assert dedup_key("", NOW) is None
        assert dedup_key(None, NOW) is None

    def test_bucket_follows_configured_window(self, monkeypatch):
        monkeypatch.setattr(settings, "MONITORING_DEDUP_WINDOW_SECONDS", 3600)
        assert dedup_key("https://x", NOW) == dedup_key("https://x", NOW + timedelta(minutes=30))
        assert dedup_key("https://x", NOW) != dedup_key("https://x", NOW + timedelta(hours=2))


class TestShortWindow:
    def test_gate_and_key_agree_below_a_day(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "MONITORING_DEDUP_WINDOW_SECONDS", 3600)
        persist_candidate(db_session, make_candidate(source_url="https://short.example/a"), now=NOW)
        persist_candidate(db_session, make_candidate(source_url="https://short.example/a"), now=NOW + timedelta(hours=2))
        with pytest.raises(DuplicateAlert):
            persist_candidate(
                db_session, make_candidate(source_url="https://short.example/a"), now=NOW + timedelta(hours=2, minutes=20)
            )
        assert db_session.query(MonitoringAlert).count() == 2
