"""Tests for the TimerSession document: merging, invariants, serialization."""

import pytest

from vidyut_timer.session import SERVER_TIMESTAMP, TimerMode, TimerSession


class TestMerged:
    def test_server_timestamp_resolves_to_write_time(self):
        session = TimerSession().merged(
            {"mode": "running", "total_duration": 60, "start_time": SERVER_TIMESTAMP},
            now=1234.5,
        )
        assert session.mode == TimerMode.RUNNING
        assert session.start_time == 1234.5
        assert session.total_duration == 60

    def test_untouched_fields_survive(self):
        base = TimerSession(mode=TimerMode.RUNNING, total_duration=60, last_set_duration=60, start_time=10.0)
        session = base.merged({"mode": "paused", "pause_time": 20.0})
        assert session.last_set_duration == 60
        assert session.start_time == 10.0
        assert session.pause_time == 20.0

    def test_original_is_unchanged(self):
        base = TimerSession()
        base.merged({"mode": "running", "total_duration": 5, "start_time": 1.0})
        assert base.mode == TimerMode.IDLE

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            TimerSession().merged({"elapsed": 3})

    def test_server_timestamp_needs_clock(self):
        with pytest.raises(ValueError):
            TimerSession().merged({"start_time": SERVER_TIMESTAMP})


class TestInvariants:
    def test_fresh_session_is_valid(self):
        assert TimerSession().invariant_violations() == []

    def test_running_session_is_valid(self):
        session = TimerSession(mode=TimerMode.RUNNING, total_duration=60, last_set_duration=60, start_time=1.0)
        assert session.invariant_violations() == []

    def test_pause_time_outside_paused(self):
        session = TimerSession(mode=TimerMode.RUNNING, total_duration=60, start_time=1.0, pause_time=2.0)
        assert any("pause_time" in p for p in session.invariant_violations())

    def test_running_without_start_time(self):
        session = TimerSession(mode=TimerMode.RUNNING, total_duration=60)
        assert any("start_time" in p for p in session.invariant_violations())

    def test_break_without_start_time(self):
        session = TimerSession(mode=TimerMode.BREAK, total_duration=60, last_set_duration=60)
        assert "break_start_time missing while mode is break" in session.invariant_violations()

    def test_non_idle_needs_positive_duration(self):
        session = TimerSession(mode=TimerMode.FINISHED)
        assert any("total_duration" in p for p in session.invariant_violations())


class TestDocument:
    def test_camel_case_keys(self):
        doc = TimerSession(mode=TimerMode.BREAK, total_duration=60, break_start_time=5.0).to_document()
        assert doc["mode"] == "break"
        assert doc["totalDuration"] == 60
        assert doc["breakStartTime"] == 5.0
        assert doc["pauseTime"] is None

    def test_from_empty_document(self):
        assert TimerSession.from_document(None) == TimerSession()
        assert TimerSession.from_document({}) == TimerSession()

    def test_from_document(self):
        session = TimerSession.from_document({
            "mode": "paused",
            "totalDuration": 1800,
            "lastSetDuration": 1800,
            "startTime": 100.0,
            "pauseTime": 200.0,
            "accumulatedPauseTime": 30,
        })
        assert session.mode == TimerMode.PAUSED
        assert session.pause_time == 200.0
        assert session.accumulated_pause_time == 30
        assert session.break_start_time is None

    def test_document_reload_is_identical(self):
        session = TimerSession(mode=TimerMode.PAUSED, total_duration=90, last_set_duration=90,
                               start_time=1.0, pause_time=50.0, accumulated_pause_time=4)
        assert TimerSession.from_document(session.to_document()) == session
