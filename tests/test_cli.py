"""CLI tests with the HTTP layer stubbed out."""

import pytest
from click.testing import CliRunner

from vidyut_timer import cli as cli_module
from vidyut_timer.cli import cli

TIMER = {
    "mode": "running",
    "remaining_seconds": 1500,
    "display": "00:25:00",
    "progress": 1.0,
    "total_duration": 1500,
    "last_set_duration": 1500,
    "signal": {"kind": "power", "active": True, "unavailable": None},
    "confirmation": None,
    "disconnect_confirmed": False,
    "session": {},
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = str(self._payload)

    def json(self):
        return self._payload


@pytest.fixture
def requests_log(monkeypatch):
    calls = []
    responses = {}

    def fake_request(method, url, timeout=None, **kwargs):
        calls.append((method, url, kwargs))
        return responses.get((method, url.split("7878", 1)[-1]), FakeResponse(200, {"timer": TIMER}))

    monkeypatch.setattr(cli_module.requests, "request", fake_request)
    return calls, responses


def invoke(*args):
    return CliRunner().invoke(cli, ["--api-url", "http://localhost:7878", *args])


class TestCommands:
    def test_status(self, requests_log):
        calls, responses = requests_log
        responses[("GET", "/api/timer")] = FakeResponse(200, TIMER)
        result = invoke("status")
        assert result.exit_code == 0
        assert "RUNNING" in result.output
        assert "00:25:00" in result.output
        assert calls[0][:2] == ("GET", "http://localhost:7878/api/timer")

    def test_start_sends_duration(self, requests_log):
        calls, _ = requests_log
        result = invoke("start", "--minutes", "25")
        assert result.exit_code == 0
        method, url, kwargs = calls[0]
        assert (method, url) == ("POST", "http://localhost:7878/api/timer/start")
        assert kwargs["json"] == {"hours": 0, "minutes": 25, "seconds": 0}

    def test_signal_inactive(self, requests_log):
        calls, _ = requests_log
        result = invoke("signal", "inactive")
        assert result.exit_code == 0
        assert calls[0][2]["json"] == {"active": False}

    def test_refusal_exits_nonzero(self, requests_log):
        _, responses = requests_log
        responses[("POST", "/api/timer/stop-alarm")] = FakeResponse(409, {"detail": "not_finished"})
        result = invoke("stop-alarm")
        assert result.exit_code == 1
        assert "not_finished" in result.output

    def test_confirmation_prompt_shown(self, requests_log):
        _, responses = requests_log
        pending = dict(TIMER, confirmation={"deadline": 0, "seconds_left": 7.2})
        responses[("GET", "/api/timer")] = FakeResponse(200, pending)
        result = invoke("status")
        assert "auto-pause in 7s" in result.output

    def test_events_empty(self, requests_log):
        _, responses = requests_log
        responses[("GET", "/api/events")] = FakeResponse(200, {"events": [], "count": 0})
        result = invoke("events")
        assert result.exit_code == 0
        assert "No signal events" in result.output
