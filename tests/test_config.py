"""Tests for Settings.from_env and the CLI URL default."""

import os

import pytest

from vidyut_timer.config import DEFAULT_PORT, Settings, default_api_url
from vidyut_timer.notifier import NotifierVariant
from vidyut_timer.signals import SignalKind

ENV_VARS = [
    "VIDYUT_DB", "VIDYUT_HOST", "VIDYUT_PORT", "VIDYUT_SESSION_ID", "VIDYUT_SIGNAL",
    "VIDYUT_NOTIFIER", "VIDYUT_CONFIRM_DISCONNECT", "VIDYUT_STORE", "VIDYUT_SOUND_FILE",
    "VIDYUT_VOICE", "VIDYUT_API_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Start without VIDYUT_* variables and restore them afterwards.

    load_dotenv writes into os.environ, so values it sets are removed too.
    """
    saved = {name: os.environ.pop(name, None) for name in ENV_VARS}
    monkeypatch.chdir(tmp_path)
    yield
    for name, value in saved.items():
        if value is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = value


class TestSettings:
    def test_defaults(self, tmp_path):
        settings = Settings.from_env(tmp_path / ".env")
        assert settings.port == DEFAULT_PORT
        assert settings.signal == SignalKind.POWER
        assert settings.notifier_variant == NotifierVariant.BELL
        assert settings.confirm_disconnect is True
        assert settings.store == "sqlite"
        assert settings.db_path.name == "timer.db"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VIDYUT_SIGNAL", "Sound")
        monkeypatch.setenv("VIDYUT_NOTIFIER", "off")
        monkeypatch.setenv("VIDYUT_CONFIRM_DISCONNECT", "no")
        monkeypatch.setenv("VIDYUT_PORT", "9100")
        monkeypatch.setenv("VIDYUT_DB", str(tmp_path / "x.db"))
        settings = Settings.from_env(tmp_path / ".env")
        assert settings.signal == SignalKind.SOUND
        assert settings.notifier_variant is None
        assert settings.confirm_disconnect is False
        assert settings.port == 9100
        assert settings.db_path == tmp_path / "x.db"
        assert settings.api_url == "http://127.0.0.1:9100"

    def test_dotenv_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("VIDYUT_SESSION_ID=desk\nVIDYUT_NOTIFIER=voice\n")
        settings = Settings.from_env(env_file)
        assert settings.session_id == "desk"
        assert settings.notifier_variant == NotifierVariant.VOICE

    def test_invalid_store(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VIDYUT_STORE", "redis")
        with pytest.raises(ValueError, match="VIDYUT_STORE"):
            Settings.from_env(tmp_path / ".env")

    def test_invalid_signal(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VIDYUT_SIGNAL", "keyboard")
        with pytest.raises(ValueError):
            Settings.from_env(tmp_path / ".env")


class TestDefaultApiUrl:
    def test_explicit_url(self, monkeypatch):
        monkeypatch.setenv("VIDYUT_API_URL", "http://timer.local:8000/")
        assert default_api_url() == "http://timer.local:8000"

    def test_from_host_and_port(self, monkeypatch):
        monkeypatch.setenv("VIDYUT_HOST", "10.0.0.2")
        assert default_api_url() == f"http://10.0.0.2:{DEFAULT_PORT}"
