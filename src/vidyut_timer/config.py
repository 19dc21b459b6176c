"""Service configuration, read from the environment (and a .env file).

Timing constants (tick period, break length, confirmation window, debounce
delays) are fixed in their modules and are not configurable here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .notifier import NotifierVariant
from .signals import SignalKind

DEFAULT_DB_PATH = Path.home() / ".vidyut" / "timer.db"
DEFAULT_PORT = 7878
NOTIFIER_OFF = "off"
STORE_CHOICES = ("sqlite", "memory")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    session_id: str = "local"
    signal: SignalKind = SignalKind.POWER
    notifier: str = NotifierVariant.BELL.value
    confirm_disconnect: bool = True
    store: str = "sqlite"
    sound_file: Optional[str] = None
    voice: Optional[str] = None

    @property
    def api_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def notifier_variant(self) -> Optional[NotifierVariant]:
        if self.notifier == NOTIFIER_OFF:
            return None
        return NotifierVariant(self.notifier)

    def validate(self) -> None:
        if self.store not in STORE_CHOICES:
            raise ValueError(f"Invalid VIDYUT_STORE '{self.store}'. Valid options: {', '.join(STORE_CHOICES)}")
        if self.notifier != NOTIFIER_OFF:
            NotifierVariant(self.notifier)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> Settings:
        load_dotenv(env_file or Path.cwd() / ".env")
        settings = cls(
            db_path=Path(os.environ.get("VIDYUT_DB", str(DEFAULT_DB_PATH))).expanduser(),
            host=os.environ.get("VIDYUT_HOST", "127.0.0.1"),
            port=int(os.environ.get("VIDYUT_PORT", DEFAULT_PORT)),
            session_id=os.environ.get("VIDYUT_SESSION_ID", "local"),
            signal=SignalKind(os.environ.get("VIDYUT_SIGNAL", SignalKind.POWER.value).lower()),
            notifier=os.environ.get("VIDYUT_NOTIFIER", NotifierVariant.BELL.value).lower(),
            confirm_disconnect=_env_bool("VIDYUT_CONFIRM_DISCONNECT", True),
            store=os.environ.get("VIDYUT_STORE", "sqlite").lower(),
            sound_file=os.environ.get("VIDYUT_SOUND_FILE"),
            voice=os.environ.get("VIDYUT_VOICE"),
        )
        settings.validate()
        return settings


def default_api_url() -> str:
    """Server URL for the CLI: VIDYUT_API_URL, else host/port settings."""
    load_dotenv(Path.cwd() / ".env")
    url = os.environ.get("VIDYUT_API_URL")
    if url:
        return url.rstrip("/")
    host = os.environ.get("VIDYUT_HOST", "127.0.0.1")
    port = os.environ.get("VIDYUT_PORT", DEFAULT_PORT)
    return f"http://{host}:{port}"
