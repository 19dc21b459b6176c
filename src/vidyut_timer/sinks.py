"""Notification sinks for the periodic notifier."""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_SOUNDS = {
    "Darwin": "/System/Library/Sounds/Glass.aiff",
    "Linux": "/usr/share/sounds/freedesktop/stereo/bell.oga",
}
DEFAULT_VOICE = "Daniel"


class LogSink:
    """Records notifications in the log only (headless and test use)."""

    def __init__(self):
        self.rings: list[int] = []
        self.announcements: list[int] = []

    def ring(self, count: int) -> None:
        self.rings.append(count)
        logger.info(f"BELL x{count}")

    def announce(self, remaining_minutes: int) -> None:
        self.announcements.append(remaining_minutes)
        logger.info(f"ANNOUNCE {remaining_minutes} minutes remaining")


def announcement_text(remaining_minutes: int) -> str:
    if remaining_minutes == 1:
        return "1 minute remaining"
    return f"{remaining_minutes} minutes remaining"


class SubprocessSink:
    """Plays a bell file and speaks through the platform's command-line tools.

    Playback is queued on one worker thread so strikes play in order without
    blocking the event loop.
    """

    def __init__(self, sound_file: Optional[str] = None, voice: Optional[str] = None):
        system = platform.system()
        self.sound_file = sound_file or DEFAULT_SOUNDS.get(system)
        self.voice = voice or DEFAULT_VOICE
        self._player = "afplay" if system == "Darwin" else "paplay"
        self._speaker = "say" if system == "Darwin" else "espeak"
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vidyut-sink")

    def ring(self, count: int) -> None:
        for _ in range(count):
            self._executor.submit(self.play_sound)

    def announce(self, remaining_minutes: int) -> None:
        self._executor.submit(self.speak, announcement_text(remaining_minutes))

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def play_sound(self) -> dict:
        if not self.sound_file or shutil.which(self._player) is None:
            logger.warning(f"Bell skipped: {self._player} or sound file unavailable")
            return {"success": False, "error": "player unavailable"}
        try:
            result = subprocess.run([self._player, self.sound_file], capture_output=True, timeout=10)
        except subprocess.TimeoutExpired:
            logger.warning("Bell playback timed out")
            return {"success": False, "error": "Sound playback timed out"}
        if result.returncode != 0:
            logger.warning(f"{self._player} failed: {result.stderr.decode()[:100]}")
            return {"success": False, "error": f"{self._player} exited {result.returncode}"}
        return {"success": True, "method": self._player, "file": self.sound_file}

    def speak(self, message: str) -> dict:
        if shutil.which(self._speaker) is None:
            logger.warning(f"Announcement skipped: {self._speaker} not found")
            return {"success": False, "error": f"{self._speaker} not found"}
        cmd = [self._speaker, "-v", self.voice, message] if self._speaker == "say" else [self._speaker, message]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=60)
        except subprocess.TimeoutExpired:
            logger.warning("Announcement timed out")
            return {"success": False, "error": "TTS timed out"}
        if result.returncode != 0:
            logger.warning(f"{self._speaker} failed with code {result.returncode}")
            return {"success": False, "error": f"{self._speaker} exited {result.returncode}"}
        return {"success": True, "method": self._speaker, "message": message}
