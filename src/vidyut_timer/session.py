"""Timer session document: the one persisted record per user.

All timestamps are epoch seconds (float). Anchor fields in a merge patch may
carry SERVER_TIMESTAMP, which the store replaces with its own clock reading
when the merge is applied.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Optional


class TimerMode(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"
    BREAK = "break"


class Sentinel(Enum):
    SERVER_TIMESTAMP = "server_timestamp"


SERVER_TIMESTAMP = Sentinel.SERVER_TIMESTAMP

ANCHOR_FIELDS = ("start_time", "pause_time", "break_start_time")

# snake_case attribute -> camelCase document key
DOCUMENT_KEYS: dict[str, str] = {
    "mode": "mode",
    "total_duration": "totalDuration",
    "last_set_duration": "lastSetDuration",
    "start_time": "startTime",
    "pause_time": "pauseTime",
    "accumulated_pause_time": "accumulatedPauseTime",
    "break_start_time": "breakStartTime",
}


@dataclass(frozen=True)
class TimerSession:
    """Immutable snapshot of the stored session."""

    mode: TimerMode = TimerMode.IDLE
    total_duration: float = 0
    last_set_duration: float = 0
    start_time: Optional[float] = None
    pause_time: Optional[float] = None
    accumulated_pause_time: float = 0
    break_start_time: Optional[float] = None

    def merged(self, patch: dict[str, Any], now: Optional[float] = None) -> TimerSession:
        """Return a copy with `patch` applied.

        SERVER_TIMESTAMP values are resolved to `now`; unknown keys raise KeyError.
        """
        changes = {}
        for key, value in patch.items():
            if key not in DOCUMENT_KEYS:
                raise KeyError(f"Unknown session field: {key}")
            if value is SERVER_TIMESTAMP:
                if now is None:
                    raise ValueError(f"{key} needs a timestamp to resolve SERVER_TIMESTAMP")
                value = now
            if key == "mode":
                value = TimerMode(value)
            changes[key] = value
        return replace(self, **changes)

    def invariant_violations(self) -> list[str]:
        """List the data-model invariants this snapshot breaks (empty when valid)."""
        problems = []
        if self.pause_time is not None and self.break_start_time is not None:
            problems.append("pause_time and break_start_time are both set")
        if self.pause_time is not None and self.mode != TimerMode.PAUSED:
            problems.append(f"pause_time set while mode is {self.mode.value}")
        if self.break_start_time is not None and self.mode != TimerMode.BREAK:
            problems.append(f"break_start_time set while mode is {self.mode.value}")
        if self.mode == TimerMode.BREAK and self.break_start_time is None:
            problems.append("break_start_time missing while mode is break")
        if self.mode in (TimerMode.RUNNING, TimerMode.PAUSED) and self.start_time is None:
            problems.append(f"start_time missing while mode is {self.mode.value}")
        if self.accumulated_pause_time < 0:
            problems.append("accumulated_pause_time is negative")
        if self.mode != TimerMode.IDLE and self.total_duration <= 0:
            problems.append(f"total_duration is {self.total_duration} while mode is {self.mode.value}")
        return problems

    # ---- Serialization ----

    def to_document(self) -> dict:
        """CamelCase dict for the store document and API export."""
        doc = {}
        for f in fields(self):
            value = getattr(self, f.name)
            doc[DOCUMENT_KEYS[f.name]] = value.value if isinstance(value, TimerMode) else value
        return doc

    @classmethod
    def from_document(cls, doc: Optional[dict]) -> TimerSession:
        """Build a snapshot from a camelCase document; missing keys take defaults."""
        if not doc:
            return cls()
        kwargs = {}
        for attr, key in DOCUMENT_KEYS.items():
            if key in doc and doc[key] is not None:
                kwargs[attr] = doc[key]
            elif key in doc and attr in ANCHOR_FIELDS:
                kwargs[attr] = None
        if "mode" in kwargs:
            kwargs["mode"] = TimerMode(kwargs["mode"])
        return cls(**kwargs)


SessionCallback = Callable[[TimerSession], None]
