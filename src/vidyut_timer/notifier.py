"""Periodic notifier: a bell (or spoken reminder) every 15 active minutes."""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Optional, Protocol

from .reconciler import elapsed_active, remaining
from .session import TimerMode, TimerSession

logger = logging.getLogger(__name__)

TICK_PERIOD_S = 900


class NotifierVariant(str, Enum):
    BELL = "bell"
    VOICE = "voice"


class NotificationSink(Protocol):
    def ring(self, count: int) -> None: ...

    def announce(self, remaining_minutes: int) -> None: ...


class PeriodicNotifier:
    """Counts 900 s boundaries of active time and fires each one once.

    The last acknowledged boundary lives only in this process. It restarts at
    zero whenever a new run begins (a different start_time anchor).
    """

    def __init__(
        self,
        sink: NotificationSink,
        variant: NotifierVariant = NotifierVariant.BELL,
        period: float = TICK_PERIOD_S,
    ):
        self.sink = sink
        self.variant = variant
        self.period = period
        self._last_acknowledged = 0
        self._run_anchor: Optional[float] = None

    @property
    def last_acknowledged(self) -> int:
        return self._last_acknowledged

    def interval_index(self, session: TimerSession, now: float) -> int:
        return int(elapsed_active(session, now) // self.period)

    def _inner_index(self, session: TimerSession, now: float) -> int:
        """interval_index capped at the last boundary strictly before the end.

        A boundary that coincides with completion belongs to the alarm.
        """
        last_inner = max(0, math.ceil(session.total_duration / self.period) - 1)
        return min(self.interval_index(session, now), last_inner)

    def due_intervals(self, session: TimerSession, now: float) -> int:
        """Boundaries crossed since the last acknowledgment (no side effects)."""
        if session.mode != TimerMode.RUNNING:
            return 0
        baseline = self._last_acknowledged if session.start_time == self._run_anchor else 0
        index = self._inner_index(session, now)
        if index <= 0 or index <= baseline:
            return 0
        return index - baseline

    def evaluate(self, session: TimerSession, now: float) -> int:
        """Fire due notifications and acknowledge them. Returns the count fired."""
        if session.start_time != self._run_anchor:
            self._run_anchor = session.start_time
            self._last_acknowledged = 0

        count = self.due_intervals(session, now)
        if count <= 0:
            return 0
        self._last_acknowledged = self._inner_index(session, now)

        if self.variant == NotifierVariant.VOICE:
            minutes = math.ceil(remaining(session, now) / 60)
            logger.info(f"Announcing {minutes} minutes remaining")
            self.sink.announce(minutes)
        else:
            logger.info(f"Ringing bell x{count}")
            self.sink.ring(count)
        return count
