"""Transition controller: decides and issues session mutations.

The controller keeps only the latest observed snapshot and the last signal
value. Every decision is recomputed from those two, and every transition is a
single merge of the fields it owns. Time is injected via `now` parameters for
deterministic testing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import InvalidDurationError
from .reconciler import DueTransition, reconcile, remaining
from .session import SERVER_TIMESTAMP, TimerMode, TimerSession
from .signals import ActivityEvent
from .store import SessionStore

logger = logging.getLogger(__name__)

CONFIRMATION_WINDOW_S = 10
INFLIGHT_TIMEOUT_S = 5

REASON_NOT_IDLE = "not_idle"
REASON_NOT_FINISHED = "not_finished"
REASON_NO_PENDING_CONFIRMATION = "no_pending_confirmation"
REASON_IN_FLIGHT = "in_flight"


class ControlEvent(Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    FINISHED = "finished"
    BREAK_STARTED = "break_started"
    RESTARTED = "restarted"
    RESET = "reset"
    CONFIRMATION_OPENED = "confirmation_opened"
    CONFIRMATION_CONFIRMED = "confirmation_confirmed"
    CONFIRMATION_CANCELLED = "confirmation_cancelled"
    CONFIRMATION_EXPIRED = "confirmation_expired"


CONFIRMATION_CLOSED = frozenset({
    ControlEvent.CONFIRMATION_CONFIRMED,
    ControlEvent.CONFIRMATION_CANCELLED,
    ControlEvent.CONFIRMATION_EXPIRED,
})


@dataclass
class ControlResult:
    events: list[ControlEvent] = field(default_factory=list)
    patch: Optional[dict[str, Any]] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None

    def extend(self, other: ControlResult) -> ControlResult:
        self.events.extend(other.events)
        if other.patch is not None:
            self.patch = other.patch
        if other.reason is not None:
            self.reason = other.reason
        return self


@dataclass(frozen=True)
class ConfirmationWindow:
    """Grace period after a power disconnect before the timer auto-pauses."""

    opened_at: float
    deadline: float


class TransitionController:
    """State machine over idle/running/paused/finished/break.

    With confirm_disconnects set (power signal), a running -> inactive flip
    opens a ConfirmationWindow instead of pausing right away.
    """

    def __init__(self, store: SessionStore, session_id: str, *, confirm_disconnects: bool = False):
        self._store = store
        self._session_id = session_id
        self._confirm_disconnects = confirm_disconnects
        self._session = TimerSession()
        self._active: Optional[bool] = None
        self._confirmation: Optional[ConfirmationWindow] = None
        self._suppressed = False
        self._inflight: Optional[tuple[TimerMode, float]] = None
        self._unsubscribe = store.subscribe(session_id, self.observe_session)

    # ---- Read-only properties ----

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session(self) -> TimerSession:
        return self._session

    @property
    def active(self) -> Optional[bool]:
        return self._active

    @property
    def effective_active(self) -> bool:
        """Unknown signal state counts as active."""
        return self._active is not False

    @property
    def confirmation(self) -> Optional[ConfirmationWindow]:
        return self._confirmation

    @property
    def confirm_disconnects(self) -> bool:
        return self._confirm_disconnects

    @property
    def disconnect_confirmed(self) -> bool:
        return self._suppressed

    def close(self) -> None:
        self._unsubscribe()

    # ---- Observation ----

    def observe_session(self, session: TimerSession) -> None:
        """Adopt a snapshot from the store as ground truth."""
        self._session = session
        self._inflight = None
        if self._confirmation is not None and session.mode != TimerMode.RUNNING:
            self._confirmation = None

    def set_signal(self, active: Optional[bool]) -> None:
        """Record the initial reading without issuing a transition.

        A mismatch with the stored mode is picked up by the next tick().
        """
        self._active = active

    def on_signal(self, event: ActivityEvent, now: float) -> ControlResult:
        if event.active == self._active:
            return ControlResult()
        self._active = event.active

        if not event.active:
            return self._handle_inactive(now)

        result = ControlResult()
        self._suppressed = False
        if self._confirmation is not None:
            self._confirmation = None
            result.events.append(ControlEvent.CONFIRMATION_CANCELLED)
        if self._session.mode == TimerMode.PAUSED:
            result.extend(self._resume(now))
        return result

    def tick(self, now: float) -> ControlResult:
        """Periodic evaluation: window expiry, completion, break end, signal drift."""
        window = self._confirmation
        if window is not None and now >= window.deadline:
            self._confirmation = None
            result = ControlResult(events=[ControlEvent.CONFIRMATION_EXPIRED])
            if self._session.mode == TimerMode.RUNNING and not self.effective_active:
                if remaining(self._session, now) == 0:
                    result.extend(self._finish(now))
                else:
                    result.extend(self._pause(now))
            return result

        state = reconcile(self._session, now)
        if state.due == DueTransition.FINISH:
            return self._finish(now)
        if state.due == DueTransition.RESTART:
            return self._restart(now)

        mode = self._session.mode
        if mode == TimerMode.RUNNING and not self.effective_active:
            if window is None and not self._suppressed:
                return self._handle_inactive(now)
        elif mode == TimerMode.PAUSED and self.effective_active:
            return self._resume(now)
        return ControlResult()

    # ---- User operations ----

    def start(self, duration: float, now: float) -> ControlResult:
        if duration is None or duration <= 0:
            raise InvalidDurationError(duration)
        if self._session.mode != TimerMode.IDLE:
            return ControlResult(reason=REASON_NOT_IDLE)

        active = self.effective_active
        target = TimerMode.RUNNING if active else TimerMode.PAUSED
        self._suppressed = False
        patch = {
            "mode": target.value,
            "total_duration": duration,
            "last_set_duration": duration,
            "start_time": SERVER_TIMESTAMP,
            "pause_time": None if active else SERVER_TIMESTAMP,
            "accumulated_pause_time": 0,
            "break_start_time": None,
        }
        return self._issue(target, patch, ControlEvent.STARTED, now)

    def stop_alarm(self, now: float) -> ControlResult:
        if self._session.mode != TimerMode.FINISHED:
            return ControlResult(reason=REASON_NOT_FINISHED)
        patch = {
            "mode": TimerMode.BREAK.value,
            "break_start_time": SERVER_TIMESTAMP,
            "pause_time": None,
        }
        return self._issue(TimerMode.BREAK, patch, ControlEvent.BREAK_STARTED, now)

    def reset(self, now: float) -> ControlResult:
        result = ControlResult()
        if self._confirmation is not None:
            self._confirmation = None
            result.events.append(ControlEvent.CONFIRMATION_CANCELLED)
        self._suppressed = False
        patch = {
            "mode": TimerMode.IDLE.value,
            "total_duration": 0,
            "start_time": None,
            "pause_time": None,
            "accumulated_pause_time": 0,
            "break_start_time": None,
        }
        issued = self._issue(TimerMode.IDLE, patch, ControlEvent.RESET, now)
        if issued.reason == REASON_IN_FLIGHT:
            # an earlier reset is still awaiting its echo
            return result
        return result.extend(issued)

    def confirm_disconnect(self, now: float) -> ControlResult:
        """User confirms an intentional disconnect: keep running this time."""
        if self._confirmation is None:
            return ControlResult(reason=REASON_NO_PENDING_CONFIRMATION)
        self._confirmation = None
        self._suppressed = True
        logger.info(f"Disconnect confirmed for {self._session_id}; timer keeps running")
        return ControlResult(events=[ControlEvent.CONFIRMATION_CONFIRMED])

    # ---- Internal ----

    def _handle_inactive(self, now: float) -> ControlResult:
        if self._session.mode != TimerMode.RUNNING:
            return ControlResult()
        # a timer that has just run out finishes instead of pausing
        if remaining(self._session, now) == 0:
            return self._finish(now)
        if not self._confirm_disconnects:
            return self._pause(now)
        if self._confirmation is not None or self._suppressed:
            return ControlResult()
        self._confirmation = ConfirmationWindow(opened_at=now, deadline=now + CONFIRMATION_WINDOW_S)
        logger.info(f"Power lost while running; auto-pause in {CONFIRMATION_WINDOW_S}s unless confirmed")
        return ControlResult(events=[ControlEvent.CONFIRMATION_OPENED])

    def _pause(self, now: float) -> ControlResult:
        patch = {"mode": TimerMode.PAUSED.value, "pause_time": SERVER_TIMESTAMP}
        return self._issue(TimerMode.PAUSED, patch, ControlEvent.PAUSED, now)

    def _resume(self, now: float) -> ControlResult:
        session = self._session
        closed = 0.0
        if session.pause_time is not None:
            closed = max(0.0, now - session.pause_time)
        patch = {
            "mode": TimerMode.RUNNING.value,
            "accumulated_pause_time": session.accumulated_pause_time + closed,
            "pause_time": None,
        }
        return self._issue(TimerMode.RUNNING, patch, ControlEvent.RESUMED, now)

    def _finish(self, now: float) -> ControlResult:
        patch = {"mode": TimerMode.FINISHED.value}
        return self._issue(TimerMode.FINISHED, patch, ControlEvent.FINISHED, now)

    def _restart(self, now: float) -> ControlResult:
        duration = self._session.last_set_duration
        if duration <= 0:
            return self.reset(now)
        active = self.effective_active
        target = TimerMode.RUNNING if active else TimerMode.PAUSED
        patch = {
            "mode": target.value,
            "total_duration": duration,
            "start_time": SERVER_TIMESTAMP,
            "pause_time": None if active else SERVER_TIMESTAMP,
            "accumulated_pause_time": 0,
            "break_start_time": None,
        }
        return self._issue(target, patch, ControlEvent.RESTARTED, now)

    def _issue(self, target: TimerMode, patch: dict, event: ControlEvent, now: float) -> ControlResult:
        """Send one merge, unless the same target is already awaiting its echo."""
        if self._inflight is not None:
            pending, issued_at = self._inflight
            if pending == target and now - issued_at < INFLIGHT_TIMEOUT_S:
                return ControlResult(reason=REASON_IN_FLIGHT)
        logger.info(f"Timer {self._session_id}: {self._session.mode.value} -> {target.value} ({event.value})")
        self._inflight = (target, now)
        self._store.merge(self._session_id, patch)
        return ControlResult(events=[event], patch=patch)
