"""Timer runtime: wires signal, store, controller and notifier to a scheduler.

A 1 Hz interval job drives reconciliation and the notifier; a date job fires
exactly at a confirmation-window deadline. Everything runs on the event loop
thread, so no two evaluations of the session ever overlap.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .controller import CONFIRMATION_CLOSED, ControlEvent, ControlResult, TransitionController
from .notifier import NotificationSink, NotifierVariant, PeriodicNotifier
from .reconciler import format_hms, progress, reconcile
from .signals import ActivityEvent, ActivitySignal, PushSignal, SignalKind
from .store import SessionStore

logger = logging.getLogger(__name__)

TICK_JOB_ID = "timer_tick"
REFRESH_JOB_ID = "session_refresh"
CONFIRM_JOB_ID = "confirm_disconnect_deadline"
TICK_INTERVAL_S = 1
REFRESH_INTERVAL_S = 5


class TimerRuntime:
    def __init__(
        self,
        store: SessionStore,
        signal: ActivitySignal,
        sink: Optional[NotificationSink] = None,
        *,
        session_id: str = "local",
        variant: Optional[NotifierVariant] = NotifierVariant.BELL,
        confirm_disconnect: bool = True,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.signal = signal
        self.scheduler = scheduler
        self._clock = clock
        self.controller = TransitionController(
            store,
            session_id,
            confirm_disconnects=confirm_disconnect and signal.kind == SignalKind.POWER,
        )
        self.notifier: Optional[PeriodicNotifier] = None
        if sink is not None and variant is not None:
            self.notifier = PeriodicNotifier(sink, variant)

    @property
    def session_id(self) -> str:
        return self.controller.session_id

    # ── Lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()
        await self.store.refresh(self.session_id)

        active_now = self.signal.subscribe(self._on_signal)
        self.controller.set_signal(active_now)
        await self.signal.start()

        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=TICK_INTERVAL_S),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.refresh,
            trigger=IntervalTrigger(seconds=REFRESH_INTERVAL_S),
            id=REFRESH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Timer runtime started (session={self.session_id}, signal={self.signal.kind.value})")

    async def stop(self) -> None:
        for job_id in (TICK_JOB_ID, REFRESH_JOB_ID, CONFIRM_JOB_ID):
            self._remove_job(job_id)
        self.signal.unsubscribe(self._on_signal)
        await self.signal.stop()
        self.controller.close()
        logger.info("Timer runtime stopped")

    # ── Scheduled jobs ─────────────────────────────────────────

    async def tick(self) -> None:
        self.evaluate(self._clock())

    async def refresh(self) -> None:
        await self.store.refresh(self.session_id)

    def evaluate(self, now: float) -> ControlResult:
        """One reconciliation pass: controller transitions, then notifier."""
        result = self._apply(self.controller.tick(now))
        if self.notifier is not None:
            self.notifier.evaluate(self.controller.session, now)
        return result

    # ── Signal ─────────────────────────────────────────────────

    def _on_signal(self, event: ActivityEvent) -> None:
        logger.info(f"{self.signal.kind.value} signal -> {'active' if event.active else 'inactive'}")
        self.store.log_event(self.session_id, self.signal.kind.value, event)
        self._apply(self.controller.on_signal(event, self._clock()))

    def push_signal(self, active: bool) -> bool:
        """Feed a pushed signal value. False when the signal is not push-driven."""
        if not isinstance(self.signal, PushSignal):
            return False
        self.signal.push(active)
        return True

    # ── User operations ────────────────────────────────────────

    def start_timer(self, duration: float) -> ControlResult:
        return self._apply(self.controller.start(duration, self._clock()))

    def stop_alarm(self) -> ControlResult:
        return self._apply(self.controller.stop_alarm(self._clock()))

    def reset(self) -> ControlResult:
        return self._apply(self.controller.reset(self._clock()))

    def confirm_disconnect(self) -> ControlResult:
        return self._apply(self.controller.confirm_disconnect(self._clock()))

    # ── Presentation ───────────────────────────────────────────

    def snapshot(self, now: Optional[float] = None) -> dict:
        now = self._clock() if now is None else now
        session = self.controller.session
        state = reconcile(session, now)
        window = self.controller.confirmation
        confirmation = None
        if window is not None:
            confirmation = {
                "deadline": window.deadline,
                "seconds_left": max(0.0, window.deadline - now),
            }
        return {
            "mode": session.mode.value,
            "remaining_seconds": state.remaining,
            "display": format_hms(state.remaining),
            "progress": progress(session, now),
            "total_duration": session.total_duration,
            "last_set_duration": session.last_set_duration,
            "signal": {
                "kind": self.signal.kind.value,
                "active": self.controller.active,
                "unavailable": self.signal.unavailable_reason,
            },
            "confirmation": confirmation,
            "disconnect_confirmed": self.controller.disconnect_confirmed,
            "session": session.to_document(),
        }

    # ── Internal ───────────────────────────────────────────────

    def _apply(self, result: ControlResult) -> ControlResult:
        """Schedule or cancel the side effects a controller result calls for."""
        events = set(result.events)
        window = self.controller.confirmation
        if ControlEvent.CONFIRMATION_OPENED in events and window is not None and self.scheduler is not None:
            self.scheduler.add_job(
                self.tick,
                trigger=DateTrigger(run_date=datetime.fromtimestamp(window.deadline, tz=timezone.utc)),
                id=CONFIRM_JOB_ID,
                replace_existing=True,
            )
        elif events & CONFIRMATION_CLOSED or window is None:
            self._remove_job(CONFIRM_JOB_ID)
        if ControlEvent.FINISHED in events:
            logger.info(f"Time's up for {self.session_id}; alarm on")
        return result

    def _remove_job(self, job_id: str) -> None:
        if self.scheduler is not None and self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
