"""Reconciler: remaining time derived from persisted anchors.

Pure functions over a TimerSession snapshot and the current time. Nothing here
keeps a running counter; every value is recomputed from start_time,
pause_time, break_start_time and accumulated_pause_time, so a reloaded process
reproduces exactly what a long-lived one would show.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .session import TimerMode, TimerSession

BREAK_DURATION_S = 120


class DueTransition(str, Enum):
    FINISH = "finish"
    RESTART = "restart"


@dataclass(frozen=True)
class Reconciliation:
    mode: TimerMode
    remaining: float
    elapsed: float
    due: Optional[DueTransition] = None


def elapsed(session: TimerSession, now: float) -> float:
    """Active seconds counted so far in the current run (pauses excluded)."""
    if session.start_time is None:
        return 0.0
    value = (now - session.start_time) - session.accumulated_pause_time
    if session.mode == TimerMode.PAUSED and session.pause_time is not None:
        # open pause interval, not yet folded into accumulated_pause_time
        value -= now - session.pause_time
    return max(0.0, value)


def remaining(session: TimerSession, now: float) -> float:
    """Seconds left in the current countdown or break, never negative.

    For idle the value is last_set_duration and for finished it is 0; both are
    display conveniences rather than reconciled values.
    """
    mode = session.mode
    if mode == TimerMode.BREAK:
        if session.break_start_time is None:
            # no anchor to count from: treat the break as over so it restarts
            return 0.0
        return max(0.0, BREAK_DURATION_S - (now - session.break_start_time))
    if mode == TimerMode.IDLE:
        return float(session.last_set_duration)
    if mode == TimerMode.FINISHED:
        return 0.0
    return max(0.0, session.total_duration - elapsed(session, now))


def elapsed_active(session: TimerSession, now: float) -> float:
    """total_duration - remaining for a countdown run; 0 outside one."""
    if session.mode not in (TimerMode.RUNNING, TimerMode.PAUSED, TimerMode.FINISHED):
        return 0.0
    return session.total_duration - remaining(session, now)


def reconcile(session: TimerSession, now: float) -> Reconciliation:
    """Remaining time, mode, and which time-driven transition (if any) is due."""
    left = remaining(session, now)
    due = None
    if session.mode == TimerMode.RUNNING and left == 0:
        due = DueTransition.FINISH
    elif session.mode == TimerMode.BREAK and left == 0:
        due = DueTransition.RESTART
    return Reconciliation(
        mode=session.mode,
        remaining=left,
        elapsed=elapsed_active(session, now),
        due=due,
    )


# ---- Display helpers ----

def format_hms(seconds: float) -> str:
    """Format seconds as HH:MM:SS, rounding partial seconds up."""
    total = max(0, math.ceil(seconds))
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02}:{m:02}:{s:02}"


def progress(session: TimerSession, now: float) -> float:
    """Fraction of the current countdown (or break) still remaining, in [0, 1]."""
    if session.mode == TimerMode.BREAK:
        total = BREAK_DURATION_S
    elif session.mode in (TimerMode.RUNNING, TimerMode.PAUSED):
        total = session.total_duration
    else:
        return 0.0
    if total <= 0:
        return 0.0
    return min(1.0, remaining(session, now) / total)
