"""Vidyut timer: a countdown that advances only while an activity signal holds.

Remaining time is always derived from persisted anchor timestamps, so any
process that loads the session shows the same value.
"""

from .controller import ControlEvent, ControlResult, TransitionController
from .errors import InvalidDurationError, SignalUnavailableError, StoreWriteError, VidyutTimerError
from .notifier import NotifierVariant, PeriodicNotifier
from .reconciler import BREAK_DURATION_S, format_hms, reconcile, remaining
from .runtime import TimerRuntime
from .session import SERVER_TIMESTAMP, TimerMode, TimerSession
from .signals import ActivityEvent, Debouncer, PowerSignal, PushSignal, SignalKind, SoundSignal
from .store import MemorySessionStore, SessionStore, SqliteSessionStore

__all__ = [
    "ActivityEvent",
    "BREAK_DURATION_S",
    "ControlEvent",
    "ControlResult",
    "Debouncer",
    "InvalidDurationError",
    "MemorySessionStore",
    "NotifierVariant",
    "PeriodicNotifier",
    "PowerSignal",
    "PushSignal",
    "SERVER_TIMESTAMP",
    "SessionStore",
    "SignalKind",
    "SignalUnavailableError",
    "SoundSignal",
    "SqliteSessionStore",
    "StoreWriteError",
    "TimerMode",
    "TimerRuntime",
    "TimerSession",
    "TransitionController",
    "VidyutTimerError",
    "format_hms",
    "reconcile",
    "remaining",
]
