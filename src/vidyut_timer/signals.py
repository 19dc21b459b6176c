"""Activity signals: the boolean condition that gates the countdown.

Detectors report through a Debouncer so that only flips which persist are
delivered (500 ms to become active, 1500 ms to become inactive). A detector
that cannot be acquired is marked unavailable and reports active, so the timer
degrades to always running instead of stalling.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np
import psutil

try:
    import sounddevice as sd
except ImportError:
    sd = None

from .errors import SignalUnavailableError

logger = logging.getLogger(__name__)

ACTIVATE_DEBOUNCE_S = 0.5
DEACTIVATE_DEBOUNCE_S = 1.5

POWER_POLL_INTERVAL_S = 0.5
LOUDNESS_THRESHOLD_DBFS = -45.0
SOUND_BLOCK_SIZE = 2048


class SignalKind(str, Enum):
    POWER = "power"
    SOUND = "sound"
    PUSH = "push"


@dataclass(frozen=True)
class ActivityEvent:
    active: bool
    at: float


SignalCallback = Callable[[ActivityEvent], None]


class Debouncer:
    """Sample-driven debounce with asymmetric delays.

    The first sample sets the state immediately and is reported. Afterwards a
    differing value must persist for its delay before it is reported; a sample
    equal to the committed state drops the pending flip.
    """

    def __init__(
        self,
        activate_after: float = ACTIVATE_DEBOUNCE_S,
        deactivate_after: float = DEACTIVATE_DEBOUNCE_S,
    ):
        self.activate_after = activate_after
        self.deactivate_after = deactivate_after
        self._state: Optional[bool] = None
        self._pending_since: Optional[float] = None

    @property
    def state(self) -> Optional[bool]:
        return self._state

    @property
    def pending(self) -> bool:
        return self._pending_since is not None

    def sample(self, value: bool, at: float) -> Optional[ActivityEvent]:
        if self._state is None:
            self._state = value
            return ActivityEvent(active=value, at=at)

        if value == self._state:
            self._pending_since = None
            return None

        if self._pending_since is None:
            self._pending_since = at

        delay = self.activate_after if value else self.deactivate_after
        if at - self._pending_since >= delay:
            self._state = value
            self._pending_since = None
            return ActivityEvent(active=value, at=at)
        return None

    def reset(self) -> None:
        self._state = None
        self._pending_since = None


class ActivitySignal:
    """Base for detectors: listener fan-out plus the unavailable fallback."""

    kind: SignalKind

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._listeners: list[SignalCallback] = []
        self._active: Optional[bool] = None
        self.unavailable_reason: Optional[str] = None

    @property
    def active_now(self) -> Optional[bool]:
        """Current state; None until the first reading."""
        return self._active

    @property
    def unavailable(self) -> bool:
        return self.unavailable_reason is not None

    def subscribe(self, callback: SignalCallback) -> Optional[bool]:
        self._listeners.append(callback)
        return self._active

    def unsubscribe(self, callback: SignalCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def start(self) -> None:
        """Begin detection. Subclasses override."""

    async def stop(self) -> None:
        """Stop detection and release the device. Subclasses override."""

    def _emit(self, event: ActivityEvent) -> None:
        self._active = event.active
        for callback in list(self._listeners):
            callback(event)

    def _mark_unavailable(self, reason: str) -> None:
        """Record why detection failed and fall back to active."""
        self.unavailable_reason = reason
        logger.warning(f"{self.kind.value} signal unavailable ({reason}); treating as active")
        if self._active is not True:
            self._emit(ActivityEvent(active=True, at=self._clock()))


class PushSignal(ActivitySignal):
    """State pushed by an external, already-debounced detector."""

    kind = SignalKind.PUSH

    def push(self, active: bool, at: Optional[float] = None) -> Optional[ActivityEvent]:
        if active == self._active:
            return None
        event = ActivityEvent(active=active, at=self._clock() if at is None else at)
        self._emit(event)
        return event


class _SampledSignal(ActivitySignal):
    """Detector fed by raw samples that pass through a Debouncer."""

    def __init__(self, clock: Callable[[], float] = time.time, debouncer: Optional[Debouncer] = None):
        super().__init__(clock)
        self._debouncer = debouncer or Debouncer()

    def feed(self, value: bool, at: Optional[float] = None) -> Optional[ActivityEvent]:
        event = self._debouncer.sample(value, self._clock() if at is None else at)
        if event is not None:
            self._emit(event)
        return event


class PowerSignal(_SampledSignal):
    """Charging state from the battery sensor, polled."""

    kind = SignalKind.POWER

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        poll_interval: float = POWER_POLL_INTERVAL_S,
        debouncer: Optional[Debouncer] = None,
    ):
        super().__init__(clock, debouncer)
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None

    def read_plugged(self) -> bool:
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, NotImplementedError, OSError) as e:
            raise SignalUnavailableError(f"battery sensor error: {e}") from e
        if battery is None:
            raise SignalUnavailableError("no battery present")
        if battery.power_plugged is None:
            raise SignalUnavailableError("charging state not reported")
        return bool(battery.power_plugged)

    def poll_once(self) -> Optional[ActivityEvent]:
        return self.feed(self.read_plugged())

    async def start(self) -> None:
        if self._task is not None:
            return
        try:
            self.poll_once()
        except SignalUnavailableError as e:
            self._mark_unavailable(str(e))
            return
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                self.poll_once()
            except SignalUnavailableError as e:
                self._mark_unavailable(str(e))
                return


def rms_dbfs(block: np.ndarray) -> float:
    """Loudness of a float sample block in dBFS (full scale = 1.0)."""
    samples = np.asarray(block, dtype=np.float64)
    if samples.size == 0:
        return float("-inf")
    rms = float(np.sqrt(np.mean(np.square(samples))))
    if rms <= 0:
        return float("-inf")
    return 20 * float(np.log10(rms))


class SoundSignal(_SampledSignal):
    """Ambient sound presence from the default microphone."""

    kind = SignalKind.SOUND

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        threshold_dbfs: float = LOUDNESS_THRESHOLD_DBFS,
        samplerate: Optional[int] = None,
        debouncer: Optional[Debouncer] = None,
    ):
        super().__init__(clock, debouncer)
        self.threshold_dbfs = threshold_dbfs
        self.samplerate = samplerate
        self._stream = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def is_loud(self, block: np.ndarray) -> bool:
        return rms_dbfs(block) > self.threshold_dbfs

    async def start(self) -> None:
        if self._stream is not None:
            return
        if sd is None:
            self._mark_unavailable("sounddevice is not installed")
            return
        self._loop = asyncio.get_running_loop()
        try:
            self._stream = sd.InputStream(
                channels=1,
                dtype="float32",
                blocksize=SOUND_BLOCK_SIZE,
                samplerate=self.samplerate,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            self._mark_unavailable(f"microphone error: {e}")
            return
        # microphone acquired: start from silence
        self.feed(False)
        logger.info("Sound signal started")

    async def stop(self) -> None:
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        self._debouncer.reset()
        self._active = None

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        # runs on the audio thread; hand the sample to the event loop
        loud = self.is_loud(indata[:, 0])
        self._loop.call_soon_threadsafe(self._feed_from_stream, loud)

    def _feed_from_stream(self, loud: bool) -> None:
        # blocks queued before stop() land after it; drop them
        if self._stream is None:
            return
        self.feed(loud)


def build_signal(kind: SignalKind, clock: Callable[[], float] = time.time) -> ActivitySignal:
    if kind == SignalKind.POWER:
        return PowerSignal(clock=clock)
    if kind == SignalKind.SOUND:
        return SoundSignal(clock=clock)
    return PushSignal(clock=clock)
