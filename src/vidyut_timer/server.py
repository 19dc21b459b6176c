"""HTTP surface for the timer runtime (FastAPI)."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Deque, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .config import Settings
from .errors import InvalidDurationError
from .runtime import TimerRuntime
from .signals import build_signal
from .sinks import SubprocessSink
from .store import MemorySessionStore, SessionStore, SqliteSessionStore

logger = logging.getLogger("vidyut_timer")
logger.setLevel(logging.INFO)

# ============ Server-side Log Buffer ============

LOG_BUFFER_SIZE = 100
log_buffer: Deque[dict] = deque(maxlen=LOG_BUFFER_SIZE)


class LogBufferHandler(logging.Handler):
    """Captures log records into the circular buffer served at /api/logs."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))
logger.addHandler(buffer_handler)
logging.getLogger("uvicorn").addHandler(buffer_handler)


def _asyncio_exception_handler(loop, context):
    """Log uncaught exceptions from asyncio tasks before the default handling."""
    exception = context.get("exception")
    if exception is not None:
        logger.error(f"Unhandled asyncio error: {type(exception).__name__}: {exception}")
    else:
        logger.error(f"Asyncio error: {context.get('message')}")
    loop.default_exception_handler(context)


# ============ Request/Response Models ============

class StartTimerRequest(BaseModel):
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)
    seconds: int = Field(default=0, ge=0)

    @property
    def duration(self) -> int:
        return self.hours * 3600 + self.minutes * 60 + self.seconds


class SignalRequest(BaseModel):
    active: bool


class LogEntry(BaseModel):
    timestamp: str
    level: str
    logger: str
    message: str


class LogsResponse(BaseModel):
    logs: List[LogEntry]
    count: int


# ============ App Factory ============

def build_store(settings: Settings, clock: Callable[[], float] = time.time) -> SessionStore:
    if settings.store == "memory":
        return MemorySessionStore(clock=clock)
    return SqliteSessionStore(settings.db_path, clock=clock)


def _runtime(request: Request) -> TimerRuntime:
    return request.app.state.runtime


def _respond(runtime: TimerRuntime, result) -> dict:
    if not result.accepted:
        raise HTTPException(status_code=409, detail=result.reason)
    return {
        "success": True,
        "events": [event.value for event in result.events],
        "timer": runtime.snapshot(),
    }


def create_app(settings: Optional[Settings] = None, clock: Callable[[], float] = time.time) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(_asyncio_exception_handler)

        store = build_store(settings, clock)
        if isinstance(store, SqliteSessionStore):
            await store.start()
        variant = settings.notifier_variant
        sink = SubprocessSink(settings.sound_file, settings.voice) if variant is not None else None
        scheduler = AsyncIOScheduler()
        runtime = TimerRuntime(
            store,
            build_signal(settings.signal, clock),
            sink,
            session_id=settings.session_id,
            variant=variant,
            confirm_disconnect=settings.confirm_disconnect,
            scheduler=scheduler,
            clock=clock,
        )
        app.state.runtime = runtime
        await runtime.start()
        logger.info(f"Vidyut timer serving session '{settings.session_id}' ({settings.store} store)")
        yield

        await runtime.stop()
        scheduler.shutdown(wait=False)
        if isinstance(store, SqliteSessionStore):
            await store.close()
        if sink is not None:
            sink.close()
        logger.info("Vidyut timer stopped")

    app = FastAPI(
        title="Vidyut Timer",
        description="Countdown timer that runs only while its activity signal holds",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/api/timer")
    async def get_timer(request: Request):
        return _runtime(request).snapshot()

    @app.post("/api/timer/start")
    async def start_timer(body: StartTimerRequest, request: Request):
        runtime = _runtime(request)
        try:
            result = runtime.start_timer(body.duration)
        except InvalidDurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _respond(runtime, result)

    @app.post("/api/timer/stop-alarm")
    async def stop_alarm(request: Request):
        runtime = _runtime(request)
        return _respond(runtime, runtime.stop_alarm())

    @app.post("/api/timer/reset")
    async def reset_timer(request: Request):
        runtime = _runtime(request)
        return _respond(runtime, runtime.reset())

    @app.post("/api/timer/confirm-disconnect")
    async def confirm_disconnect(request: Request):
        """Keep running through the current power disconnect."""
        runtime = _runtime(request)
        return _respond(runtime, runtime.confirm_disconnect())

    @app.post("/api/signal")
    async def push_signal(body: SignalRequest, request: Request):
        runtime = _runtime(request)
        if not runtime.push_signal(body.active):
            raise HTTPException(
                status_code=409,
                detail=f"Signal is '{runtime.signal.kind.value}', not push-driven",
            )
        return {"success": True, "timer": runtime.snapshot()}

    @app.get("/api/events")
    async def recent_events(request: Request, limit: int = 50):
        runtime = _runtime(request)
        limit = max(1, min(limit, 500))
        events = await runtime.store.recent_events(runtime.session_id, limit)
        return {"events": events, "count": len(events)}

    @app.get("/api/logs", response_model=LogsResponse)
    async def get_recent_logs(limit: int = 50):
        limit = max(1, min(limit, LOG_BUFFER_SIZE))
        recent_logs = list(log_buffer)[-limit:]
        return {"logs": recent_logs, "count": len(recent_logs)}

    return app


def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
