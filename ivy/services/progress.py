"""
Progress stream for long-running batch operations (inventory sync, price rule application).

An operation writes human-readable events to a ProgressReporter; the HTTP layer drains
them as Server-Sent Events. The operation runs as its own task so a client closing the
connection does not stop server-side work. A successful run ends with a "DONE" success
event; the channel is always closed, whatever happened.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional

from ivy.config import settings

logger = logging.getLogger(__name__)

EVENT_TYPES = ("info", "success", "warning", "error", "progress")
DONE_MESSAGE = "DONE"

_LOG_LEVELS = {
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProgressEvent:
    message: str
    type: str = "info"
    timestamp: str = field(default_factory=_now_iso)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)


class ProgressReporter:
    """One-directional event channel. send() never blocks; close() ends the stream."""

    def __init__(self, name: str = "progress"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.events: list[ProgressEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: str, type: str = "info") -> None:
        if type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {type}")
        if self._closed:
            logger.debug("%s: event after close dropped: %s", self.name, message)
            return
        event = ProgressEvent(message=message, type=type)
        self.events.append(event)
        if message:
            logger.log(_LOG_LEVELS.get(type, logging.INFO), "%s: %s", self.name, message)
        self._queue.put_nowait(event)

    def info(self, message: str) -> None:
        self.send(message, "info")

    def success(self, message: str) -> None:
        self.send(message, "success")

    def warning(self, message: str) -> None:
        self.send(message, "warning")

    def error(self, message: str) -> None:
        self.send(message, "error")

    def progress(self, message: str) -> None:
        self.send(message, "progress")

    def done(self) -> None:
        self.send(DONE_MESSAGE, "success")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def iter_events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


# Detached operations are kept referenced until they finish
_running_tasks: set = set()


class OperationAborted(Exception):
    """Expected stop (shop not found, inactive rule...): message is reported as is."""


async def _run_reported(operation: Callable[[ProgressReporter], Awaitable[None]], reporter: ProgressReporter) -> None:
    try:
        await operation(reporter)
        reporter.done()
    except OperationAborted as e:
        logger.warning("%s aborted: %s", reporter.name, e)
        reporter.error(str(e))
    except Exception as e:
        logger.exception("%s failed: %s", reporter.name, e)
        # exception text may carry SQL and parameters
        reporter.error(f"❌ Erreur: {e}" if settings.IS_DEVELOPMENT else "❌ Erreur interne")
    finally:
        reporter.close()


def start_operation(
    operation: Callable[[ProgressReporter], Awaitable[None]],
    name: str = "progress",
    reporter: Optional[ProgressReporter] = None,
) -> ProgressReporter:
    """Run operation in a detached task and return the reporter it writes to."""
    reporter = reporter or ProgressReporter(name)
    task = asyncio.create_task(_run_reported(operation, reporter))
    _running_tasks.add(task)
    task.add_done_callback(_running_tasks.discard)
    return reporter


async def stream_operation(
    operation: Callable[[ProgressReporter], Awaitable[None]],
    name: str = "progress",
) -> AsyncIterator[dict]:
    """Start operation and yield its events as SSE payloads for EventSourceResponse."""
    reporter = start_operation(operation, name=name)
    async for event in reporter.iter_events():
        yield {"data": event.to_json()}
