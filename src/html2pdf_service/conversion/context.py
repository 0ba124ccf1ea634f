import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, MutableMapping


class RequestLogger(logging.LoggerAdapter):
    """Logger bound to one request; prefixes every message with its trace id."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        trace_id = self.extra.get("trace_id") if self.extra else None
        if trace_id:
            return f"[trace-id={trace_id}] {msg}", kwargs
        return msg, kwargs

    @classmethod
    def for_request(cls, name: str, trace_id: str | None = None) -> "RequestLogger":
        return cls(logging.getLogger(name), {"trace_id": trace_id})


@dataclass
class ConversionContext:
    """Cancellation, deadline and logging handle for a single conversion.

    The HTTP layer creates one per request and passes it down explicitly;
    components never look a logger up from shared state. ``cancel()`` may be
    called from any task on the same event loop (client disconnect watcher,
    shutdown hooks); the first cause wins.
    """

    logger: logging.LoggerAdapter
    deadline: float | None = None
    cause: str | None = None
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @classmethod
    def with_timeout(cls, logger: logging.LoggerAdapter, timeout: float | None) -> "ConversionContext":
        deadline = None
        if timeout:
            deadline = asyncio.get_running_loop().time() + timeout
        return cls(logger=logger, deadline=deadline)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self, cause: str) -> None:
        if not self._cancelled.is_set():
            self.cause = cause
            self._cancelled.set()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - asyncio.get_running_loop().time())
