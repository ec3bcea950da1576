"""Fire-and-forget audit log backed by a bounded queue.

Callers hand events to :meth:`AuditLog.record`, which never blocks and never
raises. A single background worker drains the queue into an
:class:`AuditSink`. A slow or failing sink therefore cannot delay or fail the
decision being audited; failed writes are logged and dropped.

**Shutdown Phases:**

1. **Queue Lock**: Disallow new events (always happens)
2. **Grace Period**: Let the worker drain what is queued, with timeout
3. **Force Cancel**: Shut the queue down and cancel the worker

**Example Usage:**

.. code-block:: python

    async with AuditLog(AuditQueries(connection)) as audit_log:
        audit_log.record(user.id, AuditEventKind.USER_LOGGED_IN, {"username": "ash"})
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, ClassVar, Self

from .events import AuditEvent, AuditEventKind

if TYPE_CHECKING:
    from types import TracebackType

    from .queries import AuditSink

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class AuditLog:
    """Append-only audit trail with a non-blocking write path.

    :cvar NO_TIMEOUT: Wait indefinitely for the queue to drain on shutdown
    """

    NO_TIMEOUT: ClassVar[None] = None
    DEFAULT_QUEUE_SIZE: ClassVar[int] = 1000
    DEFAULT_SHUTDOWN_PERIOD: ClassVar[int] = 5

    def __init__(
        self,
        sink: AuditSink,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        shutdown_period: float | None = DEFAULT_SHUTDOWN_PERIOD,
    ) -> None:
        """Create the audit log.

        :param sink: Where events are durably written
        :param max_queue_size: Events held before new ones are dropped
        :param shutdown_period: Seconds to drain the queue on shutdown
        """
        self.sink = sink
        self.shutdown_period = shutdown_period
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self.dropped = 0
        self.failed = 0

    async def __aenter__(self) -> Self:
        """Start the background writer."""
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Drain and stop the background writer."""
        await self.shutdown()

    @property
    def pending(self) -> int:
        """Number of events waiting to be written."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the background writer if it is not already running."""
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.create_task(self._drain())
        LOGGER.info("Audit log writer started")

    def record(
        self,
        actor_id: int | None,
        kind: AuditEventKind,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Queue an event for writing.

        :param actor_id: Acting user, None for anonymous or failed attempts
        :param kind: What happened
        :param details: JSON-serialisable context, never secrets or raw tokens
        :return: The queued event, or None if it was dropped
        """
        try:
            event = AuditEvent.create(actor_id, kind, details)
        except ValueError:
            LOGGER.exception("Could not build audit event of kind %s", kind)
            return None

        if self._closed:
            self.dropped += 1
            LOGGER.warning("Audit log closed, dropping %s event", event.kind)
            return None

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            LOGGER.warning("Audit queue full, dropping %s event", event.kind)
            return None
        except asyncio.QueueShutDown:
            self.dropped += 1
            LOGGER.warning("Audit queue shut down, dropping %s event", event.kind)
            return None

        return event

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the sink."""
        await self._queue.join()

    async def _drain(self) -> None:
        while True:
            try:
                event = await self._queue.get()
            except asyncio.QueueShutDown:
                break

            try:
                await self.sink.append(event)
            except Exception:  # noqa: BLE001
                self.failed += 1
                LOGGER.exception("Failed to write %s audit event", event.kind)
            finally:
                self._queue.task_done()

    async def shutdown(self) -> None:
        """Stop accepting events, drain what is queued, then stop the writer."""
        LOGGER.info("Shutting down audit log")
        self._closed = True

        if self._worker is not None:
            try:
                await asyncio.wait_for(
                    self._queue.join(),
                    timeout=self.shutdown_period,
                )
            except TimeoutError:
                LOGGER.warning(
                    "Audit shutdown period expired with %d events unwritten",
                    self._queue.qsize(),
                )

        self._queue.shutdown(immediate=True)

        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

        LOGGER.info("Audit log shutdown complete")
