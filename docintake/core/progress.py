"""Upload pipeline progress: event schema and listener registry.

The broadcaster maps a key (customer id or intake id) to the set of
listeners currently subscribed to it. Publishing never blocks: each listener
owns a bounded queue, and a listener whose queue is full or whose loop has
gone away is dropped rather than allowed to stall the others. There is no
replay; a listener that joins mid-upload sees only later events.
"""

import asyncio
import logging
import threading
from enum import Enum

from pydantic import BaseModel, Field

from docintake.core.logging import get_logger, log_with_context

logger = get_logger(__name__)


class ProgressStep(str, Enum):
    """Upload pipeline step."""
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    EXTRACTING = "extracting"
    MATCHING = "matching"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STEPS = frozenset({ProgressStep.COMPLETE, ProgressStep.ERROR})

STEP_PROGRESS: dict[ProgressStep, int] = {
    ProgressStep.UPLOADING: 10,
    ProgressStep.ANALYZING: 30,
    ProgressStep.EXTRACTING: 45,
    ProgressStep.MATCHING: 60,
    ProgressStep.GENERATING: 80,
    ProgressStep.COMPLETE: 100,
    ProgressStep.ERROR: 0,
}


class ProgressEvent(BaseModel):
    """One progress tick for an upload."""

    intake_id: str
    customer_id: str | None = None
    upload_id: str
    step: ProgressStep
    message: str = ""
    progress: int = Field(default=0, ge=0, le=100)

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS


class Subscription:
    """A live listener handle. Close it (or leave its ``with`` block) to unsubscribe."""

    def __init__(self, broadcaster: "ProgressBroadcaster", key: str, maxsize: int):
        self.key = key
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._loop = asyncio.get_running_loop()
        self.closed = False

    def _offer(self, event: ProgressEvent) -> bool:
        """Queue an event without blocking. Returns False if the listener should be dropped."""
        if self.closed:
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        try:
            if running is self._loop:
                self._queue.put_nowait(event)
            else:
                if self._queue.full():
                    return False
                self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except (asyncio.QueueFull, RuntimeError):
            return False
        return True

    async def get(self) -> ProgressEvent | None:
        """Wait for the next event. Returns None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def _wake(self) -> None:
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # A full queue drains first; get() then sees closed and empty
            pass

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._broadcaster._remove(self)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._wake()
        else:
            try:
                self._loop.call_soon_threadsafe(self._wake)
            except RuntimeError:
                # Listener's loop already shut down; nobody is waiting
                logger.debug(f"Progress listener loop for {self.key} already closed")

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ProgressBroadcaster:
    """Registry of progress listeners keyed by customer or intake id."""

    def __init__(self, queue_size: int = 64):
        self._queue_size = queue_size
        self._listeners: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, key: str) -> Subscription:
        """Register a listener for ``key``. Must be called from a running event loop."""
        subscription = Subscription(self, key, self._queue_size)
        with self._lock:
            self._listeners.setdefault(key, set()).add(subscription)
        logger.debug(f"Progress listener registered for {key}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            listeners = self._listeners.get(subscription.key)
            if listeners is None:
                return
            listeners.discard(subscription)
            if not listeners:
                del self._listeners[subscription.key]
        logger.debug(f"Progress listener removed for {subscription.key}")

    def publish(self, key: str, event: ProgressEvent) -> int:
        """
        Deliver an event to every live listener for ``key``.

        Returns:
            Number of listeners the event was queued for (0 if none subscribed)
        """
        with self._lock:
            listeners = list(self._listeners.get(key, ()))

        delivered = 0
        for subscription in listeners:
            if subscription._offer(event):
                delivered += 1
            else:
                logger.warning(f"Dropping unresponsive progress listener for {key}")
                subscription.close()
        return delivered

    def listener_count(self, key: str) -> int:
        with self._lock:
            return len(self._listeners.get(key, ()))

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._listeners)


class ProgressReporter:
    """Narrates one upload to listeners on both the intake and customer keys."""

    def __init__(
        self,
        broadcaster: ProgressBroadcaster,
        intake_id: str,
        customer_id: str | None,
        upload_id: str,
    ):
        self._broadcaster = broadcaster
        self.intake_id = intake_id
        self.customer_id = customer_id
        self.upload_id = upload_id

    def step(self, step: ProgressStep, message: str, progress: int | None = None) -> ProgressEvent:
        event = ProgressEvent(
            intake_id=self.intake_id,
            customer_id=self.customer_id,
            upload_id=self.upload_id,
            step=step,
            message=message,
            progress=STEP_PROGRESS[step] if progress is None else progress,
        )
        keys = {self.intake_id}
        if self.customer_id:
            keys.add(self.customer_id)
        log_with_context(
            logger,
            logging.DEBUG,
            message,
            intake_id=self.intake_id,
            upload_id=self.upload_id,
            step=step.value,
            progress=event.progress,
        )
        for key in keys:
            self._broadcaster.publish(key, event)
        return event

    def error(self, message: str) -> ProgressEvent:
        return self.step(ProgressStep.ERROR, message)
