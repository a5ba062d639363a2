"""Listener-side view of upload progress.

Shows the latest step; after a terminal step (complete or error) the view
stays visible for a grace delay and then resets to idle.
"""

import time
from collections.abc import Callable

from docintake.core.progress import ProgressEvent, ProgressStep

RESET_GRACE_SECONDS = 2.0


class ProgressTracker:
    def __init__(self, grace_seconds: float = RESET_GRACE_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._step: ProgressStep | None = None
        self._message = ""
        self._progress = 0
        self._upload_id: str | None = None
        self._reset_at: float | None = None

    def apply(self, event: ProgressEvent) -> None:
        self._step = event.step
        self._message = event.message
        self._progress = event.progress
        self._upload_id = event.upload_id
        self._reset_at = self._clock() + self.grace_seconds if event.is_terminal else None

    def _expire(self) -> None:
        if self._reset_at is not None and self._clock() >= self._reset_at:
            self._step, self._message, self._progress = None, "", 0
            self._upload_id = None
            self._reset_at = None

    @property
    def step(self) -> ProgressStep | None:
        self._expire()
        return self._step

    @property
    def message(self) -> str:
        self._expire()
        return self._message

    @property
    def progress(self) -> int:
        self._expire()
        return self._progress

    @property
    def upload_id(self) -> str | None:
        self._expire()
        return self._upload_id

    @property
    def idle(self) -> bool:
        return self.step is None
