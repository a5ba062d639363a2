"""Status recomputation and per-intake serialization shared by the services."""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager

from docintake.core.errors import NotFoundError
from docintake.core.intake_state_machine import (
    STATUS_LABELS,
    StatusTransition,
    compute_next_status,
    is_allowed_transition,
)
from docintake.core.logging import get_logger, log_with_context
from docintake.core.schemas_intake import Intake
from docintake.db.repository import Repository

logger = get_logger(__name__)


class IntakeLocks:
    """One asyncio.Lock per intake; operations on different intakes never wait on each other.

    A lock lives only while some operation holds or waits for it, so the
    registry stays as small as the number of intakes currently busy.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._guard = threading.Lock()

    @asynccontextmanager
    async def for_intake(self, intake_id: str):
        with self._guard:
            lock = self._locks.get(intake_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[intake_id] = lock
            self._users[intake_id] = self._users.get(intake_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            with self._guard:
                self._users[intake_id] -= 1
                if not self._users[intake_id]:
                    del self._users[intake_id]
                    del self._locks[intake_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def require_intake(repository: Repository, intake_id: str) -> Intake:
    intake = repository.get_intake(intake_id)
    if intake is None:
        raise NotFoundError("Intake", intake_id)
    return intake


def recompute_status(
    repository: Repository,
    intake: Intake,
    prior_return_certified: bool = False,
) -> tuple[Intake, StatusTransition]:
    """
    Recompute and persist an intake's status from its current documents.

    Call after every document mutation, inside the same operation.

    Returns:
        (intake as persisted, transition)
    """
    documents = repository.list_documents(intake.id)
    transition = compute_next_status(intake.status, documents, prior_return_certified)

    if not transition.changed:
        return intake, transition

    if not is_allowed_transition(transition.previous, transition.current):
        raise RuntimeError(f"Illegal status transition {transition.previous} -> {transition.current}")

    updated = repository.update_intake_status(intake.id, transition.current)
    if updated is None:
        raise NotFoundError("Intake", intake.id)

    log_with_context(
        logger,
        logging.INFO,
        f"Intake status {STATUS_LABELS[transition.previous]} -> {STATUS_LABELS[transition.current]}",
        intake_id=intake.id,
        reason=transition.reason,
    )
    return updated, transition
