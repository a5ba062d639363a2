"""Streaming chat turns.

One accountant message becomes one AI turn, reported as an ordered event
stream:

    accountant_message -> memories? -> chunk* -> complete

``complete`` is always last and is only sent once the AI reply and any
derived document requests are persisted. ``error`` replaces ``complete``
when persistence fails.

The turn runs in its own task and feeds the events through a queue. A
consumer that goes away (client disconnect) only stops reading; the turn
still finishes and persists. Turns on the same intake are serialized by
the intake lock, so derived requests always dedupe against a settled
document set.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from docintake.chains.analysis_adapter import AnalysisAdapter, dedupe_memories
from docintake.core.config import Settings
from docintake.core.document_matcher import dedupe_requests
from docintake.core.errors import InvalidInputError, NotFoundError
from docintake.core.intake_state_machine import require_chat_open
from docintake.core.logging import get_logger, log_with_context
from docintake.core.schemas_analysis import HistoryMessage, TurnContext
from docintake.core.schemas_intake import (
    ChatMessage,
    DetectedMemory,
    Document,
    Intake,
    Sender,
)
from docintake.db.repository import Repository
from docintake.services.intake_status import IntakeLocks, recompute_status, require_intake

logger = get_logger(__name__)


# ============================================================================
# Events
# ============================================================================


class AccountantMessageEvent(BaseModel):
    type: Literal["accountant_message"] = "accountant_message"
    message: ChatMessage
    client_token: str | None = None


class MemoriesEvent(BaseModel):
    type: Literal["memories"] = "memories"
    memories: list[DetectedMemory]


class ChunkEvent(BaseModel):
    type: Literal["chunk"] = "chunk"
    content: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    message: ChatMessage
    memories: list[DetectedMemory] = Field(default_factory=list)
    requested_documents: list[Document] = Field(default_factory=list)
    intake: Intake
    degraded: bool = False
    replayed: bool = Field(default=False, description="True when answering a repeated client token")


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


ChatEvent = Annotated[
    Union[AccountantMessageEvent, MemoriesEvent, ChunkEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]


class ChatTurn:
    """Consumer side of a running turn. Iterating yields events until the turn ends."""

    def __init__(self, queue: asyncio.Queue, task: asyncio.Task):
        self._queue = queue
        self.task = task

    def __aiter__(self) -> AsyncIterator:
        return self._events()

    async def _events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


# ============================================================================
# Coordinator
# ============================================================================


def _to_history(messages: list[ChatMessage]) -> list[HistoryMessage]:
    return [
        HistoryMessage(role="user" if m.sender == Sender.ACCOUNTANT else "assistant", content=m.content)
        for m in messages
        if m.content.strip()
    ]


class ChatCoordinator:
    """Runs chat turns as background tasks and streams their events."""

    def __init__(
        self,
        repository: Repository,
        adapter: AnalysisAdapter,
        settings: Settings,
        locks: IntakeLocks,
    ):
        self.repository = repository
        self.adapter = adapter
        self.settings = settings
        self.locks = locks
        self._tasks: set[asyncio.Task] = set()

    def start_turn(self, intake_id: str, content: str, client_token: str | None = None) -> ChatTurn:
        """
        Validate the submission and start its turn.

        Must be called from a running event loop.

        Raises:
            NotFoundError: Unknown intake
            InvalidInputError: Empty message
            GateClosedError: Intake still awaits its prior-year return
        """
        intake = require_intake(self.repository, intake_id)
        if not content or not content.strip():
            raise InvalidInputError("Message content is required")
        require_chat_open(intake)

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run_turn(intake.id, content.strip(), client_token, queue))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return ChatTurn(queue, task)

    async def stream_turn(
        self, intake_id: str, content: str, client_token: str | None = None
    ) -> AsyncIterator[ChatEvent]:
        """Start a turn and yield its events; closing the iterator does not stop the turn."""
        turn = self.start_turn(intake_id, content, client_token)
        async for event in turn:
            yield event

    async def drain(self) -> None:
        """Wait for every in-flight turn to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def active_turns(self) -> int:
        return len(self._tasks)

    async def _run_turn(
        self,
        intake_id: str,
        content: str,
        client_token: str | None,
        queue: asyncio.Queue,
    ) -> None:
        try:
            async with self.locks.for_intake(intake_id):
                await self._turn(intake_id, content, client_token, queue.put_nowait)
        except Exception as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Chat turn failed: {e}",
                intake_id=intake_id,
                client_token=client_token,
            )
            queue.put_nowait(ErrorEvent(message=f"Failed to complete chat turn: {e}"))
        finally:
            queue.put_nowait(None)

    def _context(self, intake: Intake) -> TurnContext:
        customer = self.repository.get_customer(intake.customer_id)
        if customer is None:
            raise NotFoundError("Customer", intake.customer_id)
        return TurnContext(
            intake=intake,
            customer=customer,
            documents=self.repository.list_documents(intake.id),
            details=self.repository.list_details(intake.id),
            firm_notes=self.repository.get_firm_settings().notes,
        )

    def _history_before(self, intake_id: str, message_id: str) -> list[HistoryMessage]:
        prior = []
        for message in self.repository.list_messages(intake_id):
            if message.id == message_id:
                break
            prior.append(message)
        window = self.settings.CHAT_HISTORY_WINDOW
        return _to_history(prior[-window:] if window > 0 else [])

    async def _turn(self, intake_id: str, content: str, client_token: str | None, emit) -> None:
        intake = require_intake(self.repository, intake_id)
        require_chat_open(intake)

        accountant = None
        if client_token:
            accountant = self.repository.find_message_by_token(intake.id, client_token)

        if accountant is not None:
            emit(AccountantMessageEvent(message=accountant, client_token=client_token))
            reply = self.repository.find_reply(intake.id, accountant.id)
            if reply is not None:
                logger.info(f"Replaying completed turn for client token {client_token}")
                emit(CompleteEvent(message=reply, intake=intake, replayed=True))
                return
            content = accountant.content
        else:
            accountant = self.repository.create_message(
                ChatMessage(
                    intake_id=intake.id,
                    sender=Sender.ACCOUNTANT,
                    content=content,
                    client_token=client_token,
                )
            )
            emit(AccountantMessageEvent(message=accountant, client_token=client_token))

        context = self._context(intake)
        history = self._history_before(intake.id, accountant.id)

        parts: list[str] = []
        memories: list[DetectedMemory] = []
        requests = []
        memories_sent = False
        degraded = False

        async for fragment in self.adapter.respond(history, content, context):
            degraded = degraded or fragment.degraded
            if fragment.final:
                memories = fragment.detected_memories
                requests = fragment.requested_documents
                continue
            if fragment.detected_memories and not memories_sent:
                memories_sent = True
                emit(MemoriesEvent(memories=dedupe_memories(fragment.detected_memories)))
            if fragment.text:
                parts.append(fragment.text)
                emit(ChunkEvent(content=fragment.text))

        memories = dedupe_memories(memories)
        if memories and not memories_sent:
            emit(MemoriesEvent(memories=memories))

        reply = self.repository.create_message(
            ChatMessage(
                intake_id=intake.id,
                sender=Sender.AI,
                content="".join(parts),
                reply_to=accountant.id,
            )
        )

        created: list[Document] = []
        for request in dedupe_requests(requests, self.repository.list_documents(intake.id)):
            created.append(
                self.repository.create_document(
                    Document(
                        intake_id=intake.id,
                        name=request.name,
                        document_type=request.document_type,
                        year=request.year,
                        entity=request.entity,
                        provenance=request.provenance,
                    )
                )
            )
        intake, _ = recompute_status(self.repository, intake)

        log_with_context(
            logger,
            logging.INFO,
            f"Chat turn complete: {len(parts)} chunk(s), {len(memories)} memory(ies), "
            f"{len(created)} new request(s)",
            intake_id=intake.id,
            client_token=client_token,
            degraded=degraded,
        )
        emit(
            CompleteEvent(
                message=reply,
                memories=memories,
                requested_documents=created,
                intake=intake,
                degraded=degraded,
            )
        )
