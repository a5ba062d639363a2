"""Analysis adapter: the narrow interface the workflow uses to reach the model.

Every method returns a usable result even when the model is unreachable.
Failures come back labeled (``degraded=True`` plus an "AI unavailable"
message) and never look like success, so gating decisions built on them
fail closed. Only ``synthesize_notes`` raises, because the caller has its
own deterministic fallback.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol

from anthropic import AsyncAnthropic

from docintake.chains.chat_turn import detect_memories, extract_document_requests, stream_reply
from docintake.chains.classify_document import classify_document
from docintake.chains.plan_next_steps import plan_next_steps
from docintake.chains.synthesize_memory import synthesize_notes_with_llm
from docintake.core.config import Settings
from docintake.core.llm import classify_llm_error, get_async_client
from docintake.core.logging import get_logger
from docintake.core.schemas_analysis import (
    DocumentAnalysis,
    HistoryMessage,
    NextSteps,
    TurnContext,
    TurnFragment,
)
from docintake.core.schemas_intake import (
    CustomerDetail,
    DetectedMemory,
    Document,
    Intake,
    Memory,
)

logger = get_logger(__name__)


class AnalysisAdapter(Protocol):
    """What the workflow needs from the model."""

    async def classify(self, file_name: str, document_text: str, intake: Intake) -> DocumentAnalysis:
        ...

    async def plan_next_steps(
        self, intake: Intake, documents: list[Document], details: list[CustomerDetail]
    ) -> NextSteps:
        ...

    async def detect_memories(self, message: str, context: TurnContext) -> list[DetectedMemory]:
        ...

    def respond(
        self, history: list[HistoryMessage], message: str, context: TurnContext
    ) -> AsyncIterator[TurnFragment]:
        ...

    async def synthesize_notes(
        self, scope_label: str, memories: list[Memory], previous_notes: str
    ) -> str:
        ...


def dedupe_memories(memories: list[DetectedMemory]) -> list[DetectedMemory]:
    """Drop repeated facts (case and whitespace insensitive), keeping first occurrence."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for memory in memories:
        key = (memory.scope, " ".join(memory.content.lower().split()))
        if key not in seen:
            seen.add(key)
            unique.append(memory)
    return unique


class AnthropicAnalysisAdapter:
    """Analysis adapter backed by the Anthropic Messages API."""

    def __init__(self, settings: Settings, client: AsyncAnthropic | None = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = get_async_client(self.settings)
        return self._client

    async def classify(self, file_name: str, document_text: str, intake: Intake) -> DocumentAnalysis:
        try:
            return await classify_document(self._get_client(), self.settings, file_name, document_text, intake)
        except Exception as e:
            error = classify_llm_error(e)
            logger.warning(f"Classification unavailable for {file_name}: reason={error.reason} error={e}")
            return DocumentAnalysis(
                is_valid=False,
                feedback=f"{error} Unable to analyze {file_name} at this time.",
                degraded=True,
                failure_reason=error.reason,
            )

    async def plan_next_steps(
        self, intake: Intake, documents: list[Document], details: list[CustomerDetail]
    ) -> NextSteps:
        try:
            return await plan_next_steps(self._get_client(), self.settings, intake, documents, details)
        except Exception as e:
            error = classify_llm_error(e)
            logger.warning(f"Next-step planning unavailable: reason={error.reason} error={e}")
            return NextSteps(
                message=f"{error} Unable to determine next steps at this time.",
                degraded=True,
            )

    async def detect_memories(self, message: str, context: TurnContext) -> list[DetectedMemory]:
        try:
            found = await detect_memories(self._get_client(), self.settings, message, context)
        except Exception as e:
            logger.warning(f"Memory detection unavailable: {classify_llm_error(e).reason}")
            return []
        return dedupe_memories(found)

    async def respond(
        self, history: list[HistoryMessage], message: str, context: TurnContext
    ) -> AsyncIterator[TurnFragment]:
        """
        Stream a reply as TurnFragments.

        Yields text fragments in order, at most one early fragment carrying
        detected memories as soon as detection finishes, and a final
        fragment with the de-duplicated memories and requested documents.
        """
        memory_task = asyncio.create_task(self.detect_memories(message, context))
        memories_sent = False
        reply_parts: list[str] = []
        degraded = False

        try:
            try:
                async for text in stream_reply(self._get_client(), self.settings, history, message, context):
                    if not memories_sent and memory_task.done():
                        memories_sent = True
                        if memory_task.result():
                            yield TurnFragment(detected_memories=memory_task.result())
                    reply_parts.append(text)
                    yield TurnFragment(text=text)
            except Exception as e:
                error = classify_llm_error(e)
                logger.warning(f"Chat reply unavailable: reason={error.reason} error={e}")
                degraded = True
                notice = f"{error} Unable to generate a response at this time."
                if reply_parts:
                    notice = f"\n\n{notice}"
                reply_parts.append(notice)
                yield TurnFragment(text=notice, degraded=True)

            memories = await memory_task
            if not memories_sent and memories:
                yield TurnFragment(detected_memories=memories)

            requested = []
            if not degraded:
                try:
                    requested = await extract_document_requests(
                        self._get_client(), self.settings, message, "".join(reply_parts), context
                    )
                except Exception as e:
                    logger.warning(f"Document request extraction unavailable: {classify_llm_error(e).reason}")

            yield TurnFragment(
                final=True,
                detected_memories=memories,
                requested_documents=requested,
                degraded=degraded,
            )
        finally:
            if not memory_task.done():
                memory_task.cancel()

    async def synthesize_notes(self, scope_label: str, memories: list[Memory], previous_notes: str) -> str:
        try:
            return await synthesize_notes_with_llm(
                self._get_client(), self.settings, scope_label, memories, previous_notes
            )
        except Exception as e:
            raise classify_llm_error(e) from e
