"""Chat turn generation: streamed reply plus structured side results.

A turn makes up to three calls:
  - ``detect_memories`` runs on the accountant's message alone, so its
    result can reach the client before the reply finishes.
  - ``stream_reply`` streams the natural-language answer.
  - ``extract_document_requests`` reads the message and the finished reply
    and lists documents the reply asked for.

Usage:
    from docintake.chains.chat_turn import detect_memories, stream_reply

    async for text in stream_reply(client, settings, history, message, context):
        ...
"""

import json
import re
from collections.abc import AsyncIterator

from anthropic import AsyncAnthropic
from pydantic import BaseModel, Field, ValidationError

from docintake.core.config import Settings
from docintake.core.llm import parse_llm_json, parse_llm_json_dict, response_text
from docintake.core.logging import get_logger
from docintake.core.schemas_analysis import HistoryMessage, TurnContext
from docintake.core.schemas_intake import DetectedMemory, DocumentRequest, DocumentStatus

logger = get_logger(__name__)

# Phrases that suggest the accountant is stating a durable fact or preference
MEMORY_KEYWORDS = [
    r"\b(?:always|never|every year|each year|usually|prefers?|preference)\b",
    r"\b(?:remember|note that|keep in mind|going forward|from now on)\b",
    r"\b(?:married|divorced|widowed|dependent|child|moved|relocated|retired)\b",
    r"\b(?:our firm|we (?:always|never|require)|policy)\b",
    r"\b(?:works? (?:for|at)|employer|self-employed|rental|owns?)\b",
]

CHAT_SYSTEM_PROMPT = """You are a friendly, professional tax preparation assistant helping an accountant \
collect documents and information for a customer's {tax_year} tax return.

Customer: {customer_name}
Intake status: {status}

Documents:
{documents}

Customer details on file:
{details}

Firm notes:
{firm_notes}

Customer notes:
{customer_notes}

Provide a helpful, concise response. If the accountant is providing information, acknowledge it.
If they ask a question, answer from tax preparation best practice. When a further document is
needed, say so plainly and name the form, year, and issuer."""

MEMORY_PROMPT = """You watch an accountant's chat messages for durable facts worth remembering.

ONLY extract facts that will still matter next year or for other customers:
- customer facts (family situation, employers, properties, preferences)
- firm-wide practices (policies, preferred workflows)
DO NOT extract questions, one-off requests, or anything already in the notes below.

Existing notes:
{notes}

Accountant message:
\"\"\"{message}\"\"\"

Return a JSON array (possibly empty), at most 3 items:
[{{"content": "one-sentence fact", "scope": "customer|firm"}}]"""

REQUESTS_PROMPT = """Read this exchange from a tax document intake chat.

Accountant: \"\"\"{message}\"\"\"
Assistant reply: \"\"\"{reply}\"\"\"

Documents already tracked (do NOT repeat these):
{documents}

List every document the assistant's reply asks the customer to provide. Return a JSON object:
{{"requested_documents": [{{"name": "e.g. '1099-INT from Chase for {tax_year}'", "document_type": "e.g. '1099-INT'", "year": "{tax_year}", "entity": "issuer or null", "provenance": {{"quote": "sentence from the reply"}}}}]}}
Return {{"requested_documents": []}} when nothing is asked for."""


class _MemoryList(BaseModel):
    memories: list[DetectedMemory] = Field(default_factory=list)


class _RequestList(BaseModel):
    requested_documents: list[DocumentRequest] = Field(default_factory=list)


def _describe_documents(context: TurnContext) -> str:
    if not context.documents:
        return "None yet"
    return "\n".join(
        f"- {d.name} ({'received' if d.status == DocumentStatus.COMPLETED else 'requested'})"
        for d in context.documents
    )


def _describe_details(context: TurnContext) -> str:
    lines = [f"- {d.label}: {d.value}" for d in context.details if d.value]
    return "\n".join(lines[:40]) if lines else "None"


def build_system_prompt(context: TurnContext) -> str:
    return CHAT_SYSTEM_PROMPT.format(
        tax_year=context.intake.tax_year,
        customer_name=context.customer.name,
        status=context.intake.status.value,
        documents=_describe_documents(context),
        details=_describe_details(context),
        firm_notes=context.firm_notes or "None",
        customer_notes=context.customer.notes or "None",
    )


def should_detect_memories(message: str) -> bool:
    """Quick keyword check before spending a model call on memory detection."""
    text = message.lower()
    if len(text) < 20:
        return False
    return any(re.search(pattern, text) for pattern in MEMORY_KEYWORDS)


async def detect_memories(
    client: AsyncAnthropic,
    settings: Settings,
    message: str,
    context: TurnContext,
) -> list[DetectedMemory]:
    """
    Extract candidate memories from an accountant message.

    Returns an empty list when the heuristic finds nothing worth a call.

    Raises:
        anthropic.APIError: On transport failures
    """
    if not should_detect_memories(message):
        return []

    notes = "\n".join(filter(None, [context.firm_notes, context.customer.notes])) or "None"
    response = await client.messages.create(
        model=settings.EXTRACT_MODEL,
        max_tokens=600,
        temperature=0,
        messages=[{"role": "user", "content": MEMORY_PROMPT.format(notes=notes, message=message[:4000])}],
    )

    raw_output = response_text(response)
    try:
        data = parse_llm_json_dict(raw_output)
        if isinstance(data, list):
            data = {"memories": data}
        return _MemoryList.model_validate(data).memories[:3]
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Memory detection output unusable: {e}")
        return []


async def stream_reply(
    client: AsyncAnthropic,
    settings: Settings,
    history: list[HistoryMessage],
    message: str,
    context: TurnContext,
) -> AsyncIterator[str]:
    """
    Stream the assistant's reply text in generation order.

    Raises:
        anthropic.APIError: On transport failures
    """
    recent_history = [
        {"role": m.role, "content": m.content}
        for m in history[-settings.CHAT_HISTORY_WINDOW:]
        if m.content.strip()
    ]
    messages = _merge_consecutive(recent_history + [{"role": "user", "content": message}])

    async with client.messages.stream(
        model=settings.CHAT_MODEL,
        max_tokens=settings.CHAT_MAX_TOKENS,
        system=build_system_prompt(context),
        messages=messages,
    ) as stream:
        async for text in stream.text_stream:
            if text:
                yield text


def _merge_consecutive(messages: list[dict]) -> list[dict]:
    """Merge same-role neighbours and drop a leading assistant turn; the API requires alternation."""
    merged: list[dict] = []
    for m in messages:
        if merged and merged[-1]["role"] == m["role"]:
            merged[-1] = {"role": m["role"], "content": f"{merged[-1]['content']}\n\n{m['content']}"}
        else:
            merged.append(dict(m))
    while merged and merged[0]["role"] != "user":
        merged.pop(0)
    return merged


async def extract_document_requests(
    client: AsyncAnthropic,
    settings: Settings,
    message: str,
    reply: str,
    context: TurnContext,
) -> list[DocumentRequest]:
    """
    List documents the finished reply asked for.

    Raises:
        anthropic.APIError: On transport failures
    """
    if not reply.strip():
        return []

    response = await client.messages.create(
        model=settings.EXTRACT_MODEL,
        max_tokens=1000,
        temperature=0,
        messages=[
            {
                "role": "user",
                "content": REQUESTS_PROMPT.format(
                    message=message[:2000],
                    reply=reply[:6000],
                    documents=_describe_documents(context),
                    tax_year=context.intake.tax_year,
                ),
            }
        ],
    )

    try:
        return parse_llm_json(response_text(response), _RequestList).requested_documents
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Document request extraction output unusable: {e}")
        return []
