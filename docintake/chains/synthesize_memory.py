"""LLM-powered notes synthesis.

Uses Claude to merge confirmed memories into one coherent notes document
for either the firm or a single customer. The output replaces the previous
notes; it is never appended.
"""

from anthropic import AsyncAnthropic

from docintake.core.config import Settings
from docintake.core.llm import response_text
from docintake.core.logging import get_logger
from docintake.core.schemas_intake import Memory

logger = get_logger(__name__)


NOTES_SYNTHESIS_PROMPT = """You are maintaining the persistent notes an accountant keeps about {scope_label}.
These notes are read by an AI assistant before every conversation, so they must be accurate and concise.

Merge the confirmed facts below into ONE coherent notes document.

## Guidelines

- Every fact below must be represented; drop nothing that is still true
- When two facts conflict, keep the more recent one (facts are listed oldest first)
- Group related facts under short markdown headings
- Write plain, professional prose or short bullets; no preamble, no sign-off
- Do not invent facts that are not listed
- Keep the document under 600 words

## Current notes (may be empty or out of date)

{previous_notes}

## Confirmed facts ({memory_count})

{memories}

Begin your response with the notes document:"""


def format_memories(memories: list[Memory]) -> str:
    """Render memories oldest first, one bullet each."""
    ordered = sorted(memories, key=lambda m: m.created_at)
    return "\n".join(f"- [{m.created_at.date().isoformat()}] {m.content.strip()}" for m in ordered)


def render_notes_fallback(memories: list[Memory]) -> str:
    """Deterministic notes used when no model is available: one bullet per distinct fact."""
    seen: set[str] = set()
    lines = []
    for memory in sorted(memories, key=lambda m: m.created_at):
        key = " ".join(memory.content.lower().split())
        if key and key not in seen:
            seen.add(key)
            lines.append(f"- {memory.content.strip()}")
    return "\n".join(lines)


async def synthesize_notes_with_llm(
    client: AsyncAnthropic,
    settings: Settings,
    scope_label: str,
    memories: list[Memory],
    previous_notes: str = "",
) -> str:
    """
    Use Claude to synthesize a notes document from confirmed memories.

    Args:
        client: Anthropic client
        settings: Application settings
        scope_label: Who the notes are about ("the firm" or "customer Jane Doe")
        memories: All memories at the scope
        previous_notes: Notes being replaced

    Returns:
        Generated markdown notes

    Raises:
        anthropic.APIError: On transport failures
    """
    if not memories:
        return previous_notes

    prompt = NOTES_SYNTHESIS_PROMPT.format(
        scope_label=scope_label,
        previous_notes=previous_notes.strip() or "(none)",
        memory_count=len(memories),
        memories=format_memories(memories),
    )

    logger.info(f"Synthesizing notes for {scope_label} using {settings.SYNTHESIS_MODEL}")

    response = await client.messages.create(
        model=settings.SYNTHESIS_MODEL,
        max_tokens=2000,
        temperature=0,
        messages=[{"role": "user", "content": prompt}],
    )

    content = response_text(response).strip()

    logger.info(f"Generated notes document: {len(content)} chars")

    return content
