"""Confirmed memories and the notes they feed.

Confirming a memory appends it to the scope's log and rewrites the scope's
notes from the full log. Rewrites overwrite; concurrent rewrites are last
writer wins. Dismissal never reaches the server.
"""

import logging
from typing import Literal

from pydantic import BaseModel

from docintake.chains.analysis_adapter import AnalysisAdapter
from docintake.chains.synthesize_memory import render_notes_fallback
from docintake.core.errors import AnalysisUnavailableError, InvalidInputError, NotFoundError
from docintake.core.logging import get_logger, log_with_context
from docintake.core.schemas_intake import Memory
from docintake.db.repository import Repository

logger = get_logger(__name__)

MemoryScope = Literal["firm", "customer"]


class SynthesisResult(BaseModel):
    """Notes written for one scope."""

    scope: MemoryScope
    customer_id: str | None = None
    notes: str
    memory_count: int
    degraded: bool = False


class ConfirmResult(BaseModel):
    memory: Memory
    synthesis: SynthesisResult


class MemoryService:
    """Persists confirmed memories and re-synthesizes notes."""

    def __init__(self, repository: Repository, adapter: AnalysisAdapter):
        self.repository = repository
        self.adapter = adapter

    def _scope_label(self, scope: MemoryScope, customer_id: str | None) -> tuple[str, str]:
        """Return (label for the model, current notes)."""
        if scope == "firm":
            return "the firm", self.repository.get_firm_settings().notes
        customer = self.repository.get_customer(customer_id or "")
        if customer is None:
            raise NotFoundError("Customer", customer_id or "")
        return f"customer {customer.name}", customer.notes

    async def confirm(
        self,
        content: str,
        scope: MemoryScope,
        customer_id: str | None = None,
        source_intake_id: str | None = None,
    ) -> ConfirmResult:
        """
        Persist a confirmed memory, then synthesize its scope.

        Raises:
            InvalidInputError: Empty content, or customer scope without a customer
            NotFoundError: Unknown customer
        """
        if not content or not content.strip():
            raise InvalidInputError("Memory content is required")
        if scope == "customer" and not customer_id:
            raise InvalidInputError("customer_id is required for customer-scoped memories")
        owner = customer_id if scope == "customer" else None
        self._scope_label(scope, owner)

        memory = self.repository.create_memory(
            Memory(customer_id=owner, content=content.strip(), source_intake_id=source_intake_id)
        )
        log_with_context(
            logger,
            logging.INFO,
            f"Memory confirmed at {scope} scope",
            intake_id=source_intake_id,
            memory_id=memory.id,
        )
        synthesis = await self.synthesize(scope, owner)
        return ConfirmResult(memory=memory, synthesis=synthesis)

    async def synthesize(self, scope: MemoryScope, customer_id: str | None = None) -> SynthesisResult:
        """Rewrite the notes for a scope from all of its memories."""
        if scope == "customer" and not customer_id:
            raise InvalidInputError("customer_id is required to synthesize customer notes")
        owner = customer_id if scope == "customer" else None
        scope_label, previous_notes = self._scope_label(scope, owner)
        memories = self.repository.list_memories(owner)

        degraded = False
        try:
            notes = await self.adapter.synthesize_notes(scope_label, memories, previous_notes)
        except AnalysisUnavailableError as e:
            logger.warning(f"Notes synthesis unavailable ({e.reason}); writing fallback notes for {scope_label}")
            notes = render_notes_fallback(memories) if memories else previous_notes
            degraded = True

        if scope == "firm":
            self.repository.save_firm_notes(notes)
        elif self.repository.update_customer_notes(owner, notes) is None:
            raise NotFoundError("Customer", owner)

        return SynthesisResult(
            scope=scope,
            customer_id=owner,
            notes=notes,
            memory_count=len(memories),
            degraded=degraded,
        )
