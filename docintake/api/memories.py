"""API endpoints for confirmed memories and synthesized notes."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from docintake.api.deps import get_context, http_error
from docintake.core.errors import IntakeError, NotFoundError
from docintake.core.schemas_intake import FirmSettings, Memory
from docintake.services.context import IntakeContext
from docintake.services.memory_service import ConfirmResult, MemoryScope, SynthesisResult

router = APIRouter()


class MemoryConfirm(BaseModel):
    content: str = Field(..., min_length=1)
    scope: MemoryScope = "customer"
    customer_id: str | None = None
    intake_id: str | None = Field(default=None, description="Intake the memory was detected in")


class SynthesisRequest(BaseModel):
    scope: MemoryScope
    customer_id: str | None = None


class FirmNotesUpdate(BaseModel):
    notes: str


@router.post("/memories", response_model=ConfirmResult, status_code=201)
async def confirm_memory(body: MemoryConfirm, ctx: IntakeContext = Depends(get_context)) -> ConfirmResult:
    """Persist a confirmed memory and rewrite the notes at its scope."""
    try:
        return await ctx.memories.confirm(body.content, body.scope, body.customer_id, body.intake_id)
    except IntakeError as e:
        raise http_error(e) from e


@router.get("/memories", response_model=list[Memory])
async def list_memories(
    customer_id: str | None = Query(default=None, description="Omit for firm-scoped memories"),
    ctx: IntakeContext = Depends(get_context),
) -> list[Memory]:
    if customer_id is not None and ctx.repository.get_customer(customer_id) is None:
        raise http_error(NotFoundError("Customer", customer_id))
    return ctx.repository.list_memories(customer_id)


@router.post("/memories/synthesize", response_model=SynthesisResult)
async def synthesize_notes(body: SynthesisRequest, ctx: IntakeContext = Depends(get_context)) -> SynthesisResult:
    """Rewrite a scope's notes from its memories without adding one."""
    try:
        return await ctx.memories.synthesize(body.scope, body.customer_id)
    except IntakeError as e:
        raise http_error(e) from e


@router.get("/settings/firm", response_model=FirmSettings)
async def get_firm_settings(ctx: IntakeContext = Depends(get_context)) -> FirmSettings:
    return ctx.repository.get_firm_settings()


@router.put("/settings/firm", response_model=FirmSettings)
async def save_firm_notes(body: FirmNotesUpdate, ctx: IntakeContext = Depends(get_context)) -> FirmSettings:
    """Overwrite the firm notes by hand."""
    return ctx.repository.save_firm_notes(body.notes)
