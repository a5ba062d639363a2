"""API endpoints for intake workspaces."""

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from docintake.api.deps import get_context, http_error
from docintake.core.errors import NotFoundError
from docintake.core.intake_state_machine import STATUS_LABELS, chat_allowed, count_documents
from docintake.core.schemas_intake import (
    ChatMessage,
    Customer,
    CustomerDetail,
    Document,
    Intake,
)
from docintake.services.context import IntakeContext
from docintake.services.intake_status import require_intake

router = APIRouter()


class IntakeSummary(BaseModel):
    """Everything the intake workspace renders."""

    intake: Intake
    customer: Customer
    status_label: str
    chat_enabled: bool
    requested_count: int
    completed_count: int
    documents: list[Document]
    messages: list[ChatMessage]
    details: list[CustomerDetail]


def _intake_or_404(ctx: IntakeContext, intake_id: str) -> Intake:
    try:
        return require_intake(ctx.repository, intake_id)
    except NotFoundError as e:
        raise http_error(e) from e


@router.get("/intakes/{intake_id}", response_model=IntakeSummary)
async def get_intake(intake_id: str, ctx: IntakeContext = Depends(get_context)) -> IntakeSummary:
    intake = _intake_or_404(ctx, intake_id)
    customer = ctx.repository.get_customer(intake.customer_id)
    if customer is None:
        raise http_error(NotFoundError("Customer", intake.customer_id))

    documents = ctx.repository.list_documents(intake.id)
    requested, completed = count_documents(documents)
    return IntakeSummary(
        intake=intake,
        customer=customer,
        status_label=STATUS_LABELS[intake.status],
        chat_enabled=chat_allowed(intake.status),
        requested_count=requested,
        completed_count=completed,
        documents=documents,
        messages=ctx.repository.list_messages(intake.id),
        details=ctx.repository.list_details(intake.id),
    )


@router.delete("/intakes/{intake_id}", status_code=204)
async def delete_intake(intake_id: str, ctx: IntakeContext = Depends(get_context)) -> Response:
    if not ctx.repository.delete_intake(intake_id):
        raise http_error(NotFoundError("Intake", intake_id))
    return Response(status_code=204)


@router.get("/intakes/{intake_id}/documents", response_model=list[Document])
async def list_documents(intake_id: str, ctx: IntakeContext = Depends(get_context)) -> list[Document]:
    _intake_or_404(ctx, intake_id)
    return ctx.repository.list_documents(intake_id)


@router.get("/intakes/{intake_id}/messages", response_model=list[ChatMessage])
async def list_messages(intake_id: str, ctx: IntakeContext = Depends(get_context)) -> list[ChatMessage]:
    _intake_or_404(ctx, intake_id)
    return ctx.repository.list_messages(intake_id)


@router.get("/intakes/{intake_id}/details", response_model=list[CustomerDetail])
async def list_details(intake_id: str, ctx: IntakeContext = Depends(get_context)) -> list[CustomerDetail]:
    _intake_or_404(ctx, intake_id)
    return ctx.repository.list_details(intake_id)
