"""API endpoints for manual document requests and edits."""

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from docintake.api.deps import get_context, http_error
from docintake.core.errors import IntakeError
from docintake.core.logging import get_logger
from docintake.core.schemas_intake import Document, DocumentRequest, Intake
from docintake.services.context import IntakeContext
from docintake.services.document_service import RequestOutcome

logger = get_logger(__name__)

router = APIRouter()


class DocumentUpdate(BaseModel):
    """Editable document fields; omitted fields are left alone."""

    name: str | None = None
    document_type: str | None = None
    year: str | None = None
    entity: str | None = None


class DocumentDeleted(BaseModel):
    intake: Intake


@router.post("/intakes/{intake_id}/documents", response_model=RequestOutcome, status_code=201)
async def request_document(
    intake_id: str,
    body: DocumentRequest,
    response: Response,
    ctx: IntakeContext = Depends(get_context),
) -> RequestOutcome:
    """
    Request a document by hand.

    Returns 201 with the new document, or 200 with the existing document
    when the request duplicates one the intake already tracks.
    """
    try:
        outcome = await ctx.documents.request_document(intake_id, body)
    except IntakeError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.error(f"Error requesting document: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e

    if not outcome.created:
        response.status_code = 200
    return outcome


@router.patch("/documents/{document_id}", response_model=Document)
async def update_document(
    document_id: str,
    body: DocumentUpdate,
    ctx: IntakeContext = Depends(get_context),
) -> Document:
    try:
        return await ctx.documents.update_document(document_id, body.model_dump(exclude_unset=True))
    except IntakeError as e:
        raise http_error(e) from e


@router.delete("/documents/{document_id}", response_model=DocumentDeleted)
async def delete_document(document_id: str, ctx: IntakeContext = Depends(get_context)) -> DocumentDeleted:
    """Delete a document and report the intake's recomputed status."""
    try:
        intake = await ctx.documents.delete_document(document_id)
    except IntakeError as e:
        raise http_error(e) from e
    return DocumentDeleted(intake=intake)
