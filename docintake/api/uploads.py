"""API endpoint for document uploads."""

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from docintake.api.deps import get_context, http_error
from docintake.core.errors import IntakeError
from docintake.core.logging import get_logger
from docintake.services.context import IntakeContext
from docintake.services.upload_service import IncomingFile, UploadResult

logger = get_logger(__name__)

router = APIRouter()


@router.post("/intakes/{intake_id}/uploads", response_model=UploadResult, status_code=201)
async def upload_documents(
    intake_id: str,
    files: list[UploadFile] = File(...),
    upload_id: str | None = Form(default=None),
    ctx: IntakeContext = Depends(get_context),
) -> UploadResult:
    """Upload one or more documents to an intake.

    Files are stored, classified, matched against requested documents and
    narrated in the intake chat. Progress is pushed to listeners on
    ``/v1/ws/progress`` under the intake and customer keys; pass
    ``upload_id`` to correlate those events with this request.

    Raises:
        HTTPException 400: If a file is empty or too large
        HTTPException 404: If the intake does not exist
    """
    incoming = []
    for file in files:
        incoming.append(
            IncomingFile(
                file_name=file.filename or "",
                data=await file.read(),
                content_type=file.content_type,
            )
        )

    try:
        return await ctx.uploads.process(intake_id, incoming, upload_id=upload_id)
    except IntakeError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.error(f"Error processing upload: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e
