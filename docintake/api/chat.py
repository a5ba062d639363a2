"""API endpoint for streaming chat turns."""

import json
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from docintake.api.deps import get_context, http_error
from docintake.core.errors import IntakeError
from docintake.core.logging import get_logger
from docintake.services.chat_coordinator import ChatTurn
from docintake.services.context import IntakeContext

logger = get_logger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    content: str = Field(..., min_length=1)
    client_token: str | None = Field(
        default=None, description="Client-generated id echoed on accountant_message; repeats replay the turn"
    )


def format_sse(event_type: str, payload: dict) -> str:
    """Frame one event as ``event: <type>`` / ``data: <json>``."""
    return f"event: {event_type}\ndata: {json.dumps(payload)}\n\n"


async def _event_stream(turn: ChatTurn) -> AsyncGenerator[str, None]:
    async for event in turn:
        yield format_sse(event.type, event.model_dump(mode="json"))


@router.post("/intakes/{intake_id}/chat")
async def chat(
    intake_id: str,
    body: ChatRequest,
    ctx: IntakeContext = Depends(get_context),
) -> StreamingResponse:
    """
    Send an accountant message and stream the AI turn as Server-Sent Events.

    Events: accountant_message, memories (optional), chunk*, complete.
    ``complete`` is last and means the turn is persisted. Disconnecting
    does not cancel the turn.

    Raises:
        HTTPException 404: Unknown intake
        HTTPException 409: Intake is still awaiting its prior-year return
    """
    try:
        turn = ctx.chat.start_turn(intake_id, body.content, body.client_token)
    except IntakeError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.error(f"Error in chat endpoint: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e

    return StreamingResponse(
        _event_stream(turn),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
