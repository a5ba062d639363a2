"""Request-scoped access to the service context and domain error translation."""

from fastapi import HTTPException, Request, WebSocket

from docintake.core.errors import GateClosedError, IntakeError, InvalidInputError, NotFoundError
from docintake.services.context import IntakeContext


def get_context(request: Request) -> IntakeContext:
    return request.app.state.context


def get_ws_context(websocket: WebSocket) -> IntakeContext:
    return websocket.app.state.context


def http_error(error: IntakeError) -> HTTPException:
    """Map a domain error to the HTTP status the API reports for it."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, GateClosedError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
