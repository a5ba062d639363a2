"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from docintake.api import router as api_router
from docintake.services.context import IntakeContext


def create_app(context: IntakeContext | None = None) -> FastAPI:
    """
    Build the application around an explicit service context.

    Args:
        context: Services to serve; built from settings when omitted
    """
    context = context or IntakeContext.from_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Let in-flight chat turns persist before shutdown
        await context.chat.drain()

    app = FastAPI(
        title="Document Intake Engine",
        description="Tax document intake: gated workflow, upload reconciliation and streaming AI chat",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.context = context

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(content={"status": "ok"}, status_code=200)

    # Include v1 API router
    app.include_router(api_router, prefix="/v1", tags=["v1"])
    return app


app = create_app()
