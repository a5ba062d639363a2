"""API router for v1 endpoints."""

from fastapi import APIRouter

from docintake.api import chat, customers, documents, intakes, memories, progress, uploads

router = APIRouter()

# Customers and intake creation
router.include_router(customers.router, tags=["customers"])

# Intake workspace reads
router.include_router(intakes.router, tags=["intakes"])

# Manual document requests and edits
router.include_router(documents.router, tags=["documents"])

# Upload pipeline
router.include_router(uploads.router, tags=["uploads"])

# Streaming chat turns
router.include_router(chat.router, tags=["chat"])

# Upload progress WebSocket
router.include_router(progress.router, tags=["progress"])

# Memories, notes synthesis and firm settings
router.include_router(memories.router, tags=["memories"])
