"""Pydantic schemas for customers, intakes, documents, and their dependents."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntakeStatus(str, Enum):
    """Workflow status of an intake. Derived, never set by clients."""
    AWAITING_PRIOR_RETURN = "awaiting_prior_return"  # Upload-only until prior return certified
    INCOMPLETE = "incomplete"                        # Prior return certified, requests outstanding
    READY = "ready"                                  # Nothing outstanding


class DocumentStatus(str, Enum):
    """Fulfillment state of a document."""
    REQUESTED = "requested"
    COMPLETED = "completed"


class Sender(str, Enum):
    """Author of a chat message."""
    ACCOUNTANT = "accountant"
    AI = "ai"


class Provenance(BaseModel):
    """Evidence pointer explaining why a document was requested."""

    page: int | None = Field(default=None, description="Page in the source document")
    line: int | None = Field(default=None, description="Line on that page")
    quote: str | None = Field(default=None, description="Verbatim excerpt supporting the request")
    source_document_id: str | None = Field(
        default=None, description="Document the evidence was taken from"
    )


class Customer(BaseModel):
    """A customer of the firm. Only ``notes`` changes after creation."""

    id: str = Field(default_factory=_new_id)
    name: str
    email: str
    notes: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class Intake(BaseModel):
    """One customer's document collection for one tax year."""

    id: str = Field(default_factory=_new_id)
    customer_id: str
    tax_year: str = Field(..., description="Tax year being prepared, e.g. '2024'")
    status: IntakeStatus = IntakeStatus.AWAITING_PRIOR_RETURN
    notes: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def prior_year(self) -> str:
        """Year of the return that unlocks this intake."""
        return str(int(self.tax_year) - 1)


class Document(BaseModel):
    """A requested or received document within an intake."""

    id: str = Field(default_factory=_new_id)
    intake_id: str
    name: str
    status: DocumentStatus = DocumentStatus.REQUESTED
    document_type: str | None = None
    year: str | None = None
    entity: str | None = Field(default=None, description="Payer or employer name")
    provenance: Provenance | None = None
    file_ref: str | None = Field(default=None, description="Checksum of the stored upload")
    file_name: str | None = Field(default=None, description="Original upload filename")
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None


class ChatMessage(BaseModel):
    """Immutable chat message within an intake."""

    id: str = Field(default_factory=_new_id)
    intake_id: str
    sender: Sender
    content: str
    client_token: str | None = Field(
        default=None, description="Idempotency token supplied by the client for accountant messages"
    )
    reply_to: str | None = Field(
        default=None, description="Accountant message an AI chat reply answers"
    )
    created_at: datetime = Field(default_factory=_utcnow)


class CustomerDetail(BaseModel):
    """Extracted fact, unique per (intake_id, category, label)."""

    id: str = Field(default_factory=_new_id)
    intake_id: str
    category: str
    label: str
    value: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Memory(BaseModel):
    """Confirmed fact. Firm-scoped when ``customer_id`` is None."""

    id: str = Field(default_factory=_new_id)
    customer_id: str | None = None
    content: str
    source_intake_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class FirmSettings(BaseModel):
    """Firm-wide synthesized notes."""

    notes: str = ""
    updated_at: datetime | None = None


class DocumentRequest(BaseModel):
    """A structured ask for a document, from the AI or the accountant."""

    name: str = Field(..., min_length=1, description="Display name, e.g. 'W-2 from Microsoft for 2024'")
    document_type: str | None = Field(default=None, description="Form family, e.g. 'W-2'")
    year: str | None = None
    entity: str | None = None
    provenance: Provenance | None = None


class DetectedMemory(BaseModel):
    """Candidate fact offered to the accountant for confirmation."""

    content: str = Field(..., min_length=1)
    scope: Literal["firm", "customer"] = "customer"
