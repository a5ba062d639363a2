"""Pydantic schemas for the analysis adapter's inputs and outputs."""

from pydantic import BaseModel, Field

from docintake.core.schemas_intake import (
    Customer,
    CustomerDetail,
    DetectedMemory,
    Document,
    DocumentRequest,
    Intake,
)


class ExtractedFact(BaseModel):
    """A fact read from a document, stored as a CustomerDetail."""

    category: str = Field(..., description="Personal Info | Income Sources | Deductions | Tax History")
    label: str
    value: str | None = None


class DocumentAnalysis(BaseModel):
    """Classification of one uploaded document."""

    is_valid: bool = False
    document_type: str | None = Field(default=None, description="Exact form name, e.g. 'Form W-2'")
    year: str | None = Field(default=None, description="Tax year the document covers")
    entity: str | None = Field(default=None, description="Payer or employer name")
    taxpayer_name: str | None = None
    extracted_facts: list[ExtractedFact] = Field(default_factory=list)
    missing_info: list[str] = Field(default_factory=list)
    feedback: str = ""
    degraded: bool = Field(
        default=False, description="True when the AI could not analyze the document"
    )
    failure_reason: str | None = None


class NextSteps(BaseModel):
    """What the intake still needs after an upload batch."""

    message: str
    requested_documents: list[DocumentRequest] = Field(default_factory=list)
    degraded: bool = False


class TurnContext(BaseModel):
    """Everything a chat turn may read about the intake."""

    intake: Intake
    customer: Customer
    documents: list[Document] = Field(default_factory=list)
    details: list[CustomerDetail] = Field(default_factory=list)
    firm_notes: str = ""


class HistoryMessage(BaseModel):
    """Prior chat message in model-facing form."""

    role: str  # 'user' or 'assistant'
    content: str


class TurnFragment(BaseModel):
    """One piece of a streamed chat reply.

    Non-final fragments carry text; the final fragment carries the
    structured side results of the turn.
    """

    text: str = ""
    final: bool = False
    detected_memories: list[DetectedMemory] = Field(default_factory=list)
    requested_documents: list[DocumentRequest] = Field(default_factory=list)
    degraded: bool = False
