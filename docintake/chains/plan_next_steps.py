"""Next-step planning after an upload batch.

Looks at what the intake has received (and what the prior return says the
customer had last year) and asks for the documents still missing.
"""

import json

from anthropic import AsyncAnthropic
from pydantic import BaseModel, Field, ValidationError

from docintake.core.config import Settings
from docintake.core.errors import AnalysisUnavailableError
from docintake.core.llm import UNAVAILABLE_MESSAGES, parse_llm_json, response_text
from docintake.core.logging import get_logger
from docintake.core.schemas_analysis import NextSteps
from docintake.core.schemas_intake import (
    CustomerDetail,
    Document,
    DocumentRequest,
    DocumentStatus,
    Intake,
)

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert tax preparation assistant helping accountants track document "
    "collection progress. You respond with JSON only."
)

NEXT_STEPS_PROMPT = """Determine which documents are still needed for this {tax_year} tax return.

Documents received: {completed}
Documents already requested (do NOT request these again): {requested}

Customer details collected:
{details}

For a complete US individual return we typically need:
- The {prior_year} tax return (already required before this step)
- W-2 forms from every employer listed on the prior return or mentioned since
- 1099 forms for every payer of interest, dividends, or contract income
- 1098 mortgage interest statements, charitable receipts, and other deduction records
- Business income and expense records if self-employed

Only request documents for {tax_year} with concrete evidence they exist (e.g. an employer on
the prior-year return). Cite the evidence in "provenance".

Respond with a JSON object:
{{
  "message": "short note to the accountant about what is needed next, or that everything is in",
  "requested_documents": [
    {{
      "name": "display name, e.g. 'W-2 from Microsoft for {tax_year}'",
      "document_type": "form family, e.g. 'W-2', '1099-INT', '1098'",
      "year": "{tax_year}",
      "entity": "employer or payer name, or null",
      "provenance": {{"page": 1, "line": null, "quote": "evidence text"}}
    }}
  ]
}}"""


class _NextStepsOutput(BaseModel):
    message: str = ""
    requested_documents: list[DocumentRequest] = Field(default_factory=list)


def _describe_documents(documents: list[Document], status: DocumentStatus) -> str:
    names = [d.name for d in documents if d.status == status]
    return ", ".join(names) if names else "None"


def _describe_details(details: list[CustomerDetail]) -> str:
    lines = [f"- [{d.category}] {d.label}: {d.value}" for d in details if d.value]
    return "\n".join(lines[:60]) if lines else "None"


async def plan_next_steps(
    client: AsyncAnthropic,
    settings: Settings,
    intake: Intake,
    documents: list[Document],
    details: list[CustomerDetail],
) -> NextSteps:
    """
    Ask the model which documents the intake still needs.

    Returns:
        NextSteps with a message and structured requests (not yet deduplicated)

    Raises:
        AnalysisUnavailableError: If the output cannot be validated
        anthropic.APIError: On transport failures
    """
    prompt = NEXT_STEPS_PROMPT.format(
        tax_year=intake.tax_year,
        prior_year=intake.prior_year,
        completed=_describe_documents(documents, DocumentStatus.COMPLETED),
        requested=_describe_documents(documents, DocumentStatus.REQUESTED),
        details=_describe_details(details),
    )

    response = await client.messages.create(
        model=settings.EXTRACT_MODEL,
        max_tokens=2000,
        temperature=0,
        system=SYSTEM_PROMPT,
        messages=[{"role": "user", "content": prompt}],
    )

    try:
        output = parse_llm_json(response_text(response), _NextStepsOutput)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Next-step output failed validation: {e}")
        raise AnalysisUnavailableError(
            "invalid_output", UNAVAILABLE_MESSAGES["invalid_output"]
        ) from e

    logger.info(f"Planned {len(output.requested_documents)} document request(s) for intake {intake.id}")
    return NextSteps(message=output.message, requested_documents=output.requested_documents)
