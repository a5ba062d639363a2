"""Tax document classification using Claude.

Identifies the form, tax year, and payer of an uploaded document and
extracts customer facts from its text. Malformed model output gets one
fix-to-schema retry before the call is reported as unavailable.
"""

import json

from anthropic import AsyncAnthropic
from pydantic import ValidationError

from docintake.core.config import Settings
from docintake.core.errors import AnalysisUnavailableError
from docintake.core.llm import UNAVAILABLE_MESSAGES, parse_llm_json, response_text
from docintake.core.logging import get_logger
from docintake.core.schemas_analysis import DocumentAnalysis
from docintake.core.schemas_intake import Intake

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert tax preparation assistant. You analyze actual tax documents "
    "and extract precise information from them. You respond with JSON only."
)

CLASSIFICATION_PROMPT = """Analyze this tax document for a {tax_year} individual tax return intake.

Document filename: "{file_name}"
Document content (text extracted from the file, may be empty for scans):
\"\"\"
{document_text}
\"\"\"

Based on the ACTUAL DOCUMENT CONTENT (fall back to the filename only if the content is empty):
1. Is this a valid tax document? What specific form is it (Form 1040, W-2, 1099-INT, 1098, Schedule C, ...)?
2. Which tax year does it cover?
3. Who issued it (employer, payer, lender)? Leave null for a Form 1040.
4. For a Form 1040, who is the taxpayer?
5. Extract relevant customer details:
   - Form 1040: filing status, taxpayer names, SSN (last 4 digits only), address, dependents
   - W-2: employer name, wages, federal tax withheld
   - 1099: payer name, income type, amount
   - Any form: other relevant tax information

Respond with a JSON object:
{{
  "is_valid": true,
  "document_type": "exact form name like 'Form 1040', 'Form W-2', 'Form 1099-INT'",
  "year": "four-digit tax year or null",
  "entity": "issuer name or null",
  "taxpayer_name": "name on a Form 1040 or null",
  "extracted_facts": [{{"category": "Personal Info|Income Sources|Deductions|Tax History", "label": "descriptive label", "value": "value from the document"}}],
  "missing_info": ["missing or unclear information"],
  "feedback": "specific confirmation of what you found, referencing details you extracted"
}}"""

FIX_SCHEMA_PROMPT = """Your previous response did not match the required JSON schema.

Error: {error}

Return ONLY the corrected JSON object, with no commentary or markdown."""


async def classify_document(
    client: AsyncAnthropic,
    settings: Settings,
    file_name: str,
    document_text: str,
    intake: Intake,
) -> DocumentAnalysis:
    """
    Classify one uploaded document.

    Args:
        client: Anthropic client
        settings: Application settings
        file_name: Original filename
        document_text: Extracted text (may be empty)
        intake: Intake the document was uploaded to

    Returns:
        DocumentAnalysis validated against the schema

    Raises:
        AnalysisUnavailableError: If the output cannot be validated after retry
        anthropic.APIError: On transport failures (after SDK retries)
    """
    user_prompt = CLASSIFICATION_PROMPT.format(
        tax_year=intake.tax_year,
        file_name=file_name,
        document_text=document_text[: settings.MAX_DOCUMENT_TEXT_CHARS] or "[no text extracted]",
    )
    messages = [{"role": "user", "content": user_prompt}]

    logger.info(f"Classifying {file_name} with {settings.CLASSIFY_MODEL}")

    response = await client.messages.create(
        model=settings.CLASSIFY_MODEL,
        max_tokens=1500,
        temperature=0,
        system=SYSTEM_PROMPT,
        messages=messages,
    )
    raw_output = response_text(response)

    try:
        return parse_llm_json(raw_output, DocumentAnalysis)
    except (json.JSONDecodeError, ValidationError) as e:
        error_msg = str(e)
        logger.warning(f"First classification attempt failed validation: {error_msg}")

    logger.info("Attempting retry with fix-to-schema prompt")
    retry_response = await client.messages.create(
        model=settings.CLASSIFY_MODEL,
        max_tokens=1500,
        temperature=0,
        system=SYSTEM_PROMPT,
        messages=messages
        + [
            {"role": "assistant", "content": raw_output or "{}"},
            {"role": "user", "content": FIX_SCHEMA_PROMPT.format(error=error_msg)},
        ],
    )

    try:
        result = parse_llm_json(response_text(retry_response), DocumentAnalysis)
        logger.info("Retry succeeded")
        return result
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Retry also failed validation: {e}")
        # Do NOT leak raw model output in exception
        raise AnalysisUnavailableError(
            "invalid_output", UNAVAILABLE_MESSAGES["invalid_output"]
        ) from e
