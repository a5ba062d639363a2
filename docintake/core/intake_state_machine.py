"""
Intake State Machine

Computes intake status from the current status, the document set, and the
outcome of the upload being processed. Status is always derived; callers
recompute it inside the same operation that mutates documents.

Linear flow with one reopening edge:
  AWAITING_PRIOR_RETURN → INCOMPLETE ⇄ READY
"""

from dataclasses import dataclass

from docintake.core.document_matcher import normalize_document_type, normalize_year
from docintake.core.errors import GateClosedError
from docintake.core.schemas_analysis import DocumentAnalysis
from docintake.core.schemas_intake import Document, DocumentStatus, Intake, IntakeStatus

# ============================================================================
# Transition table
# ============================================================================

ALLOWED_TRANSITIONS: dict[IntakeStatus, set[IntakeStatus]] = {
    IntakeStatus.AWAITING_PRIOR_RETURN: {IntakeStatus.INCOMPLETE},
    IntakeStatus.INCOMPLETE: {IntakeStatus.READY},
    IntakeStatus.READY: {IntakeStatus.INCOMPLETE},
}

STATUS_LABELS: dict[IntakeStatus, str] = {
    IntakeStatus.AWAITING_PRIOR_RETURN: "Awaiting Prior Return",
    IntakeStatus.INCOMPLETE: "Incomplete",
    IntakeStatus.READY: "Ready",
}

# Form families accepted as an individual income tax return
PRIOR_RETURN_TYPES = ("1040",)


@dataclass(frozen=True)
class StatusTransition:
    """A computed status change, kept for logging and narration."""
    previous: IntakeStatus
    current: IntakeStatus
    reason: str

    @property
    def changed(self) -> bool:
        return self.previous != self.current


# ============================================================================
# Derivation
# ============================================================================


def count_documents(documents: list[Document]) -> tuple[int, int]:
    """Return (requested, completed) counts."""
    requested = sum(1 for d in documents if d.status == DocumentStatus.REQUESTED)
    completed = sum(1 for d in documents if d.status == DocumentStatus.COMPLETED)
    return requested, completed


def is_collection_complete(documents: list[Document]) -> bool:
    """Nothing outstanding and at least one document received."""
    requested, completed = count_documents(documents)
    return requested == 0 and completed > 0


def compute_next_status(
    current: IntakeStatus,
    documents: list[Document],
    prior_return_certified: bool = False,
) -> StatusTransition:
    """
    Compute the intake status after a document mutation.

    Args:
        current: Status before the mutation
        documents: Full document set after the mutation
        prior_return_certified: Whether this operation completed a document
            certified as the correct-year prior return

    Returns:
        StatusTransition (may be unchanged)
    """
    if current == IntakeStatus.AWAITING_PRIOR_RETURN and not prior_return_certified:
        return StatusTransition(current, current, "prior return not yet certified")

    if is_collection_complete(documents):
        nxt = IntakeStatus.READY
        reason = "all requested documents received"
    else:
        nxt = IntakeStatus.INCOMPLETE
        requested, _ = count_documents(documents)
        reason = f"{requested} document(s) outstanding" if requested else "no documents received"

    if current == IntakeStatus.AWAITING_PRIOR_RETURN:
        reason = f"prior return certified; {reason}"

    return StatusTransition(current, nxt, reason)


def is_allowed_transition(previous: IntakeStatus, current: IntakeStatus) -> bool:
    """True for unchanged status or a path through the transition table."""
    if previous == current:
        return True
    frontier = {previous}
    seen: set[IntakeStatus] = set()
    while frontier:
        status = frontier.pop()
        seen.add(status)
        for nxt in ALLOWED_TRANSITIONS.get(status, set()):
            if nxt == current:
                return True
            if nxt not in seen:
                frontier.add(nxt)
    return False


# ============================================================================
# Gating
# ============================================================================


def is_prior_return_type(document_type: str | None) -> bool:
    normalized = normalize_document_type(document_type)
    return any(normalized.startswith(t) for t in PRIOR_RETURN_TYPES)


def certification_problems(analysis: DocumentAnalysis, intake: Intake) -> list[str]:
    """
    List the reasons an analysis does not certify the intake's prior return.

    An empty list means certified. Degraded (AI unavailable) results are
    never certified.
    """
    if analysis.degraded:
        return ["the document could not be analyzed, so it cannot be certified"]

    problems = []
    if not analysis.is_valid or not is_prior_return_type(analysis.document_type):
        found = analysis.document_type or "an unrecognized document"
        problems.append(
            f"this appears to be {found}, but a complete {intake.prior_year} Form 1040 is required"
        )
    if normalize_year(analysis.year) != intake.prior_year:
        problems.append(
            f"the tax year is {analysis.year or 'unknown'}, but the {intake.prior_year} return is required"
        )
    return problems


def is_certified_prior_return(analysis: DocumentAnalysis, intake: Intake) -> bool:
    return not certification_problems(analysis, intake)


def chat_allowed(status: IntakeStatus) -> bool:
    """Free-form chat is closed until the prior return is certified."""
    return status != IntakeStatus.AWAITING_PRIOR_RETURN


def require_chat_open(intake: Intake) -> None:
    """
    Raise if the intake does not accept free-form chat.

    Raises:
        GateClosedError: While the intake awaits its prior-year return
    """
    if not chat_allowed(intake.status):
        raise GateClosedError(
            intake.status.value,
            f"Chat is disabled. Upload and validate the customer's {intake.prior_year} "
            f"Form 1040 tax return first.",
        )
