"""Reconciliation of uploaded files against requested documents.

Two questions are answered here, both as pure functions over the intake's
current document list:

  1. ``match_upload``: which Requested document (if any) does a freshly
     uploaded file fulfil?
       - Structured match: document type AND year agree, and entities are
         blank on one side or overlap.
       - Filename match: the normalized filename contains the normalized
         document name, or the other way round.
     Structured beats filename; ties go to the earliest-created document.
     No match means the upload becomes a new Completed document.

  2. ``find_duplicate_request``: does a new request describe a document the
     intake already tracks (Requested or Completed)?
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from docintake.core.schemas_intake import Document, DocumentRequest, DocumentStatus

MatchReason = Literal["structured", "filename", "none"]

_SPECIFICITY: dict[str, int] = {"structured": 2, "filename": 1}

_EXTENSION_RE = re.compile(r"\.(pdf|jpe?g|png|gif|webp|tiff?|docx?|xlsx?|csv|txt)$", re.IGNORECASE)

# Entity tokens that say nothing about which payer is meant
_ENTITY_STOPWORDS = {
    "inc", "llc", "ltd", "co", "corp", "corporation", "company", "the", "and",
    "of", "bank", "na", "group", "holdings", "plc", "lp", "llp",
}


@dataclass(frozen=True)
class UploadHints:
    """Structured facts the classifier extracted from an upload."""

    document_type: str | None = None
    year: str | None = None
    entity: str | None = None


@dataclass(frozen=True)
class MatchDecision:
    """Outcome of matching one upload."""

    action: Literal["attach", "create"]
    document: Document | None = None
    reason: MatchReason = "none"

    @property
    def attaches(self) -> bool:
        return self.action == "attach"


def normalize_name(name: str) -> str:
    """Lowercase, drop the file extension, and replace punctuation with spaces.

    Hyphenated form identifiers are joined first so that ``W-2`` and ``w2``
    normalize identically, as do ``1099-INT`` and ``1099int``.
    """
    normalized = _EXTENSION_RE.sub("", name.strip().lower()).replace("_", " ")
    normalized = re.sub(r"\bw-?2\b", "w2", normalized)
    normalized = re.sub(r"\b(1099|1098|1040|1095)-?([a-z]*)\b", r"\1\2", normalized)
    normalized = re.sub(r"[^a-z0-9]+", " ", normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def normalize_document_type(document_type: str | None) -> str:
    """Collapse a form name to a comparable key: 'Form W-2' -> 'w2'."""
    if not document_type:
        return ""
    normalized = normalize_name(document_type)
    normalized = re.sub(r"\b(irs|form|forms|copy|federal)\b", " ", normalized)
    return re.sub(r"\s+", "", normalized)


def normalize_year(year: str | None) -> str:
    if not year:
        return ""
    match = re.search(r"\d{4}", str(year))
    return match.group(0) if match else str(year).strip()


def _entity_tokens(entity: str | None) -> set[str]:
    if not entity:
        return set()
    return {t for t in normalize_name(entity).split() if len(t) > 1 and t not in _ENTITY_STOPWORDS}


def types_agree(left: str | None, right: str | None) -> bool:
    """True when both types are known and name the same form family."""
    a, b = normalize_document_type(left), normalize_document_type(right)
    if not a or not b:
        return False
    if a == b:
        return True
    # '1099' vs '1099int': accept a bare family number against a variant
    shorter, longer = sorted((a, b), key=len)
    return shorter.isdigit() and len(shorter) >= 4 and longer.startswith(shorter)


def entities_overlap(left: str | None, right: str | None) -> bool:
    """Blank on either side counts as overlap; otherwise share a substring or token."""
    a = normalize_name(left or "")
    b = normalize_name(right or "")
    if not a or not b:
        return True
    if a in b or b in a:
        return True
    return bool(_entity_tokens(a) & _entity_tokens(b))


def structured_match(document: Document, hints: UploadHints) -> bool:
    if not types_agree(document.document_type, hints.document_type):
        return False
    year_a, year_b = normalize_year(document.year), normalize_year(hints.year)
    if not year_a or year_a != year_b:
        return False
    return entities_overlap(document.entity, hints.entity)


def filename_match(document: Document, file_name: str) -> bool:
    candidate = normalize_name(document.name)
    uploaded = normalize_name(file_name)
    if not candidate or not uploaded:
        return False
    return candidate in uploaded or uploaded in candidate


def match_upload(
    file_name: str,
    documents: list[Document],
    hints: UploadHints | None = None,
) -> MatchDecision:
    """
    Decide whether an upload fulfils an existing Requested document.

    Args:
        file_name: Original filename of the upload
        documents: All documents in the intake, ordered by creation
        hints: Classifier output for the upload, if any

    Returns:
        MatchDecision to attach to a document, or to create a new Completed one
    """
    hints = hints or UploadHints()
    best: tuple[int, int, Document, MatchReason] | None = None

    for position, document in enumerate(documents):
        if document.status != DocumentStatus.REQUESTED:
            continue

        if structured_match(document, hints):
            reason: MatchReason = "structured"
        elif filename_match(document, file_name):
            reason = "filename"
        else:
            continue

        # Higher specificity first, then earliest created
        rank = (-_SPECIFICITY[reason], position)
        if best is None or rank < (best[0], best[1]):
            best = (rank[0], rank[1], document, reason)

    if best is None:
        return MatchDecision(action="create")
    return MatchDecision(action="attach", document=best[2], reason=best[3])


def _earliest(documents: list[Document]) -> list[Document]:
    # Stable sort keeps insertion order for identical timestamps
    return sorted(documents, key=lambda d: d.created_at)


def request_key(request: DocumentRequest | Document) -> tuple[str, str, str]:
    """Normalized (type, year, entity) identity of a request."""
    return (
        normalize_document_type(request.document_type),
        normalize_year(request.year),
        " ".join(sorted(_entity_tokens(request.entity))),
    )


def is_same_request(request: DocumentRequest, document: Document) -> bool:
    """True when the request and an existing document describe the same logical document."""
    req_type, req_year, req_entity = request_key(request)
    doc_type, doc_year, doc_entity = request_key(document)

    if req_type and doc_type:
        if not types_agree(request.document_type, document.document_type):
            return False
        if req_year != doc_year:
            return False
        if req_entity == doc_entity:
            return True
        # Both named: accept overlapping names ('Microsoft' vs 'Microsoft Corp')
        return bool(req_entity and doc_entity) and entities_overlap(request.entity, document.entity)

    # Without a type on both sides fall back to the display name
    return normalize_name(request.name) == normalize_name(document.name)


def find_duplicate_request(
    request: DocumentRequest,
    documents: list[Document],
) -> Document | None:
    """
    Find an existing document (Requested or Completed) the request duplicates.

    Args:
        request: Candidate request
        documents: All documents in the intake

    Returns:
        The earliest-created duplicate, or None if the request is new
    """
    for document in _earliest(documents):
        if is_same_request(request, document):
            return document
    return None


def dedupe_requests(
    requests: list[DocumentRequest],
    documents: list[Document],
) -> list[DocumentRequest]:
    """Drop requests that duplicate existing documents or each other."""
    accepted: list[DocumentRequest] = []
    pending: list[Document] = list(documents)
    for request in requests:
        if find_duplicate_request(request, pending) is not None:
            continue
        accepted.append(request)
        # Stand-in so later requests in the batch dedupe against this one
        pending.append(
            Document(
                intake_id="",
                name=request.name,
                document_type=request.document_type,
                year=request.year,
                entity=request.entity,
            )
        )
    return accepted
