"""Accountant-driven document operations: manual requests, edits and deletes.

Every mutation recomputes the intake status before returning, so a new
request reopens a Ready intake and deleting the last outstanding request
can complete one.
"""

import logging
from typing import Any

from pydantic import BaseModel

from docintake.core.document_matcher import find_duplicate_request
from docintake.core.errors import InvalidInputError, NotFoundError
from docintake.core.logging import get_logger, log_with_context
from docintake.core.schemas_intake import Document, DocumentRequest, DocumentStatus, Intake
from docintake.db.repository import EDITABLE_DOCUMENT_FIELDS, Repository
from docintake.services.intake_status import IntakeLocks, recompute_status, require_intake

logger = get_logger(__name__)


class RequestOutcome(BaseModel):
    """Result of a manual document request."""

    document: Document
    created: bool
    intake: Intake


class DocumentService:
    """Mutations on an intake's documents outside the upload pipeline."""

    def __init__(self, repository: Repository, locks: IntakeLocks):
        self.repository = repository
        self.locks = locks

    def _require_document(self, document_id: str) -> Document:
        document = self.repository.get_document(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    def _check_not_duplicate(self, document: Document, changes: dict[str, Any]) -> None:
        edited = document.model_copy(update=changes)
        candidate = DocumentRequest(
            name=edited.name,
            document_type=edited.document_type,
            year=edited.year,
            entity=edited.entity,
        )
        others = [d for d in self.repository.list_documents(document.intake_id) if d.id != document.id]
        duplicate = find_duplicate_request(candidate, others)
        if duplicate is not None:
            log_with_context(
                logger,
                logging.INFO,
                f"Rejected edit of {document.id}: would duplicate document {duplicate.id}",
                intake_id=document.intake_id,
            )
            raise InvalidInputError(f"This intake already tracks that document as \"{duplicate.name}\"")

    async def request_document(self, intake_id: str, request: DocumentRequest) -> RequestOutcome:
        """
        Add a Requested document unless the intake already tracks it.

        Raises:
            NotFoundError: Unknown intake
            InvalidInputError: Missing name, document type or year
        """
        intake = require_intake(self.repository, intake_id)
        missing = [f for f in ("name", "document_type", "year") if not (getattr(request, f) or "").strip()]
        if missing:
            raise InvalidInputError(f"Missing required fields: {', '.join(missing)}")

        async with self.locks.for_intake(intake.id):
            intake = require_intake(self.repository, intake_id)
            duplicate = find_duplicate_request(request, self.repository.list_documents(intake.id))
            if duplicate is not None:
                log_with_context(
                    logger,
                    logging.INFO,
                    f"Request for {request.name!r} duplicates document {duplicate.id}",
                    intake_id=intake.id,
                )
                return RequestOutcome(document=duplicate, created=False, intake=intake)

            document = self.repository.create_document(
                Document(
                    intake_id=intake.id,
                    name=request.name.strip(),
                    document_type=request.document_type,
                    year=request.year,
                    entity=request.entity or None,
                    provenance=request.provenance,
                )
            )
            intake, _ = recompute_status(self.repository, intake)
            return RequestOutcome(document=document, created=True, intake=intake)

    async def update_document(self, document_id: str, fields: dict[str, Any]) -> Document:
        """
        Edit display name or structured fields. Status and file fields are not editable.

        Raises:
            NotFoundError: Unknown document
            InvalidInputError: No editable field given, an empty name, or the edit
                would make a requested document duplicate another one
        """
        document = self._require_document(document_id)
        changes = {k: v for k, v in fields.items() if k in EDITABLE_DOCUMENT_FIELDS}
        if not changes:
            raise InvalidInputError(
                f"Nothing to update; editable fields are {', '.join(sorted(EDITABLE_DOCUMENT_FIELDS))}"
            )
        if "name" in changes and not (changes["name"] or "").strip():
            raise InvalidInputError("Document name cannot be empty")
        if "entity" in changes:
            changes["entity"] = changes["entity"] or None

        async with self.locks.for_intake(document.intake_id):
            document = self._require_document(document_id)
            if document.status == DocumentStatus.REQUESTED:
                self._check_not_duplicate(document, changes)
            updated = self.repository.update_document(document_id, changes)
            if updated is None:
                raise NotFoundError("Document", document_id)
            return updated

    async def delete_document(self, document_id: str) -> Intake:
        """
        Delete a document and recompute the owning intake's status.

        Returns:
            The intake after recomputation
        """
        document = self._require_document(document_id)
        intake = require_intake(self.repository, document.intake_id)

        async with self.locks.for_intake(intake.id):
            intake = require_intake(self.repository, intake.id)
            if not self.repository.delete_document(document_id):
                raise NotFoundError("Document", document_id)
            intake, _ = recompute_status(self.repository, intake)
            return intake
