"""Upload pipeline: store, classify, reconcile, recompute status, narrate.

Each call processes one batch of files against one intake and reports its
progress to listeners on the intake and customer keys. Analysis failures
never abort the batch: the file is still recorded as Completed, the result
is labeled as degraded, and gating decisions that needed the analysis stay
closed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field

from docintake.chains.analysis_adapter import AnalysisAdapter
from docintake.core.config import Settings
from docintake.core.document_matcher import (
    UploadHints,
    dedupe_requests,
    entities_overlap,
    match_upload,
)
from docintake.core.document_text import extract_document_text
from docintake.core.errors import InvalidInputError
from docintake.core.intake_state_machine import certification_problems
from docintake.core.logging import get_logger, log_with_context
from docintake.core.progress import ProgressBroadcaster, ProgressReporter, ProgressStep
from docintake.core.schemas_analysis import DocumentAnalysis
from docintake.core.schemas_intake import (
    ChatMessage,
    Customer,
    Document,
    DocumentStatus,
    Intake,
    IntakeStatus,
    Sender,
)
from docintake.db.repository import Repository
from docintake.services.file_store import FileStore
from docintake.services.intake_status import IntakeLocks, recompute_status, require_intake

logger = get_logger(__name__)


@dataclass
class IncomingFile:
    """One file of an upload batch, already read into memory."""

    file_name: str
    data: bytes
    content_type: str | None = None


class UploadResult(BaseModel):
    """Outcome of one upload batch."""

    upload_id: str
    intake: Intake
    documents: list[Document] = Field(default_factory=list)
    requested_documents: list[Document] = Field(default_factory=list)
    messages: list[ChatMessage] = Field(default_factory=list)
    duplicates: list[str] = Field(default_factory=list, description="File names already on record")
    degraded: bool = False


def _display_name(file_name: str, analysis: DocumentAnalysis) -> str:
    if analysis.degraded or not analysis.document_type:
        return file_name
    parts = [analysis.document_type]
    if analysis.entity:
        parts.append(f"from {analysis.entity}")
    if analysis.year:
        parts.append(f"for {analysis.year}")
    return " ".join(parts)


def _name_mismatch(analysis: DocumentAnalysis, customer: Customer | None) -> bool:
    if not analysis.taxpayer_name or customer is None:
        return False
    return not entities_overlap(analysis.taxpayer_name, customer.name)


class UploadService:
    """Runs the upload pipeline for one intake at a time."""

    def __init__(
        self,
        repository: Repository,
        adapter: AnalysisAdapter,
        file_store: FileStore,
        broadcaster: ProgressBroadcaster,
        settings: Settings,
        locks: IntakeLocks,
    ):
        self.repository = repository
        self.adapter = adapter
        self.file_store = file_store
        self.broadcaster = broadcaster
        self.settings = settings
        self.locks = locks

    def _validate(self, files: list[IncomingFile]) -> None:
        if not files:
            raise InvalidInputError("No files uploaded")
        for incoming in files:
            if not incoming.file_name or not incoming.file_name.strip():
                raise InvalidInputError("Every uploaded file needs a filename")
            if not incoming.data:
                raise InvalidInputError(f"{incoming.file_name} is empty")
            if len(incoming.data) > self.settings.MAX_UPLOAD_BYTES:
                raise InvalidInputError(
                    f"{incoming.file_name} exceeds the {self.settings.MAX_UPLOAD_BYTES} byte upload limit"
                )

    def _say(self, intake_id: str, content: str) -> ChatMessage:
        return self.repository.create_message(
            ChatMessage(intake_id=intake_id, sender=Sender.AI, content=content)
        )

    async def process(
        self,
        intake_id: str,
        files: list[IncomingFile],
        upload_id: str | None = None,
    ) -> UploadResult:
        """
        Process an upload batch.

        Args:
            intake_id: Intake receiving the files
            files: Files in upload order
            upload_id: Correlation id for progress events (generated if omitted)

        Returns:
            UploadResult with touched documents, new requests and narrative messages

        Raises:
            NotFoundError: If the intake does not exist
            InvalidInputError: If the batch is empty or a file is unusable
        """
        intake = require_intake(self.repository, intake_id)
        self._validate(files)

        upload_id = upload_id or str(uuid4())
        reporter = ProgressReporter(self.broadcaster, intake.id, intake.customer_id, upload_id)

        async with self.locks.for_intake(intake.id):
            try:
                # Re-read: a batch or turn that held the lock may have moved the status
                intake = require_intake(self.repository, intake_id)
                return await self._run(intake, files, reporter)
            except Exception as e:
                log_with_context(
                    logger,
                    logging.ERROR,
                    f"Upload failed: {e}",
                    intake_id=intake.id,
                    upload_id=upload_id,
                )
                reporter.error(f"Upload failed: {e}")
                raise

    async def _run(
        self,
        intake: Intake,
        files: list[IncomingFile],
        reporter: ProgressReporter,
    ) -> UploadResult:
        result = UploadResult(upload_id=reporter.upload_id, intake=intake)
        customer = self.repository.get_customer(intake.customer_id)
        gate_open = intake.status != IntakeStatus.AWAITING_PRIOR_RETURN
        certified_now = False
        processed = 0
        rechecked = 0

        reporter.step(ProgressStep.UPLOADING, f"Uploading {len(files)} document(s)...")

        # Status is recomputed once, after planning, so a certifying batch never
        # passes through a transient Ready before its requests exist.
        try:
            for incoming in files:
                file_ref = self.file_store.save(incoming.file_name, incoming.data)

                existing = self.repository.find_document_by_file_ref(intake.id, file_ref)
                on_record = existing is not None and existing.status == DocumentStatus.COMPLETED
                if on_record and gate_open:
                    log_with_context(
                        logger,
                        logging.INFO,
                        f"Duplicate upload {incoming.file_name} already recorded as {existing.id}",
                        intake_id=intake.id,
                        upload_id=reporter.upload_id,
                    )
                    result.duplicates.append(incoming.file_name)
                    result.messages.append(
                        self._say(
                            intake.id,
                            f"{incoming.file_name} was already uploaded as \"{existing.name}\"; "
                            "it was not added again.",
                        )
                    )
                    continue

                analysis = await self._analyze(intake, incoming, reporter, result)

                if on_record:
                    # Gate still closed: the earlier analysis never certified this file
                    document = self._refresh(intake, existing, incoming, analysis, reporter.upload_id)
                    rechecked += 1
                else:
                    reporter.step(ProgressStep.MATCHING, "Matching documents to requests...")
                    document = self._reconcile(intake, incoming, file_ref, analysis, reporter.upload_id)
                    processed += 1
                result.documents.append(document)

                feedback = analysis.feedback or f"Received {incoming.file_name}."
                result.messages.append(self._say(intake.id, feedback))

                if gate_open:
                    continue

                problems = certification_problems(analysis, intake)
                if problems:
                    result.messages.append(self._say(intake.id, self._rejection_text(intake, problems)))
                    log_with_context(
                        logger,
                        logging.INFO,
                        f"Prior return not certified: {'; '.join(problems)}",
                        intake_id=intake.id,
                        upload_id=reporter.upload_id,
                    )
                    continue

                certified_now = True
                gate_open = True
                if _name_mismatch(analysis, customer):
                    # Advisory only; certification stands
                    logger.warning(
                        f"Taxpayer name mismatch on prior return: {analysis.taxpayer_name!r} vs {customer.name!r}"
                    )
                    result.messages.append(
                        self._say(
                            intake.id,
                            f"Note: the taxpayer name \"{analysis.taxpayer_name}\" on this return does not "
                            f"match the customer name \"{customer.name}\". Please confirm it is the right return.",
                        )
                    )

            if gate_open and (processed or rechecked):
                reporter.step(ProgressStep.GENERATING, "Generating recommendations...")
                await self._plan_next_steps(intake, result)
        finally:
            intake, _ = recompute_status(self.repository, intake, prior_return_certified=certified_now)
            result.intake = intake

        if result.degraded:
            reporter.error("AI unavailable: uploads were saved but could not be fully analyzed")
        elif processed or rechecked:
            reporter.step(ProgressStep.COMPLETE, "Analysis complete!")
        else:
            reporter.step(ProgressStep.COMPLETE, "No new documents to analyze")

        log_with_context(
            logger,
            logging.INFO,
            f"Upload batch processed: {processed} new, {rechecked} rechecked, {len(result.duplicates)} duplicate",
            intake_id=intake.id,
            upload_id=reporter.upload_id,
            status=intake.status.value,
            certified=certified_now,
        )
        return result

    async def _analyze(
        self,
        intake: Intake,
        incoming: IncomingFile,
        reporter: ProgressReporter,
        result: UploadResult,
    ) -> DocumentAnalysis:
        reporter.step(ProgressStep.ANALYZING, f"Analyzing {incoming.file_name} with AI...")
        text = extract_document_text(
            incoming.file_name,
            incoming.content_type,
            incoming.data,
            max_chars=self.settings.MAX_DOCUMENT_TEXT_CHARS,
        )
        analysis = await self.adapter.classify(incoming.file_name, text.text, intake)
        result.degraded = result.degraded or analysis.degraded

        reporter.step(ProgressStep.EXTRACTING, f"Extracting details from {incoming.file_name}...")
        for fact in analysis.extracted_facts:
            self.repository.upsert_detail(intake.id, fact.category, fact.label, fact.value)
        return analysis

    def _refresh(
        self,
        intake: Intake,
        existing: Document,
        incoming: IncomingFile,
        analysis: DocumentAnalysis,
        upload_id: str,
    ) -> Document:
        """Fill in a recorded upload's structured fields from a fresh analysis."""
        document = existing
        if not analysis.degraded and analysis.document_type and not existing.document_type:
            fields = {
                "name": _display_name(incoming.file_name, analysis),
                "document_type": analysis.document_type,
                "year": analysis.year,
                "entity": analysis.entity,
            }
            document = self.repository.update_document(existing.id, fields) or existing

        log_with_context(
            logger,
            logging.INFO,
            f"Re-analyzed {incoming.file_name} against recorded document {existing.id}",
            intake_id=intake.id,
            upload_id=upload_id,
            degraded=analysis.degraded,
        )
        return document

    def _reconcile(
        self,
        intake: Intake,
        incoming: IncomingFile,
        file_ref: str,
        analysis: DocumentAnalysis,
        upload_id: str,
    ) -> Document:
        """Attach the upload to a Requested document or record it as a new Completed one."""
        documents = self.repository.list_documents(intake.id)
        hints = UploadHints(
            document_type=analysis.document_type,
            year=analysis.year,
            entity=analysis.entity,
        )
        decision = match_upload(incoming.file_name, documents, hints)

        if decision.attaches:
            document = self.repository.complete_document(decision.document.id, file_ref, incoming.file_name)
        else:
            document = self.repository.create_document(
                Document(
                    intake_id=intake.id,
                    name=_display_name(incoming.file_name, analysis),
                    status=DocumentStatus.COMPLETED,
                    document_type=analysis.document_type,
                    year=analysis.year,
                    entity=analysis.entity,
                    file_ref=file_ref,
                    file_name=incoming.file_name,
                    completed_at=datetime.now(timezone.utc),
                )
            )

        log_with_context(
            logger,
            logging.INFO,
            f"Reconciled {incoming.file_name}: {decision.action} ({decision.reason})",
            intake_id=intake.id,
            upload_id=upload_id,
            document_id=document.id,
        )
        return document

    @staticmethod
    def _rejection_text(intake: Intake, problems: list[str]) -> str:
        details = " ".join(f"{p[0].upper()}{p[1:]}." for p in problems)
        return (
            f"⚠️ Prior-year return validation failed: {details}\n\n"
            f"Please upload the customer's complete {intake.prior_year} Form 1040 tax return to continue."
        )

    async def _plan_next_steps(self, intake: Intake, result: UploadResult) -> None:
        documents = self.repository.list_documents(intake.id)
        details = self.repository.list_details(intake.id)
        next_steps = await self.adapter.plan_next_steps(intake, documents, details)
        result.degraded = result.degraded or next_steps.degraded

        for request in dedupe_requests(next_steps.requested_documents, documents):
            document = self.repository.create_document(
                Document(
                    intake_id=intake.id,
                    name=request.name,
                    document_type=request.document_type,
                    year=request.year,
                    entity=request.entity,
                    provenance=request.provenance,
                )
            )
            result.requested_documents.append(document)

        result.messages.append(self._say(intake.id, next_steps.message))
