"""Tests for upload reconciliation and request dedup."""

from datetime import datetime, timedelta, timezone

from docintake.core.document_matcher import (
    UploadHints,
    dedupe_requests,
    entities_overlap,
    find_duplicate_request,
    match_upload,
    normalize_document_type,
    normalize_name,
    normalize_year,
    types_agree,
)
from docintake.core.schemas_intake import Document, DocumentRequest, DocumentStatus

BASE = datetime(2025, 2, 1, tzinfo=timezone.utc)


def _doc(name, offset=0, status=DocumentStatus.REQUESTED, **fields):
    return Document(
        intake_id="intake-1",
        name=name,
        status=status,
        created_at=BASE + timedelta(minutes=offset),
        **fields,
    )


class TestNormalization:
    def test_normalize_name_strips_extension_and_punctuation(self):
        assert normalize_name("2023_Form1040.PDF") == "2023 form1040"
        assert normalize_name("W-2 (Microsoft).pdf") == "w2 microsoft"

    def test_form_identifiers_join(self):
        assert normalize_name("w-2_microsoft.pdf") == normalize_name("W2 Microsoft")
        assert normalize_name("1099-INT Chase") == "1099int chase"

    def test_normalize_document_type(self):
        assert normalize_document_type("Form W-2") == "w2"
        assert normalize_document_type("IRS Form 1099-INT") == "1099int"
        assert normalize_document_type(None) == ""

    def test_normalize_year(self):
        assert normalize_year("Tax year 2023") == "2023"
        assert normalize_year(None) == ""

    def test_types_agree_accepts_family_against_variant(self):
        assert types_agree("1099", "Form 1099-INT")
        assert types_agree("W-2", "Form W-2")
        assert not types_agree("W-2", "1099")
        assert not types_agree(None, "W-2")

    def test_entities_overlap(self):
        assert entities_overlap("Microsoft", "Microsoft Corporation")
        assert entities_overlap(None, "Chase")
        assert entities_overlap("JPMorgan Chase Bank", "Chase")
        assert not entities_overlap("Microsoft", "Google LLC")


class TestMatchUpload:
    def test_filename_match_attaches(self):
        decision = match_upload("w2_microsoft.pdf", [_doc("W-2 Microsoft")])
        assert decision.attaches
        assert decision.reason == "filename"

    def test_filename_contained_in_name_attaches(self):
        decision = match_upload("1099-int.pdf", [_doc("1099-INT from Chase for 2024")])
        assert decision.attaches

    def test_descriptive_name_needs_hints(self):
        docs = [_doc("W-2 from Microsoft for 2024", document_type="W-2", year="2024", entity="Microsoft")]
        assert match_upload("w2_microsoft.pdf", docs).action == "create"

        hints = UploadHints(document_type="W-2", year="2024", entity="Microsoft")
        assert match_upload("w2_microsoft.pdf", docs, hints).attaches

    def test_structured_match_attaches(self):
        docs = [_doc("W-2 from Microsoft for 2024", document_type="W-2", year="2024", entity="Microsoft")]
        hints = UploadHints(document_type="Form W-2", year="2024", entity="Microsoft Corporation")
        decision = match_upload("scan_0001.pdf", docs, hints)
        assert decision.attaches
        assert decision.reason == "structured"
        assert decision.document.id == docs[0].id

    def test_structured_beats_filename(self):
        by_name = _doc("1099", offset=0)
        by_fields = _doc("Interest statement", offset=5, document_type="1099-INT", year="2024", entity="Chase")
        hints = UploadHints(document_type="1099-INT", year="2024", entity="Chase")
        decision = match_upload("1099_chase.pdf", [by_name, by_fields], hints)
        assert decision.document.id == by_fields.id
        assert decision.reason == "structured"

    def test_tie_goes_to_earliest_created(self):
        first = _doc("W-2", offset=0, document_type="W-2", year="2024")
        second = _doc("W-2", offset=1, document_type="W-2", year="2024")
        decision = match_upload("w2.pdf", [first, second], UploadHints(document_type="W-2", year="2024"))
        assert decision.document.id == first.id

    def test_year_mismatch_is_not_structured(self):
        docs = [_doc("Brokerage statement", document_type="1099-B", year="2024")]
        decision = match_upload("scan.pdf", docs, UploadHints(document_type="1099-B", year="2023"))
        assert decision.action == "create"

    def test_completed_documents_are_never_matched(self):
        docs = [_doc("W-2 Microsoft", status=DocumentStatus.COMPLETED)]
        assert match_upload("w2_microsoft.pdf", docs).action == "create"

    def test_no_match_creates(self):
        decision = match_upload("mystery.pdf", [_doc("W-2 Microsoft")])
        assert decision.action == "create"
        assert decision.document is None
        assert decision.reason == "none"


class TestRequestDedup:
    def test_duplicate_of_requested(self):
        docs = [_doc("W-2 from Microsoft for 2024", document_type="W-2", year="2024", entity="Microsoft")]
        request = DocumentRequest(name="Microsoft W2", document_type="Form W-2", year="2024", entity="Microsoft Corp")
        assert find_duplicate_request(request, docs).id == docs[0].id

    def test_duplicate_of_completed(self):
        docs = [
            _doc(
                "1099-INT Chase",
                status=DocumentStatus.COMPLETED,
                document_type="1099-INT",
                year="2024",
                entity="Chase",
            )
        ]
        request = DocumentRequest(name="Chase interest", document_type="1099-INT", year="2024", entity="Chase")
        assert find_duplicate_request(request, docs) is not None

    def test_different_entity_is_new(self):
        docs = [_doc("W-2 Microsoft", document_type="W-2", year="2024", entity="Microsoft")]
        request = DocumentRequest(name="W-2 Google", document_type="W-2", year="2024", entity="Google")
        assert find_duplicate_request(request, docs) is None

    def test_different_year_is_new(self):
        docs = [_doc("W-2 Microsoft", document_type="W-2", year="2023", entity="Microsoft")]
        request = DocumentRequest(name="W-2 Microsoft", document_type="W-2", year="2024", entity="Microsoft")
        assert find_duplicate_request(request, docs) is None

    def test_untyped_requests_compare_names(self):
        docs = [_doc("Charitable donation receipts")]
        request = DocumentRequest(name="charitable-donation receipts")
        assert find_duplicate_request(request, docs) is not None

    def test_dedupe_within_batch(self):
        requests = [
            DocumentRequest(name="W-2 Microsoft", document_type="W-2", year="2024", entity="Microsoft"),
            DocumentRequest(name="Microsoft W-2 2024", document_type="Form W-2", year="2024", entity="Microsoft"),
            DocumentRequest(name="1099-INT Chase", document_type="1099-INT", year="2024", entity="Chase"),
        ]
        accepted = dedupe_requests(requests, [])
        assert [r.name for r in accepted] == ["W-2 Microsoft", "1099-INT Chase"]
