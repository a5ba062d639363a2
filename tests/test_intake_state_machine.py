"""Tests for intake status derivation and gating."""

import pytest

from docintake.core.errors import GateClosedError
from docintake.core.intake_state_machine import (
    certification_problems,
    chat_allowed,
    compute_next_status,
    is_allowed_transition,
    is_certified_prior_return,
    require_chat_open,
)
from docintake.core.schemas_analysis import DocumentAnalysis
from docintake.core.schemas_intake import Document, DocumentStatus, Intake, IntakeStatus

AWAITING = IntakeStatus.AWAITING_PRIOR_RETURN
INCOMPLETE = IntakeStatus.INCOMPLETE
READY = IntakeStatus.READY


def _docs(requested=0, completed=0):
    return [Document(intake_id="i", name=f"r{i}") for i in range(requested)] + [
        Document(intake_id="i", name=f"c{i}", status=DocumentStatus.COMPLETED) for i in range(completed)
    ]


@pytest.fixture
def intake_2024():
    return Intake(customer_id="c", tax_year="2024")


class TestComputeNextStatus:
    def test_awaiting_stays_without_certification(self):
        transition = compute_next_status(AWAITING, _docs(completed=3))
        assert transition.current == AWAITING
        assert not transition.changed

    def test_certification_with_outstanding_requests_is_incomplete(self):
        transition = compute_next_status(AWAITING, _docs(requested=2, completed=1), prior_return_certified=True)
        assert transition.current == INCOMPLETE
        assert transition.changed

    def test_certification_with_nothing_outstanding_is_ready(self):
        transition = compute_next_status(AWAITING, _docs(completed=1), prior_return_certified=True)
        assert transition.current == READY

    def test_incomplete_to_ready(self):
        assert compute_next_status(INCOMPLETE, _docs(completed=2)).current == READY

    def test_ready_reopens_on_new_request(self):
        assert compute_next_status(READY, _docs(requested=1, completed=2)).current == INCOMPLETE

    def test_empty_document_set_is_not_ready(self):
        assert compute_next_status(INCOMPLETE, []).current == INCOMPLETE

    @pytest.mark.parametrize("current", [INCOMPLETE, READY])
    def test_recompute_is_idempotent(self, current):
        docs = _docs(requested=1, completed=1)
        once = compute_next_status(current, docs).current
        twice = compute_next_status(once, docs).current
        assert once == twice


class TestTransitions:
    def test_forward_path_allowed(self):
        assert is_allowed_transition(AWAITING, INCOMPLETE)
        assert is_allowed_transition(AWAITING, READY)
        assert is_allowed_transition(READY, INCOMPLETE)

    def test_never_back_to_awaiting(self):
        assert not is_allowed_transition(INCOMPLETE, AWAITING)
        assert not is_allowed_transition(READY, AWAITING)


class TestCertification:
    def test_correct_prior_return_certifies(self, intake_2024):
        analysis = DocumentAnalysis(is_valid=True, document_type="Form 1040", year="2023")
        assert is_certified_prior_return(analysis, intake_2024)

    def test_1040_variant_certifies(self, intake_2024):
        analysis = DocumentAnalysis(is_valid=True, document_type="Form 1040-SR", year="2023")
        assert is_certified_prior_return(analysis, intake_2024)

    def test_wrong_year_explained(self, intake_2024):
        analysis = DocumentAnalysis(is_valid=True, document_type="Form 1040", year="2022")
        problems = certification_problems(analysis, intake_2024)
        assert len(problems) == 1
        assert "2022" in problems[0]
        assert "2023" in problems[0]

    def test_wrong_form_explained(self, intake_2024):
        analysis = DocumentAnalysis(is_valid=True, document_type="Form W-2", year="2023")
        problems = certification_problems(analysis, intake_2024)
        assert any("Form 1040" in p for p in problems)

    def test_degraded_never_certifies(self, intake_2024):
        analysis = DocumentAnalysis(
            is_valid=True, document_type="Form 1040", year="2023", degraded=True, failure_reason="timeout"
        )
        assert not is_certified_prior_return(analysis, intake_2024)


class TestChatGate:
    def test_chat_closed_while_awaiting(self, intake_2024):
        assert not chat_allowed(AWAITING)
        with pytest.raises(GateClosedError) as exc_info:
            require_chat_open(intake_2024)
        assert "2023 Form 1040" in str(exc_info.value)

    def test_chat_open_after_certification(self, intake_2024):
        intake_2024.status = INCOMPLETE
        require_chat_open(intake_2024)
        assert chat_allowed(READY)
