"""Tests for the Anthropic-backed analysis adapter with a mocked SDK client."""

import json
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from docintake.chains.analysis_adapter import AnthropicAnalysisAdapter, dedupe_memories
from docintake.core.config import Settings
from docintake.core.errors import AnalysisUnavailableError
from docintake.core.schemas_analysis import TurnContext
from docintake.core.schemas_intake import Customer, DetectedMemory, Intake, IntakeStatus, Memory

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _text_response(text: str):
    return MagicMock(content=[MagicMock(type="text", text=text)])


class _FakeStream:
    """Stand-in for the SDK's message stream context manager."""

    def __init__(self, chunks, error=None):
        self._chunks = chunks
        self._error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def text_stream(self):
        return self._generate()

    async def _generate(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.messages.create = AsyncMock()
    return client


@pytest.fixture
def adapter(mock_client):
    return AnthropicAnalysisAdapter(Settings(ANTHROPIC_API_KEY="test-key"), client=mock_client)


@pytest.fixture
def turn_context():
    customer = Customer(name="Jane Doe", email="jane@example.com")
    intake = Intake(customer_id=customer.id, tax_year="2024", status=IntakeStatus.INCOMPLETE)
    return TurnContext(intake=intake, customer=customer)


CLASSIFICATION = {
    "is_valid": True,
    "document_type": "Form 1040",
    "year": "2023",
    "entity": None,
    "taxpayer_name": "Jane Doe",
    "extracted_facts": [{"category": "Personal Info", "label": "Filing Status", "value": "Single"}],
    "missing_info": [],
    "feedback": "Complete 2023 Form 1040 for Jane Doe.",
}


class TestClassify:
    @pytest.mark.asyncio
    async def test_success(self, adapter, mock_client):
        mock_client.messages.create.return_value = _text_response(json.dumps(CLASSIFICATION))
        intake = Intake(customer_id="c", tax_year="2024")

        analysis = await adapter.classify("2023_1040.pdf", "Form 1040 ...", intake)

        assert analysis.document_type == "Form 1040"
        assert analysis.year == "2023"
        assert not analysis.degraded
        assert analysis.extracted_facts[0].value == "Single"

    @pytest.mark.asyncio
    async def test_fix_schema_retry(self, adapter, mock_client):
        mock_client.messages.create.side_effect = [
            _text_response("I think this is a 1040"),
            _text_response(f"```json\n{json.dumps(CLASSIFICATION)}\n```"),
        ]
        analysis = await adapter.classify("2023_1040.pdf", "", Intake(customer_id="c", tax_year="2024"))

        assert analysis.is_valid
        assert mock_client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_unparseable_after_retry_is_degraded(self, adapter, mock_client):
        mock_client.messages.create.side_effect = [_text_response("nope"), _text_response("still nope")]
        analysis = await adapter.classify("scan.pdf", "", Intake(customer_id="c", tax_year="2024"))

        assert analysis.degraded
        assert not analysis.is_valid
        assert analysis.failure_reason == "invalid_output"

    @pytest.mark.asyncio
    async def test_timeout_is_labeled(self, adapter, mock_client):
        mock_client.messages.create.side_effect = anthropic.APITimeoutError(request=REQUEST)
        analysis = await adapter.classify("scan.pdf", "", Intake(customer_id="c", tax_year="2024"))

        assert analysis.degraded
        assert analysis.failure_reason == "timeout"
        assert analysis.feedback.startswith("⚠️ AI unavailable")

    @pytest.mark.asyncio
    async def test_missing_key_is_labeled(self):
        adapter = AnthropicAnalysisAdapter(Settings(ANTHROPIC_API_KEY=None))
        analysis = await adapter.classify("scan.pdf", "", Intake(customer_id="c", tax_year="2024"))
        assert analysis.degraded
        assert analysis.failure_reason == "config"


class TestPlanNextSteps:
    @pytest.mark.asyncio
    async def test_requests_parsed(self, adapter, mock_client):
        mock_client.messages.create.return_value = _text_response(
            json.dumps(
                {
                    "message": "Please send the W-2.",
                    "requested_documents": [
                        {"name": "W-2 from Microsoft for 2024", "document_type": "W-2", "year": "2024", "entity": "Microsoft"}
                    ],
                }
            )
        )
        steps = await adapter.plan_next_steps(Intake(customer_id="c", tax_year="2024"), [], [])
        assert steps.requested_documents[0].entity == "Microsoft"
        assert not steps.degraded

    @pytest.mark.asyncio
    async def test_quota_is_degraded(self, adapter, mock_client):
        mock_client.messages.create.side_effect = anthropic.RateLimitError(
            "slow down", response=httpx.Response(429, request=REQUEST), body=None
        )
        steps = await adapter.plan_next_steps(Intake(customer_id="c", tax_year="2024"), [], [])
        assert steps.degraded
        assert steps.requested_documents == []
        assert "quota" in steps.message


class TestRespond:
    @pytest.mark.asyncio
    async def test_streams_text_memories_and_requests(self, adapter, mock_client, turn_context):
        async def create(**kwargs):
            prompt = kwargs["messages"][0]["content"]
            if "durable facts" in prompt:
                return _text_response('[{"content": "Jane always files jointly", "scope": "customer"}]')
            return _text_response(
                json.dumps(
                    {
                        "requested_documents": [
                            {"name": "1099-INT from Chase for 2024", "document_type": "1099-INT", "year": "2024", "entity": "Chase"}
                        ]
                    }
                )
            )

        mock_client.messages.create.side_effect = create
        mock_client.messages.stream = MagicMock(
            return_value=_FakeStream(["Got it. ", "Please send the 1099-INT from Chase."])
        )

        fragments = [
            f
            async for f in adapter.respond([], "Please remember that Jane always files jointly.", turn_context)
        ]

        text = "".join(f.text for f in fragments if not f.final)
        final = fragments[-1]
        memory_fragments = [f for f in fragments if not f.final and f.detected_memories]

        assert text == "Got it. Please send the 1099-INT from Chase."
        assert final.final
        assert [m.content for m in final.detected_memories] == ["Jane always files jointly"]
        assert final.requested_documents[0].entity == "Chase"
        assert len(memory_fragments) == 1
        assert not final.degraded

    @pytest.mark.asyncio
    async def test_stream_failure_is_labeled(self, adapter, mock_client, turn_context):
        mock_client.messages.stream = MagicMock(
            return_value=_FakeStream(
                ["Partial "],
                error=anthropic.RateLimitError(
                    "slow down", response=httpx.Response(429, request=REQUEST), body=None
                ),
            )
        )

        fragments = [f async for f in adapter.respond([], "What is next?", turn_context)]
        text = "".join(f.text for f in fragments if not f.final)

        assert text.startswith("Partial ")
        assert "AI unavailable" in text
        assert fragments[-1].degraded
        assert fragments[-1].requested_documents == []
        mock_client.messages.create.assert_not_awaited()


class TestSynthesizeNotes:
    @pytest.mark.asyncio
    async def test_failure_raises_labeled_error(self, adapter, mock_client):
        mock_client.messages.create.side_effect = anthropic.APITimeoutError(request=REQUEST)
        with pytest.raises(AnalysisUnavailableError) as exc_info:
            await adapter.synthesize_notes("the firm", [Memory(content="x")], "")
        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_no_memories_keeps_previous_notes(self, adapter, mock_client):
        assert await adapter.synthesize_notes("the firm", [], "old notes") == "old notes"
        mock_client.messages.create.assert_not_awaited()


def test_dedupe_memories_ignores_case_and_spacing():
    memories = [
        DetectedMemory(content="Has two kids"),
        DetectedMemory(content="has  two kids"),
        DetectedMemory(content="Has two kids", scope="firm"),
    ]
    assert len(dedupe_memories(memories)) == 2
