"""Tests for the HTTP and WebSocket surface via FastAPI TestClient."""

from unittest.mock import patch

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from docintake.api.progress import _forward as forward
from docintake.client.sse_parser import SSEParser
from docintake.core.schemas_analysis import NextSteps
from docintake.core.schemas_intake import DocumentRequest, IntakeStatus
from docintake.main import create_app
from tests.fakes.fake_adapter import prior_return


@pytest.fixture
def client(ctx):
    with TestClient(create_app(ctx)) as test_client:
        yield test_client


@pytest.fixture
def open_intake(repo, intake):
    return repo.update_intake_status(intake.id, IntakeStatus.INCOMPLETE)


def _parse_stream(text: str):
    parser = SSEParser()
    return parser.feed(text) + parser.close()


class TestCustomers:
    def test_create_and_list(self, client):
        response = client.post("/v1/customers", json={"name": "Ada Park", "email": "ada@example.com"})
        assert response.status_code == 201
        customer_id = response.json()["id"]

        listed = client.get("/v1/customers").json()
        assert [c["id"] for c in listed] == [customer_id]

    def test_invalid_email_rejected(self, client):
        response = client.post("/v1/customers", json={"name": "Ada", "email": "not-an-email"})
        assert response.status_code == 422

    def test_update_notes(self, client, customer):
        response = client.patch(f"/v1/customers/{customer.id}/notes", json={"notes": "Prefers phone calls"})
        assert response.status_code == 200
        assert response.json()["notes"] == "Prefers phone calls"

    def test_delete_cascades(self, client, repo, customer, intake):
        assert client.delete(f"/v1/customers/{customer.id}").status_code == 204
        assert repo.get_intake(intake.id) is None
        assert client.get(f"/v1/customers/{customer.id}").status_code == 404


class TestIntakes:
    def test_create_starts_awaiting(self, client, customer):
        response = client.post(f"/v1/customers/{customer.id}/intakes", json={"tax_year": "2025"})
        assert response.status_code == 201
        assert response.json()["status"] == "awaiting_prior_return"

    def test_bad_year_rejected(self, client, customer):
        response = client.post(f"/v1/customers/{customer.id}/intakes", json={"tax_year": "next year"})
        assert response.status_code == 422

    def test_unknown_customer(self, client):
        response = client.post("/v1/customers/missing/intakes", json={"tax_year": "2024"})
        assert response.status_code == 404

    def test_summary(self, client, intake):
        data = client.get(f"/v1/intakes/{intake.id}").json()
        assert data["status_label"] == "Awaiting Prior Return"
        assert data["chat_enabled"] is False
        assert data["customer"]["name"] == "Jane Doe"
        assert data["requested_count"] == data["completed_count"] == 0

    def test_unknown_intake(self, client):
        assert client.get("/v1/intakes/missing").status_code == 404
        assert client.get("/v1/intakes/missing/documents").status_code == 404


class TestDocuments:
    def test_request_then_duplicate(self, client, open_intake):
        body = {"name": "W-2 from Contoso for 2024", "document_type": "W-2", "year": "2024", "entity": "Contoso"}

        first = client.post(f"/v1/intakes/{open_intake.id}/documents", json=body)
        second = client.post(f"/v1/intakes/{open_intake.id}/documents", json=body)

        assert first.status_code == 201
        assert first.json()["created"] is True
        assert second.status_code == 200
        assert second.json()["document"]["id"] == first.json()["document"]["id"]

    def test_missing_year_is_400(self, client, open_intake):
        response = client.post(
            f"/v1/intakes/{open_intake.id}/documents", json={"name": "W-2", "document_type": "W-2"}
        )
        assert response.status_code == 400

    def test_edit_and_delete(self, client, open_intake):
        created = client.post(
            f"/v1/intakes/{open_intake.id}/documents",
            json={"name": "1098 mortgage", "document_type": "1098", "year": "2024"},
        ).json()
        document_id = created["document"]["id"]

        edited = client.patch(f"/v1/documents/{document_id}", json={"name": "Form 1098 from Wells Fargo"})
        assert edited.json()["name"] == "Form 1098 from Wells Fargo"

        deleted = client.delete(f"/v1/documents/{document_id}")
        assert deleted.status_code == 200
        assert deleted.json()["intake"]["status"] == "incomplete"
        assert client.delete(f"/v1/documents/{document_id}").status_code == 404

    def test_edit_colliding_with_request_is_400(self, client, open_intake):
        url = f"/v1/intakes/{open_intake.id}/documents"
        client.post(url, json={"name": "W-2 Microsoft", "document_type": "W-2", "year": "2024", "entity": "Microsoft"})
        contoso = client.post(
            url, json={"name": "W-2 Contoso", "document_type": "W-2", "year": "2024", "entity": "Contoso"}
        ).json()

        response = client.patch(f"/v1/documents/{contoso['document']['id']}", json={"entity": "Microsoft"})

        assert response.status_code == 400
        assert "W-2 Microsoft" in response.json()["detail"]


class TestUploads:
    def test_certifying_upload(self, client, adapter, intake):
        adapter.analyses["2023_1040.pdf"] = prior_return("2023")
        adapter.next_steps = NextSteps(
            message="Please send the Microsoft W-2.",
            requested_documents=[
                DocumentRequest(name="W-2 from Microsoft for 2024", document_type="W-2", year="2024", entity="Microsoft")
            ],
        )

        response = client.post(
            f"/v1/intakes/{intake.id}/uploads",
            files=[("files", ("2023_1040.pdf", b"%PDF-1.4 fake", "application/pdf"))],
            data={"upload_id": "u-1"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["upload_id"] == "u-1"
        assert data["intake"]["status"] == "incomplete"
        assert [d["name"] for d in data["requested_documents"]] == ["W-2 from Microsoft for 2024"]

    def test_empty_file_is_400(self, client, intake):
        response = client.post(
            f"/v1/intakes/{intake.id}/uploads",
            files=[("files", ("empty.pdf", b"", "application/pdf"))],
        )
        assert response.status_code == 400

    def test_unknown_intake_is_404(self, client):
        response = client.post(
            "/v1/intakes/missing/uploads",
            files=[("files", ("a.pdf", b"data", "application/pdf"))],
        )
        assert response.status_code == 404

    def test_progress_socket_receives_steps(self, client, adapter, intake, customer):
        adapter.analyses["2023_1040.pdf"] = prior_return("2023")

        with client.websocket_connect(f"/v1/ws/progress?key={customer.id}") as websocket:
            client.post(
                f"/v1/intakes/{intake.id}/uploads",
                files=[("files", ("2023_1040.pdf", b"return", "application/pdf"))],
                data={"upload_id": "u-2"},
            )
            steps = []
            while True:
                event = websocket.receive_json()
                steps.append(event["step"])
                if event["step"] in ("complete", "error"):
                    break

        assert steps[0] == "uploading"
        assert steps[-1] == "complete"
        assert event["upload_id"] == "u-2"
        assert event["progress"] == 100

    def test_dropped_listener_socket_is_closed(self, client, ctx, customer):
        async def drop_then_forward(websocket, subscription):
            subscription.close()
            await forward(websocket, subscription)

        with patch("docintake.api.progress._forward", new=drop_then_forward):
            with client.websocket_connect(f"/v1/ws/progress?key={customer.id}") as websocket:
                with pytest.raises(WebSocketDisconnect) as closed:
                    websocket.receive_json()

        assert closed.value.code == 1013
        assert ctx.broadcaster.listener_count(customer.id) == 0


class TestChat:
    def test_stream_event_order(self, client, open_intake):
        response = client.post(
            f"/v1/intakes/{open_intake.id}/chat", json={"content": "Anything missing?", "client_token": "t-1"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _parse_stream(response.text)
        assert [e.type for e in events] == ["accountant_message", "chunk", "chunk", "complete"]
        assert events[0].client_token == "t-1"
        assert events[-1].message.content == "Thanks, noted."

        messages = client.get(f"/v1/intakes/{open_intake.id}/messages").json()
        assert [m["sender"] for m in messages] == ["accountant", "ai"]

    def test_gate_closed_is_409(self, client, intake):
        response = client.post(f"/v1/intakes/{intake.id}/chat", json={"content": "hello"})
        assert response.status_code == 409

    def test_empty_content_is_422(self, client, open_intake):
        response = client.post(f"/v1/intakes/{open_intake.id}/chat", json={"content": ""})
        assert response.status_code == 422


class TestMemories:
    def test_confirm_and_list(self, client, customer):
        response = client.post(
            "/v1/memories", json={"content": "Has a home office", "scope": "customer", "customer_id": customer.id}
        )
        assert response.status_code == 201
        assert "Has a home office" in response.json()["synthesis"]["notes"]

        listed = client.get("/v1/memories", params={"customer_id": customer.id}).json()
        assert [m["content"] for m in listed] == ["Has a home office"]
        assert "Has a home office" in client.get(f"/v1/customers/{customer.id}").json()["notes"]

    def test_customer_scope_without_customer_is_400(self, client):
        response = client.post("/v1/memories", json={"content": "x", "scope": "customer"})
        assert response.status_code == 400

    def test_firm_settings(self, client):
        assert client.put("/v1/settings/firm", json={"notes": "Firm handbook"}).status_code == 200
        assert client.get("/v1/settings/firm").json()["notes"] == "Firm handbook"

    def test_synthesize_firm(self, client):
        client.post("/v1/memories", json={"content": "Collect brokerage 1099-Bs", "scope": "firm"})
        response = client.post("/v1/memories/synthesize", json={"scope": "firm"})
        assert response.status_code == 200
        assert response.json()["memory_count"] == 1
