"""Tests for the in-memory repository."""

from docintake.core.schemas_intake import (
    ChatMessage,
    Document,
    DocumentStatus,
    IntakeStatus,
    Memory,
    Sender,
)


def test_intake_starts_awaiting_prior_return(repo, customer):
    intake = repo.create_intake(customer.id, "2024")
    assert intake.status == IntakeStatus.AWAITING_PRIOR_RETURN
    assert intake.prior_year == "2023"


def test_reads_return_copies(repo, intake):
    fetched = repo.get_intake(intake.id)
    fetched.status = IntakeStatus.READY
    assert repo.get_intake(intake.id).status == IntakeStatus.AWAITING_PRIOR_RETURN


def test_detail_upsert_collapses_same_key(repo, intake):
    first = repo.upsert_detail(intake.id, "Income Sources", "Employer", "Microsoft")
    second = repo.upsert_detail(intake.id, "Income Sources", "Employer", "Google")

    details = repo.list_details(intake.id)
    assert len(details) == 1
    assert details[0].value == "Google"
    assert first.id == second.id


def test_detail_upsert_distinct_keys(repo, intake):
    repo.upsert_detail(intake.id, "Income Sources", "Employer", "Microsoft")
    repo.upsert_detail(intake.id, "Personal Info", "Employer", "n/a")
    assert len(repo.list_details(intake.id)) == 2


def test_complete_document_never_moves_backward(repo, intake):
    document = repo.create_document(Document(intake_id=intake.id, name="W-2"))
    done = repo.complete_document(document.id, "ref-1", "w2.pdf")
    again = repo.complete_document(document.id, "ref-2", "other.pdf")

    assert done.status == DocumentStatus.COMPLETED
    assert again.file_ref == "ref-1"
    assert repo.find_document_by_file_ref(intake.id, "ref-1").id == document.id


def test_update_document_ignores_status_fields(repo, intake):
    document = repo.create_document(Document(intake_id=intake.id, name="W-2"))
    updated = repo.update_document(document.id, {"name": "W-2 Microsoft", "status": "completed"})
    assert updated.name == "W-2 Microsoft"
    assert updated.status == DocumentStatus.REQUESTED


def test_messages_ordered_and_linked(repo, intake):
    question = repo.create_message(
        ChatMessage(intake_id=intake.id, sender=Sender.ACCOUNTANT, content="hi", client_token="tok-1")
    )
    answer = repo.create_message(
        ChatMessage(intake_id=intake.id, sender=Sender.AI, content="hello", reply_to=question.id)
    )

    assert [m.id for m in repo.list_messages(intake.id)] == [question.id, answer.id]
    assert repo.find_message_by_token(intake.id, "tok-1").id == question.id
    assert repo.find_reply(intake.id, question.id).id == answer.id
    assert repo.find_message_by_token(intake.id, "missing") is None


def test_delete_intake_cascades(repo, intake):
    repo.create_document(Document(intake_id=intake.id, name="W-2"))
    repo.create_message(ChatMessage(intake_id=intake.id, sender=Sender.AI, content="x"))
    repo.upsert_detail(intake.id, "Personal Info", "Name", "Jane")

    assert repo.delete_intake(intake.id)
    assert repo.get_intake(intake.id) is None
    assert repo.list_documents(intake.id) == []
    assert repo.list_messages(intake.id) == []
    assert repo.list_details(intake.id) == []
    assert not repo.delete_intake(intake.id)


def test_delete_customer_cascades(repo, customer, intake):
    repo.create_memory(Memory(customer_id=customer.id, content="Has two kids"))
    repo.create_memory(Memory(content="Firm requires engagement letters"))

    assert repo.delete_customer(customer.id)
    assert repo.get_intake(intake.id) is None
    assert repo.list_memories(customer.id) == []
    assert len(repo.list_memories(None)) == 1


def test_memory_scopes_are_separate(repo, customer):
    repo.create_memory(Memory(customer_id=customer.id, content="Moved to Texas"))
    repo.create_memory(Memory(content="Always request prior-year carryovers"))

    assert [m.content for m in repo.list_memories(customer.id)] == ["Moved to Texas"]
    assert [m.content for m in repo.list_memories(None)] == ["Always request prior-year carryovers"]


def test_firm_notes_overwrite(repo):
    repo.save_firm_notes("first")
    repo.save_firm_notes("second")
    assert repo.get_firm_settings().notes == "second"
