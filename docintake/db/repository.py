"""Repository interface and the in-memory backend.

The repository is the only component that mutates entities. Reads return
copies, so callers change state only through repository methods.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Protocol

from docintake.core.schemas_intake import (
    ChatMessage,
    Customer,
    CustomerDetail,
    Document,
    DocumentStatus,
    FirmSettings,
    Intake,
    IntakeStatus,
    Memory,
)

# Fields a document edit may change; status and file fields go through complete_document
EDITABLE_DOCUMENT_FIELDS = {"name", "document_type", "year", "entity", "provenance"}


class Repository(Protocol):
    """Key-addressed entity store, scoped by owning parent id."""

    # Customers
    def create_customer(self, name: str, email: str, notes: str = "") -> Customer: ...
    def get_customer(self, customer_id: str) -> Customer | None: ...
    def list_customers(self) -> list[Customer]: ...
    def update_customer_notes(self, customer_id: str, notes: str) -> Customer | None: ...
    def delete_customer(self, customer_id: str) -> bool: ...

    # Intakes
    def create_intake(self, customer_id: str, tax_year: str, notes: str | None = None) -> Intake: ...
    def get_intake(self, intake_id: str) -> Intake | None: ...
    def list_intakes(self, customer_id: str) -> list[Intake]: ...
    def update_intake_status(self, intake_id: str, status: IntakeStatus) -> Intake | None: ...
    def delete_intake(self, intake_id: str) -> bool: ...

    # Documents
    def create_document(self, document: Document) -> Document: ...
    def get_document(self, document_id: str) -> Document | None: ...
    def list_documents(self, intake_id: str) -> list[Document]: ...
    def update_document(self, document_id: str, fields: dict[str, Any]) -> Document | None: ...
    def complete_document(self, document_id: str, file_ref: str, file_name: str) -> Document | None: ...
    def delete_document(self, document_id: str) -> bool: ...
    def find_document_by_file_ref(self, intake_id: str, file_ref: str) -> Document | None: ...

    # Chat messages
    def create_message(self, message: ChatMessage) -> ChatMessage: ...
    def list_messages(self, intake_id: str) -> list[ChatMessage]: ...
    def find_message_by_token(self, intake_id: str, client_token: str) -> ChatMessage | None: ...
    def find_reply(self, intake_id: str, message_id: str) -> ChatMessage | None: ...

    # Customer details
    def upsert_detail(self, intake_id: str, category: str, label: str, value: str | None) -> CustomerDetail: ...
    def list_details(self, intake_id: str) -> list[CustomerDetail]: ...

    # Memories and notes
    def create_memory(self, memory: Memory) -> Memory: ...
    def list_memories(self, customer_id: str | None) -> list[Memory]: ...
    def get_firm_settings(self) -> FirmSettings: ...
    def save_firm_notes(self, notes: str) -> FirmSettings: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _by_creation(items):
    # Stable: equal timestamps keep insertion order
    return sorted(items, key=lambda item: item.created_at)


class InMemoryRepository:
    """Thread-safe in-memory repository."""

    def __init__(self):
        self._lock = threading.RLock()
        self.reset()

    def reset(self):
        """Reset all stores to initial state."""
        with self._lock:
            self.customers: dict[str, Customer] = {}
            self.intakes: dict[str, Intake] = {}
            self.documents: dict[str, Document] = {}
            self.messages: dict[str, ChatMessage] = {}
            self.details: dict[str, CustomerDetail] = {}
            self.memories: dict[str, Memory] = {}
            self.firm_settings = FirmSettings()

    # Customer operations
    def create_customer(self, name: str, email: str, notes: str = "") -> Customer:
        customer = Customer(name=name, email=email, notes=notes)
        with self._lock:
            self.customers[customer.id] = customer
        return customer.model_copy()

    def get_customer(self, customer_id: str) -> Customer | None:
        with self._lock:
            customer = self.customers.get(customer_id)
            return customer.model_copy() if customer else None

    def list_customers(self) -> list[Customer]:
        with self._lock:
            return [c.model_copy() for c in sorted(self.customers.values(), key=lambda c: c.created_at, reverse=True)]

    def update_customer_notes(self, customer_id: str, notes: str) -> Customer | None:
        with self._lock:
            customer = self.customers.get(customer_id)
            if customer is None:
                return None
            updated = customer.model_copy(update={"notes": notes})
            self.customers[customer_id] = updated
            return updated.model_copy()

    def delete_customer(self, customer_id: str) -> bool:
        with self._lock:
            if self.customers.pop(customer_id, None) is None:
                return False
            for intake_id in [i.id for i in self.intakes.values() if i.customer_id == customer_id]:
                self.delete_intake(intake_id)
            self.memories = {k: m for k, m in self.memories.items() if m.customer_id != customer_id}
            return True

    # Intake operations
    def create_intake(self, customer_id: str, tax_year: str, notes: str | None = None) -> Intake:
        intake = Intake(customer_id=customer_id, tax_year=tax_year, notes=notes)
        with self._lock:
            self.intakes[intake.id] = intake
        return intake.model_copy()

    def get_intake(self, intake_id: str) -> Intake | None:
        with self._lock:
            intake = self.intakes.get(intake_id)
            return intake.model_copy() if intake else None

    def list_intakes(self, customer_id: str) -> list[Intake]:
        with self._lock:
            return [i.model_copy() for i in _by_creation(self.intakes.values()) if i.customer_id == customer_id]

    def update_intake_status(self, intake_id: str, status: IntakeStatus) -> Intake | None:
        with self._lock:
            intake = self.intakes.get(intake_id)
            if intake is None:
                return None
            updated = intake.model_copy(update={"status": status})
            self.intakes[intake_id] = updated
            return updated.model_copy()

    def delete_intake(self, intake_id: str) -> bool:
        with self._lock:
            if self.intakes.pop(intake_id, None) is None:
                return False
            self.documents = {k: d for k, d in self.documents.items() if d.intake_id != intake_id}
            self.messages = {k: m for k, m in self.messages.items() if m.intake_id != intake_id}
            self.details = {k: d for k, d in self.details.items() if d.intake_id != intake_id}
            return True

    # Document operations
    def create_document(self, document: Document) -> Document:
        with self._lock:
            self.documents[document.id] = document.model_copy()
        return document.model_copy()

    def get_document(self, document_id: str) -> Document | None:
        with self._lock:
            document = self.documents.get(document_id)
            return document.model_copy() if document else None

    def list_documents(self, intake_id: str) -> list[Document]:
        with self._lock:
            return [d.model_copy() for d in _by_creation(self.documents.values()) if d.intake_id == intake_id]

    def update_document(self, document_id: str, fields: dict[str, Any]) -> Document | None:
        changes = {k: v for k, v in fields.items() if k in EDITABLE_DOCUMENT_FIELDS}
        with self._lock:
            document = self.documents.get(document_id)
            if document is None:
                return None
            updated = Document.model_validate({**document.model_dump(), **changes})
            self.documents[document_id] = updated
            return updated.model_copy()

    def complete_document(self, document_id: str, file_ref: str, file_name: str) -> Document | None:
        """Mark a document Completed. Completing twice keeps the first file."""
        with self._lock:
            document = self.documents.get(document_id)
            if document is None:
                return None
            if document.status == DocumentStatus.COMPLETED:
                return document.model_copy()
            updated = document.model_copy(
                update={
                    "status": DocumentStatus.COMPLETED,
                    "file_ref": file_ref,
                    "file_name": file_name,
                    "completed_at": _utcnow(),
                }
            )
            self.documents[document_id] = updated
            return updated.model_copy()

    def delete_document(self, document_id: str) -> bool:
        with self._lock:
            return self.documents.pop(document_id, None) is not None

    def find_document_by_file_ref(self, intake_id: str, file_ref: str) -> Document | None:
        with self._lock:
            for document in _by_creation(self.documents.values()):
                if document.intake_id == intake_id and document.file_ref == file_ref:
                    return document.model_copy()
        return None

    # Chat message operations
    def create_message(self, message: ChatMessage) -> ChatMessage:
        with self._lock:
            self.messages[message.id] = message.model_copy()
        return message.model_copy()

    def list_messages(self, intake_id: str) -> list[ChatMessage]:
        with self._lock:
            return [m.model_copy() for m in _by_creation(self.messages.values()) if m.intake_id == intake_id]

    def find_message_by_token(self, intake_id: str, client_token: str) -> ChatMessage | None:
        with self._lock:
            for message in self.messages.values():
                if message.intake_id == intake_id and message.client_token == client_token:
                    return message.model_copy()
        return None

    def find_reply(self, intake_id: str, message_id: str) -> ChatMessage | None:
        with self._lock:
            for message in _by_creation(self.messages.values()):
                if message.intake_id == intake_id and message.reply_to == message_id:
                    return message.model_copy()
        return None

    # Customer detail operations
    def upsert_detail(self, intake_id: str, category: str, label: str, value: str | None) -> CustomerDetail:
        """Upsert with unique constraint on (intake_id, category, label)."""
        with self._lock:
            for key, existing in self.details.items():
                if existing.intake_id == intake_id and existing.category == category and existing.label == label:
                    updated = existing.model_copy(update={"value": value or None, "updated_at": _utcnow()})
                    self.details[key] = updated
                    return updated.model_copy()

            detail = CustomerDetail(intake_id=intake_id, category=category, label=label, value=value or None)
            self.details[detail.id] = detail
            return detail.model_copy()

    def list_details(self, intake_id: str) -> list[CustomerDetail]:
        with self._lock:
            return [d.model_copy() for d in _by_creation(self.details.values()) if d.intake_id == intake_id]

    # Memory and notes operations
    def create_memory(self, memory: Memory) -> Memory:
        with self._lock:
            self.memories[memory.id] = memory.model_copy()
        return memory.model_copy()

    def list_memories(self, customer_id: str | None) -> list[Memory]:
        with self._lock:
            return [m.model_copy() for m in _by_creation(self.memories.values()) if m.customer_id == customer_id]

    def get_firm_settings(self) -> FirmSettings:
        with self._lock:
            return self.firm_settings.model_copy()

    def save_firm_notes(self, notes: str) -> FirmSettings:
        with self._lock:
            self.firm_settings = FirmSettings(notes=notes, updated_at=_utcnow())
            return self.firm_settings.model_copy()
