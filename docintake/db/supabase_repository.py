"""Supabase-backed repository.

Table per entity (see migrations/0001_intake_schema.sql). Cascading deletes
are enforced by foreign keys; the (intake_id, category, label) uniqueness of
customer details is enforced by a unique index used as the upsert target.
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from supabase import Client, create_client

from docintake.core.config import Settings
from docintake.core.logging import get_logger
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
from docintake.db.repository import EDITABLE_DOCUMENT_FIELDS

logger = get_logger(__name__)

FIRM_SETTINGS_ID = 1


@lru_cache(maxsize=1)
def get_supabase(url: str, key: str) -> Client:
    """
    Get Supabase client instance (cached per url/key).

    Raises:
        RuntimeError: If client initialization fails
    """
    try:
        return create_client(url, key)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e


def _row(model) -> dict[str, Any]:
    return model.model_dump(mode="json")


def _first(response) -> dict[str, Any] | None:
    return response.data[0] if response.data else None


class SupabaseRepository:
    """Repository persisted to Supabase tables."""

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseRepository":
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for the supabase backend")
        return cls(get_supabase(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY))

    def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        response = self.client.table(table).insert(row).execute()
        data = _first(response)
        if data is None:
            raise ValueError(f"No data returned from insert into {table}")
        return data

    def _get(self, table: str, entity_id: str) -> dict[str, Any] | None:
        response = self.client.table(table).select("*").eq("id", entity_id).limit(1).execute()
        return _first(response)

    def _update(self, table: str, entity_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        response = self.client.table(table).update(changes).eq("id", entity_id).execute()
        return _first(response)

    def _delete(self, table: str, entity_id: str) -> bool:
        response = self.client.table(table).delete().eq("id", entity_id).execute()
        return bool(response.data)

    def _list(self, table: str, column: str, value: str, desc: bool = False) -> list[dict[str, Any]]:
        response = (
            self.client.table(table)
            .select("*")
            .eq(column, value)
            .order("created_at", desc=desc)
            .execute()
        )
        return response.data or []

    # Customer operations
    def create_customer(self, name: str, email: str, notes: str = "") -> Customer:
        return Customer.model_validate(self._insert("customers", _row(Customer(name=name, email=email, notes=notes))))

    def get_customer(self, customer_id: str) -> Customer | None:
        row = self._get("customers", customer_id)
        return Customer.model_validate(row) if row else None

    def list_customers(self) -> list[Customer]:
        response = self.client.table("customers").select("*").order("created_at", desc=True).execute()
        return [Customer.model_validate(r) for r in response.data or []]

    def update_customer_notes(self, customer_id: str, notes: str) -> Customer | None:
        row = self._update("customers", customer_id, {"notes": notes})
        return Customer.model_validate(row) if row else None

    def delete_customer(self, customer_id: str) -> bool:
        return self._delete("customers", customer_id)

    # Intake operations
    def create_intake(self, customer_id: str, tax_year: str, notes: str | None = None) -> Intake:
        intake = Intake(customer_id=customer_id, tax_year=tax_year, notes=notes)
        return Intake.model_validate(self._insert("intakes", _row(intake)))

    def get_intake(self, intake_id: str) -> Intake | None:
        row = self._get("intakes", intake_id)
        return Intake.model_validate(row) if row else None

    def list_intakes(self, customer_id: str) -> list[Intake]:
        return [Intake.model_validate(r) for r in self._list("intakes", "customer_id", customer_id)]

    def update_intake_status(self, intake_id: str, status: IntakeStatus) -> Intake | None:
        row = self._update("intakes", intake_id, {"status": status.value})
        return Intake.model_validate(row) if row else None

    def delete_intake(self, intake_id: str) -> bool:
        return self._delete("intakes", intake_id)

    # Document operations
    def create_document(self, document: Document) -> Document:
        return Document.model_validate(self._insert("documents", _row(document)))

    def get_document(self, document_id: str) -> Document | None:
        row = self._get("documents", document_id)
        return Document.model_validate(row) if row else None

    def list_documents(self, intake_id: str) -> list[Document]:
        return [Document.model_validate(r) for r in self._list("documents", "intake_id", intake_id)]

    def update_document(self, document_id: str, fields: dict[str, Any]) -> Document | None:
        current = self.get_document(document_id)
        if current is None:
            return None
        changes = {k: v for k, v in fields.items() if k in EDITABLE_DOCUMENT_FIELDS}
        merged = Document.model_validate({**current.model_dump(), **changes})
        row = self._update("documents", document_id, {k: v for k, v in _row(merged).items() if k in changes})
        return Document.model_validate(row) if row else merged

    def complete_document(self, document_id: str, file_ref: str, file_name: str) -> Document | None:
        """Mark a document Completed; the status filter keeps Completed rows untouched."""
        response = (
            self.client.table("documents")
            .update(
                {
                    "status": DocumentStatus.COMPLETED.value,
                    "file_ref": file_ref,
                    "file_name": file_name,
                    "completed_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("id", document_id)
            .eq("status", DocumentStatus.REQUESTED.value)
            .execute()
        )
        row = _first(response)
        if row:
            return Document.model_validate(row)
        return self.get_document(document_id)

    def delete_document(self, document_id: str) -> bool:
        return self._delete("documents", document_id)

    def find_document_by_file_ref(self, intake_id: str, file_ref: str) -> Document | None:
        response = (
            self.client.table("documents")
            .select("*")
            .eq("intake_id", intake_id)
            .eq("file_ref", file_ref)
            .order("created_at")
            .limit(1)
            .execute()
        )
        row = _first(response)
        return Document.model_validate(row) if row else None

    # Chat message operations
    def create_message(self, message: ChatMessage) -> ChatMessage:
        return ChatMessage.model_validate(self._insert("chat_messages", _row(message)))

    def list_messages(self, intake_id: str) -> list[ChatMessage]:
        return [ChatMessage.model_validate(r) for r in self._list("chat_messages", "intake_id", intake_id)]

    def find_message_by_token(self, intake_id: str, client_token: str) -> ChatMessage | None:
        response = (
            self.client.table("chat_messages")
            .select("*")
            .eq("intake_id", intake_id)
            .eq("client_token", client_token)
            .limit(1)
            .execute()
        )
        row = _first(response)
        return ChatMessage.model_validate(row) if row else None

    def find_reply(self, intake_id: str, message_id: str) -> ChatMessage | None:
        response = (
            self.client.table("chat_messages")
            .select("*")
            .eq("intake_id", intake_id)
            .eq("reply_to", message_id)
            .order("created_at")
            .limit(1)
            .execute()
        )
        row = _first(response)
        return ChatMessage.model_validate(row) if row else None

    # Customer detail operations
    def upsert_detail(self, intake_id: str, category: str, label: str, value: str | None) -> CustomerDetail:
        """Upsert by unique constraint (intake_id, category, label)."""
        row = {
            "intake_id": intake_id,
            "category": category,
            "label": label,
            "value": value or None,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        response = (
            self.client.table("customer_details")
            .upsert(row, on_conflict="intake_id,category,label")
            .execute()
        )
        data = _first(response)
        if data is None:
            raise ValueError("No data returned from upsert_detail")
        return CustomerDetail.model_validate(data)

    def list_details(self, intake_id: str) -> list[CustomerDetail]:
        return [CustomerDetail.model_validate(r) for r in self._list("customer_details", "intake_id", intake_id)]

    # Memory and notes operations
    def create_memory(self, memory: Memory) -> Memory:
        return Memory.model_validate(self._insert("memories", _row(memory)))

    def list_memories(self, customer_id: str | None) -> list[Memory]:
        query = self.client.table("memories").select("*")
        if customer_id is None:
            query = query.is_("customer_id", "null")
        else:
            query = query.eq("customer_id", customer_id)
        response = query.order("created_at").execute()
        return [Memory.model_validate(r) for r in response.data or []]

    def get_firm_settings(self) -> FirmSettings:
        row = self._get("firm_settings", FIRM_SETTINGS_ID)
        return FirmSettings.model_validate(row) if row else FirmSettings()

    def save_firm_notes(self, notes: str) -> FirmSettings:
        row = {"id": FIRM_SETTINGS_ID, "notes": notes, "updated_at": datetime.now(timezone.utc).isoformat()}
        response = self.client.table("firm_settings").upsert(row, on_conflict="id").execute()
        data = _first(response)
        return FirmSettings.model_validate(data) if data else FirmSettings(notes=notes)
