"""Optimistic chat transcript.

The accountant's message is shown immediately under a client token. The
server's ``accountant_message`` event replaces that placeholder in place,
streamed chunks build a draft AI reply, and ``complete`` swaps the draft for
the persisted message. Nothing is ever shown twice: entries are keyed by
client token while pending and by message id once persisted.
"""

from dataclasses import dataclass
from uuid import uuid4

from docintake.core.schemas_intake import ChatMessage, Sender
from docintake.services.chat_coordinator import (
    AccountantMessageEvent,
    ChatEvent,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    MemoriesEvent,
)


@dataclass
class TranscriptEntry:
    sender: Sender
    content: str
    message_id: str | None = None
    client_token: str | None = None
    pending: bool = False
    failed: bool = False


class OptimisticTranscript:
    """What the chat panel renders, kept consistent with server events."""

    def __init__(self, history: list[ChatMessage] | None = None):
        self.entries: list[TranscriptEntry] = []
        self.pending_memories = []
        self._draft: TranscriptEntry | None = None
        if history:
            self.load(history)

    @staticmethod
    def _from_message(message: ChatMessage) -> TranscriptEntry:
        return TranscriptEntry(
            sender=message.sender,
            content=message.content,
            message_id=message.id,
            client_token=message.client_token,
        )

    def load(self, history: list[ChatMessage]) -> None:
        """Replace persisted entries with server truth, keeping unsent placeholders."""
        known_tokens = {m.client_token for m in history if m.client_token}
        unsent = [e for e in self.entries if e.pending and e.client_token not in known_tokens]
        self.entries = [self._from_message(m) for m in history] + unsent
        self._draft = None

    def send(self, content: str, client_token: str | None = None) -> str:
        """Show a placeholder for an outgoing message and return its token.

        Re-sending a token already on screen (a retry) reuses its entry.
        """
        token = client_token or str(uuid4())
        index = self._index(client_token=token)
        if index is not None:
            self.entries[index].failed = False
            return token
        self.entries.append(
            TranscriptEntry(sender=Sender.ACCOUNTANT, content=content, client_token=token, pending=True)
        )
        return token

    def _index(self, message_id: str | None = None, client_token: str | None = None) -> int | None:
        for i, entry in enumerate(self.entries):
            if message_id and entry.message_id == message_id:
                return i
            if client_token and entry.client_token == client_token:
                return i
        return None

    def _place(self, message: ChatMessage, client_token: str | None = None) -> None:
        entry = self._from_message(message)
        index = self._index(message_id=message.id, client_token=client_token)
        if index is None:
            self.entries.append(entry)
            return
        self.entries[index] = entry
        # Drop any later copy of the same message
        self.entries[index + 1 :] = [
            e
            for e in self.entries[index + 1 :]
            if e.message_id != message.id and not (client_token and e.client_token == client_token)
        ]

    def apply(self, event: ChatEvent) -> None:
        if isinstance(event, AccountantMessageEvent):
            self._place(event.message, event.client_token or event.message.client_token)
        elif isinstance(event, MemoriesEvent):
            self.pending_memories = list(event.memories)
        elif isinstance(event, ChunkEvent):
            if self._draft is None:
                self._draft = TranscriptEntry(sender=Sender.AI, content="", pending=True)
                self.entries.append(self._draft)
            self._draft.content += event.content
        elif isinstance(event, CompleteEvent):
            self._drop_draft()
            self._place(event.message)
            self.pending_memories = list(event.memories)
        elif isinstance(event, ErrorEvent):
            self._drop_draft()
            for entry in self.entries:
                if entry.pending:
                    entry.failed = True

    def _drop_draft(self) -> None:
        if self._draft is not None and self._draft in self.entries:
            self.entries.remove(self._draft)
        self._draft = None

    @property
    def contents(self) -> list[str]:
        return [entry.content for entry in self.entries]
