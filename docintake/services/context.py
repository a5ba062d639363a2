"""Explicitly constructed service graph.

Everything stateful (repository, broadcaster, locks) is built here once and
handed to the app, so tests can build an isolated context per case.
"""

from dataclasses import dataclass, field

from docintake.chains.analysis_adapter import AnalysisAdapter, AnthropicAnalysisAdapter
from docintake.core.config import Settings, get_settings
from docintake.core.logging import get_logger
from docintake.core.progress import ProgressBroadcaster
from docintake.db.repository import InMemoryRepository, Repository
from docintake.services.chat_coordinator import ChatCoordinator
from docintake.services.document_service import DocumentService
from docintake.services.file_store import FileStore
from docintake.services.intake_status import IntakeLocks
from docintake.services.memory_service import MemoryService
from docintake.services.upload_service import UploadService

logger = get_logger(__name__)


def build_repository(settings: Settings) -> Repository:
    """
    Build the configured repository backend.

    Raises:
        ValueError: Unknown backend, or supabase without credentials
    """
    backend = settings.REPOSITORY_BACKEND.lower()
    if backend == "memory":
        return InMemoryRepository()
    if backend == "supabase":
        from docintake.db.supabase_repository import SupabaseRepository

        return SupabaseRepository.from_settings(settings)
    raise ValueError(f"Unknown REPOSITORY_BACKEND: {settings.REPOSITORY_BACKEND}")


@dataclass
class IntakeContext:
    settings: Settings
    repository: Repository
    adapter: AnalysisAdapter
    file_store: FileStore
    broadcaster: ProgressBroadcaster
    locks: IntakeLocks = field(default_factory=IntakeLocks)

    def __post_init__(self):
        self.uploads = UploadService(
            self.repository, self.adapter, self.file_store, self.broadcaster, self.settings, self.locks
        )
        self.documents = DocumentService(self.repository, self.locks)
        self.chat = ChatCoordinator(self.repository, self.adapter, self.settings, self.locks)
        self.memories = MemoryService(self.repository, self.adapter)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        repository: Repository | None = None,
        adapter: AnalysisAdapter | None = None,
    ) -> "IntakeContext":
        settings = settings or get_settings()
        if not settings.ANTHROPIC_API_KEY:
            logger.warning("ANTHROPIC_API_KEY is not set; AI analysis will report as unavailable")
        return cls(
            settings=settings,
            repository=repository or build_repository(settings),
            adapter=adapter or AnthropicAnalysisAdapter(settings),
            file_store=FileStore(settings.UPLOAD_DIR),
            broadcaster=ProgressBroadcaster(settings.PROGRESS_QUEUE_SIZE),
        )
