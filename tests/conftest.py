"""Pytest configuration and fixtures."""

import os

import pytest

from docintake.core.config import Settings
from docintake.db.repository import InMemoryRepository
from docintake.services.context import IntakeContext
from docintake.core.progress import ProgressBroadcaster
from docintake.services.file_store import FileStore
from tests.fakes.fake_adapter import FakeAnalysisAdapter


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["INTAKE_ENV"] = "test"
    os.environ["REPOSITORY_BACKEND"] = "memory"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        INTAKE_ENV="test",
        ANTHROPIC_API_KEY="test-anthropic-key",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        REPOSITORY_BACKEND="memory",
    )


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def adapter() -> FakeAnalysisAdapter:
    return FakeAnalysisAdapter()


@pytest.fixture
def ctx(settings, repo, adapter) -> IntakeContext:
    return IntakeContext(
        settings=settings,
        repository=repo,
        adapter=adapter,
        file_store=FileStore(settings.UPLOAD_DIR),
        broadcaster=ProgressBroadcaster(settings.PROGRESS_QUEUE_SIZE),
    )


@pytest.fixture
def customer(repo):
    return repo.create_customer("Jane Doe", "jane@example.com")


@pytest.fixture
def intake(repo, customer):
    return repo.create_intake(customer.id, "2024")
