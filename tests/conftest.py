from datetime import timedelta
from pathlib import Path

import pytest

from billing_copilot.ai.handler import TurnOrchestrator
from billing_copilot.ai.scope import KeywordScopeEvaluator
from billing_copilot.ai.tools.registry import ToolRegistry
from billing_copilot.config import AssistantConfig
from billing_copilot.services.crm import CrmService
from billing_copilot.storage.audit_repo import AuditRepository
from billing_copilot.storage.conversation_repo import ConversationRepository
from billing_copilot.storage.database import Database
from billing_copilot.storage.pending_repo import PendingToolCallRepository
from billing_copilot.storage.usage_repo import UsageRepository
from tests.fakes import (
    FakeModelClient,
    InMemoryConversationStore,
    InMemoryPendingStore,
    InMemoryUsageStore,
    RecordingAuditSink,
)


@pytest.fixture
def conversations() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def usage() -> InMemoryUsageStore:
    return InMemoryUsageStore()


@pytest.fixture
def pending() -> InMemoryPendingStore:
    return InMemoryPendingStore()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def orchestrator_factory(conversations, usage, pending, audit):
    """Orchestrator over in-memory stores, with the given tools and scripted model."""

    def _factory(*tools, responses=(), model: FakeModelClient | None = None, **settings_overrides):
        registry = ToolRegistry()
        for tool in tools:
            registry.register(tool)
        model_client = model or FakeModelClient(list(responses))
        orchestrator = TurnOrchestrator(
            conversations=conversations,
            usage=usage,
            pending=pending,
            audit=audit,
            registry=registry,
            model_client=model_client,
            scope=KeywordScopeEvaluator(),
            settings=AssistantConfig(**settings_overrides),
        )
        return orchestrator, model_client

    return _factory


@pytest.fixture
async def db(tmp_path: Path):
    database = Database(str(tmp_path / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def crm(db) -> CrmService:
    return CrmService(db)


@pytest.fixture
def sqlite_stack(db, crm):
    """Orchestrator over the SQLite repositories and the built-in tools."""

    def _factory(responses=(), monthly_limit: int = 250):
        conversation_repo = ConversationRepository(db)
        usage_repo = UsageRepository(db, monthly_limit=monthly_limit)
        pending_repo = PendingToolCallRepository(db, ttl=timedelta(minutes=30))
        registry = ToolRegistry()
        registry.discover_and_register(crm)
        model_client = FakeModelClient(list(responses))
        orchestrator = TurnOrchestrator(
            conversations=conversation_repo,
            usage=usage_repo,
            pending=pending_repo,
            audit=AuditRepository(db),
            registry=registry,
            model_client=model_client,
            scope=KeywordScopeEvaluator(),
            settings=AssistantConfig(),
        )
        return orchestrator, model_client, conversation_repo, usage_repo

    return _factory
