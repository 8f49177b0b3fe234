"""Application wiring - builds every component and manages their lifecycle."""

from __future__ import annotations

from datetime import timedelta

from billing_copilot.ai.client import ModelClient, create_model_client
from billing_copilot.ai.events import EventSink, TurnOutcome
from billing_copilot.ai.handler import TurnOrchestrator, TurnRequest
from billing_copilot.ai.scope import KeywordScopeEvaluator
from billing_copilot.ai.tools.registry import ToolRegistry
from billing_copilot.config import AppConfig
from billing_copilot.core.session import ConversationLocks
from billing_copilot.log import get_logger
from billing_copilot.services.crm import CrmService
from billing_copilot.storage.audit_repo import AuditRepository
from billing_copilot.storage.conversation_repo import ConversationRepository
from billing_copilot.storage.database import Database
from billing_copilot.storage.pending_repo import PendingToolCallRepository
from billing_copilot.storage.usage_repo import UsageRepository

logger = get_logger(__name__)


class CopilotApp:
    """Top-level application object."""

    def __init__(self, config: AppConfig, model_client: ModelClient | None = None):
        self.config = config
        assistant = config.assistant
        self.db = Database(config.storage.db_path)
        self.conversation_repo = ConversationRepository(self.db)
        self.usage_repo = UsageRepository(self.db, monthly_limit=assistant.monthly_message_limit)
        self.pending_repo = PendingToolCallRepository(
            self.db, ttl=timedelta(minutes=assistant.pending_ttl_minutes)
        )
        self.audit_repo = AuditRepository(self.db)
        self.crm = CrmService(self.db)
        self.tool_registry = ToolRegistry()
        self.locks = ConversationLocks()
        self._model_client = model_client
        self._orchestrator: TurnOrchestrator | None = None

    @property
    def orchestrator(self) -> TurnOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("Application not started. Call start() first.")
        return self._orchestrator

    async def start(self) -> None:
        """Initialize storage, tools and the model client."""
        # 1. Database
        await self.db.initialize()
        purged = await self.pending_repo.purge_expired()
        if purged:
            logger.info("expired_confirmations_purged", count=purged)

        # 2. Tools
        self.tool_registry.discover_and_register(self.crm, self.config.assistant.currency_rates)

        # 3. Model client
        if self._model_client is None:
            self._model_client = create_model_client(self.config)

        self._orchestrator = TurnOrchestrator(
            conversations=self.conversation_repo,
            usage=self.usage_repo,
            pending=self.pending_repo,
            audit=self.audit_repo,
            registry=self.tool_registry,
            model_client=self._model_client,
            scope=KeywordScopeEvaluator(),
            settings=self.config.assistant,
            locks=self.locks,
        )
        logger.info(
            "billing_copilot_started",
            provider=self.config.assistant.provider.value,
            tool_count=len(self.tool_registry),
        )

    async def run_turn(self, request: TurnRequest, emit: EventSink) -> TurnOutcome:
        return await self.orchestrator.run_turn(request, emit)

    async def stop(self) -> None:
        """Release the model client and the database connection."""
        if self._model_client is not None:
            try:
                await self._model_client.close()
            except Exception as e:
                logger.error("model_client_close_error", error=str(e))
        await self.db.close()
        logger.info("billing_copilot_stopped")
