from typing import Callable, Optional
import time

import structlog

from chat_orchestrator.domain.action.action_executor import ActionExecutor
from chat_orchestrator.domain.action.action_registry import ActionRegistry
from chat_orchestrator.domain.action.action_validator import ActionValidator
from chat_orchestrator.domain.collaborators import (
    CommandExecutor, DefaultSystemContextBuilder, EmptyScopeDirectory, LoggingUsageLedger,
    ModelClient, ScopeDirectory, SystemContextBuilder, UsageLedger
)
from chat_orchestrator.domain.context.conversation_builder import ConversationBuilder
from chat_orchestrator.domain.context.memory.conversation_memory import (
    ConversationMemory, ConversationSummarizer
)
from chat_orchestrator.domain.context.memory.conversation_repository import ConversationRepository
from chat_orchestrator.domain.context.memory.conversation_store import ConversationStore
from chat_orchestrator.domain.orchestration.core.chat_orchestrator import ChatOrchestrator
from chat_orchestrator.domain.orchestration.core.requery_controller import ReQueryController
from chat_orchestrator.infrastructure.config.settings import ChatSettings
from chat_orchestrator.infrastructure.persistence import create_repository

logger = structlog.get_logger(__name__)


def build_orchestrator(
    settings: ChatSettings,
    model: ModelClient,
    command_executor: Optional[CommandExecutor] = None,
    scope_directory: Optional[ScopeDirectory] = None,
    usage_ledger: Optional[UsageLedger] = None,
    context_builder: Optional[SystemContextBuilder] = None,
    repository: Optional[ConversationRepository] = None,
    registry: Optional[ActionRegistry] = None,
    clock: Callable[[], float] = time.time
) -> ChatOrchestrator:
    """Wire one orchestrator; ``repository`` defaults to the configured backend"""

    if repository is None:
        repository = create_repository(settings)

    store = ConversationStore(
        repository=repository,
        max_history_length=settings.max_history_length,
        timeout_seconds=settings.conversation_timeout_seconds,
        max_conversations=settings.max_conversations,
        sweep_interval_seconds=settings.sweep_interval_seconds,
        clock=clock
    )
    memory = ConversationMemory(
        store,
        enabled=settings.summary_enabled,
        recent_message_count=settings.summary_recent_messages,
        summarization_threshold=settings.summary_threshold,
        summarizer=ConversationSummarizer(max_chars=settings.summary_chars)
    )
    context_builder = context_builder or DefaultSystemContextBuilder(settings.system_prompt)
    usage_ledger = usage_ledger or LoggingUsageLedger()
    validator = ActionValidator(registry)

    requery = ReQueryController(
        model=model,
        store=store,
        context_builder=context_builder,
        usage_ledger=usage_ledger,
        registry=validator.registry,
        follow_up_timeout_seconds=settings.follow_up_timeout_seconds,
        temperature=settings.temperature,
        follow_up_max_tokens=settings.follow_up_max_tokens,
        follow_up_detail_max_tokens=settings.follow_up_detail_max_tokens
    )

    logger.info(
        "Chat orchestrator configured",
        storage_backend=settings.storage_backend if repository else "memory",
        max_history_length=settings.max_history_length,
        summary_enabled=settings.summary_enabled
    )
    return ChatOrchestrator(
        model=model,
        store=store,
        memory=memory,
        builder=ConversationBuilder(store),
        executor=ActionExecutor(command_executor=command_executor, validator=validator),
        requery=requery,
        context_builder=context_builder,
        scope_directory=scope_directory or EmptyScopeDirectory(),
        usage_ledger=usage_ledger,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        detail_max_tokens=settings.detail_max_tokens,
        max_response_length=settings.max_response_length,
        default_locale=settings.default_locale
    )
