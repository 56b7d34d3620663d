from typing import Optional

import structlog

from chat_orchestrator.domain.context.memory.conversation_repository import ConversationRepository
from chat_orchestrator.infrastructure.config.settings import ChatSettings
from chat_orchestrator.infrastructure.persistence.document_store import build_document_store
from chat_orchestrator.infrastructure.persistence.file_ledger import FileConversationRepository, FileLedger

logger = structlog.get_logger(__name__)


def create_repository(settings: ChatSettings) -> Optional[ConversationRepository]:
    """Durable tier for the configured backend; ``None`` keeps history in memory only"""

    if not settings.long_term_memory or settings.storage_backend == "memory":
        logger.info("Long-term memory disabled, using in-memory storage only")
        return None
    if settings.storage_backend == "file":
        logger.info("Using file ledger for conversations", path=settings.file_storage_path)
        return FileConversationRepository(FileLedger(settings.file_storage_path))
    logger.info("Using document store for conversations", namespace=settings.redis_namespace)
    return build_document_store(settings.redis_url, namespace=settings.redis_namespace)
