from abc import ABC, abstractmethod
from typing import List, Optional

from chat_orchestrator.domain.models.conversation import (
    ConversationIdentity, ConversationRecord, Message
)


class ConversationRepository(ABC):
    """Durable tier behind the conversation store.

    Implementations raise ``PersistenceError`` on driver failures and
    return ``None`` for missing records.
    """

    @abstractmethod
    async def get_by_user(self, identity: ConversationIdentity) -> Optional[ConversationRecord]:
        pass

    @abstractmethod
    async def save(
        self,
        identity: ConversationIdentity,
        messages: List[Message],
        last_activity: float
    ) -> None:
        pass

    @abstractmethod
    async def delete(self, identity: ConversationIdentity) -> bool:
        pass

    async def list_recent(self, since: float, limit: int = 100) -> List[ConversationRecord]:
        """Records active since ``since``; drivers that cannot list return nothing"""
        return []

    async def close(self) -> None:
        """Release driver resources on shutdown"""
        pass
