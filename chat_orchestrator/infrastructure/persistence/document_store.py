import json
import time
from typing import List, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from chat_orchestrator.domain.context.memory.conversation_repository import ConversationRepository
from chat_orchestrator.domain.errors import PersistenceError
from chat_orchestrator.domain.models.conversation import (
    ConversationIdentity, ConversationRecord, Message
)

logger = structlog.get_logger(__name__)


class DocumentStoreRepository(ConversationRepository):
    """Conversation documents stored as JSON strings in Redis.

    Keys look like ``<namespace>:<user_id>:<scope>`` where scope is the guild
    id or ``dm``. Expiry is handled by the conversation store, not by Redis.
    """

    def __init__(self, client: Redis, namespace: str = "chat"):
        self._redis = client
        self._namespace = namespace

    def _key(self, identity: ConversationIdentity) -> str:
        return f"{self._namespace}:{identity.key}"

    async def get_by_user(self, identity: ConversationIdentity) -> Optional[ConversationRecord]:
        key = self._key(identity)
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            raise PersistenceError("read", key, str(e)) from e
        if raw is None:
            return None
        try:
            return ConversationRecord.from_document(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError("decode", key, str(e)) from e

    async def save(
        self,
        identity: ConversationIdentity,
        messages: List[Message],
        last_activity: float
    ) -> None:
        key = self._key(identity)
        record = ConversationRecord(
            user_id=identity.user_id,
            scope_id=identity.scope_id,
            messages=messages,
            last_activity=last_activity,
            updated_at=time.time(),
        )
        try:
            await self._redis.set(key, json.dumps(record.to_document()))
        except RedisError as e:
            raise PersistenceError("write", key, str(e)) from e

    async def delete(self, identity: ConversationIdentity) -> bool:
        key = self._key(identity)
        try:
            return await self._redis.delete(key) > 0
        except RedisError as e:
            raise PersistenceError("delete", key, str(e)) from e

    async def list_recent(self, since: float, limit: int = 100) -> List[ConversationRecord]:
        records: List[ConversationRecord] = []
        try:
            async for key in self._redis.scan_iter(match=f"{self._namespace}:*"):
                raw = await self._redis.get(key)
                if raw is None:
                    continue
                try:
                    record = ConversationRecord.from_document(json.loads(raw))
                except (ValueError, KeyError, TypeError):
                    logger.warning("Skipping undecodable conversation document", key=key)
                    continue
                if record.last_activity >= since:
                    records.append(record)
        except RedisError as e:
            raise PersistenceError("scan", f"{self._namespace}:*", str(e)) from e
        records.sort(key=lambda r: r.last_activity, reverse=True)
        return records[:limit]

    async def close(self) -> None:
        await self._redis.aclose()


def build_document_store(redis_url: str, namespace: str = "chat") -> DocumentStoreRepository:
    """Create a repository with a client from ``redis_url``"""

    if not redis_url:
        raise ValueError("redis_url is required for the document-store backend")
    client = Redis.from_url(redis_url, decode_responses=True)
    return DocumentStoreRepository(client, namespace=namespace)
