from typing import Callable, Dict, List, Optional, Set
import asyncio
import contextlib
import time

import structlog

from chat_orchestrator.domain.context.memory.conversation_repository import ConversationRepository
from chat_orchestrator.domain.errors import PersistenceError
from chat_orchestrator.domain.models.conversation import (
    Conversation, ConversationIdentity, Message
)
from chat_orchestrator.infrastructure.observability.logging import chat_logger, metrics

logger = structlog.get_logger(__name__)

EvictionListener = Callable[[ConversationIdentity], None]

PRELOAD_WINDOW_SECONDS = 24 * 60 * 60


class ConversationStore:
    """Two-tier conversation history: authoritative memory map plus optional durable repository.

    The memory tier holds at most ``max_conversations`` identities and evicts
    the least recently active one when a new identity is admitted at capacity.
    Entries idle for longer than ``timeout_seconds`` are dropped from both tiers,
    either on read or by the periodic sweeper.

    System messages live only in memory, always at index 0. Durable writes
    carry the non-system slice and are scheduled without being awaited; their
    failures are logged and counted. Two writes for the same identity may
    complete out of order, in which case the durable tier keeps the last one
    to land. Turns for the same identity are not serialized here.
    """

    def __init__(
        self,
        repository: Optional[ConversationRepository] = None,
        max_history_length: int = 20,
        timeout_seconds: float = 1800,
        max_conversations: int = 1000,
        sweep_interval_seconds: float = 180,
        clock: Callable[[], float] = time.time
    ):
        self.repository = repository
        self.max_history_length = max_history_length
        self.timeout_seconds = timeout_seconds
        self.max_conversations = max_conversations
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock

        self._conversations: Dict[ConversationIdentity, Conversation] = {}
        self._lock = asyncio.Lock()
        self._pending_writes: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None
        self._eviction_listeners: List[EvictionListener] = []

    @property
    def long_term_memory(self) -> bool:
        return self.repository is not None

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, identity: ConversationIdentity) -> bool:
        return identity in self._conversations

    def add_eviction_listener(self, listener: EvictionListener) -> None:
        """Register a callback fired whenever an identity leaves the memory tier"""
        self._eviction_listeners.append(listener)

    def last_activity(self, identity: ConversationIdentity) -> Optional[float]:
        conversation = self._conversations.get(identity)
        return conversation.last_activity if conversation else None

    def _is_expired(self, last_activity: float, now: float) -> bool:
        return now - last_activity > self.timeout_seconds

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_history(self, identity: ConversationIdentity) -> List[Message]:
        """Return a copy of the conversation, or an empty list if it is absent or expired"""

        now = self._clock()
        async with self._lock:
            conversation = self._conversations.get(identity)
            if conversation is not None:
                if not self._is_expired(conversation.last_activity, now):
                    return list(conversation.messages)
                self._drop(identity, reason="expired")
                expired = True
            else:
                expired = False

        if expired:
            await self._delete_durable(identity)
            return []

        if self.repository is None:
            return []

        try:
            record = await self.repository.get_by_user(identity)
        except PersistenceError as e:
            logger.warning("Failed to load conversation from durable tier", conversation=str(identity), error=str(e))
            metrics.increment_counter("persistence.failure", tags={"operation": "read"})
            return []

        if record is None:
            return []

        if self._is_expired(record.last_activity, self._clock()):
            await self._delete_durable(identity)
            return []

        messages = [m for m in record.messages if not m.is_system]
        async with self._lock:
            # A concurrent append may have created the entry while we were reading.
            existing = self._conversations.get(identity)
            if existing is not None:
                return list(existing.messages)
            self._admit(identity, Conversation(
                identity=identity,
                messages=messages,
                last_activity=record.last_activity
            ))
        chat_logger.log_history_update(str(identity), "loaded", {"messages": len(messages)})
        return list(messages)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def append(self, identity: ConversationIdentity, message: Message) -> None:
        """Append a message, trimming to the system message plus the last N others.

        A system message replaces the existing one at index 0 (or is inserted
        there) and is never written to the durable tier.
        """

        now = self._clock()
        async with self._lock:
            conversation = self._conversations.get(identity)
            if conversation is None:
                conversation = Conversation(identity=identity, messages=[], last_activity=now)
                self._admit(identity, conversation)

            conversation.last_activity = now

            if message.is_system:
                if conversation.system_message is not None:
                    conversation.messages[0] = message
                else:
                    conversation.messages.insert(0, message)
                return

            conversation.messages.append(message)
            others = conversation.non_system_messages()
            if len(others) > self.max_history_length:
                system = conversation.system_message
                recent = others[-self.max_history_length:]
                conversation.messages = [system, *recent] if system else recent

            snapshot = self._durable_snapshot(conversation)

        self._schedule_persist(identity, snapshot, now)

    async def clear(self, identity: ConversationIdentity) -> None:
        """Remove the conversation from both tiers; absence is not an error"""

        async with self._lock:
            if identity in self._conversations:
                self._drop(identity, reason="cleared")
            else:
                self._notify_evicted(identity)
        await self._delete_durable(identity)

    def _admit(self, identity: ConversationIdentity, conversation: Conversation) -> None:
        if identity not in self._conversations and len(self._conversations) >= self.max_conversations:
            self._evict_least_recent()
        self._conversations[identity] = conversation

    def _evict_least_recent(self) -> None:
        if not self._conversations:
            return
        oldest = min(self._conversations.values(), key=lambda c: c.last_activity)
        self._drop(oldest.identity, reason="capacity")

    def _drop(self, identity: ConversationIdentity, reason: str) -> None:
        self._conversations.pop(identity, None)
        chat_logger.log_history_update(str(identity), "evicted", {"reason": reason})
        self._notify_evicted(identity)

    def _notify_evicted(self, identity: ConversationIdentity) -> None:
        for listener in self._eviction_listeners:
            listener(identity)

    # ------------------------------------------------------------------
    # Durable tier
    # ------------------------------------------------------------------
    @staticmethod
    def _durable_snapshot(conversation: Conversation) -> List[Message]:
        """The only shape ever handed to the repository: no system messages"""
        return [m.model_copy() for m in conversation.messages if not m.is_system]

    def _schedule_persist(self, identity: ConversationIdentity, snapshot: List[Message], last_activity: float) -> None:
        if self.repository is None:
            return
        task = asyncio.create_task(self._persist(identity, snapshot, last_activity))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _persist(self, identity: ConversationIdentity, snapshot: List[Message], last_activity: float) -> None:
        try:
            await self.repository.save(identity, snapshot, last_activity)
        except PersistenceError as e:
            logger.warning("Failed to save conversation to durable tier", conversation=str(identity), error=str(e))
            metrics.increment_counter("persistence.failure", tags={"operation": "write"})
        except Exception:
            logger.exception("Unexpected error saving conversation", conversation=str(identity))
            metrics.increment_counter("persistence.failure", tags={"operation": "write"})

    async def _delete_durable(self, identity: ConversationIdentity) -> None:
        if self.repository is None:
            return
        try:
            await self.repository.delete(identity)
        except PersistenceError as e:
            logger.warning("Failed to delete conversation from durable tier", conversation=str(identity), error=str(e))
            metrics.increment_counter("persistence.failure", tags={"operation": "delete"})

    async def flush(self) -> None:
        """Wait for every scheduled durable write to finish"""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def close(self) -> None:
        """Stop the sweeper, drain scheduled writes and release the durable tier"""

        await self.stop_sweeper()
        await self.flush()
        if self.repository is not None:
            try:
                await self.repository.close()
            except Exception:
                logger.exception("Failed to close durable tier")

    async def preload_recent(self, limit: int = 100) -> int:
        """Warm the memory tier from durable records that are still within the TTL"""

        if self.repository is None:
            return 0
        now = self._clock()
        try:
            records = await self.repository.list_recent(now - PRELOAD_WINDOW_SECONDS, limit=limit)
        except PersistenceError as e:
            logger.warning("Failed to preload conversations", error=str(e))
            return 0

        loaded = 0
        async with self._lock:
            for record in records:
                if self._is_expired(record.last_activity, now):
                    continue
                identity = ConversationIdentity(user_id=record.user_id, scope_id=record.scope_id)
                if identity in self._conversations:
                    continue
                self._admit(identity, Conversation(
                    identity=identity,
                    messages=[m for m in record.messages if not m.is_system],
                    last_activity=record.last_activity
                ))
                loaded += 1

        if loaded:
            logger.info("Preloaded recent conversations", count=loaded)
        return loaded

    # ------------------------------------------------------------------
    # Sweeper
    # ------------------------------------------------------------------
    async def sweep_expired(self) -> int:
        """Run one sweep pass and return the number of evicted conversations"""

        now = self._clock()
        async with self._lock:
            expired = [
                identity for identity, conversation in self._conversations.items()
                if self._is_expired(conversation.last_activity, now)
            ]
            for identity in expired:
                self._drop(identity, reason="expired")

        for identity in expired:
            await self._delete_durable(identity)

        if expired:
            logger.debug("Cleaned up expired conversations", count=len(expired))
        metrics.set_gauge("conversations.active", len(self._conversations))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_expired()
            except Exception:
                logger.exception("Conversation sweep failed")

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info("Conversation sweeper started", interval_seconds=self.sweep_interval_seconds)

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    def get_stats(self) -> Dict[str, int]:
        return {
            "conversations": len(self._conversations),
            "pending_writes": len(self._pending_writes),
        }
