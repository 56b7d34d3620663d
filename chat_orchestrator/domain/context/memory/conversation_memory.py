from typing import Dict, List, Optional
import asyncio
import re

import structlog

from chat_orchestrator.domain.context.memory.conversation_store import ConversationStore
from chat_orchestrator.domain.models.conversation import (
    ConversationIdentity, Message, Role, SUMMARY_PREFIX
)

logger = structlog.get_logger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s+")


class ConversationSummarizer:
    """Extractive, model-free compaction of older messages"""

    def __init__(self, max_chars: int = 2000, excerpt_chars: int = 160):
        self.max_chars = max_chars
        self.excerpt_chars = excerpt_chars

    def summarize(self, messages: List[Message]) -> str:
        """Keep the lead sentence of every message, newest first when the budget runs out"""

        lines: List[str] = []
        used = 0
        for message in reversed([m for m in messages if not m.is_system]):
            line = f"{self._speaker(message)}: {self._excerpt(message.content)}"
            if used + len(line) + 1 > self.max_chars:
                break
            lines.append(line)
            used += len(line) + 1
        lines.reverse()
        return "\n".join(lines)

    @staticmethod
    def _speaker(message: Message) -> str:
        return "User" if message.role == Role.USER else "Assistant"

    def _excerpt(self, content: str) -> str:
        text = _WHITESPACE.sub(" ", content).strip()
        first = _SENTENCE_END.split(text, maxsplit=1)[0]
        if len(first) > self.excerpt_chars:
            first = first[:self.excerpt_chars - 3].rstrip() + "..."
        return first


class ConversationMemory:
    """History view that folds older messages into a cached summary.

    When enabled, the view is ``[summary, live system message?, recent...]``.
    Summaries are kept per identity in memory and dropped whenever the
    conversation leaves the store.
    """

    def __init__(
        self,
        store: ConversationStore,
        enabled: bool = False,
        recent_message_count: int = 5,
        summarization_threshold: int = 10,
        summarizer: Optional[ConversationSummarizer] = None
    ):
        self.store = store
        self.enabled = enabled
        self.recent_message_count = recent_message_count
        self.summarization_threshold = summarization_threshold
        self.summarizer = summarizer or ConversationSummarizer()
        self._summaries: Dict[ConversationIdentity, str] = {}
        self._lock = asyncio.Lock()
        store.add_eviction_listener(self._forget)

    async def get_context(self, identity: ConversationIdentity) -> List[Message]:
        """Conversation history, with older messages replaced by a summary when enabled"""

        history = await self.store.get_history(identity)
        if not self.enabled:
            return history

        system = history[0] if history and history[0].is_system else None
        others = [m for m in history if not m.is_system]
        if len(others) <= self.recent_message_count:
            return history

        recent = others[-self.recent_message_count:]
        old = others[:-self.recent_message_count]

        async with self._lock:
            summary = self._summaries.get(identity)
            if summary is None and len(old) >= self.summarization_threshold:
                summary = self.summarizer.summarize(old)
                if summary:
                    self._summaries[identity] = summary
                    logger.debug("Created conversation summary", conversation=str(identity), messages=len(old))

        if not summary:
            return history

        context = [Message(role=Role.SYSTEM, content=f"{SUMMARY_PREFIX} {summary}")]
        if system is not None:
            context.append(system)
        context.extend(recent)
        return context

    async def get_summary(self, identity: ConversationIdentity) -> Optional[str]:
        async with self._lock:
            return self._summaries.get(identity)

    async def clear_summary(self, identity: ConversationIdentity) -> None:
        async with self._lock:
            self._summaries.pop(identity, None)

    def _forget(self, identity: ConversationIdentity) -> None:
        self._summaries.pop(identity, None)
