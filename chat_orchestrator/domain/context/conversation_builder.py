from typing import Callable, List, Optional
from datetime import datetime, timezone
import re

import structlog

from chat_orchestrator.domain.context.memory.conversation_store import ConversationStore
from chat_orchestrator.domain.models.conversation import ConversationIdentity, Message, Role

logger = structlog.get_logger(__name__)

ACTION_REMINDER = (
    "[CRITICAL: The user is asking you to PERFORM AN ACTION (execute a command, play a game, "
    "fetch data, etc.). You MUST use JSON format with actions array: "
    '{"message": "...", "actions": [...]}. DO NOT respond in plain text - you need to execute an action!]'
)
PLAIN_TEXT_REMINDER = (
    "[CRITICAL REMINDER: If you need to execute actions (commands, data fetches, etc.), use JSON format: "
    '{"message": "...", "actions": [...]}. If you have NO actions (empty actions array), you MUST respond '
    "in plain text/markdown format - NO JSON, NO curly braces, NO code blocks. Just write your response directly.]"
)

ACTION_VERBS = [
    "play", "execute", "run", "show", "get", "fetch", "create", "add", "remove",
    "delete", "kick", "ban", "timeout", "warn", "send", "pin", "unpin", "modify",
    "change", "update", "set", "give", "take", "grant", "revoke", "challenge",
    "start", "begin", "do", "make", "perform", "carry out",
]
ACTION_KEYWORDS = [
    "command", "action", "again", "retry", "another", "next", "serverinfo",
    "userinfo", "avatar", "poll", "leaderboard", "members", "roles", "channels",
]
_IMPERATIVE_PATTERNS = [
    re.compile(r"^(please\s+)?(can you|could you|would you|will you)\s+", re.IGNORECASE),
    re.compile(r"^(please\s+)?(do|make|show|get|fetch|execute|run|play)\s+", re.IGNORECASE),
    re.compile(r"^(let's|let us)\s+", re.IGNORECASE),
    re.compile(r"^(i want|i need|i'd like)\s+", re.IGNORECASE),
]
_VERB_WITH_OBJECT = [
    re.compile(rf"\b{re.escape(verb)}\b\s*(?!\?)\S") for verb in ACTION_VERBS
]
DETAIL_MARKERS = [
    "explain", "tell me more", "in detail", "elaborate", "describe", "how does", "how do",
]


def detect_action_request(text: str) -> bool:
    """Heuristic: does the user want something done rather than answered?"""

    if not text or not isinstance(text, str):
        return False
    lowered = text.lower().strip()

    if any(
        lowered.startswith(verb) or lowered.startswith(f"let's {verb}") or lowered.startswith(f"let us {verb}")
        for verb in ACTION_VERBS
    ):
        return True
    if any(pattern.search(lowered) for pattern in _VERB_WITH_OBJECT):
        return True
    if any(pattern.search(text.strip()) for pattern in _IMPERATIVE_PATTERNS):
        return True
    return any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in ACTION_KEYWORDS)


def determine_wants_detail(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in DETAIL_MARKERS)


def format_date_preamble(now: datetime, locale: str) -> str:
    """``[Current Date and Time for User: ...]`` in a locale-appropriate order"""

    zone = now.strftime("%Z") or "UTC"
    if locale.lower().startswith("en-us"):
        date = now.strftime("%A, %B %d, %Y")
        clock = now.strftime("%I:%M:%S %p")
    else:
        date = now.strftime("%A, %d %B %Y")
        clock = now.strftime("%H:%M:%S")
    return f"[Current Date and Time for User: {date} at {clock} {zone}]"


class ConversationBuilder:
    """Assembles the ordered prompt for one model call"""

    def __init__(
        self,
        store: ConversationStore,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def build_prompt(
        self,
        identity: ConversationIdentity,
        user_text: str,
        system_context: str,
        history: List[Message],
        locale: str = "en-US",
        needs_action_hint: bool = False
    ) -> List[Message]:
        """System context, prior turns, then the current user turn with its reminder.

        ``history`` may start with a cached summary followed by the live system
        message; the summary is kept and the live system message is refreshed.
        The refreshed system message is written to the store's memory tier only.
        """

        system = Message(role=Role.SYSTEM, content=system_context)
        messages: List[Message] = []

        head = history[0] if history else None
        if head is not None and head.is_summary:
            messages.append(head)
            await self.store.append(identity, system)
        elif head is not None and head.is_system:
            if head.content != system_context:
                await self.store.append(identity, system)
        else:
            await self.store.append(identity, system)
        messages.append(system)

        messages.extend(Message(role=m.role, content=m.content) for m in history if not m.is_system)

        reminder = ACTION_REMINDER if needs_action_hint else PLAIN_TEXT_REMINDER
        preamble = format_date_preamble(self._now(), locale or "en-US")
        messages.append(Message(role=Role.USER, content=f"{preamble}\n\n{user_text}\n\n{reminder}"))

        logger.debug(
            "Built prompt",
            conversation=str(identity),
            messages=len(messages),
            chars=sum(len(m.content) for m in messages)
        )
        return messages
