"""Shared fakes and fixtures for the chat orchestrator tests.

Provides:
- a scripted model client
- a recording command executor and usage ledger
- an in-memory scope and repository
- a controllable clock
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from chat_orchestrator.application.container import build_orchestrator
from chat_orchestrator.domain.collaborators import (
    CommandExecutor, ModelClient, ScopeDataProvider, ScopeDirectory, UsageLedger
)
from chat_orchestrator.domain.context.memory.conversation_repository import ConversationRepository
from chat_orchestrator.domain.context.memory.conversation_store import ConversationStore
from chat_orchestrator.domain.errors import PersistenceError
from chat_orchestrator.domain.models.action import CommandOutcome, CommandRequest
from chat_orchestrator.domain.models.conversation import (
    ConversationIdentity, ConversationRecord, GenerationConfig, Message, ModelResult
)
from chat_orchestrator.infrastructure.config.settings import ChatSettings


class FakeClock:
    """Manually advanced epoch clock"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Delayed:
    """Scripted model reply that arrives after ``delay`` seconds"""

    def __init__(self, delay: float, text: str):
        self.delay = delay
        self.text = text


ScriptedReply = Union[str, Exception, Delayed]


class ScriptedModel(ModelClient):
    """Returns scripted replies in order and records every call"""

    def __init__(self, replies: Sequence[ScriptedReply] = ()):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, prompt: List[Message], config: GenerationConfig) -> ModelResult:
        self.calls.append({"prompt": list(prompt), "config": config})
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, Delayed):
            await asyncio.sleep(reply.delay)
            reply = reply.text
        return ModelResult(text=reply, usage={"total_tokens": 10})


class RecordingCommandExecutor(CommandExecutor):
    def __init__(self, outcome: Optional[CommandOutcome] = None, raises: Optional[Exception] = None):
        self.outcome = outcome or CommandOutcome(success=True)
        self.raises = raises
        self.requests: List[CommandRequest] = []

    async def execute_command(self, request: CommandRequest) -> CommandOutcome:
        self.requests.append(request)
        if self.raises:
            raise self.raises
        return self.outcome

    async def general_commands(self) -> List[str]:
        return ["poll", "ping", "rps"]


class RecordingLedger(UsageLedger):
    def __init__(self):
        self.deductions: List[Dict[str, Any]] = []

    async def deduct(self, user_id: str, usage: Dict[str, Any], reason: str) -> None:
        self.deductions.append({"user_id": user_id, "usage": usage, "reason": reason})

    def reasons(self) -> List[str]:
        return [d["reason"] for d in self.deductions]


class FakeScope(ScopeDataProvider):
    """A guild with a handful of members, roles and channels"""

    def __init__(self, scope_id: str = "guild-1"):
        self._scope_id = scope_id
        self.members = {"u1": "alice", "u2": "bob"}
        self.roles = {"r1": "Admin", "r2": "Member"}
        self.role_members = {"Admin": ["alice"], "Member": ["alice", "bob"]}
        self.channels = {"c1": "general"}
        self.populated: List[str] = []
        self.describe_calls: List[bool] = []

    @property
    def scope_id(self) -> str:
        return self._scope_id

    async def get_member_info(self, options: Dict[str, Any]) -> Optional[str]:
        if options.get("user_id") in self.members:
            return f"{self.members[options['user_id']]} ({options['user_id']})"
        for member_id, name in self.members.items():
            if name == options.get("username"):
                return f"{name} ({member_id})"
        return None

    async def get_role_info(self, options: Dict[str, Any]) -> Optional[str]:
        for role_id, name in self.roles.items():
            if role_id == options.get("role_id") or name == options.get("role_name"):
                return f"{name} ({role_id}) - Members: {len(self.role_members.get(name, []))}"
        return None

    async def get_channel_info(self, options: Dict[str, Any]) -> Optional[str]:
        for channel_id, name in self.channels.items():
            if channel_id == options.get("channel_id") or name == options.get("channel_name"):
                return f"{name} ({channel_id}) - Type: text"
        return None

    async def search_members_by_role(self, options: Dict[str, Any]) -> List[str]:
        name = options.get("role_name") or self.roles.get(options.get("role_id"), "")
        return list(self.role_members.get(name, []))

    async def populate(self, kinds: Sequence[str]) -> None:
        self.populated.extend(kinds)

    async def dynamic_lookup(self, action_type: str) -> Optional[str]:
        if action_type == "get_server_info":
            return f"Server: Test ({self._scope_id}) - Members: {len(self.members)}"
        return None

    async def describe(self, include_member_list: bool = False) -> str:
        self.describe_calls.append(include_member_list)
        text = "Server: Test"
        if include_member_list:
            text += "\nMembers: " + ", ".join(self.members.values())
        return text


class FakeScopeDirectory(ScopeDirectory):
    def __init__(self, scope: Optional[FakeScope] = None):
        self.scope = scope

    async def get_scope(self, scope_id: Optional[str]) -> Optional[ScopeDataProvider]:
        if scope_id is None or self.scope is None or scope_id != self.scope.scope_id:
            return None
        return self.scope


class InMemoryRepository(ConversationRepository):
    """Durable tier double that keeps every saved snapshot"""

    def __init__(self):
        self.records: Dict[str, ConversationRecord] = {}
        self.saved: List[List[Message]] = []
        self.fail_writes = False
        self.fail_reads = False
        self.closed = False

    async def get_by_user(self, identity: ConversationIdentity) -> Optional[ConversationRecord]:
        if self.fail_reads:
            raise PersistenceError("read", identity.key, "unavailable")
        return self.records.get(identity.key)

    async def save(self, identity: ConversationIdentity, messages: List[Message], last_activity: float) -> None:
        if self.fail_writes:
            raise PersistenceError("write", identity.key, "unavailable")
        self.saved.append(list(messages))
        self.records[identity.key] = ConversationRecord(
            user_id=identity.user_id,
            scope_id=identity.scope_id,
            messages=list(messages),
            last_activity=last_activity
        )

    async def delete(self, identity: ConversationIdentity) -> bool:
        return self.records.pop(identity.key, None) is not None

    async def list_recent(self, since: float, limit: int = 100) -> List[ConversationRecord]:
        recent = [r for r in self.records.values() if r.last_activity >= since]
        return sorted(recent, key=lambda r: r.last_activity, reverse=True)[:limit]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def store(repository, clock) -> ConversationStore:
    return ConversationStore(
        repository=repository,
        max_history_length=20,
        timeout_seconds=1800,
        max_conversations=1000,
        clock=clock
    )


@pytest.fixture
def scope() -> FakeScope:
    return FakeScope()


@pytest.fixture
def ledger() -> RecordingLedger:
    return RecordingLedger()


@pytest.fixture
def settings() -> ChatSettings:
    return ChatSettings(
        storage_backend="memory",
        follow_up_timeout_seconds=0.2,
        system_prompt="You are a test assistant.",
        log_format="console",
        _env_file=None
    )


@pytest.fixture
def make_orchestrator(settings, repository, clock, ledger, scope):
    """Factory: build an orchestrator around a scripted model"""

    def _make(model: ScriptedModel, command_executor: Optional[CommandExecutor] = None, **overrides):
        return build_orchestrator(
            settings.model_copy(update=overrides) if overrides else settings,
            model,
            command_executor=command_executor or RecordingCommandExecutor(),
            scope_directory=FakeScopeDirectory(scope),
            usage_ledger=ledger,
            repository=repository,
            clock=clock
        )

    return _make


def user(content: str) -> Message:
    return Message(role="user", content=content)


def assistant(content: str) -> Message:
    return Message(role="assistant", content=content)


def system(content: str) -> Message:
    return Message(role="system", content=content)
