from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Sequence
import structlog

from chat_orchestrator.domain.models.action import CommandRequest, CommandOutcome
from chat_orchestrator.domain.models.conversation import (
    Message, GenerationConfig, ModelResult, TurnContext
)

logger = structlog.get_logger(__name__)


class ModelClient(ABC):
    """Language model invocation boundary"""

    @abstractmethod
    async def generate(self, prompt: List[Message], config: GenerationConfig) -> ModelResult:
        """Run one model call over an ordered prompt"""
        pass


class CommandExecutor(ABC):
    """Delegated command execution boundary.

    Any user-visible output of a command is produced by the command handler
    itself; the orchestrator only records whether it succeeded.
    """

    @abstractmethod
    async def execute_command(self, request: CommandRequest) -> CommandOutcome:
        pass

    async def general_commands(self) -> List[str]:
        """Names of commands the assistant may run, used for error guidance"""
        return []


class UsageLedger(ABC):
    """Usage/credit deduction boundary"""

    @abstractmethod
    async def deduct(self, user_id: str, usage: Dict[str, Any], reason: str) -> None:
        pass


class LoggingUsageLedger(UsageLedger):
    """Ledger that only records deductions in the log"""

    async def deduct(self, user_id: str, usage: Dict[str, Any], reason: str) -> None:
        logger.info("Usage deduction", user_id=user_id, reason=reason, usage=usage)


class ScopeDataProvider(ABC):
    """Read access to the data of one scope (a guild)"""

    @property
    @abstractmethod
    def scope_id(self) -> str:
        pass

    @abstractmethod
    async def get_member_info(self, options: Dict[str, Any]) -> Optional[str]:
        pass

    @abstractmethod
    async def get_role_info(self, options: Dict[str, Any]) -> Optional[str]:
        pass

    @abstractmethod
    async def get_channel_info(self, options: Dict[str, Any]) -> Optional[str]:
        pass

    @abstractmethod
    async def search_members_by_role(self, options: Dict[str, Any]) -> List[str]:
        pass

    @abstractmethod
    async def populate(self, kinds: Sequence[str]) -> None:
        """Refresh cached scope data ("members", "channels", "roles")"""
        pass

    async def dynamic_lookup(self, action_type: str) -> Optional[str]:
        """Answer a get_* action that has no dedicated handler"""
        return None

    async def describe(self, include_member_list: bool = False) -> str:
        """Render the scope for inclusion in the system context"""
        return ""


class ScopeDirectory(ABC):
    """Resolves a scope id to its data provider"""

    @abstractmethod
    async def get_scope(self, scope_id: Optional[str]) -> Optional[ScopeDataProvider]:
        pass


class EmptyScopeDirectory(ScopeDirectory):
    """Directory for deployments without scope data; every action runs scope-less"""

    async def get_scope(self, scope_id: Optional[str]) -> Optional[ScopeDataProvider]:
        return None


class SystemContextBuilder(ABC):
    """Renders the system-context string for a turn"""

    @abstractmethod
    async def build(
        self,
        turn: TurnContext,
        scope: Optional[ScopeDataProvider],
        force_include_member_list: bool = False
    ) -> str:
        pass


class DefaultSystemContextBuilder(SystemContextBuilder):
    """Configured base prompt followed by the scope description"""

    def __init__(self, base_prompt: str):
        self.base_prompt = base_prompt.strip()

    async def build(
        self,
        turn: TurnContext,
        scope: Optional[ScopeDataProvider],
        force_include_member_list: bool = False
    ) -> str:
        sections = [self.base_prompt]
        if scope is None:
            sections.append("You are in a direct conversation. Server-specific actions are unavailable.")
        else:
            description = await scope.describe(include_member_list=force_include_member_list)
            if description:
                sections.append(description.strip())
        sections.append(f"User locale: {turn.locale}")
        return "\n\n".join(s for s in sections if s)
