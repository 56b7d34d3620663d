from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass
import time

import structlog

from chat_orchestrator.domain.action.action_validator import ActionValidator
from chat_orchestrator.domain.collaborators import CommandExecutor, ScopeDataProvider
from chat_orchestrator.domain.errors import ActionContextError, ActionValidationError, CommandDispatchError
from chat_orchestrator.domain.models.action import (
    Action, CommandRequest, ExecutionReport,
    COMMAND_ERROR_PREFIX, COMMAND_RESULT_PREFIX, DATA_PREFIX, ERROR_PREFIX,
    FOUND_PREFIX, SUCCESS_PREFIX
)
from chat_orchestrator.infrastructure.observability.logging import chat_logger, metrics

logger = structlog.get_logger(__name__)

GENERIC_COMMAND_GUIDANCE = (
    "Review the command structure and options. Ensure all required options "
    "are provided with correct types and values."
)

_KNOWN_PREFIXES = (
    DATA_PREFIX, FOUND_PREFIX, COMMAND_RESULT_PREFIX, COMMAND_ERROR_PREFIX,
    ERROR_PREFIX, SUCCESS_PREFIX
)

_BULK_FETCHES: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "fetch_members": (("members",), "Fetched all members"),
    "fetch_channels": (("channels",), "Fetched all channels"),
    "fetch_roles": (("roles",), "Fetched all roles"),
    "fetch_all": (("members", "channels", "roles"), "Fetched server data (members, channels, roles)"),
}


@dataclass
class ActionContext:
    """Who triggered a batch of actions and in which scope"""
    actor_id: str
    scope: Optional[ScopeDataProvider] = None

    @property
    def scope_id(self) -> Optional[str]:
        return self.scope.scope_id if self.scope else None


def parse_command(action: Action) -> Tuple[str, Optional[str], Dict[str, Any]]:
    """Split ``"poll create"`` style names and lift a stray ``subcommand`` option"""

    command_name = action.command.strip()
    options = dict(action.options)
    subcommand = action.subcommand or options.get("subcommand") or None
    options.pop("subcommand", None)

    if " " in command_name and not subcommand:
        command_name, subcommand = command_name.split(" ", 1)
        subcommand = subcommand.strip() or None
    return command_name.lstrip("/"), subcommand, options


class ActionExecutor:
    """Runs a batch of model-emitted actions, one result string per action.

    A failing action never aborts the batch; its result names the action type.
    """

    def __init__(
        self,
        command_executor: Optional[CommandExecutor] = None,
        validator: Optional[ActionValidator] = None
    ):
        self.command_executor = command_executor
        self.validator = validator or ActionValidator()

    async def execute(self, actions: Sequence[Any], context: ActionContext) -> ExecutionReport:
        """Execute actions in order and collect their prefixed results"""

        if not isinstance(actions, (list, tuple)):
            logger.warning("Actions payload is not a list", payload_type=type(actions).__name__)
            return ExecutionReport(results=["Invalid actions format: expected an array"])

        results: List[str] = []
        for payload in actions:
            start = time.perf_counter()
            action_type = payload.get("type") if isinstance(payload, dict) else None
            try:
                result = await self._execute_one(payload, context)
                success = not self._is_failure(result)
            except ActionValidationError as e:
                result = f"Invalid action: {e}"
                success = False
            except ActionContextError as e:
                result = str(e)
                success = False
            except Exception as e:
                logger.exception("Error executing action", action_type=action_type)
                result = f"{ERROR_PREFIX} Failed to execute {action_type}: {str(e) or 'Unknown error'}"
                success = False

            results.append(result)
            metrics.increment_counter("actions.executed", tags={"action_type": str(action_type)})
            chat_logger.log_action_execution(
                action_type=str(action_type),
                conversation=f"{context.actor_id}:{context.scope_id or 'dm'}",
                result=result,
                duration_ms=(time.perf_counter() - start) * 1000,
                success=success
            )

        return ExecutionReport(results=results)

    @staticmethod
    def _is_failure(result: str) -> bool:
        return result.startswith((ERROR_PREFIX, COMMAND_ERROR_PREFIX)) or result.startswith("Unknown action type")

    async def _execute_one(self, payload: Any, context: ActionContext) -> str:
        validation = self.validator.validate(payload)
        if not validation.is_valid:
            logger.warning("Invalid action", error=validation.error)
            raise ActionValidationError(validation.error)

        action = Action.from_payload(payload)
        if self.validator.requires_context(action.type) and context.scope is None:
            raise ActionContextError(action.type)

        if action.type in _BULK_FETCHES:
            return await self._bulk_fetch(action, context.scope)
        if action.type == "get_member_info":
            info = await context.scope.get_member_info(action.options)
            return f"{DATA_PREFIX} {info}" if info else "Member not found"
        if action.type == "get_role_info":
            info = await context.scope.get_role_info(action.options)
            return f"{DATA_PREFIX} {info}" if info else "Role not found"
        if action.type == "get_channel_info":
            info = await context.scope.get_channel_info(action.options)
            return f"{DATA_PREFIX} {info}" if info else "Channel not found"
        if action.type == "search_members_by_role":
            return await self._search_members_by_role(action, context.scope)
        if action.type == "execute_command":
            return await self._execute_command(action, context)
        return await self._dynamic_fallback(action, context.scope)

    async def _bulk_fetch(self, action: Action, scope: ScopeDataProvider) -> str:
        kinds, confirmation = _BULK_FETCHES[action.type]
        try:
            await scope.populate(kinds)
        except Exception as e:
            logger.error("Bulk fetch failed", action_type=action.type, error=str(e))
            return f"{ERROR_PREFIX} Failed to fetch server data ({action.type}) - {str(e) or 'Unknown error occurred'}"
        return f"{SUCCESS_PREFIX} {confirmation}"

    async def _search_members_by_role(self, action: Action, scope: ScopeDataProvider) -> str:
        members = await scope.search_members_by_role(action.options)
        if not members:
            return "No members found with that role"
        listing = "\n".join(f"{i}. {name}" for i, name in enumerate(members, start=1))
        return f"{FOUND_PREFIX} {len(members)} member(s) with that role:\n{listing}"

    async def _dynamic_fallback(self, action: Action, scope: Optional[ScopeDataProvider]) -> str:
        if self.validator.registry.is_dynamic_fetch(action.type) and scope is not None:
            handled = await scope.dynamic_lookup(action.type)
            if handled is not None:
                return handled if handled.startswith(_KNOWN_PREFIXES) else f"{DATA_PREFIX} {handled}"
        logger.warning("Unknown action type", action_type=action.type)
        return f"Unknown action type: {action.type}"

    async def _execute_command(self, action: Action, context: ActionContext) -> str:
        label = f'"{action.command}"'
        if action.subcommand:
            label += f' with subcommand "{action.subcommand}"'

        if self.command_executor is None:
            return f"{COMMAND_ERROR_PREFIX} Failed to execute command {label}. Error: command execution is unavailable. {GENERIC_COMMAND_GUIDANCE}"

        command_name, subcommand, options = parse_command(action)
        request = CommandRequest(
            command_name=command_name,
            subcommand=subcommand,
            options=options,
            actor_id=context.actor_id,
            scope_id=context.scope_id
        )
        logger.debug("Dispatching command", command=command_name, subcommand=subcommand)

        try:
            outcome = await self.command_executor.execute_command(request)
        except Exception as e:
            error = CommandDispatchError(action.command, str(e) or "Unknown error")
            guidance = await self.command_error_guidance(error.reason, action)
            return f"{COMMAND_ERROR_PREFIX} Error executing command {label}. Error: {error.reason}. {guidance}"

        if outcome.success:
            logger.info("Command executed", command=action.command)
            return f"{COMMAND_RESULT_PREFIX} Command {action.command} executed successfully"

        reason = outcome.error or "Unknown error"
        guidance = await self.command_error_guidance(reason, action)
        return f"{COMMAND_ERROR_PREFIX} Failed to execute command {label}. Error: {reason}. {guidance}"

    async def command_error_guidance(self, error_message: str, action: Action) -> str:
        """Remediation hint matched from the failure text"""

        error_lower = error_message.lower()
        command = action.command or "unknown"

        if "subcommand" in error_lower and ("not allowed" in error_lower or "unknown" in error_lower):
            return (
                f'The subcommand "{action.subcommand}" doesn\'t exist for command "{command}". '
                "Check the command structure - some commands don't have subcommands."
            )

        if (
            "not allowed" in error_lower
            or "only execute general" in error_lower
            or "permission" in error_lower
        ):
            commands = await self._general_commands()
            if commands:
                return (
                    "This command is not in the general commands list. Only general commands can be run "
                    f"on the user's behalf. Available general commands: {', '.join(commands)}. "
                    f'If you need to use "{command}", it\'s likely an admin or developer command '
                    "that must be run manually by a user."
                )
            return (
                "This command is not in the general commands list. Only general commands can be run "
                "on the user's behalf. Check the available commands using /help."
            )

        if "user" in error_lower and ("not found" in error_lower or "invalid" in error_lower):
            return (
                "The user ID or mention provided is invalid or the user doesn't exist. "
                "Use actual user IDs from the server member list, or use mention format "
                'like "<@123456789012345678>".'
            )

        if "required" in error_lower or "missing" in error_lower:
            return "Required options are missing. Check the command structure - all required options must be provided."

        if "invalid" in error_lower or "not valid" in error_lower:
            return (
                "One or more option values are invalid. Check the command's expected option "
                "types and values (e.g., choices must match predefined values, user options "
                "must be valid user IDs)."
            )

        return GENERIC_COMMAND_GUIDANCE

    async def _general_commands(self) -> List[str]:
        try:
            return await self.command_executor.general_commands()
        except Exception as e:
            logger.error("Failed to list general commands for error guidance", error=str(e))
            return []
