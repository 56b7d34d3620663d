from typing import Any, Dict, List, Optional
import asyncio
import re
import time

import structlog
from pydantic import BaseModel, Field, ValidationError

from chat_orchestrator.domain.action.action_registry import ActionRegistry, default_registry
from chat_orchestrator.domain.collaborators import (
    ModelClient, ScopeDataProvider, SystemContextBuilder, UsageLedger
)
from chat_orchestrator.domain.context.memory.conversation_store import ConversationStore
from chat_orchestrator.domain.errors import FollowUpTimeoutError
from chat_orchestrator.domain.models.action import (
    Action, ExecutionReport, ResultKind,
    COMMAND_ERROR_PREFIX, DATA_PREFIX, ERROR_PREFIX, FOUND_PREFIX, SUCCESS_PREFIX
)
from chat_orchestrator.domain.models.conversation import (
    GenerationConfig, Message, Role, TurnContext
)
from chat_orchestrator.domain.orchestration.core.response_parser import (
    parse_model_response, triggering_types
)
from chat_orchestrator.infrastructure.observability.logging import chat_logger, metrics

logger = structlog.get_logger(__name__)

# Model text that mentions any of these is never suppressed after a successful command.
FAILURE_VOCABULARY = re.compile(r"error|failed|unable|cannot|issue|problem|exception|crash", re.IGNORECASE)
_DATA_LEAD = re.compile(rf"^({re.escape(DATA_PREFIX)}|{re.escape(FOUND_PREFIX)})\s*")

FOLLOW_UP_INSTRUCTION = (
    "The actions you requested have been executed and the server context above is now up to date. "
    "Answer my previous message using this information."
)
MEMBER_LIST_ACTIONS = {"fetch_members", "fetch_all"}


def _command_labels(actions: List[Any]) -> List[str]:
    """Slash labels of the well-formed execute_command payloads in a batch"""

    labels = []
    for payload in actions:
        if not isinstance(payload, dict) or payload.get("type") != "execute_command":
            continue
        if not isinstance(payload.get("command"), str):
            continue
        try:
            labels.append(Action.from_payload(payload).command_label())
        except ValidationError:
            logger.debug("Skipping malformed command payload in history marker", command=payload.get("command"))
    return labels


class ReQueryOutcome(BaseModel):
    """Final text of a turn after its actions were folded back in"""
    final_text: str = ""
    response_suppressed: bool = False
    history_notes: List[str] = Field(default_factory=list, description="Assistant markers to record before the reply")
    follow_up_issued: bool = False


class ReQueryController:
    """Folds action results into the reply, issuing at most one follow-up model call"""

    def __init__(
        self,
        model: ModelClient,
        store: ConversationStore,
        context_builder: SystemContextBuilder,
        usage_ledger: UsageLedger,
        registry: Optional[ActionRegistry] = None,
        follow_up_timeout_seconds: float = 5.0,
        temperature: float = 0.7,
        follow_up_max_tokens: int = 500,
        follow_up_detail_max_tokens: int = 800
    ):
        self.model = model
        self.store = store
        self.context_builder = context_builder
        self.usage_ledger = usage_ledger
        self.registry = registry or default_registry
        self.follow_up_timeout_seconds = follow_up_timeout_seconds
        self.temperature = temperature
        self.follow_up_max_tokens = follow_up_max_tokens
        self.follow_up_detail_max_tokens = follow_up_detail_max_tokens

    async def resolve(
        self,
        turn: TurnContext,
        first_pass_text: str,
        actions: List[Any],
        report: ExecutionReport,
        scope: Optional[ScopeDataProvider]
    ) -> ReQueryOutcome:
        """Decide between folding results locally and one bounded follow-up call"""

        triggering = triggering_types(actions, self.registry.triggers_requery)
        if triggering:
            return await self._follow_up(turn, first_pass_text, triggering, report, scope)
        return self._fold_results(first_pass_text, actions, report)

    # ------------------------------------------------------------------
    # No triggering actions
    # ------------------------------------------------------------------
    def _fold_results(self, text: str, actions: List[Any], report: ExecutionReport) -> ReQueryOutcome:
        outcome = ReQueryOutcome(final_text=text)

        if report.of_kind(ResultKind.COMMAND_RESULT):
            executed = _command_labels(actions)
            if executed:
                outcome.history_notes.append(f"[Action completed - do not retry: {', '.join(executed)}]")

            if not FAILURE_VOCABULARY.search(outcome.final_text):
                outcome.final_text = ""
                outcome.response_suppressed = True
                logger.debug("Suppressed model text after successful command")

        data = report.of_kind(ResultKind.DATA)
        if data:
            lines = "\n".join(_DATA_LEAD.sub("", r) for r in data)
            outcome.final_text += f"\n\n**Additional Information:**\n{lines}"

        errors = [
            r for r in report.of_kind(ResultKind.STATUS)
            if "Error" in r or "Failed" in r
        ]
        if errors:
            outcome.final_text += "\n\n**Action Errors:**\n" + "\n".join(errors)
            compact = "; ".join(e.replace(f"{COMMAND_ERROR_PREFIX} ", "") for e in errors)
            outcome.history_notes.append(f"[Action completed with errors - do not retry: {compact}]")

        return outcome

    # ------------------------------------------------------------------
    # Follow-up
    # ------------------------------------------------------------------
    async def _follow_up(
        self,
        turn: TurnContext,
        first_pass_text: str,
        triggering: List[str],
        report: ExecutionReport,
        scope: Optional[ScopeDataProvider]
    ) -> ReQueryOutcome:
        conversation = str(turn.identity)
        logger.debug("Re-querying after actions", conversation=conversation, actions=triggering)

        prompt = await self._build_follow_up_prompt(turn, first_pass_text, triggering, report, scope)
        config = GenerationConfig(
            temperature=self.temperature,
            max_tokens=self.follow_up_detail_max_tokens if turn.wants_detail else self.follow_up_max_tokens,
            force_json=True
        )

        start = time.perf_counter()
        try:
            result = await self._generate_with_timeout(prompt, config)
        except FollowUpTimeoutError as e:
            logger.warning("Follow-up call timed out", conversation=conversation, error=str(e))
            metrics.increment_counter("follow_up.timeout")
            chat_logger.log_follow_up_call(conversation, "timeout", triggering)
            return ReQueryOutcome(final_text=first_pass_text, follow_up_issued=True)
        except Exception as e:
            logger.warning("Follow-up call failed", conversation=conversation, error=str(e))
            metrics.increment_counter("follow_up.failure")
            chat_logger.log_follow_up_call(conversation, "error", triggering)
            return ReQueryOutcome(final_text=first_pass_text, follow_up_issued=True)

        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_latency("follow_up", duration_ms)

        follow_up_text = result.text or first_pass_text
        if follow_up_text != first_pass_text:
            await self._deduct(turn.user_id, result.usage)

        parsed = parse_model_response(follow_up_text)
        ignored: List[str] = []
        if parsed.success:
            final_text = parsed.message
            ignored = triggering_types(parsed.actions, self.registry.triggers_requery)
            if ignored:
                logger.warning(
                    "Follow-up requested further re-query actions; ignoring to keep two model calls per turn",
                    conversation=conversation,
                    actions=ignored
                )
        else:
            final_text = follow_up_text

        chat_logger.log_follow_up_call(conversation, "ok", triggering, duration_ms=duration_ms, ignored_actions=ignored)
        return ReQueryOutcome(final_text=final_text, follow_up_issued=True)

    async def _generate_with_timeout(self, prompt: List[Message], config: GenerationConfig):
        try:
            return await asyncio.wait_for(
                self.model.generate(prompt, config),
                timeout=self.follow_up_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise FollowUpTimeoutError(self.follow_up_timeout_seconds) from e

    async def _build_follow_up_prompt(
        self,
        turn: TurnContext,
        first_pass_text: str,
        triggering: List[str],
        report: ExecutionReport,
        scope: Optional[ScopeDataProvider]
    ) -> List[Message]:
        system_context = await self.context_builder.build(
            turn,
            scope,
            force_include_member_list=any(t in MEMBER_LIST_ACTIONS for t in triggering)
        )
        history = await self.store.get_history(turn.identity)

        prompt = [Message(role=Role.SYSTEM, content=system_context)]
        prompt.extend(Message(role=m.role, content=m.content) for m in history if not m.is_system)
        prompt.append(Message(role=Role.USER, content=turn.user_text))
        prompt.append(Message(role=Role.ASSISTANT, content=first_pass_text))
        prompt.append(Message(role=Role.USER, content=self._follow_up_instruction(report.results)))
        return prompt

    @staticmethod
    def _follow_up_instruction(results: List[str]) -> str:
        instruction = FOLLOW_UP_INSTRUCTION
        errors = [r for r in results if r.startswith((ERROR_PREFIX, COMMAND_ERROR_PREFIX))]
        successes = [r for r in results if r.startswith((SUCCESS_PREFIX, DATA_PREFIX, FOUND_PREFIX))]

        if errors:
            instruction += (
                "\n\n**IMPORTANT - Action Results (Errors Occurred):**\n"
                + "\n".join(f"- {r}" for r in errors)
                + "\n\n**You MUST inform the user about these errors.** "
                "Explain what went wrong and what data is available (if any)."
            )
        elif successes:
            instruction += (
                "\n\n**Action Results (Success):**\n"
                + "\n".join(f"- {r}" for r in successes)
                + "\n\n**You can mention this success to the user if relevant.**"
            )
        return instruction

    async def _deduct(self, user_id: str, usage: Dict[str, Any]) -> None:
        try:
            await self.usage_ledger.deduct(user_id, usage, "re-query")
        except Exception as e:
            logger.warning("Usage deduction failed", user_id=user_id, reason="re-query", error=str(e))
