from typing import TypedDict, List, Dict, Any, Optional
from langgraph.graph import StateGraph, END
import structlog
import time
import uuid

from chat_orchestrator.domain.action.action_executor import ActionContext, ActionExecutor
from chat_orchestrator.domain.collaborators import (
    ModelClient, ScopeDataProvider, ScopeDirectory, SystemContextBuilder, UsageLedger
)
from chat_orchestrator.domain.context.conversation_builder import (
    ConversationBuilder, detect_action_request, determine_wants_detail
)
from chat_orchestrator.domain.context.memory.conversation_memory import ConversationMemory
from chat_orchestrator.domain.context.memory.conversation_store import ConversationStore
from chat_orchestrator.domain.models.conversation import (
    ConversationIdentity, GenerationConfig, Message, Role, TurnContext
)
from chat_orchestrator.domain.orchestration.core.requery_controller import (
    ReQueryController, ReQueryOutcome
)
from chat_orchestrator.domain.orchestration.core.response_parser import (
    parse_model_response, sanitize_response
)
from chat_orchestrator.infrastructure.observability.logging import chat_logger, metrics

logger = structlog.get_logger(__name__)

EMPTY_RESPONSE_FALLBACK = (
    "I couldn't generate a response. Please try rephrasing your question "
    "or use /help for available commands."
)


class TurnState(TypedDict, total=False):
    """State carried through the turn graph"""
    turn: TurnContext
    scope: Optional[ScopeDataProvider]
    prompt: List[Message]
    first_pass_text: str
    actions: List[Any]
    outcome: ReQueryOutcome
    final_text: str
    started_at: float
    trace: List[str]


class ChatOrchestrator:
    """Runs one user turn: prompt, first model call, actions, optional follow-up, history"""

    def __init__(
        self,
        model: ModelClient,
        store: ConversationStore,
        memory: ConversationMemory,
        builder: ConversationBuilder,
        executor: ActionExecutor,
        requery: ReQueryController,
        context_builder: SystemContextBuilder,
        scope_directory: ScopeDirectory,
        usage_ledger: UsageLedger,
        temperature: float = 0.7,
        max_tokens: int = 600,
        detail_max_tokens: int = 1200,
        max_response_length: int = 2000,
        default_locale: str = "en-US"
    ):
        self.model = model
        self.store = store
        self.memory = memory
        self.builder = builder
        self.executor = executor
        self.requery = requery
        self.context_builder = context_builder
        self.scope_directory = scope_directory
        self.usage_ledger = usage_ledger
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.detail_max_tokens = detail_max_tokens
        self.max_response_length = max_response_length
        self.default_locale = default_locale
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the turn graph"""

        workflow = StateGraph(TurnState)

        workflow.add_node("prepare", self.prepare_node)
        workflow.add_node("first_pass", self.first_pass_node)
        workflow.add_node("process_actions", self.process_actions_node)
        workflow.add_node("finalize", self.finalize_node)

        workflow.set_entry_point("prepare")
        workflow.add_edge("prepare", "first_pass")
        workflow.add_conditional_edges(
            "first_pass",
            self.route_after_first_pass,
            {
                "actions": "process_actions",
                "reply": "finalize"
            }
        )
        workflow.add_edge("process_actions", "finalize")
        workflow.add_edge("finalize", END)

        return workflow.compile()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------
    async def generate_response(
        self,
        user_id: str,
        scope_id: Optional[str],
        user_text: str,
        locale: Optional[str] = None
    ) -> str:
        """Produce the final reply for one user turn.

        Only a failure of the first model call propagates; everything after it
        degrades to the best text available.
        """

        request_id = f"chat-{user_id}-{uuid.uuid4().hex[:8]}"
        with structlog.contextvars.bound_contextvars(
            request_id=request_id, user_id=user_id, scope_id=scope_id or "dm"
        ):
            turn = TurnContext(
                user_id=user_id,
                scope_id=scope_id,
                user_text=user_text,
                locale=locale or self.default_locale,
                wants_detail=determine_wants_detail(user_text)
            )
            state = await self.workflow.ainvoke({
                "turn": turn,
                "started_at": time.perf_counter(),
                "trace": []
            })
            logger.debug("Turn completed", trace=state.get("trace", []))
            return state["final_text"]

    async def clear_history(self, user_id: str, scope_id: Optional[str] = None) -> None:
        identity = ConversationIdentity(user_id=user_id, scope_id=scope_id)
        await self.store.clear(identity)
        await self.memory.clear_summary(identity)
        logger.info("Conversation cleared", conversation=str(identity))

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------
    async def prepare_node(self, state: TurnState) -> Dict[str, Any]:
        """Resolve the scope, render system context and assemble the prompt"""

        turn = state["turn"]
        scope = await self.scope_directory.get_scope(turn.scope_id)
        system_context = await self.context_builder.build(turn, scope)
        turn = turn.model_copy(update={"system_context": system_context})

        history = await self.memory.get_context(turn.identity)
        prompt = await self.builder.build_prompt(
            turn.identity,
            turn.user_text,
            system_context,
            history,
            locale=turn.locale,
            needs_action_hint=detect_action_request(turn.user_text)
        )
        logger.debug("Prepared turn", history=len(history), scope_present=scope is not None)
        return {"turn": turn, "scope": scope, "prompt": prompt, "trace": state["trace"] + ["prepare"]}

    async def first_pass_node(self, state: TurnState) -> Dict[str, Any]:
        """First model call; its failure is the caller's to handle"""

        turn = state["turn"]
        config = GenerationConfig(
            temperature=self.temperature,
            max_tokens=self.detail_max_tokens if turn.wants_detail else self.max_tokens,
            force_json=False
        )
        result = await self.model.generate(state["prompt"], config)

        if result.text:
            try:
                await self.usage_ledger.deduct(turn.user_id, result.usage, "initial")
            except Exception as e:
                logger.warning("Usage deduction failed", reason="initial", error=str(e))

        parsed = parse_model_response(result.text)
        text = sanitize_response(parsed.message, self.max_response_length)
        return {
            "first_pass_text": text,
            "actions": parsed.actions,
            "trace": state["trace"] + ["first_pass"]
        }

    def route_after_first_pass(self, state: TurnState) -> str:
        return "actions" if state.get("actions") else "reply"

    async def process_actions_node(self, state: TurnState) -> Dict[str, Any]:
        """Execute requested actions and fold their results back in"""

        turn = state["turn"]
        first_pass_text = state["first_pass_text"]
        try:
            report = await self.executor.execute(
                state["actions"],
                ActionContext(actor_id=turn.user_id, scope=state.get("scope"))
            )
            outcome = await self.requery.resolve(
                turn, first_pass_text, state["actions"], report, state.get("scope")
            )
        except Exception:
            logger.exception("Error processing actions")
            outcome = ReQueryOutcome(final_text=first_pass_text)
        return {"outcome": outcome, "trace": state["trace"] + ["process_actions"]}

    async def finalize_node(self, state: TurnState) -> Dict[str, Any]:
        """Apply the empty-reply fallback and record the turn in history"""

        turn = state["turn"]
        outcome = state.get("outcome") or ReQueryOutcome(final_text=state["first_pass_text"])

        final_text = sanitize_response(outcome.final_text, self.max_response_length)
        if not final_text and not outcome.response_suppressed:
            logger.warning("Response is empty after processing, using fallback")
            final_text = EMPTY_RESPONSE_FALLBACK

        identity = turn.identity
        await self.store.append(identity, Message(role=Role.USER, content=turn.user_text))
        for note in outcome.history_notes:
            await self.store.append(identity, Message(role=Role.ASSISTANT, content=note))
        if final_text:
            await self.store.append(identity, Message(role=Role.ASSISTANT, content=final_text))

        chat_logger.log_history_update(
            str(identity),
            "turn_recorded",
            {"notes": len(outcome.history_notes), "suppressed": outcome.response_suppressed}
        )
        metrics.record_latency("turn", (time.perf_counter() - state["started_at"]) * 1000)
        return {"final_text": final_text, "trace": state["trace"] + ["finalize"]}
