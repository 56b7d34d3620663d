"""Tests for prompt assembly."""

from datetime import datetime, timezone

import pytest

from chat_orchestrator.domain.context.conversation_builder import (
    ACTION_REMINDER, PLAIN_TEXT_REMINDER, ConversationBuilder,
    detect_action_request, determine_wants_detail, format_date_preamble
)
from chat_orchestrator.domain.models.conversation import ConversationIdentity, Message, Role

from conftest import assistant, system, user


IDENTITY = ConversationIdentity(user_id="alice", scope_id="guild-1")
FIXED_NOW = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)


@pytest.fixture
def builder(store):
    return ConversationBuilder(store, now=lambda: FIXED_NOW)


class TestDatePreamble:

    def test_us_locale(self):
        assert format_date_preamble(FIXED_NOW, "en-US") == (
            "[Current Date and Time for User: Tuesday, March 05, 2024 at 02:07:09 PM UTC]"
        )

    def test_day_first_locale(self):
        assert format_date_preamble(FIXED_NOW, "en-GB") == (
            "[Current Date and Time for User: Tuesday, 05 March 2024 at 14:07:09 UTC]"
        )


class TestBuildPrompt:

    @pytest.mark.asyncio
    async def test_fresh_conversation(self, builder, store):
        prompt = await builder.build_prompt(IDENTITY, "hello", "ctx", [])

        assert [m.role for m in prompt] == [Role.SYSTEM, Role.USER]
        assert prompt[0].content == "ctx"
        assert prompt[1].content.startswith("[Current Date and Time for User:")
        assert "\n\nhello\n\n" in prompt[1].content
        assert prompt[1].content.endswith(PLAIN_TEXT_REMINDER)
        assert await store.get_history(IDENTITY) == [system("ctx")]

    @pytest.mark.asyncio
    async def test_action_hint_uses_action_reminder(self, builder):
        prompt = await builder.build_prompt(IDENTITY, "play rps", "ctx", [], needs_action_hint=True)

        assert prompt[-1].content.endswith(ACTION_REMINDER)

    @pytest.mark.asyncio
    async def test_changed_system_context_is_refreshed(self, builder, store):
        await store.append(IDENTITY, system("old ctx"))
        await store.append(IDENTITY, user("q1"))
        await store.append(IDENTITY, assistant("a1"))
        history = await store.get_history(IDENTITY)

        prompt = await builder.build_prompt(IDENTITY, "q2", "new ctx", history)

        assert prompt[:3] == [system("new ctx"), user("q1"), assistant("a1")]
        assert (await store.get_history(IDENTITY))[0] == system("new ctx")

    @pytest.mark.asyncio
    async def test_unchanged_system_context_is_not_rewritten(self, builder, store, clock):
        await store.append(IDENTITY, system("ctx"))
        await store.append(IDENTITY, user("q1"))
        before = store.last_activity(IDENTITY)
        clock.advance(30)

        await builder.build_prompt(IDENTITY, "q2", "ctx", await store.get_history(IDENTITY))

        assert store.last_activity(IDENTITY) == before

    @pytest.mark.asyncio
    async def test_summary_head_is_kept_and_live_system_replaced(self, builder, store):
        summary = Message(role=Role.SYSTEM, content="Previous conversation summary: User: hi")
        history = [summary, system("old ctx"), user("q9"), assistant("a9")]

        prompt = await builder.build_prompt(IDENTITY, "q10", "new ctx", history)

        assert prompt[:4] == [summary, system("new ctx"), user("q9"), assistant("a9")]
        assert len([m for m in prompt if m.is_system]) == 2
        assert (await store.get_history(IDENTITY))[0] == system("new ctx")

    @pytest.mark.asyncio
    async def test_prompt_does_not_alias_history(self, builder):
        history = [user("q1")]

        prompt = await builder.build_prompt(IDENTITY, "q2", "ctx", history)
        prompt[1].content = "changed"

        assert history[0].content == "q1"


class TestHeuristics:

    @pytest.mark.parametrize("text", [
        "play rps with me",
        "Can you start a poll about lunch?",
        "let's do that again",
        "show the leaderboard",
    ])
    def test_detects_action_requests(self, text):
        assert detect_action_request(text)

    @pytest.mark.parametrize("text", ["", "what is the capital of France?", "thanks!"])
    def test_ignores_plain_questions(self, text):
        assert not detect_action_request(text)

    def test_detail_markers(self):
        assert determine_wants_detail("Explain how polls work")
        assert not determine_wants_detail("hi")
