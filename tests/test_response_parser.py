"""Tests for model output parsing."""

import json

from chat_orchestrator.domain.orchestration.core.response_parser import (
    parse_model_response, sanitize_response, triggering_types
)


class TestParseModelResponse:

    def test_plain_text(self):
        parsed = parse_model_response("  Hello there!\n")

        assert not parsed.success
        assert parsed.message == "Hello there!"
        assert parsed.actions == []

    def test_json_with_actions(self):
        raw = json.dumps({"message": "Fetching members", "actions": [{"type": "fetch_members"}]})

        parsed = parse_model_response(raw)

        assert parsed.success
        assert parsed.message == "Fetching members"
        assert parsed.actions == [{"type": "fetch_members"}]

    def test_fenced_json(self):
        raw = '```json\n{"message": "Done", "actions": []}\n```'

        parsed = parse_model_response(raw)

        assert parsed.success
        assert parsed.message == "Done"

    def test_placeholder_message_becomes_empty(self):
        parsed = parse_model_response('{"message": "No response generated.", "actions": [{"type": "fetch_all"}]}')

        assert parsed.message == ""
        assert parsed.actions == [{"type": "fetch_all"}]

    def test_non_list_actions_are_dropped(self):
        parsed = parse_model_response('{"message": "Hi", "actions": {"type": "fetch_all"}}')

        assert parsed.actions == []

    def test_extracts_actions_from_malformed_json(self):
        raw = '{"message": "Looking \\"them\\" up", "actions": [{"type": "fetch_members"} // all of them\n], }'

        parsed = parse_model_response(raw)

        assert not parsed.success
        assert parsed.actions == [{"type": "fetch_members"}]
        assert parsed.message == 'Looking "them" up'

    def test_malformed_json_without_recoverable_actions_is_text(self):
        raw = '{"message": "broken", "actions": [{"type": }]'

        parsed = parse_model_response(raw)

        assert parsed.actions == []
        assert parsed.message == raw

    def test_empty_input(self):
        parsed = parse_model_response("")

        assert parsed.message == ""
        assert parsed.actions == []


class TestSanitizeResponse:

    def test_truncates_with_ellipsis(self):
        text = sanitize_response("a" * 2500, max_length=2000)

        assert len(text) == 2000
        assert text.endswith("...")

    def test_short_text_is_trimmed_only(self):
        assert sanitize_response("  hi  ") == "hi"


def test_triggering_types_ignores_malformed_entries():
    actions = [{"type": "fetch_all"}, "fetch_roles", {"type": 3}, {"type": "get_polls"}]

    assert triggering_types(actions, lambda t: t.startswith("fetch_")) == ["fetch_all"]
