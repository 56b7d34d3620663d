"""Tests for the action registry and validator."""

import pytest

from chat_orchestrator.domain.action.action_registry import (
    ADMIN_BLOCK_REASON, MODERATION_BLOCK_REASON, ActionRegistry
)
from chat_orchestrator.domain.action.action_validator import ActionValidator
from chat_orchestrator.domain.models.action import ActionCategory, ActionSpec


class TestActionRegistry:

    def test_default_table_categories(self):
        registry = ActionRegistry()

        assert registry.by_category(ActionCategory.DATA_FETCH) == [
            "fetch_members", "fetch_channels", "fetch_roles", "fetch_all"
        ]
        assert "execute_command" in registry.by_category(ActionCategory.COMMAND_EXEC)
        assert len(registry.by_category(ActionCategory.ADMIN)) == 9
        assert len(registry.by_category(ActionCategory.MODERATION)) == 4

    def test_only_bulk_fetches_trigger_requery(self):
        registry = ActionRegistry()

        assert sorted(registry.requery_types()) == sorted(
            ["fetch_members", "fetch_channels", "fetch_roles", "fetch_all"]
        )
        assert not registry.triggers_requery("get_member_info")
        assert not registry.triggers_requery("execute_command")
        assert not registry.triggers_requery("not_registered")

    def test_admin_and_moderation_are_blocked(self):
        registry = ActionRegistry()

        assert set(registry.blocked_types()) == set(
            registry.by_category(ActionCategory.ADMIN) + registry.by_category(ActionCategory.MODERATION)
        )
        assert registry.get("kick_member").block_reason == MODERATION_BLOCK_REASON
        assert registry.get("add_role").block_reason == ADMIN_BLOCK_REASON

    def test_blocked_and_allowed_lookups(self):
        registry = ActionRegistry()

        assert registry.is_blocked("kick_member")
        assert not registry.is_blocked("fetch_all")
        assert not registry.is_blocked("not_registered")
        allowed = registry.allowed_types()
        assert "fetch_all" in allowed
        assert "execute_command" in allowed
        assert "ban_member" not in allowed

    def test_get_prefix_is_dynamic(self):
        assert ActionRegistry.is_dynamic_fetch("get_anything")
        assert not ActionRegistry.is_dynamic_fetch("fetch_members")

    def test_register_replaces_without_duplicating_category(self):
        registry = ActionRegistry(specs=[])
        registry.register(ActionSpec(type="ping", category=ActionCategory.DATA_RETRIEVE))
        registry.register(ActionSpec(type="ping", category=ActionCategory.DATA_RETRIEVE, requires_scope=False))

        assert registry.by_category(ActionCategory.DATA_RETRIEVE) == ["ping"]
        assert not registry.requires_scope("ping")


class TestActionValidator:

    @pytest.fixture
    def validator(self):
        return ActionValidator()

    def test_rejects_non_object(self, validator):
        result = validator.validate(["fetch_members"])

        assert not result.is_valid
        assert result.error == "Action must be an object"

    def test_rejects_missing_type(self, validator):
        assert validator.validate({"options": {}}).error == "Action must have a 'type' field"

    def test_rejects_unknown_type(self, validator):
        assert validator.validate({"type": "launch_rocket"}).error == "Unknown action type: launch_rocket"

    def test_accepts_unregistered_get_type(self, validator):
        assert validator.validate({"type": "get_server_info"}).is_valid

    def test_rejects_blocked_type_with_reason(self, validator):
        result = validator.validate({"type": "ban_member", "options": {"user_id": "u1"}})

        assert not result.is_valid
        assert result.error == f"ban_member is not available. {MODERATION_BLOCK_REASON}"

    def test_execute_command_requires_command_field(self, validator):
        result = validator.validate({"type": "execute_command", "options": {}})

        assert result.error == "execute_command requires a 'command' field"

    def test_execute_command_with_command_is_valid(self, validator):
        assert validator.validate({"type": "execute_command", "command": "ping"}).is_valid

    def test_options_must_be_an_object(self, validator):
        result = validator.validate({"type": "fetch_members", "options": "all"})

        assert result.error == "fetch_members requires an 'options' object"

    def test_lookup_requires_options(self, validator):
        result = validator.validate({"type": "get_member_info"})

        assert result.error == "get_member_info requires an 'options' object"

    def test_lookup_requires_one_identifier(self, validator):
        result = validator.validate({"type": "get_role_info", "options": {"color": "red"}})

        assert result.error == "get_role_info requires at least one of: role_id, role_name"

    def test_lookup_with_identifier_is_valid(self, validator):
        assert validator.validate({"type": "get_channel_info", "options": {"channel_name": "general"}}).is_valid

    def test_required_all_is_checked_for_custom_specs(self):
        registry = ActionRegistry(specs=[
            ActionSpec(
                type="schedule",
                category=ActionCategory.DATA_RETRIEVE,
                requires_options=True,
                required_all=["when", "what"]
            )
        ])
        validator = ActionValidator(registry)

        result = validator.validate({"type": "schedule", "options": {"when": "now"}})

        assert result.error == "schedule requires 'what' in options"

    def test_requires_context(self, validator):
        assert validator.requires_context("get_role_info")
        assert not validator.requires_context("get_unregistered_thing")
