from typing import Dict, List, Optional

from chat_orchestrator.domain.models.action import (
    ActionCategory, ActionSpec, DYNAMIC_FETCH_PREFIX
)

ADMIN_BLOCK_REASON = (
    "Admin and guild management actions must be performed manually "
    "by administrators using bot commands"
)
MODERATION_BLOCK_REASON = (
    "Moderation actions must be performed manually by administrators "
    "using moderation commands"
)


def _default_specs() -> List[ActionSpec]:
    fetch = [
        ("fetch_members", "Fetch all server members (human members and bots)"),
        ("fetch_channels", "Fetch all server channels"),
        ("fetch_roles", "Fetch all server roles"),
        ("fetch_all", "Fetch all server data (members, channels, roles)"),
    ]
    specs = [
        ActionSpec(
            type=name,
            category=ActionCategory.DATA_FETCH,
            triggers_requery=True,
            description=description
        )
        for name, description in fetch
    ]

    specs += [
        ActionSpec(
            type="get_member_info",
            category=ActionCategory.DATA_RETRIEVE,
            requires_options=True,
            required_any=["user_id", "username"],
            description="Get information about a specific member"
        ),
        ActionSpec(
            type="get_role_info",
            category=ActionCategory.DATA_RETRIEVE,
            requires_options=True,
            required_any=["role_id", "role_name"],
            description="Get information about a specific role"
        ),
        ActionSpec(
            type="get_channel_info",
            category=ActionCategory.DATA_RETRIEVE,
            requires_options=True,
            required_any=["channel_id", "channel_name"],
            description="Get information about a specific channel"
        ),
        ActionSpec(
            type="search_members_by_role",
            category=ActionCategory.DATA_RETRIEVE,
            requires_options=True,
            required_any=["role_id", "role_name"],
            description="Search for members with a specific role"
        ),
    ]
    specs += [
        ActionSpec(type=name, category=ActionCategory.DATA_RETRIEVE, description=description)
        for name, description in [
            ("get_role_reaction_messages", "Get role reaction message IDs"),
            ("get_scheduled_roles", "Get scheduled role data"),
            ("get_polls", "Get poll data"),
            ("get_moderation_history", "Get moderation history"),
        ]
    ]

    # The command name is a top-level field, not an option.
    specs.append(ActionSpec(
        type="execute_command",
        category=ActionCategory.COMMAND_EXEC,
        description="Execute a general bot command"
    ))

    admin = [
        ("add_role", ["user_id"], ["role_id", "role_name"], "Add a role to a user"),
        ("remove_role", ["user_id"], ["role_id", "role_name"], "Remove a role from a user"),
        ("create_channel", ["name"], [], "Create a channel"),
        ("delete_channel", ["channel_id"], [], "Delete a channel"),
        ("modify_channel", ["channel_id"], [], "Modify a channel"),
        ("send_message", [], ["content", "embed"], "Send a message"),
        ("delete_message", ["message_id"], [], "Delete a message"),
        ("pin_message", ["message_id"], [], "Pin a message"),
        ("unpin_message", ["message_id"], [], "Unpin a message"),
    ]
    specs += [
        ActionSpec(
            type=name,
            category=ActionCategory.ADMIN,
            blocked=True,
            block_reason=ADMIN_BLOCK_REASON,
            requires_options=True,
            required_all=required_all,
            required_any=required_any,
            description=f"{description} (BLOCKED)"
        )
        for name, required_all, required_any, description in admin
    ]

    moderation = [
        ("kick_member", ["user_id"], "Kick a member"),
        ("ban_member", ["user_id"], "Ban a member"),
        ("timeout_member", ["user_id", "duration_seconds"], "Timeout a member"),
        ("warn_member", ["user_id"], "Warn a member"),
    ]
    specs += [
        ActionSpec(
            type=name,
            category=ActionCategory.MODERATION,
            blocked=True,
            block_reason=MODERATION_BLOCK_REASON,
            requires_options=True,
            required_all=required_all,
            description=f"{description} (BLOCKED)"
        )
        for name, required_all, description in moderation
    ]
    return specs


class ActionRegistry:
    """Registry of action tags the model may emit"""

    def __init__(self, specs: Optional[List[ActionSpec]] = None):
        self.actions: Dict[str, ActionSpec] = {}
        self.action_categories: Dict[ActionCategory, List[str]] = {}
        for spec in specs if specs is not None else _default_specs():
            self.register(spec)

    def register(self, spec: ActionSpec) -> None:
        """Register (or replace) an action spec"""

        if spec.type not in self.actions:
            self.action_categories.setdefault(spec.category, []).append(spec.type)
        self.actions[spec.type] = spec

    def get(self, action_type: str) -> Optional[ActionSpec]:
        return self.actions.get(action_type)

    def __contains__(self, action_type: str) -> bool:
        return action_type in self.actions

    @staticmethod
    def is_dynamic_fetch(action_type: str) -> bool:
        """Tags of the reserved ``get_`` family are accepted even when unregistered"""
        return action_type.startswith(DYNAMIC_FETCH_PREFIX)

    def requires_scope(self, action_type: str) -> bool:
        spec = self.get(action_type)
        return spec is not None and spec.requires_scope

    def triggers_requery(self, action_type: str) -> bool:
        spec = self.get(action_type)
        return spec is not None and spec.triggers_requery

    def is_blocked(self, action_type: str) -> bool:
        spec = self.get(action_type)
        return spec is not None and spec.blocked

    def by_category(self, category: ActionCategory) -> List[str]:
        return list(self.action_categories.get(category, []))

    def requery_types(self) -> List[str]:
        return [s.type for s in self.actions.values() if s.triggers_requery]

    def blocked_types(self) -> List[str]:
        return [s.type for s in self.actions.values() if s.blocked]

    def allowed_types(self) -> List[str]:
        return [s.type for s in self.actions.values() if not s.blocked]


default_registry = ActionRegistry()
