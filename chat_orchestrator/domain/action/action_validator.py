from typing import Any, Dict, Optional

from chat_orchestrator.domain.action.action_registry import ActionRegistry, default_registry
from chat_orchestrator.domain.models.action import ActionCategory, ValidationResult


def _present(options: Dict[str, Any], key: str) -> bool:
    value = options.get(key)
    return value is not None and value != ""


class ActionValidator:
    """Structural and registry-driven validation of raw action payloads"""

    def __init__(self, registry: Optional[ActionRegistry] = None):
        self.registry = registry or default_registry

    def validate(self, action: Any) -> ValidationResult:
        """Check shape, tag, block status and the tag's required options"""

        if not isinstance(action, dict):
            return ValidationResult.fail("Action must be an object")

        action_type = action.get("type")
        if not action_type or not isinstance(action_type, str):
            return ValidationResult.fail("Action must have a 'type' field")

        spec = self.registry.get(action_type)
        if spec is None:
            if self.registry.is_dynamic_fetch(action_type):
                return ValidationResult.ok()
            return ValidationResult.fail(f"Unknown action type: {action_type}")

        if self.registry.is_blocked(action_type):
            return ValidationResult.fail(f"{action_type} is not available. {spec.block_reason}")

        if spec.category == ActionCategory.COMMAND_EXEC:
            command = action.get("command")
            if not command or not isinstance(command, str):
                return ValidationResult.fail(f"{action_type} requires a 'command' field")

        options = action.get("options")
        if options is not None and not isinstance(options, dict):
            return ValidationResult.fail(f"{action_type} requires an 'options' object")

        if not spec.requires_options:
            return ValidationResult.ok()

        if not options:
            return ValidationResult.fail(f"{action_type} requires an 'options' object")

        if spec.required_any and not any(_present(options, key) for key in spec.required_any):
            return ValidationResult.fail(
                f"{action_type} requires at least one of: {', '.join(spec.required_any)}"
            )

        for key in spec.required_all:
            if not _present(options, key):
                return ValidationResult.fail(f"{action_type} requires '{key}' in options")

        return ValidationResult.ok()

    def requires_context(self, action_type: str) -> bool:
        """Whether the action can only run inside a scope"""
        return self.registry.requires_scope(action_type)
