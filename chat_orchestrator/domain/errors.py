"""
Error taxonomy for the chat orchestration layer.

Every error below is recovered inside the turn that raised it. The only
failure that reaches a caller of ``generate_response`` is the first-pass
model call itself.
"""

from typing import Optional


class ChatOrchestratorError(Exception):
    """Base class for recoverable orchestration errors"""


class ActionValidationError(ChatOrchestratorError):
    """Malformed action payload"""


class ActionContextError(ChatOrchestratorError):
    """Action needs a scope that is not present"""

    def __init__(self, action_type: str, message: Optional[str] = None):
        self.action_type = action_type
        super().__init__(
            message or f"{action_type} requires a server context (cannot be used in DMs)"
        )


class CommandDispatchError(ChatOrchestratorError):
    """Delegated command execution failed"""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(reason)


class PersistenceError(ChatOrchestratorError):
    """Durable read, write or delete failed"""

    def __init__(self, operation: str, key: str, reason: str):
        self.operation = operation
        self.key = key
        super().__init__(f"{operation} failed for {key}: {reason}")


class FollowUpTimeoutError(ChatOrchestratorError):
    """Follow-up model call exceeded its wall-clock bound"""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Follow-up query timed out after {timeout_seconds}s")
