from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from enum import Enum


# Result prefixes read back by the re-query controller and history writer
DATA_PREFIX = "Data:"
FOUND_PREFIX = "Found:"
COMMAND_RESULT_PREFIX = "Command Result:"
COMMAND_ERROR_PREFIX = "Command Error:"
ERROR_PREFIX = "Error:"
SUCCESS_PREFIX = "Success:"

DYNAMIC_FETCH_PREFIX = "get_"


class ActionCategory(str, Enum):
    """Action categories"""
    DATA_FETCH = "data_fetch"
    DATA_RETRIEVE = "data_retrieve"
    COMMAND_EXEC = "command_exec"
    ADMIN = "admin"
    MODERATION = "moderation"


class ResultKind(str, Enum):
    """Classification of an action result string"""
    DATA = "data"
    COMMAND_RESULT = "command_result"
    STATUS = "status"


class Action(BaseModel):
    """A structured instruction emitted by the model"""
    model_config = ConfigDict(extra="allow")

    type: str
    options: Dict[str, Any] = Field(default_factory=dict)
    command: Optional[str] = None
    subcommand: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Action":
        data = dict(payload)
        if data.get("options") is None:
            data["options"] = {}
        return cls.model_validate(data)

    def command_label(self) -> str:
        """Slash-command rendering used in history markers"""
        label = f"/{self.command}"
        if self.subcommand:
            label += f" {self.subcommand}"
        parts = []
        for key, value in self.options.items():
            if isinstance(value, (list, tuple)):
                parts.append(f"{key}:{','.join(str(v) for v in value)}")
            else:
                parts.append(f"{key}:{value}")
        if parts:
            label += " " + " ".join(parts)
        return label


class ActionSpec(BaseModel):
    """Registry entry describing how an action tag is validated and routed"""
    model_config = ConfigDict(frozen=True)

    type: str
    category: ActionCategory
    requires_scope: bool = True
    triggers_requery: bool = False
    blocked: bool = False
    block_reason: Optional[str] = None
    requires_options: bool = False
    required_all: List[str] = Field(default_factory=list, description="Option keys that must all be present")
    required_any: List[str] = Field(default_factory=list, description="Option keys of which one must be present")
    description: str = ""


class ValidationResult(BaseModel):
    """Outcome of validating one action"""
    is_valid: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def fail(cls, error: str) -> "ValidationResult":
        return cls(is_valid=False, error=error)


class ExecutionReport(BaseModel):
    """Result strings of one executed batch, in action order"""
    results: List[str] = Field(default_factory=list)

    def of_kind(self, kind: "ResultKind") -> List[str]:
        return [r for r in self.results if classify_result(r) == kind]


class CommandRequest(BaseModel):
    """Parsed delegated-command descriptor handed to the command executor"""
    command_name: str
    subcommand: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    actor_id: str
    scope_id: Optional[str] = None


class CommandOutcome(BaseModel):
    success: bool
    error: Optional[str] = None


def classify_result(result: str) -> ResultKind:
    """Classify a result string by its leading prefix"""

    if result.startswith(DATA_PREFIX) or result.startswith(FOUND_PREFIX):
        return ResultKind.DATA
    if result.startswith(COMMAND_RESULT_PREFIX):
        return ResultKind.COMMAND_RESULT
    return ResultKind.STATUS
