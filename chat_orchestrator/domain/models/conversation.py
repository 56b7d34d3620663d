from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from enum import Enum


DIRECT_SCOPE = "dm"
SUMMARY_PREFIX = "Previous conversation summary:"


class Role(str, Enum):
    """Message author role"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A single entry of a conversation log"""
    role: Role
    content: str = ""

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM

    @property
    def is_summary(self) -> bool:
        return self.is_system and self.content.startswith(SUMMARY_PREFIX)

    def to_record(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ConversationIdentity(BaseModel):
    """Composite key of user and scope (guild or direct)"""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(description="User identifier")
    scope_id: Optional[str] = Field(None, description="Guild identifier, None for direct conversations")

    @property
    def scope_key(self) -> str:
        return self.scope_id or DIRECT_SCOPE

    @property
    def key(self) -> str:
        return f"{self.user_id}:{self.scope_key}"

    def __str__(self) -> str:
        return self.key


class Conversation(BaseModel):
    """In-memory conversation entry"""
    identity: ConversationIdentity
    messages: List[Message] = Field(default_factory=list)
    last_activity: float = Field(description="Epoch seconds of the last append")

    @property
    def system_message(self) -> Optional[Message]:
        if self.messages and self.messages[0].is_system:
            return self.messages[0]
        return None

    def non_system_messages(self) -> List[Message]:
        return [m for m in self.messages if not m.is_system]


class ConversationRecord(BaseModel):
    """Durable representation of a conversation (never contains system messages)"""
    user_id: str
    scope_id: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    last_activity: float
    updated_at: Optional[float] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "guildId": self.scope_id,
            "messages": [m.to_record() for m in self.messages],
            "lastActivity": self.last_activity,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ConversationRecord":
        return cls(
            user_id=str(document["userId"]),
            scope_id=document.get("guildId"),
            messages=[
                Message.model_validate(m) for m in document.get("messages") or []
            ],
            last_activity=float(document["lastActivity"]),
            updated_at=document.get("updatedAt"),
        )


class TurnContext(BaseModel):
    """Everything a single user turn needs after the prompt is assembled"""
    user_id: str
    scope_id: Optional[str] = None
    user_text: str
    locale: str = "en-US"
    wants_detail: bool = False
    system_context: str = ""

    @property
    def identity(self) -> ConversationIdentity:
        return ConversationIdentity(user_id=self.user_id, scope_id=self.scope_id)


class GenerationConfig(BaseModel):
    """Sampling parameters passed to the model collaborator"""
    temperature: float = 0.7
    max_tokens: int = 600
    force_json: bool = Field(False, description="Request the structured action-bearing format")


class ModelResult(BaseModel):
    """Text returned by the model plus provider usage info"""
    text: str = ""
    usage: Dict[str, Any] = Field(default_factory=dict)
    model: Optional[str] = None
