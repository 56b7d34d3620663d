from typing import Optional
from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """One user turn"""
    user_id: str = Field(min_length=1)
    scope_id: Optional[str] = Field(None, description="Guild id; omit for direct conversations")
    message: str = Field(min_length=1)
    locale: Optional[str] = None


class ChatResponse(BaseModel):
    """Final reply; empty when the reply was produced by an executed command"""
    response: str


class ClearHistoryResponse(BaseModel):
    cleared: bool = True
    user_id: str
    scope_id: Optional[str] = None
