from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from chat_orchestrator.application.api.schema.chat import (
    ChatRequest, ChatResponse, ClearHistoryResponse
)
from chat_orchestrator.domain.orchestration.core.chat_orchestrator import ChatOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


# REST endpoint for a single turn
@router.post("", response_model=ChatResponse)
async def chat_endpoint(
    request: ChatRequest,
    orchestrator: Annotated[ChatOrchestrator, Depends(get_orchestrator)]
):
    try:
        response = await orchestrator.generate_response(
            request.user_id,
            request.scope_id,
            request.message,
            request.locale
        )
    except Exception as e:
        logger.error("Chat generation failed", user_id=request.user_id, error=str(e))
        raise HTTPException(status_code=502, detail="Model call failed") from e
    return ChatResponse(response=response)


@router.delete("/history/{user_id}", response_model=ClearHistoryResponse)
async def clear_history(
    user_id: str,
    orchestrator: Annotated[ChatOrchestrator, Depends(get_orchestrator)],
    scope_id: Annotated[Optional[str], Query()] = None
):
    await orchestrator.clear_history(user_id, scope_id)
    return ClearHistoryResponse(user_id=user_id, scope_id=scope_id)
