from typing import Any, Dict, List, Optional

import structlog
from langchain.chat_models import init_chat_model
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from chat_orchestrator.domain.collaborators import ModelClient
from chat_orchestrator.domain.models.conversation import (
    GenerationConfig, Message, ModelResult, Role
)

logger = structlog.get_logger(__name__)


def to_langchain_messages(prompt: List[Message]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for message in prompt:
        if message.role == Role.SYSTEM:
            converted.append(SystemMessage(content=message.content))
        elif message.role == Role.USER:
            converted.append(HumanMessage(content=message.content))
        else:
            converted.append(AIMessage(content=message.content))
    return converted


class LangChainModelClient(ModelClient):
    """Adapter from any langchain chat model to the orchestrator's model boundary.

    ``json_mode_kwargs`` are bound when a structured response is requested,
    e.g. ``{"response_format": {"type": "json_object"}}`` for OpenAI models.
    """

    def __init__(self, chat_model: BaseChatModel, json_mode_kwargs: Optional[Dict[str, Any]] = None):
        self.chat_model = chat_model
        self.json_mode_kwargs = json_mode_kwargs or {}

    async def generate(self, prompt: List[Message], config: GenerationConfig) -> ModelResult:
        kwargs: Dict[str, Any] = {"temperature": config.temperature, "max_tokens": config.max_tokens}
        if config.force_json:
            kwargs.update(self.json_mode_kwargs)

        response = await self.chat_model.bind(**kwargs).ainvoke(to_langchain_messages(prompt))

        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        usage = dict(getattr(response, "usage_metadata", None) or {})
        model = (getattr(response, "response_metadata", None) or {}).get("model_name")
        logger.debug("Model call completed", model=model, chars=len(content), usage=usage)
        return ModelResult(text=content, usage=usage, model=model)


def build_chat_model(model_name: str, model_provider: str) -> BaseChatModel:
    """Instantiate a provider chat model by name; the provider package must be installed"""

    return init_chat_model(model_name, model_provider=model_provider)
