from typing import Any, Dict, List
import json
import re

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

EMPTY_MODEL_MESSAGE = "No response generated."

_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL | re.IGNORECASE)
_ACTIONS_ARRAY = re.compile(r'"actions"\s*:\s*\[([\s\S]*?)\]')
_MESSAGE_FIELD = re.compile(r'"message"\s*:\s*"((?:[^"\\]|\\.)*)"')
_LINE_COMMENT = re.compile(r"//.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")


class ParsedResponse(BaseModel):
    """Model output split into visible text and requested actions"""
    success: bool = Field(description="True when the output was valid JSON")
    message: str = ""
    actions: List[Any] = Field(default_factory=list)


def _strip_fence(text: str) -> str:
    match = _FENCE.match(text.strip())
    return match.group(1).strip() if match else text.strip()


def _extract_actions(text: str) -> List[Any]:
    match = _ACTIONS_ARRAY.search(text)
    if not match:
        return []
    cleaned = _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", f"[{match.group(1)}]"))
    try:
        extracted = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning("Fallback action extraction failed", error=str(e))
        return []
    return extracted if isinstance(extracted, list) else []


def parse_model_response(raw: str) -> ParsedResponse:
    """Parse either ``{"message": ..., "actions": [...]}`` JSON or plain text"""

    raw = raw or ""
    candidate = _strip_fence(raw)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        message = data.get("message")
        message = message if isinstance(message, str) else str(message or "")
        if message == EMPTY_MODEL_MESSAGE or not message.strip():
            message = ""
        actions = data.get("actions")
        actions = actions if isinstance(actions, list) else []
        if actions:
            logger.debug("Parsed JSON response", actions=len(actions))
        return ParsedResponse(success=True, message=message, actions=actions)

    message = raw.strip()
    actions: List[Any] = []
    if candidate.startswith("{") and '"actions"' in candidate:
        logger.warning("JSON parsing failed with actions present, attempting extraction")
        actions = _extract_actions(candidate)
        if actions:
            match = _MESSAGE_FIELD.search(candidate)
            message = _unescape(match.group(1)) if match else ""
            logger.info("Extracted actions from raw text", actions=len(actions))
    return ParsedResponse(success=False, message=message, actions=actions)


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value


def sanitize_response(text: str, max_length: int = 2000) -> str:
    """Trim whitespace and truncate overlong text with an ellipsis"""

    text = (text or "").strip()
    if len(text) > max_length:
        logger.warning("Response exceeds maximum length, truncating", length=len(text), max_length=max_length)
        text = f"{text[:max_length - 3]}..."
    return text


def triggering_types(actions: List[Dict[str, Any]], is_triggering) -> List[str]:
    """Types of the raw action payloads accepted by ``is_triggering``"""
    return [
        a.get("type") for a in actions
        if isinstance(a, dict) and isinstance(a.get("type"), str) and is_triggering(a["type"])
    ]
