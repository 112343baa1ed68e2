"""Data models and schemas for the NIM proxy."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class ChatCompletionRequest(BaseModel):
    """Inbound chat completion request. Fields not listed here are ignored."""
    model: str
    messages: Any = None
    temperature: Any = None
    max_tokens: Any = None
    stream: Optional[bool] = None


class Message(BaseModel):
    """Chat message model."""
    role: Optional[str] = "assistant"
    content: str = ""


class Choice(BaseModel):
    """Choice model for non-streamed chat completions."""
    index: Optional[int] = None
    message: Message
    finish_reason: Optional[str] = None


class ChatCompletionResponse(BaseModel):
    """Response model for chat completions."""
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Dict[str, Any]


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str = "nvidia-nim-proxy"


class ModelList(BaseModel):
    object: str = "list"
    data: List[ModelCard]


class ErrorDetail(BaseModel):
    message: str
    type: str = "invalid_request_error"
    code: int


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
