"""Request and response translation between the OpenAI and NIM schemas."""

import time
import uuid
from typing import Any, Dict

from .config import Settings
from .models import ChatCompletionRequest, ChatCompletionResponse, Choice, Message
from .resolver import Resolution
from .utils import pop_reasoning, wrap_reasoning

EMPTY_USAGE = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def build_backend_request(
    request: ChatCompletionRequest, resolution: Resolution, settings: Settings
) -> Dict[str, Any]:
    """
    Map an inbound request onto the NIM request schema.

    Messages are forwarded untouched. Temperature and max_tokens fall back to
    the configured defaults only when the client left them out.
    """
    payload = {
        "model": resolution.backend_model,
        "messages": request.messages,
        "temperature": (
            request.temperature
            if request.temperature is not None
            else settings.default_temperature
        ),
        "max_tokens": (
            request.max_tokens
            if request.max_tokens is not None
            else settings.default_max_tokens
        ),
        "stream": bool(request.stream),
    }
    if settings.enable_thinking_mode:
        payload["chat_template_kwargs"] = {"thinking": True}
    return payload


def build_chat_response(
    backend_response: Dict[str, Any], requested_model: str, settings: Settings
) -> Dict[str, Any]:
    """
    Reshape a non-streamed NIM response into an OpenAI chat completion.

    Args:
        backend_response: Decoded JSON body returned by the backend
        requested_model: The model id the client asked for, echoed back
        settings: Supplies the reasoning display toggle

    Returns:
        The response envelope as a plain dict
    """
    choices = []
    for choice in backend_response.get("choices") or []:
        message = dict(choice.get("message") or {})
        reasoning = pop_reasoning(message)
        content = message.get("content") or ""
        if settings.show_reasoning:
            content = wrap_reasoning(reasoning, content)

        choices.append(
            Choice(
                index=choice.get("index"),
                message=Message(role=message.get("role") or "assistant", content=content),
                finish_reason=choice.get("finish_reason"),
            )
        )

    response = ChatCompletionResponse(
        id=f"chatcmpl-{uuid.uuid4().hex}",
        created=int(time.time()),
        model=requested_model,
        choices=choices,
        usage=backend_response.get("usage") or dict(EMPTY_USAGE),
    )
    return response.model_dump()
