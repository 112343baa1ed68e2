"""Reasoning markers and the splice policy shared by both response paths."""

from typing import Any, Dict, Optional

THINK_OPEN = "<think>\n"
THINK_CLOSE = "</think>\n\n"

# NIM models report deliberation under either name
REASONING_FIELDS = ("reasoning_content", "reasoning")


def pop_reasoning(payload: Dict[str, Any]) -> Optional[str]:
    """
    Remove every reasoning field from a delta or message dict.

    Returns the first non-empty reasoning text found, or None.
    """
    reasoning = None
    for field in REASONING_FIELDS:
        value = payload.pop(field, None)
        if reasoning is None and isinstance(value, str) and value:
            reasoning = value
    return reasoning


def splice_reasoning(
    delta: Dict[str, Any], reasoning_open: bool, show_reasoning: bool
) -> bool:
    """
    Fold a streamed delta's reasoning into its content, in place.

    With show_reasoning off, content becomes the plain content value ("" when
    absent) and reasoning is discarded. With it on, the first reasoning of a
    message opens a <think> block, later reasoning continues it, and the next
    content closes it before being appended.

    Args:
        delta: The parsed choices[0].delta of one stream event
        reasoning_open: Whether a <think> block is currently open
        show_reasoning: The reasoning display toggle

    Returns:
        The new reasoning_open value
    """
    reasoning = pop_reasoning(delta)
    content = delta.get("content")

    if not show_reasoning:
        delta["content"] = content or ""
        return reasoning_open

    combined = ""
    if reasoning and not reasoning_open:
        combined = THINK_OPEN + reasoning
        reasoning_open = True
    elif reasoning:
        combined = reasoning

    if content and reasoning_open:
        combined += THINK_CLOSE + content
        reasoning_open = False
    elif content:
        combined += content

    if combined:
        delta["content"] = combined
    return reasoning_open


def wrap_reasoning(reasoning: Optional[str], content: str) -> str:
    """Prefix a complete message's content with its reasoning in a <think> block."""
    if not reasoning:
        return content
    return f"{THINK_OPEN}{reasoning}\n{THINK_CLOSE}{content}"
