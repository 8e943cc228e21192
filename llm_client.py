#!/usr/bin/env python3
"""Async OpenAI-compatible helper providing `chat_completion`.

Sends one POST {url}/v1/chat/completions with Bearer auth and returns the reply
text. There is no retry: the SDK's own retries are disabled and any failure is
raised as SummarizationError."""
from __future__ import annotations
from typing import List, Dict, Any, Optional, Tuple

from openai import AsyncOpenAI, APIStatusError, OpenAIError

from config import OpenAISettings, get_logger
from errors import SummarizationError

logger = get_logger("llm_client")

_clients: Dict[Tuple[str, str, float], AsyncOpenAI] = {}


def _get_client(settings: OpenAISettings, timeout: float) -> AsyncOpenAI:
    """Instantiate and cache an async client per endpoint/token/timeout."""
    key = (settings.url, settings.token, float(timeout))
    client = _clients.get(key)
    if client is None:
        client = AsyncOpenAI(
            api_key=settings.token,
            base_url=f"{settings.url.rstrip('/')}/v1",
            timeout=timeout,
            max_retries=0,
        )
        _clients[key] = client
    return client


def _extract_text(choice: Any) -> str:
    """Normalize a choice's message content (string or list of text parts) to text."""
    message = getattr(choice, "message", None) if not isinstance(choice, dict) else choice.get("message")
    if message is None:
        return ""
    content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: List[str] = []
        for part in content:
            txt = part.get("text") if isinstance(part, dict) else getattr(part, "text", None)
            if isinstance(txt, str) and txt.strip():
                texts.append(txt)
        return "\n".join(texts)
    return ""


async def chat_completion(
    settings: OpenAISettings,
    messages: List[Dict[str, str]],
    *,
    timeout: float = 60,
    client_override: Optional[Any] = None,
) -> str:
    """Execute one chat completion and return the first choice's text.

    The text is returned as the model produced it, whitespace included; deciding
    what an empty or blank summary means is up to the caller. Raises SummarizationError on transport errors, non-2xx
    responses (carrying the response body) and replies without choices.
    """
    if not messages:
        raise SummarizationError("chat_completion called without messages")

    client = client_override or _get_client(settings, timeout)
    try:
        resp = await client.chat.completions.create(model=settings.model, messages=messages)
    except APIStatusError as e:
        body = e.response.text if getattr(e, "response", None) is not None else str(e)
        logger.warning("Chat completion failed: HTTP %s %s", e.status_code, body[:500])
        raise SummarizationError(f"Error: {body!r}", status=e.status_code, body=body) from e
    except OpenAIError as e:
        logger.warning("Chat completion request error: %s", e)
        raise SummarizationError(f"Chat completion request failed: {e}") from e

    choices = getattr(resp, "choices", None) or []
    if not choices:
        logger.error("No choices in chat completion response: %s", resp)
        raise SummarizationError("Chat completion response contained no choices")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else getattr(first, "message", None)
    if message is None:
        raise SummarizationError("Chat completion choice has no message")
    return _extract_text(first)


__all__ = ["chat_completion"]
