"""Chat completions client for the route assistant, on the OpenAI SDK."""

from __future__ import annotations

import logging
from typing import Sequence

import httpx
from openai import APIStatusError, OpenAI, OpenAIError
from openai.types.chat import ChatCompletionMessage

from ...config import settings
from ...errors import ProviderError

logger = logging.getLogger(__name__)


class ChatCompletionsClient:
    """Any OpenAI-compatible endpoint; `base_url` selects the server."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise ValueError("Chat completions API key is not configured.")
        self.model = model or settings.openai_model
        self.temperature = settings.openai_temperature if temperature is None else temperature
        self._client = OpenAI(
            api_key=api_key,
            base_url=(base_url or settings.openai_base_url).rstrip("/"),
            timeout=httpx.Timeout(timeout or settings.openai_timeout_seconds, connect=10.0),
            max_retries=settings.openai_max_retries if max_retries is None else max_retries,
            http_client=http_client,
        )

    def complete(self, messages: Sequence[dict], tools: Sequence[dict]) -> ChatCompletionMessage:
        """Send one chat turn and return the assistant message."""
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=list(messages),
                tools=list(tools),
                tool_choice="auto",
                temperature=self.temperature,
            )
        except APIStatusError as exc:
            raise ProviderError(f"Chat completions returned {exc.status_code}") from exc
        except OpenAIError as exc:
            raise ProviderError(f"Chat completions request failed: {exc}") from exc
        except (TypeError, ValueError, RuntimeError) as exc:
            raise ProviderError(f"Chat completions returned an unreadable response: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        if not isinstance(message, ChatCompletionMessage):
            raise ProviderError("Chat completions response has no message")
        logger.debug(f"Chat completions usage: {getattr(response, 'usage', None)}")
        return message
