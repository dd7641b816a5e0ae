"""
Chat-completion adapters for OpenAI, Claude and Gemini.

All adapters accept OpenAI-style chat messages (string content, or a list of
``text`` / ``image_url`` parts) and return the completion text. Provider
failures surface as ``UpstreamError`` with a kind the web layer can map to a
user-facing message.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import anthropic
import google.generativeai as genai
import httpx
import openai
from anthropic import AsyncAnthropic
from google.api_core import exceptions as google_exceptions
from openai import AsyncOpenAI

from flowinvest.config import Settings
from flowinvest.exceptions import UpstreamError

logger = logging.getLogger(__name__)

Message = dict[str, Any]

JSON_ONLY_INSTRUCTION = "Respond with a single JSON object and no other text."


class LLMClient(Protocol):
    provider: str
    model: str

    async def complete(
        self,
        messages: list[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
        model: str | None = None,
    ) -> str: ...


def split_data_url(url: str) -> tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a ``data:`` URL."""
    header, _, payload = url.partition(",")
    mime_type = header.removeprefix("data:").split(";")[0] or "application/octet-stream"
    return mime_type, payload


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    return "\n".join(part.get("text", "") for part in content if part.get("type") == "text")


def _sdk_error(exc: Exception, sdk: Any) -> UpstreamError:
    # openai and anthropic share their exception class names
    if isinstance(exc, sdk.RateLimitError):
        kind = "rate_limit"
    elif isinstance(exc, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
        kind = "invalid_key"
    elif isinstance(exc, sdk.NotFoundError):
        kind = "model_not_found"
    elif isinstance(exc, sdk.APITimeoutError):
        kind = "timeout"
    elif isinstance(exc, sdk.APIConnectionError):
        kind = "network"
    else:
        kind = "upstream"
    return UpstreamError(kind, details=str(exc))


def _google_error(exc: Exception) -> UpstreamError:
    if isinstance(exc, google_exceptions.ResourceExhausted):
        kind = "rate_limit"
    elif isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
        kind = "invalid_key"
    elif isinstance(exc, google_exceptions.NotFound):
        kind = "model_not_found"
    elif isinstance(exc, google_exceptions.DeadlineExceeded):
        kind = "timeout"
    else:
        kind = "upstream"
    return UpstreamError(kind, details=str(exc))


def _require_text(text: str | None, provider: str) -> str:
    if not text or not text.strip():
        raise UpstreamError("upstream", details=f"Empty response from {provider}")
    return text


@dataclass
class OpenAIChatClient:
    api_key: str
    model: str = "gpt-4o"
    timeout: float = 60.0
    provider: str = "openai"

    async def complete(
        self,
        messages: list[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
        model: str | None = None,
    ) -> str:
        client = AsyncOpenAI(api_key=self.api_key, timeout=httpx.Timeout(self.timeout, connect=10.0))
        kwargs: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            resp = await client.chat.completions.create(**kwargs)
        except openai.APIError as exc:
            logger.error("OpenAI request failed: %s", exc)
            raise _sdk_error(exc, openai) from exc
        return _require_text(resp.choices[0].message.content, self.provider)


def _anthropic_part(part: dict[str, Any]) -> dict[str, Any]:
    if part.get("type") != "image_url":
        return {"type": "text", "text": part.get("text", "")}
    mime_type, payload = split_data_url(part["image_url"]["url"])
    block_type = "document" if mime_type == "application/pdf" else "image"
    return {"type": block_type, "source": {"type": "base64", "media_type": mime_type, "data": payload}}


@dataclass
class AnthropicChatClient:
    api_key: str
    model: str = "claude-sonnet-4-5-20250929"
    timeout: float = 60.0
    provider: str = "anthropic"

    async def complete(
        self,
        messages: list[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
        model: str | None = None,
    ) -> str:
        client = AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        system_parts = [_text_of(m["content"]) for m in messages if m["role"] == "system"]
        if json_mode:
            system_parts.append(JSON_ONLY_INSTRUCTION)
        converted = []
        for message in messages:
            if message["role"] == "system":
                continue
            content = message["content"]
            if not isinstance(content, str):
                content = [_anthropic_part(part) for part in content]
            converted.append({"role": message["role"], "content": content})

        kwargs: dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": converted,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            msg = await client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            logger.error("Anthropic request failed: %s", exc)
            raise _sdk_error(exc, anthropic) from exc
        return _require_text(msg.content[0].text, self.provider)  # type: ignore[union-attr]


def _gemini_parts(messages: list[Message]) -> list[Any]:
    parts: list[Any] = []
    for message in messages:
        if message["role"] == "system":
            continue
        content = message["content"]
        if isinstance(content, str):
            parts.append(content)
            continue
        for part in content:
            if part.get("type") == "image_url":
                mime_type, payload = split_data_url(part["image_url"]["url"])
                parts.append({"mime_type": mime_type, "data": base64.b64decode(payload)})
            else:
                parts.append(part.get("text", ""))
    return parts


@dataclass
class GeminiChatClient:
    api_key: str
    model: str = "gemini-2.5-pro"
    timeout: float = 60.0
    provider: str = "google"

    async def complete(
        self,
        messages: list[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
        model: str | None = None,
    ) -> str:
        genai.configure(api_key=self.api_key)
        system = "\n\n".join(_text_of(m["content"]) for m in messages if m["role"] == "system") or None
        generation_config: dict[str, Any] = {"temperature": temperature, "max_output_tokens": max_tokens}
        if json_mode:
            generation_config["response_mime_type"] = "application/json"
        parts = _gemini_parts(messages)

        # google-generativeai does not expose async; run in a thread
        loop = asyncio.get_running_loop()

        def _sync_call() -> str:
            gemini = genai.GenerativeModel(model or self.model, system_instruction=system)
            resp = gemini.generate_content(parts, generation_config=generation_config)
            return resp.text

        try:
            text = await asyncio.wait_for(loop.run_in_executor(None, _sync_call), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamError("timeout", details=f"Gemini call exceeded {self.timeout}s") from exc
        except google_exceptions.GoogleAPIError as exc:
            logger.error("Gemini request failed: %s", exc)
            raise _google_error(exc) from exc
        except ValueError as exc:
            # resp.text raises when the candidate was blocked
            raise UpstreamError("upstream", details=str(exc)) from exc
        return _require_text(text, self.provider)


def build_llm_client(settings: Settings) -> LLMClient:
    """Instantiate the adapter selected by ``LLM_PROVIDER``."""
    adapters = {
        "openai": (OpenAIChatClient, settings.OPENAI_API_KEY),
        "anthropic": (AnthropicChatClient, settings.ANTHROPIC_API_KEY),
        "google": (GeminiChatClient, settings.GOOGLE_AI_API_KEY),
    }
    adapter, api_key = adapters[settings.LLM_PROVIDER]
    if not api_key:
        raise UpstreamError("invalid_key", details=f"No API key configured for {settings.LLM_PROVIDER}")

    kwargs: dict[str, Any] = {"api_key": api_key, "timeout": settings.LLM_TIMEOUT_SECONDS}
    if settings.LLM_MODEL:
        kwargs["model"] = settings.LLM_MODEL
    client = adapter(**kwargs)
    logger.debug("Using %s model %s", client.provider, client.model)
    return client
