"""LLM provider abstraction: Protocol + managed (Gen AI SDK) and external (OpenAI-compatible)."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Protocol, runtime_checkable

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from paperscope.errors import (
    ContentRejected,
    CredentialMissing,
    MalformedResponse,
    NetworkUnreachable,
    RequestTimeout,
    error_for_status,
)
from paperscope.models import MANAGED_TIMEOUT_SECONDS, PDF_MIME_TYPE, LLMSettings

logger = logging.getLogger(__name__)

_CHAT_COMPLETIONS_SUFFIX = "/chat/completions"
_BLOCKED_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"})


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM providers. Any class with this signature is compatible.

    Implementations return the raw response text and raise a classified
    PaperScopeError on failure.
    """

    async def generate(
        self,
        prompt: str,
        *,
        document: bytes | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str: ...


def normalize_chat_url(base_url: str) -> str:
    """Append ``/chat/completions`` to an OpenAI-compatible base URL if missing."""
    url = base_url.strip()
    if url.endswith(_CHAT_COMPLETIONS_SUFFIX):
        return url
    return url.rstrip("/") + _CHAT_COMPLETIONS_SUFFIX


def to_data_uri(data: bytes, mime_type: str = PDF_MIME_TYPE) -> str:
    """Encode bytes as a base64 data URI."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class ExternalProvider:
    """User-configured OpenAI-compatible chat completions endpoint.

    The whole request is bounded by ``settings.timeout``; on expiry the
    in-flight request is cancelled and RequestTimeout is raised.
    """

    __slots__ = ("_client", "_settings")

    def __init__(self, settings: LLMSettings, client: httpx.AsyncClient) -> None:
        if not settings.api_key:
            raise CredentialMissing("external API key is not configured")
        self._settings = settings
        self._client = client

    @property
    def url(self) -> str:
        return normalize_chat_url(self._settings.base_url)

    def build_payload(self, prompt: str, document: bytes | None = None) -> dict[str, Any]:
        content: str | list[dict[str, Any]]
        if document is None:
            content = prompt
        else:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": to_data_uri(document)}},
            ]
        return {
            "model": self._settings.model,
            "temperature": self._settings.temperature,
            "messages": [{"role": "user", "content": content}],
            "response_format": {"type": "json_object"},
        }

    async def generate(
        self,
        prompt: str,
        *,
        document: bytes | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str:
        """POST the prompt (and document) and return the first choice's content."""
        payload = self.build_payload(prompt, document)
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}
        timeout = self._settings.timeout
        try:
            response = await asyncio.wait_for(
                self._client.post(self.url, json=payload, headers=headers, timeout=None),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise RequestTimeout(f"no response after {timeout}s") from e
        except httpx.TimeoutException as e:
            raise RequestTimeout(str(e)) from e
        except httpx.TransportError as e:
            raise NetworkUnreachable(str(e)) from e

        if response.status_code >= 400:
            raise error_for_status(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse("endpoint returned non-JSON body") from e
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponse("endpoint response has no message content") from e
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponse("empty response from external model")
        return text


class ManagedProvider:
    """First-party model via the Google Gen AI SDK with a backend-supplied key.

    The SDK has no bounded timeout of its own here, so every call is capped
    at ``timeout`` seconds.
    """

    __slots__ = ("_client", "_model", "_timeout")

    def __init__(
        self,
        api_key: str | None,
        model: str,
        *,
        client: Any = None,
        timeout: int = MANAGED_TIMEOUT_SECONDS,
    ) -> None:
        if client is None:
            if not api_key:
                raise CredentialMissing("no API key available from the backend")
            client = genai.Client(api_key=api_key)
        self._client = client
        self._model = model
        self._timeout = timeout

    async def generate(
        self,
        prompt: str,
        *,
        document: bytes | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str:
        """Call generate_content and return the response text."""
        contents: list[Any] = []
        if document is not None:
            contents.append(genai_types.Part.from_bytes(data=document, mime_type=PDF_MIME_TYPE))
        contents.append(prompt)
        config = genai_types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=schema,
        )
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model,
                    contents=contents,
                    config=config,
                ),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise RequestTimeout(f"no response after {self._timeout}s") from e
        except genai_errors.APIError as e:
            raise error_for_status(int(e.code or 0), str(e.message or e)) from e
        except httpx.TimeoutException as e:
            raise RequestTimeout(str(e)) from e
        except httpx.TransportError as e:
            raise NetworkUnreachable(str(e)) from e

        _raise_if_blocked(response)
        text = getattr(response, "text", None)
        if not text:
            raise MalformedResponse("no response text from model")
        return text


def _reason_name(value: Any) -> str:
    return str(getattr(value, "name", value) or "")


def _raise_if_blocked(response: Any) -> None:
    """Raise ContentRejected when the prompt or first candidate was blocked."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        raise ContentRejected(f"prompt blocked: {_reason_name(block_reason)}")
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        finish = _reason_name(getattr(candidates[0], "finish_reason", None))
        if finish in _BLOCKED_FINISH_REASONS:
            raise ContentRejected(f"response blocked: {finish}")


def resolve_provider(
    settings: LLMSettings,
    *,
    http_client: httpx.AsyncClient,
    managed_api_key: str | None,
) -> LLMProvider:
    """Create the provider selected by settings.

    Raises CredentialMissing when the selected mode has no usable key.
    """
    if settings.use_external:
        return ExternalProvider(settings, http_client)
    return ManagedProvider(managed_api_key, settings.model)


__all__ = [
    "ExternalProvider",
    "LLMProvider",
    "ManagedProvider",
    "normalize_chat_url",
    "resolve_provider",
    "to_data_uri",
]
