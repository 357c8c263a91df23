"""Tests for the LLM provider abstraction layer."""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from google.genai import errors as genai_errors

from paperscope.errors import (
    ContentRejected,
    CredentialMissing,
    MalformedResponse,
    NetworkUnreachable,
    RateLimited,
    RequestTimeout,
    UpstreamUnavailable,
)
from paperscope.llm_providers import (
    ExternalProvider,
    LLMProvider,
    ManagedProvider,
    normalize_chat_url,
    resolve_provider,
    to_data_uri,
)
from paperscope.models import LLMSettings

EXTERNAL = LLMSettings(
    use_external=True,
    base_url="https://llm.example.com/v1",
    api_key="sk-test",
    model="gpt-test",
    temperature=0.2,
)


def _chat_response(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ============================================================================
# Helpers
# ============================================================================


class TestNormalizeChatUrl:
    @pytest.mark.parametrize(
        ("base", "expected"),
        [
            ("https://api.x.com/v1", "https://api.x.com/v1/chat/completions"),
            ("https://api.x.com/v1/", "https://api.x.com/v1/chat/completions"),
            (" https://api.x.com/v1/chat/completions ", "https://api.x.com/v1/chat/completions"),
        ],
    )
    def test_suffix_added_once(self, base, expected):
        assert normalize_chat_url(base) == expected


def test_to_data_uri():
    uri = to_data_uri(b"%PDF-1.4")
    assert uri.startswith("data:application/pdf;base64,")
    assert base64.b64decode(uri.split(",", 1)[1]) == b"%PDF-1.4"


def test_to_data_uri_custom_mime():
    assert to_data_uri(b"\x89PNG", "image/png").startswith("data:image/png;base64,")


# ============================================================================
# ExternalProvider
# ============================================================================


class TestExternalProvider:
    def test_requires_api_key(self):
        with pytest.raises(CredentialMissing):
            ExternalProvider(replace(EXTERNAL, api_key=""), httpx.AsyncClient())

    def test_satisfies_protocol(self):
        assert isinstance(ExternalProvider(EXTERNAL, httpx.AsyncClient()), LLMProvider)

    def test_payload_without_document(self):
        provider = ExternalProvider(EXTERNAL, httpx.AsyncClient())
        payload = provider.build_payload("hello")
        assert payload["model"] == "gpt-test"
        assert payload["temperature"] == 0.2
        assert payload["messages"] == [{"role": "user", "content": "hello"}]
        assert payload["response_format"] == {"type": "json_object"}

    def test_payload_with_document(self):
        provider = ExternalProvider(EXTERNAL, httpx.AsyncClient())
        content = provider.build_payload("read this", b"%PDF")["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "read this"}
        assert content[1]["type"] == "image_url"
        assert content[1]["image_url"]["url"] == to_data_uri(b"%PDF")

    async def test_success(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_chat_response('{"title": "T"}'))

        async with _client(handler) as client:
            text = await ExternalProvider(EXTERNAL, client).generate("p", document=b"%PDF")

        assert text == '{"title": "T"}'
        assert str(seen[0].url) == "https://llm.example.com/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer sk-test"
        body = json.loads(seen[0].content)
        assert body["messages"][0]["content"][0]["text"] == "p"

    @pytest.mark.parametrize(
        ("status", "expected"),
        [(401, CredentialMissing), (429, RateLimited), (503, UpstreamUnavailable)],
    )
    async def test_http_errors_are_classified(self, status, expected):
        async with _client(lambda request: httpx.Response(status, text="nope")) as client:
            with pytest.raises(expected):
                await ExternalProvider(EXTERNAL, client).generate("p")

    async def test_safety_rejection(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "blocked by safety system"}})

        async with _client(handler) as client:
            with pytest.raises(ContentRejected):
                await ExternalProvider(EXTERNAL, client).generate("p")

    async def test_overall_timeout(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json=_chat_response("{}"))

        async with _client(handler) as client:
            provider = ExternalProvider(replace(EXTERNAL, timeout=0.05), client)
            with pytest.raises(RequestTimeout, match="no response after"):
                await provider.generate("p")

    async def test_transport_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(RequestTimeout):
                await ExternalProvider(EXTERNAL, client).generate("p")

    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(NetworkUnreachable):
                await ExternalProvider(EXTERNAL, client).generate("p")

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"choices": []}),
            httpx.Response(200, json=_chat_response("   ")),
        ],
    )
    async def test_unusable_body(self, response):
        async with _client(lambda request: response) as client:
            with pytest.raises(MalformedResponse):
                await ExternalProvider(EXTERNAL, client).generate("p")


# ============================================================================
# ManagedProvider
# ============================================================================


def _fake_genai(response=None, *, side_effect=None) -> tuple[SimpleNamespace, AsyncMock]:
    generate = AsyncMock(return_value=response, side_effect=side_effect)
    client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate)))
    return client, generate


def _genai_response(text="", *, block_reason=None, finish_reason=None) -> SimpleNamespace:
    return SimpleNamespace(
        text=text,
        prompt_feedback=SimpleNamespace(block_reason=block_reason) if block_reason else None,
        candidates=[SimpleNamespace(finish_reason=finish_reason)] if finish_reason else [],
    )


class TestManagedProvider:
    def test_requires_key_without_client(self):
        with pytest.raises(CredentialMissing):
            ManagedProvider(None, "gemini-test")

    async def test_success_sends_document_and_prompt(self):
        client, generate = _fake_genai(_genai_response('{"title": "T"}'))
        provider = ManagedProvider(None, "gemini-test", client=client)

        text = await provider.generate("prompt", document=b"%PDF", schema={"type": "OBJECT"})

        assert text == '{"title": "T"}'
        kwargs = generate.await_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert len(kwargs["contents"]) == 2
        assert kwargs["contents"][-1] == "prompt"
        assert kwargs["config"].response_mime_type == "application/json"

    async def test_prompt_only(self):
        client, generate = _fake_genai(_genai_response("{}"))
        await ManagedProvider(None, "m", client=client).generate("only text")
        assert generate.await_args.kwargs["contents"] == ["only text"]

    async def test_blocked_prompt(self):
        client, _ = _fake_genai(_genai_response(block_reason="SAFETY"))
        with pytest.raises(ContentRejected, match="prompt blocked"):
            await ManagedProvider(None, "m", client=client).generate("p")

    async def test_blocked_candidate(self):
        client, _ = _fake_genai(_genai_response("partial", finish_reason="PROHIBITED_CONTENT"))
        with pytest.raises(ContentRejected, match="response blocked"):
            await ManagedProvider(None, "m", client=client).generate("p")

    async def test_normal_finish_is_not_blocked(self):
        client, _ = _fake_genai(_genai_response('{"a": 1}', finish_reason="STOP"))
        assert await ManagedProvider(None, "m", client=client).generate("p") == '{"a": 1}'

    async def test_empty_text(self):
        client, _ = _fake_genai(_genai_response(""))
        with pytest.raises(MalformedResponse):
            await ManagedProvider(None, "m", client=client).generate("p")

    async def test_timeout_cap(self):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=slow)))
        provider = ManagedProvider(None, "m", client=client, timeout=0.05)
        with pytest.raises(RequestTimeout):
            await provider.generate("p")

    async def test_api_error_is_classified(self):
        error = genai_errors.ClientError(
            429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}}
        )
        client, _ = _fake_genai(side_effect=error)
        with pytest.raises(RateLimited):
            await ManagedProvider(None, "m", client=client).generate("p")

    async def test_transport_error(self):
        client, _ = _fake_genai(side_effect=httpx.ConnectError("down"))
        with pytest.raises(NetworkUnreachable):
            await ManagedProvider(None, "m", client=client).generate("p")


# ============================================================================
# resolve_provider
# ============================================================================


class TestResolveProvider:
    def test_external_mode(self):
        provider = resolve_provider(EXTERNAL, http_client=httpx.AsyncClient(), managed_api_key=None)
        assert isinstance(provider, ExternalProvider)

    def test_external_mode_ignores_managed_key(self):
        with pytest.raises(CredentialMissing):
            resolve_provider(
                replace(EXTERNAL, api_key=""),
                http_client=httpx.AsyncClient(),
                managed_api_key="managed-key",
            )

    def test_managed_mode_without_key(self):
        with pytest.raises(CredentialMissing):
            resolve_provider(LLMSettings(), http_client=httpx.AsyncClient(), managed_api_key=None)

    def test_managed_mode_with_key(self):
        provider = resolve_provider(
            LLMSettings(), http_client=httpx.AsyncClient(), managed_api_key="managed-key"
        )
        assert isinstance(provider, ManagedProvider)
