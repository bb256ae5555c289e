"""Tests for the OpenAI-compatible completion client."""
from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List

import httpx
import openai
import pytest

from refinery.errors import ConfigError, NetworkError, UpstreamError
from refinery.events import EventRecorder
from refinery.services import completion
from refinery.services.completion import CompletionClient, CompletionProvider
from refinery.testing import ScriptedCompletionClient

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status: int, message: str) -> openai.APIStatusError:
    return cls(message, response=httpx.Response(status, request=_REQUEST), body=None)


def _response(text: Any, usage: Any = None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=usage,
    )


class _FakeCompletions:
    def __init__(self, outcome: Any):
        self.outcome = outcome
        self.calls: List[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _client_with(outcome: Any, recorder: EventRecorder) -> tuple:
    client = CompletionClient(api_key="sk-test", model="gpt-4o-mini", events=recorder)
    fake = _FakeCompletions(outcome)
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=fake))
    return client, fake


class TestComplete:

    @pytest.mark.asyncio
    async def test_returns_reply_text(self) -> None:
        recorder = EventRecorder()
        client, fake = _client_with(_response("The tides are driven by the moon."), recorder)

        text = await client.complete("Research this topic: tides")

        assert text == "The tides are driven by the moon."
        assert fake.calls == [{
            "model": "gpt-4o-mini",
            "messages": [{"role": "user", "content": "Research this topic: tides"}],
        }]
        assert recorder.names() == ["completion.started", "completion.completed"]

    @pytest.mark.asyncio
    async def test_reports_provider_usage(self) -> None:
        recorder = EventRecorder()
        usage = SimpleNamespace(prompt_tokens=12, completion_tokens=34)
        client, _ = _client_with(_response("ok", usage=usage), recorder)

        await client.complete("prompt")

        detail = recorder.named("completion.completed")[0].detail
        assert detail["input_tokens"] == 12
        assert detail["output_tokens"] == 34

    @pytest.mark.asyncio
    async def test_missing_key_is_config_error(self) -> None:
        recorder = EventRecorder()
        client = CompletionClient(api_key="", events=recorder)

        with pytest.raises(ConfigError, match="API key not configured"):
            await client.complete("prompt")
        assert recorder.names() == ["completion.started", "completion.failed"]

    @pytest.mark.asyncio
    async def test_rejected_key_is_config_error(self) -> None:
        error = _status_error(openai.AuthenticationError, 401, "Incorrect API key provided")
        client, _ = _client_with(error, EventRecorder())

        with pytest.raises(ConfigError, match="Incorrect API key"):
            await client.complete("prompt")

    @pytest.mark.asyncio
    async def test_rate_limit_is_upstream_error(self) -> None:
        recorder = EventRecorder()
        error = _status_error(openai.RateLimitError, 429, "rate limited")
        client, fake = _client_with(error, recorder)

        with pytest.raises(UpstreamError) as excinfo:
            await client.complete("prompt")

        assert excinfo.value.status_code == 429
        assert "rate limited" in excinfo.value.message
        assert len(fake.calls) == 1  # no retry
        failed = recorder.named("completion.failed")[0]
        assert failed.detail["error_kind"] == "upstream_error"

    @pytest.mark.asyncio
    async def test_server_error_is_upstream_error(self) -> None:
        error = _status_error(openai.InternalServerError, 500, "server exploded")
        client, _ = _client_with(error, EventRecorder())

        with pytest.raises(UpstreamError):
            await client.complete("prompt")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        openai.APIConnectionError(request=_REQUEST),
        openai.APITimeoutError(request=_REQUEST),
    ])
    async def test_transport_failure_is_network_error(self, error) -> None:
        client, fake = _client_with(error, EventRecorder())

        with pytest.raises(NetworkError):
            await client.complete("prompt")
        assert len(fake.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, ""])
    async def test_empty_reply_is_upstream_error(self, content) -> None:
        client, _ = _client_with(_response(content), EventRecorder())

        with pytest.raises(UpstreamError, match="empty response"):
            await client.complete("prompt")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        openai.APIResponseValidationError(
            response=httpx.Response(200, request=_REQUEST), body=None, message="unexpected payload"
        ),
        openai.OpenAIError("unexpected payload"),
    ])
    async def test_other_sdk_errors_are_upstream_error(self, error) -> None:
        recorder = EventRecorder()
        client, fake = _client_with(error, recorder)

        with pytest.raises(UpstreamError, match="unexpected payload") as excinfo:
            await client.complete("prompt")

        assert excinfo.value.__cause__ is error
        assert len(fake.calls) == 1
        assert recorder.names() == ["completion.started", "completion.failed"]
        assert recorder.named("completion.failed")[0].detail["error_kind"] == "upstream_error"


class TestClientSetup:

    def test_sdk_retries_disabled(self, monkeypatch) -> None:
        captured = {}

        def _fake_async_openai(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace()

        monkeypatch.setattr(completion, "AsyncOpenAI", _fake_async_openai)
        CompletionClient(api_key="sk-test", base_url="", timeout=30.0)._get_client()

        assert captured["max_retries"] == 0
        assert captured["base_url"] is None
        assert captured["timeout"] == 30.0

    @pytest.mark.asyncio
    async def test_readiness_false_without_key(self) -> None:
        assert await CompletionClient(api_key="").check_readiness() is False

    @pytest.mark.asyncio
    async def test_readiness_true_when_provider_answers(self) -> None:
        client, fake = _client_with(_response("p"), EventRecorder())
        assert await client.check_readiness() is True
        assert fake.calls[0]["max_tokens"] == 1

    def test_both_clients_satisfy_protocol(self) -> None:
        assert isinstance(CompletionClient(api_key="sk-test"), CompletionProvider)
        assert isinstance(ScriptedCompletionClient(), CompletionProvider)
