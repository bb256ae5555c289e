"""
Completion Service: the single point of contact with the language model.

Calls any OpenAI-compatible chat-completions endpoint with one user message
and returns the reply text. Every stage that needs the model goes through a
``CompletionProvider``; ``CompletionClient`` is the production one.

Failures are classified and raised immediately, never retried here:
  - ConfigError:   no API key, or the provider rejected the credential
  - UpstreamError: the provider returned a non-success or unusable response
  - NetworkError:  the request did not complete at the transport level
"""
from __future__ import annotations

import logging
import time
from typing import Optional, Protocol, runtime_checkable

import openai
from openai import AsyncOpenAI

from refinery.config import settings
from refinery.errors import ConfigError, NetworkError, UpstreamError
from refinery.events import EventSink, RunEvent, log_event
from refinery.usage import estimate_tokens

logger = logging.getLogger(__name__)


@runtime_checkable
class CompletionProvider(Protocol):
    """Anything that can turn a prompt into text."""

    async def complete(self, prompt: str) -> str:
        ...


class CompletionClient:
    """
    OpenAI-compatible completion client.

    Usage:
        client = CompletionClient(events=bus)
        text = await client.complete("Research this topic: tides")
    """

    component = "completion"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        events: Optional[EventSink] = None,
    ):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.base_url = base_url if base_url is not None else settings.openai_base_url
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.openai_timeout_seconds
        self.events = events or log_event
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        """Lazy-initialize the API client."""
        if not self.api_key:
            raise ConfigError("OpenAI API key not configured")
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url or None,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def complete(self, prompt: str) -> str:
        """
        Send one prompt and return the reply text.

        Raises:
            ConfigError, UpstreamError, NetworkError
        """
        self._emit("completion.started", model=self.model, prompt_chars=len(prompt))
        t0 = time.monotonic()
        try:
            client = self._get_client()
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
            text = response.choices[0].message.content if response.choices else None
            if not text:
                raise UpstreamError("Completion provider returned an empty response")
        except openai.APIConnectionError as e:
            error = NetworkError(f"Completion request failed: {e}")
            self._emit_failure(error, t0)
            raise error from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            error = ConfigError(f"Completion provider rejected the credential: {e.message}")
            self._emit_failure(error, t0)
            raise error from e
        except openai.APIStatusError as e:
            error = UpstreamError(f"OpenAI API: {e.message}", status_code=e.status_code)
            self._emit_failure(error, t0)
            raise error from e
        except openai.OpenAIError as e:
            # Malformed responses and other SDK failures outside the HTTP status range
            error = UpstreamError(f"OpenAI API: {e}")
            self._emit_failure(error, t0)
            raise error from e
        except (ConfigError, UpstreamError) as e:
            self._emit_failure(e, t0)
            raise

        usage = getattr(response, "usage", None)
        self._emit(
            "completion.completed",
            model=self.model,
            latency_ms=int((time.monotonic() - t0) * 1000),
            input_tokens=getattr(usage, "prompt_tokens", None) or estimate_tokens(prompt),
            output_tokens=getattr(usage, "completion_tokens", None) or estimate_tokens(text),
        )
        return text

    async def check_readiness(self) -> bool:
        """
        Lightweight probe: a 1-token completion against the configured model.

        Returns True if the provider responds, False on any failure.
        """
        try:
            client = self._get_client()
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
            )
            return bool(response.choices)
        except (ConfigError, openai.OpenAIError) as e:
            logger.debug(f"Readiness probe failed: {e}")
            return False

    def _emit(self, name: str, **detail) -> None:
        self.events(RunEvent(name=name, component=self.component, detail=detail))

    def _emit_failure(self, error: Exception, t0: float) -> None:
        self._emit(
            "completion.failed",
            model=self.model,
            error=str(error),
            error_kind=getattr(error, "kind", type(error).__name__),
            latency_ms=int((time.monotonic() - t0) * 1000),
        )
