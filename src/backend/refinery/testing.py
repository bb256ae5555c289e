"""Scripted completion provider for tests and offline runs."""
from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Union

from refinery.events import EventSink, RunEvent

Reply = Union[str, Exception]


class ScriptedCompletionClient:
    """
    Returns canned replies in order and records every prompt it was sent.

    Each scripted entry is either the reply text or an exception to raise.
    Once the script runs out, ``fallback(call_index, prompt)`` is used; the
    default produces ``"reply <n>"`` so a run can go on indefinitely.
    """

    component = "completion"

    def __init__(
        self,
        script: Optional[Sequence[Reply]] = None,
        fallback: Optional[Callable[[int, str], str]] = None,
        events: Optional[EventSink] = None,
    ):
        self.script: List[Reply] = list(script or [])
        self.fallback = fallback or (lambda n, _prompt: f"reply {n}")
        self.events = events
        self.prompts: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: str) -> str:
        index = len(self.prompts)
        self.prompts.append(prompt)
        self._emit("completion.started", prompt_chars=len(prompt))

        reply = self.script[index] if index < len(self.script) else self.fallback(index + 1, prompt)
        if isinstance(reply, Exception):
            self._emit("completion.failed", error=str(reply))
            raise reply

        self._emit(
            "completion.completed",
            latency_ms=0,
            input_tokens=max(1, len(prompt) // 4),
            output_tokens=max(1, len(reply) // 4),
        )
        return reply

    def _emit(self, name: str, **detail) -> None:
        if self.events is not None:
            self.events(RunEvent(name=name, component=self.component, detail=detail))

    def factory(self) -> Callable[[EventSink], "ScriptedCompletionClient"]:
        """Client factory for the orchestrator that wires this instance to the run's events."""
        def _factory(events: EventSink) -> "ScriptedCompletionClient":
            self.events = events
            return self
        return _factory
