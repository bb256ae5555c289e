"""
Usage ledger: estimated token usage and dollar cost per completion call.

Subscribes to a run's event bus and records every ``completion.completed``
event, giving each run a cost/latency summary without the completion client
knowing anything about runs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from refinery.events import RunEvent
from refinery.models.schemas import UsageSummary


# ──────────────────────────────────────────────
# Pricing constants (approximate, per 1K tokens)
# ──────────────────────────────────────────────

# gpt-4o-mini list price
COST_PER_1K_INPUT_TOKENS = 0.00015   # $0.15 / 1M input tokens
COST_PER_1K_OUTPUT_TOKENS = 0.0006   # $0.60 / 1M output tokens


@dataclass
class CallRecord:
    """Record of a single completion call with cost metadata."""
    call_id: str
    run_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    estimated_cost_usd: float = 0.0
    timestamp: float = 0.0


@dataclass
class UsageLedger:
    """Running ledger of all completion calls made during one run."""
    run_id: str
    calls: List[CallRecord] = field(default_factory=list)

    @property
    def total_input_tokens(self) -> int:
        return sum(c.input_tokens for c in self.calls)

    @property
    def total_output_tokens(self) -> int:
        return sum(c.output_tokens for c in self.calls)

    @property
    def total_cost_usd(self) -> float:
        return sum(c.estimated_cost_usd for c in self.calls)

    @property
    def total_latency_ms(self) -> int:
        return sum(c.latency_ms for c in self.calls)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def record(self, event: RunEvent) -> None:
        """Event sink: append a record for each successful completion."""
        if event.name != "completion.completed":
            return
        input_tokens = int(event.detail.get("input_tokens", 0))
        output_tokens = int(event.detail.get("output_tokens", 0))
        self.calls.append(CallRecord(
            call_id=f"{self.run_id}_{len(self.calls)}",
            run_id=self.run_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=int(event.detail.get("latency_ms", 0)),
            estimated_cost_usd=estimate_cost(input_tokens, output_tokens),
            timestamp=event.timestamp.timestamp(),
        ))

    def summary(self) -> UsageSummary:
        return UsageSummary(
            call_count=self.call_count,
            input_tokens=self.total_input_tokens,
            output_tokens=self.total_output_tokens,
            total_latency_ms=self.total_latency_ms,
            estimated_cost_usd=round(self.total_cost_usd, 6),
        )


def estimate_tokens(text: str) -> int:
    """
    Rough token count estimation (4 chars ≈ 1 token for English text).

    Good enough for relative cost comparisons between runs; use the
    provider's reported usage for billing.
    """
    return max(1, len(text) // 4)


def estimate_cost(input_tokens: int, output_tokens: int) -> float:
    """Estimate USD cost for a single completion call."""
    input_cost = (input_tokens / 1000) * COST_PER_1K_INPUT_TOKENS
    output_cost = (output_tokens / 1000) * COST_PER_1K_OUTPUT_TOKENS
    return input_cost + output_cost
