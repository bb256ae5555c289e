"""
Domain models for the research refinement pipeline.

These Pydantic models define the structured data flowing between the
boundary, the orchestrator and the stages. Payloads are validated when the
model is built, so malformed requests never reach the orchestrator.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

if TYPE_CHECKING:
    from refinery.config import Settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalise_topic(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip()
        if not v:
            raise ValueError("topic must not be empty")
    return v


Topic = Annotated[str, BeforeValidator(_normalise_topic)]


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class RunStatus(str, Enum):
    IDLE = "idle"
    RESEARCHING = "researching"
    FACT_CHECKING = "fact_checking"
    DONE = "done"
    FAILED = "failed"


class RunStepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ──────────────────────────────────────────────
# Loop state
# ──────────────────────────────────────────────

class OrchestrationConfig(BaseModel):
    """Read-only limits for one orchestration run."""
    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(..., ge=1, description="Cap on research + fact-check round trips")
    confidence_threshold: float = Field(
        0.9, ge=0.0, le=1.0, description="Stop early once confidence reaches this value"
    )
    estimate_confidence: bool = Field(
        False, description="Ask the model for a confidence score after each fact-check"
    )

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides: Any) -> "OrchestrationConfig":
        """Build a config from application settings, applying non-None overrides."""
        values = {
            "max_iterations": settings.max_iterations,
            "confidence_threshold": settings.confidence_threshold,
            "estimate_confidence": settings.estimate_confidence,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class IterationState(BaseModel):
    """
    Snapshot of the loop between round trips.

    Frozen: the orchestrator builds a new instance after every completed
    fact-check pass instead of mutating the previous one.
    """
    model_config = ConfigDict(frozen=True)

    topic: Topic = Field(..., description="Research subject, passed unchanged through every iteration")
    research: Optional[str] = Field(None, description="Latest fact-checked research draft")
    iteration: int = Field(0, ge=0, description="Completed fact-check passes")
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


class StageOutput(BaseModel):
    """What a single stage hands back to the orchestrator."""
    research: str
    iteration: int = Field(..., ge=0)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


# ──────────────────────────────────────────────
# Run tracking
# ──────────────────────────────────────────────

class RunStep(BaseModel):
    """A single stage invocation inside a run, streamed to clients."""
    step_id: str
    stage: str
    iteration: int
    status: RunStepStatus = RunStepStatus.RUNNING
    output_summary: Optional[str] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None


class UsageSummary(BaseModel):
    call_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_latency_ms: int = 0
    estimated_cost_usd: float = 0.0


class RunState(BaseModel):
    """Full state of one orchestration run."""
    run_id: str
    topic: str
    status: RunStatus = RunStatus.IDLE
    steps: List[RunStep] = Field(default_factory=list)
    history: List[IterationState] = Field(default_factory=list)
    result: Optional[IterationState] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    usage: UsageSummary = Field(default_factory=UsageSummary)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class ResearchRequest(BaseModel):
    """API request to refine research on a topic."""
    topic: Topic = Field(..., description="Research subject", max_length=2000)
    max_iterations: Optional[int] = Field(None, ge=1, description="Overrides the configured cap")
    confidence_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    estimate_confidence: Optional[bool] = None


class ResearchResult(BaseModel):
    """API response for a completed run."""
    research: str
    iteration: int
    confidence: Optional[float] = None
    run_id: str
    usage: UsageSummary = Field(default_factory=UsageSummary)


class RunResponse(BaseModel):
    """API response for a submitted background run."""
    run_id: str
    status: RunStatus
    message: str
