"""
Refinement Orchestrator: drives the research / fact-check loop.

On each round trip:
  1. Research the topic, continuing from the previous round's verified draft
  2. Fact-check the new draft (this advances the iteration count)
  3. Optionally ask the model for a confidence score
  4. Stop once the iteration cap or the confidence threshold is reached
  5. Otherwise loop

State machine: IDLE -> RESEARCHING -> FACT_CHECKING -> (RESEARCHING | DONE),
with FAILED as the terminal state for any stage error. The cap is checked
after each completed fact-check pass, so up to ``max_iterations`` full round
trips execute.

One orchestrator serves one run. Stages are built fresh for that run and all
state lives on the instance, so concurrent runs share nothing.
"""
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from refinery.events import EventBus, EventSink, RunEvent
from refinery.models.schemas import (
    IterationState,
    OrchestrationConfig,
    RunState,
    RunStatus,
    RunStep,
    RunStepStatus,
    StageOutput,
)
from refinery.services.completion import CompletionClient, CompletionProvider
from refinery.stages.confidence import ConfidenceStage
from refinery.stages.fact_check import FactCheckStage
from refinery.stages.research import ResearchStage
from refinery.usage import UsageLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Builds the completion provider for a run, wired to that run's event bus
ClientFactory = Callable[[EventSink], CompletionProvider]


def default_client_factory(events: EventSink) -> CompletionProvider:
    return CompletionClient(events=events)


class RefinementOrchestrator:
    """
    Orchestrates one research refinement run.

    Usage:
        orchestrator = RefinementOrchestrator()
        final = await orchestrator.run("quantum computing", config)

    or, to observe progress:
        async for step in orchestrator.iterate(topic, config):
            ...
        final = orchestrator.result
    """

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        run_id: Optional[str] = None,
    ):
        self.client_factory = client_factory or default_client_factory
        self.run_id = run_id or str(uuid.uuid4())[:8]
        self.events = EventBus(run_id=self.run_id)
        self.ledger = UsageLedger(run_id=self.run_id)
        self.events.subscribe(self.ledger.record)

        self._state: Optional[RunState] = None
        self._error: Optional[Exception] = None

    @property
    def state(self) -> Optional[RunState]:
        return self._state

    @property
    def status(self) -> RunStatus:
        return self._state.status if self._state else RunStatus.IDLE

    @property
    def result(self) -> Optional[IterationState]:
        """Final state once DONE; None while running or after a failure."""
        return self._state.result if self._state else None

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    async def run(self, topic: str, config: OrchestrationConfig) -> IterationState:
        """
        Run the loop to completion.

        Returns:
            The final IterationState.

        Raises:
            The triggering stage error, unchanged, if the run fails.
        """
        async for _step in self.iterate(topic, config):
            pass
        return self._state.result

    async def iterate(
        self, topic: str, config: OrchestrationConfig
    ) -> AsyncGenerator[RunStep, None]:
        """
        Run the loop, yielding step updates as they happen.

        Each stage yields twice: once RUNNING, once COMPLETED or FAILED.
        """
        if self._state is not None:
            raise RuntimeError(f"Run {self.run_id} has already been started")

        current = IterationState(topic=topic)
        self._state = RunState(
            run_id=self.run_id,
            topic=current.topic,
            started_at=datetime.now(timezone.utc),
        )

        # Fresh collaborators for this run only
        client = self.client_factory(self.events)
        researcher = ResearchStage(client, events=self.events)
        fact_checker = FactCheckStage(client, events=self.events)
        scorer = ConfidenceStage(client, events=self.events) if config.estimate_confidence else None

        self._emit("run.started", current.iteration, max_iterations=config.max_iterations)

        while True:
            round_no = current.iteration + 1

            # ── Research ──
            self._transition(RunStatus.RESEARCHING, current.iteration)
            step = self._start_step("research", round_no)
            yield step
            try:
                draft = await self._run_step(
                    step,
                    researcher.run(current.topic, current.iteration, current.research),
                    summarise=_summarise_draft,
                )
            except Exception:
                yield step
                raise
            yield step

            # ── Fact check ──
            self._transition(RunStatus.FACT_CHECKING, current.iteration)
            step = self._start_step("fact_check", round_no)
            yield step
            try:
                checked = await self._run_step(
                    step,
                    fact_checker.run(draft.research, draft.iteration),
                    summarise=_summarise_draft,
                )
            except Exception:
                yield step
                raise
            yield step

            confidence = checked.confidence
            if scorer is not None:
                step = self._start_step("confidence", round_no)
                yield step
                try:
                    confidence = await self._run_step(
                        step,
                        scorer.run(checked.research, checked.iteration),
                        summarise=lambda c: f"confidence={c}",
                    )
                except Exception:
                    yield step
                    raise
                yield step

            current = IterationState(
                topic=current.topic,
                research=checked.research,
                iteration=checked.iteration,
                confidence=confidence,
            )
            self._state.history.append(current)
            self._state.usage = self.ledger.summary()

            if self._should_stop(current, config):
                break

        self._state.result = current
        self._state.completed_at = datetime.now(timezone.utc)
        self._transition(RunStatus.DONE, current.iteration)
        self._emit("run.completed", current.iteration, confidence=current.confidence)

    @staticmethod
    def _should_stop(current: IterationState, config: OrchestrationConfig) -> bool:
        if current.iteration >= config.max_iterations:
            logger.info(f"Reached max iterations ({config.max_iterations})")
            return True
        if current.confidence is not None and current.confidence >= config.confidence_threshold:
            logger.info(
                f"Confidence {current.confidence:.2f} reached threshold "
                f"{config.confidence_threshold:.2f} at iteration {current.iteration}"
            )
            return True
        return False

    # ──────────────────────────────────────────────
    # Step bookkeeping
    # ──────────────────────────────────────────────

    def _start_step(self, stage: str, round_no: int) -> RunStep:
        step = RunStep(step_id=f"{stage}-{round_no}", stage=stage, iteration=round_no)
        self._state.steps.append(step)
        return step

    async def _run_step(
        self,
        step: RunStep,
        call: Awaitable[T],
        summarise: Callable[[T], str],
    ) -> T:
        """Await one stage call, tracking status and timing. Failure ends the run."""
        start = time.monotonic()
        try:
            value = await call
        except Exception as e:
            step.status = RunStepStatus.FAILED
            step.error = str(e)
            step.duration_ms = int((time.monotonic() - start) * 1000)
            self._fail(e)
            raise
        step.status = RunStepStatus.COMPLETED
        step.output_summary = summarise(value)
        step.duration_ms = int((time.monotonic() - start) * 1000)
        return value

    def _fail(self, error: Exception) -> None:
        iteration = self._state.history[-1].iteration if self._state.history else 0
        self._error = error
        self._state.error = str(error)
        self._state.error_kind = getattr(error, "kind", type(error).__name__)
        # A failed run exposes no partial research
        self._state.history = []
        self._state.usage = self.ledger.summary()
        self._state.completed_at = datetime.now(timezone.utc)
        self._transition(RunStatus.FAILED, iteration)
        self._emit("run.failed", iteration, error=str(error), error_kind=self._state.error_kind)

    def _transition(self, status: RunStatus, iteration: int) -> None:
        previous = self._state.status
        self._state.status = status
        logger.debug(f"Run {self.run_id}: {previous.value} -> {status.value} (iteration {iteration})")

    def _emit(self, name: str, iteration: Optional[int], **detail) -> None:
        self.events(RunEvent(name=name, component="orchestrator", iteration=iteration, detail=detail))


def _summarise_draft(output: StageOutput) -> str:
    return f"{len(output.research)} chars, iteration {output.iteration}"
