"""
Stage: Fact Check

Asks the model to verify and improve a research draft. A completed pass is
what the loop counts, so this stage is the one that advances ``iteration``.
"""
from __future__ import annotations

import logging
from typing import Optional

from refinery.errors import RefineryError
from refinery.events import EventSink, RunEvent, log_event
from refinery.models.schemas import StageOutput
from refinery.services.completion import CompletionProvider

logger = logging.getLogger(__name__)

FACT_CHECK_PROMPT = "Verify and improve: {research}"


def build_fact_check_prompt(research: str) -> str:
    return FACT_CHECK_PROMPT.format(research=research)


class FactCheckStage:
    """Verifies and refines a research draft."""

    name = "fact_check"

    def __init__(self, client: CompletionProvider, events: Optional[EventSink] = None):
        self.client = client
        self.events = events or log_event

    async def run(self, research: str, iteration: int) -> StageOutput:
        """
        Fact-check a research draft.

        Args:
            research: Draft produced by the research stage
            iteration: Completed fact-check passes before this one

        Returns:
            StageOutput with the refined draft and iteration + 1

        Raises:
            The completion client's error, tagged with ``stage="fact_check"``.
        """
        self.events(RunEvent(
            name="fact_check.started",
            component=self.name,
            iteration=iteration,
            detail={"draft_chars": len(research)},
        ))
        try:
            refined = await self.client.complete(build_fact_check_prompt(research))
        except RefineryError as e:
            e.stage = self.name
            logger.error(f"Fact check failed at iteration {iteration}: {e.message}")
            self.events(RunEvent(
                name="fact_check.failed",
                component=self.name,
                iteration=iteration,
                detail={"error": e.message, "error_kind": e.kind},
            ))
            raise

        self.events(RunEvent(
            name="fact_check.completed",
            component=self.name,
            iteration=iteration + 1,
            detail={"chars": len(refined)},
        ))
        return StageOutput(research=refined, iteration=iteration + 1)
