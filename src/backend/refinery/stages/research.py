"""
Stage: Research

Asks the model to research a topic. On the first pass the prompt carries the
topic alone; on later passes it also carries the fact-checked research from
the previous round so the model extends that draft instead of starting over.
"""
from __future__ import annotations

import logging
from typing import Optional

from refinery.errors import RefineryError
from refinery.events import EventSink, RunEvent, log_event
from refinery.models.schemas import StageOutput
from refinery.services.completion import CompletionProvider

logger = logging.getLogger(__name__)

RESEARCH_PROMPT = "Research this topic: {topic}"

CONTINUATION_PROMPT = """Research this topic: {topic}

Continue from the verified research below. Keep what is accurate, fill gaps,
and add depth where the coverage is thin.

PRIOR RESEARCH:
{prior_research}"""


def build_research_prompt(topic: str, prior_research: Optional[str] = None) -> str:
    """Prompt text is a pure function of its inputs."""
    if prior_research:
        return CONTINUATION_PROMPT.format(topic=topic, prior_research=prior_research)
    return RESEARCH_PROMPT.format(topic=topic)


class ResearchStage:
    """Produces a research draft for a topic."""

    name = "research"

    def __init__(self, client: CompletionProvider, events: Optional[EventSink] = None):
        self.client = client
        self.events = events or log_event

    async def run(
        self,
        topic: str,
        iteration: int,
        prior_research: Optional[str] = None,
    ) -> StageOutput:
        """
        Research a topic.

        Args:
            topic: The research subject
            iteration: Completed fact-check passes so far; returned unchanged
            prior_research: Fact-checked output of the previous round, if any

        Returns:
            StageOutput with the new draft and the same iteration
        """
        prompt = build_research_prompt(topic, prior_research)
        self.events(RunEvent(
            name="research.started",
            component=self.name,
            iteration=iteration,
            detail={"continuation": bool(prior_research)},
        ))
        try:
            research = await self.client.complete(prompt)
        except RefineryError as e:
            logger.error(f"Research failed at iteration {iteration}: {e.message}")
            self.events(RunEvent(
                name="research.failed",
                component=self.name,
                iteration=iteration,
                detail={"error": e.message, "error_kind": e.kind},
            ))
            raise
        self.events(RunEvent(
            name="research.completed",
            component=self.name,
            iteration=iteration,
            detail={"chars": len(research)},
        ))
        return StageOutput(research=research, iteration=iteration)
