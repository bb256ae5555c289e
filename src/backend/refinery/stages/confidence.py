"""
Stage: Confidence Estimate

Optional. Asks the model to rate how well-supported a fact-checked draft is,
giving the loop a real value to compare against the confidence threshold.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from refinery.events import EventSink, RunEvent, log_event
from refinery.services.completion import CompletionProvider

logger = logging.getLogger(__name__)

CONFIDENCE_PROMPT = """Rate how factually accurate and well-supported the research
below is, as a single number between 0 and 1 (1 = fully verified).
Reply with the number only.

RESEARCH:
{research}"""

_NUMBER = re.compile(r"(?<![\d.])(0(?:\.\d+)?|1(?:\.0+)?|\.\d+)(?!\.?\d)")


def parse_confidence(text: str) -> Optional[float]:
    """Return the first number in [0, 1] found in text, or None."""
    match = _NUMBER.search(text)
    if not match:
        return None
    return float(match.group(1))


class ConfidenceStage:
    """Scores a fact-checked draft in [0, 1]."""

    name = "confidence"

    def __init__(self, client: CompletionProvider, events: Optional[EventSink] = None):
        self.client = client
        self.events = events or log_event

    async def run(self, research: str, iteration: int) -> Optional[float]:
        reply = await self.client.complete(CONFIDENCE_PROMPT.format(research=research))
        confidence = parse_confidence(reply)
        if confidence is None:
            logger.warning(f"Unparseable confidence reply at iteration {iteration}: {reply[:80]!r}")
        self.events(RunEvent(
            name="confidence.completed",
            component=self.name,
            iteration=iteration,
            detail={"confidence": confidence},
        ))
        return confidence
