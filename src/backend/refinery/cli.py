"""
Run one research refinement from the command line.

Usage:
    refinery "quantum computing"
    refinery "quantum computing" --max-iterations 3
    refinery "quantum computing" --estimate-confidence --confidence-threshold 0.8

Prints the final research as JSON. Exits non-zero with the error message if
the run fails.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from refinery.agent.orchestrator import RefinementOrchestrator
from refinery.config import settings
from refinery.errors import RefineryError
from refinery.models.schemas import OrchestrationConfig

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Iterative research with fact-checking")
    parser.add_argument("topic", type=str, help="Research subject")
    parser.add_argument("--max-iterations", type=int, default=None, help="Round-trip cap")
    parser.add_argument("--confidence-threshold", type=float, default=None)
    parser.add_argument(
        "--estimate-confidence",
        action="store_true",
        default=None,
        help="Score each fact-checked draft and stop early at the threshold",
    )
    parser.add_argument("--quiet", action="store_true")
    return parser


async def run(topic: str, config: OrchestrationConfig) -> dict:
    orchestrator = RefinementOrchestrator()
    final = await orchestrator.run(topic, config)
    return {
        "run_id": orchestrator.run_id,
        "research": final.research,
        "iteration": final.iteration,
        "confidence": final.confidence,
        "usage": orchestrator.ledger.summary().model_dump(),
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = OrchestrationConfig.from_settings(
            settings,
            max_iterations=args.max_iterations,
            confidence_threshold=args.confidence_threshold,
            estimate_confidence=args.estimate_confidence,
        )
    except ValidationError as e:
        print(f"Invalid configuration: {e.errors()[0]['msg']}", file=sys.stderr)
        return 2

    try:
        result = asyncio.run(run(args.topic, config))
    except ValidationError:
        print("Invalid topic: must not be empty", file=sys.stderr)
        return 2
    except RefineryError as e:
        print(f"{e.kind}: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
