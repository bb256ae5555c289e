"""
REST API for research refinement runs.

``POST /start`` runs the loop inside the request and returns the final
research. ``POST /api/runs/submit`` starts the same loop in the background;
poll ``GET /api/runs/{run_id}`` or connect to the WebSocket for progress.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Set

from fastapi import APIRouter, Depends, HTTPException

from refinery.agent.orchestrator import ClientFactory, RefinementOrchestrator
from refinery.api.deps import build_config, get_client_factory
from refinery.config import settings
from refinery.errors import RefineryError
from refinery.models.schemas import (
    ResearchRequest,
    ResearchResult,
    RunResponse,
    RunState,
    RunStatus,
)

logger = logging.getLogger(__name__)
router = APIRouter()

# In-memory store for active/completed runs; lost on restart
_runs: Dict[str, RefinementOrchestrator] = {}
_run_timestamps: Dict[str, float] = {}
_tasks: Set[asyncio.Task] = set()


def _evict_expired_runs() -> None:
    cutoff = time.time() - settings.run_ttl_seconds
    for run_id in [rid for rid, ts in _run_timestamps.items() if ts < cutoff]:
        orchestrator = _runs.get(run_id)
        if orchestrator and orchestrator.status in (RunStatus.RESEARCHING, RunStatus.FACT_CHECKING):
            continue
        _runs.pop(run_id, None)
        _run_timestamps.pop(run_id, None)


@router.post("/start", response_model=ResearchResult)
async def start_research(
    request: ResearchRequest,
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Run the research / fact-check loop and return the final draft."""
    config = build_config(request)
    orchestrator = RefinementOrchestrator(client_factory=client_factory)
    logger.info(f"Run {orchestrator.run_id} started (max_iterations={config.max_iterations})")

    final = await orchestrator.run(request.topic, config)

    return ResearchResult(
        research=final.research,
        iteration=final.iteration,
        confidence=final.confidence,
        run_id=orchestrator.run_id,
        usage=orchestrator.ledger.summary(),
    )


@router.post("/api/runs/submit", response_model=RunResponse)
async def submit_run(
    request: ResearchRequest,
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """
    Start a run in the background.

    Poll /api/runs/{run_id} or use the WebSocket endpoint for updates.
    """
    config = build_config(request)
    orchestrator = RefinementOrchestrator(client_factory=client_factory)

    async def _run_pipeline():
        try:
            await orchestrator.run(request.topic, config)
        except RefineryError as e:
            # Recorded on the run state; the poller reports it
            logger.warning(f"Run {orchestrator.run_id} failed ({e.kind}): {e.message}")
        except Exception:
            logger.exception(f"Run {orchestrator.run_id} crashed")

    _evict_expired_runs()
    _runs[orchestrator.run_id] = orchestrator
    _run_timestamps[orchestrator.run_id] = time.time()

    task = asyncio.create_task(_run_pipeline())
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)

    return RunResponse(
        run_id=orchestrator.run_id,
        status=orchestrator.status,
        message="Refinement run queued. Poll /api/runs/{run_id} for updates.",
    )


@router.get("/api/runs/{run_id}", response_model=RunState)
async def get_run(run_id: str):
    """Get the current state (and result, once done) of a run."""
    _evict_expired_runs()
    orchestrator = _runs.get(run_id)
    if not orchestrator:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    if not orchestrator.state:
        return RunState(run_id=run_id, topic="", status=RunStatus.IDLE)
    return orchestrator.state


@router.get("/api/runs/", response_model=list[str])
async def list_runs():
    """List all known run IDs."""
    _evict_expired_runs()
    return list(_runs.keys())
