"""
WebSocket endpoint for real-time refinement streaming.

The client connects here to watch each stage of a run as it happens:
  - Stage started / completed / failed
  - Final research once the loop stops
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from refinery.agent.orchestrator import ClientFactory, RefinementOrchestrator
from refinery.api.deps import build_config, get_client_factory
from refinery.errors import RefineryError
from refinery.models.schemas import ResearchRequest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/research")
async def research_websocket(
    websocket: WebSocket,
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """
    WebSocket endpoint for one refinement run.

    Protocol:
      Client sends: JSON matching ResearchRequest
      Server sends: JSON messages for each step update and the final result

    Message types:
      - {"type": "ack", "run_id": "..."}
      - {"type": "step_update", "step": {...}}
      - {"type": "result", "result": {...}}
      - {"type": "error", "message": "...", "kind": "..."}
      - {"type": "complete", "run_id": "..."}
    """
    await websocket.accept()

    try:
        raw = await websocket.receive_text()
        request = ResearchRequest(**json.loads(raw))
        config = build_config(request)

        orchestrator = RefinementOrchestrator(client_factory=client_factory)
        await websocket.send_json({"type": "ack", "run_id": orchestrator.run_id})

        try:
            async for step in orchestrator.iterate(request.topic, config):
                await websocket.send_json({
                    "type": "step_update",
                    "step": step.model_dump(mode="json"),
                })
        except RefineryError as e:
            await websocket.send_json({"type": "error", "message": e.message, "kind": e.kind})
        else:
            await websocket.send_json({
                "type": "result",
                "result": {
                    **orchestrator.result.model_dump(mode="json"),
                    "usage": orchestrator.ledger.summary().model_dump(mode="json"),
                },
            })

        await websocket.send_json({"type": "complete", "run_id": orchestrator.run_id})

    except WebSocketDisconnect:
        logger.info("Client disconnected mid-run")
    except (json.JSONDecodeError, ValidationError, TypeError):
        await websocket.send_json({"type": "error", "message": "Invalid request", "kind": "validation_error"})
    except HTTPException as e:
        await websocket.send_json({"type": "error", "message": str(e.detail), "kind": "validation_error"})
    except RefineryError as e:
        await websocket.send_json({"type": "error", "message": e.message, "kind": e.kind})
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            pass  # already closed by the client
