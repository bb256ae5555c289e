"""
Shared request dependencies.

Routes receive the client factory through ``Depends`` so tests can swap in a
scripted provider with ``app.dependency_overrides``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException
from pydantic import ValidationError

from refinery.agent.orchestrator import ClientFactory, default_client_factory
from refinery.config import settings
from refinery.errors import ConfigError
from refinery.models.schemas import OrchestrationConfig, ResearchRequest


def get_client_factory() -> ClientFactory:
    return default_client_factory


def build_config(request: ResearchRequest) -> OrchestrationConfig:
    """Merge request overrides into the configured defaults."""
    if request.max_iterations is not None and request.max_iterations > settings.max_iterations_limit:
        raise HTTPException(
            status_code=422,
            detail=f"max_iterations must be <= {settings.max_iterations_limit}",
        )
    try:
        return OrchestrationConfig.from_settings(
            settings,
            max_iterations=request.max_iterations,
            confidence_threshold=request.confidence_threshold,
            estimate_confidence=request.estimate_confidence,
        )
    except ValidationError as e:
        # Request fields are already validated, so this is a bad server setting
        raise ConfigError(f"Invalid orchestration settings: {_first_error(e)}") from e


def _first_error(e: ValidationError) -> Optional[str]:
    errors = e.errors()
    if not errors:
        return None
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}"
