"""Shared fixtures for the Research Refinery test suite."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from refinery.api import runs
from refinery.api.deps import get_client_factory
from refinery.main import app
from refinery.models.schemas import OrchestrationConfig
from refinery.testing import ScriptedCompletionClient


@pytest.fixture
def scripted() -> ScriptedCompletionClient:
    """Completion double that always succeeds with 'reply <n>'."""
    return ScriptedCompletionClient()


@pytest.fixture
def make_config():
    def _make(max_iterations: int = 2, confidence_threshold: float = 0.9, **kwargs) -> OrchestrationConfig:
        return OrchestrationConfig(
            max_iterations=max_iterations,
            confidence_threshold=confidence_threshold,
            **kwargs,
        )
    return _make


@pytest.fixture
def api(scripted):
    """TestClient wired to the scripted completion client."""
    app.dependency_overrides[get_client_factory] = scripted.factory
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
    runs._runs.clear()
    runs._run_timestamps.clear()
