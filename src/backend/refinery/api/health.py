"""Health check endpoints."""
import logging

from fastapi import APIRouter

from refinery.config import settings
from refinery.services.completion import CompletionClient

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.app_name}


@router.get("/api/health/config")
async def config_check():
    """Diagnostic endpoint: shows whether critical env vars are configured (no secrets)."""
    return {
        "openai_api_key_set": bool(settings.openai_api_key),
        "openai_base_url_set": bool(settings.openai_base_url),
        "openai_model": settings.openai_model,
        "max_iterations": settings.max_iterations,
        "confidence_threshold": settings.confidence_threshold,
        "estimate_confidence": settings.estimate_confidence,
    }


@router.get("/api/health/model")
async def model_readiness():
    """Check if the completion provider is reachable and accepting requests."""
    client = CompletionClient()
    ready = await client.check_readiness()
    return {
        "ready": ready,
        "model_id": settings.openai_model,
        "base_url_set": bool(settings.openai_base_url),
    }
