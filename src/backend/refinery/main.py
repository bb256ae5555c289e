"""
Research Refinery: FastAPI Backend
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from refinery.api import health, runs, ws
from refinery.config import settings
from refinery.errors import ConfigError, NetworkError, RefineryError, UpstreamError

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

# Error kind → HTTP status at the boundary
ERROR_STATUS = {
    ConfigError: 500,
    UpstreamError: 502,
    NetworkError: 503,
}

app = FastAPI(
    title="Research Refinery",
    description="Iterative AI research with a fact-check pass after every draft",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router, tags=["health"])
app.include_router(runs.router, tags=["runs"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])


@app.exception_handler(RefineryError)
async def refinery_error_handler(request: Request, exc: RefineryError):
    """Report pipeline failures by message and kind; no traceback leaves the process."""
    status = ERROR_STATUS.get(type(exc), 500)
    logger.warning(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.on_event("startup")
async def startup():
    """Log configuration on startup."""
    def _mask(val: str) -> str:
        if not val:
            return "(empty)"
        if len(val) <= 8:
            return "***"
        return val[:4] + "..." + val[-4:]

    logger.info("=== Research Refinery Starting ===")
    logger.info(f"  openai_base_url     : {settings.openai_base_url or '(default)'}")
    logger.info(f"  openai_model        : {settings.openai_model}")
    logger.info(f"  openai_api_key      : {_mask(settings.openai_api_key)}")
    logger.info(f"  max_iterations      : {settings.max_iterations}")
    logger.info(f"  confidence_threshold: {settings.confidence_threshold}")
    logger.info(f"  estimate_confidence : {settings.estimate_confidence}")
    logger.info(f"  cors_origins        : {settings.cors_origins}")

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is empty -- completion calls will fail!")
