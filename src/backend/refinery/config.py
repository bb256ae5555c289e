"""
Application configuration via environment variables.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    # App
    app_name: str = "Research Refinery"
    debug: bool = False
    log_level: str = "INFO"

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8787",
    ]

    # OpenAI-compatible completion provider
    openai_api_key: str = ""
    openai_base_url: str = ""  # Empty = provider default
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 120.0

    # Refinement loop
    max_iterations: int = 2
    max_iterations_limit: int = 10  # Upper bound accepted from API callers
    confidence_threshold: float = 0.9
    estimate_confidence: bool = False

    # Run registry (in-memory only)
    run_ttl_seconds: int = 3600

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
