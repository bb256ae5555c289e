"""
Error taxonomy for the refinement pipeline.

Every failure that can end a run is one of three kinds:

  - ConfigError   : credential missing or rejected; never retried
  - UpstreamError : the completion provider refused the request
  - NetworkError  : the request never got a response

Stages raise these unchanged; the orchestrator marks the run FAILED and
re-raises the same object, so callers always see the triggering error.
"""
from __future__ import annotations

from typing import Optional


class RefineryError(Exception):
    """Base class for all pipeline failures."""

    kind: str = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        # Set by the stage that observed the failure, if any
        self.stage: Optional[str] = None

    def to_dict(self) -> dict:
        """Boundary-safe representation: message and kind only, never a traceback."""
        return {"error": self.message, "kind": self.kind}


class ConfigError(RefineryError):
    kind = "config_error"


class UpstreamError(RefineryError):
    kind = "upstream_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(RefineryError):
    kind = "network_error"
