"""Error taxonomy for the workflow engine.

Every error carries a stable code and an HTTP status so the API layer can
map it without knowing the concrete class.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    GENERATION_FAILED = "GENERATION_FAILED"
    ADAPTATION_FAILED = "ADAPTATION_FAILED"
    CACHE_CORRUPTED = "CACHE_CORRUPTED"
    RATE_LIMITED = "RATE_LIMITED"


class WorkflowEngineError(Exception):
    """Base class for all engine errors."""

    code: ErrorCode = ErrorCode.GENERATION_FAILED
    status_code: int = 500
    default_message = "Workflow engine error"

    def __init__(self, message: Optional[str] = None, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class SessionNotFound(WorkflowEngineError):
    code = ErrorCode.SESSION_NOT_FOUND
    status_code = 404
    default_message = "Program session not found"


class TemplateNotFound(WorkflowEngineError):
    code = ErrorCode.TEMPLATE_NOT_FOUND
    status_code = 404
    default_message = "Workflow template not found"


class InvalidParameters(WorkflowEngineError):
    code = ErrorCode.INVALID_PARAMETERS
    status_code = 422
    default_message = "Invalid workout parameters"


class GenerationFailed(WorkflowEngineError):
    code = ErrorCode.GENERATION_FAILED
    status_code = 500
    default_message = "Failed to generate workout plan"


class AdaptationFailed(WorkflowEngineError):
    code = ErrorCode.ADAPTATION_FAILED
    status_code = 500
    default_message = "Failed to apply adaptations"


class CacheCorrupted(WorkflowEngineError):
    code = ErrorCode.CACHE_CORRUPTED
    status_code = 500
    default_message = "Workflow cache is corrupted"


class RegenerationRateLimited(WorkflowEngineError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429
    default_message = "Too many regeneration requests for this session"
