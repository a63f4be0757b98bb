# backend/ranker/core/errors.py
"""
Error taxonomy shared by the pipeline and the HTTP layer.

Every error carries an ErrorKind set where it is raised, so callers branch on
`err.kind` instead of inspecting messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INPUT = "input"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
    UNAUTHORIZED = "unauthorized"
    CONFIG = "config"
    PROVIDER = "provider"
    GRADER = "grader"
    PIPELINE = "pipeline"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INPUT: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NOT_READY: 409,
    ErrorKind.PROVIDER: 502,
    ErrorKind.CONFIG: 500,
    ErrorKind.GRADER: 500,
    ErrorKind.PIPELINE: 500,
}


class RankerError(Exception):
    kind: ErrorKind = ErrorKind.PIPELINE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.kind, 500)


class InputError(RankerError):
    kind = ErrorKind.INPUT


class NotFoundError(RankerError):
    kind = ErrorKind.NOT_FOUND


class NotReadyError(RankerError):
    kind = ErrorKind.NOT_READY


class SignatureError(RankerError):
    kind = ErrorKind.UNAUTHORIZED


class ConfigError(RankerError):
    kind = ErrorKind.CONFIG


class ProviderError(RankerError):
    """Extraction provider failed (HTTP status, transport, or unsupported call)."""
    kind = ErrorKind.PROVIDER

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.provider_status = status_code


class GraderError(RankerError):
    """LLM grading failed; callers recover with the heuristic grader."""
    kind = ErrorKind.GRADER


class PipelineError(RankerError):
    kind = ErrorKind.PIPELINE


__all__ = [
    "ErrorKind", "HTTP_STATUS", "RankerError",
    "InputError", "NotFoundError", "NotReadyError", "SignatureError",
    "ConfigError", "ProviderError", "GraderError", "PipelineError",
]
