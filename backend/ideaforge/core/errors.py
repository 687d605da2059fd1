"""
Idea Forge - Error Taxonomy
===========================

Domain errors raised by the generation core. The API layer maps them to
HTTP responses through ``status_code`` and ``code``; nothing in the core
retries on any of them.
"""

from typing import Any, Optional


class GenerationError(Exception):
    """Base class for every error the generation core raises on purpose."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details or None,
        }


class ValidationError(GenerationError):
    """Generated payload is malformed or incomplete."""

    status_code = 422
    code = "VALIDATION_ERROR"


class ConflictError(GenerationError):
    """Duplicate idea, reused session id, or a manual/auto slot collision."""

    status_code = 409
    code = "CONFLICT"


class ExternalServiceError(GenerationError):
    """LLM or embedding provider failure, surfaced with provider context."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(f"{service}: {message}", details)
        self.service = service


class NotFoundError(GenerationError):
    """A referenced slot, profile or session does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}", {"resource": resource, "id": str(identifier)})
        self.resource = resource
        self.identifier = identifier


class InternalError(GenerationError):
    """Unexpected failure."""
