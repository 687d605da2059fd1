"""
Idea Forge - Pydantic Schemas
=============================

Request and response schemas for API validation. Payloads are camelCase
on the wire; attribute names stay snake_case.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ideaforge.core.config import settings
from ideaforge.core.generation.orchestrator import GenerationRequest


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )


class SuccessResponse(BaseSchema):
    """Generic success envelope."""

    success: bool = True
    data: Any = None


class ErrorDetail(BaseSchema):
    message: str
    code: str
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseSchema):
    """Error envelope shared by every endpoint."""

    success: bool = False
    error: ErrorDetail


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
    scheduler: str


# ==========================================================================
# Generation Schemas
# ==========================================================================

class GenerateRequest(BaseSchema):
    """Manual generation request."""

    framework: Optional[str] = Field(None, max_length=255, description="Generation framework, random when omitted")
    template: Optional[str] = Field(None, max_length=255, description="Deprecated alias of framework")
    domain: Optional[str] = Field(None, max_length=255, description="Pins the domain options to one value")
    skip_duplicate_check: bool = False
    session_id: Optional[str] = Field(None, min_length=1, max_length=255)
    profile_id: Optional[UUID] = None
    slot_number: Optional[int] = Field(None, ge=1, le=settings.MAX_GENERATION_SLOTS)

    def to_request(self) -> GenerationRequest:
        return GenerationRequest(
            framework=self.framework or self.template,
            domain=self.domain,
            skip_duplicate_check=self.skip_duplicate_check,
            profile_id=self.profile_id,
            slot_number=self.slot_number,
            session_id=self.session_id,
            trigger="manual",
        )


class GenerationStatusResponse(BaseSchema):
    is_generating: bool
    active_count: int
    active_sessions: list[str]


# ==========================================================================
# Slot Schemas
# ==========================================================================

class SlotResponse(BaseSchema):
    slot_number: int
    profile_id: Optional[UUID] = None
    profile_name: Optional[str] = None
    is_enabled: bool
    auto_generate: bool
    auto_generate_interval_minutes: int
    next_scheduled_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    is_busy: bool


class SlotUpdate(BaseSchema):
    """Partial slot update. An explicit null profileId clears the profile."""

    profile_id: Optional[UUID] = None
    is_enabled: Optional[bool] = None
    auto_generate: Optional[bool] = None
    auto_generate_interval_minutes: Optional[int] = Field(None, description="Clamped to 1-1440")


class EnsureSlotsRequest(BaseSchema):
    count: int = Field(ge=1, le=settings.MAX_GENERATION_SLOTS)
