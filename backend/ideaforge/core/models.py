"""
Idea Forge - Database Models
============================

SQLAlchemy models for generation sessions, their log trail, generation
slots, configuration profiles and the ideas they produce.
"""

import enum
from datetime import datetime
from typing import Any, Optional
from uuid import UUID as PyUUID, uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ideaforge.core.config import settings
from ideaforge.core.database import Base


# ==========================================================================
# Enums
# ==========================================================================

class GenerationStage(str, enum.Enum):
    """Fine-grained pipeline stage of a generation session."""
    INITIALIZATION = "initialization"
    CONFIG_LOAD = "config_load"
    PROMPT_BUILD = "prompt_build"
    API_CALL = "api_call"
    RESPONSE_PARSE = "response_parse"
    DUPLICATE_CHECK = "duplicate_check"
    DATABASE_SAVE = "database_save"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStage.COMPLETE, GenerationStage.FAILED)


class GenerationStatus(str, enum.Enum):
    """Coarse projection of the stage."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self != GenerationStatus.IN_PROGRESS


class LogLevel(str, enum.Enum):
    """Severity of a generation log entry."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


class IdeaStatus(str, enum.Enum):
    """Lifecycle of an idea after generation."""
    DRAFT = "draft"
    VALIDATION = "validation"
    RESEARCH = "research"
    BUILD = "build"
    ARCHIVED = "archived"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Models
# ==========================================================================

class ConfigurationProfile(Base, TimestampMixin):
    """
    A named set of YAML configuration files (prompts, criteria, weights).

    The files live under CONFIGS_DIR/<folder_name>; only the reference is
    stored here.
    """

    __tablename__ = "configuration_profiles"

    id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    folder_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ConfigurationProfile {self.name} ({self.folder_name})>"


class Idea(Base, TimestampMixin):
    """
    A generated business idea.

    Scores are an open criterion-key -> 1..10 mapping because the criteria
    set is defined by configuration and changes over time.
    """

    __tablename__ = "ideas"

    id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    folder_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    status: Mapped[IdeaStatus] = mapped_column(
        Enum(IdeaStatus),
        default=IdeaStatus.DRAFT,
        nullable=False,
    )
    score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )  # 0-100

    # Classification
    domain: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    subdomain: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    problem: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    solution: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # Scoring
    scores: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
    evaluation_details: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
    complexity_scores: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )  # {technical, regulatory, sales, total}

    # Content
    quick_summary: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    concrete_example: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )
    idea_components: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )
    quick_notes: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )
    action_plan: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )
    tags: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    # Generation metadata
    generation_framework: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    raw_ai_response: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    ai_prompt: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Semantic duplicate detection
    embedding: Mapped[Optional[Any]] = mapped_column(
        Vector(settings.EMBEDDING_DIMENSIONS),
        nullable=True,
    )

    history: Mapped[list["IdeaHistory"]] = relationship(
        back_populates="idea",
        lazy="raise",
    )

    def to_dict(self) -> dict:
        """Serialize for API responses (embedding omitted)."""
        return {
            "id": str(self.id),
            "name": self.name,
            "folderName": self.folder_name,
            "status": self.status.value,
            "score": self.score,
            "domain": self.domain,
            "subdomain": self.subdomain,
            "problem": self.problem,
            "solution": self.solution,
            "scores": self.scores,
            "quickSummary": self.quick_summary,
            "concreteExample": self.concrete_example,
            "evaluationDetails": self.evaluation_details,
            "complexityScores": self.complexity_scores,
            "ideaComponents": self.idea_components,
            "quickNotes": self.quick_notes,
            "actionPlan": self.action_plan,
            "tags": self.tags or [],
            "generationFramework": self.generation_framework,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Idea {self.name} [{self.score}]>"


class IdeaHistory(Base):
    """Append-only change history for an idea."""

    __tablename__ = "idea_history"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    idea_id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ideas.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    change_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )  # created, updated, status_changed, ...
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    idea: Mapped["Idea"] = relationship(back_populates="history")


class GenerationSession(Base):
    """
    Durable status record of one generation attempt.

    current_stage and status are always written together with the log row
    that caused the transition; completed/failed rows never change again.
    """

    __tablename__ = "generation_sessions"

    session_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    slot_number: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        index=True,
    )  # Loose reference, no FK
    status: Mapped[GenerationStatus] = mapped_column(
        Enum(GenerationStatus),
        default=GenerationStatus.IN_PROGRESS,
        nullable=False,
        index=True,
    )
    current_stage: Mapped[GenerationStage] = mapped_column(
        Enum(GenerationStage),
        default=GenerationStage.INITIALIZATION,
        nullable=False,
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Results
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    idea_id: Mapped[Optional[PyUUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ideas.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<GenerationSession {self.session_id} [{self.status.value}/{self.current_stage.value}]>"


class GenerationLogEntry(Base):
    """
    One timestamped stage event of a generation session.

    Uses a separate table for efficient appends and id-ordered polling.
    """

    __tablename__ = "generation_logs"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    session_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    stage: Mapped[GenerationStage] = mapped_column(
        Enum(GenerationStage),
        nullable=False,
    )
    level: Mapped[LogLevel] = mapped_column(
        Enum(LogLevel),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    details: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "stage": self.stage.value,
            "level": self.level.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        preview = self.message[:50] + "..." if len(self.message) > 50 else self.message
        return f"<GenerationLogEntry #{self.id} {self.stage.value}: {preview}>"


class GenerationSlot(Base, TimestampMixin):
    """
    An independently schedulable generation lane.

    Busy-ness is not stored here; it is derived from the sessions that
    reference the slot number.
    """

    __tablename__ = "generation_slots"
    __table_args__ = (
        CheckConstraint(
            "auto_generate_interval_minutes >= 1 AND auto_generate_interval_minutes <= 1440",
            name="check_auto_generate_interval",
        ),
    )

    slot_number: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=False,
    )
    profile_id: Mapped[Optional[PyUUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("configuration_profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Auto-generation
    auto_generate: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    auto_generate_interval_minutes: Mapped[int] = mapped_column(
        Integer,
        default=60,
        nullable=False,
    )
    next_scheduled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    last_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    profile: Mapped[Optional["ConfigurationProfile"]] = relationship(
        lazy="selectin",
    )

    def __repr__(self) -> str:
        mode = "auto" if self.auto_generate else "manual"
        return f"<GenerationSlot {self.slot_number} [{mode}]>"
