"""
Generation Journal
==================

Durable log/status store for generation sessions.

Every write is a single transaction: a log row is inserted together with
the stage/status update it causes, so a concurrent reader always sees a
consistent (stage, latest log id) pair. Terminal sessions are frozen.

Also holds the in-memory registry of sessions running in this process.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.core.errors import ConflictError, InternalError, NotFoundError
from ideaforge.core.models import (
    GenerationLogEntry,
    GenerationSession,
    GenerationStage,
    GenerationStatus,
    LogLevel,
)
from ideaforge.core.timeutils import as_utc, utcnow

logger = structlog.get_logger()


_LOG_METHODS = {
    LogLevel.DEBUG: "debug",
    LogLevel.INFO: "info",
    LogLevel.WARNING: "warning",
    LogLevel.SUCCESS: "info",
    LogLevel.ERROR: "error",
}


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of a session's status row."""

    session_id: str
    slot_number: Optional[int]
    status: GenerationStatus
    current_stage: GenerationStage
    started_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]
    error_message: Optional[str]
    idea_id: Optional[UUID]

    @classmethod
    def from_row(cls, row: GenerationSession) -> "SessionSnapshot":
        return cls(
            session_id=row.session_id,
            slot_number=row.slot_number,
            status=row.status,
            current_stage=row.current_stage,
            started_at=as_utc(row.started_at),
            updated_at=as_utc(row.updated_at),
            completed_at=as_utc(row.completed_at),
            error_message=row.error_message,
            idea_id=row.idea_id,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "slotNumber": self.slot_number,
            "status": self.status.value,
            "stage": self.current_stage.value,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "errorMessage": self.error_message,
            "ideaId": str(self.idea_id) if self.idea_id else None,
        }


# ==========================================================================
# Active Session Registry
# ==========================================================================

class ActiveGenerationRegistry:
    """
    Sessions currently executing in this process, keyed by session id.

    Each entry is inserted and removed only by the run that owns it.
    """

    def __init__(self):
        self._sessions: dict[str, Optional[int]] = {}

    def add(self, session_id: str, slot_number: Optional[int] = None) -> None:
        if session_id in self._sessions:
            raise ConflictError(f"Session already active: {session_id}", {"sessionId": session_id})
        self._sessions[session_id] = slot_number

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def slot_active(self, slot_number: int) -> bool:
        return slot_number in self._sessions.values()

    def snapshot(self) -> list[str]:
        return list(self._sessions)


# ==========================================================================
# Journal
# ==========================================================================

class GenerationJournal:
    """Log/status store backed by the generation_sessions and generation_logs tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _locked_session(self, db: AsyncSession, session_id: str) -> GenerationSession:
        result = await db.execute(
            select(GenerationSession)
            .where(GenerationSession.session_id == session_id)
            .with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError("Generation session", session_id)
        if row.status.is_terminal:
            raise InternalError(
                f"Session {session_id} is already {row.status.value}",
                {"sessionId": session_id, "status": row.status.value},
            )
        return row

    def _mirror(
        self,
        session_id: str,
        stage: GenerationStage,
        level: LogLevel,
        message: str,
        details: Optional[dict[str, Any]],
    ) -> None:
        log = getattr(logger, _LOG_METHODS[level])
        log(message, session_id=session_id, stage=stage.value, details=details)

    def _entry(
        self,
        session_id: str,
        stage: GenerationStage,
        level: LogLevel,
        message: str,
        details: Optional[dict[str, Any]],
        now: datetime,
    ) -> GenerationLogEntry:
        self._mirror(session_id, stage, level, message, details)
        return GenerationLogEntry(
            session_id=session_id,
            stage=stage,
            level=level,
            message=message,
            details=details or None,
            created_at=now,
        )

    # ----------------------------------------------------------------------
    # Writes
    # ----------------------------------------------------------------------

    async def start(self, session_id: str, slot_number: Optional[int] = None) -> SessionSnapshot:
        """Insert the in_progress status row for a new session."""
        async with self.session_factory() as db:
            async with db.begin():
                if await db.get(GenerationSession, session_id) is not None:
                    raise ConflictError(
                        f"Session already exists: {session_id}",
                        {"sessionId": session_id},
                    )
                now = utcnow()
                row = GenerationSession(
                    session_id=session_id,
                    slot_number=slot_number,
                    status=GenerationStatus.IN_PROGRESS,
                    current_stage=GenerationStage.INITIALIZATION,
                    started_at=now,
                    updated_at=now,
                )
                db.add(row)
            return SessionSnapshot.from_row(row)

    async def append(
        self,
        session_id: str,
        stage: GenerationStage,
        level: LogLevel,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> GenerationLogEntry:
        """
        Append a log entry and move the session to its stage.

        Terminal stages are reserved for complete() and fail().

        Raises:
            NotFoundError: unknown session
            InternalError: session already terminal, or a terminal stage given
        """
        if stage.is_terminal:
            raise InternalError(f"Use complete() or fail() for stage {stage.value}")

        async with self.session_factory() as db:
            async with db.begin():
                row = await self._locked_session(db, session_id)
                now = utcnow()
                entry = self._entry(session_id, stage, level, message, details, now)
                db.add(entry)
                row.current_stage = stage
                row.updated_at = now
            return entry

    async def complete(
        self,
        session_id: str,
        idea_id: UUID,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> GenerationLogEntry:
        """Write the success log and the completed status in one transaction."""
        async with self.session_factory() as db:
            async with db.begin():
                row = await self._locked_session(db, session_id)
                now = utcnow()
                entry = self._entry(session_id, GenerationStage.COMPLETE, LogLevel.SUCCESS, message, details, now)
                db.add(entry)
                row.current_stage = GenerationStage.COMPLETE
                row.status = GenerationStatus.COMPLETED
                row.updated_at = now
                row.completed_at = now
                row.idea_id = idea_id
            return entry

    async def fail(
        self,
        session_id: str,
        stage: GenerationStage,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Record a terminal failure.

        Writes an error log at the failing stage, a second error log at
        ``failed`` and the failed status, atomically.
        """
        async with self.session_factory() as db:
            async with db.begin():
                row = await self._locked_session(db, session_id)
                now = utcnow()
                failing_stage = stage if not stage.is_terminal else GenerationStage.FAILED
                db.add(self._entry(session_id, failing_stage, LogLevel.ERROR, f"Generation failed: {message}", details, now))
                db.add(self._entry(session_id, GenerationStage.FAILED, LogLevel.ERROR, "Idea generation failed", None, now))
                row.current_stage = GenerationStage.FAILED
                row.status = GenerationStatus.FAILED
                row.error_message = message
                row.updated_at = now
                row.completed_at = now

    # ----------------------------------------------------------------------
    # Reads
    # ----------------------------------------------------------------------

    async def get_status(self, session_id: str) -> Optional[SessionSnapshot]:
        async with self.session_factory() as db:
            row = await db.get(GenerationSession, session_id)
            return SessionSnapshot.from_row(row) if row else None

    async def get_logs(self, session_id: str, after_id: int = 0) -> list[GenerationLogEntry]:
        """Log rows of one session with id > after_id, in id order."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(GenerationLogEntry)
                .where(
                    GenerationLogEntry.session_id == session_id,
                    GenerationLogEntry.id > after_id,
                )
                .order_by(GenerationLogEntry.id)
            )
            return list(result.scalars().all())

    async def list_active(self, slot_number: Optional[int] = None) -> list[SessionSnapshot]:
        async with self.session_factory() as db:
            query = select(GenerationSession).where(GenerationSession.status == GenerationStatus.IN_PROGRESS)
            if slot_number is not None:
                query = query.where(GenerationSession.slot_number == slot_number)
            result = await db.execute(query.order_by(GenerationSession.started_at))
            return [SessionSnapshot.from_row(row) for row in result.scalars().all()]

    async def slot_in_progress(self, slot_number: int) -> bool:
        return bool(await self.list_active(slot_number))

    async def abandon_stale(self, message: str = "Interrupted by server restart") -> int:
        """Fail in_progress sessions left behind by a previous process."""
        async with self.session_factory() as db:
            async with db.begin():
                now = utcnow()
                result = await db.execute(
                    select(GenerationSession.session_id, GenerationSession.current_stage)
                    .where(GenerationSession.status == GenerationStatus.IN_PROGRESS)
                )
                stale = result.all()
                for session_id, stage in stale:
                    db.add(self._entry(session_id, stage, LogLevel.ERROR, f"Generation failed: {message}", None, now))
                    db.add(self._entry(session_id, GenerationStage.FAILED, LogLevel.ERROR, "Idea generation failed", None, now))
                if stale:
                    await db.execute(
                        update(GenerationSession)
                        .where(GenerationSession.session_id.in_([s for s, _ in stale]))
                        .values(
                            status=GenerationStatus.FAILED,
                            current_stage=GenerationStage.FAILED,
                            error_message=message,
                            updated_at=now,
                            completed_at=now,
                        )
                    )
            return len(stale)


# ==========================================================================
# Summary
# ==========================================================================

def summarize(session_id: str, logs: list[GenerationLogEntry], started_at: Optional[datetime] = None) -> dict[str, Any]:
    """
    Summarize a log trail.

    Stage durations run from a stage's first entry to the first entry of
    the next stage; the last stage ends at the last entry.
    """
    stages: dict[str, int] = {}
    if not logs:
        return {
            "sessionId": session_id,
            "totalDuration": 0,
            "stages": stages,
            "success": False,
            "errorCount": 0,
            "warningCount": 0,
        }

    times = [as_utc(entry.created_at) for entry in logs]
    start = as_utc(started_at) or times[0]

    boundaries: list[tuple[str, datetime]] = []
    for entry, when in zip(logs, times):
        if not boundaries or boundaries[-1][0] != entry.stage.value:
            boundaries.append((entry.stage.value, when))
    for (stage, begin), (_, end) in zip(boundaries, boundaries[1:] + [(None, times[-1])]):
        stages[stage] = stages.get(stage, 0) + int((end - begin).total_seconds() * 1000)

    return {
        "sessionId": session_id,
        "totalDuration": int((times[-1] - start).total_seconds() * 1000),
        "stages": stages,
        "success": logs[-1].stage == GenerationStage.COMPLETE,
        "errorCount": sum(1 for entry in logs if entry.level == LogLevel.ERROR),
        "warningCount": sum(1 for entry in logs if entry.level == LogLevel.WARNING),
    }
