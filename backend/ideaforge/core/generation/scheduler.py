"""
Slot Scheduler
==============

Owns the generation slots and mediates manual vs. automatic triggering.

- A background loop ticks every SCHEDULER_TICK_SECONDS and fires due slots
  (enabled, auto_generate, next_scheduled_at <= now), oldest first.
- next_scheduled_at is pushed to now + interval *before* the generation
  starts, so a slow run never re-triggers itself.
- A slot is busy while any of its sessions is active in this process or
  still in_progress in the journal. Busy slots are skipped.
- Manual requests on an auto-generating slot are rejected (Conflict).

Every busy-check + claim pair runs under one lock, so a slot can never
have two scheduler-triggered runs in flight.
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.core.config import settings
from ideaforge.core.errors import ConflictError, GenerationError, NotFoundError
from ideaforge.core.generation.orchestrator import (
    GenerationContext,
    GenerationOrchestrator,
    GenerationRequest,
    GenerationResult,
)
from ideaforge.core.models import ConfigurationProfile, GenerationSlot
from ideaforge.core.timeutils import as_utc, epoch_ms, utcnow

logger = structlog.get_logger()


_UNSET: Any = object()


def clamp_interval(minutes: int) -> int:
    return max(settings.MIN_AUTO_INTERVAL_MINUTES, min(settings.MAX_AUTO_INTERVAL_MINUTES, int(minutes)))


@dataclass
class SlotView:
    """Slot configuration plus computed state."""

    slot_number: int
    profile_id: Optional[UUID]
    profile_name: Optional[str]
    is_enabled: bool
    auto_generate: bool
    auto_generate_interval_minutes: int
    next_scheduled_at: Optional[datetime]
    last_run_at: Optional[datetime]
    is_busy: bool

    @classmethod
    def from_row(cls, slot: GenerationSlot, is_busy: bool) -> "SlotView":
        return cls(
            slot_number=slot.slot_number,
            profile_id=slot.profile_id,
            profile_name=slot.profile.name if slot.profile else None,
            is_enabled=slot.is_enabled,
            auto_generate=slot.auto_generate,
            auto_generate_interval_minutes=slot.auto_generate_interval_minutes,
            next_scheduled_at=as_utc(slot.next_scheduled_at),
            last_run_at=as_utc(slot.last_run_at),
            is_busy=is_busy,
        )


class SlotScheduler:
    """Fires auto-generation for due slots and guards manual triggers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: GenerationOrchestrator,
        tick_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.tick_seconds = tick_seconds or settings.SCHEDULER_TICK_SECONDS

        self._claim_lock = asyncio.Lock()
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._inflight: set[asyncio.Task] = set()
        self._last_countdown: dict[int, int] = {}

    # ----------------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Slot scheduler started", tick_seconds=self.tick_seconds)

    async def stop(self) -> None:
        """Stop the loop and cancel auto-generations still in flight."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        self._last_countdown.clear()
        logger.info("Slot scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self.tick_seconds)

    # ----------------------------------------------------------------------
    # Ticking
    # ----------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> list[GenerationContext]:
        """
        Fire every due slot once.

        Returns:
            Contexts of the sessions claimed in this tick
        """
        if self._tick_lock.locked():
            return []

        async with self._tick_lock:
            now = now or utcnow()
            async with self.session_factory() as db:
                result = await db.execute(
                    select(GenerationSlot.slot_number)
                    .where(
                        GenerationSlot.is_enabled.is_(True),
                        GenerationSlot.auto_generate.is_(True),
                        GenerationSlot.next_scheduled_at.is_not(None),
                        GenerationSlot.next_scheduled_at <= now,
                    )
                    .order_by(GenerationSlot.next_scheduled_at)
                )
                due = list(result.scalars().all())

            if due:
                logger.info("Slots due for generation", slots=due)

            claimed = []
            for slot_number in due:
                ctx = await self._fire(slot_number, now)
                if ctx is not None:
                    claimed.append(ctx)

            await self.log_countdowns(now)
            return claimed

    async def _fire(self, slot_number: int, now: datetime) -> Optional[GenerationContext]:
        async with self._claim_lock:
            if await self.is_busy(slot_number):
                logger.info("Slot has active generation, skipping", slot_number=slot_number)
                return None

            async with self.session_factory() as db:
                async with db.begin():
                    slot = await db.get(GenerationSlot, slot_number, with_for_update=True)
                    next_at = as_utc(slot.next_scheduled_at) if slot else None
                    if slot is None or not (slot.is_enabled and slot.auto_generate) or next_at is None or next_at > now:
                        return None

                    slot.next_scheduled_at = now + timedelta(minutes=slot.auto_generate_interval_minutes)
                    slot.last_run_at = now
                    profile_id = slot.profile_id

            request = GenerationRequest(
                session_id=f"auto-slot-{slot_number}-{epoch_ms()}",
                slot_number=slot_number,
                profile_id=profile_id,
                trigger="auto",
            )
            try:
                ctx = await self.orchestrator.start(request)
            except ConflictError as e:
                logger.warning("Could not claim auto-generation session", slot_number=slot_number, error=e.message)
                return None

        logger.info("Starting auto-generation", slot_number=slot_number, session_id=ctx.session_id)
        task = asyncio.create_task(self._execute(ctx))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return ctx

    async def _execute(self, ctx: GenerationContext) -> None:
        slot_number = ctx.request.slot_number
        try:
            result = await self.orchestrator.execute(ctx)
        except GenerationError as e:
            # already recorded in the journal
            logger.warning("Auto-generation failed", slot_number=slot_number, session_id=ctx.session_id, error=e.message)
            return
        logger.info(
            "Auto-generation complete",
            slot_number=slot_number,
            idea=result.idea.name,
            score=result.idea.score,
        )

    async def wait_idle(self) -> None:
        """Wait for every in-flight auto-generation to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ----------------------------------------------------------------------
    # Countdowns
    # ----------------------------------------------------------------------

    async def countdowns(self, now: Optional[datetime] = None) -> dict[int, int]:
        """Minutes until the next auto-generation, per scheduled slot."""
        now = now or utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                select(GenerationSlot.slot_number, GenerationSlot.next_scheduled_at)
                .where(
                    GenerationSlot.is_enabled.is_(True),
                    GenerationSlot.auto_generate.is_(True),
                    GenerationSlot.next_scheduled_at.is_not(None),
                )
                .order_by(GenerationSlot.slot_number)
            )
            rows = result.all()

        remaining = {}
        for slot_number, next_at in rows:
            seconds = (as_utc(next_at) - now).total_seconds()
            if seconds > 0:
                remaining[slot_number] = math.ceil(seconds / 60)
        return remaining

    async def log_countdowns(self, now: Optional[datetime] = None) -> None:
        """Log each slot's countdown once per minute change."""
        for slot_number, minutes in (await self.countdowns(now)).items():
            if self._last_countdown.get(slot_number) == minutes:
                continue
            self._last_countdown[slot_number] = minutes
            unit = "minute" if minutes == 1 else "minutes"
            logger.info(f"Next auto-generation in {minutes} {unit}", slot_number=slot_number)

    # ----------------------------------------------------------------------
    # Manual Triggering
    # ----------------------------------------------------------------------

    async def is_busy(self, slot_number: int) -> bool:
        if self.orchestrator.registry.slot_active(slot_number):
            return True
        return await self.orchestrator.journal.slot_in_progress(slot_number)

    async def run_manual(self, request: GenerationRequest) -> GenerationResult:
        """
        Run a manual generation, honoring slot exclusivity.

        Raises:
            NotFoundError: the slot does not exist
            ConflictError: the slot auto-generates, is disabled or is busy
        """
        request.trigger = "manual"
        if request.slot_number is None:
            return await self.orchestrator.run(request)

        slot_number = request.slot_number
        async with self._claim_lock:
            async with self.session_factory() as db:
                slot = await db.get(GenerationSlot, slot_number)
            if slot is None:
                raise NotFoundError("Generation slot", slot_number)
            if slot.auto_generate:
                raise ConflictError(
                    f"Slot {slot_number} is under auto-generation; disable it to generate manually",
                    {"slotNumber": slot_number},
                )
            if not slot.is_enabled:
                raise ConflictError(f"Slot {slot_number} is disabled", {"slotNumber": slot_number})
            if await self.is_busy(slot_number):
                raise ConflictError(
                    f"Slot {slot_number} already has a generation in progress",
                    {"slotNumber": slot_number},
                )
            ctx = await self.orchestrator.start(request)

        return await self.orchestrator.execute(ctx)

    # ----------------------------------------------------------------------
    # Slot Configuration
    # ----------------------------------------------------------------------

    async def get_slot(self, slot_number: int) -> SlotView:
        async with self.session_factory() as db:
            slot = await db.get(GenerationSlot, slot_number)
        if slot is None:
            raise NotFoundError("Generation slot", slot_number)
        return SlotView.from_row(slot, await self.is_busy(slot_number))

    async def list_slots(self) -> list[SlotView]:
        async with self.session_factory() as db:
            result = await db.execute(select(GenerationSlot).order_by(GenerationSlot.slot_number))
            slots = list(result.scalars().all())
        return [SlotView.from_row(slot, await self.is_busy(slot.slot_number)) for slot in slots]

    async def ensure_slots(self, count: int) -> list[SlotView]:
        """Create slots 1..count that do not exist yet."""
        count = max(1, min(count, settings.MAX_GENERATION_SLOTS))
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(select(GenerationSlot.slot_number))
                existing = set(result.scalars().all())
                now = utcnow()
                for slot_number in range(1, count + 1):
                    if slot_number not in existing:
                        db.add(
                            GenerationSlot(
                                slot_number=slot_number,
                                is_enabled=True,
                                auto_generate=False,
                                auto_generate_interval_minutes=60,
                                created_at=now,
                                updated_at=now,
                            )
                        )
        logger.info("Generation slots ensured", count=count)
        return await self.list_slots()

    async def update_slot(
        self,
        slot_number: int,
        *,
        profile_id: Optional[UUID] = _UNSET,
        is_enabled: Optional[bool] = None,
        auto_generate: Optional[bool] = None,
        interval_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SlotView:
        """
        Update a slot's configuration.

        Enabling auto-generation schedules the next run at now + interval,
        disabling it clears the schedule. An interval change, or re-enabling
        a disabled slot, while auto-generation is on reschedules from now.

        Raises:
            NotFoundError: unknown slot or profile
            ConflictError: enabling auto-generation while the slot is busy
        """
        now = now or utcnow()
        async with self._claim_lock:
            async with self.session_factory() as db:
                async with db.begin():
                    slot = await db.get(GenerationSlot, slot_number, with_for_update=True)
                    if slot is None:
                        raise NotFoundError("Generation slot", slot_number)

                    enabling = auto_generate is True and not slot.auto_generate
                    reenabling = is_enabled is True and not slot.is_enabled
                    if enabling and await self.is_busy(slot_number):
                        raise ConflictError(
                            f"Slot {slot_number} has a generation in progress; wait for it to finish",
                            {"slotNumber": slot_number},
                        )

                    if profile_id is not _UNSET:
                        if profile_id is not None and await db.get(ConfigurationProfile, profile_id) is None:
                            raise NotFoundError("Configuration profile", profile_id)
                        slot.profile_id = profile_id
                    if is_enabled is not None:
                        slot.is_enabled = is_enabled
                    if interval_minutes is not None:
                        slot.auto_generate_interval_minutes = clamp_interval(interval_minutes)
                    if auto_generate is not None:
                        slot.auto_generate = auto_generate

                    interval = timedelta(minutes=slot.auto_generate_interval_minutes)
                    if enabling or (slot.auto_generate and (reenabling or interval_minutes is not None)):
                        slot.next_scheduled_at = now + interval
                    elif auto_generate is False:
                        slot.next_scheduled_at = None
                    slot.updated_at = now

            if auto_generate is False:
                self._last_countdown.pop(slot_number, None)

        logger.info(
            "Generation slot updated",
            slot_number=slot_number,
            auto_generate=slot.auto_generate,
            interval_minutes=slot.auto_generate_interval_minutes,
        )
        return await self.get_slot(slot_number)
