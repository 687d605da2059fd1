"""
Wiring for the generation engine: one journal, one active-session registry,
one orchestrator, one scheduler and one stream factory per process.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.core.config import settings
from ideaforge.core.generation.journal import ActiveGenerationRegistry, GenerationJournal
from ideaforge.core.generation.orchestrator import GenerationOrchestrator, LLMFactory
from ideaforge.core.generation.profiles import ProfileConfigLoader, PromptBuilder, ensure_default_profile
from ideaforge.core.generation.providers import (
    EmbeddingProvider,
    create_embedding_provider,
    create_llm_provider,
)
from ideaforge.core.generation.scheduler import SlotScheduler
from ideaforge.core.generation.streaming import GenerationStream

logger = structlog.get_logger()


@dataclass
class GenerationServices:
    session_factory: async_sessionmaker[AsyncSession]
    journal: GenerationJournal
    registry: ActiveGenerationRegistry
    orchestrator: GenerationOrchestrator
    scheduler: SlotScheduler
    stream: GenerationStream

    async def startup(self, start_scheduler: Optional[bool] = None) -> None:
        """Recover stale sessions, seed defaults and start the scheduler."""
        abandoned = await self.journal.abandon_stale()
        if abandoned:
            logger.warning("Failed sessions left in progress by a previous run", count=abandoned)

        async with self.session_factory() as db:
            async with db.begin():
                await ensure_default_profile(db)
        await self.scheduler.ensure_slots(settings.DEFAULT_SLOT_COUNT)

        if start_scheduler is None:
            start_scheduler = settings.SCHEDULER_ENABLED
        if start_scheduler:
            await self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    embedder: Optional[EmbeddingProvider] = None,
    llm_factory: LLMFactory = create_llm_provider,
    loader: Optional[ProfileConfigLoader] = None,
    prompt_builder: Optional[PromptBuilder] = None,
    poll_interval: Optional[float] = None,
    wait_seconds: Optional[float] = None,
    tick_seconds: Optional[float] = None,
) -> GenerationServices:
    journal = GenerationJournal(session_factory)
    registry = ActiveGenerationRegistry()
    orchestrator = GenerationOrchestrator(
        session_factory,
        journal,
        registry,
        embedder=embedder or create_embedding_provider(),
        llm_factory=llm_factory,
        loader=loader,
        prompt_builder=prompt_builder,
    )
    return GenerationServices(
        session_factory=session_factory,
        journal=journal,
        registry=registry,
        orchestrator=orchestrator,
        scheduler=SlotScheduler(session_factory, orchestrator, tick_seconds=tick_seconds),
        stream=GenerationStream(journal, poll_interval=poll_interval, wait_seconds=wait_seconds),
    )
