"""
Generation Orchestrator
=======================

Drives one generation attempt end-to-end:

INITIALIZATION → CONFIG_LOAD → PROMPT_BUILD → API_CALL → RESPONSE_PARSE
→ DUPLICATE_CHECK → DATABASE_SAVE → COMPLETE

Any failure lands in FAILED with the error written to the session's log
trail and status row before it is re-raised. Runs for distinct session ids
share nothing but the database; each stage opens its own DB session.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.core.errors import (
    ConflictError,
    ExternalServiceError,
    GenerationError,
    InternalError,
)
from ideaforge.core.generation.duplicates import DuplicateDetector, DuplicateVerdict
from ideaforge.core.generation.journal import (
    ActiveGenerationRegistry,
    GenerationJournal,
    summarize,
)
from ideaforge.core.generation.parser import GeneratedIdea, folder_name_for, parse_generation_response
from ideaforge.core.generation.profiles import (
    BuiltPrompt,
    ProfileConfig,
    ProfileConfigLoader,
    PromptBuilder,
    resolve_profile,
)
from ideaforge.core.generation.providers import (
    EmbeddingProvider,
    LLMProvider,
    create_llm_provider,
)
from ideaforge.core.generation.scoring import ComplexityScores, complexity_scores, weighted_score
from ideaforge.core.models import (
    GenerationLogEntry,
    GenerationStage,
    Idea,
    IdeaHistory,
    IdeaStatus,
    LogLevel,
)
from ideaforge.core.timeutils import utcnow

logger = structlog.get_logger()


LLMFactory = Callable[[Optional[str], Optional[str]], LLMProvider]


# ==========================================================================
# Request / Result
# ==========================================================================

@dataclass
class GenerationRequest:
    """Options for one generation attempt."""

    framework: Optional[str] = None
    domain: Optional[str] = None
    skip_duplicate_check: bool = False
    profile_id: Optional[UUID] = None
    slot_number: Optional[int] = None
    session_id: Optional[str] = None
    trigger: str = "manual"  # manual | auto

    def options(self) -> dict[str, Any]:
        return {
            "framework": self.framework or "random",
            "domain": self.domain,
            "skipDuplicateCheck": self.skip_duplicate_check,
            "profileId": str(self.profile_id) if self.profile_id else None,
            "slotNumber": self.slot_number,
            "trigger": self.trigger,
        }


@dataclass
class GenerationContext:
    """Mutable state of a claimed session while it executes."""

    request: GenerationRequest
    session_id: str
    started_at: datetime
    stage: GenerationStage = GenerationStage.INITIALIZATION
    configuration: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationResult:
    idea: Idea
    logs: list[GenerationLogEntry]
    summary: dict[str, Any]
    configuration: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "idea": self.idea.to_dict(),
            "logs": [entry.to_dict() for entry in self.logs],
            "summary": self.summary,
            "configuration": self.configuration,
        }


# ==========================================================================
# Orchestrator
# ==========================================================================

class GenerationOrchestrator:
    """
    Generation pipeline engine.

    ``start`` claims a session (status row + active registry entry);
    ``execute`` runs the stages for a claimed session. ``run`` does both.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        journal: GenerationJournal,
        registry: ActiveGenerationRegistry,
        embedder: EmbeddingProvider,
        llm_factory: LLMFactory = create_llm_provider,
        detector: Optional[DuplicateDetector] = None,
        loader: Optional[ProfileConfigLoader] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        self.session_factory = session_factory
        self.journal = journal
        self.registry = registry
        self.embedder = embedder
        self.llm_factory = llm_factory
        self.detector = detector or DuplicateDetector(session_factory, embedder)
        self.loader = loader or ProfileConfigLoader()
        self.prompt_builder = prompt_builder or PromptBuilder()

    # ----------------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------------

    async def start(self, request: GenerationRequest) -> GenerationContext:
        """
        Claim a session for the request.

        Raises:
            ConflictError: the session id is already active or recorded
        """
        session_id = request.session_id or f"gen-{uuid4().hex}"
        request.session_id = session_id

        self.registry.add(session_id, request.slot_number)
        try:
            snapshot = await self.journal.start(session_id, request.slot_number)
        except BaseException:
            self.registry.discard(session_id)
            raise

        logger.info(
            "Generation session claimed",
            session_id=session_id,
            slot_number=request.slot_number,
            trigger=request.trigger,
        )
        return GenerationContext(request=request, session_id=session_id, started_at=snapshot.started_at)

    async def run(self, request: GenerationRequest) -> GenerationResult:
        ctx = await self.start(request)
        return await self.execute(ctx)

    def status(self) -> dict[str, Any]:
        active = self.registry.snapshot()
        return {
            "isGenerating": bool(active),
            "activeCount": len(active),
            "activeSessions": active,
        }

    async def execute(self, ctx: GenerationContext) -> GenerationResult:
        """
        Run every stage for a claimed session.

        Returns:
            GenerationResult with the persisted idea and the full log trail

        Raises:
            GenerationError: any failure, already recorded in the journal
        """
        try:
            return await self._execute(ctx)
        except GenerationError as e:
            await self._record_failure(ctx, e.message, e.to_dict())
            raise
        except asyncio.CancelledError:
            await self._record_failure(ctx, "Generation cancelled")
            raise
        except Exception as e:
            logger.exception("Unexpected generation error", session_id=ctx.session_id)
            error = InternalError(str(e) or type(e).__name__, {"type": type(e).__name__})
            await self._record_failure(ctx, error.message, error.to_dict())
            raise error from e
        finally:
            self.registry.discard(ctx.session_id)

    # ----------------------------------------------------------------------
    # Stages
    # ----------------------------------------------------------------------

    async def _execute(self, ctx: GenerationContext) -> GenerationResult:
        request = ctx.request

        # Initialization
        await self._log(ctx, GenerationStage.INITIALIZATION, LogLevel.INFO, "Starting idea generation", request.options())
        if not self.llm_factory(None, None).is_configured:
            raise ExternalServiceError(
                "AI Provider",
                "No AI API key configured",
                {"hint": "Set ANTHROPIC_API_KEY, GEMINI_API_KEY or OPENAI_API_KEY"},
            )
        await self._log(ctx, GenerationStage.INITIALIZATION, LogLevel.SUCCESS, "Configuration verified")

        # Config load
        profile = await self._load_profile(ctx)

        # Prompt build
        built = await self._build_prompt(ctx, profile)

        # API call
        llm = self.llm_factory(profile.provider, profile.model)
        response = await self._call_llm(ctx, llm, profile, built)

        # Response parse
        idea_data = await self._parse(ctx, profile, response)

        # Duplicate check
        verdict = await self._check_duplicates(ctx, idea_data)

        # Scoring
        scores = idea_data.scores
        total = weighted_score(scores, profile.weights)
        complexity = complexity_scores(scores, idea_data.evaluation_details, idea_data.regulatory)
        await self._log(
            ctx,
            GenerationStage.DATABASE_SAVE,
            LogLevel.INFO,
            "Scores calculated",
            {"score": total, "complexity": complexity.to_dict()},
        )

        # Database save
        embedding = verdict.embedding if verdict else await self._embedding_for_unchecked(ctx, idea_data)
        await self._log(ctx, GenerationStage.DATABASE_SAVE, LogLevel.INFO, "Saving idea to database")
        idea = await self._persist(idea_data, built, response, total, complexity, embedding, llm)
        await self._log(
            ctx,
            GenerationStage.DATABASE_SAVE,
            LogLevel.SUCCESS,
            "Idea saved to database",
            {"ideaId": str(idea.id), "ideaName": idea.name, "score": idea.score, "hasEmbedding": embedding is not None},
        )

        # Complete
        await self.journal.complete(
            ctx.session_id,
            idea.id,
            f"Idea generation complete: {idea.name}",
            {"ideaId": str(idea.id), "score": f"{idea.score}/100"},
        )
        ctx.stage = GenerationStage.COMPLETE

        logs = await self.journal.get_logs(ctx.session_id)
        return GenerationResult(
            idea=idea,
            logs=logs,
            summary=summarize(ctx.session_id, logs, ctx.started_at),
            configuration=ctx.configuration,
        )

    async def _load_profile(self, ctx: GenerationContext) -> ProfileConfig:
        request = ctx.request
        await self._log(
            ctx,
            GenerationStage.CONFIG_LOAD,
            LogLevel.INFO,
            "Loading configuration",
            {"profileId": str(request.profile_id) if request.profile_id else None, "slotNumber": request.slot_number},
        )
        async with self.session_factory() as db:
            profile = await resolve_profile(db, self.loader, request.profile_id, request.slot_number)

        ctx.configuration = profile.describe()
        await self._log(ctx, GenerationStage.CONFIG_LOAD, LogLevel.SUCCESS, "Configuration loaded", ctx.configuration)
        return profile

    async def _build_prompt(self, ctx: GenerationContext, profile: ProfileConfig) -> BuiltPrompt:
        request = ctx.request
        await self._log(
            ctx,
            GenerationStage.PROMPT_BUILD,
            LogLevel.INFO,
            "Building generation prompt",
            {"framework": request.framework or "random", "domain": request.domain},
        )
        built = self.prompt_builder.build(profile, request.framework, request.domain)
        ctx.configuration["framework"] = built.framework_name
        await self._log(
            ctx,
            GenerationStage.PROMPT_BUILD,
            LogLevel.SUCCESS,
            "Prompt built successfully",
            {"promptLength": len(built.prompt), "framework": built.framework_name},
        )
        return built

    async def _call_llm(
        self,
        ctx: GenerationContext,
        llm: LLMProvider,
        profile: ProfileConfig,
        built: BuiltPrompt,
    ) -> str:
        ctx.configuration["provider"] = llm.name
        await self._log(
            ctx,
            GenerationStage.API_CALL,
            LogLevel.INFO,
            "Calling AI API",
            {"provider": llm.name, "temperature": profile.temperature, "maxTokens": profile.max_tokens},
        )

        started = time.monotonic()
        response = await llm.complete(
            built.prompt,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
        )
        await self._log(
            ctx,
            GenerationStage.API_CALL,
            LogLevel.SUCCESS,
            "AI API response received",
            {"duration": int((time.monotonic() - started) * 1000), "responseLength": len(response)},
        )
        return response

    async def _parse(self, ctx: GenerationContext, profile: ProfileConfig, response: str) -> GeneratedIdea:
        await self._log(ctx, GenerationStage.RESPONSE_PARSE, LogLevel.INFO, "Parsing AI response")
        idea_data = parse_generation_response(response, profile.criterion_keys)
        for warning in idea_data.warnings:
            await self._log(ctx, GenerationStage.RESPONSE_PARSE, LogLevel.WARNING, warning)
        await self._log(
            ctx,
            GenerationStage.RESPONSE_PARSE,
            LogLevel.SUCCESS,
            "Response parsed successfully",
            {"ideaName": idea_data.name, "domain": idea_data.full_domain, "criteriaCount": len(idea_data.evaluation)},
        )
        return idea_data

    async def _check_duplicates(self, ctx: GenerationContext, idea_data: GeneratedIdea) -> Optional[DuplicateVerdict]:
        if ctx.request.skip_duplicate_check:
            await self._log(ctx, GenerationStage.DUPLICATE_CHECK, LogLevel.WARNING, "Duplicate check skipped")
            return None

        await self._log(
            ctx,
            GenerationStage.DUPLICATE_CHECK,
            LogLevel.INFO,
            "Checking for duplicate ideas",
            {"domain": idea_data.domain, "problem": idea_data.problem},
        )
        verdict = await self.detector.check(idea_data)
        if verdict.is_duplicate:
            raise ConflictError(
                f"Similar idea already exists: {verdict.matched_idea_name}",
                {
                    "existingId": str(verdict.matched_idea_id),
                    "similarity": verdict.similarity,
                    "method": verdict.method,
                },
            )

        await self._log(
            ctx,
            GenerationStage.DUPLICATE_CHECK,
            LogLevel.SUCCESS,
            "No duplicates found",
            {"bestSimilarity": verdict.similarity},
        )
        return verdict

    async def _embedding_for_unchecked(self, ctx: GenerationContext, idea_data: GeneratedIdea) -> Optional[list[float]]:
        try:
            return await self.embedder.embed(idea_data.embedding_text())
        except ExternalServiceError as e:
            await self._log(
                ctx,
                GenerationStage.DATABASE_SAVE,
                LogLevel.WARNING,
                "Embedding generation failed, saving without embedding",
                {"error": e.message},
            )
            return None

    async def _persist(
        self,
        idea_data: GeneratedIdea,
        built: BuiltPrompt,
        response: str,
        score: int,
        complexity: ComplexityScores,
        embedding: Optional[list[float]],
        llm: LLMProvider,
    ) -> Idea:
        """Insert the idea, its history entry and its embedding in one transaction."""
        now = utcnow()
        idea = Idea(
            id=uuid4(),
            name=idea_data.name,
            folder_name=folder_name_for(idea_data.name, now.year, now.month),
            status=IdeaStatus.DRAFT,
            score=score,
            domain=idea_data.domain,
            subdomain=idea_data.subdomain,
            problem=idea_data.problem,
            solution=idea_data.solution,
            scores=idea_data.scores,
            evaluation_details=idea_data.evaluation_details,
            complexity_scores=complexity.to_dict(),
            quick_summary=idea_data.quick_summary,
            concrete_example=idea_data.concrete_example,
            idea_components=idea_data.idea_components,
            quick_notes=idea_data.quick_notes,
            action_plan=idea_data.action_plan,
            tags=idea_data.tags,
            generation_framework=built.framework_name,
            raw_ai_response=response,
            ai_prompt=built.prompt,
            embedding=embedding,
            created_at=now,
            updated_at=now,
        )

        async with self.session_factory() as db:
            async with db.begin():
                db.add(idea)
                db.add(
                    IdeaHistory(
                        idea_id=idea.id,
                        change_type="created",
                        description=f"Idea generated by {llm.name}",
                        created_at=now,
                    )
                )
        return idea

    # ----------------------------------------------------------------------
    # Journal helpers
    # ----------------------------------------------------------------------

    async def _log(
        self,
        ctx: GenerationContext,
        stage: GenerationStage,
        level: LogLevel,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        await self.journal.append(ctx.session_id, stage, level, message, details)
        ctx.stage = stage

    async def _record_failure(
        self,
        ctx: GenerationContext,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            await self.journal.fail(ctx.session_id, ctx.stage, message, details)
        except Exception:
            # the original error still propagates
            logger.exception("Could not record generation failure", session_id=ctx.session_id, stage=ctx.stage.value)
