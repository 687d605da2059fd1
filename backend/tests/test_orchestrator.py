"""
Tests for the generation orchestrator.
"""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import InvalidRequestError

from ideaforge.core.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from ideaforge.core.generation.orchestrator import GenerationRequest
from ideaforge.core.models import (
    GenerationStage,
    GenerationStatus,
    Idea,
    IdeaHistory,
    LogLevel,
)

from conftest import build_response


PIPELINE = [
    "initialization",
    "config_load",
    "prompt_build",
    "api_call",
    "response_parse",
    "duplicate_check",
    "database_save",
    "complete",
]


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar_one()


def _stage_sequence(logs) -> list[str]:
    sequence = []
    for entry in logs:
        if not sequence or sequence[-1] != entry.stage.value:
            sequence.append(entry.stage.value)
    return sequence


class TestSuccessfulGeneration:
    """Tests for the happy path."""

    async def test_generates_and_persists_idea(self, services, session_factory, llm, embedder):
        result = await services.orchestrator.run(GenerationRequest(session_id="gen-ok"))

        idea = result.idea
        assert idea.name == "Recall Autopilot"
        assert idea.domain == "Healthcare"
        assert idea.subdomain == "Dental Practices"
        # (8*2 + 6 + 7 + 9 + 5) / 60
        assert idea.score == 72
        assert idea.complexity_scores == {"technical": 2.0, "regulatory": 3.0, "sales": 4.5, "total": 9.5}
        assert idea.generation_framework == "Pain Point Automation"
        assert idea.folder_name.startswith("recall-autopilot-")
        assert llm.calls == 1
        assert embedder.calls == 1

        async with session_factory() as db:
            stored = await db.get(Idea, idea.id)
            history = (await db.execute(select(IdeaHistory).where(IdeaHistory.idea_id == idea.id))).scalars().all()
        assert stored.embedding is not None
        assert [h.change_type for h in history] == ["created"]
        assert history[0].description == "Idea generated by Fake LLM"

    async def test_log_trail_follows_pipeline(self, services):
        result = await services.orchestrator.run(GenerationRequest(session_id="gen-ok"))

        assert _stage_sequence(result.logs) == PIPELINE
        assert [entry.id for entry in result.logs] == sorted(entry.id for entry in result.logs)
        assert result.summary["success"] is True
        assert result.summary["errorCount"] == 0

        snapshot = await services.journal.get_status("gen-ok")
        assert snapshot.status == GenerationStatus.COMPLETED
        assert snapshot.idea_id == result.idea.id

    async def test_result_to_dict(self, services):
        result = await services.orchestrator.run(GenerationRequest(session_id="gen-ok"))

        data = result.to_dict()

        assert data["idea"]["score"] == 72
        assert data["configuration"]["folderName"] == "default"
        assert data["configuration"]["framework"] == "Pain Point Automation"
        assert data["logs"][-1]["stage"] == "complete"
        assert "embedding" not in data["idea"]

    async def test_generated_session_id(self, services):
        result = await services.orchestrator.run(GenerationRequest())

        assert result.summary["sessionId"].startswith("gen-")
        assert not services.orchestrator.status()["isGenerating"]

    async def test_parse_warnings_are_logged(self, services, llm):
        llm.responses = [build_response(quickNotes={"strengths": ["x"]})]

        result = await services.orchestrator.run(GenerationRequest())

        warnings = [e for e in result.logs if e.level == LogLevel.WARNING]
        assert warnings
        assert all(e.stage == GenerationStage.RESPONSE_PARSE for e in warnings)


class TestFailedGeneration:
    """Tests for failures at each stage."""

    async def test_invalid_response_fails_at_parse(self, services, session_factory, llm):
        llm.responses = ["Sorry, no JSON today."]

        with pytest.raises(ValidationError):
            await services.orchestrator.run(GenerationRequest(session_id="gen-bad"))

        snapshot = await services.journal.get_status("gen-bad")
        logs = await services.journal.get_logs("gen-bad")

        assert snapshot.status == GenerationStatus.FAILED
        assert snapshot.current_stage == GenerationStage.FAILED
        assert snapshot.error_message.startswith("Failed to parse response")
        assert logs[-2].stage == GenerationStage.RESPONSE_PARSE
        assert logs[-2].level == LogLevel.ERROR
        assert logs[-1].stage == GenerationStage.FAILED
        assert await _count(session_factory, Idea) == 0

    async def test_rate_limit_fails_at_api_call(self, services, session_factory, llm):
        llm.error = ExternalServiceError("Claude API", "Rate limit exceeded")

        with pytest.raises(ExternalServiceError) as exc:
            await services.orchestrator.run(GenerationRequest(session_id="gen-429"))

        assert exc.value.status_code == 502
        snapshot = await services.journal.get_status("gen-429")
        logs = await services.journal.get_logs("gen-429")

        assert snapshot.status == GenerationStatus.FAILED
        assert snapshot.current_stage != GenerationStage.COMPLETE
        assert "Rate limit" in snapshot.error_message
        assert any(e.stage == GenerationStage.API_CALL and e.level == LogLevel.ERROR for e in logs)
        assert await _count(session_factory, Idea) == 0
        assert services.registry.snapshot() == []

    async def test_missing_api_key_fails_at_initialization(self, services, llm):
        llm.configured = False

        with pytest.raises(ExternalServiceError, match="No AI API key configured"):
            await services.orchestrator.run(GenerationRequest(session_id="gen-nokey"))

        logs = await services.journal.get_logs("gen-nokey")
        assert logs[-2].stage == GenerationStage.INITIALIZATION
        assert llm.calls == 0

    async def test_unknown_framework_fails_at_prompt_build(self, services):
        with pytest.raises(NotFoundError):
            await services.orchestrator.run(GenerationRequest(session_id="gen-fw", framework="Moonshot"))

        logs = await services.journal.get_logs("gen-fw")
        assert logs[-2].stage == GenerationStage.PROMPT_BUILD

    async def test_unexpected_error_is_wrapped(self, services, llm):
        llm.error = RuntimeError("socket exploded")

        with pytest.raises(Exception) as exc:
            await services.orchestrator.run(GenerationRequest(session_id="gen-boom"))

        assert exc.value.code == "INTERNAL_ERROR"
        assert (await services.journal.get_status("gen-boom")).error_message == "socket exploded"

    async def test_cancellation_is_recorded(self, services, llm):
        llm.gate = asyncio.Event()
        task = asyncio.create_task(services.orchestrator.run(GenerationRequest(session_id="gen-cancel")))
        await asyncio.wait_for(llm.entered.wait(), 2)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        snapshot = await services.journal.get_status("gen-cancel")
        assert snapshot.status == GenerationStatus.FAILED
        assert snapshot.error_message == "Generation cancelled"


class TestDuplicates:
    """Tests for duplicate handling within a run."""

    async def test_exact_duplicate_conflicts(self, services, session_factory, embedder):
        first = await services.orchestrator.run(GenerationRequest(session_id="gen-1"))
        calls_before = embedder.calls

        with pytest.raises(ConflictError) as exc:
            await services.orchestrator.run(GenerationRequest(session_id="gen-2"))

        assert exc.value.details["existingId"] == str(first.idea.id)
        assert exc.value.details["method"] == "exact"
        assert embedder.calls == calls_before
        assert await _count(session_factory, Idea) == 1

        logs = await services.journal.get_logs("gen-2")
        assert logs[-2].stage == GenerationStage.DUPLICATE_CHECK

    async def test_semantic_duplicate_conflicts(self, services, session_factory, llm, embedder):
        embedder.fixed = [1.0] + [0.0] * (embedder.dimensions - 1)
        llm.responses = [
            build_response(),
            build_response(name="Recall Bot", problem="Dentists miss recall appointments"),
        ]

        await services.orchestrator.run(GenerationRequest())
        with pytest.raises(ConflictError) as exc:
            await services.orchestrator.run(GenerationRequest())

        assert exc.value.details["method"] == "semantic"
        assert exc.value.details["similarity"] == pytest.approx(1.0)
        assert await _count(session_factory, Idea) == 1

    async def test_skip_duplicate_check(self, services, session_factory):
        await services.orchestrator.run(GenerationRequest())
        result = await services.orchestrator.run(GenerationRequest(skip_duplicate_check=True))

        skipped = [e for e in result.logs if e.message == "Duplicate check skipped"]
        assert skipped[0].level == LogLevel.WARNING
        assert await _count(session_factory, Idea) == 2

    async def test_embedding_failure_fails_at_duplicate_check(self, services, session_factory, embedder):
        embedder.error = ExternalServiceError("OpenAI Embeddings", "Rate limit exceeded")

        with pytest.raises(ExternalServiceError):
            await services.orchestrator.run(GenerationRequest(session_id="gen-embed"))

        snapshot = await services.journal.get_status("gen-embed")
        logs = await services.journal.get_logs("gen-embed")

        assert snapshot.status == GenerationStatus.FAILED
        assert "Rate limit exceeded" in snapshot.error_message
        assert logs[-2].stage == GenerationStage.DUPLICATE_CHECK
        assert logs[-2].level == LogLevel.ERROR
        assert logs[-1].stage == GenerationStage.FAILED
        assert await _count(session_factory, Idea) == 0

    async def test_embedding_failure_with_skip_saves_without_embedding(self, services, session_factory, embedder):
        embedder.error = ExternalServiceError("OpenAI Embeddings", "Rate limit exceeded")

        result = await services.orchestrator.run(GenerationRequest(session_id="gen-noembed", skip_duplicate_check=True))

        assert result.idea.embedding is None
        warnings = [e for e in result.logs if e.message == "Embedding generation failed, saving without embedding"]
        assert len(warnings) == 1
        assert warnings[0].level == LogLevel.WARNING
        assert warnings[0].stage == GenerationStage.DATABASE_SAVE
        assert (await services.journal.get_status("gen-noembed")).status == GenerationStatus.COMPLETED

        async with session_factory() as db:
            stored = await db.get(Idea, result.idea.id)
        assert stored.embedding is None


class TestIdeaHistoryLoading:
    """Tests for the Idea.history relationship."""

    async def test_history_must_be_loaded_explicitly(self, services, session_factory):
        result = await services.orchestrator.run(GenerationRequest())

        async with session_factory() as db:
            stored = await db.get(Idea, result.idea.id)
            with pytest.raises(InvalidRequestError):
                stored.history


class TestSessionIsolation:
    """Tests for concurrent sessions."""

    async def test_reused_session_id_conflicts(self, services):
        await services.orchestrator.run(GenerationRequest(session_id="gen-1"))
        before = await services.journal.get_logs("gen-1")

        with pytest.raises(ConflictError):
            await services.orchestrator.run(GenerationRequest(session_id="gen-1"))

        assert len(await services.journal.get_logs("gen-1")) == len(before)
        assert (await services.journal.get_status("gen-1")).status == GenerationStatus.COMPLETED

    async def test_concurrent_sessions_do_not_interfere(self, services, session_factory, llm):
        llm.responses = [
            build_response(name="Alpha", problem="Problem alpha", solution="Solution alpha"),
            build_response(name="Beta", problem="Problem beta", solution="Solution beta"),
        ]

        results = await asyncio.gather(
            services.orchestrator.run(GenerationRequest(session_id="gen-a")),
            services.orchestrator.run(GenerationRequest(session_id="gen-b")),
        )

        assert {r.idea.name for r in results} == {"Alpha", "Beta"}
        for session_id, result in zip(["gen-a", "gen-b"], results):
            assert {entry.session_id for entry in result.logs} == {session_id}
            assert sum(1 for entry in result.logs if entry.stage == GenerationStage.COMPLETE) == 1
            assert (await services.journal.get_status(session_id)).idea_id == result.idea.id
        assert await _count(session_factory, Idea) == 2
        assert services.orchestrator.status()["activeCount"] == 0

    async def test_failure_does_not_touch_other_session(self, services, llm):
        llm.responses = [build_response(name="Alpha"), "not json"]

        results = await asyncio.gather(
            services.orchestrator.run(GenerationRequest(session_id="gen-a")),
            services.orchestrator.run(GenerationRequest(session_id="gen-b")),
            return_exceptions=True,
        )

        statuses = {
            session_id: (await services.journal.get_status(session_id)).status
            for session_id in ("gen-a", "gen-b")
        }
        assert sorted(s.value for s in statuses.values()) == ["completed", "failed"]
        assert sum(isinstance(r, ValidationError) for r in results) == 1
