"""
Idea Forge - Test Fixtures
==========================

Shared pytest fixtures for all tests.

Every test gets its own SQLite file, a small profile folder, and fake AI
providers so no network call is ever made.
"""

import asyncio
import json
import random
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any, Optional

import pytest
import pytest_asyncio
import yaml
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ideaforge.api.deps import create_access_token
from ideaforge.api.main import create_app
from ideaforge.core.config import settings
from ideaforge.core.database import create_engine, create_session_factory, init_db
from ideaforge.core.generation.profiles import ProfileConfigLoader, PromptBuilder
from ideaforge.core.generation.providers import EmbeddingProvider, LLMProvider
from ideaforge.core.generation.services import GenerationServices, build_services


# ==========================================================================
# Test Profile
# ==========================================================================

CRITERIA = [
    {"name": "Problem Severity", "weight": 2, "questions": ["How painful is it?"]},
    {"name": "Market Size", "weight": 1, "questions": ["How many buyers?"]},
    {"name": "Monetization Clarity", "weight": 1, "questions": ["Who pays?"]},
    {"name": "Technical Feasibility", "weight": 1, "questions": ["What is hardest?"]},
    {"name": "Time To Market", "weight": 1, "questions": ["How fast to MVP?"]},
]

CRITERIA_KEYS = [
    "problemSeverity",
    "marketSize",
    "monetizationClarity",
    "technicalFeasibility",
    "timeToMarket",
]

DEFAULT_SCORES = {
    "problemSeverity": 8,
    "marketSize": 6,
    "monetizationClarity": 7,
    "technicalFeasibility": 9,
    "timeToMarket": 5,
}


def write_profile(folder: Path, frameworks: Optional[list[dict]] = None) -> Path:
    """Write a small but complete profile folder."""
    folder.mkdir(parents=True, exist_ok=True)
    files = {
        "generation-settings.yaml": {"temperature": 0.7, "max_tokens": 2048},
        "evaluation-criteria.yaml": {"draft_phase_criteria": CRITERIA},
        "idea-prompts.yaml": {
            "generation_templates": frameworks
            or [
                {
                    "name": "Pain Point Automation",
                    "description": "Automate a repetitive task",
                    "template": "[Audience] spends [time] on [task]",
                    "enabled": True,
                },
                {"name": "Marketplace", "description": "Connect two sides", "enabled": False},
            ]
        },
        "business-domains.yaml": {
            "domains": [
                {"name": "Healthcare", "subdomains": [{"name": "Dental Practices"}, {"name": "Home Care"}]},
                {"name": "Logistics", "subdomains": [{"name": "Fleet Maintenance"}]},
            ]
        },
        "problem-types.yaml": {"problem_types": [{"name": "Time Consuming"}, {"name": "Error Prone"}]},
        "solution-types.yaml": {"solution_types": [{"name": "Automation"}, {"name": "AI Assistant"}]},
        "monetization-models.yaml": {"monetization_models": [{"name": "Subscription"}]},
        "target-audiences.yaml": {"target_audiences": [{"name": "Small Businesses"}]},
    }
    for filename, content in files.items():
        (folder / filename).write_text(yaml.safe_dump(content), encoding="utf-8")
    return folder


def build_response(
    name: str = "Recall Autopilot",
    domain: str = "Healthcare → Dental Practices",
    problem: str = "Clinics lose patients who never book their six-month recall",
    solution: str = "SMS agent that books recall visits into the practice calendar",
    scores: Optional[dict[str, int]] = None,
    **overrides: Any,
) -> str:
    """A well-formed generation response for the test profile."""
    scores = scores or DEFAULT_SCORES
    payload = {
        "name": name,
        "domain": domain,
        "problem": problem,
        "solution": solution,
        "quickSummary": f"{name} fills empty chairs automatically.",
        "concreteExample": {
            "currentState": "Front desk calls patients by hand",
            "yourSolution": "Automated two-way texting",
            "keyImprovement": "Recall rate up by a third",
        },
        "evaluation": {
            key: {
                "score": score,
                "reasoning": "Grounded in interviews with clinic owners",
                "questions": [{"question": "Why?", "answer": "Because clinics told us so"}],
            }
            for key, score in scores.items()
        },
        "ideaComponents": {
            "monetization": "Subscription",
            "targetAudience": "Small Businesses",
            "technology": "Twilio, calendar APIs",
            "marketSize": "200k clinics",
        },
        "quickNotes": {
            "strengths": ["clear ROI"],
            "weaknesses": ["crowded"],
            "keyAssumptions": ["clinics text patients"],
            "nextSteps": ["interview 10 clinics"],
            "references": [],
        },
        "tags": ["healthcare", "sms"],
    }
    payload.update(overrides)
    return json.dumps(payload)


# ==========================================================================
# Fake Providers
# ==========================================================================

class FakeLLM(LLMProvider):
    """Scripted LLM: returns queued responses in order, repeating the last."""

    name = "Fake LLM"

    def __init__(
        self,
        responses: Optional[list[str]] = None,
        error: Optional[Exception] = None,
        configured: bool = True,
    ):
        self.responses = list(responses or [build_response()])
        self.error = error
        self.configured = configured
        self.calls = 0
        self.prompts: list[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def complete(self, prompt: str, **kwargs: Any) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]


class FakeEmbedder(EmbeddingProvider):
    """
    Returns a fresh basis vector per call (so nothing is similar), or
    ``fixed`` for every call when set (so everything is identical).
    Raises ``error`` instead when set.
    """

    name = "Fake Embeddings"

    def __init__(self, dimensions: int = settings.EMBEDDING_DIMENSIONS):
        self.dimensions = dimensions
        self.calls = 0
        self.fixed: Optional[list[float]] = None
        self.error: Optional[Exception] = None

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.fixed is not None:
            return list(self.fixed)
        vector = [0.0] * self.dimensions
        vector[(self.calls - 1) % self.dimensions] = 1.0
        return vector


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so concurrent sessions see each other's writes."""
    test_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ideaforge-test.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ==========================================================================
# Engine Fixtures
# ==========================================================================

@pytest.fixture
def configs_dir(tmp_path: Path) -> Path:
    root = tmp_path / "configs"
    write_profile(root / settings.DEFAULT_PROFILE_FOLDER)
    return root


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def services(
    session_factory: async_sessionmaker[AsyncSession],
    configs_dir: Path,
    llm: FakeLLM,
    embedder: FakeEmbedder,
) -> GenerationServices:
    return build_services(
        session_factory,
        embedder=embedder,
        llm_factory=lambda provider, model: llm,
        loader=ProfileConfigLoader(configs_dir),
        prompt_builder=PromptBuilder(rng=random.Random(7)),
        poll_interval=0.01,
        wait_seconds=0.2,
        tick_seconds=0.05,
    )


@pytest_asyncio.fixture
async def slots(services: GenerationServices) -> AsyncGenerator[GenerationServices, None]:
    """Services with slots 1-3 seeded (manual, enabled)."""
    await services.scheduler.ensure_slots(3)
    yield services
    await services.scheduler.stop()


# ==========================================================================
# HTTP Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def client(slots: GenerationServices) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client over the test engine.
    """
    app = create_app(slots)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_token() -> str:
    return create_access_token("test-client")


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    """Get authorization headers for the test client."""
    return {"Authorization": f"Bearer {auth_token}"}

