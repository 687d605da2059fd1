"""
Configuration Profiles
======================

A profile is a folder of YAML files under CONFIGS_DIR. It supplies the
evaluation criteria (with weights), generation frameworks, the option
pools sampled into every prompt, and the generation settings (temperature,
max tokens, optional prompt template).

Profile resolution order for a generation:
1. explicit profile id on the request
2. profile assigned to the request's slot
3. the active profile
4. the default folder
"""

import asyncio
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

import structlog
import yaml
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ideaforge.core.config import settings
from ideaforge.core.errors import InternalError, NotFoundError
from ideaforge.core.generation.scoring import criterion_key, weights_from_criteria
from ideaforge.core.models import ConfigurationProfile, GenerationSlot

logger = structlog.get_logger()


PROFILE_FILES = {
    "generation_settings": "generation-settings.yaml",
    "evaluation_criteria": "evaluation-criteria.yaml",
    "idea_prompts": "idea-prompts.yaml",
    "business_domains": "business-domains.yaml",
    "problem_types": "problem-types.yaml",
    "solution_types": "solution-types.yaml",
    "monetization_models": "monetization-models.yaml",
    "target_audiences": "target-audiences.yaml",
}


# ==========================================================================
# Profile Data
# ==========================================================================

@dataclass
class ProfileConfig:
    """Parsed contents of one profile folder."""

    folder_name: str
    profile_id: Optional[UUID] = None
    profile_name: Optional[str] = None
    generation_settings: dict[str, Any] = field(default_factory=dict)
    criteria: list[dict[str, Any]] = field(default_factory=list)
    frameworks: list[dict[str, Any]] = field(default_factory=list)
    domains: list[dict[str, Any]] = field(default_factory=list)
    problem_types: list[Any] = field(default_factory=list)
    solution_types: list[Any] = field(default_factory=list)
    monetization_models: list[Any] = field(default_factory=list)
    target_audiences: list[Any] = field(default_factory=list)

    @property
    def temperature(self) -> float:
        return float(self.generation_settings.get("temperature") or settings.DEFAULT_TEMPERATURE)

    @property
    def max_tokens(self) -> int:
        return int(self.generation_settings.get("max_tokens") or settings.DEFAULT_MAX_TOKENS)

    @property
    def provider(self) -> Optional[str]:
        return self.generation_settings.get("provider")

    @property
    def model(self) -> Optional[str]:
        return self.generation_settings.get("model")

    @property
    def prompt_template(self) -> Optional[str]:
        return self.generation_settings.get("idea_generation_prompt")

    @property
    def criterion_keys(self) -> list[str]:
        return [c.get("key") or criterion_key(c.get("name", "")) for c in self.criteria]

    @property
    def weights(self) -> dict[str, float]:
        return weights_from_criteria(self.criteria)

    def describe(self) -> dict[str, Any]:
        """Summary returned alongside a generated idea."""
        return {
            "profileId": str(self.profile_id) if self.profile_id else None,
            "profileName": self.profile_name,
            "folderName": self.folder_name,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "criteriaCount": len(self.criteria),
            "weights": self.weights,
        }


# ==========================================================================
# Loading
# ==========================================================================

def _names(items: list[Any]) -> list[str]:
    return [item.get("name") if isinstance(item, dict) else str(item) for item in items]


class ProfileConfigLoader:
    """Reads profile folders from disk with PyYAML."""

    def __init__(self, configs_dir: Optional[Path] = None):
        self.configs_dir = Path(configs_dir or settings.CONFIGS_DIR)

    def _read(self, folder: Path, filename: str) -> dict[str, Any]:
        path = folder / filename
        if not path.exists():
            return {}
        with path.open(encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def load_sync(self, folder_name: str) -> ProfileConfig:
        folder = self.configs_dir / folder_name
        if not folder.is_dir():
            raise NotFoundError("Configuration profile folder", folder_name)

        data = {key: self._read(folder, filename) for key, filename in PROFILE_FILES.items()}
        criteria = data["evaluation_criteria"].get("draft_phase_criteria") or []
        if not criteria:
            raise NotFoundError("Evaluation criteria", f"{folder_name}/{PROFILE_FILES['evaluation_criteria']}")

        return ProfileConfig(
            folder_name=folder_name,
            generation_settings=data["generation_settings"],
            criteria=criteria,
            frameworks=data["idea_prompts"].get("generation_templates") or [],
            domains=data["business_domains"].get("domains") or [],
            problem_types=data["problem_types"].get("problem_types") or [],
            solution_types=data["solution_types"].get("solution_types") or [],
            monetization_models=data["monetization_models"].get("monetization_models") or [],
            target_audiences=data["target_audiences"].get("target_audiences") or [],
        )

    async def load(self, folder_name: str) -> ProfileConfig:
        return await asyncio.to_thread(self.load_sync, folder_name)


async def resolve_profile(
    db: AsyncSession,
    loader: ProfileConfigLoader,
    profile_id: Optional[UUID] = None,
    slot_number: Optional[int] = None,
) -> ProfileConfig:
    """
    Resolve and load the effective profile for a generation.

    Raises:
        NotFoundError: explicit profile id unknown, or the folder is missing
    """
    profile: Optional[ConfigurationProfile] = None

    if profile_id is not None:
        profile = await db.get(ConfigurationProfile, profile_id)
        if profile is None:
            raise NotFoundError("Configuration profile", profile_id)
    elif slot_number is not None:
        slot = await db.get(GenerationSlot, slot_number)
        if slot is not None and slot.profile_id is not None:
            profile = await db.get(ConfigurationProfile, slot.profile_id)

    if profile is None and profile_id is None:
        result = await db.execute(
            select(ConfigurationProfile).where(ConfigurationProfile.is_active.is_(True)).limit(1)
        )
        profile = result.scalar_one_or_none()

    if profile is None:
        logger.info("No active configuration profile, using default", folder=settings.DEFAULT_PROFILE_FOLDER)
        return await loader.load(settings.DEFAULT_PROFILE_FOLDER)

    config = await loader.load(profile.folder_name)
    config.profile_id = profile.id
    config.profile_name = profile.name
    return config


async def ensure_default_profile(db: AsyncSession) -> ConfigurationProfile:
    """Register the shipped default folder as the active profile when none is active."""
    result = await db.execute(
        select(ConfigurationProfile).where(ConfigurationProfile.is_active.is_(True)).limit(1)
    )
    active = result.scalar_one_or_none()
    if active is not None:
        return active

    result = await db.execute(
        select(ConfigurationProfile).where(ConfigurationProfile.folder_name == settings.DEFAULT_PROFILE_FOLDER)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        profile = ConfigurationProfile(name="Default Configuration", folder_name=settings.DEFAULT_PROFILE_FOLDER)
        db.add(profile)
    profile.is_active = True
    await db.flush()
    logger.info("Default configuration profile activated", folder=profile.folder_name)
    return profile


# ==========================================================================
# Prompt Building
# ==========================================================================

DEFAULT_PROMPT_TEMPLATE = """You are an expert at generating comprehensive software business ideas. Generate a new, specific, well-researched software business idea using the following framework and constraints.

**Generation Framework**: {framework_name}
{framework_description}
{framework_template}
{framework_example}

**Constraints** (choose from the options provided):
- **Domain Options** (pick one or combine related ones):
- {domains}

- **Problem Type Options** (select the most relevant):
- {problems}

- **Solution Type Options** (choose the best fit):
- {solutions}

- **Monetization Models**: {monetization_models}
- **Target Audiences**: {target_audiences}

**Extra Filters**:
{extra_filters}

**Evaluation Criteria** (each scored 1-10):
{criteria}

Return ONLY valid JSON with these fields: "name", "domain" ("Parent Domain → Subdomain"), "problem", "solution", "quickSummary", "concreteExample" {"currentState", "yourSolution", "keyImprovement"}, "ideaComponents", "quickNotes", "actionPlan", "tags" and:
{evaluation_schema}

All {criteria_count} evaluation criteria MUST have a 1-10 score, reasoning and question/answer pairs."""


@dataclass
class BuiltPrompt:
    prompt: str
    framework_name: str
    domains: list[str]


class PromptBuilder:
    """Fills a profile's prompt template with sampled configuration values."""

    def __init__(self, sample_size: Optional[int] = None, rng: Optional[random.Random] = None):
        self.sample_size = sample_size or settings.PROMPT_SAMPLE_SIZE
        self.rng = rng or random.Random()

    def _sample(self, items: list[Any], count: int) -> list[Any]:
        return self.rng.sample(items, min(count, len(items)))

    def pick_framework(self, profile: ProfileConfig, name: Optional[str] = None) -> dict[str, Any]:
        if name:
            for framework in profile.frameworks:
                if str(framework.get("name", "")).lower() == name.lower():
                    return framework
            raise NotFoundError("Generation framework", name)

        enabled = [f for f in profile.frameworks if f.get("enabled", True) is not False]
        if not enabled:
            raise InternalError(
                "No enabled generation frameworks found in configuration",
                {"profile": profile.folder_name},
            )
        return self.rng.choice(enabled)

    def sample_domains(self, profile: ProfileConfig, domain_hint: Optional[str] = None) -> list[str]:
        if domain_hint:
            return [domain_hint]
        if not profile.domains:
            return ["Technology"]

        options = []
        for domain in self._sample(profile.domains, self.sample_size):
            subdomains = domain.get("subdomains") or []
            if not subdomains:
                options.append(domain["name"])
                continue
            # up to four subdomains per sampled domain
            for subdomain in self._sample(subdomains, 4):
                options.append(f"{domain['name']} → {subdomain['name'] if isinstance(subdomain, dict) else subdomain}")
        return options

    def evaluation_schema(self, profile: ProfileConfig) -> str:
        blocks = []
        for criterion, key in zip(profile.criteria, profile.criterion_keys):
            questions = ",\n".join(
                f'        {{"question": "{q}", "answer": "Specific detailed answer"}}'
                for q in criterion.get("questions") or []
            )
            blocks.append(
                f'    "{key}": {{\n'
                f'      "score": 7,\n'
                f'      "reasoning": "2-3 sentences explaining the score with specific evidence",\n'
                f'      "questions": [\n{questions}\n      ]\n'
                f"    }}"
            )
        return '  "evaluation": {\n' + ",\n".join(blocks) + "\n  }"

    def extra_filters(self, profile: ProfileConfig) -> str:
        active = [f for f in profile.generation_settings.get("extraFilters") or [] if f.get("enabled")]
        if not active:
            return "None"
        lines = []
        for item in active:
            text = item.get("promptText", "")
            if item.get("value") is not None:
                text = text.replace("{value}", str(item["value"]))
            lines.append(f"- {text}")
        return "\n".join(lines)

    def build(
        self,
        profile: ProfileConfig,
        framework_name: Optional[str] = None,
        domain_hint: Optional[str] = None,
    ) -> BuiltPrompt:
        """
        Build the generation prompt.

        Args:
            profile: Loaded profile configuration
            framework_name: Requested framework, random enabled one when None
            domain_hint: Pins the domain list to a single value

        Returns:
            BuiltPrompt with the framework actually used
        """
        framework = self.pick_framework(profile, framework_name)
        domains = self.sample_domains(profile, domain_hint)

        replacements = {
            "{framework_name}": framework.get("name", ""),
            "{framework_description}": f"**Description**: {framework['description']}" if framework.get("description") else "",
            "{framework_template}": f"**Template**: {framework['template']}" if framework.get("template") else "",
            "{framework_example}": f"**Example**: {framework['example']}" if framework.get("example") else "",
            "{domains}": "\n- ".join(domains),
            "{problems}": "\n- ".join(_names(self._sample(profile.problem_types, self.sample_size))) or "Time Consuming",
            "{solutions}": "\n- ".join(_names(self._sample(profile.solution_types, self.sample_size))) or "Automation",
            "{monetization_models}": ", ".join(_names(profile.monetization_models)),
            "{target_audiences}": ", ".join(_names(profile.target_audiences)),
            "{extra_filters}": self.extra_filters(profile),
            "{criteria}": "\n".join(f"- {c.get('name')}: {c.get('description', '')}" for c in profile.criteria),
            "{evaluation_schema}": self.evaluation_schema(profile),
            "{criteria_count}": str(len(profile.criteria)),
        }

        prompt = profile.prompt_template or DEFAULT_PROMPT_TEMPLATE
        for placeholder, value in replacements.items():
            prompt = prompt.replace(placeholder, value)

        return BuiltPrompt(prompt=prompt, framework_name=framework.get("name", ""), domains=domains)
