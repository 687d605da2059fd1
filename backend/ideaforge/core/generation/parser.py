"""
Response Parser
===============

Turns raw LLM text into a validated GeneratedIdea.

Required: name, quickSummary, concreteExample (currentState, yourSolution,
keyImprovement) and one evaluation entry per configured criterion, each with
a 1-10 score and a non-empty list of question/answer pairs. Optional
sections (ideaComponents, quickNotes) only produce warnings.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from ideaforge.core.errors import ValidationError


CONCRETE_EXAMPLE_FIELDS = ("currentState", "yourSolution", "keyImprovement")
IDEA_COMPONENT_FIELDS = ("monetization", "targetAudience", "technology", "marketSize")
QUICK_NOTE_SECTIONS = ("strengths", "weaknesses", "keyAssumptions", "nextSteps", "references")

DOMAIN_SEPARATOR = re.compile(r"\s*(?:→|->)\s*")
FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?")

RESPONSE_PREVIEW_CHARS = 500


@dataclass
class GeneratedIdea:
    """Structured idea payload extracted from an LLM response."""

    name: str
    domain: str
    subdomain: Optional[str]
    problem: str
    solution: str
    quick_summary: str
    concrete_example: dict[str, str]
    evaluation: dict[str, dict[str, Any]]
    idea_components: Optional[dict[str, Any]] = None
    quick_notes: Optional[dict[str, Any]] = None
    action_plan: Optional[dict[str, Any]] = None
    tags: list[str] = field(default_factory=list)
    regulatory: Optional[float] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def full_domain(self) -> str:
        return f"{self.domain} → {self.subdomain}" if self.subdomain else self.domain

    @property
    def scores(self) -> dict[str, float]:
        return {key: entry["score"] for key, entry in self.evaluation.items()}

    @property
    def evaluation_details(self) -> dict[str, dict[str, Any]]:
        return {
            key: {
                "score": entry["score"],
                "reasoning": entry.get("reasoning") or "",
                "questions": entry["questions"],
            }
            for key, entry in self.evaluation.items()
        }

    def embedding_text(self) -> str:
        return embedding_text(self.domain, self.subdomain, self.problem, self.solution, self.quick_summary)


def embedding_text(
    domain: str,
    subdomain: Optional[str],
    problem: str,
    solution: str,
    summary: Optional[str],
) -> str:
    """Text embedded for semantic duplicate detection."""
    parts = [domain, subdomain, problem, solution, summary]
    return " | ".join(part for part in parts if part)


def split_domain(value: str) -> tuple[str, Optional[str]]:
    """Split "Parent → Sub" into its two parts."""
    parts = DOMAIN_SEPARATOR.split(value.strip(), maxsplit=1)
    subdomain = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None
    return parts[0].strip(), subdomain


def strip_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = FENCE_PATTERN.sub("", stripped).replace("```", "")
    return stripped.strip()


def repair_brackets(text: str) -> str:
    """Close unbalanced brackets and braces at the end of a truncated response."""
    missing_brackets = text.count("[") - text.count("]")
    missing_braces = text.count("{") - text.count("}")
    return text + "]" * max(missing_brackets, 0) + "}" * max(missing_braces, 0)


def _load_json(text: str, warnings: list[str]) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        warnings.append(f"Initial JSON parse failed: {e.msg}. Attempting to repair...")
        try:
            return json.loads(repair_brackets(text))
        except json.JSONDecodeError:
            raise ValidationError(
                f"Failed to parse response: {e.msg}",
                {"responsePreview": text[:RESPONSE_PREVIEW_CHARS]},
            ) from e


def _is_score(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and 1 <= value <= 10


def _validate_criterion(key: str, entry: Any) -> dict[str, Any]:
    if not isinstance(entry, dict):
        raise ValidationError(f'Criterion "{key}" is not an object', {"criterion": key})
    if not _is_score(entry.get("score")):
        raise ValidationError(
            f'Criterion "{key}" has an invalid score',
            {"criterion": key, "score": entry.get("score")},
        )

    questions = entry.get("questions")
    if not isinstance(questions, list) or not questions:
        raise ValidationError(f'Criterion "{key}" is missing questions array', {"criterion": key})
    for pair in questions:
        if not isinstance(pair, dict) or not pair.get("question") or not pair.get("answer"):
            raise ValidationError(
                f"Incomplete question/answer pair in {key}",
                {"criterion": key, "question": pair},
            )
    return entry


def _regulatory_value(parsed: dict[str, Any]) -> Optional[float]:
    complexity = parsed.get("complexityScores")
    candidate = complexity.get("regulatory") if isinstance(complexity, dict) else None
    if candidate is None:
        candidate = parsed.get("regulatoryComplexity")
    if isinstance(candidate, (int, float)) and not isinstance(candidate, bool):
        return float(candidate)
    return None


def parse_generation_response(text: str, criterion_keys: list[str]) -> GeneratedIdea:
    """
    Parse and validate an LLM response.

    Args:
        text: Raw response text, optionally wrapped in markdown fences
        criterion_keys: Criteria configured for the active profile

    Returns:
        GeneratedIdea, with non-fatal findings collected in ``warnings``

    Raises:
        ValidationError: unparseable JSON or a missing required section
    """
    warnings: list[str] = []
    parsed = _load_json(strip_fences(text), warnings)
    if not isinstance(parsed, dict):
        raise ValidationError("Response is not a JSON object")

    missing = [f for f in ("name", "quickSummary", "concreteExample", "evaluation") if not parsed.get(f)]
    if missing:
        raise ValidationError("Missing required fields in response", {"missing": missing})

    concrete_example = parsed["concreteExample"]
    if not isinstance(concrete_example, dict) or not all(concrete_example.get(f) for f in CONCRETE_EXAMPLE_FIELDS):
        raise ValidationError(
            "Concrete example missing required fields",
            {"required": list(CONCRETE_EXAMPLE_FIELDS)},
        )

    evaluation = parsed["evaluation"]
    if not isinstance(evaluation, dict):
        raise ValidationError("Evaluation is not an object")

    missing_criteria = [key for key in criterion_keys if key not in evaluation]
    if missing_criteria:
        raise ValidationError(
            f"AI response incomplete: Expected {len(criterion_keys)} criteria, "
            f"got {len(evaluation)}. Missing: {', '.join(missing_criteria)}",
            {
                "expected": len(criterion_keys),
                "actual": len(evaluation),
                "missing": missing_criteria,
            },
        )
    validated = {key: _validate_criterion(key, evaluation[key]) for key in evaluation}

    components = parsed.get("ideaComponents")
    if isinstance(components, dict) and not all(components.get(f) for f in IDEA_COMPONENT_FIELDS):
        warnings.append("Idea components present but incomplete")

    quick_notes = parsed.get("quickNotes")
    if isinstance(quick_notes, dict):
        for section in QUICK_NOTE_SECTIONS:
            if not isinstance(quick_notes.get(section), list):
                warnings.append(f"Quick notes section '{section}' missing or not an array")

    domain, subdomain = split_domain(str(parsed.get("domain") or "Unknown"))

    return GeneratedIdea(
        name=str(parsed["name"]).strip(),
        domain=domain,
        subdomain=subdomain,
        problem=parsed.get("problem") or "Unknown",
        solution=parsed.get("solution") or "Unknown",
        quick_summary=parsed["quickSummary"],
        concrete_example=concrete_example,
        evaluation=validated,
        idea_components=components if isinstance(components, dict) else None,
        quick_notes=quick_notes if isinstance(quick_notes, dict) else None,
        action_plan=parsed.get("actionPlan"),
        tags=[str(tag) for tag in parsed.get("tags") or []],
        regulatory=_regulatory_value(parsed),
        warnings=warnings,
    )


def folder_name_for(name: str, year: int, month: int) -> str:
    """Slug of the idea name (50 chars max) plus a -YYYY-MM suffix."""
    slug = re.sub(r"[^a-z0-9\s-]", "", name.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)[:50]
    return f"{slug}-{year}-{month:02d}"
