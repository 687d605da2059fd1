"""
Scoring Engine
==============

Pure computations over per-criterion scores. Criterion names are never
hard-coded in the weighted score: both maps are open string-keyed
dictionaries, so new criteria appear through configuration alone.

Complexity interpretation (higher = harder to execute):
- technical:  11 - technicalFeasibility
- regulatory: supplied by the generated payload, else derived from the
              timeToMarket reasoning
- sales:      11 - mean(marketSize, monetizationClarity)
- total:      technical + regulatory + sales, range 3-30
"""

import math
import re
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Mapping, Optional


MAX_CRITERION_SCORE = 10
NEUTRAL_CRITERION_SCORE = 5
DEFAULT_REGULATORY_COMPLEXITY = 3

REGULATORY_PATTERN = re.compile(r"regulat|complia|licens|legal|permit|approval|certif", re.IGNORECASE)


@dataclass(frozen=True)
class ComplexityScores:
    technical: float
    regulatory: float
    sales: float
    total: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def weighted_score(scores: Mapping[str, float], weights: Mapping[str, float]) -> int:
    """
    Weighted total score normalized to 0-100.

    Only criteria present in both maps (with a positive weight) count, in
    the numerator and the denominator alike, so a criterion missing from
    either side is neither penalized nor rewarded.

    Args:
        scores: criterion key -> score (1-10)
        weights: criterion key -> weight

    Returns:
        Integer in [0, 100]; 0 when the maps share no weighted key.
    """
    numerator_terms = []
    denominator_terms = []

    for key, weight in weights.items():
        score = scores.get(key)
        if score is None or weight is None or weight <= 0:
            continue
        numerator_terms.append(float(score) * float(weight))
        denominator_terms.append(float(weight) * MAX_CRITERION_SCORE)

    # fsum is exact, so the result does not depend on map iteration order
    denominator = math.fsum(denominator_terms)
    if denominator <= 0:
        return 0

    result = _round_half_up(100 * math.fsum(numerator_terms) / denominator)
    return max(0, min(100, result))


def regulatory_complexity(
    scores: Mapping[str, float],
    evaluation_details: Mapping[str, Any],
    supplied: Optional[float] = None,
) -> float:
    """Regulatory complexity, preferring the value the generator supplied."""
    if supplied is not None:
        return float(supplied)

    time_to_market = evaluation_details.get("timeToMarket")
    reasoning = ""
    if isinstance(time_to_market, Mapping):
        reasoning = time_to_market.get("reasoning") or ""
    if REGULATORY_PATTERN.search(reasoning):
        return float(11 - scores.get("timeToMarket", NEUTRAL_CRITERION_SCORE))
    return float(DEFAULT_REGULATORY_COMPLEXITY)


def complexity_scores(
    scores: Mapping[str, float],
    evaluation_details: Optional[Mapping[str, Any]] = None,
    regulatory: Optional[float] = None,
) -> ComplexityScores:
    """Derive execution complexity from the criterion scores."""
    technical = 11 - scores.get("technicalFeasibility", NEUTRAL_CRITERION_SCORE)

    market_size = scores.get("marketSize", NEUTRAL_CRITERION_SCORE)
    monetization_clarity = scores.get("monetizationClarity", NEUTRAL_CRITERION_SCORE)
    sales = 11 - (market_size + monetization_clarity) / 2

    regulatory_value = regulatory_complexity(scores, evaluation_details or {}, regulatory)

    return ComplexityScores(
        technical=_round1(technical),
        regulatory=_round1(regulatory_value),
        sales=_round1(sales),
        total=_round1(technical + regulatory_value + sales),
    )


def criterion_key(name: str) -> str:
    """Convert "Problem Severity" to "problemSeverity"."""
    words = [word for word in name.strip().split(" ") if word]
    if not words:
        return ""
    return words[0].lower() + "".join(word[:1].upper() + word[1:].lower() for word in words[1:])


def weights_from_criteria(criteria: Iterable[Mapping[str, Any]]) -> dict[str, float]:
    """Build the weight map from configured criteria (``key`` or ``name``, ``weight``)."""
    weights: dict[str, float] = {}
    for criterion in criteria:
        key = criterion.get("key") or criterion_key(criterion.get("name", ""))
        weight = criterion.get("weight")
        if key and weight is not None:
            weights[key] = float(weight)
    return weights
