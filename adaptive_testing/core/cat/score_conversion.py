"""
Score conversion and result finalization for Computerized Adaptive Testing.

Converts the terminal ability estimate of an attempt into a reportable result.

Score Scale Transformation:
    score = 100 × (θ - θ_min) / (θ_max - θ_min)

    Where [θ_min, θ_max] is the attempt's ability domain (default [-4, 4]).
    θ is clamped to the domain first, so the score always lies in [0, 100]
    and θ = 0 maps to 50 on the default domain. The mapping is linear and
    therefore monotonic; it must not change, since historical scores are only
    comparable under the same transform.

    passed = score >= passing_score

95% Confidence Interval:
    CI = score ± (1.96 × SE(θ) × 100 / (θ_max - θ_min)), clamped to [0, 100]

Percentile Rank:
    percentile = Φ(θ) × 100

    Where Φ is the standard normal CDF, assuming abilities are standard-normal
    in the reference population.

Proficiency Bands (on the score scale):
    >= 90 EXPERT, >= 80 ADVANCED, >= 70 INTERMEDIATE, >= 60 BEGINNER,
    otherwise NEEDS_IMPROVEMENT.

Finalization is a pure function of its inputs and is idempotent.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from scipy.stats import norm

from adaptive_testing.core.cat.ability_estimation import DEFAULT_ABILITY_DOMAIN
from adaptive_testing.core.cat.types import AbilityEstimate, ResponseRecord
from adaptive_testing.domain_types import ProficiencyLevel, TerminationReason

logger = logging.getLogger(__name__)

SCORE_MIN = 0.0
SCORE_MAX = 100.0
Z_95 = 1.96  # z-score for 95% confidence interval

# Lower score bound of each band, highest first
PROFICIENCY_BANDS: Tuple[Tuple[float, ProficiencyLevel], ...] = (
    (90.0, ProficiencyLevel.EXPERT),
    (80.0, ProficiencyLevel.ADVANCED),
    (70.0, ProficiencyLevel.INTERMEDIATE),
    (60.0, ProficiencyLevel.BEGINNER),
)

RECOMMENDATIONS: Dict[ProficiencyLevel, Tuple[str, ...]] = {
    ProficiencyLevel.EXPERT: (
        "Consider advanced courses",
        "Mentor other students",
    ),
    ProficiencyLevel.ADVANCED: (
        "Practice advanced concepts",
        "Take challenging exercises",
    ),
    ProficiencyLevel.INTERMEDIATE: (
        "Review foundational concepts",
        "Practice regularly",
    ),
    ProficiencyLevel.BEGINNER: (
        "Focus on basics",
        "Seek additional help",
    ),
    ProficiencyLevel.NEEDS_IMPROVEMENT: (
        "Review prerequisite materials",
        "Consider remedial courses",
    ),
}


@dataclass(frozen=True)
class CategoryScore:
    """Per-category accuracy from the administered items.

    Attributes:
        category: Category name.
        items_administered: Number of items shown in this category.
        correct_count: Number of correct responses.
        accuracy: Proportion correct (0.0 to 1.0).
    """

    category: str
    items_administered: int
    correct_count: int
    accuracy: float


@dataclass(frozen=True)
class FinalResult:
    """Reportable outcome of a completed attempt.

    ``score`` and ``passed`` are the headline values; the rest is detail for
    reporting. ``percentage`` is the score rounded to a whole number.
    """

    score: float
    passed: bool
    percentage: int
    proficiency: ProficiencyLevel
    recommendations: Tuple[str, ...]
    theta: float
    standard_error: float
    ci_lower: float
    ci_upper: float
    percentile: float
    items_administered: int
    correct_count: int = 0
    termination_reason: Optional[TerminationReason] = None
    category_scores: Dict[str, CategoryScore] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible primitives."""
        data = asdict(self)
        data["proficiency"] = self.proficiency.value
        data["recommendations"] = list(self.recommendations)
        data["termination_reason"] = (
            self.termination_reason.value if self.termination_reason else None
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinalResult":
        """Rebuild a FinalResult produced by ``to_dict``."""
        reason = data.get("termination_reason")
        return cls(
            score=data["score"],
            passed=data["passed"],
            percentage=data["percentage"],
            proficiency=ProficiencyLevel(data["proficiency"]),
            recommendations=tuple(data["recommendations"]),
            theta=data["theta"],
            standard_error=data["standard_error"],
            ci_lower=data["ci_lower"],
            ci_upper=data["ci_upper"],
            percentile=data["percentile"],
            items_administered=data["items_administered"],
            correct_count=data.get("correct_count", 0),
            termination_reason=TerminationReason(reason) if reason else None,
            category_scores={
                name: CategoryScore(**value)
                for name, value in data.get("category_scores", {}).items()
            },
        )


def theta_to_score(
    theta: float,
    ability_domain: Tuple[float, float] = DEFAULT_ABILITY_DOMAIN,
) -> float:
    """
    Map theta linearly onto the 0-100 score scale.

    Args:
        theta: Ability estimate. Values outside the domain are clamped.
        ability_domain: (min, max) of the theta scale.

    Returns:
        Score in [0, 100], rounded to 2 decimals.

    Raises:
        ValueError: If theta is not finite or the domain is empty.

    Examples:
        >>> theta_to_score(0.0)
        50.0
        >>> theta_to_score(-4.0)
        0.0
        >>> theta_to_score(2.0)
        75.0
    """
    if not math.isfinite(theta):
        raise ValueError(f"theta must be finite, got {theta}")
    theta_min, theta_max = ability_domain
    if not theta_min < theta_max:
        raise ValueError(f"Ability domain must be non-empty, got {ability_domain}")

    clamped = max(theta_min, min(theta_max, theta))
    raw = SCORE_MAX * (clamped - theta_min) / (theta_max - theta_min)
    return round(max(SCORE_MIN, min(SCORE_MAX, raw)), 2)


def proficiency_for_score(score: float) -> ProficiencyLevel:
    """Return the proficiency band containing ``score``."""
    for lower_bound, level in PROFICIENCY_BANDS:
        if score >= lower_bound:
            return level
    return ProficiencyLevel.NEEDS_IMPROVEMENT


def score_confidence_interval(
    score: float,
    standard_error: float,
    ability_domain: Tuple[float, float] = DEFAULT_ABILITY_DOMAIN,
) -> Tuple[float, float]:
    """95% confidence interval around ``score``, clamped to [0, 100]."""
    if standard_error < 0 or not math.isfinite(standard_error):
        raise ValueError(
            f"standard_error must be finite and non-negative, got {standard_error}"
        )
    theta_min, theta_max = ability_domain
    margin = Z_95 * standard_error * SCORE_MAX / (theta_max - theta_min)
    lower = round(max(SCORE_MIN, score - margin), 2)
    upper = round(min(SCORE_MAX, score + margin), 2)
    return lower, upper


def calculate_category_scores(
    responses: Iterable[ResponseRecord],
) -> Dict[str, CategoryScore]:
    """
    Calculate per-category accuracy from recorded responses.

    These are accuracy metrics, not per-category ability estimates: a short
    adaptive test rarely administers enough items per category to estimate
    theta separately.

    Returns:
        Dict mapping category to CategoryScore, only for categories with at
        least one response.
    """
    counts: Dict[str, List[int]] = {}
    for response in responses:
        correct_total = counts.setdefault(response.category, [0, 0])
        correct_total[1] += 1
        if response.correct:
            correct_total[0] += 1

    return {
        category: CategoryScore(
            category=category,
            items_administered=total,
            correct_count=correct,
            accuracy=round(correct / total, 3),
        )
        for category, (correct, total) in counts.items()
    }


def finalize(
    estimate: AbilityEstimate,
    items_administered: int,
    passing_score: float,
    ability_domain: Tuple[float, float] = DEFAULT_ABILITY_DOMAIN,
    responses: Iterable[ResponseRecord] = (),
    termination_reason: Optional[TerminationReason] = None,
) -> FinalResult:
    """
    Convert a terminal ability estimate into a reportable result.

    Args:
        estimate: Final ability estimate of the attempt.
        items_administered: Number of items the attempt administered.
        passing_score: Minimum score (0-100) that counts as a pass.
        ability_domain: (min, max) theta range mapped onto 0-100.
        responses: Recorded responses, used for correct count and
            per-category accuracy.
        termination_reason: Why the attempt stopped.

    Returns:
        FinalResult. Identical inputs always yield an identical result.

    Raises:
        ValueError: If items_administered is negative or passing_score is
            outside [0, 100].
    """
    if items_administered < 0:
        raise ValueError(
            f"items_administered must be non-negative, got {items_administered}"
        )
    if not SCORE_MIN <= passing_score <= SCORE_MAX:
        raise ValueError(f"passing_score must be in [0, 100], got {passing_score}")

    responses = list(responses)
    score = theta_to_score(estimate.theta, ability_domain)
    ci_lower, ci_upper = score_confidence_interval(
        score, estimate.standard_error, ability_domain
    )
    proficiency = proficiency_for_score(score)
    percentile = round(float(norm.cdf(estimate.theta)) * 100, 1)

    result = FinalResult(
        score=score,
        passed=score >= passing_score,
        percentage=int(round(score)),
        proficiency=proficiency,
        recommendations=RECOMMENDATIONS[proficiency],
        theta=estimate.theta,
        standard_error=estimate.standard_error,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        percentile=percentile,
        items_administered=items_administered,
        correct_count=sum(1 for r in responses if r.correct),
        termination_reason=termination_reason,
        category_scores=calculate_category_scores(responses),
    )

    logger.debug(
        f"finalize: theta={estimate.theta:.3f}, se={estimate.standard_error:.3f} -> "
        f"score={score}, CI=[{ci_lower}, {ci_upper}], passed={result.passed}, "
        f"proficiency={proficiency.value}"
    )

    return result
