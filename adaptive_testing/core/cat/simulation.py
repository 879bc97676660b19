"""
CAT simulation engine for validating the adaptive testing algorithms.

Simulates N examinees with known ability levels taking adaptive tests through
the AttemptStateMachine, and collects metrics to validate the stopping rules
and estimation accuracy.

Key Features:
- Monte Carlo simulation with configurable N and theta distribution
- Synthetic 3PL item bank with realistic parameter distributions
- Band-based analysis stratified by true ability level
- Termination-reason distribution and precision-reached rate
- Markdown report generation

References:
    - Weiss, D. J. (2004). Computerized adaptive testing for effective and
      efficient measurement in counseling and education. Measurement and
      Evaluation in Counseling and Development, 37(2), 70-84.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from adaptive_testing.core.cat.engine import Attempt, AttemptStateMachine
from adaptive_testing.core.cat.irt import probability_3pl
from adaptive_testing.core.cat.types import Item
from adaptive_testing.domain_types import TerminationReason
from adaptive_testing.schemas.attempt_config import TestConfig

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ("algebra", "geometry", "statistics", "reading")

# Synthetic item parameter distributions (Lord, 1980)
DISCRIMINATION_LOGNORMAL_MEAN = 0.0
DISCRIMINATION_LOGNORMAL_SD = 0.3
DISCRIMINATION_MIN = 0.5
DISCRIMINATION_MAX = 2.5
DIFFICULTY_NORMAL_MEAN = 0.0
DIFFICULTY_NORMAL_SD = 1.0
DIFFICULTY_MIN = -3.0
DIFFICULTY_MAX = 3.0
# Guessing ~ Beta(5, 17), mean ~0.23, typical of 4-option multiple choice
GUESSING_BETA_A = 5.0
GUESSING_BETA_B = 17.0
GUESSING_MAX = 0.35

# Ability bands for stratified analysis
ABILITY_BANDS = [
    ("Very Low", -4.0, -1.2),
    ("Low", -1.2, -0.4),
    ("Average", -0.4, 0.4),
    ("High", 0.4, 1.2),
    ("Very High", 1.2, 4.0),
]


@dataclass
class SimulationConfig:
    """Configuration for a CAT simulation run."""

    n_examinees: int = 500
    theta_mean: float = 0.0
    theta_sd: float = 1.0
    target_precision: float = 0.30
    min_items: int = 5
    max_items: int = 20
    passing_score: float = 70.0
    seed: int = 42

    def to_test_config(self) -> TestConfig:
        return TestConfig(
            target_precision=self.target_precision,
            min_items=self.min_items,
            max_items=self.max_items,
            passing_score=self.passing_score,
        )


@dataclass
class ExamineeResult:
    """Per-examinee simulation results."""

    true_theta: float
    estimated_theta: float
    final_se: float
    bias: float  # estimated_theta - true_theta
    items_administered: int
    termination_reason: TerminationReason
    passed: bool
    category_coverage: Dict[str, int] = field(default_factory=dict)


@dataclass
class BandMetrics:
    """Metrics for examinees whose true ability falls in one band."""

    label: str
    theta_range: Tuple[float, float]
    n: int
    mean_items: float
    mean_se: float
    mean_bias: float
    rmse: float
    precision_rate: float  # Proportion stopping with PRECISION_REACHED


@dataclass
class SimulationResult:
    """Aggregate simulation results."""

    config: SimulationConfig
    item_bank_size: int
    examinee_results: List[ExamineeResult]
    mean_items: float
    median_items: float
    mean_se: float
    mean_bias: float
    rmse: float
    precision_rate: float
    pass_rate: float
    band_metrics: List[BandMetrics]
    termination_reason_counts: Dict[str, int]


def generate_item_bank(
    n_items_per_category: int = 50,
    categories: Optional[Sequence[str]] = None,
    seed: int = 42,
) -> List[Item]:
    """
    Generate a synthetic item bank with realistic 3PL parameters.

    Item parameters are drawn from distributions that match typical
    operational item banks:
        - Discrimination (a) ~ LogNormal(0.0, 0.3), clipped to [0.5, 2.5]
        - Difficulty (b) ~ Normal(0.0, 1.0), clipped to [-3.0, 3.0]
        - Guessing (c) ~ Beta(5, 17), clipped to [0, 0.35]

    Args:
        n_items_per_category: Number of items to generate per category.
        categories: Category names. Defaults to DEFAULT_CATEGORIES.
        seed: Random seed for reproducibility.

    Returns:
        List of Items with ids ``sim-0001``, ``sim-0002``, ...
    """
    categories = list(categories or DEFAULT_CATEGORIES)
    rng = np.random.default_rng(seed)
    items = []

    for category in categories:
        a_values = np.clip(
            rng.lognormal(
                mean=DISCRIMINATION_LOGNORMAL_MEAN,
                sigma=DISCRIMINATION_LOGNORMAL_SD,
                size=n_items_per_category,
            ),
            DISCRIMINATION_MIN,
            DISCRIMINATION_MAX,
        )
        b_values = np.clip(
            rng.normal(
                loc=DIFFICULTY_NORMAL_MEAN,
                scale=DIFFICULTY_NORMAL_SD,
                size=n_items_per_category,
            ),
            DIFFICULTY_MIN,
            DIFFICULTY_MAX,
        )
        c_values = np.clip(
            rng.beta(GUESSING_BETA_A, GUESSING_BETA_B, size=n_items_per_category),
            0.0,
            GUESSING_MAX,
        )
        for a, b, c in zip(a_values, b_values, c_values):
            items.append(
                Item(
                    id=f"sim-{len(items) + 1:04d}",
                    difficulty=float(b),
                    discrimination=float(a),
                    guessing=float(c),
                    category=category,
                )
            )

    logger.info(
        f"Generated item bank: {len(items)} items across {len(categories)} categories "
        f"({n_items_per_category} per category)"
    )

    return items


def simulate_response(true_theta: float, item: Item, rng: random.Random) -> bool:
    """Draw a response to ``item`` from the 3PL model at ``true_theta``."""
    prob = probability_3pl(
        true_theta, item.discrimination, item.difficulty, item.guessing
    )
    return rng.random() < prob


def simulate_examinee(
    true_theta: float,
    item_bank: Sequence[Item],
    test_config: TestConfig,
    rng: random.Random,
    examinee_id: int = 0,
    state_machine: Optional[AttemptStateMachine] = None,
) -> ExamineeResult:
    """Run one simulated examinee through a complete attempt."""
    state_machine = state_machine or AttemptStateMachine()
    attempt = Attempt(
        id=f"sim-attempt-{examinee_id}",
        subject_id=f"sim-examinee-{examinee_id}",
        item_pool_id="simulation",
        config=test_config,
    )

    step = state_machine.start(attempt, item_bank)
    while not step.is_completed:
        item = step.next_item
        step = state_machine.submit_answer(
            attempt,
            item_bank,
            item.id,
            simulate_response(true_theta, item, rng),
        )

    result = attempt.result
    return ExamineeResult(
        true_theta=true_theta,
        estimated_theta=result.theta,
        final_se=result.standard_error,
        bias=result.theta - true_theta,
        items_administered=result.items_administered,
        termination_reason=result.termination_reason,
        passed=result.passed,
        category_coverage={
            name: score.items_administered
            for name, score in result.category_scores.items()
        },
    )


def run_simulation(
    item_bank: Sequence[Item],
    config: SimulationConfig,
) -> SimulationResult:
    """
    Run a Monte Carlo simulation through the attempt state machine.

    For each simulated examinee:
    1. Draw true_theta from N(config.theta_mean, config.theta_sd)
    2. Start an attempt and answer each presented item with a 3PL draw
    3. Record the final estimate, test length and termination reason

    Returns:
        SimulationResult with per-examinee and aggregate metrics.
    """
    logger.info(
        f"Starting CAT simulation: N={config.n_examinees}, "
        f"theta ~ N({config.theta_mean}, {config.theta_sd}²)"
    )

    rng = random.Random(config.seed)
    np_rng = np.random.default_rng(config.seed)
    test_config = config.to_test_config()
    state_machine = AttemptStateMachine()

    examinee_results = []
    for examinee_id in range(1, config.n_examinees + 1):
        true_theta = float(np_rng.normal(loc=config.theta_mean, scale=config.theta_sd))
        examinee_results.append(
            simulate_examinee(
                true_theta,
                item_bank,
                test_config,
                rng,
                examinee_id=examinee_id,
                state_machine=state_machine,
            )
        )

        if examinee_id % 100 == 0:
            logger.info(f"Completed {examinee_id}/{config.n_examinees} examinees")

    return aggregate_results(config, len(item_bank), examinee_results)


def aggregate_results(
    config: SimulationConfig,
    item_bank_size: int,
    examinee_results: List[ExamineeResult],
) -> SimulationResult:
    """Compute overall and per-band metrics from examinee results."""
    if not examinee_results:
        raise ValueError("Cannot aggregate an empty simulation")

    items = np.array([r.items_administered for r in examinee_results], dtype=float)
    ses = np.array([r.final_se for r in examinee_results])
    biases = np.array([r.bias for r in examinee_results])

    reason_counts: Dict[str, int] = {}
    for r in examinee_results:
        reason_counts[r.termination_reason.value] = (
            reason_counts.get(r.termination_reason.value, 0) + 1
        )

    n = len(examinee_results)
    return SimulationResult(
        config=config,
        item_bank_size=item_bank_size,
        examinee_results=examinee_results,
        mean_items=float(np.mean(items)),
        median_items=float(np.median(items)),
        mean_se=float(np.mean(ses)),
        mean_bias=float(np.mean(biases)),
        rmse=float(np.sqrt(np.mean(biases**2))),
        precision_rate=reason_counts.get(TerminationReason.PRECISION_REACHED.value, 0)
        / n,
        pass_rate=sum(1 for r in examinee_results if r.passed) / n,
        band_metrics=compute_band_metrics(examinee_results),
        termination_reason_counts=reason_counts,
    )


def compute_band_metrics(examinee_results: List[ExamineeResult]) -> List[BandMetrics]:
    """
    Stratify examinees by true ability and compute metrics per band.

    The lowest and highest bands are open-ended so that every examinee is
    counted exactly once. Empty bands report zeros.
    """
    metrics = []
    last = len(ABILITY_BANDS) - 1
    for index, (label, theta_min, theta_max) in enumerate(ABILITY_BANDS):
        band = [
            r
            for r in examinee_results
            if (index == 0 or r.true_theta >= theta_min)
            and (index == last or r.true_theta < theta_max)
        ]
        if not band:
            metrics.append(
                BandMetrics(
                    label=label,
                    theta_range=(theta_min, theta_max),
                    n=0,
                    mean_items=0.0,
                    mean_se=0.0,
                    mean_bias=0.0,
                    rmse=0.0,
                    precision_rate=0.0,
                )
            )
            continue

        biases = np.array([r.bias for r in band])
        precise = sum(
            1
            for r in band
            if r.termination_reason == TerminationReason.PRECISION_REACHED
        )
        metrics.append(
            BandMetrics(
                label=label,
                theta_range=(theta_min, theta_max),
                n=len(band),
                mean_items=float(np.mean([r.items_administered for r in band])),
                mean_se=float(np.mean([r.final_se for r in band])),
                mean_bias=float(np.mean(biases)),
                rmse=float(np.sqrt(np.mean(biases**2))),
                precision_rate=precise / len(band),
            )
        )

    return metrics


def generate_report(result: SimulationResult) -> str:
    """
    Generate a markdown report of simulation results.

    Returns:
        Markdown-formatted report string.
    """
    cfg = result.config
    lines = ["# CAT Simulation Report", ""]

    lines.extend(
        [
            "## Simulation Configuration",
            "",
            f"- **N Examinees**: {cfg.n_examinees:,}",
            f"- **Item Bank Size**: {result.item_bank_size:,}",
            f"- **Theta Distribution**: N({cfg.theta_mean}, {cfg.theta_sd}²)",
            f"- **Target Precision (SE)**: {cfg.target_precision}",
            f"- **Min Items**: {cfg.min_items}",
            f"- **Max Items**: {cfg.max_items}",
            f"- **Passing Score**: {cfg.passing_score}",
            f"- **Random Seed**: {cfg.seed}",
            "",
        ]
    )

    lines.extend(
        [
            "## Overall Metrics",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Mean Items | {result.mean_items:.2f} |",
            f"| Median Items | {result.median_items:.1f} |",
            f"| Mean SE | {result.mean_se:.3f} |",
            f"| Mean Bias | {result.mean_bias:.3f} |",
            f"| RMSE | {result.rmse:.3f} |",
            f"| Precision Reached | {result.precision_rate:.1%} |",
            f"| Pass Rate | {result.pass_rate:.1%} |",
            "",
        ]
    )

    lines.extend(
        [
            "## Ability Band Breakdown",
            "",
            "| Band | θ Range | N | Mean Items | Mean SE | Bias | RMSE | Precision Reached |",
            "|------|---------|---|------------|---------|------|------|-------------------|",
        ]
    )
    for band in result.band_metrics:
        low, high = band.theta_range
        lines.append(
            f"| {band.label} | [{low:.1f}, {high:.1f}) | {band.n} | "
            f"{band.mean_items:.2f} | {band.mean_se:.3f} | {band.mean_bias:+.3f} | "
            f"{band.rmse:.3f} | {band.precision_rate:.1%} |"
        )
    lines.append("")

    lines.extend(
        [
            "## Termination Reason Distribution",
            "",
            "| Reason | Count | Percentage |",
            "|--------|-------|------------|",
        ]
    )
    n = len(result.examinee_results)
    for reason, count in sorted(
        result.termination_reason_counts.items(), key=lambda kv: (-kv[1], kv[0])
    ):
        lines.append(f"| {reason} | {count} | {count / n:.1%} |")
    lines.append("")

    return "\n".join(lines)
