"""
Maximum-likelihood ability estimation for Computerized Adaptive Testing.

Estimates latent ability (theta) from a set of scored responses under the 3PL
IRT model by maximizing the log-likelihood over a bounded ability domain:

    log L(theta) = sum(u_i * log P_i(theta) + (1 - u_i) * log(1 - P_i(theta)))

The 3PL likelihood can be multimodal and, for all-correct or all-incorrect
response patterns, increases without bound towards +/- infinity. The search
therefore runs in two stages:

    1. Coarse grid search over the domain (GRID_STEP spacing) to locate the
       region of the global maximum.
    2. Fisher scoring refinement from the best grid point,
       theta <- theta + score(theta) / I(theta), with step halving and every
       iterate clamped to the domain.

Degenerate response patterns converge to a domain bound, which is expected
behavior rather than an error.

Standard error is the inverse square root of the test information at the
estimate, SE = 1 / sqrt(I(theta_hat)), capped at the prior standard error so
it is always finite.

Sums use math.fsum, which is exactly rounded, so the estimate does not depend
on the order in which responses were recorded.
"""

import logging
import math
from typing import List, Sequence, Tuple

from adaptive_testing.core.cat.irt import (
    fisher_information_3pl,
    log_probabilities_3pl,
    score_contribution_3pl,
)
from adaptive_testing.core.cat.types import AbilityEstimate, ResponseRecord

logger = logging.getLogger(__name__)

DEFAULT_ABILITY_DOMAIN = (-4.0, 4.0)
DEFAULT_PRIOR_STANDARD_ERROR = 10.0

# Grid spacing for the coarse search stage
GRID_STEP = 0.05
# Fisher scoring stops when the step falls below this (well under the 1e-3 target)
CONVERGENCE_TOLERANCE = 1e-5
MAX_ITERATIONS = 50
# Largest single Fisher scoring step, limits overshoot on flat likelihoods
MAX_STEP = 1.0
MAX_STEP_HALVINGS = 20

# (discrimination, difficulty, guessing, is_correct)
ResponseTuple = Tuple[float, float, float, bool]


def log_likelihood(theta: float, responses: Sequence[ResponseTuple]) -> float:
    """
    Log-likelihood of a response vector at a given ability level.

    Args:
        theta: Ability level.
        responses: (a, b, c, is_correct) tuples.

    Returns:
        Sum of log P for correct responses and log(1 - P) for incorrect ones.
    """
    terms = []
    for a, b, c, is_correct in responses:
        log_p_correct, log_p_incorrect = log_probabilities_3pl(theta, a, b, c)
        terms.append(log_p_correct if is_correct else log_p_incorrect)
    return math.fsum(terms)


def total_information(theta: float, responses: Sequence[ResponseTuple]) -> float:
    """Total Fisher information of the administered items at theta."""
    return math.fsum(
        fisher_information_3pl(theta, a, b, c) for a, b, c, _ in responses
    )


def estimate_ability_mle(
    responses: Sequence[ResponseTuple],
    ability_domain: Tuple[float, float] = DEFAULT_ABILITY_DOMAIN,
    prior_theta: float = 0.0,
    prior_standard_error: float = DEFAULT_PRIOR_STANDARD_ERROR,
) -> Tuple[float, float]:
    """
    Estimate ability by bounded maximum likelihood under the 3PL model.

    Args:
        responses: List of (discrimination, difficulty, guessing, is_correct)
            tuples.
        ability_domain: (min, max) bounds for theta. The estimate never leaves
            this interval.
        prior_theta: Estimate returned when there are no responses.
        prior_standard_error: Standard error returned when there are no
            responses, and the cap on any reported standard error.

    Returns:
        Tuple of (theta_estimate, standard_error).

    Raises:
        ValueError: If the domain is empty or any discrimination/guessing
            parameter is outside the model's domain.
    """
    theta_min, theta_max = ability_domain
    if not theta_min < theta_max:
        raise ValueError(f"Ability domain must be non-empty, got {ability_domain}")

    if not responses:
        return (_clamp(prior_theta, theta_min, theta_max), prior_standard_error)

    for i, (a, b, c, _) in enumerate(responses):
        if a <= 0:
            raise ValueError(
                f"Discrimination parameter must be positive, got {a} for response {i}"
            )
        if not 0.0 <= c < 1.0:
            raise ValueError(
                f"Guessing parameter must be in [0, 1), got {c} for response {i}"
            )

    theta = _grid_search(responses, theta_min, theta_max)
    theta = _fisher_scoring(responses, theta, theta_min, theta_max)

    information = total_information(theta, responses)
    if information > 0:
        se = min(1.0 / math.sqrt(information), prior_standard_error)
    else:
        se = prior_standard_error

    return (theta, se)


def estimate(
    responses: Sequence[ResponseRecord],
    ability_domain: Tuple[float, float] = DEFAULT_ABILITY_DOMAIN,
    prior_theta: float = 0.0,
    prior_standard_error: float = DEFAULT_PRIOR_STANDARD_ERROR,
) -> AbilityEstimate:
    """
    Estimate ability from recorded responses.

    Converts ResponseRecord objects to the (a, b, c, is_correct) tuples
    expected by ``estimate_ability_mle``, using each record's parameter
    snapshot.

    Returns:
        AbilityEstimate with theta, standard error, response count and the
        test information at the estimate.
    """
    response_tuples = to_response_tuples(responses)
    theta, se = estimate_ability_mle(
        response_tuples,
        ability_domain=ability_domain,
        prior_theta=prior_theta,
        prior_standard_error=prior_standard_error,
    )
    return AbilityEstimate(
        theta=theta,
        standard_error=se,
        n_responses=len(response_tuples),
        information=total_information(theta, response_tuples),
    )


def to_response_tuples(responses: Sequence[ResponseRecord]) -> List[ResponseTuple]:
    """Project ResponseRecords onto (a, b, c, is_correct) tuples."""
    return [
        (r.discrimination, r.difficulty, r.guessing, r.correct) for r in responses
    ]


def _grid_search(
    responses: Sequence[ResponseTuple],
    theta_min: float,
    theta_max: float,
) -> float:
    """Return the grid point with the highest log-likelihood (lowest theta on ties)."""
    n_steps = max(1, int(math.ceil((theta_max - theta_min) / GRID_STEP)))
    step = (theta_max - theta_min) / n_steps

    best_theta = theta_min
    best_ll = -math.inf
    for i in range(n_steps + 1):
        theta = theta_max if i == n_steps else theta_min + step * i
        ll = log_likelihood(theta, responses)
        if ll > best_ll:
            best_ll = ll
            best_theta = theta
    return best_theta


def _fisher_scoring(
    responses: Sequence[ResponseTuple],
    theta: float,
    theta_min: float,
    theta_max: float,
) -> float:
    """
    Refine theta with bounded Fisher scoring.

    Each step is clamped to the domain and halved until it does not decrease
    the log-likelihood, so the iteration is monotone and always terminates.
    """
    current_ll = log_likelihood(theta, responses)

    for iteration in range(MAX_ITERATIONS):
        score = math.fsum(
            score_contribution_3pl(theta, a, b, c, is_correct)
            for a, b, c, is_correct in responses
        )
        information = total_information(theta, responses)
        if information <= 0:
            break

        step = max(-MAX_STEP, min(MAX_STEP, score / information))
        candidate = _clamp(theta + step, theta_min, theta_max)

        halvings = 0
        candidate_ll = log_likelihood(candidate, responses)
        while candidate_ll < current_ll and halvings < MAX_STEP_HALVINGS:
            step /= 2.0
            candidate = _clamp(theta + step, theta_min, theta_max)
            candidate_ll = log_likelihood(candidate, responses)
            halvings += 1

        if candidate_ll < current_ll:
            break

        delta = abs(candidate - theta)
        theta, current_ll = candidate, candidate_ll
        if delta < CONVERGENCE_TOLERANCE:
            logger.debug(
                f"Fisher scoring converged after {iteration + 1} iterations "
                f"at theta={theta:.4f}"
            )
            break

    return theta


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
