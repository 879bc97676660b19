"""
Three-parameter logistic (3PL) IRT model primitives.

    P(theta) = c + (1 - c) / (1 + exp(-a * (theta - b)))

    a = discrimination, b = difficulty, c = guessing (lower asymptote)

Item information (Birnbaum, 1968):

    I(theta) = a^2 * (P - c)^2 * (1 - P) / ((1 - c)^2 * P)

Score function contribution of one response u in {0, 1}:

    d/dtheta log L = a * (u - P) * (P - c) / (P * (1 - c))

All functions are pure and stateless. Log-probabilities are computed in a
numerically stable form so extreme logits never produce log(0).
"""

import math


def _sigmoid(logit: float) -> float:
    """Numerically stable logistic function."""
    if logit >= 0:
        return 1.0 / (1.0 + math.exp(-logit))
    exp_logit = math.exp(logit)
    return exp_logit / (1.0 + exp_logit)


def _log_sigmoid(logit: float) -> float:
    """Numerically stable log of the logistic function."""
    if logit >= 0:
        return -math.log1p(math.exp(-logit))
    return logit - math.log1p(math.exp(logit))


def probability_3pl(
    theta: float,
    discrimination: float,
    difficulty: float,
    guessing: float = 0.0,
) -> float:
    """
    Probability of a correct response under the 3PL model.

    Args:
        theta: Ability level.
        discrimination: Item discrimination parameter (a).
        difficulty: Item difficulty parameter (b).
        guessing: Item guessing parameter (c).

    Returns:
        Probability in [c, 1].
    """
    return guessing + (1.0 - guessing) * _sigmoid(
        discrimination * (theta - difficulty)
    )


def log_probabilities_3pl(
    theta: float,
    discrimination: float,
    difficulty: float,
    guessing: float = 0.0,
) -> tuple[float, float]:
    """
    Log-probabilities of a correct and an incorrect response.

    log(1 - P) = log(1 - c) + log(sigmoid(-logit)) avoids cancellation when P
    is close to 1.

    Returns:
        Tuple of (log P(correct), log P(incorrect)).
    """
    logit = discrimination * (theta - difficulty)
    if guessing == 0.0:
        log_p_correct = _log_sigmoid(logit)
    else:
        log_p_correct = math.log(guessing + (1.0 - guessing) * _sigmoid(logit))
    log_p_incorrect = math.log1p(-guessing) + _log_sigmoid(-logit)
    return log_p_correct, log_p_incorrect


def fisher_information_3pl(
    theta: float,
    discrimination: float,
    difficulty: float,
    guessing: float = 0.0,
) -> float:
    """
    Fisher information of a 3PL item at a given ability level.

    Args:
        theta: Ability level.
        discrimination: Item discrimination parameter (a). Must be > 0.
        difficulty: Item difficulty parameter (b).
        guessing: Item guessing parameter (c), in [0, 1).

    Returns:
        Fisher information value (non-negative).

    Raises:
        ValueError: If discrimination is not positive or guessing is outside [0, 1).
    """
    if discrimination <= 0:
        raise ValueError(
            f"Discrimination parameter must be positive, got {discrimination}"
        )
    if not 0.0 <= guessing < 1.0:
        raise ValueError(f"Guessing parameter must be in [0, 1), got {guessing}")

    p = probability_3pl(theta, discrimination, difficulty, guessing)
    if p <= 0.0 or p >= 1.0:
        # Saturated logistic: the item carries no information at this theta
        return 0.0

    return (
        discrimination**2
        * (p - guessing) ** 2
        * (1.0 - p)
        / ((1.0 - guessing) ** 2 * p)
    )


def score_contribution_3pl(
    theta: float,
    discrimination: float,
    difficulty: float,
    guessing: float,
    is_correct: bool,
) -> float:
    """
    First derivative of one response's log-likelihood with respect to theta.

    Returns:
        Positive when the response pulls the estimate up, negative otherwise.
    """
    p = probability_3pl(theta, discrimination, difficulty, guessing)
    if p <= 0.0 or p >= 1.0:
        return 0.0
    observed = 1.0 if is_correct else 0.0
    return discrimination * (observed - p) * (p - guessing) / (p * (1.0 - guessing))
