"""
Stopping rules for Computerized Adaptive Testing (CAT).

Stopping Rules (evaluated in priority order):
    1. Minimum items: continue until min_items are administered
    2. Maximum items: stop immediately at max_items (MAX_ITEMS_REACHED)
    3. Precision: stop when SE(theta) <= target_precision (PRECISION_REACHED)
    4. Otherwise continue

Pool exhaustion (NO_MORE_ITEMS) is not decided here: the attempt state machine
raises it when item selection comes back empty, whatever these rules say.
A wall-clock time limit (TIMED_OUT) is likewise checked by the state machine
before a response is recorded, via ``is_time_limit_exceeded``.

References:
    - Weiss, D. J., & Kingsbury, G. G. (1984). Application of computerized
      adaptive testing to educational problems. Journal of Educational
      Measurement, 21(4), 361-375.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from adaptive_testing.core.cat.types import AbilityEstimate
from adaptive_testing.domain_types import TerminationReason
from adaptive_testing.schemas.attempt_config import TestConfig

logger = logging.getLogger(__name__)


@dataclass
class StoppingDecision:
    """
    Result of evaluating stopping criteria for an attempt.

    Attributes:
        should_stop: Whether the test should terminate.
        reason: Termination reason when should_stop is True, otherwise None.
        details: Diagnostic information (se, num_items, target_precision,
            min_items_met, at_max_items).
    """

    should_stop: bool
    reason: Optional[TerminationReason]
    details: Dict[str, Any]


def check_stopping_criteria(
    se: float,
    num_items: int,
    target_precision: float,
    min_items: int,
    max_items: int,
) -> StoppingDecision:
    """
    Evaluate the stopping rules in priority order.

    Args:
        se: Current standard error of the ability estimate.
        num_items: Number of items administered so far.
        target_precision: SE at or below which the test may stop.
        min_items: Minimum items before stopping is allowed.
        max_items: Maximum items (overrides precision).

    Returns:
        StoppingDecision with should_stop flag, reason, and diagnostic details.

    Raises:
        ValueError: If se or num_items is negative.
    """
    if se < 0:
        raise ValueError(f"Standard error must be non-negative, got {se}")
    if num_items < 0:
        raise ValueError(f"Number of items must be non-negative, got {num_items}")

    details: Dict[str, Any] = {
        "se": se,
        "num_items": num_items,
        "target_precision": target_precision,
        "min_items_met": num_items >= min_items,
        "at_max_items": num_items >= max_items,
    }

    # Rule 1: Minimum items
    if num_items < min_items:
        logger.debug(
            f"Continuing: {num_items}/{min_items} items administered (below minimum)"
        )
        return StoppingDecision(should_stop=False, reason=None, details=details)

    # Rule 2: Maximum items
    if num_items >= max_items:
        logger.info(f"Stopping: reached maximum items ({num_items}/{max_items})")
        return StoppingDecision(
            should_stop=True,
            reason=TerminationReason.MAX_ITEMS_REACHED,
            details=details,
        )

    # Rule 3: Precision
    if se <= target_precision:
        logger.info(
            f"Stopping: precision reached (SE={se:.4f} <= {target_precision:.4f}) "
            f"after {num_items} items"
        )
        return StoppingDecision(
            should_stop=True,
            reason=TerminationReason.PRECISION_REACHED,
            details=details,
        )

    logger.debug(
        f"Continuing: SE={se:.4f} (target={target_precision:.4f}), items={num_items}"
    )
    return StoppingDecision(should_stop=False, reason=None, details=details)


def evaluate(
    estimate: AbilityEstimate,
    items_administered: int,
    config: TestConfig,
) -> StoppingDecision:
    """Evaluate the stopping rules for an estimate under a test configuration."""
    return check_stopping_criteria(
        se=estimate.standard_error,
        num_items=items_administered,
        target_precision=config.target_precision,
        min_items=config.min_items,
        max_items=config.max_items,
    )


def should_continue(
    estimate: AbilityEstimate,
    items_administered: int,
    config: TestConfig,
) -> bool:
    """Return True when the test should administer another item."""
    return not evaluate(estimate, items_administered, config).should_stop


def is_time_limit_exceeded(
    started_at: Optional[datetime],
    now: datetime,
    time_limit_minutes: Optional[float],
) -> bool:
    """
    Check whether an attempt has run past its wall-clock limit.

    Returns False when no limit is configured or the attempt has not started.
    """
    if time_limit_minutes is None or started_at is None:
        return False
    return now - started_at >= timedelta(minutes=time_limit_minutes)
