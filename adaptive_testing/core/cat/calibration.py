"""
Online revision of item parameters from individual responses.

A lightweight heuristic update applied after an item is answered, until
enough data exists for a proper calibration run:

    difficulty     -= LEARNING_RATE  if correct
                   += LEARNING_RATE  otherwise
    time_factor     = clamp(response_time / REFERENCE_RESPONSE_SECONDS, 0.5, 2.0)
    discrimination += (1 - time_factor) × LEARNING_RATE, floored at 0.1

Fast answers nudge discrimination up and slow answers nudge it down. Guessing
is left unchanged.

Items are immutable: a revision returns a new Item with an incremented version.
Attempts keep the parameter snapshot recorded with each response, so revising
an item never changes a historical estimate.
"""

import logging
from dataclasses import replace

from adaptive_testing.core.cat.types import Item

logger = logging.getLogger(__name__)

LEARNING_RATE = 0.01
REFERENCE_RESPONSE_SECONDS = 30.0
MIN_TIME_FACTOR = 0.5
MAX_TIME_FACTOR = 2.0
MIN_DISCRIMINATION = 0.1


def revise_item_parameters(
    item: Item,
    correct: bool,
    response_time_seconds: float,
) -> Item:
    """
    Return a new version of ``item`` nudged towards one observed response.

    Args:
        item: Current item version.
        correct: Whether the response was correct.
        response_time_seconds: Time the subject took to answer.

    Returns:
        New Item with the same id, revised difficulty and discrimination, and
        ``version`` incremented by one.

    Raises:
        ValueError: If response_time_seconds is negative.
    """
    if response_time_seconds < 0:
        raise ValueError(
            f"response_time_seconds must be non-negative, got {response_time_seconds}"
        )

    difficulty_adjustment = -LEARNING_RATE if correct else LEARNING_RATE
    time_factor = max(
        MIN_TIME_FACTOR,
        min(MAX_TIME_FACTOR, response_time_seconds / REFERENCE_RESPONSE_SECONDS),
    )
    discrimination_adjustment = (1.0 - time_factor) * LEARNING_RATE

    revised = replace(
        item,
        difficulty=item.difficulty + difficulty_adjustment,
        discrimination=max(
            MIN_DISCRIMINATION, item.discrimination + discrimination_adjustment
        ),
        version=item.version + 1,
    )

    logger.debug(
        f"Revised item {item.id} v{item.version} -> v{revised.version}: "
        f"b {item.difficulty:.3f} -> {revised.difficulty:.3f}, "
        f"a {item.discrimination:.3f} -> {revised.discrimination:.3f}"
    )

    return revised
