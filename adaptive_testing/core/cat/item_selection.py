"""
Maximum Fisher Information (MFI) item selection for Computerized Adaptive Testing.

Selects the next item from the pool that maximizes 3PL Fisher information at
the current ability estimate (theta):

    I_i(theta) = a_i^2 * (P_i - c_i)^2 * (1 - P_i) / ((1 - c_i)^2 * P_i)

The selection pipeline:
1. Filter out excluded (already administered) items
2. Compute Fisher information for each remaining item at current theta
3. Keep the items within INFORMATION_TIE_TOLERANCE of the best
4. Among those, prefer the category least represented so far
5. Break any remaining tie by lowest item id

Selection is deterministic: the same pool, estimate and exclusions always
yield the same item. An empty candidate set returns None, which callers treat
as a stop signal rather than an error.

References:
    - Lord, F. M. (1980). Applications of item response theory to practical
      testing problems.
    - van der Linden, W.J. (1998). Bayesian item selection criteria for
      adaptive testing.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from adaptive_testing.core.cat.content_balancing import least_represented
from adaptive_testing.core.cat.irt import fisher_information_3pl
from adaptive_testing.core.cat.types import Item, ItemId

logger = logging.getLogger(__name__)

# Items whose information differs by less than this are treated as tied
INFORMATION_TIE_TOLERANCE = 1e-6


@dataclass
class ItemCandidate:
    """An item with its computed Fisher information value."""

    item: Item
    information: float


def item_information(item: Item, theta: float) -> float:
    """Fisher information of ``item`` at ``theta``."""
    return fisher_information_3pl(
        theta=theta,
        discrimination=item.discrimination,
        difficulty=item.difficulty,
        guessing=item.guessing,
    )


def rank_candidates(
    item_pool: Sequence[Item],
    theta_estimate: float,
    excluded_ids: Set[ItemId],
) -> List[ItemCandidate]:
    """
    Score every eligible item and sort by information (descending), then id.

    Args:
        item_pool: Candidate items.
        theta_estimate: Ability level at which information is evaluated.
        excluded_ids: Ids that must never be returned.

    Returns:
        List of ItemCandidate, most informative first.
    """
    candidates = [
        ItemCandidate(item=item, information=item_information(item, theta_estimate))
        for item in item_pool
        if item.id not in excluded_ids
    ]
    candidates.sort(key=lambda c: (-c.information, c.item.id))
    return candidates


def select_next_item(
    item_pool: Sequence[Item],
    theta_estimate: float,
    excluded_ids: Set[ItemId],
    category_coverage: Optional[Dict[str, int]] = None,
    tie_tolerance: float = INFORMATION_TIE_TOLERANCE,
) -> Optional[Item]:
    """
    Select the next item using Maximum Fisher Information.

    Args:
        item_pool: All items of the attempt's pool.
        theta_estimate: Current ability estimate.
        excluded_ids: Ids already administered in this attempt.
        category_coverage: Dict mapping category -> count of items already
            administered. Used only to break information ties.
        tie_tolerance: Information delta below which items count as tied.

    Returns:
        The selected Item, or None if every item is excluded.
    """
    candidates = rank_candidates(item_pool, theta_estimate, excluded_ids)

    if not candidates:
        logger.warning(
            "No eligible items remaining after filtering. "
            f"Pool size: {len(item_pool)}, excluded: {len(excluded_ids)}"
        )
        return None

    best_information = candidates[0].information
    tied = [
        c.item
        for c in candidates
        if best_information - c.information <= tie_tolerance
    ]

    if len(tied) > 1:
        tied = least_represented(tied, category_coverage or {})
        tied.sort(key=lambda item: item.id)

    selected = tied[0]

    logger.debug(
        f"Item selection: theta={theta_estimate:.3f}, "
        f"eligible={len(candidates)}, tied={len(tied)}, "
        f"selected {selected.id} "
        f"(a={selected.discrimination:.2f}, b={selected.difficulty:.2f}, "
        f"c={selected.guessing:.2f}, info={best_information:.4f})"
    )

    return selected
