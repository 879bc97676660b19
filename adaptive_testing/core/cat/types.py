"""
Immutable value types shared by the CAT engine.

``Item`` validates its 3PL parameters on construction, so malformed parameters
fail where an item is loaded instead of surfacing as NaN deep inside a
log-likelihood sum.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from adaptive_testing.core.exceptions import InvalidItemParametersError
from adaptive_testing.domain_types import ItemType

ItemId = str


@dataclass(frozen=True)
class Item:
    """One calibrated test question.

    Attributes:
        id: Opaque unique identifier.
        difficulty: b parameter, location on the ability scale (typically [-3, 3]).
        discrimination: a parameter, slope of the item characteristic curve (> 0).
        guessing: c parameter, lower asymptote in [0, 1).
        category: Topical category, used for coverage tie-breaks only.
        tags: Descriptive tags, never used for estimation.
        item_type: Answer format, selects the answer scorer.
        version: Parameter revision. Edited parameters produce a new version.
    """

    id: ItemId
    difficulty: float
    discrimination: float = 1.0
    guessing: float = 0.0
    category: str = "general"
    tags: Tuple[str, ...] = ()
    item_type: ItemType = ItemType.MULTIPLE_CHOICE
    version: int = 1

    def __post_init__(self) -> None:
        context = {"item_id": self.id}
        if not math.isfinite(self.difficulty):
            raise InvalidItemParametersError(
                f"difficulty must be finite, got {self.difficulty}", context
            )
        if not math.isfinite(self.discrimination) or self.discrimination <= 0:
            raise InvalidItemParametersError(
                f"discrimination must be positive, got {self.discrimination}", context
            )
        if not math.isfinite(self.guessing) or not 0.0 <= self.guessing < 1.0:
            raise InvalidItemParametersError(
                f"guessing must be in [0, 1), got {self.guessing}", context
            )
        if self.version < 1:
            raise InvalidItemParametersError(
                f"version must be >= 1, got {self.version}", context
            )


@dataclass(frozen=True)
class ResponseRecord:
    """A scored answer to one item, with the item parameters it was scored under.

    The parameter snapshot keeps historical estimates stable when an item is
    later revised. ``theta_after``/``standard_error_after`` record the estimate
    immediately after this response was applied.
    """

    item_id: ItemId
    correct: bool
    difficulty: float
    discrimination: float
    guessing: float
    category: str = "general"
    item_version: int = 1
    timestamp: Optional[datetime] = None
    duration_ms: Optional[int] = None
    theta_after: Optional[float] = None
    standard_error_after: Optional[float] = None

    @classmethod
    def for_item(
        cls,
        item: Item,
        correct: bool,
        timestamp: Optional[datetime] = None,
        duration_ms: Optional[int] = None,
    ) -> "ResponseRecord":
        """Build a record carrying a snapshot of ``item``'s parameters."""
        return cls(
            item_id=item.id,
            correct=correct,
            difficulty=item.difficulty,
            discrimination=item.discrimination,
            guessing=item.guessing,
            category=item.category,
            item_version=item.version,
            timestamp=timestamp,
            duration_ms=duration_ms,
        )


@dataclass(frozen=True)
class AbilityEstimate:
    """Point estimate of latent ability with its standard error."""

    theta: float
    standard_error: float
    n_responses: int = 0
    information: float = field(default=0.0, compare=False)
