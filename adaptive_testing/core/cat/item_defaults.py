"""
Fallback 3PL parameters for items that were never calibrated.

Authored items often carry only a coarse difficulty label and an option count.
Until calibration data exists, their IRT parameters are filled in from an
injectable ``ItemParameterDefaults`` policy. The default values are a content
authoring convention rather than a property of the estimator, so callers can
pass their own policy wherever items are loaded.
"""

from typing import Dict, FrozenSet, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from adaptive_testing.core.cat.types import Item, ItemId
from adaptive_testing.domain_types import DifficultyLabel, ItemType


class ItemParameterDefaults(BaseModel):
    """Policy for filling in missing item parameters."""

    model_config = ConfigDict(frozen=True)

    difficulty_by_label: Dict[DifficultyLabel, float] = Field(
        default_factory=lambda: {
            DifficultyLabel.EASY: -1.0,
            DifficultyLabel.MEDIUM: 0.0,
            DifficultyLabel.HARD: 1.0,
        }
    )
    # Used when neither a calibrated difficulty nor a label is available
    default_difficulty: float = 0.0
    discrimination: float = Field(default=1.0, gt=0.0)
    # Guessing when the option count is unknown
    fallback_guessing: float = Field(default=0.25, ge=0.0, lt=1.0)
    # Item types answered without options, so chance success is zero
    free_response_types: FrozenSet[ItemType] = frozenset({ItemType.FILL_BLANK})
    # Implied option counts for types whose options are fixed
    implied_option_counts: Dict[ItemType, int] = Field(
        default_factory=lambda: {ItemType.TRUE_FALSE: 2}
    )

    def difficulty_for(self, label: Optional[DifficultyLabel]) -> float:
        if label is None:
            return self.default_difficulty
        return self.difficulty_by_label.get(label, self.default_difficulty)

    def guessing_for(self, item_type: ItemType, option_count: Optional[int]) -> float:
        """Chance of answering correctly by guessing: 1 / option_count."""
        if item_type in self.free_response_types:
            return 0.0
        if option_count is None:
            option_count = self.implied_option_counts.get(item_type)
        if option_count is None or option_count < 2:
            return self.fallback_guessing
        return 1.0 / option_count


DEFAULT_ITEM_PARAMETERS = ItemParameterDefaults()


def resolve_item(
    item_id: ItemId,
    *,
    difficulty: Optional[float] = None,
    discrimination: Optional[float] = None,
    guessing: Optional[float] = None,
    difficulty_label: Optional[DifficultyLabel] = None,
    option_count: Optional[int] = None,
    item_type: ItemType = ItemType.MULTIPLE_CHOICE,
    category: str = "general",
    tags: Sequence[str] = (),
    version: int = 1,
    defaults: ItemParameterDefaults = DEFAULT_ITEM_PARAMETERS,
) -> Item:
    """
    Build an Item, filling missing IRT parameters from ``defaults``.

    Calibrated values always win over defaults. The resulting Item validates
    its parameters, so a malformed calibrated value still fails here.

    Raises:
        InvalidItemParametersError: If a supplied parameter is outside the
            3PL model's domain.
    """
    return Item(
        id=item_id,
        difficulty=(
            difficulty if difficulty is not None
            else defaults.difficulty_for(difficulty_label)
        ),
        discrimination=(
            discrimination if discrimination is not None else defaults.discrimination
        ),
        guessing=(
            guessing if guessing is not None
            else defaults.guessing_for(item_type, option_count)
        ),
        category=category,
        tags=tuple(tags),
        item_type=item_type,
        version=version,
    )
