"""Shared domain enums for the adaptive testing engine.

Usage:
    from adaptive_testing.domain_types import AttemptStatus, TerminationReason
"""

import enum


class AttemptStatus(str, enum.Enum):
    """Lifecycle status of an adaptive test attempt."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TerminationReason(str, enum.Enum):
    """Why a completed attempt stopped administering items."""

    PRECISION_REACHED = "precision_reached"
    MAX_ITEMS_REACHED = "max_items_reached"
    NO_MORE_ITEMS = "no_more_items"
    TIMED_OUT = "timed_out"


class ItemType(str, enum.Enum):
    """Question formats with their own answer scoring rules."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    MATCHING = "matching"


class DifficultyLabel(str, enum.Enum):
    """Coarse authoring-time difficulty label."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ProficiencyLevel(str, enum.Enum):
    """Reporting band derived from the final score."""

    EXPERT = "expert"
    ADVANCED = "advanced"
    INTERMEDIATE = "intermediate"
    BEGINNER = "beginner"
    NEEDS_IMPROVEMENT = "needs_improvement"
