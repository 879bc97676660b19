"""
CAT (Computerized Adaptive Testing) engine.

This package provides 3PL ability estimation, item selection, stopping rules,
score conversion and the attempt state machine that ties them together.
"""

from .ability_estimation import estimate, estimate_ability_mle
from .calibration import revise_item_parameters
from .content_balancing import least_represented, track_category_coverage
from .engine import Attempt, AttemptStateMachine, StepResult
from .irt import fisher_information_3pl, probability_3pl
from .item_defaults import ItemParameterDefaults, resolve_item
from .item_selection import select_next_item
from .score_conversion import CategoryScore, FinalResult, finalize, theta_to_score
from .stopping_rules import StoppingDecision, check_stopping_criteria, should_continue
from .types import AbilityEstimate, Item, ItemId, ResponseRecord

__all__ = [
    "AbilityEstimate",
    "Attempt",
    "AttemptStateMachine",
    "CategoryScore",
    "FinalResult",
    "Item",
    "ItemId",
    "ItemParameterDefaults",
    "ResponseRecord",
    "StepResult",
    "StoppingDecision",
    "check_stopping_criteria",
    "estimate",
    "estimate_ability_mle",
    "finalize",
    "fisher_information_3pl",
    "least_represented",
    "probability_3pl",
    "resolve_item",
    "revise_item_parameters",
    "select_next_item",
    "should_continue",
    "theta_to_score",
    "track_category_coverage",
]
