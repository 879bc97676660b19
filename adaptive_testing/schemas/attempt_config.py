"""
Per-test configuration for adaptive attempts.

A TestConfig is supplied by the caller for each test definition and stored on
every attempt created from it, so an attempt keeps the rules it started with
even if the test definition changes later.
"""
import math
from typing import Optional, Self, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from adaptive_testing.core.config import Settings, settings


class TestConfig(BaseModel):
    """Stopping, scoring and estimation parameters for one adaptive test."""

    # Not a pytest test class despite the name
    __test__ = False

    model_config = ConfigDict(frozen=True)

    target_precision: float = Field(
        ...,
        gt=0.0,
        description="Stop once the standard error of theta is at or below this value",
    )
    min_items: int = Field(
        ..., ge=1, description="Items always administered before precision is trusted"
    )
    max_items: int = Field(..., ge=1, description="Hard cap on administered items")
    ability_domain: Tuple[float, float] = Field(
        default=(-4.0, 4.0),
        description="Clamp range for theta; also the range mapped onto the 0-100 score",
    )
    passing_score: float = Field(
        default=70.0, ge=0.0, le=100.0, description="Minimum score (0-100) to pass"
    )
    prior_theta: float = Field(
        default=0.0, description="Initial ability used to select the first item"
    )
    prior_standard_error: float = Field(
        default=10.0,
        gt=0.0,
        description="Standard error reported before any response; caps later values",
    )
    time_limit_minutes: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Wall-clock limit for the attempt; None disables it",
    )

    @model_validator(mode="after")
    def validate_item_limits(self) -> Self:
        """Validate min_items <= max_items."""
        if self.min_items > self.max_items:
            raise ValueError(
                f"min_items ({self.min_items}) must not exceed "
                f"max_items ({self.max_items})"
            )
        return self

    @model_validator(mode="after")
    def validate_ability_domain(self) -> Self:
        """Validate the ability domain is finite, non-empty and contains the prior."""
        low, high = self.ability_domain
        if not (math.isfinite(low) and math.isfinite(high)):
            raise ValueError(f"ability_domain must be finite, got {self.ability_domain}")
        if low >= high:
            raise ValueError(
                f"ability_domain lower bound must be less than upper bound, "
                f"got {self.ability_domain}"
            )
        if not low <= self.prior_theta <= high:
            raise ValueError(
                f"prior_theta ({self.prior_theta}) must lie within {self.ability_domain}"
            )
        return self

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None, **overrides) -> "TestConfig":
        """
        Build a TestConfig from process-wide defaults.

        Args:
            source: Settings instance to read (defaults to the module singleton).
            **overrides: Field values that replace the defaults.
        """
        source = source or settings
        values = {
            "target_precision": source.CAT_TARGET_PRECISION,
            "min_items": source.CAT_MIN_ITEMS,
            "max_items": source.CAT_MAX_ITEMS,
            "ability_domain": (source.CAT_ABILITY_MIN, source.CAT_ABILITY_MAX),
            "passing_score": source.CAT_PASSING_SCORE,
            "prior_theta": source.CAT_PRIOR_THETA,
            "prior_standard_error": source.CAT_PRIOR_STANDARD_ERROR,
        }
        values.update(overrides)
        return cls(**values)
