"""
Engine configuration settings.
"""

import math
from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide defaults loaded from environment variables."""

    # Application
    APP_NAME: str = "Adaptive Testing Engine"
    ENV: Literal["development", "test", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # Persistence
    DATABASE_URL: str = "sqlite:///./adaptive_testing.db"
    DATABASE_ECHO: bool = False

    # CAT defaults, used when a test definition does not override them.
    # SE = 0.30 corresponds to reliability ~0.91 (reliability = 1 - SE²)
    CAT_TARGET_PRECISION: float = Field(default=0.30, gt=0.0)
    CAT_MIN_ITEMS: int = Field(default=5, ge=1)
    CAT_MAX_ITEMS: int = Field(default=20, ge=1)
    CAT_ABILITY_MIN: float = -4.0
    CAT_ABILITY_MAX: float = 4.0
    CAT_PASSING_SCORE: float = Field(default=70.0, ge=0.0, le=100.0)
    CAT_PRIOR_THETA: float = 0.0
    # Finite stand-in for "no information yet"; also caps the reported SE.
    CAT_PRIOR_STANDARD_ERROR: float = Field(default=10.0, gt=0.0)

    # Optimistic-concurrency retries for a single answer submission
    CAT_SUBMIT_MAX_RETRIES: int = Field(default=3, ge=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_item_limits(self) -> Self:
        """Validate CAT_MIN_ITEMS <= CAT_MAX_ITEMS."""
        if self.CAT_MIN_ITEMS > self.CAT_MAX_ITEMS:
            raise ValueError(
                f"CAT_MIN_ITEMS ({self.CAT_MIN_ITEMS}) must not exceed "
                f"CAT_MAX_ITEMS ({self.CAT_MAX_ITEMS})"
            )
        return self

    @model_validator(mode="after")
    def validate_ability_domain(self) -> Self:
        """Validate the ability domain is a finite, non-empty interval containing the prior."""
        low, high = self.CAT_ABILITY_MIN, self.CAT_ABILITY_MAX
        if not (math.isfinite(low) and math.isfinite(high)):
            raise ValueError("CAT_ABILITY_MIN and CAT_ABILITY_MAX must be finite")
        if low >= high:
            raise ValueError(
                f"CAT_ABILITY_MIN ({low}) must be less than CAT_ABILITY_MAX ({high})"
            )
        if not low <= self.CAT_PRIOR_THETA <= high:
            raise ValueError(
                f"CAT_PRIOR_THETA ({self.CAT_PRIOR_THETA}) must lie within "
                f"[{low}, {high}]"
            )
        return self


settings = Settings()
