"""
Engine configuration settings.

Defaults for every adaptive-testing knob are loaded from environment variables
(or a ``.env`` file). Individual sessions receive an explicit
:class:`~iqcat.core.cat.session.SessionConfig`, which is normally built from
these settings via ``SessionConfig.from_settings()``.
"""

from typing import Dict, Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.domain_types import ItemCategory


# Tolerance for floating-point weight summation checks
_WEIGHT_SUM_TOLERANCE = 1e-6


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Application
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Ability estimation
    CAT_ESTIMATION_METHOD: Literal["eap", "mle"] = "eap"
    CAT_PRIOR_MEAN: float = 0.0
    CAT_PRIOR_SD: float = Field(default=1.0, gt=0.0)
    CAT_THETA_MIN: float = -4.0
    CAT_THETA_MAX: float = 4.0
    # MLE only: bounded step used while the response pattern is all-correct
    # or all-incorrect, and as the fallback when Newton-Raphson fails.
    CAT_MLE_STEP_SIZE: float = Field(default=0.7, gt=0.0)
    CAT_MLE_MAX_ITERATIONS: int = Field(default=50, ge=1)
    CAT_MLE_TOLERANCE: float = Field(default=0.001, gt=0.0)

    # Termination
    CAT_SE_THRESHOLD: float = Field(default=0.30, ge=0.0, allow_inf_nan=False)
    CAT_MIN_ITEMS: int = Field(default=8, ge=0)
    CAT_MAX_ITEMS: int = Field(default=15, ge=1)
    CAT_TIME_LIMIT_SECONDS: float = Field(default=1800.0, gt=0.0)
    CAT_ITEM_TIME_LIMIT_SECONDS: float = Field(default=60.0, gt=0.0)

    # Item selection
    # Target share of the item budget per category. Keys must be ItemCategory
    # values; categories left out are not capped.
    CAT_CATEGORY_TARGETS: Dict[str, float] = {
        category.value: 0.20 for category in ItemCategory
    }
    CAT_RANDOMESQUE_K: int = Field(default=1, ge=1)

    # Scoring
    CAT_CONFIDENCE_LEVEL: float = Field(default=0.95, gt=0.0, lt=1.0)

    # Item bank content
    CAT_DEFAULT_LOCALE: str = "en"
    CAT_FALLBACK_LOCALE: str = "en"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_theta_range(self) -> Self:
        """Validate CAT_THETA_MIN < CAT_THETA_MAX."""
        if self.CAT_THETA_MIN >= self.CAT_THETA_MAX:
            raise ValueError(
                f"CAT_THETA_MIN ({self.CAT_THETA_MIN}) must be below "
                f"CAT_THETA_MAX ({self.CAT_THETA_MAX})"
            )
        return self

    @model_validator(mode="after")
    def validate_category_targets(self) -> Self:
        """Validate CAT_CATEGORY_TARGETS: known categories, non-negative, sum to 1.0."""
        targets = self.CAT_CATEGORY_TARGETS
        known = {c.value for c in ItemCategory}
        unknown = sorted(set(targets) - known)
        if unknown:
            raise ValueError(
                f"CAT_CATEGORY_TARGETS has unknown categories {unknown}; "
                f"expected a subset of {sorted(known)}"
            )
        negative = [k for k, v in targets.items() if v < 0]
        if negative:
            raise ValueError(
                f"Category targets must be non-negative, got negative: {negative}"
            )
        if targets:
            total = sum(targets.values())
            if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
                raise ValueError(f"CAT_CATEGORY_TARGETS must sum to 1.0, got {total}")
        return self


settings = Settings()
