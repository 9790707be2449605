"""
Library configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Self


class Settings(BaseSettings):
    """Library settings loaded from environment variables (prefix ``CBTKIT_``)."""

    ENV: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    # "text" for human-readable output, "json" for log aggregators
    LOG_FORMAT: Literal["text", "json"] = "text"

    # MILP solver (HiGHS via scipy.optimize.milp)
    SOLVER_TIME_LIMIT: float = Field(
        default=60.0,
        gt=0.0,
        description="Default wall-clock budget for a single solve, in seconds",
    )
    SOLVER_MIP_GAP: float = Field(
        default=1e-4,
        ge=0.0,
        lt=1.0,
        description="Default relative optimality gap at which a solve is accepted",
    )
    SOLVER_VERBOSE: bool = False

    # Response model
    IRT_SCALING_CONSTANT: float = 1.702  # D in P = c + (1-c) / (1 + exp(-D*a*(theta-b)))
    THETA_MIN: float = -4.0
    THETA_MAX: float = 4.0
    QUADRATURE_POINTS: int = Field(default=61, ge=11)

    # Adaptive testing defaults
    CAT_MIN_ITEMS: int = Field(default=10, ge=0)
    CAT_MAX_ITEMS: int = Field(default=20, ge=1)
    CAT_SE_THRESHOLD: float = 0.30  # SE = 0.30 corresponds to reliability ~0.91
    CAT_RANDOMESQUE_K: int = Field(default=1, ge=1)
    CAT_PRIOR_MEAN: float = 0.0
    CAT_PRIOR_SD: float = Field(default=1.0, gt=0.0)
    CAT_FIXED_STEP: float = Field(default=0.5, gt=0.0)
    CAT_CONTENT_ATTRIBUTE: str = "content"

    # Exposure monitoring
    EXPOSURE_ALERT_THRESHOLD: float = Field(default=0.15, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(
        env_prefix="CBTKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_theta_range(self) -> Self:
        """Reject an empty ability range."""
        if self.THETA_MIN >= self.THETA_MAX:
            raise ValueError(
                f"THETA_MIN must be below THETA_MAX, got [{self.THETA_MIN}, {self.THETA_MAX}]"
            )
        return self

    @model_validator(mode="after")
    def validate_cat_lengths(self) -> Self:
        """CAT_MIN_ITEMS may not exceed CAT_MAX_ITEMS."""
        if self.CAT_MIN_ITEMS > self.CAT_MAX_ITEMS:
            raise ValueError(
                f"CAT_MIN_ITEMS ({self.CAT_MIN_ITEMS}) must not exceed "
                f"CAT_MAX_ITEMS ({self.CAT_MAX_ITEMS})"
            )
        return self


settings = Settings()
