"""
Control Policy - Tunable thresholds for fund control

The ControlPolicy gathers the numbers an agency may want to tune without
touching code: variance bands, anti-deficiency risk bands, how often a
conflicting command is re-run and who may edit drafts.

Fun fact: the 10%/20% variance bands are the common rule of thumb for
reprogramming reviews - beyond a fifth of plan, somebody has to explain.
"""

from decimal import Decimal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControlPolicy(BaseSettings):
    """
    Fund-control parameters

    The defaults reproduce the standard behavior. Every field can be
    overridden through a FUND_CONTROL_<FIELD> environment variable, and
    keyword arguments win over the environment.

    Example:
        FUND_CONTROL_VARIANCE_CRITICAL_PCT=25 -> variance_critical_pct=25
    """

    model_config = SettingsConfigDict(env_prefix="FUND_CONTROL_", extra="ignore")

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    # Variance classification (percent of planned)
    variance_threshold_pct: Decimal = Field(
        default=Decimal("10"),
        gt=0,
        description="At or beyond this percentage a variance is favorable/unfavorable",
    )
    variance_critical_pct: Decimal = Field(
        default=Decimal("20"),
        gt=0,
        description="At or beyond this absolute percentage a variance is critical",
    )

    # Anti-deficiency risk bands (percent of total remaining after a request)
    risk_high_remaining_pct: Decimal = Field(
        default=Decimal("5"),
        ge=0,
        le=100,
        description="Less than this share remaining is HIGH risk",
    )
    risk_medium_remaining_pct: Decimal = Field(
        default=Decimal("10"),
        ge=0,
        le=100,
        description="Less than this share remaining is MEDIUM risk",
    )

    # Appropriations
    default_availability_years: int = Field(
        default=2,
        ge=2,
        le=10,
        description="Availability window of multi-year appropriations when not given",
    )

    # Budgets
    draft_edit_creator_only: bool = Field(
        default=True,
        description="Only the creator may edit or roll back a draft budget",
    )

    # Concurrency
    conflict_retry_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="How many times a command is re-run after a stream version conflict",
    )

    @model_validator(mode="after")
    def _check_bands(self) -> "ControlPolicy":
        if self.variance_critical_pct < self.variance_threshold_pct:
            raise ValueError("variance_critical_pct must be >= variance_threshold_pct")
        if self.risk_medium_remaining_pct < self.risk_high_remaining_pct:
            raise ValueError("risk_medium_remaining_pct must be >= risk_high_remaining_pct")
        return self


# Default policy instance
default_control_policy = ControlPolicy()
