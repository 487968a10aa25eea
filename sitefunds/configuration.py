"""Mini README: Centralised configuration models and helpers for Site Funds.

Structure:
    * SiteFundsSettings - Pydantic model describing runtime configuration.
    * get_settings - cached accessor for environment-aware settings.

Usage:
    Import ``get_settings`` to read ``SITEFUNDS_`` environment variables (or a
    local ``.env`` file). Besides the service binding, the settings carry the
    refresh tunables: how long a recomputation may run, how often a failed
    sub-fetch is retried and how long a client must stay in the background
    before its summaries are treated as stale.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class SiteFundsSettings(BaseSettings):
    """Runtime configuration for the Site Funds service."""

    environment: str = Field(
        "development",
        description="Environment label controlling debug toggles and logging levels.",
    )
    interface_host: str = Field(
        "0.0.0.0",
        description="Network interface for the HTTP service to bind to.",
    )
    interface_port: int = Field(
        8000,
        description="Default port the HTTP service exposes.",
        ge=1,
        le=65535,
    )
    recompute_timeout_seconds: float = Field(
        15.0,
        description="Upper bound for one balance recomputation before it is abandoned.",
        ge=1.0,
        le=60.0,
    )
    fetch_max_retries: int = Field(
        2,
        description="Automatic retries for a failed ledger sub-fetch.",
        ge=0,
        le=3,
    )
    fetch_retry_delay_seconds: float = Field(
        0.5,
        description="Base delay for exponential backoff between sub-fetch retries.",
        ge=0.0,
    )
    visibility_ignore_below_seconds: float = Field(
        1.0,
        description="Background periods shorter than this are ignored entirely.",
        ge=0.0,
    )
    visibility_refresh_after_seconds: float = Field(
        30.0,
        description="Background periods longer than this mark open summaries stale.",
        gt=0.0,
    )
    idle_summary_cache_size: int = Field(
        128,
        description="Summaries of sites nobody is viewing kept in memory; older ones are evicted.",
        ge=0,
    )
    seed_demo_data: bool = Field(
        True,
        description="Populate an empty in-memory ledger with demo sites on start-up.",
    )

    class Config:
        env_prefix = "SITEFUNDS_"
        env_file = ".env"
        case_sensitive = False

    @validator("visibility_refresh_after_seconds")
    def _refresh_after_exceeds_ignore(cls, value: float, values: dict) -> float:
        """Keep the stale threshold above the anti-flicker threshold."""

        ignore_below = values.get("visibility_ignore_below_seconds")
        if ignore_below is not None and value < ignore_below:
            raise ValueError(
                "visibility_refresh_after_seconds must not be lower than "
                "visibility_ignore_below_seconds"
            )
        return value


@lru_cache()
def get_settings() -> SiteFundsSettings:
    """Return cached settings, ensuring consistent configuration across modules."""

    return SiteFundsSettings()
