"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings

# Week from which a league is assumed to be in its playoffs when the league
# settings carry no explicit playoff start.
DEFAULT_PLAYOFF_WEEK_FALLBACK = 15

SLEEPER_API_BASE = "https://api.sleeper.app/v1"
ESPN_API_BASE = "https://lm-api-reads.fantasy.espn.com/apis/v3/games/ffl"


class Settings(BaseSettings):
    """Warroom configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Environment
    warroom_env: str = "development"

    # Logging
    warroom_log_level: str = "INFO"

    # Cache freshness
    warroom_live_ttl_seconds: float = 15.0  # any starter in a live game
    warroom_idle_ttl_seconds: float = 300.0  # no live action in the league
    warroom_default_ttl_seconds: float = 90.0  # league not cached yet

    # Snapshot shaping
    warroom_playoff_week_fallback: int = DEFAULT_PLAYOFF_WEEK_FALLBACK
    warroom_change_epsilon: float = 0.01
    warroom_win_probability_sd: float = 40.0

    # User preferences
    warroom_show_eliminated_leagues: bool = False

    # Polling
    warroom_auto_refresh: bool = True
    warroom_refresh_interval_seconds: int = 30

    # Upstream platforms (playoff bracket lookups)
    sleeper_api_base: str = SLEEPER_API_BASE
    espn_api_base: str = ESPN_API_BASE
    espn_s2: str = ""
    espn_swid: str = ""
    warroom_http_timeout_seconds: float = 10.0

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_ttls(self) -> Settings:
        """Reject non-positive TTLs and a live TTL longer than the idle one."""
        ttls = (
            self.warroom_live_ttl_seconds,
            self.warroom_idle_ttl_seconds,
            self.warroom_default_ttl_seconds,
        )
        if any(ttl <= 0 for ttl in ttls):
            msg = "Cache TTLs must be positive"
            raise ValueError(msg)
        if self.warroom_live_ttl_seconds > self.warroom_idle_ttl_seconds:
            msg = (
                "WARROOM_LIVE_TTL_SECONDS must not exceed WARROOM_IDLE_TTL_SECONDS "
                f"({self.warroom_live_ttl_seconds} > {self.warroom_idle_ttl_seconds})"
            )
            raise ValueError(msg)
        return self

    @property
    def show_eliminated_leagues(self) -> bool:
        """Preference read by the store when a playoff team has been knocked out."""
        return self.warroom_show_eliminated_leagues
