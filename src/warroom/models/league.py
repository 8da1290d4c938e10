"""League identity and cache-partition models.

LeagueKey partitions the matchup cache. League summaries come in two phases:
a SkeletonSummary built from locally known fields during warm-up, and a
ResolvedSummary produced once the league wrapper (playoff start, chopped
format) is available from the league manager.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from warroom.models.snapshot import MatchupSnapshotID


class Platform(StrEnum):
    """Upstream fantasy platform a league lives on."""

    SLEEPER = "sleeper"
    ESPN = "espn"


class LoadState(StrEnum):
    """Load lifecycle of a league cache entry.

    LOADING_BASIC is the skeleton state right after warm-up. LOADED and ERROR
    are stable until the next refresh.
    """

    LOADING_BASIC = "loading_basic"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class LeagueKey(BaseModel):
    """Identity of one cache partition: a league at a given season and week."""

    model_config = ConfigDict(frozen=True)

    league_id: str
    platform: Platform
    season_year: int
    week: int

    @classmethod
    def for_matchup(cls, matchup_id: MatchupSnapshotID, season_year: int) -> LeagueKey:
        return cls(
            league_id=matchup_id.league_id,
            platform=matchup_id.platform,
            season_year=season_year,
            week=matchup_id.week,
        )


class LeagueDescriptor(BaseModel):
    """Lightweight league reference as the UI knows it."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    platform: Platform
    avatar_url: str | None = None


class LeagueWrapper(BaseModel):
    """A league as resolved by the league manager, including its settings."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    platform: Platform
    playoff_week_start: int | None = None
    is_chopped: bool = False
    settings: dict[str, Any] = Field(default_factory=dict)

    def descriptor(self) -> LeagueDescriptor:
        return LeagueDescriptor(id=self.id, name=self.name, platform=self.platform)


class SkeletonSummary(BaseModel):
    """League metadata known before the league wrapper has been resolved."""

    model_config = ConfigDict(frozen=True)

    league_id: str
    league_name: str
    platform: Platform
    week: int
    total_matchups: int = 0

    @property
    def is_resolved(self) -> bool:
        return False

    def resolve(self, wrapper: LeagueWrapper) -> ResolvedSummary:
        """Promote this skeleton using settings from the resolved league wrapper."""
        return ResolvedSummary(
            league_id=self.league_id,
            league_name=self.league_name or wrapper.name,
            platform=self.platform,
            week=self.week,
            total_matchups=self.total_matchups,
            playoff_week_start=wrapper.playoff_week_start,
            is_chopped=wrapper.is_chopped,
        )


class ResolvedSummary(SkeletonSummary):
    """League metadata once playoff start and chopped format are known.

    ``playoff_week_start`` of None here means the league has no explicit
    playoff start, not that it has not been looked up yet.
    """

    playoff_week_start: int | None = None
    is_chopped: bool = False

    @property
    def is_resolved(self) -> bool:
        return True

    def resolve(self, wrapper: LeagueWrapper) -> ResolvedSummary:
        return self


LeagueSummary = SkeletonSummary | ResolvedSummary
