"""Normalized, immutable matchup snapshots handed to consumers.

A MatchupSnapshot carries the same two teams twice: once re-oriented to the
viewing user (my_team / opponent_team) and once in true schedule orientation
(home_team / away_team). The two views always share the same numbers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from warroom.models.league import LeagueDescriptor, LeagueKey, LoadState, Platform

TeamSide = Literal["home", "away"]


class MatchupSnapshotID(BaseModel):
    """Identity of a matchup within a league week."""

    model_config = ConfigDict(frozen=True)

    league_id: str
    matchup_id: str
    platform: Platform
    week: int


class MatchupMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str
    start_time: datetime | None = None
    is_playoff: bool = False
    is_chopped: bool = False
    is_eliminated: bool = False


class PlayerIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    player_id: str
    sleeper_id: str | None = None
    espn_id: str | None = None
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""


class PlayerMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_score: float = 0.0
    projected_score: float = 0.0
    delta: float = 0.0  # score change since the previous refresh
    last_activity: datetime | None = None
    game_status: str | None = None


class PlayerContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: str = ""
    lineup_slot: str | None = None
    is_starter: bool = False
    team: str | None = None  # NFL team abbreviation
    injury_status: str | None = None
    jersey_number: str | None = None
    kickoff_time: datetime | None = None


class PlayerSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    identity: PlayerIdentity
    metrics: PlayerMetrics
    context: PlayerContext

    @property
    def is_live_starter(self) -> bool:
        return self.context.is_starter and self.metrics.game_status == "live"


class TeamInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    team_id: str
    owner_name: str = ""
    record: str = ""
    avatar_url: str | None = None


class ScoreInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    actual: float = 0.0
    projected: float = 0.0
    win_probability: float | None = None
    margin: float = 0.0


class TeamSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    info: TeamInfo
    score: ScoreInfo
    roster: list[PlayerSnapshot] = Field(default_factory=list)

    @property
    def team_id(self) -> str:
        return self.info.team_id


class MatchupSnapshot(BaseModel):
    """Everything a matchup view needs, frozen at ``last_updated``."""

    model_config = ConfigDict(frozen=True)

    id: MatchupSnapshotID
    metadata: MatchupMetadata
    my_team: TeamSnapshot
    opponent_team: TeamSnapshot
    home_team: TeamSnapshot
    away_team: TeamSnapshot
    my_team_side: TeamSide
    league: LeagueDescriptor
    last_updated: datetime

    def teams(self) -> tuple[TeamSnapshot, TeamSnapshot]:
        """The two distinct teams, in schedule orientation."""
        return self.home_team, self.away_team

    def players(self) -> list[PlayerSnapshot]:
        """My roster followed by the opponent's, in provider order."""
        return [*self.my_team.roster, *self.opponent_team.roster]

    def has_live_starter(self) -> bool:
        return any(p.is_live_starter for team in self.teams() for p in team.roster)


class LeagueSnapshot(BaseModel):
    """Point-in-time view of one league cache, pushed to observers."""

    model_config = ConfigDict(frozen=True)

    key: LeagueKey
    league_name: str
    matchups: list[MatchupSnapshot] = Field(default_factory=list)
    state: LoadState
    error_message: str | None = None
    last_refreshed: datetime

    @property
    def league_id(self) -> str:
        return self.key.league_id

    @property
    def week(self) -> int:
        return self.key.week
