"""Raw matchup records as returned by a MatchupProvider.

These mirror what the platform clients assemble from Sleeper/ESPN payloads.
The store never hands them to consumers; SnapshotBuilder normalizes them into
MatchupSnapshot values first.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

# Opponent name used for a synthesized matchup when the user's team has been
# knocked out of the playoff bracket.
ELIMINATED_PLACEHOLDER_NAME = "Eliminated from Playoffs"
ELIMINATED_PLACEHOLDER_ID = "eliminated_placeholder"


class MatchupStatus(StrEnum):
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETE = "complete"


class GameStatus(BaseModel):
    """NFL game state for a rostered player ("pregame", "live", "postgame", "bye")."""

    status: str
    start_time: datetime | None = None
    time_remaining: str | None = None
    quarter: str | None = None
    home_score: int | None = None
    away_score: int | None = None

    @property
    def is_live(self) -> bool:
        return self.status.lower() in ("live", "in")


class TeamRecord(BaseModel):
    wins: int = 0
    losses: int = 0
    ties: int | None = None

    def display(self) -> str:
        """Record string, e.g. "8-3" or "8-3-1" when ties were played."""
        if self.ties:
            return f"{self.wins}-{self.losses}-{self.ties}"
        return f"{self.wins}-{self.losses}"


class RawPlayer(BaseModel):
    """A rostered player with this week's scoring."""

    id: str
    sleeper_id: str | None = None
    espn_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    position: str = ""
    team: str | None = None
    jersey_number: str | None = None
    current_points: float | None = None
    projected_points: float | None = None
    game_status: GameStatus | None = None
    is_starter: bool = False
    lineup_slot: str | None = None
    injury_status: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class RawTeam(BaseModel):
    """One side of a fantasy matchup."""

    id: str
    name: str = ""
    owner_name: str = ""
    record: TeamRecord | None = None
    avatar: str | None = None
    current_score: float | None = None
    projected_score: float | None = None
    roster: list[RawPlayer] = Field(default_factory=list)
    roster_id: int | None = None

    @property
    def score(self) -> float:
        return self.current_score or 0.0

    @property
    def starters(self) -> list[RawPlayer]:
        return [p for p in self.roster if p.is_starter]


class RawMatchup(BaseModel):
    """A head-to-head pairing for one league week."""

    id: str
    league_id: str
    week: int
    year: int
    home_team: RawTeam
    away_team: RawTeam
    status: MatchupStatus = MatchupStatus.UPCOMING
    start_time: datetime | None = None

    def involves(self, team_id: str) -> bool:
        return team_id in (self.home_team.id, self.away_team.id)
