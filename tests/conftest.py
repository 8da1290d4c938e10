"""Shared test fixtures and in-memory fakes for the store's collaborators."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from warroom.config import Settings
from warroom.core.store import MatchupDataStore
from warroom.models.league import LeagueDescriptor, LeagueKey, LeagueWrapper, Platform
from warroom.models.matchup import GameStatus, MatchupStatus, RawMatchup, RawPlayer, RawTeam
from warroom.models.snapshot import MatchupSnapshotID

WEEK = 9
SEASON = 2025
MY_TEAM = "1"


# ---------------------------------------------------------------------------
# Raw data builders
# ---------------------------------------------------------------------------


def make_player(
    player_id: str,
    points: float = 0.0,
    *,
    starter: bool = True,
    status: str | None = None,
    injury: str | None = None,
) -> RawPlayer:
    return RawPlayer(
        id=player_id,
        first_name="Player",
        last_name=player_id.upper(),
        position="WR",
        current_points=points,
        projected_points=10.0,
        is_starter=starter,
        game_status=GameStatus(status=status) if status else None,
        injury_status=injury,
    )


def make_team(team_id: str, players: list[RawPlayer], score: float | None = None) -> RawTeam:
    if score is None:
        score = sum(p.current_points or 0.0 for p in players if p.is_starter)
    return RawTeam(
        id=team_id,
        name=f"Team {team_id}",
        owner_name=f"owner{team_id}",
        current_score=score,
        projected_score=100.0,
        roster=players,
        roster_id=int(team_id) if team_id.isdigit() else None,
    )


def make_matchup(
    home: RawTeam,
    away: RawTeam,
    *,
    matchup_id: str = "m1",
    league_id: str = "L1",
    status: MatchupStatus = MatchupStatus.LIVE,
) -> RawMatchup:
    return RawMatchup(
        id=matchup_id,
        league_id=league_id,
        week=WEEK,
        year=SEASON,
        home_team=home,
        away_team=away,
        status=status,
    )


def default_matchup(league_id: str = "L1", *, live: bool = False) -> RawMatchup:
    status = "in" if live else None
    mine = make_team(MY_TEAM, [make_player("p1", 12.0, status=status), make_player("p2", 8.0)])
    theirs = make_team("2", [make_player("p3", 15.0), make_player("p4", 3.0)])
    return make_matchup(mine, theirs, league_id=league_id)


def matchup_id(league_id: str = "L1", mid: str = "m1", week: int = WEEK) -> MatchupSnapshotID:
    return MatchupSnapshotID(
        league_id=league_id, matchup_id=mid, platform=Platform.SLEEPER, week=week
    )


def league_key(league_id: str = "L1", week: int = WEEK) -> LeagueKey:
    return LeagueKey(league_id=league_id, platform=Platform.SLEEPER, season_year=SEASON, week=week)


def descriptor(league_id: str = "L1") -> LeagueDescriptor:
    return LeagueDescriptor(id=league_id, name=f"League {league_id}", platform=Platform.SLEEPER)


def wrapper(league_id: str = "L1", **kwargs: object) -> LeagueWrapper:
    return LeagueWrapper(
        id=league_id, name=f"League {league_id}", platform=Platform.SLEEPER, **kwargs
    )


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeLeagueManager:
    def __init__(self, leagues: list[LeagueWrapper]) -> None:
        self.leagues = {league.id: league for league in leagues}

    async def resolve_league(self, league_id: str) -> LeagueWrapper | None:
        return self.leagues.get(league_id)

    async def all_leagues(self) -> list[LeagueWrapper]:
        return list(self.leagues.values())


@dataclass
class FakeBackend:
    """Upstream platform state shared by every provider the factory builds."""

    matchups: dict[str, list[RawMatchup]] = field(default_factory=dict)
    standings: dict[str, list[RawTeam]] = field(default_factory=dict)
    my_team_ids: dict[str, str | None] = field(default_factory=dict)
    fetch_calls: int = 0
    error: Exception | None = None
    gate: asyncio.Event | None = None

    def factory(self, league: LeagueWrapper, week: int, year: int) -> FakeProvider:
        return FakeProvider(self, league)


class FakeProvider:
    def __init__(self, backend: FakeBackend, league: LeagueWrapper) -> None:
        self._backend = backend
        self._league = league
        self._matchups: list[RawMatchup] = []

    async def identify_my_team_id(self) -> str | None:
        return self._backend.my_team_ids.get(self._league.id, MY_TEAM)

    async def _upstream(self) -> None:
        self._backend.fetch_calls += 1
        if self._backend.gate is not None:
            await self._backend.gate.wait()
        if self._backend.error is not None:
            raise self._backend.error

    async def fetch_matchups(self) -> list[RawMatchup]:
        await self._upstream()
        self._matchups = list(self._backend.matchups.get(self._league.id, []))
        return self._matchups

    def find_my_matchup(self, my_team_id: str) -> RawMatchup | None:
        return next((m for m in self._matchups if m.involves(my_team_id)), None)

    async def fetch_chopped_standings(self) -> list[RawTeam]:
        await self._upstream()
        return list(self._backend.standings.get(self._league.id, []))


@dataclass
class FakeEliminationService:
    playoff_week: bool = False
    in_winners_bracket: bool = True

    def is_playoff_week(self, league: LeagueWrapper, week: int) -> bool:
        return self.playoff_week

    async def is_team_in_winners_bracket(
        self, league: LeagueWrapper, week: int, my_team_id: str
    ) -> bool:
        return self.in_winners_bracket


@dataclass
class FakePreferences:
    show_eliminated_leagues: bool = False


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(warroom_env="development", warroom_auto_refresh=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(SEASON, 11, 2, 18, 0, tzinfo=UTC))


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(matchups={"L1": [default_matchup("L1")], "L2": [default_matchup("L2")]})


@pytest.fixture
def league_manager() -> FakeLeagueManager:
    return FakeLeagueManager([wrapper("L1"), wrapper("L2")])


@pytest.fixture
def elimination() -> FakeEliminationService:
    return FakeEliminationService()


@pytest.fixture
def preferences() -> FakePreferences:
    return FakePreferences()


@pytest.fixture
def store(
    backend: FakeBackend,
    league_manager: FakeLeagueManager,
    elimination: FakeEliminationService,
    preferences: FakePreferences,
    clock: FakeClock,
) -> MatchupDataStore:
    return MatchupDataStore(
        league_manager,
        backend.factory,
        elimination,
        preferences,
        clock=clock,
    )
