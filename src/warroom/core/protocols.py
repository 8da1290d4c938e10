"""Interfaces of the collaborators the matchup store depends on.

The store never constructs these itself; they are injected at app startup
(or replaced with fakes in tests).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from warroom.models.league import LeagueWrapper
    from warroom.models.matchup import RawMatchup, RawTeam


class MatchupProvider(Protocol):
    """Fetches one league's matchups for one week from its platform."""

    async def identify_my_team_id(self) -> str | None: ...

    async def fetch_matchups(self) -> list[RawMatchup]: ...

    def find_my_matchup(self, my_team_id: str) -> RawMatchup | None:
        """Look up the user's matchup among those returned by fetch_matchups()."""
        ...

    async def fetch_chopped_standings(self) -> list[RawTeam]:
        """Every surviving team's lineup and score for a chopped league week."""
        ...


ProviderFactory = Callable[["LeagueWrapper", int, int], MatchupProvider]
"""Builds a provider for (league wrapper, week, season year)."""


class LeagueManager(Protocol):
    """Knows which leagues the user currently belongs to."""

    async def resolve_league(self, league_id: str) -> LeagueWrapper | None: ...

    async def all_leagues(self) -> list[LeagueWrapper]: ...


class PlayoffEliminationService(Protocol):
    def is_playoff_week(self, league: LeagueWrapper, week: int) -> bool: ...

    async def is_team_in_winners_bracket(
        self, league: LeagueWrapper, week: int, my_team_id: str
    ) -> bool: ...


class Preferences(Protocol):
    @property
    def show_eliminated_leagues(self) -> bool: ...
