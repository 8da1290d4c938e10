"""Failures raised by the matchup store.

Not-found conditions share a base class so callers can treat them uniformly.
EliminatedHiddenError is deliberately outside that hierarchy: it means the
user chose to hide the league, not that data is missing.
"""

from __future__ import annotations


class MatchupStoreError(Exception):
    """Base class for all store failures."""


class NotFoundError(MatchupStoreError):
    """Something the fetch pipeline needed is not available upstream."""


class LeagueNotFoundError(NotFoundError):
    """The league manager no longer knows this league."""

    def __init__(self, league_id: str) -> None:
        self.league_id = league_id
        super().__init__(f"League {league_id} not found")


class LeagueEvictedError(NotFoundError):
    """The league was dropped from the cache while its fetch was in flight."""

    def __init__(self, league_id: str) -> None:
        self.league_id = league_id
        super().__init__(f"League {league_id} was removed from the cache")


class TeamNotIdentifiedError(NotFoundError):
    """The user's team could not be identified within the league."""

    def __init__(self, league_id: str) -> None:
        self.league_id = league_id
        super().__init__(f"Could not identify user's team in league {league_id}")


class MatchupNotFoundError(NotFoundError):
    """No matchup in the league week contains the user's team."""

    def __init__(self, league_id: str, team_id: str) -> None:
        self.league_id = league_id
        self.team_id = team_id
        super().__init__(f"No matchup found for team {team_id} in league {league_id}")


class EliminatedHiddenError(MatchupStoreError):
    """The user's team is out of the playoffs and eliminated leagues are hidden."""

    def __init__(self, league_id: str, week: int) -> None:
        self.league_id = league_id
        self.week = week
        super().__init__(f"Eliminated from playoffs in league {league_id} week {week} (hidden)")
