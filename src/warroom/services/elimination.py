"""Playoff bracket lookups against the Sleeper and ESPN APIs.

Used by the store when a league has no matchups for a week: during the
playoffs that means the user's team is either out of the winners bracket
or sitting on a bye. The bracket evaluation itself is pure and lives in the
``sleeper_in_winners_bracket`` / ``espn_in_winners_bracket`` functions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from pydantic import BaseModel, Field, ValidationError

from warroom.config import Settings
from warroom.core.protocols import Preferences
from warroom.models.league import LeagueWrapper, Platform

logger = logging.getLogger(__name__)

WINNERS_BRACKET = "WINNERS_BRACKET"


# ---- Payload models ---------------------------------------------------------


class SleeperBracketMatch(BaseModel):
    """One match of a Sleeper ``winners_bracket`` response."""

    round: int = Field(alias="r")
    match: int | None = Field(default=None, alias="m")
    team1: int | None = Field(default=None, alias="t1")
    team2: int | None = Field(default=None, alias="t2")
    winner: int | None = Field(default=None, alias="w")
    loser: int | None = Field(default=None, alias="l")

    def involves(self, roster_id: int) -> bool:
        return roster_id in (self.team1, self.team2)


class ESPNScheduleTeam(BaseModel):
    team_id: int = Field(alias="teamId")


class ESPNScheduleEntry(BaseModel):
    """One entry of the ``schedule`` array in an ESPN league response."""

    matchup_period_id: int = Field(alias="matchupPeriodId")
    home: ESPNScheduleTeam
    away: ESPNScheduleTeam | None = None
    playoff_tier_type: str | None = Field(default=None, alias="playoffTierType")

    def involves(self, team_id: int) -> bool:
        away_id = self.away.team_id if self.away is not None else None
        return team_id in (self.home.team_id, away_id)

    @property
    def is_winners_bracket(self) -> bool:
        return (self.playoff_tier_type or "NONE") == WINNERS_BRACKET


# ---- Bracket evaluation -----------------------------------------------------


def playoff_round(week: int, playoff_start: int) -> int:
    """Bracket round played in ``week``; weeks before the playoffs count as round 1."""
    return max(1, week - playoff_start + 1)


def sleeper_in_winners_bracket(
    bracket: list[SleeperBracketMatch], roster_id: int, round_: int
) -> bool:
    """Still alive in a Sleeper winners bracket at ``round_``.

    Losing any bracket match eliminates. Otherwise the team is alive if it
    plays this round, or first appears in a later one (bye).
    """
    mine = [m for m in bracket if m.involves(roster_id)]
    if any(m.loser == roster_id for m in mine):
        return False
    if any(m.round == round_ for m in mine):
        return True
    return bool(mine) and min(m.round for m in mine) > round_


def espn_in_winners_bracket(
    schedule: list[ESPNScheduleEntry], team_id: int, week: int, playoff_start: int
) -> bool:
    """Still alive in an ESPN league's winners bracket at ``week``."""
    if week < playoff_start:
        return True
    this_week = next(
        (e for e in schedule if e.matchup_period_id == week and e.involves(team_id)),
        None,
    )
    if this_week is not None:
        return this_week.is_winners_bracket
    return any(
        e.is_winners_bracket and e.matchup_period_id >= week and e.involves(team_id)
        for e in schedule
    )


# ---- Service ----------------------------------------------------------------


def _utc_now() -> datetime:
    return datetime.now(UTC)


class HttpPlayoffEliminationService:
    """PlayoffEliminationService backed by the platforms' public HTTP APIs."""

    def __init__(
        self,
        settings: Settings,
        preferences: Preferences | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings
        self._preferences = preferences or settings
        self._transport = transport
        self._clock = clock

    def _playoff_start(self, league: LeagueWrapper) -> int:
        if league.playoff_week_start is not None:
            return league.playoff_week_start
        return self._settings.warroom_playoff_week_fallback

    def is_playoff_week(self, league: LeagueWrapper, week: int) -> bool:
        if week >= self._settings.warroom_playoff_week_fallback:
            return True
        return week >= self._playoff_start(league)

    async def is_team_in_winners_bracket(
        self, league: LeagueWrapper, week: int, my_team_id: str
    ) -> bool:
        if league.platform is Platform.SLEEPER:
            return await self._sleeper_check(league, week, my_team_id)
        return await self._espn_check(league, week, my_team_id)

    def _client(self, cookies: dict[str, str] | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            cookies=cookies,
            transport=self._transport,
            timeout=self._settings.warroom_http_timeout_seconds,
        )

    async def _sleeper_check(self, league: LeagueWrapper, week: int, my_team_id: str) -> bool:
        show_eliminated = self._preferences.show_eliminated_leagues
        try:
            roster_id = int(my_team_id)
        except ValueError:
            logger.warning(
                "sleeper_bracket_bad_team_id league=%s team=%r", league.id, my_team_id
            )
            return show_eliminated

        url = f"{self._settings.sleeper_api_base}/league/{league.id}/winners_bracket"
        try:
            async with self._client() as client:
                resp = await client.get(url)
                resp.raise_for_status()
                bracket = [SleeperBracketMatch.model_validate(m) for m in resp.json() or []]
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.warning(
                "sleeper_bracket_fetch_failed league=%s show_eliminated=%s error=%s",
                league.id,
                show_eliminated,
                exc,
            )
            return show_eliminated

        round_ = playoff_round(week, self._playoff_start(league))
        return sleeper_in_winners_bracket(bracket, roster_id, round_)

    async def _espn_check(self, league: LeagueWrapper, week: int, my_team_id: str) -> bool:
        try:
            team_id = int(my_team_id)
        except ValueError:
            return self._preferences.show_eliminated_leagues

        playoff_start = self._playoff_start(league)
        if week < playoff_start:
            return True

        year = self._clock().year
        url = f"{self._settings.espn_api_base}/seasons/{year}/segments/0/leagues/{league.id}"
        params = [("view", "mMatchupScore"), ("scoringPeriodId", str(week))]
        cookies: dict[str, str] = {}
        if self._settings.espn_s2 and self._settings.espn_swid:
            cookies = {"espn_s2": self._settings.espn_s2, "SWID": self._settings.espn_swid}
        try:
            async with self._client(cookies) as client:
                resp = await client.get(url, params=params, headers={"Accept": "application/json"})
                resp.raise_for_status()
                entries = resp.json().get("schedule")
                schedule = [ESPNScheduleEntry.model_validate(e) for e in entries or []]
        except (httpx.HTTPError, ValueError, ValidationError, AttributeError) as exc:
            logger.warning("espn_bracket_fetch_failed league=%s error=%s", league.id, exc)
            return True

        if not schedule:
            return True
        return espn_in_winners_bracket(schedule, team_id, week, playoff_start)
