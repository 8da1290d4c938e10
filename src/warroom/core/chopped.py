"""Chopped (guillotine) league weeks and playoff-elimination placeholders.

A chopped league has no head-to-head pairings: every surviving team plays
the whole league and the lowest scorers get chopped. Only starters count, so
a team's score is the sum of its starters' points. The user's "opponent" is
the team on the chopping block: the lowest scorer, or the next-lowest when
the user is the one at the bottom.
"""

from __future__ import annotations

from datetime import datetime

from warroom.core.snapshot_builder import is_my_team
from warroom.models.matchup import (
    ELIMINATED_PLACEHOLDER_ID,
    ELIMINATED_PLACEHOLDER_NAME,
    MatchupStatus,
    RawMatchup,
    RawTeam,
)

CHOPPING_BLOCK_ID = "chopping_block"
CHOPPING_BLOCK_NAME = "Chopping Block"


def starter_score(team: RawTeam) -> float:
    return sum(p.current_points or 0.0 for p in team.starters)


def starter_projection(team: RawTeam) -> float:
    return sum(p.projected_points or 0.0 for p in team.starters)


def _scored(team: RawTeam) -> RawTeam:
    if not team.roster:
        return team.model_copy(update={"current_score": team.current_score or 0.0})
    return team.model_copy(
        update={
            "current_score": starter_score(team),
            "projected_score": starter_projection(team),
        }
    )


def rank_survivors(standings: list[RawTeam]) -> list[RawTeam]:
    """Teams still holding a roster, best starter score first."""
    survivors = [_scored(t) for t in standings if t.roster]
    return sorted(survivors, key=lambda t: t.score, reverse=True)


def chopping_block(ranked: list[RawTeam], my_team_id: str) -> RawTeam:
    """The lowest-ranked survivor other than the user's team."""
    for team in reversed(ranked):
        if not is_my_team(team, my_team_id):
            return team
    return RawTeam(id=CHOPPING_BLOCK_ID, name=CHOPPING_BLOCK_NAME, current_score=0.0)


def build_chopped_matchup(
    standings: list[RawTeam],
    my_team_id: str,
    *,
    league_id: str,
    week: int,
    year: int,
) -> RawMatchup | None:
    """Pair the user's team against the chopping block. None if the user has no team."""
    mine = next((t for t in standings if is_my_team(t, my_team_id)), None)
    if mine is None:
        return None

    ranked = rank_survivors(standings)
    block = chopping_block(ranked, my_team_id)
    live = any(_has_live_player(t) for t in ranked)
    return RawMatchup(
        id=f"{league_id}_chopped",
        league_id=league_id,
        week=week,
        year=year,
        home_team=_scored(mine),
        away_team=block,
        status=MatchupStatus.LIVE if live else MatchupStatus.UPCOMING,
    )


def _has_live_player(team: RawTeam) -> bool:
    return any(p.game_status is not None and p.game_status.is_live for p in team.starters)


def build_eliminated_matchup(
    my_team_id: str,
    *,
    league_id: str,
    week: int,
    year: int,
    my_team: RawTeam | None = None,
    now: datetime | None = None,
) -> RawMatchup:
    """Synthesize a completed matchup against the "Eliminated from Playoffs" placeholder."""
    if my_team is None:
        my_team = RawTeam(id=my_team_id, current_score=0.0)
    placeholder = RawTeam(
        id=ELIMINATED_PLACEHOLDER_ID,
        name=ELIMINATED_PLACEHOLDER_NAME,
        owner_name=ELIMINATED_PLACEHOLDER_NAME,
        current_score=0.0,
        projected_score=0.0,
        roster_id=0,
    )
    return RawMatchup(
        id=f"{league_id}_eliminated_{week}_{my_team_id}",
        league_id=league_id,
        week=week,
        year=year,
        home_team=my_team,
        away_team=placeholder,
        status=MatchupStatus.COMPLETE,
        start_time=now,
    )
