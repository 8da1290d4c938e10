"""Raw provider matchup -> MatchupSnapshot.

Pure functions: no I/O and no store state. The league summary and clock are
passed in by the caller.
"""

from __future__ import annotations

from datetime import datetime

from warroom.config import DEFAULT_PLAYOFF_WEEK_FALLBACK
from warroom.core.win_probability import WinProbabilityModel
from warroom.models.league import LeagueDescriptor, LeagueKey, LeagueSummary
from warroom.models.matchup import (
    ELIMINATED_PLACEHOLDER_NAME,
    RawMatchup,
    RawPlayer,
    RawTeam,
    TeamRecord,
)
from warroom.models.snapshot import (
    MatchupMetadata,
    MatchupSnapshot,
    MatchupSnapshotID,
    PlayerContext,
    PlayerIdentity,
    PlayerMetrics,
    PlayerSnapshot,
    ScoreInfo,
    TeamInfo,
    TeamSide,
    TeamSnapshot,
)

_LIVE_STATUSES = frozenset({"live", "in"})


def format_record(record: TeamRecord | None) -> str:
    return record.display() if record is not None else ""


def is_my_team(team: RawTeam, my_team_id: str) -> bool:
    """Match by team ID, or by Sleeper roster ID rendered as a string."""
    if team.id == my_team_id:
        return True
    return team.roster_id is not None and str(team.roster_id) == my_team_id


def my_side(matchup: RawMatchup, my_team_id: str) -> TeamSide:
    return "home" if is_my_team(matchup.home_team, my_team_id) else "away"


def detect_playoff(
    week: int,
    summary: LeagueSummary | None,
    fallback_week: int = DEFAULT_PLAYOFF_WEEK_FALLBACK,
) -> bool:
    """Playoff week per the league's own playoff start, else the fallback week."""
    start = getattr(summary, "playoff_week_start", None)
    if start is not None:
        return week >= start
    return week >= fallback_week


def detect_chopped(summary: LeagueSummary | None) -> bool:
    return bool(getattr(summary, "is_chopped", False))


def _knocked_out(team: RawTeam) -> bool:
    return not team.roster and team.score == 0.0


def detect_eliminated(matchup: RawMatchup, is_chopped: bool) -> bool:
    """Placeholder opponent from playoff elimination, or an emptied chopped roster."""
    names = (matchup.home_team.name, matchup.away_team.name)
    if ELIMINATED_PLACEHOLDER_NAME in names:
        return True
    if is_chopped:
        return _knocked_out(matchup.home_team) or _knocked_out(matchup.away_team)
    return False


def _game_status_label(player: RawPlayer) -> str | None:
    if player.game_status is None:
        return None
    status = player.game_status.status.lower()
    return "live" if status in _LIVE_STATUSES else status


def build_player_snapshot(player: RawPlayer) -> PlayerSnapshot:
    return PlayerSnapshot(
        id=player.id,
        identity=PlayerIdentity(
            player_id=player.id,
            sleeper_id=player.sleeper_id,
            espn_id=player.espn_id,
            first_name=player.first_name or "",
            last_name=player.last_name or "",
            full_name=player.full_name,
        ),
        metrics=PlayerMetrics(
            current_score=player.current_points or 0.0,
            projected_score=player.projected_points or 0.0,
            game_status=_game_status_label(player),
        ),
        context=PlayerContext(
            position=player.position,
            lineup_slot=player.lineup_slot,
            is_starter=player.is_starter,
            team=player.team,
            injury_status=player.injury_status,
            jersey_number=player.jersey_number,
            kickoff_time=player.game_status.start_time if player.game_status else None,
        ),
    )


def build_team_snapshot(
    team: RawTeam,
    other: RawTeam,
    win_probability: float | None,
) -> TeamSnapshot:
    return TeamSnapshot(
        info=TeamInfo(
            team_id=team.id,
            owner_name=team.owner_name,
            record=format_record(team.record),
            avatar_url=team.avatar,
        ),
        score=ScoreInfo(
            actual=team.score,
            projected=team.projected_score or 0.0,
            win_probability=win_probability,
            margin=team.score - other.score,
        ),
        roster=[build_player_snapshot(p) for p in team.roster],
    )


def build_matchup_snapshot(
    matchup: RawMatchup,
    my_team_id: str,
    key: LeagueKey,
    league: LeagueDescriptor,
    summary: LeagueSummary | None,
    *,
    now: datetime,
    playoff_week_fallback: int = DEFAULT_PLAYOFF_WEEK_FALLBACK,
    win_model: WinProbabilityModel | None = None,
    matchup_id: str | None = None,
) -> MatchupSnapshot:
    """Normalize ``matchup`` for the user owning ``my_team_id``.

    Home and away keep their schedule orientation; my/opponent are the same
    two TeamSnapshot objects re-labeled by side. Win probabilities are left
    unset for chopped and eliminated matchups, where there is no head-to-head.

    ``matchup_id`` overrides the provider's matchup ID, so a snapshot can be
    stored under the ID it was requested by.
    """
    is_chopped = detect_chopped(summary)
    is_eliminated = detect_eliminated(matchup, is_chopped)

    home, away = matchup.home_team, matchup.away_team
    home_prob: float | None = None
    away_prob: float | None = None
    if not is_chopped and not is_eliminated:
        model = win_model or WinProbabilityModel()
        home_prob = model.probability(home.score, away.score)
        away_prob = 1.0 - home_prob

    home_snapshot = build_team_snapshot(home, away, home_prob)
    away_snapshot = build_team_snapshot(away, home, away_prob)

    side = my_side(matchup, my_team_id)
    if side == "home":
        mine, theirs = home_snapshot, away_snapshot
    else:
        mine, theirs = away_snapshot, home_snapshot

    return MatchupSnapshot(
        id=MatchupSnapshotID(
            league_id=key.league_id,
            matchup_id=matchup_id or matchup.id,
            platform=key.platform,
            week=key.week,
        ),
        metadata=MatchupMetadata(
            status=str(matchup.status),
            start_time=matchup.start_time,
            is_playoff=detect_playoff(key.week, summary, playoff_week_fallback),
            is_chopped=is_chopped,
            is_eliminated=is_eliminated,
        ),
        my_team=mine,
        opponent_team=theirs,
        home_team=home_snapshot,
        away_team=away_snapshot,
        my_team_side=side,
        league=league,
        last_updated=now,
    )
