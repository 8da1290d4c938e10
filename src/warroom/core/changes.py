"""Per-player change detection between two snapshots of the same matchup."""

from __future__ import annotations

from datetime import datetime

from warroom.models.snapshot import MatchupSnapshot, PlayerSnapshot, TeamSnapshot

SCORE_EPSILON = 0.01


def has_player_changed(
    old: PlayerSnapshot, new: PlayerSnapshot, epsilon: float = SCORE_EPSILON
) -> bool:
    """Score moved by more than ``epsilon``, or game or injury status changed."""
    if abs(old.metrics.current_score - new.metrics.current_score) > epsilon:
        return True
    if old.metrics.game_status != new.metrics.game_status:
        return True
    return old.context.injury_status != new.context.injury_status


def _by_id(team: TeamSnapshot) -> dict[str, PlayerSnapshot]:
    return {p.id: p for p in team.roster}


def detect_changed_players(
    old: MatchupSnapshot, new: MatchupSnapshot, epsilon: float = SCORE_EPSILON
) -> set[str]:
    """IDs of players present in both snapshots whose state changed.

    Players are matched by ID, not roster position, so lineup moves between
    refreshes do not report every shifted player.
    """
    changed: set[str] = set()
    pairs = ((old.my_team, new.my_team), (old.opponent_team, new.opponent_team))
    for old_team, new_team in pairs:
        previous = _by_id(old_team)
        for player in new_team.roster:
            before = previous.get(player.id)
            if before is not None and has_player_changed(before, player, epsilon):
                changed.add(player.id)
    return changed


def _with_deltas(
    team: TeamSnapshot, previous: dict[str, PlayerSnapshot], changed: set[str], now: datetime
) -> TeamSnapshot:
    roster = []
    for player in team.roster:
        before = previous.get(player.id)
        if before is None:
            roster.append(player)
            continue
        metrics = player.metrics.model_copy(
            update={
                "delta": player.metrics.current_score - before.metrics.current_score,
                "last_activity": now if player.id in changed else before.metrics.last_activity,
            }
        )
        roster.append(player.model_copy(update={"metrics": metrics}))
    return team.model_copy(update={"roster": roster})


def apply_deltas(
    old: MatchupSnapshot, new: MatchupSnapshot, changed: set[str], now: datetime
) -> MatchupSnapshot:
    """Fill each player's score delta and last activity relative to ``old``.

    My/opponent and home/away keep sharing the same team objects.
    """
    previous = {p.id: p for team in old.teams() for p in team.roster}
    home = _with_deltas(new.home_team, previous, changed, now)
    away = _with_deltas(new.away_team, previous, changed, now)
    mine, theirs = (home, away) if new.my_team_side == "home" else (away, home)
    return new.model_copy(
        update={"home_team": home, "away_team": away, "my_team": mine, "opponent_team": theirs}
    )
