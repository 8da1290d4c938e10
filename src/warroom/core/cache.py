"""Per-league cache entries and the adaptive TTL policy."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from warroom.models.league import LeagueKey, LeagueSummary, LoadState
from warroom.models.snapshot import LeagueSnapshot, MatchupSnapshot, MatchupSnapshotID


@dataclass(frozen=True)
class TTLPolicy:
    """Freshness windows in seconds. Live leagues expire fast, quiet ones slowly."""

    live_seconds: float = 15.0
    idle_seconds: float = 300.0
    default_seconds: float = 90.0

    def ttl_for(self, cache: LeagueCache | None) -> float:
        """Recomputed on every call: live status changes between refreshes."""
        if cache is None:
            return self.default_seconds
        if cache.has_live_starters():
            return self.live_seconds
        return self.idle_seconds


@dataclass
class LeagueCache:
    """Mutable cache entry for one LeagueKey. Owned by the store's event loop."""

    key: LeagueKey
    summary: LeagueSummary
    last_refreshed: datetime
    state: LoadState = LoadState.LOADING_BASIC
    matchups: dict[MatchupSnapshotID, MatchupSnapshot] = field(default_factory=dict)
    pending: dict[MatchupSnapshotID, asyncio.Task[MatchupSnapshot]] = field(default_factory=dict)
    error_message: str | None = None

    def has_live_starters(self) -> bool:
        return any(m.has_live_starter() for m in self.matchups.values())

    def age_seconds(self, now: datetime) -> float:
        return (now - self.last_refreshed).total_seconds()

    def store(self, snapshot: MatchupSnapshot, now: datetime) -> None:
        self.matchups[snapshot.id] = snapshot
        self.last_refreshed = now
        self.summary = self.summary.model_copy(update={"total_matchups": len(self.matchups)})

    def cancel_pending(self) -> None:
        for task in self.pending.values():
            task.cancel()
        self.pending.clear()

    def snapshot(self) -> LeagueSnapshot:
        return LeagueSnapshot(
            key=self.key,
            league_name=self.summary.league_name,
            matchups=list(self.matchups.values()),
            state=self.state,
            error_message=self.error_message,
            last_refreshed=self.last_refreshed,
        )
