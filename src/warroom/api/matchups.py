"""Matchup and league endpoints, plus an SSE stream of league snapshots."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from warroom.core.errors import EliminatedHiddenError, NotFoundError
from warroom.core.store import MatchupDataStore
from warroom.models.league import LeagueKey, LoadState, Platform
from warroom.models.snapshot import LeagueSnapshot, MatchupSnapshot, MatchupSnapshotID

router = APIRouter(prefix="/api", tags=["matchups"])
logger = logging.getLogger(__name__)

_HEARTBEAT_INTERVAL = 15  # seconds


def get_store(request: Request) -> MatchupDataStore:
    """Get the MatchupDataStore from app state."""
    return request.app.state.store


StoreDep = Annotated[MatchupDataStore, Depends(get_store)]


def _league_key(
    store: MatchupDataStore, platform: Platform, league_id: str, week: int
) -> LeagueKey:
    return LeagueKey(
        league_id=league_id, platform=platform, season_year=store.season_year, week=week
    )


# ---------------------------------------------------------------------------
# Request / response bodies
# ---------------------------------------------------------------------------


class LeagueEntry(BaseModel):
    key: LeagueKey
    league_name: str
    state: LoadState
    total_matchups: int


class RefreshRequest(BaseModel):
    league: LeagueKey | None = None
    force: bool = False


class RefreshResponse(BaseModel):
    changed_players: list[str]
    leagues: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/leagues")
async def list_leagues(store: StoreDep) -> dict:
    """Every cached league with its load state."""
    entries = []
    for key in store.cached_league_keys():
        snapshot = store.league_snapshot(key)
        if snapshot is None:
            continue
        entries.append(
            LeagueEntry(
                key=key,
                league_name=snapshot.league_name,
                state=snapshot.state,
                total_matchups=len(snapshot.matchups),
            )
        )
    return {"data": [e.model_dump(mode="json") for e in entries]}


@router.get("/leagues/{platform}/{league_id}/{week}")
async def get_league(
    platform: Platform, league_id: str, week: int, store: StoreDep
) -> LeagueSnapshot:
    """Current snapshot of one cached league. 404 if the league is not cached."""
    snapshot = store.league_snapshot(_league_key(store, platform, league_id, week))
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"League {league_id} week {week} not cached")
    return snapshot


@router.get("/matchups/{platform}/{league_id}/{week}/{matchup_id}")
async def get_matchup(
    platform: Platform,
    league_id: str,
    week: int,
    matchup_id: str,
    store: StoreDep,
) -> MatchupSnapshot:
    """Hydrate one matchup, from cache while fresh.

    Errors:
        404: league, team or matchup not found upstream
        410: eliminated from the playoffs and hidden by preference
    """
    mid = MatchupSnapshotID(
        league_id=league_id, matchup_id=matchup_id, platform=platform, week=week
    )
    try:
        return await store.hydrate_matchup(mid)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except EliminatedHiddenError as exc:
        raise HTTPException(status_code=410, detail=str(exc)) from exc


@router.post("/refresh")
async def refresh(body: RefreshRequest, store: StoreDep) -> RefreshResponse:
    """Refresh one league (or all) and report which players changed."""
    if body.league is not None and store.league_snapshot(body.league) is None:
        raise HTTPException(status_code=404, detail=f"League {body.league.league_id} not cached")
    changed = await store.refresh(body.league, force=body.force)
    leagues = 1 if body.league is not None else len(store.cached_league_keys())
    return RefreshResponse(changed_players=sorted(changed), leagues=leagues)


@router.get("/leagues/{platform}/{league_id}/{week}/stream")
async def league_stream(
    request: Request,
    platform: Platform,
    league_id: str,
    week: int,
    store: StoreDep,
) -> StreamingResponse:
    """Server-Sent Events stream of LeagueSnapshot updates.

    The current snapshot (if cached) is sent first. Periodic heartbeat
    comments keep the connection alive through reverse proxies. The stream
    ends when the league is evicted or the caches are cleared.
    """
    key = _league_key(store, platform, league_id, week)
    sub = store.observe_league(key)

    async def generate():
        async with sub:
            # Flush a comment through the proxy so the browser transitions to "open".
            yield ": connected\n\n"
            while True:
                if await request.is_disconnected():
                    break
                snapshot = await sub.get(timeout=_HEARTBEAT_INTERVAL)
                if snapshot is None:
                    if sub.closed:
                        break
                    yield ": heartbeat\n\n"
                    continue
                yield f"event: league.snapshot\ndata: {snapshot.model_dump_json()}\n\n"
        logger.debug("league_stream_closed league=%s week=%d", league_id, week)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
