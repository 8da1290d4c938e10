"""Tests for MatchupDataStore: warm-up, hydration, TTL, refresh, observation, cleanup."""

import asyncio
import gc

import pytest
from conftest import (
    MY_TEAM,
    default_matchup,
    descriptor,
    league_key,
    make_matchup,
    make_player,
    make_team,
    matchup_id,
    wrapper,
)

from warroom.config import Settings
from warroom.core.errors import (
    EliminatedHiddenError,
    LeagueEvictedError,
    LeagueNotFoundError,
    MatchupNotFoundError,
    NotFoundError,
    TeamNotIdentifiedError,
)
from warroom.core.store import MatchupDataStore
from warroom.models.league import LoadState
from warroom.models.matchup import ELIMINATED_PLACEHOLDER_ID


async def _drain(sub, limit: int = 10) -> list:
    """Collect items until the stream ends."""

    async def collect() -> list:
        return [item async for item in sub]

    items = await asyncio.wait_for(collect(), timeout=1.0)
    assert len(items) <= limit
    return items


class TestWarmLeagues:
    def test_creates_skeleton_entries(self, store, backend):
        created = store.warm_leagues([descriptor("L1"), descriptor("L2")], week=9)

        assert created == [league_key("L1"), league_key("L2")]
        snapshot = store.league_snapshot(league_key("L1"))
        assert snapshot.state == LoadState.LOADING_BASIC
        assert snapshot.league_name == "League L1"
        assert snapshot.matchups == []
        assert backend.fetch_calls == 0

    def test_existing_entries_untouched(self, store):
        store.warm_leagues([descriptor("L1")], week=9)
        created = store.warm_leagues([descriptor("L1"), descriptor("L2")], week=9)

        assert created == [league_key("L2")]
        assert len(store.cached_league_keys()) == 2


class TestHydrate:
    async def test_warm_hydrate_then_cached(self, store, backend, clock):
        store.warm_leagues([descriptor("L1")], week=9)

        snapshot = await store.hydrate_matchup(matchup_id())

        assert snapshot.my_team.score.actual == 20.0
        assert snapshot.opponent_team.score.actual == 18.0
        assert store.league_snapshot(league_key()).state == LoadState.LOADED
        assert store.cached_matchup(matchup_id()) == snapshot

        clock.advance(5)
        again = await store.hydrate_matchup(matchup_id())
        assert again is snapshot
        assert backend.fetch_calls == 1

    async def test_unfetched_id_in_other_league_is_not_cached(self, store):
        store.warm_leagues([descriptor("L1"), descriptor("L2")], week=5)

        snapshot = await store.hydrate_matchup(matchup_id("L1", week=5))

        assert store.cached_matchup(matchup_id("L2", mid="m7", week=5)) is None
        assert store.cached_matchups(league_key("L1", week=5)) == [snapshot]
        assert store.cached_matchups(league_key("L2", week=5)) == []
        assert store.cached_matchups(league_key("L3", week=5)) == []

    async def test_hydrate_without_warm_uses_league_name(self, store):
        await store.hydrate_matchup(matchup_id())

        cached = store.league_snapshot(league_key())
        assert cached.league_name == "League L1"
        assert cached.state == LoadState.LOADED

    async def test_snapshot_stored_under_requested_id(self, store):
        mid = matchup_id(mid="requested")
        snapshot = await store.hydrate_matchup(mid)
        assert snapshot.id == mid

    async def test_my_team_and_home_are_consistent(self, store, backend):
        mine = make_team(MY_TEAM, [make_player("p1", 30.0)])
        theirs = make_team("2", [make_player("p3", 10.0)])
        backend.matchups["L1"] = [make_matchup(theirs, mine)]

        snapshot = await store.hydrate_matchup(matchup_id())

        assert snapshot.my_team_side == "away"
        assert snapshot.my_team == snapshot.away_team
        assert snapshot.opponent_team == snapshot.home_team
        assert snapshot.my_team.score.actual == snapshot.away_team.score.actual
        assert snapshot.my_team.score.margin == 20.0
        assert snapshot.my_team.score.win_probability > 0.5

    async def test_concurrent_hydrates_share_one_fetch(self, store, backend):
        backend.gate = asyncio.Event()
        first = asyncio.create_task(store.hydrate_matchup(matchup_id()))
        second = asyncio.create_task(store.hydrate_matchup(matchup_id()))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        backend.gate.set()

        a, b = await asyncio.gather(first, second)

        assert backend.fetch_calls == 1
        assert a == b

    async def test_concurrent_hydrates_share_failure(self, store, backend):
        backend.gate = asyncio.Event()
        backend.error = RuntimeError("upstream down")
        first = asyncio.create_task(store.hydrate_matchup(matchup_id()))
        second = asyncio.create_task(store.hydrate_matchup(matchup_id()))
        await asyncio.sleep(0)
        backend.gate.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert backend.fetch_calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert store.cached_matchup(matchup_id()) is None

    async def test_failure_is_not_cached(self, store, backend):
        backend.error = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            await store.hydrate_matchup(matchup_id())

        backend.error = None
        snapshot = await store.hydrate_matchup(matchup_id())
        assert snapshot is not None
        assert backend.fetch_calls == 2

    async def test_failure_marks_empty_league_as_error(self, store, backend):
        store.warm_leagues([descriptor("L1")], week=9)
        backend.error = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.hydrate_matchup(matchup_id())

        snapshot = store.league_snapshot(league_key())
        assert snapshot.state == LoadState.ERROR
        assert snapshot.error_message == "boom"

    async def test_unknown_league_raises_and_evicts(self, store, league_manager):
        store.warm_leagues([descriptor("L1")], week=9)
        sub = store.observe_league(league_key())
        del league_manager.leagues["L1"]

        with pytest.raises(LeagueNotFoundError):
            await store.hydrate_matchup(matchup_id())

        assert store.league_snapshot(league_key()) is None
        items = await _drain(sub)
        assert [s.state for s in items] == [LoadState.LOADING_BASIC]

    async def test_team_not_identified(self, store, backend):
        backend.my_team_ids["L1"] = None
        with pytest.raises(TeamNotIdentifiedError):
            await store.hydrate_matchup(matchup_id())

    async def test_matchup_not_found(self, store, backend):
        backend.my_team_ids["L1"] = "99"
        with pytest.raises(MatchupNotFoundError) as exc_info:
            await store.hydrate_matchup(matchup_id())
        assert isinstance(exc_info.value, NotFoundError)


class TestTTL:
    def test_default_ttl_when_not_cached(self, store):
        assert store.cache_ttl(league_key()) == 90.0

    async def test_idle_league_uses_long_ttl(self, store, backend, clock):
        await store.hydrate_matchup(matchup_id())
        assert store.cache_ttl(league_key()) == 300.0

        clock.advance(60)
        await store.hydrate_matchup(matchup_id())
        assert backend.fetch_calls == 1

    async def test_live_starter_switches_to_short_ttl(self, store, backend, clock):
        backend.matchups["L1"] = [default_matchup(live=True)]
        await store.hydrate_matchup(matchup_id())
        assert store.cache_ttl(league_key()) == 15.0

        clock.advance(16)
        await store.hydrate_matchup(matchup_id())
        assert backend.fetch_calls == 2

    async def test_live_bench_player_does_not_count(self, store, backend):
        mine = make_team(MY_TEAM, [make_player("p1", 5.0, starter=False, status="live")])
        theirs = make_team("2", [make_player("p3", 5.0)])
        backend.matchups["L1"] = [make_matchup(mine, theirs)]

        await store.hydrate_matchup(matchup_id())

        assert store.cache_ttl(league_key()) == 300.0


class TestRefresh:
    async def test_refresh_within_ttl_is_noop(self, store, backend):
        await store.hydrate_matchup(matchup_id())

        await store.refresh(league_key(), force=True)
        assert backend.fetch_calls == 2

        await store.refresh(league_key(), force=False)
        assert backend.fetch_calls == 2

    async def test_refresh_after_ttl(self, store, backend, clock):
        await store.hydrate_matchup(matchup_id())
        clock.advance(301)

        await store.refresh()

        assert backend.fetch_calls == 2
        assert store.last_refresh_time == clock.now

    async def test_reports_exactly_changed_players(self, store, backend, clock):
        await store.hydrate_matchup(matchup_id())
        mine = make_team(MY_TEAM, [make_player("p1", 18.0), make_player("p2", 8.0)])
        theirs = make_team("2", [make_player("p3", 15.0), make_player("p4", 3.0)])
        backend.matchups["L1"] = [make_matchup(mine, theirs)]
        clock.advance(30)

        changed = await store.refresh(league_key(), force=True)

        assert changed == {"p1"}
        assert store.get_changed_players() == {"p1"}
        p1 = next(p for p in store.cached_matchup(matchup_id()).players() if p.id == "p1")
        assert p1.metrics.delta == pytest.approx(6.0)
        assert p1.metrics.last_activity == clock.now

    async def test_sub_epsilon_change_ignored(self, store, backend):
        await store.hydrate_matchup(matchup_id())
        mine = make_team(MY_TEAM, [make_player("p1", 12.005), make_player("p2", 8.0)])
        theirs = make_team("2", [make_player("p3", 15.0), make_player("p4", 3.0)])
        backend.matchups["L1"] = [make_matchup(mine, theirs)]

        changed = await store.refresh(league_key(), force=True)

        assert changed == set()

    async def test_injury_change_detected(self, store, backend):
        await store.hydrate_matchup(matchup_id())
        mine = make_team(MY_TEAM, [make_player("p1", 12.0), make_player("p2", 8.0)])
        theirs = make_team("2", [make_player("p3", 15.0), make_player("p4", 3.0, injury="Q")])
        backend.matchups["L1"] = [make_matchup(mine, theirs)]

        assert await store.refresh(league_key(), force=True) == {"p4"}

    async def test_changed_set_resets_each_cycle(self, store, backend):
        await store.hydrate_matchup(matchup_id())
        mine = make_team(MY_TEAM, [make_player("p1", 20.0), make_player("p2", 8.0)])
        theirs = make_team("2", [make_player("p3", 15.0), make_player("p4", 3.0)])
        backend.matchups["L1"] = [make_matchup(mine, theirs)]
        await store.refresh(league_key(), force=True)

        changed = await store.refresh(league_key(), force=True)

        assert changed == set()

    async def test_failed_matchup_keeps_stale_snapshot(self, store, backend):
        before = await store.hydrate_matchup(matchup_id())
        backend.error = RuntimeError("timeout")

        changed = await store.refresh(league_key(), force=True)

        assert changed == set()
        assert store.cached_matchup(matchup_id()) == before
        assert store.league_snapshot(league_key()).state == LoadState.LOADED

    async def test_refresh_emits_loading_then_loaded(self, store):
        await store.hydrate_matchup(matchup_id())
        sub = store.observe_league(league_key())

        await store.refresh(league_key(), force=True)

        states = [(await sub.get(timeout=1.0)).state for _ in range(3)]
        assert states == [LoadState.LOADED, LoadState.LOADING, LoadState.LOADED]
        sub.close()

    async def test_refresh_evicts_removed_league(self, store, league_manager):
        await store.hydrate_matchup(matchup_id())
        del league_manager.leagues["L1"]

        await store.refresh(league_key(), force=True)

        assert store.league_snapshot(league_key()) is None

    async def test_cancelled_refresh_leaves_league_loaded(self, store, backend):
        await store.hydrate_matchup(matchup_id())
        backend.gate = asyncio.Event()
        task = asyncio.create_task(store.refresh(league_key(), force=True))
        await asyncio.sleep(0.01)
        assert store.league_snapshot(league_key()).state == LoadState.LOADING

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.league_snapshot(league_key()).state == LoadState.LOADED
        async with store.observe_league(league_key()) as sub:
            assert (await sub.get(timeout=1.0)).state == LoadState.LOADED
            backend.gate.set()
            await store.hydrate_matchup(matchup_id(mid="m2"))
            pushed = await sub.get(timeout=1.0)

        assert pushed is not None
        assert pushed.state == LoadState.LOADED


class TestObserve:
    async def test_initial_snapshot_pushed(self, store):
        await store.hydrate_matchup(matchup_id())

        async with store.observe_league(league_key()) as sub:
            first = await sub.get(timeout=1.0)

        assert first.state == LoadState.LOADED
        assert len(first.matchups) == 1
        assert store.observer_count == 0

    async def test_uncached_league_gets_updates_once_loaded(self, store):
        async with store.observe_league(league_key()) as sub:
            assert await sub.get(timeout=0.05) is None
            store.warm_leagues([descriptor("L1")], week=9)
            pushed = await sub.get(timeout=1.0)

        assert pushed.state == LoadState.LOADING_BASIC

    async def test_observers_of_other_leagues_not_notified(self, store):
        async with store.observe_league(league_key("L2")) as sub:
            await store.hydrate_matchup(matchup_id("L1"))
            assert await sub.get(timeout=0.05) is None

    async def test_cancelled_iteration_unsubscribes(self, store):
        await store.hydrate_matchup(matchup_id())
        received = []

        async def watch():
            async for snapshot in store.observe_league(league_key()):
                received.append(snapshot)

        task = asyncio.create_task(watch())
        await asyncio.sleep(0.01)
        assert store.observer_count == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(received) == 1
        assert store.observer_count == 0

    async def test_break_out_of_iteration_unsubscribes(self, store):
        await store.hydrate_matchup(matchup_id())

        async for snapshot in store.observe_league(league_key()):
            assert snapshot.state == LoadState.LOADED
            break
        gc.collect()

        assert store.observer_count == 0


class TestCleanup:
    async def test_stale_league_evicted_and_stream_ends(self, store, league_manager):
        store.warm_leagues([descriptor("L1"), descriptor("L2")], week=9)
        sub = store.observe_league(league_key("L2"))
        del league_manager.leagues["L2"]

        evicted = await store.cleanup_stale_leagues()

        assert evicted == [league_key("L2")]
        assert store.cached_league_keys() == [league_key("L1")]
        items = await _drain(sub)
        assert len(items) == 1

    async def test_clear_caches_ends_all_streams(self, store):
        await store.hydrate_matchup(matchup_id("L1"))
        await store.hydrate_matchup(matchup_id("L2"))
        subs = [store.observe_league(league_key("L1")), store.observe_league(league_key("L2"))]

        await store.clear_caches()

        assert store.cached_league_keys() == []
        assert store.get_all_players() == []
        for sub in subs:
            assert len(await _drain(sub)) == 1

    async def test_stale_eviction_lets_in_flight_hydrate_finish(
        self, store, backend, league_manager
    ):
        backend.gate = asyncio.Event()
        task = asyncio.create_task(store.hydrate_matchup(matchup_id("L2")))
        await asyncio.sleep(0.01)
        del league_manager.leagues["L2"]

        evicted = await store.cleanup_stale_leagues()
        backend.gate.set()
        snapshot = await task

        assert evicted == [league_key("L2")]
        assert snapshot.id == matchup_id("L2")
        assert store.cached_matchup(matchup_id("L2")) is None

    async def test_clear_caches_fails_in_flight_hydrate_by_name(self, store, backend):
        backend.gate = asyncio.Event()
        task = asyncio.create_task(store.hydrate_matchup(matchup_id()))
        await asyncio.sleep(0.01)

        await store.clear_caches()

        with pytest.raises(LeagueEvictedError) as exc_info:
            await task
        assert isinstance(exc_info.value, NotFoundError)

    async def test_get_all_players(self, store):
        await store.hydrate_matchup(matchup_id("L1"))
        await store.hydrate_matchup(matchup_id("L2"))

        ids = [p.id for p in store.get_all_players()]

        assert sorted(ids) == ["p1", "p1", "p2", "p2", "p3", "p3", "p4", "p4"]


class TestChopped:
    @pytest.fixture(autouse=True)
    def chopped_league(self, league_manager):
        league_manager.leagues["L1"] = wrapper("L1", is_chopped=True)

    async def test_opponent_is_lowest_survivor(self, store, backend):
        backend.standings["L1"] = [
            make_team(MY_TEAM, [make_player("p1", 40.0)]),
            make_team("2", [make_player("p2", 55.0)]),
            make_team("3", [make_player("p3", 22.0)]),
            make_team("4", [], score=0.0),
        ]

        snapshot = await store.hydrate_matchup(matchup_id())

        assert snapshot.metadata.is_chopped is True
        assert snapshot.metadata.is_eliminated is False
        assert snapshot.opponent_team.team_id == "3"
        assert snapshot.my_team.score.win_probability is None

    async def test_empty_roster_marks_eliminated(self, store, backend):
        backend.standings["L1"] = [
            make_team(MY_TEAM, [], score=0.0),
            make_team("2", [make_player("p2", 55.0)]),
        ]

        snapshot = await store.hydrate_matchup(matchup_id())

        assert snapshot.metadata.is_eliminated is True


class TestPlayoffElimination:
    @pytest.fixture(autouse=True)
    def no_matchups(self, backend, elimination):
        backend.matchups["L1"] = []
        elimination.playoff_week = True
        elimination.in_winners_bracket = False

    async def test_hidden_by_preference(self, store):
        with pytest.raises(EliminatedHiddenError) as exc_info:
            await store.hydrate_matchup(matchup_id())
        assert not isinstance(exc_info.value, NotFoundError)

    async def test_placeholder_when_shown(self, store, preferences):
        preferences.show_eliminated_leagues = True

        snapshot = await store.hydrate_matchup(matchup_id())

        assert snapshot.metadata.is_eliminated is True
        assert snapshot.metadata.status == "complete"
        assert snapshot.opponent_team.team_id == ELIMINATED_PLACEHOLDER_ID
        assert snapshot.my_team.team_id == MY_TEAM

    async def test_bye_week_is_not_found(self, store, elimination):
        elimination.in_winners_bracket = True
        with pytest.raises(MatchupNotFoundError):
            await store.hydrate_matchup(matchup_id())

    async def test_regular_season_is_not_found(self, store, elimination):
        elimination.playoff_week = False
        with pytest.raises(MatchupNotFoundError):
            await store.hydrate_matchup(matchup_id())


class TestFromSettings:
    def test_windows_and_preference_from_settings(self, backend, league_manager, elimination):
        settings = Settings(
            warroom_live_ttl_seconds=5,
            warroom_idle_ttl_seconds=60,
            warroom_default_ttl_seconds=30,
        )

        store = MatchupDataStore.from_settings(
            settings,
            league_manager=league_manager,
            provider_factory=backend.factory,
            elimination_service=elimination,
        )

        assert store.cache_ttl(league_key()) == 30
