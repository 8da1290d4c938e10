"""MatchupDataStore: lazy, coalescing cache of per-league matchup snapshots.

Flow:
    warm_leagues()     skeleton cache entries, no network
    hydrate_matchup()  cache hit, or join the in-flight fetch, or start one
    refresh()          re-fetch cached matchups past their TTL, diff players
    observe_league()   push stream of LeagueSnapshot per cache change

All cache mutation happens on the event loop that owns the store. Upstream
calls run inside asyncio tasks; at most one task per matchup ID is in flight
and every caller for that ID awaits the same task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from warroom.config import DEFAULT_PLAYOFF_WEEK_FALLBACK, Settings
from warroom.core.cache import LeagueCache, TTLPolicy
from warroom.core.changes import SCORE_EPSILON, apply_deltas, detect_changed_players
from warroom.core.chopped import build_chopped_matchup, build_eliminated_matchup
from warroom.core.errors import (
    EliminatedHiddenError,
    LeagueEvictedError,
    LeagueNotFoundError,
    MatchupNotFoundError,
    TeamNotIdentifiedError,
)
from warroom.core.event_bus import EventBus, Subscription
from warroom.core.protocols import (
    LeagueManager,
    MatchupProvider,
    PlayoffEliminationService,
    Preferences,
    ProviderFactory,
)
from warroom.core.snapshot_builder import build_matchup_snapshot
from warroom.core.win_probability import WinProbabilityModel
from warroom.models.league import (
    LeagueDescriptor,
    LeagueKey,
    LeagueSummary,
    LeagueWrapper,
    LoadState,
    SkeletonSummary,
)
from warroom.models.matchup import RawMatchup
from warroom.models.snapshot import (
    LeagueSnapshot,
    MatchupSnapshot,
    MatchupSnapshotID,
    PlayerSnapshot,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class MatchupDataStore:
    """Single source of truth for matchup and roster data.

    Collaborators are injected; the store never looks them up globally.
    """

    def __init__(
        self,
        league_manager: LeagueManager,
        provider_factory: ProviderFactory,
        elimination_service: PlayoffEliminationService,
        preferences: Preferences,
        *,
        ttl_policy: TTLPolicy | None = None,
        playoff_week_fallback: int = DEFAULT_PLAYOFF_WEEK_FALLBACK,
        change_epsilon: float = SCORE_EPSILON,
        win_model: WinProbabilityModel | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._league_manager = league_manager
        self._provider_factory = provider_factory
        self._elimination = elimination_service
        self._preferences = preferences
        self._ttl = ttl_policy or TTLPolicy()
        self._playoff_week_fallback = playoff_week_fallback
        self._change_epsilon = change_epsilon
        self._win_model = win_model or WinProbabilityModel()
        self._clock = clock

        self._caches: dict[LeagueKey, LeagueCache] = {}
        self._bus: EventBus[LeagueKey, LeagueSnapshot] = EventBus()
        self._changed_player_ids: set[str] = set()
        self.last_refresh_time: datetime | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        league_manager: LeagueManager,
        provider_factory: ProviderFactory,
        elimination_service: PlayoffEliminationService,
        clock: Callable[[], datetime] = _utc_now,
    ) -> MatchupDataStore:
        return cls(
            league_manager,
            provider_factory,
            elimination_service,
            settings,
            ttl_policy=TTLPolicy(
                live_seconds=settings.warroom_live_ttl_seconds,
                idle_seconds=settings.warroom_idle_ttl_seconds,
                default_seconds=settings.warroom_default_ttl_seconds,
            ),
            playoff_week_fallback=settings.warroom_playoff_week_fallback,
            change_epsilon=settings.warroom_change_epsilon,
            win_model=WinProbabilityModel(sd=settings.warroom_win_probability_sd),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Keys and lookups
    # ------------------------------------------------------------------

    @property
    def season_year(self) -> int:
        return self._clock().year

    def league_key(self, matchup_id: MatchupSnapshotID) -> LeagueKey:
        """Cache partition owning ``matchup_id``, in the current season."""
        return LeagueKey.for_matchup(matchup_id, season_year=self.season_year)

    def cached_league_keys(self) -> list[LeagueKey]:
        return list(self._caches)

    def cached_matchup(self, matchup_id: MatchupSnapshotID) -> MatchupSnapshot | None:
        """Synchronous lookup; never fetches."""
        cache = self._caches.get(self.league_key(matchup_id))
        if cache is None:
            return None
        return cache.matchups.get(matchup_id)

    def cached_matchups(self, key: LeagueKey) -> list[MatchupSnapshot]:
        cache = self._caches.get(key)
        if cache is None:
            return []
        return list(cache.matchups.values())

    def league_snapshot(self, key: LeagueKey) -> LeagueSnapshot | None:
        cache = self._caches.get(key)
        return cache.snapshot() if cache is not None else None

    def cache_ttl(self, key: LeagueKey) -> float:
        """Current freshness window for ``key`` in seconds."""
        return self._ttl.ttl_for(self._caches.get(key))

    def get_changed_players(self) -> set[str]:
        """Player IDs that changed during the latest refresh cycle."""
        return set(self._changed_player_ids)

    def get_all_players(self) -> list[PlayerSnapshot]:
        players: list[PlayerSnapshot] = []
        for cache in self._caches.values():
            for matchup in cache.matchups.values():
                players.extend(matchup.players())
        return players

    # ------------------------------------------------------------------
    # Warm-up
    # ------------------------------------------------------------------

    def warm_leagues(self, leagues: Iterable[LeagueDescriptor], week: int) -> list[LeagueKey]:
        """Create skeleton cache entries for leagues not cached yet. No network.

        Returns the keys that were newly created.
        """
        season_year = self.season_year
        created: list[LeagueKey] = []
        for league in leagues:
            key = LeagueKey(
                league_id=league.id,
                platform=league.platform,
                season_year=season_year,
                week=week,
            )
            if key in self._caches:
                continue
            self._caches[key] = LeagueCache(
                key=key,
                summary=SkeletonSummary(
                    league_id=league.id,
                    league_name=league.name,
                    platform=league.platform,
                    week=week,
                ),
                last_refreshed=self._clock(),
            )
            created.append(key)
            self._emit(key)

        logger.info("store_warmed leagues=%d new=%d week=%d", len(self._caches), len(created), week)
        return created

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    async def hydrate_matchup(self, matchup_id: MatchupSnapshotID) -> MatchupSnapshot:
        """Return a fresh snapshot for ``matchup_id``, fetching it if needed.

        Concurrent calls for the same ID share one upstream fetch and see the
        same result or exception. Failures are not cached and not retried.

        Raises:
            LeagueNotFoundError: league removed upstream; its cache entry is evicted.
            TeamNotIdentifiedError, MatchupNotFoundError: nothing to show.
            EliminatedHiddenError: knocked out of the playoffs and hidden by preference.
        """
        key = self.league_key(matchup_id)
        cache = self._caches.get(key)

        if cache is not None:
            cached = cache.matchups.get(matchup_id)
            if cached is not None:
                age = (self._clock() - cached.last_updated).total_seconds()
                if age < self._ttl.ttl_for(cache):
                    logger.debug("store_cache_hit matchup=%s age=%.0fs", matchup_id.matchup_id, age)
                    return cached

        return await self._join_or_fetch(key, matchup_id)

    async def _join_or_fetch(
        self, key: LeagueKey, matchup_id: MatchupSnapshotID
    ) -> MatchupSnapshot:
        cache = self._caches.get(key)
        if cache is None:
            cache = self._lazy_cache(key)

        task = cache.pending.get(matchup_id)
        if task is not None:
            logger.debug("store_hydrate_dedupe matchup=%s", matchup_id.matchup_id)
        else:
            task = asyncio.create_task(
                self._fetch_and_store(key, matchup_id),
                name=f"hydrate:{key.league_id}:{matchup_id.matchup_id}",
            )
            task.add_done_callback(_consume_task_result)
            cache.pending[matchup_id] = task

        # A caller going away must not cancel the fetch other callers share.
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                # The store dropped the fetch (logout); this caller was not cancelled.
                raise LeagueEvictedError(key.league_id) from None
            raise

    def _lazy_cache(self, key: LeagueKey) -> LeagueCache:
        """Skeleton entry for a league hydrated without being warmed first."""
        cache = LeagueCache(
            key=key,
            summary=SkeletonSummary(
                league_id=key.league_id,
                league_name="",
                platform=key.platform,
                week=key.week,
            ),
            last_refreshed=self._clock(),
        )
        self._caches[key] = cache
        return cache

    async def _fetch_and_store(
        self, key: LeagueKey, matchup_id: MatchupSnapshotID
    ) -> MatchupSnapshot:
        try:
            snapshot = await self._fetch_snapshot(key, matchup_id)
        except LeagueNotFoundError:
            logger.info("store_league_gone league=%s evicting", key.league_id)
            self._evict(key)
            raise
        except EliminatedHiddenError:
            raise
        except Exception as exc:
            self._mark_error(key, str(exc))
            raise
        finally:
            self._clear_pending(key, matchup_id)

        return self._store_snapshot(key, snapshot)

    def _clear_pending(self, key: LeagueKey, matchup_id: MatchupSnapshotID) -> None:
        cache = self._caches.get(key)
        if cache is not None and cache.pending.get(matchup_id) is asyncio.current_task():
            del cache.pending[matchup_id]

    def _mark_error(self, key: LeagueKey, message: str) -> None:
        """Surface a failure on leagues that have nothing else to show yet."""
        cache = self._caches.get(key)
        if cache is None or cache.matchups or cache.state is LoadState.LOADING:
            return
        cache.state = LoadState.ERROR
        cache.error_message = message
        self._emit(key)

    def _store_snapshot(self, key: LeagueKey, snapshot: MatchupSnapshot) -> MatchupSnapshot:
        cache = self._caches.get(key)
        if cache is None:
            # Evicted or cleared while the fetch was in flight.
            return snapshot

        now = self._clock()
        previous = cache.matchups.get(snapshot.id)
        if previous is not None:
            changed = detect_changed_players(previous, snapshot, self._change_epsilon)
            self._changed_player_ids |= changed
            snapshot = apply_deltas(previous, snapshot, changed, now)

        cache.store(snapshot, now)
        if cache.state is not LoadState.LOADING:
            # A refresh in progress emits once when it finishes.
            cache.state = LoadState.LOADED
            cache.error_message = None
            self._emit(key)
        logger.debug("store_hydrated league=%s matchup=%s", key.league_id, snapshot.id.matchup_id)
        return snapshot

    async def _fetch_snapshot(
        self, key: LeagueKey, matchup_id: MatchupSnapshotID
    ) -> MatchupSnapshot:
        wrapper = await self._league_manager.resolve_league(key.league_id)
        if wrapper is None:
            raise LeagueNotFoundError(key.league_id)

        summary = self._resolve_summary(key, wrapper)
        provider = self._provider_factory(wrapper, key.week, key.season_year)

        my_team_id = await provider.identify_my_team_id()
        if not my_team_id:
            raise TeamNotIdentifiedError(key.league_id)

        if summary.is_chopped:
            raw = await self._chopped_matchup(provider, key, my_team_id)
        else:
            raw = await self._head_to_head_matchup(provider, wrapper, key, my_team_id)

        return build_matchup_snapshot(
            raw,
            my_team_id,
            key,
            wrapper.descriptor(),
            summary,
            now=self._clock(),
            playoff_week_fallback=self._playoff_week_fallback,
            win_model=self._win_model,
            matchup_id=matchup_id.matchup_id,
        )

    def _resolve_summary(self, key: LeagueKey, wrapper: LeagueWrapper) -> LeagueSummary:
        """Promote the skeleton summary the first time a wrapper is available."""
        cache = self._caches.get(key)
        if cache is None:
            skeleton = SkeletonSummary(
                league_id=key.league_id,
                league_name=wrapper.name,
                platform=key.platform,
                week=key.week,
            )
            return skeleton.resolve(wrapper)
        if not cache.summary.is_resolved:
            cache.summary = cache.summary.resolve(wrapper)
            logger.debug(
                "store_summary_resolved league=%s playoff_start=%s chopped=%s",
                key.league_id,
                wrapper.playoff_week_start,
                wrapper.is_chopped,
            )
        return cache.summary

    async def _chopped_matchup(
        self, provider: MatchupProvider, key: LeagueKey, my_team_id: str
    ) -> RawMatchup:
        standings = await provider.fetch_chopped_standings()
        raw = build_chopped_matchup(
            standings,
            my_team_id,
            league_id=key.league_id,
            week=key.week,
            year=key.season_year,
        )
        if raw is None:
            raise MatchupNotFoundError(key.league_id, my_team_id)
        return raw

    async def _head_to_head_matchup(
        self,
        provider: MatchupProvider,
        wrapper: LeagueWrapper,
        key: LeagueKey,
        my_team_id: str,
    ) -> RawMatchup:
        matchups = await provider.fetch_matchups()
        if not matchups:
            return await self._eliminated_matchup(wrapper, key, my_team_id)

        raw = provider.find_my_matchup(my_team_id)
        if raw is None:
            raise MatchupNotFoundError(key.league_id, my_team_id)
        return raw

    async def _eliminated_matchup(
        self, wrapper: LeagueWrapper, key: LeagueKey, my_team_id: str
    ) -> RawMatchup:
        """No matchups this week: knocked out, or a bracket the user is not visible in."""
        if not self._elimination.is_playoff_week(wrapper, key.week):
            raise MatchupNotFoundError(key.league_id, my_team_id)

        if await self._elimination.is_team_in_winners_bracket(wrapper, key.week, my_team_id):
            raise MatchupNotFoundError(key.league_id, my_team_id)

        if not self._preferences.show_eliminated_leagues:
            logger.info("store_eliminated_hidden league=%s week=%d", key.league_id, key.week)
            raise EliminatedHiddenError(key.league_id, key.week)

        return build_eliminated_matchup(
            my_team_id,
            league_id=key.league_id,
            week=key.week,
            year=key.season_year,
            now=self._clock(),
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, league: LeagueKey | None = None, force: bool = False) -> set[str]:
        """Re-fetch cached matchups for one league, or all leagues.

        Starts a new change report: the changed-player set only covers this
        cycle. Individual matchup failures keep their stale snapshot.

        Returns the changed player IDs.
        """
        self._changed_player_ids.clear()

        keys = [league] if league is not None else list(self._caches)
        for key in keys:
            await self._refresh_league(key, force)

        self.last_refresh_time = self._clock()
        return self.get_changed_players()

    async def _refresh_league(self, key: LeagueKey, force: bool) -> None:
        cache = self._caches.get(key)
        if cache is None:
            return

        age = cache.age_seconds(self._clock())
        if not force and age < self._ttl.ttl_for(cache):
            logger.debug("store_refresh_skip league=%s age=%.0fs", key.league_id, age)
            return

        cache.state = LoadState.LOADING
        self._emit(key)

        matchup_ids = list(cache.matchups)
        completed = False
        try:
            results = await asyncio.gather(
                *(self._join_or_fetch(key, mid) for mid in matchup_ids),
                return_exceptions=True,
            )
            completed = True
        finally:
            # Cancelled or not, the league must leave LOADING.
            self._finish_refresh(key, completed)

        failures = 0
        for mid, result in zip(matchup_ids, results, strict=True):
            if isinstance(result, BaseException):
                failures += 1
                logger.warning(
                    "store_refresh_matchup_failed league=%s matchup=%s error=%r",
                    key.league_id,
                    mid.matchup_id,
                    result,
                )

        logger.info(
            "store_refreshed league=%s matchups=%d failed=%d changed_players=%d",
            key.league_id,
            len(matchup_ids),
            failures,
            len(self._changed_player_ids),
        )

    def _finish_refresh(self, key: LeagueKey, completed: bool) -> None:
        cache = self._caches.get(key)
        if cache is None:
            return
        cache.state = LoadState.LOADED
        cache.error_message = None
        if completed:
            cache.last_refreshed = self._clock()
        else:
            logger.info("store_refresh_cancelled league=%s", key.league_id)
        self._emit(key)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe_league(self, key: LeagueKey) -> Subscription[LeagueKey, LeagueSnapshot]:
        """Subscribe to ``key``'s snapshots, starting with the current one if cached.

        The stream never ends by itself. Closing it, leaving its ``async with``
        block, cancelling the iterating task or dropping the subscription all
        unsubscribe. Evicting or clearing the league ends it.
        """
        sub = self._bus.subscribe(key)
        cache = self._caches.get(key)
        if cache is not None:
            sub.push(cache.snapshot())
        return sub

    @property
    def observer_count(self) -> int:
        return self._bus.subscriber_count

    def _emit(self, key: LeagueKey) -> None:
        cache = self._caches.get(key)
        if cache is None or not self._bus.has_subscribers(key):
            return
        self._bus.publish(key, cache.snapshot())

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _evict(self, key: LeagueKey) -> None:
        """Drop ``key`` and end its streams. In-flight fetches run to completion."""
        self._caches.pop(key, None)
        self._bus.close(key)

    async def clear_caches(self) -> None:
        """Drop everything and end every observer stream (logout / reset)."""
        logger.info("store_clear leagues=%d", len(self._caches))
        for cache in self._caches.values():
            cache.cancel_pending()
        self._caches.clear()
        self._bus.close_all()
        self._changed_player_ids.clear()

    async def cleanup_stale_leagues(self) -> list[LeagueKey]:
        """Evict leagues the league manager no longer reports. Returns evicted keys."""
        known = {league.id for league in await self._league_manager.all_leagues()}
        stale = [key for key in self._caches if key.league_id not in known]
        for key in stale:
            self._evict(key)
        if stale:
            logger.info(
                "store_stale_leagues_evicted count=%d leagues=%s",
                len(stale),
                sorted({key.league_id for key in stale}),
            )
        return stale


def _consume_task_result(task: asyncio.Task[MatchupSnapshot]) -> None:
    """Retrieve the exception of a fetch whose callers all went away."""
    if not task.cancelled():
        task.exception()
