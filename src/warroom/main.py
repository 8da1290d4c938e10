"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from warroom.api.matchups import router as matchups_router
from warroom.config import Settings
from warroom.core.protocols import LeagueManager, PlayoffEliminationService, ProviderFactory
from warroom.core.refresh_runner import RefreshRunner
from warroom.core.store import MatchupDataStore
from warroom.services.elimination import HttpPlayoffEliminationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: start the periodic refresh. Shutdown: stop it and drop all caches."""
    settings: Settings = app.state.settings
    store: MatchupDataStore = app.state.store

    runner = None
    if settings.warroom_auto_refresh:
        runner = RefreshRunner(store, settings.warroom_refresh_interval_seconds)
        runner.start()
    else:
        logger.info("refresh_runner_disabled")
    app.state.refresh_runner = runner

    yield

    if runner is not None:
        runner.stop()
    await store.clear_caches()


def create_app(
    settings: Settings | None = None,
    *,
    store: MatchupDataStore | None = None,
    league_manager: LeagueManager | None = None,
    provider_factory: ProviderFactory | None = None,
    elimination_service: PlayoffEliminationService | None = None,
) -> FastAPI:
    """Create and configure the Warroom FastAPI application.

    Pass a ready ``store``, or the collaborators to build one from ``settings``.
    """
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.warroom_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if store is None:
        if league_manager is None or provider_factory is None:
            msg = "create_app needs either a store or a league_manager and provider_factory"
            raise ValueError(msg)
        store = MatchupDataStore.from_settings(
            settings,
            league_manager=league_manager,
            provider_factory=provider_factory,
            elimination_service=elimination_service or HttpPlayoffEliminationService(settings),
        )

    app = FastAPI(
        title="Warroom",
        version="0.1.0",
        description="Live fantasy football matchup cache",
        docs_url="/docs" if settings.warroom_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store

    app.include_router(matchups_router)

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "env": settings.warroom_env,
            "leagues": len(store.cached_league_keys()),
            "observers": store.observer_count,
            "last_refresh": store.last_refresh_time,
        }

    return app
