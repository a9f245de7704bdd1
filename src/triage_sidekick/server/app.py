"""FastAPI app factory.

Wires the tracker adapter, background poller, notification hub and analysis
service together and exposes them through thin REST and WebSocket handlers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from triage_sidekick import __version__
from triage_sidekick.agent.service import AnalysisService, load_claude_settings
from triage_sidekick.github.client import TrackerClient
from triage_sidekick.intake.models import IntakeFilters, IntakeSnapshot
from triage_sidekick.intake.notifications import (
    NotificationDispatcher,
    Notifier,
    send_desktop_notification,
)
from triage_sidekick.intake.poller import BackgroundPoller
from triage_sidekick.server.agent_relay import router as agent_router
from triage_sidekick.server.config import ServerSettings
from triage_sidekick.server.dashboard_router import router as dashboard_router
from triage_sidekick.server.hub import ConnectionHub
from triage_sidekick.server.intake_config import IntakeConfigStore
from triage_sidekick.server.state import DashboardState

logger = logging.getLogger(__name__)


def _build_tracker(settings: ServerSettings, repository: str) -> TrackerClient | None:
    if not settings.github_token.strip():
        logger.warning("TRIAGE_GITHUB_TOKEN is not set; GitHub endpoints are disabled")
        return None
    return TrackerClient(
        token=settings.github_token,
        repository=repository,
        base_url=settings.github_base_url,
    )


def create_app(
    settings: ServerSettings | None = None,
    *,
    tracker: TrackerClient | None = None,
    analysis: AnalysisService | None = None,
    notifier: Notifier | None = send_desktop_notification,
) -> FastAPI:
    settings = settings or ServerSettings()
    repo = settings.resolve_repo()

    config_store = IntakeConfigStore(
        repo=repo,
        config_dir=settings.config_dir,
        target_repo_path=settings.target_repo_path,
        default_poll_interval_seconds=settings.poll_interval_seconds,
    )
    intake_config = config_store.load()
    tracker = tracker or _build_tracker(settings, repo.full_name)
    hub = ConnectionHub()

    async def fetch_snapshot(filters: IntakeFilters) -> IntakeSnapshot:
        if tracker is None:
            raise RuntimeError("No GitHub token configured")
        return await asyncio.to_thread(tracker.fetch_intake_queue, filters)

    poller = BackgroundPoller(
        fetcher=fetch_snapshot,
        dispatcher=NotificationDispatcher(on_event=hub.publish_new_items, notifier=notifier),
        interval_seconds=intake_config.poll_interval_seconds,
    )

    state = DashboardState(
        settings=settings,
        repo=repo,
        config_store=config_store,
        intake_config=intake_config,
        hub=hub,
        poller=poller,
        analysis=analysis
        or AnalysisService(
            repository=repo.full_name,
            working_directory=settings.target_repo_path,
            intake_criteria=lambda: state.intake_config.intake_criteria,
            claude_settings=load_claude_settings(),
        ),
        tracker=tracker,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info("Triage dashboard ready", extra={"repo": repo.full_name})
        try:
            yield
        finally:
            await poller.aclose()
            if tracker is not None:
                tracker.close()

    app = FastAPI(
        title="Triage Sidekick",
        version=__version__,
        description="Intake triage dashboard API.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.dashboard = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(dashboard_router, prefix="/api")
    app.include_router(agent_router)

    _maybe_mount_ui(app, settings)
    return app


def _maybe_mount_ui(app: FastAPI, settings: ServerSettings) -> None:
    """Serve the built dashboard UI from the same process when it exists."""

    dist = Path(settings.ui_dist_path).resolve()
    index = dist / "index.html"

    if (dist / "assets").exists():
        app.mount("/assets", StaticFiles(directory=dist / "assets"), name="ui-assets")

    @app.get("/", include_in_schema=False, response_model=None)
    def ui_index() -> FileResponse | PlainTextResponse:
        if index.exists():
            return FileResponse(index)
        return PlainTextResponse("UI not built. Run 'npm run build', then restart the server.\n")

    @app.get("/{full_path:path}", include_in_schema=False, response_model=None)
    def ui_spa_fallback(full_path: str) -> FileResponse:
        if full_path.startswith("api/") or full_path == "api":
            raise HTTPException(status_code=404, detail="Not Found")
        candidate = (dist / full_path).resolve()
        if not candidate.is_relative_to(dist):
            raise HTTPException(status_code=404, detail="Not Found")
        if candidate.is_file():
            return FileResponse(candidate)
        if index.exists():
            return FileResponse(index)
        raise HTTPException(status_code=404, detail="UI not built")
