"""Per-app service objects shared by request handlers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request, WebSocket

from triage_sidekick.agent.service import AnalysisService
from triage_sidekick.github.client import TrackerClient
from triage_sidekick.intake.models import RepoMetadata
from triage_sidekick.intake.poller import BackgroundPoller
from triage_sidekick.server.config import RepoRef, ServerSettings
from triage_sidekick.server.hub import ConnectionHub
from triage_sidekick.server.intake_config import IntakeConfig, IntakeConfigStore


@dataclass(slots=True)
class DashboardState:
    settings: ServerSettings
    repo: RepoRef
    config_store: IntakeConfigStore
    intake_config: IntakeConfig
    hub: ConnectionHub
    poller: BackgroundPoller
    analysis: AnalysisService
    tracker: TrackerClient | None = None
    # Fetched on the first /api/config read.
    repo_metadata: RepoMetadata | None = None

    def require_tracker(self) -> TrackerClient:
        if self.tracker is None:
            raise HTTPException(
                status_code=409, detail="TRIAGE_GITHUB_TOKEN is required for this endpoint"
            )
        return self.tracker


def dashboard_state(request: Request) -> DashboardState:
    state = getattr(request.app.state, "dashboard", None)
    if not isinstance(state, DashboardState):
        raise HTTPException(status_code=500, detail="Dashboard state not configured")
    return state


def socket_state(websocket: WebSocket) -> DashboardState:
    state = getattr(websocket.app.state, "dashboard", None)
    if not isinstance(state, DashboardState):
        raise RuntimeError("Dashboard state not configured")
    return state
