"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from factories import RecordingDispatcher

from triage_sidekick.intake.poller import BackgroundPoller
from triage_sidekick.server.config import ServerSettings


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_poller(dispatcher: RecordingDispatcher) -> Callable[..., BackgroundPoller]:
    def factory(fetcher, interval_seconds: float = 90) -> BackgroundPoller:
        return BackgroundPoller(
            fetcher=fetcher, dispatcher=dispatcher, interval_seconds=interval_seconds
        )

    return factory


@pytest.fixture
def server_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point every path-like setting into ``tmp_path`` and pin the repository."""

    checkout = tmp_path / "checkout"
    checkout.mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TRIAGE_REPOSITORY", "acme/widgets")
    monkeypatch.setenv("TARGET_REPO_PATH", str(checkout))
    monkeypatch.setenv("TRIAGE_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("TRIAGE_UI_DIST", str(tmp_path / "ui" / "dist"))
    monkeypatch.delenv("TRIAGE_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("TRIAGE_POLL_INTERVAL_SECONDS", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    return tmp_path


@pytest.fixture
def settings(server_env: Path) -> ServerSettings:
    return ServerSettings()
