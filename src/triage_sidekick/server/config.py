"""Configuration for the dashboard server.

The server is local-first: it starts and serves the UI without a GitHub token.
Endpoints that need GitHub validate credentials at request time.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from triage_sidekick.intake.poller import DEFAULT_POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_REPOSITORY = "posit-dev/positron"

_DIRECT = re.compile(r"^([A-Za-z0-9_-]+)/([A-Za-z0-9_.-]+)$")
_SSH = re.compile(r"^git@github\.com:([A-Za-z0-9_-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?$")
_HTTPS = re.compile(r"^https://github\.com/([A-Za-z0-9_-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?/?$")


@dataclass(frozen=True, slots=True)
class RepoRef:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


def parse_repo_identifier(value: str) -> RepoRef:
    """Parse ``owner/name``, an SSH remote or an HTTPS GitHub URL."""

    text = value.strip()
    for pattern in (_DIRECT, _SSH, _HTTPS):
        match = pattern.match(text)
        if match:
            return RepoRef(owner=match.group(1), name=match.group(2))
    raise ValueError(f"Not a GitHub repository identifier: {value!r}")


def detect_repo_from_git(cwd: Path) -> RepoRef | None:
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    try:
        return parse_repo_identifier(result.stdout)
    except ValueError:
        return None


class ServerSettings(BaseSettings):
    """Settings for the REST API, WebSocket endpoints and background poller."""

    github_token: str = Field(default="", validation_alias="TRIAGE_GITHUB_TOKEN")
    github_base_url: str = Field(
        default="https://api.github.com", validation_alias="GITHUB_BASE_URL"
    )

    repository: str = Field(
        default="",
        validation_alias="TRIAGE_REPOSITORY",
        description=(
            "Repository to triage ('owner/name' or a GitHub URL). When empty, the origin "
            "remote of TARGET_REPO_PATH is used."
        ),
    )
    target_repo_path: Path = Field(
        default=Path("."),
        validation_alias="TARGET_REPO_PATH",
        description="Local checkout the analysis agent runs in.",
    )

    poll_interval_seconds: int = Field(
        default=DEFAULT_POLL_INTERVAL_SECONDS,
        validation_alias="TRIAGE_POLL_INTERVAL_SECONDS",
        ge=5,
        le=3600,
    )

    config_dir: Path = Field(
        default=Path.home() / ".config" / "issue-intake",
        validation_alias="TRIAGE_CONFIG_DIR",
        description="Where per-user intake configuration is saved.",
    )

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: Literal["json", "text"] = Field(default="json", validation_alias="LOG_FORMAT")

    ui_dist_path: Path = Field(default=Path("dist"), validation_alias="TRIAGE_UI_DIST")

    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="TRIAGE_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def resolve_repo(self) -> RepoRef:
        if self.repository.strip():
            return parse_repo_identifier(self.repository)
        detected = detect_repo_from_git(self.target_repo_path)
        if detected is not None:
            return detected
        logger.warning(
            "Could not detect repository; falling back to default",
            extra={"repo": DEFAULT_REPOSITORY},
        )
        return parse_repo_identifier(DEFAULT_REPOSITORY)
