"""File-backed intake configuration.

Lookup order when loading:
1. ``.issue-intake.json`` in the target repository checkout (team-shared)
2. ``<config_dir>/<owner>-<name>.json`` (per user)
3. built-in defaults

Saving always writes the per-user file; the team file is edited by hand and
committed with the repository.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from triage_sidekick.intake.poller import DEFAULT_POLL_INTERVAL_SECONDS
from triage_sidekick.server.config import RepoRef

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1
REPO_CONFIG_FILENAME = ".issue-intake.json"

_DEFAULT_CRITERIA: dict[str, str] = {
    "posit-dev/positron": (
        "Exclude items in the 'Positron Backlog' project. "
        "Exclude items with the Status field set in the 'Positron' project."
    ),
}
_GENERIC_CRITERIA = "Show all open items without filtering by project status."


def default_intake_criteria(repo: RepoRef) -> str:
    return _DEFAULT_CRITERIA.get(repo.full_name, _GENERIC_CRITERIA)


class IntakeConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intake_criteria: str = Field(alias="intakeCriteria", min_length=1)
    poll_interval_seconds: int = Field(
        default=DEFAULT_POLL_INTERVAL_SECONDS, alias="pollIntervalSeconds", ge=5, le=3600
    )
    version: int = CONFIG_VERSION


class IntakeConfigStore:
    def __init__(
        self,
        *,
        repo: RepoRef,
        config_dir: Path,
        target_repo_path: Path | None,
        default_poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._repo = repo
        self._default_poll_interval_seconds = default_poll_interval_seconds
        self._config_dir = config_dir
        self._target_repo_path = target_repo_path

    @property
    def user_config_path(self) -> Path:
        return self._config_dir / f"{self._repo.owner}-{self._repo.name}.json"

    @property
    def repo_config_path(self) -> Path | None:
        if self._target_repo_path is None or not self._target_repo_path.exists():
            return None
        return self._target_repo_path / REPO_CONFIG_FILENAME

    def _try_load(self, path: Path | None) -> IntakeConfig | None:
        if path is None or not path.exists():
            return None
        try:
            config = IntakeConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            logger.warning("Ignoring invalid intake config", extra={"path": str(path), "error": str(e)})
            return None
        logger.info("Loaded intake config", extra={"path": str(path)})
        return config

    def load(self) -> IntakeConfig:
        for path in (self.repo_config_path, self.user_config_path):
            config = self._try_load(path)
            if config is not None:
                return config
        return IntakeConfig(
            intake_criteria=default_intake_criteria(self._repo),
            poll_interval_seconds=self._default_poll_interval_seconds,
        )

    def save(self, config: IntakeConfig) -> Path:
        path = self.user_config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = config.model_copy(update={"version": CONFIG_VERSION}).model_dump(
            mode="json", by_alias=True
        )
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        logger.info("Saved intake config", extra={"path": str(path)})
        return path
