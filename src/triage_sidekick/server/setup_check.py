"""Environment checks behind ``GET /api/setup-check``.

Each check returns a :class:`SetupCheck`; later checks are skipped when the
one they depend on failed (no ``gh auth`` without ``gh``, no CLAUDE.md lookup
without a checkout).
"""

from __future__ import annotations

import logging
import platform
import re
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field

from triage_sidekick import __version__
from triage_sidekick.github.client import TrackerClient, TrackerError
from triage_sidekick.server.config import RepoRef

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127
COMMAND_TIMEOUT_SECONDS = 15
CLAUDE_MD_LOCATIONS = ("skills/claude.md", ".claude/CLAUDE.md", "CLAUDE.md")

PROJECT_SCOPE_QUERY = """
query ProjectScope($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) { projectsV2(first: 1) { totalCount } }
}
"""

_GH_ACCOUNT = re.compile(r"Logged in to [^ ]+ account ([^\s(]+)")


@dataclass(frozen=True, slots=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def output(self) -> str:
        return (self.stderr or self.stdout).strip()


CommandRunner = Callable[[list[str]], CommandResult]


def run_command(args: list[str]) -> CommandResult:
    try:
        proc = subprocess.run(
            args, capture_output=True, text=True, timeout=COMMAND_TIMEOUT_SECONDS
        )
    except FileNotFoundError:
        return CommandResult("", f"Command not found: {args[0]}", COMMAND_NOT_FOUND)
    except subprocess.TimeoutExpired:
        return CommandResult("", f"{args[0]} did not answer in {COMMAND_TIMEOUT_SECONDS}s", 1)
    return CommandResult(proc.stdout, proc.stderr, proc.returncode)


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


class SetupCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    status: CheckStatus
    message: str
    details: str | None = None
    fix_command: str | None = Field(default=None, alias="fixCommand")

    @property
    def passed(self) -> bool:
        return self.status is CheckStatus.PASS


class SetupReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo: dict[str, str]
    target_repo_path: str = Field(alias="targetRepoPath")
    python_version: str = Field(alias="pythonVersion")
    version: str = __version__
    checks: list[SetupCheck]
    all_passed: bool = Field(alias="allPassed")
    has_warnings: bool = Field(alias="hasWarnings")
    has_critical_failures: bool = Field(alias="hasCriticalFailures")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else "unknown version"


def _cli_check(
    run: CommandRunner, name: str, command: str, fix_command: str
) -> SetupCheck:
    result = run([command, "--version"])
    if result.exit_code == COMMAND_NOT_FOUND:
        return SetupCheck(
            name=name,
            status=CheckStatus.FAIL,
            message=f"{name} not installed or not in PATH",
            details=f"The {command} command is not available",
            fix_command=fix_command,
        )
    if result.exit_code != 0:
        return SetupCheck(
            name=name, status=CheckStatus.FAIL, message=f"{name} error", details=result.output
        )
    return SetupCheck(
        name=name, status=CheckStatus.PASS, message=f"Installed ({_first_line(result.stdout)})"
    )


def check_claude_cli(run: CommandRunner) -> SetupCheck:
    return _cli_check(run, "Claude Code CLI", "claude", "npm install -g @anthropic-ai/claude-code")


def check_gh_cli(run: CommandRunner) -> SetupCheck:
    return _cli_check(run, "GitHub CLI", "gh", "brew install gh")


def check_gh_auth(run: CommandRunner) -> SetupCheck:
    result = run(["gh", "auth", "status"])
    # gh writes its status report to stderr.
    output = f"{result.stdout}\n{result.stderr}"
    if result.exit_code != 0:
        return SetupCheck(
            name="GitHub Authentication",
            status=CheckStatus.FAIL,
            message=(
                "Not authenticated with GitHub"
                if "not logged" in output.lower()
                else "Authentication check failed"
            ),
            details=output.strip(),
            fix_command="gh auth login",
        )
    match = _GH_ACCOUNT.search(output)
    account = match.group(1) if match else "unknown"
    return SetupCheck(
        name="GitHub Authentication", status=CheckStatus.PASS, message=f"Authenticated as {account}"
    )


def check_token(tracker: TrackerClient | None) -> SetupCheck:
    if tracker is None:
        return SetupCheck(
            name="GitHub Token",
            status=CheckStatus.FAIL,
            message="TRIAGE_GITHUB_TOKEN is not set",
            details="The intake queue, labels and issue details need a GitHub token",
            fix_command="export TRIAGE_GITHUB_TOKEN=$(gh auth token)",
        )
    return SetupCheck(name="GitHub Token", status=CheckStatus.PASS, message="Configured")


def check_project_scope(tracker: TrackerClient, repo: RepoRef) -> SetupCheck:
    name = "Project Access"
    try:
        tracker.graphql(PROJECT_SCOPE_QUERY, {"owner": repo.owner, "name": repo.name})
    except (TrackerError, requests.RequestException) as e:
        if isinstance(e, TrackerError) and e.is_scope_error:
            return SetupCheck(
                name=name,
                status=CheckStatus.WARN,
                message="Missing read:project scope",
                details=(
                    "Without this scope the intake queue shows every open issue "
                    "instead of only untriaged ones"
                ),
                fix_command="gh auth refresh --scopes read:project",
            )
        return SetupCheck(
            name=name,
            status=CheckStatus.WARN,
            message="Could not verify project access",
            details=str(e)[:200],
        )
    return SetupCheck(name=name, status=CheckStatus.PASS, message="read:project scope available")


def check_target_repo(path: Path, repo: RepoRef) -> SetupCheck:
    name = "Target Repository"
    if not path.exists():
        return SetupCheck(
            name=name,
            status=CheckStatus.FAIL,
            message=f"Repository not found ({repo.full_name})",
            details=f"Expected at: {path}",
            fix_command="Set the TARGET_REPO_PATH environment variable",
        )
    if not (path / ".git").exists():
        return SetupCheck(
            name=name,
            status=CheckStatus.FAIL,
            message="Directory exists but is not a git repository",
            details=str(path),
        )
    return SetupCheck(name=name, status=CheckStatus.PASS, message=f"Found at {path}")


def check_claude_md(path: Path) -> SetupCheck:
    for location in CLAUDE_MD_LOCATIONS:
        if (path / location).exists():
            return SetupCheck(
                name="CLAUDE.md", status=CheckStatus.PASS, message=f"Found at ./{location}"
            )
    return SetupCheck(
        name="CLAUDE.md",
        status=CheckStatus.WARN,
        message="No CLAUDE.md file found",
        details="Follow-up analysis may not have full codebase context",
    )


def run_setup_checks(
    *,
    repo: RepoRef,
    target_repo_path: Path,
    tracker: TrackerClient | None,
    run: CommandRunner = run_command,
) -> SetupReport:
    checks = [check_claude_cli(run)]

    gh = check_gh_cli(run)
    checks.append(gh)
    if gh.passed:
        checks.append(check_gh_auth(run))

    checks.append(check_token(tracker))
    if tracker is not None:
        checks.append(check_project_scope(tracker, repo))

    target = check_target_repo(target_repo_path, repo)
    checks.append(target)
    if target.passed:
        checks.append(check_claude_md(target_repo_path))

    failed = [c.name for c in checks if c.status is CheckStatus.FAIL]
    if failed:
        logger.warning("Setup checks failed", extra={"checks": failed})

    return SetupReport(
        repo={
            "owner": repo.owner,
            "name": repo.name,
            "fullName": repo.full_name,
            "url": f"https://github.com/{repo.full_name}",
        },
        target_repo_path=str(target_repo_path),
        python_version=platform.python_version(),
        checks=checks,
        all_passed=all(c.passed for c in checks),
        has_warnings=any(c.status is CheckStatus.WARN for c in checks),
        has_critical_failures=bool(failed),
    )
