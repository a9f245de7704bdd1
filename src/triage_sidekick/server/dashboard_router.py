"""REST API used by the dashboard UI. All routes are mounted under ``/api``."""

from __future__ import annotations

import asyncio
import logging
from typing import Literal

import requests
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from triage_sidekick import __version__
from triage_sidekick.agent.assembler import ConversationHistory, StreamAssembler
from triage_sidekick.agent.events import parse_stream_event
from triage_sidekick.agent.service import AuthenticationRequiredError
from triage_sidekick.github.client import (
    InvalidLabelError,
    ItemNotFoundError,
    ProjectStatusError,
    TrackerError,
)
from triage_sidekick.intake.models import IntakeFilters, IntakeSnapshot, ItemDetail, RepoMetadata
from triage_sidekick.server.intake_config import IntakeConfig
from triage_sidekick.server.setup_check import run_setup_checks
from triage_sidekick.server.state import DashboardState, dashboard_state

logger = logging.getLogger(__name__)

router = APIRouter()


class LabelChange(BaseModel):
    label: str = Field(min_length=1)
    action: Literal["add", "remove"]


class IntakeConfigUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intake_criteria: str = Field(alias="intakeCriteria", min_length=1)
    poll_interval_seconds: int | None = Field(
        default=None, alias="pollIntervalSeconds", ge=5, le=3600
    )


class AnalyzeRequest(BaseModel):
    title: str = ""
    body: str = ""
    labels: list[str] = Field(default_factory=list)


class StatusChange(BaseModel):
    status: str = Field(min_length=1)


class DuplicateSearch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search_terms: list[str] = Field(alias="searchTerms", min_length=1)
    exclude_number: int = Field(default=0, alias="excludeNumber")


class FilterQuery(BaseModel):
    query: str


def _tracker_failure(e: Exception) -> HTTPException:
    logger.exception("GitHub request failed")
    return HTTPException(status_code=502, detail=f"GitHub request failed: {e}")


def _config_payload(config: IntakeConfig) -> dict[str, object]:
    return config.model_dump(mode="json", by_alias=True)


def _detail_payload(detail: ItemDetail) -> dict[str, object]:
    return detail.model_dump(mode="json", by_alias=True)


@router.get("/health")
def health(state: DashboardState = Depends(dashboard_state)) -> dict[str, object]:
    return {"status": "ok", "version": __version__, "repo": state.repo.full_name}


@router.get("/config")
async def config(state: DashboardState = Depends(dashboard_state)) -> dict[str, object]:
    if state.repo_metadata is None:
        state.repo_metadata = (
            await asyncio.to_thread(state.tracker.fetch_repo_metadata)
            if state.tracker is not None
            else RepoMetadata()
        )
    return {
        "repo": {
            "owner": state.repo.owner,
            "name": state.repo.name,
            "fullName": state.repo.full_name,
            "description": state.repo_metadata.description,
        },
        "intakeCriteria": state.intake_config.intake_criteria,
        "pollIntervalSeconds": state.intake_config.poll_interval_seconds,
    }


@router.get("/intake-config")
def get_intake_config(state: DashboardState = Depends(dashboard_state)) -> dict[str, object]:
    return _config_payload(state.intake_config)


@router.post("/intake-config")
async def update_intake_config(
    update: IntakeConfigUpdate, state: DashboardState = Depends(dashboard_state)
) -> dict[str, object]:
    # Runs on the event loop: set_interval() re-arms the poller timer there.
    changes: dict[str, object] = {"intake_criteria": update.intake_criteria}
    if update.poll_interval_seconds is not None:
        changes["poll_interval_seconds"] = update.poll_interval_seconds
    new_config = state.intake_config.model_copy(update=changes)

    try:
        await asyncio.to_thread(state.config_store.save, new_config)
    except OSError as e:
        logger.exception("Failed to save intake config")
        raise HTTPException(status_code=500, detail="Failed to save intake config") from e

    interval_changed = new_config.poll_interval_seconds != state.intake_config.poll_interval_seconds
    state.intake_config = new_config
    if interval_changed:
        state.poller.set_interval(new_config.poll_interval_seconds)
    return {"success": True, **_config_payload(new_config)}


@router.get("/intake")
async def intake(
    exclude_milestoned: bool = Query(default=True, alias="excludeMilestoned"),
    exclude_triaged_labels: bool = Query(default=True, alias="excludeTriagedLabels"),
    exclude_status_set: bool = Query(default=True, alias="excludeStatusSet"),
    exclude_backlog_project: bool = Query(default=True, alias="excludeBacklogProject"),
    exclude_answered: bool = Query(default=True, alias="excludeAnswered"),
    exclude_maintainer_responded: bool = Query(
        default=True, alias="excludeMaintainerResponded"
    ),
    state: DashboardState = Depends(dashboard_state),
) -> dict[str, object]:
    tracker = state.require_tracker()
    filters = IntakeFilters(
        exclude_milestoned=exclude_milestoned,
        exclude_triaged_labels=exclude_triaged_labels,
        exclude_status_set=exclude_status_set,
        exclude_backlog_project=exclude_backlog_project,
        exclude_answered=exclude_answered,
        exclude_maintainer_responded=exclude_maintainer_responded,
    )
    try:
        snapshot: IntakeSnapshot = await asyncio.to_thread(tracker.fetch_intake_queue, filters)
    except (TrackerError, requests.RequestException) as e:
        raise _tracker_failure(e) from e

    # The first dashboard read doubles as the poller's baseline.
    if not state.poller.initialized:
        state.poller.update_filters(filters)
        state.poller.seed(snapshot)
        state.poller.start()

    payload = snapshot.model_dump(mode="json", by_alias=True)
    payload["activeFilters"] = filters.model_dump(by_alias=True)
    return payload


@router.get("/poller")
def poller_status(state: DashboardState = Depends(dashboard_state)) -> dict[str, object]:
    poller = state.poller
    return {
        "running": poller.running,
        "initialized": poller.initialized,
        "polling": poller.polling,
        "intervalSeconds": poller.interval_seconds,
        "knownCount": len(poller.known),
    }


@router.get("/labels")
async def labels(state: DashboardState = Depends(dashboard_state)) -> dict[str, list[str]]:
    tracker = state.require_tracker()
    try:
        names = await asyncio.to_thread(tracker.list_labels)
    except Exception as e:
        raise _tracker_failure(e) from e
    return {"labels": names}


@router.post("/issues/{issue_number}/labels")
async def change_label(
    issue_number: int, change: LabelChange, state: DashboardState = Depends(dashboard_state)
) -> dict[str, bool]:
    tracker = state.require_tracker()
    try:
        if change.action == "add":
            await asyncio.to_thread(tracker.apply_label, issue_number, change.label)
        else:
            await asyncio.to_thread(tracker.remove_label, issue_number, change.label)
    except InvalidLabelError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        raise _tracker_failure(e) from e
    return {"success": True}


@router.post("/issues/search-duplicates")
async def search_duplicates(
    search: DuplicateSearch, state: DashboardState = Depends(dashboard_state)
) -> dict[str, object]:
    tracker = state.require_tracker()
    try:
        matches = await asyncio.to_thread(
            tracker.search_duplicates, search.search_terms, search.exclude_number
        )
    except Exception as e:
        raise _tracker_failure(e) from e
    return {"duplicates": [m.model_dump(mode="json") for m in matches]}


@router.get("/issues/{issue_number}")
async def issue_detail(
    issue_number: int, state: DashboardState = Depends(dashboard_state)
) -> dict[str, object]:
    tracker = state.require_tracker()
    try:
        detail = await asyncio.to_thread(tracker.fetch_issue, issue_number)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except Exception as e:
        raise _tracker_failure(e) from e
    return _detail_payload(detail)


@router.get("/discussions/{discussion_number}")
async def discussion_detail(
    discussion_number: int, state: DashboardState = Depends(dashboard_state)
) -> dict[str, object]:
    tracker = state.require_tracker()
    try:
        detail = await asyncio.to_thread(tracker.fetch_discussion, discussion_number)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except Exception as e:
        raise _tracker_failure(e) from e
    return _detail_payload(detail)


@router.post("/issues/{issue_number}/status")
async def set_status(
    issue_number: int, change: StatusChange, state: DashboardState = Depends(dashboard_state)
) -> dict[str, object]:
    tracker = state.require_tracker()
    try:
        await asyncio.to_thread(tracker.set_project_status, issue_number, change.status)
    except ProjectStatusError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except Exception as e:
        raise _tracker_failure(e) from e
    return {"success": True, "status": change.status}


@router.post("/issues/{issue_number}/analyze", response_model=None)
async def analyze_issue(
    issue_number: int, req: AnalyzeRequest, state: DashboardState = Depends(dashboard_state)
) -> dict[str, object] | JSONResponse:
    history = ConversationHistory()
    assembler = StreamAssembler(history)
    message = assembler.start_turn()
    try:
        async for frame in state.analysis.analyze_issue(
            number=issue_number, title=req.title, body=req.body, labels=req.labels
        ):
            assembler.handle(parse_stream_event(frame))
    except AuthenticationRequiredError as e:
        return JSONResponse(status_code=401, content={"error": str(e), "isAuthError": True})
    except Exception as e:
        logger.exception("Analysis failed", extra={"issue_number": issue_number})
        return JSONResponse(status_code=500, content={"error": str(e), "isAuthError": False})

    return {"issueNumber": issue_number, "response": message.content.strip()}


@router.post("/filters/ai", response_model=None)
async def ai_filter(
    req: FilterQuery, state: DashboardState = Depends(dashboard_state)
) -> dict[str, object] | JSONResponse:
    query = req.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")

    labels: list[str] = []
    if state.tracker is not None:
        try:
            labels = await asyncio.to_thread(state.tracker.list_labels)
        except Exception as e:
            raise _tracker_failure(e) from e

    try:
        result = await state.analysis.generate_filter(query, labels)
    except AuthenticationRequiredError as e:
        return JSONResponse(status_code=401, content={"error": str(e), "isAuthError": True})
    except Exception as e:
        logger.exception("AI filter generation failed")
        return JSONResponse(status_code=500, content={"error": str(e), "isAuthError": False})
    return result.to_wire()


@router.get("/setup-check")
async def setup_check(state: DashboardState = Depends(dashboard_state)) -> dict[str, object]:
    report = await asyncio.to_thread(
        run_setup_checks,
        repo=state.repo,
        target_repo_path=state.settings.target_repo_path,
        tracker=state.tracker,
    )
    return report.to_wire()
