"""GitHub adapter for the intake dashboard.

Reads (the intake snapshot, discussion details, project fields) go through the
GraphQL API with a plain ``requests`` session; issue reads, label writes and
search go through PyGithub.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import requests
from github import Auth, Github, GithubException, UnknownObjectException
from github.Repository import Repository

from triage_sidekick.intake.models import (
    DiscussionComment,
    DuplicateMatch,
    IntakeFilters,
    IntakeItem,
    IntakeSnapshot,
    ItemDetail,
    ItemKind,
    RepoMetadata,
)

logger = logging.getLogger(__name__)

TRIAGED_LABELS = frozenset({"duplicate", "wontfix", "invalid"})
MAINTAINER_ASSOCIATIONS = frozenset({"MEMBER", "OWNER", "COLLABORATOR"})
LABEL_CACHE_TTL_SECONDS = 5 * 60
STATUS_FIELD = "Status"
DUPLICATE_SEARCH_LIMIT = 10
DUPLICATE_RESULT_LIMIT = 5

_PROJECT_ITEMS_FRAGMENT = """
        projectItems(first: 5) {
          nodes {
            project { title }
            fieldValues(first: 10) {
              nodes {
                ... on ProjectV2ItemFieldTextValue {
                  field { ... on ProjectV2Field { name } }
                  text
                }
                ... on ProjectV2ItemFieldSingleSelectValue {
                  field { ... on ProjectV2SingleSelectField { name } }
                  name
                }
              }
            }
          }
        }"""

_ISSUES_QUERY_TEMPLATE = """
query IntakeIssues($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    issues(first: 100, states: OPEN, orderBy: {field: CREATED_AT, direction: DESC}) {
      nodes {
        number
        title
        author { login }
        createdAt
        url
        milestone { title }
        labels(first: 20) { nodes { name } }%s
      }
    }
  }
}
"""

INTAKE_ISSUES_QUERY = _ISSUES_QUERY_TEMPLATE % _PROJECT_ITEMS_FRAGMENT
# Tokens without the read:project scope cannot see projectItems at all.
INTAKE_ISSUES_BASIC_QUERY = _ISSUES_QUERY_TEMPLATE % ""

_COMMENTS_FRAGMENT = """
        comments(first: 20) {
          nodes {
            author { login }
            authorAssociation%s
            replies(first: 10) {
              nodes { author { login } authorAssociation }
            }
          }
        }"""

INTAKE_DISCUSSIONS_QUERY = """
query IntakeDiscussions($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    discussions(first: 50, orderBy: {field: CREATED_AT, direction: DESC}) {
      nodes {
        number
        title
        author { login }
        createdAt
        url
        isAnswered
        closed
        category { name }
        labels(first: 20) { nodes { name } }%s
      }
    }
  }
}
""" % (_COMMENTS_FRAGMENT % "")

DISCUSSION_DETAIL_QUERY = """
query DiscussionDetail($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    discussion(number: $number) {
      number
      title
      author { login }
      createdAt
      url
      body
      isAnswered
      closed
      category { name }
      labels(first: 20) { nodes { name } }
      answer { body }%s
    }
  }
}
""" % (_COMMENTS_FRAGMENT % "\n            body\n            createdAt")

PROJECT_FIELDS_QUERY = """
query ProjectFields($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    projectsV2(first: 10) {
      nodes {
        id
        title
        fields(first: 20) {
          nodes {
            ... on ProjectV2SingleSelectField { id name options { id name } }
          }
        }
      }
    }
  }
}
"""

ISSUE_PROJECT_ITEMS_QUERY = """
query IssueProjectItems($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) {
      id
      projectItems(first: 20) { nodes { id project { id } } }
    }
  }
}
"""

ADD_PROJECT_ITEM_MUTATION = """
mutation AddProjectItem($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: {projectId: $projectId, contentId: $contentId}) {
    item { id }
  }
}
"""

UPDATE_STATUS_MUTATION = """
mutation UpdateStatus($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
  updateProjectV2ItemFieldValue(
    input: {
      projectId: $projectId
      itemId: $itemId
      fieldId: $fieldId
      value: {singleSelectOptionId: $optionId}
    }
  ) {
    projectV2Item { id }
  }
}
"""


class TrackerError(RuntimeError):
    """GitHub answered, but with GraphQL errors instead of data."""

    @property
    def is_scope_error(self) -> bool:
        text = str(self)
        return "INSUFFICIENT_SCOPES" in text or "read:project" in text


class InvalidLabelError(ValueError):
    pass


class ItemNotFoundError(LookupError):
    pass


class ProjectStatusError(ValueError):
    """The repository's project board cannot take the requested status."""


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    """Project board names used for intake filtering and status updates."""

    main_project: str | None = None
    backlog_project: str | None = None


KNOWN_PROJECTS: dict[str, ProjectConfig] = {
    "posit-dev/positron": ProjectConfig(
        main_project="Positron", backlog_project="Positron Backlog"
    ),
}


def project_config_for(repository: str) -> ProjectConfig:
    return KNOWN_PROJECTS.get(repository.lower(), ProjectConfig())


def graphql_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    # GitHub Enterprise serves REST at /api/v3 and GraphQL at /api/graphql.
    if base.endswith("/api/v3"):
        return base[: -len("/v3")] + "/graphql"
    return base + "/graphql"


def _login(value: object) -> str:
    if isinstance(value, dict):
        login = value.get("login")
        if isinstance(login, str) and login.strip():
            return login
    return "unknown"


def _nodes(value: object) -> list[dict[str, Any]]:
    if not isinstance(value, dict):
        return []
    nodes = value.get("nodes")
    if not isinstance(nodes, list):
        return []
    return [n for n in nodes if isinstance(n, dict)]


def _label_names(value: object) -> list[str]:
    return [n["name"] for n in _nodes(value) if isinstance(n.get("name"), str)]


def _project_status(node: dict[str, Any], project: str | None) -> str | None:
    """The Status value of the issue's item on ``project``, if any."""

    if not project:
        return None
    for item in _nodes(node.get("projectItems")):
        if (item.get("project") or {}).get("title") != project:
            continue
        for value in _nodes(item.get("fieldValues")):
            field = value.get("field") or {}
            if field.get("name") == STATUS_FIELD and value.get("name"):
                return str(value["name"])
    return None


def _in_project(node: dict[str, Any], project: str | None) -> bool:
    if not project:
        return False
    return any(
        (item.get("project") or {}).get("title") == project
        for item in _nodes(node.get("projectItems"))
    )


def _is_maintainer(node: dict[str, Any]) -> bool:
    return node.get("authorAssociation") in MAINTAINER_ASSOCIATIONS


def has_maintainer_response(node: dict[str, Any]) -> bool:
    """True when a maintainer commented or replied anywhere in the thread."""

    return any(
        _is_maintainer(comment) or any(_is_maintainer(r) for r in _nodes(comment.get("replies")))
        for comment in _nodes(node.get("comments"))
    )


def parse_issue_nodes(
    nodes: list[dict[str, Any]],
    filters: IntakeFilters,
    projects: ProjectConfig | None = None,
) -> list[IntakeItem]:
    projects = projects or ProjectConfig()
    items: list[IntakeItem] = []
    for node in nodes:
        labels = _label_names(node.get("labels"))
        if filters.exclude_milestoned and node.get("milestone"):
            continue
        if filters.exclude_triaged_labels and TRIAGED_LABELS.intersection(
            label.lower() for label in labels
        ):
            continue
        status = _project_status(node, projects.main_project)
        if filters.exclude_status_set and status:
            continue
        if filters.exclude_backlog_project and _in_project(node, projects.backlog_project):
            continue
        items.append(
            IntakeItem(
                kind=ItemKind.ISSUE,
                number=int(node["number"]),
                title=str(node.get("title") or ""),
                author=_login(node.get("author")),
                created_at=str(node.get("createdAt") or ""),
                labels=labels,
                url=str(node.get("url") or ""),
                project_status=status,
            )
        )
    return items


def _category(node: dict[str, Any]) -> str:
    category = node.get("category")
    name = category.get("name") if isinstance(category, dict) else None
    return name or "General"


def parse_discussion_nodes(
    nodes: list[dict[str, Any]], filters: IntakeFilters
) -> list[IntakeItem]:
    items: list[IntakeItem] = []
    for node in nodes:
        if node.get("closed"):
            continue
        answered = bool(node.get("isAnswered"))
        if filters.exclude_answered and answered:
            continue
        responded = has_maintainer_response(node)
        if filters.exclude_maintainer_responded and responded:
            continue
        items.append(
            IntakeItem(
                kind=ItemKind.DISCUSSION,
                number=int(node["number"]),
                title=str(node.get("title") or ""),
                author=_login(node.get("author")),
                created_at=str(node.get("createdAt") or ""),
                labels=_label_names(node.get("labels")),
                url=str(node.get("url") or ""),
                category=_category(node),
                answered=answered,
                has_maintainer_response=responded,
            )
        )
    return items


def parse_discussion_detail(node: dict[str, Any]) -> ItemDetail:
    answer = node.get("answer")
    return ItemDetail(
        kind=ItemKind.DISCUSSION,
        number=int(node["number"]),
        title=str(node.get("title") or ""),
        author=_login(node.get("author")),
        created_at=str(node.get("createdAt") or ""),
        labels=_label_names(node.get("labels")),
        url=str(node.get("url") or ""),
        category=_category(node),
        answered=bool(node.get("isAnswered")) or isinstance(answer, dict),
        has_maintainer_response=has_maintainer_response(node),
        body=str(node.get("body") or ""),
        state="closed" if node.get("closed") else "open",
        answer=str(answer.get("body") or "") if isinstance(answer, dict) else None,
        comments=[
            DiscussionComment(
                author=_login(c.get("author")),
                body=str(c.get("body") or ""),
                created_at=str(c.get("createdAt") or ""),
                is_maintainer=_is_maintainer(c),
            )
            for c in _nodes(node.get("comments"))
        ],
    )


class TrackerClient:
    """Repository-scoped GitHub access for the dashboard.

    The label cache lives on the instance; call :meth:`reset_label_cache` after
    labels are edited outside the dashboard.
    """

    def __init__(
        self,
        *,
        token: str,
        repository: str,
        base_url: str = "https://api.github.com",
        projects: ProjectConfig | None = None,
        repo: Repository | None = None,
        github: Github | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")
        owner, sep, name = repository.partition("/")
        if not sep or not owner or not name:
            raise ValueError("repository must look like 'owner/name'")

        self._token = token
        self._repository = repository
        self._owner = owner
        self._name = name
        self._base_url = base_url.rstrip("/")
        self._projects = projects if projects is not None else project_config_for(repository)
        self._repo = repo
        self._github = github
        self._clock = clock

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "triage-sidekick",
            }
        )

        self._label_cache: list[str] | None = None
        self._label_cache_at = 0.0

    @property
    def repository(self) -> str:
        return self._repository

    @property
    def projects(self) -> ProjectConfig:
        return self._projects

    def _get_github(self) -> Github:
        if self._github is None:
            self._github = Github(auth=Auth.Token(self._token), base_url=self._base_url)
        return self._github

    def _get_repo(self) -> Repository:
        if self._repo is None:
            self._repo = self._get_github().get_repo(self._repository)
            logger.info("Connected to repository", extra={"repo": self._repository})
        return self._repo

    def close(self) -> None:
        self._session.close()
        if self._github is not None:
            self._github.close()

    def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        resp = self._session.post(
            graphql_url(self._base_url),
            json={"query": query, "variables": variables},
            timeout=30,
        )
        resp.raise_for_status()
        payload: dict[str, Any] = resp.json()
        errors = payload.get("errors")
        if errors:
            messages = []
            for e in errors:
                if not isinstance(e, dict):
                    continue
                message = e.get("message", "")
                # The error type (e.g. INSUFFICIENT_SCOPES) is what callers branch on.
                messages.append(f"{e['type']}: {message}" if e.get("type") else message)
            raise TrackerError("; ".join(m for m in messages if m) or "GraphQL query failed")
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    def _repository_data(self, query: str, **variables: Any) -> dict[str, Any]:
        data = self.graphql(query, {"owner": self._owner, "name": self._name, **variables})
        repo = data.get("repository")
        return repo if isinstance(repo, dict) else {}

    def _repository_nodes(self, query: str, connection: str) -> list[dict[str, Any]]:
        return _nodes(self._repository_data(query).get(connection))

    def _issue_nodes(self, warnings: list[str]) -> list[dict[str, Any]]:
        if not (self._projects.main_project or self._projects.backlog_project):
            return self._repository_nodes(INTAKE_ISSUES_BASIC_QUERY, "issues")
        try:
            return self._repository_nodes(INTAKE_ISSUES_QUERY, "issues")
        except TrackerError as e:
            if not e.is_scope_error:
                raise
            logger.warning("Token cannot read project fields", extra={"error": str(e)})
            warnings.append(
                "Project filters skipped: the token lacks the read:project scope"
            )
            return self._repository_nodes(INTAKE_ISSUES_BASIC_QUERY, "issues")

    def fetch_intake_queue(self, filters: IntakeFilters | None = None) -> IntakeSnapshot:
        """Return the current open intake items.

        Discussions are optional: if the repository has them disabled the
        snapshot carries a warning instead of failing. Project filters degrade
        the same way when the token cannot read project boards.
        """

        active = filters or IntakeFilters()
        warnings: list[str] = []

        issues = parse_issue_nodes(self._issue_nodes(warnings), active, self._projects)
        try:
            discussion_nodes = self._repository_nodes(INTAKE_DISCUSSIONS_QUERY, "discussions")
        except TrackerError as e:
            logger.warning("Could not fetch discussions", extra={"error": str(e)})
            warnings.append(f"Discussions unavailable: {e}")
            discussion_nodes = []

        return IntakeSnapshot(
            issues=issues,
            discussions=parse_discussion_nodes(discussion_nodes, active),
            warnings=warnings,
        )

    def fetch_issue(self, number: int) -> ItemDetail:
        try:
            issue = self._get_repo().get_issue(number)
        except UnknownObjectException as e:
            raise ItemNotFoundError(f"Issue #{number} not found") from e
        return ItemDetail(
            kind=ItemKind.ISSUE,
            number=issue.number,
            title=issue.title,
            author=issue.user.login if issue.user else "unknown",
            created_at=issue.created_at.isoformat(),
            labels=[label.name for label in issue.labels],
            url=issue.html_url,
            body=issue.body or "",
            state=issue.state,
        )

    def fetch_discussion(self, number: int) -> ItemDetail:
        node = self._repository_data(DISCUSSION_DETAIL_QUERY, number=number).get("discussion")
        if not isinstance(node, dict):
            raise ItemNotFoundError(f"Discussion #{number} not found")
        return parse_discussion_detail(node)

    def fetch_repo_metadata(self) -> RepoMetadata:
        """Description and topics; empty when GitHub cannot be reached."""

        try:
            repo = self._get_repo()
            return RepoMetadata(description=repo.description, topics=list(repo.get_topics()))
        except (GithubException, requests.RequestException) as e:
            logger.warning("Could not fetch repository metadata", extra={"error": str(e)})
            return RepoMetadata()

    def search_duplicates(self, terms: list[str], exclude_number: int = 0) -> list[DuplicateMatch]:
        """Open or closed issues matching any of ``terms``, best match first."""

        words = " OR ".join(t.strip() for t in terms if t.strip())
        if not words:
            return []
        query = f"repo:{self._repository} is:issue {words}"
        results = itertools.islice(self._get_github().search_issues(query), DUPLICATE_SEARCH_LIMIT)
        matches = [
            DuplicateMatch(number=i.number, title=i.title, url=i.html_url, state=i.state)
            for i in results
            if i.number != exclude_number
        ]
        return matches[:DUPLICATE_RESULT_LIMIT]

    def _status_target(self, status: str) -> tuple[str, str, str]:
        project_name = self._projects.main_project
        if not project_name:
            raise ProjectStatusError("No main project configured for this repository")

        projects = _nodes(self._repository_data(PROJECT_FIELDS_QUERY).get("projectsV2"))
        project = next((p for p in projects if p.get("title") == project_name), None)
        if project is None:
            raise ProjectStatusError(f'Project "{project_name}" not found')

        field = next(
            (f for f in _nodes(project.get("fields")) if f.get("name") == STATUS_FIELD), None
        )
        if field is None:
            raise ProjectStatusError("Status field not found in project")

        options = [o for o in field.get("options") or [] if isinstance(o, dict)]
        option = next((o for o in options if o.get("name") == status), None)
        if option is None:
            raise ProjectStatusError(f'Status option "{status}" not found')
        return str(project["id"]), str(field["id"]), str(option["id"])

    def set_project_status(self, issue_number: int, status: str) -> None:
        """Set the issue's Status on the main project, adding it to the board if needed."""

        project_id, field_id, option_id = self._status_target(status)

        issue = self._repository_data(ISSUE_PROJECT_ITEMS_QUERY, number=issue_number).get("issue")
        if not isinstance(issue, dict):
            raise ItemNotFoundError(f"Issue #{issue_number} not found")
        item_id = next(
            (
                item["id"]
                for item in _nodes(issue.get("projectItems"))
                if (item.get("project") or {}).get("id") == project_id
            ),
            None,
        )
        if item_id is None:
            added = self.graphql(
                ADD_PROJECT_ITEM_MUTATION, {"projectId": project_id, "contentId": issue["id"]}
            )
            item_id = added["addProjectV2ItemById"]["item"]["id"]

        self.graphql(
            UPDATE_STATUS_MUTATION,
            {
                "projectId": project_id,
                "itemId": item_id,
                "fieldId": field_id,
                "optionId": option_id,
            },
        )
        logger.info("Set project status", extra={"issue_number": issue_number, "status": status})

    def list_labels(self) -> list[str]:
        now = self._clock()
        if self._label_cache is not None and now - self._label_cache_at < LABEL_CACHE_TTL_SECONDS:
            return list(self._label_cache)
        names = [label.name for label in self._get_repo().get_labels()]
        self._label_cache = names
        self._label_cache_at = now
        return list(names)

    def reset_label_cache(self) -> None:
        self._label_cache = None
        self._label_cache_at = 0.0

    def apply_label(self, issue_number: int, label: str) -> None:
        if label not in self.list_labels():
            raise InvalidLabelError(f"Invalid label: {label}")
        self._get_repo().get_issue(issue_number).add_to_labels(label)
        logger.info("Applied label", extra={"issue_number": issue_number, "label": label})

    def remove_label(self, issue_number: int, label: str) -> None:
        self._get_repo().get_issue(issue_number).remove_from_labels(label)
        logger.info("Removed label", extra={"issue_number": issue_number, "label": label})
