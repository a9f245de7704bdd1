"""Prompt text sent to the analysis agent."""

from __future__ import annotations


def intake_system_prompt(repository: str, intake_criteria: str) -> str:
    return f"""You are helping with issue intake for the {repository} repository.

Your role is to analyze the current intake queue and produce actionable summaries.
An item belongs in the intake queue when it matches these criteria:
{intake_criteria}

Structure responses with these sections:
- **Summary**: counts of open issues and discussions awaiting triage
- **Priority Items**: anything needing attention today
- **Unlabeled Issues**: items with no labels yet
- **Area Breakdown**: distribution by area label

Be concise. Prefer concrete next steps over commentary."""


def catch_up_prompt(repository: str) -> str:
    return f"""Analyze the current intake status for {repository}.

Gather data with the GitHub CLI:
1. gh issue list --repo {repository} --search "no:milestone" --limit 50 --json number,title,author,createdAt,labels,url
2. gh api repos/{repository}/discussions --jq '.[] | {{number, title, author: .user.login, createdAt: .created_at, category: .category.name, url: .html_url}}'
3. gh issue list --repo {repository} --search "no:label" --limit 20 --json number,title,author,createdAt,url

Then report the summary, priority items, unlabeled issues and the area breakdown."""


QUICK_ACTIONS = ("add-label", "set-triage", "close")


def quick_action_prompt(repository: str, action: str, issue_number: int, value: str | None) -> str:
    """Build the instruction for a one-shot quick action.

    Raises:
        ValueError: for an unknown action, or ``add-label`` without a label.
    """

    if action == "add-label":
        if not value:
            raise ValueError("add-label requires a label value")
        return (
            f'Add the label "{value}" to issue #{issue_number} in {repository} using: '
            f'gh issue edit {issue_number} --repo {repository} --add-label "{value}"'
        )
    if action == "set-triage":
        return (
            f'Set issue #{issue_number} in {repository} to "Triage" status on the '
            "repository's project board using the gh CLI."
        )
    if action == "close":
        return (
            f"Close issue #{issue_number} in {repository} with a brief comment explaining why."
        )
    raise ValueError(f"Unknown action: {action}")


def analysis_prompt(*, number: int, title: str, body: str, labels: list[str]) -> str:
    label_text = ", ".join(labels) if labels else "(none)"
    return f"""Triage issue #{number}.

Title: {title}
Current labels: {label_text}

Body:
{body or "(empty)"}

Summarize the report in two or three sentences, suggest labels that fit, and say
whether the reporter needs to provide more information."""


FILTER_SYSTEM_PROMPT = """You turn natural-language requests into filter criteria for a GitHub
intake queue dashboard that lists open issues and discussions.

Filter fields (all optional):
- types: list of "issue" and/or "discussion"
- titleContains: list of terms; a title matches if it contains any of them (case-insensitive)
- authorIncludes: list of usernames, partial match
- labelsIncludeAny: list of labels; keep items with at least one of them
- labelsExclude: list of labels; drop items with any of them
- hasLabels: true for labeled items, false for unlabeled ones
- ageMinDays: only items at least this many days old
- ageMaxDays: only items at most this many days old
- isStale: true for items older than 14 days, false for newer ones

Label fields must use exact names from the label list in the request.

Examples:
- "Python issues" -> {"types": ["issue"], "labelsIncludeAny": ["area:python"]}
- "Unlabeled items from the last week" -> {"hasLabels": false, "ageMaxDays": 7}
- "Stale discussions" -> {"types": ["discussion"], "isStale": true}

Answer with one JSON object holding "criteria" (the filter) and "explanation" (one or two
sentences describing what the filter shows). When the request cannot be understood, return
empty criteria and say what was unclear in the explanation."""


def filter_prompt(query: str, labels: list[str]) -> str:
    return f"""Build filter criteria for this request:

"{query}"

Labels in this repository (use these exact names):
{", ".join(labels) if labels else "(none)"}

Reply with a fenced JSON block:
```json
{{"criteria": {{}}, "explanation": "..."}}
```"""
