"""
Slack message rendering for PR alerts.

Pure functions: a PR, its repository and the current time in, mrkdwn text out.
"""

from datetime import datetime
from typing import Any, List, Optional

from models.data_models import AlertKind, PullRequest, Repository
from utils.time_format import format_elapsed


def pr_permalink(pr: PullRequest, repository: Optional[Repository] = None) -> Optional[str]:
    """Link to the PR on GitHub, from the payload's html_url or the repo's full name."""
    if pr.html_url:
        return pr.html_url
    if repository and repository.full_name:
        return f"https://github.com/{repository.full_name}/pull/{pr.pr_number}"
    return None


def format_pr_link(pr: PullRequest, repository: Optional[Repository] = None) -> str:
    """Slack link "<url|#12 – Title>", or plain bold text when no URL is known."""
    label = f"#{pr.pr_number} – {pr.title}"
    url = pr_permalink(pr, repository)
    if url:
        return f"*<{url}|{label}>*"
    return f"*{label}*"


def format_reviewer_names(reviewers: List[Any]) -> str:
    """Mention tokens for reviewers: @login for users, team:slug for teams."""
    if not reviewers:
        return "_None assigned_"
    return ", ".join(reviewer.mention for reviewer in reviewers)


def last_reviewer(pr: PullRequest) -> Optional[Any]:
    """Reviewer with the most recent recorded outcome, if any."""
    reviewed = [r for r in pr.reviewers if r.submitted_at is not None]
    if not reviewed:
        return None
    return max(reviewed, key=lambda r: r.submitted_at)


def _repo_line(pr: PullRequest, repository: Optional[Repository]) -> str:
    name = repository.name if repository else f"repo {pr.repo_id}"
    return f"> *Repo:* {name}"


def format_stale_alert(pr: PullRequest, repository: Optional[Repository], now: datetime) -> str:
    return "\n".join([
        "*🚨 Stale Pull Request Detected*",
        format_pr_link(pr, repository),
        _repo_line(pr, repository),
        f"> *Opened:* {pr.opened_at.strftime('%Y-%m-%d')} ({format_elapsed(pr.opened_at, now)})",
        f"> *Reviewers:* {format_reviewer_names(pr.reviewers)}",
    ])


def format_unreviewed_alert(pr: PullRequest, repository: Optional[Repository], now: datetime) -> str:
    return "\n".join([
        "*👀 PR Needs Review*",
        format_pr_link(pr, repository),
        _repo_line(pr, repository),
        f"> *Opened:* {format_elapsed(pr.opened_at, now)}",
        "> *Status:* Awaiting first review",
        f"> *Requested:* {format_reviewer_names(pr.reviewers)}",
    ])


def format_stalled_alert(pr: PullRequest, repository: Optional[Repository], now: datetime) -> str:
    reviewer = last_reviewer(pr)
    if pr.last_review_at is None:
        activity = "No one has reviewed this PR yet."
    elif reviewer is not None:
        activity = f"Reviewed {format_elapsed(pr.last_review_at, now)} by {reviewer.mention}"
    else:
        activity = f"Reviewed {format_elapsed(pr.last_review_at, now)}"

    return "\n".join([
        "*🚧 PR is Stalled*",
        format_pr_link(pr, repository),
        _repo_line(pr, repository),
        f"> *Last Activity:* {activity}",
        f"> *Last Commit:* {format_elapsed(pr.last_commit_at, now)}",
        "> *Action:* Author needs to address feedback.",
    ])


_FORMATTERS = {
    AlertKind.STALE: format_stale_alert,
    AlertKind.UNREVIEWED: format_unreviewed_alert,
    AlertKind.STALLED: format_stalled_alert,
}


def format_alert(
    pr: PullRequest,
    kind: AlertKind,
    repository: Optional[Repository],
    now: datetime,
) -> str:
    """Render the alert message for `kind`."""
    return _FORMATTERS[kind](pr, repository, now)
