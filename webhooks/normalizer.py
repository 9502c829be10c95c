"""Maps raw GitHub webhook payloads into PullRequestEvent.

This is the boundary between the provider's payload shape (large, loosely
typed, changes over time) and the internal event model. Only the fields the
lifecycle state machine needs are read; everything else is ignored.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from models.data_models import (
    GroupReviewer,
    IndividualReviewer,
    PullRequestEvent,
    ReviewSubmission,
)
from utils.errors import MalformedPayloadError
from utils.time_format import parse_timestamp, utcnow

REVIEW_EVENT = "pull_request_review"

# Review actions are prefixed so they cannot collide with PR actions
REVIEW_ACTIONS = {
    "submitted": "review_submitted",
    "edited": "review_edited",
    "dismissed": "review_dismissed",
}


def _timestamp(value: Any, field: str) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError(f"Invalid timestamp in {field}: {value!r}") from e


def _normalize_reviewer(entry: Mapping[str, Any]):
    """Build a tagged reviewer from a requested_reviewers entry (user or team)."""
    reviewer_id = entry.get("id") or 0
    if entry.get("type") == "Team" or entry.get("slug"):
        slug = entry.get("slug") or entry.get("name") or f"team-{reviewer_id}"
        return GroupReviewer(id=reviewer_id, slug=slug)
    login = entry.get("login") or f"user-{reviewer_id}"
    return IndividualReviewer(id=reviewer_id, login=login)


def _normalize_reviewers(pull_request: Mapping[str, Any]) -> List[Any]:
    reviewers = []
    for entry in pull_request.get("requested_reviewers") or []:
        if isinstance(entry, Mapping):
            reviewers.append(_normalize_reviewer(entry))
    for entry in pull_request.get("requested_teams") or []:
        if isinstance(entry, Mapping):
            reviewers.append(_normalize_reviewer({**entry, "type": "Team"}))
    return reviewers


def _normalize_review(review: Mapping[str, Any], now: datetime) -> Optional[ReviewSubmission]:
    user = review.get("user") or {}
    state = review.get("state")
    if not state:
        return None
    reviewer = _normalize_reviewer({**user, "type": "User"})
    submitted_at = _timestamp(review.get("submitted_at"), "review.submitted_at") or now
    return ReviewSubmission(reviewer=reviewer, state=str(state).lower(), submitted_at=submitted_at)


def normalize(
    raw_payload: Mapping[str, Any],
    event_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PullRequestEvent:
    """
    Normalize a GitHub pull_request / pull_request_review payload.

    Pure function: reads only the payload and `now`.

    Args:
        raw_payload: Parsed webhook JSON body
        event_name: Value of the X-GitHub-Event header, if known. Payloads
                    carrying a "review" object are treated as review events
                    even without it.
        now: Receipt time used for missing timestamps (default: current UTC time)

    Returns:
        PullRequestEvent

    Raises:
        MalformedPayloadError: If repository.id or pull_request.number is missing,
                               or a timestamp cannot be parsed
    """
    now = now or utcnow()
    if not isinstance(raw_payload, Mapping):
        raise MalformedPayloadError("Payload must be a JSON object")

    repository = raw_payload.get("repository")
    pull_request = raw_payload.get("pull_request")
    if not isinstance(repository, Mapping) or repository.get("id") is None:
        raise MalformedPayloadError("Payload is missing repository.id")
    if not isinstance(pull_request, Mapping) or pull_request.get("number") is None:
        raise MalformedPayloadError("Payload is missing pull_request.number")

    action = str(raw_payload.get("action") or "")
    review = None
    if event_name == REVIEW_EVENT or isinstance(raw_payload.get("review"), Mapping):
        action = REVIEW_ACTIONS.get(action, f"review_{action}")
        if isinstance(raw_payload.get("review"), Mapping):
            review = _normalize_review(raw_payload["review"], now)

    owner = repository.get("owner") or {}
    updated_at = _timestamp(pull_request.get("updated_at"), "pull_request.updated_at") or now
    if review is not None:
        updated_at = review.submitted_at

    try:
        return PullRequestEvent(
            action=action,
            repo_id=repository["id"],
            repo_name=repository.get("name") or str(repository["id"]),
            repo_full_name=repository.get("full_name"),
            owner_id=owner.get("id") if isinstance(owner, Mapping) else None,
            pr_number=pull_request["number"],
            title=pull_request.get("title") or "No title",
            html_url=pull_request.get("html_url"),
            opened_at=_timestamp(pull_request.get("created_at"), "pull_request.created_at") or now,
            closed_at=_timestamp(pull_request.get("closed_at"), "pull_request.closed_at"),
            updated_at=updated_at,
            reviewers=_normalize_reviewers(pull_request),
            review=review,
        )
    except ValidationError as e:
        raise MalformedPayloadError(f"Payload has invalid field types: {e}") from e


def describe(event: PullRequestEvent) -> Dict[str, Any]:
    """Short summary of an event for log lines."""
    return {
        "action": event.action,
        "repo": event.repo_full_name or event.repo_name,
        "pr_number": event.pr_number,
    }
