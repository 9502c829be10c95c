"""
Pull request lifecycle state machine.

Applies one normalized PullRequestEvent to the state store:

    opened / reopened   -> upsert as OPEN, clear all alert markers
    synchronize         -> new commits: bump last_commit_at, clear stalled marker
    closed              -> CLOSED (PR must already exist)
    review_submitted    -> count the review, record the reviewer's outcome
    other PR actions    -> refresh title and requested reviewers

The state machine holds no locks. Concurrent events for the same PR are
serialized by the store's atomic upsert / update / increment operations.
Transition timestamps come from the event itself so that redelivering the
same event produces the same stored state.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.data_models import (
    REVIEW_OUTCOMES,
    PRStatus,
    PullRequest,
    PullRequestEvent,
)
from storage.base import PullRequestStore
from utils.errors import MissingEntityError

logger = logging.getLogger(__name__)

OPEN_ACTIONS = ("opened", "reopened")

# PR actions that only refresh metadata on an existing row
METADATA_ACTIONS = (
    "edited",
    "review_requested",
    "review_request_removed",
    "ready_for_review",
    "converted_to_draft",
    "assigned",
    "unassigned",
    "labeled",
    "unlabeled",
)


def _reviewer_identity(reviewer) -> tuple:
    return (reviewer.kind, reviewer.id)


def merge_reviewers(existing: List[Any], requested: List[Any]) -> List[Any]:
    """
    Merge the payload's requested reviewers with the stored reviewer list.

    Requested reviewers come first, in payload order, keeping any outcome
    already recorded for them. Stored reviewers that have a recorded outcome
    but are no longer requested (GitHub drops a reviewer from the request
    list once they review) are kept after them. Requested-only entries that
    were un-requested are dropped.
    """
    recorded = {_reviewer_identity(r): r for r in existing}
    merged = []
    seen = set()
    for reviewer in requested:
        identity = _reviewer_identity(reviewer)
        if identity in seen:
            continue
        seen.add(identity)
        previous = recorded.get(identity)
        if previous is not None and previous.state is not None:
            reviewer = reviewer.model_copy(
                update={"submitted_at": previous.submitted_at, "state": previous.state}
            )
        merged.append(reviewer)
    for identity, reviewer in recorded.items():
        if identity not in seen and reviewer.state is not None:
            merged.append(reviewer)
    return merged


def record_review_outcome(reviewers: List[Any], reviewer, state: str, submitted_at: datetime) -> List[Any]:
    """Return a copy of `reviewers` with `reviewer`'s outcome set (appended if absent)."""
    updated = []
    found = False
    for entry in reviewers:
        if _reviewer_identity(entry) == _reviewer_identity(reviewer):
            entry = entry.model_copy(update={"submitted_at": submitted_at, "state": state})
            found = True
        updated.append(entry)
    if not found:
        updated.append(reviewer.model_copy(update={"submitted_at": submitted_at, "state": state}))
    return updated


class PullRequestLifecycle:
    """
    Event-driven state machine over the pull request store.

    Stateless apart from the store reference; safe to share between
    concurrent request handlers.
    """

    def __init__(self, store: PullRequestStore):
        """
        Args:
            store: State store providing atomic per-key operations
        """
        self.store = store

    def apply(self, event: PullRequestEvent) -> Optional[PullRequest]:
        """
        Apply one event and return the resulting PR state.

        Returns:
            The stored PullRequest after the transition, or None when the
            event was ignored (unknown action, PR not tracked yet, or a
            review state that does not count)

        Raises:
            MissingEntityError: On "closed" for a PR that is not stored
            StoreUnavailableError: If the store fails
        """
        self.store.upsert_repository(event.repository)

        action = event.action
        if action in OPEN_ACTIONS:
            return self._open(event)
        if action == "synchronize":
            return self._synchronize(event)
        if action == "closed":
            return self._close(event)
        if action == "review_submitted":
            return self._review_submitted(event)
        if action in METADATA_ACTIONS:
            return self._refresh_metadata(event)

        logger.debug(f"Ignoring '{action}' for {event.repo_name}#{event.pr_number}")
        return None

    def _open(self, event: PullRequestEvent) -> PullRequest:
        existing = self.store.find_by_key(event.key)
        reviewers = merge_reviewers(existing.reviewers if existing else [], event.reviewers)

        create_fields: Dict[str, Any] = {
            "opened_at": event.opened_at or event.updated_at,
            "review_count": 0,
            "last_review_at": None,
        }
        update_fields: Dict[str, Any] = {
            "title": event.title,
            "status": PRStatus.OPEN,
            "closed_at": None,
            "last_commit_at": event.updated_at,
            "reviewers": reviewers,
            "stale_alert_at": None,
            "unreviewed_alert_at": None,
            "stalled_alert_at": None,
        }
        if event.html_url:
            update_fields["html_url"] = event.html_url

        pr = self.store.upsert(event.key, create_fields, update_fields)
        logger.info(
            f"PR {event.repo_name}#{event.pr_number} {event.action} "
            f"({'new' if existing is None else 'existing'} record)"
        )
        return pr

    def _synchronize(self, event: PullRequestEvent) -> Optional[PullRequest]:
        existing = self.store.find_by_key(event.key)
        if existing is None:
            logger.debug(f"synchronize for untracked PR {event.repo_name}#{event.pr_number}; skipped")
            return None

        pr = self.store.update_where(event.key, {
            "title": event.title,
            "last_commit_at": event.updated_at,
            "reviewers": merge_reviewers(existing.reviewers, event.reviewers),
            "stalled_alert_at": None,
        })
        logger.info(f"PR {event.repo_name}#{event.pr_number} received new commits")
        return pr

    def _close(self, event: PullRequestEvent) -> PullRequest:
        if self.store.find_by_key(event.key) is None:
            raise MissingEntityError(event.repo_id, event.pr_number, event.action)

        pr = self.store.update_where(event.key, {
            "title": event.title,
            "status": PRStatus.CLOSED,
            "closed_at": event.closed_at or event.updated_at,
            "stale_alert_at": None,
            "unreviewed_alert_at": None,
        })
        if pr is None:
            raise MissingEntityError(event.repo_id, event.pr_number, event.action)

        logger.info(f"PR {event.repo_name}#{event.pr_number} closed")
        return pr

    def _review_submitted(self, event: PullRequestEvent) -> Optional[PullRequest]:
        review = event.review
        if review is None or review.state not in REVIEW_OUTCOMES:
            state = review.state if review else None
            logger.debug(
                f"Review on {event.repo_name}#{event.pr_number} with state {state!r} not counted"
            )
            return None

        existing = self.store.find_by_key(event.key)
        if existing is None:
            logger.warning(
                f"Review for untracked PR {event.repo_name}#{event.pr_number}; dropped"
            )
            return None

        reviewers = record_review_outcome(
            existing.reviewers, review.reviewer, review.state, review.submitted_at
        )
        pr = self.store.increment_counter(event.key, "review_count", {
            "last_review_at": review.submitted_at,
            "reviewers": reviewers,
        })
        if pr is not None:
            logger.info(
                f"PR {event.repo_name}#{event.pr_number} reviewed by "
                f"{review.reviewer.login} ({review.state}); {pr.review_count} review(s)"
            )
        return pr

    def _refresh_metadata(self, event: PullRequestEvent) -> Optional[PullRequest]:
        existing = self.store.find_by_key(event.key)
        if existing is None:
            return None
        return self.store.update_where(event.key, {
            "title": event.title,
            "reviewers": merge_reviewers(existing.reviewers, event.reviewers),
        })
