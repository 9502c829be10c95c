"""Per-PR, per-kind alert deduplication backed by the alert marker columns."""

from datetime import datetime
from typing import Any, Dict, Optional

from models.data_models import AlertKind, PRStatus, PullRequest, PullRequestKey
from storage.base import PullRequestStore
from utils.time_format import utcnow


class AlertDeduplicator:
    """
    Guards against sending the same alert kind twice for one PR.

    A kind may fire again only after a lifecycle transition clears its
    marker (reopen, new commits, close). Markers are set only after the
    dispatcher confirmed delivery, so a failed send is retried on the next
    tick. A sink that accepts a message but fails to acknowledge it can
    still cause a duplicate.
    """

    def __init__(self, store: PullRequestStore):
        self.store = store

    def should_alert(self, pr: PullRequest, kind: AlertKind) -> bool:
        return pr.alert_marker(kind) is None

    def episode_state(self, pr: PullRequest, kind: AlertKind) -> Dict[str, Any]:
        """
        Fields that must be unchanged for a marker to belong to `pr`'s episode.

        New commits and reopens move last_commit_at, which starts a new
        stalled episode. Stale and unreviewed are measured from opened_at and
        review_count, which a reopen keeps, so only a close ends their episode.
        """
        state: Dict[str, Any] = {"status": PRStatus.OPEN}
        if kind == AlertKind.STALLED:
            state["last_commit_at"] = pr.last_commit_at
        return state

    def mark_alerted(
        self,
        key: PullRequestKey,
        kind: AlertKind,
        at: Optional[datetime] = None,
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[PullRequest]:
        """
        Record that `kind` was delivered for the PR.

        Returns None if the PR is gone or no longer matches `expected`, in
        which case no marker is written.
        """
        return self.store.update_where(key, {kind.marker_field: at or utcnow()}, expected)
