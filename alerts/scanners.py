"""Detection scanners: read-only queries classifying open PRs into alert kinds.

Each scanner returns a lazy iterator over the store. Scanners are re-run
from scratch on every tick; a PR may match several kinds in the same tick
and each kind alerts independently.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional

from models.data_models import AlertKind, PRStatus, PullRequest, PullRequestFilter
from storage.base import PullRequestStore

Scanner = Callable[..., Iterator[PullRequest]]


def _cutoff(now: datetime, threshold_hours: float) -> datetime:
    return now - timedelta(hours=threshold_hours)


def scan_stale(
    store: PullRequestStore,
    now: datetime,
    threshold_hours: float,
    repo_ids: Optional[List[int]] = None,
) -> Iterator[PullRequest]:
    """Open PRs opened at least `threshold_hours` ago and not yet alerted as stale."""
    query = PullRequestFilter(
        status=PRStatus.OPEN,
        repo_ids=repo_ids,
        opened_before=_cutoff(now, threshold_hours),
        unalerted=AlertKind.STALE,
    )
    return store.find_many(query, order_by="opened_at")


def scan_unreviewed(
    store: PullRequestStore,
    now: datetime,
    threshold_hours: float,
    repo_ids: Optional[List[int]] = None,
) -> Iterator[PullRequest]:
    """Open PRs with no reviews, opened at least `threshold_hours` ago."""
    query = PullRequestFilter(
        status=PRStatus.OPEN,
        repo_ids=repo_ids,
        reviewed=False,
        opened_before=_cutoff(now, threshold_hours),
        unalerted=AlertKind.UNREVIEWED,
    )
    return store.find_many(query, order_by="opened_at")


def scan_stalled(
    store: PullRequestStore,
    now: datetime,
    threshold_hours: float,
    repo_ids: Optional[List[int]] = None,
) -> Iterator[PullRequest]:
    """
    Reviewed open PRs with neither a commit nor a review for `threshold_hours`.

    These are PRs waiting on the author to address feedback.
    """
    cutoff = _cutoff(now, threshold_hours)
    query = PullRequestFilter(
        status=PRStatus.OPEN,
        repo_ids=repo_ids,
        reviewed=True,
        last_commit_before=cutoff,
        last_review_before=cutoff,
        unalerted=AlertKind.STALLED,
    )
    return store.find_many(query, order_by="opened_at")


SCANNERS: Dict[AlertKind, Scanner] = {
    AlertKind.STALE: scan_stale,
    AlertKind.UNREVIEWED: scan_unreviewed,
    AlertKind.STALLED: scan_stalled,
}
