"""Data models for pull requests, repositories, teams and webhook events."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, NamedTuple, Optional, Union
from pydantic import BaseModel, Field, model_validator


class PRStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class AlertKind(str, Enum):
    """Alert categories produced by the detection scanners."""

    STALE = "stale"
    UNREVIEWED = "unreviewed"
    STALLED = "stalled"

    @property
    def marker_field(self) -> str:
        """Column holding the "last alerted at" marker for this kind."""
        return f"{self.value}_alert_at"


# Terminal review outcomes that count towards review_count
REVIEW_OUTCOMES = frozenset({"approved", "changes_requested", "commented"})


class PullRequestKey(NamedTuple):
    """Composite identity of a pull request."""
    repo_id: int
    pr_number: int


class IndividualReviewer(BaseModel):
    """A single user requested for (or submitting) a review."""

    kind: Literal["individual"] = "individual"
    id: int
    login: str
    submitted_at: Optional[datetime] = None
    state: Optional[str] = None

    @property
    def mention(self) -> str:
        return f"@{self.login}"


class GroupReviewer(BaseModel):
    """A team requested for review, identified by its slug."""

    kind: Literal["group"] = "group"
    id: int
    slug: str
    submitted_at: Optional[datetime] = None
    state: Optional[str] = None

    @property
    def mention(self) -> str:
        return f"team:{self.slug}"


Reviewer = Annotated[Union[IndividualReviewer, GroupReviewer], Field(discriminator="kind")]


class ReviewSubmission(BaseModel):
    """Outcome of a submitted review, carried by review events."""

    reviewer: IndividualReviewer
    state: str
    submitted_at: datetime


class Repository(BaseModel):
    """Repository record, upserted whenever an event references it."""

    id: int
    name: str
    full_name: Optional[str] = None  # e.g. "org/repo"
    owner_id: Optional[int] = None  # GitHub owner/org id, used to find the owning team


class Team(BaseModel):
    """Team that receives alerts for repositories owned by its GitHub org.

    `configs` is free-form team configuration; the keys stale_hours,
    unreviewed_hours, stalled_hours and max_alerts_per_tick override the
    service defaults for this team.

    last_github_event_at and last_slack_sent_at record the latest webhook
    delivery seen from the team's org and the latest alert Slack accepted for
    the team, so a broken integration shows up as a stale timestamp.
    """

    id: int
    name: str
    github_org_id: Optional[int] = None
    slack_webhook_url: Optional[str] = None
    configs: dict[str, Any] = Field(default_factory=dict)
    last_github_event_at: Optional[datetime] = None
    last_slack_sent_at: Optional[datetime] = None


class PullRequest(BaseModel):
    """PR record as persisted in the state store.

    Created by the first opened/reopened event, mutated by lifecycle
    transitions and by alert marking, never deleted.
    """

    # Database ID
    id: Optional[int] = None

    # Identity
    repo_id: int
    pr_number: int

    title: str
    html_url: Optional[str] = None
    status: PRStatus = PRStatus.OPEN
    opened_at: datetime
    closed_at: Optional[datetime] = None
    last_commit_at: datetime

    # Review activity
    review_count: int = Field(default=0, ge=0)
    last_review_at: Optional[datetime] = None
    reviewers: list[Reviewer] = Field(default_factory=list)

    # Alert markers (non-null = already alerted in this episode)
    stale_alert_at: Optional[datetime] = None
    unreviewed_alert_at: Optional[datetime] = None
    stalled_alert_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_closed_at_matches_status(self):
        """closed_at is set if and only if the PR is closed."""
        if (self.status == PRStatus.CLOSED) != (self.closed_at is not None):
            raise ValueError(
                f"closed_at must be set iff status is CLOSED "
                f"(status={self.status.value}, closed_at={self.closed_at})"
            )
        return self

    @property
    def key(self) -> PullRequestKey:
        return PullRequestKey(self.repo_id, self.pr_number)

    def alert_marker(self, kind: AlertKind) -> Optional[datetime]:
        return getattr(self, kind.marker_field)


class PullRequestEvent(BaseModel):
    """Normalized webhook event; consumed once by the lifecycle state machine."""

    action: str
    repo_id: int
    repo_name: str
    repo_full_name: Optional[str] = None
    owner_id: Optional[int] = None
    pr_number: int
    title: str
    html_url: Optional[str] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    updated_at: datetime
    reviewers: list[Reviewer] = Field(default_factory=list)
    review: Optional[ReviewSubmission] = None

    @property
    def key(self) -> PullRequestKey:
        return PullRequestKey(self.repo_id, self.pr_number)

    @property
    def repository(self) -> Repository:
        return Repository(
            id=self.repo_id,
            name=self.repo_name,
            full_name=self.repo_full_name,
            owner_id=self.owner_id,
        )


class PullRequestFilter(BaseModel):
    """Predicate for the store's find_many query.

    Every set field narrows the result; unset fields match anything.
    Time bounds are inclusive (value <= bound).
    """

    status: Optional[PRStatus] = PRStatus.OPEN
    repo_ids: Optional[list[int]] = None
    reviewed: Optional[bool] = None  # False: review_count == 0, True: review_count > 0
    opened_before: Optional[datetime] = None
    last_commit_before: Optional[datetime] = None
    last_review_before: Optional[datetime] = None
    unalerted: Optional[AlertKind] = None  # marker for this kind must be null

    def matches(self, pr: PullRequest) -> bool:
        """Evaluate the predicate against an in-memory record."""
        if self.status is not None and pr.status != self.status:
            return False
        if self.repo_ids is not None and pr.repo_id not in self.repo_ids:
            return False
        if self.reviewed is True and pr.review_count <= 0:
            return False
        if self.reviewed is False and pr.review_count != 0:
            return False
        if self.opened_before is not None and pr.opened_at > self.opened_before:
            return False
        if self.last_commit_before is not None and pr.last_commit_at > self.last_commit_before:
            return False
        if self.last_review_before is not None and (
            pr.last_review_at is None or pr.last_review_at > self.last_review_before
        ):
            return False
        if self.unalerted is not None and pr.alert_marker(self.unalerted) is not None:
            return False
        return True
