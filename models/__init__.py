"""Data models for the PR watchdog service."""

from models.config_models import AlertConfig, Config, CredentialsConfig
from models.data_models import (
    AlertKind,
    GroupReviewer,
    IndividualReviewer,
    PRStatus,
    PullRequest,
    PullRequestEvent,
    PullRequestFilter,
    PullRequestKey,
    Repository,
    ReviewSubmission,
    Team,
)

__all__ = [
    "AlertConfig",
    "Config",
    "CredentialsConfig",
    "AlertKind",
    "GroupReviewer",
    "IndividualReviewer",
    "PRStatus",
    "PullRequest",
    "PullRequestEvent",
    "PullRequestFilter",
    "PullRequestKey",
    "Repository",
    "ReviewSubmission",
    "Team",
]
