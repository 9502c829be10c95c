"""Abstract state store interface.

The lifecycle state machine, the scanners and the alert engine depend on
PullRequestStore, not on a concrete backend. SupabaseStore is the production
backend; InMemoryStore backs tests and local development.

Per-key atomicity is the store's job: upsert, update_where and
increment_counter must each apply as one atomic step so that concurrent
events for the same (repo_id, pr_number) serialize without in-process locks.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel

from models.data_models import (
    PullRequest,
    PullRequestFilter,
    PullRequestKey,
    Repository,
    Team,
)


class PullRequestStore(ABC):
    """Durable pull request state keyed by (repo_id, pr_number).

    Every method raises StoreUnavailableError when the backend cannot be
    reached; no method swallows backend errors.
    """

    backend_name = "abstract"

    # Repositories and teams

    @abstractmethod
    def upsert_repository(self, repository: Repository) -> Repository:
        """Create or update a repository record."""

    @abstractmethod
    def find_repository(self, repo_id: int) -> Optional[Repository]:
        """Return the repository or None."""

    @abstractmethod
    def list_repositories(self, owner_id: Optional[int] = None) -> List[Repository]:
        """Return repositories, optionally only those owned by `owner_id`."""

    @abstractmethod
    def list_teams(self) -> List[Team]:
        """Return all teams."""

    @abstractmethod
    def update_team(self, team_id: int, patch: Dict[str, Any]) -> Optional[Team]:
        """Apply `patch` to a team. Returns None when the team does not exist."""

    @abstractmethod
    def update_org_teams(self, github_org_id: int, patch: Dict[str, Any]) -> List[Team]:
        """Apply `patch` to every team linked to `github_org_id`; returns them."""

    # Pull requests

    @abstractmethod
    def find_by_key(self, key: PullRequestKey) -> Optional[PullRequest]:
        """Return the pull request or None."""

    @abstractmethod
    def upsert(
        self,
        key: PullRequestKey,
        create_fields: Dict[str, Any],
        update_fields: Dict[str, Any],
    ) -> PullRequest:
        """Insert with `create_fields` if absent, otherwise apply `update_fields`.

        A freshly created row also receives `update_fields`, so callers pass
        create-only values (such as opened_at) in `create_fields` alone.
        """

    @abstractmethod
    def update_where(
        self,
        key: PullRequestKey,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[PullRequest]:
        """Apply `patch` to an existing row.

        When `expected` is given, the patch applies only if every listed field
        still holds the given value; the check and the write are one step.

        No-op returning None when the key is absent or `expected` does not
        match; callers that require the row to exist decide how to react.
        """

    @abstractmethod
    def find_many(
        self,
        query: PullRequestFilter,
        order_by: str = "opened_at",
        descending: bool = False,
    ) -> Iterator[PullRequest]:
        """Lazily yield pull requests matching `query` in the given order."""

    @abstractmethod
    def increment_counter(
        self,
        key: PullRequestKey,
        field: str,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Optional[PullRequest]:
        """Atomically add one to `field`, applying `patch` in the same step.

        Returns None when the key is absent.
        """

    def close(self) -> None:
        """Release any resources held by the store. Default is a no-op."""


def serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert model values (datetimes, enums, reviewer models) to JSON-ready values."""
    record: Dict[str, Any] = {}
    for name, value in fields.items():
        if isinstance(value, datetime):
            record[name] = value.isoformat()
        elif isinstance(value, Enum):
            record[name] = value.value
        elif isinstance(value, list):
            record[name] = [
                item.model_dump(mode="json") if isinstance(item, BaseModel) else item
                for item in value
            ]
        elif isinstance(value, BaseModel):
            record[name] = value.model_dump(mode="json")
        else:
            record[name] = value
    return record
