"""In-memory state store for tests and local development.

Implements the same per-key atomic contract as SupabaseStore by applying
every mutation under a single lock. Nothing survives a restart.
"""

import threading
from typing import Any, Dict, Iterator, List, Optional

from models.data_models import (
    PullRequest,
    PullRequestFilter,
    PullRequestKey,
    Repository,
    Team,
)
from storage.base import PullRequestStore


class InMemoryStore(PullRequestStore):
    """Keeps repositories, teams and pull requests in process memory."""

    backend_name = "memory"

    def __init__(self, teams: Optional[List[Team]] = None):
        self._lock = threading.Lock()
        self._pull_requests: Dict[PullRequestKey, PullRequest] = {}
        self._repositories: Dict[int, Repository] = {}
        self._teams: List[Team] = list(teams or [])
        self._next_id = 1

    def add_team(self, team: Team) -> None:
        """Register a team (teams are managed outside this service)."""
        with self._lock:
            self._teams.append(team)

    def upsert_repository(self, repository: Repository) -> Repository:
        with self._lock:
            existing = self._repositories.get(repository.id)
            if existing is not None:
                # Keep known optional fields when the event omits them
                merged = existing.model_dump()
                merged.update(repository.model_dump(exclude_none=True))
                repository = Repository.model_validate(merged)
            self._repositories[repository.id] = repository
            return repository

    def find_repository(self, repo_id: int) -> Optional[Repository]:
        with self._lock:
            return self._repositories.get(repo_id)

    def list_repositories(self, owner_id: Optional[int] = None) -> List[Repository]:
        with self._lock:
            repositories = list(self._repositories.values())
        if owner_id is None:
            return repositories
        return [repo for repo in repositories if repo.owner_id == owner_id]

    def list_teams(self) -> List[Team]:
        with self._lock:
            return list(self._teams)

    def update_team(self, team_id: int, patch: Dict[str, Any]) -> Optional[Team]:
        with self._lock:
            for index, team in enumerate(self._teams):
                if team.id == team_id:
                    self._teams[index] = Team.model_validate({**team.model_dump(), **patch})
                    return self._teams[index]
        return None

    def update_org_teams(self, github_org_id: int, patch: Dict[str, Any]) -> List[Team]:
        updated = []
        with self._lock:
            for index, team in enumerate(self._teams):
                if team.github_org_id == github_org_id:
                    self._teams[index] = Team.model_validate({**team.model_dump(), **patch})
                    updated.append(self._teams[index])
        return updated

    def find_by_key(self, key: PullRequestKey) -> Optional[PullRequest]:
        with self._lock:
            return self._pull_requests.get(PullRequestKey(*key))

    def upsert(
        self,
        key: PullRequestKey,
        create_fields: Dict[str, Any],
        update_fields: Dict[str, Any],
    ) -> PullRequest:
        key = PullRequestKey(*key)
        with self._lock:
            existing = self._pull_requests.get(key)
            if existing is None:
                record = {
                    **create_fields,
                    **update_fields,
                    "id": self._next_id,
                    "repo_id": key.repo_id,
                    "pr_number": key.pr_number,
                }
                self._next_id += 1
            else:
                record = {**existing.model_dump(), **update_fields}
            pr = PullRequest.model_validate(record)
            self._pull_requests[key] = pr
            return pr

    def update_where(
        self,
        key: PullRequestKey,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[PullRequest]:
        key = PullRequestKey(*key)
        with self._lock:
            existing = self._pull_requests.get(key)
            if existing is None:
                return None
            for name, value in (expected or {}).items():
                if getattr(existing, name) != value:
                    return None
            pr = PullRequest.model_validate({**existing.model_dump(), **patch})
            self._pull_requests[key] = pr
            return pr

    def find_many(
        self,
        query: PullRequestFilter,
        order_by: str = "opened_at",
        descending: bool = False,
    ) -> Iterator[PullRequest]:
        with self._lock:
            snapshot = list(self._pull_requests.values())
        matches = [pr for pr in snapshot if query.matches(pr)]
        # Rows with a null sort column go last, as in Postgres ascending order
        with_value = [pr for pr in matches if getattr(pr, order_by) is not None]
        without_value = [pr for pr in matches if getattr(pr, order_by) is None]
        with_value.sort(
            key=lambda pr: (getattr(pr, order_by), pr.repo_id, pr.pr_number),
            reverse=descending,
        )
        for pr in with_value + without_value:
            yield pr

    def increment_counter(
        self,
        key: PullRequestKey,
        field: str,
        patch: Optional[Dict[str, Any]] = None,
    ) -> Optional[PullRequest]:
        key = PullRequestKey(*key)
        with self._lock:
            existing = self._pull_requests.get(key)
            if existing is None:
                return None
            record = existing.model_dump()
            record[field] = record[field] + 1
            record.update(patch or {})
            pr = PullRequest.model_validate(record)
            self._pull_requests[key] = pr
            return pr
